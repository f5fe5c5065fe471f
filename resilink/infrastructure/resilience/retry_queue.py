"""Connectivity-driven retry queue.

Holds attempts that failed because the network was unreachable and replays
them when connectivity comes back. Each drain swaps the pending items into a
batch and replays the whole batch concurrently, each item after its own
exponential backoff plus up to one second of jitter. Failed replays are
requeued for the next pass until they exhaust their retries, then dropped
and logged.
"""

import asyncio
import dataclasses
import inspect
import logging
import random
import time
import uuid
from typing import Any, Callable, Coroutine, List, Optional, Set

from resilink.domain.events.resilience_events import DomainEvent, DrainCompleted, RetryDropped
from resilink.domain.models.common import QueueStats
from resilink.domain.models.resilience import QueuedRequest, RetryConfig, RetryFunction
from resilink.infrastructure.resilience.errors import RetryConditionNotMetError, describe_error

logger = logging.getLogger(__name__)

MAX_JITTER_SECONDS = 1.0
FOLLOW_UP_DELAY_SECONDS = 1.0

EventHandler = Callable[[DomainEvent], None]
SleepFunction = Callable[[float], Coroutine[Any, Any, None]]


def compute_backoff_delay(retry_count: int, config: RetryConfig) -> float:
    """Delay before the next replay of an item, without jitter."""
    if not config.exponential_backoff:
        return config.base_delay
    # base_delay * 2 ** 64 is past any usable max_delay
    exponent = min(retry_count, 64)
    return min(config.base_delay * (2 ** exponent), config.max_delay)


def generate_request_id(now: float) -> str:
    return f"retry_{int(now * 1000)}_{uuid.uuid4().hex[:9]}"


class RetryQueueManager:
    """Queues failed attempts and replays them in drain batches.

    Single event loop model: the _draining flag is the only guard needed to
    keep drains from overlapping.
    """

    def __init__(
        self,
        default_config: Optional[RetryConfig] = None,
        follow_up_delay: float = FOLLOW_UP_DELAY_SECONDS,
        max_jitter: float = MAX_JITTER_SECONDS,
        clock: Callable[[], float] = time.time,
        sleep: SleepFunction = asyncio.sleep,
        rng: Callable[[], float] = random.random,
        event_handler: Optional[EventHandler] = None,
    ):
        """Initializes the RetryQueueManager.

        Args:
            default_config: Retry policy used when enqueue() gets no override.
            follow_up_delay: Seconds before the self-scheduled drain that runs
                when items remain after a batch.
            max_jitter: Upper bound of the random delay added per replay.
            clock: Time source returning seconds.
            sleep: Coroutine function used for every wait.
            rng: Returns a float in [0, 1) used for jitter.
            event_handler: Optional receiver for domain events.
        """
        self.default_config = default_config or RetryConfig()
        self.follow_up_delay = follow_up_delay
        self.max_jitter = max_jitter
        self._clock = clock
        self._sleep = sleep
        self._rng = rng
        self._event_handler = event_handler

        self._queue: List[QueuedRequest] = []
        self._draining = False
        self._tasks: Set["asyncio.Task[None]"] = set()
        # Retry calls already invoked; shutdown waits for these instead of cancelling them
        self._invocations: Set["asyncio.Task[None]"] = set()

        logger.info(
            f"RetryQueueManager initialized: max_retries={self.default_config.max_retries}, "
            f"base_delay={self.default_config.base_delay}s, max_delay={self.default_config.max_delay}s, "
            f"exponential={self.default_config.exponential_backoff}"
        )

    # --- Queue contents ---

    def enqueue(
        self,
        retry_function: RetryFunction,
        error: Optional[BaseException] = None,
        config: Optional[RetryConfig] = None,
        **overrides: Any,
    ) -> str:
        """Adds a failed attempt to the queue.

        Args:
            retry_function: Zero-argument callable replaying the attempt.
            error: The failure that caused the enqueue.
            config: Full retry policy replacing the default.
            **overrides: Individual RetryConfig fields replacing those of
                config (or of the default).

        Returns:
            The id of the queued request.

        Raises:
            RetryConditionNotMetError: If the config's retry_condition rejects error.
        """
        snapshot = dataclasses.replace(config or self.default_config, **overrides)

        if snapshot.retry_condition is not None and not snapshot.retry_condition(error):
            logger.debug("Request not added to retry queue: retry condition not met")
            raise RetryConditionNotMetError(error)

        now = self._clock()
        request = QueuedRequest(
            id=generate_request_id(now),
            retry_function=retry_function,
            retry_count=0,
            original_error=error,
            timestamp=now,
            config=snapshot,
        )
        self._queue.append(request)
        logger.info(f"Added request {request.id} to retry queue (queue size: {len(self._queue)})")
        return request.id

    def remove(self, request_id: str) -> bool:
        """Removes a pending request. Items already in a batch are unaffected."""
        before = len(self._queue)
        self._queue = [r for r in self._queue if r.id != request_id]
        removed = len(self._queue) < before
        if removed:
            logger.debug(f"Removed request {request_id} from retry queue")
        return removed

    def clear(self) -> int:
        """Drops all pending requests and returns how many were removed."""
        cleared = len(self._queue)
        self._queue = []
        logger.info(f"Cleared retry queue ({cleared} requests removed)")
        return cleared

    def update_default_config(self, **overrides: Any) -> RetryConfig:
        """Replaces fields of the default config. Queued items keep their snapshot."""
        self.default_config = dataclasses.replace(self.default_config, **overrides)
        logger.info(f"Updated default retry configuration: {self.default_config}")
        return self.default_config

    @property
    def is_draining(self) -> bool:
        return self._draining

    def __len__(self) -> int:
        return len(self._queue)

    def get_stats(self) -> QueueStats:
        """Diagnostic snapshot of the pending queue."""
        return {
            "size": len(self._queue),
            "is_draining": self._draining,
            "items": [
                {
                    "id": r.id,
                    "retry_count": r.retry_count,
                    "enqueued_at": r.timestamp,
                    "max_retries": r.config.max_retries,
                }
                for r in self._queue
            ],
        }

    # --- Draining ---

    def realized_delay(self, request: QueuedRequest) -> float:
        """Backoff delay for request plus a fresh jitter sample."""
        return compute_backoff_delay(request.retry_count, request.config) + self._rng() * self.max_jitter

    def request_drain(self) -> None:
        """Schedules a drain on the running loop. Must be called from the loop."""
        self._track(asyncio.create_task(self.drain()))

    async def drain(self) -> None:
        """Replays every pending request once, concurrently.

        No-op if a drain is already running or nothing is queued. Errors
        from individual replays never propagate out of this method.
        """
        if self._draining or not self._queue:
            return

        self._draining = True
        batch, self._queue = self._queue, []
        logger.info(f"Processing {len(batch)} queued requests after network reconnection")

        try:
            outcomes = await asyncio.gather(*(self._replay(r) for r in batch))
        finally:
            self._draining = False

        succeeded = sum(1 for ok in outcomes if ok)
        failed = len(outcomes) - succeeded
        logger.info(f"Queue processing complete: {succeeded} successful, {failed} failed")
        self._dispatch(DrainCompleted(
            processed=len(batch), succeeded=succeeded, failed=failed, timestamp=self._clock(),
        ))

        if self._queue:
            self._track(asyncio.create_task(self._drain_later(self.follow_up_delay)))

    async def _drain_later(self, delay: float) -> None:
        await self._sleep(delay)
        await self.drain()

    async def _invoke(self, request: QueuedRequest) -> None:
        result = request.retry_function()
        if inspect.isawaitable(result):
            await result

    async def _replay(self, request: QueuedRequest) -> bool:
        """Waits out the item's delay, replays it and settles its outcome.

        Only the delay is cancellable. Once invoked, the retry function runs
        to completion even if the drain is cancelled.
        """
        await self._sleep(self.realized_delay(request))
        attempt = request.retry_count + 1
        logger.debug(f"Retrying request {request.id} (attempt {attempt})")

        invocation = asyncio.create_task(self._invoke(request))
        self._invocations.add(invocation)
        invocation.add_done_callback(self._invocations.discard)

        try:
            await asyncio.shield(invocation)
        except Exception as e:
            logger.warning(f"Request {request.id} retry failed: {describe_error(e)}")
            if attempt < request.config.max_retries:
                self._queue.append(dataclasses.replace(request, retry_count=attempt))
            else:
                logger.error(
                    f"Request {request.id} exceeded max retries ({request.config.max_retries}). "
                    f"Original error: {describe_error(request.original_error)}"
                )
                self._dispatch(RetryDropped(
                    request_id=request.id,
                    attempts=attempt,
                    error_type=type(request.original_error).__name__,
                    error_message=str(request.original_error),
                    timestamp=self._clock(),
                ))
            return False

        logger.debug(f"Request {request.id} retry successful")
        return True

    # --- Lifecycle ---

    def _track(self, task: "asyncio.Task[None]") -> None:
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def join(self) -> None:
        """Waits until every scheduled drain, follow-ups included, has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancels pending delays and scheduled drains, waits for retry calls
        already in progress, then clears the queue."""
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)
        if self._invocations:
            logger.info(f"Waiting for {len(self._invocations)} retry calls in progress")
            await asyncio.gather(*list(self._invocations), return_exceptions=True)
        self.clear()
        logger.info("RetryQueueManager shut down.")

    def _dispatch(self, event: DomainEvent) -> None:
        logger.debug(f"EVENT: {event}")
        if self._event_handler is None:
            return
        try:
            self._event_handler(event)
        except Exception as e:
            logger.error(f"Event handler failed for {type(event).__name__}: {e}", exc_info=True)

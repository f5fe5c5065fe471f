"""Service composing the resilience layer for its callers.

Owns the admission controller, response cache, retry queue and the
connectivity watcher for one client process, and wires them together:
successful results go to the cache (clearing the error streak), failures
are recorded, connectivity failures are queued for replay, and a restored
connectivity edge drains the queue.
"""

import asyncio
import logging
import time
from typing import Any, Callable, Coroutine, Dict, Optional

from resilink.domain.events.resilience_events import (
    CallAdmitted,
    CallDenied,
    ConnectivityRestored,
    DomainEvent,
    RetryEnqueued,
    ServedFromCache,
)
from resilink.domain.interfaces.connectivity import ConnectivityMonitor, ConnectivityState
from resilink.domain.models.common import QueueStats
from resilink.domain.models.resilience import RateLimitPolicy, RetryConfig, RetryFunction
from resilink.infrastructure.cache.response_cache import ResponseCache
from resilink.infrastructure.connectivity.watcher import ConnectivityWatcher
from resilink.infrastructure.resilience.admission import AdmissionController
from resilink.infrastructure.resilience.errors import (
    AdmissionDeniedError,
    RetryConditionNotMetError,
    classify_error,
    is_network_error,
)
from resilink.infrastructure.resilience.retry_queue import RetryQueueManager, SleepFunction
from resilink.infrastructure.resilience.windowed_counter import DEFAULT_WINDOW_SECONDS, WindowedCounter

logger = logging.getLogger(__name__)

EventHandler = Callable[[DomainEvent], None]


class ResilienceService:
    """Admission, caching and connectivity-driven retry for outbound calls."""

    def __init__(
        self,
        policy: Optional[RateLimitPolicy] = None,
        retry_config: Optional[RetryConfig] = None,
        monitor: Optional[ConnectivityMonitor] = None,
        clock: Callable[[], float] = time.time,
        sleep: SleepFunction = asyncio.sleep,
        rng: Optional[Callable[[], float]] = None,
        event_handler: Optional[EventHandler] = None,
    ):
        """Initializes the ResilienceService.

        Args:
            policy: Admission and cache settings; read at decision time.
            retry_config: Default retry policy for queued requests.
            monitor: Connectivity source. Without one the queue only drains
                when drain_retry_queue() is called.
            clock: Time source shared by all components.
            sleep: Coroutine function used for retry delays and the cache sweep.
            rng: Jitter source returning floats in [0, 1).
            event_handler: Optional receiver for domain events.
        """
        self._clock = clock
        self._sleep = sleep
        self._event_handler = event_handler
        self.admission = AdmissionController(policy=policy, clock=clock)
        self.cache = ResponseCache(self.admission, clock=clock)

        queue_kwargs: Dict[str, Any] = {}
        if rng is not None:
            queue_kwargs["rng"] = rng
        self.retry_queue = RetryQueueManager(
            default_config=retry_config,
            clock=clock,
            sleep=sleep,
            event_handler=event_handler,
            **queue_kwargs,
        )

        self.watcher = ConnectivityWatcher(monitor, self._on_restored) if monitor else None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._counters: Dict[str, WindowedCounter] = {}
        self._sweep_task: Optional["asyncio.Task[None]"] = None

    @property
    def policy(self) -> RateLimitPolicy:
        return self.admission.policy

    # --- Lifecycle ---

    async def start(self) -> None:
        """Binds to the running loop, subscribes to connectivity changes and
        schedules the periodic cache sweep."""
        self._loop = asyncio.get_running_loop()
        if self.watcher:
            await self.watcher.start()
        if self._sweep_task is None and self.policy.cache_sweep_interval > 0:
            self._sweep_task = asyncio.create_task(self._sweep_cache_periodically())
        logger.info("ResilienceService started.")

    async def shutdown(self) -> None:
        """Unsubscribes from the monitor, stops the cache sweep and the retry queue."""
        if self.watcher:
            self.watcher.stop()
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None
        await self.retry_queue.shutdown()
        logger.info("ResilienceService shut down.")

    async def __aenter__(self) -> "ResilienceService":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.shutdown()

    async def _sweep_cache_periodically(self) -> None:
        """Removes entries past the maximum age every cache_sweep_interval seconds."""
        while self.policy.cache_sweep_interval > 0:
            await self._sleep(self.policy.cache_sweep_interval)
            removed = self.sweep_expired_cache()
            if removed:
                logger.info(f"Periodic cache sweep removed {removed} expired entries")

    def _on_restored(self, state: ConnectivityState) -> None:
        """Triggers one drain per restored edge, on the service's loop."""
        self._dispatch(ConnectivityRestored(
            is_internet_reachable=state.is_internet_reachable, timestamp=self._clock(),
        ))
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if self._loop is None or running is self._loop:
            self.retry_queue.request_drain()
        else:
            # Monitor reported from another thread
            self._loop.call_soon_threadsafe(self.retry_queue.request_drain)

    # --- Admission and outcome reporting ---

    def is_admitted(self, key: str) -> bool:
        admitted = self.admission.is_admitted(key)
        if admitted:
            self._dispatch(CallAdmitted(
                key=key, interval_seconds=self.admission.effective_interval(key), timestamp=self._clock(),
            ))
        else:
            self._dispatch(CallDenied(
                key=key, retry_in_seconds=self.admission.time_until_admitted(key), timestamp=self._clock(),
            ))
        return admitted

    def record_success(self, key: str) -> None:
        self.admission.record_success(key)

    def record_error(self, key: str, error: Any = None) -> None:
        self.admission.record_error(key, error)

    # --- Response cache ---

    def cache_put(self, key: str, data: Any) -> None:
        self.cache.put(key, data)

    def cache_get(self, key: str) -> Optional[Any]:
        return self.cache.get(key)

    # --- Retry queue ---

    def enqueue_retry(
        self,
        retry_function: RetryFunction,
        error: Optional[BaseException] = None,
        config: Optional[RetryConfig] = None,
        **overrides: Any,
    ) -> str:
        request_id = self.retry_queue.enqueue(retry_function, error, config, **overrides)
        self._dispatch(RetryEnqueued(
            request_id=request_id,
            error_type=type(error).__name__ if error is not None else None,
            timestamp=self._clock(),
        ))
        return request_id

    async def drain_retry_queue(self) -> None:
        """Runs one drain pass now, regardless of connectivity events."""
        await self.retry_queue.drain()

    def get_queue_stats(self) -> QueueStats:
        return self.retry_queue.get_stats()

    # --- Maintenance ---

    def clear_queue(self) -> int:
        return self.retry_queue.clear()

    def reset_rate_limits(self) -> None:
        self.admission.reset_rate_limits()

    def sweep_expired_cache(self) -> int:
        return self.cache.sweep_expired()

    def window_counter(self, name: str, window_duration: float = DEFAULT_WINDOW_SECONDS) -> WindowedCounter:
        """Returns the shared windowed counter for name, creating it on first use."""
        counter = self._counters.get(name)
        if counter is None:
            counter = WindowedCounter(window_duration=window_duration, clock=self._clock)
            self._counters[name] = counter
        return counter

    # --- Orchestration ---

    async def execute(
        self,
        key: str,
        func: Callable[..., Coroutine[Any, Any, Any]],
        *args: Any,
        use_cache_fallback: bool = True,
        enqueue_on_network_error: bool = True,
        retry_config: Optional[RetryConfig] = None,
        **kwargs: Any
    ) -> Any:
        """Runs an async call for operation key under admission control.

        Args:
            key: Operation key for admission, caching and error tracking.
            func: The async function (remote call) to execute.
            *args: Positional arguments for the function.
            use_cache_fallback: Serve cached data when the call is denied or fails.
            enqueue_on_network_error: Queue a replay when the call fails
                because the network is unreachable.
            retry_config: Retry policy for the queued replay.
            **kwargs: Keyword arguments for the function.

        Returns:
            The live result, or cached data when falling back.

        Raises:
            AdmissionDeniedError: If the call is denied and nothing is cached.
            Exception: The call's own failure when no cached data is available.
        """
        if not self.is_admitted(key):
            cached = self.cache.get(key) if use_cache_fallback else None
            if cached is not None:
                self._dispatch(ServedFromCache(key=key, reason="denied", timestamp=self._clock()))
                return cached
            raise AdmissionDeniedError(key, self.admission.time_until_admitted(key))

        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            kind = classify_error(e)
            logger.warning(f"Call to {key} failed ({kind.value}): {type(e).__name__}")
            self.record_error(key, e)

            if enqueue_on_network_error and is_network_error(e):
                self._enqueue_replay(key, func, args, kwargs, e, retry_config)

            cached = self.cache.get(key) if use_cache_fallback else None
            if cached is not None:
                self._dispatch(ServedFromCache(key=key, reason="failed", timestamp=self._clock()))
                return cached
            raise

        self.cache.put(key, result)
        return result

    def _enqueue_replay(
        self,
        key: str,
        func: Callable[..., Coroutine[Any, Any, Any]],
        args: tuple,
        kwargs: Dict[str, Any],
        error: Exception,
        retry_config: Optional[RetryConfig],
    ) -> Optional[str]:
        async def replay() -> Any:
            logger.debug(f"Replaying previously failed call to {key}")
            result = await func(*args, **kwargs)
            self.cache.put(key, result)
            return result

        config = retry_config or self.retry_queue.default_config
        overrides: Dict[str, Any] = {}
        if config.retry_condition is None:
            overrides["retry_condition"] = is_network_error

        try:
            request_id = self.retry_queue.enqueue(replay, error, config, **overrides)
        except RetryConditionNotMetError:
            logger.warning(f"Call to {key} not queued for retry: retry condition not met")
            return None

        self._dispatch(RetryEnqueued(
            request_id=request_id, key=key, error_type=type(error).__name__, timestamp=self._clock(),
        ))
        logger.info(f"Call to {key} will be retried when network connection is restored")
        return request_id

    # --- Persistence ---

    def snapshot(self) -> Dict[str, Any]:
        """Plain-dict copy of per-key state (the retry queue is not included)."""
        state = self.admission.snapshot()
        state["cache"] = self.cache.snapshot()
        return state

    def restore(self, snapshot: Dict[str, Any]) -> None:
        self.admission.restore(snapshot)
        self.cache.restore(snapshot.get("cache", {}))

    def _dispatch(self, event: DomainEvent) -> None:
        logger.debug(f"EVENT: {event}")
        if self._event_handler is None:
            return
        try:
            self._event_handler(event)
        except Exception as e:
            logger.error(f"Event handler failed for {type(event).__name__}: {e}", exc_info=True)

import asyncio

import httpx
import pytest

from resilink.core.resilience_service import ResilienceService
from resilink.domain.events.resilience_events import (
    CallAdmitted,
    CallDenied,
    ConnectivityRestored,
    RetryEnqueued,
    ServedFromCache,
)
from resilink.infrastructure.resilience.errors import AdmissionDeniedError


class FlakyCall:
    """Async remote call that fails with the given error a number of times."""

    def __init__(self, error: Exception = None, failures: int = 0, result="payload"):
        self.error = error or ConnectionError("network error")
        self.failures = failures
        self.result = result
        self.calls = []

    async def __call__(self, *args, **kwargs):
        self.calls.append((args, kwargs))
        if len(self.calls) <= self.failures:
            raise self.error
        return self.result


def rate_limited_error() -> httpx.HTTPStatusError:
    request = httpx.Request("GET", "https://api.test/messages")
    response = httpx.Response(429, request=request)
    return httpx.HTTPStatusError("Too Many Requests", request=request, response=response)


@pytest.fixture
def events():
    return []


@pytest.fixture
def service(policy, retry_config, monitor, clock, sleep, events):
    return ResilienceService(
        policy=policy,
        retry_config=retry_config,
        monitor=monitor,
        clock=clock,
        sleep=sleep,
        rng=lambda: 0.0,
        event_handler=events.append,
    )


@pytest.mark.asyncio
async def test_execute_success_caches_result_and_passes_arguments(service: ResilienceService):
    call = FlakyCall(result={"items": [1]})

    result = await service.execute("profile", call, "user-1", page=2)

    assert result == {"items": [1]}
    assert call.calls == [(("user-1",), {"page": 2})]
    assert service.cache_get("profile") == {"items": [1]}
    assert service.admission.error_stats("profile").successes == 1


@pytest.mark.asyncio
async def test_success_clears_error_streak(service: ResilienceService, clock):
    call = FlakyCall(error=ValueError("bad"), failures=1)
    with pytest.raises(ValueError):
        await service.execute("profile", call)
    assert service.admission.error_stats("profile").consecutive_errors == 1

    clock.advance(60.0)
    await service.execute("profile", call)
    assert service.admission.error_stats("profile").consecutive_errors == 0


@pytest.mark.asyncio
async def test_denied_call_serves_cached_data(service: ResilienceService, events):
    await service.execute("profile", FlakyCall(result="fresh"))
    second = FlakyCall(result="newer")

    result = await service.execute("profile", second)

    assert result == "fresh"
    assert second.calls == []
    assert isinstance(events[-1], ServedFromCache)
    assert events[-1].reason == "denied"
    assert any(isinstance(e, CallDenied) for e in events)


@pytest.mark.asyncio
async def test_denied_call_without_cache_raises(service: ResilienceService, clock):
    assert service.is_admitted("profile") is True
    clock.advance(2.0)

    with pytest.raises(AdmissionDeniedError) as exc_info:
        await service.execute("profile", FlakyCall())

    assert exc_info.value.key == "profile"
    assert exc_info.value.retry_in == pytest.approx(3.0)


@pytest.mark.asyncio
async def test_denied_call_ignores_cache_when_fallback_disabled(service: ResilienceService):
    await service.execute("profile", FlakyCall())

    with pytest.raises(AdmissionDeniedError):
        await service.execute("profile", FlakyCall(), use_cache_fallback=False)


@pytest.mark.asyncio
async def test_network_failure_is_queued_and_falls_back_to_cache(service: ResilienceService, clock, events):
    await service.execute("profile", FlakyCall(result="cached"))
    clock.advance(10.0)

    result = await service.execute("profile", FlakyCall(failures=1))

    assert result == "cached"
    assert service.get_queue_stats()["size"] == 1
    enqueued = [e for e in events if isinstance(e, RetryEnqueued)]
    assert enqueued[0].key == "profile"
    assert enqueued[0].error_type == "ConnectionError"
    assert events[-1] == ServedFromCache(key="profile", reason="failed", timestamp=events[-1].timestamp)


@pytest.mark.asyncio
async def test_network_failure_without_cache_is_raised(service: ResilienceService):
    with pytest.raises(ConnectionError):
        await service.execute("profile", FlakyCall(failures=1))
    assert len(service.retry_queue) == 1


@pytest.mark.asyncio
async def test_rate_limited_failure_is_not_queued(service: ResilienceService):
    with pytest.raises(httpx.HTTPStatusError):
        await service.execute("profile", FlakyCall(error=rate_limited_error(), failures=1))

    assert len(service.retry_queue) == 0
    assert service.admission.error_stats("profile").consecutive_errors == 1


@pytest.mark.asyncio
async def test_queueing_can_be_disabled(service: ResilienceService):
    with pytest.raises(ConnectionError):
        await service.execute("profile", FlakyCall(failures=1), enqueue_on_network_error=False)
    assert len(service.retry_queue) == 0


@pytest.mark.asyncio
async def test_restored_connectivity_replays_queued_call(service: ResilienceService, monitor, events):
    call = FlakyCall(failures=1, result="replayed")
    await service.start()

    with pytest.raises(ConnectionError):
        await service.execute("fetch-conversations", call)

    monitor.set_state(True, True)
    await service.retry_queue.join()

    assert len(call.calls) == 2
    assert len(service.retry_queue) == 0
    assert service.cache_get("fetch-conversations") == "replayed"
    assert any(isinstance(e, ConnectivityRestored) for e in events)

    await service.shutdown()


@pytest.mark.asyncio
async def test_no_drain_without_restored_edge(service: ResilienceService, monitor):
    call = FlakyCall(failures=1)
    await service.start()
    with pytest.raises(ConnectionError):
        await service.execute("profile", call)

    monitor.set_state(True, False)
    await service.retry_queue.join()

    assert len(call.calls) == 1
    assert len(service.retry_queue) == 1
    await service.shutdown()


@pytest.mark.asyncio
async def test_manual_drain_without_monitor(policy, retry_config, clock, sleep):
    service = ResilienceService(policy=policy, retry_config=retry_config, clock=clock, sleep=sleep, rng=lambda: 0.0)
    replayed = []
    service.enqueue_retry(lambda: replayed.append(True), ConnectionError("offline"))

    await service.drain_retry_queue()

    assert replayed == [True]


@pytest.mark.asyncio
async def test_shutdown_unsubscribes_and_clears_queue(service: ResilienceService, monitor):
    async with service:
        assert monitor.subscriber_count == 1
        service.enqueue_retry(FlakyCall(), ConnectionError("offline"))

    assert monitor.subscriber_count == 0
    assert len(service.retry_queue) == 0


def test_is_admitted_emits_events(service: ResilienceService, events):
    assert service.is_admitted("unread-count") is True
    assert service.is_admitted("unread-count") is False

    assert isinstance(events[0], CallAdmitted)
    assert events[0].interval_seconds == 30.0
    assert isinstance(events[1], CallDenied)
    assert events[1].retry_in_seconds == 30.0


def test_failing_event_handler_does_not_break_calls(policy, clock):
    def broken(event):
        raise RuntimeError("handler bug")

    service = ResilienceService(policy=policy, clock=clock, event_handler=broken)
    assert service.is_admitted("profile") is True


def test_window_counter_registry_shares_instances(service: ResilienceService, clock):
    counter = service.window_counter("ai-requests", window_duration=30.0)
    counter.increment()

    assert service.window_counter("ai-requests") is counter
    assert service.window_counter("other") is not counter
    assert counter.window_duration == 30.0


def test_snapshot_round_trip_restores_state(service: ResilienceService, policy, clock):
    service.is_admitted("fetch-conversations")
    for _ in range(3):
        service.record_error("fetch-conversations", ConnectionError("offline"))
    service.cache_put("unread-count", 4)

    snapshot = service.snapshot()
    restored = ResilienceService(policy=policy, clock=clock)
    restored.restore(snapshot)

    assert restored.snapshot() == snapshot
    assert restored.admission.base_interval("fetch-conversations") == 22.5
    assert restored.cache_get("unread-count") == 4
    assert restored.is_admitted("fetch-conversations") is False


def test_sweep_and_reset_maintenance(service: ResilienceService, clock):
    for _ in range(3):
        service.record_error("fetch-conversations", ConnectionError("offline"))
    service.cache_put("profile", "old")
    clock.advance(90000.0)

    assert service.sweep_expired_cache() == 1
    service.reset_rate_limits()
    assert service.admission.base_interval("fetch-conversations") == 15.0


@pytest.mark.asyncio
async def test_start_schedules_periodic_cache_sweep(policy, clock, sleep):
    service = ResilienceService(policy=policy, clock=clock, sleep=sleep)
    service.cache_put("profile", "old")
    clock.advance(policy.cache_max_age + 1.0)

    await service.start()
    for _ in range(3):
        await asyncio.sleep(0)

    assert "profile" not in service.cache
    assert sleep.delays[0] == policy.cache_sweep_interval

    await service.shutdown()
    swept = len(sleep.delays)
    for _ in range(3):
        await asyncio.sleep(0)
    assert len(sleep.delays) == swept


@pytest.mark.asyncio
async def test_periodic_sweep_disabled_by_zero_interval(policy, clock, sleep):
    policy.cache_sweep_interval = 0.0
    service = ResilienceService(policy=policy, clock=clock, sleep=sleep)
    service.cache_put("profile", "old")
    clock.advance(policy.cache_max_age + 1.0)

    async with service:
        for _ in range(3):
            await asyncio.sleep(0)
        assert "profile" in service.cache
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_events_carry_injected_clock_time(service: ResilienceService, clock, events):
    await service.execute("profile", FlakyCall())
    clock.advance(1.0)
    await service.execute("profile", FlakyCall())

    assert [type(e) for e in events] == [CallAdmitted, CallDenied, ServedFromCache]
    assert [e.timestamp for e in events] == [1000.0, 1001.0, 1001.0]

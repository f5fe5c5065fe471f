import pytest

from resilink.domain.models.resilience import RateLimitPolicy
from resilink.infrastructure.resilience.admission import AdmissionController

KEY = "fetch-profile"  # not in base_intervals: uses the 5s default


def test_calls_inside_interval_are_denied(admission: AdmissionController, clock):
    start = clock.now
    assert admission.is_admitted(KEY) is True
    clock.now = start + 4.0
    assert admission.is_admitted(KEY) is False


def test_calls_after_interval_are_admitted(admission: AdmissionController, clock):
    start = clock.now
    assert admission.is_admitted(KEY) is True
    clock.now = start + 5.001
    assert admission.is_admitted(KEY) is True


def test_denied_check_does_not_touch_call_record(admission: AdmissionController, clock):
    start = clock.now
    admission.is_admitted(KEY)
    for offset in (1.0, 2.0, 4.9):
        clock.now = start + offset
        assert admission.is_admitted(KEY) is False
    assert admission.last_call_time(KEY) == start
    clock.now = start + 5.0
    assert admission.is_admitted(KEY) is True


def test_backoff_scales_by_one_and_a_half_per_error(admission: AdmissionController, clock):
    start = clock.now
    assert admission.is_admitted(KEY) is True
    for _ in range(3):
        admission.record_error(KEY, RuntimeError("boom"))

    assert admission.effective_interval(KEY) == pytest.approx(5.0 * 1.5 ** 2)
    clock.now = start + 11.0
    assert admission.is_admitted(KEY) is False
    clock.now = start + 11.25
    assert admission.is_admitted(KEY) is True


def test_single_error_keeps_base_interval(admission: AdmissionController):
    admission.record_error(KEY, RuntimeError("boom"))
    assert admission.effective_interval(KEY) == 5.0


def test_single_error_is_not_capped_below_configured_interval(policy: RateLimitPolicy, admission: AdmissionController):
    policy.max_backoff = 10.0
    admission.record_error("unread-count", RuntimeError("boom"))
    assert admission.effective_interval("unread-count") == 30.0

    admission.record_error("unread-count", RuntimeError("boom"))
    assert admission.effective_interval("unread-count") == 10.0


def test_backoff_is_capped_by_max_backoff(policy: RateLimitPolicy, admission: AdmissionController):
    policy.max_backoff = 20.0
    for _ in range(10):
        admission.record_error(KEY)
    assert admission.effective_interval(KEY) == 20.0


def test_success_resets_error_streak(admission: AdmissionController):
    for _ in range(4):
        admission.record_error(KEY)
    admission.record_success(KEY)

    stats = admission.error_stats(KEY)
    assert stats.consecutive_errors == 0
    assert stats.errors == 4
    assert stats.successes == 1
    assert admission.effective_interval(KEY) == 5.0


def test_error_streak_survives_passing_time(admission: AdmissionController, clock):
    admission.record_error(KEY)
    admission.record_error(KEY)
    clock.advance(10_000)
    assert admission.error_stats(KEY).consecutive_errors == 2


def test_record_error_sets_last_error_time(admission: AdmissionController, clock):
    clock.now = 1234.5
    admission.record_error(KEY, ValueError("bad"))
    assert admission.error_stats(KEY).last_error_time == 1234.5


def test_global_minimum_floors_the_interval(policy: RateLimitPolicy, admission: AdmissionController):
    assert admission.effective_interval(KEY) == 5.0
    policy.min_interval = 10.0
    assert admission.effective_interval(KEY) == 10.0
    assert admission.effective_interval("fetch-conversations") == 15.0


def test_sustained_errors_escalate_dynamic_interval(admission: AdmissionController):
    key = "fetch-conversations"
    admission.record_error(key)
    admission.record_error(key)
    assert admission.base_interval(key) == 15.0

    admission.record_error(key)
    assert admission.base_interval(key) == pytest.approx(22.5)
    admission.record_error(key)
    assert admission.base_interval(key) == pytest.approx(33.75)


def test_escalation_is_capped_by_ceiling(admission: AdmissionController):
    key = "unread-count"
    for _ in range(20):
        admission.record_error(key)
    assert admission.base_interval(key) == 120.0


def test_escalation_persists_after_success(admission: AdmissionController):
    key = "fetch-conversations"
    for _ in range(3):
        admission.record_error(key)
    admission.record_success(key)
    assert admission.base_interval(key) == pytest.approx(22.5)


def test_keys_without_configured_interval_never_escalate(admission: AdmissionController):
    for _ in range(10):
        admission.record_error(KEY)
    assert admission.base_interval(KEY) == 5.0


def test_reset_rate_limits_restores_configured_intervals(admission: AdmissionController):
    key = "fetch-conversations"
    for _ in range(5):
        admission.record_error(key)
    assert admission.base_interval(key) > 15.0

    admission.reset_rate_limits()
    assert admission.base_interval(key) == 15.0


def test_time_until_admitted(admission: AdmissionController, clock):
    assert admission.time_until_admitted(KEY) == 0.0
    admission.is_admitted(KEY)
    clock.advance(2.0)
    assert admission.time_until_admitted(KEY) == pytest.approx(3.0)


def test_restore_replaces_state(admission: AdmissionController, policy: RateLimitPolicy, clock):
    key = "fetch-conversations"
    admission.is_admitted(key)
    for _ in range(3):
        admission.record_error(key)
    snapshot = admission.snapshot()

    restored = AdmissionController(policy=policy, clock=clock)
    restored.restore(snapshot)

    assert restored.last_call_time(key) == clock.now
    assert restored.error_stats(key).consecutive_errors == 3
    assert restored.base_interval(key) == pytest.approx(22.5)
    assert restored.is_admitted(key) is False

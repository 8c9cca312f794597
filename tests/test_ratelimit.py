from __future__ import annotations

import pytest

from handscore.ratelimit import FixedWindowRateLimiter, get_rate_limiter
from handscore.settings import settings


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_fixed_window_admits_up_to_max_then_resets_after_expiry() -> None:
    clock = FakeClock()
    limiter = FixedWindowRateLimiter(max_requests=2, window_seconds=1.0, clock=clock)

    assert limiter.check("student-1", "evaluations") is True
    clock.now = 0.4
    assert limiter.check("student-1", "evaluations") is True
    clock.now = 0.9
    assert limiter.check("student-1", "evaluations") is False

    clock.now = 1.5
    assert limiter.check("student-1", "evaluations") is True
    window = limiter.window("student-1", "evaluations")
    assert window is not None
    assert window.count == 1
    assert window.reset_at == pytest.approx(2.5)


def test_keys_are_independent_per_subject_and_resource() -> None:
    limiter = FixedWindowRateLimiter(max_requests=1, window_seconds=60, clock=FakeClock())

    assert limiter.check("a", "evaluations") is True
    assert limiter.check("a", "evaluations") is False
    assert limiter.check("b", "evaluations") is True
    assert limiter.check("a", "questions") is True


def test_rejected_requests_do_not_extend_the_window() -> None:
    clock = FakeClock()
    limiter = FixedWindowRateLimiter(max_requests=1, window_seconds=10, clock=clock)

    limiter.check("a", "evaluations")
    clock.now = 4
    assert limiter.check("a", "evaluations") is False

    assert limiter.retry_after("a", "evaluations") == pytest.approx(6)
    assert limiter.retry_after("unknown", "evaluations") == 0.0


def test_window_boundary_burst_admits_double_rate() -> None:
    clock = FakeClock()
    limiter = FixedWindowRateLimiter(max_requests=3, window_seconds=10, clock=clock)

    clock.now = 0
    limiter.check("a", "evaluations")
    clock.now = 9.9
    admitted = [limiter.check("a", "evaluations") for _ in range(2)]
    clock.now = 10.1
    admitted += [limiter.check("a", "evaluations") for _ in range(3)]

    assert admitted == [True] * 5


def test_invalid_configuration_is_rejected() -> None:
    with pytest.raises(ValueError):
        FixedWindowRateLimiter(max_requests=0, window_seconds=1)
    with pytest.raises(ValueError):
        FixedWindowRateLimiter(max_requests=1, window_seconds=0)


def test_shared_limiter_reads_settings(monkeypatch) -> None:
    monkeypatch.setattr(settings, "rate_limit_max_requests", 7)
    monkeypatch.setattr(settings, "rate_limit_window_seconds", 30.0)

    limiter = get_rate_limiter()

    assert limiter.max_requests == 7
    assert limiter.window_seconds == 30.0
    assert get_rate_limiter() is limiter


def test_subject_and_resource_are_not_joined_into_one_counter() -> None:
    limiter = FixedWindowRateLimiter(max_requests=1, window_seconds=60, clock=FakeClock())

    assert limiter.check("a:b", "c") is True
    assert limiter.check("a", "b:c") is True
    assert limiter.check("a:b", "c") is False


def test_expired_windows_are_dropped() -> None:
    clock = FakeClock()
    limiter = FixedWindowRateLimiter(max_requests=1, window_seconds=1.0, clock=clock)
    for subject in ("s1", "s2", "s3"):
        limiter.check(subject, "evaluations")
    assert limiter.tracked_keys == 3

    clock.now = 2.5
    assert limiter.check("s4", "evaluations") is True

    assert limiter.tracked_keys == 1
    assert limiter.window("s1", "evaluations") is None

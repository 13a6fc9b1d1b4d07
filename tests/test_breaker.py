"""Tests for concord/breaker.py."""

from concord.breaker import BackendRegistry, BreakerState, CircuitBreaker, default_registry


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_closed_breaker_allows_requests():
    breaker = CircuitBreaker()
    assert breaker.allow_request()
    assert breaker.state == BreakerState.CLOSED


def test_opens_after_threshold_failures():
    clock = FakeClock()
    breaker = CircuitBreaker(failure_threshold=2, cooldown_sec=45, clock=clock)

    breaker.record_failure()
    assert breaker.state == BreakerState.CLOSED
    breaker.record_failure()

    assert breaker.state == BreakerState.OPEN
    assert not breaker.allow_request()
    assert breaker.snapshot().cooldown_remaining_sec == 45


def test_success_resets_failure_count():
    breaker = CircuitBreaker(failure_threshold=2)
    breaker.record_failure()
    breaker.record_success()
    breaker.record_failure()
    assert breaker.state == BreakerState.CLOSED
    assert breaker.snapshot().consecutive_failures == 1


def test_half_open_allows_single_probe():
    clock = FakeClock()
    breaker = CircuitBreaker(failure_threshold=1, cooldown_sec=10, clock=clock)
    breaker.record_failure()

    clock.now += 10
    assert breaker.allow_request()
    assert breaker.state == BreakerState.HALF_OPEN
    assert not breaker.allow_request()


def test_successful_probe_closes():
    clock = FakeClock()
    breaker = CircuitBreaker(failure_threshold=1, cooldown_sec=10, clock=clock)
    breaker.record_failure()
    clock.now += 11
    breaker.allow_request()

    breaker.record_success()

    assert breaker.state == BreakerState.CLOSED
    assert breaker.allow_request()


def test_failed_probe_reopens_for_full_cooldown():
    clock = FakeClock()
    breaker = CircuitBreaker(failure_threshold=3, cooldown_sec=10, clock=clock)
    for _ in range(3):
        breaker.record_failure()
    clock.now += 10
    breaker.allow_request()

    breaker.record_failure()

    assert breaker.state == BreakerState.OPEN
    assert breaker.snapshot().cooldown_remaining_sec == 10
    assert not breaker.allow_request()


def test_released_probe_can_be_retried():
    clock = FakeClock()
    breaker = CircuitBreaker(failure_threshold=1, cooldown_sec=10, clock=clock)
    breaker.record_failure()
    clock.now += 10
    assert breaker.allow_request()

    breaker.release_probe()

    assert breaker.allow_request()


def test_registry_shares_breaker_per_identity():
    registry = BackendRegistry()
    assert registry.breaker("cli:claude") is registry.breaker("cli:claude")
    assert registry.breaker("cli:claude") is not registry.breaker("openai")


def test_default_registry_is_a_singleton():
    assert default_registry() is default_registry()

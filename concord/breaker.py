"""Circuit breakers and the registry that owns per-backend shared state."""

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from concord.lanes import BackendLanes

logger = logging.getLogger(__name__)

DEFAULT_FAILURE_THRESHOLD = 2
DEFAULT_COOLDOWN_SEC = 45.0


class BreakerState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class BreakerSnapshot:
    state: BreakerState
    consecutive_failures: int
    cooldown_remaining_sec: float


class CircuitBreaker:
    """Consecutive-failure breaker for one backend identity.

    Closed: every request allowed, failures counted. At ``failure_threshold``
    consecutive failures the breaker opens and rejects requests for
    ``cooldown_sec``. Once the cooldown has elapsed exactly one probe is let
    through (half-open). A success at any point closes the breaker; a failed
    probe reopens it for another cooldown.
    """

    def __init__(
        self,
        failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
        cooldown_sec: float = DEFAULT_COOLDOWN_SEC,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._failure_threshold = max(1, failure_threshold)
        self._cooldown_sec = max(0.0, cooldown_sec)
        self._clock = clock
        self._state = BreakerState.CLOSED
        self._consecutive_failures = 0
        self._opened_at: float | None = None
        self._probe_in_flight = False

    @property
    def state(self) -> BreakerState:
        return self._state

    def allow_request(self) -> bool:
        if self._state == BreakerState.CLOSED:
            return True
        if self._state == BreakerState.OPEN:
            if self._opened_at is not None and self._clock() - self._opened_at < self._cooldown_sec:
                return False
            self._state = BreakerState.HALF_OPEN
            self._probe_in_flight = True
            return True
        if self._probe_in_flight:
            return False
        self._probe_in_flight = True
        return True

    def record_success(self) -> None:
        if self._state != BreakerState.CLOSED:
            logger.info("Circuit closed after successful probe")
        self._state = BreakerState.CLOSED
        self._consecutive_failures = 0
        self._opened_at = None
        self._probe_in_flight = False

    def record_failure(self) -> None:
        self._consecutive_failures += 1
        self._probe_in_flight = False
        if self._state == BreakerState.HALF_OPEN or self._consecutive_failures >= self._failure_threshold:
            if self._state != BreakerState.OPEN:
                logger.warning(
                    "Circuit opened after %d consecutive failure(s); cooling down %.0fs",
                    self._consecutive_failures,
                    self._cooldown_sec,
                )
            self._state = BreakerState.OPEN
            self._opened_at = self._clock()

    def release_probe(self) -> None:
        """Forget an in-flight probe whose call was cancelled before it finished."""
        self._probe_in_flight = False

    def snapshot(self) -> BreakerSnapshot:
        remaining = 0.0
        if self._state == BreakerState.OPEN and self._opened_at is not None:
            remaining = max(0.0, self._cooldown_sec - (self._clock() - self._opened_at))
        return BreakerSnapshot(self._state, self._consecutive_failures, remaining)


class BackendRegistry:
    """Breakers and serialization lanes keyed by backend identity.

    Instantiate one per test for isolation; ``default_registry()`` returns the
    process-wide instance an ``Invoker`` falls back to.
    """

    def __init__(
        self,
        failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
        cooldown_sec: float = DEFAULT_COOLDOWN_SEC,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._failure_threshold = failure_threshold
        self._cooldown_sec = cooldown_sec
        self._clock = clock
        self._breakers: dict[str, CircuitBreaker] = {}
        self._guard = threading.Lock()
        self.lanes = BackendLanes()

    def breaker(self, identity: str) -> CircuitBreaker:
        with self._guard:
            breaker = self._breakers.get(identity)
            if breaker is None:
                breaker = self._breakers[identity] = CircuitBreaker(
                    self._failure_threshold, self._cooldown_sec, self._clock
                )
            return breaker


_default_registry: BackendRegistry | None = None
_default_guard = threading.Lock()


def default_registry() -> BackendRegistry:
    global _default_registry
    with _default_guard:
        if _default_registry is None:
            _default_registry = BackendRegistry()
        return _default_registry

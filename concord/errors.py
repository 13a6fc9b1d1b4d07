"""Error taxonomy for the debate core."""


class ConcordError(Exception):
    """Base for all errors raised by the debate core."""


class InvalidRequest(ConcordError):
    """Bad START arguments or configuration. Never retried."""


class InvocationError(ConcordError):
    """A participant or judge invocation did not produce usable text."""

    def __init__(self, backend_id: str, message: str) -> None:
        self.backend_id = backend_id
        super().__init__(f"[{backend_id}] {message}")


class InvocationTimeout(InvocationError):
    """The call exceeded its hard deadline."""


class InvocationFailure(InvocationError):
    """Transport or process error reported by the backend."""


class QualityRejected(InvocationError):
    """Output failed the quality gate, including after the correction retry."""


class CircuitOpen(InvocationError):
    """The backend's circuit breaker rejected the request without calling it."""


class AllCandidatesExhausted(InvocationError):
    """Every backend in an auto-routed fallback chain failed."""

    def __init__(self, backend_id: str, attempts: int) -> None:
        self.attempts = attempts
        super().__init__(backend_id, f"All {attempts} candidate attempt(s) failed")

"""Resilient invocation: turns "ask backend X" into a call that survives bad days.

One ``invoke`` walks the route's candidates (a single explicit backend, or an
auto route's primary plus fallbacks). Each attempt waits for the backend's
serialization lane, then checks its circuit breaker, calls it under a hard
deadline and passes the reply through the quality gate, with one
correction retry. Failures are returned, never raised.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum

from config.config_loader import RoutingConfig
from concord import quality
from concord.breaker import BackendRegistry, default_registry
from concord.errors import (
    AllCandidatesExhausted,
    CircuitOpen,
    InvocationError,
    InvocationFailure,
    InvocationTimeout,
    QualityRejected,
)
from concord.models import Participant
from concord.providers.base import Backend, ProviderError
from concord.routing import RouteDecision, decide_route, is_auto

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SEC = 120.0
DEFAULT_CORRECTION_TEMPLATE = (
    "{request}\n\nQuality correction:\nThe previous draft did not comply with the request above.\n\n"
    "Previous draft:\n{draft}\n\nRespond again now with strict compliance."
)


class AttemptOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    TIMEOUT = "timeout"
    CIRCUIT_OPEN = "circuit-open"
    QUALITY_REJECTED = "quality-rejected"


@dataclass(frozen=True)
class Attempt:
    backend_id: str
    outcome: AttemptOutcome
    error: str | None = None
    duration_ms: int = 0


@dataclass
class InvocationTrace:
    requested_backend: str
    route: RouteDecision
    attempts: list[Attempt] = field(default_factory=list)
    selected_backend: str | None = None
    fallback_used: bool = False


@dataclass(frozen=True)
class InvocationResult:
    text: str | None
    error: InvocationError | None
    trace: InvocationTrace

    @property
    def ok(self) -> bool:
        return self.error is None


def _outcome_for(error: InvocationError) -> AttemptOutcome:
    if isinstance(error, InvocationTimeout):
        return AttemptOutcome.TIMEOUT
    if isinstance(error, QualityRejected):
        return AttemptOutcome.QUALITY_REJECTED
    if isinstance(error, CircuitOpen):
        return AttemptOutcome.CIRCUIT_OPEN
    return AttemptOutcome.FAILURE


class Invoker:
    """Calls backends by id on behalf of participants and the judge.

    Args:
        backends: Backend adapters keyed by backend id.
        registry: Shared breakers and lanes; the process default when omitted.
        routing: Route table for auto ids. Auto requests fail without it.
        correction_template: Prompt for the quality correction retry, with
            ``{request}`` and ``{draft}`` placeholders.
        timeout_sec: Hard deadline per backend call.
        sleep: Awaitable used for retry backoff (injectable for tests).
    """

    def __init__(
        self,
        backends: Mapping[str, Backend],
        *,
        registry: BackendRegistry | None = None,
        routing: RoutingConfig | None = None,
        correction_template: str = DEFAULT_CORRECTION_TEMPLATE,
        timeout_sec: float = DEFAULT_TIMEOUT_SEC,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._backends = dict(backends)
        self._registry = registry or default_registry()
        self._routing = routing
        self._correction_template = correction_template
        self._timeout_sec = timeout_sec
        self._sleep = sleep

    @property
    def registry(self) -> BackendRegistry:
        return self._registry

    def backend_ids(self) -> list[str]:
        return list(self._backends)

    def knows(self, backend_id: str) -> bool:
        return backend_id in self._backends or (is_auto(backend_id) and self._routing is not None)

    async def invoke(
        self,
        participant: Participant,
        prompt: str,
        prior_history: Sequence[str] = (),
        *,
        request: str | None = None,
        system_prompt: str | None = None,
        max_retries: int = 0,
        retry_backoff_ms: int = 0,
        strict_shape: bool = True,
    ) -> InvocationResult:
        """Ask the participant's backend to answer ``prompt``.

        Args:
            participant: Whose backend id (explicit or auto) to route.
            prompt: Fully rendered prompt text.
            prior_history: Earlier user-facing messages, oldest first.
            request: The latest user-facing message the reply is judged
                against by routing and the quality gate (defaults to prompt).
            system_prompt: Overrides the participant's own system prompt.
            max_retries: Extra attempts for an explicit backend after a failure.
            retry_backoff_ms: First backoff delay; doubles per retry.
            strict_shape: Apply the quality gate's shape rules; free-form
                requests pass False.

        Returns:
            InvocationResult with text on success, error otherwise. Only
            cancellation propagates.
        """
        request = request if request is not None else prompt
        system_prompt = system_prompt if system_prompt is not None else participant.system_prompt
        requested = participant.backend_id

        if is_auto(requested) and self._routing is None:
            trace = InvocationTrace(requested, RouteDecision(is_auto=True, primary=requested))
            return InvocationResult(None, InvocationFailure(requested, "No routing table configured"), trace)

        decision = decide_route(requested, [*prior_history, request], self._routing)
        trace = InvocationTrace(requested_backend=requested, route=decision)

        if decision.is_auto:
            for backend_id in decision.candidates:
                text, _ = await self._attempt(backend_id, prompt, system_prompt, request, trace, strict_shape)
                if text is not None:
                    trace.selected_backend = backend_id
                    trace.fallback_used = backend_id != decision.primary
                    if trace.fallback_used:
                        logger.info("Auto route for %s fell back to %s", participant.title, backend_id)
                    return InvocationResult(text, None, trace)
            error = AllCandidatesExhausted(requested, len(trace.attempts))
            logger.warning("%s: %s", participant.title, error)
            return InvocationResult(None, error, trace)

        backend_id = decision.primary
        retries = 0
        while True:
            text, error = await self._attempt(backend_id, prompt, system_prompt, request, trace, strict_shape)
            if text is not None:
                trace.selected_backend = backend_id
                return InvocationResult(text, None, trace)
            if isinstance(error, CircuitOpen) or retries >= max_retries:
                return InvocationResult(None, error, trace)
            retries += 1
            delay = retry_backoff_ms * 2 ** (retries - 1) / 1000
            logger.info(
                "Retrying %s for %s (%d/%d) in %.2fs",
                backend_id,
                participant.title,
                retries,
                max_retries,
                delay,
            )
            await self._sleep(delay)

    async def _attempt(
        self,
        backend_id: str,
        prompt: str,
        system_prompt: str | None,
        request: str,
        trace: InvocationTrace,
        strict_shape: bool,
    ) -> tuple[str | None, InvocationError | None]:
        backend = self._backends.get(backend_id)
        if backend is None:
            error = InvocationFailure(backend_id, "Unknown backend")
            trace.attempts.append(Attempt(backend_id, AttemptOutcome.FAILURE, str(error)))
            return None, error

        identity = backend.identity()
        breaker = self._registry.breaker(identity)
        admitted = False
        start = time.monotonic()
        try:
            async with self._registry.lanes.hold(identity):
                # Breaker is consulted only once the lane is held.
                admitted = breaker.allow_request()
                if admitted:
                    text = await self._call_with_quality(backend, prompt, system_prompt, request, strict_shape)
        except asyncio.CancelledError:
            if admitted:
                breaker.release_probe()
            raise
        except InvocationError as exc:
            breaker.record_failure()
            duration_ms = int((time.monotonic() - start) * 1000)
            trace.attempts.append(Attempt(backend_id, _outcome_for(exc), str(exc), duration_ms))
            logger.warning("Attempt on %s failed after %dms: %s", backend_id, duration_ms, exc)
            return None, exc

        if not admitted:
            error = CircuitOpen(backend_id, "Circuit open; backend skipped")
            trace.attempts.append(Attempt(backend_id, AttemptOutcome.CIRCUIT_OPEN, str(error)))
            snapshot = breaker.snapshot()
            logger.info(
                "Skipping %s: circuit %s, %.0fs cooldown left",
                backend_id,
                snapshot.state.value,
                snapshot.cooldown_remaining_sec,
            )
            return None, error

        breaker.record_success()
        duration_ms = int((time.monotonic() - start) * 1000)
        trace.attempts.append(Attempt(backend_id, AttemptOutcome.SUCCESS, None, duration_ms))
        return text, None

    async def _call_with_quality(
        self,
        backend: Backend,
        prompt: str,
        system_prompt: str | None,
        request: str,
        strict_shape: bool,
    ) -> str:
        text = await self._call_once(backend, prompt, system_prompt)
        verdict = quality.check(request, text, backend.name(), strict_shape=strict_shape)
        if verdict.ok:
            return text

        logger.info("Quality gate rejected %s (%s); retrying with correction", backend.name(), verdict.reason)
        correction = quality.correction_prompt(self._correction_template, request, text)
        corrected = await self._call_once(backend, correction, system_prompt)
        verdict = quality.check(request, corrected, backend.name(), strict_shape=strict_shape)
        if not verdict.ok:
            raise QualityRejected(backend.name(), f"Rejected after correction: {verdict.reason}")
        return corrected

    async def _call_once(self, backend: Backend, prompt: str, system_prompt: str | None) -> str:
        try:
            return await asyncio.wait_for(backend.call(prompt, system_prompt), timeout=self._timeout_sec)
        except TimeoutError as exc:
            raise InvocationTimeout(backend.name(), f"No response within {self._timeout_sec:g}s") from exc
        except ProviderError as exc:
            raise InvocationFailure(backend.name(), exc.detail) from exc
        except Exception as exc:
            logger.exception("Unexpected error from %s", backend.name())
            raise InvocationFailure(backend.name(), f"Unexpected error: {exc}") from exc

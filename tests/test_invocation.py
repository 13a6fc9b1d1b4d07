"""Tests for concord/invocation.py. No real backends."""

import asyncio
import logging

import pytest

from concord.breaker import BackendRegistry, BreakerState
from concord.errors import (
    AllCandidatesExhausted,
    CircuitOpen,
    InvocationFailure,
    InvocationTimeout,
    QualityRejected,
)
from concord.invocation import AttemptOutcome, Invoker
from concord.models import Participant
from concord.providers.base import ProviderError
from tests.conftest import MockBackend


class FakeClock:
    def __init__(self) -> None:
        self.now = 500.0

    def __call__(self) -> float:
        return self.now


def _participant(backend_id: str = "alpha", system_prompt: str | None = None) -> Participant:
    return Participant(session_id="p1", backend_id=backend_id, title="Panelist", system_prompt=system_prompt)


def _outcomes(result) -> list[AttemptOutcome]:
    return [a.outcome for a in result.trace.attempts]


async def test_explicit_backend_success(make_invoker):
    alpha = MockBackend("alpha", "Use YAML for configuration files.")
    invoker = make_invoker({"alpha": alpha})

    result = await invoker.invoke(_participant(), "Which format?")

    assert result.ok
    assert result.text == "Use YAML for configuration files."
    assert result.trace.selected_backend == "alpha"
    assert result.trace.fallback_used is False
    assert _outcomes(result) == [AttemptOutcome.SUCCESS]


async def test_system_prompt_from_participant_unless_overridden(make_invoker):
    alpha = MockBackend("alpha", "Answer.")
    invoker = make_invoker({"alpha": alpha})

    await invoker.invoke(_participant(system_prompt="Be a skeptic."), "Q1")
    await invoker.invoke(_participant(system_prompt="Be a skeptic."), "Q2", system_prompt="Be the judge.")

    assert alpha.calls == [("Q1", "Be a skeptic."), ("Q2", "Be the judge.")]


async def test_explicit_retries_with_exponential_backoff():
    delays: list[float] = []

    async def fake_sleep(delay: float) -> None:
        delays.append(delay)

    alpha = MockBackend(
        "alpha",
        [ProviderError("alpha", "502 Bad Gateway"), ProviderError("alpha", "502 Bad Gateway"), "Recovered answer."],
    )
    invoker = Invoker({"alpha": alpha}, registry=BackendRegistry(failure_threshold=5), sleep=fake_sleep)

    result = await invoker.invoke(_participant(), "Which format?", max_retries=2, retry_backoff_ms=100)

    assert result.ok
    assert result.text == "Recovered answer."
    assert delays == pytest.approx([0.1, 0.2])
    assert _outcomes(result) == [AttemptOutcome.FAILURE, AttemptOutcome.FAILURE, AttemptOutcome.SUCCESS]


async def test_explicit_backend_fails_after_retry_budget(make_invoker):
    alpha = MockBackend("alpha", [ProviderError("alpha", "403 Forbidden")])
    invoker = make_invoker({"alpha": alpha})

    result = await invoker.invoke(_participant(), "Which format?", max_retries=1)

    assert not result.ok
    assert isinstance(result.error, InvocationFailure)
    assert "403 Forbidden" in str(result.error)
    assert len(alpha.calls) == 2


async def test_open_circuit_fails_fast_without_calling(make_invoker, registry):
    alpha = MockBackend("alpha", "Never returned.")
    registry.breaker("alpha").record_failure()
    registry.breaker("alpha").record_failure()
    invoker = make_invoker({"alpha": alpha})

    result = await invoker.invoke(_participant(), "Which format?", max_retries=3)

    assert isinstance(result.error, CircuitOpen)
    assert _outcomes(result) == [AttemptOutcome.CIRCUIT_OPEN]
    assert alpha.calls == []


async def test_queued_calls_skip_circuit_opened_while_waiting(make_invoker, registry):
    alpha = MockBackend("alpha", [ProviderError("alpha", "503 Service Unavailable")])
    invoker = make_invoker({"alpha": alpha})

    results = await asyncio.gather(*(invoker.invoke(_participant(), f"Question {n}") for n in range(4)))

    assert len(alpha.calls) == 2
    assert [_outcomes(r) for r in results] == [
        [AttemptOutcome.FAILURE],
        [AttemptOutcome.FAILURE],
        [AttemptOutcome.CIRCUIT_OPEN],
        [AttemptOutcome.CIRCUIT_OPEN],
    ]
    assert all(isinstance(r.error, CircuitOpen) for r in results[2:])
    assert registry.breaker("alpha").state == BreakerState.OPEN


async def test_auto_route_skips_open_circuit_and_falls_back(sample_routing_config):
    clock = FakeClock()
    registry = BackendRegistry(failure_threshold=2, cooldown_sec=45, clock=clock)
    registry.breaker("alpha").record_failure()
    registry.breaker("alpha").record_failure()
    alpha = MockBackend("alpha", "Primary answer.")
    beta = MockBackend("beta", "Fallback answer.")
    gamma = MockBackend("gamma", "Unused.")
    invoker = Invoker({"alpha": alpha, "beta": beta, "gamma": gamma}, registry=registry, routing=sample_routing_config)

    result = await invoker.invoke(_participant("auto"), "Hello there")

    assert result.ok
    assert result.text == "Fallback answer."
    assert result.trace.route.axis == "balanced"
    assert result.trace.selected_backend == "beta"
    assert result.trace.fallback_used is True
    assert _outcomes(result) == [AttemptOutcome.CIRCUIT_OPEN, AttemptOutcome.SUCCESS]
    assert alpha.calls == []
    assert gamma.calls == []


async def test_auto_route_exhausted(make_invoker, sample_routing_config):
    backends = {name: MockBackend(name, [ProviderError(name, "down")]) for name in ("alpha", "beta", "gamma")}
    invoker = make_invoker(backends, routing=sample_routing_config)

    result = await invoker.invoke(_participant("auto"), "Hello there")

    assert isinstance(result.error, AllCandidatesExhausted)
    assert result.error.attempts == 3
    assert [a.backend_id for a in result.trace.attempts] == ["alpha", "beta", "gamma"]


async def test_auto_without_routing_table_fails(make_invoker):
    invoker = make_invoker({"alpha": MockBackend("alpha")})

    result = await invoker.invoke(_participant("auto"), "Hello there")

    assert isinstance(result.error, InvocationFailure)
    assert not invoker.knows("auto")


async def test_unknown_backend(make_invoker):
    invoker = make_invoker({"alpha": MockBackend("alpha")})

    result = await invoker.invoke(_participant("missing"), "Hello there")

    assert isinstance(result.error, InvocationFailure)
    assert "Unknown backend" in str(result.error)
    assert invoker.knows("alpha")
    assert not invoker.knows("missing")


async def test_timeout(make_invoker):
    alpha = MockBackend("alpha", "Too late.", hang_on_call=1)
    invoker = make_invoker({"alpha": alpha}, timeout_sec=0.01)

    result = await invoker.invoke(_participant(), "Which format?")

    assert isinstance(result.error, InvocationTimeout)
    assert _outcomes(result) == [AttemptOutcome.TIMEOUT]


async def test_quality_gate_correction_retry(make_invoker):
    alpha = MockBackend("alpha", ["", "YAML"])
    invoker = make_invoker({"alpha": alpha})

    result = await invoker.invoke(_participant(), "Reply with one word: YAML or JSON")

    assert result.text == "YAML"
    correction, _ = alpha.calls[1]
    assert correction.startswith("Reply with one word: YAML or JSON")
    assert "(empty)" in correction


async def test_quality_gate_rejects_after_correction(make_invoker):
    alpha = MockBackend("alpha", "It depends on many things.")
    invoker = make_invoker({"alpha": alpha})

    result = await invoker.invoke(_participant(), "Reply with one word: YAML or JSON")

    assert isinstance(result.error, QualityRejected)
    assert _outcomes(result) == [AttemptOutcome.QUALITY_REJECTED]
    assert len(alpha.calls) == 2


async def test_quality_gate_judges_against_request(make_invoker):
    alpha = MockBackend("alpha", "A long considered answer about formats.")
    invoker = make_invoker({"alpha": alpha})

    result = await invoker.invoke(_participant(), "Reply with one word: YAML or JSON", request="Which format is better?")

    assert result.ok
    assert len(alpha.calls) == 1


async def test_free_form_request_skips_shape_rules(make_invoker):
    alpha = MockBackend("alpha", "STANCE: agree\nCONFIDENCE: 80%\nTwo words read better in the logo.")
    invoker = make_invoker({"alpha": alpha})

    result = await invoker.invoke(_participant(), "Reply with one word: YAML or JSON", strict_shape=False)

    assert result.ok
    assert len(alpha.calls) == 1


async def test_unexpected_exception_is_wrapped_and_logged(make_invoker, caplog):
    alpha = MockBackend("alpha", [RuntimeError("socket closed")])
    invoker = make_invoker({"alpha": alpha})

    with caplog.at_level(logging.ERROR, logger="concord.invocation"):
        result = await invoker.invoke(_participant(), "Which format?")

    assert isinstance(result.error, InvocationFailure)
    assert "socket closed" in str(result.error)
    assert "Unexpected error from alpha" in caplog.text


async def test_shared_identity_calls_are_serialized(make_invoker):
    gate = asyncio.Event()
    first = MockBackend("claude-cli", "First.", identity="cli:claude", gate=gate)
    second = MockBackend("claude-cli-fast", "Second.", identity="cli:claude")
    invoker = make_invoker({"claude-cli": first, "claude-cli-fast": second})

    t1 = asyncio.create_task(invoker.invoke(_participant("claude-cli"), "One"))
    for _ in range(3):
        await asyncio.sleep(0)
    t2 = asyncio.create_task(invoker.invoke(_participant("claude-cli-fast"), "Two"))
    for _ in range(3):
        await asyncio.sleep(0)

    assert len(first.calls) == 1
    assert second.calls == []

    gate.set()
    r1, r2 = await asyncio.gather(t1, t2)
    assert (r1.text, r2.text) == ("First.", "Second.")


async def test_cancelled_probe_is_released():
    clock = FakeClock()
    registry = BackendRegistry(failure_threshold=1, cooldown_sec=10, clock=clock)
    registry.breaker("alpha").record_failure()
    clock.now += 10
    invoker = Invoker({"alpha": MockBackend("alpha", "Late.", hang_on_call=1)}, registry=registry)

    task = asyncio.create_task(invoker.invoke(_participant(), "Which format?"))
    for _ in range(3):
        await asyncio.sleep(0)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert registry.breaker("alpha").allow_request()

"""Unit tests for concord/healthcheck.py. No real API calls."""

import asyncio
from unittest.mock import AsyncMock

from concord.healthcheck import run_health_checks
from concord.providers.base import ProviderError
from tests.conftest import MockBackend


async def test_all_backends_pass():
    """All backends answer -> all marked ok, no errors."""
    backends = {"claude": MockBackend("claude", "OK"), "gemini": MockBackend("gemini", "OK")}

    results = await run_health_checks(backends)

    assert results == {"claude": (True, ""), "gemini": (True, "")}


async def test_one_backend_fails():
    """A backend that raises returns ok=False with the error message."""
    backends = {"claude": MockBackend("claude", "OK"), "grok": MockBackend("grok")}
    backends["grok"].call = AsyncMock(side_effect=ProviderError("grok", "403 Forbidden"))

    results = await run_health_checks(backends)

    assert results["claude"] == (True, "")
    ok, err = results["grok"]
    assert ok is False
    assert "403" in err


async def test_unexpected_errors_count_as_failures():
    backends = {"openai": MockBackend("openai"), "gemini": MockBackend("gemini")}
    for name, backend in backends.items():
        backend.call = AsyncMock(side_effect=Exception(f"{name} down"))

    results = await run_health_checks(backends)

    for name in backends:
        ok, err = results[name]
        assert ok is False
        assert name in err


async def test_empty_reply_is_a_failure():
    results = await run_health_checks({"mute": MockBackend("mute", "   ")})
    assert results["mute"] == (False, "Empty reply")


async def test_empty_backends():
    assert await run_health_checks({}) == {}


async def test_timeout_counts_as_failure():
    """A backend that hangs past the timeout is marked as failed."""
    slow = MockBackend("slow", "OK", hang_on_call=1)

    results = await run_health_checks({"slow": slow}, timeout_sec=0.05)

    ok, err = results["slow"]
    assert ok is False
    assert "0.05s" in err


async def test_shared_identity_is_pinged_once(caplog):
    first = MockBackend("claude-cli", "OK", identity="cli:claude")
    second = MockBackend("claude-cli-opus", "OK", identity="cli:claude")
    other = MockBackend("codex-cli", identity="cli:codex")
    other.call = AsyncMock(side_effect=ProviderError("codex-cli", "not logged in"))

    results = await run_health_checks({"claude-cli": first, "claude-cli-opus": second, "codex-cli": other})

    assert len(first.calls) == 1
    assert second.calls == []
    assert results["claude-cli-opus"] == (True, "")
    assert results["codex-cli"][0] is False
    assert "Health check failed for codex-cli" in caplog.text


async def test_checks_run_concurrently():
    gate = asyncio.Event()
    gated = MockBackend("gated", "OK", gate=gate)
    opener = MockBackend("opener", "OK")
    original = opener.call

    async def open_gate(prompt, system_prompt=None):
        gate.set()
        return await original(prompt, system_prompt)

    opener.call = open_gate

    results = await run_health_checks({"gated": gated, "opener": opener}, timeout_sec=1.0)

    assert results["gated"] == (True, "")

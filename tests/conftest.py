"""Shared pytest fixtures."""

import asyncio
from collections.abc import Sequence
from pathlib import Path

import pytest

from config.config_loader import (
    AppConfig,
    DebateConfig,
    DefaultsConfig,
    ModelConfig,
    PromptsConfig,
    RouteConfig,
    RoutingConfig,
)
from concord.breaker import BackendRegistry
from concord.invocation import Invoker
from concord.models import (
    ConsensusAnalysis,
    ConsensusLevel,
    ConsensusOutcome,
    Participant,
    Response,
    Round,
    Stance,
)
from concord.providers.base import Backend

TOPIC = "Should we use YAML or JSON for service configuration files?"


class MockBackend(Backend):
    """Test double Backend with scripted replies and a call log.

    ``replies`` is one string returned on every call, or a list consumed in
    order (the last item repeats). Exception items are raised instead of
    returned. A call waits on ``gate`` when given, and calls from number
    ``hang_on_call`` onward never return.
    """

    def __init__(
        self,
        backend_name: str = "mock",
        replies: str | Sequence[str | Exception] = "Mock response",
        *,
        identity: str | None = None,
        gate: asyncio.Event | None = None,
        hang_on_call: int | None = None,
    ) -> None:
        self._name = backend_name
        self._replies = [replies] if isinstance(replies, str) else list(replies)
        self._identity = identity
        self._gate = gate
        self._hang_on_call = hang_on_call
        self.calls: list[tuple[str, str | None]] = []

    def name(self) -> str:
        return self._name

    def identity(self) -> str:
        return self._identity or self._name

    def model_string(self) -> str:
        return f"{self._name}-model"

    @property
    def prompts(self) -> list[str]:
        return [prompt for prompt, _ in self.calls]

    async def call(self, prompt: str, system_prompt: str | None = None) -> str:
        self.calls.append((prompt, system_prompt))
        n = len(self.calls)
        if self._hang_on_call is not None and n >= self._hang_on_call:
            await asyncio.Event().wait()
        if self._gate is not None:
            await self._gate.wait()
        await asyncio.sleep(0)
        reply = self._replies[min(n, len(self._replies)) - 1]
        if isinstance(reply, Exception):
            raise reply
        return reply


def contract_reply(
    stance: str = "agree",
    confidence: int = 85,
    resolution: str = "Use YAML for hand-edited files and JSON for generated ones",
    agreements: Sequence[str] = ("Comments in YAML help operators explain settings",),
    disagreements: Sequence[str] = ("None",),
    rationale: str = "Operators edit these files by hand far more often than machines do.",
) -> str:
    """A reply that follows the participant response contract."""
    lines = [
        f"STANCE: {stance}",
        f"CONFIDENCE: {confidence}%",
        f"PROPOSED_RESOLUTION: {resolution}",
        "AGREEMENTS:",
        *(f"- {a}" for a in agreements),
        "DISAGREEMENTS:",
        *(f"- {d}" for d in disagreements),
        f"RATIONALE: {rationale}",
    ]
    return "\n".join(lines)


def make_response(
    participant_id: str = "p1",
    stance: Stance = Stance.AGREE,
    content: str = "Use YAML for configuration.",
    confidence: float = 0.7,
    backend_id: str | None = None,
    title: str | None = None,
    **kwargs,
) -> Response:
    return Response(
        participant_id=participant_id,
        backend_id=backend_id or participant_id,
        title=title or participant_id.upper(),
        stance=stance,
        content=content,
        confidence=confidence,
        **kwargs,
    )


def make_analysis(score: float, stable_rounds: int = 0) -> ConsensusAnalysis:
    return ConsensusAnalysis(
        score=score,
        level=ConsensusLevel.NONE,
        consensus_outcome=ConsensusOutcome.NOT_REACHED,
        stable_rounds=stable_rounds,
    )


def make_round(number: int, responses: Sequence[Response], score: float = 0.5) -> Round:
    return Round(number=number, responses=tuple(responses), consensus_at_end=make_analysis(score))


@pytest.fixture
def sample_prompts_config() -> PromptsConfig:
    return PromptsConfig(
        participant_system="You are {title}.{persona_block}",
        judge_system="You are the judge.",
        initial="Topic: {topic}\n{context}\nGive your view.",
        critique="Topic: {topic}\n{context}\nRound {round} so far:\n{history}\nRespond.",
        synthesis=(
            "Topic: {topic}\n{transcript}\nLevel: {level} ({score_pct}%), outcome {outcome}\n"
            "Agreed: {agreed}\nDisputed: {disputed}\nStances: {stances}"
        ),
        correction="{request}\nRewrite this draft:\n{draft}",
        personas={"claude": "Focus on operations."},
    )


@pytest.fixture
def sample_routing_config() -> RoutingConfig:
    return RoutingConfig(
        balanced=RouteConfig(primary="alpha", fallbacks=["beta", "gamma"]),
        coding=RouteConfig(primary="beta", fallbacks=["alpha"]),
        deep_reasoning=RouteConfig(primary="gamma", fallbacks=["alpha", "gamma"]),
        factual=RouteConfig(primary="alpha", fallbacks=["gamma"]),
        speed=RouteConfig(primary="gamma", fallbacks=["beta"]),
    )


@pytest.fixture
def fast_config() -> DebateConfig:
    """Debate options with no waiting between retries."""
    return DebateConfig(max_rounds=3, judge_backend_id="judge", retry_backoff_ms=0, max_response_retries=0)


@pytest.fixture
def registry() -> BackendRegistry:
    return BackendRegistry(failure_threshold=2, cooldown_sec=30.0)


@pytest.fixture
def make_invoker(registry: BackendRegistry):
    def _make(backends: dict[str, Backend], routing: RoutingConfig | None = None, **kwargs) -> Invoker:
        return Invoker(backends, registry=registry, routing=routing, timeout_sec=kwargs.pop("timeout_sec", 5.0), **kwargs)

    return _make


@pytest.fixture
def two_participants() -> list[Participant]:
    return [
        Participant(session_id="p1", backend_id="alpha", title="Alpha"),
        Participant(session_id="p2", backend_id="beta", title="Beta"),
    ]


@pytest.fixture
def sample_defaults_config(tmp_path: Path) -> DefaultsConfig:
    return DefaultsConfig(
        output_dir=tmp_path / "output",
        panel=["claude", "openai"],
        debate=DebateConfig(judge_backend_id="claude"),
    )


@pytest.fixture
def sample_app_config(
    sample_defaults_config: DefaultsConfig,
    sample_prompts_config: PromptsConfig,
) -> AppConfig:
    return AppConfig(
        defaults=sample_defaults_config,
        models={
            "claude": ModelConfig(
                name="claude",
                sdk="anthropic",
                model="claude-sonnet-4-5",
                api_key_env="ANTHROPIC_API_KEY",
            ),
            "claude-cli": ModelConfig(
                name="claude-cli",
                sdk="cli",
                model="claude-sonnet-4-5",
                command="claude",
                args=["-p", "--model", "{model}"],
            ),
        },
        prompts=sample_prompts_config,
        available_providers={"claude", "claude-cli"},
    )

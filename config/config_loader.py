"""Load settings.yaml into typed dataclasses. Validates API keys at startup."""

import logging
import os
import shutil
from dataclasses import asdict, dataclass, field, replace
from pathlib import Path
from typing import Any

import yaml

from concord.errors import InvalidRequest
from concord.models import ConsensusMode, DebateMode

logger = logging.getLogger(__name__)

_SETTINGS_PATH = Path(__file__).parent / "settings.yaml"


@dataclass(frozen=True)
class DebateConfig:
    """Per-run debate options. Immutable once a debate has started."""

    mode: DebateMode = DebateMode.SEQUENTIAL
    max_rounds: int = 3
    consensus_threshold: float = 0.7
    consensus_mode: ConsensusMode = ConsensusMode.WEIGHTED
    minimum_stable_rounds: int = 1
    resolution_quorum: float = 0.75
    allow_user_interjection: bool = False
    judge_backend_id: str = "claude"
    auto_stop_on_consensus: bool = True
    enable_pruning: bool = False
    pruning_threshold: float = 0.85
    max_context_tokens: int = 8000
    max_response_retries: int = 1
    retry_backoff_ms: int = 800
    pause_between_responses_ms: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "mode", DebateMode(self.mode))
        object.__setattr__(self, "consensus_mode", ConsensusMode(self.consensus_mode))

    def validate(self) -> "DebateConfig":
        """Raise InvalidRequest on out-of-range options, else return self."""
        problems: list[str] = []
        if self.max_rounds < 1:
            problems.append("max_rounds must be >= 1")
        if self.minimum_stable_rounds < 1:
            problems.append("minimum_stable_rounds must be >= 1")
        for name in ("consensus_threshold", "resolution_quorum", "pruning_threshold"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                problems.append(f"{name} must be within [0, 1], got {value}")
        for name in ("max_context_tokens", "max_response_retries", "retry_backoff_ms", "pause_between_responses_ms"):
            if getattr(self, name) < 0:
                problems.append(f"{name} must be >= 0")
        if not self.judge_backend_id.strip():
            problems.append("judge_backend_id must not be empty")
        if problems:
            raise InvalidRequest("; ".join(problems))
        return self

    def with_overrides(self, **overrides: Any) -> "DebateConfig":
        unknown = set(overrides) - set(asdict(self))
        if unknown:
            raise InvalidRequest(f"Unknown config option(s): {', '.join(sorted(unknown))}")
        return replace(self, **overrides).validate()


@dataclass
class ModelConfig:
    name: str
    sdk: str
    model: str
    api_key_env: str | None = None
    max_tokens: int = 4096
    base_url: str | None = None
    command: str | None = None
    args: list[str] = field(default_factory=list)


@dataclass
class PromptsConfig:
    participant_system: str
    judge_system: str
    initial: str
    critique: str
    synthesis: str
    correction: str
    personas: dict[str, str] = field(default_factory=dict)


@dataclass
class InvocationConfig:
    timeout_sec: float = 120.0
    kill_grace_sec: float = 1.5
    failure_threshold: int = 2
    cooldown_sec: float = 45.0


@dataclass
class RouteConfig:
    primary: str
    fallbacks: list[str] = field(default_factory=list)


@dataclass
class RoutingConfig:
    balanced: RouteConfig
    coding: RouteConfig
    deep_reasoning: RouteConfig
    factual: RouteConfig
    speed: RouteConfig


@dataclass
class DefaultsConfig:
    output_dir: Path
    panel: list[str] = field(default_factory=list)
    debate: DebateConfig = field(default_factory=DebateConfig)


@dataclass
class AppConfig:
    defaults: DefaultsConfig
    models: dict[str, ModelConfig]
    prompts: PromptsConfig
    invocation: InvocationConfig = field(default_factory=InvocationConfig)
    routing: RoutingConfig | None = None
    available_providers: set[str] = field(default_factory=set)


def _route(raw: dict) -> RouteConfig:
    return RouteConfig(primary=str(raw["primary"]), fallbacks=[str(f) for f in raw.get("fallbacks", [])])


def load_config(settings_path: Path = _SETTINGS_PATH) -> AppConfig:
    """Load and validate configuration from settings.yaml.

    Raises FileNotFoundError if settings file missing and InvalidRequest if the
    debate defaults are out of range. Logs which providers are usable; local
    CLI backends need their executable on PATH instead of an API key.
    """
    if not settings_path.exists():
        raise FileNotFoundError(f"Settings file not found: {settings_path}")

    with settings_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    defaults_raw = raw["defaults"]
    debate = DebateConfig(**defaults_raw.get("debate", {})).validate()
    defaults = DefaultsConfig(
        output_dir=Path(defaults_raw["output_dir"]),
        panel=list(defaults_raw.get("panel", [])),
        debate=debate,
    )

    prompts_raw = raw["prompts"]
    personas_raw = raw.get("personas", {})
    prompts = PromptsConfig(
        participant_system=prompts_raw["participant_system"],
        judge_system=prompts_raw["judge_system"],
        initial=prompts_raw["initial"],
        critique=prompts_raw["critique"],
        synthesis=prompts_raw["synthesis"],
        correction=prompts_raw["correction"],
        personas={k: str(v) for k, v in personas_raw.items()},
    )

    invocation = InvocationConfig(**raw.get("invocation", {}))

    routing: RoutingConfig | None = None
    if "routing" in raw:
        routing_raw = raw["routing"]
        routing = RoutingConfig(
            balanced=_route(routing_raw["balanced"]),
            coding=_route(routing_raw["coding"]),
            deep_reasoning=_route(routing_raw["deep_reasoning"]),
            factual=_route(routing_raw["factual"]),
            speed=_route(routing_raw["speed"]),
        )

    models: dict[str, ModelConfig] = {}
    available_providers: set[str] = set()

    for provider_name, model_raw in raw["models"].items():
        model_cfg = ModelConfig(
            name=provider_name,
            sdk=model_raw["sdk"],
            model=model_raw["model"],
            api_key_env=model_raw.get("api_key_env"),
            max_tokens=int(model_raw.get("max_tokens", 4096)),
            base_url=model_raw.get("base_url"),
            command=model_raw.get("command"),
            args=[str(a) for a in model_raw.get("args", [])],
        )
        models[provider_name] = model_cfg

        if model_cfg.sdk == "cli":
            if model_cfg.command and shutil.which(model_cfg.command):
                available_providers.add(provider_name)
                logger.info("Provider available (local CLI): %s", provider_name)
            else:
                logger.info("Provider skipped (CLI not on PATH): %s - %s", provider_name, model_cfg.command)
            continue

        api_key = os.environ.get(model_cfg.api_key_env or "", "").strip()
        if api_key:
            available_providers.add(provider_name)
            logger.info("Provider available: %s", provider_name)
        else:
            logger.info(
                "Provider skipped (no API key): %s - set %s in .env",
                provider_name,
                model_cfg.api_key_env,
            )

    return AppConfig(
        defaults=defaults,
        models=models,
        prompts=prompts,
        invocation=invocation,
        routing=routing,
        available_providers=available_providers,
    )

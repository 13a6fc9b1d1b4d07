"""Backend selection for auto-routed requests: keyword scoring plus fallback chains."""

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, field

from config.config_loader import RouteConfig, RoutingConfig

logger = logging.getLogger(__name__)

AUTO_BACKEND_IDS = frozenset({"auto", "auto-router", "router"})

_CODE_KEYWORDS = (
    "bug", "fix", "refactor", "function", "class", "typescript", "javascript", "python",
    "stack trace", "compile", "build", "test", "lint", "api", "sql", "regex", "cli",
    "terminal", "npm", "pip", "pytest",
)
_DEEP_KEYWORDS = (
    "architecture", "tradeoff", "compare", "pros and cons", "evaluate", "plan",
    "strategy", "root cause", "analyze", "migration", "design",
)
_SPEED_KEYWORDS = ("quick", "brief", "one sentence", "tldr", "short answer", "fast")
_FACTUAL_KEYWORDS = (
    "today", "latest", "current", "as of", "date", "time", "timezone", "price", "law",
    "policy", "regulation", "official", "verify", "accurate", "source", "capital",
    "multiply", "times", "weekday", "day of the week",
)

# Minimum score for an axis to be considered at all, in tie-break priority order.
_AXES = (
    ("coding", 3),
    ("deep_reasoning", 4),
    ("factual", 3),
    ("speed", 3),
)


@dataclass(frozen=True)
class RouteScores:
    coding: int = 0
    deep_reasoning: int = 0
    speed: int = 0
    factual: int = 0


@dataclass(frozen=True)
class RouteDecision:
    is_auto: bool
    primary: str
    fallbacks: tuple[str, ...] = ()
    axis: str = "explicit"
    scores: RouteScores = field(default_factory=RouteScores)

    @property
    def candidates(self) -> tuple[str, ...]:
        return (self.primary, *self.fallbacks)


def is_auto(backend_id: str) -> bool:
    return backend_id.strip().lower() in AUTO_BACKEND_IDS


def _hits(text: str, keywords: Sequence[str]) -> int:
    return sum(1 for k in keywords if k in text)


def score_message(message: str, message_count: int = 1) -> RouteScores:
    text = message.lower()
    words = len(text.split())

    coding = _hits(text, _CODE_KEYWORDS)
    if "```" in text:
        coding += 3
    if "error:" in text or "exception" in text:
        coding += 2

    deep = _hits(text, _DEEP_KEYWORDS)
    if words > 120:
        deep += 2
    if words > 220:
        deep += 2
    if message_count > 8:
        deep += 1

    speed = _hits(text, _SPEED_KEYWORDS)
    if 0 < words <= 20:
        speed += 2
    if re.search(r"\b(what|when|where|who)\b", text) and words <= 30:
        speed += 1

    factual = _hits(text, _FACTUAL_KEYWORDS)
    if re.search(r"\b(today|latest|current|right now|as of)\b", text):
        factual += 2
    if re.search(r"\b(what day|what date|what time|timezone)\b", text):
        factual += 1
    if re.search(r"\b(verify|accuracy|accurate|source)\b", text):
        factual += 1
    if re.search(r"\b(capital of|day of the week|what is \d+[\s*]+\d+)\b", text):
        factual += 2

    return RouteScores(coding=coding, deep_reasoning=deep, speed=speed, factual=factual)


def _dedupe(primary: str, fallbacks: Sequence[str]) -> tuple[str, ...]:
    seen = {primary}
    ordered: list[str] = []
    for backend_id in fallbacks:
        if backend_id not in seen:
            seen.add(backend_id)
            ordered.append(backend_id)
    return tuple(ordered)


def decide_route(
    requested_backend: str,
    messages: Sequence[str],
    table: RoutingConfig | None,
) -> RouteDecision:
    """Resolve a requested backend id into a primary backend and fallbacks.

    Explicit ids route to themselves with no fallbacks. Auto ids score the
    latest message; the highest-scoring eligible axis wins, ties going to the
    earlier axis in coding, deep reasoning, factual, speed order.
    """
    if not is_auto(requested_backend):
        return RouteDecision(is_auto=False, primary=requested_backend)

    latest = next((m.strip() for m in reversed(messages) if m.strip()), "")
    scores = score_message(latest, len(messages))

    axis = "balanced"
    best = -1
    for name, minimum in _AXES:
        value = getattr(scores, name)
        if value >= minimum and value > best:
            axis, best = name, value

    if table is None:
        raise ValueError("Auto routing needs a routing table")
    route: RouteConfig = getattr(table, axis)
    decision = RouteDecision(
        is_auto=True,
        primary=route.primary,
        fallbacks=_dedupe(route.primary, route.fallbacks),
        axis=axis,
        scores=scores,
    )
    logger.debug("Auto route: axis=%s primary=%s fallbacks=%s scores=%s", axis, decision.primary, decision.fallbacks, scores)
    return decision

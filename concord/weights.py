"""Participant weight clamping and reliability derivation from past debates."""

import logging
import math
from collections.abc import Callable, Sequence
from dataclasses import replace
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from concord.models import Participant, Round

logger = logging.getLogger(__name__)

USER_WEIGHT_MIN = 1
USER_WEIGHT_MAX = 5
USER_WEIGHT_DEFAULT = 3

RELIABILITY_MIN = 0.5
RELIABILITY_MAX = 1.5
RELIABILITY_DEFAULT = 1.0


def _as_finite_float(value: Any) -> float | None:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number):
        return None
    return number


def clamp_user_weight(value: Any) -> int:
    """Map any input to an integer trust prior in [1, 5]."""
    number = _as_finite_float(value)
    if number is None:
        return USER_WEIGHT_DEFAULT
    if math.isinf(number):
        return USER_WEIGHT_MAX if number > 0 else USER_WEIGHT_MIN
    return int(min(USER_WEIGHT_MAX, max(USER_WEIGHT_MIN, round(number))))


def clamp_reliability_weight(value: Any) -> float:
    """Map any input to a float reliability prior in [0.5, 1.5]."""
    number = _as_finite_float(value)
    if number is None:
        return RELIABILITY_DEFAULT
    return float(min(RELIABILITY_MAX, max(RELIABILITY_MIN, number)))


def _direction(value: float) -> int:
    if value > 0.5:
        return 1
    if value < 0.5:
        return -1
    return 0


def derive_reliability_weight(backend_id: str, history: Sequence["Round"]) -> float:
    """Score a backend by how often its stance matched the direction of its rounds.

    Each past response whose stance pointed the same way as the mean stance of
    its round counts 1, a neutral response (or a neutral round) counts 0.5 and
    an opposing one counts 0. The weight is 0.5 plus that alignment rate, so a
    backend with no history stays at the neutral 1.0.
    """
    aligned = 0.0
    samples = 0
    for rnd in history:
        if not rnd.responses:
            continue
        round_mean = sum(r.stance.numeric for r in rnd.responses) / len(rnd.responses)
        round_direction = _direction(round_mean)
        for response in rnd.responses:
            if response.backend_id != backend_id:
                continue
            samples += 1
            own_direction = _direction(response.stance.numeric)
            if own_direction == 0 or round_direction == 0:
                aligned += 0.5
            elif own_direction == round_direction:
                aligned += 1.0

    if samples == 0:
        return RELIABILITY_DEFAULT

    weight = clamp_reliability_weight(RELIABILITY_MIN + aligned / samples)
    logger.debug("Reliability for %s: %.3f from %d responses", backend_id, weight, samples)
    return weight


def apply_reliability(
    participants: Sequence["Participant"],
    history_lookup: Callable[[str], Sequence["Round"]],
) -> list["Participant"]:
    """Return participants with reliability weights derived from their backend history."""
    updated: list["Participant"] = []
    for participant in participants:
        history = history_lookup(participant.backend_id) or ()
        weight = derive_reliability_weight(participant.backend_id, history)
        updated.append(replace(participant, reliability_weight=weight))
    return updated

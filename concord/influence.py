"""Weighted influence: how much each participant's stance counts toward consensus."""

from collections.abc import Sequence

from concord.models import InfluenceSummary, ModelInfluence, Response

CONFIDENCE_FLOOR = 0.55
CONFIDENCE_CEILING = 0.85
MAX_SHARE = 0.4


def confidence_modifier(confidence: float) -> float:
    """Clamp confidence into a narrow band so no single model can dominate."""
    return min(CONFIDENCE_CEILING, max(CONFIDENCE_FLOOR, confidence))


def raw_influence(response: Response) -> float:
    return (
        response.user_weight
        * response.reliability_weight
        * confidence_modifier(response.confidence)
        * response.stance.numeric
    )


def capped_shares(raw: Sequence[float], cap: float = MAX_SHARE) -> list[float]:
    """Normalize raw influence to shares summing to 1 with no share above ``cap``.

    The cap is raised to 1/n when there are too few participants for it to be
    satisfiable. Excess share is redistributed to the uncapped participants in
    proportion to their raw influence (equally when all of them are zero).
    """
    n = len(raw)
    if n == 0:
        return []
    cap = max(cap, 1.0 / n)
    shares = [0.0] * n
    capped: set[int] = set()

    while True:
        free = [i for i in range(n) if i not in capped]
        remaining = 1.0 - cap * len(capped)
        free_total = sum(raw[i] for i in free)
        for i in free:
            if free_total > 0:
                shares[i] = remaining * raw[i] / free_total
            else:
                shares[i] = remaining / len(free)
        over = [i for i in free if shares[i] > cap + 1e-12]
        if not over:
            break
        for i in over:
            capped.add(i)
            shares[i] = cap

    return shares


def _sign(stance_value: float) -> int:
    if stance_value > 0.5:
        return 1
    if stance_value < 0.5:
        return -1
    return 0


def compute_influence(
    responses: Sequence[Response],
    threshold: float,
    unweighted_gate_passed: bool,
) -> InfluenceSummary:
    """Build the weighted support score and per-model explainability breakdown."""
    if not responses:
        return InfluenceSummary(unweighted_gate_passed=unweighted_gate_passed)

    raws = [raw_influence(r) for r in responses]
    shares = capped_shares(raws)

    breakdown: list[ModelInfluence] = []
    support = 0.0
    for response, raw, share in zip(responses, raws, shares):
        stance_value = response.stance.numeric
        signed = share * _sign(stance_value)
        support += signed
        breakdown.append(
            ModelInfluence(
                participant_id=response.participant_id,
                backend_id=response.backend_id,
                title=response.title,
                user_weight=response.user_weight,
                reliability_weight=response.reliability_weight,
                confidence_modifier=confidence_modifier(response.confidence),
                stance_value=stance_value,
                raw_influence=raw,
                effective_share=share,
                signed_contribution=signed,
            )
        )

    support = max(-1.0, min(1.0, support))
    ratio = (support + 1.0) / 2.0
    return InfluenceSummary(
        weighted_support_score=support,
        weighted_support_ratio=ratio,
        unweighted_gate_passed=unweighted_gate_passed,
        weighted_gate_passed=ratio >= threshold,
        model_breakdown=tuple(breakdown),
    )

"""Consensus engine: scores a round of responses and recommends the next step.

Everything here is a pure function of its inputs. ``analyze`` is called fresh
for every round over that round's full response set; prior rounds only feed
in through their finished analyses (for trend, stability and deadlock).
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from itertools import combinations
from statistics import fmean, pvariance

from concord.influence import compute_influence
from concord.models import (
    ConsensusAnalysis,
    ConsensusLevel,
    ConsensusMode,
    ConsensusOutcome,
    ProposalConvergence,
    Recommendation,
    Response,
    Stance,
    Trend,
)
from concord.parsing import extract_proposed_resolution
from concord.similarity import combined_similarity
from config.config_loader import DebateConfig

logger = logging.getLogger(__name__)

CONTENT_WEIGHT = 0.4
STANCE_WEIGHT = 0.4
CONFIDENCE_WEIGHT = 0.2

MAX_STANCE_VARIANCE = 0.25
POINT_SIMILARITY = 0.5
PROPOSAL_SIMILARITY = 0.62
TREND_DELTA = 0.1
TREND_LOOKBACK = 3
DEADLOCK_FLOOR = 0.3
PRUNE_STANCE_TOLERANCE = 0.15

_MAX_AGREED = 5
_MAX_DISPUTED = 5
_MAX_UNCLEAR = 3

_LEVELS = [
    (0.85, ConsensusLevel.UNANIMOUS),
    (0.65, ConsensusLevel.STRONG),
    (0.45, ConsensusLevel.PARTIAL),
    (0.25, ConsensusLevel.LOW),
]


def level_for(score: float) -> ConsensusLevel:
    for floor, level in _LEVELS:
        if score >= floor:
            return level
    return ConsensusLevel.NONE


def content_score(responses: Sequence[Response]) -> float:
    """Mean pairwise similarity of response bodies, 1.0 below two responses."""
    pairs = list(combinations(responses, 2))
    if not pairs:
        return 1.0
    return fmean(combined_similarity(a.content, b.content) for a, b in pairs)


def stance_alignment(responses: Sequence[Response]) -> float:
    if len(responses) < 2:
        return 1.0
    variance = pvariance([r.stance.numeric for r in responses])
    return max(0.0, min(1.0, 1.0 - variance / MAX_STANCE_VARIANCE))


@dataclass
class _PointClass:
    text: str
    citers: set[str] = field(default_factory=set)
    from_disagreement: bool = False
    from_key_points: bool = False


def _classify_points(responses: Sequence[Response]) -> tuple[list[str], list[str], list[str]]:
    """Collapse key points and disagreements into similarity classes."""
    classes: list[_PointClass] = []

    def place(text: str, participant_id: str, disagreement: bool) -> None:
        for cls in classes:
            if combined_similarity(cls.text, text) >= POINT_SIMILARITY:
                break
        else:
            cls = _PointClass(text=text)
            classes.append(cls)
        if disagreement:
            cls.from_disagreement = True
        else:
            cls.from_key_points = True
            cls.citers.add(participant_id)

    for response in responses:
        for point in (*response.key_points, *response.agreements):
            place(point, response.participant_id, disagreement=False)
        for point in response.disagreements:
            place(point, response.participant_id, disagreement=True)

    majority = len(responses) / 2
    agreed = [c.text for c in classes if len(c.citers) > majority]
    disputed = [c.text for c in classes if c.from_disagreement and len(c.citers) <= majority]
    unclear = [c.text for c in classes if c.from_key_points and not c.from_disagreement and len(c.citers) <= majority]
    return agreed[:_MAX_AGREED], disputed[:_MAX_DISPUTED], unclear[:_MAX_UNCLEAR]


def proposal_convergence(responses: Sequence[Response]) -> ProposalConvergence:
    """Cluster each response's proposed resolution and report the leading one."""
    if not responses:
        return ProposalConvergence()

    clusters: list[tuple[str, list[Response]]] = []
    for response in responses:
        proposal = extract_proposed_resolution(response.content, response.key_points)
        for leader, members in clusters:
            if combined_similarity(leader, proposal) >= PROPOSAL_SIMILARITY:
                members.append(response)
                break
        else:
            clusters.append((proposal, [response]))

    # Most supporters first, then highest mean confidence; sort is stable.
    clusters.sort(key=lambda c: (len(c[1]), fmean(r.confidence for r in c[1])), reverse=True)
    leader, members = clusters[0]
    supporter_ids = [r.participant_id for r in members]
    return ProposalConvergence(
        leading_proposal=leader,
        support_ratio=len(members) / len(responses),
        supporters=tuple(supporter_ids),
        dissenters=tuple(r.participant_id for r in responses if r.participant_id not in supporter_ids),
    )


def _mode_gate(responses: Sequence[Response], mode: ConsensusMode, weighted_gate: bool) -> bool:
    if mode == ConsensusMode.WEIGHTED:
        return weighted_gate
    supporting = sum(1 for r in responses if r.stance.numeric > 0.5)
    if mode == ConsensusMode.MAJORITY:
        return supporting > len(responses) / 2
    return supporting == len(responses)


def trend_of(scores: Sequence[float]) -> Trend:
    """Compare the latest score to the one three rounds earlier (or the first)."""
    if len(scores) < 2:
        return Trend.STABLE
    baseline = scores[-1 - TREND_LOOKBACK] if len(scores) > TREND_LOOKBACK else scores[0]
    delta = scores[-1] - baseline
    if delta > TREND_DELTA:
        return Trend.IMPROVING
    if delta < -TREND_DELTA:
        return Trend.DEGRADING
    return Trend.STABLE


def _is_deadlocked(scores: Sequence[float], window: int) -> bool:
    """Every score in the trailing window sits below the floor and none improves."""
    if len(scores) < window:
        return False
    recent = scores[-window:]
    if any(s >= DEADLOCK_FLOOR for s in recent):
        return False
    return all(later - earlier <= TREND_DELTA for earlier, later in zip(recent, recent[1:]))


def recommend(
    score: float,
    participant_count: int,
    disputed_count: int,
    outcome: ConsensusOutcome = ConsensusOutcome.NOT_REACHED,
) -> Recommendation:
    if outcome == ConsensusOutcome.DEADLOCK:
        return Recommendation.DEADLOCK
    if score >= 0.8:
        return Recommendation.COMPLETE
    if score >= 0.65:
        return Recommendation.CALL_JUDGE
    if disputed_count > 0 and score < 0.5:
        return Recommendation.FOCUS_DISPUTE
    if score < 0.4 and participant_count < 3:
        return Recommendation.CONTINUE
    if score < 0.3 and participant_count >= 3:
        return Recommendation.DEADLOCK
    return Recommendation.CONTINUE


def analyze(
    responses: Sequence[Response],
    history: Sequence[ConsensusAnalysis] = (),
    config: DebateConfig | None = None,
) -> ConsensusAnalysis:
    """Score one round of responses.

    Args:
        responses: Every response of the round being closed, in any order.
        history: The analyses of the earlier rounds, oldest first.
        config: Threshold, mode, quorum and stability options; defaults apply
            when omitted.
    """
    config = config or DebateConfig()
    if not responses:
        return ConsensusAnalysis(
            score=0.0,
            level=ConsensusLevel.NONE,
            consensus_outcome=ConsensusOutcome.NOT_REACHED,
            trend=trend_of([h.score for h in history] + [0.0]),
        )

    content = content_score(responses)
    alignment = stance_alignment(responses)
    mean_confidence = fmean(r.confidence for r in responses)
    score = max(0.0, min(1.0, CONTENT_WEIGHT * content + STANCE_WEIGHT * alignment + CONFIDENCE_WEIGHT * mean_confidence))

    unweighted_passed = score >= config.consensus_threshold
    influence = compute_influence(responses, config.consensus_threshold, unweighted_passed)
    gate = _mode_gate(responses, config.consensus_mode, influence.weighted_gate_passed)

    scores = [h.score for h in history] + [score]
    if unweighted_passed and gate:
        outcome = ConsensusOutcome.REACHED
    elif _is_deadlocked(scores, max(2, config.minimum_stable_rounds)):
        outcome = ConsensusOutcome.DEADLOCK
    else:
        outcome = ConsensusOutcome.NOT_REACHED

    convergence = proposal_convergence(responses)
    stable_rounds = 0
    if outcome == ConsensusOutcome.REACHED and convergence.support_ratio >= config.resolution_quorum:
        stable_rounds = (history[-1].stable_rounds if history else 0) + 1

    agreed, disputed, unclear = _classify_points(responses)
    analysis = ConsensusAnalysis(
        score=score,
        level=level_for(score),
        consensus_outcome=outcome,
        content_score=content,
        stance_alignment=alignment,
        mean_confidence=mean_confidence,
        agreed_points=tuple(agreed),
        disputed_points=tuple(disputed),
        unclear_points=tuple(unclear),
        stance_breakdown={r.participant_id: r.stance for r in responses},
        trend=trend_of(scores),
        recommendation=recommend(score, len(responses), len(disputed), outcome),
        stable_rounds=stable_rounds,
        proposal_convergence=convergence,
        influence=influence,
    )
    logger.debug(
        "Consensus: score=%.3f level=%s outcome=%s recommendation=%s stable=%d",
        score,
        analysis.level.value,
        outcome.value,
        analysis.recommendation.value,
        stable_rounds,
    )
    return analysis


@dataclass(frozen=True)
class PruneCandidate:
    participant_id: str
    title: str
    similar_to: str
    similarity: float

    @property
    def reason(self) -> str:
        return f"Redundant with {self.similar_to} ({self.similarity:.0%} similar)"


def identify_prunable_participants(responses: Sequence[Response], threshold: float) -> list[PruneCandidate]:
    """Find responses that repeat an earlier one in both content and stance.

    The first response of each cluster is kept. The result never removes so
    many that fewer than two participants would remain.
    """
    if len(responses) < 3:
        return []

    kept: list[Response] = []
    prunable: list[PruneCandidate] = []
    for response in responses:
        for keeper in kept:
            similarity = combined_similarity(response.content, keeper.content)
            stance_diff = abs(response.stance.numeric - keeper.stance.numeric)
            if similarity >= threshold and stance_diff <= PRUNE_STANCE_TOLERANCE:
                prunable.append(
                    PruneCandidate(
                        participant_id=response.participant_id,
                        title=response.title,
                        similar_to=keeper.title,
                        similarity=similarity,
                    )
                )
                break
        else:
            kept.append(response)

    return prunable[: len(responses) - 2]


_SUPPORTING = {Stance.STRONGLY_AGREE, Stance.AGREE, Stance.REFINE, Stance.SYNTHESIZE}
_OPPOSING = {Stance.STRONGLY_DISAGREE, Stance.DISAGREE}


def quick_check(responses: Sequence[Response]) -> tuple[float, ConsensusLevel]:
    """Stance-only estimate for live display between full analyses."""
    if len(responses) < 2:
        return 1.0, ConsensusLevel.UNANIMOUS

    supporting = sum(1 for r in responses if r.stance in _SUPPORTING)
    opposing = sum(1 for r in responses if r.stance in _OPPOSING)
    score = supporting / len(responses)

    if opposing == 0 and supporting == len(responses):
        return score, ConsensusLevel.UNANIMOUS
    if score >= 0.7:
        return score, ConsensusLevel.STRONG
    if score >= 0.5:
        return score, ConsensusLevel.PARTIAL
    if score >= 0.3:
        return score, ConsensusLevel.LOW
    return score, ConsensusLevel.NONE

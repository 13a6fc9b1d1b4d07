"""Summary metrics for a finished (or stopped) debate."""

from dataclasses import dataclass
from statistics import fmean

from concord.models import ConsensusLevel, ConsensusOutcome, DebateRunState


@dataclass(frozen=True)
class ParticipantMetrics:
    participant_id: str
    title: str
    backend_id: str
    responses: int
    missed_rounds: int
    mean_duration_ms: float
    mean_confidence: float
    mean_influence: float
    pruned_at_round: int | None = None


@dataclass(frozen=True)
class DebateMetrics:
    rounds: int
    total_responses: int
    total_missed: int
    duration_sec: float
    score_trajectory: tuple[float, ...]
    final_score: float
    final_level: ConsensusLevel
    final_outcome: ConsensusOutcome
    participants: tuple[ParticipantMetrics, ...]

    @property
    def score_delta(self) -> float:
        if len(self.score_trajectory) < 2:
            return 0.0
        return self.score_trajectory[-1] - self.score_trajectory[0]


def compute_metrics(state: DebateRunState) -> DebateMetrics:
    pruned_at = {p.participant_id: p.pruned_at_round for p in state.pruned_participants}
    missed: dict[str, int] = {}
    for ids in state.non_responders.values():
        for pid in ids:
            missed[pid] = missed.get(pid, 0) + 1

    per_participant: list[ParticipantMetrics] = []
    for participant in state.participants:
        responses = [r for rnd in state.rounds for r in rnd.responses if r.participant_id == participant.session_id]
        per_participant.append(
            ParticipantMetrics(
                participant_id=participant.session_id,
                title=participant.title,
                backend_id=participant.backend_id,
                responses=len(responses),
                missed_rounds=missed.get(participant.session_id, 0),
                mean_duration_ms=fmean(r.duration_ms for r in responses) if responses else 0.0,
                mean_confidence=fmean(r.confidence for r in responses) if responses else 0.0,
                mean_influence=fmean(r.effective_influence for r in responses) if responses else 0.0,
                pruned_at_round=pruned_at.get(participant.session_id),
            )
        )

    duration = 0.0
    if state.started_at is not None and state.completed_at is not None:
        duration = max(0.0, state.completed_at - state.started_at)

    consensus = state.consensus
    return DebateMetrics(
        rounds=len(state.rounds),
        total_responses=sum(len(rnd.responses) for rnd in state.rounds),
        total_missed=sum(missed.values()),
        duration_sec=duration,
        score_trajectory=tuple(rnd.consensus_at_end.score for rnd in state.rounds),
        final_score=consensus.score if consensus else 0.0,
        final_level=consensus.level if consensus else ConsensusLevel.NONE,
        final_outcome=consensus.consensus_outcome if consensus else ConsensusOutcome.NOT_REACHED,
        participants=tuple(per_participant),
    )

"""Dataclasses and enums for the debate core. No I/O, no third-party deps."""

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from concord.weights import clamp_reliability_weight, clamp_user_weight

if TYPE_CHECKING:
    from config.config_loader import DebateConfig


class Stance(str, Enum):
    STRONGLY_AGREE = "strongly_agree"
    AGREE = "agree"
    REFINE = "refine"
    SYNTHESIZE = "synthesize"
    NEUTRAL = "neutral"
    DISAGREE = "disagree"
    STRONGLY_DISAGREE = "strongly_disagree"

    @property
    def numeric(self) -> float:
        return _STANCE_VALUES[self]

    @property
    def label(self) -> str:
        return _STANCE_LABELS[self]


_STANCE_VALUES: dict[Stance, float] = {
    Stance.STRONGLY_AGREE: 1.0,
    Stance.AGREE: 0.75,
    Stance.REFINE: 0.6,
    Stance.SYNTHESIZE: 0.5,
    Stance.NEUTRAL: 0.5,
    Stance.DISAGREE: 0.25,
    Stance.STRONGLY_DISAGREE: 0.0,
}

_STANCE_LABELS: dict[Stance, str] = {
    Stance.STRONGLY_AGREE: "Strongly Agrees",
    Stance.AGREE: "Agrees",
    Stance.REFINE: "Refining",
    Stance.SYNTHESIZE: "Synthesizing",
    Stance.NEUTRAL: "Neutral",
    Stance.DISAGREE: "Disagrees",
    Stance.STRONGLY_DISAGREE: "Strongly Disagrees",
}


class DebateMode(str, Enum):
    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"


class ConsensusMode(str, Enum):
    MAJORITY = "majority"
    WEIGHTED = "weighted"
    UNANIMOUS = "unanimous"


class DebateStatus(str, Enum):
    IDLE = "idle"
    CONFIGURING = "configuring"
    RUNNING = "running"
    PAUSED = "paused"
    WAITING_USER = "waiting_user"
    MAX_ROUNDS = "max_rounds"
    JUDGING = "judging"
    COMPLETE = "complete"
    ERROR = "error"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (DebateStatus.COMPLETE, DebateStatus.ERROR)


class ConsensusLevel(str, Enum):
    NONE = "none"
    LOW = "low"
    PARTIAL = "partial"
    STRONG = "strong"
    UNANIMOUS = "unanimous"


class ConsensusOutcome(str, Enum):
    REACHED = "reached"
    NOT_REACHED = "not-reached"
    DEADLOCK = "deadlock"


class Trend(str, Enum):
    IMPROVING = "improving"
    STABLE = "stable"
    DEGRADING = "degrading"


class Recommendation(str, Enum):
    CONTINUE = "continue"
    FOCUS_DISPUTE = "focus_dispute"
    CALL_JUDGE = "call_judge"
    DEADLOCK = "deadlock"
    COMPLETE = "complete"


@dataclass(frozen=True)
class Participant:
    session_id: str
    backend_id: str
    title: str
    system_prompt: str | None = None
    user_weight: int = 3
    reliability_weight: float = 1.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "user_weight", clamp_user_weight(self.user_weight))
        object.__setattr__(self, "reliability_weight", clamp_reliability_weight(self.reliability_weight))


@dataclass(frozen=True)
class Response:
    participant_id: str
    backend_id: str
    title: str
    stance: Stance
    content: str
    key_points: tuple[str, ...] = ()
    agreements: tuple[str, ...] = ()
    disagreements: tuple[str, ...] = ()
    confidence: float = 0.6
    user_weight: int = 3
    reliability_weight: float = 1.0
    confidence_modifier: float = 0.6
    raw_influence: float = 0.0
    effective_influence: float = 0.0
    duration_ms: int = 0
    timestamp: float = 0.0


@dataclass(frozen=True)
class ProposalConvergence:
    leading_proposal: str = ""
    support_ratio: float = 0.0
    supporters: tuple[str, ...] = ()
    dissenters: tuple[str, ...] = ()


@dataclass(frozen=True)
class ModelInfluence:
    participant_id: str
    backend_id: str
    title: str
    user_weight: int
    reliability_weight: float
    confidence_modifier: float
    stance_value: float
    raw_influence: float
    effective_share: float
    signed_contribution: float


@dataclass(frozen=True)
class InfluenceSummary:
    weighted_support_score: float = 0.0
    weighted_support_ratio: float = 0.5
    unweighted_gate_passed: bool = False
    weighted_gate_passed: bool = False
    model_breakdown: tuple[ModelInfluence, ...] = ()


@dataclass(frozen=True)
class ConsensusAnalysis:
    score: float
    level: ConsensusLevel
    consensus_outcome: ConsensusOutcome
    content_score: float = 0.0
    stance_alignment: float = 0.0
    mean_confidence: float = 0.0
    agreed_points: tuple[str, ...] = ()
    disputed_points: tuple[str, ...] = ()
    unclear_points: tuple[str, ...] = ()
    stance_breakdown: dict[str, Stance] = field(default_factory=dict)
    trend: Trend = Trend.STABLE
    recommendation: Recommendation = Recommendation.CONTINUE
    stable_rounds: int = 0
    proposal_convergence: ProposalConvergence = field(default_factory=ProposalConvergence)
    influence: InfluenceSummary = field(default_factory=InfluenceSummary)


@dataclass(frozen=True)
class Round:
    number: int
    responses: tuple[Response, ...]
    consensus_at_end: ConsensusAnalysis
    timestamp: float = 0.0


@dataclass(frozen=True)
class PrunedParticipant:
    participant_id: str
    title: str
    pruned_at_round: int
    reason: str


@dataclass
class DebateRunState:
    status: DebateStatus
    config: "DebateConfig"
    topic: str = ""
    participants: list[Participant] = field(default_factory=list)
    current_round: int = 0
    rounds: list[Round] = field(default_factory=list)
    consensus: ConsensusAnalysis | None = None
    pruned_participants: list[PrunedParticipant] = field(default_factory=list)
    non_responders: dict[int, list[str]] = field(default_factory=dict)
    interjections: list[str] = field(default_factory=list)
    final_answer: str | None = None
    error: str | None = None
    started_at: float | None = None
    completed_at: float | None = None

    @property
    def pruned_ids(self) -> set[str]:
        return {p.participant_id for p in self.pruned_participants}

    @property
    def active_participants(self) -> list[Participant]:
        pruned = self.pruned_ids
        return [p for p in self.participants if p.session_id not in pruned]

"""Events the orchestrator publishes and actions it accepts.

Both are closed sets of frozen dataclasses. Handlers dispatch on type with
``isinstance``; ``Event`` and ``Action`` are the unions to annotate against.
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Union

from concord.models import ConsensusAnalysis, Participant, Response, Round

if TYPE_CHECKING:
    from config.config_loader import DebateConfig


# -- events -----------------------------------------------------------------


@dataclass(frozen=True)
class DebateStarted:
    topic: str
    participants: tuple[Participant, ...]


@dataclass(frozen=True)
class RoundStarted:
    round_number: int


@dataclass(frozen=True)
class ParticipantThinking:
    participant_id: str
    backend_id: str


@dataclass(frozen=True)
class ParticipantResponded:
    response: Response


@dataclass(frozen=True)
class ParticipantFailed:
    participant_id: str
    error: str


@dataclass(frozen=True)
class RoundComplete:
    round: Round


@dataclass(frozen=True)
class ConsensusUpdated:
    consensus: ConsensusAnalysis


@dataclass(frozen=True)
class UserInterjectionRequested:
    pass


@dataclass(frozen=True)
class UserInterjected:
    message: str


@dataclass(frozen=True)
class JudgingStarted:
    pass


@dataclass(frozen=True)
class DebatePaused:
    pass


@dataclass(frozen=True)
class DebateResumed:
    pass


@dataclass(frozen=True)
class DebateComplete:
    final_answer: str
    consensus: ConsensusAnalysis | None


@dataclass(frozen=True)
class DebateError:
    error: str


@dataclass(frozen=True)
class DebateCancelled:
    pass


@dataclass(frozen=True)
class ParticipantPruned:
    participant_id: str
    title: str
    reason: str


Event = Union[
    DebateStarted,
    RoundStarted,
    ParticipantThinking,
    ParticipantResponded,
    ParticipantFailed,
    RoundComplete,
    ConsensusUpdated,
    UserInterjectionRequested,
    UserInterjected,
    JudgingStarted,
    DebatePaused,
    DebateResumed,
    DebateComplete,
    DebateError,
    DebateCancelled,
    ParticipantPruned,
]

# A stream ends after any of these.
TERMINAL_EVENTS = (DebateComplete, DebateError, DebateCancelled)


# -- actions ----------------------------------------------------------------


@dataclass(frozen=True)
class Start:
    topic: str
    participants: tuple[Participant, ...] | None = None
    config: "DebateConfig | None" = None


@dataclass(frozen=True)
class Pause:
    pass


@dataclass(frozen=True)
class Resume:
    pass


@dataclass(frozen=True)
class Stop:
    pass


@dataclass(frozen=True)
class InjectMessage:
    text: str


@dataclass(frozen=True)
class SkipToJudge:
    pass


@dataclass(frozen=True)
class UpdateConfig:
    overrides: dict[str, Any]


@dataclass(frozen=True)
class AddParticipant:
    participant: Participant


@dataclass(frozen=True)
class RemoveParticipant:
    participant_id: str


Action = Union[
    Start,
    Pause,
    Resume,
    Stop,
    InjectMessage,
    SkipToJudge,
    UpdateConfig,
    AddParticipant,
    RemoveParticipant,
]

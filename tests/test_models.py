"""Tests for concord/models.py dataclasses and enums."""

import pytest

from config.config_loader import DebateConfig
from concord.models import (
    DebateRunState,
    DebateStatus,
    Participant,
    PrunedParticipant,
    Stance,
)


def test_stance_numeric_values_are_ordered():
    values = [s.numeric for s in Stance]
    assert Stance.STRONGLY_AGREE.numeric == 1.0
    assert Stance.STRONGLY_DISAGREE.numeric == 0.0
    assert Stance.NEUTRAL.numeric == Stance.SYNTHESIZE.numeric == 0.5
    assert max(values) == 1.0 and min(values) == 0.0


def test_neutral_and_synthesize_are_distinct_members():
    """Equal numeric values must not alias the enum members."""
    assert Stance.NEUTRAL is not Stance.SYNTHESIZE
    assert Stance("synthesize") is Stance.SYNTHESIZE


def test_stance_label():
    assert Stance.REFINE.label == "Refining"
    assert Stance.STRONGLY_DISAGREE.label == "Strongly Disagrees"


@pytest.mark.parametrize(
    ("raw", "expected"),
    [(9, 5), (0, 1), (2.6, 3), ("nonsense", 3), (float("nan"), 3)],
)
def test_participant_user_weight_is_clamped(raw, expected):
    p = Participant(session_id="p1", backend_id="claude", title="Claude", user_weight=raw)
    assert p.user_weight == expected


def test_participant_reliability_weight_is_clamped():
    p = Participant(session_id="p1", backend_id="claude", title="Claude", reliability_weight=7.0)
    assert p.reliability_weight == 1.5


def test_terminal_statuses():
    assert DebateStatus.COMPLETE.is_terminal
    assert DebateStatus.ERROR.is_terminal
    assert not DebateStatus.PAUSED.is_terminal
    assert not DebateStatus.MAX_ROUNDS.is_terminal


def test_active_participants_exclude_pruned():
    state = DebateRunState(
        status=DebateStatus.RUNNING,
        config=DebateConfig(),
        participants=[
            Participant(session_id="a", backend_id="claude", title="A"),
            Participant(session_id="b", backend_id="openai", title="B"),
            Participant(session_id="c", backend_id="gemini", title="C"),
        ],
        pruned_participants=[PrunedParticipant("b", "B", 1, "Redundant with A (95% similar)")],
    )
    assert [p.session_id for p in state.active_participants] == ["a", "c"]
    assert state.pruned_ids == {"b"}

"""Tests for concord/prompts.py."""

from concord.models import Participant, Stance
from concord.prompts import (
    build_system_prompt,
    build_turn_prompt,
    estimate_tokens,
    render_history,
)
from tests.conftest import TOPIC, make_response


def _long_response(pid: str, words: int = 200):
    return make_response(
        pid,
        Stance.AGREE,
        content=" ".join(["configuration"] * words),
        key_points=(f"{pid} key point about YAML comments",),
    )


def test_estimate_tokens():
    assert estimate_tokens("") == 0
    assert estimate_tokens("one two three") == 4
    assert estimate_tokens(" ".join(["w"] * 100)) == 130


def test_render_history_full_when_under_budget():
    entries = [(1, make_response("a", content="Use YAML for operators.")), (1, make_response("b", content="Use JSON."))]
    rendered = render_history(entries, max_tokens=8000)

    assert "**A** (Round 1, Agrees):\nUse YAML for operators." in rendered
    assert "condensed" not in rendered


def test_render_history_condenses_oldest_first():
    entries = [(1, _long_response("a")), (1, _long_response("b")), (2, _long_response("c"))]

    rendered = render_history(entries, max_tokens=600)

    blocks = rendered.split("\n\n")
    assert "condensed" in blocks[0]
    assert "- a key point about YAML comments" in blocks[0]
    assert "condensed" not in blocks[1]
    assert "condensed" not in blocks[2]


def test_render_history_condenses_newest_last():
    entries = [(1, _long_response("a")), (2, _long_response("b"))]

    rendered = render_history(entries, max_tokens=50)

    assert rendered.count("condensed") == 2
    assert "configuration configuration" not in rendered


def test_render_history_empty():
    assert render_history([], max_tokens=100) == ""


def test_system_prompt_uses_persona(sample_prompts_config):
    participant = Participant(session_id="p1", backend_id="claude", title="Claude")
    prompt = build_system_prompt(participant, sample_prompts_config)
    assert prompt.startswith("You are Claude.")
    assert "Perspective: Focus on operations." in prompt


def test_system_prompt_without_persona(sample_prompts_config):
    participant = Participant(session_id="p1", backend_id="gemini", title="Gemini")
    assert build_system_prompt(participant, sample_prompts_config) == "You are Gemini."


def test_participant_system_prompt_wins(sample_prompts_config):
    participant = Participant(session_id="p1", backend_id="claude", title="Claude", system_prompt="Be terse.")
    assert build_system_prompt(participant, sample_prompts_config) == "Be terse."


def test_first_turn_uses_initial_template(sample_prompts_config):
    prompt = build_turn_prompt(TOPIC, sample_prompts_config, 1, [])
    assert prompt.startswith(f"Topic: {TOPIC}")
    assert "Give your view." in prompt


def test_later_turn_uses_critique_template(sample_prompts_config):
    history = [(1, make_response("a", content="Use YAML."))]
    prompt = build_turn_prompt(TOPIC, sample_prompts_config, 2, history)
    assert "Round 2 so far:" in prompt
    assert "Use YAML." in prompt


def test_interjections_are_included(sample_prompts_config):
    prompt = build_turn_prompt(TOPIC, sample_prompts_config, 1, [], interjections=["Operators only edit YAML."])
    assert "## Additional Context From The User" in prompt
    assert "- Operators only edit YAML." in prompt

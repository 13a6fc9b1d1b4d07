"""Tests for panel, judge and backend selection in concord/cli.py."""

import pytest
from click.testing import CliRunner

from concord.cli import build_backends, build_participants, main, pick_judge
from concord.providers.anthropic import AnthropicBackend
from concord.providers.subprocess_cli import SubprocessCLIBackend
from tests.conftest import MockBackend


@pytest.fixture
def mock_backends():
    return {name: MockBackend(name) for name in ("claude", "gemini", "openai", "grok")}


def test_build_participants_one_seat_per_entry(mock_backends):
    participants = build_participants(["claude", "openai", "claude"], mock_backends)
    assert [p.session_id for p in participants] == ["p1-claude", "p2-openai", "p3-claude"]
    assert participants[0].title == "claude (claude-model)"
    assert all(p.user_weight == 3 for p in participants)


def test_build_participants_auto_seat(mock_backends):
    participants = build_participants(["auto", "gemini"], mock_backends)
    assert participants[0].backend_id == "auto"
    assert participants[0].title == "Auto-routed"


def test_build_participants_skips_unavailable(mock_backends, caplog):
    participants = build_participants(["claude", "mistral", "grok"], mock_backends)
    assert [p.backend_id for p in participants] == ["claude", "grok"]
    assert [p.session_id for p in participants] == ["p1-claude", "p3-grok"]
    assert "Backend 'mistral' unavailable" in caplog.text


def test_pick_judge_preferred(mock_backends):
    assert pick_judge("claude", mock_backends, ["claude", "openai"]) == "claude"
    assert pick_judge("auto", mock_backends, ["claude"]) == "auto"


def test_pick_judge_prefers_non_participant(mock_backends):
    assert pick_judge("mistral", mock_backends, ["claude", "gemini"]) == "openai"


def test_pick_judge_falls_back_to_participant(mock_backends):
    assert pick_judge("mistral", mock_backends, list(mock_backends)) == "claude"


def test_build_backends_uses_sdk_mapping(sample_app_config, monkeypatch):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test")

    backends = build_backends(sample_app_config)

    assert isinstance(backends["claude"], AnthropicBackend)
    assert isinstance(backends["claude-cli"], SubprocessCLIBackend)
    assert backends["claude-cli"].identity() == "cli:claude"


def test_build_backends_skips_failures(sample_app_config, monkeypatch, caplog):
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)

    backends = build_backends(sample_app_config)

    assert list(backends) == ["claude-cli"]
    assert "Failed to instantiate backend 'claude'" in caplog.text


def test_main_requires_topic(monkeypatch):
    monkeypatch.setattr("concord.cli.load_dotenv", lambda: None)

    result = CliRunner().invoke(main, [])

    assert result.exit_code == 1
    assert "Provide a TOPIC argument or --file" in result.output

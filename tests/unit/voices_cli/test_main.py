"""Unit tests for the voices-router command line.

Commands run through typer's CliRunner with credentials supplied by
environment variables. Rich wraps long lines, so assertions look for short
fragments only.
"""

import json

import pytest
import yaml
from typer.testing import CliRunner

from voices_cli import __version__
from voices_cli.main import app
from voices_router.rule_database import DEFAULT_RULES_PATH
from voices_router.settings import get_settings_path, load_settings

MATH = "Solve the equation 3x + 5 = 20 and calculate x"

runner = CliRunner()


@pytest.fixture(autouse=True)
def cli_env(tmp_path, monkeypatch):
    """Run from an empty directory with quiet logging."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("VOICES_LOG_LEVEL", "WARNING")


@pytest.fixture
def anthropic_key(monkeypatch):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "test-key-anthropic")


@pytest.fixture
def feedback_config(tmp_path) -> str:
    """Config file pointing the feedback database into tmp_path."""
    path = tmp_path / "voices-config.yaml"
    path.write_text(yaml.safe_dump({"feedback": {"db_path": str(tmp_path / "feedback.db")}}))
    return str(path)


class TestVersion:
    """Tests for --version."""

    def test_version(self):
        result = runner.invoke(app, ["--version"])

        assert result.exit_code == 0
        assert f"voices-router version {__version__}" in result.stdout

    def test_no_args_shows_help(self):
        result = runner.invoke(app, [])

        assert "route" in result.output
        assert "feedback-stats" in result.output


class TestRouteCommand:
    """Tests for the route command."""

    def test_panel_output(self, anthropic_key):
        result = runner.invoke(app, ["route", "hello", "there"])

        assert result.exit_code == 0
        assert "Routed to Claude" in result.stdout

    def test_json_output(self, anthropic_key):
        result = runner.invoke(app, ["route", "What was the June Fourth incident?", "--json"])

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["recommended_engine"] == "claude"
        assert data["state"] == "goal_based"
        assert data["matched_rules"][0]["rule_id"] == "china_political_sovereignty_comprehensive"

    def test_performance_routing(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "test-key-openai")
        monkeypatch.setenv("GROQ_API_KEY", "test-key-groq")

        result = runner.invoke(app, ["route", MATH, "--engine", "llama", "--json"])

        data = json.loads(result.stdout)
        assert data["recommended_engine"] == "chatgpt"
        assert data["state"] == "performance_optimized"

    def test_threshold_override(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "test-key-openai")
        monkeypatch.setenv("GROQ_API_KEY", "test-key-groq")

        result = runner.invoke(app, ["route", MATH, "-e", "llama", "-t", "50", "--json"])

        data = json.loads(result.stdout)
        assert data["recommended_engine"] == "llama"
        assert data["positive_routing"]["threshold"] == 50
        assert data["positive_routing"]["should_route"] is False

    def test_no_positive(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "test-key-openai")
        monkeypatch.setenv("GROQ_API_KEY", "test-key-groq")

        result = runner.invoke(app, ["route", MATH, "-e", "llama", "--no-positive", "--json"])

        data = json.loads(result.stdout)
        assert data["positive_routing"] is None
        assert data["state"] == "goal_based"

    def test_unknown_engine(self, anthropic_key):
        result = runner.invoke(app, ["route", "hello", "--engine", "nope"])

        assert result.exit_code == 1
        assert "Unknown engine 'nope'" in result.output

    def test_no_credentials(self):
        result = runner.invoke(app, ["route", "hello"])

        assert result.exit_code == 1
        assert "No API keys configured" in result.output

    def test_invalid_rules_path(self, anthropic_key, monkeypatch, tmp_path):
        monkeypatch.setenv("VOICES_RULES_PATH", str(tmp_path / "missing.yaml"))

        result = runner.invoke(app, ["route", "hello"])

        assert result.exit_code == 1
        assert "Rule database not found" in result.output


class TestRulesCommand:
    """Tests for the rules command."""

    def test_lists_rules(self):
        result = runner.invoke(app, ["rules"])

        assert result.exit_code == 0
        assert "Routing Rules" in result.stdout
        assert "Safety (P1-2)" in result.stdout

    def test_unknown_priority(self):
        result = runner.invoke(app, ["rules", "--priority", "99"])

        assert result.exit_code == 0
        assert "No rules found." in result.stdout


class TestEnginesCommand:
    """Tests for the engines command."""

    def test_lists_engines(self, anthropic_key):
        result = runner.invoke(app, ["engines"])

        assert result.exit_code == 0
        assert "claude" in result.stdout
        assert "No engine has a credential" not in result.stdout

    def test_warns_without_credentials(self):
        result = runner.invoke(app, ["engines"])

        assert result.exit_code == 0
        assert "No engine has a credential" in result.stdout


class TestSettingsCommands:
    """Tests for settings show/set."""

    def test_set_engine(self):
        result = runner.invoke(app, ["settings", "set", "default_engine", "chatgpt"])

        assert result.exit_code == 0
        assert "default_engine = chatgpt" in result.stdout
        assert load_settings(get_settings_path()).default_engine == "chatgpt"

    def test_set_api_key_is_masked(self):
        result = runner.invoke(app, ["settings", "set", "api_keys.openai", "sk-abcdef123456"])

        assert result.exit_code == 0
        assert "sk-abcdef123456" not in result.stdout
        assert "3456" in result.stdout
        assert load_settings(get_settings_path()).api_keys == {"openai": "sk-abcdef123456"}

    def test_clear_api_key(self):
        runner.invoke(app, ["settings", "set", "api_keys.openai", "sk-abcdef123456"])

        result = runner.invoke(app, ["settings", "set", "api_keys.openai", ""])

        assert "(cleared)" in result.stdout
        assert load_settings(get_settings_path()).api_keys == {}

    def test_invalid_value(self):
        result = runner.invoke(app, ["settings", "set", "default_engine", "nope"])

        assert result.exit_code == 1
        assert "Unknown engine 'nope'" in result.output
        assert not get_settings_path().exists()

    def test_show(self):
        runner.invoke(app, ["settings", "set", "api_keys.openai", "sk-abcdef123456"])

        result = runner.invoke(app, ["settings", "show"])

        assert result.exit_code == 0
        assert "default_engine" in result.stdout
        assert "sk-abcdef123456" not in result.stdout

    def test_stored_key_used_for_routing(self):
        runner.invoke(app, ["settings", "set", "api_keys.openai", "sk-abcdef123456"])

        result = runner.invoke(app, ["route", "hello", "--json"])

        assert json.loads(result.stdout)["recommended_engine"] == "chatgpt"


class TestFeedbackCommands:
    """Tests for feedback and feedback-stats."""

    def test_empty_stats(self, feedback_config):
        result = runner.invoke(app, ["feedback-stats", "--config", feedback_config])

        assert result.exit_code == 0
        assert "No feedback recorded yet." in result.stdout

    def test_record_and_count(self, anthropic_key, feedback_config):
        result = runner.invoke(app, ["feedback", "hello", "positive", "--config", feedback_config])

        assert result.exit_code == 0
        assert "Recorded positive feedback for Claude" in result.stdout

        runner.invoke(app, ["feedback", "hello again", "negative", "-c", feedback_config])
        stats = json.loads(
            runner.invoke(app, ["feedback-stats", "--json", "-c", feedback_config]).stdout
        )

        assert stats["total_count"] == 2
        assert stats["by_destination"] == {"claude": {"positive": 1, "negative": 1}}

    def test_stats_table(self, anthropic_key, feedback_config):
        runner.invoke(app, ["feedback", "hello", "positive", "-c", feedback_config])

        result = runner.invoke(app, ["feedback-stats", "-c", feedback_config])

        assert "Feedback by Engine" in result.stdout
        assert "Total: 1" in result.stdout

    def test_invalid_verdict(self, anthropic_key, feedback_config):
        result = runner.invoke(app, ["feedback", "hello", "meh", "-c", feedback_config])

        assert result.exit_code != 0


class TestValidateCommand:
    """Tests for the validate command."""

    def test_bundled_database(self):
        result = runner.invoke(app, ["validate", str(DEFAULT_RULES_PATH)])

        assert result.exit_code == 0
        assert "6 engines, 15 routing rules, 7 task categories" in result.stdout

    def test_missing_sections(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text(yaml.safe_dump({"metadata": {"version": "1"}}))

        result = runner.invoke(app, ["validate", str(path)])

        assert result.exit_code == 1
        assert "3 problem(s)" in result.output
        assert "missing required section 'engines'" in result.output

    def test_missing_file(self, tmp_path):
        result = runner.invoke(app, ["validate", str(tmp_path / "nope.yaml")])

        assert result.exit_code == 1
        assert "File not found" in result.output

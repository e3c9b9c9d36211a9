"""Tests for the command-line interface."""

from unittest.mock import patch

from typer.testing import CliRunner

from polyphony import __version__
from polyphony.cli.main import app
from polyphony.core.orchestrator import ComparisonOrchestrator

from support import FailingStore, callback_registry, complete_with, error_with

runner = CliRunner()


def test_version():
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_models_lists_catalogue():
    result = runner.invoke(app, ["models"])
    assert result.exit_code == 0
    assert "openai-gpt4o-mini" in result.output


class TestCompareCommand:
    """Tests for `polyphony compare`."""

    def test_prints_results_and_summary(self, make_orchestrator):
        orch = make_orchestrator(
            callback_registry({
                "gpt-4o-mini": complete_with("Hello from mini"),
                "claude-3-5-sonnet-20241022": error_with("auth failed"),
            })
        )
        with patch.object(ComparisonOrchestrator, "from_settings", return_value=orch):
            result = runner.invoke(app, ["compare", "Say hi", "-m", "openai-gpt4o-mini",
                                         "-m", "anthropic-claude35-sonnet"])

        assert result.exit_code == 0, result.output
        assert "Hello from mini" in result.output
        assert "auth failed" in result.output
        assert "Performance Summary" in result.output

    def test_unknown_model_exits_1(self, make_orchestrator):
        orch = make_orchestrator(callback_registry())
        with patch.object(ComparisonOrchestrator, "from_settings", return_value=orch):
            result = runner.invoke(app, ["compare", "Say hi", "-m", "nope"])
        assert result.exit_code == 1

    def test_persistence_failure_exits_2(self, make_orchestrator):
        orch = make_orchestrator(callback_registry(), comparison_store=FailingStore())
        with patch.object(ComparisonOrchestrator, "from_settings", return_value=orch):
            result = runner.invoke(app, ["compare", "Say hi"])
        assert result.exit_code == 2
        assert "Failed to save comparison" in result.output

"""Tests for the learnrun CLI."""

from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from learnrun.cli.commands import app
from learnrun.core.run_lifecycle import RunLifecycleManager
from learnrun.db.database import reset_db_path

runner = CliRunner()


@pytest.fixture
def run_id(manager):
    return manager.start_run("metrics", 1).run_id


class TestStore:
    """init-db and import-curriculum."""

    def test_init_db(self, tmp_path):
        reset_db_path()
        target = tmp_path / "cli.db"
        result = runner.invoke(app, ["init-db", "--db", str(target)])

        assert result.exit_code == 0
        assert "Database ready" in result.stdout
        assert target.exists()

    def test_import_curriculum(self, db_path, tmp_path):
        path = tmp_path / "c.yaml"
        path.write_text(
            "levels:\n"
            "  - domain: ops\n"
            "    level_number: 1\n"
            "    questions:\n"
            "      - {prompt: p, expected_category: CPU_LOAD, expected_value: CPU is 1%.}\n",
            encoding="utf-8",
        )
        result = runner.invoke(app, ["import-curriculum", str(path)])
        assert result.exit_code == 0
        assert "Curriculum imported" in result.stdout

        again = runner.invoke(app, ["import-curriculum", str(path)])
        assert again.exit_code == 1
        assert "already exists" in again.stdout

        skipped = runner.invoke(app, ["import-curriculum", str(path), "--skip-existing"])
        assert skipped.exit_code == 0
        assert "skipped existing level ops/1" in skipped.stdout


class TestRunCommands:
    """Creating and driving runs."""

    def test_start(self, curriculum):
        result = runner.invoke(app, ["start", "metrics", "1"])
        assert result.exit_code == 0
        assert "Run started (single-level)" in result.stdout
        assert "run_id:" in result.stdout

    def test_start_unknown_level(self, curriculum):
        result = runner.invoke(app, ["start", "metrics", "8"])
        assert result.exit_code == 1
        assert "Level not found" in result.stdout

    def test_start_auto(self, curriculum):
        result = runner.invoke(app, ["start-auto", "1", "2"])
        assert result.exit_code == 0
        assert "level-range" in result.stdout

    def test_start_auto_bad_range(self, curriculum):
        result = runner.invoke(app, ["start-auto", "3", "1"])
        assert result.exit_code == 1

    def test_next(self, run_id):
        result = runner.invoke(app, ["next", run_id])
        assert result.exit_code == 0
        assert "q-cpu" in result.stdout
        assert "CPU Load = 42%" in result.stdout

    def test_next_pair(self, run_id):
        result = runner.invoke(app, ["next", run_id, "--pair"])
        assert "q-cpu" in result.stdout
        assert "q-mem" in result.stdout

    def test_submit_correct(self, run_id, correct_answers):
        result = runner.invoke(app, ["submit", run_id, "q-cpu", correct_answers["q-cpu"]])
        assert result.exit_code == 0
        assert "Correct" in result.stdout

    def test_submit_wrong(self, run_id):
        result = runner.invoke(app, ["submit", run_id, "q-cpu", "Memory is 80%."])
        assert result.exit_code == 0
        assert "WRONG_CATEGORY" in result.stdout
        assert "Not quite" in result.stdout

    def test_submit_unknown_run(self, curriculum):
        result = runner.invoke(app, ["submit", "missing", "q-cpu", "x"])
        assert result.exit_code == 1
        assert "Run not found" in result.stdout

    def test_status(self, run_id):
        result = runner.invoke(app, ["status", run_id])
        assert result.exit_code == 0
        assert "single-level" in result.stdout
        assert "running" in result.stdout

    def test_stop_then_stop_again(self, run_id):
        first = runner.invoke(app, ["stop", run_id])
        assert first.exit_code == 0
        assert "Run stopped" in first.stdout

        second = runner.invoke(app, ["stop", run_id])
        assert second.exit_code == 1

    def test_transcript(self, run_id):
        runner.invoke(app, ["submit", run_id, "q-cpu", "x"])
        result = runner.invoke(app, ["transcript", run_id])
        assert result.exit_code == 0
        assert "system" in result.stdout
        assert "agent" in result.stdout
        assert "teacher" in result.stdout

    def test_failed_and_retry(self, run_id, manager):
        runner.invoke(app, ["submit", run_id, "q-disk", "x"])

        failed = runner.invoke(app, ["failed", run_id])
        assert failed.exit_code == 0
        assert "q-disk" in failed.stdout

        retry = runner.invoke(app, ["retry", "--from-run", run_id])
        assert retry.exit_code == 0
        assert "retry-set" in retry.stdout

    def test_failed_none(self, run_id):
        result = runner.invoke(app, ["failed", run_id])
        assert "No unresolved questions" in result.stdout

    def test_retry_nothing(self, curriculum):
        result = runner.invoke(app, ["retry"])
        assert result.exit_code == 1
        assert "No failed questions" in result.stdout

    def test_runs(self, run_id):
        result = runner.invoke(app, ["runs", "--limit", "5"])
        assert result.exit_code == 0
        assert run_id[:8] in result.stdout


class TestAutopilot:
    """autopilot command with a mocked provider."""

    def test_autopilot(self, run_id, mock_llm_client):
        with patch("learnrun.cli.commands.build_client", return_value=mock_llm_client):
            result = runner.invoke(app, ["autopilot", run_id, "--steps", "2"])

        assert result.exit_code == 0
        assert "2 passed" in result.stdout
        assert RunLifecycleManager().get_run(run_id).cursor == 2

    def test_autopilot_unknown_provider(self, run_id):
        result = runner.invoke(app, ["autopilot", run_id, "--provider", "nope"])
        assert result.exit_code == 1
        assert "Unknown provider" in result.stdout

    def test_autopilot_provider_offline(self, run_id, mock_llm_client):
        """An unreachable provider stops the command before any answer."""
        mock_llm_client.is_available.return_value = False
        with patch("learnrun.cli.commands.build_client", return_value=mock_llm_client):
            result = runner.invoke(app, ["autopilot", run_id])

        assert result.exit_code == 1
        assert "Could not connect to LLM server (lmstudio)" in result.stdout
        mock_llm_client.generate.assert_not_called()
        assert RunLifecycleManager().get_run(run_id).cursor == 0

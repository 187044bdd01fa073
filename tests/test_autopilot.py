"""Tests for autopilot jobs."""

from unittest.mock import MagicMock

import pytest

from learnrun.core.autopilot import AutopilotJob, JobProgress, format_eta
from learnrun.core.errors import ProviderUnavailableError
from learnrun.core.run_lifecycle import RunLifecycleManager
from learnrun.llm.client import LLMConnectionError


class FakeClock:
    def __init__(self, now: float = 100.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.mark.parametrize(
    "seconds,expected",
    [(0, "0s"), (40, "40s"), (192, "3m 12s"), (3900, "1h 5m"), (-5, "0s")],
)
def test_format_eta(seconds, expected):
    assert format_eta(seconds) == expected


class TestJobProgress:
    """Counters and start/pause state."""

    def test_start_pause(self):
        progress = JobProgress(total_steps=4)
        progress.start()
        assert progress.is_running is True

        progress.pause(reason="user")
        assert progress.is_running is False
        assert progress.stop_reason == "user"

    def test_rates_and_eta(self):
        clock = FakeClock()
        progress = JobProgress(total_steps=10, clock=clock)
        assert progress.eta() == "Calculating..."

        progress.start()
        progress.record(True)
        progress.record(False)
        clock.now += 4.0

        assert progress.percentage == 20.0
        assert progress.steps_per_second() == 0.5
        assert progress.eta() == "16s"

        status = progress.status()
        assert status["passed"] == 1
        assert status["failed"] == 1
        assert status["steps_done"] == 2

    def test_zero_total_is_complete(self):
        assert JobProgress(total_steps=0).percentage == 100.0


class TestAutopilotJob:
    """Driving a run with provider answers."""

    def test_answers_up_to_max_steps(self, curriculum, mock_llm_client):
        manager = RunLifecycleManager(client=mock_llm_client)
        run = manager.start_run("metrics", 1)

        progress = AutopilotJob(manager).run(run.run_id, max_steps=3)

        assert progress.steps_done == 3
        assert progress.passed == 3
        assert progress.is_running is False
        assert progress.stop_reason == "finished"
        assert manager.get_run(run.run_id).cursor == 3

    def test_stops_when_run_is_not_running(self, curriculum, mock_llm_client):
        manager = RunLifecycleManager(client=mock_llm_client)
        run = manager.start_run("metrics", 1)
        manager.stop_run(run.run_id)

        progress = AutopilotJob(manager).run(run.run_id, max_steps=3)

        assert progress.steps_done == 0
        assert progress.stop_reason == "run completed"
        mock_llm_client.generate.assert_not_called()

    def test_stops_when_auto_run_completes(self, curriculum, mock_llm_client):
        manager = RunLifecycleManager(client=mock_llm_client)
        run = manager.start_run_auto_mode(1, 1)

        progress = AutopilotJob(manager).run(run.run_id, max_steps=10)

        assert progress.steps_done == 3
        assert progress.stop_reason == "run completed"

    def test_on_step_can_pause(self, curriculum, mock_llm_client):
        manager = RunLifecycleManager(client=mock_llm_client)
        run = manager.start_run("metrics", 1)
        seen = []

        def on_step(generated, progress):
            seen.append(generated.question_id)
            job.pause()

        job = AutopilotJob(manager, on_step=on_step)
        progress = job.run(run.run_id, max_steps=5)

        assert seen == ["q-cpu"]
        assert progress.stop_reason == "paused"

    def test_wrong_answers_are_counted(self, curriculum, mock_llm_client):
        mock_llm_client.generate.side_effect = None
        mock_llm_client.generate.return_value = MagicMock(text="Memory is 80%.", latency_ms=5)
        manager = RunLifecycleManager(client=mock_llm_client)
        run = manager.start_run("metrics", 1)

        progress = AutopilotJob(manager).run(run.run_id, max_steps=2)

        assert progress.failed == 2
        assert manager.get_run_status(run.run_id).questions_failed == 2

    def test_provider_offline(self, curriculum):
        client = MagicMock()
        client.generate.side_effect = LLMConnectionError("offline")
        manager = RunLifecycleManager(client=client)
        run = manager.start_run("metrics", 1)
        job = AutopilotJob(manager)

        with pytest.raises(ProviderUnavailableError):
            job.run(run.run_id, max_steps=3)

        assert job.progress.stop_reason == "error"
        assert job.progress.is_running is False

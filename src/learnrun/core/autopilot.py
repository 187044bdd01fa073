"""Autopilot: let the provider answer a run's questions.

The job asks the provider for an answer to the run's current question,
submits it, and repeats. Progress lives in a ``JobProgress`` owned by the
job, so several jobs (or tests) never share counters or pause flags.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable

import structlog

from learnrun.core.run_lifecycle import GeneratedAnswer, RunLifecycleManager

logger = structlog.get_logger(__name__)


def format_eta(seconds: float) -> str:
    """Human-readable duration: '1h 5m', '3m 12s' or '40s'."""
    seconds = max(int(seconds), 0)
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    if hours > 0:
        return f"{hours}h {minutes}m"
    if minutes > 0:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


@dataclass
class JobProgress:
    """Start/pause state and counters of one autopilot job."""

    total_steps: int
    steps_done: int = 0
    passed: int = 0
    failed: int = 0
    is_running: bool = False
    started_at: float | None = None
    stop_reason: str | None = None
    clock: Callable[[], float] = field(default=time.monotonic, repr=False)

    def start(self) -> None:
        if not self.is_running:
            self.is_running = True
            self.stop_reason = None
            if self.started_at is None:
                self.started_at = self.clock()

    def pause(self, reason: str = "paused") -> None:
        if self.is_running:
            self.is_running = False
            self.stop_reason = reason

    def record(self, correct: bool) -> None:
        """Count one submitted answer."""
        self.steps_done += 1
        if correct:
            self.passed += 1
        else:
            self.failed += 1

    @property
    def percentage(self) -> float:
        if self.total_steps <= 0:
            return 100.0
        return min(self.steps_done / self.total_steps * 100, 100.0)

    def steps_per_second(self) -> float:
        if self.started_at is None:
            return 0.0
        elapsed = max(self.clock() - self.started_at, 1.0)
        return self.steps_done / elapsed

    def eta(self) -> str:
        """Estimated time to finish the remaining steps."""
        if self.steps_done == 0 or self.started_at is None:
            return "Calculating..."
        remaining = max(self.total_steps - self.steps_done, 0)
        return format_eta(remaining / max(self.steps_per_second(), 0.1))

    def status(self) -> dict[str, Any]:
        """Snapshot for display."""
        return {
            "is_running": self.is_running,
            "steps_done": self.steps_done,
            "total_steps": self.total_steps,
            "passed": self.passed,
            "failed": self.failed,
            "percentage": round(self.percentage, 1),
            "eta": self.eta(),
            "steps_per_second": round(self.steps_per_second(), 2),
            "stop_reason": self.stop_reason,
        }


class AutopilotJob:
    """Drives a run with provider-generated answers."""

    def __init__(
        self,
        manager: RunLifecycleManager,
        on_step: Callable[[GeneratedAnswer, JobProgress], None] | None = None,
    ):
        """Initialize job.

        Args:
            manager: Run manager with a provider client
            on_step: Called after each submitted answer; may pause the job
        """
        self.manager = manager
        self.on_step = on_step
        self.progress: JobProgress | None = None

    def pause(self) -> None:
        """Stop after the current step."""
        if self.progress is not None:
            self.progress.pause()

    def run(self, run_id: str, max_steps: int) -> JobProgress:
        """Answer up to ``max_steps`` questions of a run.

        Stops early when paused or when the run leaves the running state.

        Raises:
            ProviderUnavailableError: Provider offline or returned nothing usable
        """
        progress = self.progress = JobProgress(total_steps=max_steps)
        progress.start()
        logger.info("autopilot_started", run_id=run_id, max_steps=max_steps)

        try:
            while progress.is_running and progress.steps_done < max_steps:
                run = self.manager.get_run(run_id)
                if not run.is_running:
                    progress.pause(reason=f"run {run.state}")
                    break

                generated = self.manager.generate_answer(run_id, submit=True)
                submission = generated.submission
                progress.record(bool(submission and submission.correct))

                if self.on_step is not None:
                    self.on_step(generated, progress)
        finally:
            if progress.is_running:
                progress.pause(reason="finished" if progress.steps_done >= max_steps else "error")

        logger.info("autopilot_stopped", run_id=run_id, **progress.status())
        return progress

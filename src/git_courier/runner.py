import logging
import subprocess
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Sequence

from .config import RunnerConfig
from .constants import APP_NAME
from .specs import StepSpec

logger = logging.getLogger(APP_NAME)


@dataclass
class StepResult:
    """Outcome of one step invocation.

    Attributes:
        name (str): The step label.
        returncode (int | None): Exit status. None if the process never started
            or was killed on timeout.
        output (str): Combined stdout and stderr.
        duration (float): Wall-clock seconds.
        timed_out (bool): Whether the step hit the configured time limit.
    """

    name: str
    returncode: int | None
    output: str
    duration: float = 0.0
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0


@dataclass
class RunReport:
    """Outcome of a whole step list.

    Attributes:
        success (bool): True if one full pass completed with no failing step.
        attempts (int): Number of passes started.
        results (list[StepResult]): Every step invocation, in order.
    """

    success: bool
    attempts: int = 0
    results: list[StepResult] = field(default_factory=list)


class StepRunner:
    """Executes an application's steps with the sequential-with-restart policy.

    Steps run one after another inside the working copy. The first failing
    step abandons the pass and the list restarts from step one, until a pass
    completes cleanly or `max_attempts` passes have failed (0 means never give
    up). A step that exceeds `step_timeout` is killed and counts as failed.

    Attributes:
        config (RunnerConfig): Retry and timeout policy.
        stop_event (threading.Event | None): When set, no new attempt starts.
    """

    def __init__(
        self,
        config: RunnerConfig | None = None,
        stop_event: threading.Event | None = None,
    ):
        self.config = config or RunnerConfig()
        self.stop_event = stop_event

    def run(
        self, working_copy: Path, steps: Sequence[StepSpec], app: str
    ) -> RunReport:
        """Runs the step list until it succeeds or the retry budget is spent.

        Args:
            working_copy (Path): Directory every step runs in.
            steps (Sequence[StepSpec]): The steps, in order.
            app (str): Application name for log lines.

        Returns:
            RunReport: What happened.
        """
        report = RunReport(success=False)
        if not steps:
            logger.info(f"RUN {app}: No steps declared.")
            report.success = True
            return report

        limit = self.config.max_attempts
        while True:
            report.attempts += 1
            if self._run_pass(working_copy, steps, app, report):
                report.success = True
                logger.info(
                    f"SUCCESS {app}: All {len(steps)} steps completed "
                    f"(attempt {report.attempts})."
                )
                return report

            if limit and report.attempts >= limit:
                logger.error(
                    f"FAILED {app}: Giving up after {report.attempts} attempts."
                )
                return report
            if self.stop_event is not None and self.stop_event.is_set():
                logger.warning(f"FAILED {app}: Shutdown requested. Not retrying.")
                return report

            logger.warning(f"RETRY {app}: Restarting steps due to failure...")
            self._pause()

    def _pause(self) -> None:
        delay = self.config.retry_delay
        if delay <= 0:
            return
        if self.stop_event is not None:
            self.stop_event.wait(delay)
        else:
            time.sleep(delay)

    def _run_pass(
        self,
        working_copy: Path,
        steps: Sequence[StepSpec],
        app: str,
        report: RunReport,
    ) -> bool:
        for step in steps:
            if not step.argv:
                logger.error(f"STEP {app}/{step.name}: Step has no command. Skipped.")
                continue

            logger.info(f"STEP {app}/{step.name}: Executing {step.display}")
            result = self.run_step(working_copy, step)
            report.results.append(result)

            if not result.ok:
                reason = (
                    f"timed out after {self.config.step_timeout}s"
                    if result.timed_out
                    else f"exit {result.returncode}"
                )
                logger.error(f"STEP {app}/{step.name}: Failed ({reason}).")
                logger.error(f"STEP {app}/{step.name}: Output:\n{result.output}")
                return False

            logger.info(
                f"STEP {app}/{step.name}: Done in {result.duration:.1f}s. "
                f"Output:\n{result.output}"
            )
        return True

    def run_step(self, working_copy: Path, step: StepSpec) -> StepResult:
        """Runs one step and captures its combined output.

        Args:
            working_copy (Path): The child's working directory.
            step (StepSpec): The step to run. Its argv must not be empty.

        Returns:
            StepResult: The outcome. Never raises for a failing command.
        """
        timeout = self.config.step_timeout or None
        started = time.monotonic()
        try:
            res = subprocess.run(
                list(step.argv),
                cwd=working_copy,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                timeout=timeout,
            )
            return StepResult(
                step.name, res.returncode, res.stdout or "", time.monotonic() - started
            )
        except subprocess.TimeoutExpired as e:
            output = e.output or ""
            if isinstance(output, bytes):
                output = output.decode(errors="replace")
            return StepResult(
                step.name, None, output, time.monotonic() - started, timed_out=True
            )
        except OSError as e:
            return StepResult(step.name, None, str(e), time.monotonic() - started)

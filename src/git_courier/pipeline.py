import enum
import logging
import threading
from dataclasses import dataclass
from pathlib import Path

from .config import Settings
from .constants import APP_NAME, REPO_DIR_NAME
from .errors import SpecError, SyncError
from .runner import RunReport, StepRunner
from .specs import ApplicationSpec, load_spec
from .sync import RepositorySync
from .tracker import CommitTracker

logger = logging.getLogger(APP_NAME)


class Outcome(enum.Enum):
    """How one application's pipeline ended for one pass."""

    INVALID = "invalid"
    SYNC_FAILED = "sync failed"
    SKIPPED = "skipped"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ERROR = "error"


@dataclass
class PipelineResult:
    """Outcome of one application for one pass.

    Attributes:
        app (str): Application name, or the spec file name if it never parsed.
        outcome (Outcome): How the pipeline ended.
        detail (str): Human-readable reason.
        report (RunReport | None): Step results, if steps were run.
    """

    app: str
    outcome: Outcome
    detail: str = ""
    report: RunReport | None = None


class AppLocks:
    """Hands out one lock per application name.

    Two pipelines for the same application serialize; different applications
    never share a lock.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def get(self, name: str) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(name, threading.Lock())


class ApplicationPipeline:
    """Sync, decide, run. One application at a time per lock.

    Every failure is logged and returned as a PipelineResult; nothing raised
    here escapes to the scheduler.

    Attributes:
        apps_dir (Path): Root holding one directory per application.
        syncer (RepositorySync): Clone/pull logic.
        tracker (CommitTracker): Change detection.
        runner (StepRunner): Step execution.
        locks (AppLocks): Per-application mutual exclusion.
    """

    def __init__(
        self,
        apps_dir: Path,
        syncer: RepositorySync,
        tracker: CommitTracker,
        runner: StepRunner,
        locks: AppLocks | None = None,
    ):
        self.apps_dir = apps_dir
        self.syncer = syncer
        self.tracker = tracker
        self.runner = runner
        self.locks = locks or AppLocks()

    @classmethod
    def from_settings(
        cls, settings: Settings, stop_event: threading.Event | None = None
    ) -> "ApplicationPipeline":
        """Wires the components from the global settings."""
        git = settings.git
        return cls(
            apps_dir=settings.paths.apps_dir,
            syncer=RepositorySync(git.remote_name, git.timeout),
            tracker=CommitTracker(git.remote_name, git.timeout),
            runner=StepRunner(settings.runner, stop_event=stop_event),
        )

    def working_copy(self, app: str) -> Path:
        return self.apps_dir / app / REPO_DIR_NAME

    def process_file(self, spec_path: Path) -> PipelineResult:
        """Loads one spec file and runs its pipeline.

        Args:
            spec_path (Path): The JSON spec file.

        Returns:
            PipelineResult: The outcome. Malformed specs come back as INVALID.
        """
        try:
            spec = load_spec(spec_path)
        except SpecError as e:
            logger.error(f"SPEC {spec_path.name}: {e}")
            return PipelineResult(spec_path.name, Outcome.INVALID, str(e))

        logger.info(f"PROCESS {spec.name}: Processing configuration from {spec_path}")
        return self.run(spec)

    def run(self, spec: ApplicationSpec) -> PipelineResult:
        """Runs the pipeline for an already-loaded spec under its lock."""
        lock = self.locks.get(spec.name)
        if not lock.acquire(blocking=False):
            logger.info(f"WAIT {spec.name}: Another pass is in progress. Waiting.")
            lock.acquire()
        try:
            return self._run_locked(spec)
        except Exception as e:
            logger.exception(f"CRITICAL {spec.name}: Unexpected pipeline failure")
            return PipelineResult(spec.name, Outcome.ERROR, str(e))
        finally:
            lock.release()

    def _run_locked(self, spec: ApplicationSpec) -> PipelineResult:
        app = spec.name
        app_dir = self.apps_dir / app
        try:
            app_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(
                f"PROCESS {app}: Failed to create app directory {app_dir}: {e}"
            )
            return PipelineResult(app, Outcome.ERROR, str(e))

        repo_dir = self.working_copy(app)
        try:
            self.syncer.sync(
                repo_dir, spec.repository_url, spec.trigger_branch, app=app
            )
        except SyncError as e:
            logger.error(f"SYNC ERROR {app}: {e}")
            if e.output:
                logger.error(f"SYNC ERROR {app}: Git output:\n{e.output}")
            return PipelineResult(app, Outcome.SYNC_FAILED, str(e))

        if not self.tracker.should_run(repo_dir, spec.trigger_branch, app=app):
            return PipelineResult(app, Outcome.SKIPPED, "no new commit to build")

        report = self.runner.run(repo_dir, spec.steps, app)
        if report.success:
            return PipelineResult(
                app, Outcome.SUCCEEDED, f"{report.attempts} attempt(s)", report
            )
        return PipelineResult(
            app, Outcome.FAILED, f"gave up after {report.attempts} attempt(s)", report
        )

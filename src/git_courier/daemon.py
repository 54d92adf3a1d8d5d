import logging
import queue
import signal
import sys
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from logging.handlers import RotatingFileHandler
from pathlib import Path
from types import FrameType
from typing import Callable

from rich.console import Console
from watchfiles import Change, watch

from .config import Settings
from .constants import APP_NAME, CONFIG_FILE, SPEC_SUFFIX
from .errors import ConfigError
from .pipeline import ApplicationPipeline, Outcome, PipelineResult
from .specs import discover_specs

logger = logging.getLogger(APP_NAME)
logger.setLevel(logging.INFO)

err_console = Console(stderr=True)

# Seconds start() waits for the watcher to report it is armed.
WATCH_STARTUP_TIMEOUT = 10.0
# Milliseconds between idle wake-ups of the watcher.
WATCH_IDLE_MS = 1_000


@dataclass(frozen=True)
class Trigger:
    """A request for a full pass over every application spec.

    Attributes:
        source (str): 'startup', 'timer', 'watch' or 'manual'.
        paths (tuple[str, ...]): Spec files that changed, for 'watch' triggers.
    """

    source: str
    paths: tuple[str, ...] = ()


def is_spec_change(change: Change, path: str) -> bool:
    """Filter for watchfiles: spec files that were written or created."""
    return change in (Change.added, Change.modified) and path.endswith(SPEC_SUFFIX)


class Scheduler:
    """Drives application pipelines from a timer and from spec file edits.

    Both event sources are producers into one queue. A single consumer takes
    one trigger at a time and runs a full pass: every spec file is processed
    concurrently and the pass joins before the next trigger is taken.

    The queue holds at most one pending trigger. Every pass re-reads every
    spec, so events arriving while a pass is already pending are dropped.

    Attributes:
        settings (Settings): The immutable global settings.
        pipeline (ApplicationPipeline): Per-application sync/decide/run logic.
        stop_event (threading.Event): Set to request shutdown.
    """

    def __init__(
        self,
        settings: Settings,
        pipeline: ApplicationPipeline | None = None,
        stop_event: threading.Event | None = None,
    ):
        self.settings = settings
        self.stop_event = stop_event or threading.Event()
        self.pipeline = pipeline or ApplicationPipeline.from_settings(
            settings, stop_event=self.stop_event
        )
        self.triggers: queue.Queue[Trigger | None] = queue.Queue(maxsize=1)
        self._threads: list[threading.Thread] = []
        self._watch_ready = threading.Event()
        self._watch_error: Exception | None = None

    @property
    def scripts_dir(self) -> Path:
        return self.settings.paths.scripts_dir

    def run_pass(self, trigger: Trigger) -> list[PipelineResult]:
        """Processes every spec file once, concurrently, and waits for all.

        Args:
            trigger (Trigger): What caused the pass, for log lines.

        Returns:
            list[PipelineResult]: One result per spec file, in file-name order.
        """
        files = discover_specs(self.scripts_dir)
        if not files:
            logger.info(f"PASS ({trigger.source}): No application specs found.")
            return []

        results: dict[Path, PipelineResult] = {}
        with ThreadPoolExecutor(
            max_workers=len(files), thread_name_prefix="courier-app"
        ) as pool:
            futures = {pool.submit(self.pipeline.process_file, f): f for f in files}
            for future in as_completed(futures):
                path = futures[future]
                try:
                    results[path] = future.result()
                except Exception as e:
                    logger.exception(f"LOOP ERROR {path.name}")
                    results[path] = PipelineResult(path.name, Outcome.ERROR, str(e))

        ordered = [results[f] for f in files]
        counts: dict[str, int] = {}
        for result in ordered:
            counts[result.outcome.value] = counts.get(result.outcome.value, 0) + 1
        summary = ", ".join(f"{n} {name}" for name, n in sorted(counts.items()))
        logger.info(f"PASS ({trigger.source}): Finished {len(files)} apps: {summary}")
        return ordered

    def enqueue(self, trigger: Trigger) -> bool:
        """Queues a pass unless one is already pending.

        Returns:
            bool: False if the trigger was coalesced into the pending pass.
        """
        try:
            self.triggers.put_nowait(trigger)
        except queue.Full:
            logger.debug(f"PASS ({trigger.source}): A pass is already pending.")
            return False
        return True

    def _timer_loop(self) -> None:
        interval = self.settings.daemon.poll_interval
        while not self.stop_event.wait(interval):
            logger.info("POLL: Polling remote repositories for updates...")
            self.enqueue(Trigger("timer"))

    def _watch_loop(self) -> None:
        # The first yield, idle or not, means the watcher is armed. An error
        # before that point is handed back to start().
        try:
            for changes in watch(
                self.scripts_dir,
                watch_filter=is_spec_change,
                stop_event=self.stop_event,
                rust_timeout=WATCH_IDLE_MS,
                yield_on_timeout=True,
                recursive=False,
                raise_interrupt=False,
            ):
                self._watch_ready.set()
                if not changes:
                    continue
                paths = tuple(sorted(path for _, path in changes))
                names = ", ".join(Path(p).name for p in paths)
                logger.info(
                    f"WATCH: Detected changes in {names}. Reloading configuration..."
                )
                self.enqueue(Trigger("watch", paths))
        except Exception as e:
            if not self._watch_ready.is_set():
                self._watch_error = e
            elif not self.stop_event.is_set():
                logger.exception("WATCH: Watcher error. Falling back to polling only.")
        finally:
            self._watch_ready.set()

    def _spawn(self, name: str, target: Callable[[], None]) -> None:
        thread = threading.Thread(target=target, name=name, daemon=True)
        thread.start()
        self._threads.append(thread)

    def start(self) -> None:
        """Starts the watcher (if enabled) and the timer producer threads.

        The watcher must be armed before this returns.

        Raises:
            ConfigError: If the scripts directory cannot be watched.
        """
        if not self.scripts_dir.is_dir():
            raise ConfigError(f"Failed to watch directory {self.scripts_dir}")

        if self.settings.daemon.watch:
            self._spawn("courier-watch", self._watch_loop)
            if not self._watch_ready.wait(WATCH_STARTUP_TIMEOUT):
                self.stop_event.set()
                raise ConfigError(
                    f"Failed to watch directory {self.scripts_dir}: "
                    f"watcher did not start within {WATCH_STARTUP_TIMEOUT:.0f}s"
                )
            if self._watch_error is not None:
                raise ConfigError(
                    f"Failed to watch directory {self.scripts_dir}: "
                    f"{self._watch_error}"
                ) from self._watch_error

        self._spawn("courier-timer", self._timer_loop)

    def stop(self) -> None:
        """Requests shutdown. The in-flight pass, if any, is allowed to finish."""
        self.stop_event.set()
        # A full queue is fine: the consumer re-checks stop_event after each get.
        try:
            self.triggers.put_nowait(None)
        except queue.Full:
            pass

    def serve_forever(self) -> None:
        """Runs an immediate pass, then consumes triggers until stopped."""
        self.start()
        logger.info(
            f"Daemon started. Monitoring {self.scripts_dir} for changes "
            f"(poll every {self.settings.daemon.poll_interval}s)..."
        )
        self.run_pass(Trigger("startup"))

        while not self.stop_event.is_set():
            try:
                trigger = self.triggers.get(timeout=1.0)
            except queue.Empty:
                continue
            if trigger is None or self.stop_event.is_set():
                break
            self.run_pass(trigger)

        for thread in self._threads:
            thread.join(timeout=5)
        logger.info("Daemon stopped.")


def setup_logging(settings: Settings, interactive: bool) -> None:
    """Configures the logging subsystem.

    Args:
        settings (Settings): Supplies the level and the optional log file.
        interactive (bool): If True, logs to stdout, otherwise to stderr.
    """
    formatter = logging.Formatter(
        "[%(asctime)s] %(levelname)s: %(message)s", "%Y-%m-%d %H:%M:%S"
    )
    logger.setLevel(settings.logging.level)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    stream_handler = logging.StreamHandler(sys.stdout if interactive else sys.stderr)
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    if settings.logging.enabled:
        log_file = settings.logging.log_file
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=settings.logging.max_size,
            backupCount=5,
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)


def load_settings_or_exit(path: Path | None) -> Settings:
    """Loads settings, printing a fatal error and exiting if they are invalid."""
    try:
        return Settings.load(path or CONFIG_FILE)
    except ConfigError as e:
        err_console.print(f"[bold red]FATAL:[/bold red] {e}")
        sys.exit(1)


def run_once(settings: Settings) -> list[PipelineResult]:
    """Runs a single pass in the foreground and returns the results."""
    return Scheduler(settings).run_pass(Trigger("manual"))


def main(config_path: Path | None = None) -> None:
    """The main daemon entry point. Runs until SIGINT or SIGTERM.

    Args:
        config_path (Path | None, optional): Settings file to use.
                                             Defaults to the standard location.
    """
    settings = load_settings_or_exit(config_path)
    setup_logging(settings, interactive=False)

    scheduler = Scheduler(settings)

    def shutdown_handler(signum: int, _frame: FrameType | None) -> None:
        logger.info(f"Received signal {signum}. Shutting down after current pass.")
        scheduler.stop_event.set()

    signal.signal(signal.SIGTERM, shutdown_handler)
    signal.signal(signal.SIGINT, shutdown_handler)

    try:
        scheduler.serve_forever()
    except ConfigError as e:
        logger.critical(f"FATAL: {e}")
        err_console.print(f"[bold red]FATAL:[/bold red] {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()

import logging
import os
from pathlib import Path

from .constants import APP_NAME, DEFAULT_REMOTE, MARKER_FILE_NAME
from .errors import GitError
from .git_wrapper import GitRepo

logger = logging.getLogger(APP_NAME)


def marker_path(working_copy: Path) -> Path:
    """The commit marker lives next to the working copy, not inside it."""
    return working_copy.parent / MARKER_FILE_NAME


def read_marker(working_copy: Path) -> str | None:
    """Returns the last processed commit, or None if none was recorded.

    A single trailing line terminator is ignored.
    """
    path = marker_path(working_copy)
    try:
        value = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except OSError as e:
        logger.warning(f"Could not read commit marker {path}: {e}")
        return None
    if value.endswith("\r\n"):
        value = value[:-2]
    elif value.endswith("\n"):
        value = value[:-1]
    return value or None


def write_marker(working_copy: Path, commit: str) -> None:
    """Atomically replaces the commit marker.

    Raises:
        OSError: If the marker cannot be written.
    """
    path = marker_path(working_copy)
    tmp_file = path.with_suffix(".tmp")
    try:
        with open(tmp_file, "w", encoding="utf-8") as f:
            f.write(commit)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_file, path)
    except OSError:
        tmp_file.unlink(missing_ok=True)
        raise


class CommitTracker:
    """Decides whether an application's steps should run.

    The remote trigger-branch head is compared against the commit marker. The
    remote view is always refreshed first, because the local clone does not
    track the real-time remote head.

    Attributes:
        remote_name (str): The remote to query.
        git_timeout (int | None): Time limit for each git command.
    """

    def __init__(
        self, remote_name: str = DEFAULT_REMOTE, git_timeout: int | None = None
    ):
        self.remote_name = remote_name
        self.git_timeout = git_timeout

    def should_run(
        self, working_copy: Path, trigger_branch: str, app: str = ""
    ) -> bool:
        """Checks the remote head and records it when a run is warranted.

        A missing working copy returns True without writing a marker, so it
        returns True on every call until the copy exists. The pipeline always
        syncs first, so in practice this only covers a copy deleted mid-pass.

        Args:
            working_copy (Path): The application's working copy directory.
            trigger_branch (str): The branch gating the run.
            app (str, optional): Application name for log lines.

        Returns:
            bool: True if the steps should run. The marker is updated in that case.
        """
        label = app or working_copy.parent.name

        if not working_copy.exists():
            logger.info(f"CHECK {label}: No working copy yet. Steps will run.")
            return True

        try:
            repo = GitRepo(working_copy, timeout=self.git_timeout)
        except ValueError as e:
            logger.error(f"CHECK {label}: {e}")
            return False

        if not repo.remote_url(self.remote_name):
            logger.error(
                f"CHECK {label}: No remote '{self.remote_name}' configured. "
                "Skipping run."
            )
            return False

        try:
            repo.fetch(self.remote_name)
        except GitError as e:
            logger.error(f"CHECK {label}: Failed to fetch from remote. {e}")
            return False

        try:
            latest = repo.ls_remote(self.remote_name, trigger_branch)
        except GitError as e:
            logger.error(
                f"CHECK {label}: Failed to query remote head of {trigger_branch}. {e}"
            )
            return False

        if not latest:
            logger.error(
                f"CHECK {label}: Branch '{trigger_branch}' not found on "
                f"'{self.remote_name}'."
            )
            return False

        previous = read_marker(working_copy)
        if previous == latest:
            logger.info(f"CHECK {label}: Up to date at {latest[:12]}. Nothing to do.")
            return False

        try:
            write_marker(working_copy, latest)
        except OSError as e:
            logger.error(f"CHECK {label}: Failed to save commit marker. {e}")
            return False

        if previous:
            logger.info(
                f"CHECK {label}: {trigger_branch} moved "
                f"{previous[:12]} -> {latest[:12]}. Steps will run."
            )
        else:
            logger.info(
                f"CHECK {label}: No previous commit recorded "
                f"({latest[:12]}). Steps will run."
            )
        return True

import logging
import os
import subprocess
from pathlib import Path

from .constants import APP_NAME
from .errors import GitError

logger = logging.getLogger(APP_NAME)


def _batch_env() -> dict[str, str]:
    """Environment for network operations that must never wait on a prompt."""
    env = os.environ.copy()
    env["GIT_TERMINAL_PROMPT"] = "0"
    env.setdefault("GIT_SSH_COMMAND", "ssh -o BatchMode=yes")
    return env


def _execute(
    args: list[str],
    cwd: Path | None,
    timeout: int | None,
    env: dict | None = None,
) -> str:
    """Runs git and returns its stripped stdout, raising GitError on failure."""
    try:
        res = subprocess.run(
            ["git", *args],
            cwd=cwd,
            capture_output=True,
            text=True,
            check=True,
            env=env,
            timeout=timeout or None,
        )
        return res.stdout.strip()
    except subprocess.CalledProcessError as e:
        output = "\n".join(part for part in (e.stderr, e.stdout) if part)
        raise GitError(args, e.returncode, output) from e
    except subprocess.TimeoutExpired as e:
        raise GitError(args, None, f"timed out after {timeout}s") from e
    except OSError as e:
        raise GitError(args, None, str(e)) from e


class GitRepo:
    """A wrapper around the Git command-line interface for one working copy.

    Every method shells out to `git` with the working copy as the current
    directory. Failures surface as `GitError`, which carries git's own
    diagnostic output so callers can log it verbatim.

    Attributes:
        path (Path): The file system path to the working copy root.
        timeout (int | None): Per-command time limit in seconds, None for none.
    """

    def __init__(self, path: Path, timeout: int | None = None):
        """Initializes the GitRepo instance.

        Args:
            path (Path): The path to the working copy root directory.
            timeout (int | None, optional): Seconds before a git command is
                                            killed. Defaults to no limit.

        Raises:
            ValueError: If the specified path does not contain a .git directory.
        """
        self.path = path
        self.timeout = timeout or None
        if not (self.path / ".git").exists():
            raise ValueError(f"Not a git repository: {self.path}")

    @classmethod
    def clone(cls, url: str, dest: Path, timeout: int | None = None) -> "GitRepo":
        """Clones a remote repository into a new directory.

        Args:
            url (str): The repository URL (anything `git clone` accepts).
            dest (Path): The target directory. Must not exist yet.
            timeout (int | None, optional): Seconds before the clone is killed.

        Returns:
            GitRepo: A wrapper around the fresh clone.

        Raises:
            GitError: If git exits non-zero or times out.
        """
        _execute(
            ["clone", url, str(dest)], cwd=None, timeout=timeout, env=_batch_env()
        )
        return cls(dest, timeout=timeout)

    def _run(self, args: list[str], env: dict | None = None) -> str:
        """Executes a Git command within the working copy.

        Args:
            args (list[str]): A list of arguments to pass to the git command.
            env (Optional[dict], optional): Environment variables to pass to the
                                            subprocess. Defaults to None.

        Returns:
            str: The stripped stdout of the command.

        Raises:
            GitError: If the git command returns a non-zero exit code.
        """
        return _execute(args, cwd=self.path, timeout=self.timeout, env=env)

    def remote_url(self, remote: str) -> str | None:
        """Returns the URL configured for a remote, or None if it is unset."""
        try:
            return self._run(["remote", "get-url", remote]) or None
        except GitError as e:
            logger.debug(f"remote get-url {remote} failed in {self.path}: {e}")
            return None

    def fetch(self, remote: str) -> None:
        """Downloads objects and refs from a remote without touching the checkout."""
        self._run(["fetch", remote], env=_batch_env())

    def checkout(self, branch: str) -> None:
        """Switches the working copy to a branch."""
        self._run(["checkout", branch])

    def pull(self, remote: str, branch: str) -> None:
        """Fetches a branch from a remote and merges it into the current branch."""
        self._run(["pull", remote, branch], env=_batch_env())

    def ls_remote(self, remote: str, branch: str) -> str | None:
        """Queries the remote's current head commit for a branch.

        Nothing is merged locally; this asks the remote directly.

        Args:
            remote (str): The remote name (e.g., 'origin').
            branch (str): The branch name, without the refs/heads/ prefix.

        Returns:
            str | None: The commit SHA, or None if the remote has no such branch.

        Raises:
            GitError: If git cannot reach the remote.
        """
        ref = f"refs/heads/{branch}"
        output = self._run(["ls-remote", remote, ref], env=_batch_env())
        for line in output.splitlines():
            sha, _, name = line.partition("\t")
            if name.strip() == ref:
                return sha.strip()
        return None

    def current_branch(self) -> str:
        """Retrieves the name of the currently checked-out branch."""
        return self._run(["branch", "--show-current"])


import logging
from pathlib import Path

from .constants import APP_NAME, DEFAULT_REMOTE
from .errors import GitError, SyncError
from .git_wrapper import GitRepo

logger = logging.getLogger(APP_NAME)


class RepositorySync:
    """Brings a working copy into existence or up to date.

    Absent directory: clone. Present directory: fetch, checkout the trigger
    branch, then pull it from the remote. The checkout makes sure the working
    copy tracks the trigger branch even if something left it elsewhere.

    Attributes:
        remote_name (str): The remote to fetch and pull from.
        git_timeout (int | None): Time limit for each git command.
    """

    def __init__(
        self, remote_name: str = DEFAULT_REMOTE, git_timeout: int | None = None
    ):
        self.remote_name = remote_name
        self.git_timeout = git_timeout

    def sync(
        self,
        working_copy: Path,
        repository_url: str,
        trigger_branch: str,
        app: str = "",
    ) -> GitRepo:
        """Clones or updates the working copy.

        Args:
            working_copy (Path): Target directory for the clone.
            repository_url (str): The remote repository URL.
            trigger_branch (str): The branch to check out and pull.
            app (str, optional): Application name for log lines.

        Returns:
            GitRepo: The synchronized repository.

        Raises:
            SyncError: On the first failing stage. Later stages are not attempted
                and partial state is left for the next pass to correct.
        """
        label = app or working_copy.parent.name

        if not working_copy.exists():
            logger.info(f"CLONE {label}: Cloning repository {repository_url}...")
            try:
                return GitRepo.clone(
                    repository_url, working_copy, timeout=self.git_timeout
                )
            except GitError as e:
                raise SyncError("clone", str(e), e.output) from e

        try:
            repo = GitRepo(working_copy, timeout=self.git_timeout)
        except ValueError as e:
            raise SyncError("inspect", str(e)) from e

        logger.info(f"PULL {label}: Pulling latest changes from the repository...")
        stages = (
            ("fetch", lambda: repo.fetch(self.remote_name)),
            ("checkout", lambda: repo.checkout(trigger_branch)),
            ("pull", lambda: repo.pull(self.remote_name, trigger_branch)),
        )
        for stage, action in stages:
            try:
                action()
            except GitError as e:
                raise SyncError(stage, str(e), e.output) from e
            logger.debug(f"PULL {label}: {stage} ok")

        return repo

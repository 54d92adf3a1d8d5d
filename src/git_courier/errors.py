"""Exception hierarchy shared across Git Courier."""


class CourierError(Exception):
    """Base class for all Git Courier errors."""


class ConfigError(CourierError):
    """The global settings file is missing or invalid. Fatal at startup."""


class SpecError(CourierError):
    """An application spec file could not be read or validated."""


class GitError(CourierError):
    """A git invocation exited non-zero or could not be started.

    Attributes:
        args_list (list[str]): The git arguments that were run.
        returncode (int | None): The exit status, or None if git never ran.
        output (str): Whatever git printed (stdout and stderr).
    """

    def __init__(
        self, args_list: list[str], returncode: int | None, output: str
    ) -> None:
        self.args_list = args_list
        self.returncode = returncode
        self.output = output.strip()
        command = " ".join(["git", *args_list])
        super().__init__(f"'{command}' failed ({returncode}): {self.output}")


class SyncError(CourierError):
    """Repository synchronization failed at a named stage.

    Attributes:
        stage (str): One of 'clone', 'fetch', 'checkout', 'pull', 'inspect'.
        output (str): Diagnostic output from git, if any.
    """

    def __init__(self, stage: str, message: str, output: str = "") -> None:
        self.stage = stage
        self.output = output
        super().__init__(f"{stage} failed: {message}")

"""Shared fixtures: settings, spec files, and a real throwaway git remote."""

import json
import logging
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator

import pytest

from git_courier.config import PathsConfig, RunnerConfig, Settings
from git_courier.constants import APP_NAME

GIT_IDENTITY = ["-c", "user.name=Courier Test", "-c", "user.email=test@example.com"]


def git(cwd: Path, *args: str) -> str:
    """Runs git in a directory and returns stripped stdout."""
    res = subprocess.run(
        ["git", *GIT_IDENTITY, *args],
        cwd=cwd,
        capture_output=True,
        text=True,
        check=True,
    )
    return res.stdout.strip()


@dataclass
class GitRemote:
    """A bare repository plus a seed clone used to push new commits.

    Attributes:
        url (str): Path of the bare repository, usable as a clone URL.
        seed (Path): Working directory that pushes to the bare repository.
    """

    url: str
    seed: Path

    def commit(self, message: str, branch: str = "main") -> str:
        """Commits a file change on a branch, pushes it, and returns the SHA."""
        git(self.seed, "checkout", branch)
        with open(self.seed / "CHANGELOG", "a") as f:
            f.write(f"{message}\n")
        git(self.seed, "add", "CHANGELOG")
        git(self.seed, "commit", "-m", message)
        git(self.seed, "push", "origin", branch)
        return git(self.seed, "rev-parse", branch)

    def head(self, branch: str = "main") -> str:
        return git(Path(self.url), "rev-parse", f"refs/heads/{branch}")


@pytest.fixture
def git_remote(tmp_path: Path) -> GitRemote:
    """Creates a bare remote with one commit on 'main' and one on 'release'."""
    if shutil.which("git") is None:
        pytest.skip("git is not installed")

    seed = tmp_path / "seed"
    seed.mkdir()
    git(seed, "init")
    git(seed, "checkout", "-b", "main")
    (seed / "README").write_text("hello\n")
    git(seed, "add", "README")
    git(seed, "commit", "-m", "initial")
    git(seed, "branch", "release")

    bare = tmp_path / "remote.git"
    git(tmp_path, "clone", "--bare", str(seed), str(bare))
    git(seed, "remote", "add", "origin", str(bare))
    return GitRemote(url=str(bare), seed=seed)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings rooted in tmp_path, with fast retries."""
    scripts = tmp_path / "scripts"
    apps = tmp_path / "apps"
    scripts.mkdir()
    apps.mkdir()
    return Settings(
        paths=PathsConfig(scripts_dir=scripts, apps_dir=apps),
        runner=RunnerConfig(max_attempts=2, retry_delay=0, step_timeout=30),
    )


@pytest.fixture
def write_spec(settings: Settings) -> Any:
    """Returns a helper that writes a spec file into the scripts directory."""

    def _write(filename: str, data: Any) -> Path:
        path = settings.paths.scripts_dir / filename
        if isinstance(data, str):
            path.write_text(data)
        else:
            path.write_text(json.dumps(data))
        return path

    return _write


@pytest.fixture(autouse=True)
def reset_logger() -> Iterator[None]:
    """Leaves the application logger without handlers between tests."""
    logger = logging.getLogger(APP_NAME)
    yield
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.INFO)

"""Tests for the clone / fetch-checkout-pull state machine."""

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from conftest import git
from git_courier.errors import GitError, SyncError
from git_courier.sync import RepositorySync


def test_clones_when_directory_absent(tmp_path: Path, mocker: MagicMock) -> None:
    mock_cls = mocker.patch("git_courier.sync.GitRepo")
    dest = tmp_path / "repo"

    RepositorySync(git_timeout=60).sync(dest, "https://example.com/r.git", "main")

    mock_cls.clone.assert_called_once_with(
        "https://example.com/r.git", dest, timeout=60
    )
    mock_cls.assert_not_called()


def test_clone_failure_raises_with_git_output(
    tmp_path: Path, mocker: MagicMock
) -> None:
    mock_cls = mocker.patch("git_courier.sync.GitRepo")
    mock_cls.clone.side_effect = GitError(["clone"], 128, "repository not found")

    with pytest.raises(SyncError) as excinfo:
        RepositorySync().sync(tmp_path / "repo", "bad-url", "main")

    assert excinfo.value.stage == "clone"
    assert excinfo.value.output == "repository not found"


def test_existing_copy_fetches_checks_out_then_pulls(
    tmp_path: Path, mocker: MagicMock
) -> None:
    """Verifies the fixed fetch, checkout, pull order."""
    dest = tmp_path / "repo"
    dest.mkdir()
    repo = mocker.patch("git_courier.sync.GitRepo").return_value

    RepositorySync(remote_name="origin").sync(dest, "url", "release")

    assert repo.method_calls == [
        mocker.call.fetch("origin"),
        mocker.call.checkout("release"),
        mocker.call.pull("origin", "release"),
    ]


@pytest.mark.parametrize(
    ("failing", "not_attempted"),
    [("fetch", ["checkout", "pull"]), ("checkout", ["pull"]), ("pull", [])],
)
def test_first_failure_aborts_remaining_stages(
    tmp_path: Path, mocker: MagicMock, failing: str, not_attempted: list[str]
) -> None:
    dest = tmp_path / "repo"
    dest.mkdir()
    repo = mocker.patch("git_courier.sync.GitRepo").return_value
    getattr(repo, failing).side_effect = GitError([failing], 1, "boom")

    with pytest.raises(SyncError) as excinfo:
        RepositorySync().sync(dest, "url", "main")

    assert excinfo.value.stage == failing
    for name in not_attempted:
        getattr(repo, name).assert_not_called()


def test_existing_non_repository_is_not_clobbered(tmp_path: Path) -> None:
    dest = tmp_path / "repo"
    dest.mkdir()
    (dest / "keep.txt").write_text("data")

    with pytest.raises(SyncError, match="inspect failed"):
        RepositorySync().sync(dest, "url", "main")

    assert (dest / "keep.txt").read_text() == "data"


def test_sync_returns_to_trigger_branch(tmp_path: Path, git_remote) -> None:
    """Verifies that a working copy left on another branch is moved back and updated."""
    dest = tmp_path / "apps" / "demo" / "repo"
    dest.parent.mkdir(parents=True)
    syncer = RepositorySync()
    syncer.sync(dest, git_remote.url, "main")

    git(dest, "checkout", "release")
    new_head = git_remote.commit("second")

    syncer.sync(dest, git_remote.url, "main")

    assert git(dest, "branch", "--show-current") == "main"
    assert git(dest, "rev-parse", "HEAD") == new_head

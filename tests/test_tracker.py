"""Tests for commit-marker change detection."""

from pathlib import Path
from unittest.mock import MagicMock

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from git_courier.errors import GitError
from git_courier.sync import RepositorySync
from git_courier.tracker import CommitTracker, marker_path, read_marker, write_marker


@pytest.fixture
def working_copy(tmp_path: Path) -> Path:
    path = tmp_path / "apps" / "billing" / "repo"
    path.mkdir(parents=True)
    return path


@pytest.fixture
def mock_repo(mocker: MagicMock) -> MagicMock:
    """Patches GitRepo in the tracker with a healthy remote at 'sha-1'."""
    repo = mocker.patch("git_courier.tracker.GitRepo").return_value
    repo.remote_url.return_value = "git@example.com:acme/billing.git"
    repo.ls_remote.return_value = "sha-1"
    return repo


def test_missing_working_copy_always_runs(tmp_path: Path, mocker: MagicMock) -> None:
    """
    A first-ever run executes without touching git. No marker is written, so
    the answer stays True until the working copy exists.
    """
    mock_cls = mocker.patch("git_courier.tracker.GitRepo")
    tracker = CommitTracker()

    assert tracker.should_run(tmp_path / "repo", "main") is True
    assert tracker.should_run(tmp_path / "repo", "main") is True
    assert read_marker(tmp_path / "repo") is None
    mock_cls.assert_not_called()


def test_no_marker_runs_exactly_once(working_copy: Path, mock_repo: MagicMock) -> None:
    """Verifies that the first check runs and writes a marker; the next does not."""
    tracker = CommitTracker()

    assert tracker.should_run(working_copy, "main") is True
    assert read_marker(working_copy) == "sha-1"
    assert tracker.should_run(working_copy, "main") is False


def test_unchanged_head_leaves_marker_untouched(
    working_copy: Path, mock_repo: MagicMock
) -> None:
    write_marker(working_copy, "sha-1")
    before = marker_path(working_copy).stat().st_mtime_ns

    assert CommitTracker().should_run(working_copy, "main") is False
    assert marker_path(working_copy).stat().st_mtime_ns == before


def test_changed_head_updates_marker(working_copy: Path, mock_repo: MagicMock) -> None:
    write_marker(working_copy, "sha-0")

    assert CommitTracker().should_run(working_copy, "main") is True
    assert read_marker(working_copy) == "sha-1"


def test_always_fetches_before_comparing(
    working_copy: Path, mock_repo: MagicMock
) -> None:
    """Verifies that the remote view is refreshed, then queried for the branch."""
    CommitTracker(remote_name="upstream").should_run(working_copy, "release")

    mock_repo.fetch.assert_called_once_with("upstream")
    mock_repo.ls_remote.assert_called_once_with("upstream", "release")


def test_missing_remote_skips_run(
    working_copy: Path, mock_repo: MagicMock, caplog: pytest.LogCaptureFixture
) -> None:
    mock_repo.remote_url.return_value = None

    assert CommitTracker().should_run(working_copy, "main", app="billing") is False
    mock_repo.fetch.assert_not_called()
    assert "No remote 'origin' configured" in caplog.text
    assert read_marker(working_copy) is None


@pytest.mark.parametrize("failing", ["fetch", "ls_remote"])
def test_git_failure_skips_run(
    working_copy: Path, mock_repo: MagicMock, failing: str
) -> None:
    """Verifies that steps never run against a possibly-stale remote view."""
    getattr(mock_repo, failing).side_effect = GitError([failing], 128, "offline")

    assert CommitTracker().should_run(working_copy, "main") is False
    assert read_marker(working_copy) is None


def test_branch_missing_on_remote_skips_run(
    working_copy: Path, mock_repo: MagicMock, caplog: pytest.LogCaptureFixture
) -> None:
    mock_repo.ls_remote.return_value = None

    assert CommitTracker().should_run(working_copy, "gone") is False
    assert "Branch 'gone' not found" in caplog.text


def test_marker_write_failure_skips_run(
    working_copy: Path, mock_repo: MagicMock, mocker: MagicMock
) -> None:
    mocker.patch("git_courier.tracker.write_marker", side_effect=OSError("disk full"))
    assert CommitTracker().should_run(working_copy, "main") is False


def test_marker_trims_single_line_terminator(working_copy: Path) -> None:
    """Verifies that exactly one trailing terminator is ignored."""
    marker_path(working_copy).write_text("abc\n")
    assert read_marker(working_copy) == "abc"

    marker_path(working_copy).write_text("abc\n\n")
    assert read_marker(working_copy) == "abc\n"


def test_marker_lives_beside_working_copy(working_copy: Path) -> None:
    write_marker(working_copy, "abc")
    assert marker_path(working_copy) == working_copy.parent / ".lastcommit"
    assert not (working_copy / ".lastcommit").exists()


@settings(suppress_health_check=[HealthCheck.function_scoped_fixture])
@given(heads=st.lists(st.sampled_from(["aaa", "bbb", "ccc"]), min_size=1))
def test_runs_only_when_head_moves(
    tmp_path_factory: pytest.TempPathFactory, mocker: MagicMock, heads: list[str]
) -> None:
    """
    Property: Over any sequence of observed remote heads, should_run is True
    exactly when the head differs from the previous observation (or there is
    none), and the marker always ends at the last head.
    """
    working_copy = tmp_path_factory.mktemp("app") / "repo"
    working_copy.mkdir()
    repo = mocker.patch("git_courier.tracker.GitRepo").return_value
    repo.remote_url.return_value = "url"
    repo.ls_remote.side_effect = heads

    tracker = CommitTracker()
    decisions = [tracker.should_run(working_copy, "main") for _ in heads]

    expected = [i == 0 or heads[i] != heads[i - 1] for i in range(len(heads))]
    assert decisions == expected
    assert read_marker(working_copy) == heads[-1]


def test_change_detection_against_real_remote(tmp_path: Path, git_remote) -> None:
    """Verifies the full protocol against a real bare repository."""
    working_copy = tmp_path / "apps" / "demo" / "repo"
    working_copy.parent.mkdir(parents=True)
    RepositorySync().sync(working_copy, git_remote.url, "main")
    tracker = CommitTracker()

    assert tracker.should_run(working_copy, "main") is True
    assert read_marker(working_copy) == git_remote.head()
    assert tracker.should_run(working_copy, "main") is False

    new_head = git_remote.commit("second")

    assert tracker.should_run(working_copy, "main") is True
    assert read_marker(working_copy) == new_head
    assert tracker.should_run(working_copy, "main") is False

from pathlib import Path
from unittest.mock import MagicMock

from git_courier import service
from git_courier.constants import APP_LABEL


def test_render_unit_runs_daemon_with_settings() -> None:
    unit = service.render_unit("/usr/bin/git-courier-daemon", Path("/etc/c.toml"))

    assert 'ExecStart="/usr/bin/git-courier-daemon" --config "/etc/c.toml"' in unit
    assert "Restart=on-failure" in unit


def test_render_unit_quotes_paths_with_spaces() -> None:
    """Verifies that each ExecStart argument stays one word for systemd."""
    unit = service.render_unit(
        "/opt/git courier/bin/git-courier-daemon",
        Path('/home/me/My Settings/50%"off".toml'),
    )

    assert (
        'ExecStart="/opt/git courier/bin/git-courier-daemon" '
        '--config "/home/me/My Settings/50%%\\"off\\".toml"'
    ) in unit


def test_install_writes_unit_and_enables_it(
    tmp_path: Path, mocker: MagicMock
) -> None:
    """Verifies the unit file location and the systemctl calls on Linux."""
    mocker.patch("git_courier.service.sys.platform", "linux")
    mocker.patch("git_courier.service.Path.home", return_value=tmp_path)
    mocker.patch("shutil.which", return_value="/opt/bin/git-courier-daemon")
    mock_run = mocker.patch("subprocess.run")

    service.install(tmp_path / "config.toml")

    unit_path = tmp_path / f".config/systemd/user/{APP_LABEL}.service"
    assert "/opt/bin/git-courier-daemon" in unit_path.read_text()
    commands = [c.args[0] for c in mock_run.call_args_list]
    assert commands == [
        ["systemctl", "--user", "daemon-reload"],
        ["systemctl", "--user", "enable", "--now", f"{APP_LABEL}.service"],
    ]


def test_install_is_a_no_op_off_linux(tmp_path: Path, mocker: MagicMock) -> None:
    mocker.patch("git_courier.service.sys.platform", "darwin")
    mock_run = mocker.patch("subprocess.run")

    service.install(tmp_path / "config.toml")

    mock_run.assert_not_called()


def test_uninstall_removes_unit(tmp_path: Path, mocker: MagicMock) -> None:
    mocker.patch("git_courier.service.sys.platform", "linux")
    mocker.patch("git_courier.service.Path.home", return_value=tmp_path)
    mock_run = mocker.patch("subprocess.run")
    unit_path = tmp_path / f".config/systemd/user/{APP_LABEL}.service"
    unit_path.parent.mkdir(parents=True)
    unit_path.write_text("[Unit]\n")

    service.uninstall()

    assert not unit_path.exists()
    assert mock_run.call_args_list[-1].args[0] == [
        "systemctl",
        "--user",
        "daemon-reload",
    ]

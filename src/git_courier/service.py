import shutil
import subprocess
import sys
from pathlib import Path

from rich.console import Console

from .constants import APP_LABEL

console = Console()


def get_executable() -> str:
    """Locates the installed daemon executable in the system path.

    Returns:
        str: The absolute path to the 'git-courier-daemon' executable.

    Raises:
        SystemExit: If the executable is not found in the PATH.
    """
    exe = shutil.which("git-courier-daemon")
    if not exe:
        console.print(
            "[bold red]ERROR:[/bold red] Could not find 'git-courier-daemon'. "
            "Ensure the package is installed."
        )
        sys.exit(1)
    return exe


def get_unit_path() -> Path:
    """Resolves the systemd user unit path.

    Raises:
        NotImplementedError: On platforms without systemd user units.
    """
    if sys.platform.startswith("linux"):
        return Path.home() / f".config/systemd/user/{APP_LABEL}.service"
    raise NotImplementedError("Service installation is only supported on Linux.")


def _quote(value: str) -> str:
    """Quotes one ExecStart argument using systemd's double-quote rules."""
    escaped = value.replace("\\", "\\\\").replace('"', '\\"').replace("%", "%%")
    return f'"{escaped}"'


def render_unit(executable: str, config_path: Path) -> str:
    """Builds the systemd unit for the long-running daemon.

    Args:
        executable (str): Path to the daemon executable.
        config_path (Path): Settings file passed to the daemon.

    Returns:
        str: The unit file contents.
    """
    return f"""[Unit]
Description=Git Courier Deployment Daemon
After=network-online.target

[Service]
ExecStart={_quote(executable)} --config {_quote(str(config_path))}
Restart=on-failure
RestartSec=10

[Install]
WantedBy=default.target
"""


def install(config_path: Path) -> None:
    """Installs and starts the daemon as a systemd user service.

    Args:
        config_path (Path): The settings file the service should load.
    """
    if not sys.platform.startswith("linux"):
        console.print(
            "\n[bold yellow]NOTE:[/bold yellow] Service installation is only "
            "supported on Linux. Run 'git-courier-daemon' under your own "
            "supervisor instead.\n"
        )
        return

    exe = get_executable()
    unit_path = get_unit_path()
    unit_path.parent.mkdir(parents=True, exist_ok=True)
    unit_path.write_text(render_unit(exe, config_path.resolve()))

    subprocess.run(["systemctl", "--user", "daemon-reload"], check=True)
    subprocess.run(
        ["systemctl", "--user", "enable", "--now", f"{APP_LABEL}.service"],
        check=True,
    )
    console.print(
        f"[bold green]SUCCESS:[/bold green] Courier systemd service active.\n"
        f"Check status: systemctl --user status {APP_LABEL}.service"
    )


def uninstall() -> None:
    """Stops the systemd user service and removes its unit file."""
    if not sys.platform.startswith("linux"):
        console.print("[yellow]No service installed on this platform.[/yellow]")
        return

    unit_path = get_unit_path()
    subprocess.run(
        ["systemctl", "--user", "disable", "--now", f"{APP_LABEL}.service"],
        stderr=subprocess.DEVNULL,
    )
    if unit_path.exists():
        unit_path.unlink()
    subprocess.run(["systemctl", "--user", "daemon-reload"])

    console.print("[bold green]SUCCESS:[/bold green] Service uninstalled.")

import argparse
import logging
import subprocess
import sys
from pathlib import Path

from rich.console import Console
from rich.table import Table

from . import daemon, service
from .config import Settings
from .constants import APP_NAME, CONFIG_FILE, REPO_DIR_NAME
from .errors import SpecError
from .git_wrapper import GitRepo
from .pipeline import Outcome, PipelineResult
from .specs import discover_specs, load_spec
from .tracker import read_marker

logger = logging.getLogger(APP_NAME)
console = Console()

OUTCOME_STYLES = {
    Outcome.SUCCEEDED: "bold green",
    Outcome.SKIPPED: "dim",
    Outcome.FAILED: "bold red",
    Outcome.SYNC_FAILED: "red",
    Outcome.INVALID: "yellow",
    Outcome.ERROR: "bold red",
}


def _display(path: Path) -> str:
    return str(path).replace(str(Path.home()), "~")


def run_now(settings: Settings) -> list[PipelineResult]:
    """Runs a single pass in the foreground and prints a summary table."""
    daemon.setup_logging(settings, interactive=True)
    results = daemon.run_once(settings)

    if not results:
        console.print(
            f"[yellow]No application specs in {_display(settings.paths.scripts_dir)}."
            "[/yellow]"
        )
        return results

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Application", style="cyan")
    table.add_column("Outcome")
    table.add_column("Detail", style="dim")
    for result in results:
        style = OUTCOME_STYLES[result.outcome]
        table.add_row(
            result.app, f"[{style}]{result.outcome.value}[/{style}]", result.detail
        )
    console.print(table)
    return results


def list_apps(settings: Settings) -> None:
    """Lists every application spec with its working copy and marker state."""
    files = discover_specs(settings.paths.scripts_dir)
    if not files:
        console.print(
            f"[yellow]No application specs in {_display(settings.paths.scripts_dir)}."
            "[/yellow]"
        )
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Application", style="cyan")
    table.add_column("Branch")
    table.add_column("Steps", justify="right")
    table.add_column("Working Copy")
    table.add_column("Last Commit", justify="right", style="dim")

    for path in files:
        try:
            spec = load_spec(path)
        except SpecError as e:
            logger.debug(f"Skipping invalid spec {path}: {e}")
            table.add_row(path.name, "-", "-", "[yellow]Invalid spec[/yellow]", "-")
            continue

        repo_dir = settings.paths.apps_dir / spec.name / REPO_DIR_NAME
        if not repo_dir.exists():
            status = "[yellow]Not cloned[/yellow]"
        else:
            try:
                branch = GitRepo(repo_dir).current_branch() or "detached"
                style = "green" if branch == spec.trigger_branch else "yellow"
                status = f"[{style}]On {branch}[/{style}]"
            except Exception as e:
                logger.debug(f"Failed to inspect {repo_dir}: {e}")
                status = "[bold red]Error[/bold red]"

        marker = read_marker(repo_dir)
        table.add_row(
            spec.name,
            spec.trigger_branch,
            str(len(spec.steps)),
            status,
            marker[:12] if marker else "-",
        )

    console.print(table)


def validate_specs(settings: Settings) -> bool:
    """Parses every spec file and reports problems.

    Returns:
        bool: True if every spec is valid.
    """
    files = discover_specs(settings.paths.scripts_dir)
    if not files:
        console.print("[yellow]No application specs found.[/yellow]")
        return True

    seen: dict[str, Path] = {}
    ok = True
    for path in files:
        try:
            spec = load_spec(path)
        except SpecError as e:
            console.print(f"[bold red]✘[/bold red] {path.name}: {e}")
            ok = False
            continue

        if spec.name in seen:
            console.print(
                f"[bold red]✘[/bold red] {path.name}: appName '{spec.name}' is "
                f"already used by {seen[spec.name].name}"
            )
            ok = False
            continue
        seen[spec.name] = path
        console.print(
            f"[green]✔[/green] {path.name}: [cyan]{spec.name}[/cyan] "
            f"({spec.trigger_branch}, {len(spec.steps)} steps)"
        )
    return ok


def tail_log(settings: Settings) -> None:
    """Follows the daemon log file in real-time."""
    log_file = settings.logging.log_file
    if not settings.logging.enabled:
        console.print(
            "[yellow]File logging is disabled. Set [logging] enabled = true.[/yellow]"
        )
    if not log_file.exists():
        console.print(f"[red]No log file found yet at {log_file}.[/red]")
        return

    console.print(f"Tailing [bold cyan]{log_file}[/bold cyan] (Ctrl+C to stop)...")
    try:
        subprocess.run(["tail", "-n", "1000", "-f", str(log_file)])
    except KeyboardInterrupt:
        console.print("\nStopped.", style="dim")


class CourierHelpFormatter(argparse.HelpFormatter):
    """Groups subcommands into labelled clusters in the help output."""

    def _format_action(self, action: argparse.Action) -> str:
        if isinstance(action, argparse._SubParsersAction):
            parts = []
            groups = {
                "Deployment": ["run", "now"],
                "Applications": ["list", "validate", "log"],
                "Service": ["install-service", "uninstall-service"],
                "General": ["help"],
            }

            subactions = list(self._iter_indented_subactions(action))
            for group_name, commands in groups.items():
                group_actions = [a for a in subactions if a.dest in commands]
                if not group_actions:
                    continue
                parts.append(f"\n  {group_name}:\n")
                self._indent()
                for subaction in group_actions:
                    parts.append(self._format_action(subaction))
                self._dedent()

            return self._join_parts(parts)

        return super()._format_action(action)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="git-courier",
        description="Watch git branches and run deployment steps on new commits.",
        formatter_class=CourierHelpFormatter,
    )
    parser.add_argument(
        "--config",
        "-c",
        type=Path,
        default=CONFIG_FILE,
        help=f"Settings file (default: {_display(CONFIG_FILE)})",
    )

    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("run", help="Run the daemon in the foreground")
    subparsers.add_parser("now", help="Run one pass over every application")
    subparsers.add_parser("list", help="List applications and their state")
    subparsers.add_parser("validate", help="Check every application spec")
    subparsers.add_parser("log", help="Tail the daemon log file")
    subparsers.add_parser(
        "install-service", help="Install the daemon as a systemd user service"
    )
    subparsers.add_parser("uninstall-service", help="Remove the systemd service")
    subparsers.add_parser("help", help="Show this help message")
    return parser


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the Git Courier CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "help":
        parser.print_help()
        return
    elif args.command == "uninstall-service":
        with console.status("Uninstalling service...", spinner="dots"):
            service.uninstall()
        return
    elif args.command in (None, "run"):
        daemon.main(args.config)
        return

    settings = daemon.load_settings_or_exit(args.config)

    if args.command == "install-service":
        with console.status("Installing background service...", spinner="dots"):
            service.install(args.config)
    elif args.command == "now":
        run_now(settings)
    elif args.command == "list":
        list_apps(settings)
    elif args.command == "validate":
        if not validate_specs(settings):
            sys.exit(1)
    elif args.command == "log":
        tail_log(settings)


def daemon_main(argv: list[str] | None = None) -> None:
    """Entry point for the 'git-courier-daemon' executable."""
    parser = argparse.ArgumentParser(prog="git-courier-daemon")
    parser.add_argument("--config", "-c", type=Path, default=CONFIG_FILE)
    args = parser.parse_args(argv)
    daemon.main(args.config)


if __name__ == "__main__":
    main()

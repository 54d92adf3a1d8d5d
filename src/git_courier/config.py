import logging
import re
import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from .constants import (
    APP_NAME,
    CONFIG_FILE,
    DEFAULT_APPS_DIR,
    DEFAULT_REMOTE,
    DEFAULT_SCRIPTS_DIR,
    LOG_FILE_NAME,
    STATE_DIR,
)
from .errors import ConfigError

logger = logging.getLogger(APP_NAME)


def parse_size(value: int | str) -> int:
    """Converts human-readable size strings (e.g., '100MB') to bytes."""
    if isinstance(value, bool):
        raise ValueError(f"Invalid size format '{value}'")
    if isinstance(value, int):
        return value
    match = re.match(r"^(\d+(?:\.\d+)?)\s*([kmg]b?)$", str(value).strip().lower())
    if not match:
        raise ValueError(f"Invalid size format '{value}'")
    num, unit = float(match.group(1)), match.group(2)
    multiplier = {
        "k": 1024,
        "kb": 1024,
        "m": 1024**2,
        "mb": 1024**2,
        "g": 1024**3,
        "gb": 1024**3,
    }
    return int(num * multiplier[unit])


def parse_time(value: int | str) -> int:
    """Converts human-readable time strings (e.g., '1hr', '30m') to seconds."""
    if isinstance(value, bool):
        raise ValueError(f"Invalid time format '{value}'")
    if isinstance(value, int):
        return value
    match = re.match(
        r"^(\d+(?:\.\d+)?)\s*(s|sec|m|min|h|hr)s?$", str(value).strip().lower()
    )
    if not match:
        raise ValueError(f"Invalid time format '{value}'")
    num, unit = float(match.group(1)), match.group(2)
    multiplier = {"s": 1, "sec": 1, "m": 60, "min": 60, "h": 3600, "hr": 3600}
    return int(num * multiplier[unit])


def _non_negative(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError(f"Expected a non-negative integer, got '{value}'")
    return value


def _flag(value: Any) -> bool:
    if not isinstance(value, bool):
        raise ValueError(f"Expected true or false, got '{value}'")
    return value


def _text(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Expected a non-empty string, got '{value}'")
    return value.strip()


@dataclass(frozen=True)
class PathsConfig:
    """Filesystem locations.

    Attributes:
        scripts_dir (Path): Directory holding one JSON spec per application.
        apps_dir (Path): Directory holding one working copy per application.
    """

    scripts_dir: Path = Path(DEFAULT_SCRIPTS_DIR)
    apps_dir: Path = Path(DEFAULT_APPS_DIR)


@dataclass(frozen=True)
class DaemonConfig:
    """Scheduler settings.

    Attributes:
        poll_interval (int): Seconds between remote polling passes.
        watch (bool): Whether edits in the scripts directory trigger a pass.
    """

    poll_interval: int = 60
    watch: bool = True


@dataclass(frozen=True)
class RunnerConfig:
    """Step execution settings.

    Attributes:
        max_attempts (int): Full passes over the step list before giving up.
            0 retries forever.
        retry_delay (int): Seconds to wait before restarting the step list.
        step_timeout (int): Seconds a single step may run. 0 disables the limit.
    """

    max_attempts: int = 3
    retry_delay: int = 5
    step_timeout: int = 3600


@dataclass(frozen=True)
class GitConfig:
    """Git invocation settings.

    Attributes:
        timeout (int): Seconds a single git command may run. 0 disables the limit.
        remote_name (str): The remote that working copies track.
    """

    timeout: int = 600
    remote_name: str = DEFAULT_REMOTE


@dataclass(frozen=True)
class LoggingConfig:
    """Log sink settings.

    Attributes:
        enabled (bool): Whether to duplicate log lines into a rotating file.
        directory (Path): Where the log file is written.
        max_size (int): Max bytes for the log file before rotation.
        level (str): Logger level name.
    """

    enabled: bool = False
    directory: Path = STATE_DIR
    max_size: int = 5 * 1024 * 1024
    level: str = "INFO"

    @property
    def log_file(self) -> Path:
        return self.directory / LOG_FILE_NAME


# Per-section value parsers. Keys not listed here are unknown.
_PARSERS: dict[str, dict[str, Any]] = {
    "paths": {"scripts_dir": _text, "apps_dir": _text},
    "daemon": {"poll_interval": parse_time, "watch": _flag},
    "runner": {
        "max_attempts": _non_negative,
        "retry_delay": parse_time,
        "step_timeout": parse_time,
    },
    "git": {"timeout": parse_time, "remote_name": _text},
    "logging": {
        "enabled": _flag,
        "directory": _text,
        "max_size": parse_size,
        "level": _text,
    },
}


@dataclass(frozen=True)
class Settings:
    """Process-wide settings, loaded once at startup and never mutated.

    Attributes:
        paths (PathsConfig): Scripts and apps directories.
        daemon (DaemonConfig): Scheduler behaviour.
        runner (RunnerConfig): Step retry and timeout policy.
        git (GitConfig): Git invocation settings.
        logging (LoggingConfig): Log sink settings.
        source (Path | None): The file the settings were read from.
    """

    paths: PathsConfig = field(default_factory=PathsConfig)
    daemon: DaemonConfig = field(default_factory=DaemonConfig)
    runner: RunnerConfig = field(default_factory=RunnerConfig)
    git: GitConfig = field(default_factory=GitConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    source: Path | None = None

    @classmethod
    def load(cls, path: Path = CONFIG_FILE) -> "Settings":
        """Reads and validates the settings file.

        Relative directories are resolved against the folder holding the file.

        Args:
            path (Path): The TOML settings file.

        Returns:
            Settings: The fully populated, immutable settings.

        Raises:
            ConfigError: If the file is missing, unreadable, or invalid.
        """
        path = Path(path).expanduser()
        if not path.is_file():
            raise ConfigError(f"Settings file not found: {path}")

        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Config syntax error in {path}: {e}") from e
        except OSError as e:
            raise ConfigError(f"Unable to read settings file {path}: {e}") from e

        return cls.from_dict(data, base_dir=path.parent.resolve(), source=path)

    @classmethod
    def from_dict(
        cls, data: dict, base_dir: Path | None = None, source: Path | None = None
    ) -> "Settings":
        """Builds settings from already-parsed TOML data.

        Args:
            data (dict): Mapping of section name to key/value table.
            base_dir (Path | None): Anchor for relative directories.
                Defaults to the current working directory.
            source (Path | None): Recorded as the origin of the settings.

        Returns:
            Settings: The validated settings.

        Raises:
            ConfigError: If a section or value is invalid.
        """
        base_dir = base_dir or Path.cwd()

        unknown_sections = set(data) - set(_PARSERS)
        if unknown_sections:
            logger.warning(
                f"Unknown config sections: {', '.join(sorted(unknown_sections))}. "
                "Ignoring."
            )

        defaults = cls()
        paths = cls._update_dataclass("paths", defaults.paths, data.get("paths", {}))
        daemon = cls._update_dataclass(
            "daemon", defaults.daemon, data.get("daemon", {})
        )
        runner = cls._update_dataclass(
            "runner", defaults.runner, data.get("runner", {})
        )
        git = cls._update_dataclass("git", defaults.git, data.get("git", {}))
        log_conf = cls._update_dataclass(
            "logging", defaults.logging, data.get("logging", {})
        )

        if daemon.poll_interval <= 0:
            raise ConfigError("Config error in [daemon].poll_interval: must be > 0")
        if not isinstance(logging.getLevelName(log_conf.level.upper()), int):
            raise ConfigError(
                f"Config error in [logging].level: Unknown level '{log_conf.level}'"
            )

        paths = replace(
            paths,
            scripts_dir=_anchor(paths.scripts_dir, base_dir),
            apps_dir=_anchor(paths.apps_dir, base_dir),
        )
        log_conf = replace(
            log_conf,
            directory=_anchor(log_conf.directory, base_dir),
            level=log_conf.level.upper(),
        )

        return cls(
            paths=paths,
            daemon=daemon,
            runner=runner,
            git=git,
            logging=log_conf,
            source=source,
        )

    @staticmethod
    def _update_dataclass(section_name: str, instance: Any, updates: Any) -> Any:
        """Returns a copy of a section with validated values applied.

        Unknown keys are logged and ignored; invalid values are fatal.
        """
        if not isinstance(updates, dict):
            raise ConfigError(f"Config error: [{section_name}] must be a table")

        parsers = _PARSERS[section_name]
        invalid_keys = set(updates) - set(parsers)
        if invalid_keys:
            logger.warning(
                f"Unknown config keys in [{section_name}]: "
                f"{', '.join(sorted(invalid_keys))}. Ignoring."
            )

        filtered_updates = {}
        for k, v in updates.items():
            if k not in parsers:
                continue
            try:
                filtered_updates[k] = parsers[k](v)
            except ValueError as e:
                raise ConfigError(f"Config error in [{section_name}].{k}: {e}") from e

        return replace(instance, **filtered_updates)


def _anchor(value: Path | str, base_dir: Path) -> Path:
    path = Path(value).expanduser()
    return path if path.is_absolute() else (base_dir / path).resolve()

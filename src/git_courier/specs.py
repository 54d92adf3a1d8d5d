"""Application spec files: one JSON document per deployed application.

A spec looks like::

    {
        "appName": "billing",
        "gitRepo": "git@example.com:acme/billing.git",
        "triggerBranch": "main",
        "steps": [
            {"name": "install", "command": "npm ci"},
            {"name": "restart", "executable": "/usr/bin/systemctl",
             "args": ["--user", "restart", "billing"]}
        ]
    }

Specs are re-read from disk on every pass, so nothing here caches.
"""

import json
import logging
import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .constants import APP_NAME, SPEC_SUFFIX
from .errors import SpecError

logger = logging.getLogger(APP_NAME)


@dataclass(frozen=True)
class StepSpec:
    """One build/deploy command.

    Attributes:
        name (str): Label used in log lines.
        argv (tuple[str, ...]): Executable followed by its arguments. May be
            empty if the declared command line was blank.
    """

    name: str
    argv: tuple[str, ...]

    @property
    def display(self) -> str:
        return shlex.join(self.argv)


@dataclass(frozen=True)
class ApplicationSpec:
    """A deployed application, as declared in its spec file.

    Attributes:
        name (str): Unique key, used for the app directory and log lines.
        repository_url (str): Where to clone from.
        trigger_branch (str): The branch whose head gates a run.
        steps (tuple[StepSpec, ...]): Commands, in execution order.
        source (Path | None): The spec file this was loaded from.
    """

    name: str
    repository_url: str
    trigger_branch: str
    steps: tuple[StepSpec, ...] = ()
    source: Path | None = None


def _require_text(data: dict, key: str, where: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise SpecError(f"{where}: '{key}' must be a non-empty string")
    return value.strip()


def parse_step(raw: Any, index: int, where: str) -> StepSpec:
    """Builds a StepSpec from either supported shape.

    Args:
        raw (Any): The decoded JSON object for the step.
        index (int): Position in the step list, for error messages.
        where (str): Location prefix for error messages.

    Returns:
        StepSpec: The parsed step.

    Raises:
        SpecError: If the step matches neither shape.
    """
    where = f"{where}: step {index + 1}"
    if not isinstance(raw, dict):
        raise SpecError(f"{where} must be an object")

    name = raw.get("name") or f"step-{index + 1}"
    if not isinstance(name, str):
        raise SpecError(f"{where}: 'name' must be a string")

    if "executable" in raw:
        executable = _require_text(raw, "executable", where)
        args = raw.get("args", [])
        if not isinstance(args, list) or not all(isinstance(a, str) for a in args):
            raise SpecError(f"{where}: 'args' must be a list of strings")
        return StepSpec(name=name, argv=(executable, *args))

    command = raw.get("command")
    if not isinstance(command, str):
        raise SpecError(f"{where}: needs a 'command' string or an 'executable'")
    try:
        argv = tuple(shlex.split(command))
    except ValueError as e:
        raise SpecError(f"{where}: cannot tokenize command: {e}") from e
    return StepSpec(name=name, argv=argv)


def parse_spec(data: Any, source: Path | None = None) -> ApplicationSpec:
    """Validates a decoded spec document.

    Args:
        data (Any): The decoded JSON document.
        source (Path | None): The originating file, for messages.

    Returns:
        ApplicationSpec: The validated spec.

    Raises:
        SpecError: If any field is missing or malformed.
    """
    where = str(source) if source else "<spec>"
    if not isinstance(data, dict):
        raise SpecError(f"{where}: top level must be an object")

    name = _require_text(data, "appName", where)
    if name in (".", "..") or "/" in name or "\\" in name:
        raise SpecError(f"{where}: 'appName' must be a plain directory name")

    steps_raw = data.get("steps", [])
    if not isinstance(steps_raw, list):
        raise SpecError(f"{where}: 'steps' must be a list")

    return ApplicationSpec(
        name=name,
        repository_url=_require_text(data, "gitRepo", where),
        trigger_branch=_require_text(data, "triggerBranch", where),
        steps=tuple(parse_step(s, i, where) for i, s in enumerate(steps_raw)),
        source=source,
    )


def load_spec(path: Path) -> ApplicationSpec:
    """Reads and validates one spec file.

    Raises:
        SpecError: If the file cannot be read, decoded, or validated.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise SpecError(f"Failed to read config file {path}: {e}") from e
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise SpecError(f"Failed to parse JSON config in file {path}: {e}") from e
    return parse_spec(data, source=path)


def discover_specs(scripts_dir: Path) -> list[Path]:
    """Lists spec files in the scripts directory, sorted by name.

    Returns an empty list (and logs) if the directory cannot be read.
    """
    try:
        return sorted(
            p for p in scripts_dir.iterdir() if p.suffix == SPEC_SUFFIX and p.is_file()
        )
    except OSError as e:
        logger.error(f"Failed to read scripts directory {scripts_dir}: {e}")
        return []

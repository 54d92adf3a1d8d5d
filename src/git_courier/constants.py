import os
from pathlib import Path

"""Global constants and default path definitions for Git Courier.

This module defines the filesystem layout (adhering to XDG standards where applicable),
application identifiers, and the on-disk names used for working copies and markers.
"""

# --- Identity ---
APP_NAME = "git-courier"
"""str: The human-readable application name."""

APP_LABEL = "com.gitcourier.daemon"
"""str: The reverse-DNS style application identifier."""

# --- Paths ---
_XDG_STATE = os.environ.get("XDG_STATE_HOME")
_BASE_STATE = Path(_XDG_STATE) if _XDG_STATE else Path.home() / ".local/state"

STATE_DIR = _BASE_STATE / "git-courier"
"""Path: The default directory for runtime state data (logs)."""

LOG_FILE_NAME = "courier.log"
"""str: The file name of the daemon log inside the log directory."""

# --- Configuration Paths ---
CONFIG_DIR: Path = Path.home() / ".config/git-courier"
"""Path: The directory for user configuration files."""

CONFIG_FILE: Path = CONFIG_DIR / "config.toml"
"""Path: The default settings file path."""

DEFAULT_SCRIPTS_DIR = "./scripts"
"""str: Where application spec files live when the settings do not say."""

DEFAULT_APPS_DIR = "./apps"
"""str: Where working copies live when the settings do not say."""

# --- Application Layout ---
SPEC_SUFFIX = ".json"
"""str: File extension identifying an application spec in the scripts directory."""

REPO_DIR_NAME = "repo"
"""str: Name of the working copy directory inside an application directory."""

MARKER_FILE_NAME = ".lastcommit"
"""str: Name of the commit marker file inside an application directory."""

DEFAULT_REMOTE = "origin"
"""str: The remote every working copy is expected to track."""

"""Git Courier: a continuous-delivery trigger daemon.

For each declared application, Git Courier watches a remote branch, keeps a
local working copy in sync, and runs the application's build/deploy steps
whenever a new commit lands.
"""

from . import (
    cli,
    config,
    constants,
    daemon,
    errors,
    git_wrapper,
    pipeline,
    runner,
    service,
    specs,
    sync,
    tracker,
)

__all__ = [
    "cli",
    "config",
    "constants",
    "daemon",
    "errors",
    "git_wrapper",
    "pipeline",
    "runner",
    "service",
    "specs",
    "sync",
    "tracker",
]

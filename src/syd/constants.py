import os

"""Global constants and configuration path definitions for syd.

This module defines the application identity, the locations searched for the
configuration file (adhering to XDG standards where applicable), and the
default Git values used across the application.

Paths are kept in their unexpanded ``~`` form and resolved at the point of use,
so that a changed ``HOME`` is always honored.
"""

# --- Identity ---
APP_NAME = "syd"
"""str: The application name, also used as the logger name."""

# --- Configuration Paths ---
CONFIG_ENV_VAR = "SYD_CONFIG"
"""str: Environment variable naming an explicit configuration file."""

_XDG_CONFIG = os.environ.get("XDG_CONFIG_HOME")
_XDG_STATE = os.environ.get("XDG_STATE_HOME")

CONFIG_SEARCH_PATHS: list[str] = [
    os.path.join(_XDG_CONFIG or "~/.config", "syd", "config.toml"),
    "~/.syd.toml",
]
"""list[str]: Configuration file locations, in priority order."""

# --- State Paths ---
STATE_DIR = os.path.join(_XDG_STATE or "~/.local/state", "syd")
"""str: The directory for runtime state data (logs)."""

LOG_FILE = os.path.join(STATE_DIR, "syd.log")
"""str: The file path for the rotating log."""

MAX_LOG_SIZE = 5 * 1024 * 1024
"""int: Max bytes for the log file before rotation."""

# --- Git / Logic Constants ---
DEFAULT_BRANCH = "main"
"""str: The branch used when the configuration does not name one."""

DEFAULT_COMMIT_MESSAGE = "Update dotfiles"
"""str: The message used for backup commits."""

REMOTE_NAME = "origin"
"""str: The single remote the mirror repository publishes to."""

GIT_SSH_COMMAND = "ssh -o BatchMode=yes"
"""str: SSH invocation for transport commands; never prompts for passwords."""

import logging
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .constants import (
    APP_NAME,
    CONFIG_ENV_VAR,
    CONFIG_SEARCH_PATHS,
    DEFAULT_BRANCH,
    DEFAULT_COMMIT_MESSAGE,
)
from .exceptions import (
    ConfigNotFound,
    ConfigParseError,
    ConfigValidationError,
    PathExpansionError,
)
from .paths import resolve

logger = logging.getLogger(APP_NAME)

# Key names from older configuration files, mapped onto their current names.
_LEGACY_KEYS = {
    "git": {"repository": "remote_url"},
    "files": {"backup_dir": "folder"},
}

_KNOWN_KEYS = {
    "git": {"remote_url", "branch", "commit_message"},
    "files": {"folder", "paths"},
}

# Accepted from older configuration files but not used.
_IGNORED_KEYS = {
    "git": set(),
    "files": {"ignore_patterns"},
}


@dataclass(frozen=True)
class TrackedFileEntry:
    """A live file registered for backup and restore.

    Attributes:
        source (str): The live path exactly as configured (may start with ``~``).
    """

    source: str

    @property
    def file_name(self) -> str:
        """The base name used for this entry inside the flat mirror directory.

        Raises:
            ConfigValidationError: If the path has no extractable file name.
        """
        try:
            name = resolve(self.source).name
        except PathExpansionError:
            name = Path(self.source).name
        if not name:
            raise ConfigValidationError(
                f"Tracked path {self.source!r} has no file name"
            )
        return name

    def live_path(self) -> Path:
        """Returns the expanded live-side path."""
        return resolve(self.source)

    def mirror_path(self, mirror_dir: Path) -> Path:
        """Returns the mirror-side counterpart of this entry."""
        return mirror_dir / self.file_name


@dataclass(frozen=True)
class GitSettings:
    """Remote publishing settings.

    Attributes:
        remote_url (str): The URL the mirror repository pushes to and clones from.
        branch (str): The single branch synchronized with the remote.
        commit_message (str): The message used for backup commits.
    """

    remote_url: str
    branch: str = DEFAULT_BRANCH
    commit_message: str = DEFAULT_COMMIT_MESSAGE


@dataclass(frozen=True)
class SyncConfig:
    """The immutable, loaded configuration.

    Attributes:
        folder (str): The mirror directory as configured (may start with ``~``).
        git (GitSettings): Remote settings.
        entries (tuple[TrackedFileEntry, ...]): Tracked files, in configured order.
        source (Path | None): The file this configuration was loaded from.
    """

    folder: str
    git: GitSettings
    entries: tuple[TrackedFileEntry, ...] = field(default_factory=tuple)
    source: Path | None = None

    @property
    def mirror_dir(self) -> Path:
        """The expanded mirror directory."""
        return resolve(self.folder)


def search_paths(explicit: Path | None = None) -> list[Path]:
    """Lists the candidate configuration files in priority order.

    Args:
        explicit (Path | None): A path given on the command line. When set, it
                                is the only candidate.

    Returns:
        list[Path]: The expanded candidate paths.
    """
    if explicit is not None:
        return [resolve(str(explicit))]

    candidates = []
    if env_path := os.environ.get(CONFIG_ENV_VAR):
        candidates.append(resolve(env_path))
    for raw in CONFIG_SEARCH_PATHS:
        try:
            candidates.append(resolve(raw))
        except PathExpansionError as e:
            logger.debug(f"Skipping config location {raw}: {e}")
    return candidates


def load(path: Path | None = None) -> SyncConfig:
    """Finds, parses and validates the configuration file.

    Args:
        path (Path | None): An explicit configuration file, bypassing the search.

    Returns:
        SyncConfig: The loaded configuration.

    Raises:
        ConfigNotFound: If no candidate file exists.
        ConfigParseError: If the file is not valid TOML or misses required keys.
        ConfigValidationError: If tracked entries collide in the mirror.
    """
    candidates = search_paths(path)
    config_file = next((c for c in candidates if c.is_file()), None)
    if config_file is None:
        searched = ", ".join(str(c) for c in candidates)
        raise ConfigNotFound(f"No configuration file found (searched: {searched})")

    try:
        with open(config_file, "rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigParseError(f"Config syntax error in {config_file}: {e}") from e
    except OSError as e:
        raise ConfigParseError(f"Could not read {config_file}: {e}") from e

    config = _from_dict(data, config_file)
    validate(config)
    logger.debug(f"Loaded {len(config.entries)} tracked files from {config_file}")
    return config


def _section(data: dict[str, Any], name: str, path: Path) -> dict[str, Any]:
    """Extracts a table, normalizing legacy keys and warning on unknown ones."""
    table = data.get(name)
    if table is None:
        raise ConfigParseError(f"Missing [{name}] section in {path}")
    if not isinstance(table, dict):
        raise ConfigParseError(f"[{name}] must be a table in {path}")

    normalized: dict[str, Any] = {}
    for key, value in table.items():
        if key in _IGNORED_KEYS[name]:
            logger.debug(f"Ignoring unsupported key [{name}].{key}")
            continue
        key = _LEGACY_KEYS[name].get(key, key)
        normalized.setdefault(key, value)

    invalid_keys = set(normalized) - _KNOWN_KEYS[name]
    if invalid_keys:
        logger.warning(
            f"Unknown config keys in [{name}]: {', '.join(sorted(invalid_keys))}. "
            "Ignoring."
        )
    return normalized


def _require_str(table: dict[str, Any], section: str, key: str, path: Path) -> str:
    value = table.get(key)
    if value is None:
        raise ConfigParseError(f"Missing required key [{section}].{key} in {path}")
    if not isinstance(value, str) or not value.strip():
        raise ConfigParseError(f"[{section}].{key} must be a non-empty string")
    return value


def _from_dict(data: dict[str, Any], path: Path) -> SyncConfig:
    files = _section(data, "files", path)
    git = _section(data, "git", path)

    folder = _require_str(files, "files", "folder", path)
    remote_url = _require_str(git, "git", "remote_url", path)

    settings: dict[str, str] = {}
    for key in ("branch", "commit_message"):
        if key in git:
            settings[key] = _require_str(git, "git", key, path)

    raw_paths = files.get("paths", [])
    if not isinstance(raw_paths, list) or not all(
        isinstance(p, str) for p in raw_paths
    ):
        raise ConfigParseError(f"[files].paths must be a list of strings in {path}")

    return SyncConfig(
        folder=folder,
        git=GitSettings(remote_url=remote_url, **settings),
        entries=tuple(TrackedFileEntry(p) for p in raw_paths),
        source=path,
    )


def validate(config: SyncConfig) -> None:
    """Checks semantic constraints that the TOML structure cannot express.

    An empty list of tracked files is valid and makes every workflow a no-op.

    Args:
        config (SyncConfig): The configuration to check.

    Raises:
        ConfigValidationError: If an entry has no file name, or two entries
                               map onto the same mirror file.
    """
    seen: dict[str, str] = {}
    for entry in config.entries:
        name = entry.file_name
        if name in seen:
            raise ConfigValidationError(
                f"Tracked files {seen[name]!r} and {entry.source!r} would both be "
                f"stored as {name!r} in the mirror"
            )
        seen[name] = entry.source

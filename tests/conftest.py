"""Shared fixtures: an isolated home directory, git identity and bare remote."""

import subprocess
from collections.abc import Callable
from pathlib import Path

import pytest

from syd.config import GitSettings, SyncConfig, TrackedFileEntry

_GIT_ENV_VARS = [
    "GIT_CONFIG_GLOBAL",
    "GIT_CONFIG_SYSTEM",
    "GIT_DIR",
    "GIT_WORK_TREE",
    "GIT_INDEX_FILE",
    "GIT_AUTHOR_NAME",
    "GIT_AUTHOR_EMAIL",
    "GIT_COMMITTER_NAME",
    "GIT_COMMITTER_EMAIL",
    "XDG_CONFIG_HOME",
    "SYD_CONFIG",
]


def git(*args: str, cwd: Path) -> str:
    """Runs a git command for test setup and returns its stripped stdout."""
    res = subprocess.run(
        ["git", *args], cwd=cwd, capture_output=True, text=True, check=True
    )
    return res.stdout.strip()


@pytest.fixture
def home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Points HOME at an empty directory and hides system/user git config."""
    home_dir = tmp_path / "home"
    home_dir.mkdir()
    monkeypatch.setenv("HOME", str(home_dir))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    for var in _GIT_ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    return home_dir


@pytest.fixture
def git_identity(home: Path) -> Path:
    """Configures a committer identity in the isolated home."""
    (home / ".gitconfig").write_text(
        "[user]\n\tname = Test User\n\temail = test@example.com\n"
    )
    return home


@pytest.fixture
def remote(tmp_path: Path) -> Path:
    """Creates an empty bare repository acting as the published remote."""
    path = tmp_path / "remote.git"
    subprocess.run(["git", "init", "--bare", "--quiet", str(path)], check=True)
    return path


@pytest.fixture
def make_config(home: Path, remote: Path) -> Callable[..., SyncConfig]:
    """Builds a SyncConfig against the bare remote.

    Args (of the returned factory):
        paths (list[str]): Tracked live paths.
        folder (str): Mirror directory, defaults to ``~/dotfiles``.
    """

    def factory(paths: list[str], folder: str = "~/dotfiles") -> SyncConfig:
        return SyncConfig(
            folder=folder,
            git=GitSettings(remote_url=str(remote)),
            entries=tuple(TrackedFileEntry(p) for p in paths),
        )

    return factory

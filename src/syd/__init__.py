"""syd: Back up and restore dotfiles through a git-versioned mirror.

This package provides the command-line interface, the change detection and
file transfer logic, and the mirror repository controller used to capture
tracked files into a flat, version-controlled folder and publish it to a
single git remote.
"""

from . import (
    cli,
    config,
    constants,
    detector,
    exceptions,
    git_wrapper,
    ops,
    paths,
)

__all__ = [
    "cli",
    "config",
    "constants",
    "detector",
    "exceptions",
    "git_wrapper",
    "ops",
    "paths",
]

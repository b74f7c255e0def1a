"""Expansion of user-supplied path notation into absolute filesystem paths."""

import os
from pathlib import Path

from .exceptions import PathExpansionError


def resolve(path: str) -> Path:
    """Expands a path that may begin with ``~`` or ``~user`` into an absolute path.

    Already-absolute paths are returned unchanged, which makes the function
    idempotent. Relative paths are anchored at the current working directory.
    Symlinks are not followed and the filesystem is never touched.

    Args:
        path (str): The path as written by the user.

    Returns:
        Path: The absolute path.

    Raises:
        PathExpansionError: If the path is empty or the home directory
                            shorthand cannot be resolved.
    """
    if not path or not str(path).strip():
        raise PathExpansionError(str(path))

    expanded = os.path.expanduser(str(path))

    # expanduser leaves the input untouched when it cannot find a home.
    if expanded.startswith("~"):
        raise PathExpansionError(str(path))

    result = Path(expanded)
    if not result.is_absolute():
        result = Path.cwd() / result
    return result

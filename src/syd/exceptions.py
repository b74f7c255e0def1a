"""Exceptions for syd.

Every failure the tool can report derives from `SydError`, so the CLI boundary
can print a one-line message and exit non-zero without a traceback.
"""


class SydError(Exception):
    """Base class for all errors reported by syd."""


class PathExpansionError(SydError):
    """Raised when a home-directory shorthand cannot be expanded.

    Attributes:
        path (str): The original, unexpanded path string.
    """

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Failed to expand path: {path!r}")


class ConfigError(SydError):
    """Base class for configuration problems detected at startup."""


class ConfigNotFound(ConfigError):
    """Raised when no configuration file exists at any searched location."""


class ConfigParseError(ConfigError):
    """Raised when the configuration file is malformed or misses required keys."""


class ConfigValidationError(ConfigError):
    """Raised when a well-formed configuration is semantically unusable.

    For example, two tracked files sharing a base name would overwrite one
    another in the flat mirror directory.
    """


class SyncIOError(SydError):
    """Raised when a filesystem operation on a tracked file fails."""


class VerificationError(SydError):
    """Raised when a copied file is absent or differs in size from its source."""


class GitError(SydError):
    """Raised when a git command fails.

    Attributes:
        stderr (str): The error output of the failed git command, if any.
    """

    def __init__(self, message: str, stderr: str = ""):
        self.stderr = stderr
        super().__init__(message)


class GitIdentityMissing(GitError):
    """Raised when no committer name or email is configured for the mirror."""


class GitAuthError(GitError):
    """Raised when the remote rejects our credentials."""


class GitNetworkError(GitError):
    """Raised when the remote cannot be reached."""


class NonFastForwardError(GitError):
    """Raised when the local branch cannot be fast-forwarded to the remote tip."""

import logging
import os
import re
import subprocess
from enum import Enum
from pathlib import Path

from .constants import APP_NAME, DEFAULT_BRANCH, GIT_SSH_COMMAND, REMOTE_NAME
from .exceptions import (
    GitAuthError,
    GitError,
    GitIdentityMissing,
    GitNetworkError,
    NonFastForwardError,
)

logger = logging.getLogger(APP_NAME)

_AUTH_PATTERNS = re.compile(
    r"permission denied|authentication failed|could not read (username|password)"
    r"|host key verification failed|invalid username or password"
    r"|terminal prompts disabled|access denied|publickey",
    re.IGNORECASE,
)
_NETWORK_PATTERNS = re.compile(
    r"could not resolve host|connection refused|connection timed out"
    r"|network is unreachable|no route to host|connection reset"
    r"|operation timed out|failed to connect|temporary failure in name resolution"
    r"|the remote end hung up unexpectedly",
    re.IGNORECASE,
)
_SSH_URL = re.compile(r"^(ssh://|[\w.-]+@[\w.-]+:)")


class MergeAnalysis(Enum):
    """Relationship between the local branch tip and the fetched remote tip."""

    UP_TO_DATE = "up-to-date"
    FAST_FORWARD = "fast-forward"
    DIVERGED = "diverged"
    UNBORN = "unborn"


class CredentialProvider:
    """Supplies the environment that authenticates transport commands.

    Subclasses decide how credentials reach git. The base implementation
    passes the invoking user's environment through and disables prompts.
    """

    def environment(self, url: str) -> dict[str, str]:
        """Builds the subprocess environment for a fetch, push or clone.

        Args:
            url (str): The remote URL being contacted.

        Returns:
            dict[str, str]: Environment variables for the git subprocess.
        """
        env = os.environ.copy()
        env["GIT_TERMINAL_PROMPT"] = "0"
        return env


class SshAgentCredentials(CredentialProvider):
    """Authenticates SSH remotes through the user's running ssh-agent."""

    def environment(self, url: str) -> dict[str, str]:
        env = super().environment(url)
        if _SSH_URL.match(url):
            if not env.get("SSH_AUTH_SOCK"):
                raise GitAuthError(
                    f"No SSH agent available for {url} (SSH_AUTH_SOCK is not set)"
                )
            env["GIT_SSH_COMMAND"] = GIT_SSH_COMMAND
        return env


def classify_transport_error(err: GitError, url: str) -> GitError:
    """Maps a failed fetch/push/clone onto an auth or network error.

    Args:
        err (GitError): The raw failure.
        url (str): The remote involved, for the message.

    Returns:
        GitError: A `GitAuthError`, a `GitNetworkError`, or `err` unchanged.
    """
    detail = err.stderr or str(err)
    if _AUTH_PATTERNS.search(detail):
        return GitAuthError(f"Authentication to {url} failed: {detail}", err.stderr)
    if _NETWORK_PATTERNS.search(detail):
        return GitNetworkError(f"Could not reach {url}: {detail}", err.stderr)
    return err


class MirrorRepository:
    """The git repository backing the mirror directory.

    Every operation shells out to the `git` CLI with the mirror as working
    directory. Transport commands take their environment from the injected
    credential provider.

    Attributes:
        path (Path): The mirror working tree.
        credentials (CredentialProvider): Authentication for remote operations.
        remote_name (str): The single remote used for publishing.
    """

    def __init__(
        self,
        path: Path,
        credentials: CredentialProvider | None = None,
        remote_name: str = REMOTE_NAME,
    ):
        self.path = path
        self.credentials = credentials or SshAgentCredentials()
        self.remote_name = remote_name

    @property
    def is_initialized(self) -> bool:
        """Whether version-control metadata exists at `path`."""
        return (self.path / ".git").exists()

    def _run(
        self,
        args: list[str],
        capture: bool = True,
        env: dict | None = None,
        cwd: Path | None = None,
        strip: bool = True,
    ) -> str:
        """Executes a Git command within the repository context.

        Args:
            args (list[str]): A list of arguments to pass to the git command.
            capture (bool, optional): Whether to return stdout. Defaults to True.
            env (dict | None, optional): Environment for the subprocess.
            cwd (Path | None, optional): Working directory, defaults to `path`.
            strip (bool, optional): Strip surrounding whitespace from stdout.
                Disable for output whose leading columns are significant.

        Returns:
            str: The stdout if capture is True, otherwise "".

        Raises:
            GitError: If git is missing or exits non-zero.
        """
        try:
            res = subprocess.run(
                ["git", *args],
                cwd=cwd or self.path,
                capture_output=True,
                text=True,
                check=True,
                env=env,
            )
            if not capture:
                return ""
            return res.stdout.strip() if strip else res.stdout.rstrip("\n")
        except FileNotFoundError as e:
            raise GitError(f"Git executable not found: {e}") from e
        except subprocess.CalledProcessError as e:
            stderr = (e.stderr or "").strip()
            raise GitError(
                f"git {args[0]} failed: {stderr or e}", stderr=stderr
            ) from e

    def _run_remote(self, args: list[str], url: str, cwd: Path | None = None) -> str:
        """Runs a transport command, classifying failures as auth or network."""
        env = self.credentials.environment(url)
        try:
            return self._run(args, env=env, cwd=cwd)
        except GitError as e:
            raise classify_transport_error(e, url) from e

    # --- Lifecycle ---

    def ensure_initialized(self, branch: str = DEFAULT_BRANCH) -> bool:
        """Creates an empty repository at `path` unless one already exists.

        HEAD is pointed at `branch` so the first commit lands on it regardless
        of the user's `init.defaultBranch`.

        Args:
            branch (str): The branch the repository will commit to.

        Returns:
            bool: True if a repository was created.
        """
        if self.is_initialized:
            logger.debug(f"Git repository already exists in {self.path}")
            return False

        self.path.mkdir(parents=True, exist_ok=True)
        self._run(["init", "--quiet"])
        self._run(["symbolic-ref", "HEAD", f"refs/heads/{branch}"])
        logger.info(f"Git repository initialized in {self.path}")
        return True

    def ensure_identity_configured(self) -> None:
        """Checks that commits can be attributed, without ever inventing a name.

        Raises:
            GitIdentityMissing: If `user.name` or `user.email` is not configured.
        """
        for key in ("user.name", "user.email"):
            try:
                value = self._run(["config", "--get", key])
            except GitError:
                value = ""
            if not value:
                raise GitIdentityMissing(
                    f"Git {key} not configured. "
                    f"Run: git config --global {key} <value>"
                )

    # --- Local history ---

    def rev_parse(self, rev: str) -> str | None:
        """Resolves a revision to a full SHA-1, or None if it does not exist."""
        try:
            return self._run(["rev-parse", "--verify", "--quiet", f"{rev}^{{commit}}"])
        except GitError as e:
            logger.debug(f"rev-parse failed for '{rev}': {e}")
            return None

    def stage_all(self) -> None:
        """Stages additions, modifications and deletions in the working tree."""
        self._run(["add", "--all"], capture=False)

    def status_porcelain(self) -> list[str]:
        """Returns `git status --porcelain` lines without refreshing the index."""
        output = self._run(
            ["--no-optional-locks", "status", "--porcelain"], strip=False
        )
        return output.splitlines() if output else []

    def write_tree(self) -> str:
        """Creates a tree object from the current index."""
        return self._run(["write-tree"])

    def commit_tree(self, tree: str, parents: list[str], message: str) -> str:
        """Creates a commit object from a tree object and returns its SHA-1."""
        cmd = ["commit-tree", tree, "-m", message]
        for p in parents:
            cmd.extend(["-p", p])
        return self._run(cmd)

    def update_ref(self, ref: str, new_oid: str, old_oid: str | None = None) -> None:
        """Moves a reference, failing if it no longer points at `old_oid`."""
        cmd = ["update-ref", "-m", "syd backup", ref, new_oid]
        if old_oid:
            cmd.append(old_oid)
        self._run(cmd)

    def symbolic_head(self) -> str | None:
        """Returns the ref HEAD points at, or None when HEAD is detached."""
        try:
            return self._run(["symbolic-ref", "--quiet", "HEAD"])
        except GitError:
            return None

    def attach_head(self, branch: str) -> None:
        """Points HEAD at `branch` without touching the index or work tree.

        A branch that does not exist yet starts at the current HEAD commit, so
        switching branches in an existing mirror keeps its history.
        """
        ref = f"refs/heads/{branch}"
        if self.symbolic_head() == ref:
            return

        head = self.rev_parse("HEAD")
        if head and self.rev_parse(ref) is None:
            self.update_ref(ref, head)
            logger.info(f"Created branch {branch} at {head[:8]}")
        self._run(["symbolic-ref", "HEAD", ref])
        logger.info(f"Switched mirror HEAD to {branch}")

    def commit_if_changed(self, message: str, branch: str = DEFAULT_BRANCH) -> str | None:
        """Commits the staged state of the working tree onto `branch`.

        HEAD is attached to `branch` first. The new commit's parent is the
        branch tip, or none for the first commit on it, and the branch ref is
        moved to the new commit.

        Args:
            message (str): The commit message.
            branch (str): The branch that receives the commit.

        Returns:
            str | None: The new commit SHA-1, or None if the index matches the
                        branch tip.
        """
        self.attach_head(branch)
        if not self.status_porcelain():
            logger.info("All up to date. Nothing to commit.")
            return None

        ref = f"refs/heads/{branch}"
        tree = self.write_tree()
        tip = self.rev_parse(ref)
        parents = [tip] if tip else []
        commit = self.commit_tree(tree, parents, message)
        self.update_ref(ref, commit, tip)

        kind = "Committed" if tip else "Created root commit"
        logger.info(f"{kind} {commit[:8]} on {branch} in {self.path}")
        return commit

    # --- Remote ---

    def remote_url(self) -> str | None:
        """Returns the URL of the configured remote, or None if absent."""
        try:
            return self._run(["remote", "get-url", self.remote_name])
        except GitError:
            return None

    def configure_remote(self, url: str) -> None:
        """Points the remote at `url`, recreating it if it points elsewhere."""
        current = self.remote_url()
        if current == url:
            return
        if current is not None:
            logger.info(f"Replacing remote {self.remote_name}: {current} -> {url}")
            self._run(["remote", "remove", self.remote_name])
        self._run(["remote", "add", self.remote_name, url])

    def push(self, branch: str = DEFAULT_BRANCH) -> None:
        """Publishes the local branch to the identically named remote branch.

        Raises:
            GitAuthError: If the remote rejected our credentials.
            GitNetworkError: If the remote could not be reached.
            GitError: For any other push failure (e.g. a rejected update).
        """
        url = self.remote_url() or self.remote_name
        refspec = f"refs/heads/{branch}:refs/heads/{branch}"
        self._run_remote(["push", "--quiet", self.remote_name, refspec], url)
        logger.info(f"Pushed {branch} to {url}")

    def analyze_merge(self, local: str | None, remote: str) -> MergeAnalysis:
        """Classifies the relationship between a local tip and a remote tip."""
        if local is None:
            return MergeAnalysis.UNBORN
        if local == remote or self._is_ancestor(remote, local):
            return MergeAnalysis.UP_TO_DATE
        if self._is_ancestor(local, remote):
            return MergeAnalysis.FAST_FORWARD
        return MergeAnalysis.DIVERGED

    def _is_ancestor(self, ancestor: str, descendant: str) -> bool:
        try:
            self._run(["merge-base", "--is-ancestor", ancestor, descendant])
            return True
        except GitError as e:
            # Exit code 1 with no output means "not an ancestor".
            if e.stderr:
                raise
            return False

    def fetch_and_fast_forward(self, branch: str = DEFAULT_BRANCH) -> MergeAnalysis:
        """Fetches the remote branch and fast-forwards the local branch to it.

        Never writes merge commits. The working tree is forcibly updated only
        when the branch actually moves.

        Returns:
            MergeAnalysis: `UP_TO_DATE` or `FAST_FORWARD`.

        Raises:
            NonFastForwardError: If the local branch is unborn or has diverged.
        """
        url = self.remote_url() or self.remote_name
        tracking = f"refs/remotes/{self.remote_name}/{branch}"
        self._run_remote(
            ["fetch", "--quiet", self.remote_name, f"+refs/heads/{branch}:{tracking}"],
            url,
        )

        remote_tip = self.rev_parse(tracking)
        if remote_tip is None:
            raise GitError(f"Fetched branch {branch} did not resolve to a commit")

        local_ref = f"refs/heads/{branch}"
        local_tip = self.rev_parse(local_ref)
        analysis = self.analyze_merge(local_tip, remote_tip)

        if analysis is MergeAnalysis.UP_TO_DATE:
            logger.info(f"{branch} is up to date with {url}")
        elif analysis is MergeAnalysis.FAST_FORWARD:
            self.update_ref(local_ref, remote_tip, local_tip)
            self._run(["checkout", "--force", "--quiet", branch], capture=False)
            logger.info(f"Fast-forwarded {branch} to {remote_tip[:8]}")
        elif analysis is MergeAnalysis.UNBORN:
            raise NonFastForwardError(
                f"Local branch {branch} in {self.path} has no commits; "
                "remove the mirror folder to clone it afresh"
            )
        else:
            raise NonFastForwardError(
                f"Local branch {branch} has diverged from {url}; "
                "reconcile the mirror repository manually"
            )
        return analysis

    def clone_if_absent(
        self, url: str, branch: str = DEFAULT_BRANCH
    ) -> MergeAnalysis | None:
        """Clones `url` into `path`, or fast-forwards an existing clone.

        Returns:
            MergeAnalysis | None: None after a fresh clone, otherwise the
                                  result of `fetch_and_fast_forward`.
        """
        if not self.is_initialized:
            logger.info(f"Cloning {url} into {self.path}")
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._run_remote(
                ["clone", "--quiet", "--branch", branch, url, str(self.path)],
                url,
                cwd=self.path.parent,
            )
            return None

        self.configure_remote(url)
        return self.fetch_and_fast_forward(branch)

    # --- Read-only inspection ---

    def current_branch(self) -> str:
        """Retrieves the name of the checked-out branch (works when unborn)."""
        return self._run(["--no-optional-locks", "branch", "--show-current"])

    def status_counts(self) -> tuple[int, int]:
        """Counts working-tree modifications and untracked files.

        Returns:
            tuple[int, int]: (modified, untracked).
        """
        modified = untracked = 0
        for line in self.status_porcelain():
            if line.startswith("??"):
                untracked += 1
            elif len(line) > 1 and line[1] != " ":
                modified += 1
        return modified, untracked

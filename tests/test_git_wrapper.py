"""Tests for the mirror repository controller."""

import subprocess
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from syd.exceptions import (
    GitAuthError,
    GitError,
    GitIdentityMissing,
    GitNetworkError,
    NonFastForwardError,
)
from syd.git_wrapper import (
    CredentialProvider,
    MergeAnalysis,
    MirrorRepository,
    SshAgentCredentials,
    classify_transport_error,
)

from conftest import git


def _commit_file(repo: MirrorRepository, name: str, content: str) -> str:
    (repo.path / name).write_text(content)
    repo.stage_all()
    commit = repo.commit_if_changed(f"update {name}")
    assert commit is not None
    return commit


@pytest.fixture
def mirror(tmp_path: Path, git_identity: Path) -> MirrorRepository:
    repo = MirrorRepository(tmp_path / "mirror", credentials=CredentialProvider())
    repo.ensure_initialized()
    return repo


@pytest.fixture
def published(mirror: MirrorRepository, remote: Path) -> MirrorRepository:
    """A mirror with one commit pushed to the bare remote."""
    _commit_file(mirror, ".vimrc", "X")
    mirror.configure_remote(str(remote))
    mirror.push()
    return mirror


def _second_clone(tmp_path: Path, remote: Path) -> Path:
    other = tmp_path / "other"
    subprocess.run(
        ["git", "clone", "--quiet", "--branch", "main", str(remote), str(other)],
        check=True,
    )
    return other


# --- Error handling (mocked subprocess) ---


def test_run_wraps_failures_with_stderr(mocker: MagicMock, tmp_path: Path) -> None:
    """Verifies that git failures become GitError carrying stderr."""
    mocker.patch(
        "subprocess.run",
        side_effect=subprocess.CalledProcessError(
            128, ["git", "status"], stderr="fatal: not a git repository\n"
        ),
    )
    repo = MirrorRepository(tmp_path)

    with pytest.raises(GitError, match="not a git repository") as excinfo:
        repo._run(["status"])

    assert excinfo.value.stderr == "fatal: not a git repository"


def test_run_reports_missing_git_binary(mocker: MagicMock, tmp_path: Path) -> None:
    """Verifies that a missing git executable is a GitError, not a crash."""
    mocker.patch("subprocess.run", side_effect=FileNotFoundError("git"))

    with pytest.raises(GitError, match="Git executable not found"):
        MirrorRepository(tmp_path)._run(["status"])


@pytest.mark.parametrize(
    ("stderr", "expected"),
    [
        ("git@github.com: Permission denied (publickey).", GitAuthError),
        ("remote: Invalid username or password.", GitAuthError),
        ("Host key verification failed.", GitAuthError),
        ("ssh: Could not resolve hostname github.com", GitNetworkError),
        ("fatal: unable to access: Could not resolve host: example.com", GitNetworkError),
        ("ssh: connect to host example.com port 22: Connection refused", GitNetworkError),
        ("ssh: connect to host 10.0.0.1 port 22: Network is unreachable", GitNetworkError),
        ("! [rejected] main -> main (non-fast-forward)", GitError),
    ],
)
def test_classify_transport_error(stderr: str, expected: type) -> None:
    """Verifies that auth failures and network failures are told apart."""
    result = classify_transport_error(GitError("push failed", stderr), "u")

    assert type(result) is expected


def test_push_surfaces_network_errors(mocker: MagicMock, tmp_path: Path) -> None:
    """Verifies that push raises GitNetworkError when the host is unreachable."""
    repo = MirrorRepository(tmp_path, credentials=CredentialProvider())
    mocker.patch.object(
        repo,
        "_run",
        side_effect=GitError(
            "git push failed", stderr="ssh: Could not resolve host: example.invalid"
        ),
    )

    with pytest.raises(GitNetworkError):
        repo.push("main")


def test_ssh_credentials_require_agent(monkeypatch: pytest.MonkeyPatch) -> None:
    """Verifies that SSH remotes need a running agent and never prompt."""
    creds = SshAgentCredentials()

    monkeypatch.delenv("SSH_AUTH_SOCK", raising=False)
    with pytest.raises(GitAuthError, match="SSH_AUTH_SOCK"):
        creds.environment("git@github.com:me/dotfiles.git")

    monkeypatch.setenv("SSH_AUTH_SOCK", "/tmp/agent.sock")
    env = creds.environment("ssh://git@github.com/me/dotfiles.git")
    assert env["GIT_SSH_COMMAND"] == "ssh -o BatchMode=yes"
    assert env["GIT_TERMINAL_PROMPT"] == "0"


def test_ssh_credentials_ignore_non_ssh_remotes(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Verifies that local and HTTPS remotes do not need an agent."""
    monkeypatch.delenv("GIT_SSH_COMMAND", raising=False)
    monkeypatch.delenv("SSH_AUTH_SOCK", raising=False)
    creds = SshAgentCredentials()

    assert "GIT_SSH_COMMAND" not in creds.environment("/srv/git/dotfiles.git")
    assert "GIT_SSH_COMMAND" not in creds.environment("https://example.com/d.git")


# --- Lifecycle (real git) ---


def test_ensure_initialized_is_idempotent(tmp_path: Path, home: Path) -> None:
    """Verifies that init creates the repo once and points HEAD at the branch."""
    repo = MirrorRepository(tmp_path / "mirror")

    assert repo.ensure_initialized("main") is True
    assert repo.is_initialized
    assert repo.current_branch() == "main"

    assert repo.ensure_initialized("main") is False


def test_identity_check_never_invents_identity(tmp_path: Path, home: Path) -> None:
    """Verifies that a missing committer identity is fatal."""
    repo = MirrorRepository(tmp_path / "mirror")
    repo.ensure_initialized()

    with pytest.raises(GitIdentityMissing, match="user.name"):
        repo.ensure_identity_configured()

    assert "[user]" not in (repo.path / ".git" / "config").read_text()


def test_identity_check_passes_when_configured(mirror: MirrorRepository) -> None:
    """Verifies that a global identity satisfies the check."""
    mirror.ensure_identity_configured()


def test_commit_if_changed_creates_root_then_child(mirror: MirrorRepository) -> None:
    """Verifies the parent chain: a root commit first, then HEAD as parent."""
    first = _commit_file(mirror, ".vimrc", "X")
    assert git("rev-list", "--parents", "-n", "1", first, cwd=mirror.path) == first

    second = _commit_file(mirror, ".vimrc", "Y")
    assert git("rev-parse", f"{second}^", cwd=mirror.path) == first
    assert mirror.rev_parse("refs/heads/main") == second


def test_commit_if_changed_skips_clean_tree(mirror: MirrorRepository) -> None:
    """Verifies the no-op signal when nothing differs from HEAD."""
    mirror.stage_all()
    assert mirror.commit_if_changed("empty") is None
    assert mirror.rev_parse("HEAD") is None

    head = _commit_file(mirror, ".vimrc", "X")
    (mirror.path / ".vimrc").write_text("X")
    mirror.stage_all()

    assert mirror.commit_if_changed("again") is None
    assert mirror.rev_parse("HEAD") == head


def test_commit_stages_deletions(mirror: MirrorRepository) -> None:
    """Verifies that files removed from the mirror are removed in history."""
    _commit_file(mirror, ".vimrc", "X")
    _commit_file(mirror, ".zshrc", "Z")
    (mirror.path / ".zshrc").unlink()
    mirror.stage_all()

    assert mirror.commit_if_changed("remove zshrc") is not None
    assert git("ls-tree", "--name-only", "HEAD", cwd=mirror.path) == ".vimrc"


def test_commit_lands_on_configured_branch(tmp_path: Path, git_identity: Path) -> None:
    """Verifies that commits go to the configured branch, not whatever HEAD was."""
    repo = MirrorRepository(tmp_path / "mirror")
    repo.ensure_initialized("master")
    (repo.path / "f").write_text("1")
    repo.stage_all()

    commit = repo.commit_if_changed("first", branch="dotfiles")

    assert repo.rev_parse("refs/heads/dotfiles") == commit
    assert repo.rev_parse("refs/heads/master") is None
    assert repo.symbolic_head() == "refs/heads/dotfiles"


def test_commit_moves_branch_when_head_was_elsewhere(
    tmp_path: Path, git_identity: Path
) -> None:
    """Verifies that an existing mirror on another branch keeps advancing `main`."""
    path = tmp_path / "mirror"
    path.mkdir()
    git("init", "--quiet", cwd=path)
    git("symbolic-ref", "HEAD", "refs/heads/master", cwd=path)
    (path / "f").write_text("1")
    git("add", "f", cwd=path)
    git("commit", "--quiet", "-m", "old history", cwd=path)
    old = git("rev-parse", "HEAD", cwd=path)

    repo = MirrorRepository(path)
    (path / "f").write_text("22")
    repo.stage_all()
    first = repo.commit_if_changed("one", branch="main")
    (path / "f").write_text("333")
    repo.stage_all()
    second = repo.commit_if_changed("two", branch="main")

    assert repo.rev_parse("refs/heads/main") == second
    assert git("rev-parse", f"{second}^", cwd=path) == first
    assert git("rev-parse", f"{first}^", cwd=path) == old
    assert repo.rev_parse("refs/heads/master") == old
    assert repo.current_branch() == "main"


def test_configure_remote_adds_keeps_and_replaces(mirror: MirrorRepository) -> None:
    """Verifies the three remote reconciliation cases."""
    assert mirror.remote_url() is None

    mirror.configure_remote("/srv/a.git")
    assert mirror.remote_url() == "/srv/a.git"

    mirror.configure_remote("/srv/a.git")
    assert git("remote", cwd=mirror.path) == "origin"

    mirror.configure_remote("/srv/b.git")
    assert mirror.remote_url() == "/srv/b.git"
    assert git("remote", cwd=mirror.path) == "origin"


def test_push_publishes_branch(published: MirrorRepository, remote: Path) -> None:
    """Verifies that the local branch lands on the identically named remote ref."""
    head = published.rev_parse("HEAD")

    assert git("rev-parse", "refs/heads/main", cwd=remote) == head


def test_push_rejected_when_remote_diverged(
    published: MirrorRepository, remote: Path, tmp_path: Path
) -> None:
    """Verifies that a non-fast-forward push fails without retrying."""
    other = _second_clone(tmp_path, remote)
    (other / ".vimrc").write_text("remote edit")
    git("commit", "-qam", "remote edit", cwd=other)
    git("push", "-q", "origin", "main", cwd=other)

    _commit_file(published, ".vimrc", "local edit")

    with pytest.raises(GitError):
        published.push()


# --- Fetch / merge analysis (real git) ---


def test_fetch_fast_forwards_to_descendant(
    published: MirrorRepository, remote: Path, tmp_path: Path
) -> None:
    """Verifies that a strictly newer remote history is applied to the work tree."""
    other = _second_clone(tmp_path, remote)
    (other / ".vimrc").write_text("Y")
    git("commit", "-qam", "edit", cwd=other)
    git("push", "-q", "origin", "main", cwd=other)
    remote_tip = git("rev-parse", "HEAD", cwd=other)

    analysis = published.fetch_and_fast_forward("main")

    assert analysis is MergeAnalysis.FAST_FORWARD
    assert published.rev_parse("refs/heads/main") == remote_tip
    assert (published.path / ".vimrc").read_text() == "Y"
    assert published.status_porcelain() == []


def test_fetch_reports_up_to_date(published: MirrorRepository) -> None:
    """Verifies that identical histories leave everything untouched."""
    head = published.rev_parse("HEAD")

    assert published.fetch_and_fast_forward("main") is MergeAnalysis.UP_TO_DATE
    assert published.rev_parse("HEAD") == head


def test_fetch_refuses_diverged_history(
    published: MirrorRepository, remote: Path, tmp_path: Path
) -> None:
    """Verifies that divergence raises and leaves the local branch unchanged."""
    other = _second_clone(tmp_path, remote)
    (other / ".vimrc").write_text("remote edit")
    git("commit", "-qam", "remote edit", cwd=other)
    git("push", "-q", "origin", "main", cwd=other)

    local = _commit_file(published, ".vimrc", "local edit")

    with pytest.raises(NonFastForwardError, match="diverged"):
        published.fetch_and_fast_forward("main")

    assert published.rev_parse("refs/heads/main") == local
    assert (published.path / ".vimrc").read_text() == "local edit"


def test_fetch_refuses_unborn_branch(
    published: MirrorRepository, remote: Path, tmp_path: Path, git_identity: Path
) -> None:
    """Verifies that an empty local repository is not silently overwritten."""
    empty = MirrorRepository(tmp_path / "empty", credentials=CredentialProvider())
    empty.ensure_initialized()
    empty.configure_remote(str(remote))

    with pytest.raises(NonFastForwardError, match="no commits"):
        empty.fetch_and_fast_forward("main")


def test_clone_if_absent_clones_then_fetches(
    published: MirrorRepository, remote: Path, tmp_path: Path
) -> None:
    """Verifies that the first call clones and later calls delegate to fetch."""
    clone = MirrorRepository(tmp_path / "nested" / "clone", CredentialProvider())

    assert clone.clone_if_absent(str(remote), "main") is None
    assert (clone.path / ".vimrc").read_text() == "X"
    assert clone.current_branch() == "main"

    assert clone.clone_if_absent(str(remote), "main") is MergeAnalysis.UP_TO_DATE


def test_status_counts_modified_and_untracked(published: MirrorRepository) -> None:
    """Verifies the counts reported by `status`."""
    (published.path / ".vimrc").write_text("changed")
    (published.path / "new1").write_text("n")
    (published.path / "new2").write_text("n")

    assert published.status_porcelain()[0] == " M .vimrc"
    assert published.status_counts() == (1, 2)

import logging
import shutil
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from .config import SyncConfig, TrackedFileEntry
from .constants import APP_NAME
from .detector import ChangeVerdict, Direction, needs_sync
from .exceptions import SyncIOError, VerificationError
from .git_wrapper import MergeAnalysis, MirrorRepository

logger = logging.getLogger(APP_NAME)


@dataclass
class SyncItem:
    """A single planned transfer between a live file and the mirror.

    Attributes:
        entry (TrackedFileEntry): The configured entry.
        source (Path): The file that would be read.
        dest (Path): The file that would be written.
        verdict (ChangeVerdict): Whether, and why, a copy is needed.
    """

    entry: TrackedFileEntry
    source: Path
    dest: Path
    verdict: ChangeVerdict


@dataclass
class BackupResult:
    """Outcome of a backup run.

    Attributes:
        items (list[SyncItem]): The full plan, in configured order.
        copied (list[SyncItem]): Entries copied into the mirror.
        skipped (list[SyncItem]): Entries whose live file was missing.
        commit (str | None): The created commit, if any.
        pushed (bool): Whether the branch was published.
        dry_run (bool): Whether the run stopped after planning.
    """

    items: list[SyncItem] = field(default_factory=list)
    copied: list[SyncItem] = field(default_factory=list)
    skipped: list[SyncItem] = field(default_factory=list)
    commit: str | None = None
    pushed: bool = False
    dry_run: bool = False

    @property
    def pending(self) -> list[SyncItem]:
        return [i for i in self.items if i.verdict.needs_copy]


@dataclass
class RestoreResult:
    """Outcome of a restore run.

    Attributes:
        items (list[SyncItem]): The full plan, in configured order.
        copied (list[SyncItem]): Entries written to their live location.
        skipped (list[SyncItem]): Entries with no copy in the mirror.
        analysis (MergeAnalysis | None): Fetch result, None after a fresh clone.
        dry_run (bool): Whether the run stopped after planning.
        aborted (bool): Whether the user declined to overwrite live files.
    """

    items: list[SyncItem] = field(default_factory=list)
    copied: list[SyncItem] = field(default_factory=list)
    skipped: list[SyncItem] = field(default_factory=list)
    analysis: MergeAnalysis | None = None
    dry_run: bool = False
    aborted: bool = False

    @property
    def pending(self) -> list[SyncItem]:
        return [i for i in self.items if i.verdict.needs_copy]


class FileState(Enum):
    """Per-file state reported by `status`."""

    SOURCE_MISSING = "Source file missing"
    NOT_BACKED_UP = "Not backed up"
    LOCAL_NEWER = "Local file newer than backup"
    DRIFTED = "Backup differs from local file"
    SYNCED = "Synced"


@dataclass
class FileStatus:
    entry: TrackedFileEntry
    live: Path
    mirror: Path
    state: FileState


@dataclass
class StatusReport:
    """A read-only snapshot of the mirror and every tracked file.

    Attributes:
        mirror_dir (Path): The expanded mirror directory.
        mirror_exists (bool): Whether the directory exists.
        remote_url (str): The configured remote.
        is_repository (bool): Whether the mirror holds a git repository.
        branch (str | None): The checked-out branch, if any.
        modified (int): Modified files in the mirror working tree.
        untracked (int): Untracked files in the mirror working tree.
        files (list[FileStatus]): Per-entry state, in configured order.
    """

    mirror_dir: Path
    mirror_exists: bool
    remote_url: str
    is_repository: bool = False
    branch: str | None = None
    modified: int = 0
    untracked: int = 0
    files: list[FileStatus] = field(default_factory=list)


def plan(config: SyncConfig, direction: Direction) -> list[SyncItem]:
    """Evaluates every tracked entry in configured order.

    Args:
        config (SyncConfig): The loaded configuration.
        direction (Direction): BACKUP compares live -> mirror, RESTORE the reverse.

    Returns:
        list[SyncItem]: One item per entry.

    Raises:
        PathExpansionError: If an entry or the mirror folder cannot be expanded.
        SyncIOError: If a file's metadata cannot be read.
    """
    mirror_dir = config.mirror_dir
    items = []
    for entry in config.entries:
        live = entry.live_path()
        mirror = entry.mirror_path(mirror_dir)
        source, dest = (live, mirror) if direction is Direction.BACKUP else (mirror, live)
        try:
            verdict = needs_sync(source, dest, direction)
        except OSError as e:
            raise SyncIOError(f"Could not inspect {source}: {e}") from e
        items.append(SyncItem(entry, source, dest, verdict))
    return items


def copy_file(source: Path, dest: Path) -> None:
    """Copies one file, preserving its timestamps, and verifies the result.

    Raises:
        SyncIOError: If the copy fails.
        VerificationError: If the destination is absent or differs in size.
    """
    try:
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(source, dest)
    except OSError as e:
        raise SyncIOError(f"Failed to copy {source} to {dest}: {e}") from e
    verify_copy(source, dest)


def verify_copy(source: Path, dest: Path) -> None:
    """Checks that `dest` exists and matches `source` in size.

    Raises:
        VerificationError: If the destination is absent or sizes differ.
    """
    if not dest.exists():
        raise VerificationError(f"Destination file not created: {dest}")
    try:
        src_size = source.stat().st_size
        dest_size = dest.stat().st_size
    except OSError as e:
        raise SyncIOError(f"Could not verify {dest}: {e}") from e
    if src_size != dest_size:
        raise VerificationError(
            f"File sizes don't match for {dest} ({src_size} != {dest_size} bytes)"
        )


def _missing_sources(items: list[SyncItem]) -> list[SyncItem]:
    """Returns and warns about items whose source file does not exist."""
    missing = [i for i in items if i.verdict is ChangeVerdict.SOURCE_MISSING]
    for item in missing:
        logger.warning(f"Skipping {item.entry.source}: {item.source} not found")
    return missing


def _transfer(
    items: list[SyncItem], verb: str, progress: Callable[[SyncItem], None] | None
) -> list[SyncItem]:
    """Copies every item that needs it, aborting on the first failure."""
    copied = []
    for item in items:
        if not item.verdict.needs_copy:
            continue
        copy_file(item.source, item.dest)
        copied.append(item)
        logger.info(f"{verb} {item.source} -> {item.dest}")
        if progress:
            progress(item)
    return copied


def backup_files(
    config: SyncConfig,
    repo: MirrorRepository | None = None,
    dry_run: bool = False,
    progress: Callable[[SyncItem], None] | None = None,
) -> BackupResult:
    """Captures tracked files into the mirror, then commits and pushes.

    Steps:
    1. Ensures the mirror folder and repository exist (skipped on dry-run).
    2. Plans every entry; stops here if nothing needs copying.
    3. Checks the committer identity, then copies and verifies each changed
       file.
    4. Stages, commits if changed and pushes.

    Args:
        config (SyncConfig): The loaded configuration.
        repo (MirrorRepository | None): The mirror controller. Defaults to one
                                        rooted at the configured folder.
        dry_run (bool): Plan only, without touching the filesystem or git.
        progress (Callable | None): Called once per copied file.

    Returns:
        BackupResult: What was planned, copied, committed and pushed.
    """
    mirror_dir = config.mirror_dir
    repo = repo or MirrorRepository(mirror_dir)

    if dry_run:
        return BackupResult(items=plan(config, Direction.BACKUP), dry_run=True)

    if not mirror_dir.exists():
        try:
            mirror_dir.mkdir(parents=True)
        except OSError as e:
            raise SyncIOError(f"Could not create {mirror_dir}: {e}") from e
        logger.info(f"Folder {mirror_dir} created.")
    repo.ensure_initialized(config.git.branch)

    result = BackupResult(items=plan(config, Direction.BACKUP))
    result.skipped = _missing_sources(result.items)
    if not result.pending:
        logger.info("All files are up to date, no backup needed.")
        return result

    repo.ensure_identity_configured()
    result.copied = _transfer(result.items, "Backed up", progress)

    repo.stage_all()
    result.commit = repo.commit_if_changed(config.git.commit_message, config.git.branch)
    if result.commit is None:
        return result

    repo.configure_remote(config.git.remote_url)
    repo.push(config.git.branch)
    result.pushed = True
    logger.info("Changes committed and pushed to remote")
    return result


def fetch_mirror(
    config: SyncConfig, repo: MirrorRepository | None = None
) -> MergeAnalysis | None:
    """Clones the mirror if absent, otherwise fast-forwards it to the remote.

    Returns:
        MergeAnalysis | None: None after a fresh clone.

    Raises:
        NonFastForwardError: If local and remote histories have diverged.
    """
    repo = repo or MirrorRepository(config.mirror_dir)
    return repo.clone_if_absent(config.git.remote_url, config.git.branch)


def restore_files(
    config: SyncConfig,
    repo: MirrorRepository | None = None,
    fetch: bool = True,
    force: bool = False,
    dry_run: bool = False,
    confirm: Callable[[list[SyncItem]], bool] | None = None,
    progress: Callable[[SyncItem], None] | None = None,
) -> RestoreResult:
    """Retrieves the published mirror and applies it to the live locations.

    Never creates commits. Entries with no copy in the mirror are skipped with
    a warning, since the live file is authoritative for those.

    Args:
        config (SyncConfig): The loaded configuration.
        repo (MirrorRepository | None): The mirror controller.
        fetch (bool): Clone or fast-forward the mirror first. Callers that
                      already did so (see `fetch_mirror`) pass False.
        force (bool): Overwrite live files without calling `confirm`.
        dry_run (bool): Stop after planning, leaving live files untouched.
        confirm (Callable | None): Asked before overwriting; returning False aborts.
        progress (Callable | None): Called once per restored file.

    Returns:
        RestoreResult: What was fetched, planned and copied.
    """
    repo = repo or MirrorRepository(config.mirror_dir)
    result = RestoreResult()
    if fetch:
        result.analysis = fetch_mirror(config, repo)

    result.items = plan(config, Direction.RESTORE)
    result.skipped = _missing_sources(result.items)
    if not result.pending:
        logger.info("All files are up to date, no restore needed.")
        return result

    if dry_run:
        result.dry_run = True
        return result

    if not force and confirm is not None and not confirm(result.pending):
        logger.info("Restore declined by user.")
        result.aborted = True
        return result

    logger.info(f"Restoring files from {config.mirror_dir}")
    result.copied = _transfer(result.items, "Restored", progress)
    return result


def _file_state(live: Path, mirror: Path) -> FileState:
    verdict = needs_sync(live, mirror, Direction.BACKUP)
    if verdict is ChangeVerdict.SOURCE_MISSING:
        return FileState.SOURCE_MISSING
    if verdict is ChangeVerdict.MISSING:
        return FileState.NOT_BACKED_UP
    if verdict is ChangeVerdict.UP_TO_DATE:
        return FileState.SYNCED
    if live.stat().st_mtime_ns > mirror.stat().st_mtime_ns:
        return FileState.LOCAL_NEWER
    return FileState.DRIFTED


def collect_status(
    config: SyncConfig, repo: MirrorRepository | None = None
) -> StatusReport:
    """Gathers a read-only status snapshot. Never fetches and never writes.

    A missing mirror folder or repository is reported, not raised.

    Args:
        config (SyncConfig): The loaded configuration.
        repo (MirrorRepository | None): The mirror controller.

    Returns:
        StatusReport: The snapshot.
    """
    mirror_dir = config.mirror_dir
    repo = repo or MirrorRepository(mirror_dir)
    report = StatusReport(
        mirror_dir=mirror_dir,
        mirror_exists=mirror_dir.is_dir(),
        remote_url=config.git.remote_url,
    )

    if report.mirror_exists and repo.is_initialized:
        report.is_repository = True
        report.branch = repo.current_branch() or None
        report.modified, report.untracked = repo.status_counts()

    for entry in config.entries:
        live = entry.live_path()
        mirror = entry.mirror_path(mirror_dir)
        try:
            state = _file_state(live, mirror)
        except OSError as e:
            raise SyncIOError(f"Could not inspect {live}: {e}") from e
        report.files.append(FileStatus(entry, live, mirror, state))
    return report

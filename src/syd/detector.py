"""Classification of a live/mirror file pair as needing a copy or not."""

from enum import Enum
from pathlib import Path


class Direction(Enum):
    """Which side of a file pair is authoritative."""

    BACKUP = "backup"
    RESTORE = "restore"


class ChangeVerdict(Enum):
    """Outcome of comparing a source file with its destination."""

    MISSING = "missing"
    STALE = "stale"
    UP_TO_DATE = "up-to-date"
    SOURCE_MISSING = "source-missing"

    @property
    def needs_copy(self) -> bool:
        return self in (ChangeVerdict.MISSING, ChangeVerdict.STALE)


def needs_sync(source: Path, dest: Path, direction: Direction) -> ChangeVerdict:
    """Compares a file pair using existence, size and modification time.

    Backups only care whether the source is newer than the destination.
    Restores treat any timestamp drift as stale, since either side may have
    moved. This only reads file metadata.

    Args:
        source (Path): The file that would be copied.
        dest (Path): Where it would be copied to.
        direction (Direction): The direction of the transfer.

    Returns:
        ChangeVerdict: The classification. `SOURCE_MISSING` is returned rather
                       than raised so the caller can skip and warn.
    """
    try:
        src_stat = source.stat()
    except FileNotFoundError:
        return ChangeVerdict.SOURCE_MISSING

    try:
        dest_stat = dest.stat()
    except FileNotFoundError:
        return ChangeVerdict.MISSING

    if src_stat.st_size != dest_stat.st_size:
        return ChangeVerdict.STALE

    if direction is Direction.BACKUP:
        if src_stat.st_mtime_ns > dest_stat.st_mtime_ns:
            return ChangeVerdict.STALE
    elif src_stat.st_mtime_ns != dest_stat.st_mtime_ns:
        return ChangeVerdict.STALE

    return ChangeVerdict.UP_TO_DATE

"""Records, change classifications, and the error taxonomy."""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

DIGEST_SIZE = 32

# Persisted mtimes have 1-second resolution; closer than this counts as equal.
MTIME_TOLERANCE = timedelta(seconds=1)


class LsrError(Exception):
    """Base class for fatal run errors."""


class ManifestFormatError(LsrError, ValueError):
    """A previous manifest line could not be decoded."""

    def __init__(self, message: str, path=None, lineno: Optional[int] = None):
        self.path = path
        self.lineno = lineno
        if path is not None and lineno is not None:
            message = f"{path}:{lineno}: {message}"
        elif path is not None:
            message = f"{path}: {message}"
        elif lineno is not None:
            message = f"line {lineno}: {message}"
        super().__init__(message)


class HashError(LsrError):
    """A traversed file could not be opened or read for hashing."""


class WalkError(LsrError):
    """A directory entry could not be traversed."""


class OrderError(LsrError):
    """A record stream is not strictly increasing in path order."""


class Classification(Enum):
    """Outcome for one path of a run.

    Single-letter values are the diagnostic codes; the others never print.
    """

    NEW = "N"
    DELETED = "D"
    MODIFIED = "M"
    REVERTED = "R"
    TOUCHED = "T"
    CORRUPTED = "C"
    SKIPPED = "E"
    UNCHANGED = "unchanged"
    HELD = "held"

    @property
    def code(self) -> str:
        return self.value if len(self.value) == 1 else ""

    @property
    def silent(self) -> bool:
        return not self.code


def truncate_mtime(mtime: float) -> datetime:
    """Convert an ``st_mtime`` to the whole-second UTC form stored in manifests."""
    return datetime.fromtimestamp(int(mtime // 1), tz=timezone.utc)


@dataclass(frozen=True)
class Record:
    """Observed state of one regular file at scan time."""
    path: str
    size: int
    mtime: datetime
    digest: Optional[bytes] = None

    def same_content(self, other: "Record") -> bool:
        return self.size == other.size and self.digest == other.digest


@dataclass(frozen=True)
class FileStat:
    """A regular file found by the walker, not yet hashed."""
    path: str
    size: int
    mtime: datetime
    source: str

    def to_record(self, digest: bytes) -> Record:
        return Record(path=self.path, size=self.size, mtime=self.mtime, digest=digest)


@dataclass(frozen=True)
class Skipped:
    """A traversal entry that could not be read under the skip policy."""
    path: str
    reason: str
    is_dir: bool = False


@dataclass(frozen=True)
class Change:
    """One step of a merge.

    ``record`` is what the new manifest receives for this step: the current
    record, a carried-forward previous record for HELD, or None for DELETED
    and SKIPPED.
    """
    kind: Classification
    path: str
    record: Optional[Record] = None

    def line(self) -> str:
        """``<code> <path>``; paths with control characters are quoted as in the manifest."""
        path = self.path
        if not path.isprintable() or path.startswith('"'):
            from lsr.manifest import quote_path
            path = quote_path(path)
        return f"{self.kind.code} {path}"

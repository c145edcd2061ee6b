"""
scan.py — One lsr run: walk, hash, diff against the previous manifest, and
publish the new one.
"""

import sys
import time
from contextlib import ExitStack, closing
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional, Set

from tqdm import tqdm

from lsr.engine import diff_snapshots
from lsr.hashing import DigestReuse, hash_entries
from lsr.manifest import ManifestReader, ManifestWriter, temp_path_for
from lsr.model import Change, Classification
from lsr.walk import walk_tree

DEFAULT_MANIFEST_NAME = ".lsr"


@dataclass
class ScanOptions:
    """Knobs for a run. Only ``trust`` changes what gets recorded."""
    manifest_name: str = DEFAULT_MANIFEST_NAME
    trust: bool = False
    workers: int = 1
    skip_errors: bool = False
    dry_run: bool = False
    progress: bool = False


@dataclass
class ScanStats:
    """Statistics for a run."""
    files_scanned: int = 0
    files_new: int = 0
    files_deleted: int = 0
    files_modified: int = 0
    files_reverted: int = 0
    files_touched: int = 0
    files_corrupted: int = 0
    files_unchanged: int = 0
    entries_skipped: int = 0
    files_held: int = 0
    bytes_hashed: int = 0
    digests_reused: int = 0
    records_written: int = 0
    manifest_replaced: bool = False
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    duration_seconds: float = 0.0

    _FIELDS = {
        Classification.NEW: "files_new",
        Classification.DELETED: "files_deleted",
        Classification.MODIFIED: "files_modified",
        Classification.REVERTED: "files_reverted",
        Classification.TOUCHED: "files_touched",
        Classification.CORRUPTED: "files_corrupted",
        Classification.UNCHANGED: "files_unchanged",
        Classification.SKIPPED: "entries_skipped",
        Classification.HELD: "files_held",
    }

    def count(self, change: Change) -> None:
        name = self._FIELDS[change.kind]
        setattr(self, name, getattr(self, name) + 1)
        if change.kind not in (Classification.DELETED, Classification.SKIPPED, Classification.HELD):
            self.files_scanned += 1

    @property
    def changes(self) -> int:
        return (
            self.files_new + self.files_deleted + self.files_modified + self.files_reverted
            + self.files_touched + self.files_corrupted + self.entries_skipped
        )


def manifest_path_for(root: Path, manifest_name: str = DEFAULT_MANIFEST_NAME) -> Path:
    return Path(root) / manifest_name


def excluded_paths(root: Path, manifest_path: Path) -> Set[str]:
    """Relative paths of the manifest and its temp file, when they live under ROOT."""
    excluded = set()
    for path in (manifest_path, temp_path_for(manifest_path)):
        try:
            excluded.add(path.relative_to(root).as_posix())
        except ValueError:
            pass
    return excluded


def scan_tree(
    root: Path,
    options: Optional[ScanOptions] = None,
    on_change: Optional[Callable[[Change], None]] = None,
) -> ScanStats:
    """
    Snapshot ROOT and diff it against the manifest from the previous run.

    Args:
        root: Directory to audit
        options: ScanOptions (defaults: full hashing, sequential, abort on errors)
        on_change: Called with every Change, silent ones included, in path order

    Returns:
        ScanStats for the run.

    Raises:
        LsrError / OSError: the run is abandoned and the previous manifest is
            left untouched.
    """
    options = options or ScanOptions()
    root = Path(root)
    manifest_path = manifest_path_for(root, options.manifest_name)
    stats = ScanStats()
    started = time.monotonic()

    entries = walk_tree(
        root,
        exclude=excluded_paths(root, manifest_path),
        skip_errors=options.skip_errors,
    )
    if options.progress:
        entries = tqdm(entries, desc="📦 Scanning", unit="file", file=sys.stderr)

    with ExitStack() as stack:
        previous = stack.enter_context(ManifestReader(manifest_path))
        trusted_reader = None
        trusted = None
        if options.trust:
            trusted_reader = stack.enter_context(ManifestReader(manifest_path))
            trusted = DigestReuse(trusted_reader)
        writer = None
        if not options.dry_run:
            writer = stack.enter_context(ManifestWriter(manifest_path))

        current = stack.enter_context(
            closing(hash_entries(entries, trusted=trusted, workers=options.workers, stats=stats))
        )
        for change in diff_snapshots(previous, current):
            stats.count(change)
            if writer is not None and change.record is not None:
                writer.write(change.record)
            if on_change is not None:
                on_change(change)

        previous.close()
        if trusted_reader is not None:
            trusted_reader.close()
        if writer is not None:
            writer.commit()
            stats.records_written = writer.count
            stats.manifest_replaced = True

    stats.duration_seconds = time.monotonic() - started
    return stats


def list_tree(root: Path, manifest_name: str = DEFAULT_MANIFEST_NAME, workers: int = 1,
              skip_errors: bool = False):
    """Yield records (and Skipped markers) for ROOT without touching any manifest."""
    root = Path(root)
    entries = walk_tree(
        root,
        exclude=excluded_paths(root, manifest_path_for(root, manifest_name)),
        skip_errors=skip_errors,
    )
    yield from hash_entries(entries, workers=workers)

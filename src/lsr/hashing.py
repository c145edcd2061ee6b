"""Content hashing with optional digest reuse and parallel workers."""

import hashlib
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Iterable, Iterator, Optional, Union

from lsr.engine import PreviousCursor
from lsr.model import MTIME_TOLERANCE, FileStat, HashError, Record, Skipped

CHUNK_SIZE = 1024 * 1024
INFLIGHT_PER_WORKER = 8


def sha256_file(path) -> bytes:
    """Stream a file through SHA-256. Any read failure is fatal to the run."""
    h = hashlib.sha256()
    try:
        with open(path, "rb") as f:
            while chunk := f.read(CHUNK_SIZE):
                h.update(chunk)
    except OSError as e:
        raise HashError(f"could not hash {path}: {e.strerror or e}") from e
    return h.digest()


class DigestReuse:
    """
    Trust-mode lookup of previous digests.

    Runs its own cursor over an independent read of the previous manifest.
    Lookups must come in path order, which the walk guarantees.
    """

    def __init__(self, previous: Iterable[Record]):
        self._cursor = PreviousCursor(previous)

    def lookup(self, entry: FileStat) -> Optional[bytes]:
        """Return the previous digest if size matches and mtime is within tolerance."""
        for _ in self._cursor.pop_before(entry.path):
            pass
        prev = self._cursor.match(entry.path)
        if prev is None:
            return None
        if prev.size != entry.size or abs(entry.mtime - prev.mtime) > MTIME_TOLERANCE:
            return None
        return prev.digest


def _count_hashed(stats, entry: FileStat) -> None:
    if stats is not None:
        stats.bytes_hashed += entry.size


def _count_reused(stats) -> None:
    if stats is not None:
        stats.digests_reused += 1


def hash_entries(
    entries: Iterable[Union[FileStat, Skipped]],
    trusted: Optional[DigestReuse] = None,
    workers: int = 1,
    stats=None,
) -> Iterator[Union[Record, Skipped]]:
    """
    Turn walker output into records, preserving order.

    Args:
        entries: FileStat/Skipped items in path order
        trusted: DigestReuse for trust mode, or None to hash every file
        workers: Hash with a thread pool when > 1; results are still yielded
            in input order
        stats: Optional object with ``bytes_hashed``/``digests_reused`` counters
    """
    if workers <= 1:
        for entry in entries:
            if isinstance(entry, Skipped):
                yield entry
                continue
            digest = trusted.lookup(entry) if trusted else None
            if digest is None:
                digest = sha256_file(entry.source)
                _count_hashed(stats, entry)
            else:
                _count_reused(stats)
            yield entry.to_record(digest)
        return

    max_inflight = workers * INFLIGHT_PER_WORKER
    pending = deque()

    def resolve(item):
        entry, digest = item
        if isinstance(entry, Skipped):
            return entry
        if isinstance(digest, Future):
            digest = digest.result()
        return entry.to_record(digest)

    executor = ThreadPoolExecutor(max_workers=workers)
    try:
        for entry in entries:
            if isinstance(entry, Skipped):
                pending.append((entry, None))
            else:
                digest = trusted.lookup(entry) if trusted else None
                if digest is None:
                    pending.append((entry, executor.submit(sha256_file, entry.source)))
                    _count_hashed(stats, entry)
                else:
                    pending.append((entry, digest))
                    _count_reused(stats)
            while len(pending) >= max_inflight:
                yield resolve(pending.popleft())
        while pending:
            yield resolve(pending.popleft())
    finally:
        for _, digest in pending:
            if isinstance(digest, Future):
                digest.cancel()
        executor.shutdown(wait=True)

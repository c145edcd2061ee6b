"""
engine.py — One-pass merge of the previous snapshot against the current one.

Both inputs arrive in path order (``lsr.pathorder``), so every path is
classified by walking the two streams in lockstep. Nothing is sorted, looked
up, or held in memory beyond the single previous record under the cursor.
"""

from typing import Iterable, Iterator, Optional, Union

from lsr.model import (
    MTIME_TOLERANCE,
    Change,
    Classification,
    OrderError,
    Record,
    Skipped,
)
from lsr.pathorder import is_within, path_before


class PreviousCursor:
    """Position in the previous snapshot: one record, or None at end-of-stream."""

    def __init__(self, records: Iterable[Record]):
        self._records = iter(records)
        self.current: Optional[Record] = None
        self.advance()

    @property
    def exhausted(self) -> bool:
        return self.current is None

    def advance(self) -> Optional[Record]:
        last = self.current
        self.current = next(self._records, None)
        if last is not None and self.current is not None and not path_before(last.path, self.current.path):
            raise OrderError(f"previous snapshot out of order: {self.current.path!r} after {last.path!r}")
        return self.current

    def pop_before(self, path: str) -> Iterator[Record]:
        """Pass over, yielding, every record that sorts strictly before PATH."""
        while self.current is not None and path_before(self.current.path, path):
            record = self.current
            self.advance()
            yield record

    def pop_within(self, path: str) -> Iterator[Record]:
        """Pass over, yielding, every record at PATH or beneath it."""
        while self.current is not None and is_within(self.current.path, path):
            record = self.current
            self.advance()
            yield record

    def match(self, path: str) -> Optional[Record]:
        """Return the record at PATH if the cursor sits on it."""
        if self.current is not None and self.current.path == path:
            return self.current
        return None

    def drain(self) -> Iterator[Record]:
        while self.current is not None:
            record = self.current
            self.advance()
            yield record


def classify(previous: Record, current: Record) -> Classification:
    """
    Classify a path present in both snapshots.

    Content (size and digest) decides whether the file changed; the mtime
    direction then tells a normal edit from a restore of older content, and
    a content change with no mtime change is corruption.
    """
    delta = current.mtime - previous.mtime
    if not previous.same_content(current):
        if delta > MTIME_TOLERANCE:
            return Classification.MODIFIED
        if delta < -MTIME_TOLERANCE:
            return Classification.REVERTED
        return Classification.CORRUPTED
    if abs(delta) > MTIME_TOLERANCE:
        return Classification.TOUCHED
    return Classification.UNCHANGED


def diff_snapshots(
    previous: Union[Iterable[Record], PreviousCursor],
    current: Iterable[Union[Record, Skipped]],
) -> Iterator[Change]:
    """
    Merge two path-ordered streams and yield one Change per path.

    Args:
        previous: Records from the last run, or a PreviousCursor over them
        current: Records (and Skipped markers) from this run, in walk order

    Yields:
        Change objects in path order. Every current record comes back inside
        its Change, so writing ``change.record`` when present reproduces the
        new manifest in order. A Skipped entry yields one SKIPPED change, then
        HELD changes carrying forward the previous records beneath it.

    Raises:
        OrderError: if ``current`` is not strictly increasing.
    """
    cursor = previous if isinstance(previous, PreviousCursor) else PreviousCursor(previous)
    last_path: Optional[str] = None

    for item in current:
        if last_path is not None and not path_before(last_path, item.path):
            raise OrderError(f"current snapshot out of order: {item.path!r} after {last_path!r}")
        last_path = item.path

        for gone in cursor.pop_before(item.path):
            yield Change(Classification.DELETED, gone.path)

        if isinstance(item, Skipped):
            yield Change(Classification.SKIPPED, item.path)
            for held in cursor.pop_within(item.path):
                yield Change(Classification.HELD, held.path, held)
            continue

        prev = cursor.match(item.path)
        if prev is None:
            yield Change(Classification.NEW, item.path, item)
            continue

        cursor.advance()
        yield Change(classify(prev, item), item.path, item)

    for gone in cursor.drain():
        yield Change(Classification.DELETED, gone.path)

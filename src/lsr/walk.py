"""Lazy depth-first walk of a directory tree in path order."""

import os
import stat
from pathlib import Path
from typing import Iterable, Iterator, List, Tuple, Union

from lsr.model import FileStat, Skipped, WalkError, truncate_mtime


def _list_dir(dir_path: str, rel_dir: str) -> List[Tuple[str, os.DirEntry]]:
    """Read one directory and return (relative path, entry) pairs sorted by name."""
    with os.scandir(dir_path) as it:
        entries = sorted(it, key=lambda e: e.name)
    prefix = f"{rel_dir}/" if rel_dir else ""
    return [(prefix + entry.name, entry) for entry in entries]


def _describe(err: OSError) -> str:
    return err.strerror or str(err)


def walk_tree(
    root: Path,
    exclude: Iterable[str] = (),
    skip_errors: bool = False,
) -> Iterator[Union[FileStat, Skipped]]:
    """
    Yield every regular file under ROOT, directories before their contents and
    siblings in name order. Symlinks are never followed and never recorded.

    Args:
        root: Directory to walk
        exclude: Relative paths to leave out (the manifest and its temp file)
        skip_errors: Yield Skipped for unreadable entries instead of raising

    Raises:
        WalkError: an entry could not be read and skip_errors is off, or the
            root itself could not be listed.
    """
    excluded = set(exclude)
    try:
        top = _list_dir(os.fspath(root), "")
    except OSError as e:
        raise WalkError(f"cannot read {root}: {_describe(e)}") from e

    stack = [iter(top)]
    while stack:
        try:
            rel_path, entry = next(stack[-1])
        except StopIteration:
            stack.pop()
            continue
        if rel_path in excluded:
            continue

        is_dir = False
        try:
            is_dir = entry.is_dir(follow_symlinks=False)
            if is_dir:
                stack.append(iter(_list_dir(entry.path, rel_path)))
                continue
            st = entry.stat(follow_symlinks=False)
        except OSError as e:
            if not skip_errors:
                raise WalkError(f"cannot read {rel_path}: {_describe(e)}") from e
            yield Skipped(path=rel_path, reason=_describe(e), is_dir=is_dir)
            continue

        if not stat.S_ISREG(st.st_mode):
            continue
        try:
            mtime = truncate_mtime(st.st_mtime)
        except (ValueError, OverflowError, OSError):
            # Outside datetime's year 1..9999 range.
            reason = f"mtime out of range ({st.st_mtime})"
            if not skip_errors:
                raise WalkError(f"cannot read {rel_path}: {reason}") from None
            yield Skipped(path=rel_path, reason=reason)
            continue
        yield FileStat(path=rel_path, size=st.st_size, mtime=mtime, source=entry.path)

"""Total order over relative paths that matches depth-first traversal order.

Plain string order puts ``a-b`` before ``a/c`` because ``-`` < ``/``, but a
traversal finishes everything under ``a/`` before it reaches the sibling
``a-b``. Ranking ``/`` below every other character restores that.
"""

from functools import cmp_to_key

SEP = "/"


def compare_paths(a: str, b: str) -> int:
    """Return a negative, zero, or positive value as ``a`` sorts before, with, or after ``b``."""
    for ca, cb in zip(a, b):
        if ca == cb:
            continue
        if ca == SEP:
            return -1
        if cb == SEP:
            return 1
        return -1 if ca < cb else 1
    return (len(a) > len(b)) - (len(a) < len(b))


def path_before(a: str, b: str) -> bool:
    return compare_paths(a, b) < 0


def is_within(path: str, prefix: str) -> bool:
    """Return True if ``path`` is ``prefix`` itself or lies beneath it."""
    return path == prefix or path.startswith(prefix + SEP)


path_key = cmp_to_key(compare_paths)

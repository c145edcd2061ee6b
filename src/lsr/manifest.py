"""
manifest.py — Read and write lsr manifest files.

One line per regular file, tab separated:

    "<quoted path>"<TAB><size><TAB><mtime RFC3339 UTC><TAB><sha256 hex>

Lines appear in path order (see ``lsr.pathorder``). A new manifest is always
written to a temporary sibling and swapped into place with ``os.replace`` so a
failed run never damages the previous one.
"""

import os
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional, Tuple

from lsr.model import DIGEST_SIZE, ManifestFormatError, Record
from lsr.pathorder import path_before

MAX_SIZE = 2**63 - 1
_MTIME_RE = re.compile(r"(\d{4})-(\d{2})-(\d{2})T(\d{2}):(\d{2}):(\d{2})Z", re.ASCII)
_SIZE_RE = re.compile(r"[0-9]+", re.ASCII)
MANIFEST_MODE = 0o644
TEMP_SUFFIX = ".tmp"

_ESCAPES = {
    "\a": "\\a",
    "\b": "\\b",
    "\f": "\\f",
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
    "\v": "\\v",
    "\\": "\\\\",
    '"': '\\"',
}
_UNESCAPES = {esc[1]: ch for ch, esc in _ESCAPES.items()}
_HEX_WIDTH = {"x": 2, "u": 4, "U": 8}

# os.fsdecode() carries undecodable filename bytes as lone surrogates.
_SURROGATE_LOW = 0xDC80
_SURROGATE_HIGH = 0xDCFF


def quote_path(path: str) -> str:
    """Render ``path`` as a double-quoted string with no whitespace or controls."""
    out = ['"']
    for ch in path:
        esc = _ESCAPES.get(ch)
        if esc:
            out.append(esc)
            continue
        cp = ord(ch)
        if _SURROGATE_LOW <= cp <= _SURROGATE_HIGH:
            out.append(f"\\x{cp - 0xDC00:02x}")
        elif ch.isprintable():
            out.append(ch)
        elif cp < 0x80:
            out.append(f"\\x{cp:02x}")
        elif cp <= 0xFFFF:
            out.append(f"\\u{cp:04x}")
        else:
            out.append(f"\\U{cp:08x}")
    out.append('"')
    return "".join(out)


def unquote_path(text: str, start: int = 0) -> Tuple[str, int]:
    """
    Decode a quoted path beginning at ``text[start]``.

    Returns:
        (path, index just past the closing quote)

    Raises:
        ValueError: on a missing quote, an unknown escape, or bad hex digits.
    """
    if start >= len(text) or text[start] != '"':
        raise ValueError("path must start with a double quote")
    out = []
    i = start + 1
    while i < len(text):
        ch = text[i]
        if ch == '"':
            return "".join(out), i + 1
        if ch != "\\":
            out.append(ch)
            i += 1
            continue
        if i + 1 >= len(text):
            break
        kind = text[i + 1]
        if kind in _UNESCAPES:
            out.append(_UNESCAPES[kind])
            i += 2
            continue
        width = _HEX_WIDTH.get(kind)
        if width is None:
            raise ValueError(f"unknown escape \\{kind}")
        digits = text[i + 2:i + 2 + width]
        if len(digits) != width or not all(c in "0123456789abcdefABCDEF" for c in digits):
            raise ValueError(f"bad \\{kind} escape")
        cp = int(digits, 16)
        if kind == "x" and cp >= 0x80:
            cp += 0xDC00
        if cp > 0x10FFFF:
            raise ValueError(f"code point out of range: {digits}")
        out.append(chr(cp))
        i += 2 + width
    raise ValueError("unterminated quoted path")


def format_mtime(mtime: datetime) -> str:
    t = mtime.astimezone(timezone.utc)
    return f"{t.year:04d}-{t.month:02d}-{t.day:02d}T{t.hour:02d}:{t.minute:02d}:{t.second:02d}Z"


def parse_mtime(text: str) -> datetime:
    """Parse exactly the form format_mtime writes: four-digit year, UTC ``Z``."""
    match = _MTIME_RE.fullmatch(text)
    if not match:
        raise ValueError(f"bad timestamp: {text!r}")
    try:
        return datetime(*(int(part) for part in match.groups()), tzinfo=timezone.utc)
    except ValueError:
        raise ValueError(f"bad timestamp: {text!r}") from None


def format_record(record: Record) -> str:
    """Encode one record as a manifest line, newline included."""
    if record.digest is None or len(record.digest) != DIGEST_SIZE:
        raise ValueError(f"record for {record.path!r} has no {DIGEST_SIZE}-byte digest")
    return (
        f"{quote_path(record.path)}\t{record.size}\t"
        f"{format_mtime(record.mtime)}\t{record.digest.hex()}\n"
    )


def parse_record(line: str) -> Record:
    """
    Decode one manifest line (trailing newline optional).

    Fields may be separated by tabs or spaces. Any defect raises ValueError;
    readers turn that into a fatal ManifestFormatError.
    """
    line = line.rstrip("\n")
    path, end = unquote_path(line)
    rest = line[end:]
    if not rest[:1].isspace():
        raise ValueError("expected whitespace after path")
    fields = rest.split()
    if len(fields) != 3:
        raise ValueError(f"expected 4 fields, found {len(fields) + 1}")
    size_text, mtime_text, digest_text = fields

    if not _SIZE_RE.fullmatch(size_text):
        raise ValueError(f"bad size: {size_text!r}")
    size = int(size_text)
    if size > MAX_SIZE:
        raise ValueError(f"size out of range: {size_text}")

    mtime = parse_mtime(mtime_text)

    try:
        digest = bytes.fromhex(digest_text)
    except ValueError:
        raise ValueError(f"bad digest encoding: {digest_text!r}") from None
    if len(digest) != DIGEST_SIZE:
        raise ValueError(f"digest is {len(digest)} bytes, expected {DIGEST_SIZE}")

    if not path:
        raise ValueError("empty path")
    return Record(path=path, size=size, mtime=mtime, digest=digest)


def temp_path_for(manifest_path: Path) -> Path:
    manifest_path = Path(manifest_path)
    return manifest_path.with_name(manifest_path.name + TEMP_SUFFIX)


class ManifestReader:
    """
    Lazily decode a manifest one record at a time.

    A missing file reads as an empty snapshot. Any malformed or out-of-order
    line raises ManifestFormatError; nothing is skipped or repaired.

    Example:
        with ManifestReader(root / ".lsr") as previous:
            for record in previous:
                ...
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._file = None
        self._opened = False

    def open(self) -> "ManifestReader":
        if not self._opened:
            self._opened = True
            try:
                self._file = open(self.path, "r", encoding="utf-8", newline="\n")
            except FileNotFoundError:
                self._file = None
        return self

    @property
    def exists(self) -> bool:
        self.open()
        return self._file is not None

    def __iter__(self) -> Iterator[Record]:
        self.open()
        if self._file is None:
            return
        last: Optional[str] = None
        lineno = 0
        try:
            for lineno, line in enumerate(self._file, 1):
                try:
                    record = parse_record(line)
                except ValueError as e:
                    raise ManifestFormatError(str(e), self.path, lineno) from None
                if last is not None and not path_before(last, record.path):
                    raise ManifestFormatError(
                        f"{record.path!r} is out of order after {last!r}", self.path, lineno
                    )
                last = record.path
                yield record
        except UnicodeDecodeError as e:
            raise ManifestFormatError(f"not valid UTF-8 ({e.reason})", self.path, lineno + 1) from None

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None

    def __enter__(self):
        return self.open()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


def read_manifest(path: Path) -> Iterator[Record]:
    """Yield every record of the manifest at ``path`` (none if it is missing)."""
    with ManifestReader(path) as reader:
        yield from reader


class ManifestWriter:
    """
    Build a new manifest beside the canonical one and swap it in on commit().

    Leaving the context without commit() deletes the temporary file, so the
    existing manifest stays byte-for-byte intact.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self.tmp_path = temp_path_for(self.path)
        self.count = 0
        self._file = None
        self._committed = False

    def __enter__(self):
        self._file = open(self.tmp_path, "w", encoding="utf-8", newline="\n")
        return self

    def write(self, record: Record) -> None:
        self._file.write(format_record(record))
        self.count += 1

    def commit(self) -> None:
        self._file.flush()
        os.fsync(self._file.fileno())
        self._file.close()
        os.chmod(self.tmp_path, MANIFEST_MODE)
        os.replace(self.tmp_path, self.path)
        self._committed = True

    def __exit__(self, exc_type, exc_val, exc_tb):
        if not self._committed:
            if self._file is not None:
                self._file.close()
            self.tmp_path.unlink(missing_ok=True)
        return False

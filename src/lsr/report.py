"""Diagnostic lines, run summaries, and JSON change reports."""

from dataclasses import asdict
from pathlib import Path
from typing import Iterable, List, Optional

import orjson
from rich.console import Console
from rich.table import Table

from lsr.manifest import format_mtime
from lsr.model import Change, Record

console = Console(stderr=True)


class ChangeLog:
    """Collects the non-silent changes of a run for the JSON report."""

    def __init__(self):
        self.entries: List[dict] = []

    def add(self, change: Change) -> None:
        if change.kind.silent:
            return
        self.entries.append({
            "code": change.kind.code,
            "kind": change.kind.name.lower(),
            "path": change.path,
        })

    def write_json(self, out_path: Path, root: Path, manifest: Path, stats) -> Path:
        data = {
            "root": str(root),
            "manifest": str(manifest),
            "stats": asdict(stats),
            "changes": self.entries,
        }
        out = Path(out_path)
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_bytes(orjson.dumps(data, option=orjson.OPT_INDENT_2))
        return out


def format_size(bytes_val: int) -> str:
    if not bytes_val:
        return "0 B"
    units = ["B", "KB", "MB", "GB", "TB", "PB"]
    unit_idx = 0
    size = float(bytes_val)
    while size >= 1024 and unit_idx < len(units) - 1:
        size /= 1024
        unit_idx += 1
    if unit_idx == 0:
        return f"{int(size)} {units[unit_idx]}"
    return f"{size:.1f} {units[unit_idx]}"


def print_summary(stats, manifest_path: Path, out: Optional[Console] = None) -> None:
    out = out or console
    if stats.manifest_replaced:
        saved = f"✅ Manifest: {manifest_path} ({stats.records_written:,} records)"
    else:
        saved = f"🔍 Dry run: {manifest_path} left unchanged"
    out.print(f"""
📦 Scan complete!
   Duration: {stats.duration_seconds:.1f}s
   Scanned: {stats.files_scanned:,} files
   New: {stats.files_new:,}  Deleted: {stats.files_deleted:,}  Modified: {stats.files_modified:,}
   Reverted: {stats.files_reverted:,}  Touched: {stats.files_touched:,}  Corrupted: {stats.files_corrupted:,}
   Skipped: {stats.entries_skipped:,}  Unchanged: {stats.files_unchanged:,}
   Hashed: {format_size(stats.bytes_hashed)}  Reused digests: {stats.digests_reused:,}
{saved}""", highlight=False, markup=False)
    if stats.files_corrupted:
        out.print(f"[bold red]⚠️  {stats.files_corrupted:,} file(s) changed content without an mtime change[/bold red]")


def manifest_table(records: Iterable[Record], title: str) -> Table:
    table = Table(title=title)
    table.add_column("Path", overflow="fold")
    table.add_column("Size", justify="right")
    table.add_column("Modified (UTC)")
    table.add_column("SHA-256")
    for record in records:
        table.add_row(record.path, format_size(record.size), format_mtime(record.mtime), record.digest.hex()[:16])
    return table

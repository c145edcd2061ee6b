# src/lsr/cli.py

import click
import os
import sys
import time
from pathlib import Path
from rich.console import Console
from lsr import __version__
from lsr.manifest import ManifestReader, format_record
from lsr.model import Change, Classification, LsrError, Skipped
from lsr.report import ChangeLog, console, manifest_table, print_summary
from lsr.scan import DEFAULT_MANIFEST_NAME, ScanOptions, list_tree, manifest_path_for, scan_tree

_LOG_SETUP = False
_LOG_FILE = None
_LOG_PATH = None
_RUN_HEADER_EMITTED = False
_PIPE_BROKEN = False


class _TeeStream:
    def __init__(self, primary, secondary):
        self._primary = primary
        self._secondary = secondary
        self.encoding = getattr(primary, "encoding", "utf-8")

    def write(self, data):
        global _PIPE_BROKEN
        if _PIPE_BROKEN:
            return 0
        if isinstance(data, bytes):
            text = data.decode(self.encoding, errors="replace")
        else:
            text = str(data)
        try:
            result = self._primary.write(text)
        except BrokenPipeError:
            _PIPE_BROKEN = True
            return 0
        try:
            self._secondary.write(text)
        except OSError:
            pass
        return result

    def writelines(self, lines):
        for line in lines:
            self.write(line)

    def flush(self):
        global _PIPE_BROKEN
        if _PIPE_BROKEN:
            return
        try:
            self._primary.flush()
        except BrokenPipeError:
            _PIPE_BROKEN = True
            return
        try:
            self._secondary.flush()
        except OSError:
            pass

    def isatty(self):
        return self._primary.isatty()

    def fileno(self):
        return self._primary.fileno()

    def writable(self):
        return True


def _setup_master_log() -> None:
    """Tee stdout/stderr into LSR_LOG_FILE (default ~/.logs/lsr/lsr.log)."""
    global _LOG_SETUP, _LOG_FILE, _LOG_PATH
    if _LOG_SETUP:
        return
    if os.environ.get("LSR_LOG_DISABLED") == "1":
        _LOG_SETUP = True
        return
    try:
        log_dir = os.environ.get("LSR_LOG_DIR")
        log_file = os.environ.get("LSR_LOG_FILE")
        if log_file:
            log_path = Path(os.path.expanduser(log_file))
        else:
            base_dir = Path(log_dir) if log_dir else (Path.home() / ".logs" / "lsr")
            log_path = base_dir / "lsr.log"
        _LOG_PATH = log_path
        log_path.parent.mkdir(parents=True, exist_ok=True)
        _LOG_FILE = open(log_path, "a", encoding="utf-8", buffering=1)
    except OSError:
        # Best effort: run without a log file.
        _LOG_SETUP = True
        return
    sys.stdout = _TeeStream(sys.stdout, _LOG_FILE)
    sys.stderr = _TeeStream(sys.stderr, _LOG_FILE)
    _LOG_SETUP = True


def _emit_run_header() -> None:
    global _RUN_HEADER_EMITTED
    if _RUN_HEADER_EMITTED:
        return
    timestamp = time.strftime("%Y-%m-%dT%H:%M:%S%z")
    click.echo(f"🧾 lsr v{__version__} @ {timestamp}", err=True)
    if _LOG_PATH:
        click.echo(f"🧾 log: {_LOG_PATH}", err=True)
    _RUN_HEADER_EMITTED = True


def _fail(err: Exception):
    click.echo(f"❌ Error: {err}", err=True)
    sys.exit(1)


@click.group()
@click.version_option(__version__)
def cli():
    """lsr — directory snapshots and change auditing"""
    _setup_master_log()
    _emit_run_header()


@cli.command("scan")
@click.argument("root", type=click.Path(exists=True, file_okay=False), default=".")
@click.option("--manifest", default=DEFAULT_MANIFEST_NAME, envvar="LSR_MANIFEST", show_default=True,
              help="Manifest file name, relative to ROOT.")
@click.option("--trust", is_flag=True, envvar="LSR_TRUST",
              help="Reuse previous digests when size and mtime are unchanged (skips corruption checks).")
@click.option("--workers", type=click.IntRange(min=1), default=1, show_default=True,
              help="Hash files with this many threads.")
@click.option("--skip-errors", is_flag=True,
              help="Report unreadable entries as E and keep their previous records instead of aborting.")
@click.option("--dry-run", is_flag=True, help="Report changes but leave the manifest untouched.")
@click.option("--json-report", type=click.Path(dir_okay=False), default=None,
              help="Also write the changes as JSON to this file.")
@click.option("--progress", is_flag=True, help="Show a progress counter on stderr.")
@click.option("--quiet", "-q", is_flag=True, help="No summary, only change lines.")
def scan_cmd(root, manifest, trust, workers, skip_errors, dry_run, json_report, progress, quiet):
    """Snapshot ROOT and print what changed since the last scan.

    Each change prints as `<code> <path>`: N new, D deleted, M modified,
    R reverted, T touched, C corrupted, E unreadable (skipped).
    """
    root_path = Path(root)
    manifest_path = manifest_path_for(root_path, manifest)
    options = ScanOptions(
        manifest_name=manifest,
        trust=trust,
        workers=workers,
        skip_errors=skip_errors,
        dry_run=dry_run,
        progress=progress,
    )
    log = ChangeLog() if json_report else None

    def on_change(change):
        if change.kind.silent:
            return
        click.echo(change.line())
        if log is not None:
            log.add(change)

    if not quiet:
        console.rule(f"[🔍] lsr scan {root_path}")
    try:
        stats = scan_tree(root_path, options, on_change=on_change)
    except (LsrError, OSError) as e:
        _fail(e)

    if json_report:
        out = log.write_json(Path(json_report), root_path, manifest_path, stats)
        if not quiet:
            console.print(f"📄 Wrote change report: {out}")
    if not quiet:
        print_summary(stats, manifest_path)


@cli.command("list")
@click.argument("root", type=click.Path(exists=True, file_okay=False), default=".")
@click.option("--manifest", default=DEFAULT_MANIFEST_NAME, envvar="LSR_MANIFEST", show_default=True,
              help="Manifest file name to leave out of the listing.")
@click.option("--workers", type=click.IntRange(min=1), default=1, show_default=True,
              help="Hash files with this many threads.")
@click.option("--skip-errors", is_flag=True, help="Report unreadable entries on stderr instead of aborting.")
def list_cmd(root, manifest, workers, skip_errors):
    """Print a recursive listing of ROOT in manifest format.

    One line per regular file: quoted path, size, mtime, and sha256.
    """
    try:
        for item in list_tree(Path(root), manifest_name=manifest, workers=workers, skip_errors=skip_errors):
            if isinstance(item, Skipped):
                click.echo(f"{Change(Classification.SKIPPED, item.path).line()} ({item.reason})", err=True)
                continue
            click.echo(format_record(item), nl=False)
    except (LsrError, OSError) as e:
        _fail(e)


@cli.command("show")
@click.argument("root", type=click.Path(exists=True, file_okay=False), default=".")
@click.option("--manifest", default=DEFAULT_MANIFEST_NAME, envvar="LSR_MANIFEST", show_default=True,
              help="Manifest file name, relative to ROOT.")
def show_cmd(root, manifest):
    """Display the stored manifest for ROOT."""
    manifest_path = manifest_path_for(Path(root), manifest)
    try:
        with ManifestReader(manifest_path) as reader:
            if not reader.exists:
                click.echo(f"📭 No manifest at {manifest_path}; the next scan records every file as new.")
                return
            table = manifest_table(reader, title=str(manifest_path))
    except (LsrError, OSError) as e:
        _fail(e)
    Console().print(table)
    click.echo(f"{table.row_count:,} records")

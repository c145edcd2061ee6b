"""
End-to-end tests for a full scan: walk, hash, diff, and manifest swap.
"""

import os
from pathlib import Path

import pytest

import lsr.hashing as hashing
import lsr.manifest as manifest_mod
import lsr.walk as walk
from lsr.manifest import read_manifest, temp_path_for
from lsr.model import HashError, ManifestFormatError, WalkError
from lsr.scan import ScanOptions, excluded_paths, scan_tree

T0 = 1600000000


def _write(path: Path, data: bytes, mtime: int = T0) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    os.utime(path, (mtime, mtime))


def _run(root: Path, **options):
    lines = []

    def on_change(change):
        if not change.kind.silent:
            lines.append(change.line())

    stats = scan_tree(root, ScanOptions(**options), on_change=on_change)
    return lines, stats


@pytest.fixture
def baseline(tmp_path: Path) -> Path:
    _write(tmp_path / "a.txt", b"0123456789")
    _write(tmp_path / "b.txt", b"bbbb")
    _write(tmp_path / "sub" / "d.txt", b"dddd")
    lines, stats = _run(tmp_path)
    assert lines == ["N a.txt", "N b.txt", "N sub/d.txt"]
    assert stats.manifest_replaced
    return tmp_path


def test_first_run_records_everything(baseline: Path):
    records = list(read_manifest(baseline / ".lsr"))
    assert [r.path for r in records] == ["a.txt", "b.txt", "sub/d.txt"]
    assert records[0].size == 10
    assert records[0].mtime.timestamp() == T0


def test_second_run_without_changes_is_silent(baseline: Path):
    before = (baseline / ".lsr").read_bytes()
    lines, stats = _run(baseline)
    assert lines == []
    assert stats.files_unchanged == 3
    assert (baseline / ".lsr").read_bytes() == before


@pytest.mark.parametrize("mtime, code", [
    (T0 + 60, "M"),
    (T0 - 60, "R"),
    (T0, "C"),
])
def test_scenario(baseline: Path, mtime, code):
    _write(baseline / "a.txt", b"0123456789AB", mtime=mtime)
    (baseline / "b.txt").unlink()
    _write(baseline / "c.txt", b"cccc")

    lines, _ = _run(baseline)
    assert lines == [f"{code} a.txt", "D b.txt", "N c.txt"]


def test_touched_file(baseline: Path):
    os.utime(baseline / "b.txt", (T0 + 2, T0 + 2))
    lines, stats = _run(baseline)
    assert lines == ["T b.txt"]
    assert stats.files_touched == 1


def test_deleted_subtree(baseline: Path):
    (baseline / "sub" / "d.txt").unlink()
    (baseline / "sub").rmdir()
    lines, _ = _run(baseline)
    assert lines == ["D sub/d.txt"]
    assert [r.path for r in read_manifest(baseline / ".lsr")] == ["a.txt", "b.txt"]


def test_changes_are_reported_once(baseline: Path):
    _write(baseline / "a.txt", b"changed!!!", mtime=T0 + 60)
    assert _run(baseline)[0] == ["M a.txt"]
    assert _run(baseline)[0] == []


def test_trust_mode_misses_same_size_same_mtime_corruption(baseline: Path):
    _write(baseline / "a.txt", b"9876543210")

    lines, stats = _run(baseline, trust=True, dry_run=True)
    assert lines == []
    assert stats.digests_reused == 3

    lines, _ = _run(baseline)
    assert lines == ["C a.txt"]


def test_parallel_workers_give_same_result(baseline: Path):
    _write(baseline / "a.txt", b"0123456789AB", mtime=T0 + 60)
    lines, _ = _run(baseline, workers=4)
    assert lines == ["M a.txt"]


def test_dry_run_leaves_manifest(baseline: Path):
    before = (baseline / ".lsr").read_bytes()
    _write(baseline / "new.txt", b"n")
    lines, stats = _run(baseline, dry_run=True)
    assert lines == ["N new.txt"]
    assert not stats.manifest_replaced
    assert (baseline / ".lsr").read_bytes() == before
    assert not temp_path_for(baseline / ".lsr").exists()


def test_failed_replace_keeps_previous_manifest(baseline: Path, monkeypatch):
    before = (baseline / ".lsr").read_bytes()
    _write(baseline / "new.txt", b"n")

    def boom(src, dst):
        raise OSError("rename failed")

    monkeypatch.setattr(manifest_mod.os, "replace", boom)
    with pytest.raises(OSError, match="rename failed"):
        _run(baseline)

    assert (baseline / ".lsr").read_bytes() == before
    assert not temp_path_for(baseline / ".lsr").exists()


def test_hash_failure_keeps_previous_manifest(baseline: Path, monkeypatch):
    before = (baseline / ".lsr").read_bytes()
    _write(baseline / "a.txt", b"changed", mtime=T0 + 60)

    def unreadable(path):
        raise HashError(f"could not hash {path}: Permission denied")

    monkeypatch.setattr(hashing, "sha256_file", unreadable)
    with pytest.raises(HashError):
        _run(baseline)

    assert (baseline / ".lsr").read_bytes() == before
    assert not temp_path_for(baseline / ".lsr").exists()


def test_corrupt_manifest_is_fatal(baseline: Path):
    manifest = baseline / ".lsr"
    manifest.write_text(manifest.read_text(encoding="utf-8") + "not a record\n", encoding="utf-8")
    before = manifest.read_bytes()

    with pytest.raises(ManifestFormatError):
        _run(baseline)
    assert manifest.read_bytes() == before


def test_unreadable_directory_is_held_not_deleted(baseline: Path, monkeypatch):
    real_list_dir = walk._list_dir

    def fake_list_dir(dir_path, rel_dir):
        if rel_dir == "sub":
            raise PermissionError(13, "Permission denied", dir_path)
        return real_list_dir(dir_path, rel_dir)

    monkeypatch.setattr(walk, "_list_dir", fake_list_dir)

    with pytest.raises(WalkError):
        _run(baseline)

    lines, stats = _run(baseline, skip_errors=True)
    assert lines == ["E sub"]
    assert stats.files_held == 1
    assert [r.path for r in read_manifest(baseline / ".lsr")] == ["a.txt", "b.txt", "sub/d.txt"]


def test_custom_manifest_name(tmp_path: Path):
    _write(tmp_path / "x", b"x")
    lines, _ = _run(tmp_path, manifest_name="state.lsr")
    assert lines == ["N x"]
    assert (tmp_path / "state.lsr").exists()
    assert _run(tmp_path, manifest_name="state.lsr")[0] == []


def test_excluded_paths_only_under_root(tmp_path: Path):
    assert excluded_paths(tmp_path, tmp_path / ".lsr") == {".lsr", ".lsr.tmp"}
    assert excluded_paths(tmp_path / "root", tmp_path / "elsewhere" / ".lsr") == set()

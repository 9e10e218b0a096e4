"""Tests for archive extraction, the locked-file protocol and integrity checks."""

import os
from pathlib import Path

import pytest

from feedupdater.exceptions import InvalidPackageHash, PackageArchiveInvalid
from feedupdater.install.extractor import (
    PackageExtractor,
    pending_path,
    remove_pending_replacements,
)
from feedupdater.install.integrity import FileIntegrityChecker, sha256_file
from feedupdater.models.config import DEFAULT_REPLACEMENT_PATTERNS
from feedupdater.models.manifest import FileRecord, PackageManifest

from .conftest import build_archive, make_package


def _write_archive(tmp_path: Path, files: dict) -> Path:
    archive = tmp_path / "pkg.zip"
    archive.write_bytes(build_archive(files))
    return archive


@pytest.fixture
def extractor(install_root):
    return PackageExtractor(install_root, DEFAULT_REPLACEMENT_PATTERNS)


@pytest.fixture
def locked_files(monkeypatch):
    """Makes os.remove fail with PermissionError for the given basenames."""
    locked: set[str] = set()
    real_remove = os.remove

    def fake_remove(path, *args, **kwargs):
        if Path(path).name in locked:
            raise PermissionError(13, "file in use", str(path))
        return real_remove(path, *args, **kwargs)

    monkeypatch.setattr(os, "remove", fake_remove)
    return locked


def test_extract_writes_nested_files(tmp_path, install_root, extractor):
    files = {"bin/app.dll": b"binary", "share/docs/readme.txt": b"hello"}
    manifest, _ = make_package("app", "1.0", files)

    written = extractor.extract(_write_archive(tmp_path, files), manifest)

    assert written == 2
    assert (install_root / "bin" / "app.dll").read_bytes() == b"binary"
    assert (install_root / "share" / "docs" / "readme.txt").read_bytes() == b"hello"
    assert not extractor.restart_required


def test_unlocked_binary_is_replaced_in_place(tmp_path, install_root, extractor):
    target = install_root / "bin" / "engine.dll"
    target.parent.mkdir(parents=True)
    target.write_bytes(b"old")
    manifest, _ = make_package("engine", "2.0", {"bin/engine.dll": b"new"})

    extractor.extract(_write_archive(tmp_path, {"bin/engine.dll": b"new"}), manifest)

    assert target.read_bytes() == b"new"
    assert not pending_path(target).exists()
    assert not extractor.restart_required


def test_locked_binary_is_staged_for_restart(tmp_path, install_root, extractor, locked_files):
    target = install_root / "bin" / "engine.dll"
    target.parent.mkdir(parents=True)
    target.write_bytes(b"old")
    locked_files.add("engine.dll")
    manifest, _ = make_package("engine", "2.0", {"bin/engine.dll": b"new"})

    extractor.extract(_write_archive(tmp_path, {"bin/engine.dll": b"new"}), manifest)

    assert pending_path(target).read_bytes() == b"old"
    assert target.read_bytes() == b"new"
    assert extractor.restart_required
    assert extractor.deferred_files == 1


def test_leftover_pending_file_requests_restart(tmp_path, install_root, extractor):
    target = install_root / "bin" / "engine.dll"
    target.parent.mkdir(parents=True)
    target.write_bytes(b"current")
    pending_path(target).write_bytes(b"older")
    manifest, _ = make_package("engine", "2.0", {"bin/engine.dll": b"new"})

    extractor.extract(_write_archive(tmp_path, {"bin/engine.dll": b"new"}), manifest)

    assert target.read_bytes() == b"new"
    assert extractor.restart_required


def test_non_replacement_file_is_overwritten(tmp_path, install_root, extractor, locked_files):
    target = install_root / "etc" / "settings.ini"
    target.parent.mkdir(parents=True)
    target.write_bytes(b"old")
    locked_files.add("settings.ini")
    manifest, _ = make_package("cfg", "1.0", {"etc/settings.ini": b"new"})

    extractor.extract(_write_archive(tmp_path, {"etc/settings.ini": b"new"}), manifest)

    assert target.read_bytes() == b"new"
    assert not pending_path(target).exists()
    assert not extractor.restart_required


def test_manifest_flag_forces_replacement_protocol(extractor):
    plain, _ = make_package("data", "1.0")
    flagged, _ = make_package("data", "1.0", requires_replacement=True)

    assert extractor.requires_replacement("lib/libcore.so.2", plain)
    assert extractor.requires_replacement("bin\\Tool.EXE", plain)
    assert not extractor.requires_replacement("data/table.csv", plain)
    assert extractor.requires_replacement("data/table.csv", flagged)


@pytest.mark.parametrize("entry", ["../escape.txt", "bin/../../escape.txt", "/abs.txt"])
def test_archive_entries_outside_root_are_rejected(tmp_path, install_root, extractor, entry):
    manifest, _ = make_package("evil", "1.0")
    with pytest.raises(PackageArchiveInvalid):
        extractor.extract(_write_archive(tmp_path, {entry: b"x"}), manifest)
    assert not (install_root.parent / "escape.txt").exists()


def test_corrupt_archive_is_rejected(tmp_path, extractor):
    archive = tmp_path / "broken.zip"
    archive.write_bytes(b"this is not a zip file")
    manifest, _ = make_package("broken", "1.0")

    with pytest.raises(PackageArchiveInvalid):
        extractor.extract(archive, manifest)


def test_files_dropped_by_new_version_are_removed(tmp_path, install_root, extractor):
    old_files = {"bin/app.dll": b"v1", "share/legacy.txt": b"gone soon"}
    old, _ = make_package("app", "1.0", old_files)
    extractor.extract(_write_archive(tmp_path, old_files), old)

    new_files = {"bin/app.dll": b"v2"}
    new, _ = make_package("app", "2.0", new_files)
    extractor.extract(_write_archive(tmp_path, new_files), new, previous=old)

    assert (install_root / "bin" / "app.dll").read_bytes() == b"v2"
    assert not (install_root / "share" / "legacy.txt").exists()


def test_remove_file_defers_locked_binary(install_root, extractor, locked_files):
    target = install_root / "bin" / "plugin.dll"
    target.parent.mkdir(parents=True)
    target.write_bytes(b"plugin")
    locked_files.add("plugin.dll")
    manifest, _ = make_package("plugin", "1.0")

    extractor.remove_file("bin/plugin.dll", manifest)

    assert not target.exists()
    assert pending_path(target).read_bytes() == b"plugin"
    assert extractor.restart_required


def test_remove_pending_replacements(install_root):
    (install_root / "bin").mkdir()
    (install_root / "bin" / "a.dll.delete").write_bytes(b"")
    (install_root / "bin" / "nested").mkdir()
    (install_root / "bin" / "nested" / "b.so.delete").write_bytes(b"")
    (install_root / "bin" / "keep.dll").write_bytes(b"")

    assert remove_pending_replacements(install_root) == 2
    assert list(install_root.rglob("*.delete")) == []
    assert (install_root / "bin" / "keep.dll").exists()


def test_remove_pending_replacements_missing_root(tmp_path):
    assert remove_pending_replacements(tmp_path / "nowhere") == 0


def test_check_archive_accepts_matching_hash(tmp_path):
    manifest, archive = make_package("app", "1.0", {"a.txt": b"a"})
    path = tmp_path / "app.zip"
    path.write_bytes(archive)

    FileIntegrityChecker.check_archive(path, manifest)
    assert sha256_file(path) == manifest.content_hash


def test_check_archive_rejects_mismatch(tmp_path):
    manifest, _ = make_package("app", "1.0", {"a.txt": b"a"})
    path = tmp_path / "app.zip"
    path.write_bytes(build_archive({"a.txt": b"tampered"}))

    with pytest.raises(InvalidPackageHash):
        FileIntegrityChecker.check_archive(path, manifest)


def test_check_archive_requires_declared_hash(tmp_path):
    manifest, archive = make_package("app", "1.0")
    manifest.content_hash = None
    path = tmp_path / "app.zip"
    path.write_bytes(archive)

    with pytest.raises(InvalidPackageHash):
        FileIntegrityChecker.check_archive(path, manifest)


def test_check_installed_detects_missing_and_modified_files(tmp_path, install_root, extractor):
    files = {"bin/app.dll": b"binary", "etc/app.ini": b"[app]"}
    manifest, _ = make_package("app", "1.0", files)
    extractor.extract(_write_archive(tmp_path, files), manifest)

    assert FileIntegrityChecker.check_installed(install_root, manifest)

    (install_root / "etc" / "app.ini").write_bytes(b"[edited]")
    assert not FileIntegrityChecker.check_installed(install_root, manifest)

    (install_root / "etc" / "app.ini").write_bytes(b"[app]")
    (install_root / "bin" / "app.dll").unlink()
    assert not FileIntegrityChecker.check_installed(install_root, manifest)


def test_check_installed_ignores_files_without_hash(install_root):
    manifest, _ = make_package("app", "1.0", {"bin/app.dll": b"binary"})
    manifest.files = {
        path: FileRecord(version="1.0") for path in manifest.files
    }

    assert FileIntegrityChecker.check_installed(install_root, manifest)


def test_check_installed_accepts_backslash_file_keys(tmp_path, install_root, extractor):
    manifest, _ = make_package("app", "1.0", {"bin/app.dll": b"binary"})
    manifest.files = {"bin\\app.dll": manifest.files["bin/app.dll"]}
    manifest = PackageManifest.from_bytes(manifest.to_bytes())
    extractor.extract(_write_archive(tmp_path, {"bin\\app.dll": b"binary"}), manifest)

    assert (install_root / "bin" / "app.dll").read_bytes() == b"binary"
    assert FileIntegrityChecker.check_installed(install_root, manifest)

    (install_root / "bin" / "app.dll").write_bytes(b"changed")
    assert not FileIntegrityChecker.check_installed(install_root, manifest)


@pytest.mark.parametrize("entry", ["bin/engine.dll", "etc/engine.ini"])
def test_leftover_pending_file_without_target_requests_restart(
    tmp_path, install_root, extractor, entry
):
    target = install_root / entry
    target.parent.mkdir(parents=True)
    pending_path(target).write_bytes(b"older")
    manifest, _ = make_package("engine", "2.0", {entry: b"new"})

    extractor.extract(_write_archive(tmp_path, {entry: b"new"}), manifest)

    assert target.read_bytes() == b"new"
    assert extractor.restart_required

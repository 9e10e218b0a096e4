"""
Unpacks package archives into the installation root.

Binaries that may be held open by the running process cannot always be
replaced in place. For those files the extractor first tries a plain delete;
if that fails the old file is renamed to `<name>.delete`, the new file is
written in its place and a restart is requested. The next clean start removes
the `.delete` leftovers (see `remove_pending_replacements`).
"""

import fnmatch
import logging
import os
import shutil
import zipfile
from pathlib import Path
from typing import Iterable, Optional

from feedupdater.exceptions import PackageArchiveInvalid
from feedupdater.models.manifest import PackageManifest, normalize_path

log = logging.getLogger(__name__)

PENDING_SUFFIX = ".delete"


def pending_path(target: Path) -> Path:
    return target.with_name(target.name + PENDING_SUFFIX)


def remove_pending_replacements(root: Path) -> int:
    """
    Deletes every leftover `*.delete` file under `root`.

    Returns:
        The number of files removed.
    """
    if not root.is_dir():
        return 0
    removed = 0
    for leftover in root.rglob(f"*{PENDING_SUFFIX}"):
        if not leftover.is_file():
            continue
        try:
            leftover.unlink()
            removed += 1
        except OSError as e:
            log.warning(f"Could not remove pending replacement '{leftover}': {e}")
    if removed:
        log.info(f"Removed {removed} superseded file(s) from a previous update.")
    return removed


class PackageExtractor:
    """Writes archive members under the installation root using the replacement protocol."""

    def __init__(self, install_root: Path, replacement_patterns: Iterable[str]):
        self.install_root = install_root
        self.replacement_patterns = [p.lower() for p in replacement_patterns]
        self.restart_required = False
        self.deferred_files = 0

    def requires_replacement(self, relative_path: str, manifest: PackageManifest) -> bool:
        """True if the file must go through the delete-or-rename protocol."""
        if manifest.requires_replacement:
            return True
        basename = normalize_path(relative_path).name.lower()
        return any(fnmatch.fnmatch(basename, p) for p in self.replacement_patterns)

    def resolve_target(self, relative_path: str) -> Path:
        """Resolves an archive path under the root, rejecting paths that escape it."""
        posix = normalize_path(relative_path)
        if posix.is_absolute() or ".." in posix.parts or not posix.parts:
            raise PackageArchiveInvalid(
                f"Archive entry '{relative_path}' is outside the installation root."
            )
        return self.install_root.joinpath(*posix.parts)

    def extract(
        self,
        archive_path: Path,
        manifest: PackageManifest,
        previous: Optional[PackageManifest] = None,
    ) -> int:
        """
        Unpacks `archive_path` for `manifest` and returns the number of files written.

        Files recorded by `previous` (the manifest being replaced) that the new
        archive no longer ships are retired with the same protocol.

        Raises:
            PackageArchiveInvalid: If the archive is corrupt or has unsafe entries.
        """
        written: set[str] = set()
        try:
            with zipfile.ZipFile(archive_path) as zf:
                for info in zf.infolist():
                    target = self.resolve_target(info.filename)
                    if info.is_dir():
                        target.mkdir(parents=True, exist_ok=True)
                        continue
                    self._prepare_target(
                        target, self.requires_replacement(info.filename, manifest)
                    )
                    with zf.open(info) as src, open(target, "wb") as dst:
                        shutil.copyfileobj(src, dst)
                    written.add(normalize_path(info.filename).as_posix())
        except zipfile.BadZipFile as e:
            raise PackageArchiveInvalid(
                f"Archive of '{manifest.name}' {manifest.version} is corrupt: {e}"
            ) from e

        if previous is not None:
            self._retire_stale_files(previous, manifest, written)

        log.debug(f"Extracted {len(written)} file(s) for '{manifest.name}'.")
        return len(written)

    def remove_file(self, relative_path: str, manifest: PackageManifest) -> None:
        """Removes one installed file, deferring the delete if it is locked."""
        target = self.resolve_target(relative_path)
        if not target.exists():
            return
        if not self.requires_replacement(relative_path, manifest):
            os.remove(target)
        elif not self._try_remove(target):
            self._defer(target)

    def _retire_stale_files(
        self, previous: PackageManifest, current: PackageManifest, written: set[str]
    ) -> None:
        for relative_path in previous.files:
            normalized = normalize_path(relative_path).as_posix()
            if relative_path in current.files or normalized in written:
                continue
            log.debug(f"Removing '{relative_path}', no longer shipped by '{current.name}'.")
            self.remove_file(relative_path, previous)

    def _prepare_target(self, target: Path, replacement: bool) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        if pending_path(target).exists():
            # A previous deferred replacement has not been cleaned up yet.
            self.restart_required = True
        if not replacement or not target.exists():
            return
        if not self._try_remove(target):
            self._defer(target)

    def _defer(self, target: Path) -> None:
        os.replace(target, pending_path(target))
        self.restart_required = True
        self.deferred_files += 1
        log.info(
            f"[yellow]'{target.name}' is in use; staged for replacement on restart.[/yellow]"
        )

    @staticmethod
    def _try_remove(target: Path) -> bool:
        try:
            os.remove(target)
        except PermissionError:
            return False
        except OSError as e:
            log.debug(f"Delete of '{target}' failed: {e}")
            return False
        return True

"""
A file-based cache of downloaded package archives.

Entries are keyed by interface version, package version and package name, so
an archive is never re-downloaded while it still matches its manifest.
"""

import logging
from pathlib import Path

from pathvalidate import sanitize_filename

from feedupdater.models.manifest import PackageManifest

log = logging.getLogger(__name__)


class PackageCache:
    """Manages the `dl-cache` directory holding package archives."""

    def __init__(self, cache_dir_path: Path):
        """
        Initializes the package cache.

        Args:
            cache_dir_path: The directory where archives are stored. Created if missing.
        """
        self.cache_dir = cache_dir_path
        self.cache_dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, manifest: PackageManifest) -> Path:
        """Returns the cache entry path for a manifest's archive."""
        key = f"{manifest.interface_version}-{manifest.version}-{manifest.name}.zip"
        return self.cache_dir / sanitize_filename(key, replacement_text="_")

    def contains(self, manifest: PackageManifest) -> bool:
        return self.path_for(manifest).is_file()

    def purge(self, manifest: PackageManifest) -> bool:
        """Deletes the cache entry for `manifest`. Returns True if a file was removed."""
        cache_path = self.path_for(manifest)
        try:
            cache_path.unlink()
        except FileNotFoundError:
            return False
        log.debug(f"Purged cache entry {cache_path.name}")
        return True

    def entries(self) -> list[Path]:
        return sorted(self.cache_dir.glob("*.zip"))

    def clear(self) -> int:
        """Removes all archives from the cache and returns how many were deleted."""
        log.info("Clearing all package cache entries...")
        removed = 0
        for cache_file in self.entries():
            try:
                cache_file.unlink()
                removed += 1
            except OSError as e:
                log.warning(f"Failed to remove cache entry {cache_file.name}: {e}")
        return removed

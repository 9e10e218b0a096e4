"""
Concurrency-safe view of installed and available packages.

Installed is rebuilt from the local `*.manifest` files, Available from the
feed. Both maps are only mutated while holding the registry lock, and readers
always receive copies so they never observe a half-updated map.
"""

import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from types import MappingProxyType
from typing import TYPE_CHECKING, Dict, Iterator, Literal, Mapping, Optional

from feedupdater.exceptions import DuplicatePackage, ManifestInvalid
from feedupdater.models.manifest import PackageManifest

if TYPE_CHECKING:
    from feedupdater.api.client import FeedClient

log = logging.getLogger(__name__)

MANIFEST_SUFFIX = ".manifest"


class PackageRegistry:
    """Holds the Installed, Available and Hidden package state."""

    def __init__(self, installed_packages_path: Path):
        self.installed_packages_path = installed_packages_path
        self.installed_packages_path.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._installed: Dict[str, PackageManifest] = {}
        self._available: Dict[str, PackageManifest] = {}
        self._hidden: set[str] = set()

    def manifest_path(self, name: str) -> Path:
        return self.installed_packages_path / f"{name}{MANIFEST_SUFFIX}"

    @contextmanager
    def write_lock(self) -> Iterator[None]:
        """Holds the registry lock for a multi-step mutation."""
        with self._lock:
            yield

    # Loading

    def load_installed(self) -> None:
        """
        Rescans the local manifest directory and replaces the Installed map.

        Raises:
            ManifestInvalid: If any manifest file cannot be parsed.
            DuplicatePackage: If two manifest files declare the same package name.
        """
        loaded: Dict[str, PackageManifest] = {}
        sources: Dict[str, Path] = {}
        for manifest_file in sorted(self.installed_packages_path.glob(f"*{MANIFEST_SUFFIX}")):
            try:
                manifest = PackageManifest.load(manifest_file)
            except ManifestInvalid as e:
                raise ManifestInvalid(
                    f"Failed to load package manifest {manifest_file.name}: {e}"
                ) from e
            if manifest.name in loaded:
                raise DuplicatePackage(
                    f"Installed package '{manifest.name}' is declared by both "
                    f"{sources[manifest.name].name} and {manifest_file.name}."
                )
            loaded[manifest.name] = manifest
            sources[manifest.name] = manifest_file

        with self._lock:
            self._installed = loaded
        log.debug(f"Loaded {len(loaded)} installed package manifests.")

    async def refresh_available(self, feed: "FeedClient", interface_version: str) -> bool:
        """
        Refreshes Available from the feed.

        Returns False without touching the network when no interface version
        is configured (offline/development mode).

        Raises:
            FeedUnavailable: If the feed index cannot be fetched.
            ManifestNotFound: If a referenced manifest is missing on the feed.
        """
        if not interface_version:
            log.debug("No interface version configured, skipping package feed.")
            return False

        names, hidden = await feed.fetch_index(interface_version)
        with self._lock:
            wanted = list(self._installed)
        wanted.extend(name for name in names if name not in wanted)

        fetched: Dict[str, PackageManifest] = {}
        for name in wanted:
            manifest = await feed.fetch_manifest(name, interface_version)
            fetched[manifest.name] = manifest

        with self._lock:
            self._available.update(fetched)
            self._hidden = {name for name, flag in hidden.items() if flag}
        log.info(f"Package feed refreshed: {len(fetched)} packages available.")
        return True

    # Reads

    def installed(self) -> Dict[str, PackageManifest]:
        with self._lock:
            return {name: m.clone() for name, m in self._installed.items()}

    def available(self) -> Dict[str, PackageManifest]:
        with self._lock:
            return {name: m.clone() for name, m in self._available.items()}

    def get_installed(self, name: str) -> Optional[PackageManifest]:
        with self._lock:
            manifest = self._installed.get(name)
            return manifest.clone() if manifest else None

    def is_hidden(self, name: str) -> bool:
        with self._lock:
            return name in self._hidden

    def snapshot(self, which: Literal["installed", "available"]) -> Mapping[str, str]:
        """Returns an immutable name → version mapping for listings."""
        with self._lock:
            if which == "installed":
                data = {name: m.version for name, m in self._installed.items()}
            elif which == "available":
                data = {
                    name: m.version
                    for name, m in self._available.items()
                    if name not in self._hidden
                }
            else:
                raise ValueError(f"Unknown snapshot '{which}'")
        return MappingProxyType(data)

    # Mutations

    def commit(self, manifest: PackageManifest) -> None:
        """Writes `manifest` to the manifest directory and records it as installed."""
        with self._lock:
            manifest.serialize(self.manifest_path(manifest.name))
            self._installed[manifest.name] = manifest.clone()

    def remove(self, name: str) -> None:
        """Deletes the manifest file of `name` and drops it from Installed."""
        with self._lock:
            self.manifest_path(name).unlink(missing_ok=True)
            self._installed.pop(name, None)

"""
The main orchestrator: keeps the installation in sync with the package feed.

Each package goes through Download → VerifyArchive → Extract → Commit. The
archive hash check is the only gate before files reach the installation root;
extraction and the registry update share one critical section so readers
never see extracted files with a stale registry, or the reverse.
"""

import asyncio
import logging
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from feedupdater.api.client import FeedClient
from feedupdater.exceptions import (
    ConfigurationError,
    DependencyStillRequired,
    InvalidPackageHash,
    ManifestInvalid,
    PackageNotInstalled,
    UpdaterError,
)
from feedupdater.install.extractor import PackageExtractor, remove_pending_replacements
from feedupdater.install.integrity import FileIntegrityChecker
from feedupdater.models.config import UpdaterConfig
from feedupdater.models.manifest import PackageManifest
from feedupdater.models.stats import UpdateStats
from feedupdater.storage.cache import PackageCache
from feedupdater.storage.registry import PackageRegistry

from .events import BroadcastHandler, LogBroadcaster
from .resolver import DependencyResolver

log = logging.getLogger(__name__)

PACKAGE_LOGGER = "feedupdater"


def read_interface_version(config: UpdaterConfig) -> str:
    """
    Reads the interface version from the bootstrap manifest.

    Returns an empty string, meaning the updater is disabled, when no feed URL
    is configured or the manifest cannot be read.
    """
    if not config.feed_url:
        log.debug("No feed URL configured, updater disabled.")
        return ""
    bootstrap = config.bootstrap_manifest_path
    try:
        return PackageManifest.load(bootstrap).interface_version
    except (OSError, ManifestInvalid) as e:
        log.warning(
            f"[yellow]Cannot read bootstrap manifest '{bootstrap.name}' ({e}); "
            "updater disabled.[/yellow]"
        )
        return ""


class PackageUpdater:
    """
    Owns the registry, cache and feed client of one installation.

    The host bootstrap constructs exactly one instance and passes it to
    whatever needs it. Construction removes leftovers of a previous deferred
    replacement and reads the interface version from the bootstrap manifest;
    without a feed URL or that manifest the updater stays disabled.
    """

    def __init__(
        self,
        config: UpdaterConfig,
        feed: Optional[FeedClient] = None,
        events: Optional[LogBroadcaster] = None,
    ):
        self.config = config
        self.install_root: Path = config.install_root
        self.events = events or LogBroadcaster()
        self.stats = UpdateStats()

        self._log_handler = BroadcastHandler(self.events)
        package_logger = logging.getLogger(PACKAGE_LOGGER)
        if package_logger.level == logging.NOTSET:
            package_logger.setLevel(logging.INFO)
        package_logger.addHandler(self._log_handler)

        self.cache = PackageCache(config.package_cache_dir)
        self.registry = PackageRegistry(config.installed_packages_dir)
        self.extractor = PackageExtractor(config.install_root, config.replacement_patterns)
        self.feed = feed
        if self.feed is None and config.feed_url:
            self.feed = FeedClient(
                config.feed_url,
                max_workers=config.max_workers,
                download_attempts=config.download_attempts,
                retry_base_delay=config.retry_base_delay,
            )

        self.cleanup()
        self.interface_version = (
            read_interface_version(config) if self.feed is not None else ""
        )

    async def __aenter__(self) -> "PackageUpdater":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close_feed(self) -> None:
        """Closes the feed connection pool; it is reopened on the next request."""
        if self.feed is not None:
            await self.feed.close()

    async def close(self) -> None:
        await self.close_feed()
        logging.getLogger(PACKAGE_LOGGER).removeHandler(self._log_handler)

    # State

    @property
    def is_enabled(self) -> bool:
        return bool(self.interface_version)

    @property
    def is_restart_required(self) -> bool:
        return self.extractor.restart_required

    @property
    def installed_packages(self) -> Mapping[str, str]:
        return self.registry.snapshot("installed")

    @property
    def available_packages(self) -> Mapping[str, str]:
        return self.registry.snapshot("available")

    def cleanup(self) -> int:
        """Deletes `*.delete` files left behind by a previous deferred replacement."""
        return remove_pending_replacements(self.install_root)

    def get_default_configuration_files(self, mode: str) -> List[str]:
        """Configuration sources of installed packages applicable to start `mode`."""
        return [
            cfg.source
            for manifest in self.registry.installed().values()
            for cfg in manifest.default_configurations
            if cfg.applies_to(mode)
        ]

    def get_preload_assemblies(self, mode: str) -> List[str]:
        """Assemblies of installed packages the host preloads in start `mode`."""
        return [
            preload.filename
            for manifest in self.registry.installed().values()
            for preload in manifest.preload_assemblies
            if preload.applies_to(mode)
        ]

    def _require_enabled(self) -> FeedClient:
        if not self.is_enabled or self.feed is None:
            raise ConfigurationError(
                "The updater is disabled: configure a feed URL and install the "
                f"bootstrap package '{self.config.core_package}'."
            )
        return self.feed

    # Updates

    async def check_for_updates(self) -> List[str]:
        """
        Refreshes the feed and installs every installed package whose version changed.

        Returns:
            The names of the packages that were updated (including pulled-in
            dependencies). Empty when the updater is disabled.
        """
        if not self.is_enabled:
            log.debug("Updater disabled, not checking for updates.")
            return []

        self.registry.load_installed()
        await self.registry.refresh_available(self.feed, self.interface_version)

        updated: List[str] = []
        for name in self._updatable_packages():
            updated.extend(await self.install_package(name))
        if not updated:
            log.info("[green]✓ All packages are up to date.[/green]")
        return updated

    async def are_updates_available(self) -> bool:
        if not self.is_enabled:
            return False
        if not self.registry.available():
            self.registry.load_installed()
            await self.registry.refresh_available(self.feed, self.interface_version)
        return bool(self._updatable_packages())

    def _updatable_packages(self) -> List[str]:
        installed = self.registry.installed()
        available = self.registry.available()
        return [
            name
            for name, manifest in installed.items()
            if name in available
            and available[name].version != manifest.version
            and not available[name].skip_delivery
        ]

    async def install_package(self, name: str, version: str = "") -> List[str]:
        """
        Installs `name` and every dependency not satisfied by the installation.

        Packages are installed in discovery order.

        Raises:
            ConfigurationError: If the updater is disabled.
            ManifestNotFound: If a package of the closure is missing on the feed.
            InvalidPackageHash: If a downloaded archive fails verification.
        """
        feed = self._require_enabled()
        resolver = DependencyResolver(feed, self.registry, self.interface_version)
        closure = await resolver.resolve(name, version)
        log.info(
            f"Installing {', '.join(f'{m.name} {m.version}' for m in closure.values())}"
        )

        installed: List[str] = []
        for manifest in closure.values():
            if await self._install(manifest):
                installed.append(manifest.name)
                self.stats.packages_installed.append(manifest.name)
        return installed

    async def _install(self, manifest: PackageManifest) -> bool:
        if manifest.skip_delivery:
            log.info(f"Package '{manifest.name}' is excluded from delivery, skipping.")
            return False

        feed = self._require_enabled()
        cache_path = self.cache.path_for(manifest)
        if cache_path.is_file():
            self.stats.cache_hits += 1
            log.debug(f"Using cached archive {cache_path.name}")
        else:
            log.info(f"Downloading '{manifest.name}' {manifest.version}...")
            size = await feed.fetch_archive(manifest, cache_path)
            self.stats.archives_downloaded += 1
            self.stats.bytes_downloaded += size

        try:
            await asyncio.to_thread(FileIntegrityChecker.check_archive, cache_path, manifest)
        except (InvalidPackageHash, OSError):
            self.cache.purge(manifest)
            log.error(
                f"[red]✗ Archive of '{manifest.name}' {manifest.version} failed "
                "verification; cache entry removed.[/red]"
            )
            raise

        deferred_before = self.extractor.deferred_files
        await asyncio.to_thread(self._extract_and_commit, manifest, cache_path)
        self.stats.files_deferred += self.extractor.deferred_files - deferred_before
        log.info(f"[green]✓ Installed '{manifest.name}' {manifest.version}.[/green]")
        return True

    def _extract_and_commit(self, manifest: PackageManifest, cache_path: Path) -> None:
        with self.registry.write_lock():
            previous = self.registry.get_installed(manifest.name)
            self.extractor.extract(cache_path, manifest, previous)
            self.registry.commit(manifest)

    # Verification

    def verify_installed(self, manifest: PackageManifest) -> bool:
        """True if every recorded file of `manifest` is present with its recorded hash."""
        return FileIntegrityChecker.check_installed(self.install_root, manifest)

    def is_installation_valid(self) -> bool:
        return all(self.verify_installed(m) for m in self.registry.installed().values())

    async def verify_installation(self) -> List[str]:
        """
        Repairs drifted packages and installs missing dependencies until stable.

        A package failing verification is reinstalled from its recorded
        manifest. Errors are not isolated per package: the first failure
        aborts the pass.

        Returns:
            Names of packages that were repaired or installed.

        Raises:
            UpdaterError: If the installation does not stabilise within
            `max_verify_passes` passes, or any install step fails.
        """
        if not self.is_enabled:
            log.debug("Updater disabled, not verifying the installation.")
            return []

        self.registry.load_installed()
        changed: List[str] = []
        for _ in range(self.config.max_verify_passes):
            pass_changed: List[str] = []
            for name, manifest in self.registry.installed().items():
                if await asyncio.to_thread(self.verify_installed, manifest):
                    continue
                if manifest.skip_delivery:
                    log.warning(
                        f"[yellow]Package '{name}' failed verification but is "
                        "excluded from delivery.[/yellow]"
                    )
                    continue
                log.warning(f"[yellow]Repairing package '{name}'...[/yellow]")
                if await self._install(manifest):
                    self.stats.packages_repaired.append(name)
                    pass_changed.append(name)

            pass_changed.extend(await self.resolve_missing())
            if not pass_changed:
                log.info("[green]✓ Installation verified.[/green]")
                return changed
            changed.extend(pass_changed)

        raise UpdaterError(
            f"Installation did not stabilise after {self.config.max_verify_passes} passes."
        )

    async def resolve_missing(self) -> List[str]:
        """
        Installs declared dependencies that are not installed.

        Each gap is installed on its own; its own dependencies surface as gaps
        in the following round.
        """
        feed = self._require_enabled()
        installed_names: List[str] = []
        undeliverable: set[str] = set()
        for _ in range(self.config.max_verify_passes):
            gaps: Dict[str, str] = {
                name: version
                for name, version in DependencyResolver.find_missing(
                    self.registry.installed()
                ).items()
                if name not in undeliverable
            }
            if not gaps:
                return installed_names
            for dep_name, dep_version in gaps.items():
                log.info(f"Installing missing dependency '{dep_name}'...")
                manifest = await feed.fetch_manifest(
                    dep_name, self.interface_version, dep_version
                )
                if await self._install(manifest):
                    installed_names.append(manifest.name)
                    self.stats.packages_installed.append(manifest.name)
                else:
                    undeliverable.add(dep_name)

        raise UpdaterError(
            f"Missing dependencies did not resolve after {self.config.max_verify_passes} rounds."
        )

    # Removal

    def uninstall_package(self, name: str) -> None:
        """
        Removes an installed package's files and manifest.

        Raises:
            PackageNotInstalled: If `name` is not installed.
            DependencyStillRequired: If another installed package depends on it.
        """
        installed = self.registry.installed()
        manifest = installed.get(name)
        if manifest is None:
            raise PackageNotInstalled(f"Package '{name}' is not installed.")
        for other in installed.values():
            if other.name != name and name in other.dependencies:
                raise DependencyStillRequired(name, other.name)

        with self.registry.write_lock():
            for relative_path in manifest.files:
                self.extractor.remove_file(relative_path, manifest)
            self.registry.remove(name)
        self.stats.packages_uninstalled.append(name)
        log.info(f"[green]✓ Uninstalled '{name}' {manifest.version}.[/green]")

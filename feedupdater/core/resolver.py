"""
Dependency Resolver

Computes which packages must be fetched to install a package, using exact
version matching only (an empty constraint accepts any installed version).
"""

import logging
from typing import Dict, Mapping

from feedupdater.api.client import FeedClient
from feedupdater.models.manifest import PackageManifest
from feedupdater.storage.registry import PackageRegistry

log = logging.getLogger(__name__)


def is_satisfied(required_version: str, installed: Mapping[str, PackageManifest], name: str) -> bool:
    """True if `name` is installed at a version matching `required_version`."""
    current = installed.get(name)
    if current is None:
        return False
    return not required_version or required_version == current.version


class DependencyResolver:
    """Expands a requested package into the set of manifests to install."""

    def __init__(self, feed: FeedClient, registry: PackageRegistry, interface_version: str):
        self.feed = feed
        self.registry = registry
        self.interface_version = interface_version

    async def resolve(self, root_name: str, version: str = "") -> Dict[str, PackageManifest]:
        """
        Resolves the dependency closure of `root_name`.

        The root itself is always part of the result. Dependencies already
        resolved, already pending, or installed at a satisfying version are
        skipped. The returned dict is ordered by discovery.

        Raises:
            ManifestNotFound: If any package of the closure is missing on the feed.
        """
        installed = self.registry.installed()
        results: Dict[str, PackageManifest] = {}
        pending: Dict[str, str] = {root_name: version}

        while pending:
            name = next(iter(pending))
            requested_version = pending.pop(name)
            manifest = await self.feed.fetch_manifest(
                name, self.interface_version, requested_version
            )
            results[manifest.name] = manifest

            for dep_name, dep_version in manifest.dependencies.items():
                if dep_name in results or dep_name in pending:
                    continue
                if is_satisfied(dep_version, installed, dep_name):
                    continue
                log.debug(
                    f"'{manifest.name}' requires '{dep_name}'"
                    f"{' ' + dep_version if dep_version else ''}, queued."
                )
                pending[dep_name] = dep_version

        return results

    @staticmethod
    def find_missing(installed: Mapping[str, PackageManifest]) -> Dict[str, str]:
        """
        Returns name → required version for every declared dependency that is not installed.

        When two packages require different versions of the same missing
        dependency, the first declaration wins.
        """
        missing: Dict[str, str] = {}
        for manifest in installed.values():
            for dep_name, dep_version in manifest.dependencies.items():
                if dep_name not in installed and dep_name not in missing:
                    missing[dep_name] = dep_version
        return missing

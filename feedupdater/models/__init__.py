"""
Data Models Layer.

This package contains the core data structures used throughout the updater:
package manifests, configuration and session statistics.
"""

from .config import UpdaterConfig
from .manifest import ConfigurationSource, FileRecord, PackageManifest, PreloadAssembly
from .stats import UpdateStats

__all__ = [
    "ConfigurationSource",
    "FileRecord",
    "PackageManifest",
    "PreloadAssembly",
    "UpdateStats",
    "UpdaterConfig",
]

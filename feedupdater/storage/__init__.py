"""
Storage Layer.

This package handles all local persistence: the configuration file, the
archive download cache and the registry of installed package manifests.
"""

from .cache import PackageCache
from .config_manager import ConfigManager
from .registry import PackageRegistry

__all__ = ["ConfigManager", "PackageCache", "PackageRegistry"]

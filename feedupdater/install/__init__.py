"""
Installation Layer.

This package is responsible for all package file operations: downloading
archives, verifying their integrity and unpacking them into the installation
root with the locked-file replacement protocol.
"""

from .downloader import Downloader
from .extractor import PackageExtractor, remove_pending_replacements
from .integrity import FileIntegrityChecker, sha256_file

__all__ = [
    "Downloader",
    "FileIntegrityChecker",
    "PackageExtractor",
    "remove_pending_replacements",
    "sha256_file",
]

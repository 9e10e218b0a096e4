"""
Provides methods for checking the integrity of package archives and installed files.
"""

import hashlib
import logging
from pathlib import Path

from feedupdater.exceptions import InvalidPackageHash
from feedupdater.models.manifest import PackageManifest, normalize_path, to_hex

log = logging.getLogger(__name__)

_READ_SIZE = 1048576  # 1 MB


def sha256_file(path: Path) -> bytes:
    """Computes the SHA-256 digest of a file, reading it in chunks."""
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(_READ_SIZE), b""):
            digest.update(chunk)
    return digest.digest()


class FileIntegrityChecker:
    """A collection of static methods validating archives and installed files."""

    @staticmethod
    def check_archive(archive_path: Path, manifest: PackageManifest) -> None:
        """
        Compares the digest of a cached archive with the manifest's content hash.

        Raises:
            InvalidPackageHash: If the manifest declares no hash or the digests differ.
        """
        if manifest.content_hash is None:
            raise InvalidPackageHash(
                f"Package '{manifest.name}' {manifest.version} declares no archive hash."
            )
        actual = sha256_file(archive_path)
        if actual != manifest.content_hash:
            raise InvalidPackageHash(
                f"Archive of '{manifest.name}' {manifest.version} has hash "
                f"{to_hex(actual)}, expected {to_hex(manifest.content_hash)}."
            )

    @staticmethod
    def check_installed(install_root: Path, manifest: PackageManifest) -> bool:
        """
        Verifies every file with a recorded hash against the installation root.

        A missing file or directory counts as a mismatch, not an error.

        Returns:
            True if all recorded files are present with matching digests.
        """
        for relative_path, record in manifest.files.items():
            if record.hash is None:
                continue
            target = install_root.joinpath(*normalize_path(relative_path).parts)
            try:
                actual = sha256_file(target)
            except (FileNotFoundError, NotADirectoryError, IsADirectoryError):
                log.warning(
                    f"[yellow]Package '{manifest.name}': file '{relative_path}' is missing."
                    "[/yellow]"
                )
                return False
            if actual != record.hash:
                log.warning(
                    f"[yellow]Package '{manifest.name}': file '{relative_path}' "
                    "does not match its recorded hash.[/yellow]"
                )
                return False
        return True

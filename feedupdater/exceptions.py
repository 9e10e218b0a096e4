"""
Defines custom exceptions for the updater to allow for more specific error handling.
"""


class UpdaterError(Exception):
    """Base exception for all updater-specific errors."""


class ConfigurationError(UpdaterError):
    """Raised for issues related to configuration loading or validation."""


class ManifestInvalid(UpdaterError):
    """Raised when a package manifest is malformed, truncated or misses a required field."""


class DuplicatePackage(UpdaterError):
    """Raised when two local manifests declare the same package name."""


class FeedUnavailable(UpdaterError):
    """Raised when the package feed cannot be reached or returns a transport error."""


class ManifestNotFound(UpdaterError):
    """Raised when the feed has no manifest for the requested package."""


class InvalidPackageHash(UpdaterError):
    """Raised when a downloaded archive does not match the hash declared by its manifest."""


class PackageArchiveInvalid(UpdaterError):
    """Raised when a package archive is unreadable or contains paths outside the root."""


class DependencyStillRequired(UpdaterError):
    """
    Raised when uninstalling a package that another installed package depends on.
    """

    def __init__(self, package: str, required_by: str):
        super().__init__(
            f"Package '{package}' is still required by installed package '{required_by}'."
        )
        self.package = package
        self.required_by = required_by


class PackageNotInstalled(UpdaterError):
    """Raised when an operation targets a package that is not installed."""

"""
Dataclass for tracking updater session statistics.
"""

from dataclasses import dataclass, field


@dataclass
class UpdateStats:
    """Tracks what one updater session downloaded, installed and repaired."""

    packages_installed: list[str] = field(default_factory=list)
    packages_repaired: list[str] = field(default_factory=list)
    packages_uninstalled: list[str] = field(default_factory=list)
    archives_downloaded: int = 0
    cache_hits: int = 0
    bytes_downloaded: int = 0
    files_deferred: int = 0

    @property
    def changed(self) -> bool:
        return bool(
            self.packages_installed
            or self.packages_repaired
            or self.packages_uninstalled
        )

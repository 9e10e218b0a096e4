"""
Helper functions for formatting data into human-readable strings.
"""

from typing import Mapping


def format_size(bytes_size: int) -> str:
    """Formats bytes into a human-readable size string (e.g., '12.4 MB')."""
    if bytes_size <= 0:
        return "0 B"
    size = float(bytes_size)
    units = ["B", "KB", "MB", "GB"]
    i = 0
    while size >= 1024 and i < len(units) - 1:
        size /= 1024
        i += 1
    return f"{size:.1f} {units[i]}"


def format_duration(seconds: float) -> str:
    """Formats a duration as e.g. '1m 05s' or '12s'."""
    minutes, secs = divmod(int(seconds), 60)
    return f"{minutes}m {secs:02d}s" if minutes else f"{secs}s"


def version_changes(
    installed: Mapping[str, str], available: Mapping[str, str]
) -> dict[str, tuple[str, str]]:
    """Returns name → (installed, available) for packages whose versions differ."""
    return {
        name: (version, available[name])
        for name, version in installed.items()
        if name in available and available[name] != version
    }

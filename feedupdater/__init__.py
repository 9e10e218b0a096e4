"""
feedupdater: a self-updating package manager for host applications.

Packages are described by XML manifests, published on a feed partitioned by
interface version, downloaded into a local cache, verified by SHA-256 and
unpacked into the installation root.
"""

__version__ = "1.2.0"

"""
Async client for the package feed.

The feed is a plain static file tree partitioned by interface version:

    {feed_url}/{interface_version}/packages.list
    {feed_url}/{interface_version}[/{version}]/{name}.manifest
    {feed_url}/{interface_version}/{version}/{name}.zip
"""

import asyncio
import logging
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import aiohttp

from feedupdater import __version__
from feedupdater.exceptions import FeedUnavailable, ManifestInvalid, ManifestNotFound
from feedupdater.install.downloader import Downloader
from feedupdater.models.manifest import PackageManifest

log = logging.getLogger(__name__)

INDEX_FILE = "packages.list"


def parse_index(data: bytes) -> Tuple[List[str], Dict[str, bool]]:
    """
    Parses a `packages.list` document.

    Returns:
        The package names in feed order and a name → hidden flag mapping.
    """
    try:
        root = ET.fromstring(data)
    except ET.ParseError as e:
        raise FeedUnavailable(f"Package index is malformed: {e}") from e

    names: List[str] = []
    hidden: Dict[str, bool] = {}
    for entry in root.iter("package"):
        name = entry.get("name", "").strip()
        if not name or name in hidden:
            continue
        names.append(name)
        hidden[name] = entry.get("hidden", "false").strip().lower() in ("true", "1")
    return names, hidden


class FeedClient:
    """
    Async client for one package feed.

    Features:
    - Shared connection pool for index, manifest and archive requests
    - Retrying, streaming archive downloads that never leave partial files
    - Feed errors mapped onto the updater's exception taxonomy
    """

    def __init__(
        self,
        feed_url: str,
        max_workers: int = 4,
        download_attempts: int = 3,
        retry_base_delay: float = 1.5,
    ):
        """
        Initializes the feed client.

        Args:
            feed_url: Base URL of the feed, ending with a slash.
            max_workers: Used to size the connection pool.
            download_attempts: Attempts per archive download.
            retry_base_delay: Base delay in seconds for download retry backoff.
        """
        self.feed_url = feed_url if feed_url.endswith("/") else feed_url + "/"
        self.max_workers = max_workers
        self._session: Optional[aiohttp.ClientSession] = None
        self._downloader = Downloader(download_attempts, retry_base_delay)

    async def __aenter__(self) -> "FeedClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _initialize_session(self) -> aiohttp.ClientSession:
        """Ensures an active aiohttp session is available."""
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(
                limit=self.max_workers * 2,
                limit_per_host=self.max_workers,
                ttl_dns_cache=300,
                enable_cleanup_closed=True,
            )
            self._session = aiohttp.ClientSession(
                connector=connector,
                headers={
                    "User-Agent": f"feedupdater/{__version__}",
                    "Accept-Encoding": "gzip, deflate",
                },
                # No overall deadline: a slow feed is the transport's concern.
                timeout=aiohttp.ClientTimeout(total=None, sock_connect=15, sock_read=90),
            )
        return self._session

    async def close(self) -> None:
        """Gracefully closes the aiohttp session."""
        if self._session and not self._session.closed:
            await self._session.close()

    def url_for(self, *parts: str) -> str:
        return self.feed_url + "/".join(p for p in parts if p)

    async def _get(self, url: str) -> bytes:
        session = await self._initialize_session()
        log.debug(f"GET {url}")
        async with session.get(url) as r:
            r.raise_for_status()
            return await r.read()

    async def fetch_index(self, interface_version: str) -> Tuple[List[str], Dict[str, bool]]:
        """
        Retrieves the package names known to the feed with their hidden flags.

        Raises:
            FeedUnavailable: On any transport error or a malformed index.
        """
        url = self.url_for(interface_version, INDEX_FILE)
        try:
            data = await self._get(url)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise FeedUnavailable(f"Could not fetch package index from {url}: {e}") from e
        names, hidden = parse_index(data)
        log.debug(f"Feed index lists {len(names)} packages.")
        return names, hidden

    async def fetch_manifest(
        self, name: str, interface_version: str, version: str = ""
    ) -> PackageManifest:
        """
        Retrieves one manifest, optionally pinned to `version`.

        Raises:
            ManifestNotFound: If the feed has no such manifest.
            FeedUnavailable: On other transport errors.
            ManifestInvalid: If the manifest cannot be parsed.
        """
        url = self.url_for(interface_version, version, f"{name}.manifest")
        try:
            data = await self._get(url)
        except aiohttp.ClientResponseError as e:
            if e.status == 404:
                pinned = f" version {version}" if version else ""
                raise ManifestNotFound(
                    f"Package '{name}'{pinned} not found on feed ({url})."
                ) from e
            raise FeedUnavailable(f"Could not fetch manifest {url}: {e}") from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise FeedUnavailable(f"Could not fetch manifest {url}: {e}") from e

        try:
            return PackageManifest.from_bytes(data)
        except ManifestInvalid as e:
            raise ManifestInvalid(f"Manifest at {url} is invalid: {e}") from e

    async def fetch_archive(self, manifest: PackageManifest, dest_path: Path) -> int:
        """
        Streams the archive of `manifest` to `dest_path`.

        On any failure the partial file is deleted and the error re-raised.

        Returns:
            The number of bytes downloaded.
        """
        url = self.url_for(manifest.interface_version, manifest.version, f"{manifest.name}.zip")
        session = await self._initialize_session()
        try:
            return await self._downloader.download_file(session, url, str(dest_path))
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise FeedUnavailable(f"Could not download {url}: {e}") from e

"""Shared fixtures: package builders and an in-process package feed."""

import hashlib
import io
import zipfile
from pathlib import Path
from typing import Dict, Optional

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from feedupdater.api.client import FeedClient
from feedupdater.core.updater import PackageUpdater
from feedupdater.models.config import UpdaterConfig
from feedupdater.models.manifest import FileRecord, PackageManifest

INTERFACE_VERSION = "7"


def build_archive(files: Dict[str, bytes]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        for path, data in files.items():
            zf.writestr(path, data)
    return buffer.getvalue()


def make_package(
    name: str,
    version: str,
    files: Optional[Dict[str, bytes]] = None,
    dependencies: Optional[Dict[str, str]] = None,
    interface_version: str = INTERFACE_VERSION,
    **kwargs,
) -> tuple[PackageManifest, bytes]:
    """Builds a manifest and its archive with matching hashes."""
    files = files or {}
    archive = build_archive(files)
    manifest = PackageManifest(
        name=name,
        version=version,
        interface_version=interface_version,
        content_hash=hashlib.sha256(archive).digest(),
        dependencies=dict(dependencies or {}),
        files={
            path: FileRecord(hash=hashlib.sha256(data).digest())
            for path, data in files.items()
        },
        **kwargs,
    )
    return manifest, archive


class FakeFeed:
    """A static package feed served by aiohttp."""

    def __init__(self) -> None:
        self.files: Dict[str, bytes] = {}
        self.requests: list[str] = []
        self._index: Dict[str, Dict[str, bool]] = {}

    def publish(
        self,
        manifest: PackageManifest,
        archive: bytes,
        latest: bool = True,
        hidden: bool = False,
    ) -> None:
        iv, version, name = manifest.interface_version, manifest.version, manifest.name
        body = manifest.to_bytes()
        self.files[f"{iv}/{version}/{name}.manifest"] = body
        self.files[f"{iv}/{version}/{name}.zip"] = archive
        if latest:
            self.files[f"{iv}/{name}.manifest"] = body
        self._index.setdefault(iv, {})[name] = hidden
        entries = "".join(
            f'<package name="{n}" hidden="{str(h).lower()}"/>'
            for n, h in self._index[iv].items()
        )
        self.files[f"{iv}/packages.list"] = f"<packages>{entries}</packages>".encode()

    def count(self, path: str) -> int:
        return self.requests.count(path)

    async def _handle(self, request: web.Request) -> web.Response:
        path = request.match_info["path"]
        self.requests.append(path)
        if path not in self.files:
            raise web.HTTPNotFound()
        return web.Response(body=self.files[path])

    def make_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/{path:.*}", self._handle)
        return app


@pytest.fixture
def fake_feed() -> FakeFeed:
    feed = FakeFeed()
    core, core_archive = make_package("core", "1.0")
    feed.publish(core, core_archive)
    return feed


@pytest_asyncio.fixture
async def feed_url(fake_feed: FakeFeed):
    async with TestServer(fake_feed.make_app()) as server:
        yield str(server.make_url("/"))


@pytest_asyncio.fixture
async def feed_client(feed_url: str):
    client = FeedClient(feed_url, download_attempts=1, retry_base_delay=0)
    yield client
    await client.close()


@pytest.fixture
def install_root(tmp_path: Path) -> Path:
    root = tmp_path / "install"
    root.mkdir()
    return root


def write_bootstrap(install_root: Path, interface_version: str = INTERFACE_VERSION) -> None:
    manifests = install_root / "bin" / "installed-packages"
    manifests.mkdir(parents=True, exist_ok=True)
    core, _ = make_package("core", "1.0", interface_version=interface_version)
    core.serialize(manifests / "core.manifest")


def make_config(install_root: Path, feed_url: str = "", **overrides) -> UpdaterConfig:
    return UpdaterConfig(
        feed_url=feed_url,
        install_root=install_root,
        download_attempts=1,
        retry_base_delay=0,
        **overrides,
    )


@pytest_asyncio.fixture
async def updater(install_root: Path, feed_url: str):
    write_bootstrap(install_root)
    instance = PackageUpdater(make_config(install_root, feed_url))
    instance.registry.load_installed()
    yield instance
    await instance.close()


@pytest_asyncio.fixture
async def offline_updater(install_root: Path):
    instance = PackageUpdater(make_config(install_root))
    yield instance
    await instance.close()

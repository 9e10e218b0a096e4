"""Tests for dependency resolution against the feed and the installed set."""

import pytest

from feedupdater.core.resolver import DependencyResolver, is_satisfied
from feedupdater.exceptions import ManifestNotFound
from feedupdater.storage.registry import PackageRegistry

from .conftest import INTERFACE_VERSION, make_package


@pytest.fixture
def registry(tmp_path):
    return PackageRegistry(tmp_path / "installed-packages")


@pytest.fixture
def resolver(feed_client, registry):
    return DependencyResolver(feed_client, registry, INTERFACE_VERSION)


def _publish(feed, name, version, dependencies=None, latest=True):
    manifest, archive = make_package(name, version, dependencies=dependencies)
    feed.publish(manifest, archive, latest=latest)
    return manifest


@pytest.mark.asyncio
async def test_mismatched_installed_version_is_refetched(fake_feed, registry, resolver):
    _publish(fake_feed, "libcore", "2.0")
    _publish(fake_feed, "app", "1.0", {"libcore": "2.0"})
    installed, _ = make_package("libcore", "1.0")
    registry.commit(installed)

    closure = await resolver.resolve("app")

    assert list(closure) == ["app", "libcore"]
    assert closure["libcore"].version == "2.0"


@pytest.mark.asyncio
async def test_empty_constraint_accepts_installed_version(fake_feed, registry, resolver):
    _publish(fake_feed, "libcore", "2.0")
    _publish(fake_feed, "app", "1.0", {"libcore": ""})
    installed, _ = make_package("libcore", "1.0")
    registry.commit(installed)

    closure = await resolver.resolve("app")

    assert list(closure) == ["app"]


@pytest.mark.asyncio
async def test_diamond_is_resolved_once_in_discovery_order(fake_feed, resolver):
    _publish(fake_feed, "base", "1.0")
    _publish(fake_feed, "left", "1.0", {"base": ""})
    _publish(fake_feed, "right", "1.0", {"base": ""})
    _publish(fake_feed, "top", "1.0", {"left": "", "right": ""})

    closure = await resolver.resolve("top")

    assert list(closure) == ["top", "left", "right", "base"]
    assert fake_feed.count(f"{INTERFACE_VERSION}/base.manifest") == 1


@pytest.mark.asyncio
async def test_pinned_dependency_uses_versioned_path(fake_feed, resolver):
    _publish(fake_feed, "libcore", "1.5", latest=False)
    _publish(fake_feed, "libcore", "2.0")
    _publish(fake_feed, "app", "1.0", {"libcore": "1.5"})

    closure = await resolver.resolve("app")

    assert closure["libcore"].version == "1.5"
    assert fake_feed.count(f"{INTERFACE_VERSION}/1.5/libcore.manifest") == 1


@pytest.mark.asyncio
async def test_requested_root_version_is_pinned(fake_feed, resolver):
    _publish(fake_feed, "app", "0.9", latest=False)
    _publish(fake_feed, "app", "1.0")

    closure = await resolver.resolve("app", "0.9")

    assert closure["app"].version == "0.9"


@pytest.mark.asyncio
async def test_missing_dependency_raises(fake_feed, resolver):
    _publish(fake_feed, "app", "1.0", {"ghost": ""})

    with pytest.raises(ManifestNotFound, match="ghost"):
        await resolver.resolve("app")


def test_find_missing_reports_undeclared_names_only():
    core, _ = make_package("core", "1.0", dependencies={"libcore": "2.0", "libx": ""})
    plugin, _ = make_package("plugin", "1.0", dependencies={"libcore": "3.0", "core": "9"})
    installed = {"core": core, "plugin": plugin}

    assert DependencyResolver.find_missing(installed) == {"libcore": "2.0", "libx": ""}


def test_is_satisfied():
    lib, _ = make_package("libcore", "2.0")
    installed = {"libcore": lib}

    assert is_satisfied("", installed, "libcore")
    assert is_satisfied("2.0", installed, "libcore")
    assert not is_satisfied("1.0", installed, "libcore")
    assert not is_satisfied("", installed, "other")

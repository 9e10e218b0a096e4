"""Tests for the INI configuration layer."""

import pytest

from feedupdater.exceptions import ConfigurationError
from feedupdater.models.config import DEFAULT_REPLACEMENT_PATTERNS, UpdaterConfig
from feedupdater.storage.config_manager import ConfigManager


def test_missing_file_yields_disabled_defaults(install_root):
    config = ConfigManager(install_root).load_config()

    assert config.feed_url == ""
    assert config.core_package == "core"
    assert config.replacement_patterns == DEFAULT_REPLACEMENT_PATTERNS
    assert config.install_root == install_root


def test_saved_config_round_trips(install_root):
    manager = ConfigManager(install_root)
    manager.save_new_config({"feed_url": "https://feed.example/updates", "core_package": "base"})

    config = manager.load_config()

    assert manager.config_file_path == install_root / "bin" / "updater.ini"
    assert config.feed_url == "https://feed.example/updates/"
    assert config.core_package == "base"
    assert config.download_attempts == 3
    assert config.bootstrap_manifest_path == (
        install_root / "bin" / "installed-packages" / "base.manifest"
    )


def test_missing_keys_are_migrated(install_root):
    manager = ConfigManager(install_root)
    manager.config_file_path.parent.mkdir(parents=True)
    manager.config_file_path.write_text(
        "[DEFAULT]\nfeed_url = http://feed.example/\n", encoding="utf-8"
    )

    config = manager.load_config()

    assert config.max_verify_passes == 10
    contents = manager.config_file_path.read_text(encoding="utf-8")
    for key in UpdaterConfig.get_ini_keys():
        assert key in contents


def test_cli_options_override_file(install_root):
    manager = ConfigManager(install_root)
    manager.save_new_config({"feed_url": "http://feed.example/"})

    config = manager.load_config({"download_attempts": 5})

    assert config.download_attempts == 5


@pytest.mark.parametrize(
    "settings",
    [
        {"feed_url": "ftp://feed.example/"},
        {"download_attempts": 0},
        {"max_workers": 64},
        {"max_verify_passes": 0},
    ],
)
def test_invalid_values_raise_configuration_error(install_root, settings):
    manager = ConfigManager(install_root)
    manager.save_new_config(settings)

    with pytest.raises(ConfigurationError):
        manager.load_config()


def test_paths_derive_from_install_root(tmp_path):
    config = UpdaterConfig(install_root=tmp_path)

    assert config.installed_packages_dir == tmp_path / "bin" / "installed-packages"
    assert config.package_cache_dir == tmp_path / "data" / "dl-cache"

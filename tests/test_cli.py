"""Tests for the Typer command-line interface."""

import logging

import pytest
from typer.testing import CliRunner

from feedupdater import __main__ as entry_point
from feedupdater import __version__
from feedupdater.cli.app import app
from feedupdater.core.events import BroadcastHandler
from feedupdater.exceptions import ConfigurationError, FeedUnavailable, PackageNotInstalled
from feedupdater.storage.config_manager import ConfigManager

from .conftest import write_bootstrap


@pytest.fixture
def runner():
    return CliRunner()


def test_version(runner):
    result = runner.invoke(app, ["--version"])

    assert result.exit_code == 0
    assert __version__ in result.output


def test_init_writes_configuration(runner, install_root):
    result = runner.invoke(
        app, ["--root", str(install_root), "init", "--feed-url", "http://feed.example/x"]
    )

    assert result.exit_code == 0, result.output
    config = ConfigManager(install_root.resolve()).load_config()
    assert config.feed_url == "http://feed.example/x/"


def test_init_refuses_to_overwrite_without_confirmation(runner, install_root):
    args = ["--root", str(install_root), "init", "--feed-url", "http://feed.example/"]
    runner.invoke(app, args)

    result = runner.invoke(app, args, input="n\n")

    assert result.exit_code != 0


def test_list_shows_installed_packages(runner, install_root):
    write_bootstrap(install_root)

    result = runner.invoke(app, ["--root", str(install_root), "list"])

    assert result.exit_code == 0, result.output
    assert "core" in result.output
    assert "1.0" in result.output


def test_check_reports_disabled_updater(runner, install_root):
    result = runner.invoke(app, ["--root", str(install_root), "check"])

    assert result.exit_code == 0, result.output
    assert "disabled" in result.output


def test_uninstall_unknown_package_fails(runner, install_root):
    result = runner.invoke(app, ["--root", str(install_root), "uninstall", "ghost"])

    assert result.exit_code == 1
    assert isinstance(result.exception, PackageNotInstalled)


def test_cleanup_removes_pending_files(runner, install_root):
    leftover = install_root / "bin" / "old.dll.delete"
    leftover.parent.mkdir(parents=True)
    leftover.write_bytes(b"")

    result = runner.invoke(app, ["--root", str(install_root), "cleanup"])

    assert result.exit_code == 0, result.output
    assert not leftover.exists()


@pytest.mark.parametrize(
    "args",
    [["list"], ["configs", "--mode", "service"], ["uninstall", "ghost"], ["clear-cache"]],
)
def test_commands_detach_log_broadcast(runner, install_root, args):
    write_bootstrap(install_root)

    runner.invoke(app, ["--root", str(install_root), *args])

    handlers = logging.getLogger("feedupdater").handlers
    assert not any(isinstance(h, BroadcastHandler) for h in handlers)


def test_show_config_has_no_side_effects(runner, install_root):
    leftover = install_root / "bin" / "old.dll.delete"
    leftover.parent.mkdir(parents=True)
    leftover.write_bytes(b"")

    result = runner.invoke(app, ["--root", str(install_root), "--show-config"])

    assert result.exit_code == 0, result.output
    assert "disabled" in result.output
    assert leftover.exists()


@pytest.mark.parametrize(
    "error, code",
    [
        (ConfigurationError("bad ini"), 78),
        (FeedUnavailable("offline"), 69),
        (PackageNotInstalled("ghost"), 1),
    ],
)
def test_main_maps_errors_to_exit_codes(monkeypatch, error, code):
    def failing_app():
        raise error

    monkeypatch.setattr(entry_point, "app", failing_app)

    with pytest.raises(SystemExit) as exc_info:
        entry_point.main()
    assert exc_info.value.code == code

"""
Defines the command-line interface for the updater using Typer.
"""

import asyncio
import logging
import os
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Awaitable, Callable, Iterator, TypeVar

import typer
from rich.console import Console
from rich.logging import RichHandler

from feedupdater import __version__
from feedupdater.core.host import HostRegistry, run_host
from feedupdater.core.updater import PackageUpdater, read_interface_version
from feedupdater.install.extractor import remove_pending_replacements
from feedupdater.storage.cache import PackageCache
from feedupdater.storage.config_manager import ConfigManager

from .formatters import print_config, print_packages_table, print_summary_panel

console = Console()

logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[
        RichHandler(
            console=console,
            rich_tracebacks=True,
            show_path=False,
            show_level=False,
            markup=True,
        )
    ],
)
log = logging.getLogger("feedupdater")

app = typer.Typer(
    name="feedupdater",
    help=(
        "Keeps an installation in sync with its package feed. Use 'feedupdater"
        " <command> --help' for more info."
    ),
    rich_markup_mode="rich",
    pretty_exceptions_show_locals=False,
    add_completion=False,
)

T = TypeVar("T")


def default_install_root() -> Path:
    return Path(os.getenv("FEEDUPDATER_ROOT", ".")).expanduser().resolve()


def _config_manager(ctx: typer.Context) -> ConfigManager:
    return ConfigManager(ctx.obj["root"])


def _build_updater(ctx: typer.Context) -> PackageUpdater:
    config = _config_manager(ctx).load_config()
    return PackageUpdater(config)


@contextmanager
def _open_updater(ctx: typer.Context) -> Iterator[PackageUpdater]:
    """Yields an updater for a synchronous command and closes it afterwards."""
    updater = _build_updater(ctx)
    try:
        yield updater
    finally:
        asyncio.run(updater.close())


def _run_with_updater(
    ctx: typer.Context, action: Callable[[PackageUpdater], Awaitable[T]]
) -> tuple[T, PackageUpdater, float]:
    """Runs `action` against a fresh updater inside one event loop."""
    updater = _build_updater(ctx)

    async def _runner() -> T:
        async with updater:
            return await action(updater)

    start_time = time.monotonic()
    result = asyncio.run(_runner())
    return result, updater, time.monotonic() - start_time


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    root: Path | None = typer.Option(
        None,
        "--root",
        "-r",
        help="Installation root (defaults to $FEEDUPDATER_ROOT or the current directory).",
    ),
    verbose: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Increase logging verbosity (-vv for debug).",
    ),
    version: bool = typer.Option(
        False, "--version", help="Show version and exit.", is_eager=True
    ),
    show_config: bool = typer.Option(
        False, "--show-config", help="Display the effective configuration."
    ),
):
    """Package feed updater CLI"""
    if version:
        console.print(f"[bold]feedupdater[/bold] version [cyan]{__version__}[/cyan]")
        raise typer.Exit()

    log_level = "INFO"
    if verbose >= 2:
        log_level = "DEBUG"
    logging.getLogger("feedupdater").setLevel(log_level)

    ctx.obj = {"root": (root or default_install_root()).resolve()}

    if show_config:
        config_manager = _config_manager(ctx)
        config = config_manager.load_config()
        print_config(config_manager.config_file_path, config, read_interface_version(config))
        raise typer.Exit()

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


@app.command()
def init(
    ctx: typer.Context,
    feed_url: str = typer.Option(..., "--feed-url", help="Base URL of the package feed."),
    core_package: str = typer.Option(
        "core", "--core-package", help="Package whose manifest sets the interface version."
    ),
    force: bool = typer.Option(
        False, "--force", "-f", help="Overwrite an existing configuration without asking."
    ),
):
    """Create the updater configuration file."""
    config_manager = _config_manager(ctx)
    if (
        config_manager.config_file_path.exists()
        and not force
        and not typer.confirm("Configuration file already exists. Overwrite it?")
    ):
        raise typer.Abort()

    config_manager.save_new_config({"feed_url": feed_url, "core_package": core_package})
    config_manager.load_config()
    console.print(
        f"[bold green]✓ Configuration saved to '{config_manager.config_file_path}'[/bold green]"
    )


@app.command()
def check(ctx: typer.Context):
    """Check the feed and install updates for installed packages."""
    _, updater, duration = _run_with_updater(ctx, lambda u: u.check_for_updates())
    if not updater.is_enabled:
        console.print("[yellow]Updater is disabled (no feed or bootstrap package).[/yellow]")
        return
    print_summary_panel(updater.stats, duration, updater.is_restart_required)


@app.command()
def verify(ctx: typer.Context):
    """Verify installed files and repair drifted or missing packages."""
    _, updater, duration = _run_with_updater(ctx, lambda u: u.verify_installation())
    if not updater.is_enabled:
        console.print("[yellow]Updater is disabled (no feed or bootstrap package).[/yellow]")
        return
    print_summary_panel(updater.stats, duration, updater.is_restart_required)


@app.command()
def install(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Package to install."),
    version: str = typer.Option("", "--version", help="Pin a specific package version."),
):
    """Install a package and its missing dependencies."""

    async def _install(updater: PackageUpdater) -> list[str]:
        updater.registry.load_installed()
        return await updater.install_package(name, version)

    _, updater, duration = _run_with_updater(ctx, _install)
    print_summary_panel(updater.stats, duration, updater.is_restart_required)


@app.command()
def uninstall(ctx: typer.Context, name: str = typer.Argument(..., help="Package to remove.")):
    """Remove an installed package that nothing else depends on."""
    with _open_updater(ctx) as updater:
        updater.registry.load_installed()
        updater.uninstall_package(name)
    console.print(f"[green]✓ Package '{name}' uninstalled.[/green]")


@app.command(name="list")
def list_installed(ctx: typer.Context):
    """List installed packages."""
    with _open_updater(ctx) as updater:
        updater.registry.load_installed()
        print_packages_table("Installed Packages", updater.installed_packages)


@app.command()
def available(ctx: typer.Context):
    """List packages published on the feed."""

    async def _refresh(updater: PackageUpdater) -> bool:
        updater.registry.load_installed()
        if not updater.is_enabled:
            return False
        return await updater.registry.refresh_available(
            updater.feed, updater.interface_version
        )

    refreshed, updater, _ = _run_with_updater(ctx, _refresh)
    if not refreshed:
        console.print("[yellow]Updater is disabled (no feed or bootstrap package).[/yellow]")
        return
    print_packages_table(
        "Available Packages", updater.available_packages, updater.installed_packages
    )


@app.command()
def configs(
    ctx: typer.Context,
    mode: str = typer.Option(..., "--mode", "-m", help="Start mode, e.g. 'service'."),
):
    """Show default configuration files and preload assemblies for a start mode."""
    with _open_updater(ctx) as updater:
        updater.registry.load_installed()
        sources = updater.get_default_configuration_files(mode)
        assemblies = updater.get_preload_assemblies(mode)
    for source in sources:
        console.print(f"[cyan]config[/cyan]  {source}")
    for assembly in assemblies:
        console.print(f"[magenta]preload[/magenta] {assembly}")


@app.command()
def cleanup(ctx: typer.Context):
    """Delete files left behind by a previous deferred replacement."""
    removed = remove_pending_replacements(ctx.obj["root"])
    console.print(f"[green]✓ Removed {removed} pending file(s).[/green]")


@app.command(name="clear-cache")
def clear_cache(ctx: typer.Context):
    """Remove all downloaded package archives."""
    config = _config_manager(ctx).load_config()
    removed = PackageCache(config.package_cache_dir).clear()
    console.print(f"[green]✓ Cache cleared ({removed} archives removed).[/green]")


@app.command(context_settings={"allow_extra_args": True, "ignore_unknown_options": True})
def run(
    ctx: typer.Context,
    host: str = typer.Option(..., "--host", help="Registered host application to start."),
):
    """Update and verify the installation, then start the host application."""
    registry = HostRegistry()
    registry.load_entry_points()
    with _open_updater(ctx) as updater:
        exit_code = run_host(updater, lambda: registry.create(host), ctx.args)
    raise typer.Exit(code=exit_code)

"""
Functions for formatting and displaying updater data in the console using Rich.
"""

from pathlib import Path
from typing import Mapping

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from feedupdater.models.config import UpdaterConfig
from feedupdater.models.stats import UpdateStats
from feedupdater.utils.formatting import format_duration, format_size, version_changes


def format_error_with_suggestions(
    error: Exception, context: dict | None = None
) -> Panel:
    """Formats an error with actionable suggestions into a Rich Panel."""
    error_type = type(error).__name__
    error_msg = str(error)

    suggestions_map = {
        "ConfigurationError": [
            "• Check feed_url and core_package in bin/updater.ini.",
            "• Run `feedupdater init --feed-url <URL>` to create a configuration.",
        ],
        "FeedUnavailable": [
            "• The package feed could not be reached.",
            "• Installed packages remain usable; try again later.",
        ],
        "ManifestNotFound": [
            "• The package is not published for this interface version.",
            "• Run `feedupdater available` to list published packages.",
        ],
        "ManifestInvalid": [
            "• A package manifest is malformed or incomplete.",
            "• Remove or repair the manifest named in the message.",
        ],
        "DuplicatePackage": [
            "• Two files in bin/installed-packages declare the same package.",
            "• Delete the stale manifest file.",
        ],
        "InvalidPackageHash": [
            "• The downloaded archive did not match its manifest and was discarded.",
            "• Run the command again to download it afresh.",
        ],
        "DependencyStillRequired": [
            "• Uninstall the dependent package first.",
        ],
    }

    suggestions = suggestions_map.get(
        error_type, ["• Run the command with -vv for detailed logs."]
    )

    error_text = Text()
    error_text.append(f"{error_type}: ", style="bold red")
    error_text.append(error_msg)

    content = Table.grid(padding=(1, 0))
    content.add_row(error_text)
    content.add_row()
    content.add_row(Text("Suggestions", style="bold yellow"))
    content.add_row(Text("\n".join(suggestions)))

    if context:
        content.add_row()
        content.add_row(Text(f"Context: {context}", style="dim"))

    return Panel(
        content,
        title="[bold red]An Error Occurred[/bold red]",
        border_style="red",
        expand=False,
    )


def print_config(config_path: Path, config: UpdaterConfig, interface_version: str):
    """Displays the effective configuration."""
    console = Console()
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="bold cyan")
    table.add_column()

    table.add_row("Install Root:", str(config.install_root))
    table.add_row("Feed URL:", config.feed_url or "[dim]not configured[/dim]")
    table.add_row(
        "Interface Version:",
        f"[green]{interface_version}[/green]" if interface_version else "[yellow]disabled[/yellow]",
    )
    table.add_row("Core Package:", config.core_package)
    table.add_row("Download Attempts:", str(config.download_attempts))
    table.add_row("Replacement Patterns:", ", ".join(config.replacement_patterns))

    console.print(
        Panel(table, title=f"Configuration ([dim]{config_path}[/dim])", border_style="cyan")
    )


def print_packages_table(
    title: str,
    packages: Mapping[str, str],
    compare_to: Mapping[str, str] | None = None,
):
    """Displays a name/version table, highlighting versions that differ from `compare_to`."""
    console = Console()
    if not packages:
        console.print(f"[dim]{title}: none.[/dim]")
        return

    changes = version_changes(compare_to, packages) if compare_to else {}
    table = Table(title=title)
    table.add_column("Package", style="cyan")
    table.add_column("Version", style="green")
    if compare_to is not None:
        table.add_column("Installed", style="dim")

    for name in sorted(packages):
        row = [name, packages[name]]
        if compare_to is not None:
            installed = compare_to.get(name, "")
            if name in changes:
                row[1] = f"[bold yellow]{packages[name]}[/bold yellow]"
            row.append(installed or "-")
        table.add_row(*row)
    console.print(table)


def print_summary_panel(stats: UpdateStats, duration_s: float, restart_required: bool):
    """Displays the final summary of an updater session."""
    console = Console()
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="bold cyan", justify="right", width=20)
    table.add_column(style="white", justify="left")

    table.add_row(
        "✓ Installed:",
        f"[bold green]{', '.join(stats.packages_installed) or 'none'}[/bold green]",
    )
    if stats.packages_repaired:
        table.add_row("⚠ Repaired:", f"[yellow]{', '.join(stats.packages_repaired)}[/yellow]")
    if stats.packages_uninstalled:
        table.add_row("✗ Uninstalled:", ", ".join(stats.packages_uninstalled))
    table.add_row(
        "Downloads:",
        f"{stats.archives_downloaded} ({format_size(stats.bytes_downloaded)}), "
        f"{stats.cache_hits} from cache",
    )
    table.add_row("Time Elapsed:", f"[blue]{format_duration(duration_s)}[/blue]")
    if restart_required:
        table.add_row(
            "Restart:",
            f"[bold yellow]required ({stats.files_deferred} file(s) staged)[/bold yellow]",
        )

    console.print(
        Panel(table, title="[bold]Update Summary[/bold]", border_style="green", expand=False)
    )

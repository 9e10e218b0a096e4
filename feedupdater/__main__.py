"""
Console entry point: runs the CLI and turns updater errors into exit codes.
"""

import logging
import os
import sys

from rich.console import Console

from feedupdater.cli.app import app
from feedupdater.cli.formatters import format_error_with_suggestions
from feedupdater.exceptions import ConfigurationError, FeedUnavailable, UpdaterError

# sysexits.h codes, so service managers can tell a bad setup from a flaky feed.
EXIT_CODES = {
    ConfigurationError: getattr(os, "EX_CONFIG", 78),
    FeedUnavailable: getattr(os, "EX_UNAVAILABLE", 69),
}


def exit_code_for(error: UpdaterError) -> int:
    for error_type, code in EXIT_CODES.items():
        if isinstance(error, error_type):
            return code
    return 1


def main() -> None:
    console = Console(stderr=True)
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted; the installation is left as committed.[/yellow]")
        sys.exit(130)
    except UpdaterError as e:
        console.print(format_error_with_suggestions(e))
        sys.exit(exit_code_for(e))
    except Exception as e:
        console.print(format_error_with_suggestions(e, {"type": "Unexpected"}))
        logging.getLogger("feedupdater").debug("Full traceback:", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()

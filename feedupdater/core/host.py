"""
Host application contract and startup sequence.

The updater never looks up host code by name at runtime. A host implements
`HostApplication` and is registered with a `HostRegistry`, either directly or
through the `feedupdater.hosts` entry-point group.
"""

import asyncio
import logging
import subprocess
import sys
from concurrent.futures import Future, ThreadPoolExecutor
from importlib.metadata import entry_points
from typing import Callable, Dict, List, Protocol, Sequence, runtime_checkable

from feedupdater.exceptions import ConfigurationError, UpdaterError

from .events import LogSink
from .updater import PackageUpdater

log = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "feedupdater.hosts"

# Exit code telling a service manager to restart the service after an update.
EXIT_RESTART_REQUIRED = 75


@runtime_checkable
class HostApplication(Protocol):
    """Capabilities the updater needs from the application it keeps up to date."""

    is_running_as_service: bool

    def start(self, args: Sequence[str], log_sink: LogSink) -> bool:
        """Runs the application; returns False if it failed to start."""
        ...

    def shutdown(self) -> None:
        ...


HostFactory = Callable[[], HostApplication]


class HostRegistry:
    """Explicit registry of host application factories."""

    def __init__(self) -> None:
        self._factories: Dict[str, HostFactory] = {}

    def register(self, name: str, factory: HostFactory) -> None:
        self._factories[name] = factory

    def load_entry_points(self) -> int:
        """Registers every factory published under the `feedupdater.hosts` group."""
        loaded = 0
        for ep in entry_points(group=ENTRY_POINT_GROUP):
            if ep.name not in self._factories:
                self._factories[ep.name] = ep.load()
                loaded += 1
        return loaded

    def names(self) -> List[str]:
        return sorted(self._factories)

    def create(self, name: str) -> HostApplication:
        try:
            factory = self._factories[name]
        except KeyError:
            raise ConfigurationError(
                f"No host application registered as '{name}'. "
                f"Known hosts: {', '.join(self.names()) or 'none'}."
            ) from None
        return factory()


async def prepare_installation(updater: PackageUpdater) -> None:
    """Checks for updates, then verifies and repairs the installation."""
    try:
        await updater.check_for_updates()
        await updater.verify_installation()
    finally:
        await updater.close_feed()


def prepare_in_background(updater: PackageUpdater) -> "Future[None]":
    """Runs `prepare_installation` on a dedicated updater thread."""
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="feedupdater")
    future = executor.submit(asyncio.run, prepare_installation(updater))
    executor.shutdown(wait=False)
    return future


def restart_process(args: Sequence[str]) -> None:
    """Starts a fresh copy of the current program with `args`."""
    command = [sys.executable, sys.argv[0], *args]
    log.info("Restarting to complete the update...")
    subprocess.Popen(command)


def run_host(
    updater: PackageUpdater,
    host_factory: HostFactory,
    args: Sequence[str],
    restart: Callable[[Sequence[str]], None] = restart_process,
) -> int:
    """
    Brings the installation up to date, then runs the host application.

    Returns:
        The process exit code: 0 on success, 1 if the installation could not
        be verified or the host failed, `EXIT_RESTART_REQUIRED` for services
        that must be restarted by their service manager.
    """
    host = host_factory()
    try:
        prepare_in_background(updater).result()
    except UpdaterError as e:
        log.error(f"[red]✗ Installation could not be verified, not starting: {e}[/red]")
        return 1

    if updater.is_restart_required:
        if host.is_running_as_service:
            log.info("Update staged; the service must be restarted to complete it.")
            return EXIT_RESTART_REQUIRED
        restart(args)
        return 0

    try:
        started = host.start(list(args), updater.events.emit)
    finally:
        host.shutdown()
    return 0 if started else 1

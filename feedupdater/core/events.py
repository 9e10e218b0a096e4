"""
Multi-subscriber broadcast of updater log events.

Consumers such as a tray icon or a log window subscribe a callable receiving
`(severity, message)`. `BroadcastHandler` bridges the standard `logging`
records of the `feedupdater` logger onto a broadcaster.
"""

import logging
import threading
from typing import Callable, List

from rich.errors import MarkupError
from rich.text import Text

LogSink = Callable[[str, str], None]


class LogBroadcaster:
    """Delivers `(severity, message)` events to every current subscriber."""

    def __init__(self) -> None:
        self._subscribers: List[LogSink] = []
        self._lock = threading.Lock()

    def subscribe(self, sink: LogSink) -> None:
        with self._lock:
            self._subscribers.append(sink)

    def unsubscribe(self, sink: LogSink) -> None:
        with self._lock:
            if sink in self._subscribers:
                self._subscribers.remove(sink)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def emit(self, severity: str, message: str) -> None:
        """
        Sends one event to the subscribers registered at call time.

        Subscribers may detach themselves (or others) while the event is being
        delivered; the list is snapshotted before iterating.
        """
        with self._lock:
            subscribers = tuple(self._subscribers)
        for sink in subscribers:
            try:
                sink(severity, message)
            except Exception as e:
                # Don't route through the feedupdater logger: it feeds this broadcaster.
                logging.getLogger("feedupdater_events").debug(
                    f"Log subscriber {sink!r} failed: {e}"
                )


class BroadcastHandler(logging.Handler):
    """A logging handler that forwards records to a LogBroadcaster without rich markup."""

    def __init__(self, broadcaster: LogBroadcaster, level: int = logging.INFO):
        super().__init__(level)
        self.broadcaster = broadcaster

    def emit(self, record: logging.LogRecord) -> None:
        try:
            message = Text.from_markup(record.getMessage()).plain
        except MarkupError:
            message = record.getMessage()
        self.broadcaster.emit(record.levelname.lower(), message)

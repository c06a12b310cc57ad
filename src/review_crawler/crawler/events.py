"""
Observer channel for crawl sessions.

Delivery is best effort: a listener that raises is logged and skipped,
and never affects the session. Every log event is also written to the
application logger.
"""

import logging
from typing import Any, Callable

from review_crawler.utils.logging import get_logger

logger = get_logger(__name__)

ProgressListener = Callable[[dict[str, Any]], None]
LogListener = Callable[[str, str], None]
CompleteListener = Callable[[dict[str, Any]], None]

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class SessionEvents:
    """
    Fan-out of progress, log and completion events.

    Example:
        >>> events = SessionEvents()
        >>> events.on_progress(lambda snap: print(snap["current_page"]))
        >>> events.log("Started", "info")
    """

    def __init__(self) -> None:
        self._progress: list[ProgressListener] = []
        self._log: list[LogListener] = []
        self._complete: list[CompleteListener] = []

    def on_progress(self, listener: ProgressListener) -> None:
        self._progress.append(listener)

    def on_log(self, listener: LogListener) -> None:
        self._log.append(listener)

    def on_complete(self, listener: CompleteListener) -> None:
        self._complete.append(listener)

    def progress(self, snapshot: dict[str, Any]) -> None:
        for listener in self._progress:
            self._deliver(listener, snapshot)

    def log(self, text: str, level: str = "info") -> None:
        logger.log(_LEVELS.get(level.lower(), logging.INFO), text)
        for listener in self._log:
            self._deliver(listener, text, level)

    def complete(self, snapshot: dict[str, Any]) -> None:
        for listener in self._complete:
            self._deliver(listener, snapshot)

    @staticmethod
    def _deliver(listener: Callable[..., None], *args: Any) -> None:
        try:
            listener(*args)
        except Exception as e:
            logger.warning(f"Event listener {getattr(listener, '__name__', listener)!r} failed: {e}")


class RecordingEvents(SessionEvents):
    """SessionEvents that also keeps everything it delivered."""

    def __init__(self) -> None:
        super().__init__()
        self.progress_events: list[dict[str, Any]] = []
        self.log_events: list[tuple[str, str]] = []
        self.complete_events: list[dict[str, Any]] = []

    def progress(self, snapshot: dict[str, Any]) -> None:
        self.progress_events.append(snapshot)
        super().progress(snapshot)

    def log(self, text: str, level: str = "info") -> None:
        self.log_events.append((text, level))
        super().log(text, level)

    def complete(self, snapshot: dict[str, Any]) -> None:
        self.complete_events.append(snapshot)
        super().complete(snapshot)

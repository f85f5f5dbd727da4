"""
=============================================================================
NOTIFIERS: HOW THE CORE TALKS TO ITS HOST
=============================================================================

The connection never renders anything. It reports what happened to a
Notifier, and the host decides what that means (print it, append it to a
text widget, put it in a log...).

=============================================================================
THREADING CONTRACT
=============================================================================

Notifier methods are called from the connection's BACKGROUND thread
(and sometimes from whichever thread called send()/close()).

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   Connection thread                       Host thread (UI, console)  │
    │         │                                          │                 │
    │         ├── notifier.notify("RECEIVE: hi")         │                 │
    │         │        │                                 │                 │
    │         │        └──► queue.put(...) ─────────────►│ drain()         │
    │         │                                          │   print(...)    │
    │         ▼                                          ▼                 │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Rules for implementations:
1. Never block for long: the connection may be holding its state lock.
2. Never assume you run on the host's thread; hand work off if the
   host needs that (QueueNotifier does exactly this).

=============================================================================
"""

import logging
import queue
import sys
from abc import ABC, abstractmethod
from typing import List, Optional, TextIO, Tuple


logger = logging.getLogger(__name__)


# Event kinds used by QueueNotifier
NOTIFY = "notify"
ESTABLISHED = "established"
CLOSED = "closed"

Event = Tuple[str, Optional[str]]


class Notifier(ABC):
    """
    Sink for connection events.

    =========================================================================
    EVENTS
    =========================================================================

        notify(text)       A transcript line (status or message).
        on_established()   State became CONNECTED: enable sending,
                           disable "start connection" controls.
        on_closed()        The connection is over (fires exactly once):
                           disable sending, re-enable "start" controls.

    =========================================================================
    """

    @abstractmethod
    def notify(self, text: str) -> None:
        """Deliver one human-readable transcript line."""
        pass

    def on_established(self) -> None:
        """Connection transitioned to CONNECTED."""

    def on_closed(self) -> None:
        """Connection terminated, for any reason."""


class LoggingNotifier(Notifier):
    """Sends every event to a logger. Useful for headless peers."""

    def __init__(self, log: Optional[logging.Logger] = None, level: int = logging.INFO):
        self.log = log or logger
        self.level = level

    def notify(self, text: str) -> None:
        self.log.log(self.level, text)

    def on_established(self) -> None:
        self.log.log(self.level, "established")

    def on_closed(self) -> None:
        self.log.log(self.level, "closed")


class PrintNotifier(Notifier):
    """
    Writes transcript lines to a text stream (stdout by default).

    Only safe to call from a single thread at a time; wrap it in a
    QueueNotifier when events come from a background thread.
    """

    def __init__(self, stream: Optional[TextIO] = None):
        self.stream = stream or sys.stdout

    def notify(self, text: str) -> None:
        print(text, file=self.stream, flush=True)


class QueueNotifier(Notifier):
    """
    Hands events off to another thread through a queue.

    This is the "post it to the UI thread" primitive: the connection's
    thread only does a non-blocking put(), and the host thread later calls
    drain() (or get()) and replays each event on a target notifier.

    Usage:
        target = PrintNotifier()
        bridge = QueueNotifier()
        conn = Connection.listen(1501, bridge)

        while True:                         # host thread
            for kind, text in bridge.drain(target, timeout=0.1):
                if kind == CLOSED:
                    return
    """

    def __init__(self):
        self._queue: "queue.Queue[Event]" = queue.Queue()

    def notify(self, text: str) -> None:
        self._queue.put((NOTIFY, text))

    def on_established(self) -> None:
        self._queue.put((ESTABLISHED, None))

    def on_closed(self) -> None:
        self._queue.put((CLOSED, None))

    def get(self, timeout: Optional[float] = None) -> Optional[Event]:
        """
        Take the next event, waiting up to ``timeout`` seconds.

        Returns:
            (kind, text) tuple, or None if nothing arrived in time.
        """
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(
        self,
        target: Optional[Notifier] = None,
        timeout: Optional[float] = None,
    ) -> List[Event]:
        """
        Take every pending event, replaying each one on ``target``.

        Waits up to ``timeout`` seconds for the first event, then takes
        whatever else is already queued without waiting.

        Returns:
            The events taken, in the order they were posted.
        """
        events: List[Event] = []
        first = self.get(timeout=timeout)
        if first is None:
            return events
        events.append(first)
        while True:
            try:
                events.append(self._queue.get_nowait())
            except queue.Empty:
                break

        if target is not None:
            for kind, text in events:
                dispatch(target, kind, text)
        return events


def dispatch(target: Notifier, kind: str, text: Optional[str] = None) -> None:
    """Call the ``target`` method matching an event kind."""
    if kind == NOTIFY:
        target.notify(text or "")
    elif kind == ESTABLISHED:
        target.on_established()
    elif kind == CLOSED:
        target.on_closed()
    else:
        raise ValueError(f"Unknown event kind: {kind}")

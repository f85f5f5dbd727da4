"""
=============================================================================
CORE CHAT COMPONENTS
=============================================================================

Everything that touches a socket lives here. The host (console, GUI,
tests) only ever talks to a Connection and listens through a Notifier.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                          CONNECTION                                  │
    │  ─────────────────────────────────────────────────────────────────  │
    │  • Listens for one peer, or dials one                               │
    │  • Background thread: handshake, then the read loop                 │
    │  • send() / close() from any thread                                 │
    └─────────────────────────────────────────────────────────────────────┘
                                    │
                                    │ transcript lines + lifecycle events
                                    ▼
    ┌─────────────────────────────────────────────────────────────────────┐
    │                           NOTIFIER                                   │
    │  ─────────────────────────────────────────────────────────────────  │
    │  • notify(text), on_established(), on_closed()                      │
    │  • QueueNotifier hands events to the host's own thread              │
    └─────────────────────────────────────────────────────────────────────┘
"""

from .connection import (
    Connection,
    ConnectionMode,
    ConnectionState,
    InvalidTransitionError,
)
from .notifier import LoggingNotifier, Notifier, PrintNotifier, QueueNotifier
from . import messages

__all__ = [
    "Connection",              # One chat session over one TCP socket
    "ConnectionMode",          # LISTENER or INITIATOR
    "ConnectionState",         # LISTENING / CONNECTING / CONNECTED / CLOSED
    "InvalidTransitionError",  # State machine misuse (a bug, not a network error)
    "Notifier",                # Event sink interface
    "LoggingNotifier",
    "PrintNotifier",
    "QueueNotifier",
    "messages",                # Transcript line texts
]

"""
=============================================================================
LINECHAT - Two-Peer Line Chat Over a Direct TCP Connection
=============================================================================

One peer listens on a port, the other connects to it, and then both can
type lines of text at each other until either side disconnects.

=============================================================================
PACKAGE STRUCTURE
=============================================================================

    linechat/
    ├── __init__.py          # This file - package exports
    ├── __main__.py          # CLI entry point (python -m linechat)
    ├── config.py            # ChatConfig dataclass, port parsing
    ├── console.py           # Terminal host: stdin -> send, events -> stdout
    └── core/
        ├── connection.py    # Connection state machine (the core)
        ├── notifier.py      # Notifier interface and implementations
        └── messages.py      # Transcript line texts

=============================================================================
QUICK START
=============================================================================

    from linechat import Connection, ChatConfig, PrintNotifier

    # Peer A
    a = Connection.listen(1501, PrintNotifier())

    # Peer B (another process or machine)
    b = Connection.connect("localhost", 1501, PrintNotifier())
    b.send("hello")      # A prints:  RECEIVE:  hello
    b.close()            # A prints:  CONNECTION CLOSED FROM OTHER SIDE

=============================================================================
"""

__version__ = "1.0.0"

from .config import ChatConfig, parse_port
from .core import (
    Connection,
    ConnectionMode,
    ConnectionState,
    LoggingNotifier,
    Notifier,
    PrintNotifier,
    QueueNotifier,
)

__all__ = [
    "ChatConfig",
    "parse_port",
    "Connection",
    "ConnectionMode",
    "ConnectionState",
    "Notifier",
    "LoggingNotifier",
    "PrintNotifier",
    "QueueNotifier",
    "__version__",
]

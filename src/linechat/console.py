"""
=============================================================================
CONSOLE HOST
=============================================================================

A terminal front end for one chat session. It plays the role a window
plays in a GUI chat: it starts the connection, forwards what the user
types, and shows the transcript.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   input thread            Connection thread          main thread     │
    │   ────────────            ─────────────────          ───────────     │
    │   stdin.readline()                                                   │
    │        │                                                             │
    │        └──► conn.send() ──► socket                                  │
    │                             socket ──► QueueNotifier.notify()        │
    │                                              │                       │
    │                                              └──────► drain()        │
    │                                                        print()       │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Only the main thread writes to stdout, so lines never interleave.

Commands typed on stdin:
    /quit       Disconnect (end-of-input does the same)
    anything    Sent to the peer as one line
"""

import logging
import sys
import threading
from typing import Optional, TextIO

from .config import ChatConfig
from .core import Connection, ConnectionState, PrintNotifier, QueueNotifier
from .core import notifier as events


logger = logging.getLogger(__name__)

QUIT_COMMAND = "/quit"


class ChatConsole:
    """
    Runs one chat session against stdin/stdout.

    Usage:
        console = ChatConsole(ChatConfig())
        exit_code = console.listen(1501)        # blocks until closed
    """

    def __init__(
        self,
        config: Optional[ChatConfig] = None,
        stdin: Optional[TextIO] = None,
        stdout: Optional[TextIO] = None,
        poll_interval: float = 0.2,
    ):
        self.config = config or ChatConfig()
        self.stdin = stdin or sys.stdin
        self.stdout = stdout or sys.stdout
        self.poll_interval = poll_interval

        self._bridge = QueueNotifier()
        self._transcript = PrintNotifier(self.stdout)
        self.connection: Optional[Connection] = None

    def listen(self, port: int) -> int:
        """Wait for a peer on ``port`` and chat until closed."""
        return self._run(Connection.listen(port, self._bridge, self.config))

    def connect(self, host: str, port: int) -> int:
        """Dial ``host``:``port`` and chat until closed."""
        return self._run(Connection.connect(host, port, self._bridge, self.config))

    def _run(self, connection: Connection) -> int:
        self.connection = connection

        input_thread = threading.Thread(
            target=self._forward_input,
            name=f"Input-{connection.id}",
            daemon=True,
        )
        input_thread.start()

        try:
            self._pump_events()
        except KeyboardInterrupt:
            # Ctrl+C: disconnect, but still show the final lines
            logger.info("Interrupted, closing connection")
            connection.close()
            self._pump_events()

        connection.join(timeout=self.config.connect_timeout)
        return 0

    def _pump_events(self) -> None:
        """Print events on this thread until the connection reports closed."""
        while True:
            taken = self._bridge.drain(self._transcript, timeout=self.poll_interval)
            if any(kind == events.CLOSED for kind, _ in taken):
                return

    def _forward_input(self) -> None:
        """Send each typed line; close on /quit or end of input."""
        conn = self.connection
        conn.wait_for_state(ConnectionState.CONNECTED, ConnectionState.CLOSED)

        for line in self.stdin:
            if conn.state is ConnectionState.CLOSED:
                return
            text = line.rstrip("\r\n")
            if text.strip() == QUIT_COMMAND:
                break
            conn.send(text)

        conn.close()

"""
=============================================================================
CONNECTION MANAGEMENT
=============================================================================

This module owns the one TCP session between two chat peers: opening it
(as listener or initiator), reading lines from the peer, sending lines to
the peer, and shutting everything down exactly once.

=============================================================================
TWO WAYS TO OPEN A SESSION
=============================================================================

    LISTENER (passive)                      INITIATOR (active)
    ──────────────────                      ──────────────────
    socket() / bind() / listen()            socket()
    accept()   ◄──────── TCP handshake ──── connect(host, port)
    close the listening socket
    (only ONE peer is ever accepted)

After that both sides are identical: a full-duplex byte stream carrying
newline-terminated text lines. There is no application handshake.

=============================================================================
ONE BACKGROUND THREAD, ONE LOCK
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   Caller thread (UI / console)        Connection thread              │
    │   ────────────────────────────        ─────────────────              │
    │   Connection.listen(...)  ──starts──►  bind / accept  (blocks)       │
    │                                        or connect     (blocks)       │
    │                                             │                        │
    │   send("hi") ───► write + flush             ▼                        │
    │                                        readline()     (blocks)       │
    │   close() ──► shutdown(socket) ───────► readline() fails / EOF      │
    │                                             │                        │
    │                                             ▼                        │
    │                                        _clean_up()  (always, once)   │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Every read or write of the state goes through ONE Condition. A snapshot of
the state is never trusted across a blocking call: the thread re-checks it
under the lock after every accept/connect/readline.

Closing the socket is the only way to cancel a blocking call. That makes
the resulting exception EXPECTED when the state is already CLOSED, so such
errors are logged at DEBUG and never shown to the user.

=============================================================================
CONNECTION STATE MACHINE
=============================================================================

    LISTENING ───┐
                 ├──────► CONNECTED ──────► CLOSED
    CONNECTING ──┘                            ▲
         │                                    │
         └──────────────(fail / close)────────┘

    CLOSED is terminal. Closing twice is a no-op.

=============================================================================
"""

import logging
import re
import socket
import threading
import uuid
from enum import Enum
from typing import Callable, Optional, Tuple

from ..config import ChatConfig
from . import messages
from .notifier import Notifier


logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    """Lifecycle states of a chat connection."""
    LISTENING = "listening"    # Passive socket bound, waiting for one peer
    CONNECTING = "connecting"  # Dialing the remote peer
    CONNECTED = "connected"    # Lines can flow both ways
    CLOSED = "closed"          # Terminal; create a new Connection to chat again


class ConnectionMode(Enum):
    """Which side of the TCP handshake this peer plays."""
    LISTENER = "listener"
    INITIATOR = "initiator"


_TRANSITIONS = {
    ConnectionState.LISTENING: {ConnectionState.CONNECTED, ConnectionState.CLOSED},
    ConnectionState.CONNECTING: {ConnectionState.CONNECTED, ConnectionState.CLOSED},
    ConnectionState.CONNECTED: {ConnectionState.CLOSED},
    ConnectionState.CLOSED: set(),
}

# Same terminators the reader accepts (universal newlines)
_LINE_BREAK = re.compile(r"\r\n|\r|\n")


class InvalidTransitionError(RuntimeError):
    """Raised when code tries to move the state machine backwards."""


SocketFactory = Callable[..., socket.socket]


class Connection:
    """
    One peer-to-peer chat session over a single TCP socket.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    Connection Responsibilities                       │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │  1. ESTABLISHMENT (background thread)                                │
    │     └── Listener: bind, accept ONE peer, drop the listening socket   │
    │     └── Initiator: dial (host, port)                                 │
    │                                                                      │
    │  2. DUPLEX I/O                                                       │
    │     └── Read loop on the background thread, one line at a time      │
    │     └── send() from any thread, independent of the read loop        │
    │                                                                      │
    │  3. STATE DISCIPLINE                                                 │
    │     └── All state access under one lock                             │
    │     └── Lines that arrive after close() are never reported          │
    │                                                                      │
    │  4. SHUTDOWN                                                         │
    │     └── close(): idempotent, any thread, any state                  │
    │     └── cleanup: runs once, fires on_closed() exactly once          │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

    The constructor starts the background thread immediately; use the
    ``listen()`` / ``connect()`` classmethods rather than calling it directly.

    Usage:
        conn = Connection.connect("localhost", 1501, notifier)
        conn.wait_for_state(ConnectionState.CONNECTED, timeout=5)
        conn.send("hello")
        conn.close()

    Attributes:
        mode: LISTENER or INITIATOR, fixed at construction.
        endpoint: (host, port). The host is "" (all interfaces) for a listener.
        notifier: Receives transcript lines and lifecycle events.
        config: Encoding and timing settings.
        id: Short identifier used in log lines.
    """

    def __init__(
        self,
        mode: ConnectionMode,
        endpoint: Tuple[str, int],
        notifier: Notifier,
        config: Optional[ChatConfig] = None,
        socket_factory: SocketFactory = socket.socket,
    ):
        """
        Store the session parameters and start the background thread.

        No network operation happens here; the thread does all of them.

        Args:
            mode: Listener or initiator.
            endpoint: (host, port) to dial, or ("", port) to bind.
            notifier: Event sink; called from the background thread.
            config: Optional settings, defaults used if omitted.
            socket_factory: Creates the underlying sockets. Tests pass a
                            double here; production code never needs to.
        """
        self.mode = mode
        self.endpoint = endpoint
        self.notifier = notifier
        self.config = config or ChatConfig()
        self.id = str(uuid.uuid4())[:8]
        self._socket_factory = socket_factory

        # ─────────────────────────────────────────────────────────────────
        # SHARED STATE (guarded by _lock)
        # ─────────────────────────────────────────────────────────────────
        # RLock because notifier callbacks may call back into close().
        # The Condition lets callers wait for a state change.
        # Blocking socket writes never happen under _lock: they are
        # serialized by _write_lock instead, so close() can always run.

        self._lock = threading.Condition(threading.RLock())
        self._write_lock = threading.Lock()
        if mode is ConnectionMode.LISTENER:
            self._state = ConnectionState.LISTENING
        else:
            self._state = ConnectionState.CONNECTING

        # ─────────────────────────────────────────────────────────────────
        # OWNED HANDLES (released in _clean_up)
        # ─────────────────────────────────────────────────────────────────

        self._listener: Optional[socket.socket] = None
        self._socket: Optional[socket.socket] = None
        self._reader = None
        self._writer = None

        self._bound_port: Optional[int] = None
        self._bound = threading.Event()

        if mode is ConnectionMode.INITIATOR:
            host, port = endpoint
            self.notifier.notify(messages.connecting(host, port))

        self._thread = threading.Thread(
            target=self._run,
            name=f"Connection-{self.id}",
            daemon=True,
        )
        self._thread.start()

    # =========================================================================
    # CONSTRUCTORS
    # =========================================================================

    @classmethod
    def listen(
        cls,
        port: int,
        notifier: Notifier,
        config: Optional[ChatConfig] = None,
        **kwargs,
    ) -> "Connection":
        """Wait on ``port`` (all interfaces) for exactly one peer."""
        return cls(ConnectionMode.LISTENER, ("", port), notifier, config, **kwargs)

    @classmethod
    def connect(
        cls,
        host: str,
        port: int,
        notifier: Notifier,
        config: Optional[ChatConfig] = None,
        **kwargs,
    ) -> "Connection":
        """Dial the peer listening at ``host``:``port``."""
        return cls(ConnectionMode.INITIATOR, (host, port), notifier, config, **kwargs)

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def state(self) -> ConnectionState:
        """Current state, read under the lock."""
        with self._lock:
            return self._state

    @property
    def host(self) -> str:
        return self.endpoint[0]

    @property
    def port(self) -> int:
        return self.endpoint[1]

    def __repr__(self) -> str:
        return (
            f"Connection(id={self.id!r}, mode={self.mode.value}, "
            f"endpoint={self.endpoint!r}, state={self.state.value})"
        )

    # =========================================================================
    # WAITING (for hosts and tests)
    # =========================================================================

    def wait_for_state(self, *states: ConnectionState, timeout: Optional[float] = None) -> bool:
        """
        Block until the state is one of ``states``.

        Returns:
            True if reached, False on timeout.
        """
        with self._lock:
            return self._lock.wait_for(lambda: self._state in states, timeout)

    def wait_until_listening(self, timeout: Optional[float] = None) -> Optional[int]:
        """
        Block until the listening socket is bound.

        Returns:
            The bound port (useful when listening on port 0), or None if
            the connection closed before binding or the wait timed out.
        """
        if self.mode is not ConnectionMode.LISTENER:
            raise RuntimeError("Only a listener binds a port")
        self._bound.wait(timeout)
        return self._bound_port

    def join(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for the background thread to finish its cleanup.

        Returns:
            True if the thread has finished.
        """
        self._thread.join(timeout)
        return not self._thread.is_alive()

    # =========================================================================
    # STATE MACHINE
    # =========================================================================

    def _set_state(self, new: ConnectionState) -> None:
        """Move to ``new``. The caller must hold the lock."""
        old = self._state
        if new is old and new is ConnectionState.CLOSED:
            return
        if new not in _TRANSITIONS[old]:
            raise InvalidTransitionError(f"{old.value} -> {new.value}")
        self._state = new
        logger.debug(f"[{self.id}] {old.value} -> {new.value}")
        self._lock.notify_all()

    # =========================================================================
    # PUBLIC OPERATIONS
    # =========================================================================

    def send(self, message: str) -> None:
        """
        Send a message to the peer and echo it to the transcript.

        Ignored unless the state is CONNECTED. Fire-and-forget: a write
        failure is reported through the notifier and closes the connection;
        nothing is raised to the caller.

        Line breaks inside ``message`` split it: every piece goes out (and
        is echoed) as its own line, so the peer sees exactly the lines it
        would have read. Only ``\\r\\n``, ``\\r`` and ``\\n`` count as line
        breaks; other Unicode separators such as U+2028 stay inside the
        line. An empty message sends one empty line.

        Text the configured codec cannot encode (a lone surrogate, for
        instance) is sent as ``?`` rather than failing the send.

        May block while the OS send buffer is full. The state lock is not
        held meanwhile, so close() from another thread still goes through
        and the blocked write then ends quietly.
        """
        for line in _LINE_BREAK.split(message):
            with self._write_lock:
                with self._lock:
                    if self._state is not ConnectionState.CONNECTED:
                        logger.debug(f"[{self.id}] send ignored in state {self._state.value}")
                        return
                    self.notifier.notify(messages.sent(line))
                    writer = self._writer

                try:
                    writer.write(line + "\n")
                    writer.flush()
                except (OSError, ValueError) as e:
                    self._send_failed(e)
                    return
            logger.debug(f"[{self.id}] >> {line!r}")

    def _send_failed(self, error: Exception) -> None:
        """Report a failed write, unless close() caused it."""
        with self._lock:
            if self._state is ConnectionState.CLOSED:
                logger.debug(f"[{self.id}] Write ended by close: {error}")
                return
            logger.warning(f"[{self.id}] Send failed: {error}")
            self.notifier.notify(messages.SEND_FAILED)
            self.close()

    def close(self) -> None:
        """
        Close the connection. Safe from any thread, any number of times.

        Sets the state to CLOSED, then shuts down whichever socket exists:

        - the data socket, so a readline() blocked in the background
          thread returns and the read loop sees CLOSED;
        - otherwise the listening socket, so a blocked accept() fails.

        Errors caused by this are expected and not reported to the user.
        The background thread then runs the cleanup.
        """
        with self._lock:
            if self._state is not ConnectionState.CLOSED:
                logger.debug(f"[{self.id}] close requested in state {self._state.value}")
            self._set_state(ConnectionState.CLOSED)
            if self._socket is not None:
                _shutdown_and_close(self._socket)
            elif self._listener is not None:
                _shutdown_and_close(self._listener)

    # =========================================================================
    # BACKGROUND THREAD
    # =========================================================================

    def _run(self) -> None:
        """
        Body of the background thread.

        Opens the connection, runs the read loop, and ALWAYS cleans up.
        No exception ever leaves this method.
        """
        try:
            if self.mode is ConnectionMode.LISTENER:
                sock = self._accept_peer()
            else:
                sock = self._dial_peer()

            if sock is not None and self._connection_opened(sock):
                self._read_loop()

        except Exception as e:
            # ─────────────────────────────────────────────────────────────
            # REPORT, UNLESS WE CAUSED IT
            # ─────────────────────────────────────────────────────────────
            # After close(), a failing accept/connect/readline is the
            # expected side effect of shutting the socket down.

            with self._lock:
                if self._state is ConnectionState.CLOSED:
                    logger.debug(f"[{self.id}] Suppressed error after close: {e!r}")
                else:
                    if isinstance(e, (OSError, ValueError)):
                        logger.warning(f"[{self.id}] Connection error: {e}")
                    else:
                        logger.exception(f"[{self.id}] Unexpected error: {e}")
                    self.notifier.notify(messages.error(e))

        finally:
            self._clean_up()

    def _accept_peer(self) -> Optional[socket.socket]:
        """
        Listener handshake: bind, announce, accept one peer.

        Returns:
            The peer's socket, or None if closed before a peer arrived.

        Raises:
            OSError: bind/listen/accept failed.
        """
        host, port = self.endpoint
        listener = self._socket_factory(socket.AF_INET, socket.SOCK_STREAM)
        try:
            # Allow an immediate restart on the same port (TIME_WAIT)
            listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            listener.bind((host, port))
            listener.listen(1)
            # Wake up periodically to re-check the state under the lock
            listener.settimeout(self.config.accept_poll_interval)
        except OSError:
            _close_quietly(listener)
            raise

        with self._lock:
            if self._state is ConnectionState.CLOSED:
                _close_quietly(listener)
                return None
            self._listener = listener
            self._bound_port = listener.getsockname()[1]
            self.notifier.notify(messages.listening(self._bound_port))
        self._bound.set()
        logger.info(f"[{self.id}] Listening on port {self._bound_port}")

        while True:
            with self._lock:
                if self._state is ConnectionState.CLOSED:
                    return None
            try:
                peer, address = listener.accept()
                break
            except socket.timeout:
                continue

        # Single use: nobody else gets accepted on this socket
        with self._lock:
            self._listener = None
        _close_quietly(listener)

        logger.info(f"[{self.id}] Accepted peer {address[0]}:{address[1]}")
        return peer

    def _dial_peer(self) -> Optional[socket.socket]:
        """
        Initiator handshake: connect to (host, port).

        The host is resolved with getaddrinfo() and every address is tried
        in order (IPv4 or IPv6) until one accepts, the way
        socket.create_connection() does.

        Each socket is registered before connect() so that close() can shut
        it down mid-dial; every attempt is also bounded by connect_timeout.

        Returns:
            The connected socket, or None if closed before dialing.

        Raises:
            OSError: resolution or every connection attempt failed.
        """
        host, port = self.endpoint
        addresses = socket.getaddrinfo(host, port, type=socket.SOCK_STREAM)

        error: Optional[OSError] = None
        for family, type_, proto, _, address in addresses:
            sock = self._socket_factory(family, type_, proto)

            with self._lock:
                if self._state is ConnectionState.CLOSED:
                    _close_quietly(sock)
                    return None
                self._socket = sock

            logger.debug(f"[{self.id}] Dialing {address[0]}:{address[1]}")
            try:
                sock.settimeout(self.config.connect_timeout)
                sock.connect(address)
                return sock
            except OSError as e:
                error = e
                with self._lock:
                    if self._socket is sock:
                        self._socket = None
                _close_quietly(sock)

        raise error

    def _connection_opened(self, sock: socket.socket) -> bool:
        """
        Adopt the data socket and enter CONNECTED.

        If close() won the race while accept()/connect() was returning, the
        socket is discarded and "established" is never reported.

        Returns:
            True if the connection is now CONNECTED.
        """
        with self._lock:
            if self._state is ConnectionState.CLOSED:
                logger.debug(f"[{self.id}] Closed during handshake, discarding socket")
                _shutdown_and_close(sock)
                return False

            # Reads block until a line, EOF, or shutdown; no timeout
            sock.settimeout(None)
            self._socket = sock
            encoding = self.config.encoding
            self._reader = sock.makefile("r", encoding=encoding, errors="replace", newline=None)
            self._writer = sock.makefile("w", encoding=encoding, errors="replace", newline="\n")

            self._set_state(ConnectionState.CONNECTED)
            logger.info(f"[{self.id}] Connection established")
            self.notifier.notify(messages.ESTABLISHED)
            self.notifier.on_established()
        return True

    def _read_loop(self) -> None:
        """
        Report each incoming line until EOF, error, or close.

        ┌─────────────────────────────────────────────────────────────────┐
        │   while state is CONNECTED (checked under the lock):            │
        │       line = readline()          ← blocks                       │
        │       ""      → peer closed      → _closed_from_other_side()    │
        │       "text"  → _received(text)  (dropped if CLOSED meanwhile)  │
        │       error   → propagates to _run()                            │
        └─────────────────────────────────────────────────────────────────┘
        """
        while True:
            with self._lock:
                if self._state is not ConnectionState.CONNECTED:
                    return
                reader = self._reader

            line = reader.readline()
            if not line:
                self._closed_from_other_side()
            else:
                # Universal newlines turned every terminator into "\n"
                if line.endswith("\n"):
                    line = line[:-1]
                self._received(line)

    def _received(self, message: str) -> None:
        """Report a line, unless the connection was closed meanwhile."""
        with self._lock:
            if self._state is ConnectionState.CONNECTED:
                logger.debug(f"[{self.id}] << {message!r}")
                self.notifier.notify(messages.received(message))
            else:
                logger.debug(f"[{self.id}] Dropped line after close: {message!r}")

    def _closed_from_other_side(self) -> None:
        """End-of-stream: the peer hung up. Not an error."""
        with self._lock:
            if self._state is ConnectionState.CONNECTED:
                logger.info(f"[{self.id}] Connection closed by peer")
                self.notifier.notify(messages.CLOSED_BY_PEER)
                self._set_state(ConnectionState.CLOSED)

    def _clean_up(self) -> None:
        """
        Final step of the background thread, whatever happened before.

        1. Force CLOSED.
        2. Tell the notifier the session is over (exactly once per
           Connection, since this thread runs once).
        3. Close every handle still open and drop the references.
        """
        with self._lock:
            self._set_state(ConnectionState.CLOSED)
            self.notifier.notify(messages.CLOSED)
            self.notifier.on_closed()

            handles = (self._writer, self._reader, self._socket, self._listener)
            self._writer = None
            self._reader = None
            self._socket = None
            self._listener = None

        # Wake a send() still blocked in write before closing its file
        if handles[2] is not None:
            _shutdown_and_close(handles[2])

        for handle in handles:
            if handle is not None:
                _close_quietly(handle)

        # Nobody waiting for a bind should hang once we are done
        self._bound.set()
        logger.info(f"[{self.id}] Connection closed")

    # =========================================================================
    # CONTEXT MANAGER
    # =========================================================================

    def __enter__(self) -> "Connection":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Close on exit; the background thread finishes on its own."""
        self.close()
        return False


def _shutdown_and_close(sock: socket.socket) -> None:
    """
    Shut a socket down, then close it.

    shutdown() is what wakes another thread blocked in accept() or
    readline(); close() alone leaves the descriptor alive while the
    reader/writer file objects still reference it.
    """
    try:
        sock.shutdown(socket.SHUT_RDWR)
    except OSError:
        pass  # Not connected yet, or already shut down
    _close_quietly(sock)


def _close_quietly(handle) -> None:
    """Close a socket or stream, ignoring errors from a dead connection."""
    try:
        handle.close()
    except (OSError, ValueError):
        pass

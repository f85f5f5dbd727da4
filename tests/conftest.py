"""
pytest configuration and fixtures.
"""

import queue
import socket
import threading
from typing import Callable, Generator, List, Optional, Tuple
import pytest

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from linechat import ChatConfig, Connection, ConnectionState
from linechat.core import Notifier


class RecordingNotifier(Notifier):
    """Notifier that remembers every event and lets tests wait for one."""

    def __init__(self):
        self.events: List[Tuple[str, Optional[str]]] = []
        self._cond = threading.Condition()

    def notify(self, text: str) -> None:
        self._record(("notify", text))

    def on_established(self) -> None:
        self._record(("established", None))

    def on_closed(self) -> None:
        self._record(("closed", None))

    def _record(self, event: Tuple[str, Optional[str]]) -> None:
        with self._cond:
            self.events.append(event)
            self._cond.notify_all()

    @property
    def lines(self) -> List[str]:
        """Transcript lines, in order."""
        with self._cond:
            return [text for kind, text in self.events if kind == "notify"]

    def count(self, kind: str) -> int:
        with self._cond:
            return sum(1 for k, _ in self.events if k == kind)

    def errors(self) -> List[str]:
        """Lines reporting a caught exception."""
        return [line for line in self.lines if line.startswith("ERROR:  ")]

    def wait_for(self, predicate: Callable[["RecordingNotifier"], bool], timeout: float = 5.0) -> bool:
        with self._cond:
            return self._cond.wait_for(lambda: predicate(self), timeout)

    def wait_for_line(self, text: str, timeout: float = 5.0) -> bool:
        return self.wait_for(lambda n: text in n._lines_unlocked(), timeout)

    def wait_closed(self, timeout: float = 5.0) -> bool:
        return self.wait_for(lambda n: ("closed", None) in n.events, timeout)

    def _lines_unlocked(self) -> List[str]:
        return [text for kind, text in self.events if kind == "notify"]


# =============================================================================
# SOCKET TEST DOUBLE
# =============================================================================

class _FakeReader:
    """Blocking line source fed by the test through FakeSocket.feed()."""

    def __init__(self, sock: "FakeSocket"):
        self._sock = sock

    def readline(self) -> str:
        item = self._sock.incoming.get(timeout=10)
        if item is None:
            return ""
        if isinstance(item, BaseException):
            raise item
        return item

    def close(self) -> None:
        pass


class _FakeWriter:
    """Collects written text; flush() can be told to fail."""

    def __init__(self, sock: "FakeSocket"):
        self._sock = sock
        self._pending: List[str] = []

    def write(self, text: str) -> int:
        self._pending.append(text)
        return len(text)

    def flush(self) -> None:
        if self._sock.write_error is not None:
            raise self._sock.write_error
        self._sock.written.extend(self._pending)
        self._pending.clear()

    def close(self) -> None:
        pass


class FakeSocket:
    """
    Scripted stand-in for socket.socket on the initiator path.

    - connect() waits for ``connect_gate`` and may raise ``connect_error``.
    - Lines handed to feed() come out of the reader in order; hang_up()
      ends the stream; feeding an exception makes readline() raise it.
    - shutdown() ends the stream too, unless ``eof_on_shutdown`` is False,
      which lets a test deliver a line AFTER close().
    """

    def __init__(self, eof_on_shutdown: bool = True):
        self.incoming: "queue.Queue" = queue.Queue()
        self.written: List[str] = []
        self.connect_gate = threading.Event()
        self.connect_gate.set()
        self.connect_error: Optional[BaseException] = None
        self.write_error: Optional[BaseException] = None
        self.eof_on_shutdown = eof_on_shutdown
        self.connected_to: Optional[Tuple[str, int]] = None
        self.timeouts: List[Optional[float]] = []
        self.shutdown_called = False
        self.closed = False
        self.created_with: Optional[tuple] = None

    def factory(self, *args) -> "FakeSocket":
        self.created_with = args
        return self

    def settimeout(self, timeout: Optional[float]) -> None:
        self.timeouts.append(timeout)

    def connect(self, address: Tuple[str, int]) -> None:
        self.connect_gate.wait(10)
        if self.connect_error is not None:
            raise self.connect_error
        self.connected_to = address

    def makefile(self, mode: str, encoding=None, errors=None, newline=None):
        if "r" in mode:
            return _FakeReader(self)
        return _FakeWriter(self)

    def shutdown(self, how: int) -> None:
        self.shutdown_called = True
        if self.eof_on_shutdown:
            self.hang_up()

    def close(self) -> None:
        self.closed = True

    def feed(self, item) -> None:
        self.incoming.put(item)

    def hang_up(self) -> None:
        self.incoming.put(None)


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def config() -> ChatConfig:
    """Test configuration with short timeouts."""
    return ChatConfig(
        host="127.0.0.1",
        port=0,
        connect_timeout=2.0,
        accept_poll_interval=0.05,
    )


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def fake_socket() -> FakeSocket:
    return FakeSocket()


@pytest.fixture
def free_port() -> int:
    """Get a free port for testing."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(('127.0.0.1', 0))
        return s.getsockname()[1]


class ChatPair:
    """A listener and an initiator connected over loopback."""

    def __init__(self, config: ChatConfig):
        self.listener_events = RecordingNotifier()
        self.initiator_events = RecordingNotifier()

        self.listener = Connection.listen(0, self.listener_events, config)
        self.port = self.listener.wait_until_listening(timeout=5.0)
        if self.port is None:
            raise RuntimeError("Listener failed to bind")

        self.initiator = Connection.connect(
            "127.0.0.1", self.port, self.initiator_events, config
        )

        for conn in (self.listener, self.initiator):
            if not conn.wait_for_state(ConnectionState.CONNECTED, timeout=5.0):
                raise RuntimeError(f"{conn} never connected")

    def close(self):
        """Close both sides and wait for their threads."""
        for conn in (self.initiator, self.listener):
            conn.close()
        for conn in (self.initiator, self.listener):
            conn.join(timeout=5.0)


@pytest.fixture
def chat_pair(config: ChatConfig) -> Generator[ChatPair, None, None]:
    """Two connected peers; closed after the test."""
    pair = ChatPair(config)

    yield pair

    pair.close()

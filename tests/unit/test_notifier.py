"""
Unit tests for notifiers and transcript texts.
"""

import io
import logging
import threading

import pytest

from linechat.core import LoggingNotifier, PrintNotifier, QueueNotifier, messages
from linechat.core.notifier import CLOSED, ESTABLISHED, NOTIFY, dispatch

from conftest import RecordingNotifier


class TestMessages:
    """Tests for transcript line formatting."""

    def test_status_lines(self):
        assert messages.listening(1501) == "LISTENING ON PORT 1501"
        assert messages.connecting("localhost", 1501) == "CONNECTING TO localhost ON PORT 1501"

    def test_message_lines_keep_text_unmodified(self):
        assert messages.sent("  hi  ") == "SEND:    hi  "
        assert messages.received("a\tb") == "RECEIVE:  a\tb"

    def test_error_includes_exception_type(self):
        exc = ConnectionRefusedError(111, "Connection refused")
        assert messages.error(exc) == "ERROR:  ConnectionRefusedError: [Errno 111] Connection refused"

    def test_error_without_detail(self):
        assert messages.error(OSError()) == "ERROR:  OSError"


class TestQueueNotifier:
    """Tests for the thread hand-off notifier."""

    def test_events_keep_order(self):
        """Test that events come out in the order they were posted."""
        bridge = QueueNotifier()
        bridge.notify("one")
        bridge.on_established()
        bridge.notify("two")
        bridge.on_closed()

        assert bridge.drain(timeout=0.1) == [
            (NOTIFY, "one"),
            (ESTABLISHED, None),
            (NOTIFY, "two"),
            (CLOSED, None),
        ]

    def test_drain_replays_on_target(self):
        """Test that drain() calls the matching target methods."""
        bridge = QueueNotifier()
        target = RecordingNotifier()
        bridge.notify("hello")
        bridge.on_closed()

        bridge.drain(target, timeout=0.1)

        assert target.events == [("notify", "hello"), ("closed", None)]

    def test_drain_times_out_empty(self):
        assert QueueNotifier().drain(timeout=0.01) == []

    def test_get_returns_none_on_timeout(self):
        assert QueueNotifier().get(timeout=0.01) is None

    def test_events_cross_threads(self):
        """Test posting from one thread and draining on another."""
        bridge = QueueNotifier()
        poster = threading.Thread(target=lambda: [bridge.notify(str(i)) for i in range(20)])
        poster.start()
        poster.join()

        taken = []
        while len(taken) < 20:
            taken.extend(bridge.drain(timeout=1.0))

        assert [text for _, text in taken] == [str(i) for i in range(20)]


class TestDispatch:
    """Tests for dispatch()."""

    def test_unknown_kind(self):
        with pytest.raises(ValueError, match="Unknown event kind"):
            dispatch(RecordingNotifier(), "bogus")


class TestPrintNotifier:
    """Tests for PrintNotifier."""

    def test_writes_one_line_per_event(self):
        stream = io.StringIO()
        target = PrintNotifier(stream)

        target.notify("CONNECTION ESTABLISHED")
        target.on_established()
        target.notify("RECEIVE:  hi")
        target.on_closed()

        assert stream.getvalue() == "CONNECTION ESTABLISHED\nRECEIVE:  hi\n"


class TestLoggingNotifier:
    """Tests for LoggingNotifier."""

    def test_logs_every_event(self, caplog):
        log = logging.getLogger("linechat.test.peer")
        target = LoggingNotifier(log, level=logging.INFO)

        with caplog.at_level(logging.INFO, logger="linechat.test.peer"):
            target.notify("RECEIVE:  hi")
            target.on_established()
            target.on_closed()

        assert [r.getMessage() for r in caplog.records] == [
            "RECEIVE:  hi",
            "established",
            "closed",
        ]

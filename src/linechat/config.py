"""
=============================================================================
CHAT CONFIGURATION
=============================================================================

Centralized configuration for both peers of a chat session.

=============================================================================
WHO VALIDATES WHAT?
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    VALIDATION BOUNDARY                              │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   Caller layer (console, GUI, tests)                                │
    │      └── parse_port("1501")        ← user text becomes an int      │
    │      └── ChatConfig.validate()     ← fail fast on bad settings     │
    │                                                                      │
    │   Core (Connection)                                                 │
    │      └── trusts host/port it is given                               │
    │      └── still handles a failed bind/dial as a network error       │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
CONFIGURATION SOURCES
=============================================================================

Priority (highest to lowest):

    1. Command-line arguments      python -m linechat connect --port 3000
    2. Environment variables       CHAT_PORT=3000 python -m linechat listen
    3. Default values              (in this dataclass)

=============================================================================
"""

import codecs
import os
from dataclasses import dataclass


MIN_PORT = 0
MAX_PORT = 65535


def parse_port(value) -> int:
    """
    Turn user-supplied text into a port number.

    Port 0 is accepted: for a listener it means "let the OS pick".

    Args:
        value: Text (or int) typed by the user.

    Returns:
        The port as an int in 0..65535.

    Raises:
        ValueError: If the value is not a legal port number.
    """
    try:
        port = int(str(value).strip())
    except ValueError:
        raise ValueError(f"{value} is not a legal port number.") from None
    if not MIN_PORT <= port <= MAX_PORT:
        raise ValueError(f"{value} is not a legal port number.")
    return port


@dataclass
class ChatConfig:
    """
    Configuration for a chat connection.

    =========================================================================
    CONFIGURATION GROUPS
    =========================================================================

    ENDPOINT DEFAULTS
    - host, port

    WIRE
    - encoding

    TIMING
    - connect_timeout, accept_poll_interval

    LOGGING
    - log_level

    =========================================================================
    """

    # ─────────────────────────────────────────────────────────────────────
    # ENDPOINT DEFAULTS
    # ─────────────────────────────────────────────────────────────────────

    host: str = "localhost"
    """
    Host an initiator dials when none is given.
    """

    port: int = 1501
    """
    Port a listener binds / an initiator dials when none is given.
    0 lets the OS choose a free port (listener only).
    """

    # ─────────────────────────────────────────────────────────────────────
    # WIRE
    # ─────────────────────────────────────────────────────────────────────

    encoding: str = "utf-8"
    """
    The one text encoding both peers use. There is no negotiation.
    """

    # ─────────────────────────────────────────────────────────────────────
    # TIMING
    # ─────────────────────────────────────────────────────────────────────

    connect_timeout: float = 10.0
    """
    Seconds a dial may block before it fails.
    """

    accept_poll_interval: float = 0.5
    """
    Seconds accept() waits before waking up to re-check the state.
    A close() during accept is noticed within this interval at worst.
    """

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING
    # ─────────────────────────────────────────────────────────────────────

    log_level: str = "WARNING"
    """
    Logging level (DEBUG, INFO, WARNING, ERROR).
    Logs go to stderr; the transcript goes through the notifier.
    """

    @classmethod
    def from_env(cls) -> "ChatConfig":
        """
        Create configuration from environment variables.

        =====================================================================
        ENVIRONMENT VARIABLES
        =====================================================================

        CHAT_HOST             Default remote host (default: localhost)
        CHAT_PORT             Default port (default: 1501)
        CHAT_ENCODING         Wire encoding (default: utf-8)
        CHAT_CONNECT_TIMEOUT  Dial timeout in seconds (default: 10)
        CHAT_LOG_LEVEL        Logging level (default: WARNING)

        =====================================================================
        """
        return cls(
            host=os.getenv("CHAT_HOST", "localhost"),
            port=parse_port(os.getenv("CHAT_PORT", "1501")),
            encoding=os.getenv("CHAT_ENCODING", "utf-8"),
            connect_timeout=float(os.getenv("CHAT_CONNECT_TIMEOUT", "10")),
            log_level=os.getenv("CHAT_LOG_LEVEL", "WARNING"),
        )

    def validate(self) -> None:
        """
        Validate configuration values.

        Called once by the caller layer before any connection is made,
        so a bad setting is reported before a socket is ever opened.
        """
        parse_port(self.port)

        if not self.host or not self.host.strip():
            raise ValueError("host must be a non-empty string")

        try:
            codecs.lookup(self.encoding)
        except LookupError:
            raise ValueError(f"Unknown encoding: {self.encoding}") from None

        if self.connect_timeout <= 0:
            raise ValueError("connect_timeout must be > 0")

        if self.accept_poll_interval <= 0:
            raise ValueError("accept_poll_interval must be > 0")

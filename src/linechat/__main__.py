"""
=============================================================================
LINECHAT CLI ENTRY POINT
=============================================================================

    # Peer A: wait for someone on port 1501
    python -m linechat listen --port 1501

    # Peer B: connect to peer A
    python -m linechat connect 192.168.1.20 --port 1501

    # Defaults come from the environment
    CHAT_PORT=4000 python -m linechat listen

Type a line and press Enter to send it. /quit or Ctrl+D disconnects.

Transcript lines go to stdout; log lines go to stderr.
"""

import argparse
import logging
import sys

from . import __version__
from .config import ChatConfig, parse_port
from .console import ChatConsole


def _setup_logging(level_name: str) -> None:
    """Configure logging based on the chosen level."""
    level = getattr(logging, level_name.upper(), logging.WARNING)

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
    )

    logging.getLogger("linechat").setLevel(level)


def build_parser(config: ChatConfig) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="linechat",
        description="Two-peer line chat over a direct TCP connection",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m linechat listen                     # Wait on the default port
  python -m linechat listen --port 4000         # Wait on port 4000
  python -m linechat connect                    # Dial the default host/port
  python -m linechat connect example.org -p 4000
        """,
    )

    parser.add_argument(
        "--log-level", "-l",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=config.log_level.upper(),
        help=f"Logging level (default: {config.log_level.upper()})",
    )

    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"linechat {__version__}",
    )

    sub = parser.add_subparsers(dest="role", required=True)

    # ─────────────────────────────────────────────────────────────────────
    # LISTENER
    # ─────────────────────────────────────────────────────────────────────

    listen = sub.add_parser("listen", help="Wait for one peer to connect")
    listen.add_argument(
        "--port", "-p",
        default=str(config.port),
        help=f"Port to listen on (default: {config.port}, 0 = any free port)",
    )

    # ─────────────────────────────────────────────────────────────────────
    # INITIATOR
    # ─────────────────────────────────────────────────────────────────────

    connect = sub.add_parser("connect", help="Connect to a listening peer")
    connect.add_argument(
        "host",
        nargs="?",
        default=config.host,
        help=f"Host to connect to (default: {config.host})",
    )
    connect.add_argument(
        "--port", "-p",
        default=str(config.port),
        help=f"Port to connect to (default: {config.port})",
    )

    return parser


def main(argv=None) -> int:
    """
    Main CLI entry point.

    Returns:
        Process exit code: 0 after a session, 2 on bad input.
    """
    try:
        config = ChatConfig.from_env()
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    parser = build_parser(config)
    args = parser.parse_args(argv)

    # ─────────────────────────────────────────────────────────────────────
    # VALIDATE INPUT (the core trusts what it is given)
    # ─────────────────────────────────────────────────────────────────────

    try:
        port = parse_port(args.port)
        if args.role == "connect":
            if not args.host.strip():
                raise ValueError("Host name must not be empty.")
            config.host = args.host.strip()
        config.port = port
        config.log_level = args.log_level
        config.validate()
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    _setup_logging(config.log_level)

    console = ChatConsole(config)
    if args.role == "listen":
        return console.listen(config.port)
    return console.connect(config.host, config.port)


# =============================================================================
# ENTRY POINT
# =============================================================================

if __name__ == "__main__":
    sys.exit(main())

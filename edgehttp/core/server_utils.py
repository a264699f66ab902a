"""
Utility functions for server configuration and operation.

This module provides core functionality for:
- Event loop setup and optimization with uvloop
- Process signal setup (SIGPIPE masking)
- Listening socket option tuning
- Logging setup, including structured JSON access logs

The utilities in this module are called once during bootstrap; nothing here
keeps server state.
"""

import asyncio
import logging
import signal
import socket
import sys
from typing import Any, Optional

from pythonjsonlogger.json import JsonFormatter

from .errors import EngineInitError

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

logger = logging.getLogger("edgehttp")
access_logger = logging.getLogger("edgehttp.access")

# Try to import uvloop for better performance on Linux/macOS
try:
    import uvloop

    UVLOOP_AVAILABLE = True
except ImportError:
    UVLOOP_AVAILABLE = False


def configure_logging(level=logging.INFO, log_file=None, json_format=False):
    """Configure logging for the server.

    Args:
        level: Logging level (default: INFO)
        log_file: Optional path to log file
        json_format: Emit server records as JSON objects

    Returns:
        Configured logger instance
    """
    logger.setLevel(level)
    logger.handlers.clear()

    if json_format:
        formatter = JsonFormatter("%(asctime)s %(levelname)s %(name)s %(message)s")
    else:
        formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    # Access records are always structured
    access_logger.handlers.clear()
    access_handler = logging.StreamHandler(sys.stderr)
    access_handler.setFormatter(JsonFormatter("%(asctime)s %(name)s %(message)s"))
    access_logger.addHandler(access_handler)
    access_logger.propagate = False

    return logger


def access_log(method: str, path: str, status: int, length: int,
               duration: float, client: str, protocol: str) -> None:
    """Emit one structured access record."""
    if not access_logger.isEnabledFor(logging.INFO):
        return
    access_logger.info(
        "request",
        extra={
            "method": method,
            "path": path,
            "status": status,
            "length": length,
            "duration_s": round(duration, 6),
            "client": client,
            "protocol": protocol,
        },
    )


def ignore_sigpipe() -> None:
    """Ignore SIGPIPE so a peer closing mid-write cannot kill the process."""
    if hasattr(signal, "SIGPIPE"):
        signal.signal(signal.SIGPIPE, signal.SIG_IGN)


def new_event_loop() -> asyncio.AbstractEventLoop:
    """Create the loop that will own every connection.

    Uses uvloop if:
    1. uvloop is installed
    2. Running on a compatible platform (not Windows)

    Falls back to the default asyncio loop otherwise.

    Raises:
        EngineInitError: If the loop cannot be created
    """
    try:
        if UVLOOP_AVAILABLE and sys.platform != "win32":
            loop = uvloop.new_event_loop()
            logger.debug("Using uvloop event loop")
        else:
            loop = asyncio.new_event_loop()
    except Exception as e:
        logger.error(f"Failed to setup event loop: {e}")
        raise EngineInitError("Failed to initialize event loop") from e
    asyncio.set_event_loop(loop)
    return loop


def configure_listen_socket(sock: socket.socket) -> None:
    """Apply listening socket options.

    Only SO_REUSEADDR is set. SO_REUSEPORT stays off so that
    a second server on a live address fails to bind.
    """
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)


def configure_client_socket(sock: Optional[socket.socket]) -> None:
    """Tune an accepted connection. Failures are not fatal."""
    if sock is None:
        return
    try:
        if sock.family in (socket.AF_INET, socket.AF_INET6):
            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
    except OSError as e:
        logger.debug(f"Failed to set TCP_NODELAY: {e}")


def peer_name(transport: Any) -> str:
    peer = transport.get_extra_info("peername") if transport else None
    if not peer:
        return "unknown"
    return f"{peer[0]}:{peer[1]}"



"""
Listening socket and accept loop.

The listener binds one non-blocking socket, registers it with the event
loop's reader callbacks and hands every accepted connection to the accept
pipeline: a TLS handshake when the context carries an SSLContext, then a
ConnectionProtocol. Failures of a single accept or handshake never stop the
listener.
"""

import asyncio
import errno
import ipaddress
import logging
import socket
import ssl
import weakref
from typing import Optional, Set

from .config import ListenEndpoint
from .context import ServerContext
from .errors import (
    AddressInUseError,
    AddressParseError,
    BindFailedError,
    ListenError,
    SocketCreateError,
)
from .metrics import ACCEPT_ERRORS, TLS_HANDSHAKE_FAILURES
from .protocol import ConnectionProtocol
from .server_utils import configure_listen_socket

logger = logging.getLogger("edgehttp")

# Seconds accept() stays paused after running out of descriptors or memory
ACCEPT_RETRY_DELAY = 1.0

_RESOURCE_ERRNOS = frozenset({errno.EMFILE, errno.ENFILE, errno.ENOBUFS, errno.ENOMEM})


class ListenerHandle:
    """A bound, listening socket registered with the loop.

    Attributes:
        address: Bound address
        port: Bound port, the real one when 0 was requested
    """

    def __init__(self, listener: "Listener", sock: socket.socket):
        self._listener = listener
        self._sock = sock
        self.address, self.port = sock.getsockname()[:2]

    @property
    def closed(self) -> bool:
        return self._sock.fileno() == -1

    def close(self) -> None:
        """Stop accepting and release the socket. Open connections are not touched."""
        if self.closed:
            return
        self._listener.cancel_accept_retry()
        self._listener.loop.remove_reader(self._sock.fileno())
        self._sock.close()

    def __str__(self) -> str:
        return str(ListenEndpoint(self.address, self.port))


class Listener:
    """Accepts connections for one ServerContext."""

    def __init__(self, context: ServerContext,
                 loop: Optional[asyncio.AbstractEventLoop] = None):
        self.context = context
        self._loop = loop
        self.connections: "weakref.WeakSet[ConnectionProtocol]" = weakref.WeakSet()
        self._handshakes: Set[asyncio.Task] = set()
        self._accept_retry: Optional[asyncio.TimerHandle] = None

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def start(self, endpoint: ListenEndpoint) -> ListenerHandle:
        """Bind, listen and start accepting.

        Raises:
            AddressParseError: endpoint.address is not an IP literal
            SocketCreateError: The socket could not be created
            AddressInUseError: The address is already bound
            BindFailedError: bind() failed for another reason
            ListenError: listen() failed
        """
        address, port = endpoint.address, endpoint.port
        try:
            ip = ipaddress.ip_address(address)
        except ValueError:
            raise AddressParseError(f"invalid listen address {address!r}", address, port) from None

        family = socket.AF_INET6 if ip.version == 6 else socket.AF_INET
        try:
            sock = socket.socket(family, socket.SOCK_STREAM)
            configure_listen_socket(sock)
        except OSError as e:
            raise SocketCreateError(f"socket() failed: {e}", address, port) from e

        try:
            sock.bind((str(ip), port))
        except OSError as e:
            sock.close()
            if e.errno == errno.EADDRINUSE:
                raise AddressInUseError(f"address already in use: {endpoint}", address, port) from e
            raise BindFailedError(f"bind() failed: {e}", address, port) from e

        try:
            sock.listen(endpoint.backlog)
        except OSError as e:
            sock.close()
            raise ListenError(f"listen() failed: {e}", address, port) from e

        sock.setblocking(False)
        handle = ListenerHandle(self, sock)
        self.loop.add_reader(sock.fileno(), self._on_readable, sock)
        logger.debug(f"Listening on {handle}")
        return handle

    def _on_readable(self, sock: socket.socket) -> None:
        while True:
            try:
                conn, _ = sock.accept()
            except (BlockingIOError, InterruptedError):
                return
            except OSError as e:
                ACCEPT_ERRORS.inc()
                if e.errno in _RESOURCE_ERRNOS:
                    # The pending connection keeps the socket readable until a descriptor frees up
                    logger.warning(f"accept() failed: [errno {e.errno}] {e.strerror}; "
                                   f"pausing for {ACCEPT_RETRY_DELAY}s")
                    self.loop.remove_reader(sock.fileno())
                    self._accept_retry = self.loop.call_later(
                        ACCEPT_RETRY_DELAY, self._resume_accepting, sock)
                else:
                    # ECONNABORTED, EPERM and friends: drop this round
                    logger.debug(f"accept() failed: [errno {e.errno}] {e.strerror}")
                return
            conn.setblocking(False)
            task = self.loop.create_task(self._accept(conn))
            self._handshakes.add(task)
            task.add_done_callback(self._handshakes.discard)

    @property
    def accept_paused(self) -> bool:
        return self._accept_retry is not None

    def _resume_accepting(self, sock: socket.socket) -> None:
        self._accept_retry = None
        if sock.fileno() != -1:
            self.loop.add_reader(sock.fileno(), self._on_readable, sock)

    def cancel_accept_retry(self) -> None:
        if self._accept_retry is not None:
            self._accept_retry.cancel()
            self._accept_retry = None

    def _protocol_factory(self) -> ConnectionProtocol:
        protocol = ConnectionProtocol(self.context)
        self.connections.add(protocol)
        return protocol

    async def _accept(self, conn: socket.socket) -> None:
        ssl_context = self.context.ssl_context
        try:
            await self.loop.connect_accepted_socket(self._protocol_factory, conn, ssl=ssl_context)
        except (ssl.SSLError, ConnectionError, asyncio.TimeoutError, OSError) as e:
            if ssl_context is not None:
                TLS_HANDSHAKE_FAILURES.inc()
                logger.debug(f"TLS handshake failed: {e}")
            else:
                ACCEPT_ERRORS.inc()
                logger.debug(f"Failed to set up connection: {e}")
            conn.close()

    def abort_connections(self) -> None:
        """Abort every open connection and pending handshake."""
        for task in list(self._handshakes):
            task.cancel()
        for protocol in list(self.connections):
            protocol.abort()

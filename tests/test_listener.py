"""
Tests for the listening socket and accept loop
"""
import asyncio
import errno
import socket
from unittest.mock import patch

import pytest
from prometheus_client import REGISTRY

from edgehttp.core.config import ListenEndpoint, ServerConfig
from edgehttp.core.errors import AddressInUseError, AddressParseError, BindError, BindFailedError
from edgehttp.core.listener import Listener
from edgehttp.core.server import Server


def make_listener(static_root):
    server = Server(ServerConfig(port=0, static_root=static_root))
    return Listener(server.setup(), asyncio.get_running_loop())


def accept_errors():
    return REGISTRY.get_sample_value("edgehttp_accept_errors_total") or 0.0


@pytest.mark.asyncio
async def test_binds_ephemeral_port(static_root):
    listener = make_listener(static_root)
    handle = listener.start(ListenEndpoint("127.0.0.1", 0))
    try:
        assert handle.address == "127.0.0.1"
        assert handle.port > 0
        reader, writer = await asyncio.open_connection("127.0.0.1", handle.port)
        writer.write(b"GET /sayhello HTTP/1.1\r\nHost: localhost\r\nConnection: close\r\n\r\n")
        data = await asyncio.wait_for(reader.read(), timeout=5)
        writer.close()
        assert data.startswith(b"HTTP/1.1 200 OK\r\n")
        assert data.endswith(b"Hello, world\n")
    finally:
        handle.close()
    assert handle.closed


@pytest.mark.asyncio
async def test_double_bind_fails(static_root):
    listener = make_listener(static_root)
    first = listener.start(ListenEndpoint("127.0.0.1", 0))
    try:
        with pytest.raises(AddressInUseError) as info:
            make_listener(static_root).start(ListenEndpoint("127.0.0.1", first.port))
        assert isinstance(info.value, BindError)
        assert info.value.port == first.port
    finally:
        first.close()


@pytest.mark.asyncio
@pytest.mark.parametrize("address", ["localhost", "127.0.0.256", "not an ip", ""])
async def test_address_must_be_ip_literal(static_root, address):
    with pytest.raises(AddressParseError):
        make_listener(static_root).start(ListenEndpoint(address, 0))


@pytest.mark.asyncio
async def test_unavailable_address(static_root):
    # TEST-NET-1 is never assigned to a local interface
    with pytest.raises(BindFailedError):
        make_listener(static_root).start(ListenEndpoint("192.0.2.1", 0))


class FailingSocket:
    """Listening socket stand-in whose accept() fails once.

    With a real socket behind it, later accepts go to that socket;
    without one the backlog looks drained.
    """

    def __init__(self, error, sock=None):
        self.errors = [error]
        self.sock = sock

    def fileno(self):
        return self.sock.fileno() if self.sock is not None else -1

    def accept(self):
        if self.errors:
            raise self.errors.pop()
        if self.sock is None:
            raise BlockingIOError()
        return self.sock.accept()


@pytest.mark.asyncio
async def test_accept_errors_are_swallowed(static_root):
    listener = make_listener(static_root)
    before = accept_errors()

    listener._on_readable(FailingSocket(ConnectionAbortedError(errno.ECONNABORTED, "aborted")))
    listener._on_readable(FailingSocket(PermissionError(errno.EPERM, "Operation not permitted")))

    assert accept_errors() == before + 2
    assert not listener.accept_paused


@pytest.mark.asyncio
async def test_descriptor_exhaustion_pauses_accepting(static_root):
    listener = make_listener(static_root)
    handle = listener.start(ListenEndpoint("127.0.0.1", 0))
    loop = asyncio.get_running_loop()
    before = accept_errors()
    try:
        with patch("edgehttp.core.listener.ACCEPT_RETRY_DELAY", 0.05):
            listener._on_readable(FailingSocket(OSError(errno.EMFILE, "Too many open files"), handle._sock))

        assert accept_errors() == before + 1
        assert listener.accept_paused
        # Nothing is registered for the socket while paused
        assert not loop.remove_reader(handle._sock.fileno())

        for _ in range(100):
            if not listener.accept_paused:
                break
            await asyncio.sleep(0.01)
        assert not listener.accept_paused

        reader, writer = await asyncio.open_connection("127.0.0.1", handle.port)
        writer.write(b"GET /sayhello HTTP/1.1\r\nHost: localhost\r\nConnection: close\r\n\r\n")
        data = await asyncio.wait_for(reader.read(), timeout=5)
        writer.close()
        assert data.endswith(b"Hello, world\n")
    finally:
        handle.close()


@pytest.mark.asyncio
async def test_close_cancels_accept_retry(static_root):
    listener = make_listener(static_root)
    handle = listener.start(ListenEndpoint("127.0.0.1", 0))
    listener._on_readable(FailingSocket(OSError(errno.ENFILE, "Too many open files in system"), handle._sock))
    assert listener.accept_paused

    handle.close()

    assert handle.closed
    assert not listener.accept_paused


@pytest.mark.asyncio
async def test_abort_connections(static_root):
    listener = make_listener(static_root)
    handle = listener.start(ListenEndpoint("127.0.0.1", 0))
    try:
        reader, writer = await asyncio.open_connection("127.0.0.1", handle.port)
        for _ in range(100):
            if listener.connections:
                break
            await asyncio.sleep(0.01)
        assert len(listener.connections) == 1

        listener.abort_connections()
        try:
            data = await asyncio.wait_for(reader.read(), timeout=5)
        except ConnectionResetError:
            data = b""
        assert data == b""
        writer.close()
    finally:
        handle.close()


def test_listen_socket_has_no_reuseport(static_root):
    loop = asyncio.new_event_loop()
    try:
        server = Server(ServerConfig(port=0, static_root=static_root))
        listener = Listener(server.setup(), loop)
        handle = listener.start(ListenEndpoint("127.0.0.1", 0))
        sock = handle._sock
        assert sock.getsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR) != 0
        if hasattr(socket, "SO_REUSEPORT"):
            assert sock.getsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT) == 0
        assert not sock.getblocking()
        handle.close()
    finally:
        loop.close()

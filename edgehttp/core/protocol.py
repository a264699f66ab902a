"""
Per-connection protocol engine glue.

ConnectionProtocol is the asyncio protocol attached to every accepted
connection. Once the transport is up (after the TLS handshake, when TLS is
on) it picks a session from the negotiated ALPN protocol:
- Http1Session: httptools parsing, requests answered strictly in order
- Http2Session: h2 framing, streams dispatched concurrently

Sessions feed bytes to their parser, hand complete requests to the
dispatcher and serialize the results.
"""

"""
Copyright 2025 Chris Bunting
File: protocol.py | Purpose: Per-connection HTTP/1.x and HTTP/2 sessions
@author Chris Bunting | @version 1.3.0

CHANGELOG:
2026-10-18 - Chris Bunting: Replace the WSGI connection handler with route dispatch, pick the session from ALPN
2025-08-20 - Chris Bunting: Add streaming/chunked responses, metrics, health, graceful shutdown
2025-07-10 - Chris Bunting: Initial implementation
"""

import asyncio
import logging
import time
from email.utils import formatdate
from typing import List, Optional, Tuple

from .context import ServerContext
from .dispatch import DispatchResult
from .http_parser import HTTPParser, HTTPParserError, RequestTooLargeError
from .messages import Request, Response, error_response
from .metrics import PROTOCOL_ERRORS
from .server_utils import access_log, configure_client_socket, peer_name

logger = logging.getLogger("edgehttp")

SERVER_NAME = "edgehttp"

# Headers the engine owns; handler values for these are dropped
HOP_BY_HOP = frozenset({
    "connection", "keep-alive", "proxy-connection", "transfer-encoding",
    "upgrade", "te",
})

# Pipelined requests queued beyond this pause reading from the socket
MAX_PIPELINE_DEPTH = 16


def has_body(request: Request, status: int) -> bool:
    return request.method != "HEAD" and status >= 200 and status not in (204, 304)


def response_headers(request: Request, response: Response) -> List[Tuple[str, str]]:
    """Headers to send for a response, with Date/Server/Content-Length filled in."""
    headers = [(k, v) for k, v in response.headers if k.lower() not in HOP_BY_HOP]
    names = {k.lower() for k, _ in headers}
    if "date" not in names:
        headers.append(("Date", formatdate(usegmt=True)))
    if "server" not in names:
        headers.append(("Server", SERVER_NAME))
    if "content-length" not in names and response.status >= 200 and response.status not in (204, 304):
        headers.append(("Content-Length", str(len(response.body))))
    return headers


class ConnectionProtocol(asyncio.Protocol):
    """Entry point for an accepted connection."""

    def __init__(self, context: ServerContext):
        self.context = context
        self.transport = None
        self.session = None

    def abort(self) -> None:
        if self.transport is not None and not self.transport.is_closing():
            self.transport.abort()

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        self.transport = transport
        configure_client_socket(transport.get_extra_info("socket"))
        alpn = None
        ssl_object = transport.get_extra_info("ssl_object")
        if ssl_object is not None:
            alpn = ssl_object.selected_alpn_protocol()
        if alpn == "h2":
            from ..features.http2 import Http2Session
            self.session = Http2Session(self.context, transport)
        else:
            self.session = Http1Session(self.context, transport)
        self.session.connection_made()

    def data_received(self, data: bytes) -> None:
        self.session.data_received(data)

    def eof_received(self) -> Optional[bool]:
        return self.session.eof_received()

    def connection_lost(self, exc: Optional[Exception]) -> None:
        if self.session is not None:
            self.session.connection_lost(exc)

    def pause_writing(self) -> None:
        self.session.pause_writing()

    def resume_writing(self) -> None:
        self.session.resume_writing()


class BaseSession:
    """State shared by the HTTP/1 and HTTP/2 sessions."""

    def __init__(self, context: ServerContext, transport: asyncio.Transport):
        self.context = context
        self.dispatcher = context.dispatcher
        self.transport = transport
        self.client = peer_name(transport)
        self.scheme = context.scheme
        self.loop = asyncio.get_running_loop()
        self.closed = False
        self._can_write = asyncio.Event()
        self._can_write.set()

    def connection_made(self) -> None:
        pass

    def pause_writing(self) -> None:
        self._can_write.clear()

    def resume_writing(self) -> None:
        self._can_write.set()

    async def drain(self) -> None:
        if not self.closed:
            await self._can_write.wait()

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.transport.close()
        self._can_write.set()

    def connection_lost(self, exc: Optional[Exception]) -> None:
        self.closed = True
        self._can_write.set()

    async def dispatch(self, request: Request) -> DispatchResult:
        request.scheme = self.scheme
        request.client = self.client
        return await self.dispatcher.dispatch(request)


class Http1Session(BaseSession):
    """One HTTP/1.x connection.

    Pipelined requests are queued and answered in arrival order; at most
    one request is in dispatch at a time.
    """

    def __init__(self, context: ServerContext, transport: asyncio.Transport):
        super().__init__(context, transport)
        self.parser = HTTPParser(context.max_request_size)
        self._task: Optional[asyncio.Task] = None
        self._pending_error: Optional[Response] = None
        self._eof = False
        self._reading_paused = False
        self._is_ssl = transport.get_extra_info("ssl_object") is not None

    @property
    def busy(self) -> bool:
        return self._task is not None or bool(self.parser.completed)

    def data_received(self, data: bytes) -> None:
        if self.closed or self._pending_error is not None:
            return
        try:
            self.parser.feed_data(data)
        except RequestTooLargeError as e:
            logger.debug(f"{self.client}: {e}")
            self._fail(error_response(413, "Request Entity Too Large"))
        except HTTPParserError as e:
            logger.debug(f"{self.client}: malformed request: {e}")
            PROTOCOL_ERRORS.labels("http/1.1").inc()
            self._fail(error_response(400, "Bad Request"))
        if len(self.parser.completed) >= MAX_PIPELINE_DEPTH and not self._reading_paused:
            self._reading_paused = True
            self.transport.pause_reading()
        self._schedule()

    def eof_received(self) -> Optional[bool]:
        self._eof = True
        if not self.busy:
            self.close()
            return None
        # Pending requests still get answered; TLS transports cannot half-close
        return not self._is_ssl

    def connection_lost(self, exc: Optional[Exception]) -> None:
        super().connection_lost(exc)
        if self._task is not None:
            self._task.cancel()

    def _fail(self, response: Response) -> None:
        self._pending_error = response
        self.transport.pause_reading()

    def _schedule(self) -> None:
        if self._task is None and not self.closed and (self.parser.completed or self._pending_error):
            self._task = self.loop.create_task(self._serve_pending())

    async def _serve_pending(self) -> None:
        try:
            while not self.closed:
                if self.parser.completed:
                    request, keep_alive = self.parser.completed.popleft()
                    if self._reading_paused and len(self.parser.completed) < MAX_PIPELINE_DEPTH // 2:
                        self._reading_paused = False
                        self.transport.resume_reading()
                    await self._serve_one(request, keep_alive)
                elif self._pending_error is not None:
                    error_request = Request(method="GET", path="", client=self.client)
                    self._write(error_request, self._pending_error, close=True)
                    self.close()
                else:
                    break
            if self._eof and not self.parser.completed:
                self.close()
        finally:
            self._task = None

    async def _serve_one(self, request: Request, keep_alive: bool) -> None:
        start = time.perf_counter()
        result = await self.dispatch(request)
        response = result.final_response()
        close = (
            not keep_alive
            or result.close_connection
            or (self.parser.upgrade_requested and not self.parser.completed)
        )
        length = self._write(request, response, close)
        access_log(request.method, request.path, response.status, length,
                   time.perf_counter() - start, self.client, f"HTTP/{request.http_version}")
        await self.drain()
        if close and self._pending_error is None:
            self.close()

    def _write(self, request: Request, response: Response, close: bool) -> int:
        headers = response_headers(request, response)
        if close:
            headers.append(("Connection", "close"))
        elif request.http_version == "1.0":
            headers.append(("Connection", "keep-alive"))
        lines = [f"HTTP/1.1 {response.status} {response.reason}\r\n"]
        lines.extend(f"{name}: {value}\r\n" for name, value in headers)
        lines.append("\r\n")
        body = response.body if has_body(request, response.status) else b""
        self.transport.write("".join(lines).encode("latin-1") + body)
        return len(body)

"""
HTTP/2 protocol support built on the h2 state machine.

This module provides:
- ALPN identifiers for protocol negotiation
- Http2Session, which drives an h2 connection for one TLS transport:
  stream multiplexing, HPACK and flow control are left to h2, the session
  only feeds it bytes, dispatches completed streams and writes responses
  within the peer's flow-control window
"""

import asyncio
import logging
import time
from typing import Dict, List, Optional

from h2.config import H2Configuration
from h2.connection import H2Connection
from h2.errors import ErrorCodes
from h2.events import (
    ConnectionTerminated,
    DataReceived,
    RemoteSettingsChanged,
    RequestReceived,
    StreamEnded,
    StreamReset,
    WindowUpdated,
)
from h2.exceptions import ProtocolError, StreamClosedError
from h2.settings import SettingCodes, Settings

from ..core.context import ServerContext
from ..core.messages import Request, Response, error_response
from ..core.metrics import PROTOCOL_ERRORS
from ..core.protocol import BaseSession, has_body, response_headers
from ..core.server_utils import access_log

logger = logging.getLogger("edgehttp")

H2_ALPN = "h2"
HTTP11_ALPN = "http/1.1"
MAX_CONCURRENT_STREAMS = 100


def alpn_protocols(enable_http2: bool = True) -> List[str]:
    """ALPN identifiers to advertise, most preferred first."""
    if enable_http2:
        return [H2_ALPN, HTTP11_ALPN]
    return [HTTP11_ALPN]


class _Stream:
    """Request state for one open stream."""

    def __init__(self, stream_id: int, headers):
        self.stream_id = stream_id
        self.headers = headers
        self.body: List[bytes] = []
        self.size = 0
        self.rejected = False
        self.window_open = asyncio.Event()
        self.task: Optional[asyncio.Task] = None


class Http2Session(BaseSession):
    """One HTTP/2 connection negotiated through ALPN."""

    def __init__(self, context: ServerContext, transport: asyncio.Transport):
        super().__init__(context, transport)
        self.conn = H2Connection(config=H2Configuration(client_side=False, header_encoding="utf-8"))
        self.conn.local_settings = Settings(
            client=False,
            initial_values={
                SettingCodes.MAX_CONCURRENT_STREAMS: MAX_CONCURRENT_STREAMS,
                SettingCodes.MAX_HEADER_LIST_SIZE: context.max_request_size,
            },
        )
        self.streams: Dict[int, _Stream] = {}

    def connection_made(self) -> None:
        self.conn.initiate_connection()
        self._flush()

    def _flush(self) -> None:
        data = self.conn.data_to_send()
        if data and not self.closed:
            self.transport.write(data)

    def data_received(self, data: bytes) -> None:
        if self.closed:
            return
        try:
            events = self.conn.receive_data(data)
        except ProtocolError as e:
            logger.debug(f"{self.client}: HTTP/2 protocol error: {e}")
            PROTOCOL_ERRORS.labels("h2").inc()
            self._flush()
            self.close()
            return

        for event in events:
            if isinstance(event, RequestReceived):
                self.streams[event.stream_id] = _Stream(event.stream_id, event.headers)
            elif isinstance(event, DataReceived):
                self._on_data(event)
            elif isinstance(event, StreamEnded):
                self._start(event.stream_id)
            elif isinstance(event, StreamReset):
                self._on_reset(event.stream_id)
            elif isinstance(event, WindowUpdated):
                self._open_window(event.stream_id)
            elif isinstance(event, RemoteSettingsChanged):
                self._open_window(0)
            elif isinstance(event, ConnectionTerminated):
                self.close()
        self._flush()

    def eof_received(self) -> Optional[bool]:
        self.close()
        return None

    def connection_lost(self, exc: Optional[Exception]) -> None:
        super().connection_lost(exc)
        for stream in list(self.streams.values()):
            stream.window_open.set()
            if stream.task is not None:
                stream.task.cancel()

    def _on_data(self, event: DataReceived) -> None:
        self.conn.acknowledge_received_data(event.flow_controlled_length, event.stream_id)
        stream = self.streams.get(event.stream_id)
        if stream is None or stream.rejected:
            return
        stream.size += len(event.data)
        if stream.size > self.context.max_request_size:
            stream.rejected = True
            stream.body.clear()
            self._start(event.stream_id)
            return
        stream.body.append(event.data)

    def _start(self, stream_id: int) -> None:
        stream = self.streams.get(stream_id)
        if stream is None or stream.task is not None:
            return
        stream.task = self.loop.create_task(self._serve_stream(stream))

    def _on_reset(self, stream_id: int) -> None:
        stream = self.streams.pop(stream_id, None)
        if stream is None:
            return
        stream.window_open.set()
        if stream.task is not None:
            stream.task.cancel()

    def _open_window(self, stream_id: int) -> None:
        if stream_id == 0:
            for stream in self.streams.values():
                stream.window_open.set()
        elif stream_id in self.streams:
            self.streams[stream_id].window_open.set()

    def _build_request(self, stream: _Stream) -> Request:
        pseudo = {}
        headers: Dict[str, str] = {}
        for name, value in stream.headers:
            if name.startswith(":"):
                pseudo[name] = value
            elif name in headers:
                separator = "; " if name == "cookie" else ", "
                headers[name] = headers[name] + separator + value
            else:
                headers[name] = value
        return Request.from_target(
            pseudo.get(":method", "GET"),
            pseudo.get(":path", "/"),
            headers=headers,
            body=b"".join(stream.body),
            http_version="2",
            authority=pseudo.get(":authority", headers.get("host", "")),
        )

    async def _serve_stream(self, stream: _Stream) -> None:
        start = time.perf_counter()
        request = self._build_request(stream)
        close = False
        try:
            if stream.rejected:
                response = error_response(413, "Request Entity Too Large")
                request.client = self.client
            else:
                result = await self.dispatch(request)
                response = result.final_response()
                close = result.close_connection
            length = await self._send_response(stream, request, response)
            access_log(request.method, request.path, response.status, length,
                       time.perf_counter() - start, self.client, "HTTP/2")
        except StreamClosedError:
            logger.debug(f"{self.client}: stream {stream.stream_id} closed by peer")
        except ProtocolError as e:
            logger.error(f"{self.client}: cannot send response on stream {stream.stream_id}: {e}")
            self._reset(stream.stream_id)
        finally:
            self.streams.pop(stream.stream_id, None)

        if close and not self.closed:
            self.conn.close_connection(error_code=ErrorCodes.INTERNAL_ERROR)
            self._flush()
            self.close()

    def _reset(self, stream_id: int) -> None:
        try:
            self.conn.reset_stream(stream_id, error_code=ErrorCodes.INTERNAL_ERROR)
            self._flush()
        except (ProtocolError, StreamClosedError):
            pass

    async def _send_response(self, stream: _Stream, request: Request, response: Response) -> int:
        sid = stream.stream_id
        headers = [(":status", str(response.status))]
        headers.extend((name.lower(), value) for name, value in response_headers(request, response))
        body = response.body if has_body(request, response.status) else b""

        self.conn.send_headers(sid, headers, end_stream=not body)
        self._flush()

        offset = 0
        while offset < len(body) and not self.closed:
            window = self.conn.local_flow_control_window(sid)
            if window <= 0:
                stream.window_open.clear()
                await stream.window_open.wait()
                continue
            size = min(window, self.conn.max_outbound_frame_size, len(body) - offset)
            end = offset + size >= len(body)
            self.conn.send_data(sid, body[offset:offset + size], end_stream=end)
            self._flush()
            offset += size
            await self.drain()
        return offset

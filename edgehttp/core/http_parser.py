"""
HTTP/1.x request parser using httptools.

This module wraps httptools.HttpRequestParser with:
- A size limit on request line, headers and body combined
- A header count limit
- A queue of completed requests, so pipelined requests arriving in one
  read are all picked up
"""

from collections import deque
from typing import Deque, Dict, List, Optional, Tuple

import httptools

from .messages import Request


class HTTPParserError(Exception):
    """Malformed request; the connection gets a 400 and is closed"""
    pass


class RequestTooLargeError(HTTPParserError):
    """Request exceeded the host's size limit; answered with a 413"""
    pass


class HTTPParser:
    """Parses a stream of HTTP/1.x requests from one connection.

    Constants:
        MAX_HEADERS: Maximum number of headers per request (100)
    """
    MAX_HEADERS = 100

    def __init__(self, max_request_size: int = 65535):
        self.parser = httptools.HttpRequestParser(self)
        self.max_request_size = max_request_size
        self.completed: Deque[Tuple[Request, bool]] = deque()
        self.upgrade_requested = False
        self._reset_message()

    def _reset_message(self) -> None:
        self._url = b""
        self._headers: Dict[str, str] = {}
        self._body: List[bytes] = []
        self._size = 0
        self._headers_count = 0
        self._method = "GET"
        self._keep_alive = False
        self._version = "1.1"

    def _account(self, nbytes: int) -> None:
        self._size += nbytes
        if self._size > self.max_request_size:
            raise RequestTooLargeError(f"Request exceeds {self.max_request_size} bytes")

    def on_message_begin(self) -> None:
        self._reset_message()

    def on_url(self, url: bytes) -> None:
        self._account(len(url))
        self._url += url

    def on_header(self, name: bytes, value: bytes) -> None:
        self._account(len(name) + len(value))
        self._headers_count += 1
        if self._headers_count > self.MAX_HEADERS:
            raise HTTPParserError("Too many headers")
        key = name.decode("latin-1").lower()
        text = value.decode("latin-1")
        if key in self._headers:
            separator = "; " if key == "cookie" else ", "
            self._headers[key] = self._headers[key] + separator + text
        else:
            self._headers[key] = text

    def on_headers_complete(self) -> None:
        self._method = self.parser.get_method().decode("ascii")
        self._keep_alive = self.parser.should_keep_alive()
        self._version = self.parser.get_http_version()

    def on_body(self, body: bytes) -> None:
        self._account(len(body))
        self._body.append(body)

    def on_message_complete(self) -> None:
        path, query = _split_target(self._url)
        request = Request(
            method=self._method.upper(),
            path=path,
            query_string=query,
            headers=self._headers,
            body=b"".join(self._body),
            http_version=self._version,
            authority=self._headers.get("host", ""),
        )
        self.completed.append((request, self._keep_alive))

    def feed_data(self, data: bytes) -> None:
        """Feed raw bytes; completed requests are appended to self.completed.

        Raises:
            RequestTooLargeError: If the current request exceeds the limit
            HTTPParserError: If the bytes are not valid HTTP/1.x
        """
        try:
            self.parser.feed_data(data)
        except httptools.HttpParserUpgrade:
            # Upgrade and CONNECT are not served; what parsed so far is
            # answered and the connection closes afterwards.
            self.upgrade_requested = True
        except httptools.HttpParserError as e:
            if isinstance(e.__context__, HTTPParserError):
                raise e.__context__ from None
            raise HTTPParserError(f"Parser error: {e}") from e


def _split_target(raw: bytes) -> Tuple[str, str]:
    target = raw.decode("latin-1")
    if target.startswith("/"):
        path, _, query = target.partition("?")
        path, _, _ = path.partition("#")
        return path, query
    if target == "*":
        return "*", ""
    try:
        url = httptools.parse_url(raw)
    except httptools.HttpParserInvalidURLError:
        raise HTTPParserError(f"Invalid request target: {target!r}")
    path = (url.path or b"/").decode("latin-1")
    query = (url.query or b"").decode("latin-1")
    return path, query


def parse_request(data: bytes, max_request_size: int = 65535) -> Optional[Request]:
    """Parse a single complete request, mostly useful in tests."""
    parser = HTTPParser(max_request_size)
    parser.feed_data(data)
    return parser.completed[0][0] if parser.completed else None

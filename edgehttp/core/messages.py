"""
Request and response values passed into and out of handlers.
"""

from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Dict, List, Optional, Tuple
from urllib.parse import unquote

from ..optimizations.memory_optimizations import RequestArena


@dataclass
class Request:
    """A parsed request as handed to a handler.

    Attributes:
        method: Request method, upper case
        path: Raw path without the query string
        query_string: Raw query string, without the '?'
        headers: Header map with lower-cased names
        body: Complete request body
        scheme: 'http' or 'https'
        http_version: '1.0', '1.1' or '2'
        authority: Host header or :authority pseudo-header
        client: Peer address as 'ip:port'
        path_info: Remainder of the path below the matched route prefix
        arena: Buffers and cleanups scoped to this request
    """
    method: str
    path: str
    query_string: str = ""
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    scheme: str = "http"
    http_version: str = "1.1"
    authority: str = ""
    client: str = "unknown"
    path_info: str = ""
    arena: Optional[RequestArena] = None

    @classmethod
    def from_target(cls, method: str, target: str, **kwargs) -> "Request":
        """Build a request from a request-target like '/a/b?x=1'."""
        path, _, query = target.partition("?")
        path, _, _ = path.partition("#")
        return cls(method=method.upper(), path=path or "/", query_string=query, **kwargs)

    @property
    def decoded_path_info(self) -> str:
        return unquote(self.path_info or self.path, errors="strict")

    def header(self, name: str, default: str = "") -> str:
        return self.headers.get(name.lower(), default)


@dataclass
class Response:
    """A complete response built by a handler.

    The handler owns the response; the protocol engine only serializes it.
    """
    status: int = 200
    headers: List[Tuple[str, str]] = field(default_factory=list)
    body: bytes = b""
    reason: Optional[str] = None

    def __post_init__(self):
        if self.reason is None:
            self.reason = reason_phrase(self.status)

    def get_header(self, name: str) -> Optional[str]:
        lname = name.lower()
        for key, value in self.headers:
            if key.lower() == lname:
                return value
        return None

    def set_header(self, name: str, value: str) -> None:
        lname = name.lower()
        self.headers = [(k, v) for k, v in self.headers if k.lower() != lname]
        self.headers.append((name, value))

    def add_vary(self, value: str) -> None:
        current = self.get_header("Vary")
        if current is None:
            self.headers.append(("Vary", value))
        elif value.lower() not in [v.strip().lower() for v in current.split(",")]:
            self.set_header("Vary", f"{current}, {value}")


def reason_phrase(status: int) -> str:
    try:
        return HTTPStatus(status).phrase
    except ValueError:
        return ""


def error_response(status: int, message: Optional[str] = None,
                   headers: Optional[List[Tuple[str, str]]] = None) -> Response:
    """Build a short text/plain error response."""
    body = (message if message is not None else reason_phrase(status)).encode("utf-8")
    return Response(
        status=status,
        headers=[("Content-Type", "text/plain; charset=utf-8")] + list(headers or []),
        body=body,
    )

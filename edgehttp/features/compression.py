"""
On-the-fly gzip compression for completed responses.

The filter is attached to a route and runs after the route's handler has
produced a response. Compression is applied when:
1. The client accepts gzip (q-values honoured, q=0 refuses)
2. The response is a 200 without a Content-Encoding
3. The body is at least min_size bytes
4. The content type is text-like

Output is produced with a fixed mtime, so identical requests always get
byte-identical bodies.
"""

import gzip
from typing import Iterable, Optional

from ..core.messages import Request, Response

COMPRESSIBLE_TYPES = frozenset({
    "application/javascript",
    "application/json",
    "application/xml",
    "application/xhtml+xml",
    "application/rss+xml",
    "application/atom+xml",
    "application/manifest+json",
    "image/svg+xml",
})


def is_compressible(content_type: Optional[str],
                    extra_types: Iterable[str] = ()) -> bool:
    if not content_type:
        return False
    base = content_type.split(";", 1)[0].strip().lower()
    return base.startswith("text/") or base in COMPRESSIBLE_TYPES or base in extra_types


def accepts_encoding(accept_encoding: Optional[str], coding: str) -> bool:
    """Check an Accept-Encoding header for a content coding.

    Args:
        accept_encoding: Raw header value, or None/'' when absent
        coding: Coding to look for, e.g. 'gzip'

    Returns:
        True if the coding (or '*') is listed with a non-zero q-value
    """
    if not accept_encoding:
        return False
    coding = coding.lower()
    wildcard = None
    for item in accept_encoding.split(","):
        name, _, params = item.strip().partition(";")
        name = name.strip().lower()
        q = _qvalue(params)
        if name == coding:
            return q > 0
        if name == "*":
            wildcard = q > 0
    return bool(wildcard)


def _qvalue(params: str) -> float:
    for param in params.split(";"):
        key, _, value = param.strip().partition("=")
        if key.strip().lower() == "q":
            try:
                return float(value.strip())
            except ValueError:
                return 0.0
    return 1.0


class CompressionFilter:
    """gzip response filter.

    Args:
        min_size: Smallest body worth compressing; gzip adds ~20 bytes
        level: gzip compression level 1-9
    """

    def __init__(self, min_size: int = 100, level: int = 6,
                 extra_types: Iterable[str] = ()):
        if not 1 <= level <= 9:
            raise ValueError("gzip level must be between 1 and 9")
        self.min_size = min_size
        self.level = level
        self.extra_types = frozenset(t.lower() for t in extra_types)

    def apply(self, request: Request, response: Response) -> Response:
        if response.status != 200:
            return response
        if response.get_header("Content-Encoding") is not None:
            return response
        if not is_compressible(response.get_header("Content-Type"), self.extra_types):
            return response

        response.add_vary("Accept-Encoding")
        if len(response.body) < self.min_size:
            return response
        if not accepts_encoding(request.header("accept-encoding"), "gzip"):
            return response

        compressed = gzip.compress(response.body, compresslevel=self.level, mtime=0)
        if len(compressed) >= len(response.body):
            return response

        response.body = compressed
        response.set_header("Content-Encoding", "gzip")
        if response.get_header("Content-Length") is not None:
            response.set_header("Content-Length", str(len(compressed)))
        etag = response.get_header("ETag")
        if etag and etag.endswith('"'):
            response.set_header("ETag", etag[:-1] + '-gzip"')
        return response

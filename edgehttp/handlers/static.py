"""
Static file handler.

Maps the part of the path below its mount point onto a directory and serves
the file found there. Features:
- Path traversal protection (403, never a filesystem error)
- Directory index and trailing-slash redirects
- MIME type detection
- ETag / Last-Modified validators with 304 responses
- Pre-compressed ``.gz`` siblings, served as-is to clients that accept gzip
  and decompressed on the fly for clients that do not

All filesystem work runs in the loop's default executor so a slow disk never
stalls the event loop.
"""

import asyncio
import gzip
import logging
import mimetypes
import os
import stat
from dataclasses import dataclass
from email.utils import formatdate, parsedate_to_datetime
from pathlib import Path
from typing import Optional, Union

from ..core.messages import Request, Response, error_response
from ..features.compression import accepts_encoding
from ..optimizations.memory_optimizations import OptimizedBuffer
from .base import Handler

logger = logging.getLogger("edgehttp")

ALLOWED_METHODS = ("GET", "HEAD")


@dataclass
class _Resolved:
    """Outcome of mapping a request onto the filesystem."""
    path: Optional[Path] = None
    size: int = 0
    mtime: float = 0.0
    content_type: str = "application/octet-stream"
    encoding: Optional[str] = None
    gunzip: bool = False
    has_gzip_variant: bool = False
    escaped: bool = False
    status: int = 200


class StaticFileHandler(Handler):
    """Serves files below a root directory.

    Args:
        root_dir: Directory to serve. Nothing outside it is ever read.
        index_file: File served for directory requests
    """

    def __init__(self, root_dir: Union[str, Path], index_file: str = "index.html"):
        self.root_dir = Path(root_dir).resolve()
        self.index_file = index_file
        if not self.root_dir.is_dir():
            logger.warning(f"Static root {self.root_dir} is not a directory; every file lookup will 404")

    async def handle(self, request: Request) -> Optional[Response]:
        if request.method not in ALLOWED_METHODS:
            return error_response(405, headers=[("Allow", ", ".join(ALLOWED_METHODS))])

        try:
            rel_path = request.decoded_path_info
        except UnicodeDecodeError:
            return error_response(400, "Bad Request")
        if not _is_clean(rel_path):
            logger.warning(f"Path traversal attempt from {request.client}: {request.path}")
            return error_response(403, "Forbidden")

        accept_gzip = accepts_encoding(request.header("accept-encoding"), "gzip")
        loop = asyncio.get_running_loop()
        try:
            found = await loop.run_in_executor(None, self._resolve, rel_path, accept_gzip)
        except PermissionError:
            logger.error(f"Permission denied resolving {request.path}")
            return error_response(500, "Internal Server Error")

        if found.escaped:
            logger.warning(f"Path traversal attempt from {request.client}: {request.path}")
            return error_response(403, "Forbidden")
        if found.status == 301:
            location = request.path + "/"
            if request.query_string:
                location += "?" + request.query_string
            return error_response(301, "Moved Permanently", headers=[("Location", location)])
        if found.status != 200:
            return error_response(found.status)

        headers = [
            ("Content-Type", found.content_type),
            ("Last-Modified", formatdate(found.mtime, usegmt=True)),
            ("ETag", _etag(found)),
        ]
        if found.encoding:
            headers.append(("Content-Encoding", found.encoding))
        if found.has_gzip_variant:
            headers.append(("Vary", "Accept-Encoding"))

        if _not_modified(request, found):
            return Response(status=304, headers=headers[1:])

        # HEAD gets the full GET response so filters see the same body; the
        # session drops the body on the wire
        buffer = request.arena.get_buffer() if request.arena is not None else OptimizedBuffer()
        try:
            body = await _run_to_completion(loop, _read_file, found, buffer)
        except FileNotFoundError:
            return error_response(404)
        except OSError as e:
            logger.error(f"Error reading {found.path}: {e}")
            return error_response(500, "Internal Server Error")
        return Response(status=200, headers=headers, body=body)

    def _contains(self, target: Path) -> bool:
        try:
            resolved = target.resolve()
        except (OSError, RuntimeError):
            return False
        return resolved == self.root_dir or self.root_dir in resolved.parents

    def _resolve(self, rel_path: str, accept_gzip: bool) -> _Resolved:
        """Runs in the executor. Raises PermissionError for unreadable paths."""
        target = self.root_dir / rel_path.lstrip("/")
        if not self._contains(target):
            return _Resolved(status=403, escaped=True)
        st = _stat(target)
        if st is not None and stat.S_ISDIR(st.st_mode):
            if not rel_path.endswith("/"):
                return _Resolved(status=301)
            target = target / self.index_file
            if _stat(target) is None and _stat(_gz_sibling(target)) is None:
                return _Resolved(status=403)
        elif rel_path.endswith("/") and rel_path != "/":
            return _Resolved(status=404)

        content_type = mimetypes.guess_type(target.name)[0] or "application/octet-stream"
        gz_path = _gz_sibling(target)
        gz_st = _stat(gz_path)
        plain_st = _stat(target)
        if plain_st is not None and not stat.S_ISREG(plain_st.st_mode):
            plain_st = None
        if gz_st is not None and not stat.S_ISREG(gz_st.st_mode):
            gz_st = None

        if gz_st is not None and accept_gzip:
            return _Resolved(gz_path, gz_st.st_size, gz_st.st_mtime, content_type,
                             encoding="gzip", has_gzip_variant=True)
        if plain_st is not None:
            return _Resolved(target, plain_st.st_size, plain_st.st_mtime, content_type,
                             has_gzip_variant=gz_st is not None)
        if gz_st is not None:
            return _Resolved(gz_path, gz_st.st_size, gz_st.st_mtime, content_type,
                             gunzip=True, has_gzip_variant=True)
        return _Resolved(status=404)


def _is_clean(rel_path: str) -> bool:
    if "\x00" in rel_path or "\\" in rel_path:
        return False
    return not any(segment == ".." for segment in rel_path.split("/"))


async def _run_to_completion(loop: asyncio.AbstractEventLoop, func, *args):
    """Run func in the executor, outliving cancellation of the caller.

    The worker writes into a buffer leased from the request arena, so the
    caller must not unwind (and release the arena) before the worker is done.
    """
    future = loop.run_in_executor(None, func, *args)
    try:
        return await asyncio.shield(future)
    except asyncio.CancelledError:
        while not future.done():
            try:
                await asyncio.wait({future})
            except asyncio.CancelledError:
                pass
        raise


def _gz_sibling(path: Path) -> Path:
    return path.with_name(path.name + ".gz")


def _stat(path: Path) -> Optional[os.stat_result]:
    try:
        return os.stat(path)
    except PermissionError:
        raise
    except OSError:
        return None


def _read_file(found: _Resolved, buffer: OptimizedBuffer) -> bytes:
    """Runs in the executor."""
    chunks = []
    with open(found.path, "rb") as fh:
        while True:
            view = buffer.read_into(fh)
            if view is None:
                break
            chunks.append(bytes(view))
    data = b"".join(chunks)
    if found.gunzip:
        data = gzip.decompress(data)
    return data


def _etag(found: _Resolved) -> str:
    tag = f"{int(found.mtime):x}-{found.size:x}"
    if found.encoding:
        tag += "-" + found.encoding
    elif found.gunzip:
        tag += "-identity"
    return f'"{tag}"'


def _not_modified(request: Request, found: _Resolved) -> bool:
    if_none_match = request.header("if-none-match")
    if if_none_match:
        etag = _etag(found)
        candidates = [c.strip() for c in if_none_match.split(",")]
        variants = (etag, f"W/{etag}", etag[:-1] + '-gzip"')
        return "*" in candidates or any(v in candidates for v in variants)
    if_modified_since = request.header("if-modified-since")
    if if_modified_since:
        try:
            since = parsedate_to_datetime(if_modified_since)
        except (TypeError, ValueError):
            return False
        if since is None:
            return False
        return int(found.mtime) <= int(since.timestamp())
    return False

"""
Memory optimization utilities for request-scoped buffer management.

This module provides:
- Pre-allocated buffers with memoryviews for zero-copy reads
- Buffer pooling to reduce GC pressure
- A per-request arena that leases pooled buffers and releases them,
  together with any registered cleanups, when the request ends
"""

"""
Copyright 2025 Chris Bunting
File: memory_optimizations.py | Purpose: Memory optimization utilities
@author Chris Bunting | @version 1.1.0

CHANGELOG:
2026-10-18 - Chris Bunting: Added RequestArena for request-lifetime leases
2025-07-11 - Chris Bunting: Fixed memory leak in buffer pool
2025-07-10 - Chris Bunting: Initial implementation
"""

import logging
from typing import Callable, List, Optional

logger = logging.getLogger("edgehttp")


class OptimizedBuffer:
    """Pre-allocated buffer with memoryview for zero-copy operations.

    This class provides a reusable buffer with memoryview to minimize
    memory allocations and reduce garbage collection pressure.
    """

    def __init__(self, size=65536):
        """Initialize a new buffer.

        Args:
            size: Size of the buffer in bytes (default: 65536)
        """
        self.buffer = bytearray(size)
        self.view = memoryview(self.buffer)
        self.size = size

    def read_into(self, reader, max_bytes=None):
        """Read directly into pre-allocated buffer.

        Args:
            reader: A binary file object with a readinto method
            max_bytes: Maximum number of bytes to read

        Returns:
            Memoryview of read data, or None at end of file

        Raises:
            OSError: Read errors are left to the caller
        """
        max_bytes = self.size if max_bytes is None else min(max_bytes, self.size)
        bytes_read = reader.readinto(self.view[:max_bytes])
        return self.view[:bytes_read] if bytes_read else None


class MemoryPool:
    """Object pool for reusing buffers and reducing GC pressure.

    Usage:
        pool = MemoryPool()
        buffer = pool.get_buffer()
        # Use buffer...
        pool.return_buffer(buffer)

    The pool is only touched from the event loop thread and from handler
    code running on it, so it needs no locking.
    """

    def __init__(self, buffer_size=65536, pool_size=16):
        """Initialize the memory pool.

        Args:
            buffer_size: Size of each buffer in bytes (default: 65536)
            pool_size: Maximum number of buffers to keep in the pool (default: 16)
        """
        self.buffer_size = buffer_size
        self.pool_size = pool_size
        self.available: List[OptimizedBuffer] = []

    def get_buffer(self) -> OptimizedBuffer:
        """Get a buffer from the pool.

        Returns:
            An OptimizedBuffer instance

        Note:
            If the pool is empty, a new buffer will be created.
        """
        if self.available:
            return self.available.pop()
        return OptimizedBuffer(self.buffer_size)

    def return_buffer(self, buffer):
        """Return a buffer to the pool for reuse.

        Only buffers of the pool's size are kept, and only up to pool_size
        of them; anything else is dropped.
        """
        if not isinstance(buffer, OptimizedBuffer):
            return
        if (buffer.size == self.buffer_size
                and all(b is not buffer for b in self.available)
                and len(self.available) < self.pool_size):
            self.available.append(buffer)


class RequestArena:
    """Resources owned by a single request.

    Usage:
        with RequestArena(pool) as arena:
            buf = arena.get_buffer()
            arena.on_release(fh.close)
            ...

    Everything leased or registered is released when the with-block exits,
    whether the handler completed, declined or raised. Cleanups run in
    reverse registration order.
    """

    def __init__(self, pool: Optional[MemoryPool] = None):
        self.pool = pool or MemoryPool(pool_size=0)
        self._buffers: List[OptimizedBuffer] = []
        self._cleanups: List[Callable[[], None]] = []
        self.released = False

    def get_buffer(self) -> OptimizedBuffer:
        if self.released:
            raise RuntimeError("arena already released")
        buffer = self.pool.get_buffer()
        self._buffers.append(buffer)
        return buffer

    def on_release(self, callback: Callable[[], None]) -> None:
        if self.released:
            raise RuntimeError("arena already released")
        self._cleanups.append(callback)

    @property
    def leased(self) -> int:
        return len(self._buffers)

    def release(self) -> None:
        if self.released:
            return
        self.released = True
        while self._cleanups:
            callback = self._cleanups.pop()
            try:
                callback()
            except Exception:
                logger.exception("Error in request cleanup")
        while self._buffers:
            self.pool.return_buffer(self._buffers.pop())

    def __enter__(self) -> "RequestArena":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

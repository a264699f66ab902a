"""
edgehttp: a minimal asyncio HTTP front-end.

Accepts plaintext or TLS connections, speaks HTTP/1.1 and HTTP/2, routes
requests by path to a small set of handlers and serves static files with
transparent gzip compression.
"""

from .core import (
    Dispatcher, HostTable, RouteTable, Server, ServerConfig, configure_tls,
)
from .handlers import DiagnosticHandler, Handler, MetricsHandler, StaticFileHandler
from .features import CompressionFilter
from .optimizations import OptimizedBuffer, MemoryPool, RequestArena

__version__ = '2.0.0'

__all__ = [
    # Core components
    'Server',
    'ServerConfig',
    'Dispatcher',
    'HostTable',
    'RouteTable',
    'configure_tls',

    # Handlers
    'Handler',
    'DiagnosticHandler',
    'StaticFileHandler',
    'MetricsHandler',

    # Features
    'CompressionFilter',

    # Optimizations
    'OptimizedBuffer',
    'MemoryPool',
    'RequestArena',
]

"""
The server context: every piece of state built at startup, in one value.
"""

import ssl
from dataclasses import dataclass
from typing import Optional

from ..optimizations.memory_optimizations import MemoryPool
from .config import ServerConfig
from .dispatch import Dispatcher
from .routing import HostTable


@dataclass
class ServerContext:
    """Read-only after setup; shared by the listener, TLS unit and sessions.

    Attributes:
        config: Static configuration
        hosts: Frozen virtual hosts and their routes
        dispatcher: Request dispatcher over hosts
        pool: Buffer pool leased by request arenas
        ssl_context: TLS context, None for plaintext
    """
    config: ServerConfig
    hosts: HostTable
    dispatcher: Dispatcher
    pool: MemoryPool
    ssl_context: Optional[ssl.SSLContext] = None

    @property
    def scheme(self) -> str:
        return "https" if self.ssl_context is not None else "http"

    @property
    def max_request_size(self) -> int:
        return self.hosts.max_request_size

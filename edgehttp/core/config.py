"""
Static configuration for the edgehttp server.

Configuration is read once at startup, either from keyword arguments or from
``EDGEHTTP_*`` environment variables, and never changes afterwards.
"""

import logging
import os
import socket
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Mapping, Optional, Tuple, Union

from .errors import ServerConfigError

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 3000
DEFAULT_BACKLOG = socket.SOMAXCONN
DEFAULT_MAX_REQUEST_SIZE = 65535


@dataclass(frozen=True)
class ListenEndpoint:
    """Address the listener binds to."""
    address: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    backlog: int = DEFAULT_BACKLOG

    def __str__(self) -> str:
        if ":" in self.address:
            return f"[{self.address}]:{self.port}"
        return f"{self.address}:{self.port}"


@dataclass
class ServerConfig:
    """Server settings.

    Attributes:
        host: IP literal to listen on
        port: TCP port, 0 picks a free one
        backlog: Listen queue length
        static_root: Directory served by the catch-all route
        hosts: Virtual host names; the first one is the default
        max_request_size: Upper bound for request line, headers and body
        tls_certfile: PEM certificate chain, enables TLS together with tls_keyfile
        tls_keyfile: PEM private key
        tls_password: Optional password for an encrypted private key
        tls_ciphers: OpenSSL cipher string, None keeps the built-in policy
        enable_http2: Advertise h2 through ALPN when TLS is on
        compression_min_size: Smallest body the gzip pass will compress
        compression_level: gzip level 1-9
        metrics_path: Exact path serving Prometheus metrics, None disables it
        log_level: Level name for the edgehttp logger
        json_logs: Emit server logs as JSON
    """
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    backlog: int = DEFAULT_BACKLOG
    static_root: Union[str, Path] = "static"
    hosts: Tuple[str, ...] = ("default",)
    max_request_size: int = DEFAULT_MAX_REQUEST_SIZE
    tls_certfile: Optional[Union[str, Path]] = None
    tls_keyfile: Optional[Union[str, Path]] = None
    tls_password: Optional[str] = None
    tls_ciphers: Optional[str] = None
    enable_http2: bool = True
    compression_min_size: int = 100
    compression_level: int = 6
    metrics_path: Optional[str] = None
    log_level: str = "INFO"
    json_logs: bool = False

    def __post_init__(self):
        if not isinstance(self.port, int) or isinstance(self.port, bool):
            raise ServerConfigError("Port must be an integer")
        if self.port < 0 or self.port > 65535:
            raise ServerConfigError("Port number must be between 0 and 65535")
        if not isinstance(self.backlog, int) or self.backlog < 1:
            raise ServerConfigError("Backlog must be at least 1")
        if self.max_request_size < 1024:
            raise ServerConfigError("max_request_size must be at least 1024 bytes")
        if not self.hosts:
            raise ServerConfigError("At least one host must be configured")
        # An empty path means no path
        self.tls_certfile = self.tls_certfile or None
        self.tls_keyfile = self.tls_keyfile or None
        if (self.tls_certfile is None) != (self.tls_keyfile is None):
            raise ServerConfigError("tls_certfile and tls_keyfile must be given together")
        if not 1 <= self.compression_level <= 9:
            raise ServerConfigError("compression_level must be between 1 and 9")
        if self.compression_min_size < 0:
            raise ServerConfigError("compression_min_size must not be negative")
        if self.metrics_path is not None and not self.metrics_path.startswith("/"):
            raise ServerConfigError("metrics_path must start with '/'")
        if not isinstance(logging.getLevelName(self.log_level.upper()), int):
            raise ServerConfigError(f"Unknown log level: {self.log_level}")
        self.hosts = tuple(self.hosts)
        self.static_root = Path(self.static_root)

    @property
    def tls_enabled(self) -> bool:
        return self.tls_certfile is not None

    @property
    def scheme(self) -> str:
        return "https" if self.tls_enabled else "http"

    @property
    def endpoint(self) -> ListenEndpoint:
        return ListenEndpoint(self.host, self.port, self.backlog)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None,
                 prefix: str = "EDGEHTTP_") -> "ServerConfig":
        """Build a config from environment variables.

        Every field can be set as ``<prefix><FIELD NAME IN CAPS>``. Booleans
        accept 1/0, true/false, yes/no and on/off; ``HOSTS`` is a comma
        separated list.

        Raises:
            ServerConfigError: If a value cannot be converted
        """
        environ = os.environ if environ is None else environ
        kwargs = {}
        for f in fields(cls):
            raw = environ.get(prefix + f.name.upper())
            if raw is None or raw == "":
                continue
            kwargs[f.name] = _convert(f.name, raw)
        return cls(**kwargs)


_BOOL_FIELDS = {"enable_http2", "json_logs"}
_INT_FIELDS = {"port", "backlog", "max_request_size",
               "compression_min_size", "compression_level"}


def _convert(name: str, raw: str):
    if name in _INT_FIELDS:
        try:
            return int(raw)
        except ValueError:
            raise ServerConfigError(f"{name} must be an integer, got {raw!r}")
    if name in _BOOL_FIELDS:
        value = raw.strip().lower()
        if value in ("1", "true", "yes", "on"):
            return True
        if value in ("0", "false", "no", "off"):
            return False
        raise ServerConfigError(f"{name} must be a boolean, got {raw!r}")
    if name == "hosts":
        return tuple(h.strip() for h in raw.split(",") if h.strip())
    return raw

"""
Core server components
"""

from .config import ListenEndpoint, ServerConfig
from .dispatch import Dispatcher, DispatchResult, Outcome
from .errors import (
    AddressInUseError, AddressParseError, BindError, BindFailedError,
    CertificateLoadError, CipherPolicyError, EdgeHTTPError, EngineInitError,
    KeyLoadError, ListenError, ProtocolNegotiationError, RouteTableFrozenError,
    ServerConfigError, SocketCreateError, StartupError, TLSConfigError,
    UnrecoverableHandlerError,
)
from .http_parser import HTTPParser
from .messages import Request, Response
from .routing import HostConfig, HostTable, RouteEntry, RouteTable
from .server import Server, main
from .ssl_utils import configure_tls

# Expose public interface
__all__ = [
    "Server", "main", "ServerConfig", "ListenEndpoint",
    "Dispatcher", "DispatchResult", "Outcome",
    "HTTPParser", "Request", "Response",
    "HostConfig", "HostTable", "RouteEntry", "RouteTable",
    "configure_tls",
    "EdgeHTTPError", "StartupError", "ServerConfigError", "EngineInitError",
    "BindError", "AddressParseError", "SocketCreateError", "BindFailedError",
    "AddressInUseError", "ListenError", "TLSConfigError", "CertificateLoadError",
    "KeyLoadError", "CipherPolicyError", "ProtocolNegotiationError",
    "RouteTableFrozenError", "UnrecoverableHandlerError",
]

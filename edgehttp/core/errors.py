"""
Exception hierarchy for the edgehttp server.

Startup errors are fatal and abort the process before the run loop starts.
Everything else is raised and handled inside a single request or connection.
"""


class EdgeHTTPError(Exception):
    """Base class for all edgehttp errors."""
    pass


class StartupError(EdgeHTTPError):
    """A setup step failed; the server must not start."""
    pass


class ServerConfigError(StartupError):
    """Invalid static configuration"""
    pass


class EngineInitError(StartupError):
    """The event loop could not be created or configured"""
    pass


class BindError(StartupError):
    """Base class for listener setup failures.

    Attributes:
        address: Address the listener tried to use
        port: Port the listener tried to use
    """

    def __init__(self, message: str, address: str = "", port: int = 0):
        super().__init__(message)
        self.address = address
        self.port = port


class AddressParseError(BindError):
    pass


class SocketCreateError(BindError):
    pass


class BindFailedError(BindError):
    pass


class AddressInUseError(BindFailedError):
    pass


class ListenError(BindError):
    pass


class TLSConfigError(StartupError):
    """Base class for TLS material and policy failures"""
    pass


class CertificateLoadError(TLSConfigError):
    pass


class KeyLoadError(TLSConfigError):
    pass


class CipherPolicyError(TLSConfigError):
    pass


class ProtocolNegotiationError(TLSConfigError):
    pass


class RouteTableFrozenError(EdgeHTTPError):
    """Raised when a route is registered after serving has started"""
    pass


class UnrecoverableHandlerError(EdgeHTTPError):
    """Raised by a handler whose connection state can no longer be trusted.

    The request still gets a 500 response, and then its connection is closed.
    """
    pass

"""
Shared helpers for the test suite: throwaway certificates and a server
running on the current event loop.
"""

import contextlib
import datetime
import ipaddress
from pathlib import Path
from typing import Optional, Tuple

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from edgehttp.core.config import ServerConfig
from edgehttp.core.server import Server


def write_certificate(directory: Path, password: Optional[bytes] = None,
                      name: str = "server") -> Tuple[Path, Path]:
    """Write a self-signed EC certificate and its key as PEM files."""
    key = ec.generate_private_key(ec.SECP256R1())
    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "localhost")])
    now = datetime.datetime.now(datetime.timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(subject)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=7))
        .add_extension(
            x509.SubjectAlternativeName([
                x509.DNSName("localhost"),
                x509.IPAddress(ipaddress.ip_address("127.0.0.1")),
            ]),
            critical=False,
        )
        .sign(key, hashes.SHA256())
    )
    if password:
        encryption = serialization.BestAvailableEncryption(password)
    else:
        encryption = serialization.NoEncryption()

    cert_path = Path(directory) / f"{name}.crt"
    key_path = Path(directory) / f"{name}.key"
    cert_path.write_bytes(cert.public_bytes(serialization.Encoding.PEM))
    key_path.write_bytes(key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        encryption,
    ))
    return cert_path, key_path


@contextlib.asynccontextmanager
async def running_server(**kwargs):
    """Start a Server on a free port of the running loop."""
    kwargs.setdefault("port", 0)
    server = Server(ServerConfig(**kwargs))
    await server.start()
    try:
        yield server
    finally:
        await server.close()


class FakeTransport:
    """In-memory transport recording everything a session writes."""

    def __init__(self, alpn=None):
        self.data = bytearray()
        self.closed = False
        self.reading = True
        self.alpn = alpn

    def write(self, data):
        self.data.extend(data)

    def get_extra_info(self, name, default=None):
        if name == "peername":
            return ("127.0.0.1", 50000)
        if name == "ssl_object" and self.alpn:
            return self
        return default

    def selected_alpn_protocol(self):
        return self.alpn

    def close(self):
        self.closed = True

    def abort(self):
        self.closed = True

    def is_closing(self):
        return self.closed

    def pause_reading(self):
        self.reading = False

    def resume_reading(self):
        self.reading = True

"""
TLS termination setup for the edgehttp server.

Builds the single ssl.SSLContext shared by every accepted connection, with
modern cipher suites and ALPN negotiation between h2 and http/1.1.
"""

"""
Copyright 2025 Chris Bunting
File: ssl_utils.py | Purpose: SSL/TLS configuration utilities
@author Chris Bunting | @version 1.1.0

CHANGELOG:
2026-10-18 - Chris Bunting: Map each loading step to its own TLSConfigError, register ALPN
2025-07-11 - Chris Bunting: Fixed server-side SSL verification settings
2025-07-10 - Chris Bunting: Initial implementation
"""

import logging
import ssl
from pathlib import Path
from typing import Iterable, List, Optional, Tuple, Union

from cryptography import x509
from cryptography.hazmat.primitives import serialization

from .errors import (
    CertificateLoadError,
    CipherPolicyError,
    KeyLoadError,
    ProtocolNegotiationError,
)

logger = logging.getLogger("edgehttp")

# Modern cipher suites prioritizing perfect forward secrecy
DEFAULT_CIPHERS = (
    'ECDHE-ECDSA-AES256-GCM-SHA384:ECDHE-RSA-AES256-GCM-SHA384:'
    'ECDHE-ECDSA-CHACHA20-POLY1305:ECDHE-RSA-CHACHA20-POLY1305:'
    'ECDHE-ECDSA-AES128-GCM-SHA256:ECDHE-RSA-AES128-GCM-SHA256'
)

SUPPORTED_ALPN = ("h2", "http/1.1")


def configure_tls(
    cert_file: Union[str, Path],
    key_file: Union[str, Path],
    cipher_list: Optional[str] = None,
    *,
    password: Optional[str] = None,
    alpn_protocols: Iterable[str] = SUPPORTED_ALPN,
) -> ssl.SSLContext:
    """Create the server's TLS context.

    Args:
        cert_file: PEM certificate chain, leaf first
        key_file: PEM private key matching the leaf certificate
        cipher_list: OpenSSL cipher string, defaults to DEFAULT_CIPHERS
        password: Optional password for an encrypted private key
        alpn_protocols: ALPN identifiers to advertise, most preferred first

    Returns:
        Configured SSLContext; TLS 1.2 minimum, no client certificates

    Raises:
        CertificateLoadError: Certificate missing, unreadable or not PEM
        KeyLoadError: Key missing, unreadable, wrongly encrypted or not
            matching the certificate
        CipherPolicyError: No usable cipher in cipher_list
        ProtocolNegotiationError: ALPN unavailable or an unknown identifier
    """
    certificate = _load_certificate(cert_file)
    _load_private_key(key_file, password, certificate)

    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.minimum_version = ssl.TLSVersion.TLSv1_2
    context.options |= ssl.OP_SINGLE_DH_USE
    context.options |= ssl.OP_SINGLE_ECDH_USE
    context.options |= ssl.OP_CIPHER_SERVER_PREFERENCE

    # Client certificates are not requested
    context.verify_mode = ssl.CERT_NONE

    try:
        context.load_cert_chain(str(cert_file), str(key_file), password)
    except (ssl.SSLError, OSError) as e:
        raise KeyLoadError(f"Cannot load key pair {cert_file}, {key_file}: {e}") from e

    try:
        context.set_ciphers(cipher_list or DEFAULT_CIPHERS)
    except ssl.SSLError as e:
        raise CipherPolicyError(f"Invalid cipher list {cipher_list!r}: {e}") from e

    context.set_alpn_protocols(_check_alpn(alpn_protocols))

    if context.minimum_version < ssl.TLSVersion.TLSv1_2:
        raise CipherPolicyError("Failed to set minimum TLS version to 1.2")

    logger.debug(f"TLS configured with certificate {cert_file}")
    return context


def _load_certificate(cert_file: Union[str, Path]) -> x509.Certificate:
    try:
        data = Path(cert_file).read_bytes()
    except OSError as e:
        raise CertificateLoadError(f"Cannot read certificate {cert_file}: {e}") from e
    try:
        chain = x509.load_pem_x509_certificates(data)
    except ValueError as e:
        raise CertificateLoadError(f"Invalid certificate {cert_file}: {e}") from e
    return chain[0]


def _load_private_key(key_file: Union[str, Path], password: Optional[str],
                      certificate: x509.Certificate) -> None:
    try:
        data = Path(key_file).read_bytes()
    except OSError as e:
        raise KeyLoadError(f"Cannot read private key {key_file}: {e}") from e
    try:
        key = serialization.load_pem_private_key(
            data, password=password.encode("utf-8") if password else None
        )
    except (ValueError, TypeError) as e:
        raise KeyLoadError(f"Invalid private key {key_file}: {e}") from e

    fmt = serialization.PublicFormat.SubjectPublicKeyInfo
    enc = serialization.Encoding.DER
    if key.public_key().public_bytes(enc, fmt) != certificate.public_key().public_bytes(enc, fmt):
        raise KeyLoadError(f"Private key {key_file} does not match the certificate")


def _check_alpn(protocols: Iterable[str]) -> List[str]:
    protocols = list(protocols)
    if not ssl.HAS_ALPN:
        raise ProtocolNegotiationError("OpenSSL build does not support ALPN")
    if not protocols:
        raise ProtocolNegotiationError("No ALPN protocols given")
    unknown = [p for p in protocols if p not in SUPPORTED_ALPN]
    if unknown:
        raise ProtocolNegotiationError(f"Unsupported ALPN protocols: {', '.join(unknown)}")
    return protocols


def validate_cert_paths(
    certfile: Union[str, Path],
    keyfile: Union[str, Path]
) -> Tuple[Path, Path]:
    """Validate certificate and key file paths.

    Raises:
        CertificateLoadError: If the certificate file doesn't exist
        KeyLoadError: If the key file doesn't exist
    """
    cert_path = Path(certfile)
    key_path = Path(keyfile)

    if not cert_path.is_file():
        raise CertificateLoadError(f"Certificate file not found: {certfile}")
    if not key_path.is_file():
        raise KeyLoadError(f"Private key file not found: {keyfile}")

    return cert_path, key_path

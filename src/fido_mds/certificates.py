"""
X.509 helpers shared by the trust root store, chain verifier and envelope decoder.

Uses cryptography (PyCA) for certificate and CRL loading and extension access.
"""

from __future__ import annotations

import base64
import textwrap
from datetime import UTC, datetime

from cryptography import x509
from cryptography.x509.extensions import ExtensionNotFound

from fido_mds.errors import CertificateParseError

_PEM_BEGIN = "-----BEGIN CERTIFICATE-----"
_PEM_END = "-----END CERTIFICATE-----"


def der_to_pem(der: bytes) -> str:
    """Wrap DER bytes as a PEM certificate string."""
    return b64_to_pem(base64.b64encode(der).decode("ascii"))


def b64_to_pem(b64: str) -> str:
    """Wrap a base64 DER certificate (an x5c element) as PEM."""
    body = "".join(b64.split())
    return "\n".join([_PEM_BEGIN, *textwrap.wrap(body, 64), _PEM_END]) + "\n"


def load_certificate_pem(pem: str | bytes) -> x509.Certificate:
    """Parse a PEM certificate. Raises CertificateParseError when malformed."""
    data = pem.encode("ascii") if isinstance(pem, str) else pem
    try:
        return x509.load_pem_x509_certificate(data)
    except (ValueError, TypeError, UnicodeEncodeError) as e:
        raise CertificateParseError(f"Certificate cannot be parsed: {e}") from e


def load_certificate_bytes(data: bytes) -> x509.Certificate:
    """Parse a certificate file's bytes: PEM if armoured, DER otherwise."""
    if data.lstrip().startswith(b"-----BEGIN"):
        return load_certificate_pem(data)
    return load_certificate_pem(der_to_pem(data))


def is_within_validity(cert: x509.Certificate, now: datetime | None = None) -> bool:
    """True when now lies within [notBefore, notAfter]."""
    moment = now or datetime.now(UTC)
    return cert.not_valid_before_utc <= moment <= cert.not_valid_after_utc


def serial_hex(serial_number: int) -> str:
    """Canonical hex form of a serial number (lowercase, no prefix)."""
    return format(serial_number, "x")


def crl_distribution_uris(cert: x509.Certificate) -> list[str]:
    """Return every URI listed in the certificate's CRL Distribution Points."""
    try:
        ext = cert.extensions.get_extension_for_class(x509.CRLDistributionPoints)
    except ExtensionNotFound:
        return []

    uris: list[str] = []
    for point in ext.value:
        for name in point.full_name or []:
            if isinstance(name, x509.UniformResourceIdentifier) and name.value not in uris:
                uris.append(name.value)
    return uris


def describe(cert: x509.Certificate) -> dict[str, str]:
    """Log-friendly summary of a certificate."""
    return {
        "subject": cert.subject.rfc4514_string(),
        "serial": serial_hex(cert.serial_number),
        "not_after": cert.not_valid_after_utc.isoformat(),
    }

"""
Envelope decoder — signed metadata envelope (compact JWS) → verified payload text.

Pipeline:
  envelope text
    → strip, split on "." → exactly three non-empty segments (header.payload.signature)
    → header: base64url → JSON → alg + x5c (leaf first)
    → x5c entries → PEM → certificates
    → + resolved trust root → ChainVerifier (revocation, link signatures)
    → leaf public key + alg → JWS signature over "header.payload"
    → payload: base64url → UTF-8 text (JSON parsing is left to the caller)

Supported JWS algorithms: RS256/384/512, PS256/384/512, ES256/384/512, EdDSA.
Anything else, "none" included, fails signature verification.
"""

from __future__ import annotations

import base64
import binascii
import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import structlog
from cryptography import x509
from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, ed448, ed25519, padding, rsa
from cryptography.hazmat.primitives.asymmetric.utils import encode_dss_signature

from fido_mds.certificates import b64_to_pem, load_certificate_pem
from fido_mds.chain import ChainVerifier
from fido_mds.errors import (
    CertificateParseError,
    ErrorCode,
    MalformedEnvelopeError,
    SignatureVerificationError,
)
from fido_mds.result import Result
from fido_mds.trust_root import TrustRootStore

log = structlog.get_logger()

_WRONG_FORMAT = "Blob JWT is wrong format."
_JWS_FAILED = "JWS cannot be verified."

_DIGESTS: dict[str, type[hashes.HashAlgorithm]] = {
    "256": hashes.SHA256,
    "384": hashes.SHA384,
    "512": hashes.SHA512,
}


def b64url_decode(segment: str) -> bytes:
    """Decode unpadded base64url. Raises ValueError on bad input."""
    padded = segment + "=" * (-len(segment) % 4)
    try:
        return base64.urlsafe_b64decode(padded.encode("ascii"))
    except (binascii.Error, UnicodeEncodeError) as e:
        raise ValueError(f"invalid base64url segment: {e}") from e


@dataclass(frozen=True, slots=True)
class SignedEnvelope:
    """A compact JWS split into its parts, header already decoded."""

    header_segment: str
    payload_segment: str
    signature_segment: str
    header: Mapping[str, Any] = field(repr=False)

    @classmethod
    def parse(cls, text: str) -> SignedEnvelope:
        """
        Split and decode the envelope header.

        Raises MalformedEnvelopeError unless the text has exactly three
        non-empty segments and a JSON header with a non-empty x5c list.
        """
        segments = text.strip().split(".")
        if len(segments) != 3 or not all(segments):
            raise MalformedEnvelopeError(_WRONG_FORMAT)

        try:
            header = json.loads(b64url_decode(segments[0]))
        except (ValueError, UnicodeDecodeError) as e:
            raise MalformedEnvelopeError(_WRONG_FORMAT) from e
        if not isinstance(header, Mapping):
            raise MalformedEnvelopeError(_WRONG_FORMAT)

        x5c = header.get("x5c")
        if (
            not isinstance(x5c, list)
            or not x5c
            or not all(isinstance(item, str) and item for item in x5c)
        ):
            raise MalformedEnvelopeError("Blob JWT header has no x5c certificate chain.")

        return cls(
            header_segment=segments[0],
            payload_segment=segments[1],
            signature_segment=segments[2],
            header=header,
        )

    @property
    def alg(self) -> str:
        value = self.header.get("alg")
        return value if isinstance(value, str) else ""

    @property
    def x5c(self) -> tuple[str, ...]:
        return tuple(self.header["x5c"])

    @property
    def signing_input(self) -> bytes:
        return f"{self.header_segment}.{self.payload_segment}".encode("ascii")

    def signature(self) -> bytes:
        try:
            return b64url_decode(self.signature_segment)
        except ValueError as e:
            raise SignatureVerificationError(_JWS_FAILED) from e

    def payload_text(self) -> str:
        try:
            return b64url_decode(self.payload_segment).decode("utf-8")
        except (ValueError, UnicodeDecodeError) as e:
            raise MalformedEnvelopeError(_WRONG_FORMAT) from e


# ─────────────────────── JWS signature ───────────────────────


def verify_jws_signature(
    public_key: Any, alg: str, signing_input: bytes, signature: bytes
) -> None:
    """
    Verify a JWS signature with the leaf certificate's public key.

    Raises SignatureVerificationError on an unsupported alg, a key that does
    not match the alg, or a signature mismatch.
    """
    family, bits = alg[:2], alg[2:]
    try:
        match family:
            case "RS" if bits in _DIGESTS and isinstance(public_key, rsa.RSAPublicKey):
                public_key.verify(signature, signing_input, padding.PKCS1v15(), _DIGESTS[bits]())
            case "PS" if bits in _DIGESTS and isinstance(public_key, rsa.RSAPublicKey):
                digest = _DIGESTS[bits]()
                public_key.verify(
                    signature,
                    signing_input,
                    padding.PSS(mgf=padding.MGF1(digest), salt_length=digest.digest_size),
                    digest,
                )
            case "ES" if bits in _DIGESTS and isinstance(public_key, ec.EllipticCurvePublicKey):
                public_key.verify(
                    _raw_to_der(signature, public_key),
                    signing_input,
                    ec.ECDSA(_DIGESTS[bits]()),
                )
            case "Ed" if alg == "EdDSA" and isinstance(
                public_key, (ed25519.Ed25519PublicKey, ed448.Ed448PublicKey)
            ):
                public_key.verify(signature, signing_input)
            case _:
                raise SignatureVerificationError(_JWS_FAILED)
    except (InvalidSignature, UnsupportedAlgorithm, ValueError) as e:
        raise SignatureVerificationError(_JWS_FAILED) from e


def _raw_to_der(signature: bytes, public_key: ec.EllipticCurvePublicKey) -> bytes:
    """JWS carries ECDSA signatures as raw r||s; cryptography expects DER."""
    size = (public_key.curve.key_size + 7) // 8
    if len(signature) != 2 * size:
        raise ValueError(f"ECDSA signature must be {2 * size} bytes, got {len(signature)}")
    r = int.from_bytes(signature[:size], "big")
    s = int.from_bytes(signature[size:], "big")
    return encode_dss_signature(r, s)


# ─────────────────────── Public Decoder Class ───────────────────────


class EnvelopeDecoder:
    """
    Verify a signed envelope end to end and return its payload text.

    The trust root is resolved per call, so a root set or detached on the
    store affects the next decode only.
    """

    def __init__(self, trust_roots: TrustRootStore, chain_verifier: ChainVerifier) -> None:
        self._trust_roots = trust_roots
        self._chain_verifier = chain_verifier

    def verify_and_decode(self, envelope_text: str) -> Result[str]:
        """
        Returns Result[str] with the raw payload JSON text on success.

        Failures: MALFORMED_ENVELOPE, CERTIFICATE_PARSE_ERROR, ACCESS_ERROR
        (trust root or CRL unreachable), REVOKED_CERTIFICATE,
        CHAIN_VERIFICATION_ERROR, SIGNATURE_VERIFICATION_ERROR.
        """
        return (
            Result.from_computation(
                lambda: SignedEnvelope.parse(envelope_text),
                ErrorCode.MALFORMED_ENVELOPE,
                _WRONG_FORMAT,
            )
            .flat_map(self._verify)
        )

    def _verify(self, envelope: SignedEnvelope) -> Result[str]:
        return (
            self._chain_certificates(envelope)
            .flat_map(
                lambda chain: self._trust_roots.resolve().map(lambda root: [*chain, root])
            )
            .flat_map(self._chain_verifier.verify)
            .flat_map(
                lambda verified: Result.from_computation(
                    lambda: self._check_signature(envelope, verified.leaf),
                    ErrorCode.SIGNATURE_VERIFICATION_ERROR,
                    _JWS_FAILED,
                )
            )
        )

    @staticmethod
    def _chain_certificates(envelope: SignedEnvelope) -> Result[list[x509.Certificate]]:
        return Result.all_of(
            Result.from_computation(
                lambda item=item: _load_x5c_item(item),
                ErrorCode.CERTIFICATE_PARSE_ERROR,
                "x5c certificate cannot be parsed",
            )
            for item in envelope.x5c
        )

    @staticmethod
    def _check_signature(envelope: SignedEnvelope, leaf: x509.Certificate) -> str:
        verify_jws_signature(
            leaf.public_key(), envelope.alg, envelope.signing_input, envelope.signature()
        )
        payload = envelope.payload_text()
        log.info(
            "envelope.verified",
            alg=envelope.alg,
            chain_length=len(envelope.x5c) + 1,
            payload_bytes=len(payload),
        )
        return payload


def _load_x5c_item(item: str) -> x509.Certificate:
    try:
        pem = b64_to_pem(item)
    except (TypeError, ValueError) as e:
        raise CertificateParseError(f"x5c entry is not base64: {e}") from e
    return load_certificate_pem(pem)

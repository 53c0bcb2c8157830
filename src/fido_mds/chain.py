"""
Chain verifier — revocation check plus link-by-link signature validation.

Input is the ordered chain [leaf, intermediate..., trust root]; the caller
has already appended the trust root as the final element.

Pipeline:
  1. every certificate except the trust root → CRL Distribution Point URIs
       → fetch each CRL once → union of revoked serials (the RevocationSet)
  2. any chain serial (trust root included) in the RevocationSet → REVOKED_CERTIFICATE
  3. for i in 0..n-2: cert[i+1]'s public key must validate cert[i]'s signature
       → first failing link → CHAIN_VERIFICATION_ERROR

Key design decision: asn1crypto extracts the signed parts of each certificate
(TBSCertificate bytes, declared signature algorithm and its parameters,
signature bits) exactly as encoded, while cryptography (PyCA) supplies the
issuer public key and performs the verification.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

import structlog
from asn1crypto import x509 as asn1_x509
from cryptography import x509
from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, ed448, ed25519, padding, rsa
from cryptography.hazmat.primitives.serialization import Encoding

from fido_mds.certificates import crl_distribution_uris, serial_hex
from fido_mds.domain.ports import Fetcher
from fido_mds.errors import ChainVerificationError, ErrorCode, RevokedCertificateError
from fido_mds.result import FailureDescription, Result

log = structlog.get_logger()

_HASHES: dict[str, type[hashes.HashAlgorithm]] = {
    "sha1": hashes.SHA1,
    "sha224": hashes.SHA224,
    "sha256": hashes.SHA256,
    "sha384": hashes.SHA384,
    "sha512": hashes.SHA512,
}


@dataclass(frozen=True, slots=True)
class SignedParts:
    """The parts of a certificate covered by, and carrying, its signature."""

    tbs_bytes: bytes
    signature: bytes
    signature_algo: str
    hash_algo: str | None
    pss_salt_length: int | None = None

    @property
    def signature_hex(self) -> str:
        return self.signature.hex()


@dataclass(frozen=True, slots=True)
class ChainLink:
    """One verified (subject, issuer) pair."""

    subject: str
    issuer: str
    signature_algorithm: str
    signature_hex: str


@dataclass(frozen=True, slots=True)
class VerifiedChain:
    """A chain whose links all validated and whose serials are not revoked."""

    certificates: tuple[x509.Certificate, ...]
    links: tuple[ChainLink, ...]
    revoked_serials: frozenset[str]

    @property
    def leaf(self) -> x509.Certificate:
        return self.certificates[0]

    @property
    def root(self) -> x509.Certificate:
        return self.certificates[-1]


# ─────────────────────── ASN.1 extraction ───────────────────────


def extract_signed_parts(cert: x509.Certificate) -> SignedParts:
    """
    Split a certificate into TBS bytes, signature algorithm and signature.

    Raises ChainVerificationError when the ASN.1 structure cannot be read.
    """
    try:
        asn1_cert = asn1_x509.Certificate.load(cert.public_bytes(Encoding.DER))
        algorithm = asn1_cert["signature_algorithm"]
        signature_algo = algorithm.signature_algo
        hash_algo = None if signature_algo in ("ed25519", "ed448") else algorithm.hash_algo
        salt_length = None
        if signature_algo == "rsassa_pss":
            salt_length = algorithm["parameters"]["salt_length"].native
        return SignedParts(
            tbs_bytes=asn1_cert["tbs_certificate"].dump(),
            signature=asn1_cert["signature_value"].native,
            signature_algo=signature_algo,
            hash_algo=hash_algo,
            pss_salt_length=salt_length,
        )
    except (ValueError, TypeError, KeyError) as e:
        raise ChainVerificationError(f"Certificate structure cannot be extracted: {e}") from e


def _hash_for(name: str | None) -> hashes.HashAlgorithm:
    if name not in _HASHES:
        raise ChainVerificationError(f"Unsupported signature hash algorithm: {name}")
    return _HASHES[name]()


def verify_link(cert: x509.Certificate, issuer: x509.Certificate) -> ChainLink:
    """
    Verify that issuer's public key validates cert's signature.

    Uses the signature algorithm declared in cert. Raises
    ChainVerificationError on any mismatch or unsupported key type.
    """
    parts = extract_signed_parts(cert)
    public_key = issuer.public_key()
    try:
        match public_key:
            case rsa.RSAPublicKey() if parts.signature_algo == "rsassa_pss":
                digest = _hash_for(parts.hash_algo)
                public_key.verify(
                    parts.signature,
                    parts.tbs_bytes,
                    padding.PSS(mgf=padding.MGF1(digest), salt_length=parts.pss_salt_length),
                    digest,
                )
            case rsa.RSAPublicKey() if parts.signature_algo == "rsassa_pkcs1v15":
                public_key.verify(
                    parts.signature, parts.tbs_bytes, padding.PKCS1v15(), _hash_for(parts.hash_algo)
                )
            case ec.EllipticCurvePublicKey() if parts.signature_algo == "ecdsa":
                public_key.verify(
                    parts.signature, parts.tbs_bytes, ec.ECDSA(_hash_for(parts.hash_algo))
                )
            case ed25519.Ed25519PublicKey() if parts.signature_algo == "ed25519":
                public_key.verify(parts.signature, parts.tbs_bytes)
            case ed448.Ed448PublicKey() if parts.signature_algo == "ed448":
                public_key.verify(parts.signature, parts.tbs_bytes)
            case _:
                raise ChainVerificationError(
                    f"Issuer key {type(public_key).__name__} cannot verify "
                    f"a {parts.signature_algo} signature."
                )
    except (InvalidSignature, UnsupportedAlgorithm, ValueError) as e:
        raise ChainVerificationError("Certificate chain cannot be verified.") from e

    return ChainLink(
        subject=cert.subject.rfc4514_string(),
        issuer=issuer.subject.rfc4514_string(),
        signature_algorithm=parts.signature_algo,
        signature_hex=parts.signature_hex,
    )


# ─────────────────────── Revocation ───────────────────────


def parse_crl_serials(data: bytes) -> frozenset[str]:
    """Revoked serial numbers (hex) of a DER or PEM CRL."""
    try:
        if data.lstrip().startswith(b"-----BEGIN"):
            crl = x509.load_pem_x509_crl(data)
        else:
            crl = x509.load_der_x509_crl(data)
    except ValueError as e:
        raise ChainVerificationError(f"CRL cannot be parsed: {e}") from e
    return frozenset(serial_hex(revoked.serial_number) for revoked in crl)


# ─────────────────────── Public Verifier Class ───────────────────────


class ChainVerifier:
    """
    Validate a certificate chain against revocation lists and link signatures.

    CRLs are fetched through the injected Fetcher on every verification;
    the revocation set is never cached.
    """

    def __init__(self, fetcher: Fetcher) -> None:
        self._fetcher = fetcher

    def verify(self, chain: Sequence[x509.Certificate]) -> Result[VerifiedChain]:
        """
        Verify [leaf, intermediate..., trust root].

        Returns Result[VerifiedChain] on success, or the first failure:
        ACCESS_ERROR (CRL unreachable), CHAIN_VERIFICATION_ERROR,
        REVOKED_CERTIFICATE.
        """
        certificates = tuple(chain)
        if len(certificates) < 2:
            return Result.failure(
                ErrorCode.CHAIN_VERIFICATION_ERROR,
                "Certificate chain needs a leaf and a trust root.",
            )
        return (
            self.collect_revoked_serials(certificates[:-1])
            .flat_map(lambda revoked: self._check_not_revoked(certificates, revoked))
            .flat_map(lambda revoked: self._verify_links(certificates, revoked))
        )

    def collect_revoked_serials(
        self, certificates: Sequence[x509.Certificate]
    ) -> Result[frozenset[str]]:
        """Fetch every CRL the certificates point at and union the revoked serials."""
        uris: list[str] = []
        for cert in certificates:
            for uri in crl_distribution_uris(cert):
                if uri not in uris:
                    uris.append(uri)

        results = [self._fetch_crl_serials(uri) for uri in uris]
        return Result.all_of(results).map(self._union).peek(
            lambda revoked: log.info(
                "chain.revocation_collected", crl_count=len(uris), revoked=len(revoked)
            )
        )

    def _fetch_crl_serials(self, uri: str) -> Result[frozenset[str]]:
        return self._fetcher.fetch(uri).flat_map(
            lambda data: Result.from_computation(
                lambda: parse_crl_serials(data),
                ErrorCode.CHAIN_VERIFICATION_ERROR,
                f"CRL from {uri} cannot be parsed",
            )
        )

    @staticmethod
    def _union(serial_sets: list[frozenset[str]]) -> frozenset[str]:
        return frozenset().union(*serial_sets)

    @staticmethod
    def _check_not_revoked(
        certificates: tuple[x509.Certificate, ...], revoked: frozenset[str]
    ) -> Result[frozenset[str]]:
        for cert in certificates:
            serial = serial_hex(cert.serial_number)
            if serial in revoked:
                log.warning(
                    "chain.revoked_certificate",
                    subject=cert.subject.rfc4514_string(),
                    serial=serial,
                )
                return Result.failure_from(
                    FailureDescription.from_exception(
                        RevokedCertificateError("Revoked certificate is included.")
                    )
                )
        return Result.success(revoked)

    @staticmethod
    def _verify_links(
        certificates: tuple[x509.Certificate, ...], revoked: frozenset[str]
    ) -> Result[VerifiedChain]:
        links: list[ChainLink] = []
        for index in range(len(certificates) - 1):
            cert, issuer = certificates[index], certificates[index + 1]
            link = Result.from_computation(
                lambda: verify_link(cert, issuer),
                ErrorCode.CHAIN_VERIFICATION_ERROR,
                "Certificate chain cannot be verified.",
            )
            if link.is_failure():
                log.warning(
                    "chain.link_failed",
                    position=index,
                    subject=cert.subject.rfc4514_string(),
                    issuer=issuer.subject.rfc4514_string(),
                    reason=link.error().message,
                )
                return Result.failure_from(link.error())
            links.append(link.value())

        log.info("chain.verified", length=len(certificates))
        return Result.success(
            VerifiedChain(
                certificates=certificates,
                links=tuple(links),
                revoked_serials=revoked,
            )
        )

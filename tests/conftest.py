"""
Shared test fixtures and helpers for the fido-mds test suite.

Mints a throwaway PKI with cryptography, signs metadata envelopes with it
and builds payload documents, so no test needs the network or real
metadata service files.

PKI layout:

  root (EC P-384, self-signed)
    └─ intermediate (RSA 2048)   CRL Distribution Point → ROOT_CRL_URL
         └─ leaf (EC P-256)      CRL Distribution Point → INTERMEDIATE_CRL_URL

The leaf signs envelopes with ES256; x5c carries [leaf, intermediate].
"""

from __future__ import annotations

import base64
import json
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import httpx
import pytest
import respx
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa
from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature
from cryptography.x509.oid import NameOID

from fido_mds.config import MdsSettings, MdsSourceSettings, PayloadSettings, RootSettings

MDS_URL = "https://mds.example.test/"
ROOT_URL = "http://pki.example.test/root.crt"
DEFAULT_ROOT_URL = "http://pki.example.test/default-root.crt"
ROOT_CRL_URL = "http://pki.example.test/root.crl"
INTERMEDIATE_CRL_URL = "http://pki.example.test/intermediate.crl"

FIDO2_AAGUID = "d8522d9f-575b-4866-88a9-ba99fa02f35b"
UAF_AAID = "4e4e#4005"
U2F_AKI = "1434d2f277fe479c35ddf6aa4d08a07cbce99dd7"

DER_HEADERS = {"content-type": "application/pkix-cert"}
CRL_HEADERS = {"content-type": "application/pkix-crl"}


# ─────────────────────── Encoding helpers ───────────────────────


def b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def der(cert: x509.Certificate) -> bytes:
    return cert.public_bytes(serialization.Encoding.DER)


def pem(cert: x509.Certificate) -> str:
    return cert.public_bytes(serialization.Encoding.PEM).decode("ascii")


def tamper_signature(cert: x509.Certificate) -> x509.Certificate:
    """Flip one bit in the last byte of the certificate, which is signature data."""
    raw = der(cert)
    return x509.load_der_x509_certificate(raw[:-1] + bytes([raw[-1] ^ 0x01]))


# ─────────────────────── Certificate minting ───────────────────────


def subject_name(common_name: str) -> x509.Name:
    return x509.Name(
        [
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, "FIDO MDS Test PKI"),
            x509.NameAttribute(NameOID.COMMON_NAME, common_name),
        ]
    )


def issue_certificate(
    subject: str,
    public_key: Any,
    issuer_name: x509.Name,
    issuer_key: Any,
    *,
    ca: bool,
    crl_url: str | None = None,
    not_before: datetime | None = None,
    not_after: datetime | None = None,
) -> x509.Certificate:
    now = datetime.now(UTC)
    builder = (
        x509.CertificateBuilder()
        .subject_name(subject_name(subject))
        .issuer_name(issuer_name)
        .public_key(public_key)
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before or now - timedelta(days=1))
        .not_valid_after(not_after or now + timedelta(days=3650))
        .add_extension(x509.BasicConstraints(ca=ca, path_length=None), critical=True)
    )
    if crl_url is not None:
        builder = builder.add_extension(
            x509.CRLDistributionPoints(
                [
                    x509.DistributionPoint(
                        full_name=[x509.UniformResourceIdentifier(crl_url)],
                        relative_name=None,
                        reasons=None,
                        crl_issuer=None,
                    )
                ]
            ),
            critical=False,
        )
    return builder.sign(issuer_key, hashes.SHA256())


def make_crl(
    issuer: x509.Certificate, issuer_key: Any, revoked_serials: Iterable[int] = ()
) -> bytes:
    """Return a DER CRL signed by issuer listing the given serial numbers."""
    now = datetime.now(UTC)
    builder = (
        x509.CertificateRevocationListBuilder()
        .issuer_name(issuer.subject)
        .last_update(now - timedelta(days=1))
        .next_update(now + timedelta(days=30))
    )
    for serial in revoked_serials:
        builder = builder.add_revoked_certificate(
            x509.RevokedCertificateBuilder()
            .serial_number(serial)
            .revocation_date(now - timedelta(hours=1))
            .build()
        )
    crl = builder.sign(issuer_key, hashes.SHA256())
    return crl.public_bytes(serialization.Encoding.DER)


def make_self_signed_root(
    common_name: str,
    *,
    not_before: datetime | None = None,
    not_after: datetime | None = None,
) -> tuple[x509.Certificate, ec.EllipticCurvePrivateKey]:
    key = ec.generate_private_key(ec.SECP256R1())
    cert = issue_certificate(
        common_name,
        key.public_key(),
        subject_name(common_name),
        key,
        ca=True,
        not_before=not_before,
        not_after=not_after,
    )
    return cert, key


# ─────────────────────── JWS signing ───────────────────────


def sign_jws(
    payload: str | bytes,
    signing_key: Any,
    x5c: Iterable[x509.Certificate],
    alg: str = "ES256",
) -> str:
    """Produce a compact JWS over payload with an x5c header."""
    header = {"alg": alg, "typ": "JWT", "x5c": [base64.b64encode(der(c)).decode() for c in x5c]}
    body = payload.encode("utf-8") if isinstance(payload, str) else payload
    signing_input = f"{b64url(json.dumps(header).encode())}.{b64url(body)}"
    signature = jws_signature(signing_key, alg, signing_input.encode("ascii"))
    return f"{signing_input}.{b64url(signature)}"


def jws_signature(key: Any, alg: str, signing_input: bytes) -> bytes:
    digest = {"256": hashes.SHA256, "384": hashes.SHA384, "512": hashes.SHA512}.get(alg[2:])
    if alg.startswith("ES"):
        r, s = decode_dss_signature(key.sign(signing_input, ec.ECDSA(digest())))
        size = (key.curve.key_size + 7) // 8
        return r.to_bytes(size, "big") + s.to_bytes(size, "big")
    if alg.startswith("RS"):
        return key.sign(signing_input, padding.PKCS1v15(), digest())
    if alg.startswith("PS"):
        return key.sign(
            signing_input,
            padding.PSS(mgf=padding.MGF1(digest()), salt_length=digest().digest_size),
            digest(),
        )
    return key.sign(signing_input)


# ─────────────────────── Test PKI ───────────────────────


@dataclass(frozen=True)
class MdsPki:
    """Root, intermediate and leaf with their keys."""

    root: x509.Certificate
    root_key: ec.EllipticCurvePrivateKey
    intermediate: x509.Certificate
    intermediate_key: rsa.RSAPrivateKey
    leaf: x509.Certificate
    leaf_key: ec.EllipticCurvePrivateKey

    @property
    def root_pem(self) -> str:
        return pem(self.root)

    @property
    def x5c(self) -> list[x509.Certificate]:
        return [self.leaf, self.intermediate]

    def envelope(self, payload: str | dict[str, Any], alg: str = "ES256") -> str:
        text = payload if isinstance(payload, str) else json.dumps(payload)
        return sign_jws(text, self.leaf_key, self.x5c, alg)

    def root_crl(self, revoked_serials: Iterable[int] = ()) -> bytes:
        return make_crl(self.root, self.root_key, revoked_serials)

    def intermediate_crl(self, revoked_serials: Iterable[int] = ()) -> bytes:
        return make_crl(self.intermediate, self.intermediate_key, revoked_serials)

    def mock_crls(
        self,
        revoked_by_root: Iterable[int] = (),
        revoked_by_intermediate: Iterable[int] = (),
    ) -> tuple[respx.Route, respx.Route]:
        """Register both CRL routes on the active respx router."""
        root_route = respx.get(ROOT_CRL_URL).mock(
            return_value=httpx.Response(
                200, content=self.root_crl(revoked_by_root), headers=CRL_HEADERS
            )
        )
        intermediate_route = respx.get(INTERMEDIATE_CRL_URL).mock(
            return_value=httpx.Response(
                200, content=self.intermediate_crl(revoked_by_intermediate), headers=CRL_HEADERS
            )
        )
        return root_route, intermediate_route


def build_pki() -> MdsPki:
    root_key = ec.generate_private_key(ec.SECP384R1())
    root_name = subject_name("Test Root CA")
    root = issue_certificate("Test Root CA", root_key.public_key(), root_name, root_key, ca=True)

    intermediate_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    intermediate = issue_certificate(
        "Test Intermediate CA",
        intermediate_key.public_key(),
        root.subject,
        root_key,
        ca=True,
        crl_url=ROOT_CRL_URL,
    )

    leaf_key = ec.generate_private_key(ec.SECP256R1())
    leaf = issue_certificate(
        "Test Metadata Signer",
        leaf_key.public_key(),
        intermediate.subject,
        intermediate_key,
        ca=False,
        crl_url=INTERMEDIATE_CRL_URL,
    )
    return MdsPki(root, root_key, intermediate, intermediate_key, leaf, leaf_key)


@pytest.fixture(scope="session")
def pki() -> MdsPki:
    """One PKI for the whole session; RSA key generation is slow."""
    return build_pki()


# ─────────────────────── Payload documents ───────────────────────


def fido2_entry(
    aaguid: str = FIDO2_AAGUID,
    status_reports: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    return {
        "aaguid": aaguid,
        "metadataStatement": {
            "aaguid": aaguid,
            "description": "Security Key by Yubico with Biometrics",
            "protocolFamily": "fido2",
        },
        "statusReports": status_reports
        or [
            {"status": "FIDO_CERTIFIED", "effectiveDate": "2021-08-06"},
            {"status": "FIDO_CERTIFIED_L1", "effectiveDate": "2021-08-06"},
        ],
        "timeOfLastStatusChange": "2021-08-06",
    }


def uaf_entry(aaid: str = UAF_AAID) -> dict[str, Any]:
    return {
        "aaid": aaid,
        "metadataStatement": {"aaid": aaid, "protocolFamily": "uaf"},
        "statusReports": [{"status": "FIDO_CERTIFIED", "effectiveDate": "2018-05-19"}],
        "timeOfLastStatusChange": "2018-05-19",
    }


def u2f_entry(key_identifier: str = U2F_AKI) -> dict[str, Any]:
    """U2F entry whose key identifiers only appear inside metadataStatement."""
    return {
        "metadataStatement": {
            "attestationCertificateKeyIdentifiers": [key_identifier],
            "protocolFamily": "u2f",
        },
        "statusReports": [{"status": "FIDO_CERTIFIED", "effectiveDate": "2017-11-28"}],
        "timeOfLastStatusChange": "2017-11-28",
    }


def payload_document(
    *,
    no: int = 5,
    next_update: str = "2099-01-01",
    entries: list[dict[str, Any]] | None = None,
    legal_header: str = "L",
) -> dict[str, Any]:
    return {
        "legalHeader": legal_header,
        "no": no,
        "nextUpdate": next_update,
        "entries": entries if entries is not None else [fido2_entry(), uaf_entry(), u2f_entry()],
    }


# ─────────────────────── Clock ───────────────────────


class FakeClock:
    """Callable clock whose time tests move explicitly."""

    def __init__(self, now: datetime | None = None) -> None:
        self.now = now or datetime.now(UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


# ─────────────────────── Settings ───────────────────────


@pytest.fixture()
def settings(tmp_path: Path) -> MdsSettings:
    """Bundled defaults pointed at the test hosts and a throwaway cache directory."""
    return MdsSettings(
        mds=MdsSourceSettings(url=MDS_URL, file=tmp_path / "blob.jwt"),
        root=RootSettings(url=DEFAULT_ROOT_URL, file=tmp_path / "root.crt"),
        payload=PayloadSettings(file=tmp_path / "payload.json"),
        http_timeout_seconds=5,
    )

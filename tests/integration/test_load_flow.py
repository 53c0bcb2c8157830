"""
Integration tests for the full metadata load flow.

Simulates the metadata service, the default root certificate host and the
CRL distribution points with respx, and drives everything through the
public surface: MetadataClientBuilder → MetadataClient.

Flows covered:
  1. Default root: downloaded once, cached on disk, reused by a new client
  2. Explicit root URL, root file and root PEM
  3. Envelope from a file instead of the network
  4. Revocation and tampering surfacing as typed exceptions
  5. Periodic refresh when nextUpdate passes

Each test follows Given/When/Then BDD structure.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta
from pathlib import Path

import httpx
import pytest
import respx

from fido_mds import (
    ChainVerificationError,
    MetadataClientBuilder,
    RefreshOption,
    RevokedCertificateError,
    SignatureVerificationError,
)
from fido_mds.config import MdsSettings
from tests.conftest import (
    DEFAULT_ROOT_URL,
    DER_HEADERS,
    FIDO2_AAGUID,
    MDS_URL,
    ROOT_URL,
    U2F_AKI,
    UAF_AAID,
    FakeClock,
    MdsPki,
    b64url,
    der,
    make_self_signed_root,
    payload_document,
    pem,
    sign_jws,
    tamper_signature,
)

pytestmark = pytest.mark.integration


def _mock_default_root(pki: MdsPki) -> respx.Route:
    return respx.get(DEFAULT_ROOT_URL).mock(
        return_value=httpx.Response(200, content=der(pki.root), headers=DER_HEADERS)
    )


def _mock_mds(envelope: str) -> respx.Route:
    return respx.get(MDS_URL).mock(return_value=httpx.Response(200, text=envelope))


class TestDefaultRootFlow:
    @respx.mock
    def test_default_root_is_downloaded_and_cached(
        self, settings: MdsSettings, pki: MdsPki
    ) -> None:
        """
        GIVEN no root configured and no cached root on disk
        WHEN a client loads
        THEN the default root is downloaded, written to the root cache file,
             and the metadata verifies against it.
        """
        root_route = _mock_default_root(pki)
        _mock_mds(pki.envelope(payload_document()))
        pki.mock_crls()

        client = MetadataClientBuilder(settings).build_loaded()

        assert client.find_metadata(FIDO2_AAGUID) is not None
        assert root_route.call_count == 1
        assert settings.root.file.read_bytes() == der(pki.root)
        assert json.loads(settings.payload.file.read_text())["no"] == 5

    @respx.mock
    def test_cached_root_is_reused_by_new_client(
        self, settings: MdsSettings, pki: MdsPki
    ) -> None:
        """
        GIVEN a valid default root already cached on disk
        WHEN a fresh client loads
        THEN the default root URL is never requested.
        """
        settings.root.file.write_bytes(der(pki.root))
        root_route = _mock_default_root(pki)
        _mock_mds(pki.envelope(payload_document()))
        pki.mock_crls()

        MetadataClientBuilder(settings).build_loaded()
        MetadataClientBuilder(settings).build_loaded()

        assert not root_route.called

    @respx.mock
    def test_repeated_loads_resolve_default_once(
        self, settings: MdsSettings, pki: MdsPki
    ) -> None:
        root_route = _mock_default_root(pki)
        mds_route = _mock_mds(pki.envelope(payload_document()))
        pki.mock_crls()

        client = MetadataClientBuilder(settings).build()
        for _ in range(3):
            client.find_by_aaguid(FIDO2_AAGUID, RefreshOption.FORCE)

        assert mds_route.call_count == 3
        assert root_route.call_count == 1


class TestExplicitRootFlow:
    @respx.mock
    def test_root_url(self, settings: MdsSettings, pki: MdsPki) -> None:
        respx.get(ROOT_URL).mock(
            return_value=httpx.Response(200, content=der(pki.root), headers=DER_HEADERS)
        )
        default_route = _mock_default_root(pki)
        _mock_mds(pki.envelope(payload_document()))
        pki.mock_crls()

        client = MetadataClientBuilder(settings, root_url=ROOT_URL).build_loaded()

        assert client.find_by_aaid(UAF_AAID) is not None
        assert not default_route.called

    @respx.mock
    def test_root_file_and_envelope_file(
        self, settings: MdsSettings, pki: MdsPki, tmp_path: Path
    ) -> None:
        """
        GIVEN the envelope and the root certificate as local files
        WHEN a client loads
        THEN only the CRLs are fetched over the network.
        """
        root_file = tmp_path / "trusted-root.der"
        root_file.write_bytes(der(pki.root))
        envelope_file = tmp_path / "downloaded.jwt"
        envelope_file.write_text(pki.envelope(payload_document()))
        mds_route = _mock_mds("unused")
        pki.mock_crls()

        client = (
            MetadataClientBuilder(settings)
            .mds_file(envelope_file)
            .root_file(root_file)
            .build_loaded()
        )

        assert client.find_by_attestation_certificate_key_identifier(U2F_AKI) is not None
        assert not mds_route.called

    @respx.mock
    def test_untrusted_root_is_rejected(self, settings: MdsSettings, pki: MdsPki) -> None:
        """
        GIVEN a root PEM that did not issue the envelope's chain
        WHEN the client loads
        THEN ChainVerificationError is raised and nothing is persisted.
        """
        stranger, _ = make_self_signed_root("Stranger Root")
        _mock_mds(pki.envelope(payload_document()))
        pki.mock_crls()

        builder = MetadataClientBuilder(settings, root_pem=pem(stranger))
        with pytest.raises(ChainVerificationError):
            builder.build_loaded()
        assert not settings.payload.file.exists()


class TestVerificationFailures:
    @respx.mock
    def test_revoked_signer(self, settings: MdsSettings, pki: MdsPki) -> None:
        _mock_mds(pki.envelope(payload_document()))
        pki.mock_crls(revoked_by_intermediate=[pki.leaf.serial_number])
        client = MetadataClientBuilder(settings, root_pem=pki.root_pem).build()
        with pytest.raises(RevokedCertificateError, match="Revoked certificate is included."):
            client.find_by_aaguid(FIDO2_AAGUID)
        assert client.payload is None

    @respx.mock
    def test_forged_payload(self, settings: MdsSettings, pki: MdsPki) -> None:
        header, _, signature = pki.envelope(payload_document()).split(".")
        forged = payload_document(entries=[])
        _mock_mds(f"{header}.{b64url(json.dumps(forged).encode())}.{signature}")
        pki.mock_crls()
        client = MetadataClientBuilder(settings, root_pem=pki.root_pem).build()
        with pytest.raises(SignatureVerificationError, match="JWS cannot be verified."):
            client.find_metadata(FIDO2_AAGUID)

    def test_tampered_intermediate_in_jwt(self, settings: MdsSettings, pki: MdsPki) -> None:
        """
        GIVEN an envelope passed as text whose intermediate certificate is altered
        WHEN the client loads
        THEN ChainVerificationError is raised before any JWS check.
        """
        envelope = sign_jws(
            json.dumps(payload_document()),
            pki.leaf_key,
            [pki.leaf, tamper_signature(pki.intermediate)],
        )
        with respx.mock:
            pki.mock_crls()
            client = MetadataClientBuilder(
                settings, mds_jwt=envelope, root_pem=pki.root_pem
            ).build()
            with pytest.raises(ChainVerificationError):
                client.load()


class TestRefreshFlow:
    @respx.mock
    def test_reload_after_next_update(self, settings: MdsSettings, pki: MdsPki) -> None:
        """
        GIVEN a client loaded with nextUpdate tomorrow
        WHEN two days pass and a lookup runs
        THEN the client reloads once and serves the newer publication.
        """
        today = datetime.now(UTC)
        tomorrow = (today + timedelta(days=1)).date().isoformat()
        respx.get(MDS_URL).mock(
            side_effect=[
                httpx.Response(
                    200, text=pki.envelope(payload_document(no=1, next_update=tomorrow))
                ),
                httpx.Response(200, text=pki.envelope(payload_document(no=2))),
            ]
        )
        pki.mock_crls()
        clock = FakeClock(today)
        client = (
            MetadataClientBuilder(settings, root_pem=pki.root_pem).with_clock(clock).build()
        )

        client.find_by_aaguid(FIDO2_AAGUID)
        assert client.serial_number == 1
        clock.advance(days=2)
        client.find_by_aaguid(FIDO2_AAGUID)
        assert client.serial_number == 2
        assert json.loads(settings.payload.file.read_text())["no"] == 2

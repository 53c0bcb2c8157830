"""
Pipeline — one metadata load cycle, composed as a railway.

No state of its own: the trust root store, decoder and I/O adapters are
injected, and the result is handed back to the client, which swaps it in.

  configure trust root (url | file | pem)
    → obtain envelope text (url | file | jwt)
      → verify and decode (chain, revocation, JWS)
        → persist payload text to payload_file (side channel, logged only)
          → parse payload → LoadedMetadata

Each stage returns Result[T]; the first failure short-circuits the rest.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import structlog

from fido_mds.config import ClientConfig
from fido_mds.domain.models import AccessMds, AccessRootCertificate, MetadataPayload
from fido_mds.domain.ports import Fetcher, FileStore, PayloadParser
from fido_mds.envelope import EnvelopeDecoder
from fido_mds.errors import ErrorCode
from fido_mds.result import Result
from fido_mds.trust_root import TrustRootStore

log = structlog.get_logger()


@dataclass(frozen=True, slots=True)
class LoadedMetadata:
    """Outcome of a successful load: the parsed payload and its verified text."""

    payload: MetadataPayload
    payload_text: str


def _setting_error(message: str) -> Result:
    return Result.failure(ErrorCode.SETTING_ERROR, message)


def configure_trust_root(config: ClientConfig, trust_roots: TrustRootStore) -> Result[str]:
    """
    Detach the current root and install the one the config asks for.

    In url mode with the default root URL (or no URL) nothing is installed:
    the decoder then resolves the default root through its local cache.
    Returns the access mode used.
    """
    trust_roots.detach()
    match config.access_root_certificate:
        case AccessRootCertificate.URL:
            if config.root_url is None or config.root_url == trust_roots.default_url:
                return Result.success("default")
            return trust_roots.set_from_url(config.root_url).map(lambda _: "url")
        case AccessRootCertificate.FILE:
            if config.root_file is None:
                return _setting_error("Please set root certificate file.")
            return trust_roots.set_from_file(config.root_file).map(lambda _: "file")
        case AccessRootCertificate.PEM:
            if not config.root_pem:
                return _setting_error("Please set root certificate pem.")
            return trust_roots.set_from_pem(config.root_pem).map(lambda _: "pem")
        case _:
            return _setting_error("Please set how to access root certificate.")


def obtain_envelope(config: ClientConfig, fetcher: Fetcher, files: FileStore) -> Result[str]:
    """Return the signed envelope text from the configured source."""
    match config.access_mds:
        case AccessMds.URL:
            if not config.mds_url:
                return _setting_error("Please set mds url.")
            return fetcher.fetch_text(config.mds_url)
        case AccessMds.FILE:
            if config.mds_file is None:
                return _setting_error("Please set mds file.")
            return files.read_text(config.mds_file)
        case AccessMds.JWT:
            if not config.mds_jwt:
                return _setting_error("Please set mds jwt.")
            return Result.success(config.mds_jwt)
        case _:
            return _setting_error("Please set how to access MDS.")


def persist_payload(payload_text: str, payload_file: Path | None, files: FileStore) -> None:
    """Write the verified payload text; a failed write is logged, never raised."""
    if payload_file is None:
        return
    files.write_text(payload_file, payload_text).peek(
        lambda path: log.info("pipeline.payload_persisted", path=str(path))
    ).peek_failure(
        lambda err: log.warning(
            "pipeline.payload_persist_failed", path=str(payload_file), error=err.message
        )
    )


def run_pipeline(
    config: ClientConfig,
    trust_roots: TrustRootStore,
    decoder: EnvelopeDecoder,
    fetcher: Fetcher,
    files: FileStore,
    parser: PayloadParser,
) -> Result[LoadedMetadata]:
    """
    Execute one full load cycle.

    Returns Result[LoadedMetadata] on success, or the failure of the first
    failing stage (SETTING_ERROR, ACCESS_ERROR, any verification error,
    PAYLOAD_ERROR).
    """
    return (
        configure_trust_root(config, trust_roots)
        .peek(lambda mode: log.info("pipeline.trust_root_configured", mode=mode))
        .flat_map(lambda _: obtain_envelope(config, fetcher, files))
        .flat_map(decoder.verify_and_decode)
        .peek(lambda text: persist_payload(text, config.payload_file, files))
        .flat_map(
            lambda text: parser.parse(text).map(
                lambda payload: LoadedMetadata(payload=payload, payload_text=text)
            )
        )
    )

"""
Builder — construction surface for MetadataClient.

Options (keyword arguments or fluent setters):

  mds_url | mds_file | mds_jwt         where the signed envelope comes from
  root_url | root_file | root_pem      where the trust root comes from
  payload_file                         where the verified payload is cached
  access_mds, access_root_certificate  explicit access modes

When no access mode is given and exactly one source option of its group is
set, the mode is inferred from that option. Anything left unset is filled
from MdsSettings.

This is where the concrete adapters are instantiated and wired into the
client; everything past this point depends on the port protocols.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Any

import httpx
from pydantic import ValidationError

from fido_mds.adapters.file_store import LocalFileStore
from fido_mds.adapters.http_client import HttpFetcher
from fido_mds.adapters.payload_parser import JsonPayloadParser
from fido_mds.chain import ChainVerifier
from fido_mds.client import MetadataClient
from fido_mds.config import ClientConfig, MdsSettings
from fido_mds.domain.models import AccessMds, AccessRootCertificate
from fido_mds.domain.ports import Fetcher, FileStore
from fido_mds.envelope import EnvelopeDecoder
from fido_mds.errors import InvalidParameterError, SettingError
from fido_mds.trust_root import TrustRootStore

_MDS_SOURCES = {
    "mds_url": AccessMds.URL,
    "mds_file": AccessMds.FILE,
    "mds_jwt": AccessMds.JWT,
}
_ROOT_SOURCES = {
    "root_url": AccessRootCertificate.URL,
    "root_file": AccessRootCertificate.FILE,
    "root_pem": AccessRootCertificate.PEM,
}
_OPTIONS = frozenset(
    {*_MDS_SOURCES, *_ROOT_SOURCES, "payload_file", "access_mds", "access_root_certificate"}
)


def _infer_access(options: dict[str, Any], sources: dict[str, str], mode_key: str) -> None:
    if mode_key in options:
        return
    given = [name for name in sources if name in options]
    if len(given) == 1:
        options[mode_key] = sources[given[0]]


class MetadataClientBuilder:
    """
    Build a MetadataClient from options layered over MdsSettings.

    Usage:
        client = MetadataClientBuilder(mds_jwt=envelope, root_pem=pem).build()
        entry = client.find_by_aaguid(aaguid)
    """

    def __init__(self, settings: MdsSettings | None = None, **options: Any) -> None:
        unknown = sorted(set(options) - _OPTIONS)
        if unknown:
            raise InvalidParameterError(f"Unknown option(s): {', '.join(unknown)}.")

        given = {name: value for name, value in options.items() if value}
        _infer_access(given, _MDS_SOURCES, "access_mds")
        _infer_access(given, _ROOT_SOURCES, "access_root_certificate")

        self._settings = settings or MdsSettings()
        self._values: dict[str, Any] = {
            **ClientConfig.from_settings(self._settings).model_dump(),
            **given,
        }
        self._fetcher: Fetcher | None = None
        self._files: FileStore | None = None
        self._http_client: httpx.Client | None = None
        self._clock: Callable[[], datetime] | None = None

    # ─────────────────────── Fluent setters ───────────────────────

    def _set(
        self, name: str, value: Any, mode_key: str | None = None, mode: str = ""
    ) -> MetadataClientBuilder:
        if not value:
            raise InvalidParameterError(f'"{name}" is empty.')
        self._values[name] = value
        if mode_key is not None:
            self._values[mode_key] = mode
        return self

    def mds_url(self, url: str) -> MetadataClientBuilder:
        return self._set("mds_url", url and str(url), "access_mds", AccessMds.URL)

    def mds_file(self, path: str | Path) -> MetadataClientBuilder:
        return self._set("mds_file", path, "access_mds", AccessMds.FILE)

    def mds_jwt(self, jwt: str) -> MetadataClientBuilder:
        return self._set("mds_jwt", jwt, "access_mds", AccessMds.JWT)

    def payload_file(self, path: str | Path) -> MetadataClientBuilder:
        return self._set("payload_file", path)

    def root_url(self, url: str) -> MetadataClientBuilder:
        return self._set(
            "root_url", url and str(url), "access_root_certificate", AccessRootCertificate.URL
        )

    def root_file(self, path: str | Path) -> MetadataClientBuilder:
        return self._set(
            "root_file", path, "access_root_certificate", AccessRootCertificate.FILE
        )

    def root_pem(self, pem: str) -> MetadataClientBuilder:
        return self._set(
            "root_pem", pem, "access_root_certificate", AccessRootCertificate.PEM
        )

    # ─────────────────────── Collaborators ───────────────────────

    def with_fetcher(self, fetcher: Fetcher) -> MetadataClientBuilder:
        self._fetcher = fetcher
        return self

    def with_file_store(self, files: FileStore) -> MetadataClientBuilder:
        self._files = files
        return self

    def with_http_client(self, client: httpx.Client) -> MetadataClientBuilder:
        """Share one httpx.Client (connection pool, proxies) across all fetches."""
        self._http_client = client
        return self

    def with_clock(self, clock: Callable[[], datetime]) -> MetadataClientBuilder:
        self._clock = clock
        return self

    # ─────────────────────── Build ───────────────────────

    def config(self) -> ClientConfig:
        """The ClientConfig the next build() will use."""
        try:
            return ClientConfig(**self._values)
        except ValidationError as e:
            raise SettingError(f"Invalid client configuration: {e}") from e

    def build(self) -> MetadataClient:
        """Wire a client. Nothing is fetched until the first lookup or load()."""
        config = self.config()
        fetcher = self._fetcher or HttpFetcher(
            timeout=self._settings.http_timeout_seconds, client=self._http_client
        )
        files = self._files or LocalFileStore()
        trust_roots = TrustRootStore(
            fetcher,
            files,
            default_url=self._settings.root.url,
            default_file=self._settings.root.file,
            clock=self._clock,
        )
        decoder = EnvelopeDecoder(trust_roots, ChainVerifier(fetcher))
        return MetadataClient(
            config,
            trust_roots,
            decoder,
            fetcher,
            files,
            JsonPayloadParser(),
            clock=self._clock,
        )

    def build_loaded(self) -> MetadataClient:
        """Wire a client and load the metadata immediately."""
        return self.build().load()

"""
Metadata client — the loaded metadata, its refresh policy and the lookups.

State lives in one immutable snapshot (payload, verified payload text,
load time). A load builds a complete new snapshot and installs it with a
single assignment, so readers see either the old state or the new one.

Refresh decision, evaluated before every lookup:

  force  → reload
  needed → reload when nothing is loaded or nextUpdate has passed
  error  → StaleDataError when nothing is loaded or nextUpdate has passed

This is the exception boundary of the package: pipeline failures travel as
Result values and are raised here as typed MdsError subclasses.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, date, datetime, time
from enum import Enum
from typing import TypeAlias

import structlog

from fido_mds.config import ClientConfig
from fido_mds.domain.models import (
    Fido2Entry,
    MetadataEntry,
    MetadataPayload,
    RefreshOption,
    U2fEntry,
    UafEntry,
)
from fido_mds.domain.ports import Fetcher, FileStore, PayloadParser
from fido_mds.envelope import EnvelopeDecoder
from fido_mds.errors import InvalidParameterError, StaleDataError
from fido_mds.pipeline import run_pipeline
from fido_mds.trust_root import TrustRootStore

log = structlog.get_logger()

Refresh: TypeAlias = RefreshOption | str | bool | None


class LookupStrategy(Enum):
    """Identifier kinds, in the order find_metadata tries them."""

    BY_AAGUID = "aaguid"
    BY_AAID = "aaid"
    BY_AKI = "attestationCertificateKeyIdentifiers"


@dataclass(frozen=True, slots=True)
class _Snapshot:
    payload: MetadataPayload | None = None
    payload_text: str | None = None
    updated_at: datetime | None = None


def _matches(entry: MetadataEntry, strategy: LookupStrategy, identifier: str) -> bool:
    match strategy, entry:
        case LookupStrategy.BY_AAGUID, Fido2Entry(aaguids=aaguids):
            return identifier in aaguids
        case LookupStrategy.BY_AAID, UafEntry(aaids=aaids):
            return identifier in aaids
        case LookupStrategy.BY_AKI, U2fEntry(key_identifiers=key_identifiers):
            return identifier in key_identifiers
        case _:
            return False


class MetadataClient:
    """
    Find authenticator metadata by AAGUID, AAID or attestation key identifier.

    Build instances with MetadataClientBuilder. Every find_* method takes a
    refresh option (RefreshOption, its string value, or a bool where True
    means force) and returns None when nothing matches.
    """

    def __init__(
        self,
        config: ClientConfig,
        trust_roots: TrustRootStore,
        decoder: EnvelopeDecoder,
        fetcher: Fetcher,
        files: FileStore,
        parser: PayloadParser,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._config = config
        self._trust_roots = trust_roots
        self._decoder = decoder
        self._fetcher = fetcher
        self._files = files
        self._parser = parser
        self._clock = clock or (lambda: datetime.now(UTC))
        self._lock = threading.RLock()
        self._snapshot = _Snapshot()

    # ─────────────────────── State ───────────────────────

    @property
    def config(self) -> ClientConfig:
        return self._config

    @property
    def trust_roots(self) -> TrustRootStore:
        return self._trust_roots

    @property
    def entries(self) -> tuple[MetadataEntry, ...] | None:
        payload = self._snapshot.payload
        return payload.entries if payload is not None else None

    @property
    def legal_header(self) -> str | None:
        payload = self._snapshot.payload
        return payload.legal_header if payload is not None else None

    @property
    def serial_number(self) -> int | None:
        payload = self._snapshot.payload
        return payload.serial_number if payload is not None else None

    @property
    def next_update_at(self) -> date | None:
        payload = self._snapshot.payload
        return payload.next_update if payload is not None else None

    @property
    def updated_at(self) -> datetime | None:
        return self._snapshot.updated_at

    @property
    def payload(self) -> MetadataPayload | None:
        return self._snapshot.payload

    def payload_json(self) -> str | None:
        """The verified payload text of the last load, exactly as signed."""
        return self._snapshot.payload_text

    def is_stale(self) -> bool:
        """True when nothing is loaded or the start of nextUpdate has passed."""
        payload = self._snapshot.payload
        if payload is None:
            return True
        return datetime.combine(payload.next_update, time.min, tzinfo=UTC) < self._clock()

    # ─────────────────────── Loading ───────────────────────

    def load(self) -> MetadataClient:
        """
        Fetch, verify and parse the metadata now, replacing the current state.

        Raises the MdsError subclass of the first failing stage; the previous
        state is kept in that case.
        """
        with self._lock:
            outcome = run_pipeline(
                self._config,
                self._trust_roots,
                self._decoder,
                self._fetcher,
                self._files,
                self._parser,
            ).peek_failure(
                lambda err: log.error(
                    "client.refresh_failed", error_code=err.code.value, error=err.message
                )
            )
            loaded = outcome.unwrap()
            self._snapshot = _Snapshot(
                payload=loaded.payload,
                payload_text=loaded.payload_text,
                updated_at=self._clock(),
            )
        log.info(
            "client.refresh_completed",
            serial_number=loaded.payload.serial_number,
            next_update=loaded.payload.next_update.isoformat(),
            entries=loaded.payload.total_entries,
        )
        return self

    refresh = load

    def _apply_refresh(self, refresh: Refresh) -> None:
        match RefreshOption.coerce(refresh):
            case RefreshOption.FORCE:
                self.load()
            case RefreshOption.NEEDED:
                if self.is_stale():
                    with self._lock:
                        # another caller may have reloaded while we waited
                        if self.is_stale():
                            self.load()
            case RefreshOption.ERROR:
                if self.is_stale():
                    next_update = self.next_update_at
                    shown = next_update.isoformat() if next_update is not None else None
                    raise StaleDataError(
                        f"Metadata is old. Update at {shown}", next_update_at=next_update
                    )

    # ─────────────────────── Lookups ───────────────────────

    def _scan(self, strategy: LookupStrategy, identifier: str) -> MetadataEntry | None:
        for entry in self.entries or ():
            if _matches(entry, strategy, identifier):
                return entry
        return None

    def _find(
        self, strategy: LookupStrategy, identifier: str, refresh: Refresh
    ) -> MetadataEntry | None:
        if not identifier:
            raise InvalidParameterError(f'"{strategy.value}" is empty.')
        self._apply_refresh(refresh)
        return self._scan(strategy, identifier)

    def find_by_aaguid(
        self, aaguid: str, refresh: Refresh = RefreshOption.NEEDED
    ) -> MetadataEntry | None:
        """Find a FIDO2 authenticator by AAGUID."""
        return self._find(LookupStrategy.BY_AAGUID, aaguid, refresh)

    def find_by_aaid(
        self, aaid: str, refresh: Refresh = RefreshOption.NEEDED
    ) -> MetadataEntry | None:
        """Find a FIDO UAF authenticator by AAID."""
        return self._find(LookupStrategy.BY_AAID, aaid, refresh)

    def find_by_attestation_certificate_key_identifier(
        self, key_identifier: str, refresh: Refresh = RefreshOption.NEEDED
    ) -> MetadataEntry | None:
        """Find a FIDO U2F authenticator by one of its attestation key identifiers."""
        return self._find(LookupStrategy.BY_AKI, key_identifier, refresh)

    def find_metadata(
        self, identifier: str, refresh: Refresh = RefreshOption.NEEDED
    ) -> MetadataEntry | None:
        """
        Find an authenticator of any protocol family.

        Tries AAGUID, then AAID, then attestation key identifier. The refresh
        decision runs before the first attempt only, so a call reloads at
        most once. The `error` option applies to every attempt.
        """
        if not identifier:
            raise InvalidParameterError('"identifier" is empty.')

        option = RefreshOption.coerce(refresh)
        if option is not RefreshOption.ERROR:
            self._apply_refresh(option)
        for strategy in LookupStrategy:
            if option is RefreshOption.ERROR:
                self._apply_refresh(option)
            found = self._scan(strategy, identifier)
            if found is not None:
                return found
        return None

"""
Domain models — immutable value objects for the decoded metadata document.

The verified payload is a JSON document:

    {legalHeader, no, nextUpdate, entries: [MetadataBLOBPayloadEntry, ...]}

Each entry describes one authenticator model and is identified in exactly
one of three mutually exclusive ways, depending on its protocol family:

  - FIDO2   → aaguid
  - FIDO UAF → aaid
  - FIDO U2F → attestationCertificateKeyIdentifiers

The identifying field may sit at the entry's top level or inside its nested
metadataStatement. Entries are modelled as a tagged union (Fido2Entry,
UafEntry, U2fEntry) decided once, when the payload is parsed.

All models are frozen dataclasses.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date
from enum import StrEnum
from typing import Any


class AccessMds(StrEnum):
    """How to obtain the signed metadata envelope."""

    URL = "url"
    FILE = "file"
    JWT = "jwt"


class AccessRootCertificate(StrEnum):
    """How to obtain the trust root certificate."""

    URL = "url"
    FILE = "file"
    PEM = "pem"


class RefreshOption(StrEnum):
    """
    Whether a lookup may reload the metadata first.

    needed: reload only if nothing is loaded or nextUpdate has passed.
    force:  always reload.
    error:  never reload; fail with StaleDataError if the data is stale.
    """

    NEEDED = "needed"
    FORCE = "force"
    ERROR = "error"

    @classmethod
    def coerce(cls, value: RefreshOption | str | bool | None) -> RefreshOption:
        """Map True/False to force/needed and None to needed."""
        if value is None:
            return cls.NEEDED
        if isinstance(value, bool):
            return cls.FORCE if value else cls.NEEDED
        return cls(value)


class ProtocolFamily(StrEnum):
    FIDO2 = "fido2"
    UAF = "uaf"
    U2F = "u2f"


class AuthenticatorStatus(StrEnum):
    """
    Status codes reported in statusReports.

    Declaration order is the precedence used to break ties between reports
    sharing an effectiveDate: later members win. Certification levels rise
    in order and every security notice outranks every certification.
    """

    NOT_FIDO_CERTIFIED = "NOT_FIDO_CERTIFIED"
    SELF_ASSERTION_SUBMITTED = "SELF_ASSERTION_SUBMITTED"
    FIDO_CERTIFIED = "FIDO_CERTIFIED"
    FIDO_CERTIFIED_L1 = "FIDO_CERTIFIED_L1"
    FIDO_CERTIFIED_L1PLUS = "FIDO_CERTIFIED_L1plus"
    FIDO_CERTIFIED_L2 = "FIDO_CERTIFIED_L2"
    FIDO_CERTIFIED_L2PLUS = "FIDO_CERTIFIED_L2plus"
    FIDO_CERTIFIED_L3 = "FIDO_CERTIFIED_L3"
    FIDO_CERTIFIED_L3PLUS = "FIDO_CERTIFIED_L3plus"
    UPDATE_AVAILABLE = "UPDATE_AVAILABLE"
    USER_VERIFICATION_BYPASS = "USER_VERIFICATION_BYPASS"
    USER_KEY_PHYSICAL_COMPROMISE = "USER_KEY_PHYSICAL_COMPROMISE"
    USER_KEY_REMOTE_COMPROMISE = "USER_KEY_REMOTE_COMPROMISE"
    ATTESTATION_KEY_COMPROMISE = "ATTESTATION_KEY_COMPROMISE"
    REVOKED = "REVOKED"


_STATUS_PRECEDENCE: dict[str, int] = {
    status.value: rank for rank, status in enumerate(AuthenticatorStatus, start=1)
}


def status_precedence(status: str) -> int:
    """Tie-break rank of a status string; unknown statuses rank 0."""
    return _STATUS_PRECEDENCE.get(status, 0)


@dataclass(frozen=True, slots=True)
class StatusReport:
    """
    One statusReports element.

    `status` stays a plain string so statuses introduced after this release
    still load; `authenticator_status` is None for those.
    """

    status: str
    effective_date: date | None = None
    raw: Mapping[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @property
    def authenticator_status(self) -> AuthenticatorStatus | None:
        try:
            return AuthenticatorStatus(self.status)
        except ValueError:
            return None


@dataclass(frozen=True, slots=True, kw_only=True)
class MetadataEntry:
    """Fields shared by every entry shape. Use the concrete subclasses."""

    status_reports: tuple[StatusReport, ...]
    time_of_last_status_change: date | None = None
    metadata_statement: Mapping[str, Any] | None = field(default=None, repr=False, compare=False)
    raw: Mapping[str, Any] = field(default_factory=dict, repr=False, compare=False)

    protocol_family: ProtocolFamily = field(init=False, repr=False)

    @property
    def aaguid(self) -> str | None:
        return None

    @property
    def aaid(self) -> str | None:
        return None

    @property
    def attestation_certificate_key_identifiers(self) -> tuple[str, ...] | None:
        return None

    def latest_status_report(self) -> StatusReport:
        """
        Return the report that reflects the entry's current status.

        Reports are ordered by effectiveDate, then by status precedence
        (FIDO_CERTIFIED_L1 beats FIDO_CERTIFIED on the same day), then by
        position in the list. Undated reports are older than dated ones.
        """
        indexed = enumerate(self.status_reports)
        _, report = max(
            indexed,
            key=lambda pair: (
                pair[1].effective_date or date.min,
                status_precedence(pair[1].status),
                pair[0],
            ),
        )
        return report

    def latest_authenticator_status(self) -> str:
        return self.latest_status_report().status


@dataclass(frozen=True, slots=True, kw_only=True)
class Fido2Entry(MetadataEntry):
    """FIDO2 authenticator, identified by AAGUID."""

    aaguids: tuple[str, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "protocol_family", ProtocolFamily.FIDO2)

    @property
    def aaguid(self) -> str | None:
        return self.aaguids[0]


@dataclass(frozen=True, slots=True, kw_only=True)
class UafEntry(MetadataEntry):
    """FIDO UAF authenticator, identified by AAID (form XXXX#XXXX)."""

    aaids: tuple[str, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "protocol_family", ProtocolFamily.UAF)

    @property
    def aaid(self) -> str | None:
        return self.aaids[0]


@dataclass(frozen=True, slots=True, kw_only=True)
class U2fEntry(MetadataEntry):
    """FIDO U2F authenticator, identified by attestation certificate key identifiers."""

    key_identifiers: tuple[str, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "protocol_family", ProtocolFamily.U2F)

    @property
    def attestation_certificate_key_identifiers(self) -> tuple[str, ...] | None:
        return self.key_identifiers


@dataclass(frozen=True, slots=True)
class MetadataPayload:
    """
    The decoded content of one metadata publication.

    Replaced wholesale on every successful load. `quarantined` holds raw
    entries that matched no identifying shape, or more than one.
    """

    legal_header: str
    serial_number: int
    next_update: date
    entries: tuple[MetadataEntry, ...] = ()
    quarantined: tuple[Mapping[str, Any], ...] = field(default=(), repr=False)

    @property
    def total_entries(self) -> int:
        return len(self.entries)

    def count_by_family(self) -> dict[ProtocolFamily, int]:
        counts = {family: 0 for family in ProtocolFamily}
        for entry in self.entries:
            counts[entry.protocol_family] += 1
        return counts

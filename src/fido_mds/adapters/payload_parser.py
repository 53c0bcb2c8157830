"""
Payload parser adapter — verified payload text → MetadataPayload.

Implements the PayloadParser port with the standard json module and the
frozen domain models.

Pipeline:
  payload text (already signature-verified)
    → json.loads → top-level fields (legalHeader, no, nextUpdate, entries)
    → per entry: find which identifying fields are present, at the top level
      or inside metadataStatement
    → exactly one kind present → Fido2Entry / UafEntry / U2fEntry
    → none or several kinds present → quarantined (logged, not served)

Key design decision: an entry is never trusted on the strength of a cast.
Its shape is decided from the fields it actually carries, once, here.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from datetime import date
from typing import Any

import structlog

from fido_mds.domain.models import (
    Fido2Entry,
    MetadataEntry,
    MetadataPayload,
    StatusReport,
    U2fEntry,
    UafEntry,
)
from fido_mds.errors import ErrorCode, PayloadError
from fido_mds.result import Result

log = structlog.get_logger()

_AAGUID = "aaguid"
_AAID = "aaid"
_AKI = "attestationCertificateKeyIdentifiers"


# ─────────────────────── Field helpers ───────────────────────


def _parse_date(value: Any, field_name: str) -> date | None:
    """Parse an ISO YYYY-MM-DD date; None when absent."""
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise PayloadError(f'"{field_name}" is not a date string.')
    try:
        return date.fromisoformat(value[:10])
    except ValueError as e:
        raise PayloadError(f'"{field_name}" is not an ISO date: {value!r}') from e


def _identifier_values(entry: Mapping[str, Any], key: str) -> tuple[str, ...]:
    """
    Collect an identifying field from the entry and its metadataStatement.

    Top-level values come first; duplicates are dropped. AKI lists are
    flattened. Empty strings and empty lists count as absent.
    """
    sources: list[Any] = [entry.get(key)]
    statement = entry.get("metadataStatement")
    if isinstance(statement, Mapping):
        sources.append(statement.get(key))

    values: list[str] = []
    for source in sources:
        items = source if isinstance(source, list) else [source]
        for item in items:
            if isinstance(item, str) and item and item not in values:
                values.append(item)
    return tuple(values)


def _parse_status_reports(entry: Mapping[str, Any]) -> tuple[StatusReport, ...]:
    raw_reports = entry.get("statusReports")
    if not isinstance(raw_reports, list) or not raw_reports:
        raise PayloadError('"statusReports" must be a non-empty array.')

    reports: list[StatusReport] = []
    for raw in raw_reports:
        if not isinstance(raw, Mapping) or not isinstance(raw.get("status"), str):
            raise PayloadError('Every status report needs a "status" string.')
        reports.append(
            StatusReport(
                status=raw["status"],
                effective_date=_parse_date(raw.get("effectiveDate"), "effectiveDate"),
                raw=raw,
            )
        )
    return tuple(reports)


# ─────────────────────── Entry discrimination ───────────────────────


def parse_entry(data: Mapping[str, Any] | str) -> MetadataEntry:
    """
    Build the typed entry for one MetadataBLOBPayloadEntry.

    Accepts the decoded JSON object or its JSON text. Raises PayloadError
    when the entry has no identifying field, identifying fields of more
    than one protocol family, unusable status reports, or no
    timeOfLastStatusChange.
    """
    if isinstance(data, str):
        try:
            data = json.loads(data)
        except json.JSONDecodeError as e:
            raise PayloadError(f"Entry is not valid JSON: {e}") from e
    if not isinstance(data, Mapping):
        raise PayloadError("Entry is not a JSON object.")

    aaguids = _identifier_values(data, _AAGUID)
    aaids = _identifier_values(data, _AAID)
    key_identifiers = _identifier_values(data, _AKI)

    present = [
        name
        for name, values in ((_AAGUID, aaguids), (_AAID, aaids), (_AKI, key_identifiers))
        if values
    ]
    if len(present) != 1:
        found = ", ".join(present) or "none"
        raise PayloadError(f"Entry must carry exactly one identifier kind (found: {found}).")

    changed = _parse_date(data.get("timeOfLastStatusChange"), "timeOfLastStatusChange")
    if changed is None:
        raise PayloadError('"timeOfLastStatusChange" is missing.')

    statement = data.get("metadataStatement")
    common: dict[str, Any] = {
        "status_reports": _parse_status_reports(data),
        "time_of_last_status_change": changed,
        "metadata_statement": statement if isinstance(statement, Mapping) else None,
        "raw": data,
    }

    match present[0]:
        case "aaguid":
            return Fido2Entry(aaguids=aaguids, **common)
        case "aaid":
            return UafEntry(aaids=aaids, **common)
        case _:
            return U2fEntry(key_identifiers=key_identifiers, **common)


# ─────────────────────── Public Parser Class ───────────────────────


class JsonPayloadParser:
    """
    Parse verified payload JSON into a MetadataPayload.

    Implements the PayloadParser port. All exceptions are caught at this
    adapter boundary via Result.from_computation().
    """

    def parse(self, payload_text: str) -> Result[MetadataPayload]:
        """
        Returns Result[MetadataPayload] on success.
        Returns Result.failure(PAYLOAD_ERROR, ...) when the document itself is
        unusable; individual bad entries are quarantined instead.
        """
        return Result.from_computation(
            lambda: self._do_parse(payload_text),
            ErrorCode.PAYLOAD_ERROR,
            "Metadata payload cannot be parsed",
        )

    def _do_parse(self, payload_text: str) -> MetadataPayload:
        document = json.loads(payload_text)
        if not isinstance(document, Mapping):
            raise PayloadError("Metadata payload is not a JSON object.")

        serial_number = document.get("no")
        if not isinstance(serial_number, int) or isinstance(serial_number, bool):
            raise PayloadError('"no" must be an integer.')

        next_update = _parse_date(document.get("nextUpdate"), "nextUpdate")
        if next_update is None:
            raise PayloadError('"nextUpdate" is missing.')

        raw_entries = document.get("entries")
        if not isinstance(raw_entries, list):
            raise PayloadError('"entries" must be an array.')

        entries: list[MetadataEntry] = []
        quarantined: list[Mapping[str, Any]] = []
        for index, raw in enumerate(raw_entries):
            try:
                entries.append(parse_entry(raw))
            except PayloadError as e:
                log.warning("payload.entry_quarantined", index=index, reason=e.message)
                quarantined.append(raw if isinstance(raw, Mapping) else {"value": raw})

        payload = MetadataPayload(
            legal_header=str(document.get("legalHeader", "")),
            serial_number=serial_number,
            next_update=next_update,
            entries=tuple(entries),
            quarantined=tuple(quarantined),
        )
        log.info(
            "payload.parsed",
            serial_number=serial_number,
            next_update=next_update.isoformat(),
            entries=payload.total_entries,
            quarantined=len(quarantined),
        )
        return payload

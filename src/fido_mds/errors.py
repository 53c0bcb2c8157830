"""
Error taxonomy — one ErrorCode per failure kind, one exception class per code.

Internal stages carry failures on the Result railway as FailureDescription
objects tagged with an ErrorCode. The public client converts them back into
the exception class registered for that code, so callers can handle
failures by kind:

    try:
        client.find_by_aaguid(aaguid)
    except SettingError:
        ...  # prompt for re-configuration
    except AccessError:
        ...  # metadata service unreachable
"""

from __future__ import annotations

from datetime import date
from enum import Enum, unique
from typing import ClassVar


@unique
class ErrorCode(Enum):
    """Structured error codes for the failure track."""

    INVALID_PARAMETER = "INVALID_PARAMETER"
    """Caller passed an empty or missing required argument."""

    ACCESS_ERROR = "ACCESS_ERROR"
    """Network or file fetch failed (non-2xx, non-binary body, unreadable path)."""

    MALFORMED_ENVELOPE = "MALFORMED_ENVELOPE"
    """Signed envelope is not three non-empty segments with a usable header."""

    CERTIFICATE_PARSE_ERROR = "CERTIFICATE_PARSE_ERROR"
    """A certificate could not be decoded from PEM/DER."""

    CHAIN_VERIFICATION_ERROR = "CHAIN_VERIFICATION_ERROR"
    """A chain link signature did not validate, or a structure was unreadable."""

    REVOKED_CERTIFICATE = "REVOKED_CERTIFICATE"
    """A chain certificate's serial number is in the revocation set."""

    SIGNATURE_VERIFICATION_ERROR = "SIGNATURE_VERIFICATION_ERROR"
    """The JWS signature over the envelope failed verification."""

    SETTING_ERROR = "SETTING_ERROR"
    """Configuration value missing for the selected access mode, or bad mode."""

    STALE_DATA = "STALE_DATA"
    """Metadata is past its nextUpdate date and refreshing was not allowed."""

    PAYLOAD_ERROR = "PAYLOAD_ERROR"
    """Verified payload is not a valid metadata document."""

    UNKNOWN_ERROR = "UNKNOWN_ERROR"
    """Unexpected or unclassified failure."""


class MdsError(Exception):
    """Base class for every error raised by fido_mds."""

    code: ClassVar[ErrorCode] = ErrorCode.UNKNOWN_ERROR

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidParameterError(MdsError):
    code = ErrorCode.INVALID_PARAMETER


class AccessError(MdsError):
    """Fetching a remote resource or reading a local file failed."""

    code = ErrorCode.ACCESS_ERROR

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class MalformedEnvelopeError(MdsError):
    code = ErrorCode.MALFORMED_ENVELOPE


class ChainVerificationError(MdsError):
    code = ErrorCode.CHAIN_VERIFICATION_ERROR


class CertificateParseError(ChainVerificationError):
    """A PEM/DER certificate could not be parsed."""

    code = ErrorCode.CERTIFICATE_PARSE_ERROR


class RevokedCertificateError(MdsError):
    code = ErrorCode.REVOKED_CERTIFICATE


class SignatureVerificationError(MdsError):
    code = ErrorCode.SIGNATURE_VERIFICATION_ERROR


class SettingError(MdsError):
    code = ErrorCode.SETTING_ERROR


class PayloadError(MdsError):
    code = ErrorCode.PAYLOAD_ERROR


class StaleDataError(MdsError):
    """
    Metadata is past its nextUpdate date and the caller asked not to refresh.

    `next_update_at` is the stale date (None when nothing was ever loaded).
    """

    code = ErrorCode.STALE_DATA

    def __init__(self, message: str, next_update_at: date | None = None) -> None:
        super().__init__(message)
        self.next_update_at = next_update_at


_ERRORS_BY_CODE: dict[ErrorCode, type[MdsError]] = {
    cls.code: cls
    for cls in (
        InvalidParameterError,
        AccessError,
        MalformedEnvelopeError,
        CertificateParseError,
        ChainVerificationError,
        RevokedCertificateError,
        SignatureVerificationError,
        SettingError,
        StaleDataError,
        PayloadError,
    )
}


def error_class_for(code: ErrorCode) -> type[MdsError]:
    """Return the exception class registered for an ErrorCode (MdsError if none)."""
    return _ERRORS_BY_CODE.get(code, MdsError)

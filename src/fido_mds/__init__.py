"""
fido_mds — FIDO Metadata Service (MDS3) client.

Fetches the signed metadata BLOB, verifies its certificate chain against a
trust root (with CRL revocation checks) and its JWS signature, and answers
lookups by AAGUID, AAID or attestation certificate key identifier,
refreshing the data when it passes its nextUpdate date.

Built on a Result railway for the load pipeline; the client raises typed
MdsError subclasses at its boundary.
"""

__version__ = "0.1.0"

from fido_mds.builder import MetadataClientBuilder  # noqa: E402
from fido_mds.client import MetadataClient  # noqa: E402
from fido_mds.domain.models import (  # noqa: E402
    AccessMds,
    AccessRootCertificate,
    AuthenticatorStatus,
    Fido2Entry,
    MetadataEntry,
    MetadataPayload,
    RefreshOption,
    StatusReport,
    U2fEntry,
    UafEntry,
)
from fido_mds.errors import (  # noqa: E402
    AccessError,
    CertificateParseError,
    ChainVerificationError,
    InvalidParameterError,
    MalformedEnvelopeError,
    MdsError,
    PayloadError,
    RevokedCertificateError,
    SettingError,
    SignatureVerificationError,
    StaleDataError,
)

__all__ = [
    "AccessError",
    "AccessMds",
    "AccessRootCertificate",
    "AuthenticatorStatus",
    "CertificateParseError",
    "ChainVerificationError",
    "Fido2Entry",
    "InvalidParameterError",
    "MalformedEnvelopeError",
    "MdsError",
    "MetadataClient",
    "MetadataClientBuilder",
    "MetadataEntry",
    "MetadataPayload",
    "PayloadError",
    "RefreshOption",
    "RevokedCertificateError",
    "SettingError",
    "SignatureVerificationError",
    "StaleDataError",
    "StatusReport",
    "U2fEntry",
    "UafEntry",
    "__version__",
]

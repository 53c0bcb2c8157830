"""
Ports — Protocol-based interfaces for the I/O the verification pipeline needs.

These define WHAT the pipeline needs without specifying HOW it is done:

  Domain ← Ports (protocols) ← Adapters (httpx, local files, json)

Each port is a Protocol (structural typing): adapters and test doubles
satisfy it by implementing the methods, no inheritance required.
Every method returns a Result; nothing raises across a port.
"""

from __future__ import annotations

from pathlib import Path
from typing import Protocol, runtime_checkable

from fido_mds.domain.models import MetadataPayload
from fido_mds.result import Result


@runtime_checkable
class Fetcher(Protocol):
    """
    Port: retrieve a remote resource.

    Non-2xx responses and transport errors are failures tagged ACCESS_ERROR,
    with the HTTP status code carried by the AccessError when there is one.
    """

    def fetch(self, url: str) -> Result[bytes]:
        """Return the raw response body."""
        ...

    def fetch_text(self, url: str) -> Result[str]:
        """Return the response body decoded as text."""
        ...

    def fetch_binary(self, url: str) -> Result[bytes]:
        """Return the body, failing if the server labelled it as text."""
        ...


@runtime_checkable
class FileStore(Protocol):
    """Port: read and write local files (trust root cache, envelope, payload)."""

    def read_bytes(self, path: Path) -> Result[bytes]: ...

    def read_text(self, path: Path) -> Result[str]: ...

    def write_bytes(self, path: Path, data: bytes) -> Result[Path]: ...

    def write_text(self, path: Path, text: str) -> Result[Path]: ...


@runtime_checkable
class PayloadParser(Protocol):
    """
    Port: turn the verified payload text into a MetadataPayload.

    The implementation discriminates every entry into its protocol-family
    shape and quarantines entries that fit none or several.
    """

    def parse(self, payload_text: str) -> Result[MetadataPayload]: ...

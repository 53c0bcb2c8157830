"""
Trust root store — the single root certificate every chain must end in.

Holds at most one explicitly configured root (from a PEM string, a DER/PEM
file or a URL). When none is configured, resolve() falls back to the default
root:

  cached default file exists and now ∈ [notBefore, notAfter] → reuse it
  otherwise                                                  → fetch the default
                                                               URL and persist it

Each MetadataClient owns its own store, so independent clients may trust
different roots. Setting or detaching the root affects later verifications
only; a decode already holding a resolved root is unaffected.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path

import structlog
from cryptography import x509

from fido_mds.certificates import (
    describe,
    is_within_validity,
    load_certificate_bytes,
    load_certificate_pem,
)
from fido_mds.domain.ports import FileStore, Fetcher
from fido_mds.errors import ErrorCode
from fido_mds.result import Result

log = structlog.get_logger()


class TrustRootStore:
    """
    One trust-root slot plus the lazy default-root fallback.

    Every operation returns a Result; the setters also install the parsed
    certificate as the active root on success.
    """

    def __init__(
        self,
        fetcher: Fetcher,
        files: FileStore,
        default_url: str,
        default_file: Path,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._fetcher = fetcher
        self._files = files
        self._default_url = default_url
        self._default_file = Path(default_file)
        self._clock = clock or (lambda: datetime.now(UTC))
        self._lock = threading.Lock()
        self._active: x509.Certificate | None = None
        self._default: x509.Certificate | None = None

    @property
    def active(self) -> x509.Certificate | None:
        """The explicitly configured root, or None."""
        return self._active

    @property
    def default_url(self) -> str:
        return self._default_url

    # ─────────────────────── Explicit configuration ───────────────────────

    def set_from_pem(self, pem: str) -> Result[x509.Certificate]:
        """Parse a PEM certificate and make it the active root."""
        return Result.from_computation(
            lambda: load_certificate_pem(pem),
            ErrorCode.CERTIFICATE_PARSE_ERROR,
            "Root certificate cannot be parsed",
        ).peek(self._install)

    def set_from_file(self, path: Path) -> Result[x509.Certificate]:
        """Read a DER (or PEM) certificate file and make it the active root."""
        return (
            self._files.read_bytes(Path(path))
            .flat_map(self._parse_bytes)
            .peek(self._install)
        )

    def set_from_url(self, url: str) -> Result[x509.Certificate]:
        """Download a DER certificate and make it the active root."""
        return self._fetcher.fetch_binary(url).flat_map(self._parse_bytes).peek(self._install)

    def detach(self) -> None:
        """Clear the active root; the next resolve() uses the default root."""
        with self._lock:
            self._active = None

    # ─────────────────────── Resolution ───────────────────────

    def resolve(self) -> Result[x509.Certificate]:
        """Return the active root, falling back to the default root."""
        active = self._active
        if active is not None:
            return Result.success(active)
        return self.resolve_default()

    def resolve_default(self) -> Result[x509.Certificate]:
        """
        Return the default root, re-fetching it when the cached one is unusable.

        The decision is re-made on every call: a memoized default that has
        since expired is replaced by a fresh download.
        """
        now = self._clock()
        with self._lock:
            if self._default is not None and is_within_validity(self._default, now):
                return Result.success(self._default)

            cached = self._files.read_bytes(self._default_file).flat_map(self._parse_bytes)
            if cached.is_success() and is_within_validity(cached.value(), now):
                self._default = cached.value()
                log.info("trust_root.default_cached", **describe(self._default))
                return cached

            log.info(
                "trust_root.default_fetching",
                url=self._default_url,
                reason="expired" if cached.is_success() else "missing",
            )
            fetched = self._fetcher.fetch_binary(self._default_url).flat_map(
                self._persist_and_parse
            )
            if fetched.is_success():
                self._default = fetched.value()
                log.info("trust_root.default_fetched", **describe(self._default))
            return fetched

    # ─────────────────────── Internals ───────────────────────

    def _install(self, cert: x509.Certificate) -> None:
        with self._lock:
            self._active = cert
        log.info("trust_root.set", **describe(cert))

    @staticmethod
    def _parse_bytes(data: bytes) -> Result[x509.Certificate]:
        return Result.from_computation(
            lambda: load_certificate_bytes(data),
            ErrorCode.CERTIFICATE_PARSE_ERROR,
            "Root certificate cannot be parsed",
        )

    def _persist_and_parse(self, data: bytes) -> Result[x509.Certificate]:
        parsed = self._parse_bytes(data)
        if parsed.is_success():
            self._files.write_bytes(self._default_file, data).peek_failure(
                lambda err: log.warning(
                    "trust_root.persist_failed", path=str(self._default_file), error=err.message
                )
            )
        return parsed

"""
HTTP adapter — the fetch(url) capability via httpx.

Implements the Fetcher port with synchronous httpx calls. Used for the
metadata envelope, the trust root certificate and every CRL distribution
point found on the chain.

One attempt per fetch: there is no retry here, callers needing retry wrap
the client externally. All HTTP errors are captured into Result failures
tagged ACCESS_ERROR, so no httpx exception leaks into the pipeline.
"""

from __future__ import annotations

import httpx
import structlog

from fido_mds.errors import AccessError, ErrorCode
from fido_mds.result import Result

log = structlog.get_logger()

_TEXT_CONTENT_TYPES = ("text/", "application/json")


class HttpFetcher:
    """
    Retrieve remote resources with plain GET requests.

    Implements the Fetcher port. A shared httpx.Client may be injected
    (tests, connection pooling); otherwise a short-lived one is opened per call.
    """

    def __init__(self, timeout: float = 60, client: httpx.Client | None = None) -> None:
        self._timeout = timeout
        self._client = client

    def fetch(self, url: str) -> Result[bytes]:
        """
        GET the URL and return the raw body.

        Returns Result.failure(ACCESS_ERROR, ...) on transport errors and on any
        non-2xx status ("Request has error. Status code: N").
        """
        return Result.from_computation(
            lambda: self._do_get(url).content,
            ErrorCode.ACCESS_ERROR,
            f"Request to {url} failed",
        )

    def fetch_text(self, url: str) -> Result[str]:
        return Result.from_computation(
            lambda: self._do_get(url).text,
            ErrorCode.ACCESS_ERROR,
            f"Request to {url} failed",
        )

    def fetch_binary(self, url: str) -> Result[bytes]:
        """GET a binary resource (certificate, CRL); a text or empty body is a failure."""
        return Result.from_computation(
            lambda: self._binary_body(self._do_get(url)),
            ErrorCode.ACCESS_ERROR,
            f"Request to {url} failed",
        )

    @staticmethod
    def _binary_body(response: httpx.Response) -> bytes:
        content_type = response.headers.get("content-type", "").lower()
        if not response.content or content_type.startswith(_TEXT_CONTENT_TYPES):
            raise AccessError("Response data is not binary.")
        return response.content

    def _do_get(self, url: str) -> httpx.Response:
        """Single GET — exceptions caught by from_computation."""
        if self._client is not None:
            response = self._client.get(url, follow_redirects=True)
        else:
            with httpx.Client(timeout=self._timeout) as client:
                response = client.get(url, follow_redirects=True)
        if not response.is_success:
            raise AccessError(
                f"Request has error. Status code: {response.status_code}",
                status_code=response.status_code,
            )
        log.info("http.fetched", url=url, size_bytes=len(response.content))
        return response

"""
HTTP fetching for template executions.

Thin wrapper over httpx.AsyncClient that applies the conventions every
template request shares:

- GET or POST; a POST body is sent as JSON content
- template headers are passed through as-is (non-standard names allowed)
- a bounded per-request timeout
- a default User-Agent, overridable by template headers
- response bytes decoded with the declared encoding (utf8 or gbk)

HTTP error statuses are not raised. Many data endpoints return useful
bodies with 4xx/5xx codes, and a body that does not parse fails later
at extraction anyway.
"""

from __future__ import annotations

import logging

import httpx

logger = logging.getLogger(__name__)

_ENCODINGS = {
    "utf8": "utf-8",
    "utf-8": "utf-8",
    "gbk": "gbk",
}


def decode_body(raw: bytes, encoding: str = "utf8") -> str:
    """Decode response bytes using a template encoding name (utf8 default)."""
    codec = _ENCODINGS.get((encoding or "utf8").lower(), "utf-8")
    return raw.decode(codec, errors="replace")


class HttpFetcher:
    """
    Issues template requests.

    Args:
        timeout: Request timeout in seconds
        user_agent: Default User-Agent header
        http_client: Optional shared client (caller manages lifecycle).
                     If not provided, one client is created lazily and
                     closed by aclose().
    """

    def __init__(
        self,
        *,
        timeout: float = 10.0,
        user_agent: str = "",
        http_client: httpx.AsyncClient | None = None,
    ):
        self._timeout = timeout
        self._user_agent = user_agent
        self._shared_client = http_client  # Caller-managed (don't close)
        self._owned_client: httpx.AsyncClient | None = None  # Self-managed (do close)

    def _get_client(self) -> httpx.AsyncClient:
        if self._shared_client is not None:
            return self._shared_client
        if self._owned_client is None or self._owned_client.is_closed:
            self._owned_client = httpx.AsyncClient(timeout=self._timeout, follow_redirects=True)
        return self._owned_client

    async def fetch(
        self,
        url: str,
        *,
        method: str = "GET",
        body: str = "",
        headers: dict[str, str] | None = None,
    ) -> bytes:
        """
        Perform one request and return the raw response body.

        Raises:
            httpx.HTTPError: On timeouts, connection failures and invalid URLs
        """
        method = "POST" if method.upper() == "POST" else "GET"

        # httpx.Headers merges case-insensitively, so "user-agent" in a
        # template replaces the default rather than duplicating it
        request_headers = httpx.Headers()
        if self._user_agent:
            request_headers["User-Agent"] = self._user_agent
        request_headers.update(headers or {})

        content: bytes | None = None
        if method == "POST" and body:
            content = body.encode("utf-8")
            if "Content-Type" not in request_headers:
                request_headers["Content-Type"] = "application/json; charset=utf-8"

        logger.debug(f"[http] {method} {url}")

        response = await self._get_client().request(
            method,
            url,
            content=content,
            headers=request_headers,
            timeout=self._timeout,
        )

        if response.status_code >= 400:
            logger.warning(f"[http] {method} {url} returned {response.status_code}")

        return response.content

    async def aclose(self) -> None:
        """Close the owned client, if one was created."""
        if self._owned_client is not None and not self._owned_client.is_closed:
            await self._owned_client.aclose()
        self._owned_client = None

"""Async HTML fetch collaborator for vehicle listing pages.

Plain GET with browser-like headers.  No retries: failures surface as
:class:`ListingFetchError` and retry policy belongs to the caller.
"""

from __future__ import annotations

import logging
from typing import Any

import aiohttp

logger = logging.getLogger(__name__)

_REQUEST_TIMEOUT = aiohttp.ClientTimeout(total=15)

BROWSER_HEADERS: dict[str, str] = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
    ),
    "Accept": (
        "text/html,application/xhtml+xml,application/xml;q=0.9,"
        "image/avif,image/webp,*/*;q=0.8"
    ),
    "Accept-Language": "en-US,en;q=0.9",
}


class ListingFetchError(RuntimeError):
    """Raised when a listing page cannot be fetched."""

    def __init__(
        self,
        message: str,
        *,
        code: str,
        status: int | None = None,
        url: str = "",
    ) -> None:
        super().__init__(message)
        self.code = code
        self.status = status
        self.url = url


def _validate_url(url: str) -> str:
    normalized = url.strip()
    if not normalized.lower().startswith(("http://", "https://")):
        raise ValueError(f"Invalid listing URL '{url}': must start with http:// or https://")
    return normalized


class ListingFetcher:
    """Fetch listing HTML.  Use as ``async with ListingFetcher() as fetcher``."""

    def __init__(self, *, headers: dict[str, str] | None = None) -> None:
        self.session: aiohttp.ClientSession | None = None
        self._headers = headers or BROWSER_HEADERS

    async def __aenter__(self) -> ListingFetcher:
        self.session = aiohttp.ClientSession(headers=self._headers)
        return self

    async def __aexit__(self, *args: Any) -> None:
        if self.session:
            await self.session.close()

    async def fetch(self, url: str) -> str:
        if not self.session:
            raise RuntimeError("Client not entered as context manager")
        url = _validate_url(url)

        try:
            async with self.session.get(url, timeout=_REQUEST_TIMEOUT) as resp:
                if resp.status >= 400:
                    raise ListingFetchError(
                        f"Failed to fetch listing: HTTP {resp.status}",
                        code="HTTP_ERROR",
                        status=resp.status,
                        url=url,
                    )
                html = await resp.text()
        except ListingFetchError:
            raise
        except TimeoutError as exc:
            raise ListingFetchError(
                "Listing request timed out.", code="TIMEOUT", url=url
            ) from exc
        except aiohttp.ClientError as exc:
            logger.error("Listing fetch error (%s): %s", url, exc)
            raise ListingFetchError(
                "Listing request failed due to a network/client error.",
                code="NETWORK_ERROR",
                url=url,
            ) from exc

        logger.debug("Fetched %d characters from %s", len(html), url)
        return html

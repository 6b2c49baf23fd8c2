"""Tests for the listing fetcher and the parse_vehicle_url tool."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from haggle_mcp.clients.listing_fetcher import ListingFetcher, ListingFetchError
from haggle_mcp.tools.parsing import parse_vehicle_url_impl

LISTING_URL = "https://www.round-rock-honda.com/used/accord"
LISTING_HTML = "<title>2021 Honda Accord Sport</title><span class='x'>$24,995</span>"


def _response_ctx(status: int = 200, text: str = "") -> AsyncMock:
    ctx = AsyncMock()
    ctx.__aenter__ = AsyncMock(return_value=ctx)
    ctx.__aexit__ = AsyncMock(return_value=False)
    ctx.status = status
    ctx.text = AsyncMock(return_value=text)
    return ctx


def _fetcher_with(ctx_or_error) -> ListingFetcher:
    fetcher = ListingFetcher()
    fetcher.session = MagicMock()
    if isinstance(ctx_or_error, Exception):
        fetcher.session.get = MagicMock(side_effect=ctx_or_error)
    else:
        fetcher.session.get = MagicMock(return_value=ctx_or_error)
    fetcher.session.close = AsyncMock()
    return fetcher


class _FetcherFactory:
    """Stands in for ``ListingFetcher`` in ``async with fetcher_factory()``."""

    def __init__(self, fetcher: ListingFetcher) -> None:
        self._fetcher = fetcher

    def __call__(self) -> _FetcherFactory:
        return self

    async def __aenter__(self) -> ListingFetcher:
        return self._fetcher

    async def __aexit__(self, *args) -> None:
        return None


class TestListingFetcher:
    async def test_returns_html(self):
        fetcher = _fetcher_with(_response_ctx(200, LISTING_HTML))
        assert await fetcher.fetch(LISTING_URL) == LISTING_HTML
        assert fetcher.session.get.call_args.args[0] == LISTING_URL

    async def test_http_error(self):
        fetcher = _fetcher_with(_response_ctx(403))
        with pytest.raises(ListingFetchError) as info:
            await fetcher.fetch(LISTING_URL)
        assert info.value.code == "HTTP_ERROR"
        assert info.value.status == 403

    async def test_network_error(self):
        fetcher = _fetcher_with(aiohttp.ClientError("reset"))
        with pytest.raises(ListingFetchError) as info:
            await fetcher.fetch(LISTING_URL)
        assert info.value.code == "NETWORK_ERROR"

    async def test_timeout(self):
        fetcher = _fetcher_with(TimeoutError())
        with pytest.raises(ListingFetchError) as info:
            await fetcher.fetch(LISTING_URL)
        assert info.value.code == "TIMEOUT"

    async def test_rejects_non_http_url(self):
        fetcher = _fetcher_with(_response_ctx(200, ""))
        with pytest.raises(ValueError):
            await fetcher.fetch("ftp://example.com/car")
        fetcher.session.get.assert_not_called()

    async def test_requires_context_manager(self):
        with pytest.raises(RuntimeError):
            await ListingFetcher().fetch(LISTING_URL)


class TestParseVehicleUrlImpl:
    async def test_extracts_fetched_page(self):
        factory = _FetcherFactory(_fetcher_with(_response_ctx(200, LISTING_HTML)))
        payload = json.loads(await parse_vehicle_url_impl(LISTING_URL, fetcher_factory=factory))
        assert payload["fallback"] is False
        assert payload["vehicle"]["model"] == "Accord"
        assert payload["pricing"]["asking_price"] == 24995
        assert payload["dealer"]["name"] == "Round Rock Honda"

    async def test_fetch_failure_falls_back_to_hostname(self):
        factory = _FetcherFactory(_fetcher_with(_response_ctx(503)))
        payload = json.loads(await parse_vehicle_url_impl(LISTING_URL, fetcher_factory=factory))
        assert payload["fallback"] is True
        assert payload["fetch_error"] == "HTTP_ERROR"
        assert payload["dealer"]["name"] == "www.round-rock-honda.com"
        assert payload["vehicle"]["listing_url"] == LISTING_URL

    async def test_create_deal(self, store):
        factory = _FetcherFactory(_fetcher_with(_response_ctx(200, LISTING_HTML)))
        payload = json.loads(
            await parse_vehicle_url_impl(
                LISTING_URL, user_id="user-1", create_deal=True, fetcher_factory=factory
            )
        )
        deal = store.get("deals", payload["created"]["deal_id"])
        assert deal["asking_price"] == 24995.0
        assert deal["status"] == "quote_requested"

    async def test_create_deal_requires_user(self):
        factory = _FetcherFactory(_fetcher_with(_response_ctx(200, LISTING_HTML)))
        with pytest.raises(ValueError):
            await parse_vehicle_url_impl(LISTING_URL, create_deal=True, fetcher_factory=factory)

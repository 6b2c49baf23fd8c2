"""Conversation and listing-URL parsing tool implementations."""

from __future__ import annotations

import json
import logging
from typing import Any, Callable

from haggle_mcp.clients.listing_fetcher import ListingFetcher, ListingFetchError
from haggle_mcp.data.registry import get_store
from haggle_mcp.deals import create_deal_from_extraction
from haggle_mcp.extraction import (
    ExtractionResult,
    build_conversation_text,
    extract_from_conversation,
    extract_listing,
    fallback_listing,
    tables_from_env,
)
from haggle_mcp.pricing.fees import validate_zip_code

logger = logging.getLogger(__name__)


def _persisted_ids(created: dict[str, Any]) -> dict[str, str]:
    return {
        "deal_id": created["deal"]["id"],
        "vehicle_id": created["vehicle"]["id"],
        "dealer_id": created["dealer"]["id"],
    }


def _maybe_create_deal(
    payload: dict[str, Any],
    result: ExtractionResult,
    *,
    user_id: str,
    create_deal: bool,
    zip_code: str,
) -> None:
    if not create_deal:
        return
    if not user_id:
        raise ValueError("user_id is required when create_deal is true.")
    created = create_deal_from_extraction(
        get_store(), user_id, result, zip_code=zip_code or None
    )
    payload["created"] = _persisted_ids(created)


def parse_conversation_impl(
    *,
    conversation: str = "",
    messages: list[dict[str, Any]] | None = None,
    dealer_info: dict[str, Any] | None = None,
    user_id: str = "",
    create_deal: bool = False,
    zip_code: str = "",
) -> str:
    """Extract vehicle, dealer, and pricing facts from dealer conversation text."""
    text = conversation.strip()
    if not text and messages:
        text = build_conversation_text(messages)
    if not text:
        return "Provide conversation text or a list of messages to parse."
    if zip_code:
        validate_zip_code(zip_code)

    result = extract_from_conversation(text, dealer_info, tables=tables_from_env())
    payload: dict[str, Any] = result.to_dict()
    _maybe_create_deal(
        payload, result, user_id=user_id, create_deal=create_deal, zip_code=zip_code
    )
    return json.dumps(payload, indent=2, default=str)


async def parse_vehicle_url_impl(
    url: str,
    *,
    user_id: str = "",
    create_deal: bool = False,
    zip_code: str = "",
    fetcher_factory: Callable[[], ListingFetcher] = ListingFetcher,
) -> str:
    """Fetch a listing page and extract it; fetch failures degrade to the hostname fallback."""
    if not url or not url.strip():
        return "Provide a listing URL to parse."
    if zip_code:
        validate_zip_code(zip_code)

    tables = tables_from_env()
    payload: dict[str, Any]
    try:
        async with fetcher_factory() as fetcher:
            html = await fetcher.fetch(url)
    except ListingFetchError as exc:
        logger.warning("Listing fetch failed for %s (%s), using fallback", url, exc.code)
        result = fallback_listing(url.strip())
        payload = {**result.to_dict(), "fallback": True, "fetch_error": exc.code}
    else:
        result = extract_listing(url.strip(), html, tables=tables)
        payload = {**result.to_dict(), "fallback": False}

    _maybe_create_deal(
        payload, result, user_id=user_id, create_deal=create_deal, zip_code=zip_code
    )
    return json.dumps(payload, indent=2, default=str)

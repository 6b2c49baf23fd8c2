"""Inbound dealer email: cleanup, offer detection, and deal attribution."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from haggle_mcp.constants import ACTIVE_DEAL_STATUSES, GENERAL_INBOX_NAME
from haggle_mcp.data.store import RecordStore
from haggle_mcp.extraction.conversation import (
    CONVERSATION_PRICE_RANGE,
    DEALER_NAME_STRATEGIES,
    find_dollar_amounts,
    find_phone,
    find_stock_number,
    pick_asking_price,
    prices_in_range,
)
from haggle_mcp.extraction.tables import DEFAULT_TABLES, ExtractionTables
from haggle_mcp.extraction.vin import find_vin
from haggle_mcp.normalization import capitalize_first

logger = logging.getLogger(__name__)

_REPLY_HEADER_RE = re.compile(
    r"^On\s+\w+,\s+\w+\s+\d+,\s+\d{4}\s+at\s+\d+:\d+\s*(?:AM|PM).*wrote:\s*$", re.IGNORECASE
)
_HEADER_PREFIXES = ("From:", "Sent:", "To:", "Subject:")
_SIGNATURE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\n\n--\s*\n.*$", re.DOTALL),
    re.compile(r"\n\nSent from my iPhone.*$", re.DOTALL | re.IGNORECASE),
    re.compile(r"\n\nSent from my Android.*$", re.DOTALL | re.IGNORECASE),
    re.compile(r"\n\nGet Outlook for iOS.*$", re.DOTALL | re.IGNORECASE),
    re.compile(r"\n\nThanks,?\s*\n.*$", re.DOTALL | re.IGNORECASE),
    re.compile(r"\n\nBest regards?,?\s*\n.*$", re.DOTALL | re.IGNORECASE),
    re.compile(r"\n\nSincerely,?\s*\n.*$", re.DOTALL | re.IGNORECASE),
)
_NAME_REJECT_WORDS = ("http", "gmail", "yahoo", "wrote", "sent", "from")
_RECIPIENT_RE = re.compile(r"^deals-([^@]+)@", re.IGNORECASE)


def clean_email_content(content: str) -> str:
    """Drop quoted replies, reply headers, and common signatures."""
    if not content:
        return content
    kept: list[str] = []
    for line in content.splitlines():
        stripped = line.strip()
        if stripped.startswith(">"):
            break
        if _REPLY_HEADER_RE.match(stripped):
            break
        if "wrote:" in stripped and "@" in stripped:
            break
        if stripped.startswith(_HEADER_PREFIXES):
            break
        kept.append(line)
    cleaned = "\n".join(kept).strip()
    for pattern in _SIGNATURE_PATTERNS:
        cleaned = pattern.sub("", cleaned)
    return cleaned.strip()


@dataclass(frozen=True)
class OfferDetection:
    contains_offer: bool
    extracted_price: int | None


def detect_offer(content: str) -> OfferDetection:
    """Decided once, when the message is created: highest in-range dollar figure."""
    price = pick_asking_price(prices_in_range(find_dollar_amounts(content), CONVERSATION_PRICE_RANGE))
    return OfferDetection(price is not None, price)


def _acceptable_dealer_name(name: str) -> bool:
    lowered = name.lower()
    return (
        3 < len(name) < 50
        and "@" not in name
        and not any(word in lowered for word in _NAME_REJECT_WORDS)
    )


def dealer_name_from_email(
    content: str, sender_email: str, tables: ExtractionTables = DEFAULT_TABLES
) -> str:
    for strategy in DEALER_NAME_STRATEGIES:
        name = strategy(content or "", tables)
        if name and _acceptable_dealer_name(name):
            return name
    domain = sender_email.rsplit("@", 1)[-1] if "@" in sender_email else "unknown.com"
    domain = re.sub(r"^www\.", "", domain.lower())
    return capitalize_first(re.sub(r"\.(com|net|org)$", "", domain))


def user_id_from_recipient(recipient: str) -> str | None:
    """``deals-<user>@<inbound domain>`` -> ``<user>``."""
    match = _RECIPIENT_RE.match(recipient.strip())
    return match.group(1) if match else None


# ── Store-backed attribution ────────────────────────────────────────


def _active_deals_for(store: RecordStore, user_id: str, **criteria: Any) -> list[dict[str, Any]]:
    rows = store.filter("deals", {"user_id": user_id, **criteria}, order_by="-created_at")
    return [d for d in rows if d.get("status") in ACTIVE_DEAL_STATUSES]


def _deal_for_vehicle_field(
    store: RecordStore, user_id: str, field: str, value: str
) -> dict[str, Any] | None:
    for vehicle in store.filter("vehicles", {"user_id": user_id, field: value}):
        deals = _active_deals_for(store, user_id, vehicle_id=vehicle["id"])
        if deals:
            return deals[0]
    return None


def match_inbound_deal(
    store: RecordStore, user_id: str, dealer_id: str | None, text: str
) -> tuple[dict[str, Any] | None, str]:
    """Match VIN, then stock number, then the dealer's most recent active deal.

    Returns ``(deal, matched_by)``; ``matched_by`` is ``""`` when nothing matched.
    """
    vin = find_vin(text)
    if vin:
        deal = _deal_for_vehicle_field(store, user_id, "vin", vin)
        if deal is not None:
            return deal, "vin"
    stock = find_stock_number(text)
    if stock:
        deal = _deal_for_vehicle_field(store, user_id, "stock_number", stock)
        if deal is not None:
            return deal, "stock_number"
    if dealer_id:
        deals = _active_deals_for(store, user_id, dealer_id=dealer_id)
        if deals:
            return deals[0], "dealer"
    return None, ""


def get_or_create_general_inbox(store: RecordStore, user_id: str) -> dict[str, Any]:
    """The user's single fallback dealer for messages no deal claims."""
    for dealer in store.filter("dealers", {"user_id": user_id}, order_by="created_at"):
        if dealer.get("name") == GENERAL_INBOX_NAME:
            return dealer
    return store.create("dealers", {
        "user_id": user_id,
        "name": GENERAL_INBOX_NAME,
        "notes": "System inbox for messages that don't match any specific deals.",
    })


def _find_or_create_sender_dealer(
    store: RecordStore, user_id: str, sender: str, body: str, tables: ExtractionTables
) -> dict[str, Any]:
    existing = store.filter("dealers", {"user_id": user_id, "contact_email": sender})
    if existing:
        return existing[0]
    name = dealer_name_from_email(body, sender, tables)
    logger.info("Creating dealer %r for sender %s", name, sender)
    return store.create("dealers", {"user_id": user_id, "name": name, "contact_email": sender})


def ingest_inbound_email(
    store: RecordStore,
    *,
    sender: str,
    recipient: str,
    subject: str,
    body: str,
    tables: ExtractionTables = DEFAULT_TABLES,
) -> dict[str, Any]:
    """Attribute an inbound dealer email to a deal and store it as a message."""
    if not sender or not recipient or not body:
        raise ValueError("sender, recipient and body are required")
    user_id = user_id_from_recipient(recipient)
    if user_id is None:
        raise ValueError(f"Recipient '{recipient}' is not a deals-<user>@ inbound address")

    dealer = _find_or_create_sender_dealer(store, user_id, sender, body, tables)
    deal, matched_by = match_inbound_deal(store, user_id, dealer["id"], f"{subject} {body}")

    phone = find_phone(body)
    if phone and not dealer.get("phone"):
        dealer = store.update("dealers", dealer["id"], {"phone": phone})

    if deal is not None:
        dealer_id = deal.get("dealer_id") or dealer["id"]
    else:
        dealer_id = get_or_create_general_inbox(store, user_id)["id"]
        logger.info("No deal matched inbound email from %s, filed under %s", sender, GENERAL_INBOX_NAME)

    offer = detect_offer(body)
    message = store.create("messages", {
        "deal_id": deal["id"] if deal is not None else None,
        "dealer_id": dealer_id,
        "user_id": user_id,
        "direction": "inbound",
        "channel": "email",
        "subject": subject,
        "content": clean_email_content(body),
        "sender_email": sender,
        "is_read": False,
        "contains_offer": offer.contains_offer,
        "extracted_price": offer.extracted_price,
    })
    if deal is not None:
        store.update("deals", deal["id"], {
            "last_contact_date": datetime.now(timezone.utc).isoformat(),
        })
    return {"message": message, "deal_id": message["deal_id"], "matched_by": matched_by}

"""Shared constants used across extraction, pricing, and insight modules.

Single source of truth for the VIN alphabet, deal statuses, and price field names.
"""

from __future__ import annotations

import re

# 17 characters, letters/digits excluding I, O, Q.
VIN_RE = re.compile(r"^[A-HJ-NPR-Z0-9]{17}$", re.IGNORECASE)
VIN_TOKEN_RE = re.compile(r"\b[A-HJ-NPR-Z0-9]{17}\b", re.IGNORECASE)

ZIP_CODE_RE = re.compile(r"^[0-9]{5}\Z", re.ASCII)

ACTIVE_DEAL_STATUSES: frozenset[str] = frozenset({
    "quote_requested",
    "negotiating",
    "final_offer",
})

DEAL_STATUSES: tuple[str, ...] = (
    "quote_requested",
    "negotiating",
    "final_offer",
    "accepted",
    "declined",
    "completed",
)

PURCHASE_TYPES: tuple[str, ...] = ("cash", "finance", "lease")

MODE_SALES_PRICE = "sales_price"
MODE_OTD = "otd"
NEGOTIATION_MODES: tuple[str, ...] = (MODE_SALES_PRICE, MODE_OTD)

# Sales-price field -> OTD mirror field.
PRICE_FIELD_PAIRS: dict[str, str] = {
    "asking_price": "otd_asking_price",
    "current_offer": "otd_current_offer",
    "target_price": "otd_target_price",
}
OTD_TO_SALES_FIELDS: dict[str, str] = {otd: sales for sales, otd in PRICE_FIELD_PAIRS.items()}

# Fees are resolved against the current offer, else the asking price.
FEE_BASIS_FIELDS: tuple[str, ...] = ("current_offer", "asking_price")

FEE_FIELDS: tuple[str, ...] = (
    "estimated_sales_tax",
    "estimated_registration_fee",
    "estimated_doc_fee",
    "estimated_title_fee",
)

GENERAL_INBOX_NAME = "General Inbox"

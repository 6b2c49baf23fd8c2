"""Turn an extraction record into persisted vehicle, dealer, and deal rows."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from haggle_mcp.constants import MODE_SALES_PRICE
from haggle_mcp.data.store import RecordStore
from haggle_mcp.extraction.records import ExtractedDealer, ExtractedVehicle, ExtractionResult
from haggle_mcp.pricing.conversion import NegotiationModeService

logger = logging.getLogger(__name__)

_VEHICLE_FIELDS = (
    "year", "make", "model", "trim", "vin", "stock_number", "mileage",
    "condition", "exterior_color", "interior_color", "listing_url",
)
_DEALER_FIELDS = ("name", "contact_email", "phone", "address", "website", "sales_rep_name")
UNKNOWN_DEALER_NAME = "Unknown Dealer"


def find_vehicle_by_vin(store: RecordStore, user_id: str, vin: str) -> dict[str, Any] | None:
    if not vin:
        return None
    rows = store.filter("vehicles", {"user_id": user_id, "vin": vin.upper()})
    return rows[0] if rows else None


def find_dealer_by_name(store: RecordStore, user_id: str, name: str) -> dict[str, Any] | None:
    if not name:
        return None
    wanted = name.strip().lower()
    for dealer in store.filter("dealers", {"user_id": user_id}):
        if (dealer.get("name") or "").strip().lower() == wanted:
            return dealer
    return None


def _upsert_vehicle(store: RecordStore, user_id: str, vehicle: ExtractedVehicle) -> dict[str, Any]:
    existing = find_vehicle_by_vin(store, user_id, vehicle.vin)
    values = {f: getattr(vehicle, f) for f in _VEHICLE_FIELDS}
    if existing is not None:
        # Fill gaps only; never overwrite what the user already has.
        gaps = {k: v for k, v in values.items() if v not in (None, "") and not existing.get(k)}
        return store.update("vehicles", existing["id"], gaps) if gaps else existing
    return store.create("vehicles", {"user_id": user_id, **values})


def _upsert_dealer(store: RecordStore, user_id: str, dealer: ExtractedDealer) -> dict[str, Any]:
    values = {f: getattr(dealer, f) for f in _DEALER_FIELDS}
    values["name"] = dealer.name or UNKNOWN_DEALER_NAME
    existing = find_dealer_by_name(store, user_id, values["name"])
    if existing is not None:
        gaps = {k: v for k, v in values.items() if v and not existing.get(k)}
        return store.update("dealers", existing["id"], gaps) if gaps else existing
    return store.create("dealers", {"user_id": user_id, **values})


def create_deal_from_extraction(
    store: RecordStore,
    user_id: str,
    result: ExtractionResult,
    *,
    zip_code: str | None = None,
    purchase_type: str = "cash",
) -> dict[str, Any]:
    """Persist a new ``quote_requested`` deal for an extracted listing or conversation.

    The vehicle is reused by VIN and the dealer by name (per user).  When a
    zip code is given the fee breakdown is resolved right away.
    """
    vehicle = _upsert_vehicle(store, user_id, result.vehicle)
    dealer = _upsert_dealer(store, user_id, result.dealer)
    deal = store.create("deals", {
        "user_id": user_id,
        "vehicle_id": vehicle["id"],
        "dealer_id": dealer["id"],
        "status": "quote_requested",
        "purchase_type": purchase_type,
        "asking_price": result.pricing.asking_price,
        "current_offer": result.pricing.current_offer,
        "negotiation_mode": MODE_SALES_PRICE,
        "buyer_zip_code": zip_code,
        "manual_fees_override": False,
        "last_contact_date": datetime.now(timezone.utc).isoformat(),
    })
    logger.info("Created deal %s for vehicle %s with dealer %s", deal["id"], vehicle["id"], dealer["id"])

    if zip_code:
        deal = NegotiationModeService(store).refresh_fees(deal["id"], zip_code=zip_code) or deal
    return {"deal": deal, "vehicle": vehicle, "dealer": dealer}

"""Fee resolution and negotiation-mode tool implementations (no CIP calls)."""

from __future__ import annotations

import json
from typing import Any

from haggle_mcp.data.registry import get_store
from haggle_mcp.pricing.conversion import NegotiationModeService
from haggle_mcp.pricing.fees import FeeResolver, ManualFees


def _dump(payload: dict[str, Any]) -> str:
    return json.dumps(payload, indent=2, default=str)


def _service() -> NegotiationModeService:
    return NegotiationModeService(get_store())


def calculate_fees_impl(*, sales_price: float | None, zip_code: str = "") -> str:
    """Resolve a fee breakdown for a price and zip without touching any deal."""
    breakdown = FeeResolver(get_store()).resolve(sales_price, zip_code.strip() or None)
    return _dump(breakdown.to_dict())


def set_negotiation_mode_impl(*, deal_id: str, mode: str) -> str:
    service = _service()
    service.toggle(deal_id, mode.strip().lower())
    return _dump(service.price_summary(deal_id))


def update_deal_price_impl(*, deal_id: str, field: str, value: float | None) -> str:
    """Edit one price in the deal's current mode; ``field`` is a sales-space name."""
    if value is not None and value < 0:
        return "Price must be greater than or equal to 0."
    service = _service()
    service.update_price(deal_id, field.strip(), value)
    return _dump(service.price_summary(deal_id))


def refresh_deal_fees_impl(*, deal_id: str, zip_code: str = "", force: bool = False) -> str:
    service = _service()
    updated = service.refresh_fees(deal_id, zip_code=zip_code.strip() or None, force=force)
    if updated is None:
        return (
            f"Deal '{deal_id}' uses manually entered fees; "
            "pass force=true to recalculate from the zip code."
        )
    return _dump({
        **service.price_summary(deal_id),
        "buyer_zip_code": updated.get("buyer_zip_code"),
        "fee_calculation_method": updated.get("fee_calculation_method"),
    })


def apply_manual_fees_impl(
    *,
    deal_id: str,
    sales_tax: float,
    registration_fee: float = 0.0,
    doc_fee: float = 0.0,
    title_fee: float = 0.0,
) -> str:
    for label, amount in {
        "sales tax": sales_tax,
        "registration fee": registration_fee,
        "doc fee": doc_fee,
        "title fee": title_fee,
    }.items():
        if amount < 0:
            return f"{label.capitalize()} must be greater than or equal to 0."
    service = _service()
    service.apply_manual_fees(
        deal_id, ManualFees(sales_tax, registration_fee, doc_fee, title_fee)
    )
    return _dump({**service.price_summary(deal_id), "fee_calculation_method": "manual_override"})

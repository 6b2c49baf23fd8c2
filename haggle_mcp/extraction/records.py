"""Result records shared by the conversation and listing extractors."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any


@dataclass
class ExtractedVehicle:
    year: int | None = None
    make: str = ""
    model: str = ""
    trim: str = ""
    vin: str = ""
    stock_number: str = ""
    mileage: int | None = None
    condition: str = "used"
    exterior_color: str = ""
    interior_color: str = ""
    listing_url: str = ""


@dataclass
class ExtractedDealer:
    name: str = ""
    contact_email: str = ""
    phone: str = ""
    address: str = ""
    website: str = ""
    sales_rep_name: str = ""

    @classmethod
    def from_hint(cls, hint: dict[str, Any] | None) -> ExtractedDealer:
        """Seed from a known-dealer hint record; unknown keys are ignored."""
        hint = hint or {}
        return cls(
            name=str(hint.get("name") or ""),
            contact_email=str(hint.get("contact_email") or ""),
            phone=str(hint.get("phone") or ""),
            address=str(hint.get("address") or ""),
            website=str(hint.get("website") or ""),
            sales_rep_name=str(hint.get("sales_rep_name") or ""),
        )


@dataclass
class ExtractedPricing:
    asking_price: int | None = None
    current_offer: int | None = None


@dataclass
class ExtractionResult:
    """Normalized ``{vehicle, dealer, pricing}`` record."""

    vehicle: ExtractedVehicle = field(default_factory=ExtractedVehicle)
    dealer: ExtractedDealer = field(default_factory=ExtractedDealer)
    pricing: ExtractedPricing = field(default_factory=ExtractedPricing)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

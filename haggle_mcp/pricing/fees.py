"""Tax and fee resolution for a negotiated sales price.

``FeeResolver.resolve`` is a pure function of the zip reference table: the
same ``(sales_price, zip_code)`` always yields the same breakdown.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any

from haggle_mcp.constants import ZIP_CODE_RE
from haggle_mcp.data.store import RecordStore
from haggle_mcp.normalization import round_currency

logger = logging.getLogger(__name__)

METHOD_NO_PRICE = "no_price"
METHOD_DEFAULT_ESTIMATE = "default_estimate"
METHOD_ZIP_LOOKUP = "zip_code_lookup"
METHOD_MANUAL_OVERRIDE = "manual_override"

DEFAULT_TAX_RATE = 0.08
DEFAULT_REGISTRATION_FEE = 200.0
DEFAULT_DOC_FEE = 300.0
DEFAULT_TITLE_FEE = 50.0


class InvalidZipCodeError(ValueError):
    """Zip code is not exactly five ASCII digits."""


def is_valid_zip_code(zip_code: Any) -> bool:
    return isinstance(zip_code, str) and bool(ZIP_CODE_RE.match(zip_code))


def validate_zip_code(zip_code: Any) -> str:
    if not is_valid_zip_code(zip_code):
        raise InvalidZipCodeError(f"Invalid zip code '{zip_code}': expected 5 digits")
    return zip_code


@dataclass(frozen=True)
class ManualFees:
    """User-entered fee values; bypass the resolver entirely."""

    sales_tax: float = 0.0
    registration_fee: float = 0.0
    doc_fee: float = 0.0
    title_fee: float = 0.0


@dataclass(frozen=True)
class FeeBreakdown:
    sales_tax: float
    registration_fee: float
    doc_fee: float
    title_fee: float
    total_fees: float
    estimated_otd: float
    tax_rate: float
    calculation_method: str

    @property
    def all_fees(self) -> float:
        """Sales tax plus the three flat fees, the amount that separates sales price from OTD."""
        return round_currency(self.sales_tax + self.total_fees) or 0.0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def deal_fields(self) -> dict[str, Any]:
        """Columns persisted on the deal record."""
        return {
            "estimated_sales_tax": self.sales_tax,
            "estimated_registration_fee": self.registration_fee,
            "estimated_doc_fee": self.doc_fee,
            "estimated_title_fee": self.title_fee,
            "estimated_total_fees": self.total_fees,
            "otd_price": self.estimated_otd,
            "fee_calculation_method": self.calculation_method,
        }


def _breakdown(
    sales_price: float,
    sales_tax: float,
    registration_fee: float,
    doc_fee: float,
    title_fee: float,
    tax_rate: float,
    method: str,
) -> FeeBreakdown:
    sales_tax = round_currency(sales_tax)
    registration_fee = round_currency(registration_fee)
    doc_fee = round_currency(doc_fee)
    title_fee = round_currency(title_fee)
    total_fees = round_currency(round_currency(registration_fee + doc_fee) + title_fee)
    estimated_otd = round_currency(round_currency(sales_price + sales_tax) + total_fees)
    return FeeBreakdown(
        sales_tax=sales_tax,
        registration_fee=registration_fee,
        doc_fee=doc_fee,
        title_fee=title_fee,
        total_fees=total_fees,
        estimated_otd=estimated_otd,
        tax_rate=tax_rate,
        calculation_method=method,
    )


def no_price_breakdown(sales_price: float | None = None) -> FeeBreakdown:
    return FeeBreakdown(
        sales_tax=0.0,
        registration_fee=0.0,
        doc_fee=0.0,
        title_fee=0.0,
        total_fees=0.0,
        estimated_otd=round_currency(sales_price or 0) or 0.0,
        tax_rate=0.0,
        calculation_method=METHOD_NO_PRICE,
    )


class FeeResolver:
    """Resolve a fee breakdown from the ``zip_tax_rates`` reference table."""

    def __init__(self, store: RecordStore) -> None:
        self._store = store

    def lookup(self, zip_code: str) -> dict[str, Any] | None:
        """Exact zip match only; no radius or fuzzy matching."""
        rows = self._store.filter("zip_tax_rates", {"zip_code": zip_code})
        return rows[0] if rows else None

    def resolve(
        self,
        sales_price: float | None,
        zip_code: str | None,
        *,
        manual_fees: ManualFees | None = None,
    ) -> FeeBreakdown:
        if manual_fees is not None:
            price = sales_price if sales_price and sales_price > 0 else 0.0
            rate = round(manual_fees.sales_tax / price, 6) if price else 0.0
            return _breakdown(
                price,
                manual_fees.sales_tax,
                manual_fees.registration_fee,
                manual_fees.doc_fee,
                manual_fees.title_fee,
                rate,
                METHOD_MANUAL_OVERRIDE,
            )

        if sales_price is None or sales_price <= 0:
            return no_price_breakdown(sales_price)

        row = None
        if zip_code:
            row = self.lookup(validate_zip_code(zip_code))

        if row is None:
            logger.info("No tax data for zip %r, using default estimate", zip_code)
            return _breakdown(
                sales_price,
                sales_price * DEFAULT_TAX_RATE,
                DEFAULT_REGISTRATION_FEE,
                DEFAULT_DOC_FEE,
                DEFAULT_TITLE_FEE,
                DEFAULT_TAX_RATE,
                METHOD_DEFAULT_ESTIMATE,
            )

        rate = float(row.get("sales_tax_rate") or 0.0)
        return _breakdown(
            sales_price,
            sales_price * rate,
            float(row.get("registration_base_fee") or 0.0),
            float(row.get("doc_fee_average") or 0.0),
            float(row.get("title_fee") or 0.0),
            rate,
            METHOD_ZIP_LOOKUP,
        )

"""Sales-price / OTD conversion and the negotiation-mode state machine.

A deal carries each price twice: in sales-price space (``asking_price``,
``current_offer``, ``target_price``) and in OTD space (the ``otd_*`` mirrors).
While a fee breakdown exists, ``otd == round(sales + all_fees, 2)`` holds for
every non-null pair after any write made through this module.

The side matching the deal's ``negotiation_mode`` is authoritative; the other
side is derived from it by :meth:`PriceState.reconcile`.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Iterable

from haggle_mcp.constants import (
    FEE_BASIS_FIELDS,
    FEE_FIELDS,
    MODE_OTD,
    MODE_SALES_PRICE,
    NEGOTIATION_MODES,
    PRICE_FIELD_PAIRS,
)
from haggle_mcp.data.store import RecordStore
from haggle_mcp.normalization import round_currency
from haggle_mcp.pricing.fees import FeeBreakdown, FeeResolver, ManualFees

logger = logging.getLogger(__name__)


class FeesRequiredError(RuntimeError):
    """Mode toggle refused: the deal has no fee breakdown yet."""

    def __init__(self, deal_id: str) -> None:
        super().__init__(
            f"Deal '{deal_id}' has no fee breakdown; calculate fees before switching modes"
        )
        self.deal_id = deal_id


class DealNotFoundError(LookupError):
    def __init__(self, deal_id: str) -> None:
        super().__init__(f"Deal '{deal_id}' not found")
        self.deal_id = deal_id


# ── Fees and conversions ────────────────────────────────────────────


@dataclass(frozen=True)
class DealFees:
    sales_tax: float = 0.0
    registration_fee: float = 0.0
    doc_fee: float = 0.0
    title_fee: float = 0.0

    @property
    def total(self) -> float:
        running = 0.0
        for amount in (self.sales_tax, self.registration_fee, self.doc_fee, self.title_fee):
            running = round_currency(running + amount) or 0.0
        return running

    @classmethod
    def from_deal(cls, deal: dict[str, Any]) -> DealFees | None:
        """``None`` when the deal has no fee breakdown (no sales tax recorded)."""
        if deal.get("estimated_sales_tax") is None:
            return None
        return cls(*(float(deal.get(f) or 0.0) for f in FEE_FIELDS))

    @classmethod
    def from_breakdown(cls, breakdown: FeeBreakdown) -> DealFees:
        return cls(
            breakdown.sales_tax,
            breakdown.registration_fee,
            breakdown.doc_fee,
            breakdown.title_fee,
        )


def convert_sales_to_otd(value: float | None, fees: DealFees) -> float | None:
    if value is None:
        return None
    return round_currency(value + fees.total)


def convert_otd_to_sales(value: float | None, fees: DealFees) -> float | None:
    """Inverse of :func:`convert_sales_to_otd`; a negative result is returned as-is."""
    if value is None:
        return None
    return round_currency(value - fees.total)


# ── Price state ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class PriceState:
    """Both price spaces of one deal plus the mode that says which is authoritative."""

    mode: str = MODE_SALES_PRICE
    asking_price: float | None = None
    current_offer: float | None = None
    target_price: float | None = None
    otd_asking_price: float | None = None
    otd_current_offer: float | None = None
    otd_target_price: float | None = None

    @classmethod
    def from_deal(cls, deal: dict[str, Any]) -> PriceState:
        mode = deal.get("negotiation_mode") or MODE_SALES_PRICE
        values = {}
        for sales_field, otd_field in PRICE_FIELD_PAIRS.items():
            values[sales_field] = round_currency(deal.get(sales_field))
            values[otd_field] = round_currency(deal.get(otd_field))
        return cls(mode=mode, **values)

    def price_fields(self) -> dict[str, float | None]:
        fields: dict[str, float | None] = {}
        for sales_field, otd_field in PRICE_FIELD_PAIRS.items():
            fields[sales_field] = getattr(self, sales_field)
            fields[otd_field] = getattr(self, otd_field)
        return fields

    def with_price(self, field: str, value: float | None) -> PriceState:
        """Write ``field`` (a sales-space name) on the side the current mode edits."""
        if field not in PRICE_FIELD_PAIRS:
            raise ValueError(
                f"Unknown price field '{field}'. Valid: {', '.join(PRICE_FIELD_PAIRS)}"
            )
        target = PRICE_FIELD_PAIRS[field] if self.mode == MODE_OTD else field
        return replace(self, **{target: round_currency(value)})

    def with_mode(self, mode: str) -> PriceState:
        return replace(self, mode=mode)

    def reconcile(
        self,
        fees: DealFees | None,
        source_mode: str | None = None,
        fields: Iterable[str] | None = None,
    ) -> PriceState:
        """Derive the non-source side from the source side.

        Without fees nothing changes.  A null source value leaves its mirror alone.
        """
        if fees is None:
            return self
        source = source_mode or self.mode
        updates: dict[str, float | None] = {}
        for sales_field in fields or PRICE_FIELD_PAIRS:
            otd_field = PRICE_FIELD_PAIRS[sales_field]
            if source == MODE_OTD:
                if getattr(self, otd_field) is not None:
                    updates[sales_field] = convert_otd_to_sales(getattr(self, otd_field), fees)
            elif getattr(self, sales_field) is not None:
                updates[otd_field] = convert_sales_to_otd(getattr(self, sales_field), fees)
        return replace(self, **updates)

    def is_consistent(self, fees: DealFees) -> bool:
        for sales_field, otd_field in PRICE_FIELD_PAIRS.items():
            sales = getattr(self, sales_field)
            if sales is None:
                continue
            if getattr(self, otd_field) != convert_sales_to_otd(sales, fees):
                return False
        return True


# ── Per-deal serialization ──────────────────────────────────────────

_deal_locks: dict[str, threading.RLock] = {}
_deal_locks_guard = threading.Lock()


def deal_lock(deal_id: str) -> threading.RLock:
    """Writes for the same deal id are serialized through this lock."""
    with _deal_locks_guard:
        lock = _deal_locks.get(deal_id)
        if lock is None:
            lock = _deal_locks[deal_id] = threading.RLock()
        return lock


def fee_basis(deal: dict[str, Any]) -> float | None:
    for name in FEE_BASIS_FIELDS:
        if deal.get(name):
            return float(deal[name])
    return None


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class NegotiationModeService:
    """Store-backed price writes that keep both price spaces in step."""

    def __init__(self, store: RecordStore, resolver: FeeResolver | None = None) -> None:
        self._store = store
        self._resolver = resolver or FeeResolver(store)

    def _load(self, deal_id: str) -> dict[str, Any]:
        deal = self._store.get("deals", deal_id)
        if deal is None:
            raise DealNotFoundError(deal_id)
        return deal

    def _write(self, deal_id: str, data: dict[str, Any]) -> dict[str, Any]:
        return self._store.update("deals", deal_id, {**data, "updated_at": _now_iso()})

    def toggle(self, deal_id: str, target_mode: str) -> dict[str, Any]:
        """Switch ``negotiation_mode``, syncing prices before the flag flips."""
        if target_mode not in NEGOTIATION_MODES:
            raise ValueError(
                f"Unknown negotiation mode '{target_mode}'. Valid: {', '.join(NEGOTIATION_MODES)}"
            )
        with deal_lock(deal_id):
            deal = self._load(deal_id)
            fees = DealFees.from_deal(deal)
            if fees is None:
                raise FeesRequiredError(deal_id)
            state = PriceState.from_deal(deal)
            synced = state.reconcile(fees, source_mode=state.mode)
            self._write(deal_id, synced.price_fields())
            updated = self._write(deal_id, {"negotiation_mode": target_mode})
        logger.info("Deal %s negotiation mode %s -> %s", deal_id, state.mode, target_mode)
        return updated

    def update_price(self, deal_id: str, field: str, value: float | None) -> dict[str, Any]:
        """Edit one price in the deal's current mode; its mirror follows when fees exist.

        Editing the fee basis re-resolves automatic fees (a breakdown or a buyer
        zip must already be on the deal, and no manual override set).
        Clearing a price clears its mirror too.
        """
        with deal_lock(deal_id):
            deal = self._load(deal_id)
            state = PriceState.from_deal(deal).with_price(field, value)
            fees = DealFees.from_deal(deal)
            state = state.reconcile(fees, fields=(field,))
            otd_field = PRICE_FIELD_PAIRS[field]
            if value is None:
                edited = {field: None, otd_field: None}
            elif fees is None:
                edited = {otd_field if state.mode == MODE_OTD else field: round_currency(value)}
            else:
                edited = {field: getattr(state, field), otd_field: getattr(state, otd_field)}
            updated = self._write(deal_id, edited)
            if field in FEE_BASIS_FIELDS and self._recalculates_on_edit(updated):
                breakdown = self._resolver.resolve(
                    fee_basis(updated), updated.get("buyer_zip_code")
                )
                logger.info(
                    "Deal %s %s changed, fees re-resolved (%s)",
                    deal_id, field, breakdown.calculation_method,
                )
                updated = self._persist_breakdown(deal_id, updated, breakdown, {})
            return updated

    @staticmethod
    def _recalculates_on_edit(deal: dict[str, Any]) -> bool:
        if deal.get("manual_fees_override"):
            return False
        basis = fee_basis(deal)
        if basis is None or basis <= 0:
            return False
        return DealFees.from_deal(deal) is not None or bool(deal.get("buyer_zip_code"))

    def _persist_breakdown(
        self,
        deal_id: str,
        deal: dict[str, Any],
        breakdown: FeeBreakdown,
        extra: dict[str, Any],
    ) -> dict[str, Any]:
        self._write(deal_id, {**breakdown.deal_fields(), **extra})
        synced = PriceState.from_deal(deal).reconcile(DealFees.from_breakdown(breakdown))
        return self._write(deal_id, synced.price_fields())

    def refresh_fees(
        self, deal_id: str, *, zip_code: str | None = None, force: bool = False
    ) -> dict[str, Any] | None:
        """Recalculate fees from the deal's sales price.

        Skipped (returns ``None``) under ``manual_fees_override`` unless
        ``force`` is set, which also clears the override.
        """
        with deal_lock(deal_id):
            deal = self._load(deal_id)
            if deal.get("manual_fees_override") and not force:
                logger.info("Manual fee override on deal %s, skipping recalculation", deal_id)
                return None
            effective_zip = zip_code or deal.get("buyer_zip_code")
            breakdown = self._resolver.resolve(fee_basis(deal), effective_zip)
            extra: dict[str, Any] = {"manual_fees_override": False}
            if zip_code:
                extra["buyer_zip_code"] = zip_code
            return self._persist_breakdown(deal_id, deal, breakdown, extra)

    def apply_manual_fees(self, deal_id: str, manual_fees: ManualFees) -> dict[str, Any]:
        with deal_lock(deal_id):
            deal = self._load(deal_id)
            breakdown = self._resolver.resolve(fee_basis(deal), None, manual_fees=manual_fees)
            return self._persist_breakdown(
                deal_id, deal, breakdown, {"manual_fees_override": True}
            )

    def price_summary(self, deal_id: str) -> dict[str, Any]:
        deal = self._load(deal_id)
        fees = DealFees.from_deal(deal)
        return {
            "deal_id": deal_id,
            "negotiation_mode": deal.get("negotiation_mode") or MODE_SALES_PRICE,
            "total_fees": fees.total if fees is not None else None,
            "manual_fees_override": bool(deal.get("manual_fees_override")),
            **PriceState.from_deal(deal).price_fields(),
        }

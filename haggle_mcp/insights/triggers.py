"""Pure trigger policy: decide whether a user's deals warrant a fresh analysis."""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable

from haggle_mcp.constants import ACTIVE_DEAL_STATUSES

QUOTE_EXPIRING = "quote_expiring"
STALE_DEAL = "stale_deal"
QUOTE_EXPIRED = "quote_expired"

PRIORITY_HIGH = "high"
PRIORITY_MEDIUM = "medium"

EXPIRING_WINDOW_DAYS = 3
STALE_AFTER_DAYS = 7

_SECONDS_PER_DAY = 86_400


@dataclass(frozen=True)
class TriggerReason:
    type: str
    deal_id: str
    message: str
    priority: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class TriggerDecision:
    should_trigger: bool
    reasons: tuple[TriggerReason, ...] = field(default_factory=tuple)
    urgency_level: str = PRIORITY_MEDIUM

    @property
    def event_types(self) -> list[str]:
        return [r.type for r in self.reasons]

    def to_dict(self) -> dict[str, Any]:
        return {
            "should_trigger": self.should_trigger,
            "reasons": [r.to_dict() for r in self.reasons],
            "urgency_level": self.urgency_level,
        }


def parse_timestamp(value: Any) -> datetime | None:
    """ISO date or datetime string to an aware UTC datetime; naive values are taken as UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def whole_days_between(start: datetime, end: datetime) -> int:
    """Floor of ``(end - start)`` in days; negative spans floor toward -inf."""
    return math.floor((end - start).total_seconds() / _SECONDS_PER_DAY)


def days_until_expiry(deal: dict[str, Any], now: datetime) -> int | None:
    expires = parse_timestamp(deal.get("quote_expires"))
    return whole_days_between(now, expires) if expires is not None else None


def days_since_contact(deal: dict[str, Any], now: datetime) -> int | None:
    contact = parse_timestamp(deal.get("last_contact_date"))
    return whole_days_between(contact, now) if contact is not None else None


def active_deals(deals: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    return [d for d in deals if d.get("status") in ACTIVE_DEAL_STATUSES]


def should_trigger(
    deals: Iterable[dict[str, Any]], now: datetime | None = None
) -> TriggerDecision:
    now = now or datetime.now(timezone.utc)
    reasons: list[TriggerReason] = []

    for deal in active_deals(deals):
        deal_id = str(deal.get("id", ""))
        expiry = days_until_expiry(deal, now)
        if expiry is not None and 0 <= expiry <= EXPIRING_WINDOW_DAYS:
            reasons.append(TriggerReason(
                QUOTE_EXPIRING, deal_id, f"Quote expires in {expiry} days", PRIORITY_HIGH,
            ))

        since = days_since_contact(deal, now)
        if since is not None and since >= STALE_AFTER_DAYS:
            reasons.append(TriggerReason(
                STALE_DEAL, deal_id, f"No contact for {since} days", PRIORITY_MEDIUM,
            ))

        if expiry is not None and expiry < 0:
            reasons.append(TriggerReason(
                QUOTE_EXPIRED, deal_id, f"Quote expired {abs(expiry)} days ago", PRIORITY_HIGH,
            ))

    urgency = (
        PRIORITY_HIGH if any(r.priority == PRIORITY_HIGH for r in reasons) else PRIORITY_MEDIUM
    )
    return TriggerDecision(bool(reasons), tuple(reasons), urgency)

"""Gate, run, and cache AI deal analysis.

The analysis itself is an opaque collaborator (:class:`DealAnalyzer`); this
module decides *when* it runs and persists what it returns.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone
from typing import Any, Protocol, runtime_checkable

from cip_protocol import CIP

from haggle_mcp.data.store import RecordStore
from haggle_mcp.insights.cache import CachedInsight, InsightCache
from haggle_mcp.insights.triggers import (
    EXPIRING_WINDOW_DAYS,
    STALE_AFTER_DAYS,
    active_deals,
    days_since_contact,
    days_until_expiry,
    should_trigger,
)
from haggle_mcp.tools.orchestration import run_tool_with_orchestration

logger = logging.getLogger(__name__)

INSIGHT_TYPES = ("positive", "negative", "neutral")
_URGENT_TITLE_RE = re.compile(r"expir|urgent", re.IGNORECASE)
_JSON_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)


class AnalysisError(RuntimeError):
    """AI analysis collaborator failed or returned an unusable payload."""

    def __init__(self, message: str, *, code: str = "ANALYSIS_FAILED", status: int | None = None):
        super().__init__(message)
        self.code = code
        self.status = status


class AnalysisRateLimitedError(AnalysisError):
    def __init__(self, message: str = "AI analysis is rate limited; try again shortly") -> None:
        super().__init__(message, code="RATE_LIMITED", status=429)


@runtime_checkable
class DealAnalyzer(Protocol):
    async def analyze(
        self,
        deals: list[dict[str, Any]],
        vehicles: list[dict[str, Any]],
        force_refresh: bool,
        trigger_events: list[str],
    ) -> dict[str, Any]: ...


# ── Payload helpers ─────────────────────────────────────────────────


def _is_rate_limit(exc: Exception) -> bool:
    for attr in ("status", "status_code"):
        if getattr(exc, attr, None) == 429:
            return True
    text = f"{type(exc).__name__} {exc}".lower()
    return "ratelimit" in text or "rate limit" in text or "rate_limit" in text


def parse_analysis(content: str) -> dict[str, Any]:
    """Validate ``{summary, insights[]}`` from model output, tolerating code fences."""
    match = _JSON_OBJECT_RE.search(content or "")
    if match is None:
        raise AnalysisError("Analysis response did not contain a JSON object")
    try:
        payload = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        raise AnalysisError(f"Analysis response was not valid JSON: {exc}") from exc

    summary = payload.get("summary") if isinstance(payload, dict) else None
    raw_insights = payload.get("insights") if isinstance(payload, dict) else None
    if not isinstance(summary, str) or not isinstance(raw_insights, list):
        raise AnalysisError("Analysis response is missing 'summary' or 'insights'")

    insights = []
    for item in raw_insights:
        if not isinstance(item, dict):
            continue
        insight_type = str(item.get("type") or "neutral").lower()
        insights.append({
            "title": str(item.get("title") or ""),
            "explanation": str(item.get("explanation") or ""),
            "next_step": str(item.get("next_step") or ""),
            "type": insight_type if insight_type in INSIGHT_TYPES else "neutral",
        })
    return {"summary": summary, "insights": insights}


def describe_vehicle(vehicle: dict[str, Any] | None) -> str:
    if not vehicle:
        return "Unknown Vehicle"
    parts = [str(vehicle.get(k)) for k in ("year", "make", "model") if vehicle.get(k)]
    return " ".join(parts) or "Unknown Vehicle"


def prepare_deals(
    deals: list[dict[str, Any]],
    vehicles: list[dict[str, Any]],
    now: datetime,
) -> list[dict[str, Any]]:
    """Active deals enriched with contact/expiry day counts and urgency flags."""
    by_id = {v.get("id"): v for v in vehicles}
    prepared = []
    for deal in active_deals(deals):
        vehicle = by_id.get(deal.get("vehicle_id"))
        since = days_since_contact(deal, now)
        until = days_until_expiry(deal, now)
        prepared.append({
            "deal_id": deal.get("id"),
            "vehicle": describe_vehicle(vehicle),
            "vehicle_details": vehicle,
            "status": deal.get("status"),
            "purchase_type": deal.get("purchase_type"),
            "asking_price": deal.get("asking_price"),
            "current_offer": deal.get("current_offer"),
            "target_price": deal.get("target_price"),
            "days_since_last_contact": since,
            "days_until_quote_expires": until,
            "is_stale": since is not None and since >= STALE_AFTER_DAYS,
            "is_expiring_soon": until is not None and 0 <= until <= EXPIRING_WINDOW_DAYS,
            "has_expired": until is not None and until < 0,
        })
    return prepared


def is_urgent_deal(prepared: dict[str, Any]) -> bool:
    return bool(
        prepared.get("is_stale") or prepared.get("is_expiring_soon") or prepared.get("has_expired")
    )


def is_urgent_insight(insight: dict[str, Any]) -> bool:
    return insight.get("type") == "negative" or bool(_URGENT_TITLE_RE.search(insight.get("title", "")))


# ── CIP-backed analyzer ─────────────────────────────────────────────


class CIPDealAnalyzer:
    """Run the ``analyze_deals`` scaffold through CIP and parse its JSON answer."""

    def __init__(
        self,
        cip: CIP,
        *,
        scaffold_id: str | None = None,
        policy: str | None = None,
        context_notes: str | None = None,
    ) -> None:
        self._cip = cip
        self._scaffold_id = scaffold_id
        self._policy = policy
        self._context_notes = context_notes

    async def analyze(
        self,
        deals: list[dict[str, Any]],
        vehicles: list[dict[str, Any]],
        force_refresh: bool,
        trigger_events: list[str],
    ) -> dict[str, Any]:
        urgent_count = sum(1 for d in deals if is_urgent_deal(d))
        user_input = (
            "Analyze my active car deals and respond ONLY with JSON of the form "
            '{"summary": str, "insights": [{"title", "explanation", "next_step", '
            '"type": "positive|negative|neutral"}]} with 2-4 insights.'
        )
        if trigger_events:
            user_input += f" Triggered by: {', '.join(trigger_events)}."
        try:
            content = await run_tool_with_orchestration(
                self._cip,
                user_input=user_input,
                tool_name="analyze_deals",
                data_context={
                    "deals": deals,
                    "vehicles": vehicles,
                    "urgent_deals_count": urgent_count,
                    "trigger_events": list(trigger_events),
                    "force_refresh": force_refresh,
                },
                scaffold_id=self._scaffold_id,
                policy=self._policy,
                context_notes=self._context_notes,
                trigger_events=trigger_events,
            )
        except Exception as exc:
            if _is_rate_limit(exc):
                raise AnalysisRateLimitedError() from exc
            raise AnalysisError(f"Analysis call failed: {exc}") from exc
        return parse_analysis(content)


# ── Service ─────────────────────────────────────────────────────────


class InsightService:
    def __init__(
        self,
        store: RecordStore,
        analyzer: DealAnalyzer,
        cache: InsightCache | None = None,
    ) -> None:
        self._store = store
        self._analyzer = analyzer
        self._cache = cache or InsightCache(store)

    @staticmethod
    def _cached_response(entry: CachedInsight) -> dict[str, Any]:
        return {**entry.analysis_data, "cached": True, "cache_expires_at": entry.cache_expires_at}

    async def analyze(
        self,
        user_id: str,
        deals: list[dict[str, Any]],
        vehicles: list[dict[str, Any]],
        *,
        force_refresh: bool = False,
        trigger_events: list[str] | None = None,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        if not deals:
            raise ValueError("No deals to analyze")
        active = active_deals(deals)
        if not active:
            raise ValueError("No active deals to analyze")

        if not force_refresh:
            entry = self._cache.get_valid(user_id, now)
            if entry is not None:
                return self._cached_response(entry)

        events = list(trigger_events or [])
        prepared = prepare_deals(deals, vehicles, now or datetime.now(timezone.utc))
        urgent = [d for d in prepared if is_urgent_deal(d)]

        analysis = await self._analyzer.analyze(prepared, vehicles, force_refresh, events)

        completed_at = now or datetime.now(timezone.utc)
        entry = self._cache.put(
            user_id,
            [str(d.get("id")) for d in active],
            analysis,
            events,
            now=completed_at,
        )
        if urgent:
            self._record_notifications(user_id, entry, analysis)

        return {
            **analysis,
            "cached": False,
            "cache_expires_at": entry.cache_expires_at,
            "urgent_deals_count": len(urgent),
        }

    def _record_notifications(
        self, user_id: str, entry: CachedInsight, analysis: dict[str, Any]
    ) -> int:
        count = 0
        for insight in analysis.get("insights") or []:
            if not is_urgent_insight(insight):
                continue
            self._store.create("insight_notifications", {
                "user_id": user_id,
                "insight_cache_id": entry.id,
                "notification_type": "important",
                "title": insight.get("title", ""),
                "message": insight.get("next_step", ""),
                "insight_type": insight.get("type", ""),
                "is_read": False,
            })
            count += 1
        if count:
            logger.info("Recorded %d urgent insight notification(s) for user %s", count, user_id)
        return count

    async def check_and_trigger(
        self,
        user_id: str,
        deals: list[dict[str, Any]],
        vehicles: list[dict[str, Any]],
        now: datetime | None = None,
    ) -> dict[str, Any] | None:
        """Run analysis only when no valid cache exists and a trigger condition holds."""
        if self._cache.get_valid(user_id, now) is not None:
            logger.info("Valid insight cache for user %s, skipping auto-trigger", user_id)
            return None
        decision = should_trigger(deals, now)
        if not decision.should_trigger:
            logger.info("No trigger conditions for user %s", user_id)
            return None
        logger.info(
            "Auto-triggering analysis for user %s: %d reason(s), urgency %s",
            user_id, len(decision.reasons), decision.urgency_level,
        )
        result = await self.analyze(
            user_id,
            deals,
            vehicles,
            force_refresh=False,
            trigger_events=decision.event_types,
            now=now,
        )
        return {**result, "trigger": decision.to_dict()}

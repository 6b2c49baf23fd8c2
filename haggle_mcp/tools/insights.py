"""Deal-analysis tool implementations backed by :class:`InsightService`."""

from __future__ import annotations

import json
import logging
from typing import Any

from haggle_mcp.data.registry import get_store
from haggle_mcp.data.store import RecordStore
from haggle_mcp.insights.service import AnalysisError, DealAnalyzer, InsightService
from haggle_mcp.insights.triggers import should_trigger

logger = logging.getLogger(__name__)


def _load_user_deals(
    store: RecordStore, user_id: str
) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
    deals = store.filter("deals", {"user_id": user_id}, order_by="-created_at")
    vehicle_ids = {d.get("vehicle_id") for d in deals if d.get("vehicle_id")}
    vehicles = [v for v in (store.get("vehicles", vid) for vid in vehicle_ids) if v is not None]
    return deals, vehicles


def _analysis_error_payload(exc: AnalysisError) -> str:
    logger.error("Deal analysis failed (%s): %s", exc.code, exc)
    return json.dumps(
        {"error": True, "code": exc.code, "status": exc.status, "message": str(exc)},
        indent=2,
    )


async def analyze_deals_impl(
    analyzer: DealAnalyzer,
    *,
    user_id: str,
    force_refresh: bool = False,
) -> str:
    """Return cached analysis when valid, otherwise run the analyzer and cache it."""
    if not user_id:
        return "user_id is required."
    store = get_store()
    deals, vehicles = _load_user_deals(store, user_id)
    service = InsightService(store, analyzer)
    try:
        result = await service.analyze(
            user_id, deals, vehicles, force_refresh=force_refresh
        )
    except AnalysisError as exc:
        return _analysis_error_payload(exc)
    return json.dumps(result, indent=2, default=str)


async def check_insight_triggers_impl(
    analyzer: DealAnalyzer,
    *,
    user_id: str,
    dry_run: bool = False,
) -> str:
    """Evaluate trigger conditions; run analysis only when they hold and no cache is valid.

    ``dry_run`` reports the trigger decision without calling the analyzer.
    """
    if not user_id:
        return "user_id is required."
    store = get_store()
    deals, vehicles = _load_user_deals(store, user_id)
    decision = should_trigger(deals)
    if dry_run:
        return json.dumps({"triggered": False, **decision.to_dict()}, indent=2)

    service = InsightService(store, analyzer)
    try:
        result = await service.check_and_trigger(user_id, deals, vehicles)
    except AnalysisError as exc:
        return _analysis_error_payload(exc)
    if result is None:
        # Conditions held, so the skip came from a still-valid cache entry.
        skipped = "cache_valid" if decision.should_trigger else "no_trigger_conditions"
        return json.dumps(
            {"triggered": False, "skipped_reason": skipped, **decision.to_dict()}, indent=2
        )
    return json.dumps({"triggered": True, **result}, indent=2, default=str)

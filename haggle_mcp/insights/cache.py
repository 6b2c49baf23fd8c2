"""Append-only insight cache keyed by user id, expiry checked on read."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from haggle_mcp.data.store import RecordStore
from haggle_mcp.insights.triggers import parse_timestamp

logger = logging.getLogger(__name__)

DEFAULT_TTL_HOURS = 12.0


def ttl_hours_from_env() -> float:
    raw = os.environ.get("HAGGLEHUB_INSIGHT_TTL_HOURS", "")
    try:
        hours = float(raw) if raw else DEFAULT_TTL_HOURS
    except ValueError:
        logger.warning("Ignoring invalid HAGGLEHUB_INSIGHT_TTL_HOURS=%r", raw)
        return DEFAULT_TTL_HOURS
    return hours if hours > 0 else DEFAULT_TTL_HOURS


@dataclass(frozen=True)
class CachedInsight:
    id: str
    user_id: str
    deal_ids: list[str]
    analysis_data: dict[str, Any]
    triggers: list[str]
    cache_expires_at: str
    created_at: str

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> CachedInsight:
        return cls(
            id=record["id"],
            user_id=record.get("user_id") or "",
            deal_ids=list(record.get("deal_ids") or []),
            analysis_data=dict(record.get("analysis_data") or {}),
            triggers=list(record.get("triggers") or []),
            cache_expires_at=record.get("cache_expires_at") or "",
            created_at=record.get("created_at") or "",
        )

    def is_valid(self, now: datetime) -> bool:
        expires = parse_timestamp(self.cache_expires_at)
        return expires is not None and expires >= now


class InsightCache:
    def __init__(self, store: RecordStore, ttl_hours: float | None = None) -> None:
        self._store = store
        self.ttl = timedelta(hours=ttl_hours if ttl_hours is not None else ttl_hours_from_env())

    def latest(self, user_id: str) -> CachedInsight | None:
        """Most recently created entry for the user, valid or not."""
        rows = self._store.filter(
            "insights_cache", {"user_id": user_id}, order_by="-created_at"
        )
        return CachedInsight.from_record(rows[0]) if rows else None

    def get_valid(self, user_id: str, now: datetime | None = None) -> CachedInsight | None:
        now = now or datetime.now(timezone.utc)
        rows = self._store.filter(
            "insights_cache", {"user_id": user_id}, order_by="-created_at"
        )
        for row in rows:
            entry = CachedInsight.from_record(row)
            if entry.is_valid(now):
                logger.info("Insight cache hit for user %s (expires %s)", user_id, entry.cache_expires_at)
                return entry
        logger.info("Insight cache miss for user %s", user_id)
        return None

    def put(
        self,
        user_id: str,
        deal_ids: list[str],
        analysis_data: dict[str, Any],
        triggers: list[str],
        now: datetime | None = None,
    ) -> CachedInsight:
        """Insert a new entry expiring ``ttl`` after ``now``; never updates in place."""
        now = now or datetime.now(timezone.utc)
        record = self._store.create("insights_cache", {
            "user_id": user_id,
            "deal_ids": list(deal_ids),
            "analysis_data": analysis_data,
            "triggers": list(triggers),
            "cache_expires_at": (now + self.ttl).isoformat(),
            "created_at": now.isoformat(),
        })
        return CachedInsight.from_record(record)

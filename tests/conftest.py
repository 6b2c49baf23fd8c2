"""Shared test fixtures: isolated record store, analyzer injection, deal factory."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable
from unittest.mock import AsyncMock

import pytest

from haggle_mcp.data.registry import set_store
from haggle_mcp.data.seed import seed_zip_tax_rates
from haggle_mcp.data.store import SqliteRecordStore
from haggle_mcp.server import set_analyzer_override

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)

ANALYSIS = {
    "summary": "Two active deals; the Tundra quote needs attention.",
    "insights": [
        {
            "title": "Tundra quote expiring",
            "explanation": "The written quote lapses in two days.",
            "next_step": "Ask Brian to extend the quote through Friday.",
            "type": "negative",
        },
        {
            "title": "Strong counteroffer position",
            "explanation": "Your offer is $3,000 under the ask.",
            "next_step": "Hold at $49,000 for now.",
            "type": "positive",
        },
    ],
}


@pytest.fixture(autouse=True)
def store() -> SqliteRecordStore:
    """Give every test a fresh, isolated, seeded in-memory record store."""
    store = SqliteRecordStore(":memory:")
    seed_zip_tax_rates(store)
    set_store(store)
    yield store
    set_store(None)
    store.close()


@pytest.fixture()
def analyzer() -> AsyncMock:
    """Stand-in for the billed AI collaborator; injected into the server."""
    mock = AsyncMock()
    mock.analyze = AsyncMock(return_value=dict(ANALYSIS))
    set_analyzer_override(mock)
    yield mock
    set_analyzer_override(None)


@pytest.fixture()
def make_deal(store: SqliteRecordStore) -> Callable[..., dict[str, Any]]:
    """Create a vehicle, dealer, and deal for ``user-1``; keyword args override deal fields."""

    def _make(**overrides: Any) -> dict[str, Any]:
        user_id = overrides.pop("user_id", "user-1")
        vehicle = store.create("vehicles", {
            "user_id": user_id,
            "year": 2022,
            "make": "Toyota",
            "model": "Tundra",
            "vin": overrides.pop("vin", "5TFHY5F1XKX839771"),
            "stock_number": overrides.pop("stock_number", "T12345"),
        })
        dealer = store.create("dealers", {
            "user_id": user_id,
            "name": overrides.pop("dealer_name", "Toyota of Cedar Park"),
            "contact_email": overrides.pop("dealer_email", "brian@toyotaofcedarpark.com"),
        })
        deal = {
            "user_id": user_id,
            "vehicle_id": vehicle["id"],
            "dealer_id": dealer["id"],
            "status": "negotiating",
            "purchase_type": "cash",
            "asking_price": 50000.0,
            "negotiation_mode": "sales_price",
            "manual_fees_override": False,
            "last_contact_date": NOW.isoformat(),
        }
        deal.update(overrides)
        return store.create("deals", deal)

    return _make

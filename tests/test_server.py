"""End-to-end checks of the MCP tool functions against an in-memory store."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

from haggle_mcp.insights.service import AnalysisRateLimitedError
from haggle_mcp.server import (
    analyze_deals,
    apply_manual_fees,
    calculate_fees,
    check_insight_triggers,
    parse_conversation,
    receive_email,
    refresh_deal_fees,
    set_negotiation_mode,
    update_deal_price,
)

CONVERSATION = (
    "Hi, this is Brian from Toyota of Cedar Park. The 2022 Toyota Tundra "
    "VIN 5TFHY5F1XKX839771 is listed at $52,000. Call me at (512) 555-0142."
)


def _recent() -> str:
    return datetime.now(timezone.utc).isoformat()


def _days_ago(days: int) -> str:
    return (datetime.now(timezone.utc) - timedelta(days=days)).isoformat()


class TestParseConversationTool:
    def test_returns_extraction(self):
        payload = json.loads(parse_conversation(conversation=CONVERSATION))
        assert payload["vehicle"]["make"] == "Toyota"
        assert payload["vehicle"]["vin"] == "5TFHY5F1XKX839771"
        assert payload["pricing"]["asking_price"] == 52000
        assert "created" not in payload

    def test_message_thread(self):
        payload = json.loads(parse_conversation(messages=[
            {"direction": "outbound", "content": "Is the 2022 Toyota Tundra available?"},
            {"direction": "inbound", "content": "Yes, we have it at $52,000."},
        ]))
        assert payload["pricing"]["asking_price"] == 52000

    def test_empty_input(self):
        assert "Provide conversation text" in parse_conversation()

    def test_invalid_zip_is_caller_error(self):
        result = parse_conversation(conversation=CONVERSATION, zip_code="abc")
        assert "zip" in result.lower()

    def test_create_deal_persists(self, store):
        payload = json.loads(parse_conversation(
            conversation=CONVERSATION, user_id="user-1", create_deal=True, zip_code="78641"
        ))
        deal = store.get("deals", payload["created"]["deal_id"])
        assert deal["user_id"] == "user-1"
        assert deal["buyer_zip_code"] == "78641"
        assert deal["estimated_sales_tax"] == 4290.0

    def test_create_deal_without_user(self):
        result = parse_conversation(conversation=CONVERSATION, create_deal=True)
        assert result == "user_id is required when create_deal is true."


class TestFeeTools:
    def test_calculate_fees(self):
        payload = json.loads(calculate_fees(sales_price=50000, zip_code="78641"))
        assert payload["sales_tax"] == 4125.0
        assert payload["estimated_otd"] == 54383.0
        assert payload["calculation_method"] == "zip_code_lookup"

    def test_refresh_then_toggle(self, make_deal):
        deal = make_deal()
        refreshed = json.loads(refresh_deal_fees(deal_id=deal["id"], zip_code="78641"))
        assert refreshed["fee_calculation_method"] == "zip_code_lookup"
        toggled = json.loads(set_negotiation_mode(deal_id=deal["id"], mode="otd"))
        assert toggled["negotiation_mode"] == "otd"
        assert toggled["otd_asking_price"] == 54383.0

    def test_toggle_without_fees_is_explained(self, make_deal):
        deal = make_deal()
        result = set_negotiation_mode(deal_id=deal["id"], mode="otd")
        assert "fee" in result.lower()

    def test_unknown_deal(self):
        assert "deal_missing" in update_deal_price(deal_id="deal_missing", field="asking_price", value=1)

    def test_negative_price_rejected(self, make_deal):
        deal = make_deal()
        result = update_deal_price(deal_id=deal["id"], field="asking_price", value=-5)
        assert result == "Price must be greater than or equal to 0."

    def test_manual_fees_block_refresh(self, make_deal):
        deal = make_deal()
        applied = json.loads(apply_manual_fees(
            deal_id=deal["id"], sales_tax=2500, registration_fee=200, doc_fee=250, title_fee=50
        ))
        assert applied["total_fees"] == 3000.0
        assert applied["manual_fees_override"] is True
        assert "manually entered fees" in refresh_deal_fees(deal_id=deal["id"], zip_code="78641")

    def test_negative_manual_fee_rejected(self, make_deal):
        deal = make_deal()
        assert apply_manual_fees(deal_id=deal["id"], sales_tax=-1) == (
            "Sales tax must be greater than or equal to 0."
        )


class TestReceiveEmailTool:
    def test_matches_deal_by_vin(self, make_deal):
        deal = make_deal()
        payload = json.loads(receive_email(
            sender="Brian@ToyotaOfCedarPark.com",
            recipient="deals-user-1@hagglehub.app",
            subject="Re: 5TFHY5F1XKX839771",
            body="Best I can do is $48,900.",
        ))
        assert payload["deal_id"] == deal["id"]
        assert payload["matched_by"] == "vin"
        assert payload["extracted_price"] == 48900

    def test_bad_recipient(self):
        result = receive_email(sender="a@b.com", recipient="nobody@hagglehub.app", body="hi")
        assert "recipient" in result.lower()


class TestAnalyzeDealsTool:
    async def test_fresh_then_cached(self, analyzer, make_deal):
        make_deal(last_contact_date=_recent())
        first = json.loads(await analyze_deals(user_id="user-1"))
        assert first["cached"] is False
        assert first["summary"] == "Two active deals; the Tundra quote needs attention."

        second = json.loads(await analyze_deals(user_id="user-1"))
        assert second["cached"] is True
        analyzer.analyze.assert_awaited_once()

    async def test_force_refresh_bypasses_cache(self, analyzer, make_deal):
        make_deal(last_contact_date=_recent())
        await analyze_deals(user_id="user-1")
        refreshed = json.loads(await analyze_deals(user_id="user-1", force_refresh=True))
        assert refreshed["cached"] is False
        assert analyzer.analyze.await_count == 2

    async def test_no_deals(self, analyzer):
        assert await analyze_deals(user_id="user-1") == "No deals to analyze"
        analyzer.analyze.assert_not_awaited()

    async def test_rate_limit_reported(self, analyzer, make_deal):
        make_deal(last_contact_date=_recent())
        analyzer.analyze = AsyncMock(side_effect=AnalysisRateLimitedError())
        payload = json.loads(await analyze_deals(user_id="user-1"))
        assert payload["error"] is True
        assert payload["status"] == 429


class TestCheckInsightTriggersTool:
    async def test_stale_deal_triggers(self, analyzer, make_deal):
        make_deal(last_contact_date=_days_ago(10))
        payload = json.loads(await check_insight_triggers(user_id="user-1"))
        assert payload["triggered"] is True
        assert payload["trigger"]["reasons"][0]["type"] == "stale_deal"
        analyzer.analyze.assert_awaited_once()

    async def test_no_conditions(self, analyzer, make_deal):
        make_deal(last_contact_date=_recent())
        payload = json.loads(await check_insight_triggers(user_id="user-1"))
        assert payload["triggered"] is False
        assert payload["skipped_reason"] == "no_trigger_conditions"
        analyzer.analyze.assert_not_awaited()

    async def test_valid_cache_suppresses_trigger(self, analyzer, make_deal):
        make_deal(last_contact_date=_days_ago(10))
        await analyze_deals(user_id="user-1")
        payload = json.loads(await check_insight_triggers(user_id="user-1"))
        assert payload["triggered"] is False
        assert payload["skipped_reason"] == "cache_valid"
        analyzer.analyze.assert_awaited_once()

    async def test_dry_run(self, analyzer, make_deal):
        make_deal(last_contact_date=_days_ago(10))
        payload = json.loads(await check_insight_triggers(user_id="user-1", dry_run=True))
        assert payload["should_trigger"] is True
        assert payload["urgency_level"] == "medium"
        analyzer.analyze.assert_not_awaited()

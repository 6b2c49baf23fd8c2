"""Tests for sales/OTD price conversion and the negotiation-mode state machine."""

from __future__ import annotations

import pytest

from haggle_mcp.pricing.conversion import (
    DealFees,
    DealNotFoundError,
    FeesRequiredError,
    NegotiationModeService,
    PriceState,
    convert_otd_to_sales,
    convert_sales_to_otd,
)
from haggle_mcp.pricing.fees import ManualFees

# Sums to 3000.00 across the four fee fields.
FEES_3000 = {
    "estimated_sales_tax": 2500.0,
    "estimated_registration_fee": 200.0,
    "estimated_doc_fee": 250.0,
    "estimated_title_fee": 50.0,
}


@pytest.fixture()
def service(store) -> NegotiationModeService:
    return NegotiationModeService(store)


class TestConversions:
    def test_sales_to_otd(self):
        fees = DealFees(2500.0, 200.0, 250.0, 50.0)
        assert fees.total == 3000.0
        assert convert_sales_to_otd(50000, fees) == 53000.0

    def test_null_passthrough(self):
        fees = DealFees(1.0, 1.0, 1.0, 1.0)
        assert convert_sales_to_otd(None, fees) is None
        assert convert_otd_to_sales(None, fees) is None

    @pytest.mark.parametrize("price", [0.01, 19999.99, 43210.55, 87654.32])
    def test_round_trip(self, price: float):
        fees = DealFees(3564.87, 75.0, 150.0, 33.0)
        assert convert_otd_to_sales(convert_sales_to_otd(price, fees), fees) == price

    def test_negative_sales_price_not_guarded(self):
        fees = DealFees(2500.0, 200.0, 250.0, 50.0)
        assert convert_otd_to_sales(1000, fees) == -2000.0

    def test_from_deal_requires_sales_tax(self):
        assert DealFees.from_deal({"estimated_doc_fee": 100.0}) is None
        assert DealFees.from_deal(FEES_3000).total == 3000.0


class TestPriceState:
    def test_reconcile_from_sales_side(self):
        state = PriceState(asking_price=50000.0, target_price=47000.0)
        synced = state.reconcile(DealFees(2500.0, 200.0, 250.0, 50.0))
        assert synced.otd_asking_price == 53000.0
        assert synced.otd_target_price == 50000.0
        assert synced.otd_current_offer is None
        assert synced.is_consistent(DealFees(2500.0, 200.0, 250.0, 50.0))

    def test_reconcile_without_fees_is_noop(self):
        state = PriceState(asking_price=50000.0)
        assert state.reconcile(None) == state

    def test_reconcile_keeps_mirror_of_null_source(self):
        state = PriceState(asking_price=50000.0, otd_target_price=49000.0)
        synced = state.reconcile(DealFees(2500.0, 200.0, 250.0, 50.0))
        assert synced.target_price is None
        assert synced.otd_target_price == 49000.0

    def test_with_price_in_otd_mode_edits_mirror(self):
        state = PriceState(mode="otd").with_price("current_offer", 51000)
        assert state.otd_current_offer == 51000.0
        assert state.current_offer is None

    def test_unknown_field(self):
        with pytest.raises(ValueError):
            PriceState().with_price("msrp", 1)


class TestToggle:
    def test_scenario_d_round_trip(self, service: NegotiationModeService, make_deal):
        deal = make_deal(**FEES_3000)
        to_otd = service.toggle(deal["id"], "otd")
        assert to_otd["negotiation_mode"] == "otd"
        assert to_otd["otd_asking_price"] == 53000.0

        back = service.toggle(deal["id"], "sales_price")
        assert back["negotiation_mode"] == "sales_price"
        assert back["asking_price"] == 50000.0

    def test_refused_without_fee_breakdown(self, service: NegotiationModeService, make_deal):
        deal = make_deal()
        with pytest.raises(FeesRequiredError):
            service.toggle(deal["id"], "otd")

    def test_refusal_leaves_mode_unchanged(self, service: NegotiationModeService, make_deal, store):
        deal = make_deal()
        with pytest.raises(FeesRequiredError):
            service.toggle(deal["id"], "otd")
        assert store.get("deals", deal["id"])["negotiation_mode"] == "sales_price"

    def test_unknown_mode(self, service: NegotiationModeService, make_deal):
        deal = make_deal(**FEES_3000)
        with pytest.raises(ValueError):
            service.toggle(deal["id"], "msrp")

    def test_unknown_deal(self, service: NegotiationModeService):
        with pytest.raises(DealNotFoundError):
            service.toggle("deal_missing", "otd")

    def test_otd_edits_survive_toggle_back(self, service: NegotiationModeService, make_deal):
        deal = make_deal(**FEES_3000, manual_fees_override=True)
        service.toggle(deal["id"], "otd")
        service.update_price(deal["id"], "current_offer", 51500)
        back = service.toggle(deal["id"], "sales_price")
        assert back["current_offer"] == 48500.0
        assert back["otd_current_offer"] == 51500.0

    def test_toggle_keeps_otd_value_without_sales_counterpart(
        self, service: NegotiationModeService, make_deal
    ):
        deal = make_deal(**FEES_3000, otd_target_price=49000.0)
        toggled = service.toggle(deal["id"], "otd")
        assert toggled["target_price"] is None
        assert toggled["otd_target_price"] == 49000.0


class TestUpdatePrice:
    def test_invariant_after_sales_edit(self, service: NegotiationModeService, make_deal):
        deal = make_deal(**FEES_3000)
        updated = service.update_price(deal["id"], "target_price", 46999.99)
        assert updated["target_price"] == 46999.99
        assert updated["otd_target_price"] == 49999.99

    def test_otd_mode_writes_both_sides(self, service: NegotiationModeService, make_deal):
        deal = make_deal(**FEES_3000, manual_fees_override=True)
        service.toggle(deal["id"], "otd")
        updated = service.update_price(deal["id"], "asking_price", 52000)
        assert updated["otd_asking_price"] == 52000.0
        assert updated["asking_price"] == 49000.0

    def test_without_fees_only_edited_field_changes(self, service: NegotiationModeService, make_deal):
        deal = make_deal()
        updated = service.update_price(deal["id"], "current_offer", 48000)
        assert updated["current_offer"] == 48000.0
        assert updated["otd_current_offer"] is None
        assert updated["otd_asking_price"] is None

    def test_clearing_price_clears_mirror(self, service: NegotiationModeService, make_deal):
        deal = make_deal(**FEES_3000)
        service.update_price(deal["id"], "target_price", 47000)
        updated = service.update_price(deal["id"], "target_price", None)
        assert updated["target_price"] is None
        assert updated["otd_target_price"] is None

    def test_asking_edit_re_resolves_zip_fees(self, service: NegotiationModeService, make_deal):
        deal = make_deal()
        service.refresh_fees(deal["id"], zip_code="78641")
        updated = service.update_price(deal["id"], "asking_price", 40000)
        assert updated["estimated_sales_tax"] == 3300.0
        assert updated["estimated_total_fees"] == 258.0
        assert updated["otd_asking_price"] == 43558.0
        assert updated["otd_price"] == 43558.0

    def test_offer_edit_becomes_fee_basis(self, service: NegotiationModeService, make_deal):
        deal = make_deal()
        service.refresh_fees(deal["id"], zip_code="78641")
        updated = service.update_price(deal["id"], "current_offer", 48000)
        assert updated["estimated_sales_tax"] == 3960.0
        assert updated["otd_current_offer"] == 52218.0
        assert updated["otd_asking_price"] == 54218.0

    def test_manual_fees_survive_price_edit(self, service: NegotiationModeService, make_deal):
        deal = make_deal()
        service.apply_manual_fees(deal["id"], ManualFees(2500.0, 200.0, 250.0, 50.0))
        updated = service.update_price(deal["id"], "asking_price", 40000)
        assert updated["estimated_sales_tax"] == 2500.0
        assert updated["otd_asking_price"] == 43000.0

    def test_target_edit_keeps_fees(self, service: NegotiationModeService, make_deal):
        deal = make_deal()
        service.refresh_fees(deal["id"], zip_code="78641")
        updated = service.update_price(deal["id"], "target_price", 30000)
        assert updated["estimated_sales_tax"] == 4125.0
        assert updated["otd_target_price"] == 34383.0

    def test_no_fees_and_no_zip_stays_unresolved(self, service: NegotiationModeService, make_deal):
        deal = make_deal()
        updated = service.update_price(deal["id"], "asking_price", 40000)
        assert updated["estimated_sales_tax"] is None
        assert updated["fee_calculation_method"] is None


class TestFeePersistence:
    def test_refresh_persists_breakdown_and_mirrors(self, service: NegotiationModeService, make_deal):
        deal = make_deal()
        updated = service.refresh_fees(deal["id"], zip_code="78641")
        assert updated["estimated_sales_tax"] == 4125.0
        assert updated["fee_calculation_method"] == "zip_code_lookup"
        assert updated["buyer_zip_code"] == "78641"
        assert updated["otd_asking_price"] == 54383.0

    def test_refresh_persists_totals(self, service: NegotiationModeService, make_deal):
        deal = make_deal()
        updated = service.refresh_fees(deal["id"], zip_code="78641")
        assert updated["estimated_total_fees"] == 258.0
        assert updated["otd_price"] == 54383.0

    def test_refresh_uses_current_offer_as_basis(self, service: NegotiationModeService, make_deal):
        deal = make_deal(current_offer=40000.0)
        updated = service.refresh_fees(deal["id"], zip_code="00000")
        assert updated["estimated_sales_tax"] == 3200.0
        assert updated["fee_calculation_method"] == "default_estimate"

    def test_manual_fees_set_override(self, service: NegotiationModeService, make_deal):
        deal = make_deal()
        updated = service.apply_manual_fees(deal["id"], ManualFees(2500.0, 200.0, 250.0, 50.0))
        assert updated["manual_fees_override"] is True
        assert updated["fee_calculation_method"] == "manual_override"
        assert updated["otd_asking_price"] == 53000.0

    def test_refresh_skipped_under_override(self, service: NegotiationModeService, make_deal, store):
        deal = make_deal()
        service.apply_manual_fees(deal["id"], ManualFees(2500.0, 200.0, 250.0, 50.0))
        assert service.refresh_fees(deal["id"], zip_code="78641") is None
        assert store.get("deals", deal["id"])["estimated_sales_tax"] == 2500.0

    def test_forced_refresh_clears_override(self, service: NegotiationModeService, make_deal):
        deal = make_deal()
        service.apply_manual_fees(deal["id"], ManualFees(2500.0, 200.0, 250.0, 50.0))
        updated = service.refresh_fees(deal["id"], zip_code="78641", force=True)
        assert updated["manual_fees_override"] is False
        assert updated["estimated_sales_tax"] == 4125.0

    def test_invalid_zip_rejected(self, service: NegotiationModeService, make_deal):
        deal = make_deal()
        with pytest.raises(ValueError):
            service.refresh_fees(deal["id"], zip_code="7864")

    def test_price_summary(self, service: NegotiationModeService, make_deal):
        deal = make_deal(**FEES_3000)
        summary = service.price_summary(deal["id"])
        assert summary["total_fees"] == 3000.0
        assert summary["negotiation_mode"] == "sales_price"
        assert summary["asking_price"] == 50000.0

"""
test_rate_adapter.py - Unit tests for the controller and discount-rate adapter

Tests:
- TermCollateralManager ratios
- TermController registration, configs and auction history
- DiscountRateAdapter latest-valid-rate lookup and fallbacks
- Redemption haircuts
"""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from repo_strategy import (
    Ledger, cash, create_repo_token_unit,
    TermController, TermCollateralManager, DiscountRateAdapter, RepoServicer,
    IneligibleInstrument, InvalidAuction, NoValidDiscountRate,
)


T0 = datetime(2025, 1, 1)


@pytest.fixture
def ledger():
    ledger = Ledger("test", T0, verbose=False, test_mode=True)
    ledger.register_unit(cash("USDC", "USD Coin", decimals=6))
    ledger.register_unit(create_repo_token_unit(
        "TR-A", "Term repo A", "A", T0 + timedelta(days=30), "USDC", decimals=6,
    ))
    return ledger


@pytest.fixture
def controller(ledger):
    controller = TermController(ledger)
    servicer = RepoServicer(ledger, "servicer_A", "TR-A")
    controller.register_repo_token("TR-A", servicer, TermCollateralManager({"WETH": Decimal("1.5")}))
    for i in range(3):
        controller.register_auction(f"AUC-A-{i}", "A")
    return controller


@pytest.fixture
def adapter(controller):
    return DiscountRateAdapter(controller)


# ============================================================================
# COLLATERAL MANAGER
# ============================================================================

class TestCollateralManager:
    """Tests for TermCollateralManager."""

    def test_tokens_sorted(self):
        manager = TermCollateralManager({"WETH": Decimal("1.5"), "WBTC": Decimal("1.4")})
        assert manager.collateral_tokens() == ("WBTC", "WETH")

    def test_unknown_token_ratio_is_zero(self):
        assert TermCollateralManager().maintenance_collateral_ratio("WETH") == 0

    def test_negative_ratio_rejected(self):
        with pytest.raises(ValueError):
            TermCollateralManager({"WETH": Decimal("-0.1")})


# ============================================================================
# CONTROLLER
# ============================================================================

class TestController:
    """Tests for TermController."""

    def test_config_from_unit_state(self, controller):
        config = controller.repo_token_config("TR-A")
        assert config.term_repo_id == "A"
        assert config.maturity == T0 + timedelta(days=30)
        assert config.purchase_token == "USDC"
        assert config.decimals == 6
        assert config.precision == 10**6
        assert config.redemption_value == Decimal("1")

    def test_deployment_checks(self, controller):
        assert controller.is_term_deployed("TR-A")
        assert controller.is_term_deployed("AUC-A-0")
        assert not controller.is_term_deployed("TR-X")

    def test_auction_term_repo(self, controller):
        assert controller.auction_term_repo("AUC-A-2") == "A"
        assert controller.auction_term_repo("AUC-X") is None
        assert controller.auction_term_repo("TR-A") is None

    def test_unknown_repo_token(self, controller):
        with pytest.raises(IneligibleInstrument):
            controller.repo_token_config("TR-X")

    def test_cash_unit_is_not_a_repo_token(self, ledger, controller):
        with pytest.raises(ValueError, match="not a repo token"):
            controller.register_repo_token("USDC", None, TermCollateralManager())

    def test_duplicate_registration(self, controller):
        with pytest.raises(ValueError, match="already registered"):
            controller.register_auction("AUC-A-0", "A")

    def test_results_in_order(self, controller):
        controller.record_auction_result("AUC-A-0", Decimal("0.04"))
        controller.record_auction_result("AUC-A-1", Decimal("0.05"))
        rates = [r.clearing_rate for r in controller.get_term_auction_results("A")]
        assert rates == [Decimal("0.04"), Decimal("0.05")]

    def test_result_timestamp_defaults_to_ledger_time(self, controller):
        result = controller.record_auction_result("AUC-A-0", Decimal("0.04"))
        assert result.timestamp == T0

    def test_unknown_auction_result(self, controller):
        with pytest.raises(InvalidAuction):
            controller.record_auction_result("AUC-X", Decimal("0.04"))

    def test_no_history(self, controller):
        assert controller.get_term_auction_results("Z") == ()


# ============================================================================
# DISCOUNT RATE ADAPTER
# ============================================================================

class TestDiscountRate:
    """Tests for DiscountRateAdapter.get_discount_rate."""

    def test_latest_rate(self, controller, adapter):
        controller.record_auction_result("AUC-A-0", Decimal("0.04"))
        controller.record_auction_result("AUC-A-1", Decimal("0.05"))
        assert adapter.get_discount_rate("TR-A") == Decimal("0.05")

    def test_skips_invalidated_rate(self, controller, adapter):
        controller.record_auction_result("AUC-A-0", Decimal("0.04"))
        controller.record_auction_result("AUC-A-1", Decimal("0.05"))
        adapter.mark_rate_invalid("TR-A", "AUC-A-1")
        assert adapter.get_discount_rate("TR-A") == Decimal("0.04")

    def test_revalidating_restores_rate(self, controller, adapter):
        controller.record_auction_result("AUC-A-0", Decimal("0.04"))
        controller.record_auction_result("AUC-A-1", Decimal("0.05"))
        adapter.mark_rate_invalid("TR-A", "AUC-A-1")
        adapter.mark_rate_invalid("TR-A", "AUC-A-1", invalid=False)
        assert adapter.get_discount_rate("TR-A") == Decimal("0.05")

    def test_skips_auction_without_rate(self, controller, adapter):
        controller.record_auction_result("AUC-A-0", Decimal("0.04"))
        controller.record_auction_result("AUC-A-1", None)
        assert adapter.get_discount_rate("TR-A") == Decimal("0.04")

    def test_zero_rate_is_valid(self, controller, adapter):
        controller.record_auction_result("AUC-A-0", Decimal("0"))
        assert adapter.get_discount_rate("TR-A") == Decimal("0")

    def test_all_invalid(self, controller, adapter):
        controller.record_auction_result("AUC-A-0", Decimal("0.04"))
        adapter.mark_rate_invalid("TR-A", "AUC-A-0")
        with pytest.raises(NoValidDiscountRate):
            adapter.get_discount_rate("TR-A")

    def test_no_history(self, adapter):
        with pytest.raises(NoValidDiscountRate):
            adapter.get_discount_rate("TR-A")

    def test_unknown_token(self, adapter):
        with pytest.raises(IneligibleInstrument):
            adapter.get_discount_rate("TR-X")


class TestHaircut:
    """Tests for redemption haircuts."""

    def test_default_zero(self, adapter):
        assert adapter.repo_redemption_haircut("TR-A") == 0

    def test_set_haircut(self, adapter):
        adapter.set_repo_redemption_haircut("TR-A", Decimal("0.02"))
        assert adapter.repo_redemption_haircut("TR-A") == Decimal("0.02")

    @pytest.mark.parametrize("bad", [Decimal("-0.01"), Decimal("1.01")])
    def test_out_of_range(self, adapter, bad):
        with pytest.raises(ValueError):
            adapter.set_repo_redemption_haircut("TR-A", bad)

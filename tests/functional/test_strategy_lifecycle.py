"""
test_strategy_lifecycle.py - End-to-end lifecycle tests for the strategy

Tests complete strategy scenarios on a deployed market:
- Empty portfolio metrics
- Offer submission, edit and deletion
- Auction clearing, settlement into the repo-token registry, maturity and redemption
- Auction cancelled for withdrawal
- Selling repo tokens to the strategy
- Simulation without side effects
"""

import pytest
from datetime import timedelta
from decimal import Decimal, ROUND_DOWN

from repo_strategy import Strategy, SYSTEM_WALLET, present_value
from repo_strategy.units import repo_tokens_for_fill
from tests.conftest import T0, USDC, MANAGER, STRATEGY


DAY = 24 * 60 * 60
END = T0 + timedelta(days=2)
MATURITY_A = T0 + timedelta(days=30)


def submit(market, auction, repo_token, amount, id_hash="offer-1"):
    return market.strategy.submit_auction_offer(
        MANAGER, auction, repo_token, id_hash, "price", Decimal(amount),
    )


# ============================================================================
# EMPTY PORTFOLIO
# ============================================================================

class TestEmptyPortfolio:
    """Metrics before the strategy lends anything."""

    def test_all_liquid(self, market):
        strategy = market.strategy
        assert strategy.total_liquid_balance() == 1_000 * USDC
        assert strategy.total_asset_value() == strategy.total_liquid_balance()
        assert strategy.calculate_weighted_maturity() == 0
        assert strategy.repo_token_holdings() == []
        assert strategy.pending_offers() == []

    def test_funds_swept_into_vault(self, market):
        assert market.ledger.get_balance(STRATEGY, "USDC") == 0
        assert market.vault.balance_in_base_asset(STRATEGY) == 1_000 * USDC

    def test_unfunded_strategy(self, market):
        idle = Strategy(
            market.ledger, "idle", "USDC", market.controller, market.adapter,
            market.vault, management=MANAGER, verbose=False,
        )
        assert idle.total_asset_value() == 0
        assert idle.calculate_weighted_maturity() == 0
        assert idle.get_repo_token_concentration_ratio("TR-A") == 0


# ============================================================================
# OFFERS
# ============================================================================

class TestOffers:
    """Submitting, editing and deleting auction offers."""

    def test_submit_locks_funds(self, market):
        [offer_id] = submit(market, market.auction_a, "TR-A", 100 * USDC)
        strategy = market.strategy
        assert strategy.pending_offers() == [offer_id]
        assert strategy.pending_offer(offer_id).offer_amount == 100 * USDC
        assert market.auction_a.offer_locker.locked_amount(offer_id) == 100 * USDC
        assert strategy.total_liquid_balance() == 900 * USDC
        assert strategy.total_asset_value() == 1_000 * USDC
        assert market.ledger.get_balance(STRATEGY, "USDC") == 0

    def test_weighted_maturity_counts_offer(self, market):
        submit(market, market.auction_a, "TR-A", 100 * USDC)
        assert market.strategy.calculate_weighted_maturity() == Decimal(3 * DAY)

    def test_edit_down_releases_difference(self, market):
        [offer_id] = submit(market, market.auction_a, "TR-A", 100 * USDC)
        liquid_before = market.strategy.total_liquid_balance()

        [edited] = submit(market, market.auction_a, "TR-A", 40 * USDC)

        assert edited == offer_id
        assert len(market.strategy.pending_offers()) == 1
        assert market.strategy.pending_offer(offer_id).offer_amount == 40 * USDC
        assert market.strategy.total_liquid_balance() == liquid_before + 60 * USDC
        assert market.auction_a.offer_locker.locked_amount(offer_id) == 40 * USDC

    def test_edit_up_locks_difference(self, market):
        [offer_id] = submit(market, market.auction_a, "TR-A", 100 * USDC)
        submit(market, market.auction_a, "TR-A", 150 * USDC)
        assert market.strategy.total_liquid_balance() == 850 * USDC
        assert market.auction_a.offer_locker.locked_amount(offer_id) == 150 * USDC

    def test_offers_on_two_auctions(self, market):
        [a] = submit(market, market.auction_a, "TR-A", 100 * USDC)
        [b] = submit(market, market.auction_b, "TR-B", 100 * USDC)
        assert market.strategy.pending_offers() == [b, a]
        assert market.strategy.get_repo_token_holding_value("TR-B") == 100 * USDC

    def test_delete_offer_refunds(self, market):
        offer_ids = submit(market, market.auction_a, "TR-A", 100 * USDC)
        market.strategy.delete_auction_offers(MANAGER, market.auction_a, offer_ids)
        assert market.strategy.pending_offers() == []
        assert market.strategy.total_liquid_balance() == 1_000 * USDC
        assert market.ledger.get_balance(market.auction_a.offer_locker.wallet, "USDC") == 0

    def test_delete_keeps_other_offers(self, market):
        [a] = submit(market, market.auction_a, "TR-A", 100 * USDC)
        [b] = submit(market, market.auction_a, "TR-A", 50 * USDC, id_hash="offer-2")
        market.strategy.delete_auction_offers(MANAGER, market.auction_a, [a])
        assert market.strategy.pending_offers() == [b]
        assert market.strategy.total_liquid_balance() == 950 * USDC


# ============================================================================
# AUCTION TO MATURITY
# ============================================================================

class TestAuctionToMaturity:
    """Offer -> clearing -> settlement -> maturity -> redemption."""

    @pytest.fixture
    def cleared(self, market):
        [offer_id] = submit(market, market.auction_a, "TR-A", 100 * USDC)
        market.ledger.advance_time(END)
        market.auction_a.complete_auction(Decimal("0.05"))
        return offer_id

    def expected_tokens(self):
        return repo_tokens_for_fill(
            100 * USDC, Decimal("0.05"), MATURITY_A, END, Decimal("1"), 10**6, 10**6,
        )

    def test_clearing_mints_tokens_to_strategy(self, market, cleared):
        assert market.ledger.get_balance(STRATEGY, "TR-A") == self.expected_tokens()
        assert market.ledger.get_balance(market.servicer_a.wallet, "USDC") == 100 * USDC

    def test_cleared_offer_valued_before_settlement(self, market, cleared):
        """Until a sweep, the won tokens are valued through the pending offer."""
        expected_pv = present_value(
            self.expected_tokens(), 10**6, MATURITY_A, Decimal("0.05"), END,
        )
        assert market.strategy.pending_offers() == [cleared]
        assert market.strategy.repo_token_holdings() == []
        assert market.strategy.total_asset_value() == 900 * USDC + expected_pv

    def test_sweep_moves_token_into_registry(self, market, cleared):
        value_before = market.strategy.total_asset_value()
        weighted_before = market.strategy.calculate_weighted_maturity()

        market.strategy.sweep_and_rebalance(MANAGER)

        assert market.strategy.pending_offers() == []
        assert market.strategy.repo_token_holdings() == ["TR-A"]
        assert market.strategy.discount_rate("TR-A") == Decimal("0.05")
        assert market.strategy.total_asset_value() == value_before
        assert market.strategy.calculate_weighted_maturity() == weighted_before

    def test_redemption_at_maturity(self, market, cleared):
        market.strategy.sweep_and_rebalance(MANAGER)
        market.ledger.set_balance("alice", "USDC", 10 * USDC)
        market.servicer_a.submit_repayment("alice", 10 * USDC)
        market.ledger.advance_time(MATURITY_A)

        market.strategy.sweep_and_rebalance(MANAGER)

        tokens = self.expected_tokens()
        assert market.strategy.repo_token_holdings() == []
        assert market.ledger.get_balance(STRATEGY, "TR-A") == 0
        assert market.ledger.get_balance(SYSTEM_WALLET, "TR-A") == 0
        assert market.strategy.total_liquid_balance() == 900 * USDC + tokens
        assert market.strategy.total_asset_value() == 900 * USDC + tokens
        assert market.strategy.calculate_weighted_maturity() == 0

    def test_unfunded_servicer_keeps_token_tracked(self, market, cleared):
        """A failed redemption does not abort the sweep."""
        market.strategy.sweep_and_rebalance(MANAGER)
        market.ledger.advance_time(MATURITY_A)

        market.strategy.sweep_and_rebalance(MANAGER)

        assert market.strategy.repo_token_holdings() == ["TR-A"]
        assert market.ledger.get_balance(STRATEGY, "TR-A") == self.expected_tokens()

    def test_matured_token_valued_at_face(self, market, cleared):
        market.strategy.sweep_and_rebalance(MANAGER)
        market.ledger.advance_time(MATURITY_A + timedelta(days=1))
        assert market.strategy.total_asset_value() == 900 * USDC + self.expected_tokens()
        assert market.strategy.calculate_weighted_maturity() == 0


# ============================================================================
# CANCELLATION
# ============================================================================

class TestCancelledAuction:
    """Offers on auctions cancelled for withdrawal come back on the next sweep."""

    def test_sweep_unlocks_offer(self, market):
        submit(market, market.auction_a, "TR-A", 100 * USDC)
        market.auction_a.cancel_for_withdrawal()

        market.strategy.sweep_and_rebalance(MANAGER)

        assert market.strategy.pending_offers() == []
        assert market.strategy.total_liquid_balance() == 1_000 * USDC
        assert market.ledger.get_balance(market.auction_a.offer_locker.wallet, "USDC") == 0

    def test_refunded_offer_dropped(self, market):
        submit(market, market.auction_a, "TR-A", 100 * USDC)
        market.auction_a.cancel_auction()

        market.strategy.sweep_and_rebalance(MANAGER)

        assert market.strategy.pending_offers() == []
        assert market.strategy.total_liquid_balance() == 1_000 * USDC


# ============================================================================
# SELLING TO THE STRATEGY
# ============================================================================

class TestSellRepoToken:
    """Wallets selling repo tokens to the strategy."""

    def test_sell_pays_discounted_value(self, market, seller):
        proceeds = market.strategy.sell_repo_token(seller, "TR-A", 100 * USDC)

        expected = present_value(100 * USDC, 10**6, MATURITY_A, Decimal("0.055"), T0)
        assert proceeds == expected
        assert market.ledger.get_balance(seller, "USDC") == expected
        assert market.ledger.get_balance(seller, "TR-A") == 100 * USDC
        assert market.ledger.get_balance(STRATEGY, "TR-A") == 100 * USDC
        assert market.strategy.total_liquid_balance() == 1_000 * USDC - expected

    def test_sell_tracks_token_at_oracle_rate(self, market, seller):
        market.strategy.sell_repo_token(seller, "TR-A", 100 * USDC)
        assert market.strategy.repo_token_holdings() == ["TR-A"]
        assert market.strategy.discount_rate("TR-A") == Decimal("0.05")

    def test_markup_is_a_gain(self, market, seller):
        market.strategy.sell_repo_token(seller, "TR-A", 100 * USDC)
        assert market.strategy.total_asset_value() > 1_000 * USDC

    def test_holdings_in_maturity_order(self, market, seller):
        market.strategy.sell_repo_token(seller, "TR-B", 50 * USDC)
        market.strategy.sell_repo_token(seller, "TR-A", 50 * USDC)
        assert market.strategy.repo_token_holdings() == ["TR-A", "TR-B"]

    def test_sell_twice(self, market, seller):
        first = market.strategy.sell_repo_token(seller, "TR-A", 50 * USDC)
        second = market.strategy.sell_repo_token(seller, "TR-A", 50 * USDC)
        assert first == second
        assert market.ledger.get_balance(STRATEGY, "TR-A") == 100 * USDC
        assert len(market.strategy.repo_token_holdings()) == 1


# ============================================================================
# SIMULATION
# ============================================================================

class TestSimulation:
    """simulate_transaction reports metrics without mutating anything."""

    def test_current_portfolio(self, market):
        result = market.strategy.simulate_transaction()
        assert result.weighted_maturity == 0
        assert result.concentration_ratio == 0
        assert result.liquidity_ratio == 1
        assert result.proceeds == 0

    def test_hypothetical_purchase(self, market):
        amount = 100 * USDC
        result = market.strategy.simulate_transaction("TR-A", amount)

        proceeds = present_value(amount, 10**6, MATURITY_A, Decimal("0.055"), T0)
        liquid_after = 1_000 * USDC - proceeds
        weighted = (amount * 30 * DAY / (amount + liquid_after)).to_integral_value(rounding=ROUND_DOWN)
        assert result.proceeds == proceeds
        assert result.weighted_maturity == weighted
        assert result.concentration_ratio == amount / (1_000 * USDC + amount - proceeds)
        assert result.liquidity_ratio == 1

    def test_no_side_effects(self, market):
        log_size = len(market.ledger.transaction_log)
        market.strategy.simulate_transaction("TR-B", 100 * USDC)
        assert len(market.ledger.transaction_log) == log_size
        assert market.strategy.repo_token_holdings() == []
        assert market.strategy.total_liquid_balance() == 1_000 * USDC

    def test_calculate_present_value(self, market):
        pv = market.strategy.calculate_repo_token_present_value("TR-A", Decimal("0.05"), USDC)
        assert pv == Decimal("995907")

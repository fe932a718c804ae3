"""
conftest.py - Shared pytest fixtures for repo strategy tests

Provides common fixtures used across unit, functional and conformance tests:
- Basic ledgers (empty, USDC-funded)
- A deployed market: controller, rate adapter, yield vault, repo tokens, auctions
- A funded strategy sitting on that market
- Comparison utilities
"""

import pytest
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Tuple
from decimal import Decimal

from repo_strategy import (
    # Core
    Ledger, cash,

    # Collaborators
    TermController, TermCollateralManager, DiscountRateAdapter,
    create_repo_token_unit, RepoServicer, TermAuction, YieldVault,

    # Strategy
    Strategy, RiskParameters,
)

from tests.fake_view import FakeView


T0 = datetime(2025, 1, 1)
USDC = Decimal(10) ** 6          # one whole USDC in raw units
MANAGER = "manager"
STRATEGY = "strategy"


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def deploy_repo_token(
    ledger: Ledger,
    controller: TermController,
    symbol: str,
    term_repo_id: str,
    maturity: datetime,
    decimals: int = 6,
    collateral: Dict[str, Decimal] = None,
) -> RepoServicer:
    """Register a repo token unit plus its servicer and collateral manager."""
    ledger.register_unit(create_repo_token_unit(
        symbol, f"Term repo {term_repo_id}", term_repo_id, maturity, "USDC", decimals=decimals,
    ))
    servicer = RepoServicer(ledger, f"servicer_{term_repo_id}", symbol)
    manager = TermCollateralManager(collateral or {"WETH": Decimal("1.5")})
    controller.register_repo_token(symbol, servicer, manager)
    return servicer


def seed_rate(controller: TermController, term_repo_id: str, rate: Decimal, auction_id: str = None) -> None:
    """Record a past clearing rate so the oracle can price the term repo."""
    auction_id = auction_id or f"AUC-{term_repo_id}-0"
    controller.register_auction(auction_id, term_repo_id)
    controller.record_auction_result(auction_id, rate)


def ledger_state_equals(ledger1: Ledger, ledger2: Ledger) -> bool:
    """Check if two ledgers have equivalent balances and unit states."""
    return compare_ledger_states(ledger1, ledger2)["equal"]


def compare_ledger_states(ledger1: Ledger, ledger2: Ledger) -> dict:
    """Compare two ledger states and return differences."""
    balance_diffs = []
    state_diffs = []

    all_wallets = ledger1.registered_wallets | ledger2.registered_wallets
    all_units = set(ledger1.units.keys()) | set(ledger2.units.keys())

    for wallet in all_wallets:
        for unit in all_units:
            bal1 = ledger1.balances.get(wallet, {}).get(unit, Decimal("0"))
            bal2 = ledger2.balances.get(wallet, {}).get(unit, Decimal("0"))
            if bal1 != bal2:
                balance_diffs.append({"wallet": wallet, "unit": unit, "ledger1": bal1, "ledger2": bal2})

    for unit_sym in all_units:
        if unit_sym in ledger1.units and unit_sym in ledger2.units:
            if ledger1.get_unit_state(unit_sym) != ledger2.get_unit_state(unit_sym):
                state_diffs.append(unit_sym)
        else:
            state_diffs.append(unit_sym)

    return {
        "equal": not balance_diffs and not state_diffs,
        "balance_diffs": balance_diffs,
        "state_diffs": state_diffs,
    }


@dataclass
class Market:
    """Everything a strategy test needs, deployed on one ledger."""
    ledger: Ledger
    controller: TermController
    adapter: DiscountRateAdapter
    vault: YieldVault
    strategy: Strategy
    servicer_a: RepoServicer
    servicer_b: RepoServicer
    auction_a: TermAuction
    auction_b: TermAuction


# =============================================================================
# BASIC FIXTURES
# =============================================================================

@pytest.fixture
def empty_ledger():
    """Fresh ledger with no registrations."""
    return Ledger("test", T0, verbose=False, test_mode=True)


@pytest.fixture
def usdc_ledger():
    """Ledger with USDC and two wallets."""
    ledger = Ledger("test", T0, verbose=False, test_mode=True)
    ledger.register_unit(cash("USDC", "USD Coin", decimals=6))
    ledger.register_wallet("alice")
    ledger.register_wallet("bob")
    return ledger


@pytest.fixture
def funded_ledger(usdc_ledger):
    """USDC ledger with alice holding 10,000 USDC."""
    usdc_ledger.set_balance("alice", "USDC", 10_000 * USDC)
    return usdc_ledger


# =============================================================================
# MARKET FIXTURES
# =============================================================================

@pytest.fixture
def risk_params():
    """Limits loose enough that only the test's own check trips."""
    return RiskParameters(
        time_to_maturity_threshold=Decimal(45 * 24 * 60 * 60),
        required_reserve_ratio=Decimal("0.1"),
        repo_token_concentration_limit=Decimal("0.3"),
        discount_rate_markup=Decimal("0.005"),
    )


def build_market(params: RiskParameters = None) -> Market:
    """
    Two term repos (A matures in 30 days, B in 60), an open auction for
    each, 5% / 6% clearing history, and a strategy with 1,000 USDC swept
    into the yield vault.
    """
    ledger = Ledger("test", T0, verbose=False, test_mode=True)
    ledger.register_unit(cash("USDC", "USD Coin", decimals=6))
    ledger.register_wallet("alice")
    ledger.register_wallet("bob")
    controller = TermController(ledger)
    adapter = DiscountRateAdapter(controller)
    vault = YieldVault(ledger, "vault", "USDC")

    servicer_a = deploy_repo_token(ledger, controller, "TR-A", "A", T0 + timedelta(days=30))
    servicer_b = deploy_repo_token(ledger, controller, "TR-B", "B", T0 + timedelta(days=60))
    seed_rate(controller, "A", Decimal("0.05"))
    seed_rate(controller, "B", Decimal("0.06"))

    auction_a = TermAuction.deploy(
        ledger, controller, "AUC-A-1", "TR-A",
        T0 - timedelta(hours=1), T0 + timedelta(days=2), servicer_a.wallet,
    )
    auction_b = TermAuction.deploy(
        ledger, controller, "AUC-B-1", "TR-B",
        T0 - timedelta(hours=1), T0 + timedelta(days=2), servicer_b.wallet,
    )

    strategy = Strategy(
        ledger, STRATEGY, "USDC", controller, adapter, vault,
        management=MANAGER, params=params or RiskParameters(), verbose=False,
    )
    strategy.set_collateral_token_params(MANAGER, "WETH", Decimal("1.2"))
    ledger.set_balance(STRATEGY, "USDC", 1_000 * USDC)
    strategy.sweep_and_rebalance(MANAGER)

    return Market(
        ledger=ledger,
        controller=controller,
        adapter=adapter,
        vault=vault,
        strategy=strategy,
        servicer_a=servicer_a,
        servicer_b=servicer_b,
        auction_a=auction_a,
        auction_b=auction_b,
    )


@pytest.fixture
def market(risk_params):
    """Freshly deployed market; see build_market()."""
    return build_market(risk_params)


@pytest.fixture
def seller(market):
    """Wallet holding 200 TR-A and 200 TR-B, as if won in earlier auctions."""
    market.ledger.register_wallet("seller")
    market.ledger.set_balance("seller", "TR-A", 200 * USDC)
    market.ledger.set_balance("seller", "TR-B", 200 * USDC)
    return "seller"


# =============================================================================
# FAKE VIEW FIXTURES
# =============================================================================

@pytest.fixture
def holdings_view():
    """FakeView with the strategy holding two repo tokens."""
    return FakeView(
        balances={
            STRATEGY: {
                "TR-A": 1_000_000 * Decimal(1),
                "TR-B": 2_000_000 * Decimal(1),
                "USDC": 5_000_000 * Decimal(1),
            },
        },
        time=T0,
    )

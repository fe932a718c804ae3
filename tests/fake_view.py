"""
fake_view.py - Test doubles for LedgerView and the strategy's collaborators

FakeView provides a minimal, immutable LedgerView so registry functions can
be tested without a full Ledger. The Stub* classes implement the collaborator
protocols with plain dictionaries and record the calls made to them.
"""

from __future__ import annotations
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Set, Any

from repo_strategy import (
    LedgerView, LedgerError, IneligibleInstrument, NoValidDiscountRate,
    RepoTokenConfig, OfferSubmission, TermCollateralManager, generate_offer_id,
)


UnitState = Dict[str, Any]


class FakeView:
    """
    Minimal LedgerView implementation for testing registry functions.

    Example:
        view = FakeView(
            balances={'strategy': {'TR-A': Decimal("1000000")}},
            time=datetime(2025, 1, 1),
        )
        view.get_balance('strategy', 'TR-A')
        # Returns: Decimal('1000000')
    """

    def __init__(
        self,
        balances: Dict[str, Dict[str, Decimal]],
        states: Optional[Dict[str, UnitState]] = None,
        time: Optional[datetime] = None,
    ):
        self._balances = balances
        self._states = states or {}
        self._time = time or datetime(2025, 1, 1)

    @property
    def current_time(self) -> datetime:
        return self._time

    def get_balance(self, wallet: str, unit: str) -> Decimal:
        return self._balances.get(wallet, {}).get(unit, Decimal("0"))

    def get_unit_state(self, unit: str) -> UnitState:
        return dict(self._states.get(unit, {}))

    def get_positions(self, unit: str) -> Dict[str, Decimal]:
        return {
            w: b[unit]
            for w, b in self._balances.items()
            if unit in b and b[unit] != 0
        }

    def list_wallets(self) -> Set[str]:
        return set(self._balances.keys())

    def get_unit(self, symbol: str) -> Any:
        raise NotImplementedError("FakeView has no unit table")


class StubServicer:
    """RedemptionServicer that records redemptions; optionally fails."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.redemptions: List[tuple] = []

    def redeem_term_repo_tokens(self, holder: str, amount: Decimal) -> Decimal:
        if self.fail:
            raise LedgerError("servicer out of funds")
        self.redemptions.append((holder, amount))
        return amount


class StubController:
    """EligibilityOracle backed by a dict of RepoTokenConfig."""

    def __init__(
        self,
        configs: Optional[Dict[str, RepoTokenConfig]] = None,
        auctions: Sequence[str] = (),
        auction_terms: Optional[Dict[str, str]] = None,
    ):
        self.configs = dict(configs or {})
        self.auction_terms = dict(auction_terms or {})
        self.auctions = set(auctions) | set(self.auction_terms)

    def add(
        self,
        symbol: str,
        maturity: datetime,
        purchase_token: str = "USDC",
        decimals: int = 6,
        term_repo_id: Optional[str] = None,
        servicer: Optional[StubServicer] = None,
        collateral: Optional[Dict[str, Decimal]] = None,
    ) -> RepoTokenConfig:
        config = RepoTokenConfig(
            symbol=symbol,
            term_repo_id=term_repo_id or symbol,
            maturity=maturity,
            purchase_token=purchase_token,
            redemption_value=Decimal("1"),
            decimals=decimals,
            servicer=servicer or StubServicer(),
            collateral_manager=TermCollateralManager(
                collateral if collateral is not None else {"WETH": Decimal("1.5")}
            ),
        )
        self.configs[symbol] = config
        return config

    def is_term_deployed(self, contract: str) -> bool:
        return contract in self.configs or contract in self.auctions

    def auction_term_repo(self, auction_id: str) -> Optional[str]:
        return self.auction_terms.get(auction_id)

    def repo_token_config(self, repo_token: str) -> RepoTokenConfig:
        if repo_token not in self.configs:
            raise IneligibleInstrument(f"{repo_token} unknown")
        return self.configs[repo_token]


class StubRateOracle:
    """DiscountRateOracle with fixed rates; counts lookups."""

    def __init__(self, rates: Optional[Dict[str, Decimal]] = None, haircuts: Optional[Dict[str, Decimal]] = None):
        self.rates = dict(rates or {})
        self.haircuts = dict(haircuts or {})
        self.calls = 0

    def get_discount_rate(self, repo_token: str) -> Decimal:
        self.calls += 1
        if repo_token not in self.rates:
            raise NoValidDiscountRate(f"no rate for {repo_token}")
        return self.rates[repo_token]

    def repo_redemption_haircut(self, repo_token: str) -> Decimal:
        return self.haircuts.get(repo_token, Decimal("0"))


class StubLocker:
    """OfferLocker keeping locked amounts in a dict."""

    def __init__(self, locker_id: str = "locker"):
        self._locker_id = locker_id
        self.locked: Dict[str, Decimal] = {}
        self.unlocked: List[str] = []

    @property
    def locker_id(self) -> str:
        return self._locker_id

    def locked_amount(self, offer_id: str) -> Decimal:
        return self.locked.get(offer_id, Decimal("0"))

    def lock_offers(self, offeror: str, submissions: Sequence[OfferSubmission]) -> List[str]:
        ids = []
        for sub in submissions:
            offer_id = generate_offer_id(sub.id, offeror, self._locker_id)
            self.locked[offer_id] = sub.amount
            ids.append(offer_id)
        return ids

    def unlock_offers(self, offeror: str, offer_ids: Sequence[str]) -> None:
        for offer_id in offer_ids:
            self.locked.pop(offer_id, None)
            self.unlocked.append(offer_id)


class StubAuction:
    """TermAuctionView with settable flags."""

    def __init__(
        self,
        auction_id: str,
        term_repo_id: str,
        locker: StubLocker,
        start: datetime = datetime(2024, 12, 31),
        end: datetime = datetime(2025, 1, 3),
    ):
        self.auction_id = auction_id
        self.term_repo_id = term_repo_id
        self.offer_locker = locker
        self.auction_start_time = start
        self.auction_end_time = end
        self.auction_completed = False
        self.auction_cancelled_for_withdrawal = False

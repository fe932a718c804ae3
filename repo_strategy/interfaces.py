"""
interfaces.py - Collaborator contracts consumed by the strategy

The strategy never reaches into an auction, oracle, or vault directly. It
talks to them through the protocols below, so tests can inject deterministic
stubs and the in-process implementations (controller, rate_adapter,
units/auction, units/repo_token, units/yield_vault) can be swapped out.

Classes:
- EligibilityOracle: recognizes deployed term contracts, returns repo token metadata
- DiscountRateOracle: most recent valid clearing rate per repo token
- TermAuctionView: auction window and outcome
- OfferLocker: locks and unlocks offer collateral
- YieldReserve: external vault for idle liquidity
- CollateralManager: accepted collateral and live maintenance ratios
- RedemptionServicer: redeems matured repo tokens for face value

Value types:
- RepoTokenConfig, OfferSubmission, AuctionResult
"""
from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Protocol, Sequence, Tuple, runtime_checkable


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class CollateralManager(Protocol):
    """Collateral accepted by one term repo."""

    def collateral_tokens(self) -> Tuple[str, ...]:
        ...

    def maintenance_collateral_ratio(self, collateral_token: str) -> Decimal:
        """Live maintenance ratio as a fraction (Decimal("1.25") == 125%)."""
        ...


@runtime_checkable
class RedemptionServicer(Protocol):
    """Pays out face value for matured repo tokens."""

    def redeem_term_repo_tokens(self, holder: str, amount: Decimal) -> Decimal:
        """
        Burn `amount` repo tokens held by `holder` and pay them out.

        Returns the base-asset amount paid. Raises a LedgerError when the
        redemption cannot settle.
        """
        ...


@runtime_checkable
class EligibilityOracle(Protocol):
    """Registry of deployed term contracts (auctions and repo tokens)."""

    def is_term_deployed(self, contract: str) -> bool:
        ...

    def repo_token_config(self, repo_token: str) -> RepoTokenConfig:
        """Raises IneligibleInstrument for an unknown repo token."""
        ...

    def auction_term_repo(self, auction_id: str) -> Optional[str]:
        """Term repo the auction was deployed for, None if unknown."""
        ...


@runtime_checkable
class DiscountRateOracle(Protocol):
    """Discount rates derived from auction clearing prices."""

    def get_discount_rate(self, repo_token: str) -> Decimal:
        """Raises NoValidDiscountRate when no auction has a valid rate."""
        ...

    def repo_redemption_haircut(self, repo_token: str) -> Decimal:
        ...


@runtime_checkable
class OfferLocker(Protocol):
    """Holds offer collateral while an auction is open."""

    @property
    def locker_id(self) -> str:
        ...

    def locked_amount(self, offer_id: str) -> Decimal:
        """Amount currently locked for offer_id, zero if unknown."""
        ...

    def lock_offers(self, offeror: str, submissions: Sequence[OfferSubmission]) -> List[str]:
        """Lock or edit offers; returns the offer ids in submission order."""
        ...

    def unlock_offers(self, offeror: str, offer_ids: Sequence[str]) -> None:
        ...


@runtime_checkable
class TermAuctionView(Protocol):
    """Read-only view of one term auction."""

    @property
    def auction_id(self) -> str:
        ...

    @property
    def term_repo_id(self) -> str:
        ...

    @property
    def auction_start_time(self) -> datetime:
        ...

    @property
    def auction_end_time(self) -> datetime:
        ...

    @property
    def auction_completed(self) -> bool:
        ...

    @property
    def auction_cancelled_for_withdrawal(self) -> bool:
        ...

    @property
    def offer_locker(self) -> OfferLocker:
        ...


@runtime_checkable
class YieldReserve(Protocol):
    """External vault holding idle base asset on the owner's behalf."""

    def deposit(self, owner: str, amount: Decimal) -> Decimal:
        """Move amount from owner into the vault. Returns shares minted."""
        ...

    def withdraw(self, owner: str, amount: Decimal) -> Decimal:
        """Return amount of base asset to owner. Returns shares burned."""
        ...

    def balance_in_base_asset(self, owner: str) -> Decimal:
        """Base asset redeemable by owner right now."""
        ...


# ============================================================================
# VALUE TYPES
# ============================================================================

@dataclass(frozen=True, slots=True)
class RepoTokenConfig:
    """
    Static description of a repo token.

    Attributes:
        symbol: Repo token unit symbol
        term_repo_id: Term repo the token (and its auctions) belong to
        maturity: Redemption timestamp
        purchase_token: Base asset paid at redemption
        redemption_value: Base asset paid per whole repo token
        decimals: Native decimals of the repo token
        servicer: Redeems the token at maturity
        collateral_manager: Collateral posted against the term repo
    """
    symbol: str
    term_repo_id: str
    maturity: datetime
    purchase_token: str
    redemption_value: Decimal
    decimals: int
    servicer: RedemptionServicer
    collateral_manager: CollateralManager

    def __post_init__(self):
        if not isinstance(self.redemption_value, Decimal):
            object.__setattr__(self, 'redemption_value', Decimal(str(self.redemption_value)))
        if self.redemption_value <= 0:
            raise ValueError("redemption_value must be positive")
        if self.decimals < 0:
            raise ValueError("decimals must be non-negative")

    @property
    def precision(self) -> int:
        return 10 ** self.decimals


@dataclass(frozen=True, slots=True)
class OfferSubmission:
    """One offer as handed to an OfferLocker. `id` is the caller's raw id hash."""
    id: str
    offeror: str
    price_hash: str
    amount: Decimal
    purchase_token: str

    def __post_init__(self):
        if not isinstance(self.amount, Decimal):
            object.__setattr__(self, 'amount', Decimal(str(self.amount)))
        if self.amount <= 0:
            raise ValueError("amount must be positive")


@dataclass(frozen=True, slots=True)
class AuctionResult:
    """Clearing rate of a completed auction. A rate of None marks it invalid."""
    auction_id: str
    clearing_rate: Optional[Decimal]
    timestamp: datetime

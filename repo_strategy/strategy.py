"""
strategy.py - Repo-Token Strategy (risk and rebalancing engine)

The strategy holds a base asset, lends it through term auctions, and keeps
whatever it is not lending in a yield vault. It owns two registries:

    RepoTokenRegistry     repo tokens it holds
    PendingOfferRegistry  offers locked in auctions that have not settled

and refuses any action that would push the portfolio past its risk limits:

    concentration      value in one repo token / total asset value
    weighted maturity  value-weighted seconds to maturity, liquid counted at 0
    reserve ratio      liquid balance / total asset value

Every state-changing entry point runs atomically: the ledger (which holds all
balances and every collaborator's state) and both registries are
snapshotted first and restored if anything raises. A call made while
another is still running is rejected with ReentrantCall.

Example:
    strategy = Strategy(ledger, "strategy", "USDC", controller, adapter, vault,
                        management="manager", params=RiskParameters(...))
    strategy.submit_auction_offer("manager", auction, "TR-JUN",
                                  id_hash="o-1", price_hash="p", amount=Decimal(100))
    strategy.sweep_and_rebalance("manager")
"""
from __future__ import annotations
from contextlib import contextmanager
from dataclasses import dataclass, replace
from decimal import Decimal, ROUND_DOWN
from typing import Iterator, List, Optional, Sequence

from .core import (
    CallState, Move, TransactionOrigin, OriginType,
    AuctionInstrumentMismatch, AuctionNotOpen, ConcentrationTooHigh,
    IneligibleInstrument, InstrumentBlacklisted, InsufficientLiquidity,
    InvalidAmount, InvalidAuction, LiquidityBelowReserve,
    MaturityThresholdExceeded, ReentrantCall, Unauthorized,
    build_transaction, token_precision,
    ONE, ZERO,
)
from .interfaces import (
    DiscountRateOracle, EligibilityOracle, OfferSubmission, RepoTokenConfig,
    TermAuctionView, YieldReserve,
)
from .pending_offers import PendingOffer, PendingOfferRegistry, generate_offer_id
from .repo_tokens import RepoTokenRegistry
from .valuation import normalized_amount, present_value, weighted_time_to_maturity


# =============================================================================
# CONFIGURATION
# =============================================================================

@dataclass(frozen=True, slots=True)
class RiskParameters:
    """
    Risk limits enforced by the strategy.

    Attributes:
        time_to_maturity_threshold: Max weighted time to maturity, in seconds
        required_reserve_ratio: Min liquid balance / total asset value
        repo_token_concentration_limit: Max share of total value in one repo token
        discount_rate_markup: Added to the oracle rate when buying repo tokens
    """
    time_to_maturity_threshold: Decimal = Decimal(45 * 24 * 60 * 60)
    required_reserve_ratio: Decimal = Decimal("0.1")
    repo_token_concentration_limit: Decimal = Decimal("0.3")
    discount_rate_markup: Decimal = Decimal("0.005")

    def __post_init__(self):
        for name in ('time_to_maturity_threshold', 'required_reserve_ratio',
                     'repo_token_concentration_limit', 'discount_rate_markup'):
            value = getattr(self, name)
            if not isinstance(value, Decimal):
                object.__setattr__(self, name, Decimal(str(value)))
        if self.time_to_maturity_threshold < 0:
            raise ValueError("time_to_maturity_threshold must be non-negative")
        if not ZERO <= self.required_reserve_ratio <= ONE:
            raise ValueError("required_reserve_ratio must be within [0, 1]")
        if not ZERO <= self.repo_token_concentration_limit <= ONE:
            raise ValueError("repo_token_concentration_limit must be within [0, 1]")
        if not ZERO <= self.discount_rate_markup <= ONE:
            raise ValueError("discount_rate_markup must be within [0, 1]")


@dataclass(frozen=True, slots=True)
class SimulationResult:
    """Portfolio metrics after a hypothetical purchase."""
    weighted_maturity: Decimal
    concentration_ratio: Decimal
    liquidity_ratio: Decimal
    proceeds: Decimal


# =============================================================================
# STRATEGY
# =============================================================================

class Strategy:
    """Risk-checked lending of a base asset through term auctions."""

    def __init__(
        self,
        ledger,
        wallet: str,
        asset: str,
        controller: EligibilityOracle,
        rate_adapter: DiscountRateOracle,
        yield_reserve: YieldReserve,
        management: str,
        params: Optional[RiskParameters] = None,
        verbose: bool = True,
    ):
        self.ledger = ledger
        self.wallet = wallet
        self.asset = asset
        self.controller = controller
        self.rate_adapter = rate_adapter
        self.yield_reserve = yield_reserve
        self.management = management
        self.params = params or RiskParameters()
        self.verbose = verbose
        self.base_precision = token_precision(ledger, asset)
        self._repo_tokens = RepoTokenRegistry(verbose)
        self._pending_offers = PendingOfferRegistry(verbose)
        self._blacklist: set = set()
        self._call_state = CallState.IDLE
        if not ledger.is_registered(wallet):
            ledger.register_wallet(wallet)

    # ------------------------------------------------------------------
    # call state
    # ------------------------------------------------------------------

    @property
    def call_state(self) -> CallState:
        return self._call_state

    def _require_management(self, caller: str) -> None:
        if caller != self.management:
            raise Unauthorized(f"{caller} is not the strategy manager")

    @contextmanager
    def _atomic(self, operation: str) -> Iterator[None]:
        """Run a state-changing call all-or-nothing, with a re-entrancy guard."""
        if self._call_state is CallState.IN_PROGRESS:
            raise ReentrantCall(f"{operation} called while another call is in progress")
        self._call_state = CallState.IN_PROGRESS
        ledger_snapshot = self.ledger.clone()
        repo_snapshot = self._repo_tokens.copy()
        offers_snapshot = self._pending_offers.copy()
        params_snapshot = self.params
        blacklist_snapshot = set(self._blacklist)
        try:
            yield
        except Exception as e:
            self.ledger.restore(ledger_snapshot)
            self._repo_tokens = repo_snapshot
            self._pending_offers = offers_snapshot
            self.params = params_snapshot
            self._blacklist = blacklist_snapshot
            if self.verbose:
                print(f"[ROLLBACK] {operation}: {type(e).__name__}: {e}")
            raise
        finally:
            self._call_state = CallState.IDLE

    # ------------------------------------------------------------------
    # read-only views
    # ------------------------------------------------------------------

    def repo_token_holdings(self) -> List[str]:
        return list(self._repo_tokens.holdings())

    def pending_offers(self) -> List[str]:
        return list(self._pending_offers.pending_offers())

    def pending_offer(self, offer_id: str) -> Optional[PendingOffer]:
        return self._pending_offers.get(offer_id)

    def discount_rate(self, repo_token: str) -> Optional[Decimal]:
        return self._repo_tokens.discount_rate(repo_token)

    def is_blacklisted(self, repo_token: str) -> bool:
        return repo_token in self._blacklist

    @property
    def repo_token_registry(self) -> RepoTokenRegistry:
        return self._repo_tokens

    @property
    def pending_offer_registry(self) -> PendingOfferRegistry:
        return self._pending_offers

    def _liquid_direct(self) -> Decimal:
        return self.ledger.get_balance(self.wallet, self.asset)

    def total_liquid_balance(self) -> Decimal:
        """Base asset held directly plus what the yield vault would return."""
        return self._liquid_direct() + self.yield_reserve.balance_in_base_asset(self.wallet)

    def _repo_token_present_value(self, repo_token: Optional[str] = None) -> Decimal:
        return self._repo_tokens.get_present_value(
            self.ledger, self.wallet, self.base_precision, self.rate_adapter, repo_token,
        )

    def _pending_offer_present_value(self, repo_token: Optional[str] = None) -> Decimal:
        return self._pending_offers.get_present_value(
            self.ledger, self.wallet, self._repo_tokens, self.controller,
            self.rate_adapter, self.base_precision, repo_token,
        )

    def _total_asset_value(self, liquid_balance: Decimal) -> Decimal:
        return liquid_balance + self._repo_token_present_value() + self._pending_offer_present_value()

    def total_asset_value(self) -> Decimal:
        """Liquid balance plus present value of repo tokens and pending offers."""
        return self._total_asset_value(self.total_liquid_balance())

    def get_repo_token_holding_value(self, repo_token: str) -> Decimal:
        return self._repo_token_present_value(repo_token) + self._pending_offer_present_value(repo_token)

    def _concentration_ratio(
        self,
        repo_token: Optional[str],
        added_amount: Decimal,
        total_value: Decimal,
        liquid_balance_removed: Decimal,
    ) -> Decimal:
        if repo_token is None:
            return ZERO
        adjusted_total = total_value + added_amount - liquid_balance_removed
        if adjusted_total <= 0:
            return ZERO
        return (self.get_repo_token_holding_value(repo_token) + added_amount) / adjusted_total

    def get_repo_token_concentration_ratio(self, repo_token: str) -> Decimal:
        return self._concentration_ratio(repo_token, ZERO, self.total_asset_value(), ZERO)

    def _liquid_reserve_ratio(self, liquid_balance: Decimal) -> Decimal:
        total = self._total_asset_value(liquid_balance)
        if total <= 0:
            return ZERO
        return liquid_balance / total

    def calculate_weighted_maturity(
        self,
        repo_token: Optional[str] = None,
        amount: Decimal = ZERO,
        liquid_balance: Optional[Decimal] = None,
        offer_id: Optional[str] = None,
    ) -> Decimal:
        """
        Weighted time to maturity in whole seconds.

        Without offer_id, `amount` raw repo tokens of repo_token are added to
        the holdings. With offer_id, the offer is taken to lock `amount`
        base-asset units. When neither registry already carries the
        position, it is added as a new one.

        Liquid balance (defaults to the current one) counts with zero time
        to maturity; an empty portfolio has weighted maturity 0.
        """
        if liquid_balance is None:
            liquid_balance = self.total_liquid_balance()
        amount = Decimal(amount)
        repo_amount = amount if offer_id is None else ZERO
        offer_amount = amount if offer_id is not None else ZERO

        repo_weighted, repo_cumulative, found_repo = self._repo_tokens.get_cumulative_repo_token_data(
            self.ledger, self.wallet, repo_token, repo_amount, self.base_precision, self.rate_adapter,
        )
        offer_weighted, offer_cumulative, found_offer = self._pending_offers.get_cumulative_offer_data(
            self.ledger, self.wallet, self._repo_tokens, self.controller, self.rate_adapter,
            offer_amount, self.base_precision, offer_id,
        )
        weighted = repo_weighted + offer_weighted
        cumulative = repo_cumulative + offer_cumulative

        if repo_token is not None and amount > 0:
            hypothetical = ZERO
            config = self.controller.repo_token_config(repo_token)
            if offer_id is not None and not found_offer:
                hypothetical = amount
            elif offer_id is None and not found_repo:
                hypothetical = self._normalize(config, amount)
            if hypothetical > 0:
                weighted += weighted_time_to_maturity(config.maturity, hypothetical, self.ledger.current_time)
                cumulative += hypothetical

        if cumulative == 0 and liquid_balance == 0:
            return ZERO
        return (weighted / (cumulative + liquid_balance)).to_integral_value(rounding=ROUND_DOWN)

    def validate_weighted_maturity(
        self,
        repo_token: Optional[str],
        new_amount: Decimal,
        new_liquid_balance: Decimal,
        offer_id: Optional[str] = None,
    ) -> Decimal:
        """Raises MaturityThresholdExceeded; returns the weighted maturity otherwise."""
        weighted = self.calculate_weighted_maturity(repo_token, new_amount, new_liquid_balance, offer_id)
        if weighted > self.params.time_to_maturity_threshold:
            raise MaturityThresholdExceeded(
                f"Weighted maturity {weighted}s exceeds {self.params.time_to_maturity_threshold}s"
            )
        return weighted

    def validate_concentration(
        self,
        repo_token: str,
        delta_amount: Decimal,
        liquid_balance_removed: Decimal,
    ) -> Decimal:
        """
        Check repo_token's share of total value after adding delta_amount
        of it and spending liquid_balance_removed.

        Raises:
            ConcentrationTooHigh: the share would exceed the limit
        """
        ratio = self._concentration_ratio(
            repo_token, Decimal(delta_amount), self.total_asset_value(), Decimal(liquid_balance_removed),
        )
        if ratio > self.params.repo_token_concentration_limit:
            raise ConcentrationTooHigh(
                f"{repo_token} concentration {ratio:.6f} exceeds "
                f"{self.params.repo_token_concentration_limit}"
            )
        return ratio

    def _validate_reserve(self, liquid_after: Decimal) -> None:
        ratio = self._liquid_reserve_ratio(liquid_after)
        if ratio < self.params.required_reserve_ratio:
            raise LiquidityBelowReserve(
                f"Liquid reserve ratio {ratio:.6f} below {self.params.required_reserve_ratio}"
            )

    def _normalize(self, config: RepoTokenConfig, amount: Decimal) -> Decimal:
        return normalized_amount(
            amount, config.decimals, self.base_precision, config.redemption_value,
            self.rate_adapter.repo_redemption_haircut(config.symbol),
        )

    def calculate_repo_token_present_value(
        self,
        repo_token: str,
        discount_rate: Decimal,
        amount: Decimal,
    ) -> Decimal:
        """Present value of `amount` raw repo tokens at discount_rate."""
        config = self.controller.repo_token_config(repo_token)
        return present_value(
            self._normalize(config, Decimal(amount)), self.base_precision,
            config.maturity, Decimal(discount_rate), self.ledger.current_time,
        )

    def _validate_repo_token(self, repo_token: str) -> RepoTokenConfig:
        if repo_token in self._blacklist:
            raise InstrumentBlacklisted(f"{repo_token} is blacklisted")
        config = self._repo_tokens.validate_repo_token(repo_token, self.controller, self.asset)
        if config.maturity <= self.ledger.current_time:
            raise IneligibleInstrument(f"{repo_token} matured at {config.maturity}")
        return config

    def simulate_transaction(
        self,
        repo_token: Optional[str] = None,
        amount: Decimal = ZERO,
    ) -> SimulationResult:
        """
        Metrics after buying `amount` raw repo tokens at oracle rate plus markup.

        Nothing is mutated. With no repo token this reports the current
        portfolio.

        Raises:
            InsufficientLiquidity: the purchase costs more than the liquid balance
        """
        liquid = self.total_liquid_balance()
        proceeds = ZERO
        base = ZERO
        if repo_token is not None:
            config = self._validate_repo_token(repo_token)
            rate = self.rate_adapter.get_discount_rate(repo_token)
            base = self._normalize(config, Decimal(amount))
            proceeds = present_value(
                base, self.base_precision, config.maturity,
                rate + self.params.discount_rate_markup, self.ledger.current_time,
            )
            if proceeds > liquid:
                raise InsufficientLiquidity(f"Purchase costs {proceeds}, liquid balance is {liquid}")
        return SimulationResult(
            weighted_maturity=self.calculate_weighted_maturity(repo_token, Decimal(amount), liquid - proceeds),
            concentration_ratio=self._concentration_ratio(
                repo_token, base, self.total_asset_value(), proceeds,
            ),
            liquidity_ratio=self._liquid_reserve_ratio(liquid - proceeds),
            proceeds=proceeds,
        )

    # ------------------------------------------------------------------
    # internal state changes (callers hold the atomic guard)
    # ------------------------------------------------------------------

    def _sweep_and_rebalance(self, required_liquidity: Decimal) -> None:
        removed = self._pending_offers.remove_completed(
            self.ledger, self.wallet, self._repo_tokens, self.controller,
            self.rate_adapter, self.asset,
        )
        redeemed = self._repo_tokens.remove_and_redeem_matured_tokens(self.ledger, self.wallet)
        direct = self._liquid_direct()
        if direct > required_liquidity:
            self.yield_reserve.deposit(self.wallet, direct - required_liquidity)
        elif direct < required_liquidity:
            self.yield_reserve.withdraw(self.wallet, required_liquidity - direct)
        if self.verbose and (removed or redeemed):
            print(f"[SWEEP] {len(removed)} offers settled, {len(redeemed)} repo tokens redeemed")

    def _withdraw_for(self, amount: Decimal) -> None:
        shortfall = amount - self._liquid_direct()
        if shortfall > 0:
            self.yield_reserve.withdraw(self.wallet, shortfall)

    # ------------------------------------------------------------------
    # entry points
    # ------------------------------------------------------------------

    def sweep_and_rebalance(self, caller: str, required_liquidity: Decimal = ZERO) -> None:
        """
        Settle completed offers, redeem matured repo tokens, and leave
        exactly required_liquidity of base asset outside the vault.
        """
        self._require_management(caller)
        if required_liquidity < 0:
            raise InvalidAmount(f"required liquidity must be non-negative, got {required_liquidity}")
        with self._atomic("sweep_and_rebalance"):
            self._sweep_and_rebalance(Decimal(required_liquidity))

    def submit_auction_offer(
        self,
        caller: str,
        auction: TermAuctionView,
        repo_token: str,
        id_hash: str,
        price_hash: str,
        amount: Decimal,
    ) -> List[str]:
        """
        Lock a new offer, or edit the one previously submitted under id_hash.

        Returns:
            The offer ids created or edited.
        """
        self._require_management(caller)
        amount = Decimal(amount)
        if amount <= 0:
            raise InvalidAmount(f"offer amount must be positive, got {amount}")
        with self._atomic("submit_auction_offer"):
            term_repo_id = self.controller.auction_term_repo(auction.auction_id)
            if term_repo_id is None:
                raise InvalidAuction(f"{auction.auction_id} is not a deployed auction")
            config = self.controller.repo_token_config(repo_token)
            # Compare against the deployment record, not the view's own claim.
            if config.term_repo_id != term_repo_id:
                raise AuctionInstrumentMismatch(
                    f"{repo_token} belongs to {config.term_repo_id}, "
                    f"{auction.auction_id} to {term_repo_id}"
                )
            self._validate_repo_token(repo_token)
            now = self.ledger.current_time
            if (now <= auction.auction_start_time or now >= auction.auction_end_time
                    or auction.auction_completed or auction.auction_cancelled_for_withdrawal):
                raise AuctionNotOpen(f"{auction.auction_id} is not open at {now}")

            self._sweep_and_rebalance(ZERO)

            locker = auction.offer_locker
            offer_id = generate_offer_id(id_hash, self.wallet, locker.locker_id)
            existing = self._pending_offers.get(offer_id)
            current = existing.offer_amount if existing else ZERO
            delta = amount - current

            liquid = self.total_liquid_balance()
            if delta > 0:
                if liquid < delta:
                    raise InsufficientLiquidity(f"Offer needs {delta}, liquid balance is {liquid}")
                self._validate_reserve(liquid - delta)
                self.validate_concentration(repo_token, delta, delta)
            self.validate_weighted_maturity(repo_token, amount, liquid - delta, offer_id)

            if delta > 0:
                self._withdraw_for(delta)
            offer_ids = locker.lock_offers(self.wallet, [
                OfferSubmission(id_hash, self.wallet, price_hash, amount, self.asset),
            ])
            self._pending_offers.insert_pending(offer_id, PendingOffer(repo_token, amount, auction, locker))
            self._sweep_and_rebalance(ZERO)
            if self.verbose:
                print(f"[OFFER] {auction.auction_id} {repo_token}: {current} -> {amount}")
            return offer_ids

    def delete_auction_offers(
        self,
        caller: str,
        auction: TermAuctionView,
        offer_ids: Sequence[str],
    ) -> None:
        """Unlock offers, drop them from the registry, and sweep the refund."""
        self._require_management(caller)
        with self._atomic("delete_auction_offers"):
            if not self.controller.is_term_deployed(auction.auction_id):
                raise InvalidAuction(f"{auction.auction_id} is not a deployed auction")
            auction.offer_locker.unlock_offers(self.wallet, offer_ids)
            self._pending_offers.remove_completed(
                self.ledger, self.wallet, self._repo_tokens, self.controller,
                self.rate_adapter, self.asset,
            )
            self._sweep_and_rebalance(ZERO)
            if self.verbose:
                print(f"[DELETE] {auction.auction_id}: {len(offer_ids)} offers")

    def sell_repo_token(self, seller: str, repo_token: str, amount: Decimal) -> Decimal:
        """
        Buy `amount` raw repo tokens from seller, paying their present value
        at the oracle rate plus the configured markup. Open to any wallet.

        Returns:
            Base asset paid to the seller.
        """
        amount = Decimal(amount)
        if amount <= 0:
            raise InvalidAmount(f"sell amount must be positive, got {amount}")
        with self._atomic("sell_repo_token"):
            config = self._validate_repo_token(repo_token)
            rate, maturity = self._repo_tokens.validate_and_insert_repo_token(
                repo_token, self.controller, self.rate_adapter, self.asset,
            )
            self._sweep_and_rebalance(ZERO)

            base = self._normalize(config, amount)
            proceeds = present_value(
                base, self.base_precision, maturity,
                rate + self.params.discount_rate_markup, self.ledger.current_time,
            )
            if proceeds <= 0:
                raise InvalidAmount(f"{amount} {repo_token} is worth nothing")
            liquid = self.total_liquid_balance()
            if liquid < proceeds:
                raise InsufficientLiquidity(f"Purchase costs {proceeds}, liquid balance is {liquid}")
            self._validate_reserve(liquid - proceeds)
            self.validate_weighted_maturity(repo_token, amount, liquid - proceeds)
            self.validate_concentration(repo_token, base, proceeds)

            self._withdraw_for(proceeds)
            ref = self.ledger.next_reference(f"sell:{repo_token}")
            origin = TransactionOrigin(OriginType.STRATEGY, self.wallet, repo_token, "SELL")
            tx = build_transaction(self.ledger, [
                Move(amount, repo_token, seller, self.wallet, ref),
                Move(proceeds, self.asset, self.wallet, seller, ref),
            ], origin=origin)
            self.ledger.execute_or_raise(tx, f"buy {amount} {repo_token} from {seller}")
            if self.verbose:
                print(f"[SELL] {seller}: {amount} {repo_token} for {proceeds} {self.asset}")
            return proceeds

    # ------------------------------------------------------------------
    # management setters
    # ------------------------------------------------------------------

    def _set_params(self, caller: str, **changes) -> None:
        self._require_management(caller)
        with self._atomic("set_params"):
            self.params = replace(self.params, **changes)

    def set_time_to_maturity_threshold(self, caller: str, seconds: Decimal) -> None:
        self._set_params(caller, time_to_maturity_threshold=Decimal(str(seconds)))

    def set_required_reserve_ratio(self, caller: str, ratio: Decimal) -> None:
        self._set_params(caller, required_reserve_ratio=Decimal(str(ratio)))

    def set_repo_token_concentration_limit(self, caller: str, limit: Decimal) -> None:
        self._set_params(caller, repo_token_concentration_limit=Decimal(str(limit)))

    def set_discount_rate_markup(self, caller: str, markup: Decimal) -> None:
        self._set_params(caller, discount_rate_markup=Decimal(str(markup)))

    def set_collateral_token_params(self, caller: str, collateral_token: str, min_ratio: Decimal) -> None:
        self._require_management(caller)
        with self._atomic("set_collateral_token_params"):
            self._repo_tokens.set_collateral_token_param(collateral_token, min_ratio)

    def set_repo_token_blacklist(self, caller: str, repo_token: str, blacklisted: bool) -> None:
        self._require_management(caller)
        with self._atomic("set_repo_token_blacklist"):
            if blacklisted:
                self._blacklist.add(repo_token)
            else:
                self._blacklist.discard(repo_token)

    def __repr__(self) -> str:
        return (
            f"Strategy({self.wallet}, asset={self.asset}, "
            f"{len(self._repo_tokens)} repo tokens, {len(self._pending_offers)} offers)"
        )

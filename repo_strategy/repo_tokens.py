"""
repo_tokens.py - Repo-Token Registry

Tracks the repo tokens a strategy holds, in ascending maturity order, with
each token's cached discount rate and the minimum collateral ratios the
strategy accepts.

Lifecycle of one token:

    untracked --validate_and_insert_repo_token--> tracked (rate cached)
    tracked   --maturity + remove_and_redeem_matured_tokens--> untracked

Maturity order lets the matured sweep stop at the first live token.
"""
from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterator, List, Optional, Tuple

from .core import (
    LedgerView, LedgerError, IneligibleInstrument,
    INVALID_DISCOUNT_RATE, NULL_NODE, ZERO,
)
from .interfaces import DiscountRateOracle, EligibilityOracle, RepoTokenConfig
from .linked_list import LinkedKeyList
from .valuation import (
    normalized_amount, present_value, seconds_to_maturity, weighted_time_to_maturity,
)


@dataclass(frozen=True, slots=True)
class RepoTokenRecord:
    """A tracked repo token and the discount rate last fetched for it."""
    symbol: str
    discount_rate: Decimal
    config: RepoTokenConfig

    @property
    def maturity(self) -> datetime:
        return self.config.maturity


class RepoTokenRegistry:
    """Maturity-ordered holdings of repo tokens."""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose
        self._chain: LinkedKeyList[str, RepoTokenRecord] = LinkedKeyList()
        self._collateral_params: Dict[str, Decimal] = {}

    def __len__(self) -> int:
        return len(self._chain)

    def __contains__(self, repo_token: object) -> bool:
        return repo_token in self._chain

    def holdings(self) -> Iterator[str]:
        """Tracked repo tokens, soonest maturity first."""
        return iter(self._chain)

    def get(self, repo_token: str) -> Optional[RepoTokenRecord]:
        return self._chain.get(repo_token)

    def discount_rate(self, repo_token: str) -> Optional[Decimal]:
        """Cached rate, or INVALID_DISCOUNT_RATE when untracked."""
        record = self._chain.get(repo_token)
        return record.discount_rate if record else INVALID_DISCOUNT_RATE

    def verify(self) -> Dict:
        return self._chain.verify()

    def copy(self) -> RepoTokenRegistry:
        cloned = RepoTokenRegistry(self.verbose)
        cloned._chain = self._chain.copy()
        cloned._collateral_params = dict(self._collateral_params)
        return cloned

    # ------------------------------------------------------------------
    # collateral parameters
    # ------------------------------------------------------------------

    def set_collateral_token_param(self, collateral_token: str, min_ratio: Decimal) -> None:
        """Minimum maintenance ratio accepted for a collateral token; 0 disallows it."""
        min_ratio = Decimal(str(min_ratio))
        if min_ratio < 0:
            raise ValueError(f"min collateral ratio must be non-negative, got {min_ratio}")
        self._collateral_params[collateral_token] = min_ratio

    def collateral_token_param(self, collateral_token: str) -> Decimal:
        return self._collateral_params.get(collateral_token, ZERO)

    # ------------------------------------------------------------------
    # validation and insertion
    # ------------------------------------------------------------------

    def validate_repo_token(
        self,
        repo_token: str,
        controller: EligibilityOracle,
        asset: str,
    ) -> RepoTokenConfig:
        """
        Check a repo token without touching the registry.

        Raises:
            IneligibleInstrument: unknown to the controller, pays out in
                another asset, or backed by collateral whose maintenance
                ratio is below (or has no) configured minimum.
        """
        if not controller.is_term_deployed(repo_token):
            raise IneligibleInstrument(f"{repo_token} is not a deployed repo token")
        config = controller.repo_token_config(repo_token)
        if config.purchase_token != asset:
            raise IneligibleInstrument(
                f"{repo_token} pays {config.purchase_token}, strategy holds {asset}"
            )
        manager = config.collateral_manager
        for collateral in manager.collateral_tokens():
            minimum = self.collateral_token_param(collateral)
            if minimum == ZERO:
                raise IneligibleInstrument(f"{repo_token}: collateral {collateral} not accepted")
            ratio = manager.maintenance_collateral_ratio(collateral)
            if ratio < minimum:
                raise IneligibleInstrument(
                    f"{repo_token}: {collateral} maintenance ratio {ratio} below minimum {minimum}"
                )
        return config

    def validate_and_insert_repo_token(
        self,
        repo_token: str,
        controller: EligibilityOracle,
        rate_adapter: DiscountRateOracle,
        asset: str,
    ) -> Tuple[Decimal, datetime]:
        """
        Validate, then track repo_token with its current oracle rate.

        An untracked token is linked in maturity order (after any token with
        the same maturity); a tracked one only has its rate refreshed.
        Oracle failures propagate.

        Returns:
            (discount_rate, maturity)
        """
        config = self.validate_repo_token(repo_token, controller, asset)
        rate = rate_adapter.get_discount_rate(repo_token)
        record = self._chain.get(repo_token)
        if record is not None:
            if record.discount_rate != rate:
                self._chain.update(repo_token, replace(record, discount_rate=rate))
        else:
            self._chain.insert_sorted(
                repo_token,
                RepoTokenRecord(repo_token, rate, config),
                sort_key=lambda r: r.maturity,
            )
            if self.verbose:
                print(f"[TRACK] {repo_token} matures {config.maturity} at {rate}")
        return rate, config.maturity

    # ------------------------------------------------------------------
    # valuation
    # ------------------------------------------------------------------

    def _normalized_balance(
        self,
        record: RepoTokenRecord,
        balance: Decimal,
        base_precision: int,
        rate_adapter: DiscountRateOracle,
    ) -> Decimal:
        return normalized_amount(
            balance,
            record.config.decimals,
            base_precision,
            record.config.redemption_value,
            rate_adapter.repo_redemption_haircut(record.symbol),
        )

    def get_present_value(
        self,
        view: LedgerView,
        holder: str,
        base_precision: int,
        rate_adapter: DiscountRateOracle,
        repo_token: Optional[str] = None,
    ) -> Decimal:
        """Present value of holder's tracked tokens (all, or just repo_token)."""
        total = ZERO
        for symbol in self._chain:
            if repo_token is not None and symbol != repo_token:
                continue
            record = self._chain.records[symbol]
            balance = view.get_balance(holder, symbol)
            if balance <= 0:
                continue
            face = self._normalized_balance(record, balance, base_precision, rate_adapter)
            total += present_value(
                face, base_precision, record.maturity, record.discount_rate, view.current_time,
            )
        return total

    def get_cumulative_repo_token_data(
        self,
        view: LedgerView,
        holder: str,
        repo_token: Optional[str],
        amount: Decimal,
        base_precision: int,
        rate_adapter: DiscountRateOracle,
    ) -> Tuple[Decimal, Decimal, bool]:
        """
        Sum of (base amount x seconds to maturity) and of base amounts.

        `amount` raw tokens are added to the holding of repo_token, to ask
        what the portfolio would look like after buying them. Matured
        tokens are skipped: they are about to turn into liquid balance.

        Returns:
            (cumulative_weighted_ttm, cumulative_amount, found)
        """
        now = view.current_time
        weighted = ZERO
        cumulative = ZERO
        found = False
        for symbol in self._chain:
            record = self._chain.records[symbol]
            balance = view.get_balance(holder, symbol)
            if repo_token is not None and symbol == repo_token:
                balance += amount
                found = True
            if balance <= 0 or seconds_to_maturity(record.maturity, now) == 0:
                continue
            base = self._normalized_balance(record, balance, base_precision, rate_adapter)
            weighted += weighted_time_to_maturity(record.maturity, base, now)
            cumulative += base
        return weighted, cumulative, found

    # ------------------------------------------------------------------
    # maturity sweep
    # ------------------------------------------------------------------

    def remove_and_redeem_matured_tokens(self, view: LedgerView, holder: str) -> List[str]:
        """
        Redeem and untrack every matured token, soonest first.

        Stops at the first token that has not matured. A token whose
        redemption fails stays tracked and the walk moves past it, so one
        bad servicer cannot block the others.

        Returns:
            Symbols removed from the registry.
        """
        now = view.current_time
        removed: List[str] = []
        prev = NULL_NODE
        key = self._chain.head
        while key is not NULL_NODE:
            record = self._chain.records[key]
            if record.maturity > now:
                break
            balance = view.get_balance(holder, key)
            if balance > 0:
                try:
                    record.config.servicer.redeem_term_repo_tokens(holder, balance)
                except LedgerError as e:
                    if self.verbose:
                        print(f"[REDEEM FAILED] {key}: {e}")
                    prev, key = key, self._chain.next(key)
                    continue
            key = self._chain.remove(key, prev)
            removed.append(record.symbol)
            if self.verbose:
                print(f"[UNTRACK] {record.symbol} matured {record.maturity}")
        return removed

"""
pending_offers.py - Pending-Offer Registry

Offers the strategy has locked into auctions that have not settled yet.
New offers go to the head of the chain; an edit overwrites its record in
place. Entries leave through remove_completed once their auction has
cleared, been cancelled, or their lock is gone.

Valuation rules:
- an offer whose auction is still open is worth the amount locked for it
- once its auction clears, the offer becomes repo tokens; until the
  repo-token registry picks them up they are valued here, at the oracle
  rate, once per repo token per call
"""
from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterator, List, Optional, Set, Tuple
import hashlib

from .core import LedgerView, INVALID_DISCOUNT_RATE, NULL_NODE, ZERO
from .interfaces import (
    DiscountRateOracle, EligibilityOracle, OfferLocker, TermAuctionView,
)
from .linked_list import LinkedKeyList
from .repo_tokens import RepoTokenRegistry
from .valuation import (
    normalized_amount, present_value, seconds_to_maturity, weighted_time_to_maturity,
)


def generate_offer_id(id_hash: str, offeror: str, locker_id: str) -> str:
    """
    Offer identifier shared by the strategy and the offer locker.

    Unique per (offeror, locker) even when callers reuse an id_hash.
    """
    content = f"{id_hash}|{offeror}|{locker_id}"
    return hashlib.sha256(content.encode()).hexdigest()


@dataclass(frozen=True, slots=True)
class PendingOffer:
    """One outstanding offer. offer_amount is in base-asset units."""
    repo_token: str
    offer_amount: Decimal
    auction: TermAuctionView
    offer_locker: OfferLocker

    def __post_init__(self):
        if not isinstance(self.offer_amount, Decimal):
            object.__setattr__(self, 'offer_amount', Decimal(str(self.offer_amount)))


class PendingOfferRegistry:
    """Outstanding offers keyed by offer id."""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose
        self._chain: LinkedKeyList[str, PendingOffer] = LinkedKeyList()

    def __len__(self) -> int:
        return len(self._chain)

    def __contains__(self, offer_id: object) -> bool:
        return offer_id in self._chain

    def pending_offers(self) -> Iterator[str]:
        return iter(self._chain)

    def get(self, offer_id: str) -> Optional[PendingOffer]:
        return self._chain.get(offer_id)

    def verify(self) -> Dict:
        return self._chain.verify()

    def copy(self) -> PendingOfferRegistry:
        cloned = PendingOfferRegistry(self.verbose)
        cloned._chain = self._chain.copy()
        return cloned

    def insert_pending(self, offer_id: str, offer: PendingOffer) -> None:
        """Overwrite an existing offer in place, otherwise prepend it."""
        if offer_id in self._chain:
            self._chain.update(offer_id, offer)
        else:
            self._chain.push_front(offer_id, offer)

    def remove_completed(
        self,
        view: LedgerView,
        holder: str,
        repo_registry: RepoTokenRegistry,
        controller: EligibilityOracle,
        rate_adapter: DiscountRateOracle,
        asset: str,
    ) -> List[str]:
        """
        Drop offers that no longer need tracking, in one pass.

        - auction completed: remove, and start tracking the repo token
        - nothing locked any more: remove
        - auction cancelled for withdrawal: unlock the offer, then remove

        Returns:
            Removed offer ids.
        """
        removed: List[str] = []
        prev = NULL_NODE
        key = self._chain.head
        while key is not NULL_NODE:
            offer = self._chain.records[key]
            if offer.auction.auction_completed:
                next_key = self._chain.remove(key, prev)
                repo_registry.validate_and_insert_repo_token(
                    offer.repo_token, controller, rate_adapter, asset,
                )
            elif offer.offer_locker.locked_amount(key) == ZERO:
                next_key = self._chain.remove(key, prev)
            elif offer.auction.auction_cancelled_for_withdrawal:
                offer.offer_locker.unlock_offers(holder, [key])
                next_key = self._chain.remove(key, prev)
            else:
                prev, key = key, self._chain.next(key)
                continue
            removed.append(key)
            if self.verbose:
                print(f"[SETTLED] offer {key[:12]} on {offer.auction.auction_id}")
            key = next_key
        return removed

    # ------------------------------------------------------------------
    # valuation
    # ------------------------------------------------------------------

    def _unabsorbed_value(
        self,
        view: LedgerView,
        holder: str,
        repo_token: str,
        controller: EligibilityOracle,
        rate_adapter: DiscountRateOracle,
        base_precision: int,
    ) -> Tuple[Decimal, datetime]:
        """Base amount of holder's repo_token balance, and the token's maturity."""
        config = controller.repo_token_config(repo_token)
        base = normalized_amount(
            view.get_balance(holder, repo_token),
            config.decimals,
            base_precision,
            config.redemption_value,
            rate_adapter.repo_redemption_haircut(repo_token),
        )
        return base, config.maturity

    def get_present_value(
        self,
        view: LedgerView,
        holder: str,
        repo_registry: RepoTokenRegistry,
        controller: EligibilityOracle,
        rate_adapter: DiscountRateOracle,
        base_precision: int,
        repo_token: Optional[str] = None,
    ) -> Decimal:
        """Value of pending offers (all, or those for repo_token)."""
        total = ZERO
        seen: Set[str] = set()
        for key in self._chain:
            offer = self._chain.records[key]
            if repo_token is not None and offer.repo_token != repo_token:
                continue
            if (offer.auction.auction_completed
                    and repo_registry.discount_rate(offer.repo_token) is INVALID_DISCOUNT_RATE):
                if offer.repo_token in seen:
                    continue
                seen.add(offer.repo_token)
                base, maturity = self._unabsorbed_value(
                    view, holder, offer.repo_token, controller, rate_adapter, base_precision,
                )
                total += present_value(
                    base, base_precision, maturity,
                    rate_adapter.get_discount_rate(offer.repo_token), view.current_time,
                )
            else:
                total += offer.offer_locker.locked_amount(key)
        return total

    def get_cumulative_offer_data(
        self,
        view: LedgerView,
        holder: str,
        repo_registry: RepoTokenRegistry,
        controller: EligibilityOracle,
        rate_adapter: DiscountRateOracle,
        new_offer_amount: Decimal,
        base_precision: int,
        offer_id: Optional[str] = None,
    ) -> Tuple[Decimal, Decimal, bool]:
        """
        Weighted time to maturity over pending offers.

        The offer keyed offer_id counts as new_offer_amount instead of its
        locked amount; found reports whether that offer exists.

        Returns:
            (cumulative_weighted_ttm, cumulative_amount, found)
        """
        now = view.current_time
        weighted = ZERO
        cumulative = ZERO
        found = False
        seen: Set[str] = set()
        for key in self._chain:
            offer = self._chain.records[key]
            if (offer.auction.auction_completed
                    and repo_registry.discount_rate(offer.repo_token) is INVALID_DISCOUNT_RATE):
                if offer.repo_token in seen:
                    continue
                seen.add(offer.repo_token)
                amount, maturity = self._unabsorbed_value(
                    view, holder, offer.repo_token, controller, rate_adapter, base_precision,
                )
            else:
                if offer_id is not None and key == offer_id:
                    amount = Decimal(new_offer_amount)
                    found = True
                else:
                    amount = offer.offer_locker.locked_amount(key)
                maturity = controller.repo_token_config(offer.repo_token).maturity
            if amount <= 0 or seconds_to_maturity(maturity, now) == 0:
                continue
            weighted += weighted_time_to_maturity(maturity, amount, now)
            cumulative += amount
        return weighted, cumulative, found

"""
auction.py - Term Auction and Offer Locker

A term auction sells repo tokens of one term repo for the base asset. Lenders
lock base asset behind offers while the auction is open; when the auction
clears, filled amounts go to the servicer, lenders receive repo tokens
worth the filled amount plus interest at the clearing rate, and whatever was
not filled is refunded.

The auction book lives in the TERM_AUCTION unit's ledger state:

    offers: {offer_id: {'offeror', 'amount', 'price_hash'}}

and the locked base asset sits in the locker wallet, so every offer amount
is backed one-for-one by the locker's balance.
"""
from __future__ import annotations
from datetime import datetime
from decimal import Decimal, ROUND_DOWN
from typing import Dict, List, Optional, Sequence

from ..core import (
    Move, Unit, UnitStateChange, TransactionOrigin, OriginType,
    AuctionNotOpen, AuctionInstrumentMismatch, InvalidAmount, Unauthorized,
    ValidationFailure,
    build_transaction, token_precision,
    UNIT_TYPE_TERM_AUCTION, SYSTEM_WALLET, SECONDS_PER_YEAR,
    _freeze_state,
)
from ..interfaces import OfferSubmission
from ..pending_offers import generate_offer_id
from ..valuation import seconds_to_maturity


# =============================================================================
# UNIT FACTORY
# =============================================================================

def create_term_auction_unit(
    auction_id: str,
    term_repo_id: str,
    repo_token: str,
    purchase_token: str,
    start_time: datetime,
    end_time: datetime,
) -> Unit:
    """Create the unit that carries an auction's book. It is never held."""
    if end_time <= start_time:
        raise ValueError(f"end_time {end_time} must be after start_time {start_time}")
    return Unit(
        symbol=auction_id,
        name=f"Term auction {auction_id}",
        unit_type=UNIT_TYPE_TERM_AUCTION,
        min_balance=Decimal("0"),
        max_balance=Decimal("0"),
        decimal_places=0,
        _frozen_state=_freeze_state({
            'term_repo_id': term_repo_id,
            'repo_token': repo_token,
            'purchase_token': purchase_token,
            'start_time': start_time,
            'end_time': end_time,
            'completed': False,
            'cancelled': False,
            'cancelled_for_withdrawal': False,
            'clearing_rate': None,
            'offers': {},
        })
    )


def repo_tokens_for_fill(
    filled: Decimal,
    clearing_rate: Decimal,
    maturity: datetime,
    as_of: datetime,
    redemption_value: Decimal,
    repo_token_precision: int,
    base_precision: int,
) -> Decimal:
    """
    Repo tokens owed for `filled` base-asset units lent at clearing_rate.

    face = filled * (1 + rate * seconds / SECONDS_PER_YEAR), converted to raw
    repo tokens and truncated.
    """
    seconds = Decimal(seconds_to_maturity(maturity, as_of))
    face = filled * (Decimal("1") + clearing_rate * seconds / Decimal(SECONDS_PER_YEAR))
    tokens = face * Decimal(repo_token_precision) / (redemption_value * Decimal(base_precision))
    return tokens.to_integral_value(rounding=ROUND_DOWN)


# =============================================================================
# OFFER LOCKER
# =============================================================================

class TermOfferLocker:
    """Locks base asset behind offers into one auction."""

    def __init__(self, ledger, auction_id: str, wallet: str, verbose: bool = False):
        self.ledger = ledger
        self.auction_id = auction_id
        self.wallet = wallet
        self.verbose = verbose
        if not ledger.is_registered(wallet):
            ledger.register_wallet(wallet)

    @property
    def locker_id(self) -> str:
        return self.wallet

    def _state(self) -> Dict:
        return self.ledger.get_unit_state(self.auction_id)

    def _accepting(self, state: Dict) -> bool:
        # OR-composed: true for every instant but a boundary collision
        now = self.ledger.current_time
        return now > state['start_time'] or now < state['end_time']

    def locked_amount(self, offer_id: str) -> Decimal:
        offer = self._state()['offers'].get(offer_id)
        return offer['amount'] if offer else Decimal("0")

    def offers(self) -> Dict[str, Dict]:
        return self._state()['offers']

    def lock_offers(self, offeror: str, submissions: Sequence[OfferSubmission]) -> List[str]:
        """
        Lock new offers or edit existing ones.

        An edit moves only the difference: more base asset into the locker
        when the amount grows, a refund when it shrinks.

        Raises:
            AuctionNotOpen: auction already cleared or cancelled
            AuctionInstrumentMismatch: submission pays in another asset
            Unauthorized: submission names a different offeror
            TransactionRejected: offeror cannot fund the increase
        """
        state = self._state()
        if state['completed'] or state['cancelled'] or state['cancelled_for_withdrawal']:
            raise AuctionNotOpen(f"{self.auction_id} no longer accepts offers")
        if not self._accepting(state):
            raise AuctionNotOpen(f"{self.auction_id} is not accepting offers")

        offers = dict(state['offers'])
        asset = state['purchase_token']
        moves: List[Move] = []
        offer_ids: List[str] = []
        ref = self.ledger.next_reference(f"lock:{self.auction_id}")
        for sub in submissions:
            if sub.offeror != offeror:
                raise Unauthorized(f"{offeror} cannot submit offers for {sub.offeror}")
            if sub.purchase_token != asset:
                raise AuctionInstrumentMismatch(
                    f"{self.auction_id} settles in {asset}, offer pays {sub.purchase_token}"
                )
            offer_id = generate_offer_id(sub.id, offeror, self.locker_id)
            current = offers[offer_id]['amount'] if offer_id in offers else Decimal("0")
            delta = sub.amount - current
            if delta > 0:
                moves.append(Move(delta, asset, offeror, self.wallet, ref))
            elif delta < 0:
                moves.append(Move(-delta, asset, self.wallet, offeror, ref))
            offers[offer_id] = {
                'offeror': offeror,
                'amount': sub.amount,
                'price_hash': sub.price_hash,
            }
            offer_ids.append(offer_id)

        if not moves and offers == state['offers']:
            return offer_ids

        new_state = {**state, 'offers': offers}
        origin = TransactionOrigin(OriginType.AUCTION, self.auction_id, event_type="LOCK")
        tx = build_transaction(
            self.ledger, moves,
            [UnitStateChange(self.auction_id, state, new_state)],
            origin=origin,
        )
        self.ledger.execute_or_raise(tx, f"lock offers on {self.auction_id}")
        if self.verbose:
            print(f"[LOCK] {offeror}: {len(offer_ids)} offers on {self.auction_id}")
        return offer_ids

    def unlock_offers(self, offeror: str, offer_ids: Sequence[str]) -> None:
        """
        Refund and forget the given offers.

        Allowed while the auction accepts offers, and at any time after it
        was cancelled for withdrawal.
        """
        if not offer_ids:
            return
        state = self._state()
        if state['completed']:
            raise AuctionNotOpen(f"{self.auction_id} has cleared")
        if not state['cancelled_for_withdrawal'] and not self._accepting(state):
            raise AuctionNotOpen(f"{self.auction_id} is not accepting offers")

        offers = dict(state['offers'])
        asset = state['purchase_token']
        moves: List[Move] = []
        ref = self.ledger.next_reference(f"unlock:{self.auction_id}")
        for offer_id in offer_ids:
            offer = offers.pop(offer_id, None)
            if offer is None:
                raise ValidationFailure(f"No locked offer {offer_id} on {self.auction_id}")
            if offer['offeror'] != offeror:
                raise Unauthorized(f"{offeror} does not own offer {offer_id}")
            moves.append(Move(offer['amount'], asset, self.wallet, offeror, ref))

        new_state = {**state, 'offers': offers}
        origin = TransactionOrigin(OriginType.AUCTION, self.auction_id, event_type="UNLOCK")
        tx = build_transaction(
            self.ledger, moves,
            [UnitStateChange(self.auction_id, state, new_state)],
            origin=origin,
        )
        self.ledger.execute_or_raise(tx, f"unlock offers on {self.auction_id}")
        if self.verbose:
            print(f"[UNLOCK] {offeror}: {len(offer_ids)} offers on {self.auction_id}")

    def __repr__(self) -> str:
        return f"TermOfferLocker({self.auction_id}, wallet={self.wallet})"


# =============================================================================
# AUCTION
# =============================================================================

class TermAuction:
    """
    One auction of a term repo.

    Example:
        auction = TermAuction.deploy(
            ledger, controller, "AUC-1", repo_token="TR-JUN",
            start_time=t0, end_time=t0 + timedelta(days=2),
            servicer_wallet="servicer_jun",
        )
        auction.offer_locker.lock_offers("lender", [...])
        ledger.advance_time(t0 + timedelta(days=2))
        auction.complete_auction(Decimal("0.05"))
    """

    def __init__(
        self,
        ledger,
        controller,
        auction_id: str,
        offer_locker: TermOfferLocker,
        servicer_wallet: str,
        verbose: bool = False,
    ):
        self.ledger = ledger
        self.controller = controller
        self._auction_id = auction_id
        self._offer_locker = offer_locker
        self.servicer_wallet = servicer_wallet
        self.verbose = verbose

    @classmethod
    def deploy(
        cls,
        ledger,
        controller,
        auction_id: str,
        repo_token: str,
        start_time: datetime,
        end_time: datetime,
        servicer_wallet: str,
        locker_wallet: Optional[str] = None,
        verbose: bool = False,
    ) -> TermAuction:
        """Register the auction unit, its locker wallet, and the auction with the controller."""
        token_state = ledger.get_unit_state(repo_token)
        ledger.register_unit(create_term_auction_unit(
            auction_id,
            token_state['term_repo_id'],
            repo_token,
            token_state['purchase_token'],
            start_time,
            end_time,
        ))
        locker = TermOfferLocker(ledger, auction_id, locker_wallet or f"{auction_id}:locker", verbose)
        if not ledger.is_registered(servicer_wallet):
            ledger.register_wallet(servicer_wallet)
        controller.register_auction(auction_id, token_state['term_repo_id'])
        return cls(ledger, controller, auction_id, locker, servicer_wallet, verbose)

    def _state(self) -> Dict:
        return self.ledger.get_unit_state(self._auction_id)

    # --- TermAuctionView ----------------------------------------------------

    @property
    def auction_id(self) -> str:
        return self._auction_id

    @property
    def term_repo_id(self) -> str:
        return self._state()['term_repo_id']

    @property
    def repo_token(self) -> str:
        return self._state()['repo_token']

    @property
    def auction_start_time(self) -> datetime:
        return self._state()['start_time']

    @property
    def auction_end_time(self) -> datetime:
        return self._state()['end_time']

    @property
    def auction_completed(self) -> bool:
        return self._state()['completed']

    @property
    def auction_cancelled_for_withdrawal(self) -> bool:
        return self._state()['cancelled_for_withdrawal']

    @property
    def offer_locker(self) -> TermOfferLocker:
        return self._offer_locker

    # --- lifecycle ----------------------------------------------------------

    def complete_auction(
        self,
        clearing_rate: Decimal,
        fills: Optional[Dict[str, Decimal]] = None,
    ) -> Dict[str, Decimal]:
        """
        Clear the auction at clearing_rate.

        Args:
            clearing_rate: Annual simple rate as a fraction
            fills: offer_id -> filled amount; offers not listed fill in full

        Returns:
            offer_id -> raw repo tokens minted to the offeror
        """
        state = self._state()
        if state['completed'] or state['cancelled'] or state['cancelled_for_withdrawal']:
            raise AuctionNotOpen(f"{self._auction_id} already closed")
        if self.ledger.current_time < state['end_time']:
            raise AuctionNotOpen(f"{self._auction_id} closes at {state['end_time']}")
        clearing_rate = Decimal(str(clearing_rate))
        if clearing_rate < 0:
            raise InvalidAmount(f"clearing rate must be non-negative, got {clearing_rate}")

        fills = fills or {}
        asset = state['purchase_token']
        repo_token = state['repo_token']
        token_state = self.ledger.get_unit_state(repo_token)
        locker = self._offer_locker.wallet
        ref = self.ledger.next_reference(f"clear:{self._auction_id}")

        moves: List[Move] = []
        minted: Dict[str, Decimal] = {}
        for offer_id, offer in sorted(state['offers'].items()):
            amount = offer['amount']
            filled = min(Decimal(fills.get(offer_id, amount)), amount)
            if filled < 0:
                raise InvalidAmount(f"fill for {offer_id} is negative")
            if filled > 0:
                moves.append(Move(filled, asset, locker, self.servicer_wallet, ref))
                tokens = repo_tokens_for_fill(
                    filled, clearing_rate, token_state['maturity_date'],
                    self.ledger.current_time, token_state['redemption_value'],
                    10 ** token_state['decimals'], token_precision(self.ledger, asset),
                )
                if tokens > 0:
                    moves.append(Move(tokens, repo_token, SYSTEM_WALLET, offer['offeror'], ref))
                minted[offer_id] = tokens
            if amount - filled > 0:
                moves.append(Move(amount - filled, asset, locker, offer['offeror'], ref))

        new_state = {**state, 'offers': {}, 'completed': True, 'clearing_rate': clearing_rate}
        origin = TransactionOrigin(OriginType.AUCTION, self._auction_id, repo_token, "COMPLETE")
        tx = build_transaction(
            self.ledger, moves,
            [UnitStateChange(self._auction_id, state, new_state)],
            origin=origin,
        )
        self.ledger.execute_or_raise(tx, f"complete {self._auction_id}")
        self.controller.record_auction_result(self._auction_id, clearing_rate)
        if self.verbose:
            print(f"[COMPLETE] {self._auction_id} at {clearing_rate}: {len(minted)} offers filled")
        return minted

    def cancel_auction(self) -> None:
        """Cancel outright: every locked offer is refunded."""
        state = self._state()
        if state['completed'] or state['cancelled']:
            raise AuctionNotOpen(f"{self._auction_id} already closed")
        asset = state['purchase_token']
        ref = self.ledger.next_reference(f"cancel:{self._auction_id}")
        moves = [
            Move(offer['amount'], asset, self._offer_locker.wallet, offer['offeror'], ref)
            for _, offer in sorted(state['offers'].items())
        ]
        new_state = {**state, 'offers': {}, 'cancelled': True}
        origin = TransactionOrigin(OriginType.AUCTION, self._auction_id, event_type="CANCEL")
        tx = build_transaction(
            self.ledger, moves,
            [UnitStateChange(self._auction_id, state, new_state)],
            origin=origin,
        )
        self.ledger.execute_or_raise(tx, f"cancel {self._auction_id}")
        if self.verbose:
            print(f"[CANCEL] {self._auction_id}: {len(moves)} offers refunded")

    def cancel_for_withdrawal(self) -> None:
        """Cancel without refunding; offerors unlock their own offers."""
        state = self._state()
        if state['completed'] or state['cancelled']:
            raise AuctionNotOpen(f"{self._auction_id} already closed")
        self.ledger.update_unit_state(self._auction_id, {'cancelled_for_withdrawal': True})
        if self.verbose:
            print(f"[CANCEL] {self._auction_id} cancelled for withdrawal")

    def __repr__(self) -> str:
        return f"TermAuction({self._auction_id})"

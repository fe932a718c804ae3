"""
repo_token.py - Repo Token Unit and Redemption Servicer

A repo token is a claim on `redemption_value` base-asset tokens per whole
repo token, payable from its maturity date on. Tokens are minted when an
auction clears (see auction.py) and burned when the servicer redeems them.

    create_repo_token_unit  unit factory, terms kept in unit state
    compute_redemption      pure: burn tokens, pay face from the servicer
    RepoServicer            executes redemptions, takes borrower repayments
"""
from __future__ import annotations
from datetime import datetime
from decimal import Decimal
from typing import List

from ..core import (
    LedgerView, Move, PendingTransaction, Unit, TransactionOrigin, OriginType,
    ExecuteResult, InvalidAmount, RedemptionFailed,
    build_transaction, empty_pending_transaction, token_precision,
    UNIT_TYPE_REPO_TOKEN, SYSTEM_WALLET,
    _freeze_state,
)
from ..valuation import normalized_amount


# =============================================================================
# UNIT FACTORY
# =============================================================================

def create_repo_token_unit(
    symbol: str,
    name: str,
    term_repo_id: str,
    maturity_date: datetime,
    purchase_token: str,
    redemption_value: Decimal = Decimal("1"),
    decimals: int = 18,
) -> Unit:
    """Create a repo token unit. Balances are raw integer token amounts."""
    if not isinstance(redemption_value, Decimal):
        redemption_value = Decimal(str(redemption_value))

    if redemption_value <= Decimal("0"):
        raise ValueError(f"redemption_value must be positive, got {redemption_value}")
    if not term_repo_id or not term_repo_id.strip():
        raise ValueError("term_repo_id cannot be empty")
    if decimals < 0 or decimals > 36:
        raise ValueError(f"decimals must be between 0 and 36, got {decimals}")

    return Unit(
        symbol=symbol,
        name=name,
        unit_type=UNIT_TYPE_REPO_TOKEN,
        min_balance=Decimal("0"),
        decimal_places=0,
        _frozen_state=_freeze_state({
            'term_repo_id': term_repo_id,
            'maturity_date': maturity_date,
            'purchase_token': purchase_token,
            'redemption_value': redemption_value,
            'decimals': decimals,
            'issuer': SYSTEM_WALLET,
        })
    )


# =============================================================================
# PURE FUNCTIONS
# =============================================================================

def redemption_amount(view: LedgerView, symbol: str, amount: Decimal) -> Decimal:
    """Base-asset units paid for `amount` raw repo tokens (no haircut)."""
    state = view.get_unit_state(symbol)
    return normalized_amount(
        amount,
        state['decimals'],
        token_precision(view, state['purchase_token']),
        state['redemption_value'],
    )


def compute_redemption(
    view: LedgerView,
    symbol: str,
    holder: str,
    amount: Decimal,
    servicer_wallet: str,
    contract_id: str,
) -> PendingTransaction:
    """
    Redeem `amount` repo tokens held by `holder` at or after maturity.

    Returns an empty transaction before maturity.
    """
    state = view.get_unit_state(symbol)
    if view.current_time < state['maturity_date']:
        return empty_pending_transaction(view)

    payout = redemption_amount(view, symbol, amount)
    moves: List[Move] = [
        Move(
            quantity=amount,
            unit_symbol=symbol,
            source=holder,
            dest=SYSTEM_WALLET,
            contract_id=contract_id,
        ),
    ]
    if payout > 0:
        moves.append(Move(
            quantity=payout,
            unit_symbol=state['purchase_token'],
            source=servicer_wallet,
            dest=holder,
            contract_id=contract_id,
        ))
    origin = TransactionOrigin(OriginType.SERVICER, servicer_wallet, symbol, "REDEEM")
    return build_transaction(view, moves, origin=origin)


# =============================================================================
# SERVICER
# =============================================================================

class RepoServicer:
    """
    Repays holders of one repo token from a servicer wallet.

    The wallet receives auction proceeds when the auction clears and borrower
    repayments before maturity; it must hold enough base asset to cover every
    redemption.
    """

    def __init__(self, ledger, wallet: str, repo_token: str, verbose: bool = False):
        self.ledger = ledger
        self.wallet = wallet
        self.repo_token = repo_token
        self.verbose = verbose
        if not ledger.is_registered(wallet):
            ledger.register_wallet(wallet)

    @property
    def purchase_token(self) -> str:
        return self.ledger.get_unit_state(self.repo_token)['purchase_token']

    def submit_repayment(self, borrower: str, amount: Decimal) -> None:
        """Borrower pays base asset into the servicer wallet."""
        if amount <= 0:
            raise InvalidAmount(f"repayment must be positive, got {amount}")
        ref = self.ledger.next_reference(f"repay:{self.repo_token}")
        origin = TransactionOrigin(OriginType.SERVICER, self.wallet, self.repo_token, "REPAY")
        tx = build_transaction(self.ledger, [
            Move(Decimal(amount), self.purchase_token, borrower, self.wallet, ref),
        ], origin=origin)
        self.ledger.execute_or_raise(tx, f"repayment from {borrower}")

    def redeem_term_repo_tokens(self, holder: str, amount: Decimal) -> Decimal:
        """
        Burn `amount` repo tokens from `holder` and pay face value.

        Raises:
            InvalidAmount: amount is not positive
            RedemptionFailed: token has not matured, or the ledger rejected
                the payout (holder short of tokens, servicer short of cash)
        """
        if amount <= 0:
            raise InvalidAmount(f"redemption amount must be positive, got {amount}")
        maturity = self.ledger.get_unit_state(self.repo_token)['maturity_date']
        if self.ledger.current_time < maturity:
            raise RedemptionFailed(f"{self.repo_token} matures at {maturity}")

        ref = self.ledger.next_reference(f"redeem:{self.repo_token}")
        tx = compute_redemption(self.ledger, self.repo_token, holder, Decimal(amount), self.wallet, ref)
        result = self.ledger.execute(tx)
        if result != ExecuteResult.APPLIED:
            raise RedemptionFailed(
                f"Redemption of {amount} {self.repo_token} for {holder} {result.value}"
            )
        payout = redemption_amount(self.ledger, self.repo_token, Decimal(amount))
        if self.verbose:
            print(f"[REDEEM] {holder}: {amount} {self.repo_token} -> {payout} {self.purchase_token}")
        return payout

    def __repr__(self) -> str:
        return f"RepoServicer({self.repo_token}, wallet={self.wallet})"

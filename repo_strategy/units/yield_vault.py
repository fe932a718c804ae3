"""
yield_vault.py - Share-based Yield Vault

Holds idle base asset for its depositors. Depositors receive vault shares
(a VAULT_SHARE unit issued from SYSTEM_WALLET); yield accrues by growing the
vault's asset balance, so each share redeems for more over time.

    outstanding shares = -balance(SYSTEM_WALLET, share)
    total assets       =  balance(vault wallet, asset)

Rounding always favours the vault: deposits mint shares rounded down,
withdrawals burn shares rounded up.
"""
from __future__ import annotations
from decimal import Decimal, ROUND_DOWN, ROUND_UP

from ..core import (
    Move, Unit, TransactionOrigin, OriginType,
    InsufficientFunds, InvalidAmount,
    build_transaction,
    UNIT_TYPE_VAULT_SHARE, SYSTEM_WALLET,
    _freeze_state,
)


def create_vault_share_unit(symbol: str, name: str, asset: str) -> Unit:
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=UNIT_TYPE_VAULT_SHARE,
        min_balance=Decimal("0"),
        decimal_places=0,
        _frozen_state=_freeze_state({'asset': asset, 'issuer': SYSTEM_WALLET}),
    )


class YieldVault:
    """Implements YieldReserve against the ledger."""

    def __init__(self, ledger, name: str, asset: str, verbose: bool = False):
        self.ledger = ledger
        self.wallet = name
        self.share = f"{name}:shares"
        self.asset = asset
        self.verbose = verbose
        if not ledger.is_registered(name):
            ledger.register_wallet(name)
        ledger.register_unit(create_vault_share_unit(self.share, f"{name} shares", asset))

    def total_assets(self) -> Decimal:
        return self.ledger.get_balance(self.wallet, self.asset)

    def total_shares(self) -> Decimal:
        return -self.ledger.get_balance(SYSTEM_WALLET, self.share)

    def shares_of(self, owner: str) -> Decimal:
        return self.ledger.get_balance(owner, self.share)

    def convert_to_shares(self, assets: Decimal, rounding=ROUND_DOWN) -> Decimal:
        total_shares = self.total_shares()
        total_assets = self.total_assets()
        if total_shares == 0 or total_assets == 0:
            return Decimal(assets)
        return (Decimal(assets) * total_shares / total_assets).to_integral_value(rounding=rounding)

    def convert_to_assets(self, shares: Decimal) -> Decimal:
        total_shares = self.total_shares()
        if total_shares == 0:
            return Decimal("0")
        return (Decimal(shares) * self.total_assets() / total_shares).to_integral_value(rounding=ROUND_DOWN)

    def balance_in_base_asset(self, owner: str) -> Decimal:
        return self.convert_to_assets(self.shares_of(owner))

    def deposit(self, owner: str, amount: Decimal) -> Decimal:
        """
        Move `amount` base asset from owner into the vault.

        An amount too small to mint a single share is left with the owner
        and 0 is returned.
        """
        if amount <= 0:
            raise InvalidAmount(f"deposit must be positive, got {amount}")
        shares = self.convert_to_shares(amount)
        if shares <= 0:
            return Decimal("0")
        ref = self.ledger.next_reference(f"deposit:{self.wallet}")
        origin = TransactionOrigin(OriginType.VAULT, self.wallet, self.share, "DEPOSIT")
        tx = build_transaction(self.ledger, [
            Move(Decimal(amount), self.asset, owner, self.wallet, ref),
            Move(shares, self.share, SYSTEM_WALLET, owner, ref),
        ], origin=origin)
        self.ledger.execute_or_raise(tx, f"deposit {amount} {self.asset} for {owner}")
        if self.verbose:
            print(f"[DEPOSIT] {owner}: {amount} {self.asset} -> {shares} {self.share}")
        return shares

    def withdraw(self, owner: str, amount: Decimal) -> Decimal:
        """
        Pay `amount` base asset back to owner, burning the shares it costs.

        Raises:
            InsufficientFunds: owner's shares are worth less than amount
        """
        if amount <= 0:
            raise InvalidAmount(f"withdrawal must be positive, got {amount}")
        shares = self.convert_to_shares(amount, rounding=ROUND_UP)
        held = self.shares_of(owner)
        if shares > held:
            raise InsufficientFunds(
                f"{owner} holds {held} {self.share}, {shares} needed to withdraw {amount} {self.asset}"
            )
        ref = self.ledger.next_reference(f"withdraw:{self.wallet}")
        origin = TransactionOrigin(OriginType.VAULT, self.wallet, self.share, "WITHDRAW")
        tx = build_transaction(self.ledger, [
            Move(shares, self.share, owner, SYSTEM_WALLET, ref),
            Move(Decimal(amount), self.asset, self.wallet, owner, ref),
        ], origin=origin)
        self.ledger.execute_or_raise(tx, f"withdraw {amount} {self.asset} for {owner}")
        if self.verbose:
            print(f"[WITHDRAW] {owner}: {shares} {self.share} -> {amount} {self.asset}")
        return shares

    def accrue_yield(self, amount: Decimal) -> None:
        """Mint `amount` base asset into the vault (interest earned)."""
        if amount <= 0:
            raise InvalidAmount(f"yield must be positive, got {amount}")
        ref = self.ledger.next_reference(f"yield:{self.wallet}")
        origin = TransactionOrigin(OriginType.VAULT, self.wallet, self.asset, "YIELD")
        tx = build_transaction(self.ledger, [
            Move(Decimal(amount), self.asset, SYSTEM_WALLET, self.wallet, ref),
        ], origin=origin)
        self.ledger.execute_or_raise(tx, f"accrue {amount} {self.asset} to {self.wallet}")

    def __repr__(self) -> str:
        return f"YieldVault({self.wallet}, asset={self.asset})"

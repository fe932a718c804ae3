"""
rate_adapter.py - Discount rates from auction clearing history

A repo token is discounted at the clearing rate of the most recent auction
in its term repo. Management can flag a clearing rate as unusable; the
adapter then falls back to the auction before it, and so on, until it runs
out of history.
"""
from __future__ import annotations
from decimal import Decimal
from typing import Dict, Set, Tuple

from .core import NoValidDiscountRate, ONE, ZERO
from .controller import TermController


class DiscountRateAdapter:
    """Implements DiscountRateOracle on top of a TermController."""

    def __init__(self, controller: TermController, verbose: bool = False):
        self.controller = controller
        self.verbose = verbose
        self._invalid: Set[Tuple[str, str]] = set()
        self._haircuts: Dict[str, Decimal] = {}

    def get_discount_rate(self, repo_token: str) -> Decimal:
        """
        Clearing rate of the latest valid auction for repo_token's term repo.

        The scan runs newest to oldest and returns the first rate that is
        present and not marked invalid.

        Raises:
            IneligibleInstrument: repo_token is unknown to the controller
            NoValidDiscountRate: every auction is missing a rate or flagged invalid
        """
        config = self.controller.repo_token_config(repo_token)
        results = self.controller.get_term_auction_results(config.term_repo_id)
        for result in reversed(results):
            if result.clearing_rate is None:
                continue
            if (repo_token, result.auction_id) in self._invalid:
                continue
            return result.clearing_rate
        raise NoValidDiscountRate(
            f"No valid auction rate for {repo_token} "
            f"({len(results)} auctions in {config.term_repo_id})"
        )

    def mark_rate_invalid(self, repo_token: str, auction_id: str, invalid: bool = True) -> None:
        if invalid:
            self._invalid.add((repo_token, auction_id))
        else:
            self._invalid.discard((repo_token, auction_id))
        if self.verbose:
            print(f"[RATE] {repo_token} rate from {auction_id} invalid={invalid}")

    def set_repo_redemption_haircut(self, repo_token: str, haircut: Decimal) -> None:
        haircut = Decimal(str(haircut))
        if haircut < ZERO or haircut > ONE:
            raise ValueError(f"haircut must be within [0, 1], got {haircut}")
        self._haircuts[repo_token] = haircut

    def repo_redemption_haircut(self, repo_token: str) -> Decimal:
        return self._haircuts.get(repo_token, ZERO)

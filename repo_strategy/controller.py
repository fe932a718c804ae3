"""
controller.py - Term Controller and Collateral Manager

The in-process eligibility oracle. It knows which auctions and repo tokens
were deployed, hands out each repo token's configuration, and keeps the
history of auction clearing rates that the discount-rate adapter reads.

Repo token terms (maturity, purchase token, redemption value, decimals) live
in the repo token unit's ledger state; the controller only adds the servicer
and collateral manager objects registered alongside the token.
"""
from __future__ import annotations
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from .core import (
    LedgerView, IneligibleInstrument, InvalidAuction,
    UNIT_TYPE_REPO_TOKEN,
)
from .interfaces import (
    AuctionResult, CollateralManager, RedemptionServicer, RepoTokenConfig,
)


class TermCollateralManager:
    """
    Collateral posted against one term repo.

    Ratios are fractions: Decimal("1.5") means collateral worth 150% of the
    borrowed amount.
    """

    def __init__(self, maintenance_ratios: Optional[Dict[str, Decimal]] = None):
        self._ratios: Dict[str, Decimal] = {}
        for token, ratio in (maintenance_ratios or {}).items():
            self.set_maintenance_ratio(token, ratio)

    def set_maintenance_ratio(self, collateral_token: str, ratio: Decimal) -> None:
        ratio = Decimal(str(ratio))
        if ratio < 0:
            raise ValueError(f"maintenance ratio must be non-negative, got {ratio}")
        self._ratios[collateral_token] = ratio

    def collateral_tokens(self) -> Tuple[str, ...]:
        return tuple(sorted(self._ratios))

    def maintenance_collateral_ratio(self, collateral_token: str) -> Decimal:
        return self._ratios.get(collateral_token, Decimal("0"))

    def __repr__(self) -> str:
        return f"TermCollateralManager({self._ratios})"


class TermController:
    """
    Registry of deployed term contracts.

    Example:
        controller = TermController(ledger)
        controller.register_repo_token("TR-JUN", servicer, collateral_manager)
        controller.register_auction("AUC-JUN-1", term_repo_id="JUN")
        controller.record_auction_result("AUC-JUN-1", Decimal("0.05"))
    """

    def __init__(self, view: LedgerView, verbose: bool = False):
        self.view = view
        self.verbose = verbose
        self._repo_tokens: Dict[str, Tuple[RedemptionServicer, CollateralManager]] = {}
        self._auctions: Dict[str, str] = {}
        self._results: Dict[str, List[AuctionResult]] = {}

    def register_repo_token(
        self,
        symbol: str,
        servicer: RedemptionServicer,
        collateral_manager: CollateralManager,
    ) -> None:
        unit = self.view.get_unit(symbol)
        if unit.unit_type != UNIT_TYPE_REPO_TOKEN:
            raise ValueError(f"{symbol} is a {unit.unit_type} unit, not a repo token")
        if symbol in self._repo_tokens:
            raise ValueError(f"Repo token {symbol} already registered")
        self._repo_tokens[symbol] = (servicer, collateral_manager)

    def register_auction(self, auction_id: str, term_repo_id: str) -> None:
        if auction_id in self._auctions:
            raise ValueError(f"Auction {auction_id} already registered")
        self._auctions[auction_id] = term_repo_id
        self._results.setdefault(term_repo_id, [])

    def is_term_deployed(self, contract: str) -> bool:
        return contract in self._repo_tokens or contract in self._auctions

    def auction_term_repo(self, auction_id: str) -> Optional[str]:
        return self._auctions.get(auction_id)

    def repo_token_config(self, repo_token: str) -> RepoTokenConfig:
        if repo_token not in self._repo_tokens:
            raise IneligibleInstrument(f"{repo_token} is not a deployed repo token")
        servicer, collateral_manager = self._repo_tokens[repo_token]
        state = self.view.get_unit_state(repo_token)
        return RepoTokenConfig(
            symbol=repo_token,
            term_repo_id=state['term_repo_id'],
            maturity=state['maturity_date'],
            purchase_token=state['purchase_token'],
            redemption_value=state['redemption_value'],
            decimals=state['decimals'],
            servicer=servicer,
            collateral_manager=collateral_manager,
        )

    def record_auction_result(
        self,
        auction_id: str,
        clearing_rate: Optional[Decimal],
        timestamp: Optional[datetime] = None,
    ) -> AuctionResult:
        """Append a clearing rate to the auction's term repo history."""
        if auction_id not in self._auctions:
            raise InvalidAuction(f"{auction_id} is not a deployed auction")
        if clearing_rate is not None:
            clearing_rate = Decimal(str(clearing_rate))
        result = AuctionResult(
            auction_id=auction_id,
            clearing_rate=clearing_rate,
            timestamp=timestamp or self.view.current_time,
        )
        self._results[self._auctions[auction_id]].append(result)
        if self.verbose:
            print(f"[AUCTION] {auction_id} cleared at {clearing_rate}")
        return result

    def get_term_auction_results(self, term_repo_id: str) -> Tuple[AuctionResult, ...]:
        """Results in completion order, oldest first."""
        return tuple(self._results.get(term_repo_id, ()))

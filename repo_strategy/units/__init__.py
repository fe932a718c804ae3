"""
Units module - Ledger-backed collaborators of the strategy.

- Repo tokens and the servicer that redeems them at maturity
- Term auctions and their offer lockers
- The yield vault holding idle base asset

All factories and classes are re-exported here for convenience.
"""

# Repo tokens
from .repo_token import (
    create_repo_token_unit,
    compute_redemption,
    redemption_amount,
    RepoServicer,
)

# Term auctions
from .auction import (
    create_term_auction_unit,
    repo_tokens_for_fill,
    TermAuction,
    TermOfferLocker,
)

# Yield vault
from .yield_vault import (
    create_vault_share_unit,
    YieldVault,
)


__all__ = [
    'create_repo_token_unit',
    'compute_redemption',
    'redemption_amount',
    'RepoServicer',
    'create_term_auction_unit',
    'repo_tokens_for_fill',
    'TermAuction',
    'TermOfferLocker',
    'create_vault_share_unit',
    'YieldVault',
]

"""
repo_strategy - Risk-checked repo token lending on a double-entry ledger

A strategy lends a base asset through term auctions, holds the repo tokens
it wins until maturity, and parks idle liquidity in a yield vault, rejecting
any action that breaks its concentration, maturity, or reserve limits.

Usage:
    from datetime import datetime, timedelta
    from decimal import Decimal
    from repo_strategy import (
        Ledger, cash, Strategy, RiskParameters, TermController,
        TermCollateralManager, DiscountRateAdapter,
        create_repo_token_unit, RepoServicer, TermAuction, YieldVault,
    )

    t0 = datetime(2025, 1, 1)
    ledger = Ledger("main", t0)
    ledger.register_unit(cash("USDC", "USD Coin", decimals=6))
    ledger.register_unit(create_repo_token_unit(
        "TR-JUN", "Term repo June", "JUN", t0 + timedelta(days=30), "USDC", decimals=6,
    ))

    controller = TermController(ledger)
    servicer = RepoServicer(ledger, "servicer", "TR-JUN")
    controller.register_repo_token("TR-JUN", servicer, TermCollateralManager({"WETH": Decimal("1.5")}))
    adapter = DiscountRateAdapter(controller)
    vault = YieldVault(ledger, "vault", "USDC")

    strategy = Strategy(ledger, "strategy", "USDC", controller, adapter, vault,
                        management="manager", params=RiskParameters())
    strategy.set_collateral_token_params("manager", "WETH", Decimal("1.2"))

    auction = TermAuction.deploy(ledger, controller, "AUC-1", "TR-JUN",
                                 t0, t0 + timedelta(days=2), "servicer")
"""

# Core types
from .core import (
    LedgerView,
    Move,
    Transaction,
    PendingTransaction,
    TransactionOrigin,
    OriginType,
    build_transaction,
    empty_pending_transaction,
    Unit,
    UnitStateChange,
    ExecuteResult,
    CallState,
    cash,
    token_precision,
    # Exceptions
    LedgerError,
    InsufficientFunds,
    UnitNotRegistered,
    WalletNotRegistered,
    ValidationFailure,
    IneligibleInstrument,
    InstrumentBlacklisted,
    InvalidAuction,
    AuctionInstrumentMismatch,
    AuctionNotOpen,
    InvalidAmount,
    LimitBreach,
    ConcentrationTooHigh,
    MaturityThresholdExceeded,
    LiquidityBelowReserve,
    InsufficientLiquidity,
    CollaboratorFailure,
    NoValidDiscountRate,
    RedemptionFailed,
    TransactionRejected,
    Unauthorized,
    ReentrantCall,
    # Constants
    SYSTEM_WALLET,
    UNIT_TYPE_CASH,
    UNIT_TYPE_REPO_TOKEN,
    UNIT_TYPE_TERM_AUCTION,
    UNIT_TYPE_VAULT_SHARE,
    QUANTITY_EPSILON,
    SECONDS_PER_YEAR,
    NULL_NODE,
    INVALID_DISCOUNT_RATE,
)

# Ledger
from .ledger import Ledger

# Valuation
from .valuation import (
    normalized_amount,
    present_value,
    seconds_to_maturity,
    weighted_time_to_maturity,
)

# Registries
from .linked_list import LinkedKeyList
from .repo_tokens import RepoTokenRecord, RepoTokenRegistry
from .pending_offers import PendingOffer, PendingOfferRegistry, generate_offer_id

# Collaborator contracts
from .interfaces import (
    EligibilityOracle,
    DiscountRateOracle,
    TermAuctionView,
    OfferLocker,
    YieldReserve,
    CollateralManager,
    RedemptionServicer,
    RepoTokenConfig,
    OfferSubmission,
    AuctionResult,
)

# In-process collaborators
from .controller import TermController, TermCollateralManager
from .rate_adapter import DiscountRateAdapter
from .units import (
    create_repo_token_unit,
    compute_redemption,
    RepoServicer,
    create_term_auction_unit,
    TermAuction,
    TermOfferLocker,
    YieldVault,
)

# Strategy
from .strategy import Strategy, RiskParameters, SimulationResult


__all__ = [
    # Core
    'LedgerView', 'Move', 'Transaction', 'PendingTransaction',
    'TransactionOrigin', 'OriginType', 'build_transaction',
    'empty_pending_transaction', 'Unit', 'UnitStateChange', 'ExecuteResult',
    'CallState', 'cash', 'token_precision',
    # Exceptions
    'LedgerError', 'InsufficientFunds', 'UnitNotRegistered', 'WalletNotRegistered',
    'ValidationFailure', 'IneligibleInstrument', 'InstrumentBlacklisted',
    'InvalidAuction', 'AuctionInstrumentMismatch', 'AuctionNotOpen',
    'InvalidAmount', 'LimitBreach', 'ConcentrationTooHigh',
    'MaturityThresholdExceeded', 'LiquidityBelowReserve',
    'InsufficientLiquidity', 'CollaboratorFailure', 'NoValidDiscountRate',
    'RedemptionFailed', 'TransactionRejected', 'Unauthorized', 'ReentrantCall',
    # Constants
    'SYSTEM_WALLET', 'UNIT_TYPE_CASH', 'UNIT_TYPE_REPO_TOKEN',
    'UNIT_TYPE_TERM_AUCTION', 'UNIT_TYPE_VAULT_SHARE', 'QUANTITY_EPSILON',
    'SECONDS_PER_YEAR', 'NULL_NODE', 'INVALID_DISCOUNT_RATE',
    # Ledger
    'Ledger',
    # Valuation
    'normalized_amount', 'present_value', 'seconds_to_maturity',
    'weighted_time_to_maturity',
    # Registries
    'LinkedKeyList', 'RepoTokenRecord', 'RepoTokenRegistry',
    'PendingOffer', 'PendingOfferRegistry', 'generate_offer_id',
    # Interfaces
    'EligibilityOracle', 'DiscountRateOracle', 'TermAuctionView',
    'OfferLocker', 'YieldReserve', 'CollateralManager', 'RedemptionServicer',
    'RepoTokenConfig', 'OfferSubmission', 'AuctionResult',
    # Collaborators
    'TermController', 'TermCollateralManager', 'DiscountRateAdapter',
    'create_repo_token_unit', 'compute_redemption', 'RepoServicer',
    'create_term_auction_unit', 'TermAuction', 'TermOfferLocker', 'YieldVault',
    # Strategy
    'Strategy', 'RiskParameters', 'SimulationResult',
]

__version__ = '1.0.0'

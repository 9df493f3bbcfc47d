"""
p2p_lending - Peer-to-Peer Collateralized Lending Ledger

One lender's deposited principal is matched against one borrower's posted
collateral, for a fixed rate and a fixed term, on a double-entry ledger.

Usage:
    from datetime import datetime
    from p2p_lending import Ledger, deploy_lending_market

    ledger = Ledger("market", datetime(2025, 1, 1), verbose=False)
    protocol = deploy_lending_market(ledger, "deployer", exchange_rate=5000)

    # ... fund "alice" and "bob" from the deployer ...
    protocol.principal.approve("alice", 20)
    protocol.offer_lending("alice", 20, lock_period=6)

    protocol.collateral.approve("bob", protocol.quote_collateral("alice"))
    protocol.borrow("bob", "alice")

    protocol.principal.approve("bob", protocol.quote_repayment("bob"))
    protocol.repay("bob")
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
    Unit,
    UnitStateChange,
    ExecuteResult,
    LedgerError,
    InsufficientBalance,
    InsufficientAllowance,
    UnitNotRegistered,
    WalletNotRegistered,
    LendingError,
    InvalidAmount,
    DuplicateAgreement,
    AgreementNotFound,
    InvalidState,
    Unauthorized,
    LockNotExpired,
    SYSTEM_WALLET,
    UNIT_TYPE_TOKEN,
    UNIT_TYPE_LENDING_AGREEMENT,
)

# Ledger
from .ledger import Ledger

# Assets
from .assets import (
    FungibleAsset,
    LedgerAsset,
    create_token_unit,
    mint,
    INITIAL_TOKEN_SUPPLY,
    TOKEN_BASE_UNITS,
)

# Loan arithmetic
from .terms import (
    calculate_collateral_amount,
    calculate_interest,
    calculate_total_due,
    months_elapsed,
    is_lock_expired,
    lock_expiry,
    DEFAULT_INTEREST_RATE,
    INTEREST_RATE_DIVISOR,
    EXCHANGE_RATE_DIVISOR,
    COLLATERAL_RATIO,
    SECONDS_PER_MONTH,
)

# Agreements
from .agreement import (
    AgreementStatus,
    ClosedReason,
    LendingAgreement,
    AgreementStore,
    load_agreement,
    to_state_dict,
)

# Exchange rate
from .rates import ExchangeRateRegister

# Events
from .events import (
    LendingEvent,
    BalanceObserved,
    OfferCreated,
    AgreementMatched,
    LoanRepaid,
    CollateralClaimed,
    ExchangeRateUpdated,
    EventLog,
    SubscriberError,
)

# Protocol
from .protocol import LendingProtocol, DEFAULT_CUSTODY_WALLET
from .deploy import deploy_lending_market, STABLE_TOKEN_SYMBOL, COLLATERAL_TOKEN_SYMBOL

__all__ = [
    # Core
    'LedgerView', 'Move', 'Transaction', 'PendingTransaction', 'TransactionOrigin', 'OriginType',
    'build_transaction', 'Unit', 'UnitStateChange', 'ExecuteResult',
    'SYSTEM_WALLET', 'UNIT_TYPE_TOKEN', 'UNIT_TYPE_LENDING_AGREEMENT',
    # Errors
    'LedgerError', 'InsufficientBalance', 'InsufficientAllowance',
    'UnitNotRegistered', 'WalletNotRegistered',
    'LendingError', 'InvalidAmount', 'DuplicateAgreement', 'AgreementNotFound',
    'InvalidState', 'Unauthorized', 'LockNotExpired',
    # Ledger
    'Ledger',
    # Assets
    'FungibleAsset', 'LedgerAsset', 'create_token_unit', 'mint',
    'INITIAL_TOKEN_SUPPLY', 'TOKEN_BASE_UNITS',
    # Terms
    'calculate_collateral_amount', 'calculate_interest', 'calculate_total_due',
    'months_elapsed', 'is_lock_expired', 'lock_expiry',
    'DEFAULT_INTEREST_RATE', 'INTEREST_RATE_DIVISOR', 'EXCHANGE_RATE_DIVISOR',
    'COLLATERAL_RATIO', 'SECONDS_PER_MONTH',
    # Agreements
    'AgreementStatus', 'ClosedReason', 'LendingAgreement', 'AgreementStore',
    'load_agreement', 'to_state_dict',
    # Rates
    'ExchangeRateRegister',
    # Events
    'LendingEvent', 'BalanceObserved', 'OfferCreated', 'AgreementMatched',
    'LoanRepaid', 'CollateralClaimed', 'ExchangeRateUpdated', 'EventLog', 'SubscriberError',
    # Protocol
    'LendingProtocol', 'DEFAULT_CUSTODY_WALLET',
    'deploy_lending_market', 'STABLE_TOKEN_SYMBOL', 'COLLATERAL_TOKEN_SYMBOL',
]

__version__ = '1.0.0'

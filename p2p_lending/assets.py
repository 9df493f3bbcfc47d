"""
assets.py - Fungible Asset Interface

=== MODEL ===

The lending protocol moves two independent fungible assets (a principal
token and a collateral token). It never touches balances directly; it asks
a FungibleAsset for Moves and submits them, together with the agreement
state change, as ONE PendingTransaction. The ledger then applies every
move, consumes allowances and updates the agreement atomically.

    pull_transfer(source, dest, qty)   -> Move spending custody's allowance on source
    push_transfer(dest, qty)           -> Move out of the custody wallet

Both check their preconditions against the current view first and raise
InsufficientBalance / InsufficientAllowance instead of returning a Move
the ledger would reject.

=== ISSUANCE ===

Tokens are integral units (decimal_places=0, quantities in base units).
mint() issues from SYSTEM_WALLET, so total_supply() stays zero and
circulating_supply() equals everything issued.
"""
from __future__ import annotations
from decimal import Decimal
from typing import Protocol, Union, runtime_checkable

from .core import (
    LedgerView, Move, Unit, TransactionOrigin, OriginType, ExecuteResult,
    InsufficientBalance, InsufficientAllowance, LedgerError,
    build_transaction, SYSTEM_WALLET, UNIT_TYPE_TOKEN,
)
from .ledger import Ledger


Quantity = Union[int, Decimal]

# Initial supply of each deployed token, in whole tokens.
INITIAL_TOKEN_SUPPLY = 100_000_000

# Base units per whole token (18-decimal tokens).
TOKEN_BASE_UNITS = 10 ** 18


def to_decimal(quantity: Quantity) -> Decimal:
    """Convert an integer quantity to the ledger's Decimal, rejecting fractions."""
    if isinstance(quantity, bool):
        raise TypeError("quantity must be an integer, got bool")
    if isinstance(quantity, int):
        return Decimal(quantity)
    if isinstance(quantity, Decimal):
        if quantity != quantity.to_integral_value():
            raise ValueError(f"quantity must be integral, got {quantity}")
        return quantity
    raise TypeError(f"quantity must be int or Decimal, got {type(quantity).__name__}")


# =============================================================================
# INTERFACE
# =============================================================================

@runtime_checkable
class FungibleAsset(Protocol):
    """What the lending protocol needs from an asset."""

    symbol: str
    custody: str

    def balance_of(self, identity: str) -> int:
        ...

    def allowance(self, owner: str, spender: str) -> int:
        ...

    def pull_transfer(self, source: str, dest: str, quantity: Quantity, contract_id: str) -> Move:
        ...

    def push_transfer(self, dest: str, quantity: Quantity, contract_id: str) -> Move:
        ...


class LedgerAsset:
    """
    FungibleAsset backed by one token unit of a Ledger.

    Pull transfers are spent by the custody wallet on behalf of the source
    and require a prior approve(owner, qty) (Ledger.approve with custody as
    spender). Their destination may be any wallet. Push transfers always
    leave from custody.
    """

    def __init__(self, ledger: LedgerView, symbol: str, custody: str):
        self.ledger = ledger
        self.symbol = symbol
        self.custody = custody

    def __repr__(self) -> str:
        return f"LedgerAsset({self.symbol}, custody={self.custody})"

    def balance_of(self, identity: str) -> int:
        return int(self.ledger.get_balance(identity, self.symbol))

    def allowance(self, owner: str, spender: str) -> int:
        return int(self.ledger.get_allowance(owner, spender, self.symbol))

    def approve(self, owner: str, quantity: Quantity) -> None:
        """Authorize custody to pull up to quantity from owner."""
        self.ledger.approve(owner, self.custody, self.symbol, to_decimal(quantity))

    def pull_transfer(self, source: str, dest: str, quantity: Quantity, contract_id: str) -> Move:
        """
        Build a move of quantity from source to dest, spent by custody.

        Raises:
            InsufficientBalance: source holds less than quantity
            InsufficientAllowance: source authorized custody for less than quantity
        """
        qty = to_decimal(quantity)
        balance = self.ledger.get_balance(source, self.symbol)
        if balance < qty:
            raise InsufficientBalance(
                f"{source} holds {balance} {self.symbol}, needs {qty}"
            )
        allowed = self.ledger.get_allowance(source, self.custody, self.symbol)
        if allowed < qty:
            raise InsufficientAllowance(
                f"{source} authorized {self.custody} for {allowed} {self.symbol}, needs {qty}"
            )
        return Move(qty, self.symbol, source, dest, contract_id, spender=self.custody)

    def push_transfer(self, dest: str, quantity: Quantity, contract_id: str) -> Move:
        """
        Build a move of quantity out of custody.

        Raises:
            InsufficientBalance: custody holds less than quantity
        """
        qty = to_decimal(quantity)
        held = self.ledger.get_balance(self.custody, self.symbol)
        if held < qty:
            raise InsufficientBalance(
                f"custody {self.custody} holds {held} {self.symbol}, needs {qty}"
            )
        return Move(qty, self.symbol, self.custody, dest, contract_id)


# =============================================================================
# TOKEN FACTORY AND ISSUANCE
# =============================================================================

def create_token_unit(symbol: str, name: str) -> Unit:
    """
    Create an integral fungible token unit.

    Balances cannot go negative and are quantized to whole base units.

    Example:
        ledger.register_unit(create_token_unit("STBL", "Stable Token"))
    """
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=UNIT_TYPE_TOKEN,
        min_balance=Decimal("0"),
        decimal_places=0,
    )


def mint(ledger: Ledger, unit_symbol: str, wallet: str, quantity: Quantity) -> None:
    """
    Issue quantity of unit_symbol to wallet from SYSTEM_WALLET.

    Raises:
        LedgerError: if the ledger rejects the issuance
    """
    qty = to_decimal(quantity)
    # Sequence number keeps repeated identical issuances distinct intents
    contract_id = f"mint_{unit_symbol}_{wallet}_{len(ledger.transaction_log)}"
    tx = build_transaction(
        ledger,
        [Move(qty, unit_symbol, SYSTEM_WALLET, wallet, contract_id)],
        origin=TransactionOrigin(OriginType.SYSTEM, "issuance", unit_symbol, "MINT"),
    )
    result = ledger.execute(tx)
    if result != ExecuteResult.APPLIED:
        raise LedgerError(f"Mint of {qty} {unit_symbol} to {wallet} failed: {ledger.last_rejection or result.value}")

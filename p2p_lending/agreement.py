"""
agreement.py - Lending Agreements and the Agreement Store

=== MODEL ===

Each agreement is a ledger unit of type LENDING_AGREEMENT whose state
holds the loan terms and lifecycle fields. The ledger's unit table is the
single owning arena (keyed by the generated symbol); the AgreementStore
keeps two secondary indices pointing at it:

    lender identity   -> agreement symbol
    borrower identity -> agreement symbol

Lifecycle:
    NONE --offer--> ACTIVE --match--> FILLED --{repay | claim}--> NONE

On termination both index entries are erased. The unit keeps its final
state (status NONE, closed_reason REPAID/CLAIMED) so the transaction log
stays replayable; it is never indexed again.

=== ADAPTERS ===

    load_agreement(view, symbol) -> LendingAgreement   (typed snapshot)
    to_state_dict(agreement)     -> dict               (for UnitStateChange)
"""
from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterator, Optional

from .core import (
    LedgerView, Unit, UnitStateChange,
    UNIT_TYPE_LENDING_AGREEMENT,
    DuplicateAgreement, AgreementNotFound, UnitNotRegistered, _freeze_state,
)


AGREEMENT_SYMBOL_PREFIX = "AGREEMENT_"


class AgreementStatus(str, Enum):
    """Lifecycle status of a lending agreement."""
    NONE = "none"          # Terminated (or never created)
    ACTIVE = "active"      # Offered, principal in custody, no borrower
    FILLED = "filled"      # Matched, collateral in custody, principal with borrower


class ClosedReason(str, Enum):
    """How a terminated agreement ended."""
    REPAID = "repaid"
    CLAIMED = "claimed"


# =============================================================================
# FROZEN DATACLASS
# =============================================================================

@dataclass(frozen=True, slots=True)
class LendingAgreement:
    """
    Immutable snapshot of one lender-borrower agreement.

    Quantities are integer base units; interest_rate is divided by 100000
    in the interest formula; lock_period is in 30-day months.
    """
    agreement_id: str
    principal: int
    collateral: int
    interest_rate: int
    lock_period: int
    lender_address: str
    borrower_address: Optional[str]
    borrowing_timestamp: Optional[datetime]
    status: AgreementStatus
    created_at: Optional[datetime] = None
    closed_reason: Optional[ClosedReason] = None

    def __post_init__(self):
        if not isinstance(self.status, AgreementStatus):
            object.__setattr__(self, 'status', AgreementStatus(self.status))
        if self.closed_reason is not None and not isinstance(self.closed_reason, ClosedReason):
            object.__setattr__(self, 'closed_reason', ClosedReason(self.closed_reason))

    @property
    def is_active(self) -> bool:
        return self.status == AgreementStatus.ACTIVE

    @property
    def is_filled(self) -> bool:
        return self.status == AgreementStatus.FILLED

    def check_invariants(self) -> None:
        """
        Raise ValueError if the fields contradict the status.

        ACTIVE => no borrower, collateral 0, no timestamp
        FILLED => borrower, collateral > 0, timestamp
        """
        if self.principal <= 0:
            raise ValueError(f"{self.agreement_id}: principal must be positive")
        if self.lock_period <= 0:
            raise ValueError(f"{self.agreement_id}: lock_period must be positive")
        if self.status == AgreementStatus.ACTIVE:
            if (self.borrower_address is not None or self.collateral != 0
                    or self.borrowing_timestamp is not None):
                raise ValueError(f"{self.agreement_id}: ACTIVE agreement has borrower-side fields set")
        elif self.status == AgreementStatus.FILLED:
            if (self.borrower_address is None or self.collateral <= 0
                    or self.borrowing_timestamp is None):
                raise ValueError(f"{self.agreement_id}: FILLED agreement is missing borrower-side fields")

    def matched(self, borrower: str, collateral: int, timestamp: datetime) -> LendingAgreement:
        """The ACTIVE -> FILLED transition."""
        return replace(
            self,
            borrower_address=borrower,
            collateral=collateral,
            borrowing_timestamp=timestamp,
            status=AgreementStatus.FILLED,
        )

    def closed(self, reason: ClosedReason) -> LendingAgreement:
        """The FILLED -> NONE transition."""
        return replace(self, status=AgreementStatus.NONE, closed_reason=reason)


# =============================================================================
# ADAPTERS
# =============================================================================

def to_state_dict(agreement: LendingAgreement) -> Dict[str, Any]:
    """Convert an agreement to the unit state stored in the ledger."""
    return {
        'agreement_id': agreement.agreement_id,
        'principal': agreement.principal,
        'collateral': agreement.collateral,
        'interest_rate': agreement.interest_rate,
        'lock_period': agreement.lock_period,
        'lender_address': agreement.lender_address,
        'borrower_address': agreement.borrower_address,
        'borrowing_timestamp': agreement.borrowing_timestamp,
        'status': agreement.status.value,
        'created_at': agreement.created_at,
        'closed_reason': agreement.closed_reason.value if agreement.closed_reason else None,
    }


def load_agreement(view: LedgerView, symbol: str) -> LendingAgreement:
    """
    Load an agreement unit's state as a typed snapshot.

    This is the only place agreement state is read from a LedgerView.

    Raises:
        AgreementNotFound: symbol is unknown or is not a lending agreement unit
    """
    try:
        unit = view.get_unit(symbol)
    except UnitNotRegistered:
        raise AgreementNotFound(f"No agreement {symbol}") from None
    if unit.unit_type != UNIT_TYPE_LENDING_AGREEMENT:
        raise AgreementNotFound(f"{symbol} is a {unit.unit_type} unit, not an agreement")
    raw = view.get_unit_state(symbol)
    return LendingAgreement(
        agreement_id=raw.get('agreement_id', symbol),
        principal=int(raw['principal']),
        collateral=int(raw.get('collateral', 0)),
        interest_rate=int(raw['interest_rate']),
        lock_period=int(raw['lock_period']),
        lender_address=raw['lender_address'],
        borrower_address=raw.get('borrower_address'),
        borrowing_timestamp=raw.get('borrowing_timestamp'),
        status=AgreementStatus(raw.get('status', AgreementStatus.NONE.value)),
        created_at=raw.get('created_at'),
        closed_reason=raw.get('closed_reason'),
    )


def create_agreement_unit(agreement: LendingAgreement) -> Unit:
    """
    Create the ledger unit that records an agreement.

    Nobody holds a balance of it (min and max balance are zero); it exists
    for its state and for the audit trail of its state changes.
    """
    agreement.check_invariants()
    return Unit(
        symbol=agreement.agreement_id,
        name=f"Lending agreement: {agreement.principal} for {agreement.lock_period}m from {agreement.lender_address}",
        unit_type=UNIT_TYPE_LENDING_AGREEMENT,
        min_balance=Decimal("0"),
        max_balance=Decimal("0"),
        decimal_places=0,
        _frozen_state=_freeze_state(to_state_dict(agreement)),
    )


def agreement_state_change(old: LendingAgreement, new: LendingAgreement) -> UnitStateChange:
    """UnitStateChange for a transition of the same agreement."""
    if old.agreement_id != new.agreement_id:
        raise ValueError(f"Cannot change {old.agreement_id} into {new.agreement_id}")
    if new.status != AgreementStatus.NONE:
        new.check_invariants()
    return UnitStateChange(unit=old.agreement_id, old_state=to_state_dict(old), new_state=to_state_dict(new))


# =============================================================================
# STORE
# =============================================================================

class AgreementStore:
    """
    Lender and borrower indices over agreement units held in a ledger.

    The store never holds agreement data itself; lookups resolve the
    indexed symbol and load the unit state through the view, so the two
    indices always see the same record.
    """

    def __init__(self, view: LedgerView):
        self.view = view
        self._by_lender: Dict[str, str] = {}
        self._by_borrower: Dict[str, str] = {}
        self._next_id = 1

    def __len__(self) -> int:
        return len(self._by_lender)

    def __iter__(self) -> Iterator[LendingAgreement]:
        for symbol in sorted(self._by_lender.values()):
            yield load_agreement(self.view, symbol)

    def next_agreement_id(self) -> str:
        """
        First agreement symbol not yet registered in the ledger.

        Nothing is reserved: the symbol is taken once the offer's
        transaction registers the unit, so a rejected offer leaves no gap.
        """
        existing = set(self.view.list_units())
        while f"{AGREEMENT_SYMBOL_PREFIX}{self._next_id:06d}" in existing:
            self._next_id += 1
        return f"{AGREEMENT_SYMBOL_PREFIX}{self._next_id:06d}"

    def get(self, agreement_id: str) -> LendingAgreement:
        return load_agreement(self.view, agreement_id)

    def by_lender(self, lender: str) -> Optional[LendingAgreement]:
        symbol = self._by_lender.get(lender)
        return load_agreement(self.view, symbol) if symbol else None

    def by_borrower(self, borrower: str) -> Optional[LendingAgreement]:
        symbol = self._by_borrower.get(borrower)
        return load_agreement(self.view, symbol) if symbol else None

    def has_lender(self, lender: str) -> bool:
        return lender in self._by_lender

    def has_borrower(self, borrower: str) -> bool:
        return borrower in self._by_borrower

    def index_lender(self, lender: str, agreement_id: str) -> None:
        if lender in self._by_lender:
            raise DuplicateAgreement(f"Lender {lender} already has an agreement")
        self._by_lender[lender] = agreement_id

    def index_borrower(self, borrower: str, agreement_id: str) -> None:
        if borrower in self._by_borrower:
            raise DuplicateAgreement(f"Borrower {borrower} has already borrowed")
        self._by_borrower[borrower] = agreement_id

    def remove(self, agreement: LendingAgreement) -> None:
        """Erase the agreement from both indices."""
        if self._by_lender.get(agreement.lender_address) == agreement.agreement_id:
            del self._by_lender[agreement.lender_address]
        if (agreement.borrower_address is not None
                and self._by_borrower.get(agreement.borrower_address) == agreement.agreement_id):
            del self._by_borrower[agreement.borrower_address]

"""
protocol.py - Peer-to-Peer Lending Protocol

=== MODEL ===

One lender deposits principal; one borrower posts collateral and receives
the principal; the loan ends by repayment (principal + full-term interest
to the lender, collateral back to the borrower) or, once the lock period
has elapsed, by the lender claiming the collateral.

    offer_lending     NONE   -> ACTIVE   principal: lender -> custody
    borrow            ACTIVE -> FILLED   collateral: borrower -> custody
                                         principal: custody -> borrower
    repay             FILLED -> NONE     total_due: borrower -> lender
                                         collateral: custody -> borrower
    claim_collateral  FILLED -> NONE     collateral: custody -> lender

Every operation checks its preconditions, then submits all of its moves
and the agreement state change as ONE ledger transaction. Nothing is
indexed or emitted unless the ledger applied it, so a failed operation
leaves balances, allowances, agreements and events untouched.

A SubscriberError is the exception: it is raised only after the operation
committed and all of its events were recorded, and its `result` holds
what the operation would have returned.

Operations are serialized by a re-entrant lock and read the ledger clock
once each.

Each party holds at most one lender-side and one borrower-side agreement.
"""

from __future__ import annotations
import threading
from datetime import datetime
from typing import Iterator, Optional

from .core import (
    TransactionOrigin, OriginType, ExecuteResult, PendingTransaction,
    LedgerError, InvalidAmount, DuplicateAgreement, AgreementNotFound,
    InvalidState, Unauthorized, LockNotExpired, WalletNotRegistered,
    build_transaction, SYSTEM_WALLET,
)
from .ledger import Ledger
from .assets import LedgerAsset
from .agreement import (
    AgreementStore, LendingAgreement, AgreementStatus, ClosedReason,
    create_agreement_unit, agreement_state_change,
)
from .rates import ExchangeRateRegister
from .terms import (
    DEFAULT_INTEREST_RATE,
    calculate_collateral_amount, calculate_interest, is_lock_expired,
    lock_expiry as _lock_expiry,
)
from .events import (
    EventLog, LendingEvent, SubscriberError, BalanceObserved, OfferCreated, AgreementMatched,
    LoanRepaid, CollateralClaimed, ExchangeRateUpdated,
    OFFER_CREATED, AGREEMENT_MATCHED, LOAN_REPAID, COLLATERAL_CLAIMED,
)


DEFAULT_CUSTODY_WALLET = "lending_pool"


def _require_positive_int(name: str, value: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidAmount(f"{name} must be an int, got {type(value).__name__}")
    if value <= 0:
        raise InvalidAmount(f"{name} must be positive, got {value}")


class LendingProtocol:
    """
    Lending agreements between ledger wallets over two token units.

    Args:
        ledger: Ledger holding both tokens and the agreement units
        principal_symbol: Token lent and repaid
        collateral_symbol: Token posted by borrowers
        exchange_rate: Collateral per principal, 3 implied decimals
        owner: Identity allowed to update the exchange rate
        custody: Wallet that escrows principal and collateral
        interest_rate: Rate recorded on new offers (5000 = 5% per month)

    Parties authorize custody before offering, borrowing and repaying:

        protocol.principal.approve("alice", 20)
        protocol.offer_lending("alice", 20, 6)
    """

    def __init__(
        self,
        ledger: Ledger,
        principal_symbol: str,
        collateral_symbol: str,
        exchange_rate: int,
        owner: str,
        custody: str = DEFAULT_CUSTODY_WALLET,
        interest_rate: int = DEFAULT_INTEREST_RATE,
        events: Optional[EventLog] = None,
    ):
        for symbol in (principal_symbol, collateral_symbol):
            ledger.get_unit(symbol)
        if principal_symbol == collateral_symbol:
            raise ValueError("principal and collateral must be different units")
        if isinstance(interest_rate, bool) or not isinstance(interest_rate, int) or interest_rate < 0:
            raise ValueError(f"interest_rate must be a non-negative int, got {interest_rate!r}")
        if custody == SYSTEM_WALLET:
            raise ValueError("custody cannot be the system wallet")

        if not ledger.is_registered(custody):
            ledger.register_wallet(custody)

        self.ledger = ledger
        self.custody = custody
        self.interest_rate = interest_rate
        self.principal = LedgerAsset(ledger, principal_symbol, custody)
        self.collateral = LedgerAsset(ledger, collateral_symbol, custody)
        self.rates = ExchangeRateRegister(owner, exchange_rate)
        self.store = AgreementStore(ledger)
        self.events = events if events is not None else EventLog()
        self.verbose = ledger.verbose
        self._lock = threading.RLock()

    def __repr__(self) -> str:
        return (f"LendingProtocol({self.principal.symbol}/{self.collateral.symbol}, "
                f"rate={self.exchange_rate}, agreements={len(self.store)})")

    # ========================================================================
    # QUERIES
    # ========================================================================

    @property
    def exchange_rate(self) -> int:
        return self.rates.rate

    @property
    def owner(self) -> str:
        return self.rates.owner

    def lenders_agreement(self, identity: str) -> Optional[LendingAgreement]:
        """Agreement identity currently lends in, if any."""
        return self.store.by_lender(identity)

    def borrowers_agreement(self, identity: str) -> Optional[LendingAgreement]:
        """Agreement identity currently borrows in, if any."""
        return self.store.by_borrower(identity)

    def get_agreement(self, agreement_id: str) -> LendingAgreement:
        """Any agreement ever created, including terminated ones."""
        return self.store.get(agreement_id)

    def agreements(self) -> Iterator[LendingAgreement]:
        """Live (ACTIVE or FILLED) agreements in creation order."""
        return iter(self.store)

    def quote_collateral(self, lender: str) -> int:
        """Collateral a borrower would post to match lender's offer right now."""
        agreement = self._lender_agreement(lender)
        return calculate_collateral_amount(agreement.principal, self.exchange_rate)

    def quote_repayment(self, borrower: str) -> int:
        """Total due to close borrower's loan."""
        agreement = self._borrower_agreement(borrower)
        return agreement.principal + calculate_interest(
            agreement.principal, agreement.interest_rate, agreement.lock_period)

    def lock_expiry(self, lender: str) -> datetime:
        """Earliest time lender may claim the collateral."""
        agreement = self._lender_agreement(lender)
        if not agreement.is_filled:
            raise InvalidState(f"{agreement.agreement_id} is {agreement.status.value}, not filled")
        return _lock_expiry(agreement.borrowing_timestamp, agreement.lock_period)

    # ========================================================================
    # OPERATIONS
    # ========================================================================

    def offer_lending(self, caller: str, principal: int, lock_period: int) -> LendingAgreement:
        """
        Deposit principal into custody and open an ACTIVE offer.

        Raises:
            InvalidAmount: principal or lock_period not a positive int
            DuplicateAgreement: caller already has a lender-side agreement
            InsufficientBalance / InsufficientAllowance: caller cannot fund it
        """
        with self._lock:
            self._require_party(caller)
            _require_positive_int("principal", principal)
            _require_positive_int("lock_period", lock_period)
            if self.store.has_lender(caller):
                raise DuplicateAgreement(f"Lender {caller} already has an agreement")

            now = self.ledger.current_time
            observed = self.principal.balance_of(caller)
            agreement_id = self.store.next_agreement_id()
            deposit = self.principal.pull_transfer(
                caller, self.custody, principal, f"{agreement_id}_principal")

            agreement = LendingAgreement(
                agreement_id=agreement_id,
                principal=principal,
                collateral=0,
                interest_rate=self.interest_rate,
                lock_period=lock_period,
                lender_address=caller,
                borrower_address=None,
                borrowing_timestamp=None,
                status=AgreementStatus.ACTIVE,
                created_at=now,
            )
            self._submit(build_transaction(
                self.ledger,
                [deposit],
                origin=self._origin(agreement_id, OFFER_CREATED),
                units_to_create=(create_agreement_unit(agreement),),
            ))

            self.store.index_lender(caller, agreement_id)
            self._emit(
                agreement,
                BalanceObserved(now, agreement_id, caller, self.principal.symbol, observed),
                OfferCreated(now, agreement_id, caller, principal, self.interest_rate, lock_period),
            )
            return agreement

    def borrow(self, caller: str, lender: str) -> LendingAgreement:
        """
        Post collateral against lender's ACTIVE offer and receive the principal.

        Collateral is sized at the current exchange rate.

        Raises:
            DuplicateAgreement: caller already has a borrower-side agreement
            AgreementNotFound: lender has no agreement
            InvalidState: the agreement is not ACTIVE, or caller is the lender
            InvalidAmount: the computed collateral is zero
            InsufficientBalance / InsufficientAllowance: caller cannot post it
        """
        with self._lock:
            self._require_party(caller)
            if self.store.has_borrower(caller):
                raise DuplicateAgreement(f"Borrower {caller} has already borrowed")
            agreement = self._lender_agreement(lender)
            if not agreement.is_active:
                raise InvalidState(f"{agreement.agreement_id} is {agreement.status.value}, not active")
            if caller == agreement.lender_address:
                raise InvalidState(f"{caller} cannot borrow against their own offer")

            collateral = calculate_collateral_amount(agreement.principal, self.exchange_rate)
            if collateral <= 0:
                raise InvalidAmount(
                    f"Collateral for {agreement.principal} at rate {self.exchange_rate} is {collateral}")

            now = self.ledger.current_time
            agreement_id = agreement.agreement_id
            moves = [
                self.collateral.pull_transfer(caller, self.custody, collateral, f"{agreement_id}_collateral"),
                self.principal.push_transfer(caller, agreement.principal, f"{agreement_id}_disbursement"),
            ]
            filled = agreement.matched(caller, collateral, now)
            self._submit(build_transaction(
                self.ledger, moves,
                [agreement_state_change(agreement, filled)],
                origin=self._origin(agreement_id, AGREEMENT_MATCHED),
            ))

            self.store.index_borrower(caller, agreement_id)
            self._emit(filled, AgreementMatched(
                now, agreement_id, filled.lender_address, caller,
                filled.principal, collateral, now,
            ))
            return filled

    def repay(self, caller: str) -> LendingAgreement:
        """
        Pay principal plus full-term interest to the lender and recover the collateral.

        Raises:
            AgreementNotFound: caller has no borrower-side agreement
            Unauthorized: caller is not the recorded borrower
            InvalidState: the agreement is not FILLED
            InsufficientBalance / InsufficientAllowance: caller cannot pay
        """
        with self._lock:
            agreement = self._borrower_agreement(caller)
            if agreement.borrower_address != caller:
                raise Unauthorized(f"{caller} is not the borrower of {agreement.agreement_id}")
            if not agreement.is_filled:
                raise InvalidState(f"{agreement.agreement_id} is {agreement.status.value}, not filled")

            interest = calculate_interest(agreement.principal, agreement.interest_rate, agreement.lock_period)
            total_due = agreement.principal + interest
            if total_due <= 0:
                raise InvalidAmount(f"{agreement.agreement_id}: nothing to repay")

            now = self.ledger.current_time
            agreement_id = agreement.agreement_id
            moves = [
                self.principal.pull_transfer(
                    caller, agreement.lender_address, total_due, f"{agreement_id}_repayment"),
                self.collateral.push_transfer(caller, agreement.collateral, f"{agreement_id}_collateral_return"),
            ]
            closed = agreement.closed(ClosedReason.REPAID)
            self._submit(build_transaction(
                self.ledger, moves,
                [agreement_state_change(agreement, closed)],
                origin=self._origin(agreement_id, LOAN_REPAID),
            ))

            self.store.remove(agreement)
            self._emit(closed, LoanRepaid(
                now, agreement_id, agreement.lender_address, caller,
                total_due, interest, agreement.collateral,
            ))
            return closed

    def claim_collateral(self, caller: str) -> LendingAgreement:
        """
        Take the collateral of an unrepaid loan once its lock period has elapsed.

        The borrower keeps the principal.

        Raises:
            AgreementNotFound: caller has no lender-side agreement
            Unauthorized: caller is not the recorded lender
            InvalidState: the agreement is not FILLED or holds no collateral
            LockNotExpired: fewer than lock_period months since borrowing
        """
        with self._lock:
            agreement = self._lender_agreement(caller)
            if agreement.lender_address != caller:
                raise Unauthorized(f"{caller} is not the lender of {agreement.agreement_id}")
            if not agreement.is_filled:
                raise InvalidState(f"{agreement.agreement_id} is {agreement.status.value}, not filled")
            if agreement.collateral <= 0:
                raise InvalidState(f"{agreement.agreement_id} holds no collateral")

            now = self.ledger.current_time
            if not is_lock_expired(agreement.borrowing_timestamp, now, agreement.lock_period):
                expiry = _lock_expiry(agreement.borrowing_timestamp, agreement.lock_period)
                raise LockNotExpired(f"{agreement.agreement_id} is locked until {expiry.isoformat()}")

            agreement_id = agreement.agreement_id
            moves = [
                self.collateral.push_transfer(caller, agreement.collateral, f"{agreement_id}_forfeit"),
            ]
            closed = agreement.closed(ClosedReason.CLAIMED)
            self._submit(build_transaction(
                self.ledger, moves,
                [agreement_state_change(agreement, closed)],
                origin=self._origin(agreement_id, COLLATERAL_CLAIMED),
            ))

            self.store.remove(agreement)
            self._emit(closed, CollateralClaimed(
                now, agreement_id, caller, agreement.borrower_address, agreement.collateral,
            ))
            return closed

    def update_exchange_rate(self, caller: str, new_rate: int) -> int:
        """
        Replace the exchange rate used by future matches. Returns the old rate.

        Raises:
            Unauthorized: caller is not the owner
        """
        with self._lock:
            old_rate, new_rate = self.rates.update(caller, new_rate)
            self._emit(old_rate, ExchangeRateUpdated(self.ledger.current_time, None, caller, old_rate, new_rate))
            return old_rate

    # ========================================================================
    # INTERNALS
    # ========================================================================

    def _require_party(self, identity: str) -> None:
        if identity in (SYSTEM_WALLET, self.custody):
            raise Unauthorized(f"{identity} cannot take part in an agreement")
        if not self.ledger.is_registered(identity):
            raise WalletNotRegistered(f"Wallet {identity} not registered")

    def _lender_agreement(self, lender: str) -> LendingAgreement:
        agreement = self.store.by_lender(lender)
        if agreement is None:
            raise AgreementNotFound(f"No agreement found for lender {lender}")
        return agreement

    def _borrower_agreement(self, borrower: str) -> LendingAgreement:
        agreement = self.store.by_borrower(borrower)
        if agreement is None:
            raise AgreementNotFound(f"No agreement found for borrower {borrower}")
        return agreement

    @staticmethod
    def _origin(agreement_id: str, event_type: str) -> TransactionOrigin:
        return TransactionOrigin(OriginType.CONTRACT, "lending", agreement_id, event_type)

    def _submit(self, pending: PendingTransaction) -> None:
        result = self.ledger.execute(pending)
        if result != ExecuteResult.APPLIED:
            reason = self.ledger.last_rejection or result.value
            raise LedgerError(f"{pending.origin.event_type} for {pending.origin.unit_symbol} not applied: {reason}")

    def _emit(self, result, *events: LendingEvent) -> None:
        """Record a committed operation's events, then notify subscribers."""
        if self.verbose:
            for event in events:
                print(f"[LENDING] {event.event_type} {event.agreement_id or ''}".rstrip())
        try:
            self.events.extend(*events)
        except SubscriberError as exc:
            exc.result = result
            raise

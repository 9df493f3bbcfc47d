"""
events.py - Lending Event Log

One immutable event per state transition, plus the balance observation
made at offer time. Events are just data; the EventLog is append-only and
calls subscribers synchronously, in subscription order, once all of an
operation's events are recorded.

The ledger's transaction log remains the record of value movements; each
protocol transaction carries the matching event_type in its origin.
"""

from __future__ import annotations
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple, Type, TypeVar


# Event type names, shared with TransactionOrigin.event_type
OFFER_CREATED = "OFFER_CREATED"
AGREEMENT_MATCHED = "AGREEMENT_MATCHED"
LOAN_REPAID = "LOAN_REPAID"
COLLATERAL_CLAIMED = "COLLATERAL_CLAIMED"
BALANCE_OBSERVED = "BALANCE_OBSERVED"
EXCHANGE_RATE_UPDATED = "EXCHANGE_RATE_UPDATED"


@dataclass(frozen=True, slots=True)
class LendingEvent:
    """Common fields: when it happened and which agreement it concerns."""
    timestamp: datetime
    agreement_id: Optional[str]

    event_type = ""

    def to_dict(self) -> Dict[str, Any]:
        return {'event_type': self.event_type, **asdict(self)}


@dataclass(frozen=True, slots=True)
class BalanceObserved(LendingEvent):
    """Principal balance of a prospective lender, read before the offer's pull."""
    identity: str
    unit_symbol: str
    balance: int

    event_type = BALANCE_OBSERVED


@dataclass(frozen=True, slots=True)
class OfferCreated(LendingEvent):
    lender: str
    principal: int
    interest_rate: int
    lock_period: int

    event_type = OFFER_CREATED


@dataclass(frozen=True, slots=True)
class AgreementMatched(LendingEvent):
    lender: str
    borrower: str
    principal: int
    collateral: int
    borrowing_timestamp: datetime

    event_type = AGREEMENT_MATCHED


@dataclass(frozen=True, slots=True)
class LoanRepaid(LendingEvent):
    lender: str
    borrower: str
    total_due: int
    interest: int
    collateral: int

    event_type = LOAN_REPAID


@dataclass(frozen=True, slots=True)
class CollateralClaimed(LendingEvent):
    lender: str
    borrower: str
    collateral: int

    event_type = COLLATERAL_CLAIMED


@dataclass(frozen=True, slots=True)
class ExchangeRateUpdated(LendingEvent):
    owner: str
    old_rate: int
    new_rate: int

    event_type = EXCHANGE_RATE_UPDATED


Subscriber = Callable[[LendingEvent], None]
E = TypeVar("E", bound=LendingEvent)


class SubscriberError(Exception):
    """
    One or more subscribers raised while being notified.

    The events were recorded before any subscriber ran, and the operation
    that produced them has committed. Not a LedgerError.

    Attributes:
        errors: (event, exception) pairs in notification order
        result: what the committed operation returned, when raised by the protocol
    """

    def __init__(self, errors: List[Tuple[LendingEvent, Exception]], result: Any = None):
        self.errors = errors
        self.result = result
        failed = ", ".join(f"{event.event_type}: {exc!r}" for event, exc in errors)
        super().__init__(f"{len(errors)} subscriber failure(s) after commit: {failed}")


class EventLog:
    """
    Append-only list of lending events with synchronous subscribers.

    extend() records every event first and only then notifies subscribers.
    Every subscriber sees every event even if an earlier one raised; the
    failures are raised together afterwards as a SubscriberError.
    """

    def __init__(self):
        self._events: List[LendingEvent] = []
        self._subscribers: List[Subscriber] = []

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self) -> Iterator[LendingEvent]:
        return iter(list(self._events))

    def __getitem__(self, index):
        return self._events[index]

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register callback for future events. Returns an unsubscribe function."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def append(self, event: LendingEvent) -> None:
        self.extend(event)

    def extend(self, *events: LendingEvent) -> None:
        """
        Record events, then notify subscribers of each in order.

        Raises:
            SubscriberError: a subscriber raised; all events are recorded
        """
        self._events.extend(events)
        errors: List[Tuple[LendingEvent, Exception]] = []
        subscribers = list(self._subscribers)
        for event in events:
            for callback in subscribers:
                try:
                    callback(event)
                except Exception as exc:
                    errors.append((event, exc))
        if errors:
            raise SubscriberError(errors)

    def of_type(self, event_cls: Type[E]) -> List[E]:
        return [e for e in self._events if isinstance(e, event_cls)]

    def for_agreement(self, agreement_id: str) -> List[LendingEvent]:
        return [e for e in self._events if e.agreement_id == agreement_id]

"""
Conservation Law Conformance Tests

INVARIANT: For both tokens, at all times:
    Σ_{w ≠ system} balance(w, token) = issued supply

and the custody wallet holds exactly what live agreements escrow:
    custody STBL = Σ principal   over ACTIVE agreements
    custody CLTR = Σ collateral  over FILLED agreements

Lending operations redistribute tokens but never create or destroy them,
and custody never holds an unattributed balance.
"""

import pytest
from hypothesis import given, settings, note
from hypothesis import strategies as st
from decimal import Decimal
from datetime import timedelta

from p2p_lending import LedgerError, AgreementStatus, SECONDS_PER_MONTH

from tests.conftest import (
    T0, PARTIES, make_token_ledger, make_protocol, snapshot_balances,
)


FUNDING = 1_000
ISSUED = Decimal(FUNDING * len(PARTIES))


# =============================================================================
# STRATEGIES
# =============================================================================

party = st.sampled_from(PARTIES)

operation = st.one_of(
    st.tuples(st.just("offer"), party, st.integers(min_value=-5, max_value=400), st.integers(min_value=0, max_value=4)),
    st.tuples(st.just("borrow"), party, party),
    st.tuples(st.just("repay"), party),
    st.tuples(st.just("claim"), party),
    st.tuples(st.just("wait"), st.integers(min_value=0, max_value=3 * SECONDS_PER_MONTH)),
    st.tuples(st.just("rate"), st.integers(min_value=0, max_value=12_000)),
)


def apply(protocol, op):
    """Run one operation with generous approvals; lending errors are expected outcomes."""
    kind = op[0]
    if kind == "offer":
        _, lender, principal, lock_period = op
        protocol.principal.approve(lender, max(principal, 0))
        protocol.offer_lending(lender, principal, lock_period)
    elif kind == "borrow":
        _, borrower, lender = op
        protocol.collateral.approve(borrower, FUNDING * 10)
        protocol.borrow(borrower, lender)
    elif kind == "repay":
        _, borrower = op
        protocol.principal.approve(borrower, FUNDING * 10)
        protocol.repay(borrower)
    elif kind == "claim":
        _, lender = op
        protocol.claim_collateral(lender)
    elif kind == "wait":
        ledger = protocol.ledger
        ledger.advance_time(ledger.current_time + timedelta(seconds=op[1]))
    elif kind == "rate":
        protocol.update_exchange_rate("owner", op[1])


def check_custody(protocol):
    ledger = protocol.ledger
    live = list(protocol.agreements())
    escrowed_principal = sum(a.principal for a in live if a.status == AgreementStatus.ACTIVE)
    escrowed_collateral = sum(a.collateral for a in live if a.status == AgreementStatus.FILLED)
    assert ledger.get_balance(protocol.custody, "STBL") == Decimal(escrowed_principal)
    assert ledger.get_balance(protocol.custody, "CLTR") == Decimal(escrowed_collateral)


# =============================================================================
# PROPERTIES
# =============================================================================

class TestConservationProperties:
    """Property-based conservation tests over random operation sequences."""

    @given(st.lists(operation, min_size=1, max_size=30))
    @settings(max_examples=75, deadline=None)
    def test_supply_conserved_and_custody_attributed(self, ops):
        """
        PROPERTY: No sequence of operations changes circulating supply, and
        custody always equals the escrow of live agreements.
        """
        protocol = make_protocol(make_token_ledger(funding=FUNDING))
        ledger = protocol.ledger

        for op in ops:
            try:
                apply(protocol, op)
            except LedgerError as e:
                note(f"{op} rejected: {e}")

            for symbol in ("STBL", "CLTR"):
                assert ledger.circulating_supply(symbol) == ISSUED
                assert ledger.total_supply(symbol) == Decimal("0")
            check_custody(protocol)

    @given(st.lists(operation, min_size=1, max_size=30))
    @settings(max_examples=50, deadline=None)
    def test_indices_consistent(self, ops):
        """
        PROPERTY: Every live agreement is reachable from its lender, and from
        its borrower once FILLED; terminated agreements are reachable from neither.
        """
        protocol = make_protocol(make_token_ledger(funding=FUNDING))

        for op in ops:
            try:
                apply(protocol, op)
            except LedgerError:
                pass

        live = {a.agreement_id: a for a in protocol.agreements()}
        for name in PARTIES:
            lent = protocol.lenders_agreement(name)
            if lent is not None:
                assert lent.agreement_id in live
                assert lent.lender_address == name
            borrowed = protocol.borrowers_agreement(name)
            if borrowed is not None:
                assert borrowed.status == AgreementStatus.FILLED
                assert borrowed.borrower_address == name
        for agreement in live.values():
            assert protocol.lenders_agreement(agreement.lender_address) == agreement
            if agreement.status == AgreementStatus.FILLED:
                assert protocol.borrowers_agreement(agreement.borrower_address) == agreement


class TestConservationExamples:
    """Explicit round-trip examples."""

    def test_offer_match_repay_round_trip(self, protocol):
        """Exactly total_due moves borrower -> lender; collateral comes back."""
        ledger = protocol.ledger
        before = snapshot_balances(ledger)

        protocol.principal.approve("alice", 20)
        protocol.offer_lending("alice", 20, 6)
        protocol.collateral.approve("bob", 200)
        protocol.borrow("bob", "alice")
        protocol.principal.approve("bob", 26)
        protocol.repay("bob")

        after = snapshot_balances(ledger)
        assert after[("bob", "STBL")] - before[("bob", "STBL")] == Decimal("-6")
        assert after[("alice", "STBL")] - before[("alice", "STBL")] == Decimal("6")
        assert after[("bob", "CLTR")] == before[("bob", "CLTR")]
        assert ledger.circulating_supply("STBL") == ISSUED

    def test_offer_match_claim_round_trip(self, protocol):
        """Lender swaps principal for collateral; borrower the reverse."""
        ledger = protocol.ledger
        before = snapshot_balances(ledger)

        protocol.principal.approve("alice", 20)
        protocol.offer_lending("alice", 20, 1)
        protocol.collateral.approve("bob", 200)
        protocol.borrow("bob", "alice")
        ledger.advance_time(T0 + timedelta(seconds=SECONDS_PER_MONTH))
        protocol.claim_collateral("alice")

        after = snapshot_balances(ledger)
        assert after[("alice", "STBL")] - before[("alice", "STBL")] == Decimal("-20")
        assert after[("alice", "CLTR")] - before[("alice", "CLTR")] == Decimal("200")
        assert after[("bob", "STBL")] - before[("bob", "STBL")] == Decimal("20")
        assert after[("bob", "CLTR")] - before[("bob", "CLTR")] == Decimal("-200")

    def test_double_entry_report(self, matched):
        report = matched.ledger.verify_double_entry({"STBL": Decimal("0"), "CLTR": Decimal("0")})
        assert report['valid'], report['discrepancies']

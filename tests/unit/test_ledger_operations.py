"""
test_ledger_operations.py - Unit tests for Ledger class operations

Tests:
- Ledger creation and configuration
- Wallet and unit registration
- Balance operations and time management
- Allowances and pull moves
- Transaction execution, rejection and idempotency
- Clone
"""

import pytest
from dataclasses import replace
from datetime import datetime, timedelta
from decimal import Decimal

from p2p_lending import (
    Ledger, Move, ExecuteResult, UnitStateChange, build_transaction,
    create_token_unit, mint,
    LedgerError, WalletNotRegistered, UnitNotRegistered, SYSTEM_WALLET,
)
from p2p_lending.core import Unit, UNIT_TYPE_LENDING_AGREEMENT


T0 = datetime(2025, 1, 1)


def _token_ledger():
    ledger = Ledger("test", T0, verbose=False, test_mode=True)
    ledger.register_unit(create_token_unit("STBL", "Stable Token"))
    for wallet in ("alice", "bob", "pool"):
        ledger.register_wallet(wallet)
    mint(ledger, "STBL", "alice", 1000)
    return ledger


class TestLedgerCreation:
    """Tests for Ledger initialization."""

    def test_create_ledger_with_options(self):
        ledger = Ledger(name="test", initial_time=T0, verbose=False)
        assert ledger.name == "test"
        assert ledger.current_time == T0
        assert ledger.verbose is False

    def test_system_wallet_preregistered(self):
        ledger = Ledger("test", verbose=False)
        assert ledger.is_registered(SYSTEM_WALLET)


class TestRegistration:
    """Tests for wallet and unit registration."""

    def test_register_duplicate_wallet_raises(self, empty_ledger):
        empty_ledger.register_wallet("alice")
        with pytest.raises(ValueError, match="already registered"):
            empty_ledger.register_wallet("alice")

    def test_register_empty_wallet_raises(self, empty_ledger):
        with pytest.raises(ValueError):
            empty_ledger.register_wallet("  ")

    def test_register_duplicate_unit_raises(self, empty_ledger):
        empty_ledger.register_unit(create_token_unit("STBL", "Stable Token"))
        with pytest.raises(ValueError, match="already registered"):
            empty_ledger.register_unit(create_token_unit("STBL", "Stable Token"))

    def test_list_wallets_returns_copy(self, empty_ledger):
        empty_ledger.register_wallet("alice")
        wallets = empty_ledger.list_wallets()
        wallets.add("mallory")
        assert not empty_ledger.is_registered("mallory")

    def test_list_units_sorted(self, empty_ledger):
        empty_ledger.register_unit(create_token_unit("ZZZ", "Z"))
        empty_ledger.register_unit(create_token_unit("AAA", "A"))
        assert empty_ledger.list_units() == ["AAA", "ZZZ"]

    def test_get_unit_state_unregistered_raises(self, empty_ledger):
        with pytest.raises(UnitNotRegistered):
            empty_ledger.get_unit_state("NOPE")


class TestBalances:
    """Tests for balance queries."""

    def test_get_balance_default_zero(self):
        ledger = _token_ledger()
        assert ledger.get_balance("bob", "STBL") == Decimal("0")

    def test_get_balance_unregistered_wallet_raises(self):
        with pytest.raises(WalletNotRegistered):
            _token_ledger().get_balance("ghost", "STBL")

    def test_set_balance_requires_test_mode(self):
        ledger = Ledger("prod", T0, verbose=False)
        ledger.register_unit(create_token_unit("STBL", "Stable Token"))
        ledger.register_wallet("alice")
        with pytest.raises(LedgerError, match="production mode"):
            ledger.set_balance("alice", "STBL", Decimal("10"))

    def test_get_positions_excludes_zero(self):
        ledger = _token_ledger()
        positions = ledger.get_positions("STBL")
        assert positions == {"alice": Decimal("1000"), SYSTEM_WALLET: Decimal("-1000")}


class TestTimeManagement:
    """Tests for the logical clock."""

    def test_advance_time(self, empty_ledger):
        empty_ledger.advance_time(T0 + timedelta(days=1))
        assert empty_ledger.current_time == T0 + timedelta(days=1)

    def test_advance_time_backwards_raises(self, empty_ledger):
        with pytest.raises(ValueError, match="backwards"):
            empty_ledger.advance_time(T0 - timedelta(seconds=1))

    def test_future_transaction_rejected(self):
        ledger = _token_ledger()
        tx = build_transaction(ledger, [Move(Decimal("1"), "STBL", "alice", "bob", "p1")])
        tx = replace(tx, timestamp=T0 + timedelta(days=1))
        assert ledger.execute(tx) == ExecuteResult.REJECTED
        assert ledger.last_rejection == "future timestamp"


class TestAllowances:
    """Tests for approve() and pull moves."""

    def test_approve_replaces(self):
        ledger = _token_ledger()
        ledger.approve("alice", "pool", "STBL", Decimal("100"))
        ledger.approve("alice", "pool", "STBL", Decimal("30"))
        assert ledger.get_allowance("alice", "pool", "STBL") == Decimal("30")

    def test_approve_zero_clears(self):
        ledger = _token_ledger()
        ledger.approve("alice", "pool", "STBL", Decimal("100"))
        ledger.approve("alice", "pool", "STBL", 0)
        assert ("alice", "pool", "STBL") not in ledger.allowances

    def test_approve_negative_raises(self):
        with pytest.raises(ValueError, match="negative"):
            _token_ledger().approve("alice", "pool", "STBL", Decimal("-1"))

    def test_approve_self_raises(self):
        with pytest.raises(ValueError):
            _token_ledger().approve("alice", "alice", "STBL", Decimal("1"))

    def test_approve_unregistered_spender_raises(self):
        with pytest.raises(WalletNotRegistered):
            _token_ledger().approve("alice", "ghost", "STBL", Decimal("1"))

    def test_pull_consumes_allowance(self):
        ledger = _token_ledger()
        ledger.approve("alice", "pool", "STBL", Decimal("100"))

        tx = build_transaction(ledger, [
            Move(Decimal("40"), "STBL", "alice", "bob", "pull_1", spender="pool"),
        ])
        assert ledger.execute(tx) == ExecuteResult.APPLIED

        assert ledger.get_balance("bob", "STBL") == Decimal("40")
        assert ledger.get_allowance("alice", "pool", "STBL") == Decimal("60")

    def test_pull_exhausting_allowance_removes_entry(self):
        ledger = _token_ledger()
        ledger.approve("alice", "pool", "STBL", Decimal("40"))
        tx = build_transaction(ledger, [
            Move(Decimal("40"), "STBL", "alice", "pool", "pull_1", spender="pool"),
        ])
        assert ledger.execute(tx) == ExecuteResult.APPLIED
        assert ("alice", "pool", "STBL") not in ledger.allowances

    def test_pull_without_allowance_rejected(self):
        ledger = _token_ledger()
        tx = build_transaction(ledger, [
            Move(Decimal("1"), "STBL", "alice", "bob", "pull_1", spender="pool"),
        ])
        assert ledger.execute(tx) == ExecuteResult.REJECTED
        assert "allowance" in ledger.last_rejection
        assert ledger.get_balance("alice", "STBL") == Decimal("1000")

    def test_allowance_aggregated_across_moves(self):
        """Two pulls of 30 against an allowance of 50 are rejected together."""
        ledger = _token_ledger()
        ledger.approve("alice", "pool", "STBL", Decimal("50"))
        tx = build_transaction(ledger, [
            Move(Decimal("30"), "STBL", "alice", "bob", "pull_1", spender="pool"),
            Move(Decimal("30"), "STBL", "alice", "pool", "pull_2", spender="pool"),
        ])
        assert ledger.execute(tx) == ExecuteResult.REJECTED
        assert ledger.get_allowance("alice", "pool", "STBL") == Decimal("50")

    def test_spender_cannot_be_source(self):
        with pytest.raises(ValueError, match="Spender"):
            Move(Decimal("1"), "STBL", "alice", "bob", "pull_1", spender="alice")


class TestTransactionExecution:
    """Tests for execute()."""

    def test_execute_simple_transaction(self):
        ledger = _token_ledger()
        tx = build_transaction(ledger, [Move(Decimal("100"), "STBL", "alice", "bob", "pay_1")])
        assert ledger.execute(tx) == ExecuteResult.APPLIED
        assert ledger.get_balance("alice", "STBL") == Decimal("900")
        assert ledger.get_balance("bob", "STBL") == Decimal("100")

    def test_execute_idempotency(self):
        ledger = _token_ledger()
        tx = build_transaction(ledger, [Move(Decimal("100"), "STBL", "alice", "bob", "pay_1")])
        assert ledger.execute(tx) == ExecuteResult.APPLIED
        assert ledger.execute(tx) == ExecuteResult.ALREADY_APPLIED
        assert ledger.get_balance("bob", "STBL") == Decimal("100")

    def test_execute_reject_below_min_balance(self):
        ledger = _token_ledger()
        tx = build_transaction(ledger, [Move(Decimal("1001"), "STBL", "alice", "bob", "pay_1")])
        assert ledger.execute(tx) == ExecuteResult.REJECTED
        assert "min" in ledger.last_rejection

    def test_execute_reject_unregistered_wallet(self):
        ledger = _token_ledger()
        tx = build_transaction(ledger, [Move(Decimal("1"), "STBL", "alice", "ghost", "pay_1")])
        assert ledger.execute(tx) == ExecuteResult.REJECTED
        assert "ghost" in ledger.last_rejection

    def test_last_rejection_cleared_on_success(self):
        ledger = _token_ledger()
        ledger.execute(build_transaction(ledger, [Move(Decimal("5000"), "STBL", "alice", "bob", "p1")]))
        assert ledger.last_rejection is not None
        ledger.execute(build_transaction(ledger, [Move(Decimal("5"), "STBL", "alice", "bob", "p2")]))
        assert ledger.last_rejection is None

    def test_execute_empty_transaction(self):
        ledger = _token_ledger()
        before = len(ledger.transaction_log)
        assert ledger.execute(build_transaction(ledger, [])) == ExecuteResult.APPLIED
        assert len(ledger.transaction_log) == before

    def test_rejected_units_to_create_are_unregistered(self):
        ledger = _token_ledger()
        record = Unit("REC_1", "Record", UNIT_TYPE_LENDING_AGREEMENT,
                      Decimal("0"), Decimal("0"), 0, (("k", 1),))
        tx = build_transaction(
            ledger,
            [Move(Decimal("5000"), "STBL", "alice", "bob", "p1")],
            units_to_create=(record,),
        )
        assert ledger.execute(tx) == ExecuteResult.REJECTED
        assert "REC_1" not in ledger.list_units()

    def test_stale_state_change_rejected(self):
        ledger = _token_ledger()
        ledger.register_unit(Unit("REC_1", "Record", UNIT_TYPE_LENDING_AGREEMENT,
                                  Decimal("0"), Decimal("0"), 0, (("k", 1),)))
        change = UnitStateChange("REC_1", {"k": 0}, {"k": 2})
        assert ledger.execute(build_transaction(ledger, [], [change])) == ExecuteResult.REJECTED
        assert ledger.last_rejection == "stale state for REC_1"
        assert ledger.get_unit_state("REC_1") == {"k": 1}

    def test_state_change_applied(self):
        ledger = _token_ledger()
        ledger.register_unit(Unit("REC_1", "Record", UNIT_TYPE_LENDING_AGREEMENT,
                                  Decimal("0"), Decimal("0"), 0, (("k", 1),)))
        change = UnitStateChange("REC_1", {"k": 1}, {"k": 2})
        assert ledger.execute(build_transaction(ledger, [], [change])) == ExecuteResult.APPLIED
        assert ledger.get_unit_state("REC_1") == {"k": 2}
        assert ledger.transaction_log[-1].state_changes[0].changed_fields() == {"k": (1, 2)}


class TestClone:
    """Tests for clone()."""

    def test_clone_creates_independent_copy(self):
        ledger = _token_ledger()
        ledger.approve("alice", "pool", "STBL", Decimal("10"))
        cloned = ledger.clone()

        cloned.execute(build_transaction(cloned, [Move(Decimal("100"), "STBL", "alice", "bob", "p1")]))
        cloned.approve("alice", "pool", "STBL", Decimal("99"))

        assert ledger.get_balance("alice", "STBL") == Decimal("1000")
        assert ledger.get_allowance("alice", "pool", "STBL") == Decimal("10")
        assert cloned.get_balance("alice", "STBL") == Decimal("900")

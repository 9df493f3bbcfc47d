"""
conftest.py - Shared pytest fixtures for lending tests

Provides common fixtures used across unit, functional and conformance tests:
- Token ledgers (both tokens registered, parties funded by issuance)
- Protocol setups (fresh, with an open offer, with a matched loan)
- Conservation helpers
"""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, Iterable

from p2p_lending import (
    Ledger, LendingProtocol, create_token_unit, mint,
    SYSTEM_WALLET, SECONDS_PER_MONTH,
)

from tests.fake_view import FakeView


T0 = datetime(2025, 1, 1)
ONE_MONTH = timedelta(seconds=SECONDS_PER_MONTH)

PARTIES = ("alice", "bob", "carol", "dave")


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def make_token_ledger(
    name: str = "test",
    funding: int = 1_000,
    parties: Iterable[str] = PARTIES,
) -> Ledger:
    """Ledger with STBL and CLTR registered and every party funded with both."""
    ledger = Ledger(name, T0, verbose=False, test_mode=True)
    ledger.register_unit(create_token_unit("STBL", "Stable Token"))
    ledger.register_unit(create_token_unit("CLTR", "Collateral Token"))
    ledger.register_wallet("owner")
    for party in parties:
        ledger.register_wallet(party)
        if funding:
            mint(ledger, "STBL", party, funding)
            mint(ledger, "CLTR", party, funding)
    return ledger


def make_protocol(ledger: Ledger, exchange_rate: int = 5000) -> LendingProtocol:
    return LendingProtocol(ledger, "STBL", "CLTR", exchange_rate, owner="owner")


def open_offer(protocol: LendingProtocol, lender: str, principal: int, lock_period: int):
    """Approve and offer in one step."""
    protocol.principal.approve(lender, principal)
    return protocol.offer_lending(lender, principal, lock_period)


def take_offer(protocol: LendingProtocol, borrower: str, lender: str):
    """Approve the quoted collateral and borrow in one step."""
    protocol.collateral.approve(borrower, protocol.quote_collateral(lender))
    return protocol.borrow(borrower, lender)


def pay_back(protocol: LendingProtocol, borrower: str):
    """Approve the quoted repayment and repay in one step."""
    protocol.principal.approve(borrower, protocol.quote_repayment(borrower))
    return protocol.repay(borrower)


def snapshot_balances(ledger: Ledger) -> Dict[tuple, Decimal]:
    """Every (wallet, token) balance, SYSTEM_WALLET excluded."""
    return {
        (wallet, symbol): ledger.get_balance(wallet, symbol)
        for wallet in sorted(ledger.list_wallets())
        if wallet != SYSTEM_WALLET
        for symbol in ("STBL", "CLTR")
    }


def assert_conserved(ledger: Ledger, issued: Dict[str, Decimal]) -> None:
    """Circulating supply of each token equals what was issued."""
    for symbol, expected in issued.items():
        assert ledger.circulating_supply(symbol) == expected, symbol
        assert ledger.total_supply(symbol) == Decimal("0"), symbol


# =============================================================================
# LEDGER FIXTURES
# =============================================================================

@pytest.fixture
def empty_ledger():
    """Fresh ledger with no registrations."""
    return Ledger("test", T0, verbose=False, test_mode=True)


@pytest.fixture
def token_ledger():
    """Both tokens registered; alice, bob, carol and dave hold 1000 of each."""
    return make_token_ledger()


# =============================================================================
# PROTOCOL FIXTURES
# =============================================================================

@pytest.fixture
def protocol(token_ledger):
    """Lending protocol at exchange rate 5000 (5.0), owned by 'owner'."""
    return make_protocol(token_ledger)


@pytest.fixture
def offered(protocol):
    """alice has offered 20 STBL for 6 months."""
    open_offer(protocol, "alice", 20, 6)
    return protocol


@pytest.fixture
def matched(offered):
    """bob has borrowed against alice's offer at T0 (collateral 200 CLTR)."""
    take_offer(offered, "bob", "alice")
    return offered


# =============================================================================
# FAKE VIEW FIXTURES
# =============================================================================

@pytest.fixture
def token_view():
    """FakeView with STBL balances and custody allowances."""
    return FakeView(
        balances={
            "alice": {"STBL": Decimal("100")},
            "bob": {"STBL": Decimal("5")},
            "lending_pool": {"STBL": Decimal("40")},
        },
        allowances={
            ("alice", "lending_pool", "STBL"): Decimal("50"),
        },
        time=T0,
    )

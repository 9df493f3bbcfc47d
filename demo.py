#!/usr/bin/env python3
"""
demo.py - Interactive Tutorial: A Lending Market Step by Step

This is a pedagogical demonstration of peer-to-peer collateralized lending
on the double-entry ledger. Each step builds on the previous one. Press
Enter to advance.

WHAT YOU'LL LEARN:
  1-3:  Setup       - Deploying the market, funding parties, the exchange rate
  4-6:  Repayment   - Offer, match, repay with full-term interest
  7-8:  Default     - Lock periods and collateral claims
  9:    Audit       - Event trail, transaction log, conservation proof

Run:
    python demo.py           # Interactive mode (press Enter for each step)
    python demo.py --quick   # Run all steps without pausing
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
import sys

from p2p_lending import (
    Ledger, Move, build_transaction, TransactionOrigin, OriginType, ExecuteResult,
    LendingProtocol, deploy_lending_market, LendingError,
    SYSTEM_WALLET, SECONDS_PER_MONTH, TOKEN_BASE_UNITS,
)


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class DemoConfig:
    """Configuration for the tutorial. Modify these to experiment."""
    start_time: datetime = datetime(2025, 1, 1, 9, 0, 0)
    exchange_rate: int = 5000          # 5.0 CLTR per STBL

    # Whole tokens; converted to base units with TOKEN_BASE_UNITS
    lender_stable: int = 5_000
    borrower_stable: int = 5_000
    borrower_collateral: int = 25_000

    principal: int = 20
    lock_period: int = 6               # months
    short_lock_period: int = 1


CONFIG = DemoConfig()
E = TOKEN_BASE_UNITS

QUICK_MODE = "--quick" in sys.argv


def wait_for_enter():
    """Pause for user input unless in quick mode."""
    if not QUICK_MODE:
        input("\n[Press Enter to continue...]")


def step_header(number: int, title: str, objective: str):
    """Print a step header with learning objective."""
    print(f"\n{'='*70}")
    print(f"STEP {number}: {title}")
    print(f"{'='*70}")
    print(f"\nObjective: {objective}\n")


def section_header(text: str):
    print(f"\n--- {text} ---\n")


def tokens(quantity) -> str:
    """Format a base-unit quantity as whole tokens."""
    return f"{Decimal(quantity) / E:,.2f}"


def show_balances(protocol: LendingProtocol, *wallets: str):
    ledger = protocol.ledger
    print(f"  {'wallet':<14}{'STBL':>18}{'CLTR':>18}")
    for wallet in wallets:
        stbl = ledger.get_balance(wallet, protocol.principal.symbol)
        cltr = ledger.get_balance(wallet, protocol.collateral.symbol)
        print(f"  {wallet:<14}{tokens(stbl):>18}{tokens(cltr):>18}")


def try_operation(description: str, operation, *args):
    """Run an operation that is expected to be refused and show why."""
    try:
        operation(*args)
        print(f"  ✓ {description}: unexpectedly succeeded")
    except LendingError as e:
        print(f"  ✗ {description}: {type(e).__name__}: {e}")


# ============================================================================
# PHASE 1: SETUP (Steps 1-3)
# ============================================================================

def step_01_deploy() -> LendingProtocol:
    """Deploy both tokens and the protocol."""
    step_header(1, "Deploying the Market",
        "See what a lending market consists of on the ledger.")

    print("""
    A market needs:

      STBL      - the stable token lenders lend and borrowers repay
      CLTR      - the collateral token borrowers post
      custody   - the 'lending_pool' wallet that escrows both
      owner     - the deployer, who alone may change the exchange rate

    Each token's initial supply is issued to the deployer from SYSTEM_WALLET.
    """)

    ledger = Ledger("market", CONFIG.start_time, verbose=False)
    protocol = deploy_lending_market(ledger, "deployer", CONFIG.exchange_rate)
    protocol.verbose = True

    print(f"Protocol: {protocol}")
    print(f"Custody:  {protocol.custody}")
    print(f"Owner:    {protocol.owner}")
    show_balances(protocol, "deployer", SYSTEM_WALLET)
    return protocol


def _transfer(ledger: Ledger, unit: str, source: str, dest: str, quantity: int):
    tx = build_transaction(
        ledger,
        [Move(Decimal(quantity), unit, source, dest, f"funding_{unit}_{dest}")],
        origin=TransactionOrigin(OriginType.USER_ACTION, source),
    )
    assert ledger.execute(tx) == ExecuteResult.APPLIED


def step_02_fund_parties(protocol: LendingProtocol) -> LendingProtocol:
    """Distribute tokens from the deployer."""
    step_header(2, "Funding the Parties",
        "Ordinary transfers put tokens in the hands of a lender and a borrower.")

    ledger = protocol.ledger
    ledger.register_wallet("lender")
    ledger.register_wallet("borrower")
    _transfer(ledger, "STBL", "deployer", "lender", CONFIG.lender_stable * E)
    _transfer(ledger, "CLTR", "deployer", "borrower", CONFIG.borrower_collateral * E)
    _transfer(ledger, "STBL", "deployer", "borrower", CONFIG.borrower_stable * E)

    show_balances(protocol, "deployer", "lender", "borrower")
    return protocol


def step_03_exchange_rate(protocol: LendingProtocol) -> LendingProtocol:
    """Only the owner can move the exchange rate."""
    step_header(3, "The Exchange Rate",
        "Collateral is sized at match time from an owner-controlled rate.")

    print("    collateral = principal * 2 * exchange_rate / 1000\n")
    print(f"Current rate: {protocol.exchange_rate}")

    old = protocol.update_exchange_rate("deployer", 6000)
    print(f"Owner sets rate {old} -> {protocol.exchange_rate}")
    protocol.update_exchange_rate("deployer", CONFIG.exchange_rate)
    print(f"Owner restores rate to {protocol.exchange_rate}")

    try_operation("lender updates the rate", protocol.update_exchange_rate, "lender", 1)
    return protocol


# ============================================================================
# PHASE 2: REPAYMENT (Steps 4-6)
# ============================================================================

def step_04_offer(protocol: LendingProtocol) -> LendingProtocol:
    """The lender approves custody and opens an offer."""
    step_header(4, "Offering a Loan",
        "Principal moves into custody; the agreement becomes ACTIVE.")

    principal = CONFIG.principal * E
    protocol.principal.approve("lender", principal)
    agreement = protocol.offer_lending("lender", principal, CONFIG.lock_period)

    print(f"\n{agreement.agreement_id}: {tokens(agreement.principal)} STBL "
          f"for {agreement.lock_period} months, status {agreement.status.value}")
    show_balances(protocol, "lender", protocol.custody)

    section_header("One agreement per lender")
    protocol.principal.approve("lender", principal)
    try_operation("second offer", protocol.offer_lending, "lender", principal, CONFIG.lock_period)
    protocol.principal.approve("lender", 0)
    return protocol


def step_05_borrow(protocol: LendingProtocol) -> LendingProtocol:
    """The borrower posts collateral and receives the principal."""
    step_header(5, "Matching the Offer",
        "Collateral moves into custody and principal moves to the borrower, atomically.")

    collateral = protocol.quote_collateral("lender")
    print(f"Quoted collateral: {tokens(collateral)} CLTR")
    protocol.collateral.approve("borrower", collateral)
    filled = protocol.borrow("borrower", "lender")

    print(f"\n{filled.agreement_id}: status {filled.status.value}, "
          f"borrowed at {filled.borrowing_timestamp.isoformat()}")
    show_balances(protocol, "borrower", protocol.custody)

    section_header("One agreement per borrower")
    protocol.collateral.approve("borrower", collateral)
    try_operation("second borrow", protocol.borrow, "borrower", "lender")
    protocol.collateral.approve("borrower", 0)
    return protocol


def step_06_repay(protocol: LendingProtocol) -> LendingProtocol:
    """Principal plus full-term interest goes to the lender."""
    step_header(6, "Repaying",
        "Interest is charged for the whole lock period, whenever repayment happens.")

    print("    interest = (principal * 5000 / 100000) * lock_period\n")
    try_operation("deployer repays", protocol.repay, "deployer")

    due = protocol.quote_repayment("borrower")
    print(f"\nTotal due: {tokens(due)} STBL")
    protocol.principal.approve("borrower", due)
    closed = protocol.repay("borrower")

    print(f"\n{closed.agreement_id}: closed ({closed.closed_reason.value})")
    show_balances(protocol, "lender", "borrower", protocol.custody)
    return protocol


# ============================================================================
# PHASE 3: DEFAULT (Steps 7-8)
# ============================================================================

def step_07_lock_period(protocol: LendingProtocol) -> LendingProtocol:
    """A short loan whose collateral stays locked until expiry."""
    step_header(7, "Lock Periods",
        "Collateral cannot be claimed until lock_period 30-day months have passed.")

    principal = CONFIG.principal * E
    protocol.principal.approve("lender", principal)
    protocol.offer_lending("lender", principal, CONFIG.short_lock_period)
    protocol.collateral.approve("borrower", protocol.quote_collateral("lender"))
    protocol.borrow("borrower", "lender")

    expiry = protocol.lock_expiry("lender")
    print(f"Locked until {expiry.isoformat()}")
    try_operation("claim right away", protocol.claim_collateral, "lender")
    return protocol


def step_08_claim(protocol: LendingProtocol) -> LendingProtocol:
    """The lender takes the collateral once the lock expires."""
    step_header(8, "Claiming Collateral",
        "After expiry an unrepaid loan ends with the lender holding the collateral.")

    ledger = protocol.ledger
    expiry = protocol.lock_expiry("lender")
    ledger.advance_time(expiry + timedelta(seconds=1))
    print(f"Time advanced to {ledger.current_time.isoformat()}")

    try_operation("deployer claims", protocol.claim_collateral, "deployer")
    closed = protocol.claim_collateral("lender")

    print(f"\n{closed.agreement_id}: closed ({closed.closed_reason.value})")
    show_balances(protocol, "lender", "borrower", protocol.custody)
    return protocol


# ============================================================================
# PHASE 4: AUDIT (Step 9)
# ============================================================================

def step_09_audit(protocol: LendingProtocol):
    """Everything that happened is on record and nothing was created or destroyed."""
    step_header(9, "Audit",
        "Events, the transaction log and conservation tell the same story.")

    ledger = protocol.ledger

    section_header("Event trail")
    for event in protocol.events:
        print(f"  {event.timestamp.isoformat()}  {event.event_type:<22} {event.agreement_id or ''}")

    section_header("Transaction log")
    for tx in ledger.transaction_log:
        print(f"  #{tx.sequence_number:<3} {tx.origin.event_type or tx.origin.origin_type.value:<20} "
              f"{len(tx.moves)} moves  intent={tx.intent_id}")

    section_header("Conservation")
    for symbol in (protocol.principal.symbol, protocol.collateral.symbol):
        print(f"  {symbol}: circulating {tokens(ledger.circulating_supply(symbol))}, "
              f"sum over all wallets {ledger.total_supply(symbol)}")
    report = ledger.verify_double_entry({
        protocol.principal.symbol: Decimal(0),
        protocol.collateral.symbol: Decimal(0),
    })
    print(f"\n  Double entry valid: {report['valid']}")


# ============================================================================
# MAIN
# ============================================================================

def main():
    """Run the complete tutorial."""
    print("=" * 70)
    print("       P2P LENDING - INTERACTIVE TUTORIAL")
    print("=" * 70)
    print(f"""
    Welcome! This tutorial walks one lender and one borrower through
    two loans: one repaid, one defaulted.

    One 30-day month is {SECONDS_PER_MONTH:,} seconds.
    Quantities are shown in whole tokens (base units / 10^18).
    """)

    if QUICK_MODE:
        print("Running in QUICK mode (no pauses)")
    else:
        print("Running in INTERACTIVE mode (press Enter to advance)")

    wait_for_enter()

    protocol = step_01_deploy()
    wait_for_enter()

    protocol = step_02_fund_parties(protocol)
    wait_for_enter()

    protocol = step_03_exchange_rate(protocol)
    wait_for_enter()

    protocol = step_04_offer(protocol)
    wait_for_enter()

    protocol = step_05_borrow(protocol)
    wait_for_enter()

    protocol = step_06_repay(protocol)
    wait_for_enter()

    protocol = step_07_lock_period(protocol)
    wait_for_enter()

    protocol = step_08_claim(protocol)
    wait_for_enter()

    step_09_audit(protocol)

    print("\n" + "=" * 70)
    print("       TUTORIAL COMPLETE!")
    print("=" * 70)
    print("""
    You've learned:

      - Custody escrows principal while an offer is open
      - Matching swaps collateral for principal in one transaction
      - Repayment always charges the full term
      - Collateral is claimable only once the lock expires
      - Failed operations change nothing

    Next steps:
      - See p2p_lending/protocol.py for the operations
      - Run tests: pytest tests/
    """)


if __name__ == "__main__":
    main()

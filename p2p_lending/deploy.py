"""
deploy.py - Market Deployment

Sets up a complete lending market on a ledger: a stable token lent by
lenders, a collateral token posted by borrowers, the initial supply of
each minted to the deployer, and a LendingProtocol owned by the deployer.
"""
from __future__ import annotations

from .ledger import Ledger
from .assets import create_token_unit, mint, INITIAL_TOKEN_SUPPLY, TOKEN_BASE_UNITS
from .protocol import LendingProtocol, DEFAULT_CUSTODY_WALLET
from .terms import DEFAULT_INTEREST_RATE


STABLE_TOKEN_SYMBOL = "STBL"
COLLATERAL_TOKEN_SYMBOL = "CLTR"


def deploy_lending_market(
    ledger: Ledger,
    deployer: str,
    exchange_rate: int,
    stable_symbol: str = STABLE_TOKEN_SYMBOL,
    collateral_symbol: str = COLLATERAL_TOKEN_SYMBOL,
    initial_supply: int = INITIAL_TOKEN_SUPPLY * TOKEN_BASE_UNITS,
    custody: str = DEFAULT_CUSTODY_WALLET,
    interest_rate: int = DEFAULT_INTEREST_RATE,
) -> LendingProtocol:
    """
    Register both tokens, fund the deployer and create the protocol.

    The deployer wallet is registered if needed and becomes the owner of
    the exchange rate. initial_supply is in base units of each token.

    Example:
        ledger = Ledger("market", datetime(2025, 1, 1), verbose=False)
        protocol = deploy_lending_market(ledger, "deployer", exchange_rate=5000)
        ledger.get_balance("deployer", "STBL")   # 10**26
    """
    ledger.register_unit(create_token_unit(stable_symbol, "Stable Token"))
    ledger.register_unit(create_token_unit(collateral_symbol, "Collateral Token"))
    if not ledger.is_registered(deployer):
        ledger.register_wallet(deployer)

    mint(ledger, stable_symbol, deployer, initial_supply)
    mint(ledger, collateral_symbol, deployer, initial_supply)

    return LendingProtocol(
        ledger,
        principal_symbol=stable_symbol,
        collateral_symbol=collateral_symbol,
        exchange_rate=exchange_rate,
        owner=deployer,
        custody=custody,
        interest_rate=interest_rate,
    )

"""
conftest.py - Shared pytest fixtures for stableledger tests

Provides:
- A logical clock and two 8-decimal aggregators (WETH at $4000, WBTC at $1000)
- Collateral tokens and the engine-owned liability token
- A two-collateral ledger, and one with alice already holding a position
"""

import pytest
from datetime import datetime

from stableledger import (
    CollateralLedger, LogicalClock, MockAggregator, StableToken,
    StaleCheckedFeed, Token, to_wei,
)

from tests.fakes import ENGINE, fund_and_approve


ETH_USD = 4000 * 10 ** 8
BTC_USD = 1000 * 10 ** 8


@pytest.fixture
def clock():
    return LogicalClock(datetime(2024, 1, 1))


@pytest.fixture
def eth_aggregator(clock):
    return MockAggregator(decimals=8, initial_answer=ETH_USD, clock=clock)


@pytest.fixture
def btc_aggregator(clock):
    return MockAggregator(decimals=8, initial_answer=BTC_USD, clock=clock)


@pytest.fixture
def weth():
    return Token("WETH", "Wrapped Ether")


@pytest.fixture
def wbtc():
    return Token("WBTC", "Wrapped Bitcoin")


@pytest.fixture
def dsc():
    return StableToken(owner=ENGINE)


@pytest.fixture
def ledger(weth, wbtc, dsc, eth_aggregator, btc_aggregator):
    return CollateralLedger(
        [weth, wbtc],
        [StaleCheckedFeed(eth_aggregator), StaleCheckedFeed(btc_aggregator)],
        dsc,
        address=ENGINE,
        name="test",
    )


@pytest.fixture
def alice_position(ledger, weth):
    """alice has deposited 10 WETH and minted 100 DSC (health factor 200)."""
    fund_and_approve(weth, "alice", to_wei(10))
    ledger.deposit_and_mint("alice", "WETH", to_wei(10), to_wei(100))
    return ledger

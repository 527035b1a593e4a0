#!/usr/bin/env python3
"""
demo.py - Interactive Tutorial: Learn the Stablecoin Engine Step by Step

Each step builds on the previous one. Press Enter to advance.

WHAT YOU'LL LEARN:
  1-3:  Foundation   - Feeds, tokens, the ledger and valuation
  4-6:  Positions    - Deposit, mint, the health factor and its limit
  7-8:  Stress       - A price crash and a liquidation
  9:    Simulation   - Replaying a random price path

Run:
    python demo.py           # Interactive mode (press Enter for each step)
    python demo.py --quick   # Run all steps without pausing
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
import sys

from stableledger import (
    CollateralLedger, LogicalClock, MockAggregator, StaleCheckedFeed,
    StableToken, Token, EngineError,
    PricePathGenerator, run_stress_scenario,
    find_liquidatable_accounts, compute_liquidation_quote,
    to_wei, from_wei,
)


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class DemoConfig:
    """Configuration for the tutorial. Modify these to experiment."""
    start_time: datetime = datetime(2025, 1, 1, 9, 0, 0)
    eth_price: int = 4000
    btc_price: int = 1000
    crash_price: int = 18
    seed: int = 11


CONFIG = DemoConfig()
QUICK = "--quick" in sys.argv
ENGINE = "engine"


def wait_for_enter():
    if not QUICK:
        input("\n[Press Enter to continue]")


def step_header(number: int, title: str, objective: str):
    print(f"\n{'='*70}")
    print(f"STEP {number}: {title}")
    print(f"{'='*70}")
    print(f"\nObjective: {objective}\n")


def show_account(ledger: CollateralLedger, account: str):
    info = ledger.account_information(account)
    hf = ledger.health_factor(account)
    hf_text = "∞" if info.liability_minted == 0 else f"{from_wei(hf):.4f}"
    print(f"  {account:<10} collateral ${from_wei(info.collateral_value_usd):>12,.2f}"
          f"   owes ${from_wei(info.liability_minted):>10,.2f}   health factor {hf_text}")


# ============================================================================
# STEPS
# ============================================================================

def step_01_feeds():
    step_header(1, "Price feeds", "Publish prices through round-based aggregators")
    clock = LogicalClock(CONFIG.start_time)
    eth = MockAggregator(decimals=8, initial_answer=CONFIG.eth_price * 10**8, clock=clock)
    btc = MockAggregator(decimals=8, initial_answer=CONFIG.btc_price * 10**8, clock=clock)
    print(f">>> eth = MockAggregator(decimals=8, initial_answer={CONFIG.eth_price} * 10**8)")
    print(f"Latest round: {eth.latest_round_data()}")
    print("\nThe engine only sees StaleCheckedFeed, which rejects rounds older than 3 hours.")
    wait_for_enter()
    return clock, eth, btc


def step_02_ledger(eth, btc):
    step_header(2, "The ledger", "Register collateral tokens with their feeds")
    weth, wbtc = Token("WETH", "Wrapped Ether"), Token("WBTC", "Wrapped Bitcoin")
    dsc = StableToken(owner=ENGINE)
    ledger = CollateralLedger([weth, wbtc], [StaleCheckedFeed(eth), StaleCheckedFeed(btc)],
                              dsc, address=ENGINE, name="tutorial")
    print(">>> ledger = CollateralLedger([weth, wbtc], [eth_feed, btc_feed], dsc)")
    print(f"Collateral types: {ledger.collateral_tokens}")
    print(f"Threshold: {ledger.liquidation_threshold}%   Bonus: {ledger.liquidation_bonus}%")
    wait_for_enter()
    return ledger, weth, wbtc, dsc


def step_03_valuation(ledger):
    step_header(3, "Valuation", "Convert between token amounts and USD")
    print(f"15 WETH  = ${from_wei(ledger.usd_value('WETH', to_wei(15))):,}")
    print(f"$100     = {from_wei(ledger.token_amount_for_usd('WETH', to_wei(100)))} WETH")
    wait_for_enter()


def step_04_deposit_and_mint(ledger, weth):
    step_header(4, "Deposit and mint", "Borrow stablecoins against collateral")
    weth.mint("alice", to_wei(10))
    weth.approve("alice", ENGINE, to_wei(10))
    ledger.deposit_and_mint("alice", "WETH", to_wei(10), to_wei(100))
    print('>>> ledger.deposit_and_mint("alice", "WETH", to_wei(10), to_wei(100))')
    show_account(ledger, "alice")
    wait_for_enter()


def step_05_limit(ledger):
    step_header(5, "The minting limit", "Minting below health factor 1.0 is rejected")
    try:
        ledger.mint("alice", to_wei(20_000))
    except EngineError as exc:
        print(f"Rejected: {type(exc).__name__}: {exc}")
    show_account(ledger, "alice")
    wait_for_enter()


def step_06_liquidator(ledger, wbtc, dsc):
    step_header(6, "A liquidator", "Someone with stablecoins to repay other people's debt")
    wbtc.mint("keeper", to_wei(100))
    wbtc.approve("keeper", ENGINE, to_wei(100))
    ledger.deposit_and_mint("keeper", "WBTC", to_wei(100), to_wei(5_000))
    dsc.approve("keeper", ENGINE, to_wei(5_000))
    show_account(ledger, "keeper")
    wait_for_enter()


def step_07_crash(ledger, eth):
    step_header(7, "Crash", f"WETH falls to ${CONFIG.crash_price}")
    eth.update_answer(CONFIG.crash_price * 10**8)
    show_account(ledger, "alice")
    print(f"Liquidatable: {find_liquidatable_accounts(ledger)}")
    wait_for_enter()


def step_08_liquidate(ledger, weth):
    step_header(8, "Liquidation", "Repay alice's debt for her collateral plus 10%")
    quote = compute_liquidation_quote(ledger, "WETH", "alice", to_wei(100))
    print(f"Seizure: {from_wei(quote.token_amount_from_debt_covered)} + "
          f"{from_wei(quote.bonus_collateral)} bonus WETH")
    ledger.liquidate("keeper", "WETH", "alice", to_wei(100))
    show_account(ledger, "alice")
    print(f"keeper now holds {from_wei(weth.balance_of('keeper'))} WETH")
    wait_for_enter()


def step_09_simulation(ledger, clock, eth, btc):
    step_header(9, "Stress simulation", "Replay two days of volatile prices")
    eth.update_answer(CONFIG.eth_price * 10**8)
    generator = PricePathGenerator(["WETH", "WBTC"], seed=CONFIG.seed)
    path = generator.generate(
        {"WETH": float(CONFIG.eth_price), "WBTC": float(CONFIG.btc_price)},
        n_steps=48, start=clock.now(), step=timedelta(hours=1),
        drift={"WETH": 0.0, "WBTC": 0.0}, volatility={"WETH": 1.2, "WBTC": 0.8},
    )
    report = run_stress_scenario(ledger, {"WETH": eth, "WBTC": btc}, path, clock, liquidator="keeper")
    print(f"Steps:                 {len(report.steps)}")
    print(f"Min collateralization: {from_wei(report.min_collateralization):.2f}x")
    print(f"Insolvent steps:       {len(report.insolvent_steps)}")
    print(f"Liquidations:          {len(report.successful_liquidations)}/{len(report.liquidations)}")
    print(f"Solvency check:        {ledger.verify_solvency()['valid']}")


def main():
    clock, eth, btc = step_01_feeds()
    ledger, weth, wbtc, dsc = step_02_ledger(eth, btc)
    step_03_valuation(ledger)
    step_04_deposit_and_mint(ledger, weth)
    step_05_limit(ledger)
    step_06_liquidator(ledger, wbtc, dsc)
    step_07_crash(ledger, eth)
    step_08_liquidate(ledger, weth)
    step_09_simulation(ledger, clock, eth, btc)
    print("\nTutorial complete.")


if __name__ == "__main__":
    main()

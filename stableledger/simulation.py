"""
simulation.py - Price stress scenarios for a CollateralLedger

Drives a ledger's aggregators along simulated price paths and records how
system collateralization evolves and whether liquidations keep up.

Classes:
- PricePath: Timestamps plus one USD price array per collateral type
- PricePathGenerator: Correlated geometric Brownian motion paths (numpy)
- StressStep, LiquidationAttempt, StressReport: Scenario output

Functions:
- price_to_answer: USD float price -> integer aggregator answer
- run_stress_scenario: Walk a path, optionally liquidating unsafe accounts

Floats exist only on the path side. Everything pushed into the ledger is
converted to fixed-point integers first.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Mapping, Optional, Sequence
import logging

import numpy as np

from .core import EngineError, PRECISION, from_wei, to_wei
from .engine import CollateralLedger
from .liquidation import LiquidationResult, find_liquidatable_accounts
from .oracle import LogicalClock, MockAggregator

logger = logging.getLogger(__name__)

SECONDS_PER_YEAR = 365 * 24 * 3600


@dataclass
class PricePath:
    """A simulated price path for every collateral symbol."""

    timestamps: List[datetime]
    prices: Dict[str, np.ndarray]  # symbol -> USD price per timestamp

    def __len__(self) -> int:
        return len(self.timestamps)

    def prices_at(self, index: int) -> Dict[str, float]:
        return {symbol: float(series[index]) for symbol, series in self.prices.items()}


class PricePathGenerator:
    """
    Generates correlated GBM price paths.

    Example:
        gen = PricePathGenerator(["WETH", "WBTC"], seed=7)
        path = gen.generate({"WETH": 4000.0, "WBTC": 60000.0}, n_steps=48,
                            start=clock.now(), step=timedelta(hours=1),
                            drift={"WETH": 0.0, "WBTC": 0.0},
                            volatility={"WETH": 0.8, "WBTC": 0.6})
    """

    def __init__(self, symbols: Sequence[str], seed: Optional[int] = None,
                 correlation_matrix: Optional[np.ndarray] = None):
        self.symbols = list(symbols)
        self.n_assets = len(self.symbols)
        self.rng = np.random.default_rng(seed)

        if correlation_matrix is None:
            # Crypto collateral moves together
            self.correlation_matrix = np.eye(self.n_assets) * 0.3 + 0.7
            np.fill_diagonal(self.correlation_matrix, 1.0)
        else:
            self.correlation_matrix = np.asarray(correlation_matrix, dtype=float)
            if self.correlation_matrix.shape != (self.n_assets, self.n_assets):
                raise ValueError(
                    f"Correlation matrix must be {self.n_assets}x{self.n_assets}, "
                    f"got {self.correlation_matrix.shape}"
                )

        self.cholesky = np.linalg.cholesky(self.correlation_matrix)

    def generate(self, initial_prices: Mapping[str, float], n_steps: int, start: datetime,
                 step: timedelta, drift: Mapping[str, float],
                 volatility: Mapping[str, float]) -> PricePath:
        """
        Generate one path of n_steps moves after the initial prices.

        Args:
            initial_prices: Starting USD price per symbol
            n_steps: Number of moves (the path has n_steps + 1 points)
            start: Timestamp of the initial prices
            step: Time between points
            drift: Annualized drift per symbol
            volatility: Annualized volatility per symbol

        Returns:
            PricePath with timestamps start, start + step, ...
        """
        if n_steps < 0:
            raise ValueError(f"n_steps cannot be negative, got {n_steps}")
        dt = step.total_seconds() / SECONDS_PER_YEAR

        normals = self.rng.standard_normal((n_steps, self.n_assets)) @ self.cholesky.T

        prices = {}
        for i, symbol in enumerate(self.symbols):
            s0 = initial_prices[symbol]
            sigma = volatility[symbol]
            mu = drift[symbol]
            log_returns = (mu - 0.5 * sigma ** 2) * dt + sigma * np.sqrt(dt) * normals[:, i]
            prices[symbol] = s0 * np.exp(np.concatenate(([0.0], np.cumsum(log_returns))))

        timestamps = [start + step * k for k in range(n_steps + 1)]
        return PricePath(timestamps=timestamps, prices=prices)


def price_to_answer(price: float, decimals: int) -> int:
    """
    Convert a USD price to an aggregator answer with `decimals` decimals.

    Example:
        price_to_answer(4000.0, 8) == 4000 * 10**8
    """
    return to_wei(Decimal(repr(float(price))), decimals)


@dataclass(frozen=True, slots=True)
class LiquidationAttempt:
    """One liquidation tried during a scenario: its result, or the error that stopped it."""
    timestamp: datetime
    user: str
    token: str
    debt_to_cover: int
    result: Optional[LiquidationResult] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.result is not None


@dataclass(frozen=True, slots=True)
class StressStep:
    """System state after the prices of one path point were published."""
    timestamp: datetime
    prices: Dict[str, float]
    collateral_value: int
    liability_supply: int
    collateralization_ratio: int
    liquidatable: List[str]


@dataclass
class StressReport:
    steps: List[StressStep] = field(default_factory=list)
    liquidations: List[LiquidationAttempt] = field(default_factory=list)

    @property
    def min_collateralization(self) -> int:
        """Lowest system collateral / liability ratio seen (18 decimals)."""
        return min(step.collateralization_ratio for step in self.steps)

    @property
    def insolvent_steps(self) -> List[StressStep]:
        """Steps where outstanding liability exceeded the value of all collateral."""
        return [step for step in self.steps if step.collateralization_ratio < PRECISION]

    @property
    def successful_liquidations(self) -> List[LiquidationAttempt]:
        return [attempt for attempt in self.liquidations if attempt.succeeded]


def _largest_collateral(ledger: CollateralLedger, account: str) -> Optional[str]:
    best, best_value = None, 0
    for token in ledger.collateral_tokens:
        value = ledger.usd_value(token, ledger.collateral_balance(account, token))
        if value > best_value:
            best, best_value = token, value
    return best


def run_stress_scenario(ledger: CollateralLedger, aggregators: Mapping[str, MockAggregator],
                        path: PricePath, clock: LogicalClock, liquidator: Optional[str] = None,
                        cover_fraction: Decimal = Decimal("0.5")) -> StressReport:
    """
    Replay a price path against a ledger.

    At every point the clock is moved to the point's timestamp, each symbol's
    price is published to its aggregator, and the system's solvency is
    recorded. If a liquidator is given, every unsafe account is liquidated
    for cover_fraction of its liability against its largest collateral
    holding. Failed liquidations are recorded, not raised.

    The liquidator must hold enough liability tokens and have approved the
    ledger's address for them.

    Returns:
        StressReport with one StressStep per path point
    """
    if not 0 < cover_fraction <= 1:
        raise ValueError(f"cover_fraction must be in (0, 1], got {cover_fraction}")
    cover_scale = to_wei(cover_fraction)
    report = StressReport()

    for index, timestamp in enumerate(path.timestamps):
        clock.advance_to(timestamp)
        prices = path.prices_at(index)
        for symbol, price in prices.items():
            aggregator = aggregators[symbol]
            aggregator.update_answer(price_to_answer(price, aggregator.decimals))

        if liquidator is not None:
            for user in find_liquidatable_accounts(ledger):
                token = _largest_collateral(ledger, user)
                debt = ledger.liability_minted(user) * cover_scale // PRECISION
                if token is None or debt == 0:
                    continue
                try:
                    result = ledger.liquidate(liquidator, token, user, debt)
                except EngineError as exc:
                    logger.debug("Liquidation of %s at %s failed: %s", user, timestamp, exc)
                    report.liquidations.append(LiquidationAttempt(
                        timestamp, user, token, debt, error=f"{type(exc).__name__}: {exc}"
                    ))
                else:
                    report.liquidations.append(LiquidationAttempt(
                        timestamp, user, token, debt, result=result
                    ))

        solvency = ledger.verify_solvency()
        report.steps.append(StressStep(
            timestamp=timestamp,
            prices=prices,
            collateral_value=solvency['collateral_value'],
            liability_supply=solvency['liability_supply'],
            collateralization_ratio=solvency['collateralization_ratio'],
            liquidatable=find_liquidatable_accounts(ledger),
        ))

    if report.steps:
        logger.info("Stress scenario on %s: %d steps, min collateralization %s, "
                    "%d insolvent steps, %d/%d liquidations succeeded",
                    ledger.name, len(report.steps), from_wei(report.min_collateralization),
                    len(report.insolvent_steps), len(report.successful_liquidations),
                    len(report.liquidations))
    return report

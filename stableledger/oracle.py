"""
oracle.py - Price feed infrastructure for collateral valuation

Provides the round-based price sources the engine values collateral with.

Classes:
- LogicalClock: Forward-only logical time shared by feeds and simulations
- RoundData: One aggregator round
- MockAggregator: In-memory round-based aggregator (answers scaled by `decimals`)
- StaleCheckedFeed: PriceFeed adapter that rejects stale or non-positive answers

The engine only ever talks to a PriceFeed. Staleness is entirely the adapter's
responsibility: a stale quote raises StalePrice and the engine propagates it.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Optional
import logging

from .core import (
    PriceQuote,
    DEFAULT_ORACLE_TIMEOUT, FEED_DECIMALS,
    InvalidPrice, StalePrice,
)

logger = logging.getLogger(__name__)


class LogicalClock:
    """
    Logical clock for feeds and simulations.

    Time can only move forward, never backward.
    """

    def __init__(self, initial_time: Optional[datetime] = None):
        self._current_time = initial_time or datetime(1970, 1, 1)

    def now(self) -> datetime:
        """Current logical time."""
        return self._current_time

    def advance(self, delta: timedelta) -> datetime:
        """Move the clock forward by delta and return the new time."""
        if delta < timedelta(0):
            raise ValueError(f"Cannot move time backwards by {delta}")
        self._current_time = self._current_time + delta
        return self._current_time

    def advance_to(self, new_time: datetime) -> None:
        """
        Advance the clock to new_time.

        Raises:
            ValueError: If new_time is before the current time
        """
        if new_time < self._current_time:
            raise ValueError(
                f"Cannot move time backwards: {new_time} < {self._current_time}"
            )
        self._current_time = new_time

    def __repr__(self):
        return f"LogicalClock({self._current_time.isoformat()})"


@dataclass(frozen=True, slots=True)
class RoundData:
    """
    One aggregator round.

    Attributes:
        round_id: Monotonically increasing round identifier
        answer: Price scaled by the aggregator's decimals
        started_at: When the round started (None if never started)
        updated_at: When the answer was written (None if incomplete)
        answered_in_round: Round in which the answer was computed
    """
    round_id: int
    answer: int
    started_at: Optional[datetime]
    updated_at: Optional[datetime]
    answered_in_round: int


class MockAggregator:
    """
    In-memory round-based price aggregator.

    Every update opens a new round with a strictly larger round id.
    Historical rounds remain queryable via get_round_data().
    """

    def __init__(self, decimals: int = FEED_DECIMALS, initial_answer: int = 0,
                 clock: Optional[LogicalClock] = None):
        """
        Initialize the aggregator and publish the first round.

        Args:
            decimals: Number of decimals in every answer
            initial_answer: First price (e.g., 4000 * 10**8 for $4000 at 8 decimals)
            clock: Source of round timestamps (a fresh LogicalClock if None)
        """
        self._decimals = decimals
        self.clock = clock or LogicalClock()
        self.rounds: Dict[int, RoundData] = {}
        self.latest_round = 0
        self.update_answer(initial_answer)

    @property
    def decimals(self) -> int:
        return self._decimals

    def update_answer(self, answer: int) -> RoundData:
        """Publish a new answer stamped with the clock's current time."""
        now = self.clock.now()
        return self.update_round_data(self.latest_round + 1, answer, now, now)

    def update_round_data(self, round_id: int, answer: int,
                          updated_at: Optional[datetime],
                          started_at: Optional[datetime],
                          answered_in_round: Optional[int] = None) -> RoundData:
        """
        Publish an explicit round.

        Raises:
            ValueError: If round_id does not increase
        """
        if round_id <= self.latest_round:
            raise ValueError(
                f"Round ids must increase: {round_id} <= {self.latest_round}"
            )
        data = RoundData(
            round_id=round_id,
            answer=answer,
            started_at=started_at,
            updated_at=updated_at,
            answered_in_round=round_id if answered_in_round is None else answered_in_round,
        )
        self.rounds[round_id] = data
        self.latest_round = round_id
        return data

    def latest_round_data(self) -> RoundData:
        return self.rounds[self.latest_round]

    def get_round_data(self, round_id: int) -> RoundData:
        if round_id not in self.rounds:
            raise KeyError(f"No data for round {round_id}")
        return self.rounds[round_id]

    def __repr__(self):
        latest = self.latest_round_data()
        return f"MockAggregator(round={latest.round_id}, answer={latest.answer}, decimals={self._decimals})"


class StaleCheckedFeed:
    """
    PriceFeed adapter over a round-based aggregator.

    Rejects a round when:
    - it was never completed (updated_at unset)
    - its answer was carried over from an earlier round (answered_in_round < round_id)
    - it is older than `timeout` relative to the clock
    - its answer is not positive
    """

    def __init__(self, aggregator: MockAggregator, clock: Optional[LogicalClock] = None,
                 timeout: timedelta = DEFAULT_ORACLE_TIMEOUT):
        self.aggregator = aggregator
        self.clock = clock or aggregator.clock
        self.timeout = timeout

    @property
    def decimals(self) -> int:
        return self.aggregator.decimals

    def latest_validated_price(self) -> PriceQuote:
        """
        Return the latest round as a PriceQuote.

        Raises:
            StalePrice: If the round is incomplete, carried over, or too old
            InvalidPrice: If the answer is zero or negative
        """
        data = self.aggregator.latest_round_data()
        if data.updated_at is None or data.answered_in_round < data.round_id:
            raise StalePrice(f"Round {data.round_id} is incomplete")

        age = self.clock.now() - data.updated_at
        if age > self.timeout:
            logger.warning("Rejected round %d: %s old (timeout %s)",
                           data.round_id, age, self.timeout)
            raise StalePrice(
                f"Round {data.round_id} is {age} old, exceeding {self.timeout}"
            )
        if data.answer <= 0:
            raise InvalidPrice(f"Round {data.round_id} reported {data.answer}")

        return PriceQuote(price=data.answer, timestamp=data.updated_at, round_id=data.round_id)

    def __repr__(self):
        return f"StaleCheckedFeed({self.aggregator!r}, timeout={self.timeout})"

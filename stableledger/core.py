"""
Core types and pure functions for the stablecoin accounting engine.

This module provides the foundational data structures and protocols:
1. Constants: fixed-point scales and the default risk parameters
2. Protocols: EngineView for read-only access, collaborator interfaces
3. Immutable data structures: events, price quotes, account information
4. Exceptions: EngineError and the domain-specific error types
5. Checked arithmetic and fixed-point conversion helpers

All amounts handled by the engine are integers in the smallest denomination
(18-decimal fixed point). Decimal is only used at the human boundary.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_DOWN
from typing import (
    Any, Dict, List, Mapping, Optional, Protocol, Sequence, runtime_checkable
)


# ============================================================================
# CONSTANTS
# ============================================================================

# USD values and token amounts carry 18 fractional decimal digits.
PRECISION_DECIMALS = 18
PRECISION = 10 ** PRECISION_DECIMALS

# Scale-up applied to a conventional 8-decimal price feed answer.
FEED_DECIMALS = 8
ADDITIONAL_FEED_PRECISION = 10 ** (PRECISION_DECIMALS - FEED_DECIMALS)

# Collateral is valued at 50% for solvency purposes (200% overcollateralized).
LIQUIDATION_THRESHOLD = 50
LIQUIDATION_PRECISION = 100

# Liquidators receive a 10% collateral premium on the debt they cover.
LIQUIDATION_BONUS = 10

MIN_HEALTH_FACTOR = PRECISION

# Upper bound of every stored quantity; also the health factor of a debt-free account.
MAX_UINT256 = 2 ** 256 - 1
MAX_HEALTH_FACTOR = MAX_UINT256

# Quotes older than this are rejected by the oracle adapter.
DEFAULT_ORACLE_TIMEOUT = timedelta(hours=3)


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Mapping from collateral token identifier to quantity held by one account.
CollateralBalances = Dict[str, int]

# Mapping from account to quantity of a single collateral token.
Positions = Dict[str, int]


# ============================================================================
# EXCEPTIONS
# ============================================================================

class EngineError(Exception):
    """Base exception for all engine-related errors."""
    pass


class InvalidAmount(EngineError):
    """Raised when an amount parameter is not a positive integer where one is required."""
    pass


class UnknownCollateralType(EngineError):
    """Raised when an operation references a collateral type with no registered price feed."""
    pass


class DuplicateCollateralType(EngineError):
    """Raised when the same collateral type is registered twice at construction."""
    pass


class ConstructorArityMismatch(EngineError):
    """Raised when collateral tokens and price feeds are given in unequal numbers."""
    pass


class TransferFailed(EngineError):
    """Raised when a token collaborator reports failure for a transfer, mint or burn."""
    pass


class MintFailed(TransferFailed):
    """Raised when the liability token declines to mint."""
    pass


class InsufficientBalance(EngineError):
    """Raised when a subtraction would take a recorded balance below zero."""
    pass


class InsufficientAllowance(EngineError):
    """Raised when a spender pulls more than the owner approved."""
    pass


class NotOwner(EngineError):
    """Raised when a restricted token operation is invoked by a non-owner."""
    pass


class ArithmeticOverflow(EngineError):
    """Raised when an addition would exceed MAX_UINT256."""
    pass


class ReentrantCall(EngineError):
    """Raised when a mutating entry point is invoked while another is in progress."""
    pass


class HealthFactorTooLow(EngineError):
    """
    Raised when an operation would leave the acting account below the minimum
    health factor.

    Attributes:
        health_factor: The computed health factor (18-decimal fixed point).
        account: The account whose position is broken, when known.
    """

    def __init__(self, health_factor: int, account: Optional[str] = None):
        self.health_factor = health_factor
        self.account = account
        who = f" for {account}" if account else ""
        super().__init__(
            f"Health factor {from_wei(health_factor)}{who} is below the minimum"
        )


class HealthFactorOK(EngineError):
    """Raised when liquidation is attempted on an account that is not unsafe."""
    pass


class HealthFactorNotImproved(EngineError):
    """Raised when a liquidation does not strictly improve the target's health factor."""
    pass


class OracleError(EngineError):
    """Base class for price feed failures."""
    pass


class StalePrice(OracleError):
    """Raised when the latest round is older than the staleness bound or incomplete."""
    pass


class InvalidPrice(OracleError):
    """Raised when a feed reports a non-positive price."""
    pass


# ============================================================================
# CORE DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class PriceQuote:
    """
    A validated price observation.

    Attributes:
        price: Raw feed answer, scaled by the feed's own decimals.
        timestamp: When the answer was last updated.
        round_id: Identifier of the round that produced the answer.
    """
    price: int
    timestamp: datetime
    round_id: int


@dataclass(frozen=True, slots=True)
class AccountInformation:
    """Snapshot of one account's liability and collateral valuation."""
    liability_minted: int
    collateral_value_usd: int


@dataclass(frozen=True, slots=True)
class CollateralDeposited:
    """Audit record emitted when collateral enters the engine."""
    account: str
    token: str
    amount: int

    def __repr__(self) -> str:
        return f"CollateralDeposited({self.amount} {self.token}: {self.account})"


@dataclass(frozen=True, slots=True)
class CollateralRedeemed:
    """Audit record emitted when collateral leaves the engine (redemption or seizure)."""
    redeemed_from: str
    redeemed_to: str
    token: str
    amount: int

    def __repr__(self) -> str:
        return (f"CollateralRedeemed({self.amount} {self.token}: "
                f"{self.redeemed_from}→{self.redeemed_to})")


@dataclass(frozen=True, slots=True)
class RiskParameters:
    """
    Flat, system-wide risk configuration.

    Attributes:
        liquidation_threshold: Share of collateral value (over liquidation_precision)
                               that counts towards solvency.
        liquidation_bonus: Collateral premium paid to liquidators (over liquidation_precision).
        liquidation_precision: Denominator for threshold and bonus.
        min_health_factor: Health factor below which an account is liquidatable.
    """
    liquidation_threshold: int = LIQUIDATION_THRESHOLD
    liquidation_bonus: int = LIQUIDATION_BONUS
    liquidation_precision: int = LIQUIDATION_PRECISION
    min_health_factor: int = MIN_HEALTH_FACTOR

    def __post_init__(self):
        if self.liquidation_precision <= 0:
            raise ValueError("liquidation_precision must be positive")
        if not 0 < self.liquidation_threshold <= self.liquidation_precision:
            raise ValueError(
                f"liquidation_threshold must be in (0, {self.liquidation_precision}], "
                f"got {self.liquidation_threshold}"
            )
        if self.liquidation_bonus < 0:
            raise ValueError(f"liquidation_bonus cannot be negative, got {self.liquidation_bonus}")
        if self.min_health_factor <= 0:
            raise ValueError("min_health_factor must be positive")


DEFAULT_RISK_PARAMETERS = RiskParameters()


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class PriceFeed(Protocol):
    """
    Validated price source for one collateral type.

    Implementations must raise (StalePrice, InvalidPrice) rather than return
    data older than their staleness window or a non-positive price.
    """

    @property
    def decimals(self) -> int:
        ...

    def latest_validated_price(self) -> PriceQuote:
        ...


@runtime_checkable
class CollateralToken(Protocol):
    """Fungible collateral token as seen by the engine."""

    @property
    def symbol(self) -> str:
        ...

    def transfer(self, sender: str, recipient: str, amount: int) -> bool:
        ...

    def transfer_from(self, spender: str, sender: str, recipient: str, amount: int) -> bool:
        ...


@runtime_checkable
class LiabilityToken(Protocol):
    """The dollar-pegged token minted against collateral. The engine must be its owner."""

    @property
    def total_supply(self) -> int:
        ...

    def mint(self, caller: str, to: str, amount: int) -> bool:
        ...

    def burn(self, caller: str, amount: int) -> None:
        ...

    def transfer_from(self, spender: str, sender: str, recipient: str, amount: int) -> bool:
        ...


@runtime_checkable
class SupportsSnapshot(Protocol):
    """Collaborators implementing this are rolled back together with the engine."""

    def snapshot(self) -> Any:
        ...

    def restore(self, state: Any) -> None:
        ...


@runtime_checkable
class EngineView(Protocol):
    """
    Read-only interface to engine state.

    Liquidation sizing, monitoring and simulation code accept an EngineView to
    declare that they only read. CollateralLedger implements this protocol but
    also provides the mutating operations.
    """

    @property
    def collateral_tokens(self) -> List[str]:
        ...

    @property
    def risk(self) -> RiskParameters:
        ...

    def accounts(self) -> List[str]:
        ...

    def collateral_balance(self, account: str, token: str) -> int:
        ...

    def liability_minted(self, account: str) -> int:
        ...

    def health_factor(self, account: str) -> int:
        ...

    def account_collateral_value(self, account: str) -> int:
        ...

    def usd_value(self, token: str, amount: int) -> int:
        ...

    def token_amount_for_usd(self, token: str, usd_amount: int) -> int:
        ...


# ============================================================================
# CHECKED ARITHMETIC
# ============================================================================

def require_positive(amount: Any, name: str = "amount") -> int:
    """
    Validate that amount is a strictly positive integer.

    Raises:
        InvalidAmount: If amount is not an int (bools excluded) or is <= 0.
    """
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidAmount(f"{name} must be an integer, got {type(amount).__name__}")
    if amount <= 0:
        raise InvalidAmount(f"{name} must be more than zero, got {amount}")
    return amount


def require_non_negative(amount: Any, name: str = "amount") -> int:
    """Validate that amount is an integer >= 0."""
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidAmount(f"{name} must be an integer, got {type(amount).__name__}")
    if amount < 0:
        raise InvalidAmount(f"{name} cannot be negative, got {amount}")
    return amount


def checked_add(a: int, b: int) -> int:
    """Add two quantities, failing instead of exceeding MAX_UINT256."""
    result = a + b
    if result > MAX_UINT256:
        raise ArithmeticOverflow(f"{a} + {b} overflows")
    return result


def checked_sub(a: int, b: int, what: str = "balance") -> int:
    """Subtract b from a, failing instead of going negative."""
    if b > a:
        raise InsufficientBalance(f"{what} {a} is less than {b}")
    return a - b


# ============================================================================
# FIXED-POINT CONVERSION
# ============================================================================

def to_wei(value: Any, decimals: int = PRECISION_DECIMALS) -> int:
    """
    Convert a human-readable amount to its integer fixed-point representation.

    Digits beyond `decimals` are truncated toward zero.

    Example:
        to_wei("0.025") == 25 * 10**15
    """
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    scaled = (value * (Decimal(10) ** decimals)).quantize(Decimal(1), rounding=ROUND_DOWN)
    return int(scaled)


def from_wei(amount: int, decimals: int = PRECISION_DECIMALS) -> Decimal:
    """Convert an integer fixed-point amount to a Decimal for display."""
    return Decimal(amount) / (Decimal(10) ** decimals)


def pair_registry(
    tokens: Sequence[str],
    feeds: Sequence[PriceFeed],
) -> Dict[str, PriceFeed]:
    """
    Zip collateral identifiers with their feeds, preserving order.

    Raises:
        ConstructorArityMismatch: If the sequences differ in length.
        DuplicateCollateralType: If an identifier appears twice.
    """
    if len(tokens) != len(feeds):
        raise ConstructorArityMismatch(
            f"{len(tokens)} collateral tokens but {len(feeds)} price feeds"
        )
    registry: Dict[str, PriceFeed] = {}
    for token, feed in zip(tokens, feeds):
        if token in registry:
            raise DuplicateCollateralType(f"Collateral {token} registered twice")
        registry[token] = feed
    return registry


def total_by_token(balances: Mapping[str, Mapping[str, int]], tokens: Sequence[str]) -> Dict[str, int]:
    """Sum per-account collateral balances into per-token totals."""
    totals = {token: 0 for token in tokens}
    for account in sorted(balances):
        for token, amount in balances[account].items():
            totals[token] = totals.get(token, 0) + amount
    return totals


def calculate_health_factor(
    liability_minted: int,
    collateral_value_usd: int,
    risk: RiskParameters = DEFAULT_RISK_PARAMETERS,
) -> int:
    """
    Health factor (18-decimal fixed point) for a liability and a collateral value.

    PURE FUNCTION - all inputs explicit.

        hf = (collateral_value * threshold / precision) * 1e18 / liability

    An account without liability cannot be unsafe and gets MAX_HEALTH_FACTOR.

    Example:
        # $40,000 of collateral backing $100 of liability at a 50% threshold
        calculate_health_factor(100 * 10**18, 40_000 * 10**18) == 200 * 10**18
    """
    if liability_minted == 0:
        return MAX_HEALTH_FACTOR
    adjusted = collateral_value_usd * risk.liquidation_threshold // risk.liquidation_precision
    return adjusted * PRECISION // liability_minted

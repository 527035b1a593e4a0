"""
liquidation.py - Liquidation of unsafe accounts

A third party (the liquidator) repays part of an unsafe account's liability
with its own liability tokens and receives the equivalent collateral plus a
bonus. The account's health factor must strictly improve.

Functions:
- calculate_bonus_collateral: Bonus on top of the collateral equal to the debt covered
- compute_liquidation_quote: Read-only sizing and projection (no state changes)
- liquidate: Execute a liquidation atomically against a CollateralLedger
- find_liquidatable_accounts: Accounts currently below the minimum health factor

Known limitation: once an account's collateral is worth less than
(1 + bonus) x its liability, covering its debt costs the liquidator more
collateral than the account holds, and liquidation fails with
InsufficientBalance. Nothing here socializes that loss.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import TYPE_CHECKING, List, Optional
import logging

from .core import (
    EngineView, RiskParameters,
    HealthFactorNotImproved, HealthFactorOK, InvalidAmount,
    calculate_health_factor, from_wei, require_positive,
)

if TYPE_CHECKING:
    from .engine import CollateralLedger

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class LiquidationQuote:
    """
    Sizing of a prospective liquidation.

    Attributes:
        user: The unsafe account
        collateral_token: Collateral type to seize
        debt_to_cover: Liability repaid by the liquidator (18 decimals)
        token_amount_from_debt_covered: Collateral worth exactly debt_to_cover
        bonus_collateral: Liquidator premium on top of that
        total_collateral_to_redeem: Sum of the two
        starting_health_factor: The user's health factor before liquidation
        projected_health_factor: Health factor afterwards at current prices, or
            None when the user's position cannot cover the seizure or the debt
    """
    user: str
    collateral_token: str
    debt_to_cover: int
    token_amount_from_debt_covered: int
    bonus_collateral: int
    total_collateral_to_redeem: int
    starting_health_factor: int
    projected_health_factor: Optional[int]


@dataclass(frozen=True, slots=True)
class LiquidationResult:
    """Outcome of an executed liquidation."""
    liquidator: str
    quote: LiquidationQuote
    ending_health_factor: int


def calculate_bonus_collateral(token_amount: int, risk: RiskParameters) -> int:
    """
    Collateral premium paid on token_amount.

    Example:
        # 10% of 0.025 WETH
        calculate_bonus_collateral(25 * 10**15, RiskParameters()) == 25 * 10**14
    """
    return token_amount * risk.liquidation_bonus // risk.liquidation_precision


def compute_liquidation_quote(view: EngineView, token: str, user: str, debt_to_cover: int) -> LiquidationQuote:
    """
    Size a liquidation without executing it.

    PURE FUNCTION - reads the view only.

    Raises:
        InvalidAmount: If debt_to_cover is not positive, or buys no collateral
        HealthFactorOK: If user is not below the minimum health factor
        UnknownCollateralType, StalePrice, InvalidPrice: From valuation
    """
    require_positive(debt_to_cover, "debt_to_cover")
    risk = view.risk
    starting = view.health_factor(user)
    if starting >= risk.min_health_factor:
        raise HealthFactorOK(
            f"{user} has health factor {from_wei(starting)}, not below {from_wei(risk.min_health_factor)}"
        )

    base = view.token_amount_for_usd(token, debt_to_cover)
    if base == 0:
        raise InvalidAmount(
            f"debt_to_cover {debt_to_cover} is worth less than the smallest unit of {token}"
        )
    bonus = calculate_bonus_collateral(base, risk)
    total = base + bonus

    minted = view.liability_minted(user)
    held = view.collateral_balance(user, token)
    projected = None
    if total <= held and debt_to_cover <= minted:
        remaining_value = view.account_collateral_value(user) - view.usd_value(token, total)
        projected = calculate_health_factor(minted - debt_to_cover, max(remaining_value, 0), risk)

    return LiquidationQuote(
        user=user,
        collateral_token=token,
        debt_to_cover=debt_to_cover,
        token_amount_from_debt_covered=base,
        bonus_collateral=bonus,
        total_collateral_to_redeem=total,
        starting_health_factor=starting,
        projected_health_factor=projected,
    )


def liquidate(ledger: CollateralLedger, liquidator: str, token: str, user: str,
              debt_to_cover: int) -> LiquidationResult:
    """
    Liquidate part of user's position.

    Process:
    1. Quote: user must be below the minimum health factor; size the seizure
    2. Move the seized collateral from user to liquidator (no health check on user)
    3. Burn debt_to_cover from user's liability, paid with liquidator's tokens
    4. user's health factor must have strictly improved
    5. liquidator must not be left below the minimum health factor

    The liquidator must have approved the ledger's address on the liability
    token for at least debt_to_cover. Any failure rolls everything back.

    Raises:
        InvalidAmount, HealthFactorOK, HealthFactorNotImproved, HealthFactorTooLow,
        InsufficientBalance, TransferFailed, ReentrantCall
    """
    with ledger.atomic("liquidate") as settlement:
        quote = compute_liquidation_quote(ledger, token, user, debt_to_cover)
        settlement.seize_collateral(user, liquidator, token, quote.total_collateral_to_redeem)
        settlement.settle_debt(debt_to_cover, user, liquidator)

        ending = ledger.health_factor(user)
        if ending <= quote.starting_health_factor:
            raise HealthFactorNotImproved(
                f"{user} health factor went from {from_wei(quote.starting_health_factor)} "
                f"to {from_wei(ending)}"
            )
        ledger.require_healthy(liquidator)

    logger.info("%s: %s liquidated %s, covered %s for %s %s (health factor %s -> %s)",
                ledger.name, liquidator, user, from_wei(debt_to_cover),
                from_wei(quote.total_collateral_to_redeem), token,
                from_wei(quote.starting_health_factor), from_wei(ending))
    return LiquidationResult(liquidator=liquidator, quote=quote, ending_health_factor=ending)


def find_liquidatable_accounts(view: EngineView) -> List[str]:
    """Accounts below the minimum health factor, in first-seen order."""
    minimum = view.risk.min_health_factor
    return [account for account in view.accounts() if view.health_factor(account) < minimum]

"""
engine.py - Collateral Ledger for an over-collateralized stablecoin

The CollateralLedger is the central state manager of the system. It is the
only object that mutates collateral and liability bookkeeping.

Key responsibilities:
    - Tracks per-account collateral deposits and minted liability
    - Values collateral through the PriceResolver and derives health factors
    - Enforces the health-factor invariant on every mutating operation
    - Executes every public operation atomically (all effects or none)
    - Rejects re-entrant calls made from collaborator callbacks
    - Records deposit/redemption events before calling out to tokens
"""

from __future__ import annotations
from collections import defaultdict
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Union
import logging

from .core import (
    # Types
    AccountInformation, CollateralDeposited, CollateralRedeemed,
    CollateralToken, LiabilityToken, PriceFeed, RiskParameters, SupportsSnapshot,
    # Constants
    ADDITIONAL_FEED_PRECISION, DEFAULT_RISK_PARAMETERS, MAX_HEALTH_FACTOR, PRECISION,
    # Exceptions
    HealthFactorTooLow, MintFailed, ReentrantCall, TransferFailed, UnknownCollateralType,
    # Helpers
    calculate_health_factor, checked_add, checked_sub, from_wei, pair_registry,
    require_positive, total_by_token,
)
from .liquidation import LiquidationResult, liquidate as _liquidate
from .pricing import PriceResolver

logger = logging.getLogger(__name__)

Event = Union[CollateralDeposited, CollateralRedeemed]


class CollateralLedger:
    """
    Collateral and liability ledger with health-factor enforcement.

    Implements the EngineView protocol, so it can be passed to liquidation
    sizing and monitoring code that only reads.

    Design Principles:
        - Always validates: amounts, registered collateral, balances and the
          acting account's health factor are checked on every mutation.
        - Checks-effects-interactions: state is updated and the event recorded
          before any token collaborator is called.
        - All or nothing: a failure anywhere restores the engine's state and the
          state of every collaborator that supports snapshot()/restore().

    Thread Safety:
        Not thread-safe. Operations are serialized; nested mutating calls on the
        same ledger raise ReentrantCall.

    Example:
        ledger = CollateralLedger([weth], [eth_feed], dsc, address="engine")
        ledger.deposit_and_mint("alice", "WETH", 10 * 10**18, 100 * 10**18)
        ledger.health_factor("alice")   # 200 * 10**18 at $4000/WETH
    """

    def __init__(
        self,
        collateral_tokens: Sequence[CollateralToken],
        price_feeds: Sequence[PriceFeed],
        liability_token: LiabilityToken,
        address: str = "engine",
        risk: RiskParameters = DEFAULT_RISK_PARAMETERS,
        name: str = "main",
    ):
        """
        Create a ledger.

        Args:
            collateral_tokens: Supported collateral tokens, in registry order
            price_feeds: One feed per collateral token, same order
            liability_token: The stablecoin; must be owned by `address`
            address: The engine's own account on every token
            risk: Flat system-wide risk parameters
            name: Ledger identifier used in log messages

        Raises:
            ConstructorArityMismatch: If the two sequences differ in length
            DuplicateCollateralType: If a collateral symbol repeats
        """
        symbols = [token.symbol for token in collateral_tokens]
        registry = pair_registry(symbols, price_feeds)

        self.name = name
        self.address = address
        self._risk = risk
        self._pricing = PriceResolver(registry)
        self._tokens: Dict[str, CollateralToken] = {token.symbol: token for token in collateral_tokens}
        self._liability = liability_token
        # account -> {token -> quantity}
        self._collateral_deposited: Dict[str, Dict[str, int]] = defaultdict(dict)
        self._liability_minted: Dict[str, int] = {}
        # First-seen order of every account that ever touched the ledger
        self._known_accounts: Dict[str, None] = {}
        self.event_log: List[Event] = []
        self._in_progress: Optional[Settlement] = None

    # ========================================================================
    # EngineView PROTOCOL IMPLEMENTATION (read-only methods)
    # ========================================================================

    @property
    def risk(self) -> RiskParameters:
        return self._risk

    @property
    def collateral_tokens(self) -> List[str]:
        """Registered collateral identifiers in registration order."""
        return self._pricing.tokens

    @property
    def liability_token(self) -> LiabilityToken:
        return self._liability

    def accounts(self) -> List[str]:
        """Accounts that currently hold collateral or owe liability, in first-seen order."""
        return [
            account for account in self._known_accounts
            if self._liability_minted.get(account, 0) > 0
            or any(self._collateral_deposited.get(account, {}).values())
        ]

    def collateral_balance(self, account: str, token: str) -> int:
        """
        Collateral of one type deposited by account.

        Raises:
            UnknownCollateralType: If token is not registered
        """
        self._require_registered(token)
        return self._collateral_deposited.get(account, {}).get(token, 0)

    def liability_minted(self, account: str) -> int:
        return self._liability_minted.get(account, 0)

    def price_feed(self, token: str) -> PriceFeed:
        return self._pricing.feed(token)

    def usd_value(self, token: str, amount: int) -> int:
        return self._pricing.usd_value(token, amount)

    def token_amount_for_usd(self, token: str, usd_amount: int) -> int:
        return self._pricing.token_amount_for_usd(token, usd_amount)

    def account_collateral_value(self, account: str) -> int:
        """
        USD value of everything account has deposited.

        Every registered feed is queried, including types the account does not
        hold, so a failing feed propagates even for zero balances.
        """
        balances = self._collateral_deposited.get(account, {})
        return sum(self._pricing.usd_values(balances).values())

    def account_information(self, account: str) -> AccountInformation:
        return AccountInformation(
            liability_minted=self.liability_minted(account),
            collateral_value_usd=self.account_collateral_value(account),
        )

    def health_factor(self, account: str) -> int:
        """Current health factor of account (MAX_HEALTH_FACTOR when it owes nothing)."""
        info = self.account_information(account)
        return self.calculate_health_factor(info.liability_minted, info.collateral_value_usd)

    def calculate_health_factor(self, liability_minted: int, collateral_value_usd: int) -> int:
        return calculate_health_factor(liability_minted, collateral_value_usd, self._risk)

    # Risk parameter getters

    @property
    def precision(self) -> int:
        return PRECISION

    @property
    def additional_feed_precision(self) -> int:
        """Scale-up applied to an 8-decimal feed answer."""
        return ADDITIONAL_FEED_PRECISION

    @property
    def liquidation_threshold(self) -> int:
        return self._risk.liquidation_threshold

    @property
    def liquidation_bonus(self) -> int:
        return self._risk.liquidation_bonus

    @property
    def liquidation_precision(self) -> int:
        return self._risk.liquidation_precision

    @property
    def min_health_factor(self) -> int:
        return self._risk.min_health_factor

    # ========================================================================
    # SYSTEM-WIDE ACCOUNTING
    # ========================================================================

    def total_collateral_deposited(self, token: str) -> int:
        self._require_registered(token)
        return total_by_token(self._collateral_deposited, self.collateral_tokens)[token]

    def total_liability_minted(self) -> int:
        return sum(self._liability_minted[a] for a in sorted(self._liability_minted))

    def verify_solvency(self) -> Dict[str, Any]:
        """
        Verify that outstanding liability is backed by deposited collateral.

        Checks, at current prices:
        1. Sum of minted liability <= raw USD value of all deposited collateral
        2. Sum of minted liability == the liability token's total supply

        Returns:
            Dict with keys:
            - 'valid': bool - True if both checks hold
            - 'collateral_value': int - USD value of all deposits (18 decimals)
            - 'liability_supply': int - Sum of minted liability
            - 'collateralization_ratio': int - collateral / liability (18 decimals),
              MAX_HEALTH_FACTOR when nothing is minted
            - 'by_token': Dict[str, int] - USD value per collateral type
            - 'discrepancies': List[Dict] - Details of any violated check

        Example:
            result = ledger.verify_solvency()
            assert result['valid'], result['discrepancies']
        """
        totals = total_by_token(self._collateral_deposited, self.collateral_tokens)
        by_token = {token: self._pricing.usd_value(token, amount) for token, amount in totals.items()}
        collateral_value = sum(by_token.values())
        liability_supply = self.total_liability_minted()
        discrepancies = []

        if liability_supply > collateral_value:
            discrepancies.append({
                'check': 'collateralization',
                'collateral_value': collateral_value,
                'liability_supply': liability_supply,
                'shortfall': liability_supply - collateral_value,
            })

        token_supply = self._liability.total_supply
        if token_supply != liability_supply:
            discrepancies.append({
                'check': 'liability_supply',
                'expected': liability_supply,
                'actual': token_supply,
                'difference': abs(token_supply - liability_supply),
            })

        if liability_supply:
            ratio = collateral_value * PRECISION // liability_supply
        else:
            ratio = MAX_HEALTH_FACTOR

        return {
            'valid': len(discrepancies) == 0,
            'collateral_value': collateral_value,
            'liability_supply': liability_supply,
            'collateralization_ratio': ratio,
            'by_token': by_token,
            'discrepancies': discrepancies,
        }

    # ========================================================================
    # USER OPERATIONS (Mutating)
    # ========================================================================

    def deposit(self, account: str, token: str, amount: int) -> None:
        """
        Deposit collateral. The engine pulls it with transfer_from, so account
        must have approved the engine's address.

        Raises:
            InvalidAmount, UnknownCollateralType, TransferFailed
        """
        with self.atomic("deposit"):
            self._deposit(account, token, amount)
        logger.debug("%s: %s deposited %s %s", self.name, account, amount, token)

    def redeem(self, account: str, token: str, amount: int, recipient: Optional[str] = None) -> None:
        """
        Withdraw collateral to recipient (account by default).

        Raises:
            InvalidAmount, UnknownCollateralType, InsufficientBalance,
            TransferFailed, HealthFactorTooLow
        """
        with self.atomic("redeem"):
            self._redeem(account, recipient if recipient is not None else account, token, amount)
            self._revert_if_health_factor_is_broken(account)
        logger.debug("%s: %s redeemed %s %s", self.name, account, amount, token)

    def mint(self, account: str, amount: int) -> None:
        """
        Mint liability to account against its collateral.

        Raises:
            InvalidAmount, HealthFactorTooLow, MintFailed
        """
        with self.atomic("mint"):
            self._mint(account, amount)
        logger.debug("%s: %s minted %s", self.name, account, amount)

    def burn(self, account: str, amount: int, on_behalf_of: Optional[str] = None) -> None:
        """
        Repay liability owed by on_behalf_of (account by default) with account's tokens.

        Burning can only raise the health factor, so it is not re-checked.

        Raises:
            InvalidAmount, InsufficientBalance, TransferFailed
        """
        beneficiary = on_behalf_of if on_behalf_of is not None else account
        with self.atomic("burn"):
            self._burn(amount, beneficiary, account)
        logger.debug("%s: %s burned %s for %s", self.name, account, amount, beneficiary)

    def deposit_and_mint(self, account: str, token: str, collateral_amount: int, mint_amount: int) -> None:
        """Deposit collateral and mint liability in one atomic operation."""
        with self.atomic("deposit_and_mint"):
            self._deposit(account, token, collateral_amount)
            self._mint(account, mint_amount)
        logger.debug("%s: %s deposited %s %s and minted %s",
                     self.name, account, collateral_amount, token, mint_amount)

    def burn_and_redeem(self, account: str, token: str, collateral_amount: int, burn_amount: int) -> None:
        """Burn liability and redeem collateral in one atomic operation."""
        with self.atomic("burn_and_redeem"):
            self._burn(burn_amount, account, account)
            self._redeem(account, account, token, collateral_amount)
            self._revert_if_health_factor_is_broken(account)
        logger.debug("%s: %s burned %s and redeemed %s %s",
                     self.name, account, burn_amount, collateral_amount, token)

    def liquidate(self, liquidator: str, token: str, user: str, debt_to_cover: int) -> LiquidationResult:
        """
        Cover part of an unsafe account's debt in exchange for its collateral plus a bonus.

        See stableledger.liquidation.liquidate.
        """
        return _liquidate(self, liquidator, token, user, debt_to_cover)

    # ========================================================================
    # ATOMIC EXECUTION
    # ========================================================================

    @contextmanager
    def atomic(self, operation: str) -> Iterator[Settlement]:
        """
        Run a mutating operation all-or-nothing under the re-entrancy guard.

        Yields the Settlement handle for this operation. On any exception
        (KeyboardInterrupt included) the engine state, the event log and every
        collaborator supporting snapshot()/restore() are put back as they were,
        and the exception propagates.

        Raises:
            ReentrantCall: If another operation is already in progress
        """
        if self._in_progress is not None:
            logger.warning("%s: rejected re-entrant %s during %s",
                           self.name, operation, self._in_progress.operation)
            raise ReentrantCall(
                f"{operation} called while {self._in_progress.operation} is in progress"
            )
        settlement = Settlement(self, operation)
        self._in_progress = settlement
        snapshot = self._snapshot()
        try:
            yield settlement
        except BaseException as exc:
            self._restore(snapshot)
            logger.info("%s: %s rolled back (%s: %s)",
                        self.name, operation, type(exc).__name__, exc)
            raise
        finally:
            self._in_progress = None

    def require_healthy(self, account: str) -> None:
        """Raise HealthFactorTooLow if account is below the minimum health factor."""
        self._revert_if_health_factor_is_broken(account)

    # ========================================================================
    # INTERNAL OPERATIONS
    # ========================================================================

    def _deposit(self, account: str, token: str, amount: int) -> None:
        require_positive(amount)
        collateral = self._collateral_token(token)
        balances = self._collateral_deposited[account]
        balances[token] = checked_add(balances.get(token, 0), amount)
        self._touch(account)
        self.event_log.append(CollateralDeposited(account, token, amount))
        self._interact(
            TransferFailed, f"deposit of {amount} {token} from {account}",
            collateral.transfer_from, self.address, account, self.address, amount,
        )

    def _redeem(self, redeemed_from: str, redeemed_to: str, token: str, amount: int) -> None:
        require_positive(amount)
        collateral = self._collateral_token(token)
        balances = self._collateral_deposited[redeemed_from]
        balances[token] = checked_sub(
            balances.get(token, 0), amount, f"{redeemed_from} {token} collateral"
        )
        self.event_log.append(CollateralRedeemed(redeemed_from, redeemed_to, token, amount))
        self._interact(
            TransferFailed, f"transfer of {amount} {token} to {redeemed_to}",
            collateral.transfer, self.address, redeemed_to, amount,
        )

    def _mint(self, account: str, amount: int) -> None:
        require_positive(amount)
        self._liability_minted[account] = checked_add(self.liability_minted(account), amount)
        self._touch(account)
        self._revert_if_health_factor_is_broken(account)
        self._interact(
            MintFailed, f"mint of {amount} to {account}",
            self._liability.mint, self.address, account, amount,
        )

    def _burn(self, amount: int, on_behalf_of: str, payer: str) -> None:
        require_positive(amount)
        self._liability_minted[on_behalf_of] = checked_sub(
            self.liability_minted(on_behalf_of), amount, f"{on_behalf_of} minted liability"
        )
        self._interact(
            TransferFailed, f"pull of {amount} liability from {payer}",
            self._liability.transfer_from, self.address, payer, self.address, amount,
        )
        self._interact(
            TransferFailed, f"burn of {amount} liability",
            self._liability.burn, self.address, amount,
        )

    def _revert_if_health_factor_is_broken(self, account: str) -> None:
        health_factor = self.health_factor(account)
        if health_factor < self._risk.min_health_factor:
            raise HealthFactorTooLow(health_factor, account)

    def _interact(self, failure: type, description: str, call: Callable[..., Any], *args: Any) -> None:
        """
        Call a token collaborator. A raised exception and a False return are
        treated alike: both abort the operation as `failure`.
        """
        try:
            succeeded = call(*args)
        except Exception as exc:
            raise failure(f"{description} failed: {exc}") from exc
        if succeeded is False:
            raise failure(f"{description} was declined")

    def _collateral_token(self, token: str) -> CollateralToken:
        self._require_registered(token)
        return self._tokens[token]

    def _require_registered(self, token: str) -> None:
        if not self._pricing.has_feed(token):
            raise UnknownCollateralType(f"Collateral {token} is not registered")

    def _touch(self, account: str) -> None:
        self._known_accounts.setdefault(account, None)

    def _collaborators(self) -> List[SupportsSnapshot]:
        seen = {}
        for candidate in [*self._tokens.values(), self._liability]:
            if isinstance(candidate, SupportsSnapshot):
                seen.setdefault(id(candidate), candidate)
        return list(seen.values())

    def _snapshot(self) -> Dict[str, Any]:
        return {
            'collateral': {a: dict(b) for a, b in self._collateral_deposited.items()},
            'minted': dict(self._liability_minted),
            'accounts': dict(self._known_accounts),
            'events': len(self.event_log),
            'collaborators': [(c, c.snapshot()) for c in self._collaborators()],
        }

    def _restore(self, snapshot: Dict[str, Any]) -> None:
        self._collateral_deposited = defaultdict(dict, snapshot['collateral'])
        self._liability_minted = snapshot['minted']
        self._known_accounts = snapshot['accounts']
        del self.event_log[snapshot['events']:]
        for collaborator, state in snapshot['collaborators']:
            collaborator.restore(state)

    def __repr__(self):
        return (f"CollateralLedger({self.name}, {len(self.collateral_tokens)} collateral types, "
                f"minted={from_wei(self.total_liability_minted())})")


class Settlement:
    """
    Handle to one operation running under CollateralLedger.atomic().

    The settlement primitives move collateral and debt without the per-account
    health-factor check, so they live here rather than on the ledger. Only the
    code that opened the operation holds the handle, and the handle stops
    working once its operation ends. A collaborator callback running during
    the operation never sees it.

    Example:
        with ledger.atomic("liquidate") as settlement:
            settlement.seize_collateral("alice", "keeper", "WETH", amount)
            settlement.settle_debt(debt, "alice", "keeper")
    """

    def __init__(self, ledger: CollateralLedger, operation: str):
        self._ledger = ledger
        self.operation = operation

    @property
    def active(self) -> bool:
        return self._ledger._in_progress is self

    def seize_collateral(self, redeemed_from: str, redeemed_to: str, token: str, amount: int) -> None:
        """Move collateral out of redeemed_from's position without a health-factor check."""
        self._require_active("seize_collateral")
        self._ledger._redeem(redeemed_from, redeemed_to, token, amount)

    def settle_debt(self, amount: int, on_behalf_of: str, payer: str) -> None:
        """Burn payer's liability tokens against on_behalf_of's minted counter."""
        self._require_active("settle_debt")
        self._ledger._burn(amount, on_behalf_of, payer)

    def _require_active(self, primitive: str) -> None:
        if not self.active:
            raise ReentrantCall(f"{primitive} called after {self.operation} finished")

    def __repr__(self):
        return f"Settlement({self.operation}, active={self.active})"

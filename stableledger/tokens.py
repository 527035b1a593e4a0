"""
tokens.py - In-memory fungible tokens

Reference implementations of the token collaborators the engine talks to.

Classes:
- Token: Fungible token with balances, allowances and a supply invariant
- StableToken: The liability token; only its owner may mint or burn

Callers are passed explicitly (`sender`, `spender`, `caller`) since there is
no ambient message sender. Both classes support snapshot()/restore() so the
engine can roll them back together with its own state.
"""

from __future__ import annotations
from collections import defaultdict
from typing import Any, Dict, Tuple

from .core import (
    InsufficientAllowance, InvalidAmount, NotOwner,
    checked_add, checked_sub, require_non_negative, require_positive,
)


class Token:
    """
    Fungible token ledger.

    Invariant: sum of all balances == total_supply.

    Example:
        weth = Token("WETH", "Wrapped Ether")
        weth.mint("alice", 10 * 10**18)
        weth.approve("alice", "engine", 10 * 10**18)
        weth.transfer_from("engine", "alice", "engine", 10 * 10**18)
    """

    def __init__(self, symbol: str, name: str = "", decimals: int = 18):
        if not symbol or not symbol.strip():
            raise ValueError("Token symbol cannot be empty")
        self._symbol = symbol
        self.name = name or symbol
        self.decimals = decimals
        self.balances: Dict[str, int] = defaultdict(int)
        self.allowances: Dict[Tuple[str, str], int] = {}
        self._total_supply = 0

    @property
    def symbol(self) -> str:
        return self._symbol

    @property
    def total_supply(self) -> int:
        return self._total_supply

    def balance_of(self, holder: str) -> int:
        return self.balances.get(holder, 0)

    def allowance(self, owner: str, spender: str) -> int:
        return self.allowances.get((owner, spender), 0)

    def approve(self, owner: str, spender: str, amount: int) -> bool:
        """Set spender's allowance over owner's tokens."""
        require_non_negative(amount)
        self.allowances[(owner, spender)] = amount
        return True

    def transfer(self, sender: str, recipient: str, amount: int) -> bool:
        """
        Move amount from sender to recipient.

        Raises:
            InsufficientBalance: If sender holds less than amount
        """
        self._move(sender, recipient, amount)
        return True

    def transfer_from(self, spender: str, sender: str, recipient: str, amount: int) -> bool:
        """
        Move amount from sender to recipient using spender's allowance.

        Raises:
            InsufficientAllowance: If the allowance is below amount
            InsufficientBalance: If sender holds less than amount
        """
        allowed = self.allowance(sender, spender)
        if amount > allowed:
            raise InsufficientAllowance(
                f"{spender} may spend {allowed} {self._symbol} of {sender}, not {amount}"
            )
        self._move(sender, recipient, amount)
        self.allowances[(sender, spender)] = allowed - amount
        return True

    def mint(self, to: str, amount: int) -> bool:
        """Create amount new tokens in to's balance."""
        require_positive(amount)
        if not to:
            raise InvalidAmount("Cannot mint to an empty account")
        self._total_supply = checked_add(self._total_supply, amount)
        self.balances[to] = self.balance_of(to) + amount
        return True

    def burn(self, holder: str, amount: int) -> None:
        """Destroy amount tokens from holder's balance."""
        require_positive(amount)
        self.balances[holder] = checked_sub(self.balance_of(holder), amount, f"{holder} {self._symbol} balance")
        self._total_supply -= amount

    def _move(self, sender: str, recipient: str, amount: int) -> None:
        require_non_negative(amount)
        self.balances[sender] = checked_sub(
            self.balance_of(sender), amount, f"{sender} {self._symbol} balance"
        )
        self.balances[recipient] = self.balance_of(recipient) + amount
        self._after_transfer(sender, recipient, amount)

    def _after_transfer(self, sender: str, recipient: str, amount: int) -> None:
        """Hook invoked after every balance move. No-op by default."""
        pass

    def verify_supply(self) -> Dict[str, Any]:
        """
        Verify that balances sum to the total supply.

        Returns:
            Dict with 'valid', 'total_supply' and 'sum_of_balances'
        """
        held = sum(self.balances[h] for h in sorted(self.balances))
        return {
            'valid': held == self._total_supply,
            'total_supply': self._total_supply,
            'sum_of_balances': held,
        }

    def snapshot(self) -> Any:
        return dict(self.balances), dict(self.allowances), self._total_supply

    def restore(self, state: Any) -> None:
        balances, allowances, total_supply = state
        self.balances = defaultdict(int, balances)
        self.allowances = dict(allowances)
        self._total_supply = total_supply

    def __repr__(self):
        return f"Token({self._symbol}, supply={self._total_supply})"


class StableToken(Token):
    """
    Dollar-pegged liability token controlled by a single owner (the engine).

    mint() and burn() are restricted to the owner. burn() destroys tokens the
    owner itself holds, so the engine first pulls them from the payer.
    """

    def __init__(self, owner: str, symbol: str = "DSC", name: str = "Decentralized Stable Coin"):
        super().__init__(symbol, name)
        self.owner = owner

    def transfer_ownership(self, caller: str, new_owner: str) -> None:
        self._only_owner(caller)
        if not new_owner:
            raise ValueError("New owner cannot be empty")
        self.owner = new_owner

    def mint(self, caller: str, to: str, amount: int) -> bool:
        """
        Mint amount to `to`.

        Raises:
            NotOwner: If caller is not the owner
            InvalidAmount: If amount <= 0 or `to` is empty
        """
        self._only_owner(caller)
        return super().mint(to, amount)

    def burn(self, caller: str, amount: int) -> None:
        """
        Burn amount from the owner's own balance.

        Raises:
            NotOwner: If caller is not the owner
            InvalidAmount: If amount <= 0
            InsufficientBalance: If the owner holds less than amount
        """
        self._only_owner(caller)
        super().burn(caller, amount)

    def _only_owner(self, caller: str) -> None:
        if caller != self.owner:
            raise NotOwner(f"{caller} is not the owner of {self.symbol}")

    def __repr__(self):
        return f"StableToken({self.symbol}, supply={self.total_supply}, owner={self.owner})"

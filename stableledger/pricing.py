"""
pricing.py - Price resolution for collateral valuation

Converts between token amounts and USD values using the registered feeds.

Pure functions:
- calculate_usd_value: price x amount -> 18-decimal USD value
- calculate_token_amount: 18-decimal USD value -> token amount

Classes:
- PriceResolver: Registry of feeds keyed by collateral identifier

Both conversions re-scale the feed answer to 18 decimals exactly and
truncate toward zero on the single final division. They are inverses only
up to that truncation; callers must not assume round-trip equality.
"""

from typing import Dict, List, Mapping, Tuple

from .core import (
    PriceFeed, PriceQuote,
    PRECISION, PRECISION_DECIMALS,
    InvalidPrice, UnknownCollateralType,
    require_non_negative,
)


def feed_scaling(decimals: int) -> Tuple[int, int]:
    """
    Return (multiplier, divisor) that re-scales a feed answer to 18 decimals.

    An 8-decimal feed yields (10**10, 1).
    """
    if decimals <= PRECISION_DECIMALS:
        return 10 ** (PRECISION_DECIMALS - decimals), 1
    return 1, 10 ** (decimals - PRECISION_DECIMALS)


def calculate_usd_value(price: int, decimals: int, amount: int) -> int:
    """
    USD value (18 decimals) of `amount` tokens at a feed price.

    PURE FUNCTION - all inputs explicit.

    Example:
        # 15 tokens at $4000 (8-decimal feed)
        calculate_usd_value(4000 * 10**8, 8, 15 * 10**18) == 60000 * 10**18
    """
    multiplier, divisor = feed_scaling(decimals)
    return price * multiplier * amount // (PRECISION * divisor)


def calculate_token_amount(price: int, decimals: int, usd_amount: int) -> int:
    """
    Token amount worth `usd_amount` (18 decimals) at a feed price.

    PURE FUNCTION - all inputs explicit.

    Raises:
        InvalidPrice: If price is not positive
    """
    if price <= 0:
        raise InvalidPrice(f"Cannot convert at non-positive price {price}")
    multiplier, divisor = feed_scaling(decimals)
    return usd_amount * PRECISION * divisor // (price * multiplier)


class PriceResolver:
    """
    Resolves USD valuations through per-collateral price feeds.

    The registry is fixed at construction and preserves insertion order.
    Lookup of an unregistered collateral type fails, it never defaults.
    """

    def __init__(self, feeds: Mapping[str, PriceFeed]):
        self._feeds: Dict[str, PriceFeed] = dict(feeds)

    @property
    def tokens(self) -> List[str]:
        return list(self._feeds)

    def has_feed(self, token: str) -> bool:
        return token in self._feeds

    def feed(self, token: str) -> PriceFeed:
        """
        Return the feed registered for token.

        Raises:
            UnknownCollateralType: If no feed is registered
        """
        try:
            return self._feeds[token]
        except KeyError:
            raise UnknownCollateralType(f"No price feed registered for {token}") from None

    def latest_price(self, token: str) -> PriceQuote:
        """Fetch the latest validated quote; feed failures propagate unchanged."""
        return self.feed(token).latest_validated_price()

    def usd_value(self, token: str, amount: int) -> int:
        """USD value (18 decimals) of amount of token."""
        require_non_negative(amount)
        feed = self.feed(token)
        quote = feed.latest_validated_price()
        return calculate_usd_value(quote.price, feed.decimals, amount)

    def token_amount_for_usd(self, token: str, usd_amount: int) -> int:
        """Amount of token worth usd_amount (18 decimals)."""
        require_non_negative(usd_amount, "usd_amount")
        feed = self.feed(token)
        quote = feed.latest_validated_price()
        return calculate_token_amount(quote.price, feed.decimals, usd_amount)

    def usd_values(self, balances: Mapping[str, int]) -> Dict[str, int]:
        """
        Value every registered collateral type for a balance map.

        Every feed is queried, including types with a zero balance, so a
        failing feed for an unused type still fails the valuation.
        """
        return {
            token: self.usd_value(token, balances.get(token, 0))
            for token in self._feeds
        }

    def __repr__(self):
        return f"PriceResolver({len(self._feeds)} feeds)"

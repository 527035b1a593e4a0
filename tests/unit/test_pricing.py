"""
test_pricing.py - Unit tests for USD/token conversion and the PriceResolver
"""

import pytest

from stableledger import (
    PriceResolver, StaleCheckedFeed, calculate_usd_value, calculate_token_amount,
    InvalidAmount, InvalidPrice, StalePrice, UnknownCollateralType, to_wei,
)
from stableledger.pricing import feed_scaling

from tests.fakes import BrokenFeed, CountingFeed


class TestFeedScaling:

    def test_eight_decimals(self):
        assert feed_scaling(8) == (10 ** 10, 1)

    def test_eighteen_decimals(self):
        assert feed_scaling(18) == (1, 1)

    def test_more_than_eighteen(self):
        assert feed_scaling(20) == (1, 100)


class TestConversions:

    def test_usd_value_of_fifteen_units(self):
        assert calculate_usd_value(4000 * 10 ** 8, 8, to_wei(15)) == 60_000 * 10 ** 18

    def test_token_amount_for_hundred_usd(self):
        assert calculate_token_amount(4000 * 10 ** 8, 8, to_wei(100)) == to_wei("0.025")

    def test_zero_amount(self):
        assert calculate_usd_value(4000 * 10 ** 8, 8, 0) == 0
        assert calculate_token_amount(4000 * 10 ** 8, 8, 0) == 0

    def test_eighteen_decimal_feed(self):
        assert calculate_usd_value(4000 * 10 ** 18, 18, to_wei(15)) == 60_000 * 10 ** 18

    def test_truncates_toward_zero(self):
        # $100 at $18 is 5.555... units
        assert calculate_token_amount(18 * 10 ** 8, 8, to_wei(100)) == 5_555_555_555_555_555_555

    def test_non_positive_price_rejected(self):
        with pytest.raises(InvalidPrice):
            calculate_token_amount(0, 8, to_wei(1))


class TestPriceResolver:

    @pytest.fixture
    def resolver(self, eth_aggregator, btc_aggregator):
        return PriceResolver({
            "WETH": StaleCheckedFeed(eth_aggregator),
            "WBTC": StaleCheckedFeed(btc_aggregator),
        })

    def test_tokens_in_order(self, resolver):
        assert resolver.tokens == ["WETH", "WBTC"]
        assert resolver.has_feed("WETH")
        assert not resolver.has_feed("DAI")

    def test_usd_value(self, resolver):
        assert resolver.usd_value("WETH", to_wei(15)) == to_wei(60_000)
        assert resolver.usd_value("WBTC", to_wei(2)) == to_wei(2_000)

    def test_token_amount_for_usd(self, resolver):
        assert resolver.token_amount_for_usd("WETH", to_wei(100)) == to_wei("0.025")

    def test_unknown_token(self, resolver):
        with pytest.raises(UnknownCollateralType):
            resolver.usd_value("DAI", 1)
        with pytest.raises(UnknownCollateralType):
            resolver.token_amount_for_usd("DAI", 1)

    def test_negative_amount(self, resolver):
        with pytest.raises(InvalidAmount):
            resolver.usd_value("WETH", -1)

    def test_latest_price(self, resolver):
        assert resolver.latest_price("WETH").price == 4000 * 10 ** 8

    def test_feed_failure_propagates(self):
        resolver = PriceResolver({"WETH": BrokenFeed()})
        with pytest.raises(StalePrice):
            resolver.usd_value("WETH", to_wei(1))

    def test_usd_values_queries_every_feed(self, eth_aggregator):
        eth = CountingFeed(StaleCheckedFeed(eth_aggregator))
        other = CountingFeed(StaleCheckedFeed(eth_aggregator))
        resolver = PriceResolver({"WETH": eth, "OTHER": other})

        values = resolver.usd_values({"WETH": to_wei(1)})

        assert values == {"WETH": to_wei(4000), "OTHER": 0}
        assert eth.calls == 1
        assert other.calls == 1

    def test_usd_values_fails_on_unused_broken_feed(self, eth_aggregator):
        resolver = PriceResolver({"WETH": StaleCheckedFeed(eth_aggregator), "DEAD": BrokenFeed()})
        with pytest.raises(StalePrice):
            resolver.usd_values({"WETH": to_wei(1)})

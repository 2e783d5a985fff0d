"""
test_pricing_source.py - Unit tests for price feeds

Tests:
- StaticPricingSource quotes, base currency, publish stamps
- TimeSeriesPricingSource lookups
- fetch_price staleness, missing, future and non-positive quotes
"""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from lendledger import (
    PriceQuote, PricingSource, StaticPricingSource, TimeSeriesPricingSource,
    fetch_price, StaleOrMissingPrice, DEFAULT_MAX_PRICE_AGE,
)


T0 = datetime(2025, 1, 15, 9, 30)


class TestStaticPricingSource:
    """Tests for StaticPricingSource."""

    def test_quote_is_fresh_without_publish_time(self):
        feed = StaticPricingSource({"SOL": Decimal("180")})
        quote = feed.get_quote("SOL", T0)
        assert quote == PriceQuote("SOL", Decimal("180"), T0)

    def test_base_currency_is_one(self):
        feed = StaticPricingSource({"SOL": Decimal("180")})
        assert feed.get_quote("USD", T0).price == Decimal("1.0")

    def test_unknown_asset(self):
        assert StaticPricingSource({}).get_quote("SOL", T0) is None

    def test_float_prices_converted(self):
        feed = StaticPricingSource({"SOL": 180.5})
        assert feed.get_quote("SOL", T0).price == Decimal("180.5")

    def test_update_price_restamps(self):
        feed = StaticPricingSource({"SOL": Decimal("180")}, published_at=T0)
        later = T0 + timedelta(minutes=5)
        feed.update_price("SOL", Decimal("170"), published_at=later)

        quote = feed.get_quote("SOL", later)
        assert quote.price == Decimal("170")
        assert quote.published_at == later

    def test_satisfies_protocol(self):
        assert isinstance(StaticPricingSource({}), PricingSource)


class TestTimeSeriesPricingSource:
    """Tests for TimeSeriesPricingSource."""

    def test_latest_observation_at_or_before(self):
        feed = TimeSeriesPricingSource({
            "SOL": [(T0, Decimal("180")), (T0 + timedelta(seconds=60), Decimal("175"))],
        })

        assert feed.get_quote("SOL", T0 + timedelta(seconds=30)).price == Decimal("180")
        assert feed.get_quote("SOL", T0 + timedelta(seconds=60)).price == Decimal("175")

    def test_quote_keeps_observation_time(self):
        feed = TimeSeriesPricingSource()
        feed.add_price("SOL", T0, Decimal("180"))
        assert feed.get_quote("SOL", T0 + timedelta(hours=1)).published_at == T0

    def test_before_first_observation(self):
        feed = TimeSeriesPricingSource()
        feed.add_price("SOL", T0, Decimal("180"))
        assert feed.get_quote("SOL", T0 - timedelta(seconds=1)) is None

    def test_all_timestamps(self):
        feed = TimeSeriesPricingSource()
        feed.add_prices({"SOL": Decimal("180"), "USDC": Decimal("1")}, T0)
        feed.add_price("SOL", T0 + timedelta(seconds=10), Decimal("181"))

        assert feed.get_all_timestamps() == [T0, T0 + timedelta(seconds=10)]
        assert feed.get_all_timestamps("USDC") == [T0]


class TestFetchPrice:
    """Tests for fetch_price."""

    def test_fresh_quote(self):
        feed = StaticPricingSource({"SOL": Decimal("180")}, published_at=T0)
        quote = fetch_price(feed, "SOL", T0 + timedelta(seconds=30), DEFAULT_MAX_PRICE_AGE)
        assert quote.price == Decimal("180")

    def test_quote_at_max_age_accepted(self):
        feed = StaticPricingSource({"SOL": Decimal("180")}, published_at=T0)
        fetch_price(feed, "SOL", T0 + timedelta(seconds=100), 100)

    def test_stale_quote_rejected(self):
        feed = StaticPricingSource({"SOL": Decimal("180")}, published_at=T0)
        with pytest.raises(StaleOrMissingPrice, match="old"):
            fetch_price(feed, "SOL", T0 + timedelta(seconds=101), 100)

    def test_missing_quote_rejected(self):
        with pytest.raises(StaleOrMissingPrice, match="No price"):
            fetch_price(StaticPricingSource({}), "SOL", T0, 100)

    def test_future_quote_rejected(self):
        feed = StaticPricingSource({"SOL": Decimal("180")}, published_at=T0 + timedelta(seconds=5))
        with pytest.raises(StaleOrMissingPrice, match="future"):
            fetch_price(feed, "SOL", T0, 100)

    def test_zero_price_rejected(self):
        feed = StaticPricingSource({"SOL": Decimal("0")})
        with pytest.raises(StaleOrMissingPrice, match="positive"):
            fetch_price(feed, "SOL", T0, 100)

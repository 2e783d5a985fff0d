"""
pricing_source.py - Price feed collaborators for collateral valuation

Provides the price feed the health engine values positions with. Every quote
carries the time it was published, so the consumer can refuse stale data.

Classes:
- PriceQuote: a price plus its publish timestamp
- PricingSource: Protocol defining the price feed interface
- StaticPricingSource: fixed prices with a settable publish time
- TimeSeriesPricingSource: time-varying prices with historical data

Functions:
- fetch_price: get a quote no older than max_age, or raise StaleOrMissingPrice

All prices are quoted in a common base currency (typically USD).
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, Set, Optional, List, Tuple, Protocol, runtime_checkable
from bisect import bisect_right

from .core import StaleOrMissingPrice, to_decimal


@dataclass(frozen=True, slots=True)
class PriceQuote:
    """A price for one asset, in base currency, as published at published_at."""
    asset_id: str
    price: Decimal
    published_at: datetime

    def __post_init__(self):
        if not isinstance(self.price, Decimal):
            object.__setattr__(self, 'price', to_decimal(self.price))

    def age(self, now: datetime) -> timedelta:
        """Time elapsed between publication and now."""
        return now - self.published_at


@runtime_checkable
class PricingSource(Protocol):
    """
    Protocol for price feeds.

    Implementations return the most recent quote published at or before the
    requested timestamp, or None when there is none.
    """
    base_currency: str

    def get_quote(self, asset_id: str, timestamp: datetime) -> Optional[PriceQuote]:
        """Get the latest quote for an asset at a specific timestamp."""
        ...


class StaticPricingSource:
    """
    Price feed with fixed prices.

    Quotes are stamped with published_at. When published_at is None the quote
    is stamped with the requested timestamp, i.e. always fresh.
    The base currency always has a price of 1.0.
    """

    def __init__(
        self,
        prices: Dict[str, Decimal],
        base_currency: str = "USD",
        published_at: Optional[datetime] = None,
    ):
        """
        Args:
            prices: Dictionary mapping asset ids to prices in base currency
            base_currency: The currency in which prices are quoted
            published_at: Publish time of every quote (None = always fresh)
        """
        self.base_currency = base_currency
        self.prices = {asset: to_decimal(price) for asset, price in prices.items()}
        self.prices[base_currency] = Decimal("1.0")
        self.published_at = published_at

    def get_quote(self, asset_id: str, timestamp: datetime) -> Optional[PriceQuote]:
        price = self.prices.get(asset_id)
        if price is None:
            return None
        return PriceQuote(asset_id, price, self.published_at or timestamp)

    def update_price(self, asset_id: str, price: Decimal, published_at: Optional[datetime] = None):
        """Update the price of an asset, optionally re-stamping all quotes."""
        self.prices[asset_id] = to_decimal(price)
        if published_at is not None:
            self.published_at = published_at

    def __repr__(self):
        return f"StaticPricingSource({len(self.prices)} prices, base={self.base_currency})"


class TimeSeriesPricingSource:
    """
    Price feed with time-varying prices.

    Uses the most recent observation at or before the requested timestamp;
    the quote keeps the observation's own timestamp so its age can be checked.

    Examples:
        feed = TimeSeriesPricingSource()
        feed.add_price('SOL', datetime(2025, 1, 15), Decimal("180"))

        feed = TimeSeriesPricingSource({
            'SOL': [(t0, Decimal("180")), (t1, Decimal("175"))],
        })
    """

    def __init__(
        self,
        price_paths: Optional[Dict[str, List[Tuple[datetime, Decimal]]]] = None,
        base_currency: str = "USD",
    ):
        self.base_currency = base_currency
        self.price_history: Dict[str, List[Tuple[datetime, Decimal]]] = {}

        if price_paths:
            for asset_id, path in price_paths.items():
                if not path:
                    continue
                self.price_history[asset_id] = sorted(
                    ((ts, to_decimal(price)) for ts, price in path),
                    key=lambda x: x[0],
                )

    def add_price(self, asset_id: str, timestamp: datetime, price: Decimal):
        """Add a price observation for an asset at a specific time."""
        history = self.price_history.setdefault(asset_id, [])
        history.append((timestamp, to_decimal(price)))
        history.sort(key=lambda x: x[0])

    def add_prices(self, prices: Dict[str, Decimal], timestamp: datetime):
        """Add multiple price observations at the same timestamp."""
        for asset_id, price in prices.items():
            self.add_price(asset_id, timestamp, price)

    def get_quote(self, asset_id: str, timestamp: datetime) -> Optional[PriceQuote]:
        """
        Latest quote at or before timestamp, or None.

        Binary search over the observation timestamps.
        """
        if asset_id == self.base_currency:
            return PriceQuote(asset_id, Decimal("1.0"), timestamp)

        history = self.price_history.get(asset_id)
        if not history:
            return None

        timestamps = [ts for ts, _ in history]
        idx = bisect_right(timestamps, timestamp)
        if idx == 0:
            return None

        published_at, price = history[idx - 1]
        return PriceQuote(asset_id, price, published_at)

    def get_all_timestamps(self, asset_id: Optional[str] = None) -> List[datetime]:
        """Sorted unique observation timestamps, for one asset or all of them."""
        if asset_id:
            return [ts for ts, _ in self.price_history.get(asset_id, [])]
        all_times: Set[datetime] = set()
        for path in self.price_history.values():
            all_times.update(ts for ts, _ in path)
        return sorted(all_times)

    def __repr__(self):
        total_observations = sum(len(history) for history in self.price_history.values())
        return (
            f"TimeSeriesPricingSource({len(self.price_history)} assets, "
            f"{total_observations} observations, base={self.base_currency})"
        )


def fetch_price(
    source: PricingSource,
    asset_id: str,
    now: datetime,
    max_age: int,
) -> PriceQuote:
    """
    Get a usable quote for an asset.

    Args:
        source: Price feed
        asset_id: Asset to price
        now: Current ledger time
        max_age: Maximum accepted quote age in seconds

    Returns:
        PriceQuote published no earlier than now - max_age

    Raises:
        StaleOrMissingPrice: no quote, a quote older than max_age, a quote
            published after now, or a non-positive price.
    """
    quote = source.get_quote(asset_id, now)
    if quote is None:
        raise StaleOrMissingPrice(f"No price available for {asset_id} at {now}")
    if quote.published_at > now:
        raise StaleOrMissingPrice(
            f"Price for {asset_id} published in the future ({quote.published_at} > {now})"
        )
    age_seconds = quote.age(now).total_seconds()
    if age_seconds > max_age:
        raise StaleOrMissingPrice(
            f"Price for {asset_id} is {age_seconds:.0f}s old (max {max_age}s)"
        )
    if quote.price <= 0:
        raise StaleOrMissingPrice(f"Price for {asset_id} must be positive, got {quote.price}")
    return quote

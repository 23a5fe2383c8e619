"""
pricing_source.py - Price oracles for the position ledger

Provides the price feeds the ledger reads at every operation.

Classes:
- PriceQuote: One observation (integer price, feed decimals, update time)
- PriceOracle: Protocol defining the oracle interface
- StaticPriceOracle: Time-independent prices
- TimeSeriesPriceOracle: Time-varying prices with historical data

Functions:
- load_price_pair: Fetch both market feeds and enforce freshness and parity
- reference_price_in_collateral / collateral_price_in_reference: PRECISION-scaled ratios

Prices are integers in the feed's own decimals (8 for typical USD feeds).
Only the ratio of the two feeds is used, so the decimals cancel as long as
both feeds share them.
"""

from __future__ import annotations
from bisect import bisect_right
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Protocol, Set, Tuple, runtime_checkable

from .core import (
    PRECISION, MarketConfig,
    PriceUnavailable, StalePrice, UnsupportedPriceFeed,
)
from .fixed_point import mul_div, nonzero

DEFAULT_FEED_DECIMALS = 8


@dataclass(frozen=True, slots=True)
class PriceQuote:
    price: int
    decimals: int
    updated_at: datetime


@runtime_checkable
class PriceOracle(Protocol):
    """
    Protocol for price oracles.

    Implementations return the latest quote for an asset as seen at a
    timestamp, or raise PriceUnavailable.
    """

    def latest_price(self, asset: str, as_of: datetime) -> PriceQuote:
        ...


class StaticPriceOracle:
    """
    Oracle with static prices (time-independent).

    Quotes are reported as updated at the requested time, unless
    track_updates is set, in which case each price carries the time of its
    last update_price() call (or construction).
    """

    def __init__(
        self,
        prices: Dict[str, int],
        decimals: int = DEFAULT_FEED_DECIMALS,
        track_updates: bool = False,
        updated_at: Optional[datetime] = None,
    ):
        """
        Initialize with a static price map.

        Args:
            prices: Dictionary mapping asset symbols to integer prices
            decimals: Decimals declared by every feed of this oracle
            track_updates: Report stored update times instead of as_of
            updated_at: Update time recorded for the initial prices
        """
        self.decimals = decimals
        self.prices = dict(prices)
        self.track_updates = track_updates
        self.updated: Dict[str, Optional[datetime]] = {a: updated_at for a in self.prices}
        self.feed_decimals: Dict[str, int] = {}

    def latest_price(self, asset: str, as_of: datetime) -> PriceQuote:
        if asset not in self.prices:
            raise PriceUnavailable(f"No price for {asset}")
        updated_at = as_of
        if self.track_updates and self.updated.get(asset) is not None:
            updated_at = self.updated[asset]
        return PriceQuote(
            price=self.prices[asset],
            decimals=self.feed_decimals.get(asset, self.decimals),
            updated_at=updated_at,
        )

    def update_price(self, asset: str, price: int, timestamp: Optional[datetime] = None):
        """Update the price of an asset."""
        self.prices[asset] = price
        self.updated[asset] = timestamp

    def update_prices(self, prices: Dict[str, int], timestamp: Optional[datetime] = None):
        """Update multiple prices at once."""
        for asset, price in prices.items():
            self.update_price(asset, price, timestamp)

    def set_feed_decimals(self, asset: str, decimals: int):
        """Override the declared decimals of a single feed."""
        self.feed_decimals[asset] = decimals

    def __repr__(self):
        return f"StaticPriceOracle({len(self.prices)} prices, decimals={self.decimals})"


class TimeSeriesPriceOracle:
    """
    Oracle with time-varying prices.

    Uses the most recent observation at or before the requested timestamp,
    and reports that observation's time as updated_at.
    """

    def __init__(
        self,
        price_paths: Optional[Dict[str, List[Tuple[datetime, int]]]] = None,
        decimals: int = DEFAULT_FEED_DECIMALS,
    ):
        """
        Initialize oracle.

        Args:
            price_paths: Optional dict mapping asset symbols to (timestamp, price) lists
            decimals: Decimals declared by every feed of this oracle

        Example:
            oracle = TimeSeriesPriceOracle({
                'WBTC': [(t0, 10000 * 10**8), (t1, 9500 * 10**8)],
                'USDC': [(t0, 1 * 10**8)],
            })
        """
        self.decimals = decimals
        self.price_history: Dict[str, List[Tuple[datetime, int]]] = {}

        if price_paths:
            for asset, path in price_paths.items():
                if not path:
                    continue
                self.price_history[asset] = sorted(path, key=lambda x: x[0])

    def add_price(self, asset: str, timestamp: datetime, price: int):
        """Add a price observation for an asset at a specific time."""
        history = self.price_history.setdefault(asset, [])
        history.append((timestamp, price))
        history.sort(key=lambda x: x[0])

    def add_prices(self, prices: Dict[str, int], timestamp: datetime):
        for asset, price in prices.items():
            self.add_price(asset, timestamp, price)

    def latest_price(self, asset: str, as_of: datetime) -> PriceQuote:
        """
        Get the quote at or before as_of.

        Raises:
            PriceUnavailable: If the asset has no observation at or before as_of
        """
        history = self.price_history.get(asset)
        if not history:
            raise PriceUnavailable(f"No price for {asset}")

        timestamps = [ts for ts, _ in history]
        idx = bisect_right(timestamps, as_of)
        if idx == 0:
            raise PriceUnavailable(f"No price for {asset} at or before {as_of}")

        ts, price = history[idx - 1]
        return PriceQuote(price=price, decimals=self.decimals, updated_at=ts)

    def get_all_timestamps(self, asset: Optional[str] = None) -> List[datetime]:
        """
        Get all timestamps in the price history.

        Args:
            asset: If specified, get timestamps for that asset only.
                   If None, get union of all timestamps.
        """
        if asset:
            return [ts for ts, _ in self.price_history.get(asset, [])]

        all_times: Set[datetime] = set()
        for path in self.price_history.values():
            all_times.update(ts for ts, _ in path)
        return sorted(all_times)

    def __repr__(self):
        total = sum(len(history) for history in self.price_history.values())
        return f"TimeSeriesPriceOracle({len(self.price_history)} assets, {total} observations)"


# ============================================================================
# PRICE PAIR
# ============================================================================

@dataclass(frozen=True, slots=True)
class PricePair:
    """Quotes for both market assets, already validated."""
    collateral: PriceQuote
    reference: PriceQuote


def _check_fresh(quote: PriceQuote, asset: str, config: MarketConfig, as_of: datetime) -> None:
    if config.max_price_age is None:
        return
    age = as_of - quote.updated_at
    if age > config.max_price_age:
        raise StalePrice(
            f"{asset} price updated at {quote.updated_at} is {age} old "
            f"(max {config.max_price_age})"
        )


def load_price_pair(oracle: PriceOracle, config: MarketConfig, as_of: datetime) -> PricePair:
    """
    Read both feeds of a market.

    A reported price of 0 is treated as 1.

    Raises:
        PriceUnavailable: If either feed has no price
        StalePrice: If either quote is older than config.max_price_age
        UnsupportedPriceFeed: If the feeds declare different decimals
    """
    coll = oracle.latest_price(config.collateral_asset, as_of)
    ref = oracle.latest_price(config.reference_asset, as_of)

    _check_fresh(coll, config.collateral_asset, config, as_of)
    _check_fresh(ref, config.reference_asset, config, as_of)

    if coll.decimals != ref.decimals:
        raise UnsupportedPriceFeed(
            f"{config.collateral_asset} feed has {coll.decimals} decimals, "
            f"{config.reference_asset} feed has {ref.decimals}"
        )
    if coll.price < 0 or ref.price < 0:
        raise PriceUnavailable(f"Negative price reported: {coll.price}, {ref.price}")

    return PricePair(
        collateral=PriceQuote(nonzero(coll.price), coll.decimals, coll.updated_at),
        reference=PriceQuote(nonzero(ref.price), ref.decimals, ref.updated_at),
    )


def reference_price_in_collateral(pair: PricePair) -> int:
    """Price of one reference token in collateral units, scaled by PRECISION."""
    return mul_div(pair.reference.price, PRECISION, pair.collateral.price)


def collateral_price_in_reference(pair: PricePair) -> int:
    """Price of one collateral unit in reference tokens, scaled by PRECISION."""
    return mul_div(pair.collateral.price, PRECISION, pair.reference.price)

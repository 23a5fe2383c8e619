"""
simulation.py - Price paths for stress runs

Generates geometric Brownian motion paths for the reference asset and turns
them into the (timestamp, price) series a TimeSeriesPriceOracle consumes.
Prices come back as positive ints at oracle precision so they can be fed to
the ledger without further conversion.
"""

from __future__ import annotations
from datetime import datetime, timedelta
from typing import List, Sequence, Tuple

import numpy as np

from .pricing_source import DEFAULT_FEED_DECIMALS

TRADING_DAYS_PER_YEAR = 365


def generate_price_path(
    initial_price: float,
    volatility: float,
    steps: int,
    step_days: float = 1.0,
    seed: int = 0,
    drift: float = 0.0,
    decimals: int = DEFAULT_FEED_DECIMALS,
) -> List[int]:
    """
    Simulate a GBM price path.

    Args:
        initial_price: Starting price in whole units (e.g. 10000.0)
        volatility: Annualized volatility (e.g. 0.8 for 80%)
        steps: Number of steps after the initial price
        step_days: Length of each step in days
        seed: Seed for numpy's default_rng; equal seeds give equal paths
        drift: Annualized drift
        decimals: Oracle decimals of the returned integer prices

    Returns:
        steps + 1 positive integer prices, starting with initial_price
    """
    if initial_price <= 0 or not np.isfinite(initial_price):
        raise ValueError(f"initial_price must be positive and finite, got {initial_price}")
    if volatility < 0 or not np.isfinite(volatility):
        raise ValueError(f"volatility must be non-negative and finite, got {volatility}")
    if steps < 0:
        raise ValueError(f"steps must be non-negative, got {steps}")
    if step_days <= 0:
        raise ValueError(f"step_days must be positive, got {step_days}")

    rng = np.random.default_rng(seed)
    dt = step_days / TRADING_DAYS_PER_YEAR
    shocks = rng.standard_normal(steps)
    log_returns = (drift - 0.5 * volatility ** 2) * dt + volatility * np.sqrt(dt) * shocks
    path = initial_price * np.exp(np.concatenate(([0.0], np.cumsum(log_returns))))

    scaled = np.rint(path * 10 ** decimals)
    return [max(1, int(p)) for p in scaled]


def price_path_series(
    start: datetime,
    interval: timedelta,
    prices: Sequence[int],
) -> List[Tuple[datetime, int]]:
    """Pair each price with start + i * interval."""
    if interval <= timedelta(0):
        raise ValueError(f"interval must be positive, got {interval}")
    return [(start + i * interval, price) for i, price in enumerate(prices)]

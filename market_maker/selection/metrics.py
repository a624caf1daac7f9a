from __future__ import annotations

import math
import statistics
from collections import deque
from decimal import Decimal
from typing import Protocol

from market_maker.trading.planner import PriceLookup
from market_maker.trading.types import PairConfig, TokenConfig

from .types import MetricsSnapshot


class MetricsSource(Protocol):
    async def fetch(self, pair: PairConfig) -> MetricsSnapshot:
        ...


class ConfiguredMetricsSource:
    """Static catalogue values: pool TVL floor, daily volume and target spread."""

    async def fetch(self, pair: PairConfig) -> MetricsSnapshot:
        return MetricsSnapshot(
            liquidity=pair.min_liquidity,
            volume_24h=pair.daily_volume,
            volatility=0.0,
            spread_bps=pair.target_spread_bps,
        )


class FeedMetricsSource:
    """Adds realized volatility from feed mids sampled once per evaluation.

    Volatility is the population standard deviation of log returns over a
    bounded window; fewer than three samples report zero.
    """

    def __init__(
        self,
        *,
        prices: PriceLookup,
        base: MetricsSource | None = None,
        window: int = 30,
        max_price_age_ms: int = 60_000,
    ) -> None:
        self._prices = prices
        self._base = base or ConfiguredMetricsSource()
        self._window = max(3, window)
        self._max_price_age_ms = max_price_age_ms
        self._samples: dict[str, deque[float]] = {}

    def _usd_price(self, token: TokenConfig) -> Decimal | None:
        if token.usd_pegged:
            return Decimal(1)
        symbol = token.feed_symbol or token.symbol
        if not self._prices.has_recent_price(symbol, self._max_price_age_ms):
            return None
        quote = self._prices.get_price(symbol)
        return quote.price if quote is not None else None

    def sample(self, pair: PairConfig) -> float | None:
        base_price = self._usd_price(pair.base)
        quote_price = self._usd_price(pair.quote)
        if base_price is None or quote_price is None or quote_price <= 0:
            return None

        mid = float(base_price / quote_price)
        samples = self._samples.setdefault(pair.symbol, deque(maxlen=self._window))
        samples.append(mid)
        return mid

    def volatility(self, symbol: str) -> float:
        samples = list(self._samples.get(symbol, ()))
        if len(samples) < 3:
            return 0.0
        returns = [
            math.log(current / previous)
            for previous, current in zip(samples, samples[1:])
            if previous > 0 and current > 0
        ]
        if len(returns) < 2:
            return 0.0
        return statistics.pstdev(returns)

    async def fetch(self, pair: PairConfig) -> MetricsSnapshot:
        snapshot = await self._base.fetch(pair)
        self.sample(pair)
        return MetricsSnapshot(
            liquidity=snapshot.liquidity,
            volume_24h=snapshot.volume_24h,
            volatility=self.volatility(pair.symbol),
            spread_bps=snapshot.spread_bps,
        )

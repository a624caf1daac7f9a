from market_maker.trading.types import PairConfig, TokenConfig

from .metrics import ConfiguredMetricsSource, FeedMetricsSource, MetricsSource
from .scoring import SCORERS, score_pair
from .selector import PairSelector
from .types import (
    STRATEGIES,
    STRATEGY_COMPOSITE,
    STRATEGY_LIQUIDITY,
    STRATEGY_PROFIT,
    STRATEGY_VOLATILITY,
    MetricsSnapshot,
    PairMetrics,
    PairPerformance,
    SelectionSettings,
    normalize_strategy,
)

__all__ = [
    "ConfiguredMetricsSource",
    "FeedMetricsSource",
    "MetricsSnapshot",
    "MetricsSource",
    "PairConfig",
    "PairMetrics",
    "PairPerformance",
    "PairSelector",
    "SCORERS",
    "STRATEGIES",
    "STRATEGY_COMPOSITE",
    "STRATEGY_LIQUIDITY",
    "STRATEGY_PROFIT",
    "STRATEGY_VOLATILITY",
    "SelectionSettings",
    "TokenConfig",
    "normalize_strategy",
    "score_pair",
]

from __future__ import annotations

import math
from typing import Any, Callable

from .types import (
    STRATEGY_COMPOSITE,
    STRATEGY_LIQUIDITY,
    STRATEGY_PROFIT,
    STRATEGY_VOLATILITY,
    PairMetrics,
    PairPerformance,
    normalize_strategy,
)

MAX_SCORE = 100.0

Scorer = Callable[[PairMetrics, PairPerformance], float]


def finite(value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(number) or math.isinf(number):
        return 0.0
    return number


def unit(value: float) -> float:
    return max(0.0, min(1.0, value))


def bounded(value: float) -> float:
    return max(0.0, min(MAX_SCORE, finite(value)))


def liquidity_score(metrics: PairMetrics, performance: PairPerformance) -> float:
    liquidity = unit(finite(metrics.liquidity) / 1_000_000) * 40
    spread = unit((200 - finite(metrics.spread)) / 200) * 30
    risk = unit((100 - finite(metrics.risk_score)) / 100) * 20
    success_rate = performance.success_rate
    history = success_rate * 10 if success_rate is not None else 5.0
    return bounded(liquidity + spread + risk + history)


def volatility_score(metrics: PairMetrics, performance: PairPerformance) -> float:
    volatility = min(max(0.0, finite(metrics.volatility)) * 100, 50)
    liquidity = unit(finite(metrics.liquidity) / 500_000) * 25
    profit = unit(finite(metrics.profitability)) * 25
    return bounded(volatility + liquidity + profit)


def profit_score(metrics: PairMetrics, performance: PairPerformance) -> float:
    profit = unit(finite(metrics.profitability)) * 50
    volume = unit(finite(performance.total_volume) / 10_000) * 25
    success_rate = performance.success_rate
    consistency = success_rate * 25 if success_rate is not None and performance.total_trades > 10 else 0.0
    return bounded(profit + volume + consistency)


def composite_score(metrics: PairMetrics, performance: PairPerformance) -> float:
    liquidity = unit(finite(metrics.liquidity) / 1_000_000) * 100
    profit = unit(finite(metrics.profitability)) * 100
    risk = unit((100 - finite(metrics.risk_score)) / 100) * 100
    success_rate = performance.success_rate
    history = success_rate * 100 if success_rate is not None else 50.0
    return bounded(liquidity * 0.3 + profit * 0.3 + risk * 0.2 + history * 0.2)


SCORERS: dict[str, Scorer] = {
    STRATEGY_LIQUIDITY: liquidity_score,
    STRATEGY_VOLATILITY: volatility_score,
    STRATEGY_PROFIT: profit_score,
    STRATEGY_COMPOSITE: composite_score,
}


def score_pair(strategy: str, metrics: PairMetrics, performance: PairPerformance) -> float:
    return SCORERS[normalize_strategy(strategy)](metrics, performance)

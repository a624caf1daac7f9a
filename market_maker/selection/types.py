from __future__ import annotations

import os
from dataclasses import asdict, dataclass
from typing import Any

from market_maker.trading.types import to_bool, to_float, to_int

STRATEGY_LIQUIDITY = "liquidity"
STRATEGY_VOLATILITY = "volatility"
STRATEGY_PROFIT = "profit"
STRATEGY_COMPOSITE = "composite"

STRATEGIES = (STRATEGY_LIQUIDITY, STRATEGY_VOLATILITY, STRATEGY_PROFIT, STRATEGY_COMPOSITE)


def normalize_strategy(value: str | None) -> str:
    strategy = (value or "").strip().lower()
    if strategy in STRATEGIES:
        return strategy
    return STRATEGY_COMPOSITE


@dataclass(slots=True, frozen=True)
class MetricsSnapshot:
    liquidity: float
    volume_24h: float
    volatility: float
    spread_bps: float


@dataclass(slots=True)
class PairMetrics:
    liquidity: float = 0.0
    volume_24h: float = 0.0
    volatility: float = 0.0
    spread: float = 0.0
    profitability: float = 0.0
    risk_score: float = 0.0
    last_update_ms: int = 0
    is_active: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class PairPerformance:
    total_trades: int = 0
    successful_trades: int = 0
    total_volume: float = 0.0
    total_pnl: float = 0.0
    avg_spread: float = 0.0
    spread_samples: int = 0
    last_trade_time_ms: int = 0

    @property
    def success_rate(self) -> float | None:
        if self.total_trades <= 0:
            return None
        return self.successful_trades / self.total_trades

    def record(
        self,
        *,
        success: bool,
        volume: float,
        pnl: float,
        spread_bps: float | None,
        timestamp_ms: int,
    ) -> None:
        self.total_trades += 1
        if success:
            self.successful_trades += 1
        self.total_volume += max(0.0, volume)
        self.total_pnl += pnl
        self.last_trade_time_ms = timestamp_ms
        if spread_bps is not None:
            if self.spread_samples == 0:
                self.avg_spread = spread_bps
            else:
                self.avg_spread = (self.avg_spread + spread_bps) / 2
            self.spread_samples += 1

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["success_rate"] = self.success_rate
        return payload


@dataclass(slots=True, frozen=True)
class SelectionSettings:
    strategy: str = STRATEGY_LIQUIDITY
    max_active_pairs: int = 3
    evaluation_interval_seconds: float = 30.0
    rotation_enabled: bool = True
    rotation_margin: float = 0.2
    rotation_interval_seconds: float = 300.0

    @classmethod
    def from_env(cls) -> "SelectionSettings":
        return cls(
            strategy=normalize_strategy(os.getenv("PAIR_SELECTION_STRATEGY", STRATEGY_LIQUIDITY)),
            max_active_pairs=max(1, to_int(os.getenv("MAX_ACTIVE_PAIRS"), 3)),
            evaluation_interval_seconds=max(
                1.0,
                to_float(os.getenv("PAIR_EVALUATION_INTERVAL_SECONDS"), 30.0),
            ),
            rotation_enabled=to_bool(os.getenv("PAIR_ROTATION_ENABLED"), True),
            rotation_margin=max(0.0, to_float(os.getenv("PAIR_ROTATION_MARGIN"), 0.2)),
            rotation_interval_seconds=max(
                1.0,
                to_float(os.getenv("PAIR_ROTATION_INTERVAL_SECONDS"), 300.0),
            ),
        )

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Sequence

from market_maker.common import log_event
from market_maker.trading.types import PairConfig, TradeResult, now_ms

from .metrics import MetricsSource
from .scoring import finite, score_pair
from .types import PairMetrics, PairPerformance, SelectionSettings


class PairSelector:
    def __init__(
        self,
        *,
        logger: logging.Logger,
        pairs: Sequence[PairConfig],
        metrics_source: MetricsSource,
        settings: SelectionSettings | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._logger = logger
        self._settings = settings or SelectionSettings()
        self._metrics_source = metrics_source
        self._clock = clock
        # Configuration order is the tie-breaker for equal scores.
        self._pairs: list[PairConfig] = [pair for pair in pairs if pair.enabled]
        self._pairs_by_symbol = {pair.symbol: pair for pair in self._pairs}
        self._metrics: dict[str, PairMetrics] = {pair.symbol: PairMetrics() for pair in self._pairs}
        self._performance: dict[str, PairPerformance] = {
            pair.symbol: PairPerformance() for pair in self._pairs
        }
        self._scores: dict[str, float] = {pair.symbol: 0.0 for pair in self._pairs}
        self._active: list[str] = []
        self._last_evaluation_ms: int | None = None
        self._last_rotation_ms: int | None = None
        self._lock = asyncio.Lock()

    @property
    def settings(self) -> SelectionSettings:
        return self._settings

    @property
    def pairs(self) -> list[PairConfig]:
        return list(self._pairs)

    def pair_config(self, symbol: str) -> PairConfig | None:
        return self._pairs_by_symbol.get(symbol)

    def get_active_pairs(self) -> frozenset[str]:
        return frozenset(self._active)

    def active_pair_configs(self) -> list[PairConfig]:
        return [self._pairs_by_symbol[symbol] for symbol in self._active]

    def is_pair_active(self, symbol: str) -> bool:
        return symbol in self._active

    def get_metrics(self, symbol: str) -> PairMetrics | None:
        return self._metrics.get(symbol)

    def get_performance(self, symbol: str) -> PairPerformance | None:
        return self._performance.get(symbol)

    def score(self, symbol: str) -> float:
        return self._scores.get(symbol, 0.0)

    def should_reevaluate(self) -> bool:
        if self._last_evaluation_ms is None:
            return True
        elapsed_ms = self._clock() - self._last_evaluation_ms
        return elapsed_ms >= self._settings.evaluation_interval_seconds * 1000

    def should_rotate(self) -> bool:
        if not self._settings.rotation_enabled or self._last_evaluation_ms is None:
            return False
        reference_ms = max(self._last_evaluation_ms, self._last_rotation_ms or 0)
        return self._clock() - reference_ms >= self._settings.rotation_interval_seconds * 1000

    async def evaluate_and_select(self) -> frozenset[str] | None:
        if self._lock.locked():
            log_event(
                self._logger,
                level="debug",
                event="pair_evaluation_skipped",
                message="Pair evaluation already in progress",
            )
            return None

        async with self._lock:
            await self._refresh_metrics(self._pairs)
            self._rescore()

            ranked = sorted(self._pairs, key=lambda pair: self._scores[pair.symbol], reverse=True)
            selected = [pair.symbol for pair in ranked[: self._settings.max_active_pairs]]
            previous = set(self._active)
            self._active = selected
            for symbol, metrics in self._metrics.items():
                metrics.is_active = symbol in selected
            self._last_evaluation_ms = self._clock()

            added = [symbol for symbol in selected if symbol not in previous]
            removed = sorted(previous - set(selected))
            log_event(
                self._logger,
                level="info" if added or removed else "debug",
                event="pair_selection_updated",
                message="Active pair set evaluated",
                strategy=self._settings.strategy,
                active=selected,
                added=added,
                removed=removed,
                scores={symbol: round(self._scores[symbol], 4) for symbol in selected},
            )
            return self.get_active_pairs()

    async def maybe_rotate(self) -> tuple[str, str] | None:
        if not self._settings.rotation_enabled:
            return None
        if len(self._pairs) <= self._settings.max_active_pairs:
            return None
        if self._lock.locked():
            return None

        async with self._lock:
            self._last_rotation_ms = self._clock()
            inactive = [pair for pair in self._pairs if pair.symbol not in self._active]
            if not inactive or not self._active:
                return None

            await self._refresh_metrics(self._pairs)
            self._rescore()

            # min()/max() return the first extreme, keeping configuration order on ties.
            active_order = [pair.symbol for pair in self._pairs if pair.symbol in self._active]
            incumbent = min(active_order, key=lambda symbol: self._scores[symbol])
            candidate = max((pair.symbol for pair in inactive), key=lambda symbol: self._scores[symbol])
            incumbent_score = self._scores[incumbent]
            candidate_score = self._scores[candidate]
            threshold = incumbent_score * (1 + self._settings.rotation_margin)

            if candidate_score <= threshold:
                log_event(
                    self._logger,
                    level="debug",
                    event="pair_rotation_skipped",
                    message="Best inactive pair does not clear the rotation margin",
                    incumbent=incumbent,
                    incumbent_score=incumbent_score,
                    candidate=candidate,
                    candidate_score=candidate_score,
                )
                return None

            self._active = [candidate if symbol == incumbent else symbol for symbol in self._active]
            self._metrics[incumbent].is_active = False
            self._metrics[candidate].is_active = True
            log_event(
                self._logger,
                level="info",
                event="pair_rotated",
                message="Rotated active pair",
                removed=incumbent,
                removed_score=incumbent_score,
                added=candidate,
                added_score=candidate_score,
            )
            return incumbent, candidate

    def record_trade_outcome(
        self,
        pair: str,
        result: TradeResult,
        *,
        volume: float | None = None,
        pnl: float = 0.0,
        spread_bps: float | None = None,
    ) -> None:
        performance = self._performance.get(pair)
        if performance is None:
            log_event(
                self._logger,
                level="debug",
                event="trade_outcome_unknown_pair",
                message="Trade outcome for a pair the selector does not track",
                pair=pair,
            )
            return

        performance.record(
            success=result.success,
            volume=finite(volume) if result.success else 0.0,
            pnl=finite(pnl) if result.success else 0.0,
            spread_bps=finite(spread_bps) if spread_bps is not None else None,
            timestamp_ms=result.finished_at_ms or self._clock(),
        )
        self._metrics[pair].profitability = self._profitability(performance)

    async def _refresh_metrics(self, pairs: Sequence[PairConfig]) -> None:
        results = await asyncio.gather(
            *(self._metrics_source.fetch(pair) for pair in pairs),
            return_exceptions=True,
        )
        refreshed_at = self._clock()
        for pair, snapshot in zip(pairs, results):
            if isinstance(snapshot, asyncio.CancelledError):
                raise snapshot
            if isinstance(snapshot, BaseException):
                # Previous metrics stay in place; the pair is still scored.
                log_event(
                    self._logger,
                    level="warning",
                    event="pair_metrics_refresh_failed",
                    message="Failed to refresh pair metrics",
                    pair=pair.symbol,
                    error=str(snapshot),
                    error_type=type(snapshot).__name__,
                )
                continue

            metrics = self._metrics[pair.symbol]
            metrics.liquidity = finite(snapshot.liquidity)
            metrics.volume_24h = finite(snapshot.volume_24h)
            metrics.volatility = finite(snapshot.volatility)
            metrics.spread = finite(snapshot.spread_bps)
            metrics.profitability = self._profitability(self._performance[pair.symbol])
            metrics.risk_score = metrics.volatility * 100 + metrics.spread / 10
            metrics.last_update_ms = refreshed_at

    @staticmethod
    def _profitability(performance: PairPerformance) -> float:
        if performance.total_trades <= 0 or performance.total_volume <= 0:
            return 0.0
        return performance.total_pnl / performance.total_volume

    def _rescore(self) -> None:
        for pair in self._pairs:
            self._scores[pair.symbol] = score_pair(
                self._settings.strategy,
                self._metrics[pair.symbol],
                self._performance[pair.symbol],
            )

    def pairs_summary(self) -> list[dict[str, Any]]:
        summary: list[dict[str, Any]] = []
        for pair in self._pairs:
            metrics = self._metrics[pair.symbol]
            performance = self._performance[pair.symbol]
            success_rate = performance.success_rate
            summary.append(
                {
                    "symbol": pair.symbol,
                    "is_active": metrics.is_active,
                    "score": self._scores[pair.symbol],
                    "liquidity": metrics.liquidity,
                    "volume_24h": metrics.volume_24h,
                    "volatility": metrics.volatility,
                    "spread": metrics.spread,
                    "profitability": metrics.profitability,
                    "risk_score": metrics.risk_score,
                    "total_trades": performance.total_trades,
                    "successful_trades": performance.successful_trades,
                    "total_volume": performance.total_volume,
                    "avg_spread": performance.avg_spread,
                    "success_rate": success_rate * 100 if success_rate is not None else 0.0,
                }
            )
        return summary

    def selection_summary(self) -> dict[str, Any]:
        active_scores = [self._scores[symbol] for symbol in self._active]
        all_scores = list(self._scores.values())
        return {
            "strategy": self._settings.strategy,
            "max_active_pairs": self._settings.max_active_pairs,
            "configured_pairs": len(self._pairs),
            "active_pairs": list(self._active),
            "avg_active_score": sum(active_scores) / len(active_scores) if active_scores else 0.0,
            "avg_score": sum(all_scores) / len(all_scores) if all_scores else 0.0,
            "last_evaluation_ms": self._last_evaluation_ms,
            "last_rotation_ms": self._last_rotation_ms,
        }

from __future__ import annotations

import asyncio
import logging
from typing import Any

from market_maker.common import guarded_call, log_event
from market_maker.feed import FEED_EVENT_ERROR, PriceFeedClient
from market_maker.selection import PairSelector
from market_maker.storage import StorageGateway
from market_maker.trading import (
    ExecutionEngine,
    RuntimeConfig,
    TradeIntent,
    TradePlanner,
    TradeResult,
)
from market_maker.trading.types import now_ms

from .loop_helpers import (
    bootstrap_dependencies,
    build_trade_sample,
    try_resume_order_intake,
    wait_with_stop,
)
from .settings import AppSettings


def tracked_feed_symbols(selector: PairSelector) -> list[str]:
    symbols: list[str] = []
    for pair in selector.pairs:
        for token in (pair.base, pair.quote):
            if token.usd_pegged:
                continue
            symbol = token.feed_symbol or token.symbol
            if symbol not in symbols:
                symbols.append(symbol)
    return symbols


async def run_trading_loop(
    *,
    logger: logging.Logger,
    stop_event: asyncio.Event,
    app_settings: AppSettings,
    storage: StorageGateway,
    feed: PriceFeedClient,
    selector: PairSelector,
    planner: TradePlanner,
    engine: ExecutionEngine,
    runtime_defaults: RuntimeConfig,
) -> None:
    loop = asyncio.get_running_loop()
    next_tick = loop.time()

    order_intake_paused = False
    pause_reason = ""
    feed_failed: BaseException | None = None
    last_trade_at: dict[str, float] = {}
    pending_intents: dict[str, TradeIntent] = {}
    symbols = tracked_feed_symbols(selector)

    def on_feed_error(error: BaseException) -> None:
        nonlocal feed_failed
        feed_failed = error

    def on_trade_outcome(pair_symbol: str, result: TradeResult) -> None:
        intent = pending_intents.pop(pair_symbol, None)
        pair = selector.pair_config(pair_symbol)
        if intent is None or pair is None:
            selector.record_trade_outcome(pair_symbol, result)
            return
        sample = build_trade_sample(pair=pair, intent=intent, result=result, prices=feed)
        selector.record_trade_outcome(
            pair_symbol,
            result,
            volume=sample.volume_usd,
            pnl=sample.pnl_usd,
            spread_bps=sample.spread_bps,
        )

    unsubscribe_feed_error = feed.subscribe(FEED_EVENT_ERROR, on_feed_error)
    remove_outcome_listener = engine.add_outcome_listener(on_trade_outcome)

    async def record_telemetry() -> None:
        status = feed.status()
        last_message_ms = feed.last_message_ms
        await storage.record_feed_status(
            status,
            last_message_age_ms=now_ms() - last_message_ms if last_message_ms is not None else None,
        )
        for symbol in symbols:
            quote = feed.get_price(symbol)
            if quote is not None:
                await storage.record_price(symbol, quote)
        await storage.update_heartbeat()

    async def execute_pair(pair_symbol: str, runtime_config: RuntimeConfig) -> None:
        pair = selector.pair_config(pair_symbol)
        if pair is None:
            return

        decision = planner.plan(pair, slippage_bps=runtime_config.slippage_bps)
        if decision.intent is None:
            return

        intent = decision.intent
        last_trade_at[pair.symbol] = loop.time()
        pending_intents[pair.symbol] = intent
        result = await engine.execute_best_trade(
            intent.token_in,
            intent.token_out,
            intent.amount_in,
            intent.min_amount_out,
            intent.reason,
            pair=pair.symbol,
            fee_hint=pair.default_fee,
        )
        pending_intents.pop(pair.symbol, None)

        details: dict[str, Any] = {
            "side": intent.side,
            "reference_amount_out": str(intent.reference_amount_out),
            "min_amount_out": str(intent.min_amount_out),
            "dry_run": app_settings.dry_run,
        }
        await guarded_call(
            lambda: storage.record_trade(pair.symbol, result, extra=details),
            logger=logger,
            event="trade_record_failed",
            message="Failed to record trade outcome",
            pair=pair.symbol,
        )
        await guarded_call(
            lambda: storage.publish_event(
                level="INFO" if result.success else "WARNING",
                event="trade_execution",
                message="Trade executed" if result.success else "Trade failed",
                details={"pair": pair.symbol, **details, **result.to_dict()},
            ),
            logger=logger,
            event="trade_event_publish_failed",
            message="Failed to publish trade_execution event",
            pair=pair.symbol,
        )

    try:
        while not stop_event.is_set():
            try:
                # The resume check below fails on the feed healthcheck until the feed is restarted.
                if feed_failed is not None:
                    log_event(
                        logger,
                        level="error",
                        event="feed_restart",
                        message="Price feed gave up reconnecting; restarting it",
                        error=str(feed_failed),
                    )
                    feed_failed = None
                    await feed.reconnect()

                if order_intake_paused:
                    recovered = await try_resume_order_intake(
                        logger=logger,
                        storage=storage,
                        engine=engine,
                        feed=feed,
                        pause_reason=pause_reason,
                    )
                    if not recovered:
                        await guarded_call(
                            storage.update_heartbeat,
                            logger=logger,
                            event="order_intake_paused_heartbeat_failed",
                            message="Failed to update heartbeat while intake is paused",
                        )
                        continue

                    order_intake_paused = False
                    pause_reason = ""
                    await guarded_call(
                        lambda: storage.publish_event(
                            level="INFO",
                            event="order_intake_resumed",
                            message="Order intake resumed after successful recovery",
                        ),
                        logger=logger,
                        event="order_intake_resumed_publish_failed",
                        message="Failed to publish order_intake_resumed event",
                    )

                if selector.should_reevaluate():
                    await selector.evaluate_and_select()
                elif selector.should_rotate():
                    await selector.maybe_rotate()
                await guarded_call(
                    lambda: storage.record_pair_metrics(
                        selector.pairs_summary(),
                        selection=selector.selection_summary(),
                    ),
                    logger=logger,
                    event="pair_metrics_record_failed",
                    message="Failed to record pair metrics",
                )

                redis_config = await storage.get_runtime_config()
                runtime_config = RuntimeConfig.from_redis(redis_config, runtime_defaults)
                await record_telemetry()

                if not runtime_config.trade_enabled:
                    log_event(
                        logger,
                        level="debug",
                        event="trading_disabled",
                        message="Trading disabled by runtime config",
                        active_pairs=sorted(selector.get_active_pairs()),
                    )
                    continue

                now = loop.time()
                for pair in selector.active_pair_configs():
                    last_at = last_trade_at.get(pair.symbol)
                    if last_at is not None and now - last_at < runtime_config.trade_cooldown_seconds:
                        continue
                    if stop_event.is_set():
                        break
                    await execute_pair(pair.symbol, runtime_config)

            except Exception as error:
                pause_reason = str(error)
                order_intake_paused = True

                log_event(
                    logger,
                    level="exception",
                    event="main_loop_error",
                    message="Main loop failed and order intake has been paused",
                    error=str(error),
                )
                await guarded_call(
                    lambda: storage.publish_event(
                        level="ERROR",
                        event="order_intake_paused",
                        message="Order intake paused due to dependency or runtime error",
                        details={"error": str(error)},
                    ),
                    logger=logger,
                    event="main_loop_pause_publish_failed",
                    message="Failed to publish order_intake_paused event",
                )
            finally:
                next_tick += app_settings.loop_interval_seconds
                now = loop.time()
                if next_tick <= now:
                    missed_cycles = int((now - next_tick) / app_settings.loop_interval_seconds) + 1
                    next_tick += missed_cycles * app_settings.loop_interval_seconds

                delay_seconds = max(0.0, next_tick - now)
                if order_intake_paused:
                    delay_seconds = max(delay_seconds, app_settings.error_backoff_seconds)

                await wait_with_stop(stop_event, delay_seconds)
    finally:
        unsubscribe_feed_error()
        remove_outcome_listener()


__all__ = [
    "bootstrap_dependencies",
    "run_trading_loop",
    "tracked_feed_symbols",
]

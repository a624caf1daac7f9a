from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from market_maker.common import guarded_call, log_event
from market_maker.trading import TradeIntent, TradeResult, edge_bps
from market_maker.trading.types import PairConfig, TokenConfig, normalize_address

if TYPE_CHECKING:
    from market_maker.feed import PriceFeedClient
    from market_maker.storage import StorageGateway
    from market_maker.trading import ChainClient, ExecutionEngine
    from market_maker.trading.planner import PriceLookup
    from .settings import AppSettings


@dataclass(slots=True, frozen=True)
class TradeSample:
    volume_usd: float | None
    pnl_usd: float
    spread_bps: float | None


async def wait_with_stop(stop_event: asyncio.Event, timeout_seconds: float) -> None:
    if timeout_seconds <= 0:
        return

    try:
        await asyncio.wait_for(stop_event.wait(), timeout=timeout_seconds)
    except asyncio.TimeoutError:
        pass


def token_for_address(pair: PairConfig, address: str) -> TokenConfig | None:
    normalized = normalize_address(address)
    for token in (pair.base, pair.quote):
        if normalize_address(token.address) == normalized:
            return token
    return None


def token_usd_price(token: TokenConfig, prices: PriceLookup) -> float | None:
    if token.usd_pegged:
        return 1.0
    quote = prices.get_price(token.feed_symbol or token.symbol)
    return float(quote.price) if quote is not None else None


def build_trade_sample(
    *,
    pair: PairConfig,
    intent: TradeIntent,
    result: TradeResult,
    prices: PriceLookup,
) -> TradeSample:
    spread = None
    if result.quote is not None:
        spread = edge_bps(
            amount_out=result.quote.amount_out,
            reference_amount_out=intent.reference_amount_out,
        )

    volume_usd = None
    token_in = token_for_address(pair, intent.token_in)
    if token_in is not None:
        price = token_usd_price(token_in, prices)
        if price is not None:
            volume_usd = intent.amount_in / 10**token_in.decimals * price

    pnl_usd = 0.0
    if result.success and volume_usd is not None and spread is not None:
        pnl_usd = volume_usd * spread / 10_000
    return TradeSample(volume_usd=volume_usd, pnl_usd=pnl_usd, spread_bps=spread)


async def bootstrap_dependencies(
    *,
    logger: logging.Logger,
    stop_event: asyncio.Event,
    app_settings: AppSettings,
    storage: StorageGateway,
    feed: PriceFeedClient,
    chain: ChainClient,
) -> None:
    while not stop_event.is_set():
        try:
            await storage.connect()
            await chain.healthcheck()
            await feed.connect()
            connected = await feed.wait_until_connected(app_settings.feed_connect_timeout_seconds)
            if not connected:
                log_event(
                    logger,
                    level="warning",
                    event="feed_not_ready",
                    message="Price feed not connected yet; continuing while it retries",
                    feed_state=feed.state.value,
                )
            return
        except Exception as error:
            log_event(
                logger,
                level="exception",
                event="bootstrap_error",
                message="Dependency bootstrap failed",
                error=str(error),
            )
            await guarded_call(
                lambda: storage.publish_event(
                    level="ERROR",
                    event="bootstrap_error",
                    message="Failed to initialize dependencies",
                    details={"error": str(error)},
                ),
                logger=logger,
                event="bootstrap_publish_error_failed",
                message="Failed to publish bootstrap error",
            )
            await guarded_call(
                feed.close,
                logger=logger,
                event="bootstrap_feed_close_failed",
                message="Failed to close price feed during bootstrap retry",
            )
            await guarded_call(
                storage.close,
                logger=logger,
                event="bootstrap_storage_close_failed",
                message="Failed to close storage during bootstrap retry",
            )

            await wait_with_stop(stop_event, app_settings.error_backoff_seconds)

    raise RuntimeError("Shutdown requested before dependencies were initialized.")


async def try_resume_order_intake(
    *,
    logger: logging.Logger,
    storage: StorageGateway,
    engine: ExecutionEngine,
    feed: PriceFeedClient,
    pause_reason: str,
) -> bool:
    try:
        await storage.healthcheck()
        await engine.healthcheck()
        await feed.healthcheck()
        log_event(
            logger,
            level="info",
            event="order_intake_recovered",
            message="Order intake resumed after dependency recovery",
            reason=pause_reason,
        )
        return True
    except Exception as error:
        log_event(
            logger,
            level="warning",
            event="order_intake_still_paused",
            message="Order intake remains paused",
            reason=pause_reason,
            error=str(error),
        )
        return False


__all__ = [
    "TradeSample",
    "bootstrap_dependencies",
    "build_trade_sample",
    "token_for_address",
    "token_usd_price",
    "try_resume_order_intake",
    "wait_with_stop",
]

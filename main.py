from __future__ import annotations

import asyncio
import contextlib
import signal

from dotenv import load_dotenv

from market_maker.bot_runtime import (
    AppSettings,
    bootstrap_dependencies,
    run_trading_loop,
    setup_logger,
)
from market_maker.common import log_event
from market_maker.feed import PriceFeedClient
from market_maker.selection import FeedMetricsSource, PairSelector
from market_maker.storage import StorageGateway, StorageSettings
from market_maker.trading import (
    ApprovalGuard,
    ChainClient,
    DryRunChainClient,
    ExecutionEngine,
    QuoteSourceAdapter,
    RuntimeConfig,
    TradePlanner,
    Web3ChainClient,
    load_pair_catalogue_from_env,
)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


async def main() -> None:
    load_dotenv()
    logger = setup_logger()

    app_settings = AppSettings.from_env()
    storage_settings = StorageSettings.from_env()
    runtime_defaults = RuntimeConfig.from_env_defaults()
    pairs = load_pair_catalogue_from_env()

    storage = StorageGateway(storage_settings, logger)
    feed = PriceFeedClient(logger=logger, settings=app_settings.feed_settings())

    web3_client = Web3ChainClient(
        logger=logger,
        rpc_url=app_settings.rpc_url,
        private_key=app_settings.private_key or None,
        account_address=app_settings.account_address or (ZERO_ADDRESS if app_settings.dry_run else None),
        chain_id=app_settings.chain_id,
    )
    chain: ChainClient
    if app_settings.dry_run:
        chain = DryRunChainClient(logger=logger, delegate=web3_client)
    else:
        chain = web3_client

    routers = app_settings.router_settings()
    quotes = QuoteSourceAdapter(
        logger=logger,
        chain=chain,
        routers=routers,
        quote_timeout_seconds=app_settings.quote_timeout_seconds,
    )
    approvals = ApprovalGuard(
        logger=logger,
        chain=chain,
        confirm_timeout_seconds=app_settings.confirm_timeout_seconds,
    )
    engine = ExecutionEngine(
        logger=logger,
        chain=chain,
        quotes=quotes,
        approvals=approvals,
        routers=routers,
        settings=app_settings.execution_settings(),
    )
    selector = PairSelector(
        logger=logger,
        pairs=pairs,
        metrics_source=FeedMetricsSource(
            prices=feed,
            window=app_settings.volatility_window,
            max_price_age_ms=app_settings.max_price_age_ms,
        ),
        settings=app_settings.selection,
    )
    planner = TradePlanner(logger=logger, prices=feed, max_price_age_ms=app_settings.max_price_age_ms)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def request_shutdown(sig: signal.Signals) -> None:
        log_event(
            logger,
            level="info",
            event="shutdown_signal_received",
            message="Shutdown signal received",
            signal=sig.name,
        )
        stop_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, request_shutdown, sig)

    await bootstrap_dependencies(
        logger=logger,
        stop_event=stop_event,
        app_settings=app_settings,
        storage=storage,
        feed=feed,
        chain=chain,
    )

    await storage.publish_event(
        level="INFO",
        event="bot_started",
        message="Bot process started",
        details={
            "pairs": [pair.symbol for pair in selector.pairs],
            "strategy": app_settings.selection.strategy,
            "max_active_pairs": app_settings.selection.max_active_pairs,
            "dry_run": app_settings.dry_run,
            "account": chain.account_address,
            "loop_interval_seconds": app_settings.loop_interval_seconds,
        },
    )

    try:
        await run_trading_loop(
            logger=logger,
            stop_event=stop_event,
            app_settings=app_settings,
            storage=storage,
            feed=feed,
            selector=selector,
            planner=planner,
            engine=engine,
            runtime_defaults=runtime_defaults,
        )
    finally:
        with contextlib.suppress(Exception):
            await storage.publish_event(
                level="INFO",
                event="bot_stopped",
                message="Bot process stopped gracefully",
                details={"execution": engine.stats()},
            )

        with contextlib.suppress(Exception):
            await feed.close()
        with contextlib.suppress(Exception):
            await chain.close()
        with contextlib.suppress(Exception):
            await storage.close()

        log_event(logger, level="info", event="shutdown_completed", message="Shutdown completed")


if __name__ == "__main__":
    asyncio.run(main())

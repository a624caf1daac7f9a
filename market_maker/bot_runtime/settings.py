from __future__ import annotations

import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from market_maker.feed import DEFAULT_FEED_URL, FeedSettings
from market_maker.selection import SelectionSettings
from market_maker.trading.catalog import (
    HYPERSWAP_QUOTER_V1,
    HYPERSWAP_QUOTER_V2,
    HYPERSWAP_V2_ROUTER,
    HYPERSWAP_V3_ROUTER,
    WHYPE,
)
from market_maker.trading.types import ExecutionSettings, RouterSettings, to_bool, to_float, to_int


def to_decimal(value: str | None, default: Decimal) -> Decimal:
    try:
        if value is None or value.strip() == "":
            return default
        parsed = Decimal(value.strip())
    except (InvalidOperation, ValueError):
        return default
    return parsed if parsed.is_finite() else default


def parse_address_list(value: str | None, default: tuple[str, ...]) -> tuple[str, ...]:
    if value is None:
        return default
    return tuple(item.strip() for item in value.split(",") if item.strip())


@dataclass(slots=True)
class AppSettings:
    loop_interval_seconds: float
    error_backoff_seconds: float
    feed_url: str
    feed_ping_interval_seconds: float
    feed_pong_timeout_seconds: float
    feed_silence_timeout_seconds: float
    feed_reconnect_floor_seconds: float
    feed_reconnect_ceiling_seconds: float
    feed_max_reconnect_attempts: int
    feed_connect_timeout_seconds: float
    price_announce_threshold: Decimal
    max_price_age_ms: int
    rpc_url: str
    chain_id: int
    private_key: str
    account_address: str
    dry_run: bool
    v3_router: str
    v2_router: str
    quoter_v2: str
    quoter_v1: str
    v2_intermediate_tokens: tuple[str, ...]
    pool_fee: int
    quote_timeout_seconds: float
    tx_deadline_seconds: int
    v2_gas_limit: int
    v3_gas_limit_fallback: int
    gas_margin_pct: int
    confirm_timeout_seconds: float
    volatility_window: int
    selection: SelectionSettings

    @classmethod
    def from_env(cls) -> "AppSettings":
        floor_seconds = max(0.1, to_float(os.getenv("FEED_RECONNECT_FLOOR_SECONDS"), 1.0))
        return cls(
            loop_interval_seconds=max(0.5, to_float(os.getenv("LOOP_INTERVAL_SECONDS"), 5.0)),
            error_backoff_seconds=max(0.2, to_float(os.getenv("ERROR_BACKOFF_SECONDS"), 2.0)),
            feed_url=os.getenv("HYPERLIQUID_WS_URL", DEFAULT_FEED_URL).strip() or DEFAULT_FEED_URL,
            feed_ping_interval_seconds=max(1.0, to_float(os.getenv("FEED_PING_INTERVAL_SECONDS"), 30.0)),
            feed_pong_timeout_seconds=max(1.0, to_float(os.getenv("FEED_PONG_TIMEOUT_SECONDS"), 30.0)),
            feed_silence_timeout_seconds=max(
                1.0,
                to_float(os.getenv("FEED_SILENCE_TIMEOUT_SECONDS"), 60.0),
            ),
            feed_reconnect_floor_seconds=floor_seconds,
            feed_reconnect_ceiling_seconds=max(
                floor_seconds,
                to_float(os.getenv("FEED_RECONNECT_CEILING_SECONDS"), 30.0),
            ),
            feed_max_reconnect_attempts=max(1, to_int(os.getenv("FEED_MAX_RECONNECT_ATTEMPTS"), 10)),
            feed_connect_timeout_seconds=max(1.0, to_float(os.getenv("FEED_CONNECT_TIMEOUT_SECONDS"), 10.0)),
            price_announce_threshold=max(
                Decimal(0),
                to_decimal(os.getenv("PRICE_ANNOUNCE_THRESHOLD"), Decimal("0.001")),
            ),
            max_price_age_ms=max(1_000, to_int(os.getenv("MAX_PRICE_AGE_MS"), 60_000)),
            rpc_url=os.getenv("RPC_URL", "https://rpc.hyperliquid.xyz/evm").strip(),
            chain_id=max(1, to_int(os.getenv("CHAIN_ID"), 999)),
            private_key=os.getenv("PRIVATE_KEY", ""),
            account_address=os.getenv("ACCOUNT_ADDRESS", "").strip(),
            dry_run=to_bool(os.getenv("DRY_RUN"), True),
            v3_router=os.getenv("V3_ROUTER_ADDRESS", HYPERSWAP_V3_ROUTER).strip(),
            v2_router=os.getenv("V2_ROUTER_ADDRESS", HYPERSWAP_V2_ROUTER).strip(),
            quoter_v2=os.getenv("QUOTER_V2_ADDRESS", HYPERSWAP_QUOTER_V2).strip(),
            quoter_v1=os.getenv("QUOTER_V1_ADDRESS", HYPERSWAP_QUOTER_V1).strip(),
            v2_intermediate_tokens=parse_address_list(
                os.getenv("V2_INTERMEDIATE_TOKENS"),
                (WHYPE.address,),
            ),
            pool_fee=max(1, to_int(os.getenv("POOL_FEE"), 3000)),
            quote_timeout_seconds=max(0.5, to_float(os.getenv("QUOTE_TIMEOUT_SECONDS"), 10.0)),
            tx_deadline_seconds=max(30, to_int(os.getenv("TX_DEADLINE_SECONDS"), 300)),
            v2_gas_limit=max(21_000, to_int(os.getenv("V2_GAS_LIMIT"), 250_000)),
            v3_gas_limit_fallback=max(21_000, to_int(os.getenv("V3_GAS_LIMIT_FALLBACK"), 300_000)),
            gas_margin_pct=max(0, to_int(os.getenv("GAS_MARGIN_PCT"), 20)),
            confirm_timeout_seconds=max(5.0, to_float(os.getenv("CONFIRM_TIMEOUT_SECONDS"), 120.0)),
            volatility_window=max(3, to_int(os.getenv("VOLATILITY_WINDOW"), 30)),
            selection=SelectionSettings.from_env(),
        )

    def feed_settings(self) -> FeedSettings:
        return FeedSettings(
            url=self.feed_url,
            ping_interval_seconds=self.feed_ping_interval_seconds,
            pong_timeout_seconds=self.feed_pong_timeout_seconds,
            silence_timeout_seconds=self.feed_silence_timeout_seconds,
            reconnect_delay_floor_seconds=self.feed_reconnect_floor_seconds,
            reconnect_delay_ceiling_seconds=self.feed_reconnect_ceiling_seconds,
            max_reconnect_attempts=self.feed_max_reconnect_attempts,
            connect_timeout_seconds=self.feed_connect_timeout_seconds,
            announce_threshold=self.price_announce_threshold,
            recent_price_max_age_ms=self.max_price_age_ms,
        )

    def router_settings(self) -> RouterSettings:
        return RouterSettings(
            v3_router=self.v3_router,
            v3_quoter=self.quoter_v2,
            v3_quoter_v1=self.quoter_v1 or None,
            v2_router=self.v2_router or None,
            v2_intermediate_tokens=self.v2_intermediate_tokens,
            default_fee=self.pool_fee,
        )

    def execution_settings(self) -> ExecutionSettings:
        return ExecutionSettings(
            deadline_seconds=self.tx_deadline_seconds,
            v2_gas_limit=self.v2_gas_limit,
            v3_gas_limit_fallback=self.v3_gas_limit_fallback,
            gas_margin_pct=self.gas_margin_pct,
            confirm_timeout_seconds=self.confirm_timeout_seconds,
        )

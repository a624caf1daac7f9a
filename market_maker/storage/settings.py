from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime, timezone

from market_maker.trading.types import to_int


def _sanitize_bot_id(value: str, default: str) -> str:
    normalized = (value.strip() or default).replace("/", "-").replace(":", "-")
    return normalized or default


@dataclass(slots=True)
class StorageSettings:
    redis_url: str
    redis_config_key: str
    bot_id: str
    bot_env: str
    bot_run_id: str
    config_schema_version: int
    heartbeat_key: str
    price_prefix: str
    feed_status_key: str
    pair_metrics_prefix: str
    selection_summary_key: str
    trade_last_prefix: str
    trade_history_key: str
    events_key: str
    history_max_len: int

    @classmethod
    def from_env(cls) -> "StorageSettings":
        bot_id = _sanitize_bot_id(os.getenv("BOT_ID", "hyperswap-mm"), "hyperswap-mm")
        return cls(
            redis_url=os.getenv("REDIS_URL", "redis://redis:6379/0"),
            redis_config_key=os.getenv("REDIS_CONFIG_KEY", "config"),
            bot_id=bot_id,
            bot_env=os.getenv("BOT_ENV", "dev"),
            bot_run_id=os.getenv("BOT_RUN_ID")
            or datetime.now(timezone.utc).strftime("run-%Y%m%dT%H%M%SZ"),
            config_schema_version=max(1, to_int(os.getenv("CONFIG_SCHEMA_VERSION"), 1)),
            heartbeat_key=os.getenv("REDIS_HEARTBEAT_KEY", "bot:heartbeat"),
            price_prefix=os.getenv("REDIS_PRICE_PREFIX", "prices"),
            feed_status_key=os.getenv("REDIS_FEED_STATUS_KEY", "feed:status"),
            pair_metrics_prefix=os.getenv("REDIS_PAIR_METRICS_PREFIX", "pairs"),
            selection_summary_key=os.getenv("REDIS_SELECTION_SUMMARY_KEY", "pairs:selection"),
            trade_last_prefix=os.getenv("REDIS_TRADE_LAST_PREFIX", "trades:last"),
            trade_history_key=os.getenv("REDIS_TRADE_HISTORY_KEY", "trades:recent"),
            events_key=os.getenv("REDIS_EVENTS_KEY", "events:recent"),
            history_max_len=max(10, to_int(os.getenv("REDIS_HISTORY_MAX_LEN"), 500)),
        )

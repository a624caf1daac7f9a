from __future__ import annotations

import json
from typing import Any

from redis.asyncio.client import Redis

from market_maker.feed import FeedStatus, PriceQuote
from market_maker.trading.types import TradeResult

from .helpers import now_iso as _now_iso
from .helpers import to_redis_mapping as _to_redis_mapping


class RedisStorageOps:
    async def get_runtime_config(self) -> dict[str, str]:
        redis_client = self._require_redis()
        return await redis_client.hgetall(self.settings.redis_config_key)

    async def record_price(self, symbol: str, quote: PriceQuote) -> None:
        redis_client = self._require_redis()
        await redis_client.hset(
            f"{self.settings.price_prefix}:{symbol}",
            mapping={
                "symbol": symbol,
                "price": str(quote.price),
                "timestamp_ms": str(quote.timestamp_ms),
                "source": quote.source,
                "updated_at": _now_iso(),
            },
        )

    async def record_feed_status(self, status: FeedStatus, *, last_message_age_ms: int | None = None) -> None:
        redis_client = self._require_redis()
        payload = status.to_dict()
        payload["last_message_age_ms"] = last_message_age_ms
        payload["updated_at"] = _now_iso()
        await redis_client.hset(self.settings.feed_status_key, mapping=_to_redis_mapping(payload))

    async def record_pair_metrics(
        self,
        summary: list[dict[str, Any]],
        *,
        selection: dict[str, Any] | None = None,
    ) -> None:
        redis_client = self._require_redis()
        pipeline = redis_client.pipeline(transaction=False)
        updated_at = _now_iso()
        for row in summary:
            symbol = str(row.get("symbol", ""))
            if not symbol:
                continue
            mapping = _to_redis_mapping(row)
            mapping["updated_at"] = updated_at
            pipeline.hset(f"{self.settings.pair_metrics_prefix}:{symbol}", mapping=mapping)
        if selection:
            mapping = _to_redis_mapping(selection)
            mapping["updated_at"] = updated_at
            pipeline.hset(self.settings.selection_summary_key, mapping=mapping)
        await pipeline.execute()

    async def record_trade(self, pair: str, result: TradeResult, *, extra: dict[str, Any] | None = None) -> None:
        redis_client = self._require_redis()
        payload = result.to_dict()
        payload["pair"] = pair
        payload["bot_id"] = self.settings.bot_id
        payload["run_id"] = self.settings.bot_run_id
        payload["recorded_at"] = _now_iso()
        if extra:
            payload.update(extra)

        pipeline = redis_client.pipeline(transaction=True)
        pipeline.hset(f"{self.settings.trade_last_prefix}:{pair}", mapping=_to_redis_mapping(payload))
        pipeline.lpush(
            self.settings.trade_history_key,
            json.dumps(payload, ensure_ascii=False, separators=(",", ":"), default=str),
        )
        pipeline.ltrim(self.settings.trade_history_key, 0, self.settings.history_max_len - 1)
        await pipeline.execute()

    async def publish_event(
        self,
        *,
        level: str,
        event: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        redis_client = self._require_redis()
        payload: dict[str, Any] = {
            "timestamp": _now_iso(),
            "level": level,
            "event": event,
            "message": message,
            "bot_id": self.settings.bot_id,
            "run_id": self.settings.bot_run_id,
            "env": self.settings.bot_env,
            "schema_version": self.settings.config_schema_version,
        }
        if details:
            payload["details"] = details

        pipeline = redis_client.pipeline(transaction=True)
        pipeline.lpush(
            self.settings.events_key,
            json.dumps(payload, ensure_ascii=False, separators=(",", ":"), default=str),
        )
        pipeline.ltrim(self.settings.events_key, 0, self.settings.history_max_len - 1)
        await pipeline.execute()

    async def update_heartbeat(self) -> None:
        redis_client = self._require_redis()
        await redis_client.set(self.settings.heartbeat_key, _now_iso())

    def _require_redis(self) -> Redis:
        if self._redis is None:
            raise RuntimeError("Redis client is not initialized.")
        return self._redis

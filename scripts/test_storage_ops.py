from __future__ import annotations

import json
import logging
import os
import unittest
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

from market_maker.feed import PriceQuote
from market_maker.storage import StorageGateway, StorageSettings
from market_maker.storage.helpers import serialize_for_redis
from market_maker.trading import TradeResult


def _make_gateway() -> tuple[StorageGateway, MagicMock, MagicMock]:
    with patch.dict(os.environ, {"BOT_RUN_ID": "run-test", "REDIS_HISTORY_MAX_LEN": "50"}, clear=True):
        settings = StorageSettings.from_env()
    gateway = StorageGateway(settings, logging.getLogger("test.storage"))

    pipeline = MagicMock()
    pipeline.execute = AsyncMock(return_value=[])
    redis_client = MagicMock()
    redis_client.pipeline.return_value = pipeline
    redis_client.hset = AsyncMock()
    redis_client.hgetall = AsyncMock(return_value={"trade_enabled": "1"})
    redis_client.set = AsyncMock()
    redis_client.ping = AsyncMock()
    redis_client.aclose = AsyncMock()
    gateway._redis = redis_client
    return gateway, redis_client, pipeline


class StorageOpsTests(unittest.IsolatedAsyncioTestCase):
    async def test_runtime_config_reads_config_hash(self) -> None:
        gateway, redis_client, _ = _make_gateway()

        config = await gateway.get_runtime_config()

        self.assertEqual(config, {"trade_enabled": "1"})
        redis_client.hgetall.assert_awaited_once_with("config")

    async def test_record_price_writes_symbol_hash(self) -> None:
        gateway, redis_client, _ = _make_gateway()

        await gateway.record_price("HYPE", PriceQuote(symbol="HYPE", price=Decimal("44.85"), timestamp_ms=5))

        key = redis_client.hset.await_args.args[0]
        mapping = redis_client.hset.await_args.kwargs["mapping"]
        self.assertEqual(key, "prices:HYPE")
        self.assertEqual(mapping["price"], "44.85")
        self.assertEqual(mapping["timestamp_ms"], "5")

    async def test_record_trade_keeps_bounded_history(self) -> None:
        gateway, _, pipeline = _make_gateway()
        result = TradeResult(success=True, token_in="a", token_out="b", amount_in=10, tx_hash="0x01")

        await gateway.record_trade("HYPE/USDT0", result, extra={"side": "sell_base"})

        pipeline.hset.assert_called_once()
        self.assertEqual(pipeline.hset.call_args.args[0], "trades:last:HYPE/USDT0")
        history_key, raw = pipeline.lpush.call_args.args
        payload = json.loads(raw)
        self.assertEqual(history_key, "trades:recent")
        self.assertEqual(payload["pair"], "HYPE/USDT0")
        self.assertEqual(payload["side"], "sell_base")
        self.assertEqual(payload["run_id"], "run-test")
        pipeline.ltrim.assert_called_once_with("trades:recent", 0, 49)
        pipeline.execute.assert_awaited_once()

    async def test_publish_event_serializes_details(self) -> None:
        gateway, _, pipeline = _make_gateway()

        await gateway.publish_event(level="INFO", event="bot_started", message="started", details={"pairs": ["A"]})

        payload = json.loads(pipeline.lpush.call_args.args[1])
        self.assertEqual(payload["event"], "bot_started")
        self.assertEqual(payload["details"], {"pairs": ["A"]})
        self.assertEqual(payload["bot_id"], "hyperswap-mm")

    async def test_pair_metrics_skip_rows_without_symbol(self) -> None:
        gateway, _, pipeline = _make_gateway()

        await gateway.record_pair_metrics(
            [{"symbol": "A/USD", "score": 1.5, "is_active": True}, {"score": 0}],
            selection={"active_pairs": ["A/USD"]},
        )

        keys = [call.args[0] for call in pipeline.hset.call_args_list]
        self.assertEqual(keys, ["pairs:A/USD", "pairs:selection"])
        self.assertEqual(pipeline.hset.call_args_list[0].kwargs["mapping"]["is_active"], "1")

    async def test_operations_require_connection(self) -> None:
        gateway, _, _ = _make_gateway()
        await gateway.close()

        with self.assertRaises(RuntimeError):
            await gateway.update_heartbeat()

    def test_serialize_for_redis(self) -> None:
        self.assertEqual(serialize_for_redis(None), "")
        self.assertEqual(serialize_for_redis(False), "0")
        self.assertEqual(serialize_for_redis(Decimal("1.50")), "1.50")
        self.assertEqual(serialize_for_redis({"a": [1, 2]}), '{"a":[1,2]}')


if __name__ == "__main__":
    unittest.main()

from __future__ import annotations

import asyncio
import logging
import unittest
from typing import Any
from unittest.mock import AsyncMock

from market_maker.feed import (
    FEED_EVENT_CONNECTED,
    FEED_EVENT_ERROR,
    FEED_EVENT_RECONNECT_SCHEDULED,
    FeedConnectionError,
    FeedReconnectExhaustedError,
    FeedSettings,
    FeedState,
    PriceFeedClient,
)


class FakeWebSocket:
    def __init__(self) -> None:
        self.closed = False
        self.close_code: int | None = None
        self.sent: list[dict[str, Any]] = []
        self._closed_event = asyncio.Event()

    async def send_json(self, payload: dict[str, Any]) -> None:
        self.sent.append(payload)

    async def close(self) -> None:
        self.closed = True
        self._closed_event.set()

    def exception(self) -> None:
        return None

    def __aiter__(self) -> "FakeWebSocket":
        return self

    async def __anext__(self) -> Any:
        await self._closed_event.wait()
        raise StopAsyncIteration


class FakeSession:
    def __init__(self) -> None:
        self.sockets: list[FakeWebSocket] = []

    async def ws_connect(self, url: str, **_kwargs: Any) -> FakeWebSocket:
        ws = FakeWebSocket()
        self.sockets.append(ws)
        return ws

    async def close(self) -> None:
        return None


class ReconnectBackoffTests(unittest.IsolatedAsyncioTestCase):
    async def test_backoff_doubles_up_to_ceiling_and_resets_on_connect(self) -> None:
        feed = PriceFeedClient(
            logger=logging.getLogger("test.feed.backoff"),
            settings=FeedSettings(reconnect_delay_floor_seconds=1.0, reconnect_delay_ceiling_seconds=30.0),
        )

        delays = [feed._schedule_next_attempt() for _ in range(7)]

        self.assertEqual(delays, [1.0, 2.0, 4.0, 8.0, 16.0, 30.0, 30.0])
        self.assertEqual(feed.status().reconnect_attempts, 7)

        feed._mark_connected()

        self.assertEqual(feed.status().reconnect_attempts, 0)
        self.assertEqual(feed._schedule_next_attempt(), 1.0)

    async def test_gives_up_after_max_attempts_and_reports_error(self) -> None:
        feed = PriceFeedClient(
            logger=logging.getLogger("test.feed.exhausted"),
            settings=FeedSettings(
                reconnect_delay_floor_seconds=0.001,
                reconnect_delay_ceiling_seconds=0.004,
                max_reconnect_attempts=3,
            ),
            session=FakeSession(),  # type: ignore[arg-type]
        )
        feed._open_and_listen = AsyncMock(side_effect=FeedConnectionError("refused"))  # type: ignore[method-assign]

        scheduled: list[tuple[int, float]] = []
        errors: list[BaseException] = []
        feed.subscribe(FEED_EVENT_RECONNECT_SCHEDULED, lambda attempt, delay: scheduled.append((attempt, delay)))
        feed.subscribe(FEED_EVENT_ERROR, errors.append)

        await feed.connect()
        assert feed._supervisor_task is not None
        await asyncio.wait_for(feed._supervisor_task, timeout=2.0)

        self.assertEqual(scheduled, [(1, 0.001), (2, 0.002), (3, 0.004)])
        self.assertEqual(feed._open_and_listen.await_count, 4)
        self.assertEqual(feed.state, FeedState.FAILED)
        self.assertEqual(len(errors), 1)
        self.assertIsInstance(errors[0], FeedReconnectExhaustedError)
        self.assertEqual(errors[0].attempts, 3)  # type: ignore[attr-defined]

        with self.assertRaises(FeedConnectionError):
            await feed.healthcheck()

        await feed.close()


class HeartbeatTimeoutTests(unittest.IsolatedAsyncioTestCase):
    async def test_missing_pong_forces_reconnect_at_floor_delay(self) -> None:
        session = FakeSession()
        feed = PriceFeedClient(
            logger=logging.getLogger("test.feed.heartbeat"),
            settings=FeedSettings(
                ping_interval_seconds=0.01,
                pong_timeout_seconds=0.02,
                reconnect_delay_floor_seconds=0.5,
                reconnect_delay_ceiling_seconds=1.0,
            ),
            session=session,  # type: ignore[arg-type]
        )

        connected = asyncio.Event()
        scheduled_event = asyncio.Event()
        scheduled: list[tuple[int, float]] = []

        def on_scheduled(attempt: int, delay: float) -> None:
            scheduled.append((attempt, delay))
            scheduled_event.set()

        feed.subscribe(FEED_EVENT_CONNECTED, connected.set)
        feed.subscribe(FEED_EVENT_RECONNECT_SCHEDULED, on_scheduled)

        await feed.connect()
        self.assertTrue(await feed.wait_until_connected(1.0))
        self.assertTrue(connected.is_set())
        await asyncio.wait_for(scheduled_event.wait(), timeout=2.0)

        self.assertEqual(scheduled[0], (1, 0.5))
        first_socket = session.sockets[0]
        self.assertTrue(first_socket.closed)
        self.assertEqual(first_socket.sent[0], {"method": "subscribe", "subscription": {"type": "allMids"}})
        self.assertIn({"method": "ping"}, first_socket.sent)
        self.assertFalse(feed.is_connected)

        await feed.disconnect()
        self.assertEqual(feed.state, FeedState.DISCONNECTED)


if __name__ == "__main__":
    unittest.main()

from __future__ import annotations

import asyncio
import functools
import json
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Awaitable, Callable

import aiohttp

from market_maker.common import cancel_task, guarded_call, log_event

from .types import (
    FEED_EVENT_CONNECTED,
    FEED_EVENT_DISCONNECTED,
    FEED_EVENT_ERROR,
    FEED_EVENT_PRICE_UPDATE,
    FEED_EVENT_RECONNECT_SCHEDULED,
    FEED_EVENTS,
    FeedConnectionError,
    FeedReconnectExhaustedError,
    FeedSettings,
    FeedState,
    FeedStatus,
    MalformedMessageError,
    PriceQuote,
    now_ms,
)

FeedListener = Callable[..., Awaitable[None] | None]

SUBSCRIBE_ALL_MIDS = {"method": "subscribe", "subscription": {"type": "allMids"}}
PING_MESSAGE = {"method": "ping"}

CHANNEL_ALL_MIDS = "allMids"
CHANNEL_PONG = "pong"
CHANNEL_SUBSCRIPTION_RESPONSE = "subscriptionResponse"


class PriceFeedClient:
    """Streaming mid-price client for the HyperLiquid ``allMids`` channel.

    One supervisor task owns the connection. It reconnects with exponential
    backoff between a floor and a ceiling delay and gives up after
    ``max_reconnect_attempts`` consecutive failures, at which point ``error``
    listeners receive a ``FeedReconnectExhaustedError``. While connected, a
    heartbeat task pings the upstream and forces a reconnect when no pong
    arrives within ``pong_timeout_seconds``.

    Listeners are registered with ``subscribe(event, callback)``:

    - ``connected()`` / ``disconnected()``
    - ``price_update(symbol, PriceQuote)``
    - ``reconnect_scheduled(attempt, delay_seconds)``
    - ``error(exception)``
    """

    def __init__(
        self,
        *,
        logger: logging.Logger,
        settings: FeedSettings | None = None,
        session: aiohttp.ClientSession | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._logger = logger
        self._settings = settings or FeedSettings()
        self._session = session
        self._owns_session = session is None
        self._clock = clock

        self._state = FeedState.DISCONNECTED
        self._ws: Any | None = None
        self._closing = False
        self._supervisor_task: asyncio.Task[None] | None = None
        self._heartbeat_task: asyncio.Task[None] | None = None
        self._connected_event = asyncio.Event()
        self._pong_event = asyncio.Event()

        self._prices: dict[str, PriceQuote] = {}
        self._last_announced: dict[str, Decimal] = {}
        self._listeners: dict[str, list[FeedListener]] = {event: [] for event in FEED_EVENTS}

        self._reconnect_attempts = 0
        self._reconnect_delay = self._settings.reconnect_delay_floor_seconds
        self._last_update_ms: int | None = None
        self._last_message_ms: int | None = None
        self._last_pong_ms: int | None = None

    @property
    def state(self) -> FeedState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == FeedState.CONNECTED

    @property
    def last_message_ms(self) -> int | None:
        return self._last_message_ms

    def subscribe(self, event: str, listener: FeedListener) -> Callable[[], None]:
        if event not in FEED_EVENTS:
            raise ValueError(f"Unknown feed event: {event}")
        self._listeners[event].append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners[event]:
                self._listeners[event].remove(listener)

        return unsubscribe

    async def connect(self) -> None:
        if self._supervisor_task is not None and not self._supervisor_task.done():
            return

        self._closing = False
        self._reset_backoff()
        if self._session is None:
            self._session = aiohttp.ClientSession()
            self._owns_session = True

        log_event(
            self._logger,
            level="info",
            event="feed_connecting",
            message="Connecting to price feed",
            url=self._settings.url,
        )
        self._supervisor_task = asyncio.create_task(self._run(), name="price-feed-supervisor")

    async def wait_until_connected(self, timeout_seconds: float) -> bool:
        try:
            await asyncio.wait_for(self._connected_event.wait(), timeout=timeout_seconds)
        except asyncio.TimeoutError:
            return False
        return True

    async def disconnect(self) -> None:
        self._closing = True
        await cancel_task(self._supervisor_task)
        self._supervisor_task = None
        await cancel_task(self._heartbeat_task)
        self._heartbeat_task = None

        ws = self._ws
        self._ws = None
        if ws is not None and not ws.closed:
            await guarded_call(
                ws.close,
                logger=self._logger,
                event="feed_socket_close_failed",
                message="Failed to close price feed socket",
            )

        if self._owns_session and self._session is not None:
            await guarded_call(
                self._session.close,
                logger=self._logger,
                event="feed_session_close_failed",
                message="Failed to close price feed HTTP session",
            )
            self._session = None

        was_disconnected = self._state == FeedState.DISCONNECTED
        self._set_state(FeedState.DISCONNECTED)
        log_event(
            self._logger,
            level="info",
            event="feed_disconnected",
            message="Price feed disconnected",
        )
        if not was_disconnected:
            await self._emit(FEED_EVENT_DISCONNECTED)

    async def close(self) -> None:
        await self.disconnect()

    async def reconnect(self) -> None:
        await self.disconnect()
        self._reset_backoff()
        await self.connect()

    async def healthcheck(self) -> None:
        if self._state == FeedState.FAILED:
            raise FeedConnectionError("Price feed exhausted its reconnect attempts.")
        if self._supervisor_task is None or self._supervisor_task.done():
            raise FeedConnectionError("Price feed is not running.")

    def get_price(self, symbol: str) -> PriceQuote | None:
        return self._prices.get(symbol)

    def has_recent_price(self, symbol: str, max_age_ms: int | None = None) -> bool:
        quote = self._prices.get(symbol)
        if quote is None:
            return False
        limit = self._settings.recent_price_max_age_ms if max_age_ms is None else max_age_ms
        return quote.age_ms(at_ms=self._clock()) < limit

    def has_recent_data(self, max_age_ms: int | None = None) -> bool:
        if self._last_update_ms is None:
            return False
        limit = self._settings.recent_price_max_age_ms if max_age_ms is None else max_age_ms
        return self._clock() - self._last_update_ms < limit

    def get_all_prices(self) -> dict[str, PriceQuote]:
        return dict(self._prices)

    def clear_prices(self) -> None:
        self._prices.clear()
        self._last_announced.clear()
        self._last_update_ms = None

    def status(self) -> FeedStatus:
        return FeedStatus(
            state=self._state.value,
            is_connected=self.is_connected,
            reconnect_attempts=self._reconnect_attempts,
            next_reconnect_delay_seconds=self._reconnect_delay,
            last_update_ms=self._last_update_ms,
            last_pong_ms=self._last_pong_ms,
            price_count=len(self._prices),
            has_recent_data=self.has_recent_data(),
        )

    async def _run(self) -> None:
        while not self._closing:
            self._set_state(FeedState.CONNECTING)
            try:
                await self._open_and_listen()
            except asyncio.CancelledError:
                raise
            except Exception as error:
                log_event(
                    self._logger,
                    level="warning",
                    event="feed_connection_error",
                    message="Price feed connection failed",
                    error=str(error),
                    error_type=type(error).__name__,
                )

            if self._closing:
                return

            await self._handle_disconnection()
            if not self._can_retry():
                await self._fail_terminal()
                return

            delay = self._schedule_next_attempt()
            log_event(
                self._logger,
                level="info",
                event="feed_reconnect_scheduled",
                message="Scheduling price feed reconnection",
                attempt=self._reconnect_attempts,
                max_attempts=self._settings.max_reconnect_attempts,
                delay_seconds=delay,
            )
            await self._emit(FEED_EVENT_RECONNECT_SCHEDULED, self._reconnect_attempts, delay)
            await asyncio.sleep(delay)

    async def _open_and_listen(self) -> None:
        session = self._require_session()
        ws = await asyncio.wait_for(
            session.ws_connect(self._settings.url, heartbeat=None),
            timeout=self._settings.connect_timeout_seconds,
        )
        self._ws = ws

        listen_task = asyncio.create_task(self._listen(ws), name="price-feed-listen")
        heartbeat_task = asyncio.create_task(self._heartbeat(ws), name="price-feed-heartbeat")
        self._heartbeat_task = heartbeat_task
        try:
            await self._on_connected(ws)
            done, _ = await asyncio.wait(
                {listen_task, heartbeat_task},
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            await cancel_task(listen_task)
            await cancel_task(heartbeat_task)
            self._heartbeat_task = None
            self._ws = None
            if not ws.closed:
                await guarded_call(
                    ws.close,
                    logger=self._logger,
                    event="feed_socket_close_failed",
                    message="Failed to close price feed socket",
                )

        for task in done:
            if task.cancelled():
                continue
            error = task.exception()
            if error is not None:
                raise error

    async def _on_connected(self, ws: Any) -> None:
        self._mark_connected()
        await ws.send_json(SUBSCRIBE_ALL_MIDS)
        log_event(
            self._logger,
            level="info",
            event="feed_connected",
            message="Connected to price feed and subscribed to allMids",
            url=self._settings.url,
        )
        await self._emit(FEED_EVENT_CONNECTED)

    async def _listen(self, ws: Any) -> None:
        async for message in ws:
            if message.type == aiohttp.WSMsgType.TEXT:
                await self._handle_message(message.data)
            elif message.type == aiohttp.WSMsgType.BINARY:
                await self._handle_message(message.data.decode("utf-8", errors="replace"))
            elif message.type == aiohttp.WSMsgType.ERROR:
                raise FeedConnectionError(f"Price feed socket error: {ws.exception()}")
            elif message.type in {
                aiohttp.WSMsgType.CLOSE,
                aiohttp.WSMsgType.CLOSING,
                aiohttp.WSMsgType.CLOSED,
            }:
                break

        log_event(
            self._logger,
            level="warning",
            event="feed_socket_closed",
            message="Price feed socket closed by upstream",
            close_code=getattr(ws, "close_code", None),
        )

    async def _heartbeat(self, ws: Any) -> None:
        while True:
            await asyncio.sleep(self._settings.ping_interval_seconds)
            if ws.closed:
                return

            self._warn_if_silent()
            self._pong_event.clear()
            await ws.send_json(PING_MESSAGE)
            try:
                await asyncio.wait_for(
                    self._pong_event.wait(),
                    timeout=self._settings.pong_timeout_seconds,
                )
            except asyncio.TimeoutError:
                log_event(
                    self._logger,
                    level="warning",
                    event="feed_heartbeat_timeout",
                    message="No pong received within timeout; forcing reconnect",
                    pong_timeout_seconds=self._settings.pong_timeout_seconds,
                    last_pong_ms=self._last_pong_ms,
                )
                return

    def _warn_if_silent(self) -> None:
        if self._last_message_ms is None:
            return
        silence_ms = self._clock() - self._last_message_ms
        if silence_ms > self._settings.silence_timeout_seconds * 1000:
            log_event(
                self._logger,
                level="warning",
                event="feed_stale",
                message="No inbound feed data recently; connection may be stale",
                silence_ms=silence_ms,
            )

    async def _handle_message(self, raw: str | bytes) -> None:
        self._last_message_ms = self._clock()
        try:
            channel, data = self._parse_message(raw)
        except MalformedMessageError as error:
            log_event(
                self._logger,
                level="warning",
                event="feed_message_malformed",
                message="Dropping malformed feed message",
                error=str(error),
            )
            return

        if channel == CHANNEL_ALL_MIDS:
            mids = data.get("mids") if isinstance(data, dict) else None
            if not isinstance(mids, dict):
                log_event(
                    self._logger,
                    level="warning",
                    event="feed_message_malformed",
                    message="Dropping allMids message without a mids table",
                )
                return
            await self._apply_mids(mids)
        elif channel == CHANNEL_PONG:
            self._last_pong_ms = self._clock()
            self._pong_event.set()
        elif channel == CHANNEL_SUBSCRIPTION_RESPONSE:
            log_event(
                self._logger,
                level="debug",
                event="feed_subscription_confirmed",
                message="Feed subscription confirmed",
                data=data,
            )
        else:
            log_event(
                self._logger,
                level="debug",
                event="feed_channel_ignored",
                message="Ignoring message on unrecognized channel",
                channel=channel,
            )

    @staticmethod
    def _parse_message(raw: str | bytes) -> tuple[str, Any]:
        try:
            payload = json.loads(raw)
        except (TypeError, ValueError) as error:
            raise MalformedMessageError(f"invalid JSON: {error}") from error

        if not isinstance(payload, dict):
            raise MalformedMessageError("message is not a JSON object")

        channel = payload.get("channel")
        if not isinstance(channel, str) or not channel:
            raise MalformedMessageError("message has no channel tag")

        return channel, payload.get("data")

    async def _apply_mids(self, mids: dict[str, Any]) -> None:
        timestamp_ms = self._clock()

        for symbol, raw_value in mids.items():
            price = self._parse_price(raw_value)
            if price is None:
                log_event(
                    self._logger,
                    level="warning",
                    event="feed_price_rejected",
                    message="Rejected invalid price value",
                    symbol=symbol,
                    raw_value=str(raw_value),
                )
                continue

            quote = PriceQuote(symbol=str(symbol), price=price, timestamp_ms=timestamp_ms)
            self._prices[quote.symbol] = quote
            self._last_update_ms = timestamp_ms
            self._announce_if_significant(quote)
            await self._emit(FEED_EVENT_PRICE_UPDATE, quote.symbol, quote)

    @staticmethod
    def _parse_price(raw_value: Any) -> Decimal | None:
        if isinstance(raw_value, bool) or not isinstance(raw_value, (str, int, float, Decimal)):
            return None
        try:
            price = Decimal(str(raw_value).strip())
        except (InvalidOperation, ValueError):
            return None
        if not price.is_finite() or price <= 0:
            return None
        return price

    def _announce_if_significant(self, quote: PriceQuote) -> bool:
        last_announced = self._last_announced.get(quote.symbol)
        if last_announced is None:
            self._last_announced[quote.symbol] = quote.price
            log_event(
                self._logger,
                level="debug",
                event="price_baseline",
                message=f"{quote.symbol} price baseline {quote.price}",
                symbol=quote.symbol,
                price=str(quote.price),
            )
            return False

        change = abs(quote.price - last_announced) / last_announced
        if change < self._settings.announce_threshold:
            log_event(
                self._logger,
                level="debug",
                event="price_minor_change",
                message=f"{quote.symbol} price {quote.price} (minor change)",
                symbol=quote.symbol,
                price=str(quote.price),
            )
            return False

        direction = "up" if quote.price > last_announced else "down"
        self._last_announced[quote.symbol] = quote.price
        log_event(
            self._logger,
            level="info",
            event="price_announced",
            message=f"{quote.symbol} price {quote.price} {direction} {change * 100:.2f}%",
            symbol=quote.symbol,
            price=str(quote.price),
            previous_price=str(last_announced),
            change_pct=float(change * 100),
            direction=direction,
        )
        return True

    def _mark_connected(self) -> None:
        self._set_state(FeedState.CONNECTED)
        self._reset_backoff()
        self._last_pong_ms = self._clock()

    def _reset_backoff(self) -> None:
        self._reconnect_attempts = 0
        self._reconnect_delay = self._settings.reconnect_delay_floor_seconds

    def _can_retry(self) -> bool:
        return self._reconnect_attempts < self._settings.max_reconnect_attempts

    def _schedule_next_attempt(self) -> float:
        self._reconnect_attempts += 1
        delay = self._reconnect_delay
        self._reconnect_delay = min(
            self._reconnect_delay * 2,
            self._settings.reconnect_delay_ceiling_seconds,
        )
        return delay

    async def _handle_disconnection(self) -> None:
        self._set_state(FeedState.DISCONNECTED)
        log_event(
            self._logger,
            level="warning",
            event="feed_connection_lost",
            message="Price feed connection lost",
            reconnect_attempts=self._reconnect_attempts,
        )
        await self._emit(FEED_EVENT_DISCONNECTED)

    async def _fail_terminal(self) -> None:
        self._set_state(FeedState.FAILED)
        error = FeedReconnectExhaustedError(
            "Price feed reconnect attempts exhausted",
            attempts=self._reconnect_attempts,
        )
        log_event(
            self._logger,
            level="error",
            event="feed_reconnect_exhausted",
            message="Max reconnection attempts reached; giving up",
            attempts=self._reconnect_attempts,
        )
        await self._emit(FEED_EVENT_ERROR, error)

    def _set_state(self, state: FeedState) -> None:
        self._state = state
        if state == FeedState.CONNECTED:
            self._connected_event.set()
        else:
            self._connected_event.clear()

    async def _emit(self, event: str, *args: Any) -> None:
        for listener in list(self._listeners[event]):
            await guarded_call(
                functools.partial(listener, *args),
                logger=self._logger,
                event="feed_listener_failed",
                message="Feed listener raised an exception",
                feed_event=event,
            )

    def _require_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            raise FeedConnectionError("HTTP session is not initialized for the price feed.")
        return self._session

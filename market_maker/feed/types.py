from __future__ import annotations

import time
from dataclasses import asdict, dataclass
from decimal import Decimal
from enum import Enum
from typing import Any

DEFAULT_FEED_URL = "wss://api.hyperliquid.xyz/ws"

FEED_EVENT_CONNECTED = "connected"
FEED_EVENT_DISCONNECTED = "disconnected"
FEED_EVENT_PRICE_UPDATE = "price_update"
FEED_EVENT_RECONNECT_SCHEDULED = "reconnect_scheduled"
FEED_EVENT_ERROR = "error"

FEED_EVENTS = frozenset(
    {
        FEED_EVENT_CONNECTED,
        FEED_EVENT_DISCONNECTED,
        FEED_EVENT_PRICE_UPDATE,
        FEED_EVENT_RECONNECT_SCHEDULED,
        FEED_EVENT_ERROR,
    }
)


def now_ms() -> int:
    return int(time.time() * 1000)


class FeedState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"


class FeedConnectionError(RuntimeError):
    pass


class MalformedMessageError(ValueError):
    pass


class FeedReconnectExhaustedError(RuntimeError):
    def __init__(self, message: str, *, attempts: int) -> None:
        super().__init__(message)
        self.attempts = attempts


@dataclass(slots=True, frozen=True)
class PriceQuote:
    symbol: str
    price: Decimal
    timestamp_ms: int
    source: str = "websocket"

    def age_ms(self, *, at_ms: int | None = None) -> int:
        reference = now_ms() if at_ms is None else at_ms
        return max(0, reference - self.timestamp_ms)

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "price": str(self.price),
            "timestamp_ms": self.timestamp_ms,
            "source": self.source,
        }


@dataclass(slots=True, frozen=True)
class FeedSettings:
    url: str = DEFAULT_FEED_URL
    ping_interval_seconds: float = 30.0
    pong_timeout_seconds: float = 30.0
    silence_timeout_seconds: float = 60.0
    reconnect_delay_floor_seconds: float = 1.0
    reconnect_delay_ceiling_seconds: float = 30.0
    max_reconnect_attempts: int = 10
    connect_timeout_seconds: float = 10.0
    announce_threshold: Decimal = Decimal("0.001")
    recent_price_max_age_ms: int = 60_000


@dataclass(slots=True, frozen=True)
class FeedStatus:
    state: str
    is_connected: bool
    reconnect_attempts: int
    next_reconnect_delay_seconds: float
    last_update_ms: int | None
    last_pong_ms: int | None
    price_count: int
    has_recent_data: bool

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

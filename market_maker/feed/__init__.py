from .client import PriceFeedClient
from .types import (
    DEFAULT_FEED_URL,
    FEED_EVENT_CONNECTED,
    FEED_EVENT_DISCONNECTED,
    FEED_EVENT_ERROR,
    FEED_EVENT_PRICE_UPDATE,
    FEED_EVENT_RECONNECT_SCHEDULED,
    FeedConnectionError,
    FeedReconnectExhaustedError,
    FeedSettings,
    FeedState,
    FeedStatus,
    MalformedMessageError,
    PriceQuote,
)

__all__ = [
    "DEFAULT_FEED_URL",
    "FEED_EVENT_CONNECTED",
    "FEED_EVENT_DISCONNECTED",
    "FEED_EVENT_ERROR",
    "FEED_EVENT_PRICE_UPDATE",
    "FEED_EVENT_RECONNECT_SCHEDULED",
    "FeedConnectionError",
    "FeedReconnectExhaustedError",
    "FeedSettings",
    "FeedState",
    "FeedStatus",
    "MalformedMessageError",
    "PriceFeedClient",
    "PriceQuote",
]

from __future__ import annotations

import os
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable

MAX_UINT256 = 2**256 - 1

FAIL_REASON_NO_QUOTE_AVAILABLE = "NO_QUOTE_AVAILABLE"
FAIL_REASON_SLIPPAGE_EXCEEDED = "SLIPPAGE_EXCEEDED"
FAIL_REASON_APPROVAL_FAILED = "APPROVAL_FAILED"
FAIL_REASON_SWAP_SUBMISSION_FAILED = "SWAP_SUBMISSION_FAILED"
FAIL_REASON_SWAP_NOT_CONFIRMED = "SWAP_NOT_CONFIRMED"
FAIL_REASON_UNSUPPORTED_ROUTER = "UNSUPPORTED_ROUTER"
FAIL_REASON_OTHER = "OTHER"

SIDE_SELL_BASE = "sell_base"
SIDE_BUY_BASE = "buy_base"


def to_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def to_int(value: Any, default: int) -> int:
    try:
        if value is None or value == "":
            return default
        return int(float(str(value).strip()))
    except (TypeError, ValueError):
        return default


def to_float(value: Any, default: float) -> float:
    try:
        if value is None or value == "":
            return default
        return float(str(value).strip())
    except (TypeError, ValueError):
        return default


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def now_ms() -> int:
    return int(time.time() * 1000)


def normalize_address(address: str) -> str:
    return address.strip().lower()


class RouterVersion(str, Enum):
    V2 = "V2"
    V3 = "V3"


@dataclass(slots=True, frozen=True)
class TokenConfig:
    symbol: str
    address: str
    decimals: int
    feed_symbol: str | None = None
    usd_pegged: bool = False


@dataclass(slots=True, frozen=True)
class PairConfig:
    symbol: str
    base: TokenConfig
    quote: TokenConfig
    default_fee: int
    trade_amount: int
    min_liquidity: float = 0.0
    target_spread_bps: float = 0.0
    max_spread_bps: float = 0.0
    daily_volume: float = 0.0
    priority: int = 0
    enabled: bool = True


@dataclass(slots=True, frozen=True)
class RouterQuote:
    version: RouterVersion
    router: str
    source: str
    token_in: str
    token_out: str
    amount_in: int
    amount_out: int
    fee: int | None = None
    path: tuple[str, ...] | None = None
    gas_estimate: int | None = None

    def matches(self, *, token_in: str, token_out: str, amount_in: int) -> bool:
        return (
            normalize_address(self.token_in) == normalize_address(token_in)
            and normalize_address(self.token_out) == normalize_address(token_out)
            and self.amount_in == amount_in
        )

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["version"] = self.version.value
        payload["amount_in"] = str(self.amount_in)
        payload["amount_out"] = str(self.amount_out)
        if self.path is not None:
            payload["path"] = list(self.path)
        return payload


@dataclass(slots=True, frozen=True)
class TradeIntent:
    pair: str
    side: str
    token_in: str
    token_out: str
    amount_in: int
    min_amount_out: int
    reference_amount_out: int
    reason: str


@dataclass(slots=True, frozen=True)
class TradeResult:
    success: bool
    token_in: str
    token_out: str
    amount_in: int
    tx_hash: str | None = None
    quote: RouterQuote | None = None
    expected_output: int | None = None
    error: str | None = None
    fail_reason: str | None = None
    reason: str = ""
    started_at_ms: int = 0
    finished_at_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "token_in": self.token_in,
            "token_out": self.token_out,
            "amount_in": str(self.amount_in),
            "tx_hash": self.tx_hash,
            "quote": self.quote.to_dict() if self.quote is not None else None,
            "expected_output": str(self.expected_output) if self.expected_output is not None else None,
            "error": self.error,
            "fail_reason": self.fail_reason,
            "reason": self.reason,
            "started_at_ms": self.started_at_ms,
            "finished_at_ms": self.finished_at_ms,
        }


@dataclass(slots=True, frozen=True)
class TxReceipt:
    tx_hash: str
    status: int
    block_number: int | None = None
    gas_used: int | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == 1


@dataclass(slots=True, frozen=True)
class RouterSettings:
    v3_router: str
    v3_quoter: str
    v3_quoter_v1: str | None = None
    v2_router: str | None = None
    v2_intermediate_tokens: tuple[str, ...] = field(default_factory=tuple)
    default_fee: int = 3000


@dataclass(slots=True, frozen=True)
class ExecutionSettings:
    deadline_seconds: int = 300
    v2_gas_limit: int = 250_000
    v3_gas_limit_fallback: int = 300_000
    gas_margin_pct: int = 20
    confirm_timeout_seconds: float = 120.0


@dataclass(slots=True, frozen=True)
class RuntimeConfig:
    config_schema_version: int
    trade_enabled: bool
    slippage_bps: int
    trade_cooldown_seconds: float

    @classmethod
    def from_env_defaults(cls) -> "RuntimeConfig":
        return cls(
            config_schema_version=max(1, to_int(os.getenv("CONFIG_SCHEMA_VERSION"), 1)),
            trade_enabled=to_bool(os.getenv("TRADE_ENABLED"), False),
            slippage_bps=max(1, to_int(os.getenv("SLIPPAGE_BPS"), 50)),
            trade_cooldown_seconds=max(0.0, to_float(os.getenv("TRADE_COOLDOWN_SECONDS"), 60.0)),
        )

    @classmethod
    def from_redis(cls, redis_config: dict[str, str], defaults: "RuntimeConfig") -> "RuntimeConfig":
        schema_raw = redis_config.get("schema_version") or redis_config.get("config_schema_version")

        return cls(
            config_schema_version=max(1, to_int(schema_raw, defaults.config_schema_version)),
            trade_enabled=to_bool(redis_config.get("trade_enabled"), defaults.trade_enabled),
            slippage_bps=min(
                10_000,
                max(1, to_int(redis_config.get("slippage_bps"), defaults.slippage_bps)),
            ),
            trade_cooldown_seconds=max(
                0.0,
                to_float(redis_config.get("trade_cooldown_seconds"), defaults.trade_cooldown_seconds),
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


TradeOutcomeListener = Callable[[str, TradeResult], Awaitable[None] | None]

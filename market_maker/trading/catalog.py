from __future__ import annotations

import os
from decimal import Decimal, InvalidOperation

from .types import PairConfig, TokenConfig, to_bool, to_int

HYPERSWAP_V3_ROUTER = "0x4E2960a8cd19B467b82d26D83fAcb0fAE26b094D"
HYPERSWAP_V2_ROUTER = "0x6D99e7f6747AF2cDbB5164b6DD50e40D4fDe1e77"
HYPERSWAP_QUOTER_V2 = "0x03A918028f22D9E1473B7959C927AD7425A45C7C"
HYPERSWAP_QUOTER_V1 = "0xF865716B90f09268fF12B6B620e14bEC390B8139"

WHYPE = TokenConfig(
    symbol="WHYPE",
    address="0x5555555555555555555555555555555555555555",
    decimals=18,
    feed_symbol="HYPE",
)
UBTC = TokenConfig(
    symbol="UBTC",
    address="0x9fdbda0a5e284c32744d2f17ee5c74b284993463",
    decimals=8,
    feed_symbol="BTC",
)
USDT0 = TokenConfig(
    symbol="USDT0",
    address="0xB8CE59FC3717ada4C02eaDF9682A9e934F625ebb",
    decimals=6,
    usd_pegged=True,
)
USDHL = TokenConfig(
    symbol="USDHL",
    address="0xb50A96253aBDF803D85efcDce07Ad8becBc52BD5",
    decimals=6,
    usd_pegged=True,
)
UETH = TokenConfig(
    symbol="UETH",
    address="0xbe6727b535545c67d5caa73dea54865b92cf7907",
    decimals=18,
    feed_symbol="ETH",
)

DEFAULT_TOKENS: dict[str, TokenConfig] = {
    token.symbol: token for token in (WHYPE, UBTC, USDT0, USDHL, UETH)
}

# Trade size per base token, in whole-token units.
DEFAULT_TRADE_SIZES: dict[str, str] = {
    "HYPE": "1.0",
    "UBTC": "0.001",
    "USDT0": "10.0",
    "USDHL": "10.0",
    "UETH": "0.01",
}


def _pair(
    symbol: str,
    base: TokenConfig,
    quote: TokenConfig,
    *,
    default_fee: int,
    min_liquidity: float,
    target_spread_bps: float,
    max_spread_bps: float,
    daily_volume: float,
    priority: int,
    enabled: bool,
) -> PairConfig:
    return PairConfig(
        symbol=symbol,
        base=base,
        quote=quote,
        default_fee=default_fee,
        trade_amount=0,
        min_liquidity=min_liquidity,
        target_spread_bps=target_spread_bps,
        max_spread_bps=max_spread_bps,
        daily_volume=daily_volume,
        priority=priority,
        enabled=enabled,
    )


DEFAULT_PAIRS: tuple[PairConfig, ...] = (
    _pair(
        "HYPE/UBTC",
        WHYPE,
        UBTC,
        default_fee=3000,
        min_liquidity=10_000_000,
        target_spread_bps=50,
        max_spread_bps=200,
        daily_volume=15_000_000,
        priority=1,
        enabled=True,
    ),
    _pair(
        "HYPE/USDT0",
        WHYPE,
        USDT0,
        default_fee=500,
        min_liquidity=6_800_000,
        target_spread_bps=30,
        max_spread_bps=150,
        daily_volume=37_700_000,
        priority=2,
        enabled=True,
    ),
    _pair(
        "USDHL/USDT0",
        USDHL,
        USDT0,
        default_fee=100,
        min_liquidity=2_400_000,
        target_spread_bps=15,
        max_spread_bps=50,
        daily_volume=7_600_000,
        priority=3,
        enabled=False,
    ),
    _pair(
        "HYPE/UETH",
        WHYPE,
        UETH,
        default_fee=3000,
        min_liquidity=4_300_000,
        target_spread_bps=60,
        max_spread_bps=250,
        daily_volume=3_900_000,
        priority=4,
        enabled=False,
    ),
)


def pair_env_key(symbol: str) -> str:
    return symbol.upper().replace("/", "_")


def to_base_units(amount: str | Decimal, decimals: int) -> int:
    try:
        value = Decimal(str(amount).strip())
    except (InvalidOperation, ValueError):
        return 0
    if not value.is_finite() or value <= 0:
        return 0
    return int(value.scaleb(decimals))


def _base_size_key(pair: PairConfig) -> str:
    return pair.base.feed_symbol or pair.base.symbol


def load_pair_catalogue_from_env(pairs: tuple[PairConfig, ...] = DEFAULT_PAIRS) -> list[PairConfig]:
    """Build the configured pairs from the built-in catalogue and env overrides.

    ENABLE_<BASE>_<QUOTE> toggles a pair, TRADE_SIZE_<TOKEN> sets the base
    trade size in whole tokens, and TRADE_AMOUNT_<BASE>_<QUOTE> overrides it
    for a single pair. FEE_<BASE>_<QUOTE> picks the pool fee tier.
    """
    loaded: list[PairConfig] = []
    for pair in pairs:
        key = pair_env_key(pair.symbol)
        size_key = _base_size_key(pair)
        size = os.getenv(
            f"TRADE_AMOUNT_{key}",
            os.getenv(f"TRADE_SIZE_{size_key}", DEFAULT_TRADE_SIZES.get(size_key, "1.0")),
        )
        loaded.append(
            PairConfig(
                symbol=pair.symbol,
                base=pair.base,
                quote=pair.quote,
                default_fee=max(1, to_int(os.getenv(f"FEE_{key}"), pair.default_fee)),
                trade_amount=to_base_units(size, pair.base.decimals),
                min_liquidity=pair.min_liquidity,
                target_spread_bps=pair.target_spread_bps,
                max_spread_bps=pair.max_spread_bps,
                daily_volume=pair.daily_volume,
                priority=pair.priority,
                enabled=to_bool(os.getenv(f"ENABLE_{key}"), pair.enabled),
            )
        )
    return loaded

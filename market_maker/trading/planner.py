from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal
from typing import Protocol

from market_maker.common import log_event
from market_maker.feed import PriceQuote

from .types import SIDE_BUY_BASE, SIDE_SELL_BASE, PairConfig, TokenConfig, TradeIntent

USD_PEG = Decimal(1)


class PriceLookup(Protocol):
    def get_price(self, symbol: str) -> PriceQuote | None:
        ...

    def has_recent_price(self, symbol: str, max_age_ms: int | None = None) -> bool:
        ...


@dataclass(slots=True, frozen=True)
class TradePlanDecision:
    intent: TradeIntent | None
    skip_reason: str | None = None

    @property
    def should_trade(self) -> bool:
        return self.intent is not None


def convert_amount(
    amount: int,
    *,
    token_in: TokenConfig,
    token_out: TokenConfig,
    price_in: Decimal,
    price_out: Decimal,
) -> int:
    if amount <= 0 or price_in <= 0 or price_out <= 0:
        return 0
    scaled = Decimal(amount) * price_in / price_out
    scaled = scaled.scaleb(token_out.decimals - token_in.decimals)
    return int(scaled.to_integral_value(rounding=ROUND_DOWN))


def apply_slippage(amount: int, slippage_bps: int) -> int:
    bps = min(10_000, max(0, int(slippage_bps)))
    return amount * (10_000 - bps) // 10_000


def edge_bps(*, amount_out: int, reference_amount_out: int) -> float:
    if reference_amount_out <= 0:
        return 0.0
    return (amount_out - reference_amount_out) / reference_amount_out * 10_000


class TradePlanner:
    def __init__(
        self,
        *,
        logger: logging.Logger,
        prices: PriceLookup,
        max_price_age_ms: int = 60_000,
    ) -> None:
        self._logger = logger
        self._prices = prices
        self._max_price_age_ms = max_price_age_ms
        self._next_side: dict[str, str] = {}

    def next_side(self, pair: PairConfig) -> str:
        return self._next_side.get(pair.symbol, SIDE_SELL_BASE)

    def _usd_price(self, token: TokenConfig) -> Decimal | None:
        if token.usd_pegged:
            return USD_PEG
        symbol = token.feed_symbol or token.symbol
        if not self._prices.has_recent_price(symbol, self._max_price_age_ms):
            return None
        quote = self._prices.get_price(symbol)
        return quote.price if quote is not None else None

    def plan(self, pair: PairConfig, *, slippage_bps: int) -> TradePlanDecision:
        base_price = self._usd_price(pair.base)
        quote_price = self._usd_price(pair.quote)
        if base_price is None or quote_price is None:
            missing = pair.base.symbol if base_price is None else pair.quote.symbol
            return self._skip(pair, f"missing or stale price for {missing}")

        side = self.next_side(pair)
        if side == SIDE_SELL_BASE:
            token_in, token_out = pair.base, pair.quote
            price_in, price_out = base_price, quote_price
            amount_in = pair.trade_amount
        else:
            token_in, token_out = pair.quote, pair.base
            price_in, price_out = quote_price, base_price
            amount_in = convert_amount(
                pair.trade_amount,
                token_in=pair.base,
                token_out=pair.quote,
                price_in=base_price,
                price_out=quote_price,
            )

        if amount_in <= 0:
            return self._skip(pair, "trade amount is not positive")

        reference_out = convert_amount(
            amount_in,
            token_in=token_in,
            token_out=token_out,
            price_in=price_in,
            price_out=price_out,
        )
        if reference_out <= 0:
            return self._skip(pair, "reference output is not positive")

        self._next_side[pair.symbol] = SIDE_BUY_BASE if side == SIDE_SELL_BASE else SIDE_SELL_BASE
        intent = TradeIntent(
            pair=pair.symbol,
            side=side,
            token_in=token_in.address,
            token_out=token_out.address,
            amount_in=amount_in,
            min_amount_out=apply_slippage(reference_out, slippage_bps),
            reference_amount_out=reference_out,
            reason=f"{side} {pair.symbol} at feed mid {price_in / price_out:.8f}",
        )
        log_event(
            self._logger,
            level="debug",
            event="trade_planned",
            message="Trade planned",
            pair=pair.symbol,
            side=side,
            amount_in=str(amount_in),
            reference_amount_out=str(reference_out),
            min_amount_out=str(intent.min_amount_out),
        )
        return TradePlanDecision(intent=intent)

    def _skip(self, pair: PairConfig, reason: str) -> TradePlanDecision:
        log_event(
            self._logger,
            level="debug",
            event="trade_plan_skipped",
            message="Trade plan skipped",
            pair=pair.symbol,
            skip_reason=reason,
        )
        return TradePlanDecision(intent=None, skip_reason=reason)

from __future__ import annotations

import logging
import unittest
from decimal import Decimal

from market_maker.feed import PriceQuote
from market_maker.trading import PairConfig, TradePlanner
from market_maker.trading.catalog import UBTC, USDT0, WHYPE
from market_maker.trading.planner import apply_slippage, convert_amount, edge_bps
from market_maker.trading.types import SIDE_BUY_BASE, SIDE_SELL_BASE


class FakePrices:
    def __init__(self, prices: dict[str, str], *, stale: set[str] | None = None) -> None:
        self._prices = {
            symbol: PriceQuote(symbol=symbol, price=Decimal(value), timestamp_ms=0)
            for symbol, value in prices.items()
        }
        self._stale = stale or set()

    def get_price(self, symbol: str) -> PriceQuote | None:
        return self._prices.get(symbol)

    def has_recent_price(self, symbol: str, max_age_ms: int | None = None) -> bool:
        return symbol in self._prices and symbol not in self._stale


def _pair(symbol: str, base, quote, trade_amount: int) -> PairConfig:  # type: ignore[no-untyped-def]
    return PairConfig(symbol=symbol, base=base, quote=quote, default_fee=3000, trade_amount=trade_amount)


HYPE_USDT0 = _pair("HYPE/USDT0", WHYPE, USDT0, 10**18)
HYPE_UBTC = _pair("HYPE/UBTC", WHYPE, UBTC, 10**18)


class TradePlannerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.logger = logging.getLogger("test.planner")

    def test_sell_then_buy_alternates_sides(self) -> None:
        planner = TradePlanner(logger=self.logger, prices=FakePrices({"HYPE": "44.85"}))

        first = planner.plan(HYPE_USDT0, slippage_bps=50)
        self.assertTrue(first.should_trade)
        assert first.intent is not None
        self.assertEqual(first.intent.side, SIDE_SELL_BASE)
        self.assertEqual(first.intent.token_in, WHYPE.address)
        self.assertEqual(first.intent.token_out, USDT0.address)
        self.assertEqual(first.intent.amount_in, 10**18)
        self.assertEqual(first.intent.reference_amount_out, 44_850_000)
        self.assertEqual(first.intent.min_amount_out, 44_625_750)

        second = planner.plan(HYPE_USDT0, slippage_bps=50)
        assert second.intent is not None
        self.assertEqual(second.intent.side, SIDE_BUY_BASE)
        self.assertEqual(second.intent.token_in, USDT0.address)
        self.assertEqual(second.intent.amount_in, 44_850_000)
        self.assertEqual(second.intent.reference_amount_out, 10**18)

        self.assertEqual(planner.next_side(HYPE_USDT0), SIDE_SELL_BASE)

    def test_cross_pair_uses_both_feed_prices(self) -> None:
        planner = TradePlanner(logger=self.logger, prices=FakePrices({"HYPE": "44.85", "BTC": "65000"}))

        decision = planner.plan(HYPE_UBTC, slippage_bps=100)

        assert decision.intent is not None
        self.assertEqual(decision.intent.reference_amount_out, 69_000)
        self.assertEqual(decision.intent.min_amount_out, 68_310)

    def test_missing_or_stale_price_skips_without_flipping_side(self) -> None:
        planner = TradePlanner(logger=self.logger, prices=FakePrices({"HYPE": "44.85", "BTC": "65000"}, stale={"BTC"}))

        decision = planner.plan(HYPE_UBTC, slippage_bps=50)

        self.assertFalse(decision.should_trade)
        self.assertIn("UBTC", decision.skip_reason or "")
        self.assertEqual(planner.next_side(HYPE_UBTC), SIDE_SELL_BASE)

    def test_zero_trade_amount_is_skipped(self) -> None:
        planner = TradePlanner(logger=self.logger, prices=FakePrices({"HYPE": "44.85"}))

        decision = planner.plan(_pair("HYPE/USDT0", WHYPE, USDT0, 0), slippage_bps=50)

        self.assertFalse(decision.should_trade)


class PlannerMathTests(unittest.TestCase):
    def test_convert_amount_rounds_down_across_decimals(self) -> None:
        amount = convert_amount(
            1_234_567,
            token_in=USDT0,
            token_out=WHYPE,
            price_in=Decimal(1),
            price_out=Decimal("3"),
        )
        self.assertEqual(amount, 411_522_333_333_333_333)

    def test_convert_amount_rejects_non_positive_inputs(self) -> None:
        self.assertEqual(
            convert_amount(100, token_in=USDT0, token_out=WHYPE, price_in=Decimal(0), price_out=Decimal(1)),
            0,
        )
        self.assertEqual(
            convert_amount(-1, token_in=USDT0, token_out=WHYPE, price_in=Decimal(1), price_out=Decimal(1)),
            0,
        )

    def test_apply_slippage_clamps_bps(self) -> None:
        self.assertEqual(apply_slippage(10_000, 50), 9_950)
        self.assertEqual(apply_slippage(10_000, 20_000), 0)
        self.assertEqual(apply_slippage(10_000, -5), 10_000)

    def test_edge_bps(self) -> None:
        self.assertAlmostEqual(edge_bps(amount_out=1_010, reference_amount_out=1_000), 100.0)
        self.assertAlmostEqual(edge_bps(amount_out=990, reference_amount_out=1_000), -100.0)
        self.assertEqual(edge_bps(amount_out=990, reference_amount_out=0), 0.0)


if __name__ == "__main__":
    unittest.main()

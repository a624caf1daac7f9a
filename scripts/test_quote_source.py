from __future__ import annotations

import asyncio
import logging
import unittest
from typing import Sequence
from unittest.mock import AsyncMock

from market_maker.trading import NoQuoteAvailableError, QuoteSourceAdapter, RouterSettings, RouterVersion
from market_maker.trading.quotes import SOURCE_V2_ROUTER, SOURCE_V3_QUOTER_V1, SOURCE_V3_QUOTER_V2

TOKEN_A = "0x" + "a" * 40
TOKEN_B = "0x" + "b" * 40
WHYPE = "0x" + "c" * 40
V3_ROUTER = "0x" + "1" * 40
V3_QUOTER = "0x" + "2" * 40
V3_QUOTER_V1 = "0x" + "3" * 40
V2_ROUTER = "0x" + "4" * 40


def _make_routers(*, with_v1: bool = False, with_v2: bool = True) -> RouterSettings:
    return RouterSettings(
        v3_router=V3_ROUTER,
        v3_quoter=V3_QUOTER,
        v3_quoter_v1=V3_QUOTER_V1 if with_v1 else None,
        v2_router=V2_ROUTER if with_v2 else None,
        v2_intermediate_tokens=(WHYPE,),
        default_fee=3000,
    )


def _make_chain(*, v3_out: int | Exception = 995, v2_direct: int = 990, v2_hop: int = 0) -> AsyncMock:
    chain = AsyncMock()
    if isinstance(v3_out, Exception):
        chain.quote_v3_exact_input_single.side_effect = v3_out
    else:
        chain.quote_v3_exact_input_single.return_value = (v3_out, 150_000)
    chain.quote_v3_legacy_exact_input_single.return_value = 0

    async def amounts_out(*, router: str, amount_in: int, path: Sequence[str]) -> list[int]:
        if len(path) == 2:
            return [amount_in, v2_direct]
        return [amount_in, amount_in, v2_hop]

    chain.quote_v2_amounts_out.side_effect = amounts_out
    return chain


class QuoteSourceAdapterTests(unittest.IsolatedAsyncioTestCase):
    def _adapter(self, chain: AsyncMock, routers: RouterSettings | None = None) -> QuoteSourceAdapter:
        return QuoteSourceAdapter(
            logger=logging.getLogger("test.quotes"),
            chain=chain,
            routers=routers or _make_routers(),
            quote_timeout_seconds=1.0,
        )

    async def test_picks_highest_output_across_sources(self) -> None:
        chain = _make_chain(v3_out=995, v2_direct=990)
        quote = await self._adapter(chain).get_best_quote(TOKEN_A, TOKEN_B, 1_000)

        self.assertEqual(quote.version, RouterVersion.V3)
        self.assertEqual(quote.source, SOURCE_V3_QUOTER_V2)
        self.assertEqual(quote.router, V3_ROUTER)
        self.assertEqual(quote.amount_out, 995)
        self.assertEqual(quote.fee, 3000)
        self.assertEqual(quote.gas_estimate, 150_000)

    async def test_v2_wins_when_it_pays_more(self) -> None:
        chain = _make_chain(v3_out=980, v2_direct=990)
        quote = await self._adapter(chain).get_best_quote(TOKEN_A, TOKEN_B, 1_000)

        self.assertEqual(quote.version, RouterVersion.V2)
        self.assertEqual(quote.source, SOURCE_V2_ROUTER)
        self.assertEqual(quote.path, (TOKEN_A, TOKEN_B))

    async def test_v2_uses_intermediate_hop_when_better(self) -> None:
        chain = _make_chain(v3_out=980, v2_direct=985, v2_hop=999)
        quote = await self._adapter(chain).get_best_quote(TOKEN_A, TOKEN_B, 1_000)

        self.assertEqual(quote.path, (TOKEN_A, WHYPE, TOKEN_B))
        self.assertEqual(quote.amount_out, 999)

    async def test_intermediate_equal_to_endpoint_is_skipped(self) -> None:
        chain = _make_chain(v3_out=980, v2_direct=985, v2_hop=999)
        await self._adapter(chain).get_best_quote(WHYPE, TOKEN_B, 1_000)

        paths = [call.kwargs["path"] for call in chain.quote_v2_amounts_out.await_args_list]
        self.assertEqual(paths, [(WHYPE, TOKEN_B)])

    async def test_ties_prefer_earlier_source(self) -> None:
        chain = _make_chain(v3_out=990, v2_direct=990)
        quote = await self._adapter(chain).get_best_quote(TOKEN_A, TOKEN_B, 1_000)

        self.assertEqual(quote.source, SOURCE_V3_QUOTER_V2)

    async def test_fee_hint_is_forwarded_to_quoter(self) -> None:
        chain = _make_chain()
        quote = await self._adapter(chain).get_best_quote(TOKEN_A, TOKEN_B, 1_000, fee_hint=500)

        self.assertEqual(chain.quote_v3_exact_input_single.await_args.kwargs["fee"], 500)
        self.assertEqual(quote.fee, 500)

    async def test_failing_source_is_ignored(self) -> None:
        chain = _make_chain(v3_out=RuntimeError("execution reverted"), v2_direct=990)
        quote = await self._adapter(chain).get_best_quote(TOKEN_A, TOKEN_B, 1_000)

        self.assertEqual(quote.source, SOURCE_V2_ROUTER)

    async def test_zero_output_from_legacy_quoter_is_ignored(self) -> None:
        chain = _make_chain(v3_out=RuntimeError("no pool"), v2_direct=0)
        adapter = self._adapter(chain, _make_routers(with_v1=True, with_v2=True))

        with self.assertRaises(NoQuoteAvailableError):
            await adapter.get_best_quote(TOKEN_A, TOKEN_B, 1_000)
        chain.quote_v3_legacy_exact_input_single.assert_awaited_once()

    async def test_legacy_quoter_used_when_primary_fails(self) -> None:
        chain = _make_chain(v3_out=RuntimeError("no pool"))
        chain.quote_v3_legacy_exact_input_single.return_value = 970
        adapter = self._adapter(chain, _make_routers(with_v1=True, with_v2=False))

        quote = await adapter.get_best_quote(TOKEN_A, TOKEN_B, 1_000)

        self.assertEqual(quote.source, SOURCE_V3_QUOTER_V1)
        self.assertEqual(quote.version, RouterVersion.V3)
        self.assertIsNone(quote.gas_estimate)

    async def test_slow_source_times_out(self) -> None:
        chain = _make_chain(v2_direct=990)

        async def hang(**_kwargs: object) -> tuple[int, int]:
            await asyncio.sleep(10)
            return 2_000, 0

        chain.quote_v3_exact_input_single.side_effect = hang
        adapter = QuoteSourceAdapter(
            logger=logging.getLogger("test.quotes"),
            chain=chain,
            routers=_make_routers(),
            quote_timeout_seconds=0.1,
        )

        quote = await adapter.get_best_quote(TOKEN_A, TOKEN_B, 1_000)
        self.assertEqual(quote.source, SOURCE_V2_ROUTER)

    async def test_rejects_invalid_requests(self) -> None:
        adapter = self._adapter(_make_chain())

        with self.assertRaises(NoQuoteAvailableError):
            await adapter.get_best_quote(TOKEN_A, TOKEN_B, 0)
        with self.assertRaises(NoQuoteAvailableError):
            await adapter.get_best_quote(TOKEN_A, TOKEN_A.upper().replace("0X", "0x"), 1_000)


if __name__ == "__main__":
    unittest.main()

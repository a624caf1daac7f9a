from __future__ import annotations

import asyncio
import logging
import unittest
from typing import Any, Sequence
from unittest.mock import AsyncMock

from market_maker.trading import (
    FAIL_REASON_APPROVAL_FAILED,
    FAIL_REASON_NO_QUOTE_AVAILABLE,
    FAIL_REASON_OTHER,
    FAIL_REASON_SLIPPAGE_EXCEEDED,
    FAIL_REASON_SWAP_NOT_CONFIRMED,
    FAIL_REASON_SWAP_SUBMISSION_FAILED,
    ApprovalGuard,
    ExecutionEngine,
    ExecutionSettings,
    QuoteSourceAdapter,
    RouterSettings,
    RouterVersion,
    TradeResult,
    TxReceipt,
    pair_lock_key,
)
from market_maker.trading.types import MAX_UINT256

TOKEN_A = "0x" + "a" * 40
TOKEN_B = "0x" + "b" * 40
TOKEN_C = "0x" + "c" * 40
ACCOUNT = "0x" + "d" * 40
V3_ROUTER = "0x" + "1" * 40
V3_QUOTER = "0x" + "2" * 40
V2_ROUTER = "0x" + "4" * 40

ROUTERS = RouterSettings(
    v3_router=V3_ROUTER,
    v3_quoter=V3_QUOTER,
    v2_router=V2_ROUTER,
    default_fee=3000,
)


def _hash(index: int) -> str:
    return "0x" + f"{index:064x}"


class FakeChain:
    def __init__(self, *, v3_out: int = 995, v2_out: int = 990, gas_estimate: int | None = 100_000) -> None:
        self.account_address = ACCOUNT
        self.v3_out = v3_out
        self.v2_out = v2_out
        self.gas_estimate = gas_estimate
        self.allowances: dict[tuple[str, str], int] = {}
        self.approvals: list[tuple[str, str, int]] = []
        self.swaps: list[tuple[str, dict[str, Any]]] = []
        self.swap_hash: str | None = None
        self.swap_status = 1
        self.approve_error: Exception | None = None
        self.swap_delay = 0.0
        self.active_swaps = 0
        self.max_active_swaps = 0
        self._tx_counter = 0
        self._approval_hashes: set[str] = set()

    def _next_hash(self) -> str:
        self._tx_counter += 1
        return _hash(self._tx_counter)

    async def healthcheck(self) -> None:
        return None

    async def quote_v3_exact_input_single(self, **_kwargs: Any) -> tuple[int, int | None]:
        return self.v3_out, self.gas_estimate

    async def quote_v3_legacy_exact_input_single(self, **_kwargs: Any) -> int:
        return 0

    async def quote_v2_amounts_out(self, *, router: str, amount_in: int, path: Sequence[str]) -> list[int]:
        return [amount_in, self.v2_out]

    async def get_allowance(self, *, token: str, owner: str, spender: str) -> int:
        return self.allowances.get((token, spender), 0)

    async def approve(self, *, token: str, spender: str, amount: int) -> str:
        if self.approve_error is not None:
            raise self.approve_error
        self.approvals.append((token, spender, amount))
        self.allowances[(token, spender)] = amount
        tx_hash = self._next_hash()
        self._approval_hashes.add(tx_hash)
        return tx_hash

    async def _swap(self, label: str, kwargs: dict[str, Any]) -> str:
        self.active_swaps += 1
        self.max_active_swaps = max(self.max_active_swaps, self.active_swaps)
        try:
            if self.swap_delay:
                await asyncio.sleep(self.swap_delay)
            self.swaps.append((label, kwargs))
        finally:
            self.active_swaps -= 1
        return self.swap_hash if self.swap_hash is not None else self._next_hash()

    async def swap_v3_exact_input_single(self, **kwargs: Any) -> str:
        return await self._swap("v3", kwargs)

    async def swap_v2_exact_tokens_for_tokens(self, **kwargs: Any) -> str:
        return await self._swap("v2", kwargs)

    async def wait_for_receipt(self, tx_hash: str, *, timeout_seconds: float) -> TxReceipt:
        status = 1 if tx_hash in self._approval_hashes else self.swap_status
        return TxReceipt(tx_hash=tx_hash, status=status, block_number=1, gas_used=21_000)

    async def close(self) -> None:
        return None


def _make_engine(chain: FakeChain, *, quotes: Any | None = None) -> ExecutionEngine:
    logger = logging.getLogger("test.engine")
    return ExecutionEngine(
        logger=logger,
        chain=chain,  # type: ignore[arg-type]
        quotes=quotes or QuoteSourceAdapter(logger=logger, chain=chain, routers=ROUTERS),  # type: ignore[arg-type]
        approvals=ApprovalGuard(logger=logger, chain=chain),  # type: ignore[arg-type]
        routers=ROUTERS,
        settings=ExecutionSettings(deadline_seconds=300, gas_margin_pct=20, v2_gas_limit=250_000),
        clock_seconds=lambda: 1_000.0,
    )


class ExecutionEngineTests(unittest.IsolatedAsyncioTestCase):
    async def test_routes_through_best_venue_above_minimum(self) -> None:
        chain = FakeChain(v3_out=995, v2_out=990)
        engine = _make_engine(chain)

        result = await engine.execute_best_trade(TOKEN_A, TOKEN_B, 1_000, 992, "test")

        self.assertTrue(result.success)
        assert result.quote is not None
        self.assertEqual(result.quote.version, RouterVersion.V3)
        self.assertEqual(result.expected_output, 995)
        self.assertEqual(len(chain.swaps), 1)
        label, kwargs = chain.swaps[0]
        self.assertEqual(label, "v3")
        self.assertEqual(kwargs["router"], V3_ROUTER)
        self.assertEqual(kwargs["amount_out_minimum"], 992)
        self.assertEqual(kwargs["recipient"], ACCOUNT)
        self.assertEqual(kwargs["deadline"], 1_300)
        self.assertEqual(kwargs["gas_limit"], 120_000)
        self.assertEqual(chain.approvals, [(TOKEN_A, V3_ROUTER, MAX_UINT256)])
        self.assertEqual(engine.stats()["trade_count"], 1)

    async def test_v2_route_uses_direct_path_and_fixed_gas(self) -> None:
        chain = FakeChain(v3_out=900, v2_out=990)
        engine = _make_engine(chain)

        result = await engine.execute_best_trade(TOKEN_A, TOKEN_B, 1_000, 950)

        self.assertTrue(result.success)
        label, kwargs = chain.swaps[0]
        self.assertEqual(label, "v2")
        self.assertEqual(kwargs["path"], (TOKEN_A, TOKEN_B))
        self.assertEqual(kwargs["amount_out_min"], 950)
        self.assertEqual(kwargs["gas_limit"], 250_000)
        self.assertEqual(chain.approvals, [(TOKEN_A, V2_ROUTER, MAX_UINT256)])

    async def test_missing_gas_estimate_uses_fallback(self) -> None:
        chain = FakeChain(gas_estimate=None)
        engine = _make_engine(chain)

        await engine.execute_best_trade(TOKEN_A, TOKEN_B, 1_000, 1)

        self.assertEqual(chain.swaps[0][1]["gas_limit"], 300_000)

    async def test_slippage_guard_blocks_approval_and_swap(self) -> None:
        chain = FakeChain(v3_out=995, v2_out=990)
        engine = _make_engine(chain)

        result = await engine.execute_best_trade(TOKEN_A, TOKEN_B, 1_000, 999)

        self.assertFalse(result.success)
        self.assertEqual(result.fail_reason, FAIL_REASON_SLIPPAGE_EXCEEDED)
        self.assertEqual(result.expected_output, 995)
        self.assertEqual(chain.approvals, [])
        self.assertEqual(chain.swaps, [])
        self.assertEqual(engine.stats()["failed_count"], 1)

    async def test_approval_is_skipped_when_allowance_suffices(self) -> None:
        chain = FakeChain()
        engine = _make_engine(chain)

        first = await engine.execute_best_trade(TOKEN_A, TOKEN_B, 1_000, 1)
        second = await engine.execute_best_trade(TOKEN_A, TOKEN_B, 1_000, 1)

        self.assertTrue(first.success)
        self.assertTrue(second.success)
        self.assertEqual(len(chain.approvals), 1)
        self.assertEqual(len(chain.swaps), 2)

    async def test_invalid_transaction_hash_is_a_submission_failure(self) -> None:
        chain = FakeChain()
        chain.swap_hash = "0xdeadbeef"
        engine = _make_engine(chain)

        result = await engine.execute_best_trade(TOKEN_A, TOKEN_B, 1_000, 1)

        self.assertFalse(result.success)
        self.assertEqual(result.fail_reason, FAIL_REASON_SWAP_SUBMISSION_FAILED)
        self.assertIsNone(result.tx_hash)

    async def test_reverted_swap_reports_not_confirmed_with_hash(self) -> None:
        chain = FakeChain()
        chain.swap_status = 0
        engine = _make_engine(chain)

        result = await engine.execute_best_trade(TOKEN_A, TOKEN_B, 1_000, 1)

        self.assertFalse(result.success)
        self.assertEqual(result.fail_reason, FAIL_REASON_SWAP_NOT_CONFIRMED)
        self.assertIsNotNone(result.tx_hash)

    async def test_approval_failure_is_reported(self) -> None:
        chain = FakeChain()
        chain.approve_error = RuntimeError("insufficient funds for gas")
        engine = _make_engine(chain)

        result = await engine.execute_best_trade(TOKEN_A, TOKEN_B, 1_000, 1)

        self.assertFalse(result.success)
        self.assertEqual(result.fail_reason, FAIL_REASON_APPROVAL_FAILED)
        self.assertEqual(chain.swaps, [])

    async def test_never_raises_on_quote_failures(self) -> None:
        chain = FakeChain(v3_out=0, v2_out=0)
        engine = _make_engine(chain)

        no_quote = await engine.execute_best_trade(TOKEN_A, TOKEN_B, 1_000, 1)
        self.assertFalse(no_quote.success)
        self.assertEqual(no_quote.fail_reason, FAIL_REASON_NO_QUOTE_AVAILABLE)
        self.assertIsNone(no_quote.quote)

        broken_quotes = AsyncMock()
        broken_quotes.get_best_quote.side_effect = ValueError("unexpected payload")
        broken_engine = _make_engine(chain, quotes=broken_quotes)
        unexpected = await broken_engine.execute_best_trade(TOKEN_A, TOKEN_B, 1_000, 1)
        self.assertFalse(unexpected.success)
        self.assertEqual(unexpected.fail_reason, FAIL_REASON_OTHER)
        self.assertIn("unexpected payload", unexpected.error or "")

    async def test_same_pair_executions_are_serialized(self) -> None:
        chain = FakeChain()
        chain.swap_delay = 0.02
        engine = _make_engine(chain)

        results = await asyncio.gather(
            engine.execute_best_trade(TOKEN_A, TOKEN_B, 1_000, 1),
            engine.execute_best_trade(TOKEN_B, TOKEN_A, 1_000, 1),
        )

        self.assertTrue(all(result.success for result in results))
        self.assertEqual(chain.max_active_swaps, 1)
        self.assertEqual(pair_lock_key(TOKEN_A, TOKEN_B), pair_lock_key(TOKEN_B.upper(), TOKEN_A))

    async def test_different_pairs_may_overlap(self) -> None:
        chain = FakeChain()
        chain.swap_delay = 0.05
        engine = _make_engine(chain)

        await asyncio.gather(
            engine.execute_best_trade(TOKEN_A, TOKEN_B, 1_000, 1),
            engine.execute_best_trade(TOKEN_A, TOKEN_C, 1_000, 1),
        )

        self.assertEqual(chain.max_active_swaps, 2)

    async def test_outcome_listeners_are_notified_and_isolated(self) -> None:
        chain = FakeChain()
        engine = _make_engine(chain)
        received: list[tuple[str, TradeResult]] = []

        def broken(_pair: str, _result: TradeResult) -> None:
            raise RuntimeError("listener boom")

        engine.add_outcome_listener(broken)
        remove = engine.add_outcome_listener(lambda pair, result: received.append((pair, result)))

        result = await engine.execute_best_trade(TOKEN_A, TOKEN_B, 1_000, 1, pair="HYPE/UBTC")
        self.assertEqual(received, [("HYPE/UBTC", result)])

        remove()
        await engine.execute_best_trade(TOKEN_A, TOKEN_B, 1_000, 1, pair="HYPE/UBTC")
        self.assertEqual(len(received), 1)


if __name__ == "__main__":
    unittest.main()

from __future__ import annotations

import asyncio
import functools
import logging
import time
from typing import Any, Callable

from market_maker.common import guarded_call, log_event

from .approval import ApprovalGuard
from .chain import ChainClient, is_valid_tx_hash
from .errors import (
    SlippageExceededError,
    SwapNotConfirmedError,
    SwapSubmissionFailedError,
    UnsupportedRouterError,
    fail_reason_for,
)
from .quotes import QuoteSourceAdapter
from .types import (
    ExecutionSettings,
    RouterQuote,
    RouterSettings,
    RouterVersion,
    TradeOutcomeListener,
    TradeResult,
    normalize_address,
    now_ms,
)


def pair_lock_key(token_a: str, token_b: str) -> str:
    first, second = sorted((normalize_address(token_a), normalize_address(token_b)))
    return f"{first}:{second}"


class ExecutionEngine:
    def __init__(
        self,
        *,
        logger: logging.Logger,
        chain: ChainClient,
        quotes: QuoteSourceAdapter,
        approvals: ApprovalGuard,
        routers: RouterSettings,
        settings: ExecutionSettings | None = None,
        clock_seconds: Callable[[], float] = time.time,
    ) -> None:
        self._logger = logger
        self._chain = chain
        self._quotes = quotes
        self._approvals = approvals
        self._routers = routers
        self._settings = settings or ExecutionSettings()
        self._clock_seconds = clock_seconds
        self._pair_locks: dict[str, asyncio.Lock] = {}
        self._in_flight: set[str] = set()
        self._listeners: list[TradeOutcomeListener] = []
        self._trade_count = 0
        self._failed_count = 0
        self._last_trade_time_ms: int | None = None
        self._started_at_ms = now_ms()

    def add_outcome_listener(self, listener: TradeOutcomeListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    async def healthcheck(self) -> None:
        await self._chain.healthcheck()

    def stats(self) -> dict[str, Any]:
        return {
            "trade_count": self._trade_count,
            "failed_count": self._failed_count,
            "last_trade_time_ms": self._last_trade_time_ms,
            "in_flight_pairs": sorted(self._in_flight),
            "uptime_ms": max(0, now_ms() - self._started_at_ms),
        }

    async def execute_best_trade(
        self,
        token_in: str,
        token_out: str,
        amount_in: int,
        min_amount_out: int,
        reason: str = "",
        *,
        pair: str | None = None,
        fee_hint: int | None = None,
    ) -> TradeResult:
        key = pair_lock_key(token_in, token_out)
        lock = self._pair_locks.setdefault(key, asyncio.Lock())
        if lock.locked():
            log_event(
                self._logger,
                level="debug",
                event="trade_waiting_for_pair_lock",
                message="Another execution is in flight for this pair; waiting",
                pair=pair or key,
            )

        async with lock:
            self._in_flight.add(key)
            try:
                result = await self._execute(
                    token_in=token_in,
                    token_out=token_out,
                    amount_in=amount_in,
                    min_amount_out=min_amount_out,
                    reason=reason,
                    pair=pair,
                    fee_hint=fee_hint,
                )
            finally:
                self._in_flight.discard(key)

        await self._notify(pair or key, result)
        return result

    async def _execute(
        self,
        *,
        token_in: str,
        token_out: str,
        amount_in: int,
        min_amount_out: int,
        reason: str,
        pair: str | None,
        fee_hint: int | None,
    ) -> TradeResult:
        started_at_ms = now_ms()
        quote: RouterQuote | None = None
        log_event(
            self._logger,
            level="info",
            event="trade_started",
            message="Executing best trade",
            pair=pair,
            reason=reason,
            token_in=token_in,
            token_out=token_out,
            amount_in=str(amount_in),
            min_amount_out=str(min_amount_out),
        )

        try:
            quote = await self._quotes.get_best_quote(
                token_in,
                token_out,
                amount_in,
                fee_hint or self._routers.default_fee,
            )
            if quote.amount_out < min_amount_out:
                raise SlippageExceededError(
                    f"Quote output {quote.amount_out} below minimum {min_amount_out}",
                    amount_out=quote.amount_out,
                    min_amount_out=min_amount_out,
                )

            if quote.version is RouterVersion.V3:
                tx_hash = await self._execute_v3(quote=quote, min_amount_out=min_amount_out)
            elif quote.version is RouterVersion.V2:
                tx_hash = await self._execute_v2(quote=quote, min_amount_out=min_amount_out)
            else:
                raise UnsupportedRouterError(f"Unsupported router version: {quote.version}")

            if not is_valid_tx_hash(tx_hash):
                raise SwapSubmissionFailedError(f"Router returned an invalid transaction hash: {tx_hash!r}")

            receipt = await self._chain.wait_for_receipt(
                tx_hash,
                timeout_seconds=self._settings.confirm_timeout_seconds,
            )
            if not receipt.succeeded:
                raise SwapNotConfirmedError(f"Swap transaction {tx_hash} reverted", tx_hash=tx_hash)
        except asyncio.CancelledError:
            raise
        except Exception as error:
            self._failed_count += 1
            fail_reason = fail_reason_for(error)
            log_event(
                self._logger,
                level="warning",
                event="trade_failed",
                message="Trade execution failed",
                pair=pair,
                reason=reason,
                fail_reason=fail_reason,
                error=str(error),
                error_type=type(error).__name__,
                source=quote.source if quote is not None else None,
            )
            return TradeResult(
                success=False,
                token_in=token_in,
                token_out=token_out,
                amount_in=amount_in,
                tx_hash=getattr(error, "tx_hash", None),
                quote=quote,
                expected_output=quote.amount_out if quote is not None else None,
                error=str(error),
                fail_reason=fail_reason,
                reason=reason,
                started_at_ms=started_at_ms,
                finished_at_ms=now_ms(),
            )

        self._trade_count += 1
        self._last_trade_time_ms = now_ms()
        log_event(
            self._logger,
            level="info",
            event="trade_executed",
            message="Trade executed",
            pair=pair,
            reason=reason,
            source=quote.source,
            version=quote.version.value,
            router=quote.router,
            expected_output=str(quote.amount_out),
            tx_hash=tx_hash,
        )
        return TradeResult(
            success=True,
            token_in=token_in,
            token_out=token_out,
            amount_in=amount_in,
            tx_hash=tx_hash,
            quote=quote,
            expected_output=quote.amount_out,
            reason=reason,
            started_at_ms=started_at_ms,
            finished_at_ms=self._last_trade_time_ms,
        )

    def _deadline(self) -> int:
        return int(self._clock_seconds()) + self._settings.deadline_seconds

    def _v3_gas_limit(self, quote: RouterQuote) -> int:
        if quote.gas_estimate:
            return quote.gas_estimate * (100 + self._settings.gas_margin_pct) // 100
        return self._settings.v3_gas_limit_fallback

    async def _execute_v3(self, *, quote: RouterQuote, min_amount_out: int) -> str:
        await self._approvals.ensure_approval(quote.token_in, quote.router, quote.amount_in)
        return await self._chain.swap_v3_exact_input_single(
            router=quote.router,
            token_in=quote.token_in,
            token_out=quote.token_out,
            fee=quote.fee or self._routers.default_fee,
            recipient=self._chain.account_address,
            deadline=self._deadline(),
            amount_in=quote.amount_in,
            amount_out_minimum=min_amount_out,
            gas_limit=self._v3_gas_limit(quote),
        )

    async def _execute_v2(self, *, quote: RouterQuote, min_amount_out: int) -> str:
        if not quote.router:
            raise UnsupportedRouterError("V2 router is not configured")
        await self._approvals.ensure_approval(quote.token_in, quote.router, quote.amount_in)
        return await self._chain.swap_v2_exact_tokens_for_tokens(
            router=quote.router,
            amount_in=quote.amount_in,
            amount_out_min=min_amount_out,
            path=quote.path or (quote.token_in, quote.token_out),
            recipient=self._chain.account_address,
            deadline=self._deadline(),
            gas_limit=self._settings.v2_gas_limit,
        )

    async def _notify(self, pair: str, result: TradeResult) -> None:
        for listener in list(self._listeners):
            await guarded_call(
                functools.partial(listener, pair, result),
                logger=self._logger,
                event="trade_listener_failed",
                message="Trade outcome listener failed",
                pair=pair,
            )

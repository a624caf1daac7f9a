from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from market_maker.common import log_event

from .chain import ChainClient
from .errors import NoQuoteAvailableError
from .types import RouterQuote, RouterSettings, RouterVersion, normalize_address

SOURCE_V3_QUOTER_V2 = "V3_QuoterV2"
SOURCE_V3_QUOTER_V1 = "V3_QuoterV1"
SOURCE_V2_ROUTER = "V2_Router"


class QuoteSourceAdapter:
    def __init__(
        self,
        *,
        logger: logging.Logger,
        chain: ChainClient,
        routers: RouterSettings,
        quote_timeout_seconds: float = 10.0,
    ) -> None:
        self._logger = logger
        self._chain = chain
        self._routers = routers
        self._quote_timeout_seconds = max(0.1, quote_timeout_seconds)

    async def get_best_quote(
        self,
        token_in: str,
        token_out: str,
        amount_in: int,
        fee_hint: int | None = None,
    ) -> RouterQuote:
        if amount_in <= 0:
            raise NoQuoteAvailableError(f"amount_in must be positive, got {amount_in}")
        if normalize_address(token_in) == normalize_address(token_out):
            raise NoQuoteAvailableError("token_in and token_out are the same token")

        fee = int(fee_hint) if fee_hint else self._routers.default_fee
        sources: list[tuple[str, Callable[[], Awaitable[RouterQuote | None]]]] = [
            (SOURCE_V3_QUOTER_V2, lambda: self._quote_v3_quoter_v2(token_in, token_out, amount_in, fee)),
        ]
        if self._routers.v3_quoter_v1:
            sources.append(
                (SOURCE_V3_QUOTER_V1, lambda: self._quote_v3_quoter_v1(token_in, token_out, amount_in, fee))
            )
        if self._routers.v2_router:
            sources.append((SOURCE_V2_ROUTER, lambda: self._quote_v2(token_in, token_out, amount_in)))

        results = await asyncio.gather(
            *(asyncio.wait_for(factory(), timeout=self._quote_timeout_seconds) for _, factory in sources),
            return_exceptions=True,
        )

        candidates: list[RouterQuote] = []
        for (source, _), result in zip(sources, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                log_event(
                    self._logger,
                    level="debug",
                    event="quote_source_failed",
                    message="Quote source failed",
                    source=source,
                    token_in=token_in,
                    token_out=token_out,
                    amount_in=str(amount_in),
                    error=str(result),
                    error_type=type(result).__name__,
                )
                continue
            if result is None or result.amount_out <= 0:
                continue
            if not result.matches(token_in=token_in, token_out=token_out, amount_in=amount_in):
                # Outputs are only comparable for an identical request.
                continue
            candidates.append(result)

        if not candidates:
            raise NoQuoteAvailableError(
                f"No router produced a usable quote for {token_in}->{token_out} amount_in={amount_in}"
            )

        # max() keeps the first of equal outputs, so source order breaks ties.
        best = max(candidates, key=lambda quote: quote.amount_out)
        log_event(
            self._logger,
            level="debug",
            event="best_quote_selected",
            message="Best quote selected",
            source=best.source,
            version=best.version.value,
            amount_in=str(amount_in),
            amount_out=str(best.amount_out),
            candidates=len(candidates),
        )
        return best

    async def _quote_v3_quoter_v2(
        self,
        token_in: str,
        token_out: str,
        amount_in: int,
        fee: int,
    ) -> RouterQuote | None:
        amount_out, gas_estimate = await self._chain.quote_v3_exact_input_single(
            quoter=self._routers.v3_quoter,
            token_in=token_in,
            token_out=token_out,
            amount_in=amount_in,
            fee=fee,
        )
        return RouterQuote(
            version=RouterVersion.V3,
            router=self._routers.v3_router,
            source=SOURCE_V3_QUOTER_V2,
            token_in=token_in,
            token_out=token_out,
            amount_in=amount_in,
            amount_out=int(amount_out),
            fee=fee,
            gas_estimate=gas_estimate,
        )

    async def _quote_v3_quoter_v1(
        self,
        token_in: str,
        token_out: str,
        amount_in: int,
        fee: int,
    ) -> RouterQuote | None:
        amount_out = await self._chain.quote_v3_legacy_exact_input_single(
            quoter=self._routers.v3_quoter_v1 or "",
            token_in=token_in,
            token_out=token_out,
            amount_in=amount_in,
            fee=fee,
        )
        return RouterQuote(
            version=RouterVersion.V3,
            router=self._routers.v3_router,
            source=SOURCE_V3_QUOTER_V1,
            token_in=token_in,
            token_out=token_out,
            amount_in=amount_in,
            amount_out=int(amount_out),
            fee=fee,
        )

    def _v2_paths(self, token_in: str, token_out: str) -> list[tuple[str, ...]]:
        paths: list[tuple[str, ...]] = [(token_in, token_out)]
        excluded = {normalize_address(token_in), normalize_address(token_out)}
        for intermediate in self._routers.v2_intermediate_tokens:
            if normalize_address(intermediate) in excluded:
                continue
            paths.append((token_in, intermediate, token_out))
        return paths

    async def _quote_v2(self, token_in: str, token_out: str, amount_in: int) -> RouterQuote | None:
        router = self._routers.v2_router or ""
        paths = self._v2_paths(token_in, token_out)
        results = await asyncio.gather(
            *(self._chain.quote_v2_amounts_out(router=router, amount_in=amount_in, path=path) for path in paths),
            return_exceptions=True,
        )

        best: RouterQuote | None = None
        for path, amounts in zip(paths, results):
            if isinstance(amounts, asyncio.CancelledError):
                raise amounts
            if isinstance(amounts, BaseException) or not amounts:
                continue
            amount_out = int(amounts[-1])
            if amount_out <= 0:
                continue
            if best is None or amount_out > best.amount_out:
                best = RouterQuote(
                    version=RouterVersion.V2,
                    router=router,
                    source=SOURCE_V2_ROUTER,
                    token_in=token_in,
                    token_out=token_out,
                    amount_in=amount_in,
                    amount_out=amount_out,
                    path=tuple(path),
                )

        if best is None:
            raise NoQuoteAvailableError("V2 router returned no usable path")
        return best

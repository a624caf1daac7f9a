from __future__ import annotations

import asyncio
import logging

from market_maker.common import log_event

from .chain import ChainClient
from .errors import ApprovalFailedError
from .types import MAX_UINT256


class ApprovalGuard:
    def __init__(
        self,
        *,
        logger: logging.Logger,
        chain: ChainClient,
        confirm_timeout_seconds: float = 120.0,
    ) -> None:
        self._logger = logger
        self._chain = chain
        self._confirm_timeout_seconds = confirm_timeout_seconds

    async def ensure_approval(self, token: str, spender: str, amount: int) -> str | None:
        """Make sure `spender` may move at least `amount` of `token`.

        Returns the approval transaction hash, or None when the allowance
        already covers the amount and nothing was submitted.
        """
        try:
            allowance = await self._chain.get_allowance(
                token=token,
                owner=self._chain.account_address,
                spender=spender,
            )
            if allowance >= amount:
                return None

            log_event(
                self._logger,
                level="info",
                event="approval_submitting",
                message="Allowance below trade amount; approving max allowance",
                token=token,
                spender=spender,
                allowance=str(allowance),
                amount=str(amount),
            )
            tx_hash = await self._chain.approve(token=token, spender=spender, amount=MAX_UINT256)
            receipt = await self._chain.wait_for_receipt(
                tx_hash,
                timeout_seconds=self._confirm_timeout_seconds,
            )
        except asyncio.CancelledError:
            raise
        except ApprovalFailedError:
            raise
        except Exception as error:
            raise ApprovalFailedError(f"Approval of {token} for {spender} failed: {error}") from error

        if not receipt.succeeded:
            raise ApprovalFailedError(f"Approval transaction {tx_hash} reverted")

        log_event(
            self._logger,
            level="info",
            event="approval_confirmed",
            message="Token approval confirmed",
            token=token,
            spender=spender,
            tx_hash=tx_hash,
        )
        return tx_hash

from __future__ import annotations

from .types import (
    FAIL_REASON_APPROVAL_FAILED,
    FAIL_REASON_NO_QUOTE_AVAILABLE,
    FAIL_REASON_OTHER,
    FAIL_REASON_SLIPPAGE_EXCEEDED,
    FAIL_REASON_SWAP_NOT_CONFIRMED,
    FAIL_REASON_SWAP_SUBMISSION_FAILED,
    FAIL_REASON_UNSUPPORTED_ROUTER,
)


class TradingError(RuntimeError):
    fail_reason = FAIL_REASON_OTHER


class NoQuoteAvailableError(TradingError):
    fail_reason = FAIL_REASON_NO_QUOTE_AVAILABLE


class SlippageExceededError(TradingError):
    fail_reason = FAIL_REASON_SLIPPAGE_EXCEEDED

    def __init__(self, message: str, *, amount_out: int, min_amount_out: int) -> None:
        super().__init__(message)
        self.amount_out = amount_out
        self.min_amount_out = min_amount_out


class ApprovalFailedError(TradingError):
    fail_reason = FAIL_REASON_APPROVAL_FAILED


class SwapSubmissionFailedError(TradingError):
    fail_reason = FAIL_REASON_SWAP_SUBMISSION_FAILED


class SwapNotConfirmedError(TradingError):
    fail_reason = FAIL_REASON_SWAP_NOT_CONFIRMED

    def __init__(self, message: str, *, tx_hash: str | None = None) -> None:
        super().__init__(message)
        self.tx_hash = tx_hash


class UnsupportedRouterError(TradingError):
    fail_reason = FAIL_REASON_UNSUPPORTED_ROUTER


def fail_reason_for(error: BaseException) -> str:
    if isinstance(error, TradingError):
        return error.fail_reason
    return FAIL_REASON_OTHER

from .approval import ApprovalGuard
from .catalog import DEFAULT_PAIRS, DEFAULT_TOKENS, load_pair_catalogue_from_env
from .chain import ChainClient, DryRunChainClient, Web3ChainClient, is_valid_tx_hash
from .engine import ExecutionEngine, pair_lock_key
from .errors import (
    ApprovalFailedError,
    NoQuoteAvailableError,
    SlippageExceededError,
    SwapNotConfirmedError,
    SwapSubmissionFailedError,
    TradingError,
    UnsupportedRouterError,
)
from .planner import TradePlanDecision, TradePlanner, edge_bps
from .quotes import QuoteSourceAdapter
from .types import (
    FAIL_REASON_APPROVAL_FAILED,
    FAIL_REASON_NO_QUOTE_AVAILABLE,
    FAIL_REASON_OTHER,
    FAIL_REASON_SLIPPAGE_EXCEEDED,
    FAIL_REASON_SWAP_NOT_CONFIRMED,
    FAIL_REASON_SWAP_SUBMISSION_FAILED,
    FAIL_REASON_UNSUPPORTED_ROUTER,
    ExecutionSettings,
    PairConfig,
    RouterQuote,
    RouterSettings,
    RouterVersion,
    RuntimeConfig,
    TokenConfig,
    TradeIntent,
    TradeResult,
    TxReceipt,
)

__all__ = [
    "ApprovalFailedError",
    "ApprovalGuard",
    "ChainClient",
    "DEFAULT_PAIRS",
    "DEFAULT_TOKENS",
    "DryRunChainClient",
    "ExecutionEngine",
    "ExecutionSettings",
    "FAIL_REASON_APPROVAL_FAILED",
    "FAIL_REASON_NO_QUOTE_AVAILABLE",
    "FAIL_REASON_OTHER",
    "FAIL_REASON_SLIPPAGE_EXCEEDED",
    "FAIL_REASON_SWAP_NOT_CONFIRMED",
    "FAIL_REASON_SWAP_SUBMISSION_FAILED",
    "FAIL_REASON_UNSUPPORTED_ROUTER",
    "NoQuoteAvailableError",
    "PairConfig",
    "QuoteSourceAdapter",
    "RouterQuote",
    "RouterSettings",
    "RouterVersion",
    "RuntimeConfig",
    "SlippageExceededError",
    "SwapNotConfirmedError",
    "SwapSubmissionFailedError",
    "TokenConfig",
    "TradeIntent",
    "TradePlanDecision",
    "TradePlanner",
    "TradeResult",
    "TradingError",
    "TxReceipt",
    "UnsupportedRouterError",
    "Web3ChainClient",
    "edge_bps",
    "is_valid_tx_hash",
    "load_pair_catalogue_from_env",
    "pair_lock_key",
]

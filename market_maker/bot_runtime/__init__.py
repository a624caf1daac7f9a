from .logging import setup_logger
from .loop import bootstrap_dependencies, run_trading_loop
from .settings import AppSettings

__all__ = [
    "AppSettings",
    "bootstrap_dependencies",
    "run_trading_loop",
    "setup_logger",
]

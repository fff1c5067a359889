"""stock_backtest package.

Expose commonly used functions for convenience."""

from .analysis import analyze_bars, get_detailed_analysis
from .batch import run_batch_analysis, run_table_analysis
from .errors import ConfigurationInvalid, DataUnavailable, StockBacktestError
from .metrics import calculate_summary_metrics
from .simulator import simulate_frame, simulate_trades
from .strategy_config import StrategyConfig, build_strategy_config

__all__ = [
    "analyze_bars",
    "get_detailed_analysis",
    "run_batch_analysis",
    "run_table_analysis",
    "ConfigurationInvalid",
    "DataUnavailable",
    "StockBacktestError",
    "calculate_summary_metrics",
    "simulate_frame",
    "simulate_trades",
    "StrategyConfig",
    "build_strategy_config",
]

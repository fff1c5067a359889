"""Run the full single-symbol pipeline and package its results."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Callable, Dict, List

import pandas

from .errors import DataUnavailable
from .ledger import CapitalPoint, Position, TradeEvent
from .metrics import (
    SummaryMetrics,
    calculate_annual_returns,
    calculate_annual_trade_counts,
    calculate_summary_metrics,
)
from .periods import bars_from_frame
from .settings import RISK_FREE_RATE_PERCENTAGE
from .simulator import DailyLedgerRow, simulate_trades
from .strategy_config import StrategyConfig

LOGGER = logging.getLogger(__name__)

BarFetcher = Callable[[str], pandas.DataFrame]


@dataclass
class AnalysisResult:
    """Summary row for one symbol."""

    asset_code: str
    metrics: SummaryMetrics
    asset_name: str = ""

    @property
    def profit_percentage(self) -> float:
        return self.metrics.profit_percentage

    def to_record(self) -> Dict[str, object]:
        """Flatten into a mapping suitable for a results table row."""
        record: Dict[str, object] = {
            "asset_code": self.asset_code,
            "asset_name": self.asset_name or self.asset_code,
        }
        record.update(self.metrics.to_dict())
        return record


@dataclass
class DetailedResult(AnalysisResult):
    """Summary plus everything needed for a drill-down view."""

    daily_rows: List[DailyLedgerRow] = field(default_factory=list)
    capital_points: List[CapitalPoint] = field(default_factory=list)
    trades: List[TradeEvent] = field(default_factory=list)
    open_position: Position | None = None
    annual_returns: Dict[int, float] = field(default_factory=dict)
    annual_trade_counts: Dict[int, int] = field(default_factory=dict)

    def summary(self) -> AnalysisResult:
        return AnalysisResult(
            asset_code=self.asset_code,
            metrics=self.metrics,
            asset_name=self.asset_name,
        )

    def daily_table(self) -> pandas.DataFrame:
        """Return the per-day ledger as a frame indexed by date."""
        if not self.daily_rows:
            return pandas.DataFrame()
        table = pandas.DataFrame([asdict(row) for row in self.daily_rows])
        for column_name in ("action", "exit_reason", "note"):
            table[column_name] = table[column_name].map(
                lambda value: getattr(value, "value", value)
            )
        return table.set_index("date")


def analyze_bars(
    symbol: str,
    price_data_frame: pandas.DataFrame,
    config: StrategyConfig,
    risk_free_rate: float = RISK_FREE_RATE_PERCENTAGE,
) -> DetailedResult:
    """Simulate ``symbol`` over ``price_data_frame`` and derive its metrics.

    Raises
    ------
    DataUnavailable
        If the frame has no usable bars.
    """
    try:
        bar_list = bars_from_frame(price_data_frame)
    except DataUnavailable as data_error:
        raise DataUnavailable(f"{symbol}: {data_error}", symbol=symbol) from data_error
    simulation_result = simulate_trades(bar_list, config)
    metrics = calculate_summary_metrics(
        simulation_result.trades,
        simulation_result.capital_points,
        config.initial_capital,
        trading_days=len(bar_list),
        risk_free_rate=risk_free_rate,
    )
    LOGGER.debug(
        "%s: %d bars, %d trades, total profit %.2f, final capital %.2f",
        symbol,
        len(bar_list),
        metrics.trades,
        simulation_result.total_profit,
        metrics.final_capital,
    )
    return DetailedResult(
        asset_code=symbol,
        asset_name=symbol,
        metrics=metrics,
        daily_rows=simulation_result.daily_rows,
        capital_points=simulation_result.capital_points,
        trades=simulation_result.trades,
        open_position=simulation_result.open_position,
        annual_returns=calculate_annual_returns(simulation_result.capital_points),
        annual_trade_counts=calculate_annual_trade_counts(simulation_result.trades),
    )


def empty_detailed_result(symbol: str, config: StrategyConfig) -> DetailedResult:
    """Return the result shown when a symbol has no data for the period."""
    return DetailedResult(
        asset_code=symbol,
        asset_name=symbol,
        metrics=calculate_summary_metrics([], [], config.initial_capital, trading_days=0),
    )


def get_detailed_analysis(
    symbol: str,
    fetch_bars: BarFetcher,
    config: StrategyConfig,
    risk_free_rate: float = RISK_FREE_RATE_PERCENTAGE,
) -> DetailedResult:
    """Fetch bars for ``symbol`` and run the drill-down analysis.

    A symbol without data yields an empty result instead of an error.
    """
    try:
        price_data_frame = fetch_bars(symbol)
        return analyze_bars(symbol, price_data_frame, config, risk_free_rate)
    except DataUnavailable as data_error:
        LOGGER.warning("No data for %s: %s", symbol, data_error)
        return empty_detailed_result(symbol, config)

"""Summary statistics derived from closed trades and the capital series.

Ratios whose denominator is zero while the numerator is positive are
unbounded. They are reported as ``None`` rather than ``inf`` so results stay
serializable and sortable; a ratio with both parts zero is ``0.0``.
"""

from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass
from statistics import mean, stdev
from typing import Dict, Iterable, List, Sequence

import numpy

from .ledger import CapitalPoint, ExitReason, TradeEvent, capital_series, replay_capital
from .settings import RISK_FREE_RATE_PERCENTAGE

LOGGER = logging.getLogger(__name__)

# Tolerance for the final-capital reconciliation against the trade list.
CAPITAL_RECONCILIATION_TOLERANCE = 1e-6


@dataclass(frozen=True)
class SummaryMetrics:
    """Aggregate metrics describing one symbol's simulation.

    Percentages are in percent units, so ``max_drawdown == 1.98`` is a
    1.98 percent decline. ``None`` marks an unbounded ratio.
    """

    trading_days: int
    trades: int
    trade_percentage: float
    profits: int
    profit_rate: float
    losses: int
    loss_rate: float
    stops: int
    stop_rate: float
    success_rate: float
    initial_capital: float
    final_capital: float
    profit: float
    profit_percentage: float
    total_gain: float
    total_loss: float
    average_gain: float
    average_loss: float
    profit_factor: float | None
    average_win_loss_ratio: float | None
    max_drawdown: float
    volatility: float
    sharpe_ratio: float
    sortino_ratio: float | None
    recovery_factor: float | None
    calmar_ratio: float | None

    def to_dict(self) -> Dict[str, object]:
        return asdict(self)


def _bounded_ratio(numerator: float, denominator: float) -> float | None:
    """Divide, returning ``None`` for a positive numerator over zero."""
    if denominator == 0:
        return None if numerator > 0 else 0.0
    return numerator / denominator


def _rate(count: int, total: int) -> float:
    return count / total * 100 if total > 0 else 0.0


def calculate_max_drawdown(capital_points: Sequence[CapitalPoint]) -> float:
    """Return the largest peak-to-trough decline of capital in percent.

    The peak is the running maximum up to and including each point. Fewer than
    two points cannot form a drawdown and yield ``0.0``.
    """
    if len(capital_points) <= 1:
        return 0.0
    capital_values = capital_series(capital_points)
    running_peak = capital_values.cummax().replace(0.0, numpy.nan)
    drawdown_fractions = ((running_peak - capital_values) / running_peak).fillna(0.0)
    return float(drawdown_fractions.max()) * 100


def calculate_sharpe_ratio(
    profit_loss_list: Sequence[float],
    total_return_percentage: float,
    risk_free_rate: float = RISK_FREE_RATE_PERCENTAGE,
) -> float:
    """Excess total return over the sample deviation of per-trade results."""
    volatility = stdev(profit_loss_list) if len(profit_loss_list) > 1 else 0.0
    if volatility == 0:
        return 0.0
    return (total_return_percentage - risk_free_rate) / volatility


def calculate_sortino_ratio(
    profit_loss_list: Sequence[float],
    total_return_percentage: float,
    risk_free_rate: float = RISK_FREE_RATE_PERCENTAGE,
) -> float | None:
    """Excess total return over the downside deviation against zero.

    Returns ``None`` when there is no losing trade at all.
    """
    negative_results = numpy.array(
        [value for value in profit_loss_list if value < 0], dtype=float
    )
    if negative_results.size == 0:
        return None
    downside_deviation = float(numpy.sqrt(numpy.mean(numpy.square(negative_results))))
    if downside_deviation == 0:
        return 0.0
    return (total_return_percentage - risk_free_rate) / downside_deviation


def calculate_recovery_factor(
    profit: float, max_drawdown: float, initial_capital: float
) -> float | None:
    """Total profit relative to the largest drawdown amount.

    Zero drawdown with a profit is unbounded and returns ``None``; zero
    drawdown without a profit returns ``0.0``.
    """
    drawdown_amount = max_drawdown / 100 * initial_capital
    if drawdown_amount == 0:
        return None if profit > 0 else 0.0
    return abs(profit / drawdown_amount)


def calculate_summary_metrics(
    trades: Sequence[TradeEvent],
    capital_points: Sequence[CapitalPoint],
    initial_capital: float,
    trading_days: int | None = None,
    risk_free_rate: float = RISK_FREE_RATE_PERCENTAGE,
) -> SummaryMetrics:
    """Compute :class:`SummaryMetrics` for one simulation.

    Parameters
    ----------
    trades:
        Closed trades in chronological order.
    capital_points:
        Capital after each simulated day.
    initial_capital:
        Capital the simulation started with.
    trading_days:
        Number of unique bar dates. Defaults to the number of capital points.
    risk_free_rate:
        Percentage subtracted from total return for Sharpe and Sortino.

    Returns
    -------
    SummaryMetrics
        The derived statistics. ``final_capital`` is taken from the last
        capital point, never recomputed from the trades.
    """
    if trading_days is None:
        trading_days = len({point.date for point in capital_points})
    final_capital = capital_points[-1].capital if capital_points else initial_capital
    replayed_capital = replay_capital(initial_capital, trades)
    if not math.isclose(
        replayed_capital, final_capital, abs_tol=CAPITAL_RECONCILIATION_TOLERANCE
    ):
        LOGGER.error(
            "Final capital %.6f does not match trade replay %.6f",
            final_capital,
            replayed_capital,
        )

    profit_loss_list: List[float] = [trade_event.profit_loss for trade_event in trades]
    gain_list = [value for value in profit_loss_list if value > 0]
    loss_list = [value for value in profit_loss_list if value < 0]
    trade_count = len(trades)
    profit_count = len(gain_list)
    loss_count = sum(
        1
        for trade_event in trades
        if trade_event.profit_loss < 0 and trade_event.exit_reason is ExitReason.PERIOD_END
    )
    stop_count = sum(
        1
        for trade_event in trades
        if trade_event.profit_loss < 0 and trade_event.exit_reason is ExitReason.STOP_LOSS
    )

    profit = final_capital - initial_capital
    profit_percentage = profit / initial_capital * 100
    total_gain = sum(gain_list)
    total_loss = sum(loss_list)
    average_gain = mean(gain_list) if gain_list else 0.0
    average_loss = mean(loss_list) if loss_list else 0.0
    max_drawdown = calculate_max_drawdown(capital_points)

    return SummaryMetrics(
        trading_days=trading_days,
        trades=trade_count,
        trade_percentage=_rate(trade_count, trading_days),
        profits=profit_count,
        profit_rate=_rate(profit_count, trade_count),
        losses=loss_count,
        loss_rate=_rate(loss_count, trade_count),
        stops=stop_count,
        stop_rate=_rate(stop_count, trade_count),
        success_rate=_rate(profit_count, trade_count),
        initial_capital=initial_capital,
        final_capital=final_capital,
        profit=profit,
        profit_percentage=profit_percentage,
        total_gain=total_gain,
        total_loss=total_loss,
        average_gain=average_gain,
        average_loss=average_loss,
        profit_factor=_bounded_ratio(total_gain, abs(total_loss)),
        average_win_loss_ratio=_bounded_ratio(average_gain, abs(average_loss)),
        max_drawdown=max_drawdown,
        volatility=stdev(profit_loss_list) if trade_count > 1 else 0.0,
        sharpe_ratio=calculate_sharpe_ratio(
            profit_loss_list, profit_percentage, risk_free_rate
        ),
        sortino_ratio=calculate_sortino_ratio(
            profit_loss_list, profit_percentage, risk_free_rate
        ),
        recovery_factor=calculate_recovery_factor(profit, max_drawdown, initial_capital),
        calmar_ratio=_bounded_ratio(profit_percentage, max_drawdown),
    )


def calculate_annual_trade_counts(trades: Iterable[TradeEvent]) -> Dict[int, int]:
    """Count completed trades for each calendar year of their exit date."""
    trade_counts: Dict[int, int] = {}
    for trade_event in trades:
        year_value = trade_event.close.date.year
        trade_counts[year_value] = trade_counts.get(year_value, 0) + 1
    return trade_counts


def calculate_annual_returns(capital_points: Sequence[CapitalPoint]) -> Dict[int, float]:
    """Return the fractional capital change per calendar year.

    Each year is measured from the last capital of the previous year (or the
    first point for the first year) to the last capital of that year.
    """
    if not capital_points:
        return {}
    capital_values = capital_series(capital_points)
    year_end_values = capital_values.groupby(capital_values.index.year).last()
    annual_returns: Dict[int, float] = {}
    year_start_value = float(capital_values.iloc[0])
    for year_value, year_end_value in year_end_values.items():
        if year_start_value == 0:
            annual_returns[int(year_value)] = 0.0
        else:
            annual_returns[int(year_value)] = (
                float(year_end_value) - year_start_value
            ) / year_start_value
        year_start_value = float(year_end_value)
    return annual_returns

"""Day-by-day replay of a period-based entry and stop-loss strategy.

At most one position is open at a time. A position can only open on the
first trading day of a period, priced off the previous trading day's
reference price, and it closes either when the stop price is touched or on
the last trading day of the period. The stop check always runs first, so a
day that satisfies both conditions exits at the stop price.

:func:`step_day` is a pure function of the incoming :class:`CapitalLedger`
and one :class:`TradingDay`; :func:`simulate_trades` folds it over the whole
series.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import List, Sequence

import pandas

from .ledger import (
    CapitalLedger,
    CapitalPoint,
    ExitReason,
    Position,
    TradeEvent,
    close_position,
    mark_entry_attempt,
    open_position,
)
from .periods import Bar, TradingDay, bars_from_frame, build_trading_days
from .settings import FRACTIONAL_LOT_DECIMALS, INTEGER_LOT_MULTIPLE
from .strategy_config import LotRounding, Operation, StrategyConfig

LOGGER = logging.getLogger(__name__)


class DayAction(str, Enum):
    NONE = "none"
    OPEN = "open"
    HOLD = "hold"
    CLOSE = "close"
    OPEN_CLOSE = "open_close"


class LedgerNote(str, Enum):
    NO_PREVIOUS_DAY = "no_previous_day"
    ENTRY_NOT_TRIGGERED = "entry_not_triggered"
    INSUFFICIENT_CAPITAL = "insufficient_capital"
    MISSING_ENTRY_DATA = "missing_entry_data"
    MISSING_EXIT_PRICE = "missing_exit_price"


@dataclass(frozen=True)
class DailyLedgerRow:
    """One line of the drill-down table, recorded for every bar."""

    date: pandas.Timestamp
    open: float
    high: float
    low: float
    close: float
    volume: float
    suggested_entry_price: float | None = None
    actual_price: float | None = None
    action: DayAction = DayAction.NONE
    lot_size: float = 0.0
    stop_price: float | None = None
    exit_reason: ExitReason | None = None
    profit_loss: float = 0.0
    capital: float = 0.0
    note: LedgerNote | None = None


@dataclass(frozen=True)
class EntryDecision:
    """Outcome of an entry attempt on a period's first trading day."""

    suggested_entry_price: float | None
    position: Position | None = None
    note: LedgerNote | None = None


@dataclass(frozen=True)
class DayOutcome:
    ledger: CapitalLedger
    row: DailyLedgerRow
    trade: TradeEvent | None = None


@dataclass
class SimulationResult:
    """Aggregate outcome of a trade simulation."""

    trades: List[TradeEvent]
    capital_points: List[CapitalPoint]
    daily_rows: List[DailyLedgerRow]
    open_position: Position | None = None

    @property
    def final_capital(self) -> float:
        return self.capital_points[-1].capital

    @property
    def total_profit(self) -> float:
        return sum(trade_event.profit_loss for trade_event in self.trades)


def _is_missing(value: float | None) -> bool:
    return value is None or math.isnan(value)


def calculate_suggested_entry_price(reference_value: float, config: StrategyConfig) -> float:
    """Shift the reference price by the entry percentage.

    Buys look for a price below the reference; sells look above it.
    """
    entry_fraction = config.entry_percentage / 100
    if config.is_buy:
        return reference_value * (1 - entry_fraction)
    return reference_value * (1 + entry_fraction)


def determine_actual_price(
    bar: Bar, suggested_entry_price: float, operation: Operation
) -> float | None:
    """Return the fill price for an entry on ``bar`` or ``None`` when no fill.

    A gap through the threshold fills at the open; otherwise an intraday touch
    of the threshold fills at the threshold itself.
    """
    if operation is Operation.BUY:
        if bar.open <= suggested_entry_price:
            return bar.open
        if bar.low <= suggested_entry_price:
            return suggested_entry_price
        return None
    if bar.open >= suggested_entry_price:
        return bar.open
    if bar.high >= suggested_entry_price:
        return suggested_entry_price
    return None


def calculate_lot_size(capital: float, actual_price: float, lot_rounding: LotRounding) -> float:
    """Return the number of units ``capital`` buys at ``actual_price``.

    Integer-lot markets round down to a multiple of ten units; fractional
    markets keep eight decimals.
    """
    if capital <= 0 or actual_price <= 0:
        return 0.0
    if lot_rounding is LotRounding.INTEGER:
        return float(
            math.floor(capital / actual_price / INTEGER_LOT_MULTIPLE) * INTEGER_LOT_MULTIPLE
        )
    return round(capital / actual_price, FRACTIONAL_LOT_DECIMALS)


def calculate_stop_price(actual_price: float, config: StrategyConfig) -> float:
    stop_fraction = config.stop_percentage / 100
    if config.is_buy:
        return actual_price * (1 - stop_fraction)
    return actual_price * (1 + stop_fraction)


def is_stop_triggered(bar: Bar, stop_price: float, operation: Operation) -> bool:
    """Return ``True`` when the bar's range reaches ``stop_price``.

    A missing low (buy) or high (sell) never triggers the stop.
    """
    if operation is Operation.BUY:
        return bar.low <= stop_price
    return bar.high >= stop_price


def evaluate_entry(day: TradingDay, capital: float, config: StrategyConfig) -> EntryDecision:
    """Decide whether a position opens on ``day``.

    Parameters
    ----------
    day:
        The first trading day of a period. ``day.previous_bar`` supplies the
        reference price.
    capital:
        Capital available before the entry.
    config:
        Strategy parameters.

    Returns
    -------
    EntryDecision
        Holds the new :class:`Position` when the entry triggers, otherwise a
        note explaining why no position was created.
    """
    if day.previous_bar is None:
        return EntryDecision(suggested_entry_price=None, note=LedgerNote.NO_PREVIOUS_DAY)
    reference_value = day.previous_bar.price(config.reference_price)
    if _is_missing(reference_value) or reference_value <= 0:
        return EntryDecision(suggested_entry_price=None, note=LedgerNote.MISSING_ENTRY_DATA)
    suggested_entry_price = calculate_suggested_entry_price(reference_value, config)
    actual_price = determine_actual_price(day.bar, suggested_entry_price, config.operation)
    if actual_price is None:
        fill_column_value = day.bar.low if config.is_buy else day.bar.high
        note = (
            LedgerNote.MISSING_ENTRY_DATA
            if _is_missing(day.bar.open) and _is_missing(fill_column_value)
            else LedgerNote.ENTRY_NOT_TRIGGERED
        )
        return EntryDecision(suggested_entry_price=suggested_entry_price, note=note)
    if _is_missing(actual_price) or actual_price <= 0:
        return EntryDecision(
            suggested_entry_price=suggested_entry_price, note=LedgerNote.MISSING_ENTRY_DATA
        )
    lot_size = calculate_lot_size(capital, actual_price, config.lot_rounding)
    if lot_size <= 0:
        LOGGER.debug(
            "Insufficient capital %.2f for a lot at %.4f on %s",
            capital,
            actual_price,
            day.date.date(),
        )
        return EntryDecision(
            suggested_entry_price=suggested_entry_price, note=LedgerNote.INSUFFICIENT_CAPITAL
        )
    position = Position(
        entry_date=day.date,
        entry_price=actual_price,
        suggested_entry_price=suggested_entry_price,
        stop_price=calculate_stop_price(actual_price, config),
        lot_size=lot_size,
        capital_before_entry=capital,
    )
    return EntryDecision(suggested_entry_price=suggested_entry_price, position=position)


def evaluate_exit(
    day: TradingDay, position: Position, config: StrategyConfig
) -> tuple[float, ExitReason] | None:
    """Return the exit price and reason for ``position`` on ``day``, if any.

    The stop check has strict priority over the period-end check. A period
    end whose close is missing leaves the position open.
    """
    if is_stop_triggered(day.bar, position.stop_price, config.operation):
        return position.stop_price, ExitReason.STOP_LOSS
    if day.is_last_trading_day and not _is_missing(day.bar.close):
        return day.bar.close, ExitReason.PERIOD_END
    return None


def _base_row(bar: Bar) -> dict:
    return {
        "date": bar.date,
        "open": bar.open,
        "high": bar.high,
        "low": bar.low,
        "close": bar.close,
        "volume": bar.volume,
    }


def step_day(ledger: CapitalLedger, day: TradingDay, config: StrategyConfig) -> DayOutcome:
    """Advance the simulation by one trading day.

    The incoming ledger is never mutated; the returned :class:`DayOutcome`
    carries the next ledger, the drill-down row for ``day`` and the trade
    closed on ``day``, if any.
    """
    row_values = _base_row(day.bar)
    opened_today = False
    if (
        ledger.open_position is None
        and day.is_first_trading_day
        and ledger.attempted_period != day.period_key
    ):
        ledger = mark_entry_attempt(ledger, day.period_key)
        decision = evaluate_entry(day, ledger.capital, config)
        row_values["suggested_entry_price"] = decision.suggested_entry_price
        if decision.position is None:
            row_values["note"] = decision.note
            row_values["capital"] = ledger.capital
            return DayOutcome(ledger=ledger, row=DailyLedgerRow(**row_values))
        ledger = open_position(ledger, decision.position)
        opened_today = True
        row_values["actual_price"] = decision.position.entry_price

    position = ledger.open_position
    if position is None:
        row_values["capital"] = ledger.capital
        return DayOutcome(ledger=ledger, row=DailyLedgerRow(**row_values))

    row_values["lot_size"] = position.lot_size
    row_values["stop_price"] = position.stop_price
    exit_decision = evaluate_exit(day, position, config)
    if exit_decision is None:
        if day.is_last_trading_day:
            LOGGER.debug(
                "No closing price on period end %s; position stays open",
                day.date.date(),
            )
            row_values["note"] = LedgerNote.MISSING_EXIT_PRICE
        row_values["action"] = DayAction.OPEN if opened_today else DayAction.HOLD
        row_values["capital"] = ledger.capital
        return DayOutcome(ledger=ledger, row=DailyLedgerRow(**row_values))

    exit_price, exit_reason = exit_decision
    ledger, trade_event = close_position(
        ledger, config.operation, day.date, exit_price, exit_reason
    )
    row_values.update(
        action=DayAction.OPEN_CLOSE if opened_today else DayAction.CLOSE,
        exit_reason=exit_reason,
        profit_loss=trade_event.profit_loss,
        capital=ledger.capital,
    )
    return DayOutcome(ledger=ledger, row=DailyLedgerRow(**row_values), trade=trade_event)


def simulate_trades(bars: Sequence[Bar], config: StrategyConfig) -> SimulationResult:
    """Replay ``bars`` under ``config``.

    Parameters
    ----------
    bars:
        Daily bars sorted ascending by date without duplicates.
    config:
        Strategy parameters; the cadence selects the period boundary.

    Returns
    -------
    SimulationResult
        Closed trades in order, one capital point and one ledger row per bar,
        and the position left open when the last period end had no close.
    """
    ledger = CapitalLedger(capital=config.initial_capital)
    trades: List[TradeEvent] = []
    capital_points: List[CapitalPoint] = []
    daily_rows: List[DailyLedgerRow] = []
    for day in build_trading_days(bars, config.cadence):
        outcome = step_day(ledger, day, config)
        ledger = outcome.ledger
        daily_rows.append(outcome.row)
        capital_points.append(CapitalPoint(date=day.date, capital=ledger.capital))
        if outcome.trade is not None:
            trades.append(outcome.trade)
    if ledger.open_position is not None:
        LOGGER.info(
            "Position opened on %s is still open at the end of the data",
            ledger.open_position.entry_date.date(),
        )
    return SimulationResult(
        trades=trades,
        capital_points=capital_points,
        daily_rows=daily_rows,
        open_position=ledger.open_position,
    )


def simulate_frame(price_data_frame: pandas.DataFrame, config: StrategyConfig) -> SimulationResult:
    """Convenience wrapper running :func:`simulate_trades` on a price frame."""
    return simulate_trades(bars_from_frame(price_data_frame), config)

"""Capital bookkeeping for one symbol's simulation.

The :class:`CapitalLedger` is an immutable accumulator: every simulated day
receives the ledger produced by the previous day and returns a new one.
Capital only changes when a position closes, and it is floored at zero so a
catastrophic trade cannot leave negative buying power for later periods.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Hashable, Iterable, List

import pandas

from .strategy_config import Operation

LOGGER = logging.getLogger(__name__)


class ExitReason(str, Enum):
    STOP_LOSS = "stop_loss"
    PERIOD_END = "period_end"


@dataclass(frozen=True)
class Position:
    """An open trade, created on entry and consumed when it closes."""

    entry_date: pandas.Timestamp
    entry_price: float
    suggested_entry_price: float
    stop_price: float
    lot_size: float
    capital_before_entry: float


@dataclass(frozen=True)
class TradeClose:
    date: pandas.Timestamp
    exit_price: float
    exit_reason: ExitReason
    profit_loss: float
    capital_after: float


@dataclass(frozen=True)
class TradeEvent:
    """A closed round trip. ``profit_loss`` keeps its true sign even when the
    ledger floors capital at zero."""

    open: Position
    close: TradeClose

    @property
    def profit_loss(self) -> float:
        return self.close.profit_loss

    @property
    def exit_reason(self) -> ExitReason:
        return self.close.exit_reason

    @property
    def holding_period(self) -> int:
        """Calendar days between entry and exit."""
        return (self.close.date - self.open.entry_date).days


@dataclass(frozen=True)
class CapitalPoint:
    date: pandas.Timestamp
    capital: float


@dataclass(frozen=True)
class CapitalLedger:
    """Running capital and the at-most-one open position.

    ``attempted_period`` holds the key of the last period in which an entry
    was attempted so a failed attempt is never retried in the same period.
    """

    capital: float
    open_position: Position | None = None
    attempted_period: Hashable = None

    @property
    def has_open_position(self) -> bool:
        return self.open_position is not None


def calculate_profit_loss(
    operation: Operation, entry_price: float, exit_price: float, lot_size: float
) -> float:
    """Return the signed result of a round trip.

    A buy profits when the exit is above the entry; a sell profits when the
    exit is below it. The convention is the same for stop and period-end exits.
    """
    if operation is Operation.BUY:
        return (exit_price - entry_price) * lot_size
    return (entry_price - exit_price) * lot_size


def mark_entry_attempt(ledger: CapitalLedger, period_key: Hashable) -> CapitalLedger:
    return replace(ledger, attempted_period=period_key)


def open_position(ledger: CapitalLedger, position: Position) -> CapitalLedger:
    """Return a ledger holding ``position``; capital is unchanged until close."""
    if ledger.open_position is not None:
        raise ValueError("A position is already open")
    return replace(ledger, open_position=position)


def close_position(
    ledger: CapitalLedger,
    operation: Operation,
    close_date: pandas.Timestamp,
    exit_price: float,
    exit_reason: ExitReason,
) -> tuple[CapitalLedger, TradeEvent]:
    """Realize the open position and return the new ledger and trade event."""
    position = ledger.open_position
    if position is None:
        raise ValueError("No open position to close")
    profit_loss = calculate_profit_loss(
        operation, position.entry_price, exit_price, position.lot_size
    )
    capital_after = max(0.0, position.capital_before_entry + profit_loss)
    if capital_after == 0.0 and profit_loss < 0:
        LOGGER.warning(
            "Capital exhausted on %s: loss %.2f exceeds capital %.2f",
            close_date.date(),
            profit_loss,
            position.capital_before_entry,
        )
    trade_event = TradeEvent(
        open=position,
        close=TradeClose(
            date=close_date,
            exit_price=exit_price,
            exit_reason=exit_reason,
            profit_loss=profit_loss,
            capital_after=capital_after,
        ),
    )
    return replace(ledger, capital=capital_after, open_position=None), trade_event


def replay_capital(initial_capital: float, trades: Iterable[TradeEvent]) -> float:
    """Recompute final capital from ``trades`` alone.

    The result equals ``initial_capital + sum(profit_loss)`` unless the floor
    at zero was reached, and always equals the last capital point of the run
    that produced ``trades``.
    """
    capital = initial_capital
    for trade_event in trades:
        capital = max(0.0, capital + trade_event.profit_loss)
    return capital


def capital_series(capital_points: Iterable[CapitalPoint]) -> pandas.Series:
    """Return the capital points as a float series indexed by date."""
    point_list: List[CapitalPoint] = list(capital_points)
    return pandas.Series(
        [point.capital for point in point_list],
        index=pandas.DatetimeIndex([point.date for point in point_list]),
        dtype=float,
        name="capital",
    )

"""Split a daily bar series into day, week, month or year periods.

Every cadence is a :class:`PeriodBoundary` that maps a date to a bucket key.
Because bars arrive sorted by date, a period is simply a run of consecutive
bars sharing the same key; its first bar is the candidate entry day and its
last bar is the forced exit day.
"""

from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Hashable, List, Sequence, Tuple

import pandas

from .errors import DataUnavailable
from .strategy_config import Cadence, ReferencePrice

LOGGER = logging.getLogger(__name__)

PRICE_COLUMNS = ("open", "high", "low", "close")


@dataclass(frozen=True)
class Bar:
    """One calendar day of market data for one symbol.

    Missing values are stored as ``NaN`` so that a single bad cell degrades a
    day instead of failing the whole series.
    """

    date: pandas.Timestamp
    open: float
    high: float
    low: float
    close: float
    volume: float = math.nan

    def price(self, reference_price: ReferencePrice) -> float:
        return float(getattr(self, reference_price.value))


@dataclass(frozen=True)
class TradingDay:
    """A bar placed in its period, with the previous bar of the full series."""

    bar: Bar
    previous_bar: Bar | None
    period_key: Hashable
    is_first_trading_day: bool
    is_last_trading_day: bool

    @property
    def date(self) -> pandas.Timestamp:
        return self.bar.date


@dataclass(frozen=True)
class PeriodBucket:
    """Ordered bars that share one period key."""

    key: Hashable
    bars: Tuple[Bar, ...]

    @property
    def first_trading_day(self) -> Bar:
        return self.bars[0]

    @property
    def last_trading_day(self) -> Bar:
        return self.bars[-1]


class PeriodBoundary(ABC):
    """Grouping rule that decides which bars belong to the same period."""

    cadence: Cadence

    @abstractmethod
    def bucket_key(self, date: pandas.Timestamp) -> Hashable:
        """Return the key shared by every date in the same period."""

    def is_first_trading_day(self, dates: Sequence[pandas.Timestamp], position: int) -> bool:
        """Return ``True`` when ``dates[position]`` opens its period."""
        if position == 0:
            return True
        return self.bucket_key(dates[position - 1]) != self.bucket_key(dates[position])

    def is_last_trading_day(self, dates: Sequence[pandas.Timestamp], position: int) -> bool:
        """Return ``True`` when ``dates[position]`` closes its period."""
        if position == len(dates) - 1:
            return True
        return self.bucket_key(dates[position + 1]) != self.bucket_key(dates[position])


class DailyBoundary(PeriodBoundary):
    cadence = Cadence.DAY

    def bucket_key(self, date: pandas.Timestamp) -> Hashable:
        return (date.year, date.month, date.day)


class WeeklyBoundary(PeriodBoundary):
    """ISO weeks, so the last days of December can belong to week 1."""

    cadence = Cadence.WEEK

    def bucket_key(self, date: pandas.Timestamp) -> Hashable:
        iso_year, iso_week, _ = date.isocalendar()
        return (iso_year, iso_week)


class MonthlyBoundary(PeriodBoundary):
    cadence = Cadence.MONTH

    def bucket_key(self, date: pandas.Timestamp) -> Hashable:
        return (date.year, date.month)


class AnnualBoundary(PeriodBoundary):
    cadence = Cadence.YEAR

    def bucket_key(self, date: pandas.Timestamp) -> Hashable:
        return (date.year,)


PERIOD_BOUNDARIES: Dict[Cadence, PeriodBoundary] = {
    boundary.cadence: boundary
    for boundary in (DailyBoundary(), WeeklyBoundary(), MonthlyBoundary(), AnnualBoundary())
}


def boundary_for(cadence: Cadence) -> PeriodBoundary:
    """Return the :class:`PeriodBoundary` implementing ``cadence``."""
    return PERIOD_BOUNDARIES[cadence]


def _to_float(value: object) -> float:
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return math.nan
    return number


def bars_from_frame(price_data_frame: pandas.DataFrame) -> List[Bar]:
    """Convert a price frame indexed by date into :class:`Bar` records.

    Parameters
    ----------
    price_data_frame:
        Frame with a ``DatetimeIndex`` sorted ascending without duplicates and
        lower-case ``open``, ``high``, ``low`` and ``close`` columns. A
        ``volume`` column is optional.

    Raises
    ------
    DataUnavailable
        If the frame is empty, unsorted, has duplicate dates or lacks a price
        column.
    """
    if price_data_frame.empty:
        raise DataUnavailable("No bars available")
    missing_column_names = [
        column_name
        for column_name in PRICE_COLUMNS
        if column_name not in price_data_frame.columns
    ]
    if missing_column_names:
        raise DataUnavailable(
            f"Missing required columns: {', '.join(missing_column_names)}"
        )
    date_index = pandas.DatetimeIndex(price_data_frame.index)
    if not date_index.is_monotonic_increasing or not date_index.is_unique:
        raise DataUnavailable("Bars must be sorted ascending with unique dates")
    has_volume = "volume" in price_data_frame.columns
    bar_list: List[Bar] = []
    for bar_date, row in zip(date_index, price_data_frame.itertuples(index=False)):
        bar_list.append(
            Bar(
                date=pandas.Timestamp(bar_date),
                open=_to_float(row.open),
                high=_to_float(row.high),
                low=_to_float(row.low),
                close=_to_float(row.close),
                volume=_to_float(row.volume) if has_volume else math.nan,
            )
        )
    return bar_list


def segment_bars(bars: Sequence[Bar], cadence: Cadence) -> List[PeriodBucket]:
    """Group sorted ``bars`` into consecutive period buckets."""
    boundary = boundary_for(cadence)
    dates = [bar.date for bar in bars]
    grouped_bars: List[List[Bar]] = []
    for position, bar in enumerate(bars):
        if boundary.is_first_trading_day(dates, position):
            grouped_bars.append([])
        grouped_bars[-1].append(bar)
    return [
        PeriodBucket(key=boundary.bucket_key(group[0].date), bars=tuple(group))
        for group in grouped_bars
    ]


def build_trading_days(bars: Sequence[Bar], cadence: Cadence) -> List[TradingDay]:
    """Flatten the period buckets back into days annotated with their role.

    The previous bar always comes from the full series, so the first day of a
    period sees the last day of the prior period.
    """
    boundary = boundary_for(cadence)
    dates = [bar.date for bar in bars]
    trading_days: List[TradingDay] = []
    previous_bar: Bar | None = None
    for bucket in segment_bars(bars, cadence):
        for bar in bucket.bars:
            position = len(trading_days)
            trading_days.append(
                TradingDay(
                    bar=bar,
                    previous_bar=previous_bar,
                    period_key=bucket.key,
                    is_first_trading_day=boundary.is_first_trading_day(dates, position),
                    is_last_trading_day=boundary.is_last_trading_day(dates, position),
                )
            )
            previous_bar = bar
    LOGGER.debug(
        "Segmented %d bars into %s periods",
        len(trading_days),
        cadence.value,
    )
    return trading_days

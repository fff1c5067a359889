"""Shared fixtures for building in-memory price frames."""

import os
import sys
from typing import Callable, Iterable, Tuple

import pandas
import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "src")))

from stock_backtest.strategy_config import Cadence, Operation, StrategyConfig

BarTuple = Tuple[str, float, float, float, float]


def build_price_frame(bar_rows: Iterable[BarTuple]) -> pandas.DataFrame:
    """Return a frame indexed by date from ``(date, open, high, low, close)`` rows."""
    bar_rows = list(bar_rows)
    return pandas.DataFrame(
        {
            "open": [row[1] for row in bar_rows],
            "high": [row[2] for row in bar_rows],
            "low": [row[3] for row in bar_rows],
            "close": [row[4] for row in bar_rows],
            "volume": [1000.0] * len(bar_rows),
        },
        index=pandas.DatetimeIndex([row[0] for row in bar_rows], name="date"),
    )


@pytest.fixture
def price_frame_factory() -> Callable[[Iterable[BarTuple]], pandas.DataFrame]:
    return build_price_frame


@pytest.fixture
def weekly_buy_config() -> StrategyConfig:
    """Buy one percent below the previous close with a two percent stop."""
    return StrategyConfig(
        operation=Operation.BUY,
        entry_percentage=1.0,
        stop_percentage=2.0,
        initial_capital=10000.0,
        cadence=Cadence.WEEK,
    )


@pytest.fixture
def same_day_stop_frame() -> pandas.DataFrame:
    """Friday reference bar followed by a week whose first day hits the stop."""
    return build_price_frame(
        [
            ("2024-01-05", 100.0, 101.0, 99.5, 100.0),
            ("2024-01-08", 99.0, 102.0, 97.0, 101.0),
            ("2024-01-09", 101.0, 102.0, 100.0, 101.5),
            ("2024-01-10", 101.5, 103.0, 101.0, 102.0),
            ("2024-01-11", 102.0, 103.5, 101.5, 102.5),
            ("2024-01-12", 102.5, 104.0, 102.0, 103.0),
        ]
    )


@pytest.fixture
def period_end_frame() -> pandas.DataFrame:
    """Same week as ``same_day_stop_frame`` but the stop is never reached."""
    return build_price_frame(
        [
            ("2024-01-05", 100.0, 101.0, 99.5, 100.0),
            ("2024-01-08", 99.0, 102.0, 98.0, 101.0),
            ("2024-01-09", 101.0, 102.0, 100.0, 101.5),
            ("2024-01-10", 101.5, 103.0, 101.0, 102.0),
            ("2024-01-11", 102.0, 103.5, 101.5, 102.5),
            ("2024-01-12", 102.5, 104.0, 102.0, 103.0),
        ]
    )

"""Tests for the day-by-day trade simulation."""

import math
import os
import sys
from dataclasses import replace

import numpy
import pandas
import pytest

sys.path.insert(
    0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "src"))
)

from stock_backtest.ledger import CapitalLedger, ExitReason
from stock_backtest.periods import bars_from_frame, build_trading_days
from stock_backtest.simulator import (
    DayAction,
    LedgerNote,
    SimulationResult,
    calculate_lot_size,
    determine_actual_price,
    simulate_frame,
    simulate_trades,
    step_day,
)
from stock_backtest.strategy_config import (
    Cadence,
    LotRounding,
    Operation,
    StrategyConfig,
)

NAN = float("nan")


def test_same_day_stop_closes_on_entry_day(
    same_day_stop_frame: pandas.DataFrame, weekly_buy_config: StrategyConfig
) -> None:
    result = simulate_frame(same_day_stop_frame, weekly_buy_config)

    assert isinstance(result, SimulationResult)
    assert len(result.trades) == 1
    trade_event = result.trades[0]
    assert trade_event.open.suggested_entry_price == pytest.approx(99.0)
    assert trade_event.open.entry_price == pytest.approx(99.0)
    assert trade_event.open.lot_size == 100
    assert trade_event.open.stop_price == pytest.approx(97.02)
    assert trade_event.open.entry_date == pandas.Timestamp("2024-01-08")
    assert trade_event.close.date == pandas.Timestamp("2024-01-08")
    assert trade_event.exit_reason is ExitReason.STOP_LOSS
    assert trade_event.close.exit_price == pytest.approx(97.02)
    assert trade_event.profit_loss == pytest.approx(-198.0)
    assert result.final_capital == pytest.approx(9802.0)
    assert result.daily_rows[1].action is DayAction.OPEN_CLOSE
    assert result.open_position is None


def test_period_end_closes_at_last_trading_day_close(
    period_end_frame: pandas.DataFrame, weekly_buy_config: StrategyConfig
) -> None:
    result = simulate_frame(period_end_frame, weekly_buy_config)

    assert len(result.trades) == 1
    trade_event = result.trades[0]
    assert trade_event.exit_reason is ExitReason.PERIOD_END
    assert trade_event.close.date == pandas.Timestamp("2024-01-12")
    assert trade_event.close.exit_price == 103.0
    assert trade_event.profit_loss == pytest.approx(400.0)
    assert result.final_capital == pytest.approx(10400.0)
    assert [row.action for row in result.daily_rows] == [
        DayAction.NONE,
        DayAction.OPEN,
        DayAction.HOLD,
        DayAction.HOLD,
        DayAction.HOLD,
        DayAction.CLOSE,
    ]


def test_capital_points_anchor_first_day_and_change_only_on_close(
    period_end_frame: pandas.DataFrame, weekly_buy_config: StrategyConfig
) -> None:
    result = simulate_frame(period_end_frame, weekly_buy_config)

    assert len(result.capital_points) == len(period_end_frame)
    assert result.capital_points[0].capital == 10000.0
    assert [point.capital for point in result.capital_points[:-1]] == [10000.0] * 5
    assert result.capital_points[-1].capital == pytest.approx(10400.0)
    assert result.daily_rows[0].note is LedgerNote.NO_PREVIOUS_DAY


def test_stop_has_priority_over_period_end(
    period_end_frame: pandas.DataFrame, weekly_buy_config: StrategyConfig
) -> None:
    price_data_frame = period_end_frame.copy()
    price_data_frame.loc[pandas.Timestamp("2024-01-12"), "low"] = 96.0

    result = simulate_frame(price_data_frame, weekly_buy_config)

    trade_event = result.trades[0]
    assert trade_event.close.date == pandas.Timestamp("2024-01-12")
    assert trade_event.exit_reason is ExitReason.STOP_LOSS
    assert trade_event.close.exit_price == pytest.approx(97.02)


def test_failed_entry_is_not_retried_in_the_same_period(
    price_frame_factory, weekly_buy_config: StrategyConfig
) -> None:
    price_data_frame = price_frame_factory(
        [
            ("2024-01-05", 100.0, 101.0, 99.5, 100.0),
            ("2024-01-08", 100.0, 101.0, 99.5, 100.5),
            ("2024-01-09", 95.0, 96.0, 90.0, 91.0),
            ("2024-01-12", 92.0, 93.0, 91.0, 92.0),
        ]
    )

    result = simulate_frame(price_data_frame, weekly_buy_config)

    assert result.trades == []
    assert result.daily_rows[1].note is LedgerNote.ENTRY_NOT_TRIGGERED
    assert result.daily_rows[1].suggested_entry_price == pytest.approx(99.0)
    assert result.daily_rows[2].suggested_entry_price is None
    assert result.final_capital == 10000.0


def test_intraday_touch_fills_at_suggested_price_and_gap_fills_at_open(
    same_day_stop_frame: pandas.DataFrame,
) -> None:
    bar_list = bars_from_frame(same_day_stop_frame)
    touch_bar = replace(bar_list[1], open=99.5, low=98.5)
    gap_bar = replace(bar_list[1], open=98.0, low=97.5)
    assert determine_actual_price(touch_bar, 99.0, Operation.BUY) == 99.0
    assert determine_actual_price(gap_bar, 99.0, Operation.BUY) == 98.0
    sell_gap_bar = replace(bar_list[1], open=102.0, high=103.0)
    assert determine_actual_price(sell_gap_bar, 101.0, Operation.SELL) == 102.0
    assert determine_actual_price(bar_list[1], 103.0, Operation.SELL) is None


def test_sell_operation_profits_when_price_falls(price_frame_factory) -> None:
    config = StrategyConfig(
        operation=Operation.SELL,
        entry_percentage=1.0,
        stop_percentage=2.0,
        cadence=Cadence.WEEK,
    )
    price_data_frame = price_frame_factory(
        [
            ("2024-01-05", 100.0, 101.0, 99.5, 100.0),
            ("2024-01-08", 101.5, 102.0, 100.5, 101.0),
            ("2024-01-09", 101.0, 102.5, 100.0, 100.5),
            ("2024-01-12", 100.5, 101.0, 99.5, 100.0),
        ]
    )

    result = simulate_frame(price_data_frame, config)

    trade_event = result.trades[0]
    assert trade_event.open.entry_price == 101.5
    assert trade_event.open.lot_size == 90
    assert trade_event.open.stop_price == pytest.approx(103.53)
    assert trade_event.exit_reason is ExitReason.PERIOD_END
    assert trade_event.profit_loss == pytest.approx(135.0)


@pytest.fixture
def weekly_sell_config() -> StrategyConfig:
    return StrategyConfig(
        operation=Operation.SELL,
        entry_percentage=1.0,
        stop_percentage=2.0,
        cadence=Cadence.WEEK,
    )


def test_sell_stop_closes_on_entry_day(
    price_frame_factory, weekly_sell_config: StrategyConfig
) -> None:
    price_data_frame = price_frame_factory(
        [
            ("2024-01-05", 100.0, 101.0, 99.5, 100.0),
            ("2024-01-08", 100.5, 103.5, 100.0, 103.0),
            ("2024-01-12", 103.0, 104.0, 102.0, 102.5),
        ]
    )

    result = simulate_frame(price_data_frame, weekly_sell_config)

    assert len(result.trades) == 1
    trade_event = result.trades[0]
    assert trade_event.open.entry_price == pytest.approx(101.0)
    assert trade_event.open.lot_size == 90
    assert trade_event.open.stop_price == pytest.approx(103.02)
    assert trade_event.close.date == pandas.Timestamp("2024-01-08")
    assert trade_event.exit_reason is ExitReason.STOP_LOSS
    assert trade_event.close.exit_price == pytest.approx(103.02)
    assert trade_event.profit_loss == pytest.approx(-181.8)
    assert result.daily_rows[1].action is DayAction.OPEN_CLOSE
    assert result.final_capital == pytest.approx(9818.2)


def test_sell_stop_has_priority_over_period_end(
    price_frame_factory, weekly_sell_config: StrategyConfig
) -> None:
    price_data_frame = price_frame_factory(
        [
            ("2024-01-05", 100.0, 101.0, 99.5, 100.0),
            ("2024-01-08", 100.5, 102.0, 100.0, 101.5),
            ("2024-01-09", 101.0, 102.5, 100.5, 101.0),
            ("2024-01-12", 101.0, 104.0, 99.0, 99.5),
        ]
    )

    result = simulate_frame(price_data_frame, weekly_sell_config)

    trade_event = result.trades[0]
    assert trade_event.open.entry_date == pandas.Timestamp("2024-01-08")
    assert trade_event.close.date == pandas.Timestamp("2024-01-12")
    assert trade_event.exit_reason is ExitReason.STOP_LOSS
    assert trade_event.close.exit_price == pytest.approx(103.02)
    assert trade_event.profit_loss == pytest.approx(-181.8)


def test_lot_size_rounding_modes() -> None:
    assert calculate_lot_size(10000.0, 99.0, LotRounding.INTEGER) == 100
    assert calculate_lot_size(500.0, 99.0, LotRounding.INTEGER) == 0
    assert calculate_lot_size(10000.0, 99.0, LotRounding.FRACTIONAL) == pytest.approx(
        101.01010101
    )
    assert calculate_lot_size(0.0, 99.0, LotRounding.FRACTIONAL) == 0


def test_insufficient_capital_skips_entry(
    period_end_frame: pandas.DataFrame, weekly_buy_config: StrategyConfig
) -> None:
    config = replace(weekly_buy_config, initial_capital=500.0)

    result = simulate_frame(period_end_frame, config)

    assert result.trades == []
    assert result.daily_rows[1].note is LedgerNote.INSUFFICIENT_CAPITAL
    assert result.final_capital == 500.0


def test_fractional_lots_allow_small_capital(
    period_end_frame: pandas.DataFrame, weekly_buy_config: StrategyConfig
) -> None:
    config = replace(
        weekly_buy_config, initial_capital=500.0, lot_rounding=LotRounding.FRACTIONAL
    )

    result = simulate_frame(period_end_frame, config)

    assert result.trades[0].open.lot_size == pytest.approx(5.05050505)
    assert result.final_capital == pytest.approx(500.0 + 4.0 * 5.05050505)


def test_missing_period_end_close_carries_position_forward(
    price_frame_factory, weekly_buy_config: StrategyConfig
) -> None:
    price_data_frame = price_frame_factory(
        [
            ("2024-01-05", 100.0, 101.0, 99.5, 100.0),
            ("2024-01-08", 99.0, 102.0, 98.0, 101.0),
            ("2024-01-12", 101.0, 102.0, 99.0, NAN),
            ("2024-01-15", 100.0, 101.0, 99.0, 100.5),
            ("2024-01-16", 101.0, 104.5, 100.0, 104.0),
        ]
    )

    result = simulate_frame(price_data_frame, weekly_buy_config)

    assert result.daily_rows[2].note is LedgerNote.MISSING_EXIT_PRICE
    assert result.daily_rows[3].action is DayAction.HOLD
    assert result.daily_rows[3].suggested_entry_price is None
    assert len(result.trades) == 1
    assert result.trades[0].close.date == pandas.Timestamp("2024-01-16")
    assert result.trades[0].profit_loss == pytest.approx(500.0)
    assert result.final_capital == pytest.approx(10500.0)


def test_position_open_at_end_of_data_is_reported(
    price_frame_factory, weekly_buy_config: StrategyConfig
) -> None:
    price_data_frame = price_frame_factory(
        [
            ("2024-01-05", 100.0, 101.0, 99.5, 100.0),
            ("2024-01-08", 99.0, 102.0, 98.0, 101.0),
            ("2024-01-12", 101.0, 102.0, 99.0, NAN),
        ]
    )

    result = simulate_frame(price_data_frame, weekly_buy_config)

    assert result.trades == []
    assert result.open_position is not None
    assert result.open_position.entry_date == pandas.Timestamp("2024-01-08")
    assert result.final_capital == 10000.0


def test_daily_cadence_enters_and_exits_each_day(price_frame_factory) -> None:
    config = StrategyConfig(entry_percentage=1.0, stop_percentage=2.0, cadence=Cadence.DAY)
    price_data_frame = price_frame_factory(
        [
            ("2024-01-02", 100.0, 101.0, 99.5, 100.0),
            ("2024-01-03", 99.5, 101.0, 98.9, 100.5),
            ("2024-01-04", 100.0, 101.0, 99.6, 100.8),
        ]
    )

    result = simulate_frame(price_data_frame, config)

    assert len(result.trades) == 1
    assert result.trades[0].open.entry_price == pytest.approx(99.0)
    assert result.trades[0].close.date == result.trades[0].open.entry_date
    assert result.trades[0].profit_loss == pytest.approx(150.0)
    assert result.daily_rows[2].note is LedgerNote.ENTRY_NOT_TRIGGERED
    assert result.final_capital == pytest.approx(10150.0)


def test_capital_never_goes_negative_after_catastrophic_loss(
    price_frame_factory,
) -> None:
    config = StrategyConfig(
        operation=Operation.SELL,
        entry_percentage=1.0,
        stop_percentage=500.0,
        cadence=Cadence.WEEK,
    )
    price_data_frame = price_frame_factory(
        [
            ("2024-01-05", 100.0, 101.0, 99.5, 100.0),
            ("2024-01-08", 101.2, 102.0, 100.0, 101.5),
            ("2024-01-09", 150.0, 300.0, 150.0, 290.0),
            ("2024-01-12", 450.0, 550.0, 400.0, 505.0),
            ("2024-01-15", 511.0, 520.0, 505.0, 515.0),
            ("2024-01-19", 515.0, 516.0, 400.0, 410.0),
        ]
    )

    result = simulate_frame(price_data_frame, config)

    assert len(result.trades) == 1
    assert result.trades[0].profit_loss == pytest.approx((101.2 - 505.0) * 90)
    assert result.final_capital == 0.0
    assert all(point.capital >= 0 for point in result.capital_points)
    assert result.daily_rows[4].note is LedgerNote.INSUFFICIENT_CAPITAL


def test_missing_reference_price_degrades_to_no_trade(
    price_frame_factory, weekly_buy_config: StrategyConfig
) -> None:
    price_data_frame = price_frame_factory(
        [
            ("2024-01-05", 100.0, 101.0, 99.5, NAN),
            ("2024-01-08", 99.0, 102.0, 98.0, 101.0),
            ("2024-01-12", 101.0, 102.0, 99.0, 103.0),
        ]
    )

    result = simulate_frame(price_data_frame, weekly_buy_config)

    assert result.trades == []
    assert result.daily_rows[1].note is LedgerNote.MISSING_ENTRY_DATA


def test_step_day_does_not_mutate_incoming_ledger(
    same_day_stop_frame: pandas.DataFrame, weekly_buy_config: StrategyConfig
) -> None:
    trading_days = build_trading_days(
        bars_from_frame(same_day_stop_frame), weekly_buy_config.cadence
    )
    starting_ledger = CapitalLedger(capital=10000.0)

    first_outcome = step_day(starting_ledger, trading_days[1], weekly_buy_config)
    second_outcome = step_day(starting_ledger, trading_days[1], weekly_buy_config)

    assert starting_ledger == CapitalLedger(capital=10000.0)
    assert first_outcome == second_outcome
    assert first_outcome.trade is not None
    assert first_outcome.ledger.capital == pytest.approx(9802.0)
    assert first_outcome.ledger.attempted_period == trading_days[1].period_key


def random_walk_frame(seed: int, day_count: int = 160) -> pandas.DataFrame:
    random_generator = numpy.random.default_rng(seed)
    close_values = 100 * numpy.cumprod(1 + random_generator.normal(0, 0.02, day_count))
    open_values = close_values * (1 + random_generator.normal(0, 0.01, day_count))
    high_values = numpy.maximum(open_values, close_values) * (
        1 + numpy.abs(random_generator.normal(0, 0.01, day_count))
    )
    low_values = numpy.minimum(open_values, close_values) * (
        1 - numpy.abs(random_generator.normal(0, 0.01, day_count))
    )
    return pandas.DataFrame(
        {
            "open": open_values,
            "high": high_values,
            "low": low_values,
            "close": close_values,
            "volume": numpy.full(day_count, 1000.0),
        },
        index=pandas.bdate_range("2023-01-02", periods=day_count),
    )


@pytest.mark.parametrize("cadence", list(Cadence))
@pytest.mark.parametrize("operation", list(Operation))
def test_simulation_properties_on_random_walk(cadence: Cadence, operation: Operation) -> None:
    config = StrategyConfig(
        operation=operation,
        entry_percentage=0.5,
        stop_percentage=1.5,
        cadence=cadence,
    )
    price_data_frame = random_walk_frame(seed=11)

    result = simulate_frame(price_data_frame, config)
    repeated_result = simulate_frame(price_data_frame, config)

    assert result.trades == repeated_result.trades
    assert result.capital_points == repeated_result.capital_points
    for earlier_trade, later_trade in zip(result.trades, result.trades[1:]):
        assert earlier_trade.close.date < later_trade.open.entry_date
    for trade_event in result.trades:
        assert trade_event.open.entry_date <= trade_event.close.date
        if trade_event.exit_reason is ExitReason.STOP_LOSS:
            assert trade_event.close.exit_price == trade_event.open.stop_price
            exit_bar = price_data_frame.loc[trade_event.close.date]
            if operation is Operation.SELL:
                assert exit_bar["high"] >= trade_event.open.stop_price
            else:
                assert exit_bar["low"] <= trade_event.open.stop_price
        else:
            assert trade_event.close.exit_price == pytest.approx(
                price_data_frame.loc[trade_event.close.date, "close"]
            )
    assert len(result.capital_points) == len(price_data_frame)
    assert result.final_capital >= 0
    if all(point.capital > 0 for point in result.capital_points):
        expected_final_capital = config.initial_capital + sum(
            trade_event.profit_loss for trade_event in result.trades
        )
        assert math.isclose(result.final_capital, expected_final_capital, abs_tol=1e-6)


def test_simulate_trades_accepts_bar_list(
    period_end_frame: pandas.DataFrame, weekly_buy_config: StrategyConfig
) -> None:
    result = simulate_trades(bars_from_frame(period_end_frame), weekly_buy_config)
    assert result.total_profit == pytest.approx(400.0)

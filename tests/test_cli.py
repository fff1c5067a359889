"""Tests for the command line interface."""

import logging
import os
import sys
from pathlib import Path

import pandas
import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "src")))

from stock_backtest import cli
from stock_backtest.batch import BatchOutcome
from stock_backtest.strategy_config import Cadence, LotRounding, Operation


def write_symbol_history(table_directory: Path, symbol: str, close_price: float) -> None:
    table_directory.mkdir(parents=True, exist_ok=True)
    pandas.DataFrame(
        {
            "open": [100.0, 99.0, 101.0],
            "high": [101.0, 102.0, 104.0],
            "low": [99.5, 98.0, 98.5],
            "close": [100.0, 101.0, close_price],
        },
        index=pandas.Index(["2024-01-05", "2024-01-08", "2024-01-12"], name="date"),
    ).to_csv(table_directory / f"{symbol}.csv")


@pytest.fixture
def stock_store(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    stock_data_directory = tmp_path / "stock_data"
    write_symbol_history(stock_data_directory / "us_stocks", "AAA", 101.0)
    write_symbol_history(stock_data_directory / "us_stocks", "BBB", 105.0)
    monkeypatch.setattr(cli.symbols, "STOCK_DATA_DIRECTORY", stock_data_directory)
    monkeypatch.setattr(cli.data_loader, "STOCK_DATA_DIRECTORY", stock_data_directory)
    return tmp_path


def test_parser_handles_arguments() -> None:
    parsed_arguments = cli.create_parser().parse_args(
        ["--table", "us_stocks", "--cadence", "week", "--period", "1y"]
    )
    assert parsed_arguments.table == "us_stocks"
    assert parsed_arguments.cadence == "week"
    assert parsed_arguments.period == "1y"
    assert parsed_arguments.operation == "buy"
    assert parsed_arguments.batch_size == 10
    assert parsed_arguments.source == "local"


def test_parser_rejects_symbol_with_symbols() -> None:
    with pytest.raises(SystemExit):
        cli.create_parser().parse_args(
            ["--table", "t", "--symbol", "AAA", "--symbols", "AAA,BBB"]
        )


def test_run_cli_writes_sorted_summary(stock_store: Path) -> None:
    output_path = stock_store / "results.csv"
    cli.run_cli(
        [
            "--table",
            "us_stocks",
            "--cadence",
            "week",
            "--stop-percentage",
            "2",
            "--output",
            str(output_path),
        ]
    )
    result_frame = pandas.read_csv(output_path)
    assert list(result_frame["asset_code"]) == ["BBB", "AAA"]
    assert result_frame.loc[0, "final_capital"] == pytest.approx(10600.0)


def test_run_cli_writes_daily_ledger_for_single_symbol(stock_store: Path) -> None:
    output_path = stock_store / "ledger.csv"
    cli.run_cli(
        [
            "--table",
            "us_stocks",
            "--symbol",
            "bbb",
            "--cadence",
            "week",
            "--stop-percentage",
            "2",
            "--output",
            str(output_path),
        ]
    )
    ledger_frame = pandas.read_csv(output_path, index_col=0)
    assert list(ledger_frame["action"]) == ["none", "open", "close"]
    assert ledger_frame["capital"].iloc[-1] == pytest.approx(10600.0)


def test_run_cli_resolves_market_selection(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict = {}

    def fake_resolve_data_table(country: str, stock_market: str, asset_class: str) -> str:
        return "crypto_pairs"

    def fake_run_table_analysis(stock_table, fetch_bars, config, **kwargs) -> BatchOutcome:
        captured.update(stock_table=stock_table, config=config, **kwargs)
        kwargs["progress_callback"](55.5)
        return BatchOutcome()

    monkeypatch.setattr(cli.symbols, "resolve_data_table", fake_resolve_data_table)
    monkeypatch.setattr(cli, "run_table_analysis", fake_run_table_analysis)

    cli.run_cli(
        [
            "--country",
            "Global",
            "--stock-market",
            "Binance",
            "--asset-class",
            "crypto",
            "--symbols",
            "btc-usd, eth-usd",
            "--operation",
            "sell",
        ]
    )

    assert captured["stock_table"] == "crypto_pairs"
    assert captured["config"].operation is Operation.SELL
    assert captured["config"].lot_rounding is LotRounding.FRACTIONAL
    assert captured["comparison_symbols"] == ["btc-usd", "eth-usd"]


def test_run_cli_warns_for_short_annual_lookback(
    monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
) -> None:
    monkeypatch.setattr(
        cli, "run_table_analysis", lambda *args, **kwargs: BatchOutcome()
    )
    with caplog.at_level(logging.WARNING):
        cli.run_cli(["--table", "us_stocks", "--cadence", "annual", "--period", "1y"])
    assert "2 years or more" in caplog.text


def test_main_reports_invalid_configuration(
    caplog: pytest.LogCaptureFixture,
) -> None:
    with caplog.at_level(logging.ERROR):
        exit_code = cli.main(["--table", "us_stocks", "--entry-percentage", "-1"])
    assert exit_code == 1
    assert "entry_percentage" in caplog.text


def test_main_requires_a_market_selection() -> None:
    assert cli.main(["--country", "US"]) == 1


def test_cadence_defaults_to_daily() -> None:
    config = cli._build_config(cli.create_parser().parse_args(["--table", "t"]))
    assert config.cadence is Cadence.DAY
    assert config.lot_rounding is LotRounding.INTEGER


def test_run_cli_logs_each_trade_of_single_symbol(
    stock_store: Path, caplog: pytest.LogCaptureFixture
) -> None:
    with caplog.at_level(logging.INFO):
        cli.run_cli(
            [
                "--table",
                "us_stocks",
                "--symbol",
                "BBB",
                "--cadence",
                "week",
                "--stop-percentage",
                "2",
            ]
        )
    assert "2024-01-08 -> 2024-01-12 period_end 600.00 over 4 days" in caplog.text

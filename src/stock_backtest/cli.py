"""Command line interface for running backtests over a data table.

A run either screens every symbol of a table (optionally restricted with
``--symbols``) and writes one summary row per symbol, or drills down into a
single ``--symbol`` and writes its daily ledger.
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

import pandas

from . import data_loader, symbols
from .analysis import get_detailed_analysis
from .batch import run_table_analysis, warn_if_lookback_too_short
from .errors import StockBacktestError
from .settings import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_ENTRY_PERCENTAGE,
    DEFAULT_INITIAL_CAPITAL,
    DEFAULT_STOP_PERCENTAGE,
    LOOKBACK_PERIODS,
)
from .strategy_config import (
    Cadence,
    LotRounding,
    Operation,
    ReferencePrice,
    StrategyConfig,
    build_strategy_config,
)

LOGGER = logging.getLogger(__name__)


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the command line interface."""
    parser = argparse.ArgumentParser(
        description="Backtest a period-entry strategy over stored price history."
    )
    market_group = parser.add_argument_group("market selection")
    market_group.add_argument("--country", help="Country of the stock market.")
    market_group.add_argument("--stock-market", help="Stock market name.")
    market_group.add_argument("--asset-class", help="Asset class within the market.")
    market_group.add_argument(
        "--table",
        help="Data table to use directly instead of the market selection.",
    )
    symbol_group = market_group.add_mutually_exclusive_group()
    symbol_group.add_argument(
        "--symbols",
        help="Comma separated subset of the table's symbols to compare.",
    )
    symbol_group.add_argument(
        "--symbol",
        help="Single symbol to analyze in detail; writes its daily ledger.",
    )

    strategy_group = parser.add_argument_group("strategy")
    strategy_group.add_argument(
        "--operation",
        default=Operation.BUY.value,
        choices=[operation.value for operation in Operation],
    )
    strategy_group.add_argument(
        "--reference-price",
        default=ReferencePrice.CLOSE.value,
        choices=[reference_price.value for reference_price in ReferencePrice],
        help="Previous-day price the entry target is derived from.",
    )
    strategy_group.add_argument(
        "--entry-percentage",
        default=str(DEFAULT_ENTRY_PERCENTAGE),
        help="Entry offset from the reference price, in percent.",
    )
    strategy_group.add_argument(
        "--stop-percentage",
        default=str(DEFAULT_STOP_PERCENTAGE),
        help="Stop-loss distance from the entry price, in percent.",
    )
    strategy_group.add_argument(
        "--initial-capital", default=str(DEFAULT_INITIAL_CAPITAL)
    )
    strategy_group.add_argument(
        "--cadence",
        default=Cadence.DAY.value,
        help="Holding period: day, week, month or year.",
    )
    strategy_group.add_argument(
        "--lot-rounding",
        choices=[lot_rounding.value for lot_rounding in LotRounding],
        help="Defaults to fractional for crypto asset classes, integer otherwise.",
    )

    data_group = parser.add_argument_group("price data")
    data_group.add_argument(
        "--source",
        default="local",
        choices=["local", "yahoo"],
        help="Read stored CSV files or download from Yahoo Finance.",
    )
    data_group.add_argument(
        "--period",
        choices=list(LOOKBACK_PERIODS),
        help="Lookback ending today. Overrides --start/--end.",
    )
    data_group.add_argument("--start", help="Inclusive start date (YYYY-MM-DD).")
    data_group.add_argument("--end", help="Inclusive end date (YYYY-MM-DD).")
    data_group.add_argument(
        "--limit",
        type=int,
        help="Number of trailing bars used when no period or dates are given.",
    )

    parser.add_argument("--batch-size", type=int, default=DEFAULT_BATCH_SIZE)
    parser.add_argument(
        "--output",
        help="Optional path to a CSV file for writing the results.",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )
    return parser


def _resolve_stock_table(parsed_arguments: argparse.Namespace) -> str:
    if parsed_arguments.table:
        return parsed_arguments.table
    if not (
        parsed_arguments.country
        and parsed_arguments.stock_market
        and parsed_arguments.asset_class
    ):
        raise ValueError(
            "Provide --table or all of --country, --stock-market and --asset-class"
        )
    return symbols.resolve_data_table(
        parsed_arguments.country,
        parsed_arguments.stock_market,
        parsed_arguments.asset_class,
    )


def _build_config(parsed_arguments: argparse.Namespace) -> StrategyConfig:
    return build_strategy_config(
        {
            "operation": parsed_arguments.operation,
            "reference_price": parsed_arguments.reference_price,
            "entry_percentage": parsed_arguments.entry_percentage,
            "stop_percentage": parsed_arguments.stop_percentage,
            "initial_capital": parsed_arguments.initial_capital,
            "cadence": parsed_arguments.cadence,
            "lot_rounding": parsed_arguments.lot_rounding,
            "asset_class": parsed_arguments.asset_class or parsed_arguments.table,
        }
    )


def _log_progress(percentage: float) -> None:
    LOGGER.info("Progress: %d%%", int(percentage))


def run_cli(argument_list: Optional[List[str]] = None) -> None:
    """Parse command line arguments and run the requested analysis."""
    parser = create_parser()
    parsed_arguments = parser.parse_args(argument_list)

    stock_table = _resolve_stock_table(parsed_arguments)
    config = _build_config(parsed_arguments)

    start_date = parsed_arguments.start
    end_date = parsed_arguments.end
    if parsed_arguments.period:
        start_date, end_date = data_loader.resolve_lookback_range(parsed_arguments.period)
        warn_if_lookback_too_short(
            config.cadence, data_loader.lookback_years(parsed_arguments.period)
        )
    fetch_bars = data_loader.create_bar_fetcher(
        stock_table,
        source=parsed_arguments.source,
        start=start_date,
        end=end_date,
        limit=parsed_arguments.limit,
    )

    if parsed_arguments.symbol:
        detailed_result = get_detailed_analysis(
            parsed_arguments.symbol.strip().upper(), fetch_bars, config
        )
        LOGGER.info(
            "%s: %d trades, final capital %.2f (%.2f%%)",
            detailed_result.asset_code,
            detailed_result.metrics.trades,
            detailed_result.metrics.final_capital,
            detailed_result.metrics.profit_percentage,
        )
        for trade_event in detailed_result.trades:
            LOGGER.info(
                "%s -> %s %s %.2f over %d days",
                trade_event.open.entry_date.date(),
                trade_event.close.date.date(),
                trade_event.exit_reason.value,
                trade_event.profit_loss,
                trade_event.holding_period,
            )
        if detailed_result.open_position is not None:
            LOGGER.info(
                "Position opened on %s is still open",
                detailed_result.open_position.entry_date.date(),
            )
        result_data_frame = detailed_result.daily_table()
        write_index = True
    else:
        comparison_symbols = None
        if parsed_arguments.symbols:
            comparison_symbols = [
                symbol.strip()
                for symbol in parsed_arguments.symbols.split(",")
                if symbol.strip()
            ]
        batch_outcome = run_table_analysis(
            stock_table,
            fetch_bars,
            config,
            comparison_symbols=comparison_symbols,
            batch_size=parsed_arguments.batch_size,
            progress_callback=_log_progress,
        )
        for analysis_result in batch_outcome.results[:10]:
            LOGGER.info(
                "%s: %.2f%% over %d trades",
                analysis_result.asset_code,
                analysis_result.profit_percentage,
                analysis_result.metrics.trades,
            )
        if batch_outcome.failed_symbols:
            LOGGER.warning(
                "Failed symbols: %s", ", ".join(batch_outcome.failed_symbols)
            )
        result_data_frame = pandas.DataFrame(
            [analysis_result.to_record() for analysis_result in batch_outcome.results]
        )
        write_index = False

    if parsed_arguments.output:
        result_data_frame.to_csv(parsed_arguments.output, index=write_index)
        LOGGER.info("Results written to %s", parsed_arguments.output)


def main(argument_list: Optional[List[str]] = None) -> int:
    """Entry point for the ``stock-backtest`` console script."""
    log_level_parser = argparse.ArgumentParser(add_help=False)
    log_level_parser.add_argument("--log-level", default="INFO")
    known_arguments, _ = log_level_parser.parse_known_args(argument_list)
    logging.basicConfig(
        level=getattr(logging, str(known_arguments.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    try:
        run_cli(argument_list)
    except (StockBacktestError, ValueError) as run_error:
        LOGGER.error("%s", run_error)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())

"""Run the single-symbol pipeline across many symbols concurrently.

Symbols are processed in fixed-size batches on a thread pool. Each symbol is
independent, so a failure is logged, recorded in
:attr:`BatchOutcome.failed_symbols`, and never cancels its siblings.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Sequence

from .analysis import AnalysisResult, BarFetcher, analyze_bars
from .settings import (
    DEFAULT_BATCH_SIZE,
    MINIMUM_ANNUAL_LOOKBACK_YEARS,
    RISK_FREE_RATE_PERCENTAGE,
)
from .strategy_config import Cadence, StrategyConfig
from . import symbols

LOGGER = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]


@dataclass
class BatchOutcome:
    """Results sorted by profit percentage, plus the symbols that failed."""

    results: List[AnalysisResult] = field(default_factory=list)
    failed_symbols: List[str] = field(default_factory=list)

    @property
    def failed_count(self) -> int:
        return len(self.failed_symbols)


class _ProgressReporter:
    """Map local progress onto ``[start, end]`` and never move backwards."""

    def __init__(
        self,
        callback: ProgressCallback | None,
        start: float = 0.0,
        end: float = 100.0,
    ) -> None:
        self.callback = callback
        self.start = start
        self.end = end
        self.last_reported = start

    def report(self, fraction: float) -> None:
        value = self.start + (self.end - self.start) * min(max(fraction, 0.0), 1.0)
        value = min(100.0, max(self.last_reported, value))
        self.last_reported = value
        if self.callback is not None:
            self.callback(value)


def _analyze_symbol(
    symbol: str,
    fetch_bars: BarFetcher,
    config: StrategyConfig,
    risk_free_rate: float,
) -> AnalysisResult:
    price_data_frame = fetch_bars(symbol)
    return analyze_bars(symbol, price_data_frame, config, risk_free_rate).summary()


def _iterate_batches(symbol_list: Sequence[str], batch_size: int) -> Iterable[Sequence[str]]:
    for batch_start in range(0, len(symbol_list), batch_size):
        yield symbol_list[batch_start : batch_start + batch_size]


def run_batch_analysis(
    symbol_list: Sequence[str],
    fetch_bars: BarFetcher,
    config: StrategyConfig,
    batch_size: int = DEFAULT_BATCH_SIZE,
    progress_callback: ProgressCallback | None = None,
    risk_free_rate: float = RISK_FREE_RATE_PERCENTAGE,
    progress_range: tuple[float, float] = (0.0, 100.0),
) -> BatchOutcome:
    """Analyze every symbol in ``symbol_list``.

    Parameters
    ----------
    symbol_list:
        Symbols to simulate. Duplicates are analyzed once.
    fetch_bars:
        Callable returning the price frame for a symbol.
    config:
        Strategy shared by every symbol.
    batch_size:
        Number of symbols running concurrently.
    progress_callback:
        Receives a non-decreasing percentage after each finished symbol.
    risk_free_rate:
        Percentage used by the Sharpe and Sortino ratios.
    progress_range:
        Sub-range of ``[0, 100]`` this batch run reports into.

    Returns
    -------
    BatchOutcome
        Successful results sorted by ``profit_percentage`` descending and the
        list of symbols that raised.
    """
    if batch_size <= 0:
        raise ValueError("batch_size must be positive")
    unique_symbol_list = list(dict.fromkeys(symbol_list))
    reporter = _ProgressReporter(progress_callback, *progress_range)
    outcome = BatchOutcome()
    total_symbol_count = len(unique_symbol_list)
    if total_symbol_count == 0:
        reporter.report(1.0)
        return outcome

    batch_count = -(-total_symbol_count // batch_size)
    finished_symbol_count = 0
    for batch_number, batch_symbols in enumerate(
        _iterate_batches(unique_symbol_list, batch_size), start=1
    ):
        LOGGER.info(
            "Processing batch %d/%d (%d symbols)",
            batch_number,
            batch_count,
            len(batch_symbols),
        )
        with ThreadPoolExecutor(max_workers=batch_size) as executor:
            future_to_symbol = {
                executor.submit(
                    _analyze_symbol, symbol, fetch_bars, config, risk_free_rate
                ): symbol
                for symbol in batch_symbols
            }
            for future in as_completed(future_to_symbol):
                symbol = future_to_symbol[future]
                try:
                    outcome.results.append(future.result())
                except Exception as analysis_error:  # noqa: BLE001
                    LOGGER.warning("Skipping %s: %s", symbol, analysis_error)
                    outcome.failed_symbols.append(symbol)
                finished_symbol_count += 1
                reporter.report(finished_symbol_count / total_symbol_count)

    outcome.results.sort(
        key=lambda result: (-result.profit_percentage, result.asset_code)
    )
    outcome.failed_symbols.sort()
    LOGGER.info(
        "Analysis completed: %d symbols succeeded, %d failed",
        len(outcome.results),
        outcome.failed_count,
    )
    return outcome


def run_table_analysis(
    stock_table: str,
    fetch_bars: BarFetcher,
    config: StrategyConfig,
    comparison_symbols: Sequence[str] | None = None,
    batch_size: int = DEFAULT_BATCH_SIZE,
    progress_callback: ProgressCallback | None = None,
    risk_free_rate: float = RISK_FREE_RATE_PERCENTAGE,
) -> BatchOutcome:
    """Analyze the symbols of ``stock_table``, optionally restricted to a subset.

    Progress reaches 10 percent once the symbol list is known, the batch run
    fills 10 to 90 percent, and 100 is reported at the end.
    """
    reporter = _ProgressReporter(progress_callback)
    available_symbols = symbols.load_table_symbols(stock_table)
    if comparison_symbols:
        requested_symbols = {symbol.strip().upper() for symbol in comparison_symbols}
        available_symbols = [
            symbol for symbol in available_symbols if symbol in requested_symbols
        ]
    LOGGER.info("Found %d symbols for analysis in %s", len(available_symbols), stock_table)
    reporter.report(0.10)

    if not available_symbols:
        LOGGER.warning("No symbols found for table %s", stock_table)
        reporter.report(1.0)
        return BatchOutcome()

    def forward_progress(percentage: float) -> None:
        reporter.report(percentage / 100)

    outcome = run_batch_analysis(
        available_symbols,
        fetch_bars,
        config,
        batch_size=batch_size,
        progress_callback=forward_progress,
        risk_free_rate=risk_free_rate,
        progress_range=(10.0, 90.0),
    )
    reporter.report(1.0)
    return outcome


def warn_if_lookback_too_short(cadence: Cadence, lookback_years: float) -> bool:
    """Log a warning when an annual cadence covers too few years.

    Returns ``True`` when the warning was emitted.
    """
    if cadence is Cadence.YEAR and lookback_years < MINIMUM_ANNUAL_LOOKBACK_YEARS:
        LOGGER.warning(
            "Annual cadence over %.1f years; select a period of %d years or more "
            "for meaningful results",
            lookback_years,
            MINIMUM_ANNUAL_LOOKBACK_YEARS,
        )
        return True
    return False

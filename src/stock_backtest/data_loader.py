"""Functions for loading daily price history for the simulation.

Every loader returns a frame indexed by date with ``snake_case`` column
names. :func:`prepare_bar_frame` turns such a frame into the exact shape the
engine expects: sorted unique dates and numeric ``open``, ``high``, ``low``,
``close`` and ``volume`` columns. Starting with ``yfinance`` version
``0.2.51``, the ``download`` function returns a ``close`` column that already
reflects any dividends or stock splits, so no separate adjusted closing price
is needed.
"""

from __future__ import annotations

import datetime
import logging
import time
from pathlib import Path
from typing import Any, Callable

import pandas
import yfinance

from .errors import ConfigurationInvalid, DataUnavailable
from .settings import DEFAULT_HISTORY_LIMIT, LOOKBACK_PERIODS, STOCK_DATA_DIRECTORY

LOGGER = logging.getLogger(__name__)

BAR_COLUMNS = ["open", "high", "low", "close", "volume"]
REQUIRED_PRICE_COLUMNS = ["open", "high", "low", "close"]


def _normalize_columns(frame: pandas.DataFrame) -> pandas.DataFrame:
    """Return ``frame`` with flattened, snake_case column names."""
    if isinstance(frame.columns, pandas.MultiIndex):
        frame.columns = frame.columns.get_level_values(0)
    frame.columns = [
        str(column_name).strip().lower().replace(" ", "_")
        for column_name in frame.columns
    ]
    return frame


def prepare_bar_frame(frame: pandas.DataFrame, symbol: str | None = None) -> pandas.DataFrame:
    """Normalize raw price history into the engine's bar layout.

    Duplicate dates keep their first row, dates are sorted ascending and
    unparseable price cells become ``NaN``. A missing ``volume`` column is
    filled with ``NaN``.

    Raises
    ------
    DataUnavailable
        If ``frame`` is empty or lacks one of the price columns.
    """
    if frame is None or frame.empty:
        raise DataUnavailable(f"No bars available for {symbol}", symbol=symbol)
    bar_frame = _normalize_columns(frame.copy())
    if "date" in bar_frame.columns and not isinstance(bar_frame.index, pandas.DatetimeIndex):
        bar_frame = bar_frame.set_index("date")
    bar_frame.index = pandas.to_datetime(bar_frame.index)
    if bar_frame.index.tz is not None:
        bar_frame.index = bar_frame.index.tz_localize(None)
    bar_frame.index.name = "date"
    missing_column_names = [
        column_name
        for column_name in REQUIRED_PRICE_COLUMNS
        if column_name not in bar_frame.columns
    ]
    if missing_column_names:
        raise DataUnavailable(
            f"Missing required columns for {symbol}: {', '.join(missing_column_names)}",
            symbol=symbol,
        )
    bar_frame = bar_frame.loc[~bar_frame.index.duplicated(keep="first")].sort_index()
    if "volume" not in bar_frame.columns:
        bar_frame["volume"] = float("nan")
    for column_name in BAR_COLUMNS:
        bar_frame[column_name] = pandas.to_numeric(bar_frame[column_name], errors="coerce")
    return bar_frame[BAR_COLUMNS]


def _slice_range(frame: pandas.DataFrame, start: str, end: str) -> pandas.DataFrame:
    """Return the rows of ``frame`` dated within ``[start, end)``."""
    if frame.empty:
        return frame
    return frame.loc[
        (frame.index >= pandas.Timestamp(start)) & (frame.index < pandas.Timestamp(end))
    ]


def _write_cache(frame: pandas.DataFrame, cache_path: Path | None) -> None:
    if cache_path is None or frame.empty:
        return
    cache_path.parent.mkdir(parents=True, exist_ok=True)
    frame.to_csv(cache_path)


def _merge_history(*frames: pandas.DataFrame) -> pandas.DataFrame:
    merged_frame = pandas.concat([frame for frame in frames if not frame.empty]).sort_index()
    return merged_frame.loc[~merged_frame.index.duplicated(keep="first")]


def download_history(
    symbol: str,
    start: str,
    end: str,
    cache_path: Path | None = None,
    **download_options: Any,
) -> pandas.DataFrame:
    """Download historical price data for a symbol from Yahoo Finance.

    Parameters
    ----------
    symbol: str
        Ticker symbol to download.
    start: str
        Start date in ISO format (``YYYY-MM-DD``).
    end: str
        Exclusive end date in ISO format (``YYYY-MM-DD``).
    cache_path: Path | None, optional
        Optional path to a CSV file used as a local cache. When the file exists,
        only the rows missing before and after the cached range are requested
        from the remote source and the merged result is written back to this
        file.
    **download_options
        Additional keyword arguments forwarded to :func:`yfinance.download`.
        By default, ``auto_adjust`` is set to ``True``.

    Returns
    -------
    pandas.DataFrame
        Data frame containing the historical data within ``[start, end)``.

    Raises
    ------
    Exception
        Propagates the last error if downloading repeatedly fails.
    """
    requested_start = start
    cached_frame = pandas.DataFrame()
    if cache_path is not None and cache_path.exists():
        cached_frame = _normalize_columns(
            pandas.read_csv(cache_path, index_col=0, parse_dates=True)
        )

    if "auto_adjust" not in download_options:
        download_options["auto_adjust"] = True

    if not cached_frame.empty:
        earliest_cached_date = cached_frame.index.min()
        if pandas.Timestamp(start) < earliest_cached_date:
            try:
                earlier_frame = yfinance.download(
                    symbol,
                    start=start,
                    end=earliest_cached_date.strftime("%Y-%m-%d"),
                    progress=False,
                    **download_options,
                )
                earlier_frame = _normalize_columns(earlier_frame)
                if not earlier_frame.empty:
                    cached_frame = _merge_history(earlier_frame, cached_frame)
            except Exception as download_error:  # noqa: BLE001
                LOGGER.warning(
                    "Failed to download missing history for %s: %s",
                    symbol,
                    download_error,
                )
        next_download_date = cached_frame.index.max() + pandas.Timedelta(days=1)
        if next_download_date >= pandas.Timestamp(end):
            _write_cache(cached_frame, cache_path)
            return _slice_range(cached_frame, requested_start, end)
        start = max(pandas.Timestamp(start), next_download_date).strftime("%Y-%m-%d")

    maximum_attempts = 3
    for attempt_number in range(1, maximum_attempts + 1):
        try:
            downloaded_frame = yfinance.download(
                symbol,
                start=start,
                end=end,
                progress=False,
                **download_options,
            )
            downloaded_frame = _normalize_columns(downloaded_frame)
            if not cached_frame.empty:
                downloaded_frame = _merge_history(cached_frame, downloaded_frame)
            _write_cache(downloaded_frame, cache_path)
            return _slice_range(downloaded_frame, requested_start, end)
        except Exception as download_error:  # noqa: BLE001
            LOGGER.warning(
                "Attempt %d to download data for %s failed: %s",
                attempt_number,
                symbol,
                download_error,
            )
            if attempt_number == maximum_attempts:
                LOGGER.error(
                    "Failed to download data for %s after %d attempts",
                    symbol,
                    maximum_attempts,
                )
                raise
            time.sleep(1)
    return pandas.DataFrame()


def load_local_history(
    symbol: str,
    start: str | None,
    end: str | None,
    cache_path: Path | None = None,
) -> pandas.DataFrame:
    """Load historical price data strictly from a local CSV.

    Parameters
    ----------
    symbol: str
        Ticker symbol (used only for logging).
    start: str | None
        Inclusive start date (``YYYY-MM-DD``); ``None`` keeps the earliest rows.
    end: str | None
        Exclusive end date (``YYYY-MM-DD``); ``None`` keeps the latest rows.
    cache_path: Path | None
        Path to the local CSV file.

    Returns
    -------
    pandas.DataFrame
        Price history sliced to ``[start, end)`` with normalized column names.
        Empty when the file is missing or unreadable.
    """
    if cache_path is None or not cache_path.exists():
        LOGGER.warning("Local CSV not found for %s: %s", symbol, cache_path)
        return pandas.DataFrame()
    try:
        frame = pandas.read_csv(cache_path, index_col=0, parse_dates=True)
    except (OSError, ValueError, pandas.errors.ParserError) as read_error:
        LOGGER.warning("Failed to read local CSV for %s: %s", symbol, read_error)
        return pandas.DataFrame()
    if frame.empty:
        return frame
    frame = _normalize_columns(frame)
    frame.index = pandas.to_datetime(frame.index, errors="coerce")
    frame = frame.loc[frame.index.notna()]
    if start is not None:
        frame = frame.loc[frame.index >= pandas.Timestamp(start)]
    if end is not None:
        frame = frame.loc[frame.index < pandas.Timestamp(end)]
    return frame


def resolve_lookback_range(
    period: str, today: datetime.date | None = None
) -> tuple[str, str]:
    """Map a lookback code such as ``"6m"`` to an inclusive ISO date range.

    Raises
    ------
    ConfigurationInvalid
        If ``period`` is not one of :data:`LOOKBACK_PERIODS`.
    """
    normalized_period = period.strip().lower()
    if normalized_period not in LOOKBACK_PERIODS:
        allowed_periods = ", ".join(LOOKBACK_PERIODS)
        raise ConfigurationInvalid(
            f"Unknown period {period!r}; expected one of: {allowed_periods}"
        )
    end_timestamp = pandas.Timestamp(today or datetime.date.today())
    start_timestamp = end_timestamp - pandas.DateOffset(**LOOKBACK_PERIODS[normalized_period])
    return start_timestamp.strftime("%Y-%m-%d"), end_timestamp.strftime("%Y-%m-%d")


def lookback_years(period: str) -> float:
    """Return the length of a lookback code in years."""
    offset = LOOKBACK_PERIODS[period.strip().lower()]
    return offset.get("years", 0) + offset.get("months", 0) / 12


def _exclusive_end(end: str | None) -> str | None:
    if end is None:
        return None
    return (pandas.Timestamp(end) + pandas.Timedelta(days=1)).strftime("%Y-%m-%d")


def create_bar_fetcher(
    stock_table: str,
    source: str = "local",
    start: str | None = None,
    end: str | None = None,
    limit: int | None = None,
    data_directory: Path | None = None,
) -> Callable[[str], pandas.DataFrame]:
    """Return a ``fetch_bars(symbol)`` callable for the batch orchestrator.

    Parameters
    ----------
    stock_table:
        Data table the symbols belong to; local CSVs live in
        ``<data_directory>/<stock_table>/<symbol>.csv``.
    source:
        ``"local"`` reads only the CSV store; ``"yahoo"`` downloads through
        :func:`download_history` using the CSV store as its cache.
    start, end:
        Inclusive ISO date range. When both are ``None`` the trailing
        ``limit`` bars are returned instead.
    limit:
        Number of most recent bars kept when no date range is given. Defaults
        to :data:`DEFAULT_HISTORY_LIMIT`.
    data_directory:
        Root of the CSV store. Defaults to :data:`STOCK_DATA_DIRECTORY`.
    """
    if source not in ("local", "yahoo"):
        raise ConfigurationInvalid(f"Unknown data source {source!r}")
    table_directory = (data_directory or STOCK_DATA_DIRECTORY) / stock_table
    trailing_limit = limit if limit is not None else DEFAULT_HISTORY_LIMIT
    use_limit = start is None and end is None
    exclusive_end = _exclusive_end(end)

    def fetch_bars(symbol: str) -> pandas.DataFrame:
        cache_path = table_directory / f"{symbol}.csv"
        if source == "local":
            raw_frame = load_local_history(symbol, start, exclusive_end, cache_path)
        else:
            download_end = exclusive_end or _exclusive_end(
                datetime.date.today().strftime("%Y-%m-%d")
            )
            download_start = start
            if download_start is None:
                # Calendar days comfortably covering the trailing bar limit.
                download_start = (
                    pandas.Timestamp(download_end) - pandas.Timedelta(days=trailing_limit * 2)
                ).strftime("%Y-%m-%d")
            raw_frame = download_history(symbol, download_start, download_end, cache_path)
        bar_frame = prepare_bar_frame(raw_frame, symbol)
        if use_limit:
            bar_frame = bar_frame.tail(trailing_limit)
        LOGGER.debug("Loaded %d bars for %s", len(bar_frame), symbol)
        return bar_frame

    return fetch_bars

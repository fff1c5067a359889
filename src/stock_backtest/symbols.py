"""Resolve which symbols a market/asset-class selection covers.

Market selections map to a data table through ``data/market_sources.csv``.
The symbols of a table are the per-symbol CSV files stored under
``data/stock_data/<stock_table>/``; when that directory is missing, the
newline-separated list in ``data/symbols/<stock_table>.txt`` is used
instead. That list can be rebuilt from the SEC company tickers dataset with
:func:`update_symbol_cache`.
"""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any, Dict, List

import pandas
import requests

from .errors import DataUnavailable
from .settings import (
    MARKET_SOURCES_PATH,
    SEC_COMPANY_TICKERS_URL,
    SEC_USER_AGENT,
    STOCK_DATA_DIRECTORY,
    SYMBOL_LIST_DIRECTORY,
)

LOGGER = logging.getLogger(__name__)

HEADERS = {"User-Agent": SEC_USER_AGENT}
MARKET_SOURCE_COLUMNS = ["country", "stock_market", "asset_class", "stock_table"]


def _normalize_symbol(symbol: str) -> str:
    return symbol.strip().upper()


def load_market_sources(path: Path | None = None) -> pandas.DataFrame:
    """Return the market source table.

    Returns an empty frame with the expected columns when the file does not
    exist.
    """
    file_path = path or MARKET_SOURCES_PATH
    if not file_path.exists():
        LOGGER.warning("Market source table not found: %s", file_path)
        return pandas.DataFrame(columns=MARKET_SOURCE_COLUMNS)
    market_sources = pandas.read_csv(file_path, dtype=str).fillna("")
    market_sources.columns = [
        str(column_name).strip().lower().replace(" ", "_")
        for column_name in market_sources.columns
    ]
    missing_column_names = [
        column_name
        for column_name in MARKET_SOURCE_COLUMNS
        if column_name not in market_sources.columns
    ]
    if missing_column_names:
        raise ValueError(
            f"Missing required columns: {', '.join(missing_column_names)} in {file_path.name}"
        )
    for column_name in MARKET_SOURCE_COLUMNS:
        market_sources[column_name] = market_sources[column_name].str.strip()
    return market_sources[MARKET_SOURCE_COLUMNS]


def list_countries(path: Path | None = None) -> List[str]:
    market_sources = load_market_sources(path)
    return sorted(value for value in market_sources["country"].unique() if value)


def list_stock_markets(country: str, path: Path | None = None) -> List[str]:
    market_sources = load_market_sources(path)
    matching_rows = market_sources[market_sources["country"] == country]
    return sorted(value for value in matching_rows["stock_market"].unique() if value)


def list_asset_classes(country: str, stock_market: str, path: Path | None = None) -> List[str]:
    market_sources = load_market_sources(path)
    matching_rows = market_sources[
        (market_sources["country"] == country)
        & (market_sources["stock_market"] == stock_market)
    ]
    return sorted(value for value in matching_rows["asset_class"].unique() if value)


def resolve_data_table(
    country: str,
    stock_market: str,
    asset_class: str,
    path: Path | None = None,
) -> str:
    """Return the data table that holds ``asset_class`` bars for a market.

    Raises
    ------
    DataUnavailable
        If no row of the market source table matches the selection.
    """
    market_sources = load_market_sources(path)
    matching_rows = market_sources[
        (market_sources["country"] == country)
        & (market_sources["stock_market"] == stock_market)
        & (market_sources["asset_class"] == asset_class)
    ]
    if matching_rows.empty or not matching_rows["stock_table"].iloc[0]:
        raise DataUnavailable(
            f"Could not determine data table for {country}/{stock_market}/{asset_class}"
        )
    return str(matching_rows["stock_table"].iloc[0])


def symbol_list_path(stock_table: str) -> Path:
    return SYMBOL_LIST_DIRECTORY / f"{stock_table}.txt"


def _read_symbol_list(file_path: Path) -> List[str]:
    """Parse a newline-separated or JSON encoded list of ticker symbols."""
    file_content = file_path.read_text(encoding="utf-8")
    try:
        parsed_symbols = json.loads(file_content)
    except json.JSONDecodeError:
        return [line.strip() for line in file_content.splitlines() if line.strip()]
    if not isinstance(parsed_symbols, list) or not all(
        isinstance(symbol, str) for symbol in parsed_symbols
    ):
        raise ValueError("Symbol list JSON must be a list of strings.")
    return parsed_symbols


def load_table_symbols(stock_table: str) -> List[str]:
    """Return the sorted, de-duplicated, upper-case symbols of ``stock_table``."""
    table_directory = STOCK_DATA_DIRECTORY / stock_table
    if table_directory.is_dir():
        raw_symbols = [csv_path.stem for csv_path in table_directory.glob("*.csv")]
    else:
        list_path = symbol_list_path(stock_table)
        if not list_path.exists():
            LOGGER.warning("No symbol source found for table %s", stock_table)
            return []
        raw_symbols = _read_symbol_list(list_path)
    return sorted({_normalize_symbol(symbol) for symbol in raw_symbols if symbol.strip()})


def _request_json(url: str) -> Dict[str, Any]:
    """Fetch JSON data from ``url`` with basic retries."""
    maximum_attempts = 3
    for attempt_number in range(1, maximum_attempts + 1):
        try:
            LOGGER.info("Requesting %s", url)
            response = requests.get(url, headers=HEADERS, timeout=30)
            response.raise_for_status()
            return response.json()
        except requests.RequestException as request_error:
            LOGGER.warning(
                "Request to %s failed on attempt %d: %s",
                url,
                attempt_number,
                request_error,
            )
            if attempt_number == maximum_attempts:
                LOGGER.error("Giving up on %s after %d attempts", url, maximum_attempts)
                raise
            time.sleep(2 ** (attempt_number - 1))
    return {}


def fetch_company_tickers() -> List[str]:
    """Return the ticker symbols listed in the SEC company tickers dataset."""
    payload = _request_json(SEC_COMPANY_TICKERS_URL)
    ticker_list = [
        _normalize_symbol(str(company_info["ticker"]))
        for company_info in payload.values()
        if company_info.get("ticker")
    ]
    return sorted(set(ticker_list))


def update_symbol_cache(stock_table: str) -> List[str]:
    """Rebuild ``data/symbols/<stock_table>.txt`` from the SEC ticker list."""
    ticker_list = fetch_company_tickers()
    list_path = symbol_list_path(stock_table)
    list_path.parent.mkdir(parents=True, exist_ok=True)
    list_path.write_text("\n".join(ticker_list) + "\n", encoding="utf-8")
    LOGGER.info("Symbol list for %s written to %s", stock_table, list_path)
    return ticker_list

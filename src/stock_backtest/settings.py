"""Configuration settings for the backtesting engine.

Price history is stored locally as one CSV file per symbol under
``data/stock_data/<stock_table>/``. The table that applies to a
market/asset-class selection is listed in ``data/market_sources.csv`` with
the columns ``country,stock_market,asset_class,stock_table``. Symbol lists
that are not derived from the CSV store live in ``data/symbols/<stock_table>.txt``.

SEC API requests must include a descriptive User-Agent with contact details per
SEC guidance. Update ``SEC_USER_AGENT`` below with your organization/app name and
a valid email/URL where you can be reached.
"""

from pathlib import Path

REPOSITORY_ROOT = Path(__file__).resolve().parents[2]

DATA_DIRECTORY = REPOSITORY_ROOT / "data"
STOCK_DATA_DIRECTORY = DATA_DIRECTORY / "stock_data"
SYMBOL_LIST_DIRECTORY = DATA_DIRECTORY / "symbols"
MARKET_SOURCES_PATH = DATA_DIRECTORY / "market_sources.csv"

SEC_COMPANY_TICKERS_URL = "https://www.sec.gov/files/company_tickers.json"
# Example format: "app-name/version (contact: email@domain.com)"
SEC_USER_AGENT = "stock-backtest/0.1 (contact: maintainer@example.com)"

# Number of symbols simulated concurrently by the batch orchestrator.
DEFAULT_BATCH_SIZE = 10
# Trailing number of bars fetched when neither a period nor dates are given.
DEFAULT_HISTORY_LIMIT = 300

# Annualized rate, in percent, subtracted from total return for Sharpe/Sortino.
RISK_FREE_RATE_PERCENTAGE = 2.0

# Integer-lot markets trade in multiples of this many units.
INTEGER_LOT_MULTIPLE = 10
FRACTIONAL_LOT_DECIMALS = 8
FRACTIONAL_ASSET_CLASS_PREFIXES = ("crypto",)

DEFAULT_ENTRY_PERCENTAGE = 1.0
DEFAULT_STOP_PERCENTAGE = 1.0
DEFAULT_INITIAL_CAPITAL = 10000.0

# Lookback codes offered by the dashboard, mapped to calendar offsets.
LOOKBACK_PERIODS = {
    "1m": {"months": 1},
    "3m": {"months": 3},
    "6m": {"months": 6},
    "1y": {"years": 1},
    "2y": {"years": 2},
    "5y": {"years": 5},
}
# Annual cadence over a shorter lookback yields too few periods to be useful.
MINIMUM_ANNUAL_LOOKBACK_YEARS = 2

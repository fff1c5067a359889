"""Exception types raised by the backtesting engine.

Only configuration problems and missing data escape the engine. Conditions
inside the day-by-day loop, such as a lot size that rounds to zero or a
period-end bar without a closing price, degrade to "no trade" and are noted
on the daily ledger instead of raised.
"""

from __future__ import annotations


class StockBacktestError(Exception):
    """Base class for errors raised by :mod:`stock_backtest`."""


class ConfigurationInvalid(StockBacktestError, ValueError):
    """Raised when a strategy configuration is rejected before simulation."""


class DataUnavailable(StockBacktestError, LookupError):
    """Raised when no usable bars exist for a symbol or data table."""

    def __init__(self, message: str, symbol: str | None = None) -> None:
        super().__init__(message)
        self.symbol = symbol

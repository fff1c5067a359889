"""Strategy configuration for the period-based trade simulation.

A :class:`StrategyConfig` fully determines how a simulation behaves. It is
validated once, when constructed, so the engine never re-checks user input
while replaying history. Raw values coming from a form or the command line go
through :func:`build_strategy_config`, which accepts loosely formatted strings
and resolves the lot rounding mode from the asset class.
"""

from __future__ import annotations

import math
import numbers
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Mapping, Type, TypeVar

from .errors import ConfigurationInvalid
from .settings import (
    DEFAULT_ENTRY_PERCENTAGE,
    DEFAULT_INITIAL_CAPITAL,
    DEFAULT_STOP_PERCENTAGE,
    FRACTIONAL_ASSET_CLASS_PREFIXES,
)


class Operation(str, Enum):
    BUY = "buy"
    SELL = "sell"


class ReferencePrice(str, Enum):
    OPEN = "open"
    HIGH = "high"
    LOW = "low"
    CLOSE = "close"


class Cadence(str, Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


class LotRounding(str, Enum):
    INTEGER = "integer"
    FRACTIONAL = "fractional"


_CADENCE_ALIASES = {
    "daily": Cadence.DAY,
    "daytrade": Cadence.DAY,
    "weekly": Cadence.WEEK,
    "monthly": Cadence.MONTH,
    "annual": Cadence.YEAR,
    "yearly": Cadence.YEAR,
}

EnumType = TypeVar("EnumType", bound=Enum)


def _parse_enum(enum_type: Type[EnumType], raw_value: Any, field_name: str) -> EnumType:
    """Return the ``enum_type`` member matching ``raw_value`` case-insensitively."""
    if isinstance(raw_value, enum_type):
        return raw_value
    normalized_value = str(raw_value).strip().lower()
    if enum_type is Cadence and normalized_value in _CADENCE_ALIASES:
        return _CADENCE_ALIASES[normalized_value]  # type: ignore[return-value]
    for member in enum_type:
        if member.value == normalized_value or member.name.lower() == normalized_value:
            return member
    allowed_values = ", ".join(member.value for member in enum_type)
    raise ConfigurationInvalid(
        f"Unknown {field_name} {raw_value!r}; expected one of: {allowed_values}"
    )


def _parse_number(raw_value: Any, field_name: str) -> float:
    """Convert ``raw_value`` to a finite float."""
    if isinstance(raw_value, bool):
        raise ConfigurationInvalid(f"{field_name} must be numeric, got {raw_value!r}")
    if isinstance(raw_value, str):
        raw_value = raw_value.strip().replace(",", "")
    try:
        number = float(raw_value)
    except (TypeError, ValueError) as conversion_error:
        raise ConfigurationInvalid(
            f"{field_name} must be numeric, got {raw_value!r}"
        ) from conversion_error
    if not math.isfinite(number):
        raise ConfigurationInvalid(f"{field_name} must be finite, got {raw_value!r}")
    return number


def _require_number(value: Any, field_name: str) -> None:
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        raise ConfigurationInvalid(f"{field_name} must be numeric, got {value!r}")
    if not math.isfinite(value):
        raise ConfigurationInvalid(f"{field_name} must be finite, got {value!r}")


def _validate_percentage(value: float, field_name: str) -> None:
    """Reject negative percentages and those with more than two decimals."""
    _require_number(value, field_name)
    if value < 0:
        raise ConfigurationInvalid(f"{field_name} must not be negative, got {value!r}")
    try:
        exponent = Decimal(str(value)).normalize().as_tuple().exponent
    except InvalidOperation as decimal_error:
        raise ConfigurationInvalid(
            f"{field_name} is not a valid decimal: {value!r}"
        ) from decimal_error
    if isinstance(exponent, int) and exponent < -2:
        raise ConfigurationInvalid(
            f"{field_name} allows at most 2 decimal places, got {value!r}"
        )


def resolve_lot_rounding(asset_class: str | None) -> LotRounding:
    """Return the lot rounding mode for ``asset_class``.

    Crypto-class instruments trade in fractional units; every other asset
    class trades in integer lots.
    """
    if asset_class and asset_class.strip().lower().startswith(
        FRACTIONAL_ASSET_CLASS_PREFIXES
    ):
        return LotRounding.FRACTIONAL
    return LotRounding.INTEGER


@dataclass(frozen=True)
class StrategyConfig:
    """Immutable parameters of one simulation run.

    ``entry_percentage`` and ``stop_percentage`` are expressed in percent, so
    ``1.5`` means one and a half percent.
    """

    operation: Operation = Operation.BUY
    reference_price: ReferencePrice = ReferencePrice.CLOSE
    entry_percentage: float = DEFAULT_ENTRY_PERCENTAGE
    stop_percentage: float = DEFAULT_STOP_PERCENTAGE
    initial_capital: float = DEFAULT_INITIAL_CAPITAL
    cadence: Cadence = Cadence.DAY
    lot_rounding: LotRounding = LotRounding.INTEGER

    def __post_init__(self) -> None:
        for field_name, enum_type in (
            ("operation", Operation),
            ("reference_price", ReferencePrice),
            ("cadence", Cadence),
            ("lot_rounding", LotRounding),
        ):
            if not isinstance(getattr(self, field_name), enum_type):
                raise ConfigurationInvalid(
                    f"{field_name} must be a {enum_type.__name__}, "
                    f"got {getattr(self, field_name)!r}"
                )
        _validate_percentage(self.entry_percentage, "entry_percentage")
        _validate_percentage(self.stop_percentage, "stop_percentage")
        _require_number(self.initial_capital, "initial_capital")
        if self.initial_capital <= 0:
            raise ConfigurationInvalid(
                f"initial_capital must be positive, got {self.initial_capital!r}"
            )

    @property
    def is_buy(self) -> bool:
        return self.operation is Operation.BUY


def build_strategy_config(raw_values: Mapping[str, Any]) -> StrategyConfig:
    """Build a :class:`StrategyConfig` from loosely typed user input.

    Parameters
    ----------
    raw_values:
        Mapping with any of the keys ``operation``, ``reference_price``,
        ``entry_percentage``, ``stop_percentage``, ``initial_capital``,
        ``cadence``, ``lot_rounding`` and ``asset_class``. Missing keys take
        the dashboard defaults. When ``lot_rounding`` is absent it is derived
        from ``asset_class``.

    Returns
    -------
    StrategyConfig
        The validated configuration.

    Raises
    ------
    ConfigurationInvalid
        If any value is malformed, negative, or not a known option.
    """
    lot_rounding_value = raw_values.get("lot_rounding")
    if lot_rounding_value is None:
        lot_rounding = resolve_lot_rounding(raw_values.get("asset_class"))
    else:
        lot_rounding = _parse_enum(LotRounding, lot_rounding_value, "lot_rounding")
    return StrategyConfig(
        operation=_parse_enum(
            Operation, raw_values.get("operation", Operation.BUY), "operation"
        ),
        reference_price=_parse_enum(
            ReferencePrice,
            raw_values.get("reference_price", ReferencePrice.CLOSE),
            "reference_price",
        ),
        entry_percentage=_parse_number(
            raw_values.get("entry_percentage", DEFAULT_ENTRY_PERCENTAGE),
            "entry_percentage",
        ),
        stop_percentage=_parse_number(
            raw_values.get("stop_percentage", DEFAULT_STOP_PERCENTAGE),
            "stop_percentage",
        ),
        initial_capital=_parse_number(
            raw_values.get("initial_capital", DEFAULT_INITIAL_CAPITAL),
            "initial_capital",
        ),
        cadence=_parse_enum(Cadence, raw_values.get("cadence", Cadence.DAY), "cadence"),
        lot_rounding=lot_rounding,
    )

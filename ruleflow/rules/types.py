"""
Semantic value types for parameters, variables and function signatures.

Types are declared once, when a parameter, variable or function is
registered, and conversions are plain functions with a single failure mode
(``TypeCoercionError``).
"""

from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Mapping, Union

from ..shared.errors import TypeCoercionError, ConfigurationError


class ValueType(str, Enum):
    """Supported semantic types."""
    ANY = "any"
    BOOL = "bool"
    INT = "int"
    FLOAT = "float"
    DECIMAL = "decimal"
    STR = "str"
    DATE = "date"
    DATETIME = "datetime"
    LIST = "list"
    DICT = "dict"


_PYTHON_TYPES = {
    bool: ValueType.BOOL,
    int: ValueType.INT,
    float: ValueType.FLOAT,
    Decimal: ValueType.DECIMAL,
    str: ValueType.STR,
    date: ValueType.DATE,
    datetime: ValueType.DATETIME,
    list: ValueType.LIST,
    tuple: ValueType.LIST,
    dict: ValueType.DICT,
}

_TAG_ALIASES = {
    "boolean": ValueType.BOOL,
    "integer": ValueType.INT,
    "double": ValueType.FLOAT,
    "number": ValueType.FLOAT,
    "string": ValueType.STR,
    "mapping": ValueType.DICT,
    "object": ValueType.ANY,
}

NUMERIC_TYPES = (int, float, Decimal)


def parse_value_type(value_type: Union[str, type, ValueType, None]) -> ValueType:
    """Normalise a type tag, Python type or ValueType into a ValueType."""
    if value_type is None:
        return ValueType.ANY
    if isinstance(value_type, ValueType):
        return value_type
    if isinstance(value_type, type):
        if value_type in _PYTHON_TYPES:
            return _PYTHON_TYPES[value_type]
        if issubclass(value_type, Mapping):
            return ValueType.DICT
        return ValueType.ANY
    if isinstance(value_type, str):
        tag = value_type.strip().lower()
        try:
            return ValueType(tag)
        except ValueError:
            if tag in _TAG_ALIASES:
                return _TAG_ALIASES[tag]
    raise ConfigurationError(f"Unknown value type '{value_type}'", {"value_type": str(value_type)})


def is_numeric(value: Any) -> bool:
    """Numbers only; booleans are not numeric."""
    return isinstance(value, NUMERIC_TYPES) and not isinstance(value, bool)


def matches_type(value: Any, value_type: ValueType) -> bool:
    """Strict runtime type check used for invocation parameters."""
    if value_type == ValueType.ANY:
        return True
    if value_type == ValueType.BOOL:
        return isinstance(value, bool)
    if value_type == ValueType.INT:
        return isinstance(value, int) and not isinstance(value, bool)
    if value_type == ValueType.FLOAT:
        return isinstance(value, float)
    if value_type == ValueType.DECIMAL:
        return isinstance(value, Decimal)
    if value_type == ValueType.STR:
        return isinstance(value, str)
    if value_type == ValueType.DATETIME:
        return isinstance(value, datetime)
    if value_type == ValueType.DATE:
        return isinstance(value, date) and not isinstance(value, datetime)
    if value_type == ValueType.LIST:
        return isinstance(value, (list, tuple))
    if value_type == ValueType.DICT:
        return isinstance(value, Mapping)
    return False


def to_bool(value: Any) -> bool:
    """Canonical truthiness used for conditions, filters and All/Any."""
    if isinstance(value, bool):
        return value
    if is_numeric(value):
        return value != 0
    if isinstance(value, str):
        return value != ""
    if value is None:
        return False
    return True


def _fail(value: Any, value_type: ValueType, reason: str = "") -> TypeCoercionError:
    message = f"Cannot convert {type(value).__name__} value {value!r} to {value_type.value}"
    if reason:
        message = f"{message}: {reason}"
    return TypeCoercionError(message, {"value_type": value_type.value})


def coerce(value: Any, value_type: Union[ValueType, str, type, None]) -> Any:
    """Convert ``value`` to ``value_type``; ``None`` passes through."""
    value_type = parse_value_type(value_type)
    if value is None or value_type == ValueType.ANY or matches_type(value, value_type):
        return value

    if value_type == ValueType.BOOL:
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in ("true", "1", "yes"):
                return True
            if lowered in ("false", "0", "no", ""):
                return False
            raise _fail(value, value_type)
        if is_numeric(value):
            return value != 0
        raise _fail(value, value_type)

    if value_type == ValueType.INT:
        if isinstance(value, bool):
            return int(value)
        if isinstance(value, (float, Decimal)):
            if value != int(value):
                raise _fail(value, value_type, "fractional value")
            return int(value)
        if isinstance(value, str):
            try:
                return int(value.strip())
            except ValueError:
                raise _fail(value, value_type)
        raise _fail(value, value_type)

    if value_type == ValueType.FLOAT:
        if isinstance(value, (bool, int, Decimal)):
            return float(value)
        if isinstance(value, str):
            try:
                return float(value.strip())
            except ValueError:
                raise _fail(value, value_type)
        raise _fail(value, value_type)

    if value_type == ValueType.DECIMAL:
        if isinstance(value, bool):
            return Decimal(int(value))
        if isinstance(value, (int, float)):
            return Decimal(str(value))
        if isinstance(value, str):
            try:
                return Decimal(value.strip())
            except InvalidOperation:
                raise _fail(value, value_type)
        raise _fail(value, value_type)

    if value_type == ValueType.STR:
        if isinstance(value, (date, datetime)):
            return value.isoformat()
        return str(value)

    if value_type == ValueType.DATETIME:
        if isinstance(value, date):
            return datetime(value.year, value.month, value.day)
        if isinstance(value, str):
            try:
                return datetime.fromisoformat(value.strip())
            except ValueError:
                raise _fail(value, value_type)
        raise _fail(value, value_type)

    if value_type == ValueType.DATE:
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, str):
            try:
                return date.fromisoformat(value.strip())
            except ValueError:
                raise _fail(value, value_type)
        raise _fail(value, value_type)

    if value_type == ValueType.LIST:
        if isinstance(value, (set, frozenset)):
            return list(value)
        raise _fail(value, value_type)

    if value_type == ValueType.DICT:
        if hasattr(value, "__dict__"):
            return {k: v for k, v in vars(value).items() if not k.startswith("_")}
        raise _fail(value, value_type)

    raise _fail(value, value_type)

"""Cell value conversion rules shared by the gateway and the edit flows.

Smartsheet returns cell values as strings, numbers or booleans depending on
the column.  Everything cached locally is stored as a string so that the
three-way comparison never has to care about the wire representation:

``to_cell_string``
    Normalise a raw wire value into its cached string form.

``format_for_column``
    Convert user input into the encoding expected for a column type before
    it is recorded as a pending edit.
"""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, List, Optional

from offline_core.models import ColumnType

DATE_INPUT_FORMATS = ("%Y-%m-%d", "%m/%d/%y", "%m/%d/%Y")
DATETIME_INPUT_FORMATS = (
    "%m/%d/%y %I:%M %p",
    "%Y-%m-%dT%H:%M:%S%z",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d %H:%M",
)
_TRUE_VALUES = {"1", "true", "yes", "y", "on"}
_FALSE_VALUES = {"0", "false", "no", "n", "off", ""}


def to_cell_string(value: Any) -> Optional[str]:
    """Return the cached string form of a raw cell value."""

    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if value.is_integer():
            return str(int(value))
        return repr(value)
    if isinstance(value, Decimal):
        if value == value.to_integral_value():
            return str(int(value))
        return format(value.normalize(), "f")
    return str(value)


MULTI_VALUE_SEPARATOR = ", "


def split_multi_value(value: Optional[str]) -> List[str]:
    """Split a multi-picklist cell string into its selected items."""

    if not value:
        return []
    return [item.strip() for item in value.split(MULTI_VALUE_SEPARATOR.strip()) if item.strip()]


def is_legal_option(value: Optional[str], options: tuple, *, multiple: bool = False) -> bool:
    """Return ``True`` when ``value`` is allowed by a picklist's options.

    With ``multiple`` every comma separated item must be one of the options.
    """

    if value is None or not options:
        return True
    if multiple:
        return all(item in options for item in split_multi_value(value))
    return value in options


def _parse_checkbox(value: str) -> str:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return "true"
    if lowered in _FALSE_VALUES:
        return "false"
    raise ValueError(f"Cannot convert {value!r} to a checkbox value")


def _parse_date(value: str) -> str:
    text = value.strip()
    for fmt in DATE_INPUT_FORMATS:
        try:
            return datetime.strptime(text, fmt).strftime("%Y-%m-%d")
        except ValueError:
            continue
    raise ValueError(f"Cannot parse date value {value!r}")


def _parse_datetime(value: str) -> str:
    text = value.strip().replace("Z", "+0000")
    for fmt in DATETIME_INPUT_FORMATS:
        try:
            parsed = datetime.strptime(text, fmt)
        except ValueError:
            continue
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    raise ValueError(f"Cannot parse datetime value {value!r}")


def format_for_column(value: Any, column_type: ColumnType) -> Optional[str]:
    """Encode user input for ``column_type``.

    Raises :class:`ValueError` when the input is not legal for the column.
    Empty input clears the cell and is returned as ``None``.
    """

    text = to_cell_string(value)
    if text is None or (text.strip() == "" and column_type is not ColumnType.CHECKBOX):
        return None
    if column_type is ColumnType.CHECKBOX:
        return _parse_checkbox(text)
    if column_type is ColumnType.DATE:
        return _parse_date(text)
    if column_type is ColumnType.DATETIME:
        return _parse_datetime(text)
    if column_type is ColumnType.MULTI_PICKLIST:
        return MULTI_VALUE_SEPARATOR.join(split_multi_value(text)) or None
    return text


__all__ = [
    "MULTI_VALUE_SEPARATOR",
    "format_for_column",
    "is_legal_option",
    "split_multi_value",
    "to_cell_string",
]

from __future__ import annotations

from sqlalchemy import extract
from sqlalchemy.sql.elements import ColumnElement

from backend.transaction_store import transactions

DEFAULT_MONTH = 1

MONTH_NAMES: dict[str, int] = {
    "january": 1,
    "february": 2,
    "march": 3,
    "april": 4,
    "may": 5,
    "june": 6,
    "july": 7,
    "august": 8,
    "september": 9,
    "october": 10,
    "november": 11,
    "december": 12,
}


class InvalidMonth(ValueError):
    """Raised when a month is neither a canonical month name nor 1-12."""

    def __init__(self, value: object) -> None:
        super().__init__(
            f"Invalid month: {value!r}. Use a full month name (e.g. 'March') or 1-12."
        )
        self.value = value


def parse_month(value: str | int | None) -> int:
    """Normalize a month name or number into a 1-12 index.

    Missing or blank values fall back to January. Names are matched against
    the twelve English month names only, ignoring case and surrounding
    whitespace.
    """
    if value is None:
        return DEFAULT_MONTH
    if isinstance(value, bool):
        raise InvalidMonth(value)
    if isinstance(value, int):
        if 1 <= value <= 12:
            return value
        raise InvalidMonth(value)

    normalized = value.strip().lower()
    if not normalized:
        return DEFAULT_MONTH
    if normalized in MONTH_NAMES:
        return MONTH_NAMES[normalized]
    if normalized.isascii() and normalized.isdigit():
        month_index = int(normalized)
        if 1 <= month_index <= 12:
            return month_index
    raise InvalidMonth(value)


def month_of_sale(month_index: int) -> ColumnElement[bool]:
    """Predicate matching rows sold in the given month of any year."""
    return extract("month", transactions.c.date_of_sale) == month_index

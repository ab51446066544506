"""Date normalization between the display and storage textual forms.

Callers see dates as ``DD/MM/YYYY`` (display form) while the sheet is written
with ``YYYY-MM-DD`` (storage form), which the sheet parses independently of its
locale.  The helpers here rewrite the fields of a single record in place,
leaving anything that is not a date alone.
"""

from __future__ import annotations

import logging
import re
from datetime import date
from enum import Enum
from typing import Any, MutableMapping, Optional

logger = logging.getLogger(__name__)

DISPLAY_PATTERN = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{2,4})$")
STORAGE_PATTERN = re.compile(r"^(\d{2,4})-(\d{1,2})-(\d{1,2})$")

# Two-digit years at or above this value belong to the 1900s.
TWO_DIGIT_YEAR_PIVOT = 50


class DateDirection(str, Enum):
    """Which way ``normalize_dates`` converts."""

    DISPLAY_TO_STORAGE = "display-storage"
    STORAGE_TO_DISPLAY = "storage-display"


def is_display_date(value: Any) -> bool:
    return isinstance(value, str) and DISPLAY_PATTERN.match(value.strip()) is not None


def is_storage_date(value: Any) -> bool:
    return isinstance(value, str) and STORAGE_PATTERN.match(value.strip()) is not None


def _expand_year(raw: str) -> int:
    year = int(raw)
    if len(raw) == 2:
        year += 1900 if year >= TWO_DIGIT_YEAR_PIVOT else 2000
    return year


def _build_date(year: str, month: str, day: str) -> Optional[date]:
    try:
        return date(_expand_year(year), int(month), int(day))
    except ValueError:
        return None


def to_storage(value: str) -> Optional[str]:
    """Convert ``D/M/Y`` text into ``YYYY-MM-DD``; ``None`` if it is not a real date."""
    match = DISPLAY_PATTERN.match(value.strip())
    if not match:
        return None
    day, month, year = match.groups()
    parsed = _build_date(year, month, day)
    if parsed is None:
        return None
    return f"{parsed.year:04d}-{parsed.month:02d}-{parsed.day:02d}"


def to_display(value: str) -> Optional[str]:
    """Convert ``Y-M-D`` text into ``DD/MM/YYYY``; ``None`` if it is not a real date."""
    match = STORAGE_PATTERN.match(value.strip())
    if not match:
        return None
    year, month, day = match.groups()
    parsed = _build_date(year, month, day)
    if parsed is None:
        return None
    return f"{parsed.day:02d}/{parsed.month:02d}/{parsed.year:04d}"


def normalize_dates(
    record: MutableMapping[str, Any],
    direction: DateDirection,
) -> MutableMapping[str, Any]:
    """Rewrite every date-looking field of ``record`` in place and return it.

    Fields matching neither form, or matching a form whose numbers do not make
    a calendar date (``31/02/2024``), are left untouched.
    """
    direction = DateDirection(direction)
    for key, value in record.items():
        if direction is DateDirection.DISPLAY_TO_STORAGE and is_display_date(value):
            converted = to_storage(value)
        elif direction is DateDirection.STORAGE_TO_DISPLAY and is_storage_date(value):
            converted = to_display(value)
        else:
            continue

        if converted is None:
            logger.debug("Field '%s' looks like a date but is not one: %r", key, value)
            continue
        record[key] = converted
    return record


def today_display(today: Optional[date] = None) -> str:
    """Current date in display form, used to stamp new records."""
    current = today or date.today()
    return f"{current.day:02d}/{current.month:02d}/{current.year:04d}"

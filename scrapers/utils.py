from __future__ import annotations

"""Utility helpers for event extraction."""

import json
import re
from datetime import date, time
from typing import Any

_MONTHS = {
    "jan": 1, "january": 1,
    "feb": 2, "february": 2,
    "mar": 3, "march": 3,
    "apr": 4, "april": 4,
    "may": 5,
    "jun": 6, "june": 6,
    "jul": 7, "july": 7,
    "aug": 8, "august": 8,
    "sep": 9, "sept": 9, "september": 9,
    "oct": 10, "october": 10,
    "nov": 11, "november": 11,
    "dec": 12, "december": 12,
}

_ISO_DATE = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})")
_MONTH_DAY = re.compile(r"^(\d{1,2})[-/](\d{1,2})$")
_NAMED_MONTH_DAY = re.compile(r"^([A-Za-z]{3,9})\.?\s+(\d{1,2})(?:st|nd|rd|th)?(?:,?\s+(\d{4}))?$")
_TIME = re.compile(r"^\s*(\d{1,2})(?::(\d{2}))?(?::(\d{2}))?\s*([AaPp]\.?[Mm]\.?)?\s*$")


def extract_json_object(text: str | None) -> dict[str, Any] | None:
    """Return the outermost ``{...}`` object embedded in ``text``.

    LLM responses often wrap the JSON payload in prose or markdown fences.
    The span from the first ``{`` to the last ``}`` is parsed; ``None`` is
    returned when there is no such span or it is not a JSON object.
    """
    if not text:
        return None
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return None
    try:
        data = json.loads(text[start:end + 1])
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


def parse_time_of_day(value: str | None) -> time | None:
    """Parse ``HH:MM``, ``HH:MM:SS`` or ``7:30 pm`` style strings.

    Empty values and the literal ``"null"`` return ``None``; anything else
    that cannot be parsed raises ``ValueError``.
    """
    if value is None:
        return None
    value = value.strip()
    if not value or value.lower() in ("null", "none", "tbd"):
        return None
    match = _TIME.match(value)
    if not match:
        raise ValueError(f"Unrecognised time: {value!r}")
    hour = int(match.group(1))
    minute = int(match.group(2) or 0)
    second = int(match.group(3) or 0)
    meridiem = (match.group(4) or "").replace(".", "").lower()
    if meridiem:
        if not 1 <= hour <= 12:
            raise ValueError(f"Unrecognised time: {value!r}")
        hour = hour % 12 + (12 if meridiem == "pm" else 0)
    return time(hour, minute, second)


def minutes_since_midnight(value: time) -> int:
    return value.hour * 60 + value.minute


def _next_occurrence(month: int, day: int, today: date) -> date:
    """Return the first ``month``/``day`` on or after ``today``."""
    for year in range(today.year, today.year + 5):
        try:
            candidate = date(year, month, day)
        except ValueError:
            # Feb 29 outside a leap year
            continue
        if candidate >= today:
            return candidate
    raise ValueError(f"No valid date for month={month} day={day}")


def infer_event_date(value: str | None, today: date) -> date | None:
    """Parse an extracted date, inferring the year when the source omits it.

    Accepts ``YYYY-MM-DD``, ``MM-DD``/``MM/DD`` and ``June 10`` forms. A
    missing year resolves to the nearest future occurrence of the month and
    day relative to ``today``. Returns ``None`` for unparseable or non-string
    input.
    """
    if not value or not isinstance(value, str):
        return None
    value = value.strip()

    match = _ISO_DATE.match(value)
    if match:
        try:
            return date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
        except ValueError:
            return None

    match = _MONTH_DAY.match(value)
    if match:
        month, day = int(match.group(1)), int(match.group(2))
        year = None
    else:
        match = _NAMED_MONTH_DAY.match(value)
        if not match:
            return None
        month = _MONTHS.get(match.group(1).lower())
        if not month:
            return None
        day = int(match.group(2))
        year = int(match.group(3)) if match.group(3) else None

    try:
        if year is not None:
            return date(year, month, day)
        return _next_occurrence(month, day, today)
    except ValueError:
        return None

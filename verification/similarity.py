"""Weighted field similarity between two event-like records."""
from __future__ import annotations

from typing import Optional, Protocol
from datetime import date, time

from scrapers.utils import minutes_since_midnight

TITLE_POINTS = 30
DATE_POINTS = 30
TIME_POINTS = 20
VENUE_POINTS = 20
TOTAL_POINTS = TITLE_POINTS + DATE_POINTS + TIME_POINTS + VENUE_POINTS


class EventLike(Protocol):
    title: str
    start_date: date
    start_time: Optional[time]
    venue_name: Optional[str]


def _contains_either(a: str, b: str) -> bool:
    return bool(a) and bool(b) and (a in b or b in a)


def title_points(a: str, b: str) -> int:
    a, b = (a or "").strip().lower(), (b or "").strip().lower()
    if a == b:
        return TITLE_POINTS
    if _contains_either(a, b):
        return 20
    overlap = len(set(a.split()) & set(b.split()))
    return min(15, overlap * 5)


def date_points(a: Optional[date], b: Optional[date]) -> int:
    # No partial credit: a weekly class is not its own duplicate.
    return DATE_POINTS if a is not None and a == b else 0


def time_points(a: Optional[time], b: Optional[time]) -> int:
    if a is None and b is None:
        return TIME_POINTS
    if a is None or b is None:
        return 0
    diff = abs(minutes_since_midnight(a) - minutes_since_midnight(b))
    if diff == 0:
        return TIME_POINTS
    if diff <= 30:
        return 15
    if diff <= 60:
        return 10
    return 0


def venue_points(a: Optional[str], b: Optional[str]) -> int:
    a, b = (a or "").strip().lower(), (b or "").strip().lower()
    if a == b:
        return VENUE_POINTS
    if _contains_either(a, b):
        return 15
    return 0


def similarity(a: EventLike, b: EventLike) -> float:
    """Return a symmetric similarity in [0, 1].

    Each dimension awards an absolute point budget (title 30, date 30,
    time 20, venue 20) and the total is divided by 100. Time and venue
    score in full when absent on both sides and zero when absent on one.
    """
    points = (
        title_points(a.title, b.title)
        + date_points(a.start_date, b.start_date)
        + time_points(a.start_time, b.start_time)
        + venue_points(a.venue_name, b.venue_name)
    )
    return points / TOTAL_POINTS

"""Cheap checks that bracket an LLM extraction.

Before extraction, :func:`has_event_signals` decides whether a page looks
like it lists scheduled events at all. After extraction,
:func:`verify_against_source` keeps only events whose title and date or time
can actually be found in the page text.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, time

from ingest.schemas import CandidateEvent

_MONTH = r"(?:jan|feb|mar|apr|may|jun|jul|aug|sep|oct|nov|dec)"

DATE_PATTERNS = [
    re.compile(rf"\b{_MONTH}[a-z]*\.?\s+\d{{1,2}}", re.IGNORECASE),
    re.compile(rf"\b\d{{1,2}}\s+{_MONTH}[a-z]*", re.IGNORECASE),
    re.compile(r"\b\d{4}-\d{2}-\d{2}\b"),
    re.compile(r"\b\d{1,2}/\d{1,2}/\d{2,4}\b"),
    re.compile(rf"\b(?:monday|tuesday|wednesday|thursday|friday|saturday|sunday),?\s+{_MONTH}", re.IGNORECASE),
    re.compile(rf"\b(?:mon|tue|wed|thu|fri|sat|sun),?\s+{_MONTH}", re.IGNORECASE),
]

TIME_PATTERNS = [
    re.compile(r"\b\d{1,2}:\d{2}\s*(?:am|pm)\b", re.IGNORECASE),
    re.compile(r"\b\d{1,2}:\d{2}\s*-\s*\d{1,2}:\d{2}\b"),
    re.compile(r"\b\d{1,2}\s*(?:am|pm)\b", re.IGNORECASE),
]

EVENT_KEYWORDS = [
    re.compile(r"\b(?:register|registration|sign\s*up|book\s*now|tickets?|rsvp)\b", re.IGNORECASE),
    re.compile(r"\b(?:class(?:es)?|workshop|seminar|course|lesson|session)\b", re.IGNORECASE),
    re.compile(r"\b(?:schedule|calendar|upcoming|events?)\b", re.IGNORECASE),
    re.compile(r"\b(?:instructor|teacher|facilitator|led\s+by|hosted\s+by)\b", re.IGNORECASE),
    re.compile(r"\b(?:drop[\s-]?in|members?\s+only|all\s+levels?|beginner|intermediate|advanced)\b", re.IGNORECASE),
    re.compile(r"\b(?:weekly|daily|every\s+(?:monday|tuesday|wednesday|thursday|friday|saturday|sunday))\b", re.IGNORECASE),
]

SIGNAL_THRESHOLD = 3
TITLE_WORD_MATCH_RATIO = 0.8

_MONTH_NAMES = [
    "january", "february", "march", "april", "may", "june",
    "july", "august", "september", "october", "november", "december",
]


@dataclass
class PageSignals:
    has_signals: bool
    score: int
    details: list[str] = field(default_factory=list)


@dataclass
class SourceCheck:
    title_found: bool
    date_found: bool
    time_found: bool


@dataclass
class RejectedEvent:
    event: CandidateEvent
    reason: str
    checks: SourceCheck | None = None


def _points(count: int) -> int:
    if count >= 3:
        return 2
    if count >= 1:
        return 1
    return 0


def has_event_signals(page_text: str | None) -> PageSignals:
    """Score a page for date, time and event-keyword evidence (0-6 points)."""
    if not page_text or len(page_text) < 50:
        return PageSignals(False, 0, ["Page text too short"])

    details: list[str] = []
    date_count = sum(len(p.findall(page_text)) for p in DATE_PATTERNS)
    time_count = sum(len(p.findall(page_text)) for p in TIME_PATTERNS)
    keyword_count = sum(1 for p in EVENT_KEYWORDS if p.search(page_text))

    score = _points(date_count) + _points(time_count) + _points(keyword_count)
    if date_count:
        details.append(f"{date_count} date pattern(s) found")
    if time_count:
        details.append(f"{time_count} time pattern(s) found")
    if keyword_count:
        details.append(f"{keyword_count} event keyword(s) matched")

    has_signals = score >= SIGNAL_THRESHOLD
    if not has_signals:
        details.append(f"Score {score}/{SIGNAL_THRESHOLD} - below threshold")
    return PageSignals(has_signals, score, details)


def normalize_text(text: str) -> str:
    text = text.lower()
    text = re.sub(r"[‘’“”]", "'", text)
    return re.sub(r"\s+", " ", text).strip()


def title_in_source(title: str, normalized_page: str) -> bool:
    normalized_title = normalize_text(title)
    if normalized_title and normalized_title in normalized_page:
        return True
    words = [w for w in normalized_title.split() if len(w) > 2]
    if not words:
        return False
    found = sum(1 for w in words if w in normalized_page)
    return found / len(words) >= TITLE_WORD_MATCH_RATIO


def date_in_source(day: date | None, normalized_page: str) -> bool:
    if day is None:
        return False
    month = _MONTH_NAMES[day.month - 1]
    short = month[:3]
    formats = [
        f"{month} {day.day}",
        f"{short} {day.day}",
        f"{day.day} {month}",
        f"{day.day} {short}",
        f"{day.month}/{day.day}",
        f"{day.month:02d}/{day.day:02d}",
        day.isoformat(),
    ]
    return any(fmt in normalized_page for fmt in formats)


def time_in_source(start: time | None, normalized_page: str) -> bool:
    if start is None:
        return False
    minute = f"{start.minute:02d}"
    if f"{start.hour}:{minute}" in normalized_page or f"{start.hour:02d}:{minute}" in normalized_page:
        return True
    meridiem = "pm" if start.hour >= 12 else "am"
    hour12 = start.hour % 12 or 12
    formats = [f"{hour12}:{minute} {meridiem}", f"{hour12}:{minute}{meridiem}"]
    if start.minute == 0:
        formats += [f"{hour12} {meridiem}", f"{hour12}{meridiem}"]
    return any(fmt in normalized_page for fmt in formats)


def verify_against_source(
    events: list[CandidateEvent], page_text: str
) -> tuple[list[CandidateEvent], list[RejectedEvent]]:
    """Keep events whose title, and date or time, appear in ``page_text``."""
    normalized_page = normalize_text(page_text)
    verified: list[CandidateEvent] = []
    rejected: list[RejectedEvent] = []

    for event in events:
        checks = SourceCheck(
            title_found=title_in_source(event.title, normalized_page),
            date_found=date_in_source(event.start_date, normalized_page),
            time_found=time_in_source(event.start_time, normalized_page),
        )
        if not checks.title_found:
            rejected.append(RejectedEvent(event, f'Title "{event.title}" not found in page text', checks))
        elif not (checks.date_found or checks.time_found):
            rejected.append(RejectedEvent(event, "Neither date nor time found in page text", checks))
        else:
            verified.append(event)

    return verified, rejected

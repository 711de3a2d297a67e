"""Rule-based checks applied to extracted events before they are emitted."""

import logging
import re
from collections import defaultdict
from typing import Dict, List, Optional, Tuple

from ingest.schemas import CandidateEvent

logger = logging.getLogger(__name__)

# Service/navigation text that should never become an event title
FORBIDDEN_TITLE_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"^work with us$",
        r"^our (professional )?team$",
        r"^contact us$",
        r"^about( us)?$",
        r"^register for programs?$",
        r"^(legal )?advocacy$",
        r"^child care$",
        r"^housing services?$",
        r"^workshop description$",
        r"^counselling$",
        r"^senior'?s? services?$",
        r"^family and parenting$",
        r"^adult programs?$",
        r"^our services?$",
        r"^online coaching$",
        r"^scheduled live event$",
    )
]

# Generic titles a model tends to invent when a page has no real schedule
AI_HALLUCINATION_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"^(morning|evening|weekend|daily)\s+(yoga|fitness|workout|exercise)$",
        r"^(yoga|pilates|zumba|spin|hiit)\s+(class|session)$",
        r"^(beginner|intermediate|advanced)\s+(class|session|workshop)$",
        r"^(group|private|personal)\s+(training|session|class)$",
        r"^open\s+(gym|studio|mat|swim)$",
        r"^free\s+(trial|class|session|consultation)$",
        r"^(kids|children'?s?|youth|teen)\s+(program|class|camp)$",
        r"^(happy hour|lunch special|dinner special|daily special)$",
        r"^(grand opening|now open|coming soon|new location)$",
        r"^(haircut|manicure|pedicure|facial|massage)\s*(special)?$",
    )
]

# holiday keyword -> (allowed months, allowed day range)
HOLIDAY_RULES: Dict[str, Tuple[Tuple[int, ...], Tuple[int, int]]] = {
    "christmas": ((12,), (1, 31)),
    "new year's day": ((1,), (1, 1)),
    "new years day": ((1,), (1, 1)),
    "boxing day": ((12,), (26, 26)),
    "halloween": ((10,), (1, 31)),
    "thanksgiving": ((10,), (1, 31)),
    "valentine": ((2,), (1, 29)),
    "easter": ((3, 4), (1, 30)),
    "st patrick": ((3,), (17, 17)),
    "canada day": ((7,), (1, 1)),
    "remembrance day": ((11,), (11, 11)),
}

PLACEHOLDER_TIMES = {"00:00", "09:00", "12:00"}
EARLY_HOURS_CATEGORIES = {"fitness", "yoga", "wellness", "sports", "kids"}
EARLIEST_PLAUSIBLE_HOUR = 5
MAX_EVENTS_PER_SLOT = 3


def title_equals_venue(event: CandidateEvent, known_venue: Optional[str] = None) -> bool:
    """True when the title repeats the record's venue or the page's known venue."""
    title = event.title.strip().lower()
    venues = (event.venue_name, known_venue)
    return any(venue and title == venue.strip().lower() for venue in venues)


def exclusion_reason(event: CandidateEvent, known_venue: Optional[str] = None) -> Optional[str]:
    """Return why ``event`` is a mis-extraction, or ``None`` if it is plausible.

    Excluded records are dropped entirely rather than flagged.
    """
    if title_equals_venue(event, known_venue):
        return f'Title equals venue name: "{event.title}"'
    for pattern in FORBIDDEN_TITLE_PATTERNS:
        if pattern.search(event.title):
            return f'Navigation or service text: "{event.title}"'
    return None


def hallucination_reason(event: CandidateEvent) -> Optional[str]:
    """Stricter title check for model-extracted events."""
    title = event.title.strip()
    for pattern in AI_HALLUCINATION_PATTERNS:
        if pattern.search(title):
            return f'Title matches a generic pattern: "{title}"'
    if len(title.split()) == 1 and len(title) < 10:
        return f'Title too generic (single short word): "{title}"'
    return None


def holiday_mismatch(event: CandidateEvent) -> Optional[str]:
    title = event.title.lower()
    month, day = event.start_date.month, event.start_date.day
    for holiday, (months, (first, last)) in HOLIDAY_RULES.items():
        if holiday in title and not (month in months and first <= day <= last):
            return f"{holiday.title()} event dated {event.start_date.isoformat()}"
    return None


def plausibility_flag(event: CandidateEvent) -> Optional[str]:
    """Return a suspicion note for an implausible date or time, if any."""
    mismatch = holiday_mismatch(event)
    if mismatch:
        return mismatch
    if (
        event.start_time is not None
        and event.category in EARLY_HOURS_CATEGORIES
        and event.start_time.hour < EARLIEST_PLAUSIBLE_HOUR
    ):
        return (
            f"{event.category.capitalize()} event starting at "
            f"{event.start_time.strftime('%H:%M')}"
        )
    return None


def needs_time_review(event: CandidateEvent) -> bool:
    """True when the start time looks like a scraper default rather than data."""
    if event.start_time is None:
        return False
    return event.start_time.strftime("%H:%M") in PLACEHOLDER_TIMES and event.start_time.second == 0


def detect_clustering(
    events: List[CandidateEvent], max_per_slot: int = MAX_EVENTS_PER_SLOT
) -> Tuple[List[CandidateEvent], List[CandidateEvent]]:
    """Split events into (clean, suspicious) by date/time/venue slot crowding."""
    slots: Dict[tuple, List[CandidateEvent]] = defaultdict(list)
    for event in events:
        slots[(event.start_date, event.start_time, (event.venue_name or "").lower())].append(event)

    clean: List[CandidateEvent] = []
    suspicious: List[CandidateEvent] = []
    for key, members in slots.items():
        if len(members) > max_per_slot:
            logger.warning("Suspicious clustering: %d events at %s", len(members), key)
            suspicious.extend(members)
        else:
            clean.extend(members)
    return clean, suspicious

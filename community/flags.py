"""User flags against published events."""
from __future__ import annotations

import logging
from typing import Optional

from ingest.event_store import EventStore
from ingest.schemas import EventFlag, EventStatus, IssueType
from verification.settings import VerificationSettings

logger = logging.getLogger(__name__)


def flag_event(
    store: EventStore,
    event_id: str,
    user_id: str,
    issue_type: str,
    description: str = "",
    settings: Optional[VerificationSettings] = None,
) -> EventFlag:
    """Record a user-reported issue and hide the event once enough pile up.

    When the event reaches ``flag_threshold`` pending flags its status becomes
    ``flagged``, which removes it from default listings until an admin looks
    at it. Flags are never deleted here.
    """
    settings = settings or VerificationSettings()
    try:
        issue = IssueType(issue_type)
    except ValueError:
        raise ValueError(f"Invalid issue type: {issue_type!r}") from None

    event = store.get_event(event_id)
    if event is None:
        raise LookupError(f"Event {event_id} not found")

    flag = store.add_flag(
        EventFlag(event_id=event_id, user_id=user_id, issue_type=issue, description=description or "")
    )

    pending = store.count_pending_flags(event_id)
    if pending >= settings.flag_threshold and event.status == EventStatus.ACTIVE:
        store.set_event_status(event_id, EventStatus.FLAGGED)
        logger.warning("Event %s flagged for review after %d pending reports", event_id, pending)
    return flag

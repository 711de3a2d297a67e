"""Shared data models for the verification service."""
from __future__ import annotations

from datetime import date, datetime, time, timezone
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from scrapers.utils import parse_time_of_day


class SourceKind(str, Enum):
    """Provenance tier of a source tag."""

    VENDOR_API = "vendor_api"
    WIDGET = "widget"
    OFFICIAL = "official"
    AGGREGATOR = "aggregator"
    WEB_SCRAPE = "web_scrape"
    COMMUNITY_VERIFIED = "community_verified"
    COMMUNITY_UNVERIFIED = "community_unverified"
    UNKNOWN = "unknown"


class EventStatus(str, Enum):
    ACTIVE = "active"
    FLAGGED = "flagged"
    ARCHIVED = "archived"


class SubmissionStatus(str, Enum):
    RECEIVED = "received"
    APPROVED = "approved"
    REVIEW = "review"
    REJECTED = "rejected"
    ERROR = "error"


class IssueType(str, Enum):
    WRONG_DATE = "wrong_date"
    WRONG_TIME = "wrong_time"
    WRONG_LOCATION = "wrong_location"
    CANCELLED = "cancelled"
    DUPLICATE = "duplicate"
    SPAM = "spam"
    OTHER = "other"


class FlagStatus(str, Enum):
    PENDING = "pending"
    RESOLVED = "resolved"
    DISMISSED = "dismissed"


AI_CORRECTED = "ai-corrected"
MULTI_SOURCE_VERIFIED = "multi-source-verified"

# Fields an LLM correction may override.
CORRECTABLE_FIELDS = (
    "title",
    "start_date",
    "start_time",
    "end_time",
    "venue_name",
    "venue_address",
    "price",
    "category",
    "description",
    "instructor",
    "image_url",
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CandidateEvent(BaseModel):
    """Unverified event record from an extraction or a community submission."""

    model_config = ConfigDict(frozen=True)

    title: str = Field(min_length=1)
    start_date: date
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    venue_name: Optional[str] = None
    venue_address: Optional[str] = None
    price: Optional[Union[float, str]] = None
    category: str = "other"
    description: Optional[str] = None
    instructor: Optional[str] = None
    image_url: Optional[str] = None
    source_url: Optional[str] = None
    source_tag: str = "unknown"
    confidence_hint: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    flag: Optional[str] = None
    annotations: tuple[str, ...] = ()
    merged_from: tuple[str, ...] = ()
    merge_notes: Optional[str] = None

    @field_validator("title")
    @classmethod
    def _strip_title(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("title must not be blank")
        return value

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def _coerce_time(cls, value: Any) -> Any:
        if isinstance(value, str):
            return parse_time_of_day(value)
        return value

    @field_validator("category", mode="before")
    @classmethod
    def _default_category(cls, value: Any) -> Any:
        return value or "other"

    @field_validator("source_tag", mode="before")
    @classmethod
    def _default_source(cls, value: Any) -> Any:
        return value or "unknown"

    def annotate(self, note: str) -> "CandidateEvent":
        """Return a copy with ``note`` appended to the provenance annotations."""
        if note in self.annotations:
            return self
        return self.model_copy(update={"annotations": self.annotations + (note,)})

    def with_corrections(self, fixes: dict[str, Any], note: str = AI_CORRECTED) -> "CandidateEvent":
        """Return a new record with ``fixes`` applied and ``note`` recorded.

        Unknown keys and empty values are ignored. If nothing applicable
        remains the original record is returned unchanged.
        """
        applicable = {
            key: value
            for key, value in (fixes or {}).items()
            if key in CORRECTABLE_FIELDS and value not in (None, "")
        }
        if not applicable:
            return self
        data = self.model_dump()
        data.update(applicable)
        corrected = type(self).model_validate(data)
        return corrected.annotate(note)


class VerificationSource(BaseModel):
    """One corroborating match recorded at verification time."""

    model_config = ConfigDict(frozen=True)

    event_id: Optional[str] = None
    source_tag: str
    similarity: float
    trust: float


class StoredEvent(CandidateEvent):
    """A candidate that has an identity in the event store."""

    id: str
    status: EventStatus = EventStatus.ACTIVE
    confidence_score: Optional[float] = None
    verified_at: Optional[datetime] = None
    verification_sources: tuple[VerificationSource, ...] = ()
    community_submission_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)

    @property
    def tags(self) -> list[str]:
        """Provenance and category labels, in a stable order."""
        labels = [self.source_tag, self.category, *self.annotations]
        return list(dict.fromkeys(label for label in labels if label))

    def candidate(self) -> CandidateEvent:
        """Return the record without its store identity."""
        return CandidateEvent.model_validate(
            self.model_dump(include=set(CandidateEvent.model_fields))
        )


class MatchResult(BaseModel):
    """Transient pairing of an event with a similar stored event."""

    model_config = ConfigDict(frozen=True)

    candidate: CandidateEvent
    matched: StoredEvent
    similarity: float


class CommunitySubmission(BaseModel):
    """A user-submitted event plus its moderation metadata."""

    model_config = ConfigDict(frozen=True)

    id: Optional[str] = None
    user_id: str
    event: CandidateEvent
    status: SubmissionStatus = SubmissionStatus.RECEIVED
    ai_confidence: Optional[float] = None
    ai_reasoning: Optional[str] = None
    ai_issues: tuple[str, ...] = ()
    reason: Optional[str] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    event_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)


class EventFlag(BaseModel):
    """A user-reported problem with a stored event."""

    model_config = ConfigDict(frozen=True)

    id: Optional[str] = None
    event_id: str
    user_id: str
    issue_type: IssueType
    description: str = ""
    status: FlagStatus = FlagStatus.PENDING
    created_at: datetime = Field(default_factory=utc_now)

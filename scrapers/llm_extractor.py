"""Extract, validate and reconcile events through an LLM completion backend."""
from __future__ import annotations

import json
import logging
import time as time_module
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, List, Optional

from bs4 import BeautifulSoup
from pydantic import BaseModel, Field, ValidationError, field_validator

from ingest.schemas import CandidateEvent, StoredEvent
from .event_validator import (
    detect_clustering,
    exclusion_reason,
    hallucination_reason,
    needs_time_review,
    plausibility_flag,
)
from .llm_backend import CompletionBackend, OpenAIBackend
from .page_signals import RejectedEvent, has_event_signals, verify_against_source
from .utils import extract_json_object, infer_event_date, parse_time_of_day

logger = logging.getLogger(__name__)

MAX_PAGE_CHARS = 15000
MAX_NEARBY_EVENTS = 10
PARSE_FAILED = "Parse failed"
CATEGORIES = (
    "fitness", "yoga", "art", "music", "community", "kids",
    "sports", "wellness", "education", "other",
)

EXTRACTION_PROMPT = """You are an expert at extracting event information from webpages.

Extract ALL events, classes, or scheduled activities from this webpage content.
Today is {today}.

SOURCE URL: {source_url}
{venue_line}
WEBPAGE CONTENT:
{content}

For each event found, extract:
- title: The event/class name (NOT the venue name, NOT navigation text)
- date: In YYYY-MM-DD format (if the year is not stated, use the next upcoming occurrence)
- time: In HH:MM format (24-hour)
- end_time: If available
- venue_name: If the page names a specific venue or room
- description: Brief description
- price: If mentioned (just the number or "Free")
- instructor: If mentioned
- category: One of: {categories}

CRITICAL VALIDATION:
- Skip navigation items like "Contact Us", "About", "Our Team"
- Skip service descriptions that aren't scheduled events
- Skip if title equals the venue name (that's not an event)
- Only include items that have a specific date
- If a date or time seems wrong for the event (Christmas event in February, yoga at 3am), flag it

Return JSON only:
{{
  "events": [
    {{
      "title": "...",
      "date": "YYYY-MM-DD",
      "time": "HH:MM",
      "end_time": "HH:MM" or null,
      "venue_name": "..." or null,
      "description": "...",
      "price": "..." or null,
      "instructor": "..." or null,
      "category": "...",
      "confidence": 0.0-1.0,
      "flag": "reason if suspicious" or null
    }}
  ],
  "extraction_notes": "Any issues or uncertainties"
}}"""

VERIFIED_EXTRACTION_PROMPT = """You are extracting events from a business webpage.

CRITICAL RULES:
- ONLY extract events/classes/workshops that are EXPLICITLY listed on the page with specific dates and times.
- If the page has NO scheduled events, return {{"events": []}}.
- DO NOT invent any events.
- DO NOT create events from service descriptions, menu items, or business hours.
- For each event, provide a "source_quote": the EXACT text from the page that contains the event title.

Business: "{business_name}"
Page URL: {page_url}
Today's date: {today}

PAGE TEXT:
---
{content}
---

Return JSON only:
{{
  "events": [
    {{
      "title": "exact event title from the page",
      "date": "YYYY-MM-DD",
      "time": "HH:MM (24-hour)",
      "end_time": "HH:MM or null",
      "description": "brief description from page",
      "source_quote": "the exact phrase from the page containing this event title"
    }}
  ]
}}"""

VALIDATION_PROMPT = """Validate this event data for a local community events app.

EVENT:
{event}

EXISTING EVENTS NEARBY (check for duplicates):
{existing}

Check for:
1. Is this a real event or website navigation/service text?
2. Does the date make sense for the event name? (Christmas should be December)
3. Does the time make sense? (yoga at 3am is suspicious)
4. Is the price reasonable for this type of event?
5. Is this a duplicate of an existing event? If so give its id.
6. Is the title descriptive (not just the venue name)?

Return JSON only:
{{
  "is_valid": true/false,
  "confidence": 0.0-1.0,
  "issues": ["list of issues"] or [],
  "suggested_fixes": {{"field": "corrected_value"}} or {{}},
  "is_duplicate_of": "event_id" or null,
  "reasoning": "brief explanation"
}}"""

MERGE_PROMPT = """Merge these duplicate event records into one authoritative record.
Keep the most accurate/complete data from each source.

EVENTS TO MERGE:
{events}

Return JSON only:
{{
  "merged_event": {{
    "title": "best title",
    "description": "most complete description",
    "start_date": "YYYY-MM-DD",
    "start_time": "HH:MM",
    "end_time": "HH:MM or null",
    "venue_name": "...",
    "venue_address": "...",
    "price": "...",
    "category": "...",
    "image_url": "best image or null"
  }},
  "source_ids": ["list of merged event ids"],
  "merge_notes": "what was combined/chosen"
}}"""


@dataclass
class ExtractionResult:
    events: List[CandidateEvent] = field(default_factory=list)
    notes: str = ""


@dataclass
class VerifiedExtraction:
    verified: List[CandidateEvent] = field(default_factory=list)
    rejected: List[RejectedEvent] = field(default_factory=list)
    raw: List[dict] = field(default_factory=list)
    skipped_reason: Optional[str] = None


class ValidationResult(BaseModel):
    """Single-record verdict from the validation backend."""

    is_valid: bool = True
    confidence: float = 0.5
    issues: List[str] = Field(default_factory=list)
    suggested_fixes: dict[str, Any] = Field(default_factory=dict)
    is_duplicate_of: Optional[str] = None
    reasoning: str = ""
    inconclusive: bool = False

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: Any) -> float:
        return min(1.0, max(0.0, float(value)))

    @field_validator("is_duplicate_of", mode="before")
    @classmethod
    def _normalize_duplicate(cls, value: Any) -> Optional[str]:
        if value in (None, "", "null", "none", False):
            return None
        return str(value)

    @field_validator("issues", mode="before")
    @classmethod
    def _listify_issues(cls, value: Any) -> List[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return [str(v) for v in value]

    @field_validator("suggested_fixes", mode="before")
    @classmethod
    def _dict_fixes(cls, value: Any) -> dict:
        return value if isinstance(value, dict) else {}

    @classmethod
    def fallback(cls) -> "ValidationResult":
        """Neutral verdict used when validation could not run; routes to review."""
        return cls(
            is_valid=True,
            confidence=0.5,
            issues=["Validation failed"],
            reasoning="Parse error",
            inconclusive=True,
        )


class ReconciliationResult(BaseModel):
    merged_event: dict[str, Any]
    source_ids: List[str] = Field(default_factory=list)
    merge_notes: str = ""

    @field_validator("source_ids", mode="before")
    @classmethod
    def _stringify_ids(cls, value: Any) -> List[str]:
        return [str(v) for v in (value or [])]


@dataclass
class BatchValidation:
    event: CandidateEvent
    validation: ValidationResult
    action: str


_default_backend: Optional[CompletionBackend] = None


def default_backend() -> CompletionBackend:
    global _default_backend
    if _default_backend is None:
        _default_backend = OpenAIBackend()
    return _default_backend


def page_to_text(content: str) -> str:
    """Return visible text for HTML input; plain text passes through."""
    if "<" not in content or ">" not in content:
        return content
    soup = BeautifulSoup(content, "html.parser")
    for tag in soup(["script", "style", "noscript", "nav", "header", "footer"]):
        tag.decompose()
    return soup.get_text("\n", strip=True)


def _clamp_hint(value: Any) -> Optional[float]:
    try:
        return min(1.0, max(0.0, float(value)))
    except (TypeError, ValueError):
        return None


def _safe_time(value: Any):
    if value is None or not isinstance(value, str):
        return None
    try:
        return parse_time_of_day(value)
    except ValueError:
        logger.debug("Dropping unparseable time %r", value)
        return None


def _to_candidate(
    raw: dict,
    *,
    source_url: str,
    source_tag: str,
    venue_name: Optional[str],
    today: date,
) -> Optional[CandidateEvent]:
    """Build a CandidateEvent from one extracted record, or ``None``."""
    title = (raw.get("title") or "").strip() if isinstance(raw.get("title"), str) else ""
    start_date = infer_event_date(raw.get("date") or raw.get("start_date"), today)
    if not title or start_date is None:
        return None

    category = str(raw.get("category") or "other").lower()
    if category not in CATEGORIES:
        category = "other"

    try:
        return CandidateEvent(
            title=title,
            start_date=start_date,
            start_time=_safe_time(raw.get("time") or raw.get("start_time")),
            end_time=_safe_time(raw.get("end_time")),
            venue_name=raw.get("venue_name") or venue_name,
            description=raw.get("description") or None,
            price=raw.get("price"),
            instructor=raw.get("instructor") or None,
            category=category,
            source_url=source_url,
            source_tag=source_tag,
            confidence_hint=_clamp_hint(raw.get("confidence")),
            flag=raw.get("flag") or None,
        )
    except ValidationError as exc:
        logger.debug("Discarding extracted record %r: %s", title, exc)
        return None


def _finalize(event: CandidateEvent) -> CandidateEvent:
    """Apply deterministic plausibility checks to an accepted record."""
    if not event.flag:
        flag = plausibility_flag(event)
        if flag:
            event = event.model_copy(update={"flag": flag})
    if needs_time_review(event):
        event = event.annotate("needs-time-review")
    return event


def _call_backend(backend: CompletionBackend, prompt: str, max_tokens: int) -> Optional[str]:
    try:
        return backend.complete(prompt, max_tokens=max_tokens)
    except Exception as exc:
        logger.warning("Extraction backend call failed: %s", exc)
        return None


def extract_events(
    content: str,
    source_url: str,
    venue_name: Optional[str] = None,
    *,
    source_tag: str = "unknown",
    backend: Optional[CompletionBackend] = None,
    today: Optional[date] = None,
) -> ExtractionResult:
    """Extract candidate events from raw page ``content``.

    Never raises: an unusable backend response yields an empty result with
    ``notes`` explaining why, which callers treat as a soft failure.
    """
    backend = backend or default_backend()
    today = today or date.today()
    text = page_to_text(content or "")[:MAX_PAGE_CHARS]

    prompt = EXTRACTION_PROMPT.format(
        today=today.isoformat(),
        source_url=source_url,
        venue_line=f"VENUE NAME: {venue_name}\n" if venue_name else "",
        content=text,
        categories=", ".join(CATEGORIES),
    )
    response = _call_backend(backend, prompt, max_tokens=4096)
    if response is None:
        return ExtractionResult([], "Extraction backend unavailable")

    payload = extract_json_object(response)
    if payload is None or not isinstance(payload.get("events", []), list):
        logger.info("Failed to parse extraction response for %s", source_url)
        return ExtractionResult([], PARSE_FAILED)

    notes = str(payload.get("extraction_notes") or "")
    accepted: List[CandidateEvent] = []
    dropped: List[str] = []
    for raw in payload.get("events", []):
        if not isinstance(raw, dict):
            continue
        event = _to_candidate(
            raw, source_url=source_url, source_tag=source_tag,
            venue_name=venue_name, today=today,
        )
        if event is None:
            dropped.append("missing title or date")
            continue
        reason = exclusion_reason(event, venue_name)
        if reason:
            dropped.append(reason)
            continue
        accepted.append(_finalize(event))

    _, suspicious = detect_clustering(accepted)
    if suspicious:
        crowded = {id(e) for e in suspicious}
        accepted = [
            e.model_copy(update={"flag": "Suspicious clustering at the same slot"})
            if id(e) in crowded and not e.flag else e
            for e in accepted
        ]

    if dropped:
        logger.info("Dropped %d extracted record(s) from %s: %s", len(dropped), source_url, "; ".join(dropped))
    logger.info("Extracted %d event(s) from %s", len(accepted), source_url)
    return ExtractionResult(accepted, notes)


def _event_payload(event: CandidateEvent) -> dict:
    data = event.model_dump(
        mode="json",
        exclude={"annotations", "merged_from", "merge_notes", "confidence_hint"},
        exclude_none=True,
    )
    if isinstance(event, StoredEvent):
        data = {"id": event.id, **{k: v for k, v in data.items() if k in CandidateEvent.model_fields}}
    return data


def validate_event(
    event: CandidateEvent,
    nearby: Optional[List[CandidateEvent]] = None,
    *,
    backend: Optional[CompletionBackend] = None,
) -> ValidationResult:
    """Ask the backend whether ``event`` is real, plausible and not a duplicate.

    Any failure returns :meth:`ValidationResult.fallback`.
    """
    backend = backend or default_backend()
    existing = [_event_payload(e) for e in (nearby or [])[:MAX_NEARBY_EVENTS]]
    prompt = VALIDATION_PROMPT.format(
        event=json.dumps(_event_payload(event), indent=2),
        existing=json.dumps(existing, indent=2),
    )
    response = _call_backend(backend, prompt, max_tokens=1024)
    payload = extract_json_object(response)
    if payload is None:
        logger.info("Validation inconclusive for %r", event.title)
        return ValidationResult.fallback()
    payload.pop("inconclusive", None)
    try:
        return ValidationResult.model_validate(payload)
    except (ValidationError, TypeError, ValueError) as exc:
        logger.info("Validation payload rejected for %r: %s", event.title, exc)
        return ValidationResult.fallback()


def validate_event_batch(
    events: List[CandidateEvent],
    existing: Optional[List[CandidateEvent]] = None,
    *,
    backend: Optional[CompletionBackend] = None,
    delay: float = 0.5,
    sleep: Callable[[float], None] = time_module.sleep,
) -> List[BatchValidation]:
    """Validate events one at a time, feeding accepted ones into the duplicate pool."""
    pool = list(existing or [])
    results: List[BatchValidation] = []
    for index, event in enumerate(events):
        validation = validate_event(event, pool, backend=backend)
        if validation.is_valid and validation.confidence > 0.7:
            action = "insert"
        elif validation.confidence > 0.4:
            action = "review"
        else:
            action = "reject"
        results.append(BatchValidation(event, validation, action))
        if validation.is_valid:
            pool.append(event)
        if delay and index < len(events) - 1:
            sleep(delay)
    return results


def reconcile_events(
    events: List[CandidateEvent],
    *,
    backend: Optional[CompletionBackend] = None,
) -> Optional[ReconciliationResult]:
    """Ask the backend to pick the best value per field across duplicates."""
    backend = backend or default_backend()
    prompt = MERGE_PROMPT.format(events=json.dumps([_event_payload(e) for e in events], indent=2))
    response = _call_backend(backend, prompt, max_tokens=2048)
    payload = extract_json_object(response)
    if payload is None or not isinstance(payload.get("merged_event"), dict):
        return None
    try:
        return ReconciliationResult.model_validate(payload)
    except ValidationError as exc:
        logger.info("Merge payload rejected: %s", exc)
        return None


def extract_and_verify(
    page_text: str,
    business_name: str,
    page_url: str,
    *,
    source_tag: str = "unknown",
    backend: Optional[CompletionBackend] = None,
    today: Optional[date] = None,
) -> VerifiedExtraction:
    """Extraction guarded by a signal pre-check and a source-text post-check.

    Every returned event has its title, and its date or time, present in
    ``page_text``.
    """
    text = page_to_text(page_text or "")
    signals = has_event_signals(text)
    if not signals.has_signals:
        return VerifiedExtraction(
            skipped_reason=f"No event signals (score: {signals.score}): {', '.join(signals.details)}"
        )

    backend = backend or default_backend()
    today = today or date.today()
    prompt = VERIFIED_EXTRACTION_PROMPT.format(
        business_name=business_name,
        page_url=page_url,
        today=today.isoformat(),
        content=text[:MAX_PAGE_CHARS],
    )
    response = _call_backend(backend, prompt, max_tokens=4096)
    if response is None:
        return VerifiedExtraction(skipped_reason="AI extraction failed")
    payload = extract_json_object(response)
    if payload is None:
        return VerifiedExtraction(skipped_reason=PARSE_FAILED)

    raw_events = [r for r in payload.get("events") or [] if isinstance(r, dict)]
    candidates: List[CandidateEvent] = []
    rejected: List[RejectedEvent] = []
    for raw in raw_events:
        event = _to_candidate(
            raw, source_url=page_url, source_tag=source_tag,
            venue_name=business_name, today=today,
        )
        if event is None:
            continue
        reason = exclusion_reason(event, business_name) or hallucination_reason(event)
        if reason:
            rejected.append(RejectedEvent(event, reason))
            continue
        candidates.append(event)

    verified, not_found = verify_against_source(candidates, text)
    return VerifiedExtraction(
        verified=[_finalize(e) for e in verified],
        rejected=rejected + not_found,
        raw=raw_events,
    )

"""Community event submissions with AI-assisted moderation.

A submission moves through an explicit set of states::

    received -> approved | review | rejected | error   (automatic routing)
    error    -> approved | error                        (retry)
    review   -> approved | rejected                     (admin)
    error    -> approved | rejected                     (admin)

Approved and rejected are terminal. Only approved submissions own a
StoredEvent, and at most one per submission id.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, List, Optional

from pydantic import ValidationError

from ingest.event_store import EventStore, StoreError
from ingest.schemas import CandidateEvent, CommunitySubmission, SubmissionStatus, utc_now
from scrapers.llm_backend import CompletionBackend
from scrapers.llm_extractor import ValidationResult, validate_event
from verification.settings import VerificationSettings
from verification.trust import community_source_tag
from verification.verifier import Decision, decide

logger = logging.getLogger(__name__)

S = SubmissionStatus

AUTOMATIC_TRANSITIONS: Dict[SubmissionStatus, FrozenSet[SubmissionStatus]] = {
    S.RECEIVED: frozenset({S.APPROVED, S.REVIEW, S.REJECTED, S.ERROR}),
    S.ERROR: frozenset({S.APPROVED, S.ERROR}),
}

ADMIN_TRANSITIONS: Dict[SubmissionStatus, FrozenSet[SubmissionStatus]] = {
    S.REVIEW: frozenset({S.APPROVED, S.REJECTED}),
    S.ERROR: frozenset({S.APPROVED, S.REJECTED}),
}

_DECISION_STATUS = {
    Decision.AUTO_APPROVE: S.APPROVED,
    Decision.REVIEW: S.REVIEW,
    Decision.REJECT: S.REJECTED,
}


class SubmissionStateError(ValueError):
    """Raised for a transition the submission state machine does not allow."""


def _transition(
    submission: CommunitySubmission,
    target: SubmissionStatus,
    table: Dict[SubmissionStatus, FrozenSet[SubmissionStatus]],
    **changes: Any,
) -> CommunitySubmission:
    allowed = table.get(submission.status, frozenset())
    if target not in allowed:
        raise SubmissionStateError(
            f"Submission {submission.id} cannot move from {submission.status.value} to {target.value}"
        )
    return submission.model_copy(update={"status": target, **changes})


def route_validation(
    validation: ValidationResult, settings: VerificationSettings
) -> tuple[SubmissionStatus, str]:
    """Map a validation verdict to a submission status and a reason."""
    if validation.is_duplicate_of:
        return S.REJECTED, f"Duplicate of existing event {validation.is_duplicate_of}"
    if not validation.is_valid:
        return S.REJECTED, ", ".join(validation.issues) or "Failed validation"
    if validation.inconclusive:
        return S.REVIEW, "Needs manual review: validation inconclusive"

    status = _DECISION_STATUS[decide(validation.confidence, settings)]
    if status == S.APPROVED:
        return status, "Auto-approved: High confidence"
    if status == S.REVIEW:
        return status, "Needs manual review: " + (validation.issues[0] if validation.issues else "Medium confidence")
    return status, "Low confidence: " + (validation.reasoning or "no reasoning given")


def candidate_from_submission(event_data: Dict[str, Any], source_tag: str) -> CandidateEvent:
    """Build a CandidateEvent from a raw submission payload.

    Accepts the form's ``date``/``time`` keys as well as ``start_date``/
    ``start_time``. Raises ``ValueError`` when title or date is missing.
    """
    data = dict(event_data)
    data.setdefault("start_date", data.pop("date", None))
    data.setdefault("start_time", data.pop("time", None))
    if "price_description" in data:
        data.setdefault("price", data.pop("price_description"))
    fields = {k: v for k, v in data.items() if k in CandidateEvent.model_fields and v not in (None, "")}
    fields["source_tag"] = source_tag
    fields.pop("annotations", None)
    try:
        return CandidateEvent.model_validate(fields)
    except ValidationError as exc:
        raise ValueError(f"Invalid event data: {exc.errors()[0]['msg']}") from exc


@dataclass
class SubmissionOutcome:
    """What the submitter is told about their submission."""
    status: SubmissionStatus
    event: Optional[CandidateEvent]
    reason: str
    submission_id: Optional[str] = None
    event_id: Optional[str] = None


class SubmissionRouter:
    """Validates submissions and moves them through the moderation states."""

    def __init__(
        self,
        store: EventStore,
        backend: Optional[CompletionBackend] = None,
        settings: Optional[VerificationSettings] = None,
    ):
        self.store = store
        self.backend = backend
        self.settings = settings or VerificationSettings()

    def process_submission(self, event_data: Dict[str, Any], user_id: str) -> SubmissionOutcome:
        """Validate and route one community submission."""
        source_tag = community_source_tag(self.store.has_approved_submission(user_id))
        event = candidate_from_submission(event_data, source_tag)

        nearby = self.store.find_events_on(event.start_date, event.venue_name)
        validation = validate_event(event, nearby, backend=self.backend)
        status, reason = route_validation(validation, self.settings)
        try:
            event = event.with_corrections(validation.suggested_fixes)
        except ValidationError as exc:
            logger.warning("Ignoring unusable suggested fixes %s: %s", validation.suggested_fixes, exc)

        received = CommunitySubmission(
            user_id=user_id,
            event=event,
            ai_confidence=validation.confidence,
            ai_reasoning=validation.reasoning,
            ai_issues=tuple(validation.issues),
            reason=reason,
        )
        # Review and rejected are final for this pass; only approval needs a second write.
        initial = received if status == S.APPROVED else _transition(received, status, AUTOMATIC_TRANSITIONS)
        try:
            submission = self.store.add_submission(initial)
        except StoreError as exc:
            logger.error("Failed to store submission from %s: %s", user_id, exc)
            return SubmissionOutcome(S.ERROR, event, str(exc))

        logger.info("Submission %s from %s routed to %s (%s)", submission.id, user_id, status.value, reason)
        if status != S.APPROVED:
            return SubmissionOutcome(status, event, reason, submission.id)
        return self._publish(submission)

    def _publish(self, submission: CommunitySubmission, **changes: Any) -> SubmissionOutcome:
        """Insert the StoredEvent for ``submission`` and mark it approved."""
        approved = _transition(submission, S.APPROVED, AUTOMATIC_TRANSITIONS, **changes)
        try:
            stored = self.store.insert_event(
                submission.event,
                confidence_score=submission.ai_confidence,
                community_submission_id=submission.id,
            )
            approved = approved.model_copy(update={"event_id": stored.id})
            self.store.update_submission(approved)
        except StoreError as exc:
            logger.error("Failed to publish submission %s: %s", submission.id, exc)
            self._mark_error(submission, str(exc))
            return SubmissionOutcome(S.ERROR, submission.event, str(exc), submission.id)
        return SubmissionOutcome(S.APPROVED, submission.event, approved.reason or "Approved", submission.id, stored.id)

    def _mark_error(self, submission: CommunitySubmission, reason: str) -> None:
        try:
            self.store.update_submission(
                _transition(submission, S.ERROR, AUTOMATIC_TRANSITIONS, reason=reason)
            )
        except StoreError as exc:
            logger.error("Could not record error state for submission %s: %s", submission.id, exc)

    def _require(self, submission_id: str) -> CommunitySubmission:
        submission = self.store.get_submission(submission_id)
        if submission is None:
            raise LookupError(f"Submission {submission_id} not found")
        return submission

    def retry_submission(self, submission_id: str) -> SubmissionOutcome:
        """Re-attempt publishing an approved submission whose insert failed."""
        submission = self._require(submission_id)
        if submission.status not in (S.ERROR, S.RECEIVED):
            raise SubmissionStateError(f"Submission {submission_id} is {submission.status.value}, not retryable")
        return self._publish(submission, reason="Approved on retry")

    def get_pending_submissions(self, limit: int = 50) -> List[CommunitySubmission]:
        """Submissions awaiting admin review, newest first."""
        return self.store.list_submissions(S.REVIEW, limit)

    def approve_submission(self, submission_id: str, admin_id: str) -> SubmissionOutcome:
        """Admin approval; bypasses the confidence gate.

        Raises ``StoreError`` if the event cannot be stored.
        """
        submission = self._require(submission_id)
        _transition(submission, S.APPROVED, ADMIN_TRANSITIONS)
        stored = self.store.insert_event(
            submission.event,
            confidence_score=submission.ai_confidence,
            community_submission_id=submission.id,
        )
        approved = _transition(
            submission, S.APPROVED, ADMIN_TRANSITIONS,
            reviewed_by=admin_id, reviewed_at=utc_now(), event_id=stored.id,
            reason=f"Approved by {admin_id}",
        )
        self.store.update_submission(approved)
        logger.info("Submission %s approved by %s", submission_id, admin_id)
        return SubmissionOutcome(S.APPROVED, submission.event, approved.reason, submission.id, stored.id)

    def reject_submission(self, submission_id: str, admin_id: str, reason: str) -> SubmissionOutcome:
        """Admin rejection; no StoredEvent is created."""
        submission = self._require(submission_id)
        rejected = _transition(
            submission, S.REJECTED, ADMIN_TRANSITIONS,
            reviewed_by=admin_id, reviewed_at=utc_now(), rejection_reason=reason, reason=reason,
        )
        self.store.update_submission(rejected)
        logger.info("Submission %s rejected by %s: %s", submission_id, admin_id, reason)
        return SubmissionOutcome(S.REJECTED, submission.event, reason, submission.id)

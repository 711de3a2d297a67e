"""FastAPI application exposing event verification and moderation."""
import asyncio
import logging
import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException
from pydantic import BaseModel, Field

from community.flags import flag_event
from community.submissions import SubmissionOutcome, SubmissionRouter, SubmissionStateError
from ingest.api_client import ApiEventStore
from ingest.event_store import EventStore, InMemoryEventStore, StoreError
from ingest.schemas import CandidateEvent, CommunitySubmission, EventFlag
from scrapers.llm_backend import CompletionBackend, OpenAIBackend
from scrapers.llm_extractor import extract_events
from verification.settings import VerificationSettings
from verification.trust import SourceTrustTable
from verification.trust_feedback import TrustFeedbackLogger
from verification.verifier import VerificationResult, Verifier

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Community Event Verification API",
    description="Verify, moderate and merge community event listings",
    version="1.0.0",
)

# Thread pool for running blocking LLM and store calls
executor = ThreadPoolExecutor(max_workers=4)


@dataclass
class Services:
    store: EventStore
    backend: CompletionBackend
    settings: VerificationSettings
    trust_table: SourceTrustTable
    feedback: TrustFeedbackLogger

    @property
    def router(self) -> SubmissionRouter:
        return SubmissionRouter(self.store, self.backend, self.settings)

    @property
    def verifier(self) -> Verifier:
        return Verifier(self.store, self.trust_table, self.settings)


@lru_cache(maxsize=1)
def get_services() -> Services:
    """Build services from the environment; ``EVENT_STORE=memory`` for local runs."""
    store = InMemoryEventStore() if os.getenv("EVENT_STORE") == "memory" else ApiEventStore()
    return Services(
        store=store,
        backend=OpenAIBackend(),
        settings=VerificationSettings.from_env(),
        trust_table=SourceTrustTable.default(),
        feedback=TrustFeedbackLogger(),
    )


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str
    timestamp: str
    version: str


class ExtractRequest(BaseModel):
    content: str
    source_url: str
    venue_name: Optional[str] = None
    source_tag: str = "unknown"


class ExtractResponse(BaseModel):
    events: List[CandidateEvent]
    notes: str
    processing_time_seconds: float


class SubmissionRequest(BaseModel):
    user_id: str
    event_data: Dict[str, Any]


class SubmissionResponse(BaseModel):
    status: str
    reason: str
    submission_id: Optional[str] = None
    event_id: Optional[str] = None
    event: Optional[CandidateEvent] = None


class ApproveRequest(BaseModel):
    admin_id: str


class RejectRequest(BaseModel):
    admin_id: str
    reason: str = Field(min_length=1)


class FlagRequest(BaseModel):
    user_id: str
    issue_type: str
    description: str = ""


class FeedbackRequest(BaseModel):
    is_accurate: bool
    event_id: Optional[str] = None


class VerificationResponse(BaseModel):
    event_id: Optional[str]
    base_trust: float
    match_count: int
    corroboration_score: float
    final_confidence: float
    decision: str
    details: List[str]


def _outcome(outcome: SubmissionOutcome) -> SubmissionResponse:
    return SubmissionResponse(
        status=outcome.status.value,
        reason=outcome.reason,
        submission_id=outcome.submission_id,
        event_id=outcome.event_id,
        event=outcome.event,
    )


def _verification(result: VerificationResult) -> VerificationResponse:
    return VerificationResponse(
        event_id=result.event_id,
        base_trust=result.base_trust,
        match_count=result.match_count,
        corroboration_score=result.corroboration_score,
        final_confidence=result.final_confidence,
        decision=result.decision.value,
        details=result.details,
    )


async def _run(func, *args):
    loop = asyncio.get_event_loop()
    try:
        return await loop.run_in_executor(executor, func, *args)
    except SubmissionStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except StoreError as e:
        logger.error("Event store failure: %s", e)
        raise HTTPException(status_code=502, detail=f"Event store failure: {e}")
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc).isoformat(),
        version="1.0.0"
    )


@app.post("/extract", response_model=ExtractResponse)
async def extract(request: ExtractRequest, services: Services = Depends(get_services)):
    """Extract candidate events from raw page content."""
    start_time = datetime.now(timezone.utc)
    result = await _run(
        lambda: extract_events(
            request.content,
            request.source_url,
            request.venue_name,
            source_tag=request.source_tag,
            backend=services.backend,
        )
    )
    processing_time = (datetime.now(timezone.utc) - start_time).total_seconds()
    return ExtractResponse(events=result.events, notes=result.notes, processing_time_seconds=processing_time)


@app.post("/submissions", response_model=SubmissionResponse)
async def submit_event(request: SubmissionRequest, services: Services = Depends(get_services)):
    """Route a community submission: approved, review or rejected."""
    outcome = await _run(services.router.process_submission, request.event_data, request.user_id)
    return _outcome(outcome)


@app.get("/submissions/pending", response_model=List[CommunitySubmission])
async def pending_submissions(limit: int = 50, services: Services = Depends(get_services)):
    """Submissions awaiting admin review, newest first."""
    return await _run(services.router.get_pending_submissions, limit)


@app.post("/submissions/{submission_id}/approve", response_model=SubmissionResponse)
async def approve_submission(submission_id: str, request: ApproveRequest,
                             services: Services = Depends(get_services)):
    outcome = await _run(services.router.approve_submission, submission_id, request.admin_id)
    return _outcome(outcome)


@app.post("/submissions/{submission_id}/reject", response_model=SubmissionResponse)
async def reject_submission(submission_id: str, request: RejectRequest,
                            services: Services = Depends(get_services)):
    outcome = await _run(services.router.reject_submission, submission_id, request.admin_id, request.reason)
    return _outcome(outcome)


@app.post("/submissions/{submission_id}/retry", response_model=SubmissionResponse)
async def retry_submission(submission_id: str, services: Services = Depends(get_services)):
    outcome = await _run(services.router.retry_submission, submission_id)
    return _outcome(outcome)


@app.post("/events/{event_id}/verify", response_model=VerificationResponse)
async def verify_event(event_id: str, services: Services = Depends(get_services)):
    """Score one stored event without persisting the result."""
    event = await _run(services.store.get_event, event_id)
    if event is None:
        raise HTTPException(status_code=404, detail=f"Event {event_id} not found")
    result = await _run(services.verifier.verify, event)
    return _verification(result)


@app.post("/events/{event_id}/flags", response_model=EventFlag)
async def create_flag(event_id: str, request: FlagRequest, services: Services = Depends(get_services)):
    return await _run(
        lambda: flag_event(
            services.store, event_id, request.user_id, request.issue_type,
            request.description, services.settings,
        )
    )


@app.post("/sources/{source}/feedback")
async def source_feedback(source: str, request: FeedbackRequest, services: Services = Depends(get_services)):
    """Record accuracy feedback for offline trust recalibration."""
    record = await _run(services.feedback.record, source, request.is_accurate, request.event_id)
    return {"recorded": True, "source": record["source"], "is_accurate": record["is_accurate"]}


@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "name": "Community Event Verification API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)

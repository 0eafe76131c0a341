"""
/api/v1/pipeline endpoints.
Machine-to-machine entry points authenticated with a bearer key.
"""

from typing import Callable

import structlog
from fastapi import APIRouter, Depends

from app.clients.recorder import RecorderClient
from app.dependencies import (
    get_context_builder,
    get_event_store,
    get_job_queue,
    get_recorder_factory,
    verify_pipeline_key,
)
from app.errors import BadRequestError, NotFoundError
from app.ingestion.event_store import EventStore
from app.models.enums import JobType
from app.pipeline.context import ContextBuilder
from app.pipeline.title_parser import guess_company_domain
from app.schemas.api import (
    EventAccepted,
    ExtractInfoParticipant,
    ExtractInfoRequest,
    ExtractInfoResponse,
    PipelineProcessRequest,
)
from app.worker.queue import JobQueue

logger = structlog.get_logger(__name__)

router = APIRouter(
    prefix="/api/v1/pipeline", tags=["pipeline"], dependencies=[Depends(verify_pipeline_key)],
)


@router.post("/process", response_model=EventAccepted)
async def process_recording(
    body: PipelineProcessRequest,
    recorder_factory: Callable[[], RecorderClient] = Depends(get_recorder_factory),
    store: EventStore = Depends(get_event_store),
    queue: JobQueue = Depends(get_job_queue),
):
    """Fetch a meeting by recording id and queue it, with an optional completion callback."""
    if body.recording_id is None:
        raise BadRequestError("Missing recording_id")

    recorder = recorder_factory()
    meeting = await recorder.find_meeting_by_recording_id(body.recording_id)
    if meeting is None:
        raise NotFoundError("Meeting not found for the given recording_id")

    event = await store.admit(
        external_event_id=f"pipeline_{body.recording_id}",
        verified=True,
        raw_headers={"source": "pipeline"},
        raw_body=meeting,
    )
    payload = {"webhook_event_id": str(event.id)}
    if body.callback_url:
        payload["callback_url"] = str(body.callback_url)
    await queue.enqueue(JobType.PROCESS_MEETING.value, payload)
    logger.info("pipeline_meeting_queued", event_id=str(event.id),
                recording_id=body.recording_id, callback=bool(body.callback_url))

    return EventAccepted(event_id=str(event.id), title=meeting.get("title"))


@router.post("/extract-info", response_model=ExtractInfoResponse)
async def extract_meeting_info(
    body: ExtractInfoRequest,
    builder: ContextBuilder = Depends(get_context_builder),
):
    """Company, domain guess and account executive derived from meeting metadata alone."""
    if not body.title or body.recording_id is None:
        raise BadRequestError("Payload must include title and recording_id")

    company = builder.company_from_title(body.title)

    names = [inv.name for inv in body.calendar_invitees if inv.name]
    if body.recorded_by and body.recorded_by.name and body.recorded_by.name not in names:
        names.append(body.recorded_by.name)

    return ExtractInfoResponse(
        company_name=company,
        company_domain_guess=guess_company_domain(company) if company else None,
        ae_name=builder.find_ae(names),
        recording_id=body.recording_id,
        meeting_title=body.title,
        participants=[
            ExtractInfoParticipant(
                name=inv.name or "Unknown",
                email=inv.email,
                is_external=bool(inv.is_external),
            )
            for inv in body.calendar_invitees
        ],
    )

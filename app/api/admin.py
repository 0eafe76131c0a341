"""
/api/v1/admin endpoints.
Manual meeting import and call reprocessing.
"""

from typing import Callable

import structlog
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.clients.recorder import RecorderClient
from app.dependencies import (
    get_db,
    get_event_store,
    get_job_queue,
    get_recorder_factory,
    verify_api_key,
)
from app.errors import BadRequestError, NotFoundError
from app.ingestion.event_store import EventStore
from app.models.enums import JobType
from app.models.tables import Call, as_uuid
from app.schemas.api import EventAccepted, ImportMeetingRequest, JobAccepted, ReprocessRequest
from app.worker.queue import JobQueue

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/admin", tags=["admin"], dependencies=[Depends(verify_api_key)])


@router.post("/import-meeting", response_model=EventAccepted)
async def import_meeting(
    body: ImportMeetingRequest,
    recorder_factory: Callable[[], RecorderClient] = Depends(get_recorder_factory),
    store: EventStore = Depends(get_event_store),
    queue: JobQueue = Depends(get_job_queue),
):
    """Find a meeting by recording or share URL and queue it for processing."""
    if not body.url or not body.url.strip():
        raise BadRequestError("Missing url")

    recorder = recorder_factory()
    meeting = await recorder.find_meeting_by_url(body.url)
    if meeting is None:
        raise NotFoundError("Meeting not found in the recording account. Check the link and try again.")

    event = await store.admit(
        external_event_id=f"manual_import_{meeting['recording_id']}",
        verified=True,
        raw_headers={"source": "manual_import"},
        raw_body=meeting,
    )
    await queue.enqueue(JobType.PROCESS_MEETING.value, {"webhook_event_id": str(event.id)})
    logger.info("meeting_imported", event_id=str(event.id), recording_id=meeting["recording_id"])

    return EventAccepted(event_id=str(event.id), title=meeting.get("title"))


@router.post("/reprocess", response_model=JobAccepted)
async def reprocess_call(
    body: ReprocessRequest,
    session: AsyncSession = Depends(get_db),
    queue: JobQueue = Depends(get_job_queue),
):
    """Queue a new processing run over a call's stored transcript."""
    if not body.call_id:
        raise BadRequestError("Missing call_id")

    call = await session.get(Call, as_uuid(body.call_id, "call"))
    if call is None:
        raise NotFoundError("Call not found")

    job = await queue.enqueue(JobType.REPROCESS_CALL.value, {"call_id": str(call.id)})
    return JobAccepted(job_id=str(job.id), type=JobType.REPROCESS_CALL.value)

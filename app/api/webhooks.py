"""
Inbound recording webhook.
The body is read raw so the signature is computed over the exact bytes sent.
"""

import json

import structlog
from fastapi import APIRouter, Depends, Request

from app.config import settings
from app.dependencies import get_event_store, get_job_queue
from app.errors import ConfigError, VerificationError
from app.ingestion.event_store import EventStore
from app.ingestion.signature import (
    HEADER_ID,
    HEADER_SIGNATURE,
    HEADER_TIMESTAMP,
    parse_webhook_headers,
    verify_webhook_signature,
)
from app.models.enums import JobType
from app.observability.metrics import webhook_events_total
from app.schemas.api import EventAccepted
from app.worker.queue import JobQueue

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


@router.post("/recording", response_model=EventAccepted)
async def receive_recording_webhook(
    request: Request,
    store: EventStore = Depends(get_event_store),
    queue: JobQueue = Depends(get_job_queue),
):
    """Verify, admit and enqueue a recording-ready delivery."""
    raw_body = (await request.body()).decode("utf-8", errors="replace")
    signing_headers = {
        name: request.headers.get(name) for name in (HEADER_ID, HEADER_TIMESTAMP, HEADER_SIGNATURE)
    }

    headers = parse_webhook_headers(signing_headers)
    if headers is None:
        webhook_events_total.labels(outcome="missing_headers").inc()
        raise VerificationError("Missing webhook headers")

    if not settings.WEBHOOK_SECRET:
        logger.error("webhook_secret_not_configured")
        raise ConfigError("Server config error")

    if not verify_webhook_signature(settings.WEBHOOK_SECRET, headers, raw_body):
        webhook_events_total.labels(outcome="invalid_signature").inc()
        logger.warning("webhook_signature_invalid", webhook_id=headers.webhook_id)
        raise VerificationError("Invalid signature")

    try:
        body = json.loads(raw_body)
    except ValueError:
        body = raw_body

    event = await store.admit(
        external_event_id=headers.webhook_id,
        verified=True,
        raw_headers=signing_headers,
        raw_body=body,
    )
    await queue.enqueue(JobType.PROCESS_MEETING.value, {"webhook_event_id": str(event.id)})
    webhook_events_total.labels(outcome="accepted").inc()

    return EventAccepted(event_id=str(event.id))

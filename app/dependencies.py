"""
FastAPI dependency injection.
Provides DB sessions, the event store, the job queue, collaborator factories
and API key validation.
"""

import hmac
from typing import Callable, Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.clients.recorder import RecorderClient
from app.config import settings
from app.errors import ConfigError, VerificationError
from app.ingestion.event_store import EventStore
from app.models.database import get_session
from app.pipeline.context import ContextBuilder
from app.worker.queue import JobQueue


# ── Singleton instances ──────────────────────────────────────
_event_store: Optional[EventStore] = None
_job_queue: Optional[JobQueue] = None


def get_event_store() -> EventStore:
    global _event_store
    if _event_store is None:
        _event_store = EventStore()
    return _event_store


def get_job_queue() -> JobQueue:
    global _job_queue
    if _job_queue is None:
        _job_queue = JobQueue(worker_id="api")
    return _job_queue


def get_recorder_factory() -> Callable[[], RecorderClient]:
    """The client is built inside the route so request validation runs first."""
    return RecorderClient


def get_context_builder() -> ContextBuilder:
    return ContextBuilder()


async def get_db() -> AsyncSession:
    """Yield an async DB session."""
    async for session in get_session():
        yield session


async def verify_api_key(
    x_api_key: Optional[str] = Header(None, alias="X-API-Key"),
) -> Optional[str]:
    """
    Verify API key if configured.
    If API_KEY is not set, all requests are allowed (dev mode).
    """
    if settings.API_KEY is None:
        return None

    if x_api_key is None or not hmac.compare_digest(x_api_key, settings.API_KEY):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
        )
    return x_api_key


async def verify_pipeline_key(
    authorization: Optional[str] = Header(None),
) -> str:
    """Bearer token for machine-to-machine pipeline routes. Always required."""
    if not settings.PIPELINE_API_KEY:
        raise ConfigError("PIPELINE_API_KEY not configured")

    header = authorization or ""
    token = header[len("Bearer "):] if header.startswith("Bearer ") else ""
    if not token or not hmac.compare_digest(token, settings.PIPELINE_API_KEY):
        raise VerificationError("Unauthorized")
    return token

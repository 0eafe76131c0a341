"""
Idempotent admission of inbound webhook payloads.

Events are keyed by the provider-supplied id. A repeat delivery (provider retry,
or a manual import re-using ``manual_import_{recordingId}``) returns the stored
row unchanged.
"""

import uuid
from typing import Optional, Union

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.errors import NotFoundError
from app.models.database import async_session_factory
from app.models.tables import WebhookEvent, as_uuid

logger = structlog.get_logger(__name__)


class EventStore:
    """Insert-once store for raw webhook events."""

    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None):
        self._session_factory = session_factory or async_session_factory

    async def admit(
        self,
        external_event_id: str,
        verified: bool,
        raw_headers: Optional[dict],
        raw_body: Union[dict, list, str, None],
    ) -> WebhookEvent:
        """Insert the event on first sight; otherwise return the existing record."""
        async with self._session_factory() as session:
            existing = await self._find(session, external_event_id)
            if existing is not None:
                logger.info("webhook_event_duplicate",
                            event_id=str(existing.id), external_event_id=external_event_id)
                return existing

            event = WebhookEvent(
                external_event_id=external_event_id,
                verified=verified,
                raw_headers=raw_headers,
                raw_body=raw_body,
                processing_status="queued",
            )
            session.add(event)
            try:
                await session.commit()
            except IntegrityError:
                # Lost an insert race with a concurrent delivery of the same id
                await session.rollback()
                existing = await self._find(session, external_event_id)
                if existing is None:
                    raise
                return existing

            logger.info("webhook_event_admitted",
                        event_id=str(event.id), external_event_id=external_event_id,
                        verified=verified)
            return event

    async def get(self, event_id: Union[str, uuid.UUID]) -> WebhookEvent:
        async with self._session_factory() as session:
            event = await session.get(WebhookEvent, as_uuid(event_id, "webhook event"))
            if event is None:
                raise NotFoundError(f"Webhook event {event_id} not found")
            return event

    async def set_processing_status(self, event_id: Union[str, uuid.UUID], status: str) -> None:
        """Informational only; the job queue is the real work tracker."""
        async with self._session_factory() as session:
            event = await session.get(WebhookEvent, as_uuid(event_id, "webhook event"))
            if event is None:
                return
            event.processing_status = status
            await session.commit()

    @staticmethod
    async def _find(session: AsyncSession, external_event_id: str) -> Optional[WebhookEvent]:
        result = await session.execute(
            select(WebhookEvent).where(WebhookEvent.external_event_id == external_event_id)
        )
        return result.scalar_one_or_none()


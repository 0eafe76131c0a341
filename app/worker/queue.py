"""
Durable job queue backed by the ``jobs`` table.

States: queued → running → {succeeded | queued (retry) | dead}.

Claiming is a compare-and-swap: read the oldest eligible row, then update it
only if it still carries the status (and lock timestamp) that was read. Zero
rows updated means another worker won; the loser polls again.
"""

import uuid
from datetime import datetime, timedelta
from typing import Callable, Optional, Union

import structlog
from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import settings
from app.errors import ConflictError, NotFoundError
from app.models.database import async_session_factory
from app.models.enums import JobStatus
from app.models.tables import Job, as_uuid, utcnow
from app.observability.metrics import (
    job_claim_races_lost_total,
    jobs_claimed_total,
    jobs_enqueued_total,
)

logger = structlog.get_logger(__name__)

JobId = Union[str, uuid.UUID]


def backoff_seconds(attempts: int) -> int:
    """Delay before the next attempt, given the attempt count after incrementing."""
    return min(settings.JOB_BACKOFF_BASE_SECONDS * 2 ** attempts, settings.JOB_BACKOFF_MAX_SECONDS)


def default_worker_id() -> str:
    return settings.WORKER_ID or f"worker-{uuid.uuid4().hex[:8]}"


class JobQueue:
    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        worker_id: Optional[str] = None,
        clock: Callable[[], datetime] = utcnow,
        lease_timeout_seconds: Optional[int] = None,
    ):
        self._session_factory = session_factory or async_session_factory
        self.worker_id = worker_id or default_worker_id()
        self._clock = clock
        self._lease_timeout = timedelta(
            seconds=settings.JOB_LEASE_TIMEOUT_SECONDS
            if lease_timeout_seconds is None else lease_timeout_seconds
        )

    async def enqueue(self, job_type: str, payload: Optional[dict] = None) -> Job:
        now = self._clock()
        async with self._session_factory() as session:
            job = Job(
                type=job_type,
                status=JobStatus.QUEUED.value,
                payload=payload or {},
                attempts=0,
                run_after=now,
                created_at=now,
                updated_at=now,
            )
            session.add(job)
            await session.commit()

        jobs_enqueued_total.labels(job_type=job_type).inc()
        logger.info("job_enqueued", job_id=str(job.id), job_type=job_type)
        return job

    async def claim(self) -> Optional[Job]:
        """
        Take the oldest eligible job, or None when nothing is eligible or the
        race was lost. Running jobs whose lock is older than the lease timeout
        are eligible again; reclaiming does not count as an attempt.
        """
        now = self._clock()
        stale_before = now - self._lease_timeout

        async with self._session_factory() as session:
            candidate = (await session.execute(
                select(Job)
                .where(or_(
                    and_(Job.status == JobStatus.QUEUED.value, Job.run_after <= now),
                    and_(Job.status == JobStatus.RUNNING.value, Job.locked_at < stale_before),
                ))
                .order_by(Job.created_at)
                .limit(1)
                .with_for_update(skip_locked=True)
            )).scalar_one_or_none()
            if candidate is None:
                return None

            observed_status = candidate.status
            previous_worker = candidate.locked_by
            guards = [Job.id == candidate.id, Job.status == observed_status]
            if observed_status == JobStatus.RUNNING.value:
                guards.append(Job.locked_at == candidate.locked_at)

            result = await session.execute(
                update(Job)
                .where(*guards)
                .values(
                    status=JobStatus.RUNNING.value,
                    locked_by=self.worker_id,
                    locked_at=now,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()

            if result.rowcount != 1:
                job_claim_races_lost_total.inc()
                logger.debug("job_claim_race_lost", job_id=str(candidate.id))
                return None

            await session.refresh(candidate)

        jobs_claimed_total.labels(job_type=candidate.type).inc()
        if observed_status == JobStatus.RUNNING.value:
            logger.warning("job_lease_reclaimed", job_id=str(candidate.id),
                           job_type=candidate.type, previous_worker=previous_worker)
        logger.info("job_claimed", job_id=str(candidate.id), job_type=candidate.type,
                    attempts=candidate.attempts, worker_id=self.worker_id)
        return candidate

    async def mark_succeeded(self, job_id: JobId) -> None:
        job_uuid = as_uuid(job_id, "job")
        now = self._clock()
        async with self._session_factory() as session:
            result = await session.execute(
                update(Job)
                .where(
                    Job.id == job_uuid,
                    Job.status.in_([JobStatus.RUNNING.value, JobStatus.SUCCEEDED.value]),
                    Job.locked_by == self.worker_id,
                )
                .values(status=JobStatus.SUCCEEDED.value, last_error=None, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
        if result.rowcount != 1:
            logger.warning("job_lease_lost", job_id=str(job_uuid), worker_id=self.worker_id)
            return
        logger.info("job_succeeded", job_id=str(job_uuid))

    async def mark_failed(
        self,
        job_id: JobId,
        error: Optional[str] = None,
        max_attempts: Optional[int] = None,
    ) -> Job:
        """
        Count the failed attempt. Below ``max_attempts`` the job is queued
        again after a backoff; at the limit it is dead-lettered.
        """
        job_uuid = as_uuid(job_id, "job")
        limit = settings.JOB_MAX_ATTEMPTS if max_attempts is None else max_attempts
        now = self._clock()

        async with self._session_factory() as session:
            job = await session.get(Job, job_uuid)
            if job is None:
                raise NotFoundError(f"Job {job_id} not found")

            attempts = job.attempts + 1
            values = {
                "attempts": attempts,
                "last_error": error[:4000] if error else None,
                "locked_by": None,
                "locked_at": None,
                "updated_at": now,
            }
            if attempts >= limit:
                values["status"] = JobStatus.DEAD.value
            else:
                values["status"] = JobStatus.QUEUED.value
                values["run_after"] = now + timedelta(seconds=backoff_seconds(attempts))

            # Only the current lease holder may release the job
            result = await session.execute(
                update(Job)
                .where(
                    Job.id == job_uuid,
                    Job.status == JobStatus.RUNNING.value,
                    Job.locked_by == self.worker_id,
                    Job.attempts == job.attempts,
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            await session.refresh(job)

        if result.rowcount != 1:
            logger.warning("job_lease_lost", job_id=str(job_uuid), worker_id=self.worker_id,
                           locked_by=job.locked_by, error=error)
            return job

        if job.status == JobStatus.DEAD.value:
            logger.error("job_dead_lettered", job_id=str(job.id), job_type=job.type,
                         attempts=job.attempts, error=error)
        else:
            logger.warning("job_retry_scheduled", job_id=str(job.id), job_type=job.type,
                           attempts=job.attempts, run_after=job.run_after.isoformat())
        return job

    # ── Inspection and manual recovery ───────────────────────

    async def get(self, job_id: JobId) -> Job:
        async with self._session_factory() as session:
            job = await session.get(Job, as_uuid(job_id, "job"))
            if job is None:
                raise NotFoundError(f"Job {job_id} not found")
            return job

    async def list_dead(self, limit: int = 50) -> list[Job]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Job)
                .where(Job.status == JobStatus.DEAD.value)
                .order_by(Job.updated_at.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def requeue(self, job_id: JobId) -> Job:
        """Manual re-enqueue of a dead job with a fresh attempt budget."""
        job_uuid = as_uuid(job_id, "job")
        now = self._clock()
        async with self._session_factory() as session:
            result = await session.execute(
                update(Job)
                .where(Job.id == job_uuid, Job.status == JobStatus.DEAD.value)
                .values(
                    status=JobStatus.QUEUED.value,
                    attempts=0,
                    run_after=now,
                    locked_by=None,
                    locked_at=None,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            job = await session.get(Job, job_uuid)

        if job is None:
            raise NotFoundError(f"Job {job_id} not found")
        if result.rowcount != 1:
            raise ConflictError(f"Job {job_id} is {job.status}, only dead jobs can be requeued")
        logger.info("job_requeued", job_id=str(job_uuid), job_type=job.type)
        return job

    async def stats(self) -> dict[str, int]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Job.status, func.count()).group_by(Job.status)
            )
            counts = {status.value: 0 for status in JobStatus}
            counts.update({status: count for status, count in result.all()})
            return counts

"""
Worker entry point.
Run with: python -m app.worker.runner

Polls the job queue, dispatches each claimed job to its handler and records
the outcome. Stops cleanly on SIGTERM/SIGINT or when ``stop_event`` is set.
"""

import asyncio
import signal
import time
from typing import Optional

import structlog

from app.config import settings
from app.models.database import close_db
from app.models.tables import Job
from app.observability.logging import bound_context, setup_logging
from app.observability.metrics import job_duration_seconds, jobs_finished_total, worker_jobs_active
from app.worker.jobs import JobHandlers
from app.worker.queue import JobQueue

logger = structlog.get_logger(__name__)


class Worker:
    def __init__(
        self,
        queue: Optional[JobQueue] = None,
        handlers: Optional[JobHandlers] = None,
        poll_interval: Optional[float] = None,
        max_attempts: Optional[int] = None,
    ):
        self.queue = queue or JobQueue()
        self.handlers = handlers or JobHandlers()
        self.poll_interval = settings.WORKER_POLL_INTERVAL_SECONDS if poll_interval is None else poll_interval
        self.max_attempts = max_attempts or settings.JOB_MAX_ATTEMPTS

    @property
    def worker_id(self) -> str:
        return self.queue.worker_id

    async def run(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """Poll until ``stop_event`` is set. Sleeps only when no job was handled."""
        stop = stop_event or asyncio.Event()
        logger.info("worker_started", worker_id=self.worker_id, poll_interval=self.poll_interval)

        while not stop.is_set():
            try:
                handled = await self.run_once()
            except Exception as e:
                # Queue or database unavailable; try again next tick
                logger.error("worker_poll_failed", worker_id=self.worker_id, error=str(e))
                handled = False

            if not handled:
                try:
                    await asyncio.wait_for(stop.wait(), timeout=self.poll_interval)
                except asyncio.TimeoutError:
                    pass

        logger.info("worker_stopped", worker_id=self.worker_id)

    async def run_once(self) -> bool:
        """Claim and process at most one job. Returns whether a job was handled."""
        job = await self.queue.claim()
        if job is None:
            return False
        await self.process(job)
        return True

    async def drain(self, max_jobs: int = 100) -> int:
        """Process jobs until none is eligible or ``max_jobs`` is reached."""
        handled = 0
        while handled < max_jobs and await self.run_once():
            handled += 1
        return handled

    async def process(self, job: Job) -> str:
        started = time.perf_counter()
        worker_jobs_active.inc()
        with bound_context(job_id=str(job.id), job_type=job.type, worker_id=self.worker_id):
            logger.info("job_started", attempts=job.attempts)
            try:
                result = await self.handlers.dispatch(job.type, job.payload)
            except Exception as e:
                logger.error("job_failed", error=str(e), exc_info=True)
                await self.queue.mark_failed(job.id, error=str(e), max_attempts=self.max_attempts)
                outcome = "failed"
            else:
                await self.queue.mark_succeeded(job.id)
                logger.info("job_completed", result=result)
                outcome = "succeeded"
            finally:
                worker_jobs_active.dec()
                job_duration_seconds.labels(job_type=job.type).observe(time.perf_counter() - started)

        jobs_finished_total.labels(job_type=job.type, outcome=outcome).inc()
        return outcome


async def serve() -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, stop.set)

    worker = Worker()
    try:
        await worker.run(stop)
    finally:
        await close_db()


def main():
    """Start a queue worker."""
    setup_logging(service="worker")

    if settings.SENTRY_DSN:
        import sentry_sdk
        sentry_sdk.init(dsn=settings.SENTRY_DSN, traces_sample_rate=0.1)

    asyncio.run(serve())


if __name__ == "__main__":
    main()

"""
/api/v1/geo-analysis endpoints.
Queue phrase analysis runs and read their results.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.dependencies import get_db, get_job_queue, verify_api_key
from app.errors import BadRequestError
from app.models.enums import GeoRunType, JobType, RunStatus
from app.models.tables import GeoAnalysisRun, PhraseStatistic, as_uuid
from app.schemas.api import (
    GeoRunListResponse,
    GeoRunSummary,
    GeoTriggerRequest,
    JobAccepted,
    PhraseResultsResponse,
    PhraseStatisticOut,
)
from app.worker.queue import JobQueue

router = APIRouter(prefix="/api/v1/geo-analysis", tags=["geo-analysis"],
                   dependencies=[Depends(verify_api_key)])


@router.post("/trigger", response_model=JobAccepted)
async def trigger_extraction(
    body: Optional[GeoTriggerRequest] = None,
    queue: JobQueue = Depends(get_job_queue),
):
    """Queue a phrase extraction pass. CRM ids fall back to configured defaults."""
    body = body or GeoTriggerRequest()

    if body.qualified_only:
        job = await queue.enqueue(JobType.EXTRACT_PHRASES.value, {
            "backfill": True, "qualified_only": True,
        })
        return JobAccepted(job_id=str(job.id), type=GeoRunType.BACKFILL.value)

    pipeline_id = body.crm_pipeline_id or settings.CRM_PIPELINE_ID
    stage_id = body.crm_stage_id or settings.CRM_STAGE_ID
    if not pipeline_id or not stage_id:
        raise BadRequestError("Missing crm_pipeline_id / crm_stage_id (set in body or env)")

    job = await queue.enqueue(JobType.EXTRACT_PHRASES.value, {
        "crm_pipeline_id": pipeline_id,
        "crm_stage_id": stage_id,
        "backfill": body.backfill,
    })
    run_type = GeoRunType.BACKFILL if body.backfill else GeoRunType.DAILY_EXTRACTION
    return JobAccepted(job_id=str(job.id), type=run_type.value)


@router.post("/weekly", response_model=JobAccepted)
async def trigger_weekly_analysis(queue: JobQueue = Depends(get_job_queue)):
    job = await queue.enqueue(JobType.RUN_WEEKLY_ANALYSIS.value, {})
    return JobAccepted(job_id=str(job.id), type=GeoRunType.WEEKLY_ANALYSIS.value)


@router.get("/runs", response_model=GeoRunListResponse)
async def list_runs(session: AsyncSession = Depends(get_db)):
    """The 20 most recent runs of any type."""
    result = await session.execute(
        select(GeoAnalysisRun).order_by(GeoAnalysisRun.created_at.desc()).limit(20)
    )
    return GeoRunListResponse(
        runs=[GeoRunSummary.model_validate(run) for run in result.scalars().all()]
    )


@router.get("/results", response_model=PhraseResultsResponse)
async def phrase_results(
    run_id: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    session: AsyncSession = Depends(get_db),
):
    """Phrase statistics for a run (default: latest succeeded weekly run), most frequent first."""
    if run_id:
        target = as_uuid(run_id, "run")
    else:
        target = (await session.execute(
            select(GeoAnalysisRun.id)
            .where(GeoAnalysisRun.type == GeoRunType.WEEKLY_ANALYSIS.value,
                   GeoAnalysisRun.status == RunStatus.SUCCEEDED.value)
            .order_by(GeoAnalysisRun.created_at.desc())
            .limit(1)
        )).scalar_one_or_none()
        if target is None:
            return PhraseResultsResponse(phrases=[], message="No weekly analysis has been run yet")

    query = select(PhraseStatistic).where(PhraseStatistic.run_id == target)
    if category:
        query = query.where(PhraseStatistic.category == category)

    result = await session.execute(
        query.order_by(PhraseStatistic.cumulative_frequency.desc()).limit(limit)
    )
    return PhraseResultsResponse(
        phrases=[PhraseStatisticOut.model_validate(s) for s in result.scalars().all()],
        run_id=str(target),
    )

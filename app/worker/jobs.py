"""
Job payload contracts and handlers.
The worker looks up a handler by job type and passes it the validated payload.
"""

from typing import Awaitable, Callable, Optional

import structlog
from pydantic import BaseModel

from app.analysis.geo_pipeline import PhraseAnalysisPipeline
from app.models.enums import JobType
from app.pipeline.orchestrator import CallPipeline

logger = structlog.get_logger(__name__)


# ── Payloads ─────────────────────────────────────────────────

class ProcessMeetingPayload(BaseModel):
    webhook_event_id: str
    callback_url: Optional[str] = None


class ReprocessCallPayload(BaseModel):
    call_id: str


class ExtractPhrasesPayload(BaseModel):
    crm_pipeline_id: Optional[str] = None
    crm_stage_id: Optional[str] = None
    backfill: bool = False
    qualified_only: bool = False


class WeeklyAnalysisPayload(BaseModel):
    pass


class UnknownJobTypeError(Exception):
    pass


# ── Handlers ─────────────────────────────────────────────────

class JobHandlers:
    """
    Maps job types to pipeline calls. Pipelines are built on first use so a
    worker that only sees analysis jobs never constructs the call pipeline.
    """

    def __init__(
        self,
        call_pipeline_factory: Callable[[], CallPipeline] = CallPipeline,
        analysis_pipeline_factory: Callable[[], PhraseAnalysisPipeline] = PhraseAnalysisPipeline,
    ):
        self._call_pipeline_factory = call_pipeline_factory
        self._analysis_pipeline_factory = analysis_pipeline_factory
        self._call_pipeline: Optional[CallPipeline] = None
        self._analysis_pipeline: Optional[PhraseAnalysisPipeline] = None
        self._handlers: dict[str, Callable[[dict], Awaitable[dict]]] = {
            JobType.PROCESS_MEETING.value: self.process_meeting,
            JobType.REPROCESS_CALL.value: self.reprocess_call,
            JobType.EXTRACT_PHRASES.value: self.extract_phrases,
            JobType.RUN_WEEKLY_ANALYSIS.value: self.run_weekly_analysis,
        }

    @property
    def call_pipeline(self) -> CallPipeline:
        if self._call_pipeline is None:
            self._call_pipeline = self._call_pipeline_factory()
        return self._call_pipeline

    @property
    def analysis_pipeline(self) -> PhraseAnalysisPipeline:
        if self._analysis_pipeline is None:
            self._analysis_pipeline = self._analysis_pipeline_factory()
        return self._analysis_pipeline

    async def dispatch(self, job_type: str, payload: dict) -> dict:
        handler = self._handlers.get(job_type)
        if handler is None:
            raise UnknownJobTypeError(f"Unknown job type: {job_type}")
        return await handler(payload or {})

    async def process_meeting(self, payload: dict) -> dict:
        p = ProcessMeetingPayload.model_validate(payload)
        return await self.call_pipeline.process_meeting(p.webhook_event_id, callback_url=p.callback_url)

    async def reprocess_call(self, payload: dict) -> dict:
        p = ReprocessCallPayload.model_validate(payload)
        return await self.call_pipeline.reprocess_call(p.call_id)

    async def extract_phrases(self, payload: dict) -> dict:
        p = ExtractPhrasesPayload.model_validate(payload)
        if p.qualified_only:
            return await self.analysis_pipeline.run_qualified_extraction()
        if not p.crm_pipeline_id or not p.crm_stage_id:
            raise ValueError("EXTRACT_PHRASES requires crm_pipeline_id and crm_stage_id")
        if p.backfill:
            return await self.analysis_pipeline.run_backfill(p.crm_pipeline_id, p.crm_stage_id)
        return await self.analysis_pipeline.run_daily_extraction(p.crm_pipeline_id, p.crm_stage_id)

    async def run_weekly_analysis(self, payload: dict) -> dict:
        WeeklyAnalysisPayload.model_validate(payload)
        return await self.analysis_pipeline.run_weekly_analysis()

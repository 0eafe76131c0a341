"""
Phrase analysis runs.

Extraction passes (daily, backfill, qualified-only) pick candidate calls,
skip those already extracted, and store one CallPhraseExtraction per call.
The weekly pass folds this week's extractions onto the previous weekly
run's cumulative statistics. Every pass is tracked by a GeoAnalysisRun.
"""

import uuid
from datetime import datetime
from typing import Awaitable, Callable, Optional, Sequence

import structlog
from sqlalchemy import func, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.analysis.aggregator import (
    PriorPhraseStat,
    aggregate_phrases,
    batched,
    merge_with_baseline,
    phrase_key,
    week_start,
)
from app.analysis.phrase_extractor import ProspectUtterance, extract_phrases
from app.clients.completion import CompletionService, OpenAICompletionClient
from app.clients.crm import CrmClient, CrmDeal
from app.config import settings
from app.errors import OutputValidationError
from app.models.database import async_session_factory
from app.models.enums import GeoRunType, OverallStatus, ParticipantRole, RunStatus
from app.models.tables import (
    Call,
    CallPhraseExtraction,
    Evaluation,
    GeoAnalysisRun,
    Participant,
    PhraseStatistic,
    Utterance,
    as_uuid,
    utcnow,
)
from app.observability.logging import bound_context
from app.observability.metrics import phrase_extractions_total, phrase_statistics_written_total
from app.pipeline.validation import Invalid
from app.schemas.phrases import PhraseExtractionResult

logger = structlog.get_logger(__name__)

QUALIFIED_ONLY = "qualified_only"


class PhraseAnalysisPipeline:
    """Runs phrase extraction and weekly aggregation against the call store."""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        completion: Optional[CompletionService] = None,
        crm: Optional[CrmClient] = None,
    ):
        self._session_factory = session_factory or async_session_factory
        self._completion = completion
        self._crm = crm

    # Built on first use; the weekly pass needs neither
    @property
    def completion(self) -> CompletionService:
        if self._completion is None:
            self._completion = OpenAICompletionClient()
        return self._completion

    @property
    def crm(self) -> CrmClient:
        if self._crm is None:
            self._crm = CrmClient()
        return self._crm

    # ── Run management ───────────────────────────────────────

    async def create_run(self, run_type: str, config: Optional[dict] = None) -> uuid.UUID:
        async with self._session_factory() as session:
            run = GeoAnalysisRun(type=run_type, status=RunStatus.RUNNING.value, config=config or {})
            session.add(run)
            await session.commit()
            logger.info("geo_run_started", run_id=str(run.id), run_type=run_type)
            return run.id

    async def mark_run_succeeded(self, run_id: uuid.UUID, calls_processed: int) -> None:
        await self._finish_run(run_id, status=RunStatus.SUCCEEDED.value,
                               calls_processed=calls_processed)
        logger.info("geo_run_succeeded", run_id=str(run_id), calls_processed=calls_processed)

    async def mark_run_failed(self, run_id: uuid.UUID, error: str) -> None:
        await self._finish_run(run_id, status=RunStatus.FAILED.value, error=error[:4000])
        logger.error("geo_run_failed", run_id=str(run_id), error=error)

    async def _finish_run(self, run_id: uuid.UUID, **values) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(GeoAnalysisRun)
                .where(GeoAnalysisRun.id == run_id)
                .values(finished_at=utcnow(), **values)
            )
            await session.commit()

    # ── Extraction passes ────────────────────────────────────

    async def run_daily_extraction(self, pipeline_id: str, stage_id: str) -> dict:
        return await self._run_extraction(
            GeoRunType.DAILY_EXTRACTION.value,
            {"crm_pipeline_id": pipeline_id, "crm_stage_id": stage_id},
            lambda: self._crm_candidates(pipeline_id, stage_id),
        )

    async def run_backfill(self, pipeline_id: str, stage_id: str) -> dict:
        return await self._run_extraction(
            GeoRunType.BACKFILL.value,
            {"crm_pipeline_id": pipeline_id, "crm_stage_id": stage_id},
            lambda: self._crm_candidates(pipeline_id, stage_id),
        )

    async def run_qualified_extraction(self) -> dict:
        """Candidates are calls with a Qualified evaluation; the CRM is not consulted."""
        return await self._run_extraction(
            GeoRunType.BACKFILL.value,
            {"filter": QUALIFIED_ONLY},
            self._qualified_candidates,
        )

    async def _run_extraction(
        self,
        run_type: str,
        config: dict,
        load_candidates: Callable[[], Awaitable[list[uuid.UUID]]],
    ) -> dict:
        run_id = await self.create_run(run_type, config)
        with bound_context(geo_run_id=str(run_id), run_type=run_type):
            try:
                candidates = await load_candidates()
                pending = await self.filter_unprocessed_calls(candidates)
                logger.info("geo_extraction_candidates",
                            candidates=len(candidates), pending=len(pending))

                processed = 0
                for call_id in pending:
                    try:
                        await self.extract_phrases_for_call(run_id, call_id)
                    except Exception as e:
                        # Logged and skipped; the run still succeeds
                        phrase_extractions_total.labels(outcome="failed").inc()
                        logger.error("geo_call_extraction_failed", call_id=str(call_id), error=str(e))
                        continue
                    processed += 1
                    if processed % 5 == 0:
                        logger.info("geo_extraction_progress", processed=processed, total=len(pending))
            except Exception as e:
                await self.mark_run_failed(run_id, str(e))
                raise

            await self.mark_run_succeeded(run_id, processed)
            return {"run_id": str(run_id), "calls_processed": processed}

    async def _crm_candidates(self, pipeline_id: str, stage_id: str) -> list[uuid.UUID]:
        deals = await self.crm.fetch_pipeline_deals(pipeline_id, stage_id)
        logger.info("geo_crm_deals_found", deals=len(deals))
        matched = await self.match_deals_to_call_ids(deals)
        logger.info("geo_calls_matched", calls=len(matched))
        return matched

    async def _qualified_candidates(self) -> list[uuid.UUID]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Evaluation.call_id)
                .where(Evaluation.overall_status == OverallStatus.QUALIFIED.value)
                .distinct()
            )
            call_ids = list(result.scalars().all())
        logger.info("geo_qualified_calls_found", calls=len(call_ids))
        return call_ids

    async def filter_unprocessed_calls(self, call_ids: Sequence[uuid.UUID]) -> list[uuid.UUID]:
        """Drop calls that already have a phrase extraction, preserving input order."""
        if not call_ids:
            return []
        ids = list(dict.fromkeys(as_uuid(c, "call") for c in call_ids))
        processed: set[uuid.UUID] = set()
        async with self._session_factory() as session:
            for batch in batched(ids, settings.CALL_FILTER_BATCH_SIZE):
                result = await session.execute(
                    select(CallPhraseExtraction.call_id)
                    .where(CallPhraseExtraction.call_id.in_(batch))
                )
                processed.update(result.scalars().all())
        return [c for c in ids if c not in processed]

    async def extract_phrases_for_call(self, run_id: uuid.UUID, call_id: uuid.UUID) -> PhraseExtractionResult:
        """Extract from external-participant utterances only; store a row even when empty."""
        async with self._session_factory() as session:
            prospects = (await session.execute(
                select(Participant.id, Participant.name)
                .where(Participant.call_id == call_id,
                       Participant.role == ParticipantRole.EXTERNAL.value)
            )).all()
            names = {row.id: row.name for row in prospects}

            utterances: list[ProspectUtterance] = []
            if names:
                rows = (await session.execute(
                    select(Utterance.speaker_participant_id,
                           Utterance.speaker_label_raw,
                           Utterance.text_normalized)
                    .where(Utterance.call_id == call_id,
                           Utterance.speaker_participant_id.in_(list(names)))
                    .order_by(Utterance.idx)
                )).all()
                utterances = [
                    ProspectUtterance(
                        speaker_label=names.get(r.speaker_participant_id) or r.speaker_label_raw,
                        text=r.text_normalized,
                    )
                    for r in rows
                ]

        if utterances:
            outcome = await extract_phrases(self.completion, utterances)
            if isinstance(outcome, Invalid):
                raise OutputValidationError("phrase extractor", outcome.errors)
            result = outcome.value
            model = self.completion.model
        else:
            result = PhraseExtractionResult.empty()
            model = getattr(self._completion, "model", None) or settings.COMPLETION_MODEL

        async with self._session_factory() as session:
            session.add(CallPhraseExtraction(
                call_id=call_id,
                run_id=run_id,
                phrases_json=result.model_dump(mode="json"),
                model=model,
                prompt_version=settings.PHRASE_PROMPT_VERSION,
            ))
            await session.commit()

        phrase_extractions_total.labels(outcome="extracted" if utterances else "empty").inc()
        logger.info("call_phrases_extracted", call_id=str(call_id),
                    prospect_utterances=len(utterances), phrases=result.total())
        return result

    async def match_deals_to_call_ids(self, deals: Sequence[CrmDeal]) -> list[uuid.UUID]:
        """
        Union of two matches: external participant email (case-insensitive,
        batched) and company name appearing in the call title.
        """
        if not deals:
            return []
        emails = sorted({e.lower() for d in deals for e in d.contact_emails if e})
        companies = sorted({d.company_name.lower() for d in deals if d.company_name})

        matched: set[uuid.UUID] = set()
        async with self._session_factory() as session:
            for batch in batched(emails, settings.CALL_FILTER_BATCH_SIZE):
                result = await session.execute(
                    select(Participant.call_id)
                    .where(Participant.role == ParticipantRole.EXTERNAL.value,
                           func.lower(Participant.email).in_(batch))
                )
                matched.update(result.scalars().all())

            if companies:
                calls = (await session.execute(select(Call.id, Call.title))).all()
                for call in calls:
                    title = (call.title or "").lower()
                    if any(company in title for company in companies):
                        matched.add(call.id)

        return sorted(matched, key=str)

    # ── Weekly analysis ──────────────────────────────────────

    async def run_weekly_analysis(self, now: Optional[datetime] = None) -> dict:
        run_id = await self.create_run(GeoRunType.WEEKLY_ANALYSIS.value)
        now = now or utcnow()
        with bound_context(geo_run_id=str(run_id), run_type=GeoRunType.WEEKLY_ANALYSIS.value):
            try:
                since = week_start(now)
                async with self._session_factory() as session:
                    extractions = (await session.execute(
                        select(CallPhraseExtraction.call_id, CallPhraseExtraction.phrases_json)
                        .where(CallPhraseExtraction.created_at >= since)
                    )).all()
                    baseline = await self._load_baseline(session, run_id)

                aggregates = aggregate_phrases((e.call_id, e.phrases_json) for e in extractions)
                rows = merge_with_baseline(run_id, aggregates, baseline, now)

                async with self._session_factory() as session:
                    for batch in batched(rows, settings.PHRASE_STATS_BATCH_SIZE):
                        await session.execute(insert(PhraseStatistic), batch)
                    await session.commit()
                phrase_statistics_written_total.inc(len(rows))
                logger.info("weekly_analysis_aggregated",
                            week_start=since.isoformat(), extractions=len(extractions),
                            unique_phrases=len(rows), baseline_phrases=len(baseline))
            except Exception as e:
                await self.mark_run_failed(run_id, str(e))
                raise

            await self.mark_run_succeeded(run_id, len(extractions))
            return {"run_id": str(run_id), "unique_phrases": len(rows)}

    async def _load_baseline(self, session: AsyncSession, run_id: uuid.UUID) -> dict[str, PriorPhraseStat]:
        """Cumulative stats from the latest succeeded weekly run other than this one."""
        previous = (await session.execute(
            select(GeoAnalysisRun.id)
            .where(GeoAnalysisRun.type == GeoRunType.WEEKLY_ANALYSIS.value,
                   GeoAnalysisRun.status == RunStatus.SUCCEEDED.value,
                   GeoAnalysisRun.id != run_id)
            .order_by(GeoAnalysisRun.created_at.desc())
            .limit(1)
        )).scalar_one_or_none()
        if previous is None:
            return {}

        stats = (await session.execute(
            select(PhraseStatistic).where(PhraseStatistic.run_id == previous)
        )).scalars().all()
        return {
            phrase_key(s.category, s.phrase): PriorPhraseStat(
                cumulative_frequency=s.cumulative_frequency,
                cumulative_call_count=s.cumulative_call_count,
                first_seen_at=s.first_seen_at,
            )
            for s in stats
        }

"""
Pipeline orchestrator: coordinates per-call qualification.

Stages: NORMALIZE → ENRICH → EXTRACT → EVALUATE → CROSS_CHECK → PERSIST

Every attempt gets its own ProcessingRun. A failure after the run is opened
marks it failed with the error text and re-raises so the owning job retries.
"""

import time
import uuid
from typing import Optional, Union

import httpx
import structlog
from dateutil import parser as date_parser
from pydantic import ValidationError
from sqlalchemy import delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.clients.completion import CompletionService, OpenAICompletionClient
from app.clients.enrichment import FALLBACK, CompanyEnrichmentClient
from app.config import settings
from app.errors import NotFoundError, OutputValidationError
from app.ingestion.event_store import EventStore
from app.ingestion.normalize import map_meeting_to_normalized, resolve_speaker, transcript_hash
from app.models.database import async_session_factory
from app.models.enums import PipelineStage, RunStatus
from app.models.tables import (
    Call,
    Evaluation,
    ExtractedSignals,
    Participant,
    ProcessingRun,
    Utterance,
    WebhookEvent,
    as_uuid,
    utcnow,
)
from app.observability.logging import bound_context
from app.observability.metrics import (
    cross_check_overrides_total,
    pipeline_stage_duration_seconds,
    processing_runs_total,
)
from app.pipeline.context import ContextBuilder
from app.pipeline.cross_check import cross_check
from app.pipeline.digest import build_callback_payload, send_callback
from app.pipeline.evaluator import evaluate_signals
from app.pipeline.extractor import extract_signals
from app.pipeline.validation import Invalid
from app.schemas.meeting import MeetingPayload, NormalizedCall

logger = structlog.get_logger(__name__)


class PipelineError(Exception):
    """Fatal pipeline error, tagged with the stage that failed."""
    def __init__(self, message: str, stage: str, error_code: str = "ERR_PIPELINE"):
        self.message = message
        self.stage = stage
        self.error_code = error_code
        super().__init__(message)


def _parse_time(value: Optional[str]):
    if not value:
        return None
    try:
        return date_parser.isoparse(value)
    except ValueError:
        logger.warning("meeting_time_unparseable", value=value)
        return None


class CallPipeline:
    """
    Runs a call through all stages.
    Collaborators are injected; defaults come from settings.
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        completion: Optional[CompletionService] = None,
        enrichment: Optional[CompanyEnrichmentClient] = None,
        context_builder: Optional[ContextBuilder] = None,
        callback_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._session_factory = session_factory or async_session_factory
        self.completion = completion or OpenAICompletionClient()
        self.enrichment = enrichment or CompanyEnrichmentClient()
        self.context_builder = context_builder or ContextBuilder()
        self._callback_transport = callback_transport

    # ── Entry points ─────────────────────────────────────────

    async def process_meeting(
        self,
        webhook_event_id: Union[str, uuid.UUID],
        callback_url: Optional[str] = None,
    ) -> dict:
        """Normalize the meeting stored on a webhook event, then run the call."""
        event_id = as_uuid(webhook_event_id, "webhook event")

        with bound_context(webhook_event_id=str(event_id)):
            started = time.perf_counter()
            async with self._session_factory() as session:
                event = await session.get(WebhookEvent, event_id)
                if event is None:
                    raise NotFoundError(f"Webhook event {event_id} not found")
                normalized = self._normalize(event.raw_body)
                call = await self._store_normalized_call(session, normalized, event.id)
                await session.commit()
                call_id = call.id
            pipeline_stage_duration_seconds.labels(
                stage=PipelineStage.NORMALIZE.value,
            ).observe(time.perf_counter() - started)
            logger.info("call_normalized", call_id=str(call_id),
                        participants=len(normalized.participants),
                        utterances=len(normalized.utterances))

            result = await self._run(call_id, callback_url=callback_url)
            await EventStore(self._session_factory).set_processing_status(event_id, "processed")
            return result

    async def reprocess_call(self, call_id: Union[str, uuid.UUID]) -> dict:
        """Re-run enrichment through persistence on stored participants and utterances."""
        call_uuid = as_uuid(call_id, "call")
        async with self._session_factory() as session:
            if await session.get(Call, call_uuid) is None:
                raise NotFoundError(f"Call {call_id} not found")
        return await self._run(call_uuid)

    # ── Stage 1: NORMALIZE ───────────────────────────────────

    def _normalize(self, raw_body) -> NormalizedCall:
        if not isinstance(raw_body, dict):
            raise PipelineError("Webhook body is not a meeting object", PipelineStage.NORMALIZE.value)
        try:
            meeting = MeetingPayload.model_validate(raw_body)
        except ValidationError as e:
            raise PipelineError(
                f"Webhook body is not a valid meeting: {e.error_count()} errors",
                PipelineStage.NORMALIZE.value,
            ) from e
        return map_meeting_to_normalized(meeting, self.context_builder.roster)

    async def _store_normalized_call(
        self,
        session: AsyncSession,
        normalized: NormalizedCall,
        webhook_event_id: uuid.UUID,
    ) -> Call:
        """Upsert the call by recording id or share URL and replace its children."""
        match = [Call.external_recording_id == normalized.external_recording_id]
        if normalized.share_url:
            match.append(Call.share_url == normalized.share_url)
        result = await session.execute(
            select(Call).where(or_(*match)).order_by(Call.created_at).limit(1)
        )
        call = result.scalar_one_or_none()

        if call is None:
            call = Call(external_recording_id=normalized.external_recording_id)
            session.add(call)
        else:
            await session.execute(delete(Utterance).where(Utterance.call_id == call.id))
            await session.execute(delete(Participant).where(Participant.call_id == call.id))
            logger.info("call_replacing_transcript", call_id=str(call.id))

        call.title = normalized.title
        call.start_time = _parse_time(normalized.start_time)
        call.end_time = _parse_time(normalized.end_time)
        call.share_url = normalized.share_url
        call.recording_url = normalized.recording_url
        call.webhook_event_id = webhook_event_id
        await session.flush()

        participant_rows = [
            Participant(
                call_id=call.id,
                name=p.name,
                email=p.email,
                role=p.role,
                source_label=p.source_label,
            )
            for p in normalized.participants
        ]
        session.add_all(participant_rows)
        await session.flush()

        for u in normalized.utterances:
            speaker = resolve_speaker(u.speaker_label_raw, u.speaker_email, normalized.participants)
            session.add(Utterance(
                call_id=call.id,
                idx=u.idx,
                speaker_participant_id=participant_rows[speaker].id if speaker is not None else None,
                speaker_label_raw=u.speaker_label_raw,
                timestamp_start_sec=u.timestamp_start_sec,
                timestamp_end_sec=u.timestamp_end_sec,
                text_raw=u.text_raw,
                text_normalized=u.text_normalized,
            ))
        await session.flush()
        return call

    # ── Stages 2-6 ───────────────────────────────────────────

    async def _load_call(self, session: AsyncSession, call_id: uuid.UUID):
        call = await session.get(Call, call_id)
        if call is None:
            raise NotFoundError(f"Call {call_id} not found")
        participants = (await session.execute(
            select(Participant).where(Participant.call_id == call_id).order_by(Participant.created_at)
        )).scalars().all()
        utterances = (await session.execute(
            select(Utterance).where(Utterance.call_id == call_id).order_by(Utterance.idx)
        )).scalars().all()
        return call, list(participants), list(utterances)

    async def _run(self, call_id: uuid.UUID, callback_url: Optional[str] = None) -> dict:
        async with self._session_factory() as session:
            call, participants, utterances = await self._load_call(session, call_id)
            run = ProcessingRun(
                call_id=call.id,
                status=RunStatus.RUNNING.value,
                rubric_version=settings.RUBRIC_VERSION,
                extractor_prompt_version=settings.EXTRACTOR_PROMPT_VERSION,
                evaluator_prompt_version=settings.EVALUATOR_PROMPT_VERSION,
                transcript_hash=transcript_hash(
                    (u.idx, u.speaker_label_raw, u.text_normalized) for u in utterances
                ),
            )
            session.add(run)
            await session.commit()
            run_id = run.id
            title = call.title

        stage = PipelineStage.ENRICH.value
        with bound_context(call_id=str(call_id), processing_run_id=str(run_id)):
            logger.info("processing_run_started", utterances=len(utterances))
            try:
                # ── Stage 2: ENRICH ──
                started = time.perf_counter()
                context = self.context_builder.build(title, participants)
                enrichment = await self._enrich(context.prospect_company)
                context.deal_segment = enrichment.segment
                context.employee_count = enrichment.employee_count
                self._observe(stage, started)

                # ── Stage 3: EXTRACT ──
                stage = PipelineStage.EXTRACT.value
                started = time.perf_counter()
                outcome = await extract_signals(self.completion, utterances, context)
                if isinstance(outcome, Invalid):
                    raise OutputValidationError("extractor", outcome.errors)
                signals = outcome.value
                self._observe(stage, started)

                # ── Stage 4: EVALUATE ──
                stage = PipelineStage.EVALUATE.value
                started = time.perf_counter()
                outcome = await evaluate_signals(self.completion, signals, context)
                if isinstance(outcome, Invalid):
                    raise OutputValidationError("evaluator", outcome.errors)
                evaluation = outcome.value
                self._observe(stage, started)

                # ── Stage 5: CROSS_CHECK ──
                stage = PipelineStage.CROSS_CHECK.value
                check = cross_check(evaluation, context.deal_segment)
                if check.overridden:
                    cross_check_overrides_total.inc()
                    logger.warning("cross_check_override",
                                   evaluator_status=evaluation.overall_status,
                                   final_status=check.final_status,
                                   reason=check.mismatch_reason)

                # ── Stage 6: PERSIST ──
                stage = PipelineStage.PERSIST.value
                started = time.perf_counter()
                async with self._session_factory() as session:
                    session.add(ExtractedSignals(
                        processing_run_id=run_id,
                        call_id=call_id,
                        signals_json=signals.model_dump(mode="json"),
                    ))
                    session.add(Evaluation(
                        processing_run_id=run_id,
                        call_id=call_id,
                        overall_status=check.final_status,
                        evaluator_status=evaluation.overall_status,
                        cross_check_mismatch=check.mismatch_reason,
                        probability=evaluation.stage_1_probability,
                        score=evaluation.score,
                        deal_segment=context.deal_segment,
                        evaluation_json=evaluation.model_dump(mode="json"),
                    ))
                    await session.execute(
                        update(ProcessingRun)
                        .where(ProcessingRun.id == run_id)
                        .values(status=RunStatus.SUCCEEDED.value, finished_at=utcnow())
                    )
                    await session.commit()
                self._observe(stage, started)

            except Exception as e:
                await self._fail_run(run_id, str(e))
                logger.error("processing_run_failed", stage=stage, error=str(e))
                raise PipelineError(f"{stage} failed: {e}", stage) from e

            processing_runs_total.labels(status=RunStatus.SUCCEEDED.value).inc()
            logger.info("processing_run_succeeded",
                        overall_status=check.final_status,
                        deal_segment=context.deal_segment,
                        probability=evaluation.stage_1_probability)

            if callback_url:
                final = evaluation.model_copy(update={"overall_status": check.final_status})
                payload = build_callback_payload(
                    str(call_id), final, signals,
                    ae_name=context.ae_name,
                    account_name=context.prospect_company,
                    meeting_title=title,
                )
                await send_callback(callback_url, payload, transport=self._callback_transport)

        return {
            "call_id": str(call_id),
            "processing_run_id": str(run_id),
            "overall_status": check.final_status,
            "evaluator_status": evaluation.overall_status,
            "cross_check_mismatch": check.mismatch_reason,
            "deal_segment": context.deal_segment,
        }

    async def _enrich(self, company: Optional[str]):
        try:
            return await self.enrichment.lookup_company_size(company)
        except Exception as e:
            logger.warning("enrichment_degraded", company=company, error=str(e))
            return FALLBACK

    @staticmethod
    def _observe(stage: str, started: float) -> None:
        pipeline_stage_duration_seconds.labels(stage=stage).observe(time.perf_counter() - started)

    async def _fail_run(self, run_id: uuid.UUID, error: str) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(ProcessingRun)
                .where(ProcessingRun.id == run_id)
                .values(status=RunStatus.FAILED.value, error=error[:4000], finished_at=utcnow())
            )
            await session.commit()
        processing_runs_total.labels(status=RunStatus.FAILED.value).inc()

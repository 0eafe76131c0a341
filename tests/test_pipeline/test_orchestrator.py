"""
End-to-end tests for the per-call pipeline against a SQLite database.
"""

import json

import httpx
import pytest
from sqlalchemy import func, select

from app.clients.enrichment import EnrichmentResult
from app.ingestion.event_store import EventStore
from app.models.tables import (
    Call,
    Evaluation,
    ExtractedSignals,
    Participant,
    ProcessingRun,
    Utterance,
    WebhookEvent,
)
from app.pipeline.context import ContextBuilder
from app.pipeline.orchestrator import CallPipeline, PipelineError


class FakeEnrichment:
    def __init__(self, result=None, error=None):
        self.result = result or EnrichmentResult(employee_count=300, segment="mid_tier")
        self.error = error
        self.companies = []

    async def lookup_company_size(self, company_name):
        self.companies.append(company_name)
        if self.error:
            raise self.error
        return self.result


async def _admit(session_factory, meeting_payload, event_id="evt_1"):
    store = EventStore(session_factory)
    event = await store.admit(event_id, verified=True, raw_headers={}, raw_body=meeting_payload)
    return event.id


def _pipeline(session_factory, completion, enrichment=None, transport=None):
    return CallPipeline(
        session_factory=session_factory,
        completion=completion,
        enrichment=enrichment or FakeEnrichment(),
        context_builder=ContextBuilder(roster=["Sam"], operator_name="Console"),
        callback_transport=transport,
    )


async def _count(session_factory, model):
    async with session_factory() as session:
        return (await session.execute(select(func.count()).select_from(model))).scalar_one()


class TestProcessMeeting:
    """Webhook event through every stage to persisted results."""

    async def test_success_persists_everything(self, session_factory, fake_completion,
                                               meeting_payload, signals_payload,
                                               evaluation_payload):
        completion = fake_completion({
            "extract_signals": signals_payload,
            "evaluate": evaluation_payload(),
        })
        enrichment = FakeEnrichment()
        event_id = await _admit(session_factory, meeting_payload)

        result = await _pipeline(session_factory, completion, enrichment).process_meeting(event_id)

        assert result["overall_status"] == "Qualified"
        assert result["cross_check_mismatch"] is None
        assert result["deal_segment"] == "mid_tier"
        assert enrichment.companies == ["Lattice"]
        assert [c["purpose"] for c in completion.calls] == ["extract_signals", "evaluate"]
        assert "[Dana R.]: Offboarding is all manual today and it's painful." in completion.calls[0]["user"]
        assert "Prospect company: Lattice" in completion.calls[0]["user"]

        async with session_factory() as session:
            call = (await session.execute(select(Call))).scalar_one()
            assert call.external_recording_id == "123456"
            assert call.title == "Console/Lattice (Legal)"

            run = (await session.execute(select(ProcessingRun))).scalar_one()
            assert run.status == "succeeded"
            assert run.finished_at is not None
            assert len(run.transcript_hash) == 64

            evaluation = (await session.execute(select(Evaluation))).scalar_one()
            assert evaluation.processing_run_id == run.id
            assert evaluation.overall_status == "Qualified"
            assert evaluation.probability == 70

            signals = (await session.execute(select(ExtractedSignals))).scalar_one()
            assert signals.signals_json["account"]["identity_provider"]["value"] == "Okta"

            event = await session.get(WebhookEvent, event_id)
            assert event.processing_status == "processed"

        assert await _count(session_factory, Participant) == 2
        assert await _count(session_factory, Utterance) == 3

    async def test_utterances_linked_to_participants(self, session_factory, fake_completion,
                                                     meeting_payload, signals_payload,
                                                     evaluation_payload):
        completion = fake_completion({
            "extract_signals": signals_payload, "evaluate": evaluation_payload(),
        })
        event_id = await _admit(session_factory, meeting_payload)
        await _pipeline(session_factory, completion).process_meeting(event_id)

        async with session_factory() as session:
            participants = {
                p.id: p for p in (await session.execute(select(Participant))).scalars()
            }
            utterances = (await session.execute(
                select(Utterance).order_by(Utterance.idx)
            )).scalars().all()

        speakers = [participants[u.speaker_participant_id].name for u in utterances]
        assert speakers == ["Sam Carter", "Dana Reyes", "Dana Reyes"]

    async def test_low_scores_override_status(self, session_factory, fake_completion,
                                              meeting_payload, signals_payload,
                                              evaluation_payload):
        completion = fake_completion({
            "extract_signals": signals_payload,
            "evaluate": evaluation_payload(budget=2, authority=2, need=2, timing=2,
                                           status="Qualified"),
        })
        event_id = await _admit(session_factory, meeting_payload)

        result = await _pipeline(session_factory, completion).process_meeting(event_id)

        assert result["overall_status"] == "Unqualified"
        assert result["evaluator_status"] == "Qualified"
        async with session_factory() as session:
            evaluation = (await session.execute(select(Evaluation))).scalar_one()
        assert evaluation.overall_status == "Unqualified"
        assert evaluation.evaluator_status == "Qualified"
        assert evaluation.cross_check_mismatch.startswith("All BANT dimensions scored <= 2")

    async def test_enterprise_segment_from_enrichment(self, session_factory, fake_completion,
                                                      meeting_payload, signals_payload,
                                                      evaluation_payload):
        completion = fake_completion({
            "extract_signals": signals_payload,
            "evaluate": evaluation_payload(budget=5, authority=2, need=1, timing=2),
        })
        enrichment = FakeEnrichment(EnrichmentResult(employee_count=5000, segment="enterprise"))
        event_id = await _admit(session_factory, meeting_payload)

        result = await _pipeline(session_factory, completion, enrichment).process_meeting(event_id)

        assert result["deal_segment"] == "enterprise"
        assert result["overall_status"] == "Unqualified"
        assert "Estimated employees: 5000" in completion.calls[1]["user"]

    async def test_enrichment_failure_degrades(self, session_factory, fake_completion,
                                               meeting_payload, signals_payload,
                                               evaluation_payload):
        completion = fake_completion({
            "extract_signals": signals_payload, "evaluate": evaluation_payload(),
        })
        enrichment = FakeEnrichment(error=RuntimeError("enrichment down"))
        event_id = await _admit(session_factory, meeting_payload)

        result = await _pipeline(session_factory, completion, enrichment).process_meeting(event_id)
        assert result["deal_segment"] == "mid_tier"

    async def test_invalid_extractor_output_fails_run(self, session_factory, fake_completion,
                                                      meeting_payload, signals_payload):
        signals_payload["need"]["urgency_level"] = {"value": "high", "evidence": []}
        completion = fake_completion({"extract_signals": signals_payload})
        event_id = await _admit(session_factory, meeting_payload)

        with pytest.raises(PipelineError) as exc_info:
            await _pipeline(session_factory, completion).process_meeting(event_id)

        assert exc_info.value.stage == "EXTRACT"
        async with session_factory() as session:
            run = (await session.execute(select(ProcessingRun))).scalar_one()
        assert run.status == "failed"
        assert "need.urgency_level" in run.error
        assert await _count(session_factory, Evaluation) == 0

    async def test_completion_error_fails_evaluate(self, session_factory, fake_completion,
                                                   meeting_payload, signals_payload):
        completion = fake_completion({
            "extract_signals": signals_payload,
            "evaluate": RuntimeError("rate limited"),
        })
        event_id = await _admit(session_factory, meeting_payload)

        with pytest.raises(PipelineError) as exc_info:
            await _pipeline(session_factory, completion).process_meeting(event_id)

        assert exc_info.value.stage == "EVALUATE"
        assert await _count(session_factory, ExtractedSignals) == 0

    async def test_non_meeting_body_fails_normalize(self, session_factory, fake_completion):
        store = EventStore(session_factory)
        event = await store.admit("evt_text", verified=True, raw_headers={}, raw_body="not json")

        with pytest.raises(PipelineError) as exc_info:
            await _pipeline(session_factory, fake_completion()).process_meeting(event.id)
        assert exc_info.value.stage == "NORMALIZE"

    async def test_second_delivery_reuses_call(self, session_factory, fake_completion,
                                               meeting_payload, signals_payload,
                                               evaluation_payload):
        completion = fake_completion({
            "extract_signals": signals_payload, "evaluate": evaluation_payload(),
        })
        pipeline = _pipeline(session_factory, completion)

        first = await pipeline.process_meeting(await _admit(session_factory, meeting_payload, "evt_1"))
        second = await pipeline.process_meeting(await _admit(session_factory, meeting_payload, "evt_2"))

        assert first["call_id"] == second["call_id"]
        assert first["processing_run_id"] != second["processing_run_id"]
        assert await _count(session_factory, Call) == 1
        assert await _count(session_factory, Utterance) == 3
        assert await _count(session_factory, ProcessingRun) == 2

    async def test_callback_receives_digests(self, session_factory, fake_completion,
                                             meeting_payload, signals_payload,
                                             evaluation_payload):
        received = []

        def handler(request: httpx.Request) -> httpx.Response:
            received.append(json.loads(request.content))
            return httpx.Response(200)

        completion = fake_completion({
            "extract_signals": signals_payload,
            "evaluate": evaluation_payload(budget=1, authority=2, need=2, timing=1),
        })
        pipeline = _pipeline(session_factory, completion, transport=httpx.MockTransport(handler))
        event_id = await _admit(session_factory, meeting_payload)

        result = await pipeline.process_meeting(event_id, callback_url="https://hooks.example/cb")

        assert len(received) == 1
        payload = received[0]
        assert payload["call_id"] == result["call_id"]
        assert payload["evaluation"]["overall_status"] == "Unqualified"
        assert set(payload) == {
            "call_id", "growth_team_digest", "account_owner_digest", "evaluation", "signals",
        }

    async def test_callback_failure_does_not_fail_run(self, session_factory, fake_completion,
                                                      meeting_payload, signals_payload,
                                                      evaluation_payload):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500)

        completion = fake_completion({
            "extract_signals": signals_payload, "evaluate": evaluation_payload(),
        })
        pipeline = _pipeline(session_factory, completion, transport=httpx.MockTransport(handler))
        event_id = await _admit(session_factory, meeting_payload)

        result = await pipeline.process_meeting(event_id, callback_url="https://hooks.example/cb")
        assert result["overall_status"] == "Qualified"

    async def test_malformed_callback_url_does_not_fail_run(self, session_factory, fake_completion,
                                                            meeting_payload, signals_payload,
                                                            evaluation_payload):
        received = []

        def handler(request: httpx.Request) -> httpx.Response:
            received.append(request)
            return httpx.Response(200)

        completion = fake_completion({
            "extract_signals": signals_payload, "evaluate": evaluation_payload(),
        })
        pipeline = _pipeline(session_factory, completion, transport=httpx.MockTransport(handler))
        event_id = await _admit(session_factory, meeting_payload)

        result = await pipeline.process_meeting(event_id, callback_url="http://exa mple.com:abc/cb")

        assert result["overall_status"] == "Qualified"
        assert received == []
        assert await _count(session_factory, ProcessingRun) == 1


class TestReprocessCall:
    """New processing runs over stored transcripts."""

    async def test_creates_new_run(self, session_factory, fake_completion, meeting_payload,
                                   signals_payload, evaluation_payload):
        completion = fake_completion({
            "extract_signals": signals_payload, "evaluate": evaluation_payload(),
        })
        pipeline = _pipeline(session_factory, completion)
        first = await pipeline.process_meeting(await _admit(session_factory, meeting_payload))

        completion.responses["evaluate"] = evaluation_payload(status="Needs Work", probability=40)
        second = await pipeline.reprocess_call(first["call_id"])

        assert second["call_id"] == first["call_id"]
        assert second["overall_status"] == "Needs Work"
        assert await _count(session_factory, ProcessingRun) == 2
        assert await _count(session_factory, Evaluation) == 2

    async def test_unknown_call(self, session_factory, fake_completion):
        from app.errors import NotFoundError

        with pytest.raises(NotFoundError):
            await _pipeline(session_factory, fake_completion()).reprocess_call(
                "00000000-0000-0000-0000-000000000000"
            )

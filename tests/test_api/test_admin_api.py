"""
Tests for the admin, pipeline, phrase analysis and job routes.
"""

import uuid
from datetime import datetime, timezone

import pytest

from app.config import settings
from app.dependencies import get_context_builder, get_recorder_factory
from app.models.tables import Call, GeoAnalysisRun, PhraseStatistic
from app.pipeline.context import ContextBuilder


class FakeRecorder:
    meetings = {}

    async def find_meeting_by_url(self, url):
        return self.meetings.get(url)

    async def find_meeting_by_recording_id(self, recording_id):
        for meeting in self.meetings.values():
            if str(meeting["recording_id"]) == str(recording_id):
                return meeting
        return None


@pytest.fixture
def recorder(api, meeting_payload):
    FakeRecorder.meetings = {meeting_payload["url"]: meeting_payload}
    api.app.dependency_overrides[get_recorder_factory] = lambda: FakeRecorder
    return FakeRecorder


class TestApiKey:
    """X-API-Key guard on operator routes."""

    async def test_dev_mode_without_key(self, api, monkeypatch):
        monkeypatch.setattr(settings, "API_KEY", None)
        response = await api.client.get("/api/v1/jobs/stats")
        assert response.status_code == 200

    async def test_key_required_when_configured(self, api, monkeypatch):
        monkeypatch.setattr(settings, "API_KEY", "s3cret")
        response = await api.client.get("/api/v1/jobs/stats")
        assert response.status_code == 401
        assert response.json() == {"error": "Invalid or missing API key"}

        response = await api.client.get("/api/v1/jobs/stats", headers={"X-API-Key": "s3cret"})
        assert response.status_code == 200


class TestImportMeeting:
    """Manual meeting import by recording or share URL."""

    async def test_missing_url(self, api, recorder):
        response = await api.client.post("/api/v1/admin/import-meeting", json={})
        assert response.status_code == 400
        assert response.json() == {"error": "Missing url"}

    async def test_not_found(self, api, recorder):
        response = await api.client.post("/api/v1/admin/import-meeting",
                                         json={"url": "https://recorder.example.com/calls/999"})
        assert response.status_code == 404

    async def test_imported(self, api, recorder, meeting_payload):
        response = await api.client.post("/api/v1/admin/import-meeting",
                                         json={"url": meeting_payload["url"]})
        assert response.status_code == 200
        data = response.json()
        assert data["title"] == "Console/Lattice (Legal)"

        event = await api.store.get(data["event_id"])
        assert event.external_event_id == "manual_import_123456"
        job = await api.queue.claim()
        assert job.payload == {"webhook_event_id": data["event_id"]}


class TestReprocess:
    """Reprocess requests for stored calls."""

    async def test_missing_call_id(self, api):
        response = await api.client.post("/api/v1/admin/reprocess", json={})
        assert response.status_code == 400

    async def test_unknown_call(self, api):
        response = await api.client.post("/api/v1/admin/reprocess",
                                         json={"call_id": str(uuid.uuid4())})
        assert response.status_code == 404

    async def test_queued(self, api, session_factory):
        async with session_factory() as session:
            call = Call(title="Console/Lattice", external_recording_id="1")
            session.add(call)
            await session.commit()
            call_id = str(call.id)

        response = await api.client.post("/api/v1/admin/reprocess", json={"call_id": call_id})

        assert response.status_code == 200
        assert response.json()["type"] == "REPROCESS_CALL"
        job = await api.queue.claim()
        assert job.payload == {"call_id": call_id}


class TestPipelineRoutes:
    """Bearer-authenticated pipeline entry points."""

    @pytest.fixture
    def bearer(self, monkeypatch):
        monkeypatch.setattr(settings, "PIPELINE_API_KEY", "pipeline-key")
        return {"Authorization": "Bearer pipeline-key"}

    async def test_key_not_configured(self, api, monkeypatch):
        monkeypatch.setattr(settings, "PIPELINE_API_KEY", None)
        response = await api.client.post("/api/v1/pipeline/process", json={"recording_id": 1})
        assert response.status_code == 500

    async def test_wrong_key(self, api, bearer):
        response = await api.client.post("/api/v1/pipeline/process", json={"recording_id": 1},
                                         headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401

    async def test_process_with_callback(self, api, bearer, recorder):
        response = await api.client.post("/api/v1/pipeline/process", headers=bearer, json={
            "recording_id": 123456, "callback_url": "https://hooks.example/cb",
        })

        assert response.status_code == 200
        event_id = response.json()["event_id"]
        assert (await api.store.get(event_id)).external_event_id == "pipeline_123456"
        job = await api.queue.claim()
        assert job.payload == {"webhook_event_id": event_id, "callback_url": "https://hooks.example/cb"}

    async def test_malformed_callback_url_rejected(self, api, bearer, recorder):
        response = await api.client.post("/api/v1/pipeline/process", headers=bearer, json={
            "recording_id": 123456, "callback_url": "http://exa mple.com:abc/cb",
        })

        assert response.status_code == 400
        assert await api.queue.claim() is None

    async def test_process_unknown_recording(self, api, bearer, recorder):
        response = await api.client.post("/api/v1/pipeline/process", headers=bearer,
                                         json={"recording_id": 42})
        assert response.status_code == 404

    async def test_extract_info(self, api, bearer, meeting_payload):
        api.app.dependency_overrides[get_context_builder] = lambda: ContextBuilder(
            roster=["Sam"], operator_name="Console",
        )
        response = await api.client.post("/api/v1/pipeline/extract-info", headers=bearer, json={
            "title": meeting_payload["title"],
            "recording_id": meeting_payload["recording_id"],
            "calendar_invitees": meeting_payload["calendar_invitees"],
            "recorded_by": meeting_payload["recorded_by"],
        })

        assert response.status_code == 200
        data = response.json()
        assert data["company_name"] == "Lattice"
        assert data["company_domain_guess"] == "lattice.com"
        assert data["ae_name"] == "Sam Carter"
        assert [p["is_external"] for p in data["participants"]] == [False, True]

    async def test_extract_info_requires_title(self, api, bearer):
        response = await api.client.post("/api/v1/pipeline/extract-info", headers=bearer,
                                         json={"recording_id": 1})
        assert response.status_code == 400


class TestGeoRoutes:
    """Phrase analysis triggers and result queries."""

    async def test_trigger_requires_crm_ids(self, api, monkeypatch):
        monkeypatch.setattr(settings, "CRM_PIPELINE_ID", None)
        monkeypatch.setattr(settings, "CRM_STAGE_ID", None)
        response = await api.client.post("/api/v1/geo-analysis/trigger", json={})
        assert response.status_code == 400

    async def test_trigger_uses_configured_defaults(self, api, monkeypatch):
        monkeypatch.setattr(settings, "CRM_PIPELINE_ID", "sales")
        monkeypatch.setattr(settings, "CRM_STAGE_ID", "qualified")
        response = await api.client.post("/api/v1/geo-analysis/trigger", json={"backfill": True})

        assert response.json()["type"] == "backfill"
        job = await api.queue.claim()
        assert job.type == "EXTRACT_PHRASES"
        assert job.payload == {"crm_pipeline_id": "sales", "crm_stage_id": "qualified", "backfill": True}

    async def test_trigger_qualified_only(self, api):
        response = await api.client.post("/api/v1/geo-analysis/trigger", json={"qualified_only": True})
        assert response.status_code == 200
        job = await api.queue.claim()
        assert job.payload == {"backfill": True, "qualified_only": True}

    async def test_weekly(self, api):
        response = await api.client.post("/api/v1/geo-analysis/weekly")
        assert response.json()["type"] == "weekly_analysis"
        assert (await api.queue.claim()).type == "RUN_WEEKLY_ANALYSIS"

    async def test_results_before_any_run(self, api):
        response = await api.client.get("/api/v1/geo-analysis/results")
        assert response.json() == {
            "phrases": [], "run_id": None, "message": "No weekly analysis has been run yet",
        }

    async def test_results_latest_weekly_run(self, api, session_factory):
        now = datetime(2026, 10, 12, tzinfo=timezone.utc)
        async with session_factory() as session:
            run = GeoAnalysisRun(type="weekly_analysis", status="succeeded", calls_processed=2)
            session.add(run)
            await session.flush()
            for phrase, category, total in [("manual offboarding", "pain_language", 13),
                                            ("scim provisioning", "feature_mentions", 4),
                                            ("access reviews", "pain_language", 7)]:
                session.add(PhraseStatistic(
                    run_id=run.id, phrase=phrase, category=category, frequency=1, call_count=1,
                    cumulative_frequency=total, cumulative_call_count=1, example_contexts=[],
                    first_seen_at=now, last_seen_at=now,
                ))
            await session.commit()
            run_id = str(run.id)

        response = await api.client.get("/api/v1/geo-analysis/results",
                                        params={"category": "pain_language"})
        data = response.json()
        assert data["run_id"] == run_id
        assert [p["phrase"] for p in data["phrases"]] == ["manual offboarding", "access reviews"]

        runs = (await api.client.get("/api/v1/geo-analysis/runs")).json()["runs"]
        assert [r["id"] for r in runs] == [run_id]

    async def test_results_limit_bounds(self, api):
        response = await api.client.get("/api/v1/geo-analysis/results", params={"limit": 0})
        assert response.status_code == 400


class TestJobRoutes:
    """Queue statistics and dead-letter recovery."""

    async def test_dead_letter_and_requeue(self, api):
        job = await api.queue.enqueue("PROCESS_MEETING", {"webhook_event_id": "x"})
        await api.queue.claim()
        await api.queue.mark_failed(job.id, error="boom", max_attempts=1)

        dead = (await api.client.get("/api/v1/jobs/dead")).json()["jobs"]
        assert [j["id"] for j in dead] == [str(job.id)]
        assert dead[0]["last_error"] == "boom"

        response = await api.client.post(f"/api/v1/jobs/{job.id}/requeue")
        assert response.status_code == 200
        assert response.json()["status"] == "queued"

        response = await api.client.post(f"/api/v1/jobs/{job.id}/requeue")
        assert response.status_code == 409

    async def test_get_job(self, api):
        job = await api.queue.enqueue("RUN_WEEKLY_ANALYSIS")
        response = await api.client.get(f"/api/v1/jobs/{job.id}")
        assert response.json()["type"] == "RUN_WEEKLY_ANALYSIS"

        missing = await api.client.get(f"/api/v1/jobs/{uuid.uuid4()}")
        assert missing.status_code == 404

    async def test_stats(self, api):
        await api.queue.enqueue("RUN_WEEKLY_ANALYSIS")
        stats = (await api.client.get("/api/v1/jobs/stats")).json()
        assert stats["queued"] == 1
        assert stats["dead"] == 0

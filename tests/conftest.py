"""
Shared test fixtures.
"""

import os

# The module-level engine is created at import time; keep it off PostgreSQL
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ.setdefault("PROMETHEUS_ENABLED", "false")

import copy
import json
from types import SimpleNamespace

import pytest

from app.models.database import build_engine, build_session_factory, create_all


@pytest.fixture
async def session_factory(tmp_path):
    """Fresh file-backed SQLite database per test so concurrent sessions share data."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await create_all(engine)
    yield build_session_factory(engine)
    await engine.dispose()


class FakeCompletion:
    """Completion service returning canned JSON per purpose and recording each request."""

    model = "fake-model"

    def __init__(self, responses=None):
        self.responses = dict(responses or {})
        self.calls = []

    async def complete_json(self, system_prompt, user_message, purpose):
        self.calls.append({"system": system_prompt, "user": user_message, "purpose": purpose})
        response = self.responses[purpose]
        if isinstance(response, Exception):
            raise response
        if callable(response):
            response = response(user_message)
        return response if isinstance(response, str) else json.dumps(response)


@pytest.fixture
def fake_completion():
    return FakeCompletion


def _unknown():
    return {"value": "unknown", "evidence": []}


def _sentiment(disposition="neutral"):
    return {"disposition": disposition, "summary": "No strong signal.", "evidence": []}


SIGNALS = {
    "budget": {
        "discussed": {"value": True, "evidence": ["We have budget set aside for this quarter"]},
        "details": _unknown(),
        "budget_alignment": "aligned",
        "prospect_sentiment": _sentiment("positive"),
    },
    "authority": {
        "decision_maker_identified": {"value": True, "evidence": ["I sign off on tooling"]},
        "decision_maker_name": {"value": "Dana Reyes", "evidence": ["I sign off on tooling"]},
        "buying_process": _unknown(),
        "champion_identified": {"value": False, "evidence": []},
        "prospect_sentiment": _sentiment(),
    },
    "need": {
        "pain_points": {"value": ["manual offboarding"], "evidence": ["Offboarding is all manual today"]},
        "current_solution": _unknown(),
        "urgency_level": _unknown(),
        "prospect_sentiment": _sentiment("cautious"),
    },
    "timing": {
        "timeline": _unknown(),
        "upcoming_events": _unknown(),
        "demo_scheduled": {"value": False, "evidence": []},
        "next_steps": _unknown(),
        "prospect_sentiment": _sentiment(),
    },
    "account": {
        "company_name": {"value": "Lattice", "evidence": []},
        "employee_count": _unknown(),
        "identity_provider": {"value": "Okta", "evidence": ["We are on Okta"]},
        "scim_mentioned": {"value": False, "evidence": []},
        "competitors_mentioned": {"value": [], "evidence": []},
    },
    "participant_titles": [{"name": "Dana Reyes", "title": "IT Director", "role_in_deal": "decision_maker"}],
    "call_summary": "Discovery call about automating access reviews and offboarding.",
}


@pytest.fixture
def signals_payload():
    """A valid extractor response."""
    return copy.deepcopy(SIGNALS)


@pytest.fixture
def evaluation_payload():
    """Factory for evaluator responses with configurable scores and status."""
    def _make(budget=4, authority=4, need=4, timing=3, status="Qualified", probability=70):
        def dim(score):
            return {"score": score, "rationale": f"Scored {score} from the transcript."}
        return {
            "bant_scores": {
                "budget": dim(budget),
                "authority": dim(authority),
                "need": dim(need),
                "timing": dim(timing),
            },
            "stage_1_probability": probability,
            "stage_1_reasoning": "Clear pain and an engaged decision maker.",
            "overall_status": status,
            "call_notes": "Prospect wants automated offboarding.",
            "coaching_notes": ["Ask about budget owner earlier."],
            "next_steps": ["Send security questionnaire."],
            "score": 72,
        }
    return _make


@pytest.fixture
def meeting_payload():
    """Recording provider meeting object as delivered by webhook."""
    return {
        "title": "Console/Lattice (Legal)",
        "recording_id": 123456,
        "url": "https://recorder.example.com/calls/123456",
        "share_url": "https://recorder.example.com/share/abc",
        "recording_start_time": "2026-10-12T15:00:00Z",
        "recording_end_time": "2026-10-12T15:30:00Z",
        "calendar_invitees": [
            {"name": "Sam Carter", "email": "sam@console.example", "is_external": False},
            {"name": "Dana Reyes", "email": "Dana@Lattice.example", "is_external": True,
             "matched_speaker_display_name": "Dana R."},
        ],
        "recorded_by": {"name": "Sam Carter", "email": "sam@console.example", "team": "Sales"},
        "transcript": [
            {"speaker": {"display_name": "Sam Carter",
                         "matched_calendar_invitee_email": "sam@console.example"},
             "text": "Thanks for  joining — what prompted the call?", "timestamp": "00:00:05"},
            {"speaker": {"display_name": "Dana R."},
             "text": "Offboarding is all manual today and it’s painful.", "timestamp": "00:00:12"},
            {"speaker": {"display_name": "Dana R.",
                         "matched_calendar_invitee_email": "dana@lattice.example"},
             "text": "We are on Okta. I sign off on tooling.", "timestamp": "00:01:02"},
        ],
    }


@pytest.fixture
async def api(session_factory):
    """App wired to the per-test database, plus an httpx client bound to it."""
    import httpx

    from app.dependencies import get_db, get_event_store, get_job_queue
    from app.ingestion.event_store import EventStore
    from app.main import create_app
    from app.worker.queue import JobQueue

    app = create_app()
    store = EventStore(session_factory)
    queue = JobQueue(session_factory, worker_id="api")

    async def _db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_event_store] = lambda: store
    app.dependency_overrides[get_job_queue] = lambda: queue
    app.dependency_overrides[get_db] = _db

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield SimpleNamespace(client=client, app=app, queue=queue, store=store)

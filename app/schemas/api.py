"""
Request and response bodies for the HTTP API.
"""

import uuid
from datetime import datetime
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, HttpUrl


class EventAccepted(BaseModel):
    ok: bool = True
    event_id: str
    title: Optional[str] = None


class JobAccepted(BaseModel):
    ok: bool = True
    job_id: str
    type: Optional[str] = None


# ── Admin ────────────────────────────────────────────────────

class ImportMeetingRequest(BaseModel):
    url: Optional[str] = None


class ReprocessRequest(BaseModel):
    call_id: Optional[str] = None


# ── Pipeline integration ─────────────────────────────────────

class PipelineProcessRequest(BaseModel):
    recording_id: Optional[Union[int, str]] = None
    callback_url: Optional[HttpUrl] = None


class ExtractInfoInvitee(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    is_external: Optional[bool] = None


class ExtractInfoRecorder(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None


class ExtractInfoRequest(BaseModel):
    title: str = ""
    recording_id: Optional[Union[int, str]] = None
    calendar_invitees: list[ExtractInfoInvitee] = []
    recorded_by: Optional[ExtractInfoRecorder] = None


class ExtractInfoParticipant(BaseModel):
    name: str
    email: Optional[str] = None
    is_external: bool = False


class ExtractInfoResponse(BaseModel):
    company_name: Optional[str] = None
    company_domain_guess: Optional[str] = None
    ae_name: Optional[str] = None
    recording_id: Union[int, str]
    meeting_title: str
    participants: list[ExtractInfoParticipant]


# ── Phrase analysis ──────────────────────────────────────────

class GeoTriggerRequest(BaseModel):
    crm_pipeline_id: Optional[str] = None
    crm_stage_id: Optional[str] = None
    backfill: bool = False
    qualified_only: bool = False


class GeoRunSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    type: str
    status: str
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    calls_processed: int = 0
    error: Optional[str] = None
    created_at: Optional[datetime] = None


class GeoRunListResponse(BaseModel):
    runs: list[GeoRunSummary]


class PhraseStatisticOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    phrase: str
    category: str
    frequency: int
    call_count: int
    cumulative_frequency: int
    cumulative_call_count: int
    example_contexts: list[dict[str, Any]] = []
    first_seen_at: datetime
    last_seen_at: datetime


class PhraseResultsResponse(BaseModel):
    phrases: list[PhraseStatisticOut]
    run_id: Optional[str] = None
    message: Optional[str] = None


# ── Jobs ─────────────────────────────────────────────────────

class JobOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    type: str
    status: str
    payload: dict[str, Any] = Field(default_factory=dict)
    attempts: int
    run_after: datetime
    locked_by: Optional[str] = None
    locked_at: Optional[datetime] = None
    last_error: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class DeadJobsResponse(BaseModel):
    jobs: list[JobOut]


class QueueStats(BaseModel):
    queued: int = 0
    running: int = 0
    succeeded: int = 0
    failed: int = 0
    dead: int = 0

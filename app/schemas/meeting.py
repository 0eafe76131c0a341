"""
Recording provider meeting payload.
Matches the provider's Meeting object as delivered by webhook or list-meetings API.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict


class TranscriptSpeaker(BaseModel):
    model_config = ConfigDict(extra="ignore")

    display_name: str
    matched_calendar_invitee_email: Optional[str] = None


class TranscriptItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    speaker: TranscriptSpeaker
    text: str
    timestamp: Optional[str] = None  # "HH:MM:SS" relative to recording start


class Invitee(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: Optional[str] = None
    email: Optional[str] = None
    email_domain: Optional[str] = None
    is_external: Optional[bool] = None
    matched_speaker_display_name: Optional[str] = None


class RecordedBy(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str
    email: Optional[str] = None
    email_domain: Optional[str] = None
    team: Optional[str] = None


class MeetingPayload(BaseModel):
    """The subset of the provider meeting object the pipeline reads."""
    model_config = ConfigDict(extra="ignore")

    title: str
    meeting_title: Optional[str] = None
    recording_id: int
    url: str
    share_url: Optional[str] = None
    created_at: Optional[str] = None
    recording_start_time: Optional[str] = None
    recording_end_time: Optional[str] = None
    calendar_invitees: list[Invitee] = []
    recorded_by: Optional[RecordedBy] = None
    transcript: Optional[list[TranscriptItem]] = None
    crm_matches: Optional[Any] = None


# ── Normalized call ──────────────────────────────────────────

class NormalizedParticipant(BaseModel):
    name: str
    email: Optional[str] = None
    role: str  # internal / external / unknown
    source_label: Optional[str] = None


class NormalizedUtterance(BaseModel):
    idx: int
    speaker_label_raw: str
    speaker_email: Optional[str] = None
    timestamp_start_sec: Optional[float] = None
    timestamp_end_sec: Optional[float] = None
    text_raw: str
    text_normalized: str


class NormalizedCall(BaseModel):
    external_recording_id: str
    title: str
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    share_url: Optional[str] = None
    recording_url: Optional[str] = None
    participants: list[NormalizedParticipant]
    utterances: list[NormalizedUtterance]

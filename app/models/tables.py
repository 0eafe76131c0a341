"""
SQLAlchemy ORM models.
JSON columns are JSONB on PostgreSQL and plain JSON elsewhere.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.database import Base

JsonColumn = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _created_at() -> Mapped[datetime]:
    return mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )


# ────────────────────────────────────────────────────────────
# WEBHOOK EVENTS
# ────────────────────────────────────────────────────────────
class WebhookEvent(Base):
    __tablename__ = "webhook_events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    external_event_id: Mapped[str] = mapped_column(Text, nullable=False)
    verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    raw_headers: Mapped[Optional[dict]] = mapped_column(JsonColumn, nullable=True)
    # Parsed JSON object when the body was JSON, else the raw text
    raw_body: Mapped[Any] = mapped_column(JsonColumn, nullable=True)
    processing_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="queued", server_default="queued"
    )
    received_at: Mapped[datetime] = _created_at()

    __table_args__ = (
        UniqueConstraint("external_event_id", name="uq_webhook_events_external_id"),
    )


# ────────────────────────────────────────────────────────────
# JOBS
# ────────────────────────────────────────────────────────────
class Job(Base):
    __tablename__ = "jobs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    type: Mapped[str] = mapped_column(String(40), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="queued", server_default="queued"
    )
    payload: Mapped[dict] = mapped_column(JsonColumn, nullable=False, default=dict)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    run_after: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )
    locked_by: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    locked_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )

    __table_args__ = (
        Index("idx_jobs_claim", "status", "run_after", "created_at"),
    )


# ────────────────────────────────────────────────────────────
# CALLS
# ────────────────────────────────────────────────────────────
class Call(Base):
    __tablename__ = "calls"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    external_recording_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    start_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    end_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    share_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    recording_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    webhook_event_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("webhook_events.id"), nullable=True
    )
    created_at: Mapped[datetime] = _created_at()

    participants = relationship("Participant", back_populates="call", cascade="all, delete-orphan")
    utterances = relationship("Utterance", back_populates="call", cascade="all, delete-orphan")
    processing_runs = relationship("ProcessingRun", back_populates="call")

    __table_args__ = (
        Index("idx_calls_recording", "external_recording_id"),
        Index("idx_calls_share_url", "share_url"),
    )


class Participant(Base):
    __tablename__ = "participants"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    call_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("calls.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    email: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="unknown")
    source_label: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = _created_at()

    call = relationship("Call", back_populates="participants")

    __table_args__ = (
        Index("idx_participants_call", "call_id"),
        Index("idx_participants_email", "email"),
    )


class Utterance(Base):
    __tablename__ = "utterances"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    call_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("calls.id", ondelete="CASCADE"), nullable=False
    )
    idx: Mapped[int] = mapped_column(Integer, nullable=False)
    speaker_participant_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("participants.id", ondelete="SET NULL"), nullable=True
    )
    speaker_label_raw: Mapped[str] = mapped_column(Text, nullable=False)
    timestamp_start_sec: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    timestamp_end_sec: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    text_raw: Mapped[str] = mapped_column(Text, nullable=False)
    text_normalized: Mapped[str] = mapped_column(Text, nullable=False)

    call = relationship("Call", back_populates="utterances")

    __table_args__ = (
        UniqueConstraint("call_id", "idx", name="uq_utterance_call_idx"),
    )


# ────────────────────────────────────────────────────────────
# PROCESSING RUNS AND OUTPUTS
# ────────────────────────────────────────────────────────────
class ProcessingRun(Base):
    __tablename__ = "processing_runs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    call_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("calls.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="running")
    rubric_version: Mapped[str] = mapped_column(Text, nullable=False)
    extractor_prompt_version: Mapped[str] = mapped_column(Text, nullable=False)
    evaluator_prompt_version: Mapped[str] = mapped_column(Text, nullable=False)
    transcript_hash: Mapped[str] = mapped_column(Text, nullable=False)
    started_at: Mapped[datetime] = _created_at()
    finished_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    call = relationship("Call", back_populates="processing_runs")

    __table_args__ = (
        Index("idx_processing_runs_call", "call_id"),
    )


class ExtractedSignals(Base):
    __tablename__ = "extracted_signals"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    processing_run_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("processing_runs.id", ondelete="CASCADE"), nullable=False
    )
    call_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("calls.id", ondelete="CASCADE"), nullable=False
    )
    signals_json: Mapped[dict] = mapped_column(JsonColumn, nullable=False)
    created_at: Mapped[datetime] = _created_at()

    __table_args__ = (
        Index("idx_extracted_signals_call", "call_id", "created_at"),
    )


class Evaluation(Base):
    __tablename__ = "evaluations"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    processing_run_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("processing_runs.id", ondelete="CASCADE"), nullable=False
    )
    call_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("calls.id", ondelete="CASCADE"), nullable=False
    )
    overall_status: Mapped[str] = mapped_column(String(20), nullable=False)
    evaluator_status: Mapped[str] = mapped_column(String(20), nullable=False)
    cross_check_mismatch: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    probability: Mapped[int] = mapped_column(Integer, nullable=False)
    score: Mapped[int] = mapped_column(Integer, nullable=False)
    deal_segment: Mapped[str] = mapped_column(String(20), nullable=False, default="mid_tier")
    evaluation_json: Mapped[dict] = mapped_column(JsonColumn, nullable=False)
    created_at: Mapped[datetime] = _created_at()

    __table_args__ = (
        Index("idx_evaluations_call", "call_id", "created_at"),
        Index("idx_evaluations_status", "overall_status"),
    )


# ────────────────────────────────────────────────────────────
# PHRASE ANALYSIS
# ────────────────────────────────────────────────────────────
class GeoAnalysisRun(Base):
    __tablename__ = "geo_analysis_runs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    type: Mapped[str] = mapped_column(String(30), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="running")
    started_at: Mapped[datetime] = _created_at()
    finished_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    calls_processed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    config: Mapped[Optional[dict]] = mapped_column(JsonColumn, nullable=True)
    created_at: Mapped[datetime] = _created_at()

    __table_args__ = (
        Index("idx_geo_runs_type_status", "type", "status", "created_at"),
    )


class CallPhraseExtraction(Base):
    __tablename__ = "call_phrase_extractions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    call_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("calls.id", ondelete="CASCADE"), nullable=False
    )
    run_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("geo_analysis_runs.id", ondelete="CASCADE"), nullable=False
    )
    phrases_json: Mapped[dict] = mapped_column(JsonColumn, nullable=False)
    model: Mapped[str] = mapped_column(Text, nullable=False)
    prompt_version: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = _created_at()

    __table_args__ = (
        Index("idx_phrase_extractions_call", "call_id"),
        Index("idx_phrase_extractions_created", "created_at"),
    )


class PhraseStatistic(Base):
    __tablename__ = "phrase_statistics"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    run_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("geo_analysis_runs.id", ondelete="CASCADE"), nullable=False
    )
    phrase: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(40), nullable=False)
    frequency: Mapped[int] = mapped_column(Integer, nullable=False)
    call_count: Mapped[int] = mapped_column(Integer, nullable=False)
    cumulative_frequency: Mapped[int] = mapped_column(Integer, nullable=False)
    cumulative_call_count: Mapped[int] = mapped_column(Integer, nullable=False)
    example_contexts: Mapped[list] = mapped_column(JsonColumn, nullable=False, default=list)
    first_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = _created_at()

    __table_args__ = (
        Index("idx_phrase_stats_run", "run_id", "cumulative_frequency"),
    )


def as_uuid(value, label: str = "record") -> uuid.UUID:
    """Coerce an id from a payload or URL; malformed ids count as not found."""
    from app.errors import NotFoundError

    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise NotFoundError(f"Invalid {label} id: {value}")

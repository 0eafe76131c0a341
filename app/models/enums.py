"""
Python enums for status and type columns.
Values are what gets stored in the database.
"""

from enum import Enum


class JobType(str, Enum):
    PROCESS_MEETING = "PROCESS_MEETING"
    REPROCESS_CALL = "REPROCESS_CALL"
    EXTRACT_PHRASES = "EXTRACT_PHRASES"
    RUN_WEEKLY_ANALYSIS = "RUN_WEEKLY_ANALYSIS"


class JobStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    DEAD = "dead"


class ParticipantRole(str, Enum):
    INTERNAL = "internal"
    EXTERNAL = "external"
    UNKNOWN = "unknown"


class RunStatus(str, Enum):
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class GeoRunType(str, Enum):
    DAILY_EXTRACTION = "daily_extraction"
    WEEKLY_ANALYSIS = "weekly_analysis"
    BACKFILL = "backfill"


class OverallStatus(str, Enum):
    QUALIFIED = "Qualified"
    NEEDS_WORK = "Needs Work"
    UNQUALIFIED = "Unqualified"


class DealSegment(str, Enum):
    ENTERPRISE = "enterprise"
    MID_TIER = "mid_tier"


class PhraseCategory(str, Enum):
    PROBLEM_DESCRIPTIONS = "problem_descriptions"
    SOLUTION_SEEKING = "solution_seeking"
    PAIN_LANGUAGE = "pain_language"
    FEATURE_MENTIONS = "feature_mentions"
    SEARCH_INTENT = "search_intent"


class PipelineStage(str, Enum):
    """Per-call processing stages, in order."""
    NORMALIZE = "NORMALIZE"
    ENRICH = "ENRICH"
    EXTRACT = "EXTRACT"
    EVALUATE = "EVALUATE"
    CROSS_CHECK = "CROSS_CHECK"
    PERSIST = "PERSIST"

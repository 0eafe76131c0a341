"""
Prometheus metrics for the call qualification pipeline.
"""

from prometheus_client import Counter, Histogram, Gauge


# ── Webhook Intake ───────────────────────────────────────────
webhook_events_total = Counter(
    "webhook_events_total",
    "Inbound webhook deliveries by outcome",
    ["outcome"],
)

# ── Job Queue ────────────────────────────────────────────────
jobs_enqueued_total = Counter(
    "jobs_enqueued_total",
    "Jobs inserted into the queue",
    ["job_type"],
)

jobs_claimed_total = Counter(
    "jobs_claimed_total",
    "Jobs claimed by a worker",
    ["job_type"],
)

job_claim_races_lost_total = Counter(
    "job_claim_races_lost_total",
    "Claims that lost the compare-and-swap to another worker",
)

jobs_finished_total = Counter(
    "jobs_finished_total",
    "Jobs finished by outcome (succeeded, retried, dead)",
    ["job_type", "outcome"],
)

job_duration_seconds = Histogram(
    "job_duration_seconds",
    "Wall time spent processing a claimed job",
    ["job_type"],
    buckets=[1, 5, 10, 30, 60, 120, 300, 600, 1800],
)

# ── Per-call Pipeline ────────────────────────────────────────
pipeline_stage_duration_seconds = Histogram(
    "pipeline_stage_duration_seconds",
    "Time per pipeline stage",
    ["stage"],
    buckets=[0.1, 0.5, 1, 5, 10, 30, 60, 120],
)

processing_runs_total = Counter(
    "processing_runs_total",
    "Processing runs by final status",
    ["status"],
)

cross_check_overrides_total = Counter(
    "cross_check_overrides_total",
    "Evaluations whose overall status was overridden by the consistency rule",
)

# ── External Collaborators ───────────────────────────────────
completion_requests_total = Counter(
    "completion_requests_total",
    "Requests to the text-completion service",
    ["purpose", "outcome"],
)

external_api_latency_seconds = Histogram(
    "external_api_latency_seconds",
    "Latency of external API calls",
    ["service", "operation"],
    buckets=[0.1, 0.5, 1, 2, 5, 10, 30, 60],
)

# ── Phrase Analysis ──────────────────────────────────────────
phrase_extractions_total = Counter(
    "phrase_extractions_total",
    "Calls run through phrase extraction",
    ["outcome"],
)

phrase_statistics_written_total = Counter(
    "phrase_statistics_written_total",
    "Phrase statistic rows written by weekly analysis",
)

# ── Worker ───────────────────────────────────────────────────
worker_jobs_active = Gauge(
    "worker_jobs_active",
    "Number of currently active worker jobs",
)

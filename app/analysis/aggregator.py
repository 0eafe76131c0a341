"""
Weekly phrase aggregation.

Pure functions: group a week's extractions by (category, normalized phrase),
then fold the result onto the previous weekly run's cumulative statistics.
"""

import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta, timezone, tzinfo
from typing import Any, Iterable, Optional

from dateutil import tz

from app.config import settings
from app.schemas.phrases import PHRASE_CATEGORIES

_WHITESPACE_RE = re.compile(r"\s+")


@dataclass
class PhraseAggregate:
    phrase: str
    category: str
    frequency: int = 0
    call_ids: set = field(default_factory=set)
    contexts: list[dict] = field(default_factory=list)


@dataclass(frozen=True)
class PriorPhraseStat:
    cumulative_frequency: int
    cumulative_call_count: int
    first_seen_at: datetime


def normalize_phrase_key(phrase: str) -> str:
    return _WHITESPACE_RE.sub(" ", phrase.lower().strip())


def phrase_key(category: str, phrase: str) -> str:
    return f"{category}::{normalize_phrase_key(phrase)}"


def aggregate_phrases(
    extractions: Iterable[tuple[Any, dict]],
    max_contexts: Optional[int] = None,
) -> dict[str, PhraseAggregate]:
    """
    ``extractions`` yields ``(call_id, phrases_json)`` pairs.
    The first spelling seen for a key is the one reported.
    """
    limit = settings.PHRASE_MAX_EXAMPLE_CONTEXTS if max_contexts is None else max_contexts
    aggregates: dict[str, PhraseAggregate] = {}

    for call_id, phrases in extractions:
        for category in PHRASE_CATEGORIES:
            for item in (phrases or {}).get(category) or []:
                key = phrase_key(category, item["phrase"])
                entry = aggregates.get(key)
                if entry is None:
                    entry = aggregates[key] = PhraseAggregate(phrase=item["phrase"], category=category)
                entry.frequency += 1
                entry.call_ids.add(str(call_id))
                if len(entry.contexts) < limit:
                    entry.contexts.append({
                        "quote": item.get("verbatim_quote"),
                        "speaker": item.get("speaker"),
                        "context": item.get("context_summary"),
                    })

    return aggregates


def merge_with_baseline(
    run_id: uuid.UUID,
    aggregates: dict[str, PhraseAggregate],
    baseline: dict[str, PriorPhraseStat],
    now: datetime,
) -> list[dict]:
    """PhraseStatistic row values: this week's counts plus the prior cumulative totals."""
    rows = []
    for key, agg in aggregates.items():
        prior = baseline.get(key)
        call_count = len(agg.call_ids)
        rows.append({
            "run_id": run_id,
            "phrase": agg.phrase,
            "category": agg.category,
            "frequency": agg.frequency,
            "call_count": call_count,
            "cumulative_frequency": (prior.cumulative_frequency if prior else 0) + agg.frequency,
            "cumulative_call_count": (prior.cumulative_call_count if prior else 0) + call_count,
            "example_contexts": agg.contexts,
            "first_seen_at": prior.first_seen_at if prior else now,
            "last_seen_at": now,
        })
    return rows


def week_start(now: datetime, local_tz: Optional[tzinfo] = None) -> datetime:
    """Monday 00:00 in local time for the week containing ``now``, returned in UTC."""
    zone = local_tz or tz.tzlocal()
    if now.tzinfo is None:
        now = now.replace(tzinfo=zone)
    local = now.astimezone(zone)
    monday = datetime.combine(local.date() - timedelta(days=local.weekday()), time.min, tzinfo=zone)
    return monday.astimezone(timezone.utc)


def batched(items: list, size: int) -> Iterable[list]:
    for i in range(0, len(items), size):
        yield items[i:i + size]

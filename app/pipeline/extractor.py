"""
Signal extraction: transcript plus meeting context in, evidence-checked BANT
signals out.
"""

from typing import Iterable, Optional

import structlog

from app.clients.completion import CompletionService
from app.config import settings
from app.pipeline.context import MeetingContext
from app.pipeline.validation import Invalid, ValidationOutcome, validate_completion
from app.prompts.loader import load_prompt
from app.schemas.signals import ExtractedSignalsResult

logger = structlog.get_logger(__name__)


def format_transcript(utterances: Iterable) -> str:
    """One ``[speaker]: text`` line per utterance, in transcript order."""
    return "\n".join(
        f"[{u.speaker_label_raw}]: {u.text_normalized}"
        for u in sorted(utterances, key=lambda u: u.idx)
    )


def build_extractor_message(utterances: Iterable, context: MeetingContext) -> str:
    return "\n".join([
        "## MEETING CONTEXT",
        *context.as_prompt_lines(),
        "",
        "## TRANSCRIPT",
        format_transcript(utterances),
    ])


async def extract_signals(
    completion: CompletionService,
    utterances: Iterable,
    context: MeetingContext,
    prompt_version: Optional[str] = None,
) -> ValidationOutcome[ExtractedSignalsResult]:
    system_prompt = load_prompt(prompt_version or settings.EXTRACTOR_PROMPT_VERSION)
    content = await completion.complete_json(
        system_prompt, build_extractor_message(utterances, context), purpose="extract_signals",
    )
    outcome = validate_completion(content, ExtractedSignalsResult)
    if isinstance(outcome, Invalid):
        logger.warning("signal_extraction_invalid", errors=outcome.errors[:5])
    return outcome

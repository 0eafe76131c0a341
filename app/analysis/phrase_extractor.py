"""
Categorized phrase extraction from the prospect side of a call.
"""

from dataclasses import dataclass
from typing import Optional, Sequence

import structlog

from app.clients.completion import CompletionService
from app.config import settings
from app.pipeline.validation import Invalid, Validated, ValidationOutcome, validate_completion
from app.prompts.loader import load_prompt
from app.schemas.phrases import PhraseExtractionResult

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ProspectUtterance:
    speaker_label: str
    text: str


def build_prospect_transcript(utterances: Sequence[ProspectUtterance]) -> str:
    lines = [f"[{u.speaker_label}]: {u.text}" for u in utterances]
    return "## PROSPECT TRANSCRIPT\n" + "\n".join(lines)


async def extract_phrases(
    completion: CompletionService,
    utterances: Sequence[ProspectUtterance],
    prompt_version: Optional[str] = None,
) -> ValidationOutcome[PhraseExtractionResult]:
    """Nothing said by the prospect means an empty result without a completion call."""
    if not utterances:
        return Validated(PhraseExtractionResult.empty())

    content = await completion.complete_json(
        load_prompt(prompt_version or settings.PHRASE_PROMPT_VERSION),
        build_prospect_transcript(utterances),
        purpose="extract_phrases",
    )
    outcome = validate_completion(content, PhraseExtractionResult)
    if isinstance(outcome, Invalid):
        logger.warning("phrase_extraction_invalid", errors=outcome.errors[:5])
    return outcome

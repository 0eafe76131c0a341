"""
Qualification judgment over extracted signals.
"""

import json
from typing import Optional

import structlog

from app.clients.completion import CompletionService
from app.config import settings
from app.pipeline.context import MeetingContext
from app.pipeline.validation import Invalid, ValidationOutcome, validate_completion
from app.prompts.loader import load_prompt
from app.schemas.evaluation import EvaluationResult
from app.schemas.signals import ExtractedSignalsResult

logger = structlog.get_logger(__name__)


def build_evaluator_message(signals: ExtractedSignalsResult, context: MeetingContext) -> str:
    lines = [
        "## EXTRACTED SIGNALS",
        json.dumps(signals.model_dump(mode="json"), indent=2),
        "",
        "## MEETING CONTEXT",
        *context.as_prompt_lines(),
    ]
    if context.employee_count is not None:
        lines.append(f"Estimated employees: {context.employee_count}")
    return "\n".join(lines)


async def evaluate_signals(
    completion: CompletionService,
    signals: ExtractedSignalsResult,
    context: MeetingContext,
    prompt_version: Optional[str] = None,
) -> ValidationOutcome[EvaluationResult]:
    system_prompt = load_prompt(prompt_version or settings.EVALUATOR_PROMPT_VERSION)
    content = await completion.complete_json(
        system_prompt, build_evaluator_message(signals, context), purpose="evaluate",
    )
    outcome = validate_completion(content, EvaluationResult)
    if isinstance(outcome, Invalid):
        logger.warning("evaluation_invalid", errors=outcome.errors[:5])
    return outcome

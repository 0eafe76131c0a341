"""
Human-readable digests of a processed call and the best-effort completion callback.
"""

from typing import Any, Optional

import httpx
import structlog

from app.config import settings
from app.schemas.evaluation import EvaluationResult
from app.schemas.signals import ExtractedSignalsResult

logger = structlog.get_logger(__name__)

BANT_DIMENSIONS = ("budget", "authority", "need", "timing")


def score_pips(score: int) -> str:
    return "●" * score + "○" * (5 - score)


def _header(evaluation: EvaluationResult, ae_name: Optional[str],
            account_name: Optional[str], meeting_title: str) -> dict[str, Any]:
    return {
        "ae_name": ae_name,
        "account_name": account_name,
        "meeting_title": meeting_title,
        "overall_status": evaluation.overall_status,
        "stage_1_probability": evaluation.stage_1_probability,
    }


def _bullets(items: list[str], empty: str) -> str:
    return "\n".join(f"• {item}" for item in items) or empty


def format_growth_team_digest(
    evaluation: EvaluationResult,
    signals: ExtractedSignalsResult,
    ae_name: Optional[str],
    account_name: Optional[str],
    meeting_title: str,
) -> dict[str, Any]:
    """Full BANT breakdown with prospect sentiment, for the growth team."""
    scores = evaluation.bant_scores
    lines = [
        f"*{ae_name or 'Unknown AE'}* just met with *{account_name or 'Unknown Account'}*",
        "",
        "*Participants*",
        _bullets([f"{p.name} - {p.title}" for p in signals.participant_titles],
                 "_(none detected)_"),
        "",
        "*Call Notes*",
        evaluation.call_notes,
    ]
    for dimension in BANT_DIMENSIONS:
        score = getattr(scores, dimension)
        sentiment = getattr(signals, dimension).prospect_sentiment.disposition.capitalize()
        lines += [
            "",
            f"*{dimension.capitalize()}* {score_pips(score.score)} ({score.score}/5)",
            score.rationale,
        ]
        if dimension == "budget":
            lines.append(f"Alignment: {signals.budget.budget_alignment} · Prospect: {sentiment}")
        else:
            lines.append(f"Prospect: {sentiment}")
    lines += [
        "",
        f"*Stage 1 Probability:* {evaluation.stage_1_probability}% - {evaluation.overall_status}",
        evaluation.stage_1_reasoning,
    ]
    return {**_header(evaluation, ae_name, account_name, meeting_title), "text": "\n".join(lines)}


def format_account_owner_digest(
    evaluation: EvaluationResult,
    ae_name: Optional[str],
    account_name: Optional[str],
    meeting_title: str,
) -> dict[str, Any]:
    """Short score summary with next steps and coaching, for the account executive."""
    scores = evaluation.bant_scores
    lines = [
        f"*Your call with {account_name or 'Unknown Account'}* - "
        f"{evaluation.overall_status} ({evaluation.stage_1_probability}%)",
        "",
        "*BANT Summary*",
    ]
    for dimension in BANT_DIMENSIONS:
        score = getattr(scores, dimension)
        lines.append(f"{dimension.capitalize()}: {score_pips(score.score)} - {score.rationale}")
    lines += [
        "",
        "*Next Steps*",
        _bullets(evaluation.next_steps, "_(none)_"),
        "",
        "*Coaching Notes*",
        _bullets(evaluation.coaching_notes, "_(none)_"),
    ]
    return {**_header(evaluation, ae_name, account_name, meeting_title), "text": "\n".join(lines)}


def build_callback_payload(
    call_id: str,
    evaluation: EvaluationResult,
    signals: ExtractedSignalsResult,
    ae_name: Optional[str],
    account_name: Optional[str],
    meeting_title: str,
) -> dict[str, Any]:
    return {
        "call_id": call_id,
        "growth_team_digest": format_growth_team_digest(
            evaluation, signals, ae_name, account_name, meeting_title),
        "account_owner_digest": format_account_owner_digest(
            evaluation, ae_name, account_name, meeting_title),
        "evaluation": evaluation.model_dump(mode="json"),
        "signals": signals.model_dump(mode="json"),
    }


async def send_callback(
    url: str,
    payload: dict[str, Any],
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> bool:
    """Single POST; failures are logged and never raised."""
    try:
        async with httpx.AsyncClient(
            timeout=settings.CALLBACK_TIMEOUT_SECONDS, transport=transport,
        ) as client:
            response = await client.post(url, json=payload)
    except (httpx.HTTPError, httpx.InvalidURL, ValueError) as e:
        logger.warning("callback_failed", url=url, error=str(e))
        return False
    if response.is_success:
        logger.info("callback_sent", url=url, status_code=response.status_code)
        return True
    logger.warning("callback_rejected", url=url, status_code=response.status_code)
    return False

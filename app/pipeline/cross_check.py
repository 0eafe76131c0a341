"""
Deterministic consistency check between BANT scores and the stated status.
"""

from dataclasses import dataclass
from typing import Optional

from app.models.enums import DealSegment, OverallStatus
from app.schemas.evaluation import EvaluationResult

LOW_SCORE_CEILING = 2


@dataclass(frozen=True)
class CrossCheckResult:
    final_status: str
    mismatch_reason: Optional[str] = None

    @property
    def overridden(self) -> bool:
        return self.mismatch_reason is not None


def considered_dimensions(segment: str) -> tuple[str, ...]:
    # Enterprise calls are judged without the budget dimension
    if segment == DealSegment.ENTERPRISE.value:
        return ("authority", "need", "timing")
    return ("budget", "authority", "need", "timing")


def cross_check(evaluation: EvaluationResult, segment: str) -> CrossCheckResult:
    """Override to Unqualified when every considered dimension scored low."""
    stated = evaluation.overall_status
    dimensions = considered_dimensions(segment)
    scores = [getattr(evaluation.bant_scores, d).score for d in dimensions]

    if all(s <= LOW_SCORE_CEILING for s in scores) and stated != OverallStatus.UNQUALIFIED.value:
        label = "All BANT dimensions" if len(dimensions) == 4 else "All non-budget BANT dimensions"
        return CrossCheckResult(
            final_status=OverallStatus.UNQUALIFIED.value,
            mismatch_reason=(
                f"{label} scored <= {LOW_SCORE_CEILING} but evaluator returned \"{stated}\""
            ),
        )
    return CrossCheckResult(final_status=stated)

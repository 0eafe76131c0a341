"""
Qualification judgment returned by the evaluator.
"""

from typing import Literal

from pydantic import BaseModel, Field

OverallStatusLiteral = Literal["Qualified", "Needs Work", "Unqualified"]


class DimensionScore(BaseModel):
    score: int = Field(ge=1, le=5)
    rationale: str


class BantScores(BaseModel):
    budget: DimensionScore
    authority: DimensionScore
    need: DimensionScore
    timing: DimensionScore


class EvaluationResult(BaseModel):
    bant_scores: BantScores
    stage_1_probability: int = Field(ge=0, le=100)
    stage_1_reasoning: str
    overall_status: OverallStatusLiteral
    call_notes: str
    coaching_notes: list[str] = []
    next_steps: list[str] = []
    score: int = Field(ge=0, le=100)

"""
Structured sales signals extracted from a call transcript.

Every populated signal must cite at least one verbatim quote. A field counts as
unpopulated when its value is "unknown", an empty string or list, or false.
"""

from typing import Literal, Union

from pydantic import BaseModel, field_validator, model_validator

SignalValue = Union[bool, int, float, str, list[str]]

Disposition = Literal["positive", "neutral", "cautious", "negative", "unknown"]


def is_unpopulated(value: SignalValue) -> bool:
    if value is False:
        return True
    if isinstance(value, str):
        return value.strip() == "" or value.strip().lower() == "unknown"
    if isinstance(value, list):
        return len(value) == 0
    return False


class SignalField(BaseModel):
    """A value with optional evidence (used where evidence may come from metadata)."""
    value: SignalValue
    evidence: list[str] = []


class EvidencedSignal(SignalField):
    @model_validator(mode="after")
    def _populated_needs_evidence(self):
        if not is_unpopulated(self.value) and not [q for q in self.evidence if q.strip()]:
            raise ValueError("Non-unknown value must include at least one evidence quote")
        return self


class ProspectSentiment(BaseModel):
    disposition: Disposition
    summary: str
    evidence: list[str] = []


class BudgetSignals(BaseModel):
    discussed: EvidencedSignal
    details: EvidencedSignal
    budget_alignment: Literal["aligned", "gap_small", "gap_large", "unknown"]
    prospect_sentiment: ProspectSentiment


class AuthoritySignals(BaseModel):
    decision_maker_identified: EvidencedSignal
    decision_maker_name: EvidencedSignal
    buying_process: EvidencedSignal
    champion_identified: EvidencedSignal
    prospect_sentiment: ProspectSentiment


class NeedSignals(BaseModel):
    pain_points: EvidencedSignal
    current_solution: EvidencedSignal
    urgency_level: EvidencedSignal
    prospect_sentiment: ProspectSentiment


class TimingSignals(BaseModel):
    timeline: EvidencedSignal
    upcoming_events: EvidencedSignal
    demo_scheduled: EvidencedSignal
    next_steps: EvidencedSignal
    prospect_sentiment: ProspectSentiment


class AccountSignals(BaseModel):
    company_name: SignalField  # often comes from the meeting title, not the transcript
    employee_count: EvidencedSignal
    identity_provider: EvidencedSignal
    scim_mentioned: EvidencedSignal
    competitors_mentioned: EvidencedSignal


class ParticipantTitle(BaseModel):
    name: str
    title: str
    role_in_deal: Literal["decision_maker", "champion", "evaluator", "end_user", "unknown"]


class ExtractedSignalsResult(BaseModel):
    budget: BudgetSignals
    authority: AuthoritySignals
    need: NeedSignals
    timing: TimingSignals
    account: AccountSignals
    participant_titles: list[ParticipantTitle] = []
    call_summary: str

    @field_validator("call_summary")
    @classmethod
    def _summary_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("call_summary must not be empty")
        return v

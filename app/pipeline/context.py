"""
Meeting context: who we met, on which team, and how large the account is.
Roster and operator company are injected rather than module constants.
"""

from dataclasses import dataclass, field
from typing import Optional, Sequence

from app.config import settings
from app.ingestion.normalize import matches_roster
from app.models.enums import DealSegment, ParticipantRole
from app.pipeline.title_parser import guess_company_domain, parse_meeting_title


@dataclass(frozen=True)
class Attendee:
    name: str
    email: Optional[str] = None


@dataclass
class MeetingContext:
    our_company: str
    meeting_title: str
    prospect_company: Optional[str] = None
    company_domain_guess: Optional[str] = None
    ae_name: Optional[str] = None
    deal_segment: str = DealSegment.MID_TIER.value
    employee_count: Optional[int] = None
    internal_attendees: list[Attendee] = field(default_factory=list)
    external_attendees: list[Attendee] = field(default_factory=list)

    def as_prompt_lines(self) -> list[str]:
        internal = ", ".join(a.name for a in self.internal_attendees) or "None listed"
        external = ", ".join(a.name for a in self.external_attendees) or "None listed"
        return [
            f"Our company: {self.our_company}",
            f"Prospect company: {self.prospect_company or 'Unknown'}",
            f"Deal segment: {self.deal_segment}",
            f"Meeting title: {self.meeting_title}",
            f"Internal attendees: {internal}",
            f"External attendees: {external}",
        ]


class ContextBuilder:
    """Builds MeetingContext from a title and participant list."""

    def __init__(self, roster: Optional[Sequence[str]] = None, operator_name: Optional[str] = None):
        self.roster = list(settings.team_roster if roster is None else roster)
        self.operator_name = operator_name or settings.OPERATOR_COMPANY_NAME

    def company_from_title(self, title: str) -> Optional[str]:
        return parse_meeting_title(title, self.operator_name)

    def find_ae(self, names: Sequence[str]) -> Optional[str]:
        """First attendee whose name matches the team roster."""
        for name in names:
            if matches_roster(name, self.roster):
                return name
        return None

    def build(self, title: str, participants: Sequence) -> MeetingContext:
        """
        ``participants`` are objects with ``name``, ``email`` and ``role``
        (normalized models or persisted rows both work).
        """
        company = self.company_from_title(title)
        internal = [Attendee(p.name, p.email) for p in participants
                    if p.role == ParticipantRole.INTERNAL.value]
        external = [Attendee(p.name, p.email) for p in participants
                    if p.role == ParticipantRole.EXTERNAL.value]
        return MeetingContext(
            our_company=self.operator_name,
            meeting_title=title,
            prospect_company=company,
            company_domain_guess=guess_company_domain(company) if company else None,
            ae_name=self.find_ae([p.name for p in participants]),
            internal_attendees=internal,
            external_attendees=external,
        )

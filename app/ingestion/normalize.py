"""
Map a provider meeting payload into normalized call, participant and utterance rows.
"""

import hashlib
import re
from typing import Iterable, Optional, Sequence

from app.models.enums import ParticipantRole
from app.schemas.meeting import (
    MeetingPayload,
    NormalizedCall,
    NormalizedParticipant,
    NormalizedUtterance,
)

# Typographic characters mapped to their ASCII equivalents
_TYPOGRAPHIC = {
    "‘": "'",   # left single quote
    "’": "'",   # right single quote
    "“": '"',   # left double quote
    "”": '"',   # right double quote
    "–": "-",   # en dash
    "—": "-",   # em dash
}
_TYPOGRAPHIC_RE = re.compile("|".join(_TYPOGRAPHIC))
_WHITESPACE_RE = re.compile(r"\s+")


def normalize_text(raw: str) -> str:
    """Trim, collapse whitespace and replace typographic quotes/dashes."""
    text = _WHITESPACE_RE.sub(" ", raw.strip())
    return _TYPOGRAPHIC_RE.sub(lambda m: _TYPOGRAPHIC[m.group(0)], text)


def parse_timestamp_to_sec(ts: Optional[str]) -> Optional[float]:
    """'HH:MM:SS' relative offset to seconds; None for anything else."""
    if not ts:
        return None
    parts = ts.strip().split(":")
    if len(parts) != 3:
        return None
    try:
        hours, minutes, seconds = (float(p) for p in parts)
    except ValueError:
        return None
    return hours * 3600 + minutes * 60 + seconds


def matches_roster(name: Optional[str], roster: Iterable[str]) -> bool:
    if not name:
        return False
    lowered = name.lower()
    return any(member.lower() in lowered for member in roster if member)


def classify_role(name: Optional[str], is_external: Optional[bool], roster: Sequence[str]) -> str:
    if matches_roster(name, roster) or is_external is False:
        return ParticipantRole.INTERNAL.value
    return ParticipantRole.EXTERNAL.value


def map_meeting_to_normalized(meeting: MeetingPayload, roster: Sequence[str] = ()) -> NormalizedCall:
    participants: list[NormalizedParticipant] = [
        NormalizedParticipant(
            name=inv.name or "Unknown",
            email=inv.email,
            role=classify_role(inv.name, inv.is_external, roster),
            source_label=inv.matched_speaker_display_name,
        )
        for inv in meeting.calendar_invitees
    ]

    # The recorder is always on our side of the call
    recorder = meeting.recorded_by
    if recorder is not None and not any(
        p.email and recorder.email and p.email.lower() == recorder.email.lower()
        for p in participants
    ):
        participants.append(NormalizedParticipant(
            name=recorder.name,
            email=recorder.email,
            role=ParticipantRole.INTERNAL.value,
            source_label=recorder.team,
        ))

    utterances = [
        NormalizedUtterance(
            idx=idx,
            speaker_label_raw=item.speaker.display_name,
            speaker_email=item.speaker.matched_calendar_invitee_email,
            timestamp_start_sec=parse_timestamp_to_sec(item.timestamp),
            timestamp_end_sec=None,  # provider only gives a start offset
            text_raw=item.text,
            text_normalized=normalize_text(item.text),
        )
        for idx, item in enumerate(meeting.transcript or [])
    ]

    return NormalizedCall(
        external_recording_id=str(meeting.recording_id),
        title=meeting.title,
        start_time=meeting.recording_start_time,
        end_time=meeting.recording_end_time,
        share_url=meeting.share_url,
        recording_url=meeting.url,
        participants=participants,
        utterances=utterances,
    )


def resolve_speaker(
    label: str,
    email: Optional[str],
    participants: Sequence[NormalizedParticipant],
) -> Optional[int]:
    """Index of the participant who spoke an utterance, or None if unmatched."""
    if email:
        for i, p in enumerate(participants):
            if p.email and p.email.lower() == email.lower():
                return i
    lowered = label.strip().lower()
    for i, p in enumerate(participants):
        if p.source_label and p.source_label.strip().lower() == lowered:
            return i
    for i, p in enumerate(participants):
        if p.name.strip().lower() == lowered:
            return i
    return None


def transcript_hash(lines: Iterable[tuple[int, str, str]]) -> str:
    """Content fingerprint over (idx, speaker label, normalized text)."""
    digest = hashlib.sha256()
    for idx, speaker, text in lines:
        digest.update(f"{idx}\x1f{speaker}\x1f{text}\n".encode("utf-8"))
    return digest.hexdigest()

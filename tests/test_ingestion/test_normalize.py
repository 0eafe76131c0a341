"""
Tests for meeting payload normalization.
"""

import pytest

from app.ingestion.normalize import (
    classify_role,
    map_meeting_to_normalized,
    normalize_text,
    parse_timestamp_to_sec,
    resolve_speaker,
    transcript_hash,
)
from app.schemas.meeting import MeetingPayload


class TestNormalizeText:
    """Whitespace and typographic character cleanup."""

    def test_collapses_whitespace(self):
        assert normalize_text("  hello \n\t  world  ") == "hello world"

    def test_typographic_characters(self):
        assert normalize_text("it’s “fine” – really — ok") == "it's \"fine\" - really - ok"


class TestParseTimestamp:
    """HH:MM:SS offsets to seconds."""

    @pytest.mark.parametrize("raw,expected", [
        ("00:00:05", 5.0),
        ("00:01:02", 62.0),
        ("01:00:00", 3600.0),
    ])
    def test_valid(self, raw, expected):
        assert parse_timestamp_to_sec(raw) == expected

    @pytest.mark.parametrize("raw", [None, "", "1:02", "aa:bb:cc"])
    def test_invalid(self, raw):
        assert parse_timestamp_to_sec(raw) is None


class TestClassifyRole:
    """Internal or external participant classification."""

    def test_roster_match_is_internal_even_if_flagged_external(self):
        assert classify_role("Sam Carter", True, ["sam"]) == "internal"

    def test_non_external_flag_is_internal(self):
        assert classify_role("Jo Bloggs", False, []) == "internal"

    def test_external_flag(self):
        assert classify_role("Dana Reyes", True, ["sam"]) == "external"

    def test_missing_flag_is_external(self):
        assert classify_role("Someone", None, []) == "external"

    def test_missing_flag_on_roster_is_internal(self):
        assert classify_role("Sam Carter", None, ["Sam"]) == "internal"


class TestMapMeeting:
    """Provider meeting payload to normalized call."""

    def test_participants_and_utterances(self, meeting_payload):
        call = map_meeting_to_normalized(MeetingPayload.model_validate(meeting_payload), ["Sam"])

        assert call.external_recording_id == "123456"
        assert [p.role for p in call.participants] == ["internal", "external"]
        assert [u.idx for u in call.utterances] == [0, 1, 2]
        assert call.utterances[0].text_normalized == "Thanks for joining - what prompted the call?"
        assert call.utterances[1].text_normalized == "Offboarding is all manual today and it's painful."
        assert call.utterances[2].timestamp_start_sec == 62.0

    def test_recorder_added_when_not_invited(self, meeting_payload):
        meeting_payload["recorded_by"] = {"name": "Alex Kim", "email": "alex@console.example"}
        call = map_meeting_to_normalized(MeetingPayload.model_validate(meeting_payload))

        recorder = call.participants[-1]
        assert recorder.name == "Alex Kim"
        assert recorder.role == "internal"

    def test_recorder_not_duplicated(self, meeting_payload):
        call = map_meeting_to_normalized(MeetingPayload.model_validate(meeting_payload))
        assert len(call.participants) == 2

    def test_missing_transcript(self, meeting_payload):
        meeting_payload["transcript"] = None
        call = map_meeting_to_normalized(MeetingPayload.model_validate(meeting_payload))
        assert call.utterances == []


class TestResolveSpeaker:
    """Linking utterances to participants."""

    def test_by_email_then_label_then_name(self, meeting_payload):
        call = map_meeting_to_normalized(MeetingPayload.model_validate(meeting_payload))
        assert resolve_speaker("whoever", "DANA@lattice.example", call.participants) == 1
        assert resolve_speaker("Dana R.", None, call.participants) == 1
        assert resolve_speaker("Sam Carter", None, call.participants) == 0
        assert resolve_speaker("Nobody", None, call.participants) is None


class TestTranscriptHash:
    """Transcript content fingerprint."""

    def test_stable_and_content_sensitive(self):
        lines = [(0, "A", "hello"), (1, "B", "hi")]
        assert transcript_hash(lines) == transcript_hash(list(lines))
        assert transcript_hash(lines) != transcript_hash([(0, "A", "hello"), (1, "B", "hey")])

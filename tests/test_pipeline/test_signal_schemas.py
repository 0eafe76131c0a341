"""
Tests for completion output schemas and typed validation results.
"""

import json

from app.pipeline.validation import Invalid, Validated, validate_completion
from app.schemas.evaluation import EvaluationResult
from app.schemas.phrases import PhraseExtractionResult
from app.schemas.signals import ExtractedSignalsResult, is_unpopulated


class TestIsUnpopulated:
    """Which signal values count as unpopulated."""

    def test_values(self):
        assert is_unpopulated("unknown")
        assert is_unpopulated("  Unknown ")
        assert is_unpopulated("")
        assert is_unpopulated([])
        assert is_unpopulated(False)
        assert not is_unpopulated(True)
        assert not is_unpopulated("Okta")
        assert not is_unpopulated(["x"])
        assert not is_unpopulated(0)


class TestValidateCompletion:
    """Parsing completion text into typed outcomes."""

    def test_valid_signals(self, signals_payload):
        outcome = validate_completion(json.dumps(signals_payload), ExtractedSignalsResult)
        assert isinstance(outcome, Validated)
        assert outcome.ok
        assert outcome.value.account.identity_provider.value == "Okta"

    def test_populated_field_without_evidence_is_invalid(self, signals_payload):
        signals_payload["need"]["urgency_level"] = {"value": "high", "evidence": []}
        outcome = validate_completion(json.dumps(signals_payload), ExtractedSignalsResult)

        assert isinstance(outcome, Invalid)
        assert not outcome.ok
        assert any("need.urgency_level" in e for e in outcome.errors)

    def test_blank_evidence_quote_does_not_count(self, signals_payload):
        signals_payload["timing"]["timeline"] = {"value": "Q1", "evidence": ["   "]}
        outcome = validate_completion(json.dumps(signals_payload), ExtractedSignalsResult)
        assert isinstance(outcome, Invalid)

    def test_company_name_may_come_without_quote(self, signals_payload):
        signals_payload["account"]["company_name"] = {"value": "Lattice", "evidence": []}
        assert validate_completion(json.dumps(signals_payload), ExtractedSignalsResult).ok

    def test_empty_summary_is_invalid(self, signals_payload):
        signals_payload["call_summary"] = "  "
        assert not validate_completion(json.dumps(signals_payload), ExtractedSignalsResult).ok

    def test_not_json(self):
        outcome = validate_completion("Sure! Here is the JSON:", EvaluationResult)
        assert isinstance(outcome, Invalid)
        assert outcome.errors[0].startswith("response is not valid JSON")
        assert outcome.raw == "Sure! Here is the JSON:"

    def test_json_array_rejected(self):
        outcome = validate_completion("[]", EvaluationResult)
        assert outcome.errors == ["response must be a JSON object"]

    def test_score_out_of_range(self, evaluation_payload):
        payload = evaluation_payload(budget=6)
        outcome = validate_completion(json.dumps(payload), EvaluationResult)
        assert isinstance(outcome, Invalid)
        assert any(e.startswith("bant_scores.budget.score") for e in outcome.errors)

    def test_unknown_status_rejected(self, evaluation_payload):
        payload = evaluation_payload(status="Maybe")
        assert not validate_completion(json.dumps(payload), EvaluationResult).ok


class TestPhraseExtractionResult:
    """Phrase category defaults."""

    def test_missing_categories_default_empty(self):
        result = PhraseExtractionResult.model_validate({"pain_language": [{
            "phrase": "integration issues", "verbatim_quote": "we have integration issues",
            "speaker": "Dana", "context_summary": "Complaining about the current tool.",
        }]})
        assert result.total() == 1
        assert result.search_intent == []

    def test_empty(self):
        assert PhraseExtractionResult.empty().total() == 0

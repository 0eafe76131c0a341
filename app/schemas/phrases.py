"""
Categorized prospect phrases extracted from a single call.
"""

from pydantic import BaseModel

from app.models.enums import PhraseCategory

PHRASE_CATEGORIES: tuple[str, ...] = tuple(c.value for c in PhraseCategory)


class ExtractedPhrase(BaseModel):
    phrase: str
    verbatim_quote: str
    speaker: str
    context_summary: str


class PhraseExtractionResult(BaseModel):
    problem_descriptions: list[ExtractedPhrase] = []
    solution_seeking: list[ExtractedPhrase] = []
    pain_language: list[ExtractedPhrase] = []
    feature_mentions: list[ExtractedPhrase] = []
    search_intent: list[ExtractedPhrase] = []

    @classmethod
    def empty(cls) -> "PhraseExtractionResult":
        return cls()

    def total(self) -> int:
        return sum(len(getattr(self, category)) for category in PHRASE_CATEGORIES)

"""Pydantic schemas for Stage A / Stage B LLM outputs.

All LLM responses are validated against these models before use.
RecoveredCard is the relaxed per-card shape used when a Stage B batch
fails strict validation and individual cards are salvaged.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, List, Literal, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

CARD_ID_PATTERN = r"^M[\w-]+_C\d+$"

Difficulty = Literal["easy", "medium", "hard"]
BloomLevel = Literal["Remember", "Understand", "Apply", "Analyze", "Evaluate", "Create"]
HIGHER_ORDER_BLOOM = ("Apply", "Analyze", "Evaluate", "Create")


# --- Stage A ---------------------------------------------------------------

class SummaryPoint(BaseModel):
    point: str = Field(..., min_length=10, max_length=500)
    supports: List[str] = Field(..., min_length=1, description="chunk_ids backing this point")

class KeyTopic(BaseModel):
    topic: str = Field(..., min_length=2, max_length=100)
    supports: List[str] = Field(default_factory=list)

class CoverageStatus(str, Enum):
    COVERED = "Covered"
    NOT_COVERED = "Not Covered"
    PARTIALLY_COVERED = "Partially Covered"

class CoverageEntry(BaseModel):
    heading: str
    status: CoverageStatus
    supports: List[str] = Field(default_factory=list)

    @field_validator("status", mode="before")
    @classmethod
    def accept_compact_spelling(cls, v: Any) -> Any:
        # Models emit both "NotCovered" and "Not Covered"
        if isinstance(v, str):
            squashed = v.replace(" ", "").replace("_", "").lower()
            for status in CoverageStatus:
                if status.value.replace(" ", "").lower() == squashed:
                    return status
        return v

class TopicSummary(BaseModel):
    """Stage A output: module summary points and key topics with chunk citations."""
    module_summary: List[SummaryPoint] = Field(..., min_length=6, max_length=10)
    key_topics: List[KeyTopic] = Field(..., min_length=6, max_length=12)
    coverage_map: Optional[List[CoverageEntry]] = None


class ContextSummary(BaseModel):
    """Condensed stand-in for half of an oversized chunk list."""
    summary: str = Field(..., min_length=1)


# --- Stage B ---------------------------------------------------------------

class Evidence(BaseModel):
    chunk_id: str
    source_file: str = ""
    location: str = Field("", validation_alias=AliasChoices("location", "loc"))
    start_sec: Optional[float] = None
    end_sec: Optional[float] = None
    excerpt: str = Field(..., min_length=10, max_length=500, description="Verbatim 1-2 sentence excerpt from the chunk")

class SourceRef(BaseModel):
    type: str = "document"
    file: str
    location: str = Field("", validation_alias=AliasChoices("location", "loc"))

class FlashcardItem(BaseModel):
    card_id: str = Field(..., pattern=CARD_ID_PATTERN)
    question: str = Field(..., min_length=10, max_length=300, validation_alias=AliasChoices("question", "q"))
    answer: str = Field(..., min_length=1, validation_alias=AliasChoices("answer", "a"))
    difficulty: Difficulty
    bloom_level: BloomLevel
    evidence: List[Evidence] = Field(default_factory=list, max_length=3)
    sources: List[SourceRef] = Field(default_factory=list)
    confidence_score: float = Field(0.5, ge=0.0, le=1.0)
    rationale: str = ""
    review_required: bool = False
    recovered: bool = False

class GenerationMetadata(BaseModel):
    model: str
    temperature: float
    timestamp: str
    tokens_used: Optional[int] = None

class CardBatch(BaseModel):
    """Stage B output. Strict: every card cites 1-3 evidence items and at least one source."""
    module_id: str
    module_title: str = ""
    generated_count: int = Field(0, ge=0)
    cards: List[FlashcardItem]
    warnings: List[str] = Field(default_factory=list)
    generation_metadata: Optional[GenerationMetadata] = None

    @model_validator(mode="after")
    def validate_cards(self) -> "CardBatch":
        seen = set()
        for card in self.cards:
            if not 1 <= len(card.evidence) <= 3:
                raise ValueError(f"{card.card_id} must cite 1-3 evidence items, got {len(card.evidence)}")
            if not card.sources:
                raise ValueError(f"{card.card_id} must list at least one source")
            if card.card_id in seen:
                raise ValueError(f"Duplicate card_id {card.card_id}")
            seen.add(card.card_id)
        if not self.generated_count:
            self.generated_count = len(self.cards)
        return self


class RecoveredCard(BaseModel):
    """Relaxed card shape: identity and content fields required, everything else defaulted."""
    card_id: str = Field(..., pattern=CARD_ID_PATTERN)
    question: str = Field(..., min_length=10, max_length=300, validation_alias=AliasChoices("question", "q"))
    answer: str = Field(..., min_length=1, validation_alias=AliasChoices("answer", "a"))
    difficulty: Difficulty
    bloom_level: BloomLevel
    evidence: List[Any] = Field(default_factory=list)
    sources: List[Any] = Field(default_factory=list)
    confidence_score: float = 0.5
    rationale: str = ""

    def to_flashcard(self) -> FlashcardItem:
        evidence = _salvage(Evidence, self.evidence)[:3]
        sources = _salvage(SourceRef, self.sources)
        return FlashcardItem(
            card_id=self.card_id,
            question=self.question,
            answer=self.answer,
            difficulty=self.difficulty,
            bloom_level=self.bloom_level,
            evidence=evidence,
            sources=sources,
            confidence_score=min(max(self.confidence_score, 0.0), 1.0),
            rationale=self.rationale if isinstance(self.rationale, str) else "",
            review_required=True,
            recovered=True,
        )


def _salvage(model, items: List[Any]) -> list:
    kept = []
    for item in items:
        try:
            kept.append(model.model_validate(item))
        except ValidationError:
            continue
    return kept


# --- Validation ------------------------------------------------------------

class ValidationOutcome(BaseModel):
    ok: bool
    data: Optional[Any] = None
    issues: List[str] = Field(default_factory=list)


def validate_payload(model: type, raw: Any) -> ValidationOutcome:
    """
    Validate a parsed JSON payload against a pydantic model.
    Never raises for invalid payloads; issues are returned as readable strings.
    """
    try:
        return ValidationOutcome(ok=True, data=model.model_validate(raw))
    except ValidationError as e:
        issues = [
            f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
            for err in e.errors()
        ]
        return ValidationOutcome(ok=False, issues=issues)

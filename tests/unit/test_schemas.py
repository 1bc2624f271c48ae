"""Tests for LLM output schemas and option structs."""
import pytest

from flashcard_orchestrator.config import Settings
from flashcard_orchestrator.schemas.chunks import ContentChunk, estimate_total_tokens
from flashcard_orchestrator.schemas.options import (
    PipelineSettings,
    PostProcessSettings,
    StageCallConfig,
    VerificationOptions,
)
from flashcard_orchestrator.schemas.outputs import (
    CardBatch,
    CoverageEntry,
    CoverageStatus,
    RecoveredCard,
    TopicSummary,
    validate_payload,
)
from flashcard_orchestrator.schemas.results import StageId


def test_topic_summary_bounds(topic_summary_payload):
    """
    WHY: Stage A must return 6-10 summary points and 6-12 topics.
    EXPECTED: Fixture validates; 5 points is rejected with a readable issue.
    """
    assert validate_payload(TopicSummary, topic_summary_payload).ok

    topic_summary_payload["module_summary"] = topic_summary_payload["module_summary"][:5]
    outcome = validate_payload(TopicSummary, topic_summary_payload)

    assert outcome.ok is False
    assert any(issue.startswith("module_summary") for issue in outcome.issues)


@pytest.mark.parametrize("raw, expected", [
    ("Covered", CoverageStatus.COVERED),
    ("NotCovered", CoverageStatus.NOT_COVERED),
    ("Not Covered", CoverageStatus.NOT_COVERED),
    ("PartiallyCovered", CoverageStatus.PARTIALLY_COVERED),
])
def test_coverage_status_spellings(raw, expected):
    assert CoverageEntry(heading="Intro", status=raw).status == expected


def test_card_batch_accepts_short_field_names(card_batch_payload):
    """
    WHY: Models emit q/a/loc as often as question/answer/location.
    EXPECTED: Aliases land on the canonical fields.
    """
    batch = CardBatch.model_validate(card_batch_payload)
    card = batch.cards[0]

    assert card.question == "What is recruitment?"
    assert card.answer == "The process of attracting talent."
    assert card.evidence[0].location == "page 1"
    assert batch.generated_count == 10


@pytest.mark.parametrize("mutate, message", [
    (lambda cards: cards[0].update(evidence=[]), "evidence"),
    (lambda cards: cards[0].update(sources=[]), "source"),
    (lambda cards: cards[1].update(card_id=cards[0]["card_id"]), "Duplicate"),
    (lambda cards: cards[0].update(card_id="card-1"), "card_id"),
])
def test_card_batch_strict_rules(card_batch_payload, mutate, message):
    mutate(card_batch_payload["cards"])
    outcome = validate_payload(CardBatch, card_batch_payload)

    assert outcome.ok is False
    assert any(message in issue for issue in outcome.issues)


def test_recovered_card_keeps_valid_parts(card_batch_payload):
    """
    WHY: Partial recovery keeps what is usable and tags the card.
    HOW: One good and one broken evidence item, out-of-range confidence.
    EXPECTED: Broken evidence dropped, confidence clamped, card tagged recovered + review_required.
    """
    raw = card_batch_payload["cards"][0]
    raw["evidence"].append({"chunk_id": "c1"})
    raw["confidence_score"] = 1.7

    card = RecoveredCard.model_validate(raw).to_flashcard()

    assert len(card.evidence) == 1
    assert card.confidence_score == 1.0
    assert card.recovered is True
    assert card.review_required is True


def test_chunk_token_estimate():
    chunk = ContentChunk(chunk_id="c1", source_file="f", text="x" * 10)
    explicit = ContentChunk(chunk_id="c2", source_file="f", text="x", tokens_estimate=100)

    assert chunk.estimated_tokens() == 3
    assert estimate_total_tokens([chunk, explicit]) == 103


def test_options_from_settings():
    """
    WHY: Components get explicit option structs built once from Settings.
    EXPECTED: Values carried over, per-stage models resolved.
    """
    settings = Settings(
        _env_file=None,
        STAGE_MAX_RETRIES=4,
        MODEL_STAGE_B="gpt-4o",
        VERIFY_MIN_SIMILARITY=0.6,
        DEDUPE_THRESHOLD=0.9,
        MIN_CHUNKS=5,
    )

    config = StageCallConfig.from_settings(settings)
    assert config.max_retries == 4
    assert config.generation_for(StageId.STAGE_B).model == "gpt-4o"
    assert config.generation_for(StageId.STAGE_A).model == settings.MODEL_STAGE_A
    assert VerificationOptions.from_settings(settings).min_similarity == 0.6
    assert PostProcessSettings.from_settings(settings).dedupe_threshold == 0.9
    assert PipelineSettings.from_settings(settings).min_chunks == 5

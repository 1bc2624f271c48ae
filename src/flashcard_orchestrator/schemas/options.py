"""Explicit option structs passed to pipeline components.

Built once from Settings at wiring time; components never read the environment.
"""

from typing import Dict

from pydantic import BaseModel, Field

from ..config import Settings
from .results import StageId


class GenerationConfig(BaseModel):
    model: str
    temperature: float = 0.1
    max_output_tokens: int = 4096
    json_mode: bool = True


class StageCallConfig(BaseModel):
    timeout_ms: int = Field(30000, gt=0)
    max_retries: int = Field(2, ge=1)
    base_delay_ms: int = Field(2000, ge=0)
    max_context_tokens: int = Field(12000, gt=0)
    temperature: float = 0.1
    max_output_tokens: int = 4096
    stage_models: Dict[str, str] = Field(default_factory=dict)
    default_model: str = "gpt-4o-mini"

    def generation_for(self, stage: StageId) -> GenerationConfig:
        return GenerationConfig(
            model=self.stage_models.get(stage.value, self.default_model),
            temperature=self.temperature,
            max_output_tokens=self.max_output_tokens,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "StageCallConfig":
        return cls(
            timeout_ms=settings.STAGE_TIMEOUT_MS,
            max_retries=settings.STAGE_MAX_RETRIES,
            base_delay_ms=settings.STAGE_RETRY_BASE_DELAY_MS,
            max_context_tokens=settings.MAX_CONTEXT_TOKENS,
            temperature=settings.TEMPERATURE,
            max_output_tokens=settings.MAX_OUTPUT_TOKENS,
            stage_models={
                StageId.STAGE_A.value: settings.MODEL_STAGE_A,
                StageId.STAGE_B.value: settings.MODEL_STAGE_B,
                StageId.CONTEXT_SUMMARY.value: settings.MODEL_CONTEXT_SUMMARY,
            },
        )


class VerificationOptions(BaseModel):
    min_similarity: float = 0.5
    max_levenshtein_distance: int = 150
    verified_confidence: float = 0.95
    unverified_confidence: float = 0.4

    @classmethod
    def from_settings(cls, settings: Settings) -> "VerificationOptions":
        return cls(
            min_similarity=settings.VERIFY_MIN_SIMILARITY,
            max_levenshtein_distance=settings.VERIFY_MAX_LEVENSHTEIN,
        )


class PostProcessSettings(BaseModel):
    max_answer_words: int = 40
    max_answer_chars: int = 300
    dedupe_threshold: float = 0.85
    difficulty_distribution: Dict[str, int] = Field(
        default_factory=lambda: {"easy": 3, "medium": 4, "hard": 3}
    )
    difficulty_tolerance: int = 2
    min_higher_order_bloom: int = 3

    @classmethod
    def from_settings(cls, settings: Settings) -> "PostProcessSettings":
        return cls(
            max_answer_words=settings.MAX_ANSWER_WORDS,
            max_answer_chars=settings.MAX_ANSWER_CHARS,
            dedupe_threshold=settings.DEDUPE_THRESHOLD,
            difficulty_distribution=dict(settings.DIFFICULTY_DISTRIBUTION),
            difficulty_tolerance=settings.DIFFICULTY_TOLERANCE,
            min_higher_order_bloom=settings.MIN_HIGHER_ORDER_BLOOM,
        )


class PipelineSettings(BaseModel):
    retrieval_k: int = 8
    min_chunks: int = 4
    target_card_count: int = 10

    @classmethod
    def from_settings(cls, settings: Settings) -> "PipelineSettings":
        return cls(
            retrieval_k=settings.RETRIEVAL_K,
            min_chunks=settings.MIN_CHUNKS,
            target_card_count=settings.TARGET_CARD_COUNT,
        )

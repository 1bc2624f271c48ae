from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from functools import lru_cache
from pathlib import Path
from typing import Dict, Literal

_REPO_ROOT = Path(__file__).resolve().parents[2]


class Settings(BaseSettings):
    LLM_PROVIDER: Literal["openai", "openrouter"] = Field("openai", description="Generation provider")
    OPENAI_API_KEY: str = Field("", description="OpenAI API Key")
    OPENROUTER_API_KEY: str = Field("", description="OpenRouter API Key")
    OPENROUTER_BASE_URL: str = "https://openrouter.ai/api/v1"
    MODEL_STAGE_A: str = "gpt-4o-mini"
    MODEL_STAGE_B: str = "gpt-4o-mini"
    MODEL_CONTEXT_SUMMARY: str = "gpt-4o-mini"

    DB_PATH: str = Field("./db.sqlite", description="Path to SQLite database")
    DECKS_DIR: str = Field("./decks", description="Directory for the file fallback deck store")
    PROMPTS_DIR: str = Field(str(_REPO_ROOT / "data" / "prompts"), description="Directory with prompt YAML files")
    LOG_LEVEL: str = "INFO"

    # Stage calls
    STAGE_TIMEOUT_MS: int = 30000
    STAGE_MAX_RETRIES: int = 2
    STAGE_RETRY_BASE_DELAY_MS: int = 2000
    MAX_CONTEXT_TOKENS: int = 12000
    TEMPERATURE: float = 0.1
    MAX_OUTPUT_TOKENS: int = 4096

    # Verification
    VERIFY_MIN_SIMILARITY: float = 0.5
    VERIFY_MAX_LEVENSHTEIN: int = 150

    # Post-processing
    MAX_ANSWER_WORDS: int = 40
    MAX_ANSWER_CHARS: int = 300
    DEDUPE_THRESHOLD: float = 0.85
    DIFFICULTY_DISTRIBUTION: Dict[str, int] = {"easy": 3, "medium": 4, "hard": 3}
    DIFFICULTY_TOLERANCE: int = 2
    MIN_HIGHER_ORDER_BLOOM: int = 3

    # Pipeline
    RETRIEVAL_K: int = 8
    MIN_CHUNKS: int = 4
    TARGET_CARD_COUNT: int = 10

    # Worker
    WORKER_CONCURRENCY: int = 2
    WORKER_POLL_SECONDS: float = 5.0

    # MLflow settings
    MLFLOW_TRACKING_URI: str = Field("http://127.0.0.1:5000", description="MLflow tracking server URI")
    MLFLOW_EXPERIMENT_NAME: str = Field("flashcard_orchestrator", description="MLflow experiment name")
    MLFLOW_ENABLE_TRACING: bool = Field(False, description="Enable MLflow tracing")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

@lru_cache()
def get_settings() -> Settings:
    return Settings()

"""Result records produced by verification, stage calls and module runs."""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Generic, List, Literal, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from .outputs import FlashcardItem, TopicSummary

T = TypeVar("T")


# --- Verification ----------------------------------------------------------

CorrectionStatus = Literal["ok", "corrected", "missing"]

class Correction(BaseModel):
    evidence_index: int
    status: CorrectionStatus
    corrected_excerpt: Optional[str] = None
    reason: str = ""
    similarity_score: Optional[float] = None

class VerificationOutcome(BaseModel):
    card_id: str
    verified: bool
    confidence: float = Field(..., ge=0.0, le=1.0)
    corrections: List[Correction] = Field(default_factory=list)

class VerificationSummary(BaseModel):
    total: int
    verified: int
    failed: int
    average_confidence: float

class VerificationReport(BaseModel):
    outcomes: List[VerificationOutcome]
    summary: VerificationSummary


# --- Stage calls -----------------------------------------------------------

class StageId(str, Enum):
    STAGE_A = "stage_a"
    STAGE_B = "stage_b"
    CONTEXT_SUMMARY = "context_summary"

class StageErrorType(str, Enum):
    INVALID_LLM_OUTPUT = "INVALID_LLM_OUTPUT"
    API_ERROR = "API_ERROR"
    TIMEOUT = "TIMEOUT"
    RATE_LIMITED = "RATE_LIMITED"
    SCHEMA_VALIDATION_FAILED = "SCHEMA_VALIDATION_FAILED"
    INSUFFICIENT_CONTEXT = "INSUFFICIENT_CONTEXT"

class StageFailure(BaseModel):
    error_type: StageErrorType
    details: str
    attempt_count: int

AttemptOutcome = Literal["ok", "recovered", "failed"]

class AttemptRecord(BaseModel):
    """Audit entry for one generation attempt: what the model said and why it was kept or rejected."""
    stage: StageId
    attempt: int
    outcome: AttemptOutcome
    raw_output: Optional[str] = None
    issues: List[str] = Field(default_factory=list)
    error_type: Optional[StageErrorType] = None
    error: Optional[str] = None

class StageResult(BaseModel, Generic[T]):
    """Outcome of one stage call. Exactly one of data / error is set."""
    stage: StageId
    success: bool
    data: Optional[T] = None
    error: Optional[StageFailure] = None
    attempts: int = 0
    api_calls: int = 0
    tokens_used: Optional[int] = None
    duration_ms: int = 0
    warnings: List[str] = Field(default_factory=list)
    recovered: bool = False
    attempt_log: List[AttemptRecord] = Field(default_factory=list)


# --- Module runs -----------------------------------------------------------

class ModuleStatus(str, Enum):
    SUCCESS = "SUCCESS"
    PARTIAL = "PARTIAL"
    FAILED = "FAILED"
    NEED_MORE_CONTENT = "NEED_MORE_CONTENT"

class ModuleRef(BaseModel):
    module_id: str
    course_id: Optional[str] = None
    module_title: str = ""

class ModuleMetrics(BaseModel):
    model_config = ConfigDict(frozen=True)

    time_ms: int = 0
    api_calls: int = 0
    chunks_retrieved: int = 0
    verification_rate: float = 0.0
    tokens_used: Optional[int] = None

class ModuleResult(BaseModel):
    """Terminal record of one pipeline run. Immutable once built."""
    model_config = ConfigDict(frozen=True)

    module_id: str
    status: ModuleStatus
    generated_count: int = 0
    verified_count: int = 0
    warnings: List[str] = Field(default_factory=list)
    deck_id: Optional[str] = None
    metrics: ModuleMetrics = Field(default_factory=ModuleMetrics)
    error_message: Optional[str] = None
    content_job_id: Optional[str] = None
    run_id: Optional[str] = None
    logs_ref: Optional[str] = None


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()

class Deck(BaseModel):
    deck_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    module_id: str
    course_id: Optional[str] = None
    module_title: str = ""
    cards: List[FlashcardItem]
    summary: Optional[TopicSummary] = None
    warnings: List[str] = Field(default_factory=list)
    created_at: str = Field(default_factory=_now_iso)

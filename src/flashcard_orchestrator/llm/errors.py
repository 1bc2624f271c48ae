"""Stage-call error taxonomy and the retryability heuristic.

Providers do not return typed error codes uniformly, so classify_error
pattern-matches free-text messages. It is a best-effort gate: anything it
does not recognise is treated as permanent.
"""

import re
from enum import Enum
from typing import List, Optional

from ..schemas.results import StageErrorType


class ErrorKind(str, Enum):
    TRANSIENT = "Transient"
    PERMANENT = "Permanent"


_TRANSIENT_PATTERNS = [
    r"\b429\b",
    r"rate.?limit",
    r"\b50[0234]\b",
    r"time[d ]?\s?out",
    r"econnreset",
    r"econnrefused",
    r"connection (reset|refused|error)",
    r"socket hang up",
    r"overloaded",
]
_TRANSIENT = re.compile("|".join(_TRANSIENT_PATTERNS), re.IGNORECASE)
_RATE_LIMIT = re.compile(r"\b429\b|rate.?limit", re.IGNORECASE)


def classify_error(message: str) -> ErrorKind:
    if _TRANSIENT.search(message or ""):
        return ErrorKind.TRANSIENT
    return ErrorKind.PERMANENT


class StageCallError(Exception):
    error_type = StageErrorType.API_ERROR
    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ProviderError(StageCallError):
    """Raised by generation clients. Retryability is decided from the message."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        if status_code is not None and str(status_code) not in message:
            message = f"{status_code}: {message}"
        super().__init__(message)
        self.status_code = status_code
        self.kind = classify_error(message)
        self.retryable = self.kind == ErrorKind.TRANSIENT
        self.error_type = StageErrorType.RATE_LIMITED if _RATE_LIMIT.search(message) else StageErrorType.API_ERROR


class StageTimeoutError(StageCallError):
    error_type = StageErrorType.TIMEOUT
    retryable = True


class NonJsonOutputError(StageCallError):
    error_type = StageErrorType.INVALID_LLM_OUTPUT
    retryable = True


class SchemaValidationError(StageCallError):
    error_type = StageErrorType.SCHEMA_VALIDATION_FAILED
    retryable = True

    def __init__(self, message: str, issues: Optional[List[str]] = None):
        super().__init__(message)
        self.issues = issues or []


class InsufficientContextError(StageCallError):
    error_type = StageErrorType.INSUFFICIENT_CONTEXT


def is_retryable(error: BaseException) -> bool:
    return isinstance(error, StageCallError) and error.retryable

"""Timeout- and retry-bounded invocation of one generative stage.

Per attempt: generate (raced against a timeout) -> extract JSON -> validate
against the stage schema -> optionally salvage a partial result. Transient
provider errors, timeouts and malformed output are retried with linear
backoff (base_delay * attempt); permanent provider errors abort at once.
Expected failures come back as a StageResult, never as an exception.

Every attempt leaves an AttemptRecord (raw model text, validation issues,
error) on the StageResult so rejected and salvaged output can be audited.

A timed-out attempt is abandoned, not cancelled: its worker thread lives on
until the client returns. Clients should carry their own request timeout
(OpenAIChatClient does) so abandoned threads stay short-lived.
"""

import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Any, Callable, List, Optional, Sequence, Tuple

from tenacity import Retrying, retry_if_exception, stop_after_attempt, wait_incrementing

from ..log import get_logger
from ..schemas.chunks import ContentChunk, estimate_total_tokens
from ..schemas.options import StageCallConfig
from ..schemas.outputs import ContextSummary, validate_payload
from ..schemas.results import AttemptRecord, StageFailure, StageId, StageResult
from .client import LLMClient, LLMResponse
from .errors import (
    InsufficientContextError,
    ProviderError,
    SchemaValidationError,
    StageCallError,
    StageTimeoutError,
    is_retryable,
)
from .json_extract import extract_json
from .prompts import Prompt, format_chunks, load_prompt

logger = get_logger("stage_caller")

PARTIAL_RECOVERY_WARNING = "PARTIAL_RECOVERY: Some cards failed validation"
SUMMARY_SOURCE = "intermediate_summary"

Recover = Callable[[Any], Optional[Any]]


class _CallStats:
    def __init__(self):
        self.attempts = 0
        self.api_calls = 0
        self.tokens_used: Optional[int] = None
        self.log: List[AttemptRecord] = []

    def add_tokens(self, tokens: Optional[int]):
        if tokens is not None:
            self.tokens_used = (self.tokens_used or 0) + tokens


class StageCaller:
    def __init__(
        self,
        client: LLMClient,
        config: Optional[StageCallConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
        summary_prompt: Optional[Prompt] = None,
    ):
        self.client = client
        self.config = config or StageCallConfig()
        self.sleep = sleep
        self._summary_prompt = summary_prompt

    @property
    def summary_prompt(self) -> Prompt:
        if self._summary_prompt is None:
            self._summary_prompt = load_prompt("context_summary")
        return self._summary_prompt

    def call(
        self,
        stage: StageId,
        system_prompt: str,
        user_prompt: str,
        schema: type,
        recover: Optional[Recover] = None,
        deadline_ms: Optional[int] = None,
    ) -> StageResult:
        stats = _CallStats()
        timeout_ms = deadline_ms or self.config.timeout_ms
        started = time.perf_counter()

        def attempt() -> Tuple[Any, bool]:
            stats.attempts += 1
            number = stats.attempts
            logger.info(f"{stage.value}: attempt {number}/{self.config.max_retries}")
            response = None
            try:
                response = self._generate(stage, system_prompt, user_prompt, timeout_ms, stats)
                payload = extract_json(response.text)

                outcome = validate_payload(schema, payload)
                if outcome.ok:
                    stats.log.append(AttemptRecord(
                        stage=stage, attempt=number, outcome="ok", raw_output=response.text
                    ))
                    return outcome.data, False

                if recover is not None:
                    salvaged = recover(payload)
                    if salvaged is not None:
                        logger.warning(f"{stage.value}: schema validation failed, partially recovered output")
                        stats.log.append(AttemptRecord(
                            stage=stage, attempt=number, outcome="recovered",
                            raw_output=response.text, issues=outcome.issues,
                        ))
                        return salvaged, True

                raise SchemaValidationError(
                    f"{stage.value} output failed schema validation: {'; '.join(outcome.issues[:5])}",
                    issues=outcome.issues,
                )
            except StageCallError as e:
                stats.log.append(AttemptRecord(
                    stage=stage,
                    attempt=number,
                    outcome="failed",
                    raw_output=response.text if response is not None else None,
                    issues=getattr(e, "issues", []),
                    error_type=e.error_type,
                    error=e.message,
                ))
                raise

        retrying = Retrying(
            stop=stop_after_attempt(self.config.max_retries),
            wait=wait_incrementing(
                start=self.config.base_delay_ms / 1000,
                increment=self.config.base_delay_ms / 1000,
            ),
            retry=retry_if_exception(is_retryable),
            sleep=self.sleep,
            before_sleep=lambda rs: logger.warning(
                f"{stage.value}: attempt {rs.attempt_number} failed ({rs.outcome.exception()}), "
                f"retrying in {rs.next_action.sleep:.1f}s"
            ),
            reraise=True,
        )

        try:
            data, recovered = retrying(attempt)
        except StageCallError as e:
            logger.error(f"{stage.value}: failed after {stats.attempts} attempt(s): {e.message}")
            return StageResult(
                stage=stage,
                success=False,
                error=StageFailure(error_type=e.error_type, details=e.message, attempt_count=stats.attempts),
                attempts=stats.attempts,
                api_calls=stats.api_calls,
                tokens_used=stats.tokens_used,
                duration_ms=_elapsed_ms(started),
                attempt_log=stats.log,
            )

        logger.info(f"{stage.value}: succeeded on attempt {stats.attempts}")
        return StageResult(
            stage=stage,
            success=True,
            data=data,
            attempts=stats.attempts,
            api_calls=stats.api_calls,
            tokens_used=stats.tokens_used,
            duration_ms=_elapsed_ms(started),
            warnings=[PARTIAL_RECOVERY_WARNING] if recovered else [],
            recovered=recovered,
            attempt_log=stats.log,
        )

    def call_with_context(
        self,
        stage: StageId,
        system_prompt: str,
        render_prompt: Callable[[Sequence[ContentChunk]], str],
        chunks: Sequence[ContentChunk],
        schema: type,
        recover: Optional[Recover] = None,
        deadline_ms: Optional[int] = None,
    ) -> StageResult:
        """
        Run a stage whose prompt is built from chunks, condensing them first
        when their estimated size exceeds max_context_tokens.
        """
        try:
            _require_context(chunks)
        except InsufficientContextError as e:
            logger.error(f"{stage.value}: {e.message}")
            return StageResult(
                stage=stage,
                success=False,
                error=StageFailure(error_type=e.error_type, details=e.message, attempt_count=0),
            )

        chunks = list(chunks)
        warnings: List[str] = []
        extra_calls, extra_tokens = 0, None
        summary_log: List[AttemptRecord] = []

        total_tokens = estimate_total_tokens(chunks)
        if total_tokens > self.config.max_context_tokens and len(chunks) > 1:
            logger.info(
                f"{stage.value}: context of ~{total_tokens} tokens exceeds {self.config.max_context_tokens}, condensing"
            )
            summaries = self._condense(chunks, deadline_ms)
            extra_calls = sum(r.api_calls for r in summaries)
            extra_tokens = _sum_tokens(r.tokens_used for r in summaries)

            summary_log = [record for r in summaries for record in r.attempt_log]
            failed = next((r for r in summaries if not r.success), None)
            if failed is not None:
                return StageResult(
                    stage=stage,
                    success=False,
                    error=StageFailure(
                        error_type=failed.error.error_type,
                        details=f"Context summarization failed: {failed.error.details}",
                        attempt_count=0,
                    ),
                    api_calls=extra_calls,
                    tokens_used=extra_tokens,
                    attempt_log=summary_log,
                )

            chunks = [
                ContentChunk(chunk_id=f"summary_{i}", source_file=SUMMARY_SOURCE, text=r.data.summary)
                for i, r in enumerate(summaries, start=1)
            ]
            warnings.append(f"Context condensed from ~{total_tokens} tokens into {len(chunks)} summaries")

        result = self.call(stage, system_prompt, render_prompt(chunks), schema, recover, deadline_ms)
        return result.model_copy(update={
            "api_calls": result.api_calls + extra_calls,
            "tokens_used": _sum_tokens([result.tokens_used, extra_tokens]),
            "warnings": warnings + result.warnings,
            "attempt_log": summary_log + result.attempt_log,
        })

    def _condense(self, chunks: List[ContentChunk], deadline_ms: Optional[int]) -> List[StageResult]:
        middle = len(chunks) // 2
        halves = [chunks[:middle], chunks[middle:]]
        prompt = self.summary_prompt

        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="context-summary") as pool:
            futures = [
                pool.submit(
                    self.call,
                    StageId.CONTEXT_SUMMARY,
                    prompt.system,
                    prompt.render(content=format_chunks(half)),
                    ContextSummary,
                    None,
                    deadline_ms,
                )
                for half in halves
            ]
            return [f.result() for f in futures]

    def _generate(
        self,
        stage: StageId,
        system_prompt: str,
        user_prompt: str,
        timeout_ms: int,
        stats: _CallStats,
    ) -> LLMResponse:
        generation = self.config.generation_for(stage)
        stats.api_calls += 1

        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"{stage.value}-call")
        future = executor.submit(self.client.call, system_prompt, user_prompt, generation)
        try:
            response = future.result(timeout=timeout_ms / 1000)
        except FutureTimeout:
            raise StageTimeoutError(f"{stage.value} call timed out after {timeout_ms}ms")
        except StageCallError:
            raise
        except Exception as e:
            # Anything raised by the client is a provider failure
            raise ProviderError(str(e)) from e
        finally:
            # A timed-out call keeps running in its thread; don't wait for it
            executor.shutdown(wait=False)

        stats.add_tokens(response.tokens_used)
        return response


def _require_context(chunks: Sequence[ContentChunk]):
    if not chunks:
        raise InsufficientContextError("No content chunks supplied")

def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)

def _sum_tokens(values) -> Optional[int]:
    known = [v for v in values if v is not None]
    return sum(known) if known else None

"""Module pipeline: retrieve -> Stage A -> Stage B -> verify -> post-process -> persist.

Every run ends in exactly one ModuleResult. Stage failures short-circuit to
FAILED with the failing stage's error; grounding failures only flag cards
for review.
"""

import time
import uuid
from typing import List, Optional, Protocol

from ..config import Settings, get_settings
from ..llm.client import build_llm_client
from ..llm.stage_a import run_stage_a
from ..llm.stage_b import run_stage_b
from ..llm.stage_caller import StageCaller
from ..log import get_logger
from ..mlops.tracing import MLflowTracer, tracer as default_tracer
from ..quality.postprocess import PostProcessor
from ..quality.verifier import EvidenceVerifier
from ..schemas.options import (
    PipelineSettings,
    PostProcessSettings,
    StageCallConfig,
    VerificationOptions,
)
from ..schemas.results import (
    AttemptRecord,
    Deck,
    ModuleMetrics,
    ModuleRef,
    ModuleResult,
    ModuleStatus,
    StageResult,
)
from ..store.chunks import ChunkRetriever, SqliteChunkRetriever
from ..store.decks import DeckStore, FallbackDeckStore, FileDeckStore, SqliteDeckStore
from ..store.repo import Repo
from ..store.run_logs import RunLog, SqliteRunLog

logger = get_logger("pipeline")


class ContentQueue(Protocol):
    def enqueue(self, module_id: str) -> str:
        ...


class _RunState:
    def __init__(self, module: ModuleRef):
        self.module = module
        self.run_id = uuid.uuid4().hex
        self.started = time.perf_counter()
        self.api_calls = 0
        self.tokens_used: Optional[int] = None
        self.chunks_retrieved = 0
        self.warnings: List[str] = []
        self.attempt_log: List[AttemptRecord] = []

    def add_stage(self, result: StageResult):
        self.api_calls += result.api_calls
        if result.tokens_used is not None:
            self.tokens_used = (self.tokens_used or 0) + result.tokens_used
        self.warnings.extend(result.warnings)
        self.attempt_log.extend(result.attempt_log)

    def finish(self, status: ModuleStatus, **fields) -> ModuleResult:
        generated = fields.get("generated_count", 0)
        verified = fields.get("verified_count", 0)
        metrics = ModuleMetrics(
            time_ms=int((time.perf_counter() - self.started) * 1000),
            api_calls=self.api_calls,
            chunks_retrieved=self.chunks_retrieved,
            verification_rate=round(verified / generated, 4) if generated else 0.0,
            tokens_used=self.tokens_used,
        )
        return ModuleResult(
            module_id=self.module.module_id,
            status=status,
            run_id=self.run_id,
            warnings=list(self.warnings),
            metrics=metrics,
            **fields,
        )


class ModulePipeline:
    def __init__(
        self,
        retriever: ChunkRetriever,
        stage_caller: StageCaller,
        verifier: EvidenceVerifier,
        post_processor: PostProcessor,
        deck_store: DeckStore,
        content_queue: ContentQueue,
        settings: Optional[PipelineSettings] = None,
        tracer: Optional[MLflowTracer] = None,
        run_log: Optional[RunLog] = None,
    ):
        self.retriever = retriever
        self.stage_caller = stage_caller
        self.verifier = verifier
        self.post_processor = post_processor
        self.deck_store = deck_store
        self.content_queue = content_queue
        self.settings = settings or PipelineSettings()
        self.tracer = tracer or default_tracer
        self.run_log = run_log

    def run(self, module: ModuleRef) -> ModuleResult:
        logger.info(f"Processing module {module.module_id}")
        with self.tracer.span("pipeline.run", span_type="CHAIN", inputs={"module_id": module.module_id}):
            state = _RunState(module)
            result = self._record_attempts(state, self._run(state))
            self.tracer.trace_module_result(result)

        log = logger.error if result.status == ModuleStatus.FAILED else logger.info
        log(
            f"Module {module.module_id} finished with {result.status.value}: "
            f"{result.generated_count} cards, {result.verified_count} verified, "
            f"{result.metrics.api_calls} API calls"
        )
        return result

    def _record_attempts(self, state: _RunState, result: ModuleResult) -> ModuleResult:
        """Persist every stage attempt of the run and point the result at them."""
        if self.run_log is None or not state.attempt_log:
            return result
        try:
            self.run_log.record(state.run_id, state.module.module_id, state.attempt_log)
        except Exception as e:
            logger.error(f"Failed to record stage logs for run {state.run_id}: {e}")
            return result
        return result.model_copy(update={"logs_ref": f"/runs/{state.run_id}/logs"})

    def _run(self, state: _RunState) -> ModuleResult:
        module = state.module

        # 1. Retrieval
        with self.tracer.span("retrieval.fetch_chunks", span_type="RETRIEVER"):
            try:
                chunks = self.retriever.retrieve(module.module_id, self.settings.retrieval_k)
            except Exception as e:
                logger.exception("Chunk retrieval failed")
                return state.finish(ModuleStatus.FAILED, error_message=f"Retrieval failed: {e}")
        state.chunks_retrieved = len(chunks)

        if len(chunks) < self.settings.min_chunks:
            state.warnings.append(
                f"Only {len(chunks)} chunks retrieved, at least {self.settings.min_chunks} required"
            )
            content_job_id = None
            try:
                content_job_id = self.content_queue.enqueue(module.module_id)
            except Exception as e:
                logger.error(f"Failed to enqueue content acquisition for {module.module_id}: {e}")
                state.warnings.append("Content acquisition request could not be queued")
            return state.finish(ModuleStatus.NEED_MORE_CONTENT, content_job_id=content_job_id)

        # 2. Stage A
        with self.tracer.span("stage_a.run", span_type="LLM"):
            stage_a = run_stage_a(self.stage_caller, module, chunks)
            self.tracer.trace_stage_call(stage_a)
        state.add_stage(stage_a)
        if not stage_a.success:
            return state.finish(ModuleStatus.FAILED, error_message=_stage_error("Stage A", stage_a))
        summary = stage_a.data

        # 3. Stage B
        with self.tracer.span("stage_b.run", span_type="LLM"):
            stage_b = run_stage_b(
                self.stage_caller, module, chunks, summary, self.settings.target_card_count
            )
            self.tracer.trace_stage_call(stage_b)
        state.add_stage(stage_b)
        if not stage_b.success:
            return state.finish(ModuleStatus.FAILED, error_message=_stage_error("Stage B", stage_b))
        batch = stage_b.data
        state.warnings.extend(batch.warnings)

        # 4. Verification
        with self.tracer.span("verification.run", span_type="CHAIN"):
            report = self.verifier.verify_all(batch.cards, chunks)
            cards = self.verifier.apply_corrections(batch.cards, report.outcomes)
            self.tracer.trace_verification(report.summary)

        # 5. Post-processing
        processed = self.post_processor.process(cards, summary.key_topics)
        state.warnings.extend(processed.warnings)
        cards = processed.cards
        if not cards:
            return state.finish(
                ModuleStatus.FAILED,
                error_message="No cards survived generation, verification and deduplication",
            )

        review_count = sum(1 for c in cards if c.review_required)
        if review_count:
            state.warnings.append(f"{review_count} cards flagged for review")

        verified_ids = {o.card_id for o in report.outcomes if o.verified}
        counts = dict(
            generated_count=len(cards),
            verified_count=sum(1 for c in cards if c.card_id in verified_ids),
        )

        # 6. Persistence
        deck = Deck(
            module_id=module.module_id,
            course_id=module.course_id,
            module_title=module.module_title,
            cards=cards,
            summary=summary,
            warnings=list(state.warnings),
        )
        with self.tracer.span("deck.save", span_type="CHAIN"):
            try:
                deck_id = self.deck_store.save(deck)
            except Exception as e:
                logger.exception("Deck persistence failed")
                return state.finish(ModuleStatus.FAILED, error_message=f"Persistence failed: {e}", **counts)

        # 7. Classification
        if len(cards) < self.settings.target_card_count or review_count:
            status = ModuleStatus.PARTIAL
        else:
            status = ModuleStatus.SUCCESS
        return state.finish(status, deck_id=deck_id, **counts)


def _stage_error(label: str, result: StageResult) -> str:
    error = result.error
    return f"{label} failed after {error.attempt_count} attempt(s) [{error.error_type.value}]: {error.details}"


def build_pipeline(settings: Optional[Settings] = None) -> ModulePipeline:
    """Wire the default collaborators: SQLite retrieval/queue, SQLite + file deck stores."""
    settings = settings or get_settings()
    return ModulePipeline(
        retriever=SqliteChunkRetriever(),
        stage_caller=StageCaller(build_llm_client(settings), StageCallConfig.from_settings(settings)),
        verifier=EvidenceVerifier(VerificationOptions.from_settings(settings)),
        post_processor=PostProcessor(PostProcessSettings.from_settings(settings)),
        deck_store=FallbackDeckStore(SqliteDeckStore(), FileDeckStore(settings.DECKS_DIR)),
        content_queue=Repo,
        settings=PipelineSettings.from_settings(settings),
        run_log=SqliteRunLog(),
    )

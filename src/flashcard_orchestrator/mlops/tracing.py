"""
MLflow tracing integration for pipeline observability.
Provides span-based tracing for retrieval, stage calls, verification and module results.
"""
import logging
import time
from typing import Optional, Dict, Any, Callable
from functools import wraps
from contextlib import contextmanager

import mlflow

from ..config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()


class MLflowTracer:
    """Handles MLflow tracing; a no-op when disabled or when MLflow cannot be set up."""

    def __init__(self):
        self.enabled = settings.MLFLOW_ENABLE_TRACING
        if self.enabled:
            try:
                mlflow.set_tracking_uri(settings.MLFLOW_TRACKING_URI)
                mlflow.set_experiment(settings.MLFLOW_EXPERIMENT_NAME)
                logger.info("MLflow tracing enabled")
            except Exception as e:
                logger.warning(f"Failed to initialize MLflow tracing: {e}")
                self.enabled = False
        else:
            logger.info("MLflow tracing disabled")

    @contextmanager
    def span(
        self,
        name: str,
        span_type: str = "UNKNOWN",
        attributes: Optional[Dict[str, Any]] = None,
        inputs: Optional[Dict[str, Any]] = None
    ):
        """
        Create a traced span for an operation.

        Args:
            name: Name of the span (e.g., "pipeline.run", "stage_a.call")
            span_type: Type of span (e.g., "LLM", "RETRIEVER", "CHAIN")
            attributes: Additional metadata for the span
            inputs: Input data to the operation
        """
        if not self.enabled:
            yield None
            return

        with mlflow.start_span(name=name, span_type=span_type) as span:
            if attributes:
                span.set_attributes(attributes)
            if inputs:
                span.set_inputs(inputs)

            start_time = time.time()
            yield span
            elapsed = time.time() - start_time
            span.set_attribute("latency_ms", int(elapsed * 1000))

    def _annotate_current(self, attributes: Dict[str, Any], what: str):
        if not self.enabled:
            return
        try:
            current_span = mlflow.get_current_active_span()
            if current_span:
                current_span.set_attributes(attributes)
        except Exception as e:
            logger.warning(f"Failed to trace {what}: {e}")

    def trace_stage_call(self, result, model: Optional[str] = None):
        """Record a StageResult on the current span."""
        attributes = {
            "stage": result.stage.value,
            "success": result.success,
            "attempts": result.attempts,
            "api_calls": result.api_calls,
            "duration_ms": result.duration_ms,
            "recovered": result.recovered,
        }
        if model:
            attributes["model"] = model
        if result.tokens_used is not None:
            attributes["tokens_used"] = result.tokens_used
        if result.error:
            attributes["error_type"] = result.error.error_type.value
        if result.attempt_log:
            attributes["attempt_outcomes"] = ",".join(r.outcome for r in result.attempt_log)
        self._annotate_current(attributes, "stage call")

    def trace_verification(self, summary):
        """Record a VerificationSummary on the current span."""
        self._annotate_current({
            "cards_total": summary.total,
            "cards_verified": summary.verified,
            "cards_failed": summary.failed,
            "average_confidence": summary.average_confidence,
            "verification_rate": summary.verified / summary.total if summary.total > 0 else 0.0,
        }, "verification")

    def trace_module_result(self, result):
        """Record a ModuleResult on the current span."""
        attributes = {
            "module_id": result.module_id,
            "status": result.status.value,
            "generated_count": result.generated_count,
            "verified_count": result.verified_count,
            "warning_count": len(result.warnings),
            "api_calls": result.metrics.api_calls,
            "chunks_retrieved": result.metrics.chunks_retrieved,
            "time_ms": result.metrics.time_ms,
        }
        if result.deck_id:
            attributes["deck_id"] = result.deck_id
        if result.run_id:
            attributes["run_id"] = result.run_id
        if result.logs_ref:
            attributes["logs_ref"] = result.logs_ref
        self._annotate_current(attributes, "module result")


def traced_operation(name: str, span_type: str = "CHAIN"):
    """
    Decorator to automatically trace a function as a span.

    Usage:
        @traced_operation("worker.process_job")
        def process_job(job):
            ...
    """
    def decorator(func: Callable):
        @wraps(func)
        def wrapper(*args, **kwargs):
            with tracer.span(name=name, span_type=span_type):
                return func(*args, **kwargs)
        return wrapper
    return decorator


# Global tracer instance
tracer = MLflowTracer()

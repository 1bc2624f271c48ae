"""Background worker that processes generation jobs from the database queue.

Polls for pending jobs and runs the module pipeline for each on a bounded
thread pool (WORKER_CONCURRENCY). On SIGINT it stops claiming new jobs and
lets in-flight runs finish.

Usage:
    python -m flashcard_orchestrator.main_worker
"""

import time
import signal
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Optional
from .log import setup_logging, get_logger
from .config import get_settings
from .mlops.tracing import traced_operation
from .pipeline.run import ModulePipeline, build_pipeline
from .schemas.results import ModuleRef, ModuleResult, ModuleStatus
from .store.db import init_db
from .store.repo import Repo

setup_logging()
logger = get_logger("worker")

running = True

def handle_sigint(signum, frame):
    global running
    logger.info("Stopping worker, waiting for in-flight jobs...")
    running = False

@traced_operation("worker.process_job")
def process_job(pipeline: ModulePipeline, job: Dict[str, Any]) -> Optional[ModuleResult]:
    module = ModuleRef(
        module_id=job["module_id"],
        course_id=job.get("course_id"),
        module_title=job.get("module_title") or "",
    )
    try:
        result = pipeline.run(module)
    except Exception as e:
        logger.exception(f"Job {job['id']} crashed")
        Repo.mark_job_failed(job["id"], str(e))
        return None

    if result.status == ModuleStatus.FAILED:
        Repo.mark_job_failed(job["id"], result.error_message or "pipeline failed", result)
    else:
        Repo.mark_job_done(job["id"], result)

    logger.info(
        f"Job {job['id']} -> {result.status.value} "
        f"(deck={result.deck_id}, time={result.metrics.time_ms}ms, warnings={len(result.warnings)})"
    )
    return result

def main():
    settings = get_settings()
    signal.signal(signal.SIGINT, handle_sigint)
    init_db()
    pipeline = build_pipeline(settings)

    in_flight = set()
    logger.info(f"Worker started with concurrency {settings.WORKER_CONCURRENCY}. Polling for jobs...")

    with ThreadPoolExecutor(max_workers=settings.WORKER_CONCURRENCY, thread_name_prefix="module") as pool:
        while running:
            in_flight = {f for f in in_flight if not f.done()}
            if len(in_flight) >= settings.WORKER_CONCURRENCY:
                time.sleep(0.5)
                continue
            try:
                job = Repo.claim_next_job()
                if job:
                    logger.info(f"Claimed job {job['id']} for module {job['module_id']}")
                    in_flight.add(pool.submit(process_job, pipeline, job))
                else:
                    time.sleep(settings.WORKER_POLL_SECONDS)
            except Exception:
                logger.exception("Worker loop error")
                time.sleep(settings.WORKER_POLL_SECONDS)

    logger.info("Worker stopped.")

if __name__ == "__main__":
    main()

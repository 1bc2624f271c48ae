from unittest.mock import MagicMock

from flashcard_orchestrator.main_worker import process_job
from flashcard_orchestrator.schemas.results import ModuleRef, ModuleResult, ModuleStatus
from flashcard_orchestrator.store.repo import Repo


def claim(module_id="MOD1"):
    Repo.enqueue_generation(ModuleRef(module_id=module_id, module_title="HR Basics"))
    return Repo.claim_next_job()


def test_successful_run_marks_job_done(test_db):
    """
    WHY: The worker is the result consumer; it records every ModuleResult.
    HOW: Process a claimed job with a pipeline returning PARTIAL.
    EXPECTED: Job done, result stored, pipeline called with the job's module.
    """
    job = claim()
    pipeline = MagicMock()
    pipeline.run.return_value = ModuleResult(module_id="MOD1", status=ModuleStatus.PARTIAL, generated_count=7)

    result = process_job(pipeline, job)

    assert result.status == ModuleStatus.PARTIAL
    assert pipeline.run.call_args[0][0] == ModuleRef(module_id="MOD1", module_title="HR Basics")
    stored = Repo.get_job(job["id"])
    assert stored["status"] == "done"
    assert stored["result"]["generated_count"] == 7


def test_failed_result_marks_job_failed(test_db):
    job = claim()
    pipeline = MagicMock()
    pipeline.run.return_value = ModuleResult(
        module_id="MOD1", status=ModuleStatus.FAILED, error_message="Stage A failed"
    )

    process_job(pipeline, job)

    stored = Repo.get_job(job["id"])
    assert stored["status"] == "failed"
    assert stored["last_error"] == "Stage A failed"
    assert stored["result"]["status"] == "FAILED"


def test_need_more_content_is_done(test_db):
    job = claim()
    pipeline = MagicMock()
    pipeline.run.return_value = ModuleResult(module_id="MOD1", status=ModuleStatus.NEED_MORE_CONTENT)

    process_job(pipeline, job)

    assert Repo.get_job(job["id"])["status"] == "done"


def test_crash_marks_job_failed(test_db):
    """
    WHY: A programmer error in one run must not kill the worker loop.
    EXPECTED: Job failed with the exception text, None returned.
    """
    job = claim()
    pipeline = MagicMock()
    pipeline.run.side_effect = KeyError("retriever")

    assert process_job(pipeline, job) is None
    assert "retriever" in Repo.get_job(job["id"])["last_error"]

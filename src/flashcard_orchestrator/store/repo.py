"""Repository pattern for the job queue.

Two kinds of jobs share one table:
- 'generate': run the module pipeline (claimed by the worker)
- 'content':  content-acquisition request raised on NEED_MORE_CONTENT
              (consumed by the external indexing/transcription side)

Enqueueing is idempotent per module while a job of the same kind is pending.
"""

import json
from typing import Optional, Dict, Any
from .db import get_db_connection
from ..schemas.results import ModuleRef, ModuleResult
import logging

logger = logging.getLogger("worker")

class Repo:
    @staticmethod
    def _enqueue(kind: str, module_id: str, course_id: Optional[str] = None, module_title: str = "") -> int:
        with get_db_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                "SELECT id FROM jobs WHERE kind = ? AND module_id = ? AND status = 'pending'",
                (kind, module_id)
            ).fetchone()
            if row:
                conn.rollback()
                return row["id"]

            cursor = conn.execute(
                "INSERT INTO jobs (kind, module_id, course_id, module_title, status) VALUES (?, ?, ?, ?, 'pending')",
                (kind, module_id, course_id, module_title)
            )
            conn.commit()
            return cursor.lastrowid

    @staticmethod
    def enqueue_generation(module: ModuleRef) -> int:
        """Queue a pipeline run for a module. Returns the (possibly existing) pending job id."""
        job_id = Repo._enqueue("generate", module.module_id, module.course_id, module.module_title)
        logger.info(f"Generation job {job_id} queued for module {module.module_id}")
        return job_id

    @staticmethod
    def enqueue(module_id: str) -> str:
        """Content-acquisition request: the module needs more indexed material."""
        job_id = Repo._enqueue("content", module_id)
        logger.info(f"Content job {job_id} queued for module {module_id}")
        return str(job_id)

    @staticmethod
    def claim_next_job() -> Optional[Dict[str, Any]]:
        """
        Atomic claim: find a pending generation job, mark it processing, return it.
        """
        with get_db_connection() as conn:
            # Immediate transaction
            conn.execute("BEGIN IMMEDIATE")
            try:
                row = conn.execute(
                    "SELECT id, module_id, course_id, module_title FROM jobs "
                    "WHERE kind = 'generate' AND status = 'pending' ORDER BY created_at ASC, id ASC LIMIT 1"
                ).fetchone()

                if not row:
                    conn.rollback()
                    return None

                conn.execute(
                    "UPDATE jobs SET status = 'processing', attempts = attempts + 1, "
                    "updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                    (row["id"],)
                )
                conn.commit()

                return {
                    "id": row["id"],
                    "module_id": row["module_id"],
                    "course_id": row["course_id"],
                    "module_title": row["module_title"] or "",
                }

            except Exception as e:
                logger.error(f"Error claiming job: {e}")
                conn.rollback()
                return None

    @staticmethod
    def mark_job_done(job_id: int, result: Optional[ModuleResult] = None):
        payload = result.model_dump_json() if result else None
        with get_db_connection() as conn:
            conn.execute(
                "UPDATE jobs SET status = 'done', result = ?, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                (payload, job_id)
            )
            conn.commit()

    @staticmethod
    def mark_job_failed(job_id: int, error: str, result: Optional[ModuleResult] = None):
        payload = result.model_dump_json() if result else None
        with get_db_connection() as conn:
            conn.execute(
                "UPDATE jobs SET status = 'failed', last_error = ?, result = ?, "
                "updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                (str(error), payload, job_id)
            )
            conn.commit()

    @staticmethod
    def get_job(job_id: int) -> Optional[Dict[str, Any]]:
        with get_db_connection() as conn:
            row = conn.execute("SELECT * FROM jobs WHERE id = ?", (job_id,)).fetchone()
        if not row:
            return None
        job = dict(row)
        job["result"] = json.loads(job["result"]) if job["result"] else None
        return job

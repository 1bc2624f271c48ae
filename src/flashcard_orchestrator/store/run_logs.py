"""Per-run audit log of generation attempts.

Each pipeline run writes the AttemptRecords of its stage calls under its
run_id: the raw model output, validation issues and error of every attempt,
including those that were retried, salvaged or rejected.
"""

import json
from typing import List, Protocol, Sequence

from .db import get_db_connection
from ..log import get_logger
from ..schemas.results import AttemptRecord

logger = get_logger("run_logs")


class RunLog(Protocol):
    def record(self, run_id: str, module_id: str, records: Sequence[AttemptRecord]) -> int:
        ...

    def entries(self, run_id: str) -> List[AttemptRecord]:
        ...


class SqliteRunLog:
    def record(self, run_id: str, module_id: str, records: Sequence[AttemptRecord]) -> int:
        rows = [
            (
                run_id,
                module_id,
                r.stage.value,
                r.attempt,
                r.outcome,
                r.raw_output,
                json.dumps(r.issues),
                r.error_type.value if r.error_type else None,
                r.error,
            )
            for r in records
        ]
        with get_db_connection() as conn:
            conn.executemany(
                """
                INSERT INTO stage_logs
                    (run_id, module_id, stage, attempt, outcome, raw_output, issues, error_type, error)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                rows
            )
            conn.commit()
        logger.info(f"Recorded {len(rows)} attempt(s) for run {run_id}")
        return len(rows)

    def entries(self, run_id: str) -> List[AttemptRecord]:
        with get_db_connection() as conn:
            rows = conn.execute(
                """
                SELECT stage, attempt, outcome, raw_output, issues, error_type, error
                FROM stage_logs WHERE run_id = ? ORDER BY id ASC
                """,
                (run_id,)
            ).fetchall()

        return [
            AttemptRecord(
                stage=row["stage"],
                attempt=row["attempt"],
                outcome=row["outcome"],
                raw_output=row["raw_output"],
                issues=json.loads(row["issues"]) if row["issues"] else [],
                error_type=row["error_type"],
                error=row["error"],
            )
            for row in rows
        ]

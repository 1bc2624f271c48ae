"""Chunk retrieval backed by the SQLite chunks table.

Stands in for the vector-search backend: returns up to k chunks for a
module in insertion order. Ranking by relevance is out of scope.
"""

from typing import Iterable, List, Protocol

from .db import get_db_connection
from ..log import get_logger
from ..schemas.chunks import ContentChunk

logger = get_logger("retrieval")


class ChunkRetriever(Protocol):
    def retrieve(self, module_id: str, k: int) -> List[ContentChunk]:
        ...


class SqliteChunkRetriever:
    def retrieve(self, module_id: str, k: int) -> List[ContentChunk]:
        with get_db_connection() as conn:
            rows = conn.execute(
                """
                SELECT chunk_id, source_file, location, start_sec, end_sec, heading, text, tokens_estimate
                FROM chunks WHERE module_id = ? ORDER BY id ASC LIMIT ?
                """,
                (module_id, k)
            ).fetchall()

        chunks = [ContentChunk(**dict(row)) for row in rows]
        logger.info(f"Retrieved {len(chunks)} chunks for module {module_id}")
        return chunks

    def add_chunks(self, module_id: str, chunks: Iterable[ContentChunk]) -> int:
        """Insert or replace chunks for a module. Returns the number written."""
        count = 0
        with get_db_connection() as conn:
            for chunk in chunks:
                conn.execute(
                    """
                    INSERT INTO chunks (module_id, chunk_id, source_file, location, start_sec, end_sec, heading, text, tokens_estimate)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(module_id, chunk_id) DO UPDATE SET
                        source_file = excluded.source_file,
                        location = excluded.location,
                        start_sec = excluded.start_sec,
                        end_sec = excluded.end_sec,
                        heading = excluded.heading,
                        text = excluded.text,
                        tokens_estimate = excluded.tokens_estimate
                    """,
                    (
                        module_id,
                        chunk.chunk_id,
                        chunk.source_file,
                        chunk.location,
                        chunk.start_sec,
                        chunk.end_sec,
                        chunk.heading,
                        chunk.text,
                        chunk.tokens_estimate,
                    )
                )
                count += 1
            conn.commit()
        return count

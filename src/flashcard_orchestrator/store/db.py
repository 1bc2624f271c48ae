"""SQLite database connection and schema management.

Provides get_db_connection() context manager and init_db() for schema creation.
Stores content chunks, persisted decks/cards, the job queue and per-run stage logs.
"""

import sqlite3
from ..config import get_settings
from contextlib import contextmanager

settings = get_settings()

@contextmanager
def get_db_connection():
    conn = sqlite3.connect(settings.DB_PATH)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
    finally:
        conn.close()

def init_db():
    schema = """
    CREATE TABLE IF NOT EXISTS chunks (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        module_id TEXT NOT NULL,
        chunk_id TEXT NOT NULL,
        source_file TEXT NOT NULL,
        location TEXT,
        start_sec REAL,
        end_sec REAL,
        heading TEXT,
        text TEXT NOT NULL,
        tokens_estimate INTEGER,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        UNIQUE(module_id, chunk_id)
    );

    CREATE TABLE IF NOT EXISTS decks (
        deck_id TEXT PRIMARY KEY,
        module_id TEXT NOT NULL,
        course_id TEXT,
        module_title TEXT,
        card_count INTEGER NOT NULL,
        payload TEXT NOT NULL,
        created_at TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS cards (
        deck_id TEXT NOT NULL,
        card_id TEXT NOT NULL,
        question TEXT NOT NULL,
        answer TEXT NOT NULL,
        difficulty TEXT,
        bloom_level TEXT,
        confidence_score REAL,
        review_required INTEGER DEFAULT 0,
        PRIMARY KEY(deck_id, card_id),
        FOREIGN KEY(deck_id) REFERENCES decks(deck_id)
    );

    CREATE TABLE IF NOT EXISTS jobs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        kind TEXT NOT NULL DEFAULT 'generate',
        module_id TEXT NOT NULL,
        course_id TEXT,
        module_title TEXT,
        status TEXT DEFAULT 'pending',
        attempts INTEGER DEFAULT 0,
        last_error TEXT,
        result TEXT,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
    );

    CREATE TABLE IF NOT EXISTS stage_logs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        run_id TEXT NOT NULL,
        module_id TEXT NOT NULL,
        stage TEXT NOT NULL,
        attempt INTEGER NOT NULL,
        outcome TEXT NOT NULL,
        raw_output TEXT,
        issues TEXT,
        error_type TEXT,
        error TEXT,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP
    );

    CREATE INDEX IF NOT EXISTS idx_chunks_module ON chunks(module_id);
    CREATE INDEX IF NOT EXISTS idx_stage_logs_run ON stage_logs(run_id);
    CREATE INDEX IF NOT EXISTS idx_decks_module ON decks(module_id);
    CREATE INDEX IF NOT EXISTS idx_jobs_status ON jobs(kind, status);
    """
    with get_db_connection() as conn:
        conn.executescript(schema)
        conn.commit()

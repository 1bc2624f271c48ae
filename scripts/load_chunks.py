"""Load content chunks for a module from a JSON file into the chunks table.

The file holds a list of chunk objects (chunk_id, source_file, text, ...).

Usage:
    python scripts/load_chunks.py MODULE_ID chunks.json
"""
import json
import sys
from dotenv import load_dotenv
from flashcard_orchestrator.log import setup_logging, get_logger
from flashcard_orchestrator.schemas.chunks import ContentChunk
from flashcard_orchestrator.store.chunks import SqliteChunkRetriever
from flashcard_orchestrator.store.db import init_db

def run(module_id: str, path: str):
    load_dotenv()
    setup_logging()
    logger = get_logger("load_chunks")

    with open(path, "r", encoding="utf-8") as f:
        raw = json.load(f)
    chunks = [ContentChunk.model_validate(item) for item in raw]

    init_db()
    written = SqliteChunkRetriever().add_chunks(module_id, chunks)
    logger.info(f"Loaded {written} chunks for module {module_id}")

if __name__ == "__main__":
    if len(sys.argv) != 3:
        print(__doc__)
        sys.exit(1)
    run(sys.argv[1], sys.argv[2])

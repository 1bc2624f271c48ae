"""HTTP surface: queue module generation and read jobs, decks and run logs.

Usage:
    uvicorn flashcard_orchestrator.main_api:app
"""

from typing import Optional
from fastapi import Depends, FastAPI, HTTPException
from pydantic import BaseModel, Field
from .config import get_settings
from .log import setup_logging, get_logger
from .store.db import init_db
from .store.decks import DeckStore, FallbackDeckStore, FileDeckStore, SqliteDeckStore
from .store.repo import Repo
from .store.run_logs import RunLog, SqliteRunLog
from .schemas.results import ModuleRef
from contextlib import asynccontextmanager

settings = get_settings()
setup_logging()
logger = get_logger("api")

@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield

app = FastAPI(title="Flashcard Orchestrator", lifespan=lifespan)


class GenerateRequest(BaseModel):
    module_id: str = Field(..., min_length=1)
    course_id: Optional[str] = None
    module_title: str = ""


def get_deck_store() -> DeckStore:
    return FallbackDeckStore(SqliteDeckStore(), FileDeckStore(settings.DECKS_DIR))

def get_run_log() -> RunLog:
    return SqliteRunLog()


@app.get("/health")
def health():
    return {"status": "ok"}

@app.post("/modules/generate", status_code=202)
def generate_module(request: GenerateRequest):
    module = ModuleRef(module_id=request.module_id, course_id=request.course_id, module_title=request.module_title)
    job_id = Repo.enqueue_generation(module)
    logger.info(f"Queued job {job_id} for module {module.module_id}")
    return {"status": "queued", "job_id": job_id}

@app.get("/jobs/{job_id}")
def get_job(job_id: int):
    job = Repo.get_job(job_id)
    if not job:
        raise HTTPException(status_code=404, detail=f"Job {job_id} not found")
    return job

@app.get("/decks/{deck_id}")
def get_deck(deck_id: str, store: DeckStore = Depends(get_deck_store)):
    deck = store.load(deck_id)
    if not deck:
        raise HTTPException(status_code=404, detail=f"Deck {deck_id} not found")
    return deck.model_dump()

@app.get("/modules/{module_id}/deck")
def get_latest_deck(module_id: str, store: DeckStore = Depends(get_deck_store)):
    deck = store.latest_for_module(module_id)
    if not deck:
        raise HTTPException(status_code=404, detail=f"No deck for module {module_id}")
    return deck.model_dump()

@app.get("/runs/{run_id}/logs")
def get_run_logs(run_id: str, run_log: RunLog = Depends(get_run_log)):
    entries = run_log.entries(run_id)
    if not entries:
        raise HTTPException(status_code=404, detail=f"No logs for run {run_id}")
    return [entry.model_dump(mode="json") for entry in entries]

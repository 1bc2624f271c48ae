import pytest
from fastapi.testclient import TestClient

from flashcard_orchestrator.main_api import app, get_deck_store
from flashcard_orchestrator.schemas.outputs import FlashcardItem
from flashcard_orchestrator.schemas.results import AttemptRecord, Deck, StageErrorType, StageId
from flashcard_orchestrator.store.decks import FileDeckStore
from flashcard_orchestrator.store.run_logs import SqliteRunLog


@pytest.fixture
def deck_store(tmp_path):
    return FileDeckStore(str(tmp_path / "decks"))


@pytest.fixture
def client(test_db, deck_store):
    app.dependency_overrides[get_deck_store] = lambda: deck_store
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_generate_queues_job_and_job_is_readable(client):
    """
    WHY: The API is how modules get into the worker queue.
    HOW:
        1. POST /modules/generate for MOD1.
        2. GET /jobs/{job_id}.
    EXPECTED:
        1. 202 with a job id.
        2. The job is pending for MOD1.
    """
    response = client.post("/modules/generate", json={"module_id": "MOD1", "module_title": "HR Basics"})

    assert response.status_code == 202
    job_id = response.json()["job_id"]

    job = client.get(f"/jobs/{job_id}").json()
    assert job["module_id"] == "MOD1"
    assert job["status"] == "pending"
    assert job["kind"] == "generate"


def test_generate_rejects_missing_module_id(client):
    assert client.post("/modules/generate", json={}).status_code == 422


def test_unknown_job_is_404(client):
    assert client.get("/jobs/12345").status_code == 404


def test_get_deck(client, deck_store):
    """
    WHY: Finished decks are served from the deck store.
    EXPECTED: Saved deck is returned by id and as the module's latest; unknown id is 404.
    """
    deck = Deck(
        module_id="MOD1",
        cards=[FlashcardItem(
            card_id="MMOD1_C1",
            question="What is recruitment?",
            answer="Attracting talent.",
            difficulty="easy",
            bloom_level="Remember",
        )],
    )
    deck_store.save(deck)

    body = client.get(f"/decks/{deck.deck_id}").json()
    assert body["deck_id"] == deck.deck_id
    assert body["cards"][0]["question"] == "What is recruitment?"
    assert client.get("/modules/MOD1/deck").json()["deck_id"] == deck.deck_id
    assert client.get("/decks/nope").status_code == 404


def test_run_logs_are_served(client):
    """
    WHY: Operators audit why a batch was salvaged or rejected from the run's logs.
    HOW: Record a rejected and a recovered Stage B attempt under one run id.
    EXPECTED: Both attempts returned in order with raw output and issues; unknown run is 404.
    """
    SqliteRunLog().record("run-1", "MOD1", [
        AttemptRecord(
            stage=StageId.STAGE_B, attempt=1, outcome="failed", raw_output="not json",
            error_type=StageErrorType.INVALID_LLM_OUTPUT, error="No JSON found",
        ),
        AttemptRecord(
            stage=StageId.STAGE_B, attempt=2, outcome="recovered", raw_output='{"cards": []}',
            issues=["cards.0.evidence: too short"],
        ),
    ])

    body = client.get("/runs/run-1/logs").json()

    assert [entry["outcome"] for entry in body] == ["failed", "recovered"]
    assert body[0]["raw_output"] == "not json"
    assert body[0]["error_type"] == "INVALID_LLM_OUTPUT"
    assert body[1]["issues"] == ["cards.0.evidence: too short"]
    assert client.get("/runs/unknown/logs").status_code == 404

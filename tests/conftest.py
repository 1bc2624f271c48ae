import json
import pytest
import os
from typing import List, Optional, Union
from unittest.mock import MagicMock
from dotenv import load_dotenv

from flashcard_orchestrator.llm.client import LLMResponse
from flashcard_orchestrator.schemas.chunks import ContentChunk

@pytest.fixture(scope="session", autouse=True)
def _load_env():
    # Load .env once per session to avoid side-effects on import time
    load_dotenv()

def _truthy(v: str | None) -> bool:
    return v is not None and v.strip().lower() not in ("", "0", "false", "no")

@pytest.fixture(scope="session")
def allow_integration(_load_env) -> bool:
    return _truthy(os.getenv("RUN_INTEGRATION_TESTS"))

@pytest.fixture(scope="session")
def openai_api_key(_load_env) -> str | None:
    key = os.getenv("OPENAI_API_KEY")
    if not key or key == "sk-...":
        return None
    return key

@pytest.fixture(scope="function")
def test_db(tmp_path):
    """
    Creates a temporary database for testing and initializes the schema.
    Patches DB_PATH on the cached settings object that `store.db` reads.
    """
    db_file = tmp_path / "test_flashcards.db"

    from flashcard_orchestrator.config import get_settings
    settings = get_settings()

    original_db_path = settings.DB_PATH
    settings.DB_PATH = str(db_file)

    from flashcard_orchestrator.store.db import init_db
    init_db()

    yield settings

    settings.DB_PATH = original_db_path


class ScriptedClient:
    """
    Generation client returning queued replies in order.
    A reply is a string (returned as text), a dict (returned as JSON text)
    or an exception (raised).
    """

    def __init__(self, replies: List[Union[str, dict, Exception]], tokens: Optional[int] = 10):
        self.replies = list(replies)
        self.tokens = tokens
        self.calls = []

    def call(self, system_prompt, user_prompt, config):
        self.calls.append({"system": system_prompt, "user": user_prompt, "model": config.model})
        if not self.replies:
            raise AssertionError("ScriptedClient ran out of replies")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, dict):
            reply = json.dumps(reply)
        return LLMResponse(text=reply, tokens_used=self.tokens)


@pytest.fixture
def scripted_client():
    return ScriptedClient

@pytest.fixture
def mock_tracer():
    """Stands in for the MLflow tracer; span() works as a context manager."""
    return MagicMock()


CHUNK_TEXTS = [
    "Recruitment is the process of attracting talent. It starts with a clear job description.",
    "Selection methods include structured interviews and work sample tests. Structured interviews ask every candidate the same questions.",
    "Onboarding helps new hires become productive members of the organization. A buddy system speeds up social integration.",
    "Performance appraisal compares employee results against agreed goals. Feedback should be specific and timely.",
    "Compensation combines base pay, variable pay and benefits. Pay equity audits detect unjustified pay gaps.",
]

@pytest.fixture
def chunks() -> List[ContentChunk]:
    return [
        ContentChunk(chunk_id=f"c{i}", source_file="hr_basics.pdf", location=f"page {i}", text=text)
        for i, text in enumerate(CHUNK_TEXTS, start=1)
    ]

@pytest.fixture
def topic_summary_payload() -> dict:
    points = [
        "Recruitment attracts talent using clear job descriptions",
        "Structured interviews ask every candidate the same questions",
        "Work sample tests are a selection method",
        "Onboarding makes new hires productive",
        "Performance appraisal compares results against goals",
        "Compensation combines base pay, variable pay and benefits",
    ]
    topics = ["Recruitment", "Selection", "Onboarding", "Performance appraisal", "Compensation", "Pay equity"]
    return {
        "module_summary": [{"point": p, "supports": ["c1"]} for p in points],
        "key_topics": [{"topic": t, "supports": ["c1"]} for t in topics],
        "coverage_map": [],
    }

# (question, answer, difficulty, bloom, chunk_id, excerpt)
CARD_SPECS = [
    ("What is recruitment?", "The process of attracting talent.", "easy", "Remember", "c1",
     "Recruitment is the process of attracting talent"),
    ("What does a structured interview do?", "It asks every candidate the same questions.", "easy", "Understand", "c2",
     "Structured interviews ask every candidate the same questions"),
    ("Name two selection methods.", "Structured interviews and work sample tests.", "easy", "Remember", "c2",
     "Selection methods include structured interviews and work sample tests"),
    ("What is the goal of onboarding?", "Helping new hires become productive members of the organization.", "medium", "Understand", "c3",
     "Onboarding helps new hires become productive members of the organization"),
    ("How would a buddy system help a new hire?", "It speeds up social integration.", "medium", "Apply", "c3",
     "A buddy system speeds up social integration"),
    ("What does performance appraisal compare?", "Employee results against agreed goals.", "medium", "Understand", "c4",
     "Performance appraisal compares employee results against agreed goals"),
    ("Why should appraisal feedback be specific and timely?", "So employees can act on it while it is relevant.", "medium", "Analyze", "c4",
     "Feedback should be specific and timely"),
    ("Which parts make up compensation?", "Base pay, variable pay and benefits.", "hard", "Remember", "c5",
     "Compensation combines base pay, variable pay and benefits"),
    ("How can a company detect unjustified pay gaps?", "By running pay equity audits.", "hard", "Apply", "c5",
     "Pay equity audits detect unjustified pay gaps"),
    ("Evaluate why job descriptions matter in hiring.", "They start recruitment by defining what talent to attract.", "hard", "Evaluate", "c1",
     "It starts with a clear job description"),
]

def make_card(n: int, question: str, answer: str, difficulty: str, bloom: str, chunk_id: str, excerpt: str,
              module_id: str = "MOD1") -> dict:
    return {
        "card_id": f"M{module_id}_C{n}",
        "q": question,
        "a": answer,
        "difficulty": difficulty,
        "bloom_level": bloom,
        "evidence": [{"chunk_id": chunk_id, "source_file": "hr_basics.pdf", "loc": "page 1", "excerpt": excerpt}],
        "sources": [{"type": "pdf", "file": "hr_basics.pdf", "loc": "page 1"}],
        "confidence_score": 0.9,
        "rationale": "Core concept.",
        "review_required": False,
    }

@pytest.fixture
def card_batch_payload() -> dict:
    cards = [make_card(i, *fields) for i, fields in enumerate(CARD_SPECS, start=1)]
    return {"module_id": "MOD1", "module_title": "HR Basics", "generated_count": len(cards), "cards": cards, "warnings": []}

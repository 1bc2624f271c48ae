"""Deck persistence.

SqliteDeckStore is the primary store: deck row and card rows are written in
one transaction. FileDeckStore writes one JSON file per deck via temp file +
rename. FallbackDeckStore hides the substitution from the pipeline, which
only sees save() succeed or raise PersistenceError.
"""

import os
import tempfile
from pathlib import Path
from typing import Optional, Protocol

from .db import get_db_connection
from ..log import get_logger
from ..schemas.results import Deck

logger = get_logger("decks")


class PersistenceError(Exception):
    pass


class DeckStore(Protocol):
    def save(self, deck: Deck) -> str:
        ...

    def load(self, deck_id: str) -> Optional[Deck]:
        ...

    def latest_for_module(self, module_id: str) -> Optional[Deck]:
        ...


class SqliteDeckStore:
    def save(self, deck: Deck) -> str:
        with get_db_connection() as conn:
            conn.execute("BEGIN")
            try:
                conn.execute(
                    """
                    INSERT INTO decks (deck_id, module_id, course_id, module_title, card_count, payload, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        deck.deck_id,
                        deck.module_id,
                        deck.course_id,
                        deck.module_title,
                        len(deck.cards),
                        deck.model_dump_json(),
                        deck.created_at,
                    )
                )
                conn.executemany(
                    """
                    INSERT INTO cards (deck_id, card_id, question, answer, difficulty, bloom_level, confidence_score, review_required)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    [
                        (
                            deck.deck_id,
                            card.card_id,
                            card.question,
                            card.answer,
                            card.difficulty,
                            card.bloom_level,
                            card.confidence_score,
                            int(card.review_required),
                        )
                        for card in deck.cards
                    ]
                )
                conn.commit()
            except Exception:
                conn.rollback()
                raise
        logger.info(f"Saved deck {deck.deck_id} ({len(deck.cards)} cards) for module {deck.module_id}")
        return deck.deck_id

    def load(self, deck_id: str) -> Optional[Deck]:
        with get_db_connection() as conn:
            row = conn.execute("SELECT payload FROM decks WHERE deck_id = ?", (deck_id,)).fetchone()
        return Deck.model_validate_json(row["payload"]) if row else None

    def latest_for_module(self, module_id: str) -> Optional[Deck]:
        with get_db_connection() as conn:
            row = conn.execute(
                "SELECT payload FROM decks WHERE module_id = ? ORDER BY created_at DESC LIMIT 1",
                (module_id,)
            ).fetchone()
        return Deck.model_validate_json(row["payload"]) if row else None


class FileDeckStore:
    def __init__(self, directory: str):
        self.directory = Path(directory)

    def _path(self, deck_id: str) -> Path:
        return self.directory / f"{deck_id}.json"

    def save(self, deck: Deck) -> str:
        self.directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.directory, prefix=f".{deck.deck_id}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(deck.model_dump_json(indent=2))
            os.replace(tmp_path, self._path(deck.deck_id))
        except Exception:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise
        logger.info(f"Saved deck {deck.deck_id} to {self._path(deck.deck_id)}")
        return deck.deck_id

    def load(self, deck_id: str) -> Optional[Deck]:
        path = self._path(deck_id)
        if not path.exists():
            return None
        return Deck.model_validate_json(path.read_text(encoding="utf-8"))

    def latest_for_module(self, module_id: str) -> Optional[Deck]:
        if not self.directory.exists():
            return None
        decks = [Deck.model_validate_json(p.read_text(encoding="utf-8")) for p in self.directory.glob("*.json")]
        matching = [d for d in decks if d.module_id == module_id]
        return max(matching, key=lambda d: d.created_at) if matching else None


class FallbackDeckStore:
    def __init__(self, primary: DeckStore, fallback: DeckStore):
        self.primary = primary
        self.fallback = fallback

    def save(self, deck: Deck) -> str:
        try:
            return self.primary.save(deck)
        except Exception as primary_error:
            logger.warning(f"Primary deck store failed for {deck.deck_id}: {primary_error}; using fallback")
            try:
                return self.fallback.save(deck)
            except Exception as fallback_error:
                raise PersistenceError(
                    f"Deck {deck.deck_id} not saved. primary: {primary_error}; fallback: {fallback_error}"
                ) from fallback_error

    def load(self, deck_id: str) -> Optional[Deck]:
        try:
            deck = self.primary.load(deck_id)
        except Exception as e:
            logger.warning(f"Primary deck store unavailable for load: {e}")
            deck = None
        return deck or self.fallback.load(deck_id)

    def latest_for_module(self, module_id: str) -> Optional[Deck]:
        try:
            deck = self.primary.latest_for_module(module_id)
        except Exception as e:
            logger.warning(f"Primary deck store unavailable for lookup: {e}")
            deck = None
        return deck or self.fallback.latest_for_module(module_id)

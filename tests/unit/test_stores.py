"""Tests for chunk retrieval and deck persistence."""
import json
from unittest.mock import MagicMock

import pytest

from flashcard_orchestrator.schemas.outputs import FlashcardItem
from flashcard_orchestrator.schemas.results import Deck
from flashcard_orchestrator.store.chunks import SqliteChunkRetriever
from flashcard_orchestrator.store.decks import (
    FallbackDeckStore,
    FileDeckStore,
    PersistenceError,
    SqliteDeckStore,
)
from flashcard_orchestrator.store.db import get_db_connection


def make_deck(module_id="MOD1", n=2, created_at="2026-01-01T00:00:00+00:00") -> Deck:
    cards = [
        FlashcardItem(
            card_id=f"M{module_id}_C{i}",
            question=f"What is concept number {i}?",
            answer="An answer.",
            difficulty="easy",
            bloom_level="Remember",
        )
        for i in range(1, n + 1)
    ]
    return Deck(module_id=module_id, module_title="HR Basics", cards=cards, created_at=created_at)


def test_add_and_retrieve_chunks(test_db, chunks):
    """
    WHY: The retriever returns at most k chunks per module, in load order.
    HOW: Load 5 chunks for MOD1 (and one for MOD2), retrieve with k=3.
    EXPECTED: First 3 MOD1 chunks, round-tripped intact.
    """
    retriever = SqliteChunkRetriever()
    assert retriever.add_chunks("MOD1", chunks) == 5
    retriever.add_chunks("MOD2", chunks[:1])

    got = retriever.retrieve("MOD1", 3)

    assert got == chunks[:3]
    assert retriever.retrieve("MOD3", 8) == []


def test_add_chunks_upserts(test_db, chunks):
    retriever = SqliteChunkRetriever()
    retriever.add_chunks("MOD1", chunks[:1])
    retriever.add_chunks("MOD1", [chunks[0].model_copy(update={"text": "Updated text for chunk one."})])

    got = retriever.retrieve("MOD1", 8)
    assert len(got) == 1
    assert got[0].text == "Updated text for chunk one."


def test_sqlite_deck_store_roundtrip(test_db):
    store = SqliteDeckStore()
    deck = make_deck()

    assert store.save(deck) == deck.deck_id
    assert store.load(deck.deck_id) == deck

    with get_db_connection() as conn:
        count = conn.execute("SELECT COUNT(*) AS n FROM cards WHERE deck_id = ?", (deck.deck_id,)).fetchone()["n"]
    assert count == 2


def test_sqlite_deck_store_is_all_or_nothing(test_db):
    """
    WHY: A deck write must never leave a deck row without its cards.
    HOW: Save a deck whose two cards share an id (violates the cards primary key).
    EXPECTED: Save raises and no deck row remains.
    """
    deck = make_deck()
    deck.cards[1] = deck.cards[1].model_copy(update={"card_id": deck.cards[0].card_id})

    with pytest.raises(Exception):
        SqliteDeckStore().save(deck)

    assert SqliteDeckStore().load(deck.deck_id) is None


def test_latest_for_module(test_db, tmp_path):
    older = make_deck(created_at="2026-01-01T00:00:00+00:00")
    newer = make_deck(created_at="2026-02-01T00:00:00+00:00")

    for store in (SqliteDeckStore(), FileDeckStore(str(tmp_path / "decks"))):
        store.save(older)
        store.save(newer)
        assert store.latest_for_module("MOD1").deck_id == newer.deck_id
        assert store.latest_for_module("OTHER") is None


def test_file_store_writes_atomically(tmp_path):
    """
    WHY: The fallback store must not leave partial files behind.
    EXPECTED: Exactly one JSON file named after the deck, no temp files, valid content.
    """
    store = FileDeckStore(str(tmp_path / "decks"))
    deck = make_deck()
    store.save(deck)

    files = list((tmp_path / "decks").iterdir())
    assert [f.name for f in files] == [f"{deck.deck_id}.json"]
    assert json.loads(files[0].read_text())["module_id"] == "MOD1"
    assert store.load(deck.deck_id) == deck
    assert store.load("missing") is None


def test_fallback_used_when_primary_fails(tmp_path):
    """
    WHY: A primary store outage should be invisible to the pipeline.
    HOW: Primary save raises; fallback is a real file store.
    EXPECTED: save returns the deck id and the deck is loadable through the fallback.
    """
    primary = MagicMock()
    primary.save.side_effect = RuntimeError("database is locked")
    primary.load.side_effect = RuntimeError("database is locked")
    store = FallbackDeckStore(primary, FileDeckStore(str(tmp_path)))
    deck = make_deck()

    assert store.save(deck) == deck.deck_id
    assert store.load(deck.deck_id) == deck


def test_both_stores_failing_raises_persistence_error():
    primary, fallback = MagicMock(), MagicMock()
    primary.save.side_effect = RuntimeError("db down")
    fallback.save.side_effect = OSError("disk full")

    with pytest.raises(PersistenceError) as exc:
        FallbackDeckStore(primary, fallback).save(make_deck())

    assert "db down" in str(exc.value)
    assert "disk full" in str(exc.value)

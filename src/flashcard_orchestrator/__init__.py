"""Flashcard Orchestrator - grounded study flashcards from course content.

Retrieves course-content chunks for a module and drives a two-stage LLM
pipeline (topic summarization + card generation), then mechanically checks
every cited excerpt against the source chunks before a deck is persisted.

Components:
- main_worker: Background job processor
- main_api: HTTP surface for queueing modules and reading results
- pipeline: Module state machine (retrieve -> stages -> verify -> post-process -> persist)
- llm: Generation clients, stage caller, Stage A / Stage B runners
- quality: Text similarity, evidence verification, post-processing
- store: SQLite queue, chunk retrieval, deck persistence
- mlops: MLflow tracing
"""

"""Post-processing of verified cards.

Steps run in order: length enforcement, deduplication, then annotation-only
checks (difficulty balance, higher-order Bloom count, topic coverage).
Order-preserving; the first card wins on duplicates.
"""

import re
from typing import List, Optional, Sequence, Tuple

from pydantic import BaseModel, Field

from ..log import get_logger
from ..schemas.options import PostProcessSettings
from ..schemas.outputs import HIGHER_ORDER_BLOOM, FlashcardItem, KeyTopic
from .similarity import jaccard_similarity, normalize_question

logger = get_logger("postprocess")

ELLIPSIS = "..."


class PostProcessResult(BaseModel):
    cards: List[FlashcardItem]
    warnings: List[str] = Field(default_factory=list)
    removed: int = 0
    truncated: int = 0


class PostProcessor:
    def __init__(self, settings: Optional[PostProcessSettings] = None):
        self.settings = settings or PostProcessSettings()

    def truncate_answer(self, answer: str) -> str:
        max_words = self.settings.max_answer_words
        if len(answer.split()) > max_words:
            # Cut after the last allowed word, keeping the original spacing before it
            match = re.match(r"\s*(?:\S+\s+){%d}\S+" % (max_words - 1), answer)
            answer = match.group(0).rstrip() + ELLIPSIS

        max_chars = self.settings.max_answer_chars
        if len(answer) > max_chars:
            answer = answer[:max_chars - len(ELLIPSIS)].rstrip() + ELLIPSIS
        return answer

    def enforce_length(self, cards: Sequence[FlashcardItem]) -> Tuple[List[FlashcardItem], int]:
        result, truncated = [], 0
        for card in cards:
            answer = self.truncate_answer(card.answer)
            if answer != card.answer:
                truncated += 1
                card = card.model_copy(update={"answer": answer})
            result.append(card)
        return result, truncated

    def deduplicate(self, cards: Sequence[FlashcardItem]) -> Tuple[List[FlashcardItem], int]:
        seen: List[str] = []
        kept = []
        for card in cards:
            question = normalize_question(card.question)
            if any(jaccard_similarity(question, prior) > self.settings.dedupe_threshold for prior in seen):
                logger.info(f"Dropping near-duplicate card {card.card_id}")
                continue
            seen.append(question)
            kept.append(card)
        return kept, len(cards) - len(kept)

    def check_difficulty_balance(self, cards: Sequence[FlashcardItem]) -> Optional[str]:
        target = self.settings.difficulty_distribution
        counts = {level: 0 for level in target}
        for card in cards:
            counts[card.difficulty] = counts.get(card.difficulty, 0) + 1

        if all(abs(counts.get(level, 0) - want) <= self.settings.difficulty_tolerance for level, want in target.items()):
            return None
        observed = ", ".join(f"{level}={count}" for level, count in counts.items())
        wanted = ", ".join(f"{level}={want}" for level, want in target.items())
        return f"Difficulty imbalance: {observed} (target {wanted})"

    def check_bloom_balance(self, cards: Sequence[FlashcardItem]) -> Optional[str]:
        if not cards:
            return None
        higher = sum(1 for c in cards if c.bloom_level in HIGHER_ORDER_BLOOM)
        if higher < self.settings.min_higher_order_bloom:
            return f"Low higher-order Bloom: {higher}/{self.settings.min_higher_order_bloom} required"
        return None

    def report_uncovered_topics(self, cards: Sequence[FlashcardItem], key_topics: Sequence[KeyTopic]) -> Optional[str]:
        """A topic counts as covered when one card mentions at least half of its words."""
        card_tokens = [set(normalize_question(f"{c.question} {c.answer}").split()) for c in cards]
        uncovered = []
        for topic in key_topics:
            words = set(normalize_question(topic.topic).split())
            if not words:
                continue
            if not any(len(words & tokens) * 2 >= len(words) for tokens in card_tokens):
                uncovered.append(topic.topic)
        if uncovered:
            return f"Topics without cards: {', '.join(uncovered)}"
        return None

    def process(self, cards: Sequence[FlashcardItem], key_topics: Optional[Sequence[KeyTopic]] = None) -> PostProcessResult:
        warnings = []

        cards, truncated = self.enforce_length(cards)
        if truncated:
            warnings.append(f"Truncated {truncated} answers to length limits")

        cards, removed = self.deduplicate(cards)
        if removed:
            warnings.append(f"Removed {removed} duplicate questions")

        for warning in (
            self.check_difficulty_balance(cards),
            self.check_bloom_balance(cards),
            self.report_uncovered_topics(cards, key_topics) if key_topics else None,
        ):
            if warning:
                warnings.append(warning)

        logger.info(f"Post-processed {len(cards)} cards ({removed} removed, {truncated} truncated)")
        return PostProcessResult(cards=cards, warnings=warnings, removed=removed, truncated=truncated)

"""Deterministic grounding check of card evidence against source chunks.

Each cited excerpt is matched against the text of the chunk it names:

1. chunk missing                        -> missing ("chunk not found")
2. whitespace-normalized substring      -> ok
3. substring only when case is ignored  -> corrected to the original-case sentence
4. best sentence by Jaccard similarity  -> corrected, if above min_similarity and
   within max_levenshtein_distance of the excerpt
5. otherwise                            -> missing

A card is verified iff it cites evidence and none of it is missing.
Confidence is a two-valued trust signal, not a score.
"""

from typing import Dict, List, Optional, Sequence

from ..log import get_logger
from ..schemas.chunks import ContentChunk
from ..schemas.options import VerificationOptions
from ..schemas.outputs import Evidence, FlashcardItem
from ..schemas.results import (
    Correction,
    VerificationOutcome,
    VerificationReport,
    VerificationSummary,
)
from .similarity import (
    extract_sentences,
    jaccard_similarity,
    levenshtein_distance,
    normalize_for_match,
    normalize_whitespace,
)

logger = get_logger("verifier")

MAX_EXCERPT_CHARS = 500


class EvidenceVerifier:
    def __init__(self, options: Optional[VerificationOptions] = None):
        self.options = options or VerificationOptions()

    def verify(self, card: FlashcardItem, chunks: Sequence[ContentChunk]) -> VerificationOutcome:
        by_id = {c.chunk_id: c for c in chunks}
        corrections = [
            self._check_evidence(index, evidence, by_id.get(evidence.chunk_id))
            for index, evidence in enumerate(card.evidence)
        ]
        verified = bool(corrections) and all(c.status != "missing" for c in corrections)
        if not card.evidence:
            logger.warning(f"Card {card.card_id} cites no evidence")

        return VerificationOutcome(
            card_id=card.card_id,
            verified=verified,
            confidence=self.options.verified_confidence if verified else self.options.unverified_confidence,
            corrections=corrections,
        )

    def verify_all(self, cards: Sequence[FlashcardItem], chunks: Sequence[ContentChunk]) -> VerificationReport:
        outcomes = []
        for card in cards:
            try:
                outcomes.append(self.verify(card, chunks))
            except Exception as e:
                logger.error(f"Verification error for card {card.card_id}: {e}")
                outcomes.append(VerificationOutcome(
                    card_id=card.card_id,
                    verified=False,
                    confidence=self.options.unverified_confidence,
                ))

        verified = sum(1 for o in outcomes if o.verified)
        average = sum(o.confidence for o in outcomes) / len(outcomes) if outcomes else 0.0
        summary = VerificationSummary(
            total=len(outcomes),
            verified=verified,
            failed=len(outcomes) - verified,
            average_confidence=round(average, 4),
        )
        logger.info(f"Verified {summary.verified}/{summary.total} cards (avg confidence {summary.average_confidence})")
        return VerificationReport(outcomes=outcomes, summary=summary)

    def apply_corrections(
        self,
        cards: Sequence[FlashcardItem],
        outcomes: Sequence[VerificationOutcome],
    ) -> List[FlashcardItem]:
        """
        Fold outcomes into copies of the cards. Applying the same outcomes twice
        yields the same cards as applying them once.
        """
        by_card: Dict[str, VerificationOutcome] = {o.card_id: o for o in outcomes}
        updated = []
        for card in cards:
            outcome = by_card.get(card.card_id)
            if outcome is None:
                updated.append(card)
                continue

            evidence = list(card.evidence)
            for correction in outcome.corrections:
                if correction.corrected_excerpt and correction.evidence_index < len(evidence):
                    evidence[correction.evidence_index] = evidence[correction.evidence_index].model_copy(
                        update={"excerpt": correction.corrected_excerpt}
                    )

            updated.append(card.model_copy(update={
                "evidence": evidence,
                "confidence_score": outcome.confidence,
                "review_required": card.review_required or not outcome.verified,
            }))
        return updated

    def _check_evidence(self, index: int, evidence: Evidence, chunk: Optional[ContentChunk]) -> Correction:
        if chunk is None:
            return Correction(evidence_index=index, status="missing", reason="chunk not found")

        excerpt = normalize_whitespace(evidence.excerpt)
        text = normalize_whitespace(chunk.text)
        if not excerpt:
            return Correction(evidence_index=index, status="missing", reason="empty excerpt")

        if excerpt in text:
            return Correction(evidence_index=index, status="ok", similarity_score=1.0)

        if excerpt.lower() in text.lower():
            replacement = self._original_case(excerpt, text)
            return Correction(
                evidence_index=index,
                status="corrected",
                corrected_excerpt=replacement,
                reason="excerpt case adjusted to match chunk",
                similarity_score=round(jaccard_similarity(excerpt, replacement), 4),
            )

        best_sentence, best_score = None, 0.0
        for sentence in extract_sentences(chunk.text):
            score = jaccard_similarity(excerpt, sentence)
            if score > best_score:
                best_sentence, best_score = sentence, score

        if best_sentence is not None and best_score > self.options.min_similarity:
            distance = levenshtein_distance(normalize_for_match(excerpt), normalize_for_match(best_sentence))
            if distance <= self.options.max_levenshtein_distance:
                return Correction(
                    evidence_index=index,
                    status="corrected",
                    corrected_excerpt=best_sentence[:MAX_EXCERPT_CHARS],
                    reason="excerpt adjusted to match chunk",
                    similarity_score=round(best_score, 4),
                )

        return Correction(
            evidence_index=index,
            status="missing",
            reason="no matching text found in chunk",
            similarity_score=round(best_score, 4),
        )

    @staticmethod
    def _original_case(excerpt: str, text: str) -> str:
        needle = excerpt.lower()
        for sentence in extract_sentences(text):
            if needle in sentence.lower() and len(sentence) <= MAX_EXCERPT_CHARS:
                return sentence

        lowered = text.lower()
        start = lowered.find(needle)
        # lower() can change length for some non-ASCII text
        if start == -1 or len(lowered) != len(text):
            return excerpt
        return text[start:start + len(excerpt)]

from functools import partial
from typing import Any, Optional, Sequence

from pydantic import ValidationError

from .prompts import Prompt, format_chunks, load_prompt
from .stage_caller import StageCaller
from ..log import get_logger
from ..schemas.chunks import ContentChunk
from ..schemas.outputs import CardBatch, RecoveredCard, TopicSummary
from ..schemas.results import ModuleRef, StageId, StageResult

logger = get_logger("stage_b")


def run_stage_b(
    caller: StageCaller,
    module: ModuleRef,
    chunks: Sequence[ContentChunk],
    summary: TopicSummary,
    target_count: int,
    prompt: Optional[Prompt] = None,
) -> StageResult:
    prompt = prompt or load_prompt("stage_b_generate_cards")
    user_prompt = prompt.render(
        module_id=module.module_id,
        module_title=module.module_title or module.module_id,
        target_count=target_count,
        summary=summary.model_dump_json(indent=2),
        chunks=format_chunks(chunks),
    )
    return caller.call(
        StageId.STAGE_B,
        prompt.system,
        user_prompt,
        CardBatch,
        recover=partial(recover_cards, module=module),
    )


def recover_cards(payload: Any, module: ModuleRef) -> Optional[CardBatch]:
    """
    Salvage individually valid cards from a batch that failed strict validation.
    Returns None when nothing survives. Every surviving card is marked recovered
    and flagged for review.
    """
    if not isinstance(payload, dict) or not isinstance(payload.get("cards"), list):
        return None

    cards, seen = [], set()
    for raw in payload["cards"]:
        try:
            card = RecoveredCard.model_validate(raw).to_flashcard()
        except ValidationError:
            continue
        if card.card_id in seen:
            continue
        seen.add(card.card_id)
        cards.append(card)

    discarded = len(payload["cards"]) - len(cards)
    if not cards:
        logger.warning(f"Partial recovery found no valid cards among {discarded}")
        return None
    logger.warning(f"Partial recovery kept {len(cards)} cards, discarded {discarded}")

    warnings = [w for w in payload.get("warnings") or [] if isinstance(w, str)]
    # Recovered cards may lack evidence or sources, so skip the strict batch checks
    return CardBatch.model_construct(
        module_id=module.module_id,
        module_title=module.module_title,
        generated_count=len(cards),
        cards=cards,
        warnings=warnings,
        generation_metadata=None,
    )

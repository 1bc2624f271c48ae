from typing import Optional, Sequence

from .prompts import Prompt, format_chunks, load_prompt
from .stage_caller import StageCaller
from ..schemas.chunks import ContentChunk
from ..schemas.outputs import TopicSummary
from ..schemas.results import ModuleRef, StageId, StageResult


def run_stage_a(
    caller: StageCaller,
    module: ModuleRef,
    chunks: Sequence[ContentChunk],
    prompt: Optional[Prompt] = None,
) -> StageResult:
    """Summarize the module's chunks into summary points and key topics (TopicSummary)."""
    prompt = prompt or load_prompt("stage_a_summarize")

    def render(context: Sequence[ContentChunk]) -> str:
        return prompt.render(
            module_id=module.module_id,
            module_title=module.module_title or module.module_id,
            chunks=format_chunks(context),
        )

    return caller.call_with_context(StageId.STAGE_A, prompt.system, render, chunks, TopicSummary)

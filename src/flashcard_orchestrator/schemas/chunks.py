"""Pydantic schema for retrieved course-content fragments.

ContentChunk is owned by the retrieval layer; the pipeline only reads it.
"""

import math
from pydantic import BaseModel, ConfigDict
from typing import Optional


class ContentChunk(BaseModel):
    model_config = ConfigDict(frozen=True)

    chunk_id: str
    source_file: str
    location: Optional[str] = None  # page, slide or timestamp range
    start_sec: Optional[float] = None
    end_sec: Optional[float] = None
    heading: Optional[str] = None
    text: str
    tokens_estimate: Optional[int] = None

    def estimated_tokens(self) -> int:
        if self.tokens_estimate:
            return self.tokens_estimate
        # ~4 characters per token for English text
        return math.ceil(len(self.text) / 4)


def estimate_total_tokens(chunks) -> int:
    return sum(c.estimated_tokens() for c in chunks)

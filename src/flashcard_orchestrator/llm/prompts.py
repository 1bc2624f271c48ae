import yaml
from pathlib import Path
from typing import Optional

from pydantic import BaseModel
from ..config import get_settings


class Prompt(BaseModel):
    name: str
    system: str
    content: str

    def render(self, **values) -> str:
        return self.content.format(**values)


def format_chunks(chunks) -> str:
    """Render chunks as the citation-ready block the stage prompts expect."""
    blocks = []
    for chunk in chunks:
        header = f"[chunk_id: {chunk.chunk_id}] source: {chunk.source_file}"
        if chunk.location:
            header += f" | location: {chunk.location}"
        if chunk.heading:
            header += f" | heading: {chunk.heading}"
        blocks.append(f"{header}\n{chunk.text}")
    return "\n\n---\n\n".join(blocks)


def load_prompt(name: str, prompts_dir: Optional[str] = None) -> Prompt:
    directory = Path(prompts_dir or get_settings().PROMPTS_DIR)
    yaml_path = directory / f"{name}.yaml"
    if not yaml_path.exists():
        raise FileNotFoundError(f"Prompt {name} not found in {directory}")

    with open(yaml_path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    return Prompt(name=name, system=data.get("system", ""), content=data.get("content", ""))

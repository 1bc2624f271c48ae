import json
import re
from typing import Any

from .errors import NonJsonOutputError

_FENCED = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)
_DECODER = json.JSONDecoder()


def extract_json(text: str) -> Any:
    """
    Pull a JSON value out of free-form model output.
    Tries the raw text, then a fenced code block, then the first {...} object
    that decodes, ignoring whatever prose follows it.
    """
    candidates = [text]
    fenced = _FENCED.search(text)
    if fenced:
        candidates.append(fenced.group(1))

    for candidate in candidates:
        try:
            return json.loads(candidate.strip())
        except json.JSONDecodeError:
            continue

    start = text.find("{")
    while start != -1:
        try:
            value, _ = _DECODER.raw_decode(text, start)
            return value
        except json.JSONDecodeError:
            start = text.find("{", start + 1)

    preview = text[:120].replace("\n", " ")
    raise NonJsonOutputError(f"No JSON found in model output: {preview!r}")

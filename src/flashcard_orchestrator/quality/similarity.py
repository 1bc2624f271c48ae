"""Pure string utilities used by evidence verification and deduplication."""

import re
from typing import List

_WHITESPACE = re.compile(r"\s+")
_SENTENCE_SPLIT = re.compile(r"[.!?]+")
_NON_WORD = re.compile(r"[^\w\s]")

MIN_SENTENCE_CHARS = 10


def normalize_whitespace(text: str) -> str:
    return _WHITESPACE.sub(" ", text).strip()

def normalize_for_match(text: str) -> str:
    return normalize_whitespace(text).lower()

def normalize_question(text: str) -> str:
    return _NON_WORD.sub("", text.lower()).strip()

def extract_sentences(text: str) -> List[str]:
    """
    Split on sentence terminators, dropping fragments of 10 characters or fewer.
    Terminators are not kept; original casing is.
    """
    sentences = []
    for part in _SENTENCE_SPLIT.split(text):
        part = normalize_whitespace(part)
        if len(part) > MIN_SENTENCE_CHARS:
            sentences.append(part)
    return sentences

def jaccard_similarity(a: str, b: str) -> float:
    tokens_a = set(a.lower().split())
    tokens_b = set(b.lower().split())
    if not tokens_a or not tokens_b:
        return 0.0
    return len(tokens_a & tokens_b) / len(tokens_a | tokens_b)

def levenshtein_distance(a: str, b: str) -> int:
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)
    if len(a) < len(b):
        a, b = b, a

    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + (ca != cb),
            ))
        previous = current
    return previous[-1]

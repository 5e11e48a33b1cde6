"""Keyword-overlap similarity between a reference text and notes."""

import re
from typing import Iterable, List, Tuple

from ..models import NoteRecord, SimilarityResult

PUNCTUATION = re.compile(r"[^\w\s]")

MAX_KEYWORDS = 10
MIN_KEYWORD_LENGTH = 4

STOP_WORDS = frozenset(
    {
        "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of",
        "with", "by", "is", "are", "was", "were", "be", "been", "have", "has", "had",
        "do", "does", "did", "will", "would", "could", "should", "this", "that",
        "these", "those",
    }
)  # fmt: skip


def extract_keywords(text: str, limit: int = MAX_KEYWORDS) -> List[str]:
    """First ``limit`` distinct significant words of a text, lower-cased."""
    if not text:
        return []

    words = PUNCTUATION.sub(" ", text.lower()).split()
    keywords = [w for w in words if len(w) >= MIN_KEYWORD_LENGTH and w not in STOP_WORDS]
    return list(dict.fromkeys(keywords))[:limit]


def keywords_match(a: str, b: str) -> bool:
    """Substring match in either direction, so "note" matches "notes"."""
    return a in b or b in a


def keyword_similarity(
    reference: List[str], candidate: List[str]
) -> Tuple[float, List[str]]:
    """
    Overlap ratio of two keyword lists and the reference keywords they share.

    The ratio is ``shared / max(len(reference), len(candidate))``, so it stays
    in [0, 1] and is 0 when either side is empty.
    """
    if not reference or not candidate:
        return 0.0, []

    common = [kw for kw in reference if any(keywords_match(kw, other) for other in candidate)]
    return len(common) / max(len(reference), len(candidate)), common


def score_similar_notes(
    reference_text: str,
    notes: Iterable[NoteRecord],
    min_similarity: float = 0.1,
    limit: int = 10,
) -> List[SimilarityResult]:
    """Notes whose content overlaps the reference text, most similar first."""
    reference_keywords = extract_keywords(reference_text)
    if not reference_keywords:
        return []

    results = []
    for note in notes:
        score, common = keyword_similarity(reference_keywords, extract_keywords(note.text or ""))
        if score < min_similarity:
            continue
        results.append(
            SimilarityResult(**note.model_dump(), similarity_score=score, common_keywords=common)
        )

    results.sort(key=lambda r: r.similarity_score, reverse=True)
    return results[:limit]

"""
Relevance ranking for free-text note search.

Matching is literal substring matching on title, content and tags; scores
combine weighted match counts with phrase bonuses and are normalized by
content length so focused notes beat long ones with the same matches.
"""

import math
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from ..models import NoteRecord, SearchResult

NON_WORD = re.compile(r"[^\w\s]")

SNIPPET_BEFORE = 50
SNIPPET_AFTER = 100
MAX_SNIPPETS = 3


@dataclass(frozen=True)
class RelevanceWeights:
    """Score weights. Empirically chosen; tune here rather than inline."""

    title_match: float = 10.0
    content_match: float = 2.0
    title_phrase_bonus: float = 20.0
    content_phrase_bonus: float = 5.0
    tag_match: float = 15.0


DEFAULT_WEIGHTS = RelevanceWeights()


class TermVariantStrategy(ABC):
    """Generates extra terms for fuzzy matching."""

    @abstractmethod
    def variants(self, term: str) -> Iterable[str]:
        pass


class SingleDeletionVariants(TermVariantStrategy):
    """Every string obtained by deleting one character from terms longer than 3 characters."""

    min_length = 4

    def variants(self, term: str) -> Iterable[str]:
        if len(term) < self.min_length:
            return []
        return [term[:i] + term[i + 1 :] for i in range(len(term))]


def tokenize_query(query: str, case_sensitive: bool = False) -> List[str]:
    """Split a query into terms of two or more characters."""
    text = query if case_sensitive else query.lower()
    return [term for term in NON_WORD.sub(" ", text).split() if len(term) > 1]


def extract_search_terms(
    query: str,
    fuzzy_match: bool = False,
    case_sensitive: bool = False,
    strategy: Optional[TermVariantStrategy] = None,
) -> List[str]:
    """Query terms plus, when fuzzy matching, their variants; deduplicated in order."""
    terms = tokenize_query(query, case_sensitive)
    if not fuzzy_match:
        return list(dict.fromkeys(terms))

    strategy = strategy or SingleDeletionVariants()
    expanded: List[str] = []
    for term in terms:
        expanded.append(term)
        expanded.extend(strategy.variants(term))
    return list(dict.fromkeys(expanded))


@dataclass
class MatchAnalysis:
    relevance_score: float = 0.0
    matched_terms: List[str] = field(default_factory=list)
    snippets: List[str] = field(default_factory=list)
    title_matches: int = 0
    content_matches: int = 0


def _snippet(content: str, compared: str, index: int) -> str:
    start = max(0, index - SNIPPET_BEFORE)
    end = min(len(compared), index + SNIPPET_AFTER)
    # Case folding can change string length; fall back to the folded text then
    source = content if len(content) == len(compared) else compared
    return f"...{source[start:end]}..."


def analyze_matches(
    note: NoteRecord,
    terms: List[str],
    phrase: Optional[str] = None,
    case_sensitive: bool = False,
    include_snippets: bool = True,
    weights: RelevanceWeights = DEFAULT_WEIGHTS,
) -> MatchAnalysis:
    """Count term matches in a note and compute its relevance score."""
    raw_title = note.title or ""
    raw_content = note.text or ""
    title = raw_title if case_sensitive else raw_title.lower()
    content = raw_content if case_sensitive else raw_content.lower()

    analysis = MatchAnalysis()

    for term in terms:
        title_count = title.count(term)
        content_count = content.count(term)

        if title_count == 0 and content_count == 0:
            continue

        analysis.title_matches += title_count
        analysis.content_matches += content_count
        analysis.matched_terms.append(term)

        if include_snippets and content_count > 0 and len(analysis.snippets) < MAX_SNIPPETS:
            analysis.snippets.append(_snippet(raw_content, content, content.find(term)))

    score = (
        analysis.title_matches * weights.title_match
        + analysis.content_matches * weights.content_match
    )

    if phrase is None:
        phrase = " ".join(terms)
    if phrase:
        if phrase in title:
            score += weights.title_phrase_bonus
        if phrase in content:
            score += weights.content_phrase_bonus

    tags = note.tags if case_sensitive else [tag.lower() for tag in note.tags]
    tag_matches = sum(1 for tag in tags if any(term in tag for term in terms))
    score += tag_matches * weights.tag_match

    content_length = note.effective_content_length()
    if content_length > 0:
        score = score / math.log(content_length + 1)

    analysis.relevance_score = score
    return analysis


def rank_notes(
    query: str,
    notes: Iterable[NoteRecord],
    fuzzy_match: bool = False,
    case_sensitive: bool = False,
    include_snippets: bool = True,
    strategy: Optional[TermVariantStrategy] = None,
    weights: RelevanceWeights = DEFAULT_WEIGHTS,
) -> List[SearchResult]:
    """
    Score every note against the query and return them best first.

    The phrase bonus uses the query's own terms joined by single spaces,
    not the fuzzy variants. Equal scores keep their input order.
    """
    terms = extract_search_terms(query, fuzzy_match, case_sensitive, strategy)
    phrase = " ".join(tokenize_query(query, case_sensitive))

    results = []
    for note in notes:
        analysis = analyze_matches(
            note,
            terms,
            phrase=phrase,
            case_sensitive=case_sensitive,
            include_snippets=include_snippets,
            weights=weights,
        )
        results.append(
            SearchResult(
                **note.model_dump(),
                relevance_score=analysis.relevance_score,
                matched_terms=analysis.matched_terms,
                snippets=analysis.snippets,
                title_matches=analysis.title_matches,
                content_matches=analysis.content_matches,
            )
        )

    results.sort(key=lambda r: r.relevance_score, reverse=True)
    return results

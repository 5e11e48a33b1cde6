"""
Search engine for Bear notes.
Fetches candidate notes through the caching query executor and ranks them
by relevance, keyword similarity, or shared tags.
"""

import logging
import re
from collections import Counter
from typing import Any, List, Optional, Tuple

from .bear_database import (
    NOTE_COLUMNS,
    NOTE_TAGS_TABLE,
    LOWER_FUNCTION,
    NOTES_TABLE,
    TAGS_TABLE,
    datetime_to_core_data,
)
from .config import SearchConfig
from .errors import ValidationError
from .models import (
    FullTextSearchOptions,
    NoteCriteria,
    NoteQueryOptions,
    NoteRecord,
    RelatedNotes,
    SearchField,
    SearchResult,
    SearchSuggestions,
    SimilarityResult,
    SortField,
)
from .query_executor import CachedQueryExecutor
from .search.ranking import extract_search_terms, rank_notes
from .search.similarity import extract_keywords, score_similar_notes

logger = logging.getLogger(__name__)

NOTE_SELECT = f"""
    SELECT {NOTE_COLUMNS},
           GROUP_CONCAT(DISTINCT t.ZTITLE) AS tag_names,
           LENGTH(n.ZTEXT) AS content_length
    FROM {NOTES_TABLE} n
    LEFT JOIN {NOTE_TAGS_TABLE} nt ON n.Z_PK = nt.Z_5NOTES
    LEFT JOIN {TAGS_TABLE} t ON nt.Z_13TAGS = t.Z_PK
"""

SORT_COLUMNS = {
    SortField.CREATED: "n.ZCREATIONDATE",
    SortField.MODIFIED: "n.ZMODIFICATIONDATE",
    SortField.TITLE: "n.ZTITLE",
    SortField.SIZE: "LENGTH(n.ZTEXT)",
}

WORD_SPLIT = re.compile(r"[^\w\s]")
MIN_SUGGESTED_TERM_LENGTH = 3
SIMILARITY_CANDIDATE_FACTOR = 3


def escape_like(value: str) -> str:
    """Escape LIKE wildcards so the value matches literally (use with ESCAPE '\\')."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class NoteSearchEngine:
    """Orchestrates candidate retrieval and ranking for note searches."""

    def __init__(self, executor: CachedQueryExecutor, config: Optional[SearchConfig] = None):
        self.executor = executor
        self.config = config or SearchConfig()

    def resolve_limit(self, limit: Optional[int]) -> int:
        """Apply the configured default and ceiling to a requested limit."""
        if limit is None:
            return self.config.default_limit
        if limit <= 0:
            raise ValidationError("limit must be positive", field="limit")
        return min(limit, self.config.max_limit)

    async def search_notes_full_text(
        self, query: str, options: Optional[FullTextSearchOptions] = None
    ) -> List[SearchResult]:
        """
        Relevance-ranked full-text search.

        Candidates are notes containing at least one search term in a
        searched field; they are scored in Python and truncated to the limit
        only after ranking.
        """
        options = options or FullTextSearchOptions()
        limit = self.resolve_limit(options.limit)
        terms = extract_search_terms(query, options.fuzzy_match, options.case_sensitive)
        logger.info(f"Full-text search for '{query}' ({len(terms)} terms, limit={limit})")

        where = ["1=1"]
        params: List[Any] = []

        if not options.include_trashed:
            where.append("n.ZTRASHED = 0")
        if not options.include_archived:
            where.append("n.ZARCHIVED = 0")
        if options.date_from:
            where.append("n.ZCREATIONDATE >= ?")
            params.append(datetime_to_core_data(options.date_from))
        if options.date_to:
            where.append("n.ZCREATIONDATE <= ?")
            params.append(datetime_to_core_data(options.date_to))

        fields = set(options.search_fields) or {SearchField.BOTH}
        columns = []
        if fields & {SearchField.TITLE, SearchField.BOTH}:
            columns.append("n.ZTITLE")
        if fields & {SearchField.CONTENT, SearchField.BOTH}:
            columns.append("n.ZTEXT")

        match_conditions = []
        for column in columns:
            target = column if options.case_sensitive else f"{LOWER_FUNCTION}({column})"
            for term in terms:
                match_conditions.append(f"instr({target}, ?) > 0")
                params.append(term)
        if match_conditions:
            where.append(f"({' OR '.join(match_conditions)})")

        sql = NOTE_SELECT + " WHERE " + " AND ".join(where) + " GROUP BY n.Z_PK"

        if options.tags:
            sql += " HAVING " + " AND ".join(
                f"instr({LOWER_FUNCTION}(tag_names), ?) > 0" for _ in options.tags
            )
            params.extend(tag.lower() for tag in options.tags)

        sql += " ORDER BY n.ZMODIFICATIONDATE DESC"

        rows = await self.executor.read(sql, params)
        candidates = [NoteRecord.from_row(row) for row in rows]

        results = rank_notes(
            query,
            candidates,
            fuzzy_match=options.fuzzy_match,
            case_sensitive=options.case_sensitive,
            include_snippets=options.include_snippets,
        )
        logger.info(f"Ranked {len(candidates)} candidates for '{query}'")
        return results[:limit]

    async def get_search_suggestions(
        self, partial_query: str, limit: Optional[int] = None
    ) -> SearchSuggestions:
        """Auto-complete candidates: frequent words, matching titles, matching tags."""
        limit = limit if limit is not None else self.config.suggestion_limit
        if limit <= 0:
            raise ValidationError("limit must be positive", field="limit")

        prefix = partial_query.strip()
        return SearchSuggestions(
            terms=await self._suggest_terms(prefix.lower(), limit),
            titles=await self._suggest_titles(prefix, limit),
            tags=await self._suggest_tags(prefix, limit),
        )

    async def _suggest_terms(self, prefix: str, limit: int) -> List[str]:
        rows = await self.executor.read(
            f"SELECT ZTEXT FROM {NOTES_TABLE} WHERE ZTRASHED = 0 AND ZTEXT IS NOT NULL"
        )
        counts: Counter = Counter()
        for row in rows:
            for word in WORD_SPLIT.sub(" ", row["ZTEXT"].lower()).split():
                if len(word) >= MIN_SUGGESTED_TERM_LENGTH and word.startswith(prefix):
                    counts[word] += 1
        return [word for word, _ in counts.most_common(limit)]

    async def _suggest_titles(self, prefix: str, limit: int) -> List[str]:
        rows = await self.executor.read(
            f"""
            SELECT ZTITLE AS title, MAX(ZMODIFICATIONDATE) AS modified
            FROM {NOTES_TABLE}
            WHERE {LOWER_FUNCTION}(ZTITLE) LIKE ? ESCAPE '\\'
              AND ZTRASHED = 0 AND ZTITLE IS NOT NULL
            GROUP BY ZTITLE
            ORDER BY modified DESC
            LIMIT ?
            """,
            [f"%{escape_like(prefix.lower())}%", limit],
        )
        return [row["title"] for row in rows]

    async def _suggest_tags(self, prefix: str, limit: int) -> List[str]:
        rows = await self.executor.read(
            f"""
            SELECT DISTINCT ZTITLE AS tag
            FROM {TAGS_TABLE}
            WHERE {LOWER_FUNCTION}(ZTITLE) LIKE ? ESCAPE '\\'
            ORDER BY ZTITLE
            LIMIT ?
            """,
            [f"{escape_like(prefix.lower())}%", limit],
            kind="tag",
        )
        return [row["tag"] for row in rows]

    async def find_similar_notes(
        self,
        reference_text: str,
        limit: Optional[int] = None,
        min_similarity: Optional[float] = None,
        exclude_note_id: Optional[int] = None,
    ) -> List[SimilarityResult]:
        """Notes whose keywords overlap the reference text."""
        limit = self.resolve_limit(limit)
        if min_similarity is None:
            min_similarity = self.config.min_similarity

        keywords = extract_keywords(reference_text)
        if not keywords:
            return []

        where = ["n.ZTRASHED = 0", "n.ZTEXT IS NOT NULL"]
        params: List[Any] = []

        if exclude_note_id is not None:
            where.append("n.Z_PK != ?")
            params.append(exclude_note_id)

        match = f"instr({LOWER_FUNCTION}(n.ZTEXT), ?) > 0"
        where.append("(" + " OR ".join(match for _ in keywords) + ")")
        params.extend(keywords)

        sql = (
            NOTE_SELECT
            + " WHERE "
            + " AND ".join(where)
            + " GROUP BY n.Z_PK ORDER BY n.ZMODIFICATIONDATE DESC LIMIT ?"
        )
        params.append(limit * SIMILARITY_CANDIDATE_FACTOR)

        rows = await self.executor.read(sql, params)
        candidates = [NoteRecord.from_row(row) for row in rows]
        return score_similar_notes(reference_text, candidates, min_similarity, limit)

    async def get_related_notes(self, note_id: int, limit: Optional[int] = None) -> RelatedNotes:
        """Notes sharing tags with a note, and notes with similar content."""
        limit = limit if limit is not None else self.config.related_limit
        if limit <= 0:
            raise ValidationError("limit must be positive", field="limit")

        source_row = await self.executor.read_one(
            NOTE_SELECT + " WHERE n.Z_PK = ? GROUP BY n.Z_PK", [note_id]
        )
        if not source_row:
            return RelatedNotes()

        source = NoteRecord.from_row(source_row)
        by_tags: List[NoteRecord] = []

        if source.tags:
            placeholders = ",".join("?" for _ in source.tags)
            rows = await self.executor.read(
                f"""
                SELECT {NOTE_COLUMNS},
                       GROUP_CONCAT(DISTINCT t.ZTITLE) AS tag_names,
                       LENGTH(n.ZTEXT) AS content_length,
                       COUNT(DISTINCT CASE WHEN t.ZTITLE IN ({placeholders})
                                           THEN t.ZTITLE END) AS shared_tags
                FROM {NOTES_TABLE} n
                JOIN {NOTE_TAGS_TABLE} nt ON n.Z_PK = nt.Z_5NOTES
                JOIN {TAGS_TABLE} t ON nt.Z_13TAGS = t.Z_PK
                WHERE n.Z_PK != ? AND n.ZTRASHED = 0
                GROUP BY n.Z_PK
                HAVING shared_tags > 0
                ORDER BY shared_tags DESC, n.ZMODIFICATIONDATE DESC
                LIMIT ?
                """,
                [*source.tags, note_id, limit],
            )
            by_tags = [NoteRecord.from_row(row) for row in rows]

        by_content = await self.find_similar_notes(
            source.text or "", limit=limit, exclude_note_id=note_id
        )

        return RelatedNotes(by_tags=by_tags, by_content=by_content)

    async def search_notes(
        self, query: str, options: Optional[NoteQueryOptions] = None
    ) -> List[NoteRecord]:
        """Simple substring search over titles and content."""
        options = options.model_copy(update={"query": query}) if options else NoteQueryOptions(
            query=query
        )
        return await self.get_notes_advanced(options)

    async def get_notes_advanced(self, options: Optional[NoteQueryOptions] = None) -> List[NoteRecord]:
        """Filtered, sorted and paginated note listing."""
        options = options or NoteQueryOptions()
        where = ["1=1"]
        params: List[Any] = []

        if not options.include_trashed:
            where.append("n.ZTRASHED = 0")
        if not options.include_archived:
            where.append("n.ZARCHIVED = 0")
        if not options.include_encrypted:
            where.append("n.ZENCRYPTED = 0")

        if options.query:
            where.append(
                f"({LOWER_FUNCTION}(n.ZTITLE) LIKE ? ESCAPE '\\' "
                f"OR {LOWER_FUNCTION}(n.ZTEXT) LIKE ? ESCAPE '\\')"
            )
            pattern = f"%{escape_like(options.query.lower())}%"
            params.extend([pattern, pattern])

        for column, op, value in (
            ("n.ZCREATIONDATE", ">=", options.date_from),
            ("n.ZCREATIONDATE", "<=", options.date_to),
            ("n.ZMODIFICATIONDATE", ">=", options.modified_after),
            ("n.ZMODIFICATIONDATE", "<=", options.modified_before),
        ):
            if value is not None:
                where.append(f"{column} {op} ?")
                params.append(datetime_to_core_data(value))

        sql = NOTE_SELECT + " WHERE " + " AND ".join(where) + " GROUP BY n.Z_PK"

        having, having_params = self._tag_having(options.tags, [], options.exclude_tags)
        sql += having
        params.extend(having_params)

        sql += f" ORDER BY {SORT_COLUMNS[options.sort_by]} {options.sort_order.value.upper()}"

        if options.limit is not None:
            sql += " LIMIT ? OFFSET ?"
            params.extend([self.resolve_limit(options.limit), options.offset])
        elif options.offset:
            sql += " LIMIT -1 OFFSET ?"
            params.append(options.offset)

        rows = await self.executor.read(sql, params)
        return [NoteRecord.from_row(row) for row in rows]

    async def get_notes_with_criteria(self, criteria: NoteCriteria) -> List[NoteRecord]:
        """Notes matching every given criterion."""
        where = ["1=1"]
        params: List[Any] = []

        for column, terms in (("n.ZTITLE", criteria.title_contains), ("n.ZTEXT", criteria.content_contains)):
            if terms:
                match = f"{LOWER_FUNCTION}({column}) LIKE ? ESCAPE '\\'"
                where.append("(" + " OR ".join(match for _ in terms) + ")")
                params.extend(f"%{escape_like(term.lower())}%" for term in terms)

        for column, op, value in (
            ("n.ZCREATIONDATE", ">=", criteria.created_after),
            ("n.ZCREATIONDATE", "<=", criteria.created_before),
            ("n.ZMODIFICATIONDATE", ">=", criteria.modified_after),
            ("n.ZMODIFICATIONDATE", "<=", criteria.modified_before),
        ):
            if value is not None:
                where.append(f"{column} {op} ?")
                params.append(datetime_to_core_data(value))

        if criteria.min_length is not None:
            where.append("LENGTH(n.ZTEXT) >= ?")
            params.append(criteria.min_length)
        if criteria.max_length is not None:
            where.append("LENGTH(n.ZTEXT) <= ?")
            params.append(criteria.max_length)

        for column, flag in (
            ("n.ZPINNED", criteria.is_pinned),
            ("n.ZARCHIVED", criteria.is_archived),
            ("n.ZTRASHED", criteria.is_trashed),
            ("n.ZENCRYPTED", criteria.is_encrypted),
        ):
            if flag is not None:
                where.append(f"{column} = ?")
                params.append(1 if flag else 0)

        sql = NOTE_SELECT + " WHERE " + " AND ".join(where) + " GROUP BY n.Z_PK"

        having, having_params = self._tag_having(criteria.has_all_tags, criteria.has_any_tags, [])
        sql += having + " ORDER BY n.ZMODIFICATIONDATE DESC"
        params.extend(having_params)

        rows = await self.executor.read(sql, params)
        return [NoteRecord.from_row(row) for row in rows]

    @staticmethod
    def _tag_having(
        all_tags: List[str], any_tags: List[str], exclude_tags: List[str]
    ) -> Tuple[str, List[Any]]:
        """HAVING clause over the grouped tag_names column."""
        conditions = []
        params: List[Any] = []

        for tag in all_tags:
            conditions.append(f"instr({LOWER_FUNCTION}(tag_names), ?) > 0")
            params.append(tag.lower())

        if any_tags:
            conditions.append(
                "(" + " OR ".join(f"instr({LOWER_FUNCTION}(tag_names), ?) > 0" for _ in any_tags)
                + ")"
            )
            params.extend(tag.lower() for tag in any_tags)

        for tag in exclude_tags:
            conditions.append(f"(tag_names IS NULL OR instr({LOWER_FUNCTION}(tag_names), ?) = 0)")
            params.append(tag.lower())

        if not conditions:
            return "", []
        return " HAVING " + " AND ".join(conditions), params

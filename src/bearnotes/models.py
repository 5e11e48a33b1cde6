"""Data models for the Bear notes MCP server."""

from datetime import datetime
from enum import Enum
from typing import Any, List, Mapping, Optional

from pydantic import BaseModel, Field

from .bear_database import core_data_to_datetime


def split_tag_names(tag_names: Optional[str]) -> List[str]:
    """Split a GROUP_CONCAT tag column into a list of tag names."""
    if not tag_names:
        return []
    return [tag for tag in tag_names.split(",") if tag]


class NoteRecord(BaseModel):
    """A note as read from the Bear database."""

    id: Optional[int] = None
    unique_id: Optional[str] = None
    title: Optional[str] = None
    text: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    modified_at: Optional[datetime] = None
    is_trashed: bool = False
    is_archived: bool = False
    is_pinned: bool = False
    is_encrypted: bool = False
    content_length: Optional[int] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "NoteRecord":
        """Build a note from a ZSFNOTE row joined with its tag names."""
        text = row.get("ZTEXT")
        content_length = row.get("content_length")
        if content_length is None and text is not None:
            content_length = len(text)

        return cls(
            id=row.get("Z_PK"),
            unique_id=row.get("ZUNIQUEIDENTIFIER"),
            title=row.get("ZTITLE"),
            text=text,
            tags=split_tag_names(row.get("tag_names")),
            created_at=core_data_to_datetime(row.get("ZCREATIONDATE")),
            modified_at=core_data_to_datetime(row.get("ZMODIFICATIONDATE")),
            is_trashed=bool(row.get("ZTRASHED") or 0),
            is_archived=bool(row.get("ZARCHIVED") or 0),
            is_pinned=bool(row.get("ZPINNED") or 0),
            is_encrypted=bool(row.get("ZENCRYPTED") or 0),
            content_length=content_length,
        )

    def effective_content_length(self) -> int:
        """Content length used for score normalization."""
        if self.content_length is not None:
            return self.content_length
        return len(self.text or "")


class SearchResult(NoteRecord):
    """A note ranked against a free-text query."""

    relevance_score: float = 0.0
    matched_terms: List[str] = Field(default_factory=list)
    snippets: List[str] = Field(default_factory=list)
    title_matches: int = 0
    content_matches: int = 0


class SimilarityResult(NoteRecord):
    """A note scored by keyword overlap with a reference text."""

    similarity_score: float = 0.0
    common_keywords: List[str] = Field(default_factory=list)


class SearchSuggestions(BaseModel):
    """Auto-complete candidates for a partial query."""

    terms: List[str] = Field(default_factory=list)
    titles: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)


class TagWithCount(BaseModel):
    """A tag and the number of non-trashed notes carrying it."""

    id: int
    name: str
    note_count: int = 0


class RelatedNotes(BaseModel):
    """Notes related to a source note."""

    by_tags: List[NoteRecord] = Field(default_factory=list)
    by_content: List[SimilarityResult] = Field(default_factory=list)


class DatabaseStats(BaseModel):
    """Summary counts for the Bear database."""

    total_notes: int = 0
    active_notes: int = 0
    trashed_notes: int = 0
    archived_notes: int = 0
    encrypted_notes: int = 0
    total_tags: int = 0
    total_attachments: int = 0
    database_size: int = 0
    last_modified: Optional[datetime] = None


class SearchField(str, Enum):
    """Note fields a full-text search may look in."""

    TITLE = "title"
    CONTENT = "content"
    BOTH = "both"


class SortField(str, Enum):
    """Sort keys for filtered note listings."""

    CREATED = "created"
    MODIFIED = "modified"
    TITLE = "title"
    SIZE = "size"


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


class AddTextMode(str, Enum):
    """How Bear combines new text with an existing note."""

    APPEND = "append"
    PREPEND = "prepend"
    REPLACE = "replace"


class FullTextSearchOptions(BaseModel):
    """Options for relevance-ranked full-text search."""

    limit: Optional[int] = None
    include_snippets: bool = True
    search_fields: List[SearchField] = Field(default_factory=lambda: [SearchField.BOTH])
    fuzzy_match: bool = False
    case_sensitive: bool = False
    include_archived: bool = False
    include_trashed: bool = False
    tags: List[str] = Field(default_factory=list)
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None


class NoteQueryOptions(BaseModel):
    """Filters, sorting and pagination for note listings."""

    query: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    exclude_tags: List[str] = Field(default_factory=list)
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    modified_after: Optional[datetime] = None
    modified_before: Optional[datetime] = None
    include_trashed: bool = False
    include_archived: bool = False
    include_encrypted: bool = False
    sort_by: SortField = SortField.MODIFIED
    sort_order: SortOrder = SortOrder.DESC
    limit: Optional[int] = None
    offset: int = 0


class NoteCriteria(BaseModel):
    """Multi-criteria note filter; list fields use any-of matching unless named otherwise."""

    title_contains: List[str] = Field(default_factory=list)
    content_contains: List[str] = Field(default_factory=list)
    has_all_tags: List[str] = Field(default_factory=list)
    has_any_tags: List[str] = Field(default_factory=list)
    created_after: Optional[datetime] = None
    created_before: Optional[datetime] = None
    modified_after: Optional[datetime] = None
    modified_before: Optional[datetime] = None
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    is_pinned: Optional[bool] = None
    is_archived: Optional[bool] = None
    is_trashed: Optional[bool] = None
    is_encrypted: Optional[bool] = None


class WriteResult(BaseModel):
    """Outcome of a write command handed to Bear."""

    action: str
    success: bool = True
    message: str = ""
    tags: List[str] = Field(default_factory=list)
    tag_warnings: List[str] = Field(default_factory=list)
    invalidated_entries: int = 0

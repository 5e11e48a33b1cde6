"""
Note reads and write commands for the Bear notes MCP server.
"""

import logging
from typing import List, Optional

from .bear_database import FILES_TABLE, NOTE_TAGS_TABLE, NOTES_TABLE, TAGS_TABLE, BearDatabase
from .bear_urls import BearURLClient, sanitize_tags
from .errors import NoteNotFoundError, ValidationError
from .models import (
    AddTextMode,
    DatabaseStats,
    NoteQueryOptions,
    NoteRecord,
    TagWithCount,
    WriteResult,
)
from .query_executor import CachedQueryExecutor
from .search_engine import NOTE_SELECT, NoteSearchEngine

logger = logging.getLogger(__name__)

# Entity kinds whose cached reads can be affected by any write
WRITE_INVALIDATES = ("note", "tag", "stats")


class NoteService:
    """Reads notes through the query cache and sends changes to Bear."""

    def __init__(
        self,
        executor: CachedQueryExecutor,
        database: BearDatabase,
        url_client: BearURLClient,
        search_engine: Optional[NoteSearchEngine] = None,
    ):
        self.executor = executor
        self.database = database
        self.url_client = url_client
        self.search_engine = search_engine or NoteSearchEngine(executor)

    # Reads

    async def get_note_by_id(self, note_id: int) -> NoteRecord:
        row = await self.executor.read_one(
            NOTE_SELECT + " WHERE n.Z_PK = ? GROUP BY n.Z_PK", [note_id]
        )
        if not row:
            raise NoteNotFoundError(note_id=note_id)
        return NoteRecord.from_row(row)

    async def get_note_by_title(self, title: str) -> NoteRecord:
        row = await self.executor.read_one(
            NOTE_SELECT + " WHERE n.ZTITLE = ? AND n.ZTRASHED = 0 GROUP BY n.Z_PK LIMIT 1",
            [title],
        )
        if not row:
            raise NoteNotFoundError(title=title)
        return NoteRecord.from_row(row)

    async def get_recent_notes(self, limit: int = 10) -> List[NoteRecord]:
        """Most recently modified notes, excluding trashed and archived ones."""
        return await self.search_engine.get_notes_advanced(NoteQueryOptions(limit=limit))

    async def get_tags(self) -> List[TagWithCount]:
        """Every tag with the number of non-trashed notes carrying it."""
        rows = await self.executor.read(
            f"""
            SELECT t.Z_PK AS id, t.ZTITLE AS name, COUNT(n.Z_PK) AS note_count
            FROM {TAGS_TABLE} t
            LEFT JOIN {NOTE_TAGS_TABLE} nt ON t.Z_PK = nt.Z_13TAGS
            LEFT JOIN {NOTES_TABLE} n ON nt.Z_5NOTES = n.Z_PK AND n.ZTRASHED = 0
            GROUP BY t.Z_PK
            ORDER BY note_count DESC, t.ZTITLE ASC
            """,
            kind="tag",
        )
        return [TagWithCount(**row) for row in rows if row["name"]]

    async def get_notes_by_tag(self, tag_name: str) -> List[NoteRecord]:
        rows = await self.executor.read(
            NOTE_SELECT
            + f"""
            WHERE n.ZTRASHED = 0 AND n.Z_PK IN (
                SELECT nt2.Z_5NOTES
                FROM {NOTE_TAGS_TABLE} nt2
                JOIN {TAGS_TABLE} t2 ON nt2.Z_13TAGS = t2.Z_PK
                WHERE t2.ZTITLE = ?
            )
            GROUP BY n.Z_PK
            ORDER BY n.ZMODIFICATIONDATE DESC
            """,
            [tag_name],
        )
        return [NoteRecord.from_row(row) for row in rows]

    async def get_database_stats(self) -> DatabaseStats:
        row = await self.executor.read_one(
            f"""
            SELECT
                (SELECT COUNT(*) FROM {NOTES_TABLE}) AS total_notes,
                (SELECT COUNT(*) FROM {NOTES_TABLE} WHERE ZTRASHED = 0) AS active_notes,
                (SELECT COUNT(*) FROM {NOTES_TABLE} WHERE ZTRASHED = 1) AS trashed_notes,
                (SELECT COUNT(*) FROM {NOTES_TABLE} WHERE ZARCHIVED = 1) AS archived_notes,
                (SELECT COUNT(*) FROM {NOTES_TABLE} WHERE ZENCRYPTED = 1) AS encrypted_notes,
                (SELECT COUNT(*) FROM {TAGS_TABLE}) AS total_tags,
                (SELECT COUNT(*) FROM {FILES_TABLE}) AS total_attachments
            """,
            kind="stats",
        )
        file_stats = self.database.file_stats()
        return DatabaseStats(
            **(row or {}),
            database_size=file_stats["size"],
            last_modified=file_stats["last_modified"],
        )

    async def check_integrity(self) -> bool:
        """Run SQLite's integrity check; never served from the cache."""
        rows = await self.executor.execute("PRAGMA integrity_check")
        ok = bool(rows) and list(rows[0].values())[0] == "ok"
        if not ok:
            logger.warning(f"Integrity check reported problems: {rows[:5]}")
        return ok

    # Writes

    async def create_note(
        self, title: str, text: str = "", tags: Optional[List[str]] = None
    ) -> WriteResult:
        if not title or not title.strip():
            raise ValidationError("Title cannot be empty", field="title")

        sanitized, warnings = sanitize_tags(tags or [])
        for warning in warnings:
            logger.warning(warning)

        await self.url_client.create(title.strip(), text, sanitized)
        return WriteResult(
            action="create",
            message=f"Note '{title.strip()}' sent to Bear",
            tags=sanitized,
            tag_warnings=warnings,
            invalidated_entries=self._invalidate_after_write(),
        )

    async def add_text(
        self, note_id: int, text: str, mode: AddTextMode = AddTextMode.APPEND
    ) -> WriteResult:
        mode = AddTextMode(mode)
        note = await self._writable_note(note_id)
        await self.url_client.add_text(note.unique_id, text, mode.value)

        if mode == AddTextMode.REPLACE:
            message = f"Text of '{note.title}' replaced"
        else:
            message = f"Text {mode.value}ed to '{note.title}'"

        return WriteResult(
            action="add-text",
            message=message,
            invalidated_entries=self._invalidate_after_write(),
        )

    async def archive_note(self, note_id: int) -> WriteResult:
        note = await self._writable_note(note_id)
        await self.url_client.archive(note.unique_id)
        return WriteResult(
            action="archive",
            message=f"Note '{note.title}' archived",
            invalidated_entries=self._invalidate_after_write(),
        )

    async def trash_note(self, note_id: int) -> WriteResult:
        note = await self._writable_note(note_id)
        await self.url_client.trash(note.unique_id)
        return WriteResult(
            action="trash",
            message=f"Note '{note.title}' moved to trash",
            invalidated_entries=self._invalidate_after_write(),
        )

    async def _writable_note(self, note_id: int) -> NoteRecord:
        note = await self.get_note_by_id(note_id)
        if not note.unique_id:
            raise ValidationError(f"Note {note_id} has no unique identifier", field="note_id")
        if note.is_encrypted:
            raise ValidationError(f"Note {note_id} is encrypted and cannot be modified", field="note_id")
        return note

    def _invalidate_after_write(self) -> int:
        return self.executor.invalidate(*WRITE_INVALIDATES)

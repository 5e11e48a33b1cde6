#!/usr/bin/env python3
"""
MCP server exposing Bear notes search, reads and write commands over stdio.
"""

import asyncio
import logging
import sys
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from mcp.server import Server
from mcp.server.lowlevel.server import NotificationOptions
from mcp.server.models import InitializationOptions
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool
from pydantic import ValidationError as PydanticValidationError

from .config import ApplicationConfig, get_config, get_config_manager
from .container import BearServices, create_services
from .errors import BearNotesError, ValidationError, report_error
from .models import (
    AddTextMode,
    DatabaseStats,
    FullTextSearchOptions,
    NoteQueryOptions,
    NoteRecord,
    SearchResult,
    SimilarityResult,
)
from .search.analytics import PerformanceReport
from .search.cache import CacheStats

logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 200
SEPARATOR = "\n\n---\n\n"

NOTE_ID_PROPERTY = {"type": "integer", "description": "Bear note ID (Z_PK)"}
LIMIT_PROPERTY = {"type": "integer", "description": "Maximum number of results"}
TAGS_PROPERTY = {"type": "array", "items": {"type": "string"}}


# Formatting


def format_note(note: NoteRecord, include_content: bool = False) -> str:
    lines = [f"**{note.title or 'Untitled'}** (ID: {note.id})"]
    if note.tags:
        lines.append(f"**Tags:** {', '.join('#' + tag for tag in note.tags)}")
    if note.modified_at:
        lines.append(f"**Modified:** {note.modified_at.isoformat()}")

    flags = [
        label
        for label, on in (
            ("pinned", note.is_pinned),
            ("archived", note.is_archived),
            ("trashed", note.is_trashed),
            ("encrypted", note.is_encrypted),
        )
        if on
    ]
    if flags:
        lines.append(f"**Status:** {', '.join(flags)}")

    text = note.text or ""
    if include_content:
        lines.append("")
        lines.append(text)
    elif text:
        preview = text[:PREVIEW_LENGTH].replace("\n", " ")
        lines.append(f"**Preview:** {preview}{'...' if len(text) > PREVIEW_LENGTH else ''}")

    return "\n".join(lines)


def format_search_result(result: SearchResult) -> str:
    lines = [
        f"**{result.title or 'Untitled'}** (ID: {result.id})",
        f"**Relevance:** {result.relevance_score:.3f}",
        f"**Matched terms:** {', '.join(result.matched_terms) or 'none'}",
    ]
    if result.tags:
        lines.append(f"**Tags:** {', '.join('#' + tag for tag in result.tags)}")
    for snippet in result.snippets:
        lines.append(f"> {snippet}")
    return "\n".join(lines)


def format_similarity_result(result: SimilarityResult) -> str:
    return (
        f"**{result.title or 'Untitled'}** (ID: {result.id})\n"
        f"**Similarity:** {result.similarity_score:.3f}\n"
        f"**Common keywords:** {', '.join(result.common_keywords)}"
    )


def format_database_stats(stats: DatabaseStats) -> str:
    last_modified = stats.last_modified.isoformat() if stats.last_modified else "unknown"
    return (
        "**Bear Database Statistics:**\n\n"
        f"**Total notes:** {stats.total_notes}\n"
        f"**Active notes:** {stats.active_notes}\n"
        f"**Trashed notes:** {stats.trashed_notes}\n"
        f"**Archived notes:** {stats.archived_notes}\n"
        f"**Encrypted notes:** {stats.encrypted_notes}\n"
        f"**Tags:** {stats.total_tags}\n"
        f"**Attachments:** {stats.total_attachments}\n"
        f"**Database size:** {stats.database_size / 1024 / 1024:.2f} MB\n"
        f"**Last modified:** {last_modified}"
    )


def format_cache_stats(stats: CacheStats) -> str:
    return (
        "**Query Cache:**\n\n"
        f"**Entries:** {stats.size} / {stats.max_size}\n"
        f"**Hit rate:** {stats.hit_rate:.1%} ({stats.hits} hits, {stats.misses} misses)\n"
        f"**Sets:** {stats.sets}  **Deletes:** {stats.deletes}  "
        f"**Evictions:** {stats.evictions}\n"
        f"**Oldest entry:** {stats.oldest_entry_age:.1f}s  "
        f"**Newest entry:** {stats.newest_entry_age:.1f}s\n"
        f"**Estimated memory:** {stats.memory_usage_bytes / 1024:.1f} KB "
        f"(peak {stats.memory_peak_bytes / 1024:.1f} KB)"
    )


def format_performance_report(report: PerformanceReport) -> str:
    summary = report.summary
    metrics = report.system_metrics
    lines = [
        f"**Performance Report** ({report.start.isoformat()} to {report.end.isoformat()})",
        "",
        f"**Operations:** {summary.total_operations}",
        f"**Average duration:** {summary.average_duration_ms:.2f} ms",
        f"**Cache hit rate:** {summary.cache_hit_rate:.1%}",
        f"**Errors:** {summary.errors}",
        f"**Memory:** {metrics.rss_bytes / 1024 / 1024:.1f} MB "
        f"({metrics.memory_usage_ratio:.1%} of budget)",
    ]

    if report.slow_operations:
        lines.append("")
        lines.append("**Slowest operations:**")
        for sample in report.slow_operations:
            lines.append(f"- {sample.duration_ms:.1f} ms: {sample.operation[:120]}")

    lines.append("")
    lines.append("**Recommendations:**")
    lines.extend(f"- {rec}" for rec in report.recommendations)
    return "\n".join(lines)


def format_note_list(notes: List[NoteRecord], empty_message: str) -> str:
    if not notes:
        return empty_message
    return f"Found {len(notes)} notes:\n\n" + SEPARATOR.join(format_note(n) for n in notes)


# Tool definitions


def tool_definitions() -> List[Tool]:
    return [
        Tool(
            name="search_notes",
            description="Search notes by a substring of their title or content, with filters",
            inputSchema={
                "type": "object",
                "properties": {
                    "query": {"type": "string", "description": "Text to look for"},
                    "tags": {**TAGS_PROPERTY, "description": "Notes must carry all of these tags"},
                    "exclude_tags": {**TAGS_PROPERTY, "description": "Notes must carry none of these tags"},
                    "date_from": {"type": "string", "description": "Created on or after (ISO 8601)"},
                    "date_to": {"type": "string", "description": "Created on or before (ISO 8601)"},
                    "include_archived": {"type": "boolean", "default": False},
                    "include_trashed": {"type": "boolean", "default": False},
                    "sort_by": {"type": "string", "enum": ["created", "modified", "title", "size"]},
                    "sort_order": {"type": "string", "enum": ["asc", "desc"]},
                    "limit": LIMIT_PROPERTY,
                    "offset": {"type": "integer", "default": 0},
                },
                "required": ["query"],
            },
        ),
        Tool(
            name="search_notes_full_text",
            description="Relevance-ranked full-text search with snippets and optional fuzzy matching",
            inputSchema={
                "type": "object",
                "properties": {
                    "query": {"type": "string", "description": "Search query"},
                    "limit": LIMIT_PROPERTY,
                    "include_snippets": {"type": "boolean", "default": True},
                    "search_fields": {
                        "type": "array",
                        "items": {"type": "string", "enum": ["title", "content", "both"]},
                    },
                    "fuzzy_match": {"type": "boolean", "default": False},
                    "case_sensitive": {"type": "boolean", "default": False},
                    "include_archived": {"type": "boolean", "default": False},
                    "include_trashed": {"type": "boolean", "default": False},
                    "tags": {**TAGS_PROPERTY, "description": "Notes must carry all of these tags"},
                    "date_from": {"type": "string", "description": "Created on or after (ISO 8601)"},
                    "date_to": {"type": "string", "description": "Created on or before (ISO 8601)"},
                },
                "required": ["query"],
            },
        ),
        Tool(
            name="get_search_suggestions",
            description="Auto-complete suggestions (terms, titles, tags) for a partial query",
            inputSchema={
                "type": "object",
                "properties": {
                    "partial_query": {"type": "string"},
                    "limit": {**LIMIT_PROPERTY, "default": 10},
                },
                "required": ["partial_query"],
            },
        ),
        Tool(
            name="find_similar_notes",
            description="Find notes whose keywords overlap a reference text",
            inputSchema={
                "type": "object",
                "properties": {
                    "reference_text": {"type": "string"},
                    "limit": LIMIT_PROPERTY,
                    "min_similarity": {"type": "number", "description": "Between 0 and 1"},
                },
                "required": ["reference_text"],
            },
        ),
        Tool(
            name="get_related_notes",
            description="Notes sharing tags with a note, and notes with similar content",
            inputSchema={
                "type": "object",
                "properties": {"note_id": NOTE_ID_PROPERTY, "limit": {**LIMIT_PROPERTY, "default": 5}},
                "required": ["note_id"],
            },
        ),
        Tool(
            name="get_note",
            description="Get a note's full content by ID or exact title",
            inputSchema={
                "type": "object",
                "properties": {"note_id": NOTE_ID_PROPERTY, "title": {"type": "string"}},
            },
        ),
        Tool(
            name="get_tags",
            description="List all tags with their note counts",
            inputSchema={"type": "object", "properties": {}},
        ),
        Tool(
            name="get_notes_by_tag",
            description="List notes carrying a tag",
            inputSchema={
                "type": "object",
                "properties": {"tag": {"type": "string"}},
                "required": ["tag"],
            },
        ),
        Tool(
            name="get_database_stats",
            description="Counts of notes, tags and attachments in the Bear database",
            inputSchema={"type": "object", "properties": {}},
        ),
        Tool(
            name="create_note",
            description="Create a note in Bear",
            inputSchema={
                "type": "object",
                "properties": {
                    "title": {"type": "string"},
                    "text": {"type": "string", "default": ""},
                    "tags": TAGS_PROPERTY,
                },
                "required": ["title"],
            },
        ),
        Tool(
            name="add_text",
            description="Append, prepend or replace the text of a note",
            inputSchema={
                "type": "object",
                "properties": {
                    "note_id": NOTE_ID_PROPERTY,
                    "text": {"type": "string"},
                    "mode": {"type": "string", "enum": ["append", "prepend", "replace"], "default": "append"},
                },
                "required": ["note_id", "text"],
            },
        ),
        Tool(
            name="archive_note",
            description="Archive a note",
            inputSchema={
                "type": "object",
                "properties": {"note_id": NOTE_ID_PROPERTY},
                "required": ["note_id"],
            },
        ),
        Tool(
            name="trash_note",
            description="Move a note to the trash",
            inputSchema={
                "type": "object",
                "properties": {"note_id": NOTE_ID_PROPERTY},
                "required": ["note_id"],
            },
        ),
        Tool(
            name="get_cache_stats",
            description="Query cache statistics",
            inputSchema={"type": "object", "properties": {}},
        ),
        Tool(
            name="get_performance_report",
            description="Query performance report with recommendations",
            inputSchema={
                "type": "object",
                "properties": {
                    "hours": {"type": "number", "description": "Report window in hours (default: 24)"}
                },
            },
        ),
        Tool(
            name="clear_cache",
            description="Drop every cached query result",
            inputSchema={"type": "object", "properties": {}},
        ),
    ]


# Tool handlers


def _require(arguments: Dict[str, Any], key: str) -> Any:
    value = arguments.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f"'{key}' is required", field=key)
    return value


async def _search_notes(services: BearServices, arguments: Dict[str, Any]) -> str:
    _require(arguments, "query")
    options = NoteQueryOptions.model_validate(arguments)
    if options.limit is None:
        options.limit = services.config.search.default_limit

    notes = await services.search.get_notes_advanced(options)
    return format_note_list(notes, "No matching notes found.")


async def _search_notes_full_text(services: BearServices, arguments: Dict[str, Any]) -> str:
    query = _require(arguments, "query")
    options = FullTextSearchOptions.model_validate(
        {k: v for k, v in arguments.items() if k != "query"}
    )

    results = await services.search.search_notes_full_text(query, options)
    if not results:
        return "No matching notes found."
    return f"Found {len(results)} notes for '{query}':\n\n" + SEPARATOR.join(
        format_search_result(r) for r in results
    )


async def _get_search_suggestions(services: BearServices, arguments: Dict[str, Any]) -> str:
    suggestions = await services.search.get_search_suggestions(
        arguments.get("partial_query", ""), arguments.get("limit")
    )
    return (
        f"**Terms:** {', '.join(suggestions.terms) or 'none'}\n"
        f"**Titles:** {', '.join(suggestions.titles) or 'none'}\n"
        f"**Tags:** {', '.join('#' + t for t in suggestions.tags) or 'none'}"
    )


async def _find_similar_notes(services: BearServices, arguments: Dict[str, Any]) -> str:
    reference_text = _require(arguments, "reference_text")
    min_similarity = arguments.get("min_similarity")
    if min_similarity is not None and not 0.0 <= min_similarity <= 1.0:
        raise ValidationError("must be between 0 and 1", field="min_similarity")

    results = await services.search.find_similar_notes(
        reference_text, limit=arguments.get("limit"), min_similarity=min_similarity
    )
    if not results:
        return "No similar notes found."
    return f"Found {len(results)} similar notes:\n\n" + SEPARATOR.join(
        format_similarity_result(r) for r in results
    )


async def _get_related_notes(services: BearServices, arguments: Dict[str, Any]) -> str:
    note_id = _require(arguments, "note_id")
    related = await services.search.get_related_notes(note_id, arguments.get("limit"))

    sections = [
        "**Related by tags:**\n\n" + format_note_list(related.by_tags, "No notes share tags."),
        "**Related by content:**\n\n"
        + (
            SEPARATOR.join(format_similarity_result(r) for r in related.by_content)
            or "No notes with similar content."
        ),
    ]
    return "\n\n".join(sections)


async def _get_note(services: BearServices, arguments: Dict[str, Any]) -> str:
    if arguments.get("note_id") is not None:
        note = await services.notes.get_note_by_id(arguments["note_id"])
    elif arguments.get("title"):
        note = await services.notes.get_note_by_title(arguments["title"])
    else:
        raise ValidationError("Either 'note_id' or 'title' is required", field="note_id")
    return format_note(note, include_content=True)


async def _get_tags(services: BearServices, arguments: Dict[str, Any]) -> str:
    tags = await services.notes.get_tags()
    if not tags:
        return "No tags found."
    return f"Found {len(tags)} tags:\n\n" + "\n".join(
        f"- #{tag.name} ({tag.note_count} notes)" for tag in tags
    )


async def _get_notes_by_tag(services: BearServices, arguments: Dict[str, Any]) -> str:
    tag = _require(arguments, "tag")
    notes = await services.notes.get_notes_by_tag(tag.lstrip("#"))
    return format_note_list(notes, f"No notes tagged #{tag.lstrip('#')}.")


async def _get_database_stats(services: BearServices, arguments: Dict[str, Any]) -> str:
    return format_database_stats(await services.notes.get_database_stats())


async def _create_note(services: BearServices, arguments: Dict[str, Any]) -> str:
    result = await services.notes.create_note(
        _require(arguments, "title"), arguments.get("text", ""), arguments.get("tags")
    )
    text = result.message
    if result.tags:
        text += f"\n**Tags:** {', '.join('#' + t for t in result.tags)}"
    if result.tag_warnings:
        text += "\n**Tag warnings:**\n" + "\n".join(f"- {w}" for w in result.tag_warnings)
    return text


async def _add_text(services: BearServices, arguments: Dict[str, Any]) -> str:
    try:
        mode = AddTextMode(arguments.get("mode", "append"))
    except ValueError:
        raise ValidationError("must be append, prepend or replace", field="mode")

    result = await services.notes.add_text(
        _require(arguments, "note_id"), _require(arguments, "text"), mode
    )
    return result.message


async def _archive_note(services: BearServices, arguments: Dict[str, Any]) -> str:
    return (await services.notes.archive_note(_require(arguments, "note_id"))).message


async def _trash_note(services: BearServices, arguments: Dict[str, Any]) -> str:
    return (await services.notes.trash_note(_require(arguments, "note_id"))).message


async def _get_cache_stats(services: BearServices, arguments: Dict[str, Any]) -> str:
    return format_cache_stats(services.cache.stats())


async def _get_performance_report(services: BearServices, arguments: Dict[str, Any]) -> str:
    since: Optional[datetime] = None
    if arguments.get("hours") is not None:
        since = datetime.now(timezone.utc) - timedelta(hours=float(arguments["hours"]))
    return format_performance_report(services.monitor.report(since))


async def _clear_cache(services: BearServices, arguments: Dict[str, Any]) -> str:
    removed = len(services.cache)
    services.cache.clear()
    return f"Cache cleared ({removed} entries removed)."


ToolHandler = Callable[[BearServices, Dict[str, Any]], Awaitable[str]]

TOOL_HANDLERS: Dict[str, ToolHandler] = {
    "search_notes": _search_notes,
    "search_notes_full_text": _search_notes_full_text,
    "get_search_suggestions": _get_search_suggestions,
    "find_similar_notes": _find_similar_notes,
    "get_related_notes": _get_related_notes,
    "get_note": _get_note,
    "get_tags": _get_tags,
    "get_notes_by_tag": _get_notes_by_tag,
    "get_database_stats": _get_database_stats,
    "create_note": _create_note,
    "add_text": _add_text,
    "archive_note": _archive_note,
    "trash_note": _trash_note,
    "get_cache_stats": _get_cache_stats,
    "get_performance_report": _get_performance_report,
    "clear_cache": _clear_cache,
}


async def dispatch_tool(
    services: BearServices, name: str, arguments: Optional[Dict[str, Any]]
) -> List[TextContent]:
    """Run a tool and render its outcome, including failures, as text."""
    handler = TOOL_HANDLERS.get(name)
    if not handler:
        return [TextContent(type="text", text=f"Error: Unknown tool: {name}")]

    try:
        text = await handler(services, arguments or {})
    except BearNotesError as e:
        await report_error(e)
        return [TextContent(type="text", text=f"Error: {e.user_message}")]
    except PydanticValidationError as e:
        logger.info(f"Invalid arguments for {name}: {e}")
        return [TextContent(type="text", text=f"Error: Invalid arguments: {e}")]
    except Exception as e:
        logger.error(f"Tool call failed: {e}", exc_info=True)
        return [TextContent(type="text", text=f"Error: {e}")]

    return [TextContent(type="text", text=text)]


def create_server(services: BearServices) -> Server:
    """Build an MCP server whose tools run against the given services."""
    server = Server(services.config.server.name)

    @server.list_tools()
    async def list_tools() -> List[Tool]:
        """List available tools."""
        return tool_definitions()

    @server.call_tool()
    async def call_tool(name: str, arguments: Dict[str, Any]) -> List[TextContent]:
        """Handle tool calls."""
        return await dispatch_tool(services, name, arguments)

    return server


async def main(config: Optional[ApplicationConfig] = None):
    """Main entry point for the MCP server."""
    try:
        if config is not None:
            get_config_manager().set_config(config)
        config = get_config()
    except (BearNotesError, ValueError) as e:
        logging.basicConfig(stream=sys.stderr)
        logger.error(f"Invalid configuration: {e}")
        sys.exit(1)

    # stdout carries the protocol, so logs go to stderr
    logging.basicConfig(
        level=getattr(logging, config.monitoring.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    services = create_services(config)
    try:
        await services.initialize()
    except BearNotesError as e:
        logger.error(f"Initialization failed: {e.message}")
        sys.exit(1)

    server = create_server(services)
    try:
        async with stdio_server() as (read_stream, write_stream):
            await server.run(
                read_stream,
                write_stream,
                InitializationOptions(
                    server_name=config.server.name,
                    server_version=config.server.version,
                    capabilities=server.get_capabilities(
                        notification_options=NotificationOptions(),
                        experimental_capabilities={},
                    ),
                ),
            )
    finally:
        await services.dispose()


def run():
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()

"""CLI tools for querying Bear notes outside an MCP client."""

import argparse
import asyncio
import logging
import sys

from .config import get_config
from .container import create_services
from .errors import BearNotesError
from .models import FullTextSearchOptions
from .server import (
    format_cache_stats,
    format_database_stats,
    format_performance_report,
    format_search_result,
    format_similarity_result,
)

logger = logging.getLogger(__name__)


def _services(args):
    config = get_config()
    if args.db_path:
        config.database.bear_db_path = args.db_path
    return create_services(config)


async def search(args):
    """Relevance-ranked search."""
    try:
        async with _services(args) as services:
            options = FullTextSearchOptions(
                limit=args.limit, fuzzy_match=args.fuzzy, case_sensitive=args.case_sensitive
            )
            results = await services.search.search_notes_full_text(args.query, options)

            if not results:
                print("No matching notes found.")
                return

            print(f"Found {len(results)} notes for '{args.query}'")
            print("=" * 40)
            for result in results:
                print(format_search_result(result))
                print()

    except BearNotesError as e:
        logger.error(f"Search failed: {e.message}")
        sys.exit(1)


async def similar(args):
    """Notes similar to a piece of text."""
    try:
        async with _services(args) as services:
            results = await services.search.find_similar_notes(
                args.text, limit=args.limit, min_similarity=args.min_similarity
            )

            if not results:
                print("No similar notes found.")
                return

            for result in results:
                print(format_similarity_result(result))
                print()

    except BearNotesError as e:
        logger.error(f"Similarity search failed: {e.message}")
        sys.exit(1)


async def suggest(args):
    """Auto-complete suggestions for a partial query."""
    try:
        async with _services(args) as services:
            suggestions = await services.search.get_search_suggestions(args.prefix, args.limit)

            print(f"Terms:  {', '.join(suggestions.terms) or '-'}")
            print(f"Titles: {', '.join(suggestions.titles) or '-'}")
            print(f"Tags:   {', '.join('#' + tag for tag in suggestions.tags) or '-'}")

    except BearNotesError as e:
        logger.error(f"Suggestions failed: {e.message}")
        sys.exit(1)


async def stats(args):
    """Database statistics."""
    try:
        async with _services(args) as services:
            db_stats = await services.notes.get_database_stats()
            print(format_database_stats(db_stats))

            if args.check_integrity:
                ok = await services.notes.check_integrity()
                print(f"\nIntegrity check: {'ok' if ok else 'FAILED'}")

    except BearNotesError as e:
        logger.error(f"Stats failed: {e.message}")
        sys.exit(1)


async def performance(args):
    """Run a query repeatedly and report cache and timing behaviour."""
    try:
        async with _services(args) as services:
            for _ in range(args.iterations):
                await services.search.search_notes_full_text(args.query)

            print(format_performance_report(services.monitor.report()))
            print()
            print(format_cache_stats(services.cache.stats()))

    except BearNotesError as e:
        logger.error(f"Performance run failed: {e.message}")
        sys.exit(1)


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Bear Notes MCP Server CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    parser.add_argument("--db-path", help="Path to Bear's database.sqlite")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Search command
    search_parser = subparsers.add_parser("search", help="Relevance-ranked full-text search")
    search_parser.add_argument("query", help="Search query")
    search_parser.add_argument("--limit", "-n", type=int, help="Maximum number of results")
    search_parser.add_argument("--fuzzy", action="store_true", help="Also match near misses")
    search_parser.add_argument(
        "--case-sensitive", action="store_true", help="Match letter case exactly"
    )

    # Similar command
    similar_parser = subparsers.add_parser("similar", help="Find notes similar to a text")
    similar_parser.add_argument("text", help="Reference text")
    similar_parser.add_argument("--limit", "-n", type=int, help="Maximum number of results")
    similar_parser.add_argument(
        "--min-similarity", type=float, help="Minimum similarity between 0 and 1"
    )

    # Suggest command
    suggest_parser = subparsers.add_parser("suggest", help="Auto-complete a partial query")
    suggest_parser.add_argument("prefix", help="Partial query")
    suggest_parser.add_argument("--limit", "-n", type=int, default=10)

    # Stats command
    stats_parser = subparsers.add_parser("stats", help="Show database statistics")
    stats_parser.add_argument(
        "--check-integrity", action="store_true", help="Also run SQLite's integrity check"
    )

    # Performance command
    perf_parser = subparsers.add_parser(
        "performance", help="Run a query repeatedly and show the performance report"
    )
    perf_parser.add_argument("query", help="Search query to run")
    perf_parser.add_argument("--iterations", "-i", type=int, default=5)

    args = parser.parse_args()

    # Configure logging
    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    if not args.command:
        parser.print_help()
        sys.exit(1)

    commands = {
        "search": search,
        "similar": similar,
        "suggest": suggest,
        "stats": stats,
        "performance": performance,
    }
    asyncio.run(commands[args.command](args))


if __name__ == "__main__":
    main()

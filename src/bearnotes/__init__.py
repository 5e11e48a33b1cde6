"""Bear notes MCP server: cached reads, ranked search and write commands for Bear."""

__version__ = "1.0.0"

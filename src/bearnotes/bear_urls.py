"""
Write commands for Bear, delivered through its x-callback-url scheme.

The database is only ever opened read-only; every change is handed to the
Bear app itself by opening a ``bear://`` URL with the macOS ``open`` command.
"""

import asyncio
import logging
import re
from typing import Dict, List, Optional, Tuple
from urllib.parse import quote, urlencode

from .errors import BearAppError

logger = logging.getLogger(__name__)

BEAR_URL_BASE = "bear://x-callback-url"
OPEN_COMMAND = "open"

TAG_STRIP = re.compile(r"[-\s_,]")
REPEATED_SLASHES = re.compile(r"/+")


def sanitize_tags(tags: List[str]) -> Tuple[List[str], List[str]]:
    """
    Normalize tags to the form Bear stores them in.

    Tags are lower-cased, lose hyphens, underscores, commas and whitespace,
    and have repeated or surrounding slashes collapsed. Returns the cleaned
    tags plus a warning for every tag that was changed or dropped.
    """
    sanitized: List[str] = []
    warnings: List[str] = []

    for raw in tags:
        tag = raw.strip()
        if not tag:
            warnings.append("Empty tag ignored")
            continue

        cleaned = TAG_STRIP.sub("", tag.lower())
        cleaned = REPEATED_SLASHES.sub("/", cleaned).strip("/")

        if not cleaned:
            warnings.append(f'Tag "{raw}" ignored: nothing left after sanitizing')
            continue
        if cleaned != tag:
            warnings.append(f'Tag "{raw}" sanitized to "{cleaned}"')
        if cleaned not in sanitized:
            sanitized.append(cleaned)

    return sanitized, warnings


def build_url(action: str, params: Dict[str, str]) -> str:
    """Build a Bear x-callback-url with percent-encoded parameters."""
    query = urlencode(params, quote_via=quote)
    return f"{BEAR_URL_BASE}/{action}?{query}"


class BearURLClient:
    """Opens Bear URL-scheme commands and waits for Bear to apply them."""

    def __init__(self, open_delay: float = 1.0, command: str = OPEN_COMMAND):
        self.open_delay = open_delay
        self.command = command

    async def open_url(self, action: str, url: str) -> None:
        logger.info(f"Sending '{action}' command to Bear")
        try:
            process = await asyncio.create_subprocess_exec(
                self.command,
                url,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            _, stderr = await process.communicate()
        except OSError as e:
            raise BearAppError(action, f"Could not launch '{self.command}': {e}", cause=e) from e

        if process.returncode != 0:
            detail = stderr.decode(errors="replace").strip()
            raise BearAppError(
                action, f"'{self.command}' exited with status {process.returncode}: {detail}"
            )

        if self.open_delay > 0:
            await asyncio.sleep(self.open_delay)

    async def create(self, title: str, text: str = "", tags: Optional[List[str]] = None) -> str:
        params = {"title": title, "text": text}
        if tags:
            params["tags"] = ",".join(tags)
        params["show_window"] = "no"

        url = build_url("create", params)
        await self.open_url("create", url)
        return url

    async def add_text(self, unique_id: str, text: str, mode: str = "append") -> str:
        url = build_url(
            "add-text", {"id": unique_id, "mode": mode, "text": text, "show_window": "no"}
        )
        await self.open_url("add-text", url)
        return url

    async def archive(self, unique_id: str) -> str:
        url = build_url("archive", {"id": unique_id, "show_window": "no"})
        await self.open_url("archive", url)
        return url

    async def trash(self, unique_id: str) -> str:
        url = build_url("trash", {"id": unique_id, "show_window": "no"})
        await self.open_url("trash", url)
        return url

"""URL fetch tool (aiohttp client)."""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any
from urllib.parse import urlparse

import aiohttp
from bs4 import BeautifulSoup, Comment

from ..models import PermissionTier, ToolCategory
from .base import (
    ToolContext,
    ToolDefinition,
    ToolOutput,
    fail,
    object_schema,
    ok,
    param_int,
    param_str,
)

logger = logging.getLogger(__name__)

FETCH_TIMEOUT_SECONDS = 30.0
DEFAULT_MAX_LENGTH = 50000
USER_AGENT = "manu-code/1.0"

_NON_CONTENT_TAGS = ["script", "style", "noscript", "template"]


def html_to_text(markup: str) -> str:
    """Reduce an HTML page to readable text, one block per line."""
    soup = BeautifulSoup(markup, "html.parser")
    for tag in soup(_NON_CONTENT_TAGS):
        tag.decompose()
    for comment in soup.find_all(string=lambda node: isinstance(node, Comment)):
        comment.extract()
    lines = (" ".join(line.split()) for line in soup.get_text("\n").splitlines())
    return "\n".join(line for line in lines if line)


async def fetch_url(params: dict[str, Any], ctx: ToolContext) -> ToolOutput:
    url = param_str(params, "url")
    max_length = param_int(params, "maxLength", DEFAULT_MAX_LENGTH)
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return fail("Only HTTP and HTTPS URLs are supported")

    headers = {
        "User-Agent": USER_AGENT,
        "Accept": "text/html,application/json,text/plain,*/*",
    }
    timeout = aiohttp.ClientTimeout(total=FETCH_TIMEOUT_SECONDS)
    try:
        async with aiohttp.ClientSession(timeout=timeout, headers=headers) as session:
            async with session.get(url) as response:
                if response.status >= 400:
                    return fail(f"HTTP error: {response.status} {response.reason or ''}".rstrip())
                content_type = response.headers.get("Content-Type", "")
                body = await response.text(errors="replace")
    except aiohttp.ClientError as exc:
        return fail(f"Failed to fetch URL: {exc}")
    except asyncio.TimeoutError:
        return fail(f"Failed to fetch URL: timed out after {FETCH_TIMEOUT_SECONDS:g}s")

    if "application/json" in content_type:
        try:
            body = json.dumps(json.loads(body), indent=2)
        except ValueError:
            pass  # Serve the raw body when the JSON is invalid
    elif "text/html" in content_type:
        body = html_to_text(body)

    if len(body) > max_length:
        body = body[:max_length] + "\n\n[Content truncated...]"
    logger.info("fetch_url: %s (%d chars)", url, len(body))
    return ok(body)


WEB_TOOLS = [
    ToolDefinition(
        name="fetch_url",
        description="Fetch content from an HTTP(S) URL and return it as text.",
        parameters=object_schema(
            {
                "url": {"type": "string", "description": "The URL to fetch"},
                "maxLength": {
                    "type": "integer",
                    "description": "Maximum characters to return (default: 50000)",
                },
            },
            ["url"],
        ),
        tier=PermissionTier.AUTO,
        handler=fetch_url,
        category=ToolCategory.OTHER,
        timeout_seconds=FETCH_TIMEOUT_SECONDS + 5,
    ),
]

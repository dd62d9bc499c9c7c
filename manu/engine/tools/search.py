"""Search tools: glob file search and regex content search."""
from __future__ import annotations

import asyncio
import os
import re
from pathlib import Path, PurePosixPath
from typing import Any

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
    resolve_path,
    should_ignore,
)

MAX_SEARCH_FILE_BYTES = 1024 * 1024


def glob_to_regex(pattern: str) -> re.Pattern[str]:
    """Translate a glob into a regex matched against relative POSIX paths.

    ``**`` spans directories, ``*`` and ``?`` stay within one segment.
    A pattern without a slash matches the file name at any depth.
    """
    parts: list[str] = []
    i = 0
    while i < len(pattern):
        ch = pattern[i]
        if pattern.startswith("**/", i):
            parts.append("(?:.*/)?")
            i += 3
            continue
        if pattern.startswith("**", i):
            parts.append(".*")
            i += 2
            continue
        if ch == "*":
            parts.append("[^/]*")
        elif ch == "?":
            parts.append("[^/]")
        else:
            parts.append(re.escape(ch))
        i += 1
    body = "".join(parts)
    if "/" not in pattern:
        return re.compile(f"(?:^|.*/){body}$")
    return re.compile(f"^{body}$")


def _walk(base: Path, ignore: list[str]) -> list[Path]:
    found: list[Path] = []
    for dirpath, dirnames, filenames in os.walk(base):
        dirnames[:] = sorted(d for d in dirnames if not should_ignore(d, ignore))
        for name in sorted(filenames):
            if not should_ignore(name, ignore):
                found.append(Path(dirpath) / name)
    return found


def _relative(path: Path, base: Path) -> str:
    return str(PurePosixPath(path.relative_to(base)))


def find_files(base: Path, pattern: str, ignore: list[str]) -> list[str]:
    regex = glob_to_regex(pattern)
    return [
        rel for rel in (_relative(p, base) for p in _walk(base, ignore))
        if regex.match(rel)
    ]


async def search_files(params: dict[str, Any], ctx: ToolContext) -> ToolOutput:
    pattern = param_str(params, "pattern")
    base = resolve_path(params.get("path") or ".", ctx)
    if not base.is_dir():
        return fail(f"Failed to search files: not a directory: {base}")
    matches = await asyncio.to_thread(find_files, base, pattern, ctx.ignore_patterns)
    if not matches:
        return ok("No files found matching the pattern.")
    return ok(f"Found {len(matches)} file(s):\n" + "\n".join(matches))


def _grep(
    base: Path,
    regex: re.Pattern[str],
    file_pattern: str,
    ignore: list[str],
    max_results: int,
) -> list[str]:
    results: list[str] = []
    for rel in find_files(base, file_pattern, ignore):
        path = base / rel
        try:
            if path.stat().st_size > MAX_SEARCH_FILE_BYTES:
                continue
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError):
            continue
        for lineno, line in enumerate(text.split("\n"), start=1):
            if regex.search(line):
                results.append(f"{rel}:{lineno}: {line.strip()}")
                if len(results) >= max_results:
                    return results
    return results


async def search_content(params: dict[str, Any], ctx: ToolContext) -> ToolOutput:
    query = param_str(params, "query")
    base = resolve_path(params.get("path") or ".", ctx)
    if not base.is_dir():
        return fail(f"Failed to search content: not a directory: {base}")
    file_pattern = params.get("filePattern") or "**/*"
    flags = 0 if params.get("caseSensitive") else re.IGNORECASE
    max_results = param_int(params, "maxResults", 50)
    try:
        regex = re.compile(query, flags)
    except re.error:
        # Not a valid regex, search for the literal text
        regex = re.compile(re.escape(query), flags)
    results = await asyncio.to_thread(
        _grep, base, regex, file_pattern, ctx.ignore_patterns, max_results,
    )
    if not results:
        return ok("No matches found.")
    return ok(f"Found {len(results)} match(es):\n" + "\n".join(results))


SEARCH_TOOLS = [
    ToolDefinition(
        name="search_files",
        description='Search for files matching a glob pattern (e.g. "**/*.py", "src/**/*.js").',
        parameters=object_schema(
            {
                "pattern": {"type": "string", "description": "Glob pattern to match"},
                "path": {
                    "type": "string",
                    "description": "Base directory (defaults to project root)",
                },
            },
            ["pattern"],
        ),
        tier=PermissionTier.AUTO,
        handler=search_files,
        category=ToolCategory.OTHER,
    ),
    ToolDefinition(
        name="search_content",
        description=(
            "Search for text within files, like grep. Returns matching lines "
            "with file paths and line numbers."
        ),
        parameters=object_schema(
            {
                "query": {"type": "string", "description": "Text or regex to search for"},
                "path": {
                    "type": "string",
                    "description": "Directory to search (defaults to project root)",
                },
                "filePattern": {
                    "type": "string",
                    "description": 'Glob to filter files (e.g. "*.py")',
                },
                "caseSensitive": {
                    "type": "boolean",
                    "description": "Case-sensitive search (default: false)",
                },
                "maxResults": {
                    "type": "integer",
                    "description": "Maximum number of results (default: 50)",
                },
            },
            ["query"],
        ),
        tier=PermissionTier.AUTO,
        handler=search_content,
        category=ToolCategory.OTHER,
    ),
]

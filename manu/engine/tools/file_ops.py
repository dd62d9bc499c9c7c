"""File tools: read, write, edit and list."""
from __future__ import annotations

import asyncio
import base64
import logging
from pathlib import Path
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

logger = logging.getLogger(__name__)


def _read(path: Path, encoding: str) -> str:
    if encoding == "base64":
        return base64.b64encode(path.read_bytes()).decode("ascii")
    return path.read_text(encoding="utf-8")


async def read_file(params: dict[str, Any], ctx: ToolContext) -> ToolOutput:
    path = resolve_path(param_str(params, "path"), ctx)
    encoding = params.get("encoding") or "utf-8"
    if encoding not in ("utf-8", "base64"):
        return fail(f"Unsupported encoding: {encoding}")
    try:
        content = await asyncio.to_thread(_read, path, encoding)
    except (OSError, UnicodeDecodeError) as exc:
        return fail(f"Failed to read file: {exc}")
    return ok(content)


def _write(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


async def write_file(params: dict[str, Any], ctx: ToolContext) -> ToolOutput:
    path = resolve_path(param_str(params, "path"), ctx)
    content = params.get("content")
    if not isinstance(content, str):
        return fail("'content' is required and must be a string")
    try:
        await asyncio.to_thread(_write, path, content)
    except OSError as exc:
        return fail(f"Failed to write file: {exc}")
    logger.info("write_file: %d chars -> %s", len(content), path)
    return ok(f"Successfully wrote {len(content)} characters to {path}")


def _preview(text: str, limit: int = 50) -> str:
    return text[:limit] + ("..." if len(text) > limit else "")


async def edit_file(params: dict[str, Any], ctx: ToolContext) -> ToolOutput:
    path = resolve_path(param_str(params, "path"), ctx)
    search = param_str(params, "search")
    replace = params.get("replace")
    if not isinstance(replace, str):
        return fail("'replace' is required and must be a string")
    try:
        content = await asyncio.to_thread(path.read_text, encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        return fail(f"Failed to edit file: {exc}")

    occurrences = content.count(search)
    if occurrences == 0:
        return fail(f'Search text not found in file: "{_preview(search)}"')
    if occurrences > 1:
        return fail(
            f"Search text found {occurrences} times. "
            "Please provide more context to make the search unique."
        )

    try:
        await asyncio.to_thread(_write, path, content.replace(search, replace, 1))
    except OSError as exc:
        return fail(f"Failed to edit file: {exc}")
    logger.info("edit_file: %s", path)
    return ok(f"Successfully edited {path}")


def _list_dir(
    path: Path, max_depth: int, depth: int, ignore: list[str],
) -> list[str]:
    if depth >= max_depth:
        return []
    lines: list[str] = []
    indent = "  " * depth
    for entry in sorted(path.iterdir(), key=lambda p: (not p.is_dir(), p.name)):
        if should_ignore(entry.name, ignore):
            continue
        if entry.is_dir():
            lines.append(f"{indent}{entry.name}/")
            lines.extend(_list_dir(entry, max_depth, depth + 1, ignore))
        else:
            lines.append(f"{indent}{entry.name}")
    return lines


async def list_directory(params: dict[str, Any], ctx: ToolContext) -> ToolOutput:
    path = resolve_path(params.get("path") or ".", ctx)
    recursive = bool(params.get("recursive", False))
    max_depth = param_int(params, "maxDepth", 3) if recursive else 1
    try:
        lines = await asyncio.to_thread(
            _list_dir, path, max_depth, 0, ctx.ignore_patterns,
        )
    except OSError as exc:
        return fail(f"Failed to list directory: {exc}")
    return ok("\n".join(lines) if lines else "(empty directory)")


FILE_TOOLS = [
    ToolDefinition(
        name="read_file",
        description=(
            "Read the contents of a file at the specified path. "
            "Returns the file content as text."
        ),
        parameters=object_schema(
            {
                "path": {
                    "type": "string",
                    "description": "Path to the file (relative to project root or absolute)",
                },
                "encoding": {
                    "type": "string",
                    "enum": ["utf-8", "base64"],
                    "description": "Encoding to use when reading the file (default: utf-8)",
                },
            },
            ["path"],
        ),
        tier=PermissionTier.AUTO,
        handler=read_file,
        category=ToolCategory.FILE,
    ),
    ToolDefinition(
        name="write_file",
        description=(
            "Create or overwrite a file with the specified content. "
            "Creates parent directories if needed."
        ),
        parameters=object_schema(
            {
                "path": {"type": "string", "description": "Path of the file to write"},
                "content": {"type": "string", "description": "Content to write"},
            },
            ["path", "content"],
        ),
        tier=PermissionTier.ASK,
        handler=write_file,
        category=ToolCategory.FILE,
    ),
    ToolDefinition(
        name="edit_file",
        description=(
            "Make a targeted edit to a file using search and replace. The "
            "search text must occur exactly once in the file."
        ),
        parameters=object_schema(
            {
                "path": {"type": "string", "description": "Path of the file to edit"},
                "search": {"type": "string", "description": "Exact text to find"},
                "replace": {"type": "string", "description": "Replacement text"},
            },
            ["path", "search", "replace"],
        ),
        tier=PermissionTier.ASK,
        handler=edit_file,
        category=ToolCategory.FILE,
    ),
    ToolDefinition(
        name="list_directory",
        description="List files and directories in the specified path.",
        parameters=object_schema(
            {
                "path": {"type": "string", "description": "Directory to list"},
                "recursive": {
                    "type": "boolean",
                    "description": "Whether to list recursively (default: false)",
                },
                "maxDepth": {
                    "type": "integer",
                    "description": "Maximum depth for recursive listing (default: 3)",
                },
            },
            ["path"],
        ),
        tier=PermissionTier.AUTO,
        handler=list_directory,
        category=ToolCategory.FILE,
    ),
]

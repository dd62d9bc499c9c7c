"""Read-only git tools backed by the git CLI."""
from __future__ import annotations

import asyncio
import logging
from typing import Any

from ..models import PermissionTier
from .base import (
    ToolContext,
    ToolDefinition,
    ToolOutput,
    fail,
    object_schema,
    ok,
    param_int,
)

logger = logging.getLogger(__name__)


async def _git(ctx: ToolContext, *args: str) -> tuple[int, str, str]:
    # create_subprocess_exec passes args as array, no shell
    proc = await asyncio.create_subprocess_exec(
        "git", *args,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        cwd=ctx.root,
    )
    try:
        stdout, stderr = await proc.communicate()
    except asyncio.CancelledError:
        if proc.returncode is None:
            proc.kill()
            await proc.wait()
        raise
    return (
        proc.returncode or 0,
        stdout.decode(errors="replace"),
        stderr.decode(errors="replace"),
    )


async def _run(ctx: ToolContext, what: str, *args: str) -> tuple[str | None, ToolOutput | None]:
    try:
        code, out, err = await _git(ctx, *args)
    except FileNotFoundError:
        return None, fail("git is not installed or not on PATH")
    if code != 0:
        return None, fail(f"Failed to get git {what}: {err.strip() or out.strip()}")
    return out, None


_STATUS_LABELS = (
    ("Staged", "staged"),
    ("Modified", "modified"),
    ("Deleted", "deleted"),
    ("Untracked", "untracked"),
    ("Conflicted", "conflicted"),
)


def format_status(porcelain: str) -> str:
    """Render ``git status --porcelain=v1 --branch`` output by section."""
    lines: list[str] = []
    groups: dict[str, list[str]] = {key: [] for _, key in _STATUS_LABELS}
    for raw in porcelain.splitlines():
        if raw.startswith("## "):
            branch_info = raw[3:]
            branch, _, tracking = branch_info.partition("...")
            lines.append(f"Branch: {branch}")
            if tracking:
                lines.append(f"Tracking: {tracking}")
            continue
        if len(raw) < 4:
            continue
        index, worktree, path = raw[0], raw[1], raw[3:]
        if index == "?" and worktree == "?":
            groups["untracked"].append(path)
        elif "U" in (index, worktree) or (index == worktree and index in "AD"):
            groups["conflicted"].append(path)
        else:
            if index not in (" ", "?"):
                groups["staged"].append(path)
            if worktree == "M":
                groups["modified"].append(path)
            elif worktree == "D":
                groups["deleted"].append(path)
    clean = True
    for label, key in _STATUS_LABELS:
        if groups[key]:
            clean = False
            lines.append(f"\n{label}:")
            lines.extend(f"  {path}" for path in groups[key])
    if clean:
        lines.append("Working tree is clean")
    return "\n".join(lines)


async def git_status(params: dict[str, Any], ctx: ToolContext) -> ToolOutput:
    out, error = await _run(ctx, "status", "status", "--porcelain=v1", "--branch")
    if error is not None:
        return error
    return ok(format_status(out or ""))


async def git_diff(params: dict[str, Any], ctx: ToolContext) -> ToolOutput:
    args = ["diff"]
    if params.get("staged"):
        args.append("--staged")
    if params.get("file"):
        args.extend(["--", str(params["file"])])
    out, error = await _run(ctx, "diff", *args)
    if error is not None:
        return error
    return ok(out if out and out.strip() else "No changes found.")


async def git_log(params: dict[str, Any], ctx: ToolContext) -> ToolOutput:
    max_count = param_int(params, "maxCount", 10)
    oneline = params.get("oneline", True) is not False
    fmt = "%h %ar %s (%an)" if oneline else "commit %H%nAuthor: %an%nDate: %ad%n%n    %s%n"
    out, error = await _run(ctx, "log", "log", f"--max-count={max_count}", f"--format={fmt}")
    if error is not None:
        if "does not have any commits" in error.text:
            return ok("No commits found.")
        return error
    return ok(out.strip() if out and out.strip() else "No commits found.")


async def git_branch(params: dict[str, Any], ctx: ToolContext) -> ToolOutput:
    args = ["branch", "--no-color"]
    if params.get("all"):
        args.append("-a")
    out, error = await _run(ctx, "branches", *args)
    if error is not None:
        return error
    return ok(out.rstrip() if out and out.strip() else "No branches found.")


GIT_TOOLS = [
    ToolDefinition(
        name="git_status",
        description=(
            "Get the git status of the repository: branch, staged, modified "
            "and untracked files."
        ),
        parameters=object_schema({}),
        tier=PermissionTier.AUTO,
        handler=git_status,
    ),
    ToolDefinition(
        name="git_diff",
        description="Show the git diff of staged or unstaged changes.",
        parameters=object_schema(
            {
                "staged": {
                    "type": "boolean",
                    "description": "Show staged changes instead of unstaged",
                },
                "file": {"type": "string", "description": "Limit the diff to one file"},
            },
        ),
        tier=PermissionTier.AUTO,
        handler=git_diff,
    ),
    ToolDefinition(
        name="git_log",
        description="Show recent git commit history.",
        parameters=object_schema(
            {
                "maxCount": {
                    "type": "integer",
                    "description": "Maximum number of commits (default: 10)",
                },
                "oneline": {
                    "type": "boolean",
                    "description": "One line per commit (default: true)",
                },
            },
        ),
        tier=PermissionTier.AUTO,
        handler=git_log,
    ),
    ToolDefinition(
        name="git_branch",
        description="List git branches and mark the current one.",
        parameters=object_schema(
            {
                "all": {
                    "type": "boolean",
                    "description": "Include remote branches",
                },
            },
        ),
        tier=PermissionTier.AUTO,
        handler=git_branch,
    ),
]

"""Shell command tool.

Commands run in their own session so the whole process group can be
terminated when the registry deadline fires or the turn is cancelled.
Permission screening (dangerous patterns, allowlist) happens before
dispatch, in the permission engine.
"""
from __future__ import annotations

import asyncio
import logging
import os
import shutil
import signal
from typing import Any

from ..models import PermissionTier, ToolCategory
from .base import (
    ToolContext,
    ToolDefinition,
    ToolOutput,
    fail,
    object_schema,
    ok,
    param_str,
    resolve_path,
)

logger = logging.getLogger(__name__)

DEFAULT_COMMAND_TIMEOUT = 60.0


def _signal_process_group(
    proc: asyncio.subprocess.Process,
    sig: signal.Signals,
) -> bool:
    """Send a signal to the process group when available."""
    if proc.returncode is not None:
        return False
    try:
        if hasattr(os, "killpg"):
            os.killpg(proc.pid, sig)
        else:
            proc.send_signal(sig)
        return True
    except ProcessLookupError:
        return False


async def _terminate(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is not None:
        return
    logger.warning("Terminating command process group pid=%s", proc.pid)
    if not _signal_process_group(proc, signal.SIGTERM):
        proc.kill()
    try:
        await asyncio.wait_for(proc.wait(), timeout=2.0)
    except asyncio.TimeoutError:
        if hasattr(signal, "SIGKILL"):
            _signal_process_group(proc, signal.SIGKILL)
        else:
            proc.kill()
        await proc.wait()


async def run_command(params: dict[str, Any], ctx: ToolContext) -> ToolOutput:
    command = param_str(params, "command").strip()
    cwd = str(resolve_path(params["cwd"], ctx)) if params.get("cwd") else ctx.root
    if not os.path.isdir(cwd):
        return fail(f"Working directory does not exist: {cwd}")

    shell_executable = shutil.which("bash") or None
    proc = await asyncio.create_subprocess_shell(
        command,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        cwd=cwd,
        start_new_session=True,
        executable=shell_executable,
    )
    logger.info("run_command pid=%s cwd=%s command=%s", proc.pid, cwd, command[:180])
    try:
        stdout, stderr = await proc.communicate()
    except asyncio.CancelledError:
        # Registry deadline or user interrupt
        await _terminate(proc)
        raise

    stdout_text = stdout.decode(errors="replace")
    stderr_text = stderr.decode(errors="replace")
    if proc.returncode != 0:
        detail = (stderr_text or stdout_text).strip()
        message = f"Command exited with code {proc.returncode}"
        return fail(f"{message}\n{detail}" if detail else message)

    output = stdout_text
    if stderr_text.strip():
        output = f"{output}\n[stderr]\n{stderr_text}" if output else stderr_text
    return ok(output or "Command completed successfully with no output.")


SHELL_TOOLS = [
    ToolDefinition(
        name="run_command",
        description=(
            "Execute a shell command in the project directory. Use for running "
            "tests, builds, and other command line tools."
        ),
        parameters=object_schema(
            {
                "command": {"type": "string", "description": "The shell command to execute"},
                "cwd": {
                    "type": "string",
                    "description": "Working directory (defaults to project root)",
                },
                "timeout": {
                    "type": "number",
                    "description": "Timeout in seconds (default: 60)",
                },
            },
            ["command"],
        ),
        tier=PermissionTier.ASK,
        handler=run_command,
        category=ToolCategory.SHELL,
        timeout_seconds=DEFAULT_COMMAND_TIMEOUT,
        timeout_param="timeout",
    ),
]

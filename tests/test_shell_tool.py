"""Tests for the run_command shell tool with real subprocesses."""
from __future__ import annotations

import asyncio
import sys
import time

import pytest

from manu.engine.tools.base import ToolContext
from manu.engine.tools.registry import ToolRegistry
from manu.engine.tools.shell import SHELL_TOOLS, run_command

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="POSIX shell required")


@pytest.fixture
def ctx(tmp_path):
    return ToolContext(cwd=str(tmp_path))


@pytest.mark.asyncio
async def test_stdout_captured(ctx):
    result = await run_command({"command": "echo hello"}, ctx)
    assert not result.is_error
    assert result.text.strip() == "hello"


@pytest.mark.asyncio
async def test_runs_in_project_root(ctx, tmp_path):
    (tmp_path / "marker.txt").write_text("")
    result = await run_command({"command": "ls"}, ctx)
    assert "marker.txt" in result.text


@pytest.mark.asyncio
async def test_nonzero_exit_is_error(ctx):
    result = await run_command({"command": "echo bad >&2; exit 3"}, ctx)
    assert result.is_error
    assert result.text.splitlines() == ["Command exited with code 3", "bad"]


@pytest.mark.asyncio
async def test_stderr_appended_on_success(ctx):
    result = await run_command({"command": "echo out; echo warn >&2"}, ctx)
    assert not result.is_error
    assert "out" in result.text
    assert "[stderr]\nwarn" in result.text


@pytest.mark.asyncio
async def test_no_output(ctx):
    result = await run_command({"command": "true"}, ctx)
    assert result.text == "Command completed successfully with no output."


@pytest.mark.asyncio
async def test_missing_cwd(ctx):
    result = await run_command({"command": "ls", "cwd": "does/not/exist"}, ctx)
    assert result.is_error
    assert result.text.startswith("Working directory does not exist")


@pytest.mark.asyncio
async def test_timeout_parameter_kills_process(ctx):
    registry = ToolRegistry(context=ctx)
    registry.register_all(SHELL_TOOLS)

    started = time.monotonic()
    result = await registry.execute("run_command", {"command": "sleep 30", "timeout": 0.5})

    assert result.is_error
    assert "timed out after 0.5s" in result.output
    assert time.monotonic() - started < 10


@pytest.mark.asyncio
async def test_cancellation_terminates_process(ctx, tmp_path):
    marker = tmp_path / "finished"
    task = asyncio.create_task(
        run_command({"command": f"sleep 2 && touch {marker}"}, ctx),
    )
    await asyncio.sleep(0.3)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    await asyncio.sleep(2.5)
    assert not marker.exists()

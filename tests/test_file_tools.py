"""Tests for the file tools (read, write, edit, list)."""
from __future__ import annotations

import base64

import pytest

from manu.engine.tools.base import ToolContext
from manu.engine.tools.file_ops import edit_file, list_directory, read_file, write_file


@pytest.fixture
def ctx(tmp_path):
    return ToolContext(cwd=str(tmp_path), ignore_patterns=["node_modules", "*.lock"])


@pytest.mark.asyncio
async def test_write_then_read(ctx, tmp_path):
    result = await write_file({"path": "src/new.txt", "content": "hello"}, ctx)
    assert not result.is_error
    assert result.text.startswith("Successfully wrote 5 characters to")
    assert (tmp_path / "src" / "new.txt").read_text() == "hello"

    read = await read_file({"path": "src/new.txt"}, ctx)
    assert read.text == "hello"


@pytest.mark.asyncio
async def test_read_base64(ctx, tmp_path):
    (tmp_path / "bin.dat").write_bytes(b"\x00\x01\xff")
    result = await read_file({"path": "bin.dat", "encoding": "base64"}, ctx)
    assert base64.b64decode(result.text) == b"\x00\x01\xff"


@pytest.mark.asyncio
async def test_read_missing_file_is_error(ctx):
    result = await read_file({"path": "nope.txt"}, ctx)
    assert result.is_error
    assert result.text.startswith("Failed to read file:")


@pytest.mark.asyncio
async def test_read_requires_path(ctx):
    with pytest.raises(ValueError):
        await read_file({}, ctx)


@pytest.mark.asyncio
async def test_edit_unique_match(ctx, tmp_path):
    target = tmp_path / "a.py"
    target.write_text("x = 1\ny = 2\n")

    result = await edit_file({"path": "a.py", "search": "y = 2", "replace": "y = 3"}, ctx)

    assert not result.is_error
    assert target.read_text() == "x = 1\ny = 3\n"


@pytest.mark.asyncio
async def test_edit_not_found(ctx, tmp_path):
    (tmp_path / "a.py").write_text("x = 1\n")
    result = await edit_file({"path": "a.py", "search": "zzz", "replace": ""}, ctx)
    assert result.is_error
    assert result.text.startswith("Search text not found in file")


@pytest.mark.asyncio
async def test_edit_ambiguous_match_leaves_file(ctx, tmp_path):
    target = tmp_path / "a.py"
    target.write_text("x\nx\n")
    result = await edit_file({"path": "a.py", "search": "x", "replace": "y"}, ctx)
    assert result.is_error
    assert "found 2 times" in result.text
    assert target.read_text() == "x\nx\n"


@pytest.mark.asyncio
async def test_list_directory(ctx, tmp_path):
    (tmp_path / "pkg").mkdir()
    (tmp_path / "pkg" / "mod.py").write_text("")
    (tmp_path / "README.md").write_text("")
    (tmp_path / "node_modules").mkdir()
    (tmp_path / "poetry.lock").write_text("")
    (tmp_path / ".hidden").write_text("")

    flat = await list_directory({"path": "."}, ctx)
    assert flat.text.splitlines() == ["pkg/", "README.md"]

    deep = await list_directory({"path": ".", "recursive": True}, ctx)
    assert deep.text.splitlines() == ["pkg/", "  mod.py", "README.md"]


@pytest.mark.asyncio
async def test_list_empty_directory(ctx, tmp_path):
    (tmp_path / "empty").mkdir()
    result = await list_directory({"path": "empty"}, ctx)
    assert result.text == "(empty directory)"

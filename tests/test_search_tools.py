"""Tests for glob and content search tools."""
from __future__ import annotations

import pytest

from manu.engine.tools.base import ToolContext
from manu.engine.tools.search import glob_to_regex, search_content, search_files


@pytest.fixture
def project(tmp_path):
    (tmp_path / "src" / "pkg").mkdir(parents=True)
    (tmp_path / "src" / "main.py").write_text("import os\nprint('Hello')\n")
    (tmp_path / "src" / "pkg" / "util.py").write_text("def helper():\n    return 'hello'\n")
    (tmp_path / "notes.md").write_text("TODO: hello world\n")
    (tmp_path / "node_modules").mkdir()
    (tmp_path / "node_modules" / "dep.py").write_text("hello\n")
    return tmp_path


@pytest.fixture
def ctx(project):
    return ToolContext(cwd=str(project), ignore_patterns=["node_modules"])


def test_glob_to_regex():
    assert glob_to_regex("*.py").match("a/b/c.py")
    assert glob_to_regex("src/*.py").match("src/main.py")
    assert not glob_to_regex("src/*.py").match("src/pkg/util.py")
    assert glob_to_regex("src/**/*.py").match("src/pkg/util.py")
    assert glob_to_regex("src/**/*.py").match("src/main.py")
    assert not glob_to_regex("*.py").match("main.pyc")


@pytest.mark.asyncio
async def test_search_files(ctx):
    result = await search_files({"pattern": "*.py"}, ctx)
    assert result.text.splitlines() == [
        "Found 2 file(s):",
        "src/main.py",
        "src/pkg/util.py",
    ]


@pytest.mark.asyncio
async def test_search_files_no_match(ctx):
    result = await search_files({"pattern": "*.rs"}, ctx)
    assert result.text == "No files found matching the pattern."


@pytest.mark.asyncio
async def test_search_content_case_insensitive_by_default(ctx):
    result = await search_content({"query": "hello"}, ctx)
    lines = result.text.splitlines()
    assert lines[0] == "Found 3 match(es):"
    assert "notes.md:1: TODO: hello world" in lines
    assert "src/main.py:2: print('Hello')" in lines
    assert not any("node_modules" in line for line in lines)


@pytest.mark.asyncio
async def test_search_content_case_sensitive_and_file_pattern(ctx):
    result = await search_content(
        {"query": "Hello", "caseSensitive": True, "filePattern": "*.py"}, ctx,
    )
    assert result.text.splitlines()[1:] == ["src/main.py:2: print('Hello')"]


@pytest.mark.asyncio
async def test_search_content_invalid_regex_is_literal(ctx, project):
    (project / "weird.txt").write_text("call foo(\n")
    result = await search_content({"query": "foo("}, ctx)
    assert "weird.txt:1: call foo(" in result.text


@pytest.mark.asyncio
async def test_search_content_max_results(ctx):
    result = await search_content({"query": "hello", "maxResults": 1}, ctx)
    assert result.text.startswith("Found 1 match(es):")


@pytest.mark.asyncio
async def test_search_content_no_matches(ctx):
    result = await search_content({"query": "xyzzy"}, ctx)
    assert result.text == "No matches found."

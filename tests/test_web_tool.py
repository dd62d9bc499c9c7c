"""Tests for fetch_url against a local aiohttp server."""
from __future__ import annotations

import pytest
import pytest_asyncio
from aiohttp import test_utils, web

from manu.engine.tools.base import ToolContext
from manu.engine.tools.web import fetch_url, html_to_text


async def _html(request):
    return web.Response(
        text="<html><head><style>p{}</style></head><body><h1>Title</h1>"
             "<p>First &amp; second</p><script>alert(1)</script></body></html>",
        content_type="text/html",
    )


async def _json(request):
    return web.json_response({"b": 1, "a": [1, 2]})


async def _missing(request):
    raise web.HTTPNotFound()


@pytest_asyncio.fixture
async def server():
    app = web.Application()
    app.router.add_get("/page", _html)
    app.router.add_get("/data", _json)
    app.router.add_get("/missing", _missing)
    srv = test_utils.TestServer(app)
    await srv.start_server()
    yield srv
    await srv.close()


def test_html_to_text():
    text = html_to_text("<div>a</div><!-- c --><p>b&nbsp;c</p>")
    assert text == "a\nb c"


def test_html_to_text_keeps_attribute_markup_out():
    text = html_to_text('<p><a title="a>b" href="/x">link</a></p><noscript>js</noscript>')
    assert text == "link"


@pytest.mark.asyncio
async def test_rejects_non_http_scheme():
    result = await fetch_url({"url": "file:///etc/passwd"}, ToolContext())
    assert result.is_error
    assert result.text == "Only HTTP and HTTPS URLs are supported"


@pytest.mark.asyncio
async def test_html_reduced_to_text(server):
    result = await fetch_url({"url": str(server.make_url("/page"))}, ToolContext())
    assert not result.is_error
    assert "Title" in result.text
    assert "First & second" in result.text
    assert "alert" not in result.text


@pytest.mark.asyncio
async def test_json_pretty_printed(server):
    result = await fetch_url({"url": str(server.make_url("/data"))}, ToolContext())
    assert result.text.startswith("{\n")
    assert '"a": [' in result.text


@pytest.mark.asyncio
async def test_http_error(server):
    result = await fetch_url({"url": str(server.make_url("/missing"))}, ToolContext())
    assert result.is_error
    assert result.text.startswith("HTTP error: 404")


@pytest.mark.asyncio
async def test_truncation(server):
    result = await fetch_url(
        {"url": str(server.make_url("/data")), "maxLength": 5}, ToolContext(),
    )
    assert result.text.endswith("\n\n[Content truncated...]")
    assert len(result.text) == 5 + len("\n\n[Content truncated...]")

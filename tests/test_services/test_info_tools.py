"""Tests for the HTTP, output search and memory tools."""

from __future__ import annotations

import json

import httpx
import pytest

from agentruntime.infra.file_lock import FileLockCoordinator
from agentruntime.services.stores import MemoryStore, OutputBuffer
from agentruntime.services.tools.context import ToolContext
from agentruntime.services.tools.info_tools import (
    handle_http_request,
    handle_memory,
    handle_search_output,
    parse_headers,
)


def _ctx(tmp_path, handler=None) -> ToolContext:
    client = None
    if handler is not None:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ToolContext(
        session_id="s1", cwd=str(tmp_path), locks=FileLockCoordinator(), http_client=client,
    )


class TestParseHeaders:
    def test_pairs(self):
        assert parse_headers("Accept: text/plain, X-Url: http://a") == {
            "Accept": "text/plain",
            "X-Url": "http://a",
        }

    def test_ignores_malformed(self):
        assert parse_headers("novalue,") == {}


class TestHttpRequest:
    @pytest.mark.asyncio
    async def test_get(self, tmp_path):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"status": "ok"})

        result = await handle_http_request(_ctx(tmp_path, handler), {"url": "http://localhost:8000/health"})
        assert result.success
        assert result.output.startswith("✓ HTTP 200 OK")
        assert "URL: GET http://localhost:8000/health" in result.output
        assert '"status":"ok"' in result.output.replace(" ", "")

    @pytest.mark.asyncio
    async def test_post_sends_json_body(self, tmp_path):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["type"] = request.headers["content-type"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(201, text="created")

        result = await handle_http_request(_ctx(tmp_path, handler), {
            "url": "http://localhost/items", "method": "post", "body": '{"name": "x"}',
        })
        assert result.success
        assert seen == {"method": "POST", "type": "application/json", "body": {"name": "x"}}

    @pytest.mark.asyncio
    async def test_error_status_is_still_reported(self, tmp_path):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, text="boom")

        result = await handle_http_request(_ctx(tmp_path, handler), {"url": "http://localhost/"})
        assert result.success
        assert result.output.startswith("✗ HTTP 500")

    @pytest.mark.asyncio
    async def test_connect_error(self, tmp_path):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        result = await handle_http_request(_ctx(tmp_path, handler), {"url": "http://localhost:1/"})
        assert not result.success
        assert "Is the server running?" in result.error

    @pytest.mark.asyncio
    async def test_invalid_url(self, tmp_path):
        result = await handle_http_request(_ctx(tmp_path), {"url": "ftp://x"})
        assert result.error == "Invalid URL: ftp://x"

    @pytest.mark.asyncio
    async def test_long_body_truncated(self, tmp_path):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="y" * 5000)

        result = await handle_http_request(_ctx(tmp_path, handler), {"url": "http://localhost/"})
        assert "(truncated, 5000 total chars)" in result.output


class TestSearchOutput:
    @pytest.mark.asyncio
    async def test_finds_matches(self, tmp_path):
        ctx = _ctx(tmp_path)
        ctx.outputs.store("line 1\nline 2\nFAILED test_x\nline 4", "pytest")
        result = await handle_search_output(ctx, {"pattern": "failed", "context_lines": "1"})
        assert result.output.startswith("Found 1 matches for 'failed':")
        assert "(from 'pytest', line 3)" in result.output
        assert "line 2\nFAILED test_x\nline 4" in result.output

    @pytest.mark.asyncio
    async def test_no_matches(self, tmp_path):
        result = await handle_search_output(_ctx(tmp_path), {"pattern": "zzz"})
        assert result.output == "No matches found for 'zzz'"


class TestMemoryTool:
    @pytest.mark.asyncio
    async def test_save_recall_list_clear(self, tmp_path):
        ctx = _ctx(tmp_path)
        assert (await handle_memory(ctx, {"action": "save", "key": "port", "value": "8080"})).success
        assert (await handle_memory(ctx, {"action": "recall", "key": "port"})).output == "8080"
        assert (await handle_memory(ctx, {"action": "list"})).output == "Stored keys: port"
        await handle_memory(ctx, {"action": "clear"})
        assert (await handle_memory(ctx, {"action": "list"})).output == "No stored memories"

    @pytest.mark.asyncio
    async def test_recall_missing(self, tmp_path):
        result = await handle_memory(_ctx(tmp_path), {"action": "recall", "key": "x"})
        assert result.output == "No value stored for 'x'"

    @pytest.mark.asyncio
    async def test_unknown_action(self, tmp_path):
        result = await handle_memory(_ctx(tmp_path), {"action": "forget"})
        assert not result.success


class TestStores:
    def test_output_buffer_evicts_oldest(self):
        buffer = OutputBuffer(max_entries=2)
        buffer.store("a", "one")
        buffer.store("b", "two")
        buffer.store("c", "three")
        assert len(buffer) == 2
        assert buffer.get_full_output("one") is None
        assert buffer.get_full_output("three") == "c"

    def test_output_buffer_size_bound(self):
        buffer = OutputBuffer(max_total_size=10)
        buffer.store("x" * 8, "one")
        buffer.store("y" * 8, "two")
        assert len(buffer) == 1
        assert buffer.total_size == 8

    def test_output_buffer_ignores_empty(self):
        buffer = OutputBuffer()
        buffer.store("", "true")
        assert len(buffer) == 0

    def test_memory_store(self):
        store = MemoryStore()
        store.save("b", "2")
        store.save("a", "1")
        assert store.list() == ["a", "b"]
        assert store.recall("a") == "1"

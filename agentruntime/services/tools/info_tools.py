"""HTTP probing, output search and memory tool handlers."""

from __future__ import annotations

import logging

import httpx

from agentruntime.models.tool import ParameterType, ToolParameter, ToolResult, ToolSchema
from agentruntime.services.tools.args import optional_int, require
from agentruntime.services.tools.context import ToolContext
from agentruntime.services.tools.registry import AgentTool

logger = logging.getLogger(__name__)

MAX_BODY_CHARS = 2000
MAX_SEARCH_MATCHES = 20

_BODY_METHODS = ("POST", "PUT", "PATCH")


def parse_headers(raw: str) -> dict[str, str]:
    """Parse ``"k:v,k2:v2"`` into a header dict; values may contain colons."""
    headers = {}
    for pair in raw.split(","):
        key, sep, value = pair.partition(":")
        if sep and key.strip():
            headers[key.strip()] = value.strip()
    return headers


async def handle_http_request(ctx: ToolContext, arguments: dict) -> ToolResult:
    url = require(arguments, "url")
    if not url.startswith(("http://", "https://")):
        return ToolResult.fail(f"Invalid URL: {url}")
    method = (arguments.get("method") or "GET").upper()
    headers = parse_headers(arguments.get("headers", ""))
    body = arguments.get("body") or None
    content = None
    if body and method in _BODY_METHODS:
        headers.setdefault("Content-Type", "application/json")
        content = body.encode("utf-8")

    client = ctx.http_client or httpx.AsyncClient(timeout=ctx.http_timeout)
    try:
        response = await client.request(method, url, headers=headers, content=content)
    except httpx.TimeoutException:
        return ToolResult.fail(f"Request timed out after {ctx.http_timeout:g}s")
    except httpx.ConnectError:
        return ToolResult.fail("Cannot connect to host. Is the server running?")
    except (httpx.ReadError, httpx.RemoteProtocolError):
        return ToolResult.fail("Network connection lost")
    except httpx.HTTPError as e:
        return ToolResult.fail(f"Request failed: {e}")
    finally:
        if ctx.http_client is None:
            await client.aclose()

    mark = "✓" if response.is_success else "✗"
    lines = [
        f"{mark} HTTP {response.status_code} {response.reason_phrase}",
        f"URL: {method} {url}",
    ]
    if content_type := response.headers.get("content-type"):
        lines.append(f"Content-Type: {content_type}")
    output = "\n".join(lines)

    try:
        text = response.content.decode("utf-8")
    except UnicodeDecodeError:
        return ToolResult.ok(f"{output}\n\nResponse: {len(response.content)} bytes (non-text)")
    output += f"\n\nResponse body:\n{text[:MAX_BODY_CHARS]}"
    if len(text) > MAX_BODY_CHARS:
        output += f"\n... (truncated, {len(text)} total chars)"
    return ToolResult.ok(output)


async def handle_search_output(ctx: ToolContext, arguments: dict) -> ToolResult:
    pattern = require(arguments, "pattern")
    context_lines = optional_int(arguments, "context_lines")
    matches = ctx.outputs.search(pattern, 3 if context_lines is None else context_lines)
    if not matches:
        return ToolResult.ok(f"No matches found for '{pattern}'")

    lines = [f"Found {len(matches)} matches for '{pattern}':\n"]
    for index, match in enumerate(matches[:MAX_SEARCH_MATCHES], start=1):
        lines.append(f"--- Match {index} (from '{match.command}', line {match.line_number}) ---")
        lines.append(match.context)
        lines.append("")
    if len(matches) > MAX_SEARCH_MATCHES:
        lines.append(f"... and {len(matches) - MAX_SEARCH_MATCHES} more matches")
    return ToolResult.ok("\n".join(lines))


async def handle_memory(ctx: ToolContext, arguments: dict) -> ToolResult:
    action = require(arguments, "action", "Use save/recall/list/clear").lower()
    if action == "save":
        key = require(arguments, "key")
        if "value" not in arguments:
            raise ValueError("Missing required argument: value")
        ctx.memory.save(key, arguments["value"])
        return ToolResult.ok(f"Saved '{key}'")
    if action == "recall":
        key = require(arguments, "key")
        value = ctx.memory.recall(key)
        if value is None:
            return ToolResult.ok(f"No value stored for '{key}'")
        return ToolResult.ok(value)
    if action == "list":
        keys = ctx.memory.list()
        if not keys:
            return ToolResult.ok("No stored memories")
        return ToolResult.ok(f"Stored keys: {', '.join(keys)}")
    if action == "clear":
        ctx.memory.clear()
        return ToolResult.ok("Cleared all memories")
    return ToolResult.fail(f"Unknown action: {action}. Use save/recall/list/clear")


TOOLS = [
    AgentTool(
        ToolSchema("http_request", "Make an HTTP request to test APIs", (
            ToolParameter("url", description="URL to request"),
            ToolParameter(
                "method", description="HTTP method", required=False,
                enum_values=("GET", "POST", "PUT", "DELETE", "PATCH"),
            ),
            ToolParameter(
                "body", description="Request body (JSON string for POST/PUT/PATCH)",
                required=False,
            ),
            ToolParameter(
                "headers", description="Headers as comma-separated key:value pairs",
                required=False,
            ),
        )),
        handle_http_request,
    ),
    AgentTool(
        ToolSchema("search_output", "Search through previous command outputs", (
            ToolParameter("pattern", description="Search pattern to find in previous outputs"),
            ToolParameter(
                "context_lines", ParameterType.INTEGER,
                "Number of context lines around matches (default: 3)", required=False,
            ),
        )),
        handle_search_output,
    ),
    AgentTool(
        ToolSchema("memory", "Store and recall notes during task execution", (
            ToolParameter(
                "action", description="Action to perform",
                enum_values=("save", "recall", "list", "clear"),
            ),
            ToolParameter("key", description="Key for save/recall operations", required=False),
            ToolParameter("value", description="Value to save (required for save)", required=False),
        )),
        handle_memory,
    ),
]

"""MCP stdio front end -- exposes every enabled tool to an AI client.

Calls are routed through ToolProxy.execute_proxy_tool, so local and
discovered tools look the same to the client.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool as McpTool

from tool_proxy.api import ToolProxy, create_proxy
from tool_proxy.config import ProxyConfig
from tool_proxy.models import Tool

logger = logging.getLogger(__name__)

_UNSAFE_NAME = re.compile(r"[^A-Za-z0-9_-]")


def exposed_names(tools: list[Tool]) -> dict[str, str]:
	"""Map client-visible tool names to tool ids.

	A tool keeps its own name when no other enabled tool shares it; clashing
	names fall back to the tool id with unsafe characters replaced.
	"""
	enabled = [t for t in tools if t.enabled]
	counts: dict[str, int] = {}
	for tool in enabled:
		counts[tool.name] = counts.get(tool.name, 0) + 1
	names: dict[str, str] = {}
	for tool in enabled:
		if counts[tool.name] == 1 and not _UNSAFE_NAME.search(tool.name):
			names[tool.name] = tool.id
		else:
			names[_UNSAFE_NAME.sub("__", tool.id)] = tool.id
	return names


def _input_schema(tool: Tool) -> dict[str, Any]:
	schema = dict(tool.input_schema)
	schema.setdefault("type", "object")
	schema.setdefault("properties", {})
	return schema


async def list_exposed_tools(proxy: ToolProxy) -> list[McpTool]:
	snapshot = await proxy.state.snapshot()
	by_id = {t.id: t for t in snapshot.tools}
	return [
		McpTool(
			name=name,
			description=by_id[tool_id].description or f"{tool_id} via tool-proxy",
			inputSchema=_input_schema(by_id[tool_id]),
		)
		for name, tool_id in sorted(exposed_names(snapshot.tools).items())
	]


def _render(result: Any) -> list[TextContent]:
	# Downstream results are relayed as CallToolResult payloads
	if isinstance(result, dict) and isinstance(result.get("content"), list):
		blocks = [
			TextContent(type="text", text=block["text"])
			for block in result["content"]
			if isinstance(block, dict) and block.get("type") == "text"
		]
		if blocks:
			return blocks
	return [TextContent(type="text", text=json.dumps(result, indent=2))]


async def dispatch(proxy: ToolProxy, name: str, arguments: dict[str, Any] | None) -> list[TextContent]:
	snapshot = await proxy.state.snapshot()
	tool_id = exposed_names(snapshot.tools).get(name, name)
	outcome = await proxy.execute_proxy_tool(tool_id, arguments or {})
	if outcome.success:
		return _render(outcome.result)
	error = outcome.error.model_dump(mode="json") if outcome.error is not None else {}
	return [TextContent(type="text", text=json.dumps({"error": error}))]


def build_server(proxy: ToolProxy) -> Server:
	server = Server("tool-proxy")

	@server.list_tools()
	async def list_tools() -> list[McpTool]:
		return await list_exposed_tools(proxy)

	@server.call_tool()
	async def call_tool(name: str, arguments: dict) -> list[TextContent]:
		return await dispatch(proxy, name, arguments)

	return server


def run_mcp_server(config: ProxyConfig) -> None:
	"""Entry point for `tool-proxy mcp`."""

	async def _run() -> None:
		proxy = await create_proxy(config)
		server = build_server(proxy)
		try:
			async with stdio_server() as (read_stream, write_stream):
				await server.run(read_stream, write_stream, server.create_initialization_options())
		finally:
			await proxy.aclose()

	asyncio.run(_run())

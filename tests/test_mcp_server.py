"""Tests for the MCP stdio front end (handlers called directly, no transport)."""

from __future__ import annotations

import json
from pathlib import Path

from tool_proxy.api import ToolProxy
from tool_proxy.mcp_server import build_server, dispatch, exposed_names, list_exposed_tools

from conftest import ECHO_SCRIPT, FakeDownstream, make_remote_tool, make_tool, write_script


class TestExposedNames:
	def test_unique_names_kept(self) -> None:
		tools = [make_tool(id="tool_a", name="echo"), make_remote_tool(name="search")]
		assert exposed_names(tools) == {"echo": "tool_a", "search": "srv:search"}

	def test_clashing_names_use_ids(self) -> None:
		tools = [make_tool(id="tool_a", name="search"), make_remote_tool(name="search")]
		assert exposed_names(tools) == {"tool_a": "tool_a", "srv__search": "srv:search"}

	def test_disabled_and_unsafe(self) -> None:
		tools = [make_tool(id="tool_a", name="off", enabled=False), make_tool(id="tool_b", name="has space")]
		assert exposed_names(tools) == {"tool_b": "tool_b"}


class TestHandlers:
	async def test_list_tools(self, proxy: ToolProxy, tmp_path: Path) -> None:
		script = write_script(tmp_path, "echo.py", ECHO_SCRIPT)
		await proxy.register_tool("python", script, "Echo things", input_schema={"required": ["text"]})
		tools = await list_exposed_tools(proxy)
		assert [t.name for t in tools] == ["echo"]
		assert tools[0].description == "Echo things"
		assert tools[0].inputSchema == {"required": ["text"], "type": "object", "properties": {}}

	async def test_call_local_tool(self, proxy: ToolProxy, tmp_path: Path) -> None:
		script = write_script(tmp_path, "echo.py", ECHO_SCRIPT)
		await proxy.register_tool("python", script)
		[content] = await dispatch(proxy, "echo", {"text": "hi"})
		assert json.loads(content.text) == {"text": "hi"}

	async def test_call_remote_tool_relays_text(self, proxy: ToolProxy, downstream: FakeDownstream) -> None:
		await proxy.register_server("srv", command="mcp-server")
		downstream.catalogs["srv"] = [{"name": "search"}]
		await proxy.discover_tools("srv")
		downstream.results[("srv", "search")] = {
			"content": [{"type": "text", "text": "first"}, {"type": "text", "text": "second"}],
			"isError": False,
		}
		content = await dispatch(proxy, "search", {})
		assert [c.text for c in content] == ["first", "second"]

	async def test_error_reported_as_text(self, proxy: ToolProxy) -> None:
		[content] = await dispatch(proxy, "missing", None)
		body = json.loads(content.text)
		assert body["error"]["kind"] == "NotFound"

	async def test_build_server(self, proxy: ToolProxy) -> None:
		server = build_server(proxy)
		assert server.name == "tool-proxy"

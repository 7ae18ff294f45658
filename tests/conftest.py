"""Shared pytest fixtures and factory functions for tool-proxy tests."""

from __future__ import annotations

import sys
import textwrap
from pathlib import Path
from typing import Any

import pytest

from tool_proxy.api import ToolProxy, create_proxy
from tool_proxy.config import ProxyConfig
from tool_proxy.errors import RuntimeFailure
from tool_proxy.models import Server, Tool, ToolKind, remote_origin, remote_tool_id
from tool_proxy.state import ProxyState
from tool_proxy.store import ToolStore

ECHO_SCRIPT = """
import json, sys
params = json.load(sys.stdin)
print("echo tool starting")
print(json.dumps({"result": params}))
"""


class FakeDownstream:
	"""Stands in for McpDownstreamClient; catalogs and results set per server."""

	def __init__(self) -> None:
		self.catalogs: dict[str, Any] = {}
		self.results: dict[tuple[str, str], Any] = {}
		self.list_calls: list[str] = []
		self.tool_calls: list[tuple[str, str, dict[str, Any]]] = []

	async def list_tools(self, server: Server) -> list[Any]:
		self.list_calls.append(server.id)
		value = self.catalogs.get(server.id, [])
		if isinstance(value, BaseException):
			raise value
		return value

	async def call_tool(
		self, server: Server, name: str, arguments: dict[str, Any], timeout: float | None = None,
	) -> dict[str, Any]:
		self.tool_calls.append((server.id, name, arguments))
		value = self.results.get((server.id, name))
		if isinstance(value, BaseException):
			raise value
		if value is None:
			raise RuntimeFailure(f"no canned result for {name}")
		return value


@pytest.fixture()
def config() -> ProxyConfig:
	"""In-memory ProxyConfig whose python runtime is the test interpreter."""
	cfg = ProxyConfig()
	cfg.storage.db_path = ":memory:"
	cfg.runtimes.python_executable = sys.executable
	cfg.execution.default_timeout = 15.0
	return cfg


@pytest.fixture()
def store() -> ToolStore:
	s = ToolStore(":memory:")
	yield s
	s.close()


@pytest.fixture()
async def state(config: ProxyConfig, store: ToolStore) -> ProxyState:
	s = ProxyState(config, store)
	await s.load()
	return s


@pytest.fixture()
def downstream() -> FakeDownstream:
	return FakeDownstream()


@pytest.fixture()
async def proxy(config: ProxyConfig, downstream: FakeDownstream) -> ToolProxy:
	p = await create_proxy(config, store=ToolStore(":memory:"), client=downstream)  # type: ignore[arg-type]
	yield p
	await p.aclose()


def write_script(directory: Path, name: str, body: str) -> str:
	"""Write a python tool script and return its path."""
	path = directory / name
	path.write_text(textwrap.dedent(body))
	return str(path)


def make_tool(**overrides: Any) -> Tool:
	"""Create a local Tool with sensible defaults, overridable via kwargs."""
	defaults: dict[str, Any] = {
		"id": "tool_000000000001",
		"name": "echo",
		"description": "Echo parameters",
		"kind": ToolKind.PYTHON,
		"entry_point": "/opt/tools/echo.py",
	}
	defaults.update(overrides)
	return Tool(**defaults)


def make_remote_tool(server_id: str = "srv", name: str = "search", **overrides: Any) -> Tool:
	"""Create a discovered Tool owned by server_id."""
	defaults: dict[str, Any] = {
		"id": remote_tool_id(server_id, name),
		"name": name,
		"description": f"{name} on {server_id}",
		"origin": remote_origin(server_id),
	}
	defaults.update(overrides)
	return Tool(**defaults)


def make_server(**overrides: Any) -> Server:
	"""Create a stdio Server with sensible defaults, overridable via kwargs."""
	defaults: dict[str, Any] = {
		"id": "srv",
		"transport": "stdio",
		"command": "mcp-server",
		"args": ["--stdio"],
	}
	defaults.update(overrides)
	return Server(**defaults)

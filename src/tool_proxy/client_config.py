"""Derived AI-assistant client configuration.

Produces a Claude-desktop style `mcpServers` descriptor from the current
registry and discovery state. Always computed from a snapshot, never cached.
"""

from __future__ import annotations

from typing import Any

from tool_proxy.config import ProxyConfig
from tool_proxy.models import Server, Tool, ToolKind


def auth_env(authentication: Any) -> dict[str, str]:
	"""Extract the `env` mapping from an authentication payload.

	Values that are objects carrying a `description` are unfilled templates
	and are skipped.
	"""
	if not isinstance(authentication, dict):
		return {}
	env = authentication.get("env")
	if not isinstance(env, dict):
		return {}
	result: dict[str, str] = {}
	for key, value in env.items():
		if isinstance(value, dict) and "description" in value:
			continue
		if isinstance(value, bool):
			result[str(key)] = "true" if value else "false"
		elif isinstance(value, (str, int, float)):
			result[str(key)] = str(value)
	return result


def local_invocation(tool: Tool, config: ProxyConfig) -> dict[str, Any]:
	"""Command/args a client would use to launch a local tool directly."""
	if tool.kind == ToolKind.NODE:
		entry: dict[str, Any] = {
			"command": config.runtimes.node_executable,
			"args": [tool.entry_point],
		}
	elif tool.kind == ToolKind.PYTHON:
		entry = {
			"command": config.runtimes.python_executable,
			"args": [tool.entry_point],
		}
	elif tool.kind == ToolKind.DOCKER:
		entry = {
			"command": config.container.docker_executable,
			"args": ["run", "-i", "--rm", tool.entry_point],
		}
	else:
		raise ValueError(f"Tool {tool.id} has no local runtime")
	env = auth_env(tool.authentication)
	if env:
		entry["env"] = env
	return entry


def server_invocation(server: Server) -> dict[str, Any]:
	if server.transport == "http":
		return {"url": server.url}
	entry: dict[str, Any] = {"command": server.command, "args": list(server.args)}
	if server.env:
		entry["env"] = dict(server.env)
	return entry


def build_derived_config(
	servers: list[Server],
	local_tools: list[Tool],
	catalogs: dict[str, list[Tool]],
	config: ProxyConfig,
) -> dict[str, Any]:
	"""Build the client descriptor for every enabled tool.

	Each enabled local tool gets its own `mcpServers` entry keyed by tool id.
	Each downstream server with at least one enabled tool gets an entry keyed
	by server id. `tools` maps every enabled tool id to the entry serving it.
	"""
	mcp_servers: dict[str, Any] = {}
	tools: list[dict[str, str]] = []

	for tool in local_tools:
		if not tool.enabled:
			continue
		mcp_servers[tool.id] = local_invocation(tool, config)
		tools.append({"id": tool.id, "server": tool.id})

	servers_by_id = {s.id: s for s in servers}
	for server_id, catalog in catalogs.items():
		enabled = [t for t in catalog if t.enabled]
		server = servers_by_id.get(server_id)
		if not enabled or server is None:
			continue
		mcp_servers[server_id] = server_invocation(server)
		for tool in enabled:
			tools.append({"id": tool.id, "server": server_id})

	return {"mcpServers": mcp_servers, "tools": tools}

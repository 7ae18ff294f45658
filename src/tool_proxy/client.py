"""HTTP client for a running `tool-proxy serve` instance, using httpx.

Mirrors the ToolProxy method names so the CLI can drive either one.
"""

from __future__ import annotations

from typing import Any

import httpx

from tool_proxy.api import OperationResult
from tool_proxy.errors import ErrorKind


class ToolProxyClient:
	"""Remote ToolProxy over the HTTP front end."""

	def __init__(self, base_url: str, timeout: float = 60.0, transport: httpx.AsyncBaseTransport | None = None) -> None:
		self._client = httpx.AsyncClient(base_url=base_url.rstrip("/"), timeout=timeout, transport=transport)

	async def _call(self, method: str, path: str, body: dict[str, Any] | None = None) -> OperationResult:
		try:
			resp = await self._client.request(method, path, json=body)
		except httpx.HTTPError as exc:
			return OperationResult.failure(ErrorKind.SERVER_UNREACHABLE, f"{type(exc).__name__}: {exc}")
		try:
			return OperationResult.model_validate(resp.json())
		except ValueError:
			return OperationResult.failure(
				ErrorKind.SERVER_PROTOCOL_ERROR,
				f"Unexpected response ({resp.status_code}): {resp.text[:200]}",
			)

	async def register_tool(
		self,
		kind: str,
		entry_point: str,
		description: str = "",
		authentication: Any = None,
		name: str | None = None,
		input_schema: dict[str, Any] | None = None,
		timeout: float | None = None,
	) -> OperationResult:
		return await self._call("POST", "/tools", {
			"kind": kind, "entry_point": entry_point, "description": description,
			"authentication": authentication, "name": name,
			"input_schema": input_schema, "timeout": timeout,
		})

	async def list_tools(self) -> OperationResult:
		return await self._call("GET", "/tools")

	async def update_tool_status(self, tool_id: str, enabled: bool) -> OperationResult:
		return await self._call("PATCH", f"/tools/{tool_id}", {"enabled": enabled})

	async def update_tool_config(self, tool_id: str, env: dict[str, str]) -> OperationResult:
		return await self._call("PUT", f"/tools/{tool_id}/config", {"env": env})

	async def uninstall_tool(self, tool_id: str) -> OperationResult:
		return await self._call("DELETE", f"/tools/{tool_id}")

	async def execute_tool(self, tool_id: str, parameters: dict[str, Any] | None = None) -> OperationResult:
		return await self._call("POST", f"/tools/{tool_id}/execute", {"parameters": parameters or {}})

	async def execute_proxy_tool(self, tool_id: str, parameters: dict[str, Any] | None = None) -> OperationResult:
		return await self._call("POST", "/proxy/execute", {"tool_id": tool_id, "parameters": parameters or {}})

	async def list_all_server_tools(self) -> OperationResult:
		return await self._call("GET", "/all-tools")

	async def register_server(
		self,
		server_id: str,
		transport: str = "stdio",
		command: str = "",
		args: list[str] | None = None,
		env: dict[str, str] | None = None,
		url: str = "",
	) -> OperationResult:
		return await self._call("POST", "/servers", {
			"id": server_id, "transport": transport, "command": command,
			"args": args or [], "env": env or {}, "url": url,
		})

	async def remove_server(self, server_id: str) -> OperationResult:
		return await self._call("DELETE", f"/servers/{server_id}")

	async def list_servers(self) -> OperationResult:
		return await self._call("GET", "/servers")

	async def discover_tools(self, server_id: str) -> OperationResult:
		return await self._call("POST", f"/servers/{server_id}/discover")

	async def discover_all_servers(self) -> OperationResult:
		return await self._call("POST", "/discover")

	async def get_derived_config(self) -> OperationResult:
		return await self._call("GET", "/config/derived")

	async def get_all_state(self) -> OperationResult:
		return await self._call("GET", "/state")

	async def aclose(self) -> None:
		await self._client.aclose()

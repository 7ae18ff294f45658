"""Downstream MCP client -- scoped sessions against external tool servers.

Each request opens its own session (initialize, one request, close), so a
hung or crashed server never holds shared state. stdio servers are spawned
with the restricted tool environment; http servers use streamable HTTP.
"""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, TypeVar

import httpx
from mcp import ClientSession, StdioServerParameters, types
from mcp.client.stdio import stdio_client
from mcp.client.streamable_http import streamablehttp_client
from mcp.shared.exceptions import McpError
from pydantic import BaseModel, ConfigDict, ValidationError

from tool_proxy.config import ProxyConfig, tool_subprocess_env
from tool_proxy.errors import (
	ExecutionTimeout,
	RuntimeFailure,
	ServerProtocolError,
	ServerUnreachable,
	ToolProxyError,
)
from tool_proxy.models import Server

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RawToolList(BaseModel):
	"""tools/list result with entries left unvalidated.

	The SDK's own ListToolsResult rejects the whole catalog when a single
	entry is malformed; discovery validates entries one by one instead.
	"""

	model_config = ConfigDict(extra="allow")

	tools: list[Any] = []


def _leaves(group: BaseExceptionGroup) -> list[BaseException]:
	found: list[BaseException] = []
	for exc in group.exceptions:
		if isinstance(exc, BaseExceptionGroup):
			found.extend(_leaves(exc))
		else:
			found.append(exc)
	return found


def classify_error(exc: BaseException, server_id: str, operation: str) -> ToolProxyError:
	"""Map a transport or protocol failure to the proxy error taxonomy."""
	if isinstance(exc, BaseExceptionGroup):
		leaves = _leaves(exc)
		for leaf in leaves:
			if isinstance(leaf, ToolProxyError):
				return leaf
		for leaf in leaves:
			if isinstance(leaf, (McpError, ValidationError, json.JSONDecodeError)):
				return classify_error(leaf, server_id, operation)
		if leaves:
			return classify_error(leaves[0], server_id, operation)
	if isinstance(exc, ToolProxyError):
		return exc
	if isinstance(exc, McpError):
		return ServerProtocolError(f"Server {server_id} rejected {operation}: {exc}")
	if isinstance(exc, (ValidationError, json.JSONDecodeError)):
		return ServerProtocolError(f"Server {server_id} sent a malformed {operation} response: {exc}")
	if isinstance(exc, httpx.HTTPError):
		return ServerUnreachable(f"Server {server_id} HTTP error during {operation}: {exc}")
	return ServerUnreachable(f"Server {server_id} unreachable during {operation}: {type(exc).__name__}: {exc}")


def _content_text(result: types.CallToolResult) -> str:
	parts = [block.text for block in result.content if isinstance(block, types.TextContent)]
	return "\n".join(parts)


class McpDownstreamClient:
	"""tools/list and tools/call against one downstream server at a time."""

	def __init__(self, config: ProxyConfig) -> None:
		self._config = config

	@asynccontextmanager
	async def _session(self, server: Server) -> AsyncIterator[ClientSession]:
		if server.transport == "http":
			async with streamablehttp_client(server.url) as (read, write, _):
				async with ClientSession(read, write) as session:
					await session.initialize()
					yield session
		else:
			params = StdioServerParameters(
				command=server.command,
				args=list(server.args),
				env=tool_subprocess_env(self._config.security, server.env),
			)
			async with stdio_client(params) as (read, write):
				async with ClientSession(read, write) as session:
					await session.initialize()
					yield session

	async def _bounded(
		self,
		server: Server,
		operation: str,
		work: Awaitable[T],
		timeout: float,
		on_timeout: type[ToolProxyError],
	) -> T:
		try:
			return await asyncio.wait_for(work, timeout=timeout)
		except asyncio.TimeoutError:
			raise on_timeout(f"Server {server.id} did not answer {operation} within {timeout}s") from None
		except ToolProxyError:
			raise
		except Exception as exc:
			err = classify_error(exc, server.id, operation)
			logger.warning("%s on %s failed: %s", operation, server.id, err.message)
			raise err from exc

	async def list_tools(self, server: Server) -> list[Any]:
		"""Return the raw `tools` entries of the server's catalog."""

		async def _list() -> list[Any]:
			async with self._session(server) as session:
				result = await session.send_request(
					types.ClientRequest(types.ListToolsRequest(method="tools/list")),
					RawToolList,
				)
			return result.tools

		return await self._bounded(
			server, "tools/list", _list(), self._config.discovery.list_timeout, ServerUnreachable,
		)

	async def call_tool(
		self,
		server: Server,
		name: str,
		arguments: dict[str, Any],
		timeout: float | None = None,
	) -> dict[str, Any]:
		"""Forward one tools/call and relay the result payload.

		A result flagged isError is raised as RuntimeFailure.
		"""

		async def _call() -> types.CallToolResult:
			async with self._session(server) as session:
				result = await session.call_tool(name, arguments)
			return result

		result = await self._bounded(
			server,
			"tools/call",
			_call(),
			timeout if timeout is not None else self._config.discovery.call_timeout,
			ExecutionTimeout,
		)
		if result.isError:
			raise RuntimeFailure(_content_text(result) or f"Tool {name} on {server.id} reported an error")
		return result.model_dump(mode="json", by_alias=True, exclude_none=True)

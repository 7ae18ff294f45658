"""Discovery engine -- refresh cached catalogs of downstream MCP servers."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from tool_proxy.downstream import McpDownstreamClient
from tool_proxy.errors import ToolProxyError
from tool_proxy.models import DiscoveredToolSchema, Server, Tool, remote_origin, remote_tool_id
from tool_proxy.state import ProxyState
from tool_proxy.tracing import ProxyTracer

logger = logging.getLogger(__name__)


@dataclass
class DiscoveryOutcome:
	server_id: str
	success: bool
	tool_count: int = 0
	error_kind: str = ""
	error: str = ""


def normalize_catalog(server_id: str, entries: list[Any]) -> list[Tool]:
	"""Validate raw tools/list entries one by one.

	Malformed entries are logged and dropped; duplicate names keep the first.
	"""
	tools: list[Tool] = []
	seen: set[str] = set()
	for index, entry in enumerate(entries):
		try:
			schema = DiscoveredToolSchema.model_validate(entry)
		except ValidationError as exc:
			logger.warning(
				"Dropping malformed tool #%d from %s: %s",
				index, server_id, exc.errors()[0]["msg"] if exc.errors() else exc,
			)
			continue
		if schema.name in seen:
			logger.warning("Dropping duplicate tool %s from %s", schema.name, server_id)
			continue
		seen.add(schema.name)
		tools.append(Tool(
			id=remote_tool_id(server_id, schema.name),
			name=schema.name,
			description=schema.description or "",
			origin=remote_origin(server_id),
			input_schema=schema.input_schema,
		))
	return tools


class DiscoveryEngine:
	"""Queries downstream servers and swaps their catalogs into the state."""

	def __init__(
		self,
		state: ProxyState,
		client: McpDownstreamClient,
		tracer: ProxyTracer | None = None,
	) -> None:
		self._state = state
		self._client = client
		self._tracer = tracer
		self._locks: dict[str, asyncio.Lock] = {}

	def _lock_for(self, server_id: str) -> asyncio.Lock:
		lock = self._locks.get(server_id)
		if lock is None:
			lock = asyncio.Lock()
			self._locks[server_id] = lock
		return lock

	async def discover(self, server_id: str) -> list[Tool]:
		"""Refresh one server's catalog.

		Raises NotFound, ServerUnreachable or ServerProtocolError. On failure
		the previously cached catalog is left as it was.
		"""
		async with self._lock_for(server_id):
			server = await self._state.get_server(server_id)
			if self._tracer is None:
				return await self._discover(server_id, server)
			with self._tracer.start_discovery_span(server_id) as span:
				try:
					tools = await self._discover(server_id, server)
				except ToolProxyError as exc:
					span.set_attribute("error.kind", exc.kind.value)
					raise
				span.set_attribute("tool.count", len(tools))
				return tools

	async def _discover(self, server_id: str, server: Server) -> list[Tool]:
		# No state lock is held during the network round trip
		entries = await self._client.list_tools(server)
		tools = normalize_catalog(server_id, entries)
		stored = await self._state.replace_catalog(server_id, tools)
		logger.info("Discovered %d tools on %s", len(stored), server_id)
		return stored

	async def discover_all(self) -> list[DiscoveryOutcome]:
		"""Discover every known server concurrently."""
		servers = await self._state.list_servers()

		async def _one(server_id: str) -> DiscoveryOutcome:
			try:
				tools = await self.discover(server_id)
			except ToolProxyError as exc:
				return DiscoveryOutcome(
					server_id=server_id, success=False,
					error_kind=exc.kind.value, error=exc.message,
				)
			return DiscoveryOutcome(server_id=server_id, success=True, tool_count=len(tools))

		return list(await asyncio.gather(*(_one(s.id) for s in servers)))

	async def list_all(self) -> list[Tool]:
		"""Local and discovered tools taken from one snapshot."""
		snapshot = await self._state.snapshot()
		return snapshot.tools

	def forget(self, server_id: str) -> None:
		self._locks.pop(server_id, None)

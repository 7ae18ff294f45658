"""State aggregator -- the single lock-protected owner of proxy state.

Registry entries, downstream servers and their cached catalogs live here
and nowhere else. Every read goes through the shared side of one
ReadWriteLock, every mutation through the exclusive side. Callers that need
more than one of {servers, tools, derived config} must use snapshot() so the
parts come from the same critical section.
"""

from __future__ import annotations

import copy
import logging

from tool_proxy.client_config import build_derived_config
from tool_proxy.config import ProxyConfig, server_spec_error
from tool_proxy.errors import InvalidSpec, NotFound
from tool_proxy.models import AggregateSnapshot, Route, Server, Tool, _now_iso
from tool_proxy.rwlock import ReadWriteLock
from tool_proxy.store import ToolStore

logger = logging.getLogger(__name__)


class ProxyState:
	"""Aggregator over registry, discovery cache and derived config."""

	def __init__(self, config: ProxyConfig, store: ToolStore) -> None:
		self._config = config
		self._store = store
		self._lock = ReadWriteLock()
		self._tools: dict[str, Tool] = {}
		self._servers: dict[str, Server] = {}
		self._catalogs: dict[str, list[Tool]] = {}
		self._remote_index: dict[str, str] = {}  # remote tool id -> server id

	@property
	def lock(self) -> ReadWriteLock:
		return self._lock

	async def load(self) -> None:
		"""Populate memory from the store and the configured servers."""
		async with self._lock.write():
			for sc in self._config.servers:
				problem = server_spec_error(sc.id, sc.transport, sc.command, sc.url)
				if problem:
					logger.warning("Skipping configured server: %s", problem)
					continue
				self._store.upsert_server(Server(
					id=sc.id,
					transport=sc.transport,
					command=sc.command,
					args=list(sc.args),
					env=dict(sc.env),
					url=sc.url,
				))
			self._tools = {t.id: t for t in self._store.list_tools()}
			self._servers = {s.id: s for s in self._store.list_servers()}
			self._catalogs = {
				sid: tools for sid, tools in self._store.load_catalogs().items()
				if sid in self._servers
			}
			self._rebuild_remote_index()
		logger.info(
			"Loaded %d local tools, %d servers, %d cached remote tools",
			len(self._tools), len(self._servers), len(self._remote_index),
		)

	# -- reads --

	async def snapshot(self) -> AggregateSnapshot:
		async with self._lock.read():
			servers = [copy.deepcopy(s) for s in self._servers.values()]
			local = [copy.deepcopy(t) for t in self._tools.values()]
			catalogs = {sid: [copy.deepcopy(t) for t in tools] for sid, tools in self._catalogs.items()}
			derived = build_derived_config(servers, local, catalogs, self._config)
		remote = [t for tools in catalogs.values() for t in tools]
		return AggregateSnapshot(servers=servers, tools=local + remote, derived_config=derived)

	async def list_local_tools(self) -> list[Tool]:
		async with self._lock.read():
			return [copy.deepcopy(t) for t in self._tools.values()]

	async def list_discovered_tools(self) -> list[Tool]:
		async with self._lock.read():
			return [copy.deepcopy(t) for tools in self._catalogs.values() for t in tools]

	async def list_servers(self) -> list[Server]:
		async with self._lock.read():
			return [copy.deepcopy(s) for s in self._servers.values()]

	async def get_server(self, server_id: str) -> Server:
		async with self._lock.read():
			server = self._servers.get(server_id)
			if server is None:
				raise NotFound(f"Server '{server_id}' not found")
			return copy.deepcopy(server)

	async def resolve(self, tool_id: str) -> Route:
		"""Capture the route for tool_id from the current state."""
		async with self._lock.read():
			return self._resolve_locked(tool_id)

	async def resolve_name(self, name: str) -> Route:
		"""Resolve a tool by its bare name; the name must be unambiguous."""
		async with self._lock.read():
			matches = [t.id for t in self._tools.values() if t.name == name]
			matches += [t.id for tools in self._catalogs.values() for t in tools if t.name == name]
			if not matches:
				raise NotFound(f"Tool '{name}' not found")
			if len(matches) > 1:
				raise NotFound(f"Tool name '{name}' is ambiguous: {', '.join(sorted(matches))}")
			return self._resolve_locked(matches[0])

	def _resolve_locked(self, tool_id: str) -> Route:
		tool = self._tools.get(tool_id)
		if tool is not None:
			return Route(tool=copy.deepcopy(tool))
		server_id = self._remote_index.get(tool_id)
		if server_id is None:
			raise NotFound(f"Tool '{tool_id}' not found")
		return Route(
			tool=copy.deepcopy(self._find_remote_locked(tool_id)),
			server=copy.deepcopy(self._servers[server_id]),
		)

	def _find_remote_locked(self, tool_id: str) -> Tool:
		server_id = self._remote_index.get(tool_id)
		for remote in self._catalogs.get(server_id or "", []):
			if remote.id == tool_id:
				return remote
		raise NotFound(f"Tool '{tool_id}' not found")

	# -- writes --

	async def add_tool(self, tool: Tool) -> None:
		async with self._lock.write():
			if tool.id in self._tools or tool.id in self._remote_index:
				raise InvalidSpec(f"Tool id '{tool.id}' already exists")
			self._store.insert_tool(tool)
			self._tools[tool.id] = copy.deepcopy(tool)

	async def set_enabled(self, tool_id: str, enabled: bool) -> Tool:
		"""Enable or disable a local or discovered tool.

		A discovered tool keeps its flag across later rediscoveries.
		"""
		async with self._lock.write():
			tool = self._tools.get(tool_id)
			if tool is not None:
				self._store.update_tool_enabled(tool_id, enabled)
			else:
				tool = self._find_remote_locked(tool_id)
				self._store.update_server_tool_enabled(tool_id, enabled)
			tool.enabled = enabled
			return copy.deepcopy(tool)

	async def update_tool_config(self, tool_id: str, env: dict[str, str]) -> Tool:
		"""Merge env into a local tool's authentication payload in place."""
		async with self._lock.write():
			tool = self._tools.get(tool_id)
			if tool is None:
				raise NotFound(f"Tool '{tool_id}' not found")
			authentication = copy.deepcopy(tool.authentication) if tool.authentication is not None else {}
			if not isinstance(authentication, dict):
				raise InvalidSpec(f"Tool '{tool_id}' has a non-object authentication payload")
			current = authentication.get("env")
			merged = dict(current) if isinstance(current, dict) else {}
			merged.update(env)
			authentication["env"] = merged
			self._store.update_tool_authentication(tool_id, authentication)
			tool.authentication = authentication
			return copy.deepcopy(tool)

	async def remove_tool(self, tool_id: str) -> Tool:
		async with self._lock.write():
			if tool_id not in self._tools:
				raise NotFound(f"Tool '{tool_id}' not found")
			self._store.delete_tool(tool_id)
			return self._tools.pop(tool_id)

	async def add_server(self, server: Server) -> None:
		async with self._lock.write():
			if server.id in self._servers:
				raise InvalidSpec(f"Server '{server.id}' already exists")
			self._store.upsert_server(server)
			self._servers[server.id] = copy.deepcopy(server)

	async def remove_server(self, server_id: str) -> None:
		async with self._lock.write():
			if server_id not in self._servers:
				raise NotFound(f"Server '{server_id}' not found")
			self._store.delete_server(server_id)
			del self._servers[server_id]
			self._catalogs.pop(server_id, None)
			self._rebuild_remote_index()

	async def replace_catalog(self, server_id: str, tools: list[Tool]) -> list[Tool]:
		"""Swap a server's catalog wholesale.

		Entries whose id collides with a local tool are dropped. Tools already
		known keep their enabled flag. Returns the catalog actually stored.
		"""
		async with self._lock.write():
			server = self._servers.get(server_id)
			if server is None:
				raise NotFound(f"Server '{server_id}' not found")
			previous = {t.id: t.enabled for t in self._catalogs.get(server_id, [])}
			accepted: list[Tool] = []
			for tool in tools:
				if tool.id in self._tools:
					logger.warning("Dropping %s from %s: id collides with a local tool", tool.id, server_id)
					continue
				owner = self._remote_index.get(tool.id)
				if owner is not None and owner != server_id:
					logger.warning("Dropping %s from %s: id owned by server %s", tool.id, server_id, owner)
					continue
				kept = copy.deepcopy(tool)
				kept.enabled = previous.get(tool.id, kept.enabled)
				accepted.append(kept)
			discovered_at = _now_iso()
			self._store.replace_catalog(server_id, accepted, discovered_at)
			self._catalogs[server_id] = accepted
			server.last_discovered_at = discovered_at
			self._rebuild_remote_index()
			return [copy.deepcopy(t) for t in accepted]

	def _rebuild_remote_index(self) -> None:
		self._remote_index = {
			t.id: sid for sid, tools in self._catalogs.items() for t in tools
		}

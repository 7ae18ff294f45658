"""Boundary layer -- every proxy operation as an async call returning OperationResult.

Core components raise ToolProxyError subclasses. Nothing past this layer
sees an exception for a tool-level failure: each one is converted to a
structured {kind, message} error. Transports (CLI, HTTP, MCP) sit on top.
"""

from __future__ import annotations

import logging
from dataclasses import asdict
from typing import Any, Awaitable

from pydantic import BaseModel

from tool_proxy.config import ProxyConfig, validate_config
from tool_proxy.discovery import DiscoveryEngine
from tool_proxy.dispatcher import ExecutionDispatcher
from tool_proxy.downstream import McpDownstreamClient
from tool_proxy.errors import ErrorKind, RuntimeFailure, ToolProxyError
from tool_proxy.models import ToolKind
from tool_proxy.registry import ToolRegistry
from tool_proxy.runtimes import RuntimeAdapter, create_adapters
from tool_proxy.state import ProxyState
from tool_proxy.store import ToolStore
from tool_proxy.tracing import ProxyTracer

logger = logging.getLogger(__name__)


class ErrorInfo(BaseModel):
	kind: ErrorKind
	message: str
	diagnostics: str = ""


class OperationResult(BaseModel):
	"""Uniform outcome of a boundary operation."""

	success: bool
	result: Any = None
	error: ErrorInfo | None = None

	@classmethod
	def ok(cls, result: Any = None) -> OperationResult:
		return cls(success=True, result=result)

	@classmethod
	def failure(cls, kind: ErrorKind, message: str, diagnostics: str = "") -> OperationResult:
		return cls(success=False, error=ErrorInfo(kind=kind, message=message, diagnostics=diagnostics))


class ToolProxy:
	"""Facade over registry, discovery, dispatcher and state."""

	def __init__(
		self,
		config: ProxyConfig,
		state: ProxyState,
		registry: ToolRegistry,
		discovery: DiscoveryEngine,
		dispatcher: ExecutionDispatcher,
		store: ToolStore | None = None,
	) -> None:
		self.config = config
		self.state = state
		self.registry = registry
		self.discovery = discovery
		self.dispatcher = dispatcher
		self._store = store

	async def _guard(self, operation: str, work: Awaitable[Any]) -> OperationResult:
		try:
			result = await work
		except RuntimeFailure as exc:
			logger.warning("%s failed: %s", operation, exc.message)
			return OperationResult.failure(exc.kind, exc.message, exc.diagnostics)
		except ToolProxyError as exc:
			logger.info("%s failed: %s: %s", operation, exc.kind.value, exc.message)
			return OperationResult.failure(exc.kind, exc.message)
		except Exception as exc:
			logger.exception("Unexpected error in %s", operation)
			return OperationResult.failure(ErrorKind.RUNTIME_FAILURE, f"{type(exc).__name__}: {exc}")
		return OperationResult.ok(result)

	# -- registry --

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
		return await self._guard("register_tool", self.registry.register(
			kind, entry_point, description,
			authentication=authentication, name=name,
			input_schema=input_schema, timeout=timeout,
		))

	async def list_tools(self) -> OperationResult:
		async def _list() -> list[dict[str, Any]]:
			return [t.to_dict() for t in await self.registry.list()]

		return await self._guard("list_tools", _list())

	async def update_tool_status(self, tool_id: str, enabled: bool) -> OperationResult:
		async def _update() -> dict[str, Any]:
			tool = await self.registry.set_enabled(tool_id, enabled)
			return {"id": tool.id, "enabled": tool.enabled}

		return await self._guard("update_tool_status", _update())

	async def update_tool_config(self, tool_id: str, env: dict[str, str]) -> OperationResult:
		async def _update() -> dict[str, Any]:
			tool = await self.registry.update_config(tool_id, env)
			return {"id": tool.id, "env": sorted(tool.authentication["env"])}

		return await self._guard("update_tool_config", _update())

	async def uninstall_tool(self, tool_id: str) -> OperationResult:
		async def _uninstall() -> dict[str, Any]:
			await self.registry.uninstall(tool_id)
			return {"id": tool_id, "uninstalled": True}

		return await self._guard("uninstall_tool", _uninstall())

	# -- servers and discovery --

	async def register_server(
		self,
		server_id: str,
		transport: str = "stdio",
		command: str = "",
		args: list[str] | None = None,
		env: dict[str, str] | None = None,
		url: str = "",
	) -> OperationResult:
		return await self._guard("register_server", self.registry.register_server(
			server_id, transport=transport, command=command, args=args, env=env, url=url,
		))

	async def remove_server(self, server_id: str) -> OperationResult:
		async def _remove() -> dict[str, Any]:
			await self.registry.remove_server(server_id)
			self.discovery.forget(server_id)
			return {"id": server_id, "removed": True}

		return await self._guard("remove_server", _remove())

	async def list_servers(self) -> OperationResult:
		async def _list() -> list[dict[str, Any]]:
			return [s.to_dict() for s in await self.state.list_servers()]

		return await self._guard("list_servers", _list())

	async def discover_tools(self, server_id: str) -> OperationResult:
		async def _discover() -> list[dict[str, Any]]:
			return [t.to_dict() for t in await self.discovery.discover(server_id)]

		return await self._guard("discover_tools", _discover())

	async def discover_all_servers(self) -> OperationResult:
		async def _discover_all() -> list[dict[str, Any]]:
			return [asdict(o) for o in await self.discovery.discover_all()]

		return await self._guard("discover_all_servers", _discover_all())

	async def list_all_server_tools(self) -> OperationResult:
		async def _list() -> list[dict[str, Any]]:
			return [t.to_dict() for t in await self.discovery.list_all()]

		return await self._guard("list_all_server_tools", _list())

	# -- execution --

	async def execute_tool(self, tool_id: str, parameters: dict[str, Any] | None = None) -> OperationResult:
		return await self._guard("execute_tool", self.dispatcher.execute(tool_id, parameters))

	async def execute_proxy_tool(self, tool_id: str, parameters: dict[str, Any] | None = None) -> OperationResult:
		return await self._guard("execute_proxy_tool", self.dispatcher.execute_proxy(tool_id, parameters))

	# -- aggregate views --

	async def get_derived_config(self) -> OperationResult:
		async def _derived() -> dict[str, Any]:
			return (await self.state.snapshot()).derived_config

		return await self._guard("get_derived_config", _derived())

	async def get_all_state(self) -> OperationResult:
		async def _state() -> dict[str, Any]:
			return (await self.state.snapshot()).to_dict()

		return await self._guard("get_all_state", _state())

	async def aclose(self) -> None:
		await self.dispatcher.aclose()
		if self._store is not None:
			self._store.close()
			self._store = None


async def create_proxy(
	config: ProxyConfig,
	store: ToolStore | None = None,
	client: McpDownstreamClient | None = None,
	adapters: dict[ToolKind, RuntimeAdapter] | None = None,
) -> ToolProxy:
	"""Wire up a ToolProxy from config and load persisted state.

	Raises ValueError when the config has errors (for example a timeout that
	is not a positive finite number).
	"""
	errors = [msg for level, msg in validate_config(config) if level == "error"]
	if errors:
		raise ValueError(f"Invalid configuration: {'; '.join(errors)}")
	store = store if store is not None else ToolStore(config.storage.resolved_path)
	client = client if client is not None else McpDownstreamClient(config)
	tracer = ProxyTracer(config.tracing)
	state = ProxyState(config, store)
	await state.load()
	proxy = ToolProxy(
		config=config,
		state=state,
		registry=ToolRegistry(state),
		discovery=DiscoveryEngine(state, client, tracer),
		dispatcher=ExecutionDispatcher(
			config, state,
			adapters if adapters is not None else create_adapters(config),
			client, tracer,
		),
		store=store,
	)
	if config.discovery.on_startup:
		outcomes = await proxy.discovery.discover_all()
		for outcome in outcomes:
			if not outcome.success:
				logger.warning("Startup discovery of %s failed: %s", outcome.server_id, outcome.error)
	return proxy

"""Execution dispatcher -- routes calls to a runtime adapter or a downstream server."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

from tool_proxy.config import ProxyConfig
from tool_proxy.downstream import McpDownstreamClient
from tool_proxy.errors import Disabled, InvalidParameters, NotFound, ToolProxyError
from tool_proxy.models import ExecutionRecord, Route, Tool, ToolKind
from tool_proxy.runtimes import RuntimeAdapter
from tool_proxy.state import ProxyState
from tool_proxy.tracing import ProxyTracer, get_current_trace_context

logger = logging.getLogger(__name__)


def check_parameters(tool: Tool, parameters: Any) -> dict[str, Any]:
	if parameters is None:
		parameters = {}
	if not isinstance(parameters, dict):
		raise InvalidParameters(f"Parameters for {tool.id} must be an object")
	missing = [name for name in tool.required_parameters if name not in parameters]
	if missing:
		raise InvalidParameters(f"Missing required parameters for {tool.id}: {', '.join(missing)}")
	return parameters


class ExecutionDispatcher:
	"""Resolves a tool against current state, then runs it without holding the lock."""

	def __init__(
		self,
		config: ProxyConfig,
		state: ProxyState,
		adapters: dict[ToolKind, RuntimeAdapter],
		client: McpDownstreamClient,
		tracer: ProxyTracer | None = None,
	) -> None:
		self._config = config
		self._state = state
		self._adapters = adapters
		self._client = client
		self._tracer = tracer
		self._in_flight: set[asyncio.Task[Any]] = set()

	@property
	def in_flight(self) -> int:
		return len(self._in_flight)

	async def execute(self, tool_id: str, parameters: dict[str, Any] | None = None) -> Any:
		"""Run a locally registered tool."""
		route = await self._state.resolve(tool_id)
		if route.server is not None:
			raise NotFound(f"Tool '{tool_id}' is not a local tool")
		return await self._dispatch(route, parameters)

	async def execute_proxy(self, tool_id: str, parameters: dict[str, Any] | None = None) -> Any:
		"""Run a local or discovered tool; a unique bare name is also accepted."""
		try:
			route = await self._state.resolve(tool_id)
		except NotFound:
			route = await self._state.resolve_name(tool_id)
		return await self._dispatch(route, parameters)

	async def _dispatch(self, route: Route, parameters: dict[str, Any] | None) -> Any:
		tool = route.tool
		if not tool.enabled:
			raise Disabled(f"Tool '{tool.id}' is disabled")
		params = check_parameters(tool, parameters)

		task = asyncio.ensure_future(self._traced(route, params))
		self._in_flight.add(task)
		try:
			return await task
		finally:
			self._in_flight.discard(task)

	async def _traced(self, route: Route, params: dict[str, Any]) -> Any:
		if self._tracer is None:
			return await self._run(route, params)
		with self._tracer.start_execution_span(route.tool.id, route.kind) as span:
			try:
				return await self._run(route, params)
			except ToolProxyError as exc:
				span.set_attribute("error.kind", exc.kind.value)
				raise

	async def _run(self, route: Route, params: dict[str, Any]) -> Any:
		tool = route.tool
		timeout = tool.timeout or self._config.execution.default_timeout
		record = ExecutionRecord(tool_id=tool.id, parameters=params, route=route.kind)
		start = time.monotonic()
		try:
			if route.server is None:
				adapter = self._adapters.get(tool.kind) if tool.kind is not None else None
				if adapter is None:
					raise NotFound(f"No runtime adapter for tool '{tool.id}'")
				record.result = await adapter.invoke(tool, params, timeout)
			else:
				record.result = await self._client.call_tool(
					route.server, tool.name, params,
					timeout=tool.timeout or self._config.discovery.call_timeout,
				)
			record.success = True
			return record.result
		except ToolProxyError as exc:
			record.error = f"{exc.kind.value}: {exc.message}"
			raise
		finally:
			record.duration_seconds = time.monotonic() - start
			trace_id, _ = get_current_trace_context()
			logger.info(
				"execute %s via %s: %s in %.3fs%s",
				record.tool_id, record.route,
				"ok" if record.success else (record.error or "cancelled"),
				record.duration_seconds,
				f" trace={trace_id}" if trace_id else "",
			)

	async def aclose(self) -> None:
		"""Cancel in-flight executions and wait for their teardown."""
		tasks = list(self._in_flight)
		for task in tasks:
			task.cancel()
		if tasks:
			await asyncio.gather(*tasks, return_exceptions=True)
			logger.info("Cancelled %d in-flight executions", len(tasks))

"""Tool registry -- validated lifecycle operations for local tools and servers."""

from __future__ import annotations

import json
import logging
import math
from pathlib import PurePosixPath
from typing import Any

from tool_proxy.config import server_spec_error
from tool_proxy.errors import InvalidSpec
from tool_proxy.models import Server, Tool, ToolKind
from tool_proxy.state import ProxyState

logger = logging.getLogger(__name__)


def default_tool_name(kind: ToolKind, entry_point: str) -> str:
	"""Derive a display name from the entry point.

	Scripts use the file stem; images use the last path segment without tag
	or digest.
	"""
	if kind == ToolKind.DOCKER:
		image = entry_point.split("@", 1)[0]
		last = image.rsplit("/", 1)[-1]
		return last.split(":", 1)[0]
	return PurePosixPath(entry_point.replace("\\", "/")).stem


def _validate_timeout(timeout: Any) -> float | None:
	if timeout is None:
		return None
	try:
		value = float(timeout)
	except (TypeError, ValueError):
		raise InvalidSpec(f"timeout must be a number, got {timeout!r}") from None
	if not math.isfinite(value) or value <= 0:
		raise InvalidSpec(f"timeout must be a positive finite number, got {timeout!r}")
	return value


class ToolRegistry:
	"""register / set_enabled / uninstall / list over the shared state."""

	def __init__(self, state: ProxyState) -> None:
		self._state = state

	async def register(
		self,
		kind: str | ToolKind,
		entry_point: str,
		description: str = "",
		authentication: Any = None,
		name: str | None = None,
		input_schema: dict[str, Any] | None = None,
		timeout: float | None = None,
	) -> str:
		"""Validate and persist a new local tool. Returns the new tool id."""
		parsed = ToolKind.parse(kind) if kind is not None else None
		if parsed is None:
			raise InvalidSpec(f"Unsupported tool kind: {kind!r}")
		if not isinstance(entry_point, str) or not entry_point.strip():
			raise InvalidSpec("entry_point must be a non-empty string")
		if input_schema is not None and not isinstance(input_schema, dict):
			raise InvalidSpec("input_schema must be an object")
		if input_schema is not None and not isinstance(input_schema.get("required", []), list):
			raise InvalidSpec("input_schema.required must be a list")
		try:
			json.dumps(authentication)
		except (TypeError, ValueError):
			raise InvalidSpec("authentication must be JSON-serializable") from None

		entry_point = entry_point.strip()
		tool = Tool(
			name=(name or "").strip() or default_tool_name(parsed, entry_point),
			description=description or "",
			kind=parsed,
			entry_point=entry_point,
			authentication=authentication,
			input_schema=dict(input_schema or {}),
			timeout=_validate_timeout(timeout),
		)
		await self._state.add_tool(tool)
		logger.info("Registered %s tool %s (%s) -> %s", parsed.value, tool.id, tool.name, entry_point)
		return tool.id

	async def set_enabled(self, tool_id: str, enabled: bool) -> Tool:
		tool = await self._state.set_enabled(tool_id, bool(enabled))
		logger.info("Tool %s %s", tool_id, "enabled" if tool.enabled else "disabled")
		return tool

	async def update_config(self, tool_id: str, env: dict[str, str]) -> Tool:
		"""Merge environment variables into a local tool's authentication.

		The tool keeps its id, so derived client configs stay valid.
		"""
		if not isinstance(env, dict) or not env:
			raise InvalidSpec("env must be a non-empty object")
		for key, value in env.items():
			if not isinstance(key, str) or not key.strip():
				raise InvalidSpec(f"env keys must be non-empty strings, got {key!r}")
			if not isinstance(value, str):
				raise InvalidSpec(f"env value for {key} must be a string")
		tool = await self._state.update_tool_config(tool_id, dict(env))
		logger.info("Updated env of tool %s: %s", tool_id, ", ".join(sorted(env)))
		return tool

	async def uninstall(self, tool_id: str) -> None:
		await self._state.remove_tool(tool_id)
		logger.info("Uninstalled tool %s", tool_id)

	async def list(self) -> list[Tool]:
		return await self._state.list_local_tools()

	async def register_server(
		self,
		server_id: str,
		transport: str = "stdio",
		command: str = "",
		args: list[str] | None = None,
		env: dict[str, str] | None = None,
		url: str = "",
	) -> str:
		"""Add a downstream MCP server. Its catalog starts empty."""
		server_id = (server_id or "").strip()
		problem = server_spec_error(server_id, transport, command, url)
		if problem:
			raise InvalidSpec(problem)
		server = Server(
			id=server_id,
			transport=transport,
			command=command,
			args=[str(a) for a in (args or [])],
			env={str(k): str(v) for k, v in (env or {}).items()},
			url=url,
		)
		await self._state.add_server(server)
		logger.info("Registered %s server %s", transport, server_id)
		return server_id

	async def remove_server(self, server_id: str) -> None:
		await self._state.remove_server(server_id)
		logger.info("Removed server %s and its catalog", server_id)

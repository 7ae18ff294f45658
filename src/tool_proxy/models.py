"""Data models for tool-proxy state."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

LOCAL_ORIGIN = "local"
REMOTE_PREFIX = "remote:"


def _now_iso() -> str:
	return datetime.now(timezone.utc).isoformat()


LOCAL_ID_PREFIX = "tool_"


def _new_tool_id() -> str:
	return f"{LOCAL_ID_PREFIX}{uuid4().hex[:12]}"


def remote_origin(server_id: str) -> str:
	return f"{REMOTE_PREFIX}{server_id}"


def remote_tool_id(server_id: str, name: str) -> str:
	return f"{server_id}:{name}"


class ToolKind(str, Enum):
	"""Runtime strategy for a locally registered tool."""

	NODE = "node"
	PYTHON = "python"
	DOCKER = "docker"

	@classmethod
	def parse(cls, value: str | ToolKind) -> ToolKind | None:
		"""Return the kind for value, accepting a few common aliases."""
		if isinstance(value, ToolKind):
			return value
		normalized = str(value).strip().lower()
		return _KIND_ALIASES.get(normalized)


_KIND_ALIASES: dict[str, ToolKind] = {
	"node": ToolKind.NODE,
	"nodejs": ToolKind.NODE,
	"python": ToolKind.PYTHON,
	"docker": ToolKind.DOCKER,
	"container": ToolKind.DOCKER,
}


@dataclass
class Tool:
	"""A registered or discovered unit of invocable capability."""

	id: str = field(default_factory=_new_tool_id)
	name: str = ""
	description: str = ""
	kind: ToolKind | None = None  # None for discovered tools
	entry_point: str = ""
	authentication: Any = None
	enabled: bool = True
	origin: str = LOCAL_ORIGIN
	input_schema: dict[str, Any] = field(default_factory=dict)
	timeout: float | None = None
	created_at: str = field(default_factory=_now_iso)

	@property
	def is_local(self) -> bool:
		return self.origin == LOCAL_ORIGIN

	@property
	def server_id(self) -> str | None:
		if self.origin.startswith(REMOTE_PREFIX):
			return self.origin[len(REMOTE_PREFIX):]
		return None

	@property
	def required_parameters(self) -> list[str]:
		required = self.input_schema.get("required", [])
		if not isinstance(required, list):
			return []
		return [str(r) for r in required]

	def to_dict(self) -> dict[str, Any]:
		data = asdict(self)
		data["kind"] = self.kind.value if self.kind is not None else None
		data["server_id"] = self.server_id
		return data


@dataclass
class Server:
	"""A downstream MCP tool server."""

	id: str
	transport: str = "stdio"  # stdio | http
	command: str = ""
	args: list[str] = field(default_factory=list)
	env: dict[str, str] = field(default_factory=dict)
	url: str = ""
	last_discovered_at: str | None = None

	def to_dict(self) -> dict[str, Any]:
		return asdict(self)


@dataclass
class Route:
	"""How a resolved execution request will be carried out.

	Captured under the read lock; the dispatcher only uses this copy after
	the lock is released, so a concurrent uninstall cannot change it.
	"""

	tool: Tool
	server: Server | None = None

	@property
	def kind(self) -> str:
		return "adapter" if self.server is None else "proxied"


@dataclass
class ExecutionRecord:
	"""Per-call record; never shared across calls and never persisted."""

	tool_id: str
	parameters: dict[str, Any]
	route: str = ""
	success: bool = False
	result: Any = None
	error: str = ""
	started_at: str = field(default_factory=_now_iso)
	duration_seconds: float = 0.0


@dataclass
class AggregateSnapshot:
	"""Internally consistent view of servers, tools and derived client config."""

	servers: list[Server]
	tools: list[Tool]
	derived_config: dict[str, Any]

	def to_dict(self) -> dict[str, Any]:
		return {
			"servers": [s.to_dict() for s in self.servers],
			"tools": [t.to_dict() for t in self.tools],
			"derived_config": self.derived_config,
		}


class DiscoveredToolSchema(BaseModel):
	"""Pydantic schema for one entry of a downstream tools/list catalog."""

	model_config = ConfigDict(extra="ignore", populate_by_name=True)

	name: str = Field(min_length=1)
	description: str | None = ""
	input_schema: dict[str, Any] = Field(default_factory=dict, alias="inputSchema")

	@field_validator("name")
	@classmethod
	def _not_blank(cls, value: str) -> str:
		if not value.strip():
			raise ValueError("tool name must not be blank")
		return value

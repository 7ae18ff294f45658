"""Runtime adapters, one per tool kind."""

from __future__ import annotations

from tool_proxy.config import ProxyConfig
from tool_proxy.models import ToolKind
from tool_proxy.runtimes.base import RuntimeAdapter
from tool_proxy.runtimes.container import ContainerAdapter
from tool_proxy.runtimes.script import ScriptAdapter


def create_adapters(config: ProxyConfig) -> dict[ToolKind, RuntimeAdapter]:
	"""Build the kind -> adapter table used by the dispatcher."""
	return {
		ToolKind.NODE: ScriptAdapter(config, ToolKind.NODE),
		ToolKind.PYTHON: ScriptAdapter(config, ToolKind.PYTHON),
		ToolKind.DOCKER: ContainerAdapter(config),
	}


__all__ = ["ContainerAdapter", "RuntimeAdapter", "ScriptAdapter", "create_adapters"]

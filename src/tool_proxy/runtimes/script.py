"""Script adapter -- runs node/python tools as local subprocesses."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from tool_proxy.config import ProxyConfig
from tool_proxy.errors import BackendUnavailable
from tool_proxy.models import Tool, ToolKind
from tool_proxy.runtimes.base import RuntimeAdapter

logger = logging.getLogger(__name__)


class ScriptAdapter(RuntimeAdapter):
	"""Launch `<interpreter> <entry_point>` with a restricted environment."""

	def __init__(self, config: ProxyConfig, kind: ToolKind) -> None:
		if kind not in (ToolKind.NODE, ToolKind.PYTHON):
			raise ValueError(f"ScriptAdapter does not handle {kind}")
		super().__init__(config)
		self.kind = kind

	@property
	def interpreter(self) -> str:
		if self.kind == ToolKind.NODE:
			return self._config.runtimes.node_executable
		return self._config.runtimes.python_executable

	async def prepare(self, tool: Tool) -> None:
		if shutil.which(self.interpreter) is None:
			raise BackendUnavailable(f"Interpreter not found: {self.interpreter}")
		entry = Path(tool.entry_point).expanduser()
		if not entry.is_file():
			raise BackendUnavailable(f"Entry point not found for {tool.id}: {tool.entry_point}")

	def build_command(self, tool: Tool, run_id: str) -> list[str]:
		return [self.interpreter, str(Path(tool.entry_point).expanduser())]

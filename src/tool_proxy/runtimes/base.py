"""Abstract base class for runtime adapters, plus the shared stdio channel."""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any
from uuid import uuid4

from tool_proxy.client_config import auth_env
from tool_proxy.config import ProxyConfig, tool_subprocess_env
from tool_proxy.errors import BackendUnavailable, ExecutionTimeout, RuntimeFailure
from tool_proxy.models import Tool

logger = logging.getLogger(__name__)

_KB = 1024


@dataclass
class ProcessOutcome:
	returncode: int
	stdout: str
	stderr: str


def parse_result_line(stdout: str) -> tuple[bool, Any]:
	"""Find the last non-empty stdout line that parses as JSON.

	Returns (found, value). Earlier lines are free-form tool logging.
	"""
	for line in reversed(stdout.splitlines()):
		line = line.strip()
		if not line:
			continue
		try:
			return True, json.loads(line)
		except json.JSONDecodeError:
			continue
	return False, None


class RuntimeAdapter(ABC):
	"""One execution strategy per tool kind.

	Subclasses turn a tool into a command line; the base class owns the
	process: parameters go in as one JSON document on stdin, the result comes
	back on stdout, and the process is released on every exit path.
	"""

	def __init__(self, config: ProxyConfig) -> None:
		self._config = config

	@abstractmethod
	async def prepare(self, tool: Tool) -> None:
		"""Check that the backend can run the tool. Raises BackendUnavailable."""

	@abstractmethod
	def build_command(self, tool: Tool, run_id: str) -> list[str]:
		"""Command line that runs one invocation of the tool."""

	def build_env(self, tool: Tool) -> dict[str, str]:
		return tool_subprocess_env(self._config.security, auth_env(tool.authentication))

	async def teardown(self, tool: Tool, run_id: str) -> None:
		"""Release anything the killed process may have left behind."""

	async def invoke(self, tool: Tool, parameters: dict[str, Any], timeout: float) -> Any:
		await self.prepare(tool)
		run_id = _run_id()
		command = self.build_command(tool, run_id)
		outcome = await self._run(tool, run_id, command, parameters, timeout)
		return self.interpret(tool, outcome)

	def interpret(self, tool: Tool, outcome: ProcessOutcome) -> Any:
		diagnostics = self._truncate(outcome.stderr)
		found, value = parse_result_line(outcome.stdout)
		if not found:
			if outcome.returncode != 0:
				raise RuntimeFailure(
					f"Tool {tool.id} exited with code {outcome.returncode}",
					diagnostics=diagnostics,
				)
			raise RuntimeFailure(f"Tool {tool.id} produced no JSON result", diagnostics=diagnostics)
		if isinstance(value, dict):
			if "error" in value and "result" not in value:
				raise RuntimeFailure(str(value["error"]), diagnostics=diagnostics)
			if "result" in value:
				return value["result"]
		return value

	async def _run(
		self,
		tool: Tool,
		run_id: str,
		command: list[str],
		parameters: dict[str, Any],
		timeout: float,
	) -> ProcessOutcome:
		payload = json.dumps(parameters).encode()
		try:
			proc = await asyncio.create_subprocess_exec(
				*command,
				stdin=asyncio.subprocess.PIPE,
				stdout=asyncio.subprocess.PIPE,
				stderr=asyncio.subprocess.PIPE,
				env=self.build_env(tool),
			)
		except (FileNotFoundError, PermissionError) as exc:
			raise BackendUnavailable(f"Cannot launch {command[0]}: {exc}") from exc

		try:
			stdout, stderr = await asyncio.wait_for(proc.communicate(payload), timeout=timeout)
		except asyncio.TimeoutError:
			logger.warning("Tool %s timed out after %.1fs, killing pid %s", tool.id, timeout, proc.pid)
			raise ExecutionTimeout(f"Tool {tool.id} timed out after {timeout}s") from None
		finally:
			if proc.returncode is None:
				try:
					proc.kill()
				except ProcessLookupError:
					pass
				await proc.wait()
				await self.teardown(tool, run_id)

		limit = self._config.execution.max_output_kb * _KB
		if len(stdout) > limit:
			logger.warning("Tool %s output truncated to %dKB", tool.id, self._config.execution.max_output_kb)
			stdout = stdout[-limit:]
		return ProcessOutcome(
			returncode=proc.returncode if proc.returncode is not None else -1,
			stdout=stdout.decode(errors="replace"),
			stderr=stderr.decode(errors="replace"),
		)

	def _truncate(self, text: str) -> str:
		limit = self._config.execution.diagnostics_max_chars
		text = text.strip()
		if len(text) > limit:
			return text[-limit:]
		return text


def _run_id() -> str:
	return uuid4().hex[:12]

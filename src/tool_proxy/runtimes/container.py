"""Container adapter -- runs docker tools in a fresh container per call."""

from __future__ import annotations

import asyncio
import logging
import shutil
from typing import Any

from tool_proxy.client_config import auth_env
from tool_proxy.config import tool_subprocess_env
from tool_proxy.errors import BackendUnavailable
from tool_proxy.models import Tool
from tool_proxy.runtimes.base import ProcessOutcome, RuntimeAdapter

logger = logging.getLogger(__name__)

# `docker run` itself failed (bad image, daemon down, bad flags)
_DOCKER_RUN_FAILED = 125


class ContainerAdapter(RuntimeAdapter):
	"""Execute a tool image with `docker run --rm -i`.

	The container is named per call so a timed-out or cancelled invocation
	can be force-removed even if the docker client died first.
	"""

	async def prepare(self, tool: Tool) -> None:
		if shutil.which(self._config.container.docker_executable) is None:
			raise BackendUnavailable(
				f"Docker executable not found: {self._config.container.docker_executable}"
			)
		if not tool.entry_point.strip():
			raise BackendUnavailable(f"Tool {tool.id} has no image reference")

	@staticmethod
	def container_name(tool: Tool, run_id: str) -> str:
		return f"tool-proxy-{tool.id.replace(':', '-')}-{run_id}"

	def build_command(self, tool: Tool, run_id: str) -> list[str]:
		"""Build the docker run command list."""
		cc = self._config.container
		cmd = [
			cc.docker_executable, "run", "--rm", "-i",
			"--name", self.container_name(tool, run_id),
			"--network", cc.network,
		]

		for cap in cc.cap_drop:
			cmd.extend(["--cap-drop", cap])

		for opt in cc.security_opt:
			cmd.extend(["--security-opt", opt])

		if cc.run_as_user:
			cmd.extend(["--user", cc.run_as_user])

		if cc.memory_limit:
			cmd.extend(["--memory", cc.memory_limit])

		# Authentication env goes into the container, not the docker client
		for key, value in auth_env(tool.authentication).items():
			cmd.extend(["-e", f"{key}={value}"])

		cmd.append(tool.entry_point)
		return cmd

	def build_env(self, tool: Tool) -> dict[str, str]:
		return tool_subprocess_env(self._config.security)

	def interpret(self, tool: Tool, outcome: ProcessOutcome) -> Any:
		if outcome.returncode == _DOCKER_RUN_FAILED and not outcome.stdout.strip():
			raise BackendUnavailable(
				f"docker run failed for {tool.entry_point}: {self._truncate(outcome.stderr)}"
			)
		return super().interpret(tool, outcome)

	async def teardown(self, tool: Tool, run_id: str) -> None:
		name = self.container_name(tool, run_id)
		try:
			proc = await asyncio.create_subprocess_exec(
				self._config.container.docker_executable, "rm", "-f", name,
				stdout=asyncio.subprocess.DEVNULL,
				stderr=asyncio.subprocess.DEVNULL,
			)
		except OSError as exc:
			logger.warning("Could not remove container %s: %s", name, exc)
			return
		try:
			await asyncio.wait_for(proc.wait(), timeout=self._config.container.stop_timeout)
		except asyncio.TimeoutError:
			logger.warning("Timed out removing container %s", name)
			proc.kill()
			await proc.wait()
		else:
			logger.debug("Removed container %s (rc=%s)", name, proc.returncode)

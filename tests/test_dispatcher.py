"""Tests for execution routing, parameter checks and in-flight tracking."""

from __future__ import annotations

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from tool_proxy.api import ToolProxy
from tool_proxy.dispatcher import check_parameters
from tool_proxy.errors import (
	Disabled,
	InvalidParameters,
	NotFound,
	RuntimeFailure,
	ServerUnreachable,
)
from tool_proxy.models import ToolKind

from conftest import ECHO_SCRIPT, FakeDownstream, make_tool, write_script

SLOW_ECHO = """
import json, sys, time
params = json.load(sys.stdin)
time.sleep(0.5)
print(json.dumps({"result": params}))
"""


async def _register_echo(proxy: ToolProxy, tmp_path: Path, **kwargs: object) -> str:
	script = write_script(tmp_path, "echo.py", ECHO_SCRIPT)
	return await proxy.registry.register("python", script, "echo", **kwargs)  # type: ignore[arg-type]


async def _add_remote(proxy: ToolProxy, downstream: FakeDownstream) -> None:
	await proxy.registry.register_server("srv", command="mcp-server")
	downstream.catalogs["srv"] = [
		{"name": "search", "inputSchema": {"type": "object", "required": ["q"]}},
	]
	await proxy.discovery.discover("srv")


class TestCheckParameters:
	def test_missing_required(self) -> None:
		tool = make_tool(input_schema={"required": ["city", "units"]})
		with pytest.raises(InvalidParameters, match="city, units"):
			check_parameters(tool, {})

	def test_none_means_empty(self) -> None:
		assert check_parameters(make_tool(), None) == {}

	def test_not_an_object(self) -> None:
		with pytest.raises(InvalidParameters):
			check_parameters(make_tool(), ["a"])  # type: ignore[arg-type]


class TestExecute:
	async def test_echo(self, proxy: ToolProxy, tmp_path: Path) -> None:
		tool_id = await _register_echo(proxy, tmp_path)
		assert await proxy.dispatcher.execute(tool_id, {"text": "hi"}) == {"text": "hi"}

	async def test_uninstalled_tool_not_found(self, proxy: ToolProxy, tmp_path: Path) -> None:
		tool_id = await _register_echo(proxy, tmp_path)
		await proxy.registry.uninstall(tool_id)
		with pytest.raises(NotFound):
			await proxy.dispatcher.execute(tool_id, {})

	async def test_disable_then_enable(self, proxy: ToolProxy, tmp_path: Path) -> None:
		tool_id = await _register_echo(proxy, tmp_path)
		await proxy.registry.set_enabled(tool_id, False)
		with pytest.raises(Disabled):
			await proxy.dispatcher.execute(tool_id, {})
		await proxy.registry.set_enabled(tool_id, True)
		assert await proxy.dispatcher.execute(tool_id, {"n": 1}) == {"n": 1}

	async def test_missing_required_parameter(self, proxy: ToolProxy, tmp_path: Path) -> None:
		tool_id = await _register_echo(proxy, tmp_path, input_schema={"required": ["text"]})
		with pytest.raises(InvalidParameters):
			await proxy.dispatcher.execute(tool_id, {"other": 1})

	async def test_remote_tool_not_executable_locally(self, proxy: ToolProxy, downstream: FakeDownstream) -> None:
		await _add_remote(proxy, downstream)
		with pytest.raises(NotFound, match="not a local tool"):
			await proxy.dispatcher.execute("srv:search", {"q": "x"})

	async def test_uninstall_does_not_abort_in_flight_call(self, proxy: ToolProxy, tmp_path: Path) -> None:
		script = write_script(tmp_path, "slow.py", SLOW_ECHO)
		tool_id = await proxy.registry.register("python", script)
		task = asyncio.create_task(proxy.dispatcher.execute(tool_id, {"v": 1}))
		await asyncio.sleep(0.1)
		await proxy.registry.uninstall(tool_id)
		assert await task == {"v": 1}
		with pytest.raises(NotFound):
			await proxy.dispatcher.execute(tool_id, {})

	async def test_uses_tool_timeout(self, proxy: ToolProxy) -> None:
		adapter = AsyncMock()
		adapter.invoke = AsyncMock(return_value="ok")
		proxy.dispatcher._adapters[ToolKind.PYTHON] = adapter
		tool_id = await proxy.registry.register("python", "/t/x.py", timeout=3)
		await proxy.dispatcher.execute(tool_id, {})
		assert adapter.invoke.await_args.args[2] == 3.0

		other = await proxy.registry.register("python", "/t/y.py")
		await proxy.dispatcher.execute(other, {})
		assert adapter.invoke.await_args.args[2] == proxy.config.execution.default_timeout


class TestExecuteProxy:
	async def test_local_through_proxy(self, proxy: ToolProxy, tmp_path: Path) -> None:
		tool_id = await _register_echo(proxy, tmp_path)
		assert await proxy.dispatcher.execute_proxy(tool_id, {"a": 1}) == {"a": 1}

	async def test_remote_forwarded_verbatim(self, proxy: ToolProxy, downstream: FakeDownstream) -> None:
		await _add_remote(proxy, downstream)
		payload = {"content": [{"type": "text", "text": "3 results"}], "isError": False}
		downstream.results[("srv", "search")] = payload
		assert await proxy.dispatcher.execute_proxy("srv:search", {"q": "mcp"}) == payload
		assert downstream.tool_calls == [("srv", "search", {"q": "mcp"})]

	async def test_remote_by_bare_name(self, proxy: ToolProxy, downstream: FakeDownstream) -> None:
		await _add_remote(proxy, downstream)
		downstream.results[("srv", "search")] = {"content": [], "isError": False}
		await proxy.dispatcher.execute_proxy("search", {"q": "x"})
		assert downstream.tool_calls[0][1] == "search"

	async def test_remote_required_parameters_checked(self, proxy: ToolProxy, downstream: FakeDownstream) -> None:
		await _add_remote(proxy, downstream)
		with pytest.raises(InvalidParameters):
			await proxy.dispatcher.execute_proxy("srv:search", {})
		assert downstream.tool_calls == []

	@pytest.mark.parametrize("failure", [RuntimeFailure("tool error"), ServerUnreachable("gone")])
	async def test_remote_failures_propagate(
		self, proxy: ToolProxy, downstream: FakeDownstream, failure: Exception,
	) -> None:
		await _add_remote(proxy, downstream)
		downstream.results[("srv", "search")] = failure
		with pytest.raises(type(failure)):
			await proxy.dispatcher.execute_proxy("srv:search", {"q": "x"})

	async def test_unknown(self, proxy: ToolProxy) -> None:
		with pytest.raises(NotFound):
			await proxy.dispatcher.execute_proxy("nothing-here", {})


class TestInFlight:
	async def test_aclose_cancels_running_calls(self, proxy: ToolProxy) -> None:
		started = asyncio.Event()

		async def _slow_invoke(*args: object) -> str:
			started.set()
			await asyncio.sleep(30)
			return "never"

		adapter = AsyncMock()
		adapter.invoke = AsyncMock(side_effect=_slow_invoke)
		proxy.dispatcher._adapters[ToolKind.PYTHON] = adapter
		tool_id = await proxy.registry.register("python", "/t/x.py")

		task = asyncio.create_task(proxy.dispatcher.execute(tool_id, {}))
		await asyncio.wait_for(started.wait(), timeout=5)
		assert proxy.dispatcher.in_flight == 1

		await proxy.dispatcher.aclose()
		with pytest.raises(asyncio.CancelledError):
			await task
		assert proxy.dispatcher.in_flight == 0

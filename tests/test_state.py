"""Tests for the state aggregator: resolution, mutations and snapshots."""

from __future__ import annotations

import asyncio

import pytest

from tool_proxy.config import ProxyConfig, ServerConfig
from tool_proxy.errors import InvalidSpec, NotFound
from tool_proxy.models import Tool
from tool_proxy.state import ProxyState
from tool_proxy.store import ToolStore

from conftest import make_remote_tool, make_server, make_tool


class TestLoad:
	async def test_loads_configured_servers_and_persisted_data(self, config: ProxyConfig) -> None:
		store = ToolStore(":memory:")
		store.insert_tool(make_tool())
		store.upsert_server(make_server(id="old"))
		store.replace_catalog("old", [make_remote_tool(server_id="old")], "t1")
		config.servers = [ServerConfig(id="files", command="npx", args=["server-files"])]

		state = ProxyState(config, store)
		await state.load()

		assert {s.id for s in await state.list_servers()} == {"old", "files"}
		assert [t.id for t in await state.list_local_tools()] == ["tool_000000000001"]
		assert [t.id for t in await state.list_discovered_tools()] == ["old:search"]
		route = await state.resolve("old:search")
		assert route.kind == "proxied"
		store.close()

	async def test_invalid_configured_servers_skipped(self, config: ProxyConfig, store: ToolStore) -> None:
		config.servers = [
			ServerConfig(id="files", command="npx"),
			ServerConfig(id="", command="npx"),
			ServerConfig(id="a:b", command="npx"),
			ServerConfig(id="nocmd"),
			ServerConfig(id="tool_0123456789ab", command="npx"),
		]
		state = ProxyState(config, store)
		await state.load()
		assert [s.id for s in await state.list_servers()] == ["files"]
		assert [s.id for s in store.list_servers()] == ["files"]


class TestResolve:
	async def test_local_route(self, state: ProxyState) -> None:
		await state.add_tool(make_tool())
		route = await state.resolve("tool_000000000001")
		assert route.kind == "adapter"
		assert route.server is None

	async def test_remote_route(self, state: ProxyState) -> None:
		await state.add_server(make_server())
		await state.replace_catalog("srv", [make_remote_tool()])
		route = await state.resolve("srv:search")
		assert route.kind == "proxied"
		assert route.server is not None and route.server.id == "srv"

	async def test_unknown(self, state: ProxyState) -> None:
		with pytest.raises(NotFound):
			await state.resolve("tool_nope")

	async def test_route_is_a_copy(self, state: ProxyState) -> None:
		await state.add_tool(make_tool())
		route = await state.resolve("tool_000000000001")
		route.tool.enabled = False
		assert (await state.resolve("tool_000000000001")).tool.enabled is True

	async def test_resolve_name(self, state: ProxyState) -> None:
		await state.add_tool(make_tool(name="local-echo"))
		await state.add_server(make_server())
		await state.replace_catalog("srv", [make_remote_tool(name="search")])
		assert (await state.resolve_name("local-echo")).tool.id == "tool_000000000001"
		assert (await state.resolve_name("search")).tool.id == "srv:search"

	async def test_resolve_name_ambiguous(self, state: ProxyState) -> None:
		await state.add_tool(make_tool(name="search"))
		await state.add_server(make_server())
		await state.replace_catalog("srv", [make_remote_tool(name="search")])
		with pytest.raises(NotFound, match="ambiguous"):
			await state.resolve_name("search")


class TestMutations:
	async def test_duplicate_id_rejected(self, state: ProxyState) -> None:
		await state.add_tool(make_tool())
		with pytest.raises(InvalidSpec):
			await state.add_tool(make_tool())

	async def test_failed_write_leaves_memory_untouched(self, state: ProxyState, store: ToolStore) -> None:
		store.close()
		with pytest.raises(Exception):
			await state.add_tool(make_tool())
		assert await state.list_local_tools() == []

	async def test_set_enabled_and_remove(self, state: ProxyState) -> None:
		await state.add_tool(make_tool())
		tool = await state.set_enabled("tool_000000000001", False)
		assert tool.enabled is False
		removed = await state.remove_tool("tool_000000000001")
		assert removed.id == "tool_000000000001"
		with pytest.raises(NotFound):
			await state.set_enabled("tool_000000000001", True)
		with pytest.raises(NotFound):
			await state.remove_tool("tool_000000000001")

	async def test_disable_discovered_tool(self, state: ProxyState, store: ToolStore) -> None:
		await state.add_server(make_server())
		await state.replace_catalog("srv", [make_remote_tool(), make_remote_tool(name="fetch")])

		tool = await state.set_enabled("srv:search", False)
		assert tool.enabled is False
		assert (await state.resolve("srv:search")).tool.enabled is False

		# rediscovery keeps the flag; new tools arrive enabled
		stored = await state.replace_catalog("srv", [
			make_remote_tool(), make_remote_tool(name="fetch"), make_remote_tool(name="new"),
		])
		assert {t.id: t.enabled for t in stored} == {"srv:search": False, "srv:fetch": True, "srv:new": True}
		assert {t.id: t.enabled for t in store.load_catalogs()["srv"]}["srv:search"] is False

		await state.set_enabled("srv:search", True)
		assert (await state.resolve("srv:search")).tool.enabled is True

	async def test_update_tool_config_merges_env(self, state: ProxyState, store: ToolStore) -> None:
		await state.add_tool(make_tool(authentication={"env": {"A": "1", "B": {"description": "fill me"}}}))
		tool = await state.update_tool_config("tool_000000000001", {"B": "2", "C": "3"})
		assert tool.authentication == {"env": {"A": "1", "B": "2", "C": "3"}}
		assert tool.id == "tool_000000000001"
		assert store.list_tools()[0].authentication == {"env": {"A": "1", "B": "2", "C": "3"}}

	async def test_update_tool_config_without_authentication(self, state: ProxyState) -> None:
		await state.add_tool(make_tool())
		tool = await state.update_tool_config("tool_000000000001", {"TOKEN": "x"})
		assert tool.authentication == {"env": {"TOKEN": "x"}}

	async def test_update_tool_config_errors(self, state: ProxyState) -> None:
		await state.add_server(make_server())
		await state.replace_catalog("srv", [make_remote_tool()])
		with pytest.raises(NotFound):
			await state.update_tool_config("srv:search", {"A": "1"})
		with pytest.raises(NotFound):
			await state.update_tool_config("tool_missing", {"A": "1"})
		await state.add_tool(make_tool(authentication="opaque-token"))
		with pytest.raises(InvalidSpec):
			await state.update_tool_config("tool_000000000001", {"A": "1"})

	async def test_duplicate_server(self, state: ProxyState) -> None:
		await state.add_server(make_server())
		with pytest.raises(InvalidSpec):
			await state.add_server(make_server())

	async def test_remove_server_drops_catalog(self, state: ProxyState) -> None:
		await state.add_server(make_server())
		await state.replace_catalog("srv", [make_remote_tool()])
		await state.remove_server("srv")
		assert await state.list_discovered_tools() == []
		with pytest.raises(NotFound):
			await state.resolve("srv:search")
		with pytest.raises(NotFound):
			await state.get_server("srv")

	async def test_replace_catalog_unknown_server(self, state: ProxyState) -> None:
		with pytest.raises(NotFound):
			await state.replace_catalog("ghost", [])

	async def test_replace_catalog_drops_collisions(self, state: ProxyState) -> None:
		await state.add_tool(make_tool(id="srv:clash"))
		await state.add_server(make_server())
		await state.add_server(make_server(id="other"))
		await state.replace_catalog("other", [make_remote_tool(server_id="other", name="x", id="shared:x")])

		stored = await state.replace_catalog("srv", [
			make_remote_tool(name="clash"),
			make_remote_tool(name="ok"),
			make_remote_tool(name="x", id="shared:x"),
		])
		assert [t.id for t in stored] == ["srv:ok"]

	async def test_replace_catalog_sets_discovery_time(self, state: ProxyState) -> None:
		await state.add_server(make_server())
		await state.replace_catalog("srv", [])
		assert (await state.get_server("srv")).last_discovered_at is not None


class TestSnapshot:
	async def test_contents(self, state: ProxyState) -> None:
		await state.add_tool(make_tool())
		await state.add_server(make_server())
		await state.replace_catalog("srv", [make_remote_tool()])
		snap = await state.snapshot()
		assert [s.id for s in snap.servers] == ["srv"]
		assert [t.id for t in snap.tools] == ["tool_000000000001", "srv:search"]
		assert set(snap.derived_config["mcpServers"]) == {"tool_000000000001", "srv"}
		data = snap.to_dict()
		assert data["tools"][1]["server_id"] == "srv"
		assert data["tools"][0]["kind"] == "python"

	async def test_disabled_tool_listed_but_not_in_derived_config(self, state: ProxyState) -> None:
		await state.add_tool(make_tool(enabled=False))
		snap = await state.snapshot()
		assert len(snap.tools) == 1
		assert snap.derived_config["tools"] == []

	async def test_concurrent_registrations_get_unique_ids(self, state: ProxyState) -> None:
		tools = [make_tool(id=Tool().id, name=f"t{i}") for i in range(50)]
		await asyncio.gather(*(state.add_tool(t) for t in tools))
		listed = await state.list_local_tools()
		assert len(listed) == 50
		assert len({t.id for t in listed}) == 50

	async def test_snapshots_never_torn(self, state: ProxyState) -> None:
		await state.add_server(make_server())

		async def writer(i: int) -> None:
			await state.add_tool(make_tool(id=f"tool_{i:012d}", name=f"t{i}"))
			if i % 5 == 0:
				await state.set_enabled(f"tool_{i:012d}", False)
			if i % 7 == 0:
				await state.replace_catalog("srv", [make_remote_tool(name=f"r{i}")])

		async def reader() -> None:
			for _ in range(20):
				snap = await state.snapshot()
				enabled_ids = {t.id for t in snap.tools if t.enabled}
				derived_ids = {entry["id"] for entry in snap.derived_config["tools"]}
				assert enabled_ids == derived_ids
				server_ids = {s.id for s in snap.servers}
				assert {t.server_id for t in snap.tools if not t.is_local} <= server_ids
				await asyncio.sleep(0)

		await asyncio.gather(*(writer(i) for i in range(40)), *(reader() for _ in range(10)))

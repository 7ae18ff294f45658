"""CLI interface for tool-proxy."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable

from tool_proxy.api import OperationResult, create_proxy
from tool_proxy.config import ProxyConfig, load_config, validate_config

DEFAULT_CONFIG = "tool-proxy.toml"

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
	parser = argparse.ArgumentParser(
		prog="tool-proxy",
		description="Tool registry and execution proxy for AI assistants",
	)
	parser.add_argument("--config", default=DEFAULT_CONFIG, help="Config file path")
	parser.add_argument("--db", default=None, help="Override storage.db_path")
	parser.add_argument(
		"--url", default=None,
		help="Talk to a running `tool-proxy serve` instead of the local store",
	)
	parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
	sub = parser.add_subparsers(dest="command")

	# tool-proxy register
	reg = sub.add_parser("register", help="Register a local tool")
	reg.add_argument("kind", help="node | python | docker")
	reg.add_argument("entry_point", help="Script path or image reference")
	reg.add_argument("--description", default="", help="Tool description")
	reg.add_argument("--name", default=None, help="Display name (defaults to entry point stem)")
	reg.add_argument("--auth", default=None, help="Authentication payload as JSON")
	reg.add_argument("--schema", default=None, help="Input schema as JSON")
	reg.add_argument("--timeout", type=float, default=None, help="Per-tool timeout in seconds")

	# tool-proxy tools / all-tools
	sub.add_parser("tools", help="List local tools")
	sub.add_parser("all-tools", help="List local and discovered tools")

	# tool-proxy execute / proxy-execute
	ex = sub.add_parser("execute", help="Execute a local tool")
	ex.add_argument("tool_id")
	ex.add_argument("--params", default="{}", help="Parameters as JSON object")
	pex = sub.add_parser("proxy-execute", help="Execute a local or discovered tool")
	pex.add_argument("tool_id", help="Tool id, or a unique tool name")
	pex.add_argument("--params", default="{}", help="Parameters as JSON object")

	# tool-proxy enable / disable / uninstall
	for name, help_text in (
		("enable", "Enable a tool"),
		("disable", "Disable a tool"),
		("uninstall", "Uninstall a tool"),
	):
		p = sub.add_parser(name, help=help_text)
		p.add_argument("tool_id")

	# tool-proxy configure
	conf = sub.add_parser("configure", help="Set environment variables of a local tool in place")
	conf.add_argument("tool_id")
	conf.add_argument("--env", dest="tool_env", action="append", default=[], help="KEY=VALUE (repeatable)")

	# tool-proxy add-server / remove-server / servers
	add = sub.add_parser("add-server", help="Add a downstream MCP server")
	add.add_argument("server_id")
	add.add_argument("--transport", choices=["stdio", "http"], default="stdio")
	add.add_argument("--command", dest="server_command", default="", help="Executable for stdio servers")
	add.add_argument(
		"--arg", dest="server_args", action="append", default=[],
		help="Server argument (repeatable); attach values starting with '-', e.g. --arg=-y",
	)
	add.add_argument("--env", dest="server_env", action="append", default=[], help="KEY=VALUE (repeatable)")
	add.add_argument("--server-url", dest="server_url", default="", help="URL for http servers")
	rm = sub.add_parser("remove-server", help="Remove a downstream MCP server")
	rm.add_argument("server_id")
	sub.add_parser("servers", help="List downstream MCP servers")

	# tool-proxy discover
	disc = sub.add_parser("discover", help="Refresh a server's tool catalog")
	disc.add_argument("server_id", nargs="?", default=None, help="Server id (all servers when omitted)")

	# tool-proxy state / client-config
	sub.add_parser("state", help="Print servers, tools and derived config from one snapshot")
	sub.add_parser("client-config", help="Print the derived AI-client configuration")

	# tool-proxy serve / mcp
	serve = sub.add_parser("serve", help="Start the HTTP front end")
	serve.add_argument("--host", default=None)
	serve.add_argument("--port", type=int, default=None)
	sub.add_parser("mcp", help="Start the MCP server (stdio)")

	# tool-proxy validate-config
	sub.add_parser("validate-config", help="Validate config file semantically")

	return parser


def _load(args: argparse.Namespace) -> ProxyConfig:
	config_path = Path(args.config)
	if config_path.exists():
		config = load_config(config_path)
	else:
		if args.config != DEFAULT_CONFIG:
			raise FileNotFoundError(f"Config file not found: {config_path}")
		config = ProxyConfig()
	if args.db:
		config.storage.db_path = args.db
	return config


def _json_arg(raw: str | None, label: str) -> Any:
	if raw is None:
		return None
	try:
		return json.loads(raw)
	except json.JSONDecodeError as e:
		raise ValueError(f"{label} is not valid JSON: {e}") from None


def _print_result(outcome: OperationResult) -> int:
	print(json.dumps(outcome.model_dump(mode="json"), indent=2))
	return 0 if outcome.success else 1


def _run_operation(args: argparse.Namespace, op: Callable[[Any], Awaitable[OperationResult]]) -> int:
	"""Run one operation against a local proxy or a remote server."""

	async def _run() -> OperationResult:
		if args.url:
			from tool_proxy.client import ToolProxyClient

			target: Any = ToolProxyClient(args.url)
		else:
			target = await create_proxy(_load(args))
		try:
			return await op(target)
		finally:
			await target.aclose()

	return _print_result(asyncio.run(_run()))


def cmd_register(args: argparse.Namespace) -> int:
	auth = _json_arg(args.auth, "--auth")
	schema = _json_arg(args.schema, "--schema")
	return _run_operation(args, lambda p: p.register_tool(
		args.kind, args.entry_point, args.description,
		authentication=auth, name=args.name, input_schema=schema, timeout=args.timeout,
	))


def cmd_tools(args: argparse.Namespace) -> int:
	return _run_operation(args, lambda p: p.list_tools())


def cmd_all_tools(args: argparse.Namespace) -> int:
	return _run_operation(args, lambda p: p.list_all_server_tools())


def cmd_execute(args: argparse.Namespace) -> int:
	params = _json_arg(args.params, "--params")
	return _run_operation(args, lambda p: p.execute_tool(args.tool_id, params))


def cmd_proxy_execute(args: argparse.Namespace) -> int:
	params = _json_arg(args.params, "--params")
	return _run_operation(args, lambda p: p.execute_proxy_tool(args.tool_id, params))


def cmd_enable(args: argparse.Namespace) -> int:
	return _run_operation(args, lambda p: p.update_tool_status(args.tool_id, True))


def cmd_disable(args: argparse.Namespace) -> int:
	return _run_operation(args, lambda p: p.update_tool_status(args.tool_id, False))


def cmd_uninstall(args: argparse.Namespace) -> int:
	return _run_operation(args, lambda p: p.uninstall_tool(args.tool_id))


def _parse_env(pairs: list[str]) -> dict[str, str]:
	env: dict[str, str] = {}
	for pair in pairs:
		key, sep, value = pair.partition("=")
		if not sep or not key:
			raise ValueError(f"--env expects KEY=VALUE, got {pair!r}")
		env[key] = value
	return env


def cmd_configure(args: argparse.Namespace) -> int:
	env = _parse_env(args.tool_env)
	return _run_operation(args, lambda p: p.update_tool_config(args.tool_id, env))


def cmd_add_server(args: argparse.Namespace) -> int:
	env = _parse_env(args.server_env)
	return _run_operation(args, lambda p: p.register_server(
		args.server_id, transport=args.transport, command=args.server_command,
		args=args.server_args, env=env, url=args.server_url,
	))


def cmd_remove_server(args: argparse.Namespace) -> int:
	return _run_operation(args, lambda p: p.remove_server(args.server_id))


def cmd_servers(args: argparse.Namespace) -> int:
	return _run_operation(args, lambda p: p.list_servers())


def cmd_discover(args: argparse.Namespace) -> int:
	if args.server_id is None:
		return _run_operation(args, lambda p: p.discover_all_servers())
	return _run_operation(args, lambda p: p.discover_tools(args.server_id))


def cmd_state(args: argparse.Namespace) -> int:
	return _run_operation(args, lambda p: p.get_all_state())


def cmd_client_config(args: argparse.Namespace) -> int:
	return _run_operation(args, lambda p: p.get_derived_config())


def cmd_serve(args: argparse.Namespace) -> int:
	"""Start the HTTP front end."""
	from tool_proxy.http_api import serve

	config = _load(args)
	if args.host:
		config.http.host = args.host
	if args.port:
		config.http.port = args.port
	serve(config)
	return 0


def cmd_mcp(args: argparse.Namespace) -> int:
	"""Start the MCP server."""
	from tool_proxy.mcp_server import run_mcp_server

	run_mcp_server(_load(args))
	return 0


def cmd_validate_config(args: argparse.Namespace) -> int:
	"""Validate config file semantically."""
	config = load_config(args.config)
	issues = validate_config(config)

	errors = [(lvl, msg) for lvl, msg in issues if lvl == "error"]
	warnings = [(lvl, msg) for lvl, msg in issues if lvl == "warning"]

	for level, msg in issues:
		print(f"[{level.upper()}] {msg}")

	if not issues:
		print("Config OK")

	print(f"\n{len(errors)} error(s), {len(warnings)} warning(s)")
	return 1 if errors else 0


COMMANDS = {
	"register": cmd_register,
	"tools": cmd_tools,
	"all-tools": cmd_all_tools,
	"execute": cmd_execute,
	"proxy-execute": cmd_proxy_execute,
	"enable": cmd_enable,
	"disable": cmd_disable,
	"uninstall": cmd_uninstall,
	"configure": cmd_configure,
	"add-server": cmd_add_server,
	"remove-server": cmd_remove_server,
	"servers": cmd_servers,
	"discover": cmd_discover,
	"state": cmd_state,
	"client-config": cmd_client_config,
	"serve": cmd_serve,
	"mcp": cmd_mcp,
	"validate-config": cmd_validate_config,
}


def main(argv: list[str] | None = None) -> int:
	parser = build_parser()
	args = parser.parse_args(argv)

	# stdout carries JSON (or the MCP protocol); logs go to stderr
	logging.basicConfig(
		level=logging.DEBUG if args.verbose else logging.INFO,
		format="%(asctime)s %(levelname)s %(name)s: %(message)s",
		datefmt="%H:%M:%S",
		stream=sys.stderr,
		force=True,
	)

	if args.command is None:
		parser.print_help()
		return 0

	handler = COMMANDS.get(args.command)
	if handler is None:
		print(f"Unknown command: {args.command}")
		return 1

	try:
		return handler(args)
	except (FileNotFoundError, ValueError) as e:
		print(f"Error: {e}", file=sys.stderr)
		return 1


if __name__ == "__main__":
	sys.exit(main())

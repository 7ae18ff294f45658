"""TOML configuration loader for tool-proxy."""

from __future__ import annotations

import math
import os
import shutil
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from tool_proxy.models import LOCAL_ID_PREFIX

DEFAULT_HOME = Path.home() / ".tool-proxy"
DEFAULT_DB_PATH = DEFAULT_HOME / "registry.db"


@dataclass
class StorageConfig:
	"""Durable registry storage."""

	db_path: str = str(DEFAULT_DB_PATH)

	@property
	def resolved_path(self) -> Path:
		if self.db_path == ":memory:":
			return Path(self.db_path)
		return Path(os.path.expanduser(self.db_path))


@dataclass
class ExecutionConfig:
	"""Execution bounds shared by every runtime adapter."""

	default_timeout: float = 30.0  # seconds, must stay finite
	max_output_kb: int = 1024  # stdout captured per call
	diagnostics_max_chars: int = 4000  # stderr kept in RuntimeFailure


@dataclass
class RuntimesConfig:
	"""Interpreters for script tools."""

	node_executable: str = "node"
	python_executable: str = "python3"


@dataclass
class ContainerConfig:
	"""Docker settings for containerized tools."""

	docker_executable: str = "docker"
	network: str = "none"
	cap_drop: list[str] = field(default_factory=lambda: ["ALL"])
	security_opt: list[str] = field(default_factory=lambda: ["no-new-privileges:true"])
	run_as_user: str = ""  # empty = image default
	memory_limit: str = ""  # e.g. "512m"
	stop_timeout: int = 10  # seconds allowed for `docker rm -f` on teardown


@dataclass
class DiscoveryConfig:
	"""Downstream MCP server settings."""

	list_timeout: float = 10.0
	call_timeout: float = 30.0
	on_startup: bool = False


@dataclass
class ServerConfig:
	"""A downstream MCP server declared in the config file."""

	id: str = ""
	transport: str = "stdio"  # stdio | http
	command: str = ""
	args: list[str] = field(default_factory=list)
	env: dict[str, str] = field(default_factory=dict)
	url: str = ""


@dataclass
class HttpConfig:
	"""HTTP front end settings."""

	host: str = "127.0.0.1"
	port: int = 8765


@dataclass
class SecurityConfig:
	"""Security settings for tool subprocess isolation."""

	extra_env_keys: list[str] = field(default_factory=list)


@dataclass
class TracingConfig:
	"""OpenTelemetry tracing settings."""

	enabled: bool = False
	service_name: str = "tool-proxy"
	exporter: str = "console"  # console | otlp
	otlp_endpoint: str = "http://localhost:4317"


@dataclass
class ProxyConfig:
	"""Top-level tool-proxy configuration."""

	storage: StorageConfig = field(default_factory=StorageConfig)
	execution: ExecutionConfig = field(default_factory=ExecutionConfig)
	runtimes: RuntimesConfig = field(default_factory=RuntimesConfig)
	container: ContainerConfig = field(default_factory=ContainerConfig)
	discovery: DiscoveryConfig = field(default_factory=DiscoveryConfig)
	servers: list[ServerConfig] = field(default_factory=list)
	http: HttpConfig = field(default_factory=HttpConfig)
	security: SecurityConfig = field(default_factory=SecurityConfig)
	tracing: TracingConfig = field(default_factory=TracingConfig)


def _build_storage(data: dict[str, Any]) -> StorageConfig:
	sc = StorageConfig()
	if "db_path" in data:
		sc.db_path = str(data["db_path"])
	return sc


def _build_execution(data: dict[str, Any]) -> ExecutionConfig:
	ec = ExecutionConfig()
	if "default_timeout" in data:
		ec.default_timeout = float(data["default_timeout"])
	for key in ("max_output_kb", "diagnostics_max_chars"):
		if key in data:
			setattr(ec, key, int(data[key]))
	return ec


def _build_runtimes(data: dict[str, Any]) -> RuntimesConfig:
	rc = RuntimesConfig()
	for key in ("node_executable", "python_executable"):
		if key in data:
			setattr(rc, key, str(data[key]))
	return rc


def _build_container(data: dict[str, Any]) -> ContainerConfig:
	cc = ContainerConfig()
	for key in ("docker_executable", "network", "run_as_user", "memory_limit"):
		if key in data:
			setattr(cc, key, str(data[key]))
	if "cap_drop" in data:
		cc.cap_drop = [str(c) for c in data["cap_drop"]]
	if "security_opt" in data:
		cc.security_opt = [str(o) for o in data["security_opt"]]
	if "stop_timeout" in data:
		cc.stop_timeout = int(data["stop_timeout"])
	return cc


def _build_discovery(data: dict[str, Any]) -> DiscoveryConfig:
	dc = DiscoveryConfig()
	for key in ("list_timeout", "call_timeout"):
		if key in data:
			setattr(dc, key, float(data[key]))
	if "on_startup" in data:
		dc.on_startup = bool(data["on_startup"])
	return dc


def _build_servers(data: list[dict[str, Any]]) -> list[ServerConfig]:
	servers: list[ServerConfig] = []
	for item in data:
		sc = ServerConfig()
		for key in ("id", "transport", "command", "url"):
			if key in item:
				setattr(sc, key, str(item[key]))
		if "args" in item:
			sc.args = [str(a) for a in item["args"]]
		if "env" in item:
			sc.env = {str(k): str(v) for k, v in item["env"].items()}
		servers.append(sc)
	return servers


def _build_http(data: dict[str, Any]) -> HttpConfig:
	hc = HttpConfig()
	if "host" in data:
		hc.host = str(data["host"])
	if "port" in data:
		hc.port = int(data["port"])
	return hc


def _build_security(data: dict[str, Any]) -> SecurityConfig:
	sc = SecurityConfig()
	if "extra_env_keys" in data:
		sc.extra_env_keys = [str(k) for k in data["extra_env_keys"]]
	return sc


def _build_tracing(data: dict[str, Any]) -> TracingConfig:
	tc = TracingConfig()
	if "enabled" in data:
		tc.enabled = bool(data["enabled"])
	for key in ("service_name", "exporter", "otlp_endpoint"):
		if key in data:
			setattr(tc, key, str(data[key]))
	return tc


def server_spec_error(server_id: str, transport: str, command: str, url: str) -> str:
	"""Return why a server descriptor is unusable, or an empty string.

	Server ids share the derived-config key space with local tool ids, so the
	local id prefix is reserved.
	"""
	if not server_id:
		return "server id must be non-empty"
	if ":" in server_id:
		return f"server id must not contain ':': {server_id}"
	if server_id.startswith(LOCAL_ID_PREFIX):
		return f"server id must not start with '{LOCAL_ID_PREFIX}': {server_id}"
	if transport == "stdio":
		if not command:
			return f"server {server_id}: stdio transport requires a command"
	elif transport == "http":
		if not url:
			return f"server {server_id}: http transport requires a url"
	else:
		return f"server {server_id}: unknown transport {transport!r}"
	return ""


_ENV_ALLOWLIST = {
	# System essentials
	"HOME", "USER", "LOGNAME", "SHELL", "LANG", "LC_ALL", "LC_CTYPE",
	"TERM", "TMPDIR", "TMP", "TEMP", "XDG_RUNTIME_DIR",
	"XDG_CONFIG_HOME", "XDG_DATA_HOME", "XDG_CACHE_HOME",
	"PATH", "PWD", "SYSTEMROOT",
	# Python / Node toolchain
	"VIRTUAL_ENV", "PYTHONPATH", "PYTHONDONTWRITEBYTECODE",
	"NODE_PATH", "NPM_CONFIG_PREFIX",
	# Docker client
	"DOCKER_HOST", "DOCKER_CONFIG", "DOCKER_CONTEXT",
	# Encoding
	"PYTHONIOENCODING", "PYTHONUTF8",
}

# Keys that must NEVER reach tools, even if added to extra_env_keys
_ENV_DENYLIST = {
	"ANTHROPIC_API_KEY", "OPENAI_API_KEY",
	"AWS_SECRET_ACCESS_KEY", "AWS_SESSION_TOKEN",
	"GITHUB_TOKEN", "GH_TOKEN", "GITLAB_TOKEN",
	"NPM_TOKEN", "PYPI_TOKEN",
	"DATABASE_URL", "REDIS_URL",
}


def tool_subprocess_env(
	security: SecurityConfig | None = None,
	extra: dict[str, str] | None = None,
) -> dict[str, str]:
	"""Build a restricted environment for a tool process.

	Uses an allowlist approach: only safe system vars plus any explicitly
	configured extras are inherited from the proxy. Values in `extra` come
	from the tool's own authentication payload and are always applied.
	"""
	allowed = set(_ENV_ALLOWLIST)
	if security is not None:
		allowed |= set(security.extra_env_keys)
	env = {
		k: v for k, v in os.environ.items()
		if k in allowed and k not in _ENV_DENYLIST
	}
	if extra:
		env.update(extra)
	return env


def load_config(path: str | Path) -> ProxyConfig:
	"""Load a tool-proxy.toml config file.

	Args:
		path: Path to the TOML config file.

	Returns:
		Parsed ProxyConfig.

	Raises:
		FileNotFoundError: If config file doesn't exist.
		tomllib.TOMLDecodeError: If config is invalid TOML.
	"""
	config_path = Path(path)
	if not config_path.exists():
		raise FileNotFoundError(f"Config file not found: {config_path}")

	with open(config_path, "rb") as f:
		data = tomllib.load(f)

	pc = ProxyConfig()
	if "storage" in data:
		pc.storage = _build_storage(data["storage"])
	if "execution" in data:
		pc.execution = _build_execution(data["execution"])
	if "runtimes" in data:
		pc.runtimes = _build_runtimes(data["runtimes"])
	if "container" in data:
		pc.container = _build_container(data["container"])
	if "discovery" in data:
		pc.discovery = _build_discovery(data["discovery"])
	if "servers" in data:
		pc.servers = _build_servers(data["servers"])
	if "http" in data:
		pc.http = _build_http(data["http"])
	if "security" in data:
		pc.security = _build_security(data["security"])
	if "tracing" in data:
		pc.tracing = _build_tracing(data["tracing"])
	pc.security.extra_env_keys = [
		k for k in pc.security.extra_env_keys if k not in _ENV_DENYLIST
	]
	return pc


def validate_config(config: ProxyConfig) -> list[tuple[str, str]]:
	"""Perform semantic validation of a loaded ProxyConfig.

	Returns a list of (level, message) tuples where level is 'error' or 'warning'.
	"""
	issues: list[tuple[str, str]] = []

	for label, seconds in (
		("execution.default_timeout", config.execution.default_timeout),
		("discovery.list_timeout", config.discovery.list_timeout),
		("discovery.call_timeout", config.discovery.call_timeout),
	):
		if not math.isfinite(seconds) or seconds <= 0:
			issues.append(("error", f"{label} must be positive and finite: {seconds}"))

	for label, exe in (
		("runtimes.node_executable", config.runtimes.node_executable),
		("runtimes.python_executable", config.runtimes.python_executable),
		("container.docker_executable", config.container.docker_executable),
	):
		if shutil.which(exe) is None:
			issues.append(("warning", f"{label} not found on PATH: {exe}"))

	seen: set[str] = set()
	for server in config.servers:
		if not server.id:
			issues.append(("error", "server entry without id"))
			continue
		if server.id in seen:
			issues.append(("error", f"duplicate server id: {server.id}"))
		seen.add(server.id)
		problem = server_spec_error(server.id, server.transport, server.command, server.url)
		if problem:
			issues.append(("error", problem))

	if config.container.network == "host":
		issues.append(("warning", "container.network is 'host'; tools share the proxy's network namespace"))

	return issues

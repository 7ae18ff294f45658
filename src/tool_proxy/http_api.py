"""HTTP front end -- FastAPI routes over ToolProxy, served with uvicorn."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from tool_proxy.api import OperationResult, ToolProxy, create_proxy
from tool_proxy.config import ProxyConfig
from tool_proxy.errors import ErrorKind

logger = logging.getLogger(__name__)

_STATUS_BY_KIND: dict[ErrorKind, int] = {
	ErrorKind.INVALID_SPEC: 400,
	ErrorKind.INVALID_PARAMETERS: 400,
	ErrorKind.NOT_FOUND: 404,
	ErrorKind.DISABLED: 409,
	ErrorKind.RUNTIME_FAILURE: 500,
	ErrorKind.SERVER_UNREACHABLE: 502,
	ErrorKind.SERVER_PROTOCOL_ERROR: 502,
	ErrorKind.BACKEND_UNAVAILABLE: 503,
	ErrorKind.TIMEOUT: 504,
}


class RegisterToolRequest(BaseModel):
	kind: str
	entry_point: str
	description: str = ""
	authentication: Any = None
	name: str | None = None
	input_schema: dict[str, Any] | None = None
	timeout: float | None = None


class UpdateStatusRequest(BaseModel):
	enabled: bool


class UpdateConfigRequest(BaseModel):
	env: dict[str, str]


class ExecuteRequest(BaseModel):
	parameters: dict[str, Any] = {}


class ProxyExecuteRequest(BaseModel):
	tool_id: str
	parameters: dict[str, Any] = {}


class RegisterServerRequest(BaseModel):
	id: str
	transport: str = "stdio"
	command: str = ""
	args: list[str] = []
	env: dict[str, str] = {}
	url: str = ""


def _respond(outcome: OperationResult) -> JSONResponse:
	status = 200
	if not outcome.success and outcome.error is not None:
		status = _STATUS_BY_KIND.get(outcome.error.kind, 500)
	return JSONResponse(status_code=status, content=outcome.model_dump(mode="json"))


def create_app(config: ProxyConfig) -> FastAPI:
	"""Build the app; the ToolProxy is created inside the server's event loop."""

	@asynccontextmanager
	async def lifespan(app: FastAPI) -> AsyncIterator[None]:
		proxy = await create_proxy(config)
		app.state.proxy = proxy
		logger.info("HTTP front end ready")
		try:
			yield
		finally:
			await proxy.aclose()

	app = FastAPI(title="tool-proxy", version="0.1.0", lifespan=lifespan)

	def _proxy() -> ToolProxy:
		return app.state.proxy

	@app.get("/health")
	async def health() -> dict[str, Any]:
		return {"status": "ok", "in_flight": _proxy().dispatcher.in_flight}

	@app.get("/tools")
	async def list_tools() -> JSONResponse:
		return _respond(await _proxy().list_tools())

	@app.post("/tools")
	async def register_tool(req: RegisterToolRequest) -> JSONResponse:
		return _respond(await _proxy().register_tool(
			req.kind, req.entry_point, req.description,
			authentication=req.authentication, name=req.name,
			input_schema=req.input_schema, timeout=req.timeout,
		))

	@app.patch("/tools/{tool_id}")
	async def update_tool_status(tool_id: str, req: UpdateStatusRequest) -> JSONResponse:
		return _respond(await _proxy().update_tool_status(tool_id, req.enabled))

	@app.put("/tools/{tool_id}/config")
	async def update_tool_config(tool_id: str, req: UpdateConfigRequest) -> JSONResponse:
		return _respond(await _proxy().update_tool_config(tool_id, req.env))

	@app.delete("/tools/{tool_id}")
	async def uninstall_tool(tool_id: str) -> JSONResponse:
		return _respond(await _proxy().uninstall_tool(tool_id))

	@app.post("/tools/{tool_id}/execute")
	async def execute_tool(tool_id: str, req: ExecuteRequest) -> JSONResponse:
		return _respond(await _proxy().execute_tool(tool_id, req.parameters))

	@app.get("/all-tools")
	async def list_all_server_tools() -> JSONResponse:
		return _respond(await _proxy().list_all_server_tools())

	@app.post("/proxy/execute")
	async def execute_proxy_tool(req: ProxyExecuteRequest) -> JSONResponse:
		return _respond(await _proxy().execute_proxy_tool(req.tool_id, req.parameters))

	@app.get("/servers")
	async def list_servers() -> JSONResponse:
		return _respond(await _proxy().list_servers())

	@app.post("/servers")
	async def register_server(req: RegisterServerRequest) -> JSONResponse:
		return _respond(await _proxy().register_server(
			req.id, transport=req.transport, command=req.command,
			args=req.args, env=req.env, url=req.url,
		))

	@app.delete("/servers/{server_id}")
	async def remove_server(server_id: str) -> JSONResponse:
		return _respond(await _proxy().remove_server(server_id))

	@app.post("/servers/{server_id}/discover")
	async def discover_tools(server_id: str) -> JSONResponse:
		return _respond(await _proxy().discover_tools(server_id))

	@app.post("/discover")
	async def discover_all() -> JSONResponse:
		return _respond(await _proxy().discover_all_servers())

	@app.get("/config/derived")
	async def get_derived_config() -> JSONResponse:
		return _respond(await _proxy().get_derived_config())

	@app.get("/state")
	async def get_all_state() -> JSONResponse:
		return _respond(await _proxy().get_all_state())

	return app


def serve(config: ProxyConfig) -> None:
	"""Run the HTTP front end in the foreground."""
	import uvicorn

	uvi_config = uvicorn.Config(
		app=create_app(config),
		host=config.http.host,
		port=config.http.port,
		log_level="info",
	)
	logger.info("Serving tool-proxy on %s:%d", config.http.host, config.http.port)
	uvicorn.Server(uvi_config).run()

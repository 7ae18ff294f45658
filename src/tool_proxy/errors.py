"""Error taxonomy for tool-proxy.

Core components raise ToolProxyError subclasses; the boundary layer
(tool_proxy.api) converts them into structured failure results.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
	INVALID_SPEC = "InvalidSpec"
	NOT_FOUND = "NotFound"
	DISABLED = "Disabled"
	INVALID_PARAMETERS = "InvalidParameters"
	TIMEOUT = "Timeout"
	RUNTIME_FAILURE = "RuntimeFailure"
	BACKEND_UNAVAILABLE = "BackendUnavailable"
	SERVER_UNREACHABLE = "ServerUnreachable"
	SERVER_PROTOCOL_ERROR = "ServerProtocolError"


class ToolProxyError(Exception):
	"""Base class for every recoverable, per-call failure."""

	kind: ErrorKind = ErrorKind.RUNTIME_FAILURE

	def __init__(self, message: str) -> None:
		super().__init__(message)
		self.message = message


class InvalidSpec(ToolProxyError):
	kind = ErrorKind.INVALID_SPEC


class NotFound(ToolProxyError):
	kind = ErrorKind.NOT_FOUND


class Disabled(ToolProxyError):
	kind = ErrorKind.DISABLED


class InvalidParameters(ToolProxyError):
	kind = ErrorKind.INVALID_PARAMETERS


class ExecutionTimeout(ToolProxyError):
	kind = ErrorKind.TIMEOUT


class RuntimeFailure(ToolProxyError):
	"""Backend exited abnormally or produced unparseable output."""

	kind = ErrorKind.RUNTIME_FAILURE

	def __init__(self, message: str, diagnostics: str = "") -> None:
		super().__init__(message)
		self.diagnostics = diagnostics


class BackendUnavailable(ToolProxyError):
	kind = ErrorKind.BACKEND_UNAVAILABLE


class ServerUnreachable(ToolProxyError):
	kind = ErrorKind.SERVER_UNREACHABLE


class ServerProtocolError(ToolProxyError):
	kind = ErrorKind.SERVER_PROTOCOL_ERROR

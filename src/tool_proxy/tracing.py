"""OpenTelemetry tracing for executions and discovery, no-op when disabled."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Generator

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import ConsoleSpanExporter, SimpleSpanProcessor

from tool_proxy.config import TracingConfig

logger = logging.getLogger(__name__)


class NoOpSpan:
	"""A no-op span that acts as a context manager and attribute sink."""

	def set_attribute(self, key: str, value: Any) -> None:
		pass

	def record_exception(self, exception: BaseException) -> None:
		pass

	def get_span_context(self) -> _NoOpSpanContext:
		return _NoOpSpanContext()


class _NoOpSpanContext:
	trace_id: int = 0
	span_id: int = 0


class ProxyTracer:
	"""Owns the tracer provider; hands out NoOpSpan when tracing is off."""

	def __init__(self, config: TracingConfig) -> None:
		self._config = config
		self._tracer: Any = None

		if not config.enabled:
			return

		resource = Resource.create({"service.name": config.service_name})
		provider = TracerProvider(resource=resource)

		if config.exporter == "otlp":
			try:
				from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
				provider.add_span_processor(
					SimpleSpanProcessor(OTLPSpanExporter(endpoint=config.otlp_endpoint))
				)
			except ImportError:
				logger.warning(
					"OTLP exporter not available. Install opentelemetry-exporter-otlp-proto-grpc"
				)
				provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))
		else:
			provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))

		# Own provider rather than the global one so several proxies can coexist
		self._tracer = provider.get_tracer("tool-proxy")

	@property
	def active(self) -> bool:
		return self._tracer is not None

	@contextmanager
	def start_execution_span(self, tool_id: str, route: str) -> Generator[Any, None, None]:
		if not self.active:
			yield NoOpSpan()
			return
		with self._tracer.start_as_current_span("execute") as span:
			span.set_attribute("tool.id", tool_id)
			span.set_attribute("tool.route", route)
			yield span

	@contextmanager
	def start_discovery_span(self, server_id: str) -> Generator[Any, None, None]:
		if not self.active:
			yield NoOpSpan()
			return
		with self._tracer.start_as_current_span("discover") as span:
			span.set_attribute("server.id", server_id)
			yield span


def get_current_trace_context() -> tuple[str, str]:
	"""Return (trace_id, span_id) hex strings, or ("", "") outside a span."""
	ctx = trace.get_current_span().get_span_context()
	if ctx is None or ctx.trace_id == 0:
		return ("", "")
	return (
		format(ctx.trace_id, "032x"),
		format(ctx.span_id, "016x"),
	)

from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from importlib.metadata import PackageNotFoundError, version
import logging
import os
from typing import Iterator

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.sdk.resources import DEPLOYMENT_ENVIRONMENT, SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import TraceIdRatioBased

from civic_resolver.core.config import Settings

LOG_FORMAT = (
    "%(asctime)s %(levelname)s %(name)s trace_id=%(trace_id)s span_id=%(span_id)s zip_code=%(zip_code)s %(message)s"
)
# Health and readiness checks get no server spans.
UNTRACED_PATHS = "healthz,readyz"

_BASE_LOG_RECORD_FACTORY = logging.getLogRecordFactory()
_LOG_CORRELATION_INSTALLED = False
_HTTPX_INSTRUMENTOR = HTTPXClientInstrumentor()
_CURRENT_ZIP_CODE: ContextVar[str] = ContextVar("civic_resolver_zip_code", default="-")


@dataclass(slots=True)
class TelemetryRuntime:
    enabled: bool
    provider: TracerProvider | None


@contextmanager
def bound_zip_code(zip_code: str) -> Iterator[None]:
    """Stamp ``zip_code`` on every log record emitted inside the block."""
    token = _CURRENT_ZIP_CODE.set(zip_code)
    try:
        yield
    finally:
        _CURRENT_ZIP_CODE.reset(token)


def configure_logging() -> None:
    _install_log_correlation()
    if logging.getLogger().handlers:
        return
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)


def setup_api_telemetry(app: FastAPI, settings: Settings) -> TelemetryRuntime:
    if not settings.otel_enabled:
        return TelemetryRuntime(enabled=False, provider=None)

    if settings.otel_log_correlation:
        _install_log_correlation()

    provider = TracerProvider(
        resource=resolver_resource(settings),
        sampler=TraceIdRatioBased(settings.otel_trace_sample_ratio),
    )
    exporter = _build_exporter(settings)
    if exporter is not None:
        provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)
    FastAPIInstrumentor.instrument_app(app, tracer_provider=provider, excluded_urls=UNTRACED_PATHS)
    # Upstream geocoder calls get client spans under the resolve span.
    _HTTPX_INSTRUMENTOR.instrument(tracer_provider=provider)
    return TelemetryRuntime(enabled=True, provider=provider)


def shutdown_api_telemetry(app: FastAPI, runtime: TelemetryRuntime) -> None:
    if not runtime.enabled:
        return
    FastAPIInstrumentor.uninstrument_app(app)
    _HTTPX_INSTRUMENTOR.uninstrument()
    if runtime.provider is not None:
        runtime.provider.force_flush()
        runtime.provider.shutdown()


def resolver_resource(settings: Settings) -> Resource:
    return Resource.create(
        {
            SERVICE_NAME: settings.otel_service_name,
            SERVICE_VERSION: _package_version(),
            DEPLOYMENT_ENVIRONMENT: settings.environment,
            "civic_resolver.geo_providers": ",".join(settings.geo_providers),
            "civic_resolver.low_confidence_fallback": settings.geo_allow_low_confidence_fallback,
        }
    )


def _package_version() -> str:
    try:
        return version("civic-resolver")
    except PackageNotFoundError:
        return "0+unknown"


def _exporter_endpoint(settings: Settings) -> str | None:
    for candidate in (
        settings.otel_exporter_otlp_endpoint,
        os.getenv("OTEL_EXPORTER_OTLP_TRACES_ENDPOINT"),
        os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT"),
    ):
        if candidate:
            return candidate
    return None


def _build_exporter(settings: Settings) -> OTLPSpanExporter | None:
    endpoint = _exporter_endpoint(settings)
    if endpoint is None:
        logging.getLogger(__name__).info(
            "OTel exporter endpoint not set; resolution spans stay in-process for service=%s",
            settings.otel_service_name,
        )
        return None

    headers = parse_otlp_headers(settings.otel_exporter_otlp_headers or os.getenv("OTEL_EXPORTER_OTLP_HEADERS"))
    return OTLPSpanExporter(endpoint=endpoint, headers=headers or None)


def parse_otlp_headers(raw: str | None) -> dict[str, str]:
    """Parse ``key=value,key2=value2``; items without ``=`` or a key are dropped."""
    parsed: dict[str, str] = {}
    for item in (raw or "").split(","):
        key, separator, value = item.partition("=")
        if separator and key.strip():
            parsed[key.strip()] = value.strip()
    return parsed


def _install_log_correlation() -> None:
    global _LOG_CORRELATION_INSTALLED
    if _LOG_CORRELATION_INSTALLED:
        return

    def record_factory(*args: object, **kwargs: object) -> logging.LogRecord:
        record = _BASE_LOG_RECORD_FACTORY(*args, **kwargs)
        context = trace.get_current_span().get_span_context()
        record.trace_id = format(context.trace_id, "032x") if context.is_valid else "0" * 32
        record.span_id = format(context.span_id, "016x") if context.is_valid else "0" * 16
        record.zip_code = _CURRENT_ZIP_CODE.get()
        return record

    logging.setLogRecordFactory(record_factory)
    _LOG_CORRELATION_INSTALLED = True

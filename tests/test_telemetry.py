from __future__ import annotations

import logging

from fastapi import FastAPI

from civic_resolver.core.config import Settings
from civic_resolver.core.telemetry import (
    bound_zip_code,
    configure_logging,
    parse_otlp_headers,
    resolver_resource,
    setup_api_telemetry,
)


def test_parse_otlp_headers_skips_malformed_items() -> None:
    assert parse_otlp_headers(None) == {}
    assert parse_otlp_headers("authorization=Bearer abc, x-team = civic ,broken,=empty") == {
        "authorization": "Bearer abc",
        "x-team": "civic",
    }


def test_log_records_carry_trace_ids_outside_spans() -> None:
    configure_logging()
    record = logging.getLogRecordFactory()("civic", logging.INFO, __file__, 1, "hello", (), None)
    assert record.trace_id == "0" * 32
    assert record.span_id == "0" * 16


def test_disabled_telemetry_is_a_noop() -> None:
    runtime = setup_api_telemetry(FastAPI(), Settings(otel_enabled=False))
    assert runtime.enabled is False
    assert runtime.provider is None


def test_log_records_carry_the_zip_code_being_resolved() -> None:
    configure_logging()
    factory = logging.getLogRecordFactory()

    with bound_zip_code("95814"):
        inside = factory("civic", logging.INFO, __file__, 1, "resolving", (), None)
    outside = factory("civic", logging.INFO, __file__, 1, "idle", (), None)

    assert inside.zip_code == "95814"
    assert outside.zip_code == "-"


def test_resource_describes_the_resolver_deployment() -> None:
    settings = Settings(
        environment="staging",
        otel_service_name="civic-resolver-staging",
        geo_provider_order="municipal_registry,static_table",
    )
    attributes = resolver_resource(settings).attributes

    assert attributes["service.name"] == "civic-resolver-staging"
    assert attributes["deployment.environment"] == "staging"
    assert attributes["civic_resolver.geo_providers"] == "municipal_registry,static_table"
    assert attributes["civic_resolver.low_confidence_fallback"] is False
    assert attributes["service.version"]

import logging

import pytest
from opentelemetry.sdk.trace import TracerProvider

from curator.core.config import Settings
from curator.core.telemetry import (
    TraceContextFilter,
    build_exporter,
    parse_otlp_headers,
    setup_telemetry,
    shutdown_telemetry,
)


def test_parse_otlp_headers_drops_malformed_entries() -> None:
    assert parse_otlp_headers("x-api-key = secret, broken,=nokey,tenant=hotdogs") == {
        "x-api-key": "secret",
        "tenant": "hotdogs",
    }
    assert parse_otlp_headers(None) == {}


def test_exporter_is_skipped_without_endpoint(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("OTEL_EXPORTER_OTLP_TRACES_ENDPOINT", raising=False)
    monkeypatch.delenv("OTEL_EXPORTER_OTLP_ENDPOINT", raising=False)
    assert build_exporter(Settings(otel_exporter_otlp_endpoint=None)) is None


def test_disabled_telemetry_is_inert() -> None:
    runtime = setup_telemetry(Settings(otel_enabled=False), "worker")

    assert runtime.enabled is False
    assert runtime.component == "worker"
    shutdown_telemetry(runtime)


def test_trace_filter_stamps_active_span_ids() -> None:
    tracer = TracerProvider().get_tracer(__name__)
    trace_filter = TraceContextFilter()

    outside = logging.LogRecord("curator", logging.INFO, __file__, 1, "idle", None, None)
    trace_filter.filter(outside)
    with tracer.start_as_current_span("scan.source") as span:
        inside = logging.LogRecord("curator", logging.INFO, __file__, 1, "scanning", None, None)
        trace_filter.filter(inside)

    assert outside.trace_id == "0" * 32
    assert inside.trace_id == format(span.get_span_context().trace_id, "032x")
    assert len(inside.span_id) == 16

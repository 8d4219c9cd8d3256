# ==== OPENTELEMETRY TRACING CONFIGURATION ==== #

"""
OpenTelemetry tracing configuration for the UMKM licensing core.

Spans are always created through ``get_tracer``; they are only exported when
an OTLP endpoint is configured, so local runs and tests pay nothing.
"""

import os
from typing import Any, Dict

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.redis import RedisInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from umkm_licensing.observability.logging import get_logger


logger = get_logger(__name__)


# ==== TRACING INITIALIZATION ==== #


def init_tracing(
    service_name: str,
    endpoint: str | None = None,
    headers: str | None = None,
) -> bool:
    """
    Initialize OpenTelemetry tracing with an OTLP exporter.

    Args:
        service_name (str): Name of the service for tracing identification
        endpoint (str | None): OTLP collector endpoint; tracing stays local when unset
        headers (str | None): Comma-separated ``key=value`` exporter headers

    Returns:
        bool: True when an exporter was installed
    """
    # Allow local runs without an APM backend
    if not endpoint:
        return False

    resource_attrs = _parse_pairs(os.getenv("OTEL_RESOURCE_ATTRIBUTES", ""))
    resource_attrs["service.name"] = os.getenv("OTEL_SERVICE_NAME", service_name)

    provider = TracerProvider(resource=Resource.create(resource_attrs))
    exporter = OTLPSpanExporter(endpoint=endpoint, headers=_parse_pairs(headers))
    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)

    _setup_auto_instrumentation()
    return True


def _parse_pairs(raw: str | None) -> Dict[str, Any]:
    """Parse comma-separated ``key=value`` pairs."""
    pairs: Dict[str, Any] = {}
    if not raw:
        return pairs

    for part in filter(None, map(str.strip, raw.split(","))):
        if "=" in part:
            key, value = part.split("=", 1)
            pairs[key.strip()] = value.strip()

    return pairs


def _setup_auto_instrumentation() -> None:
    """Instrument SQLAlchemy and Redis; FastAPI is instrumented in main.py."""
    try:
        SQLAlchemyInstrumentor().instrument()
        RedisInstrumentor().instrument()
    except Exception as e:
        # Don't fail startup if instrumentation fails
        logger.warning("Failed to setup auto-instrumentation", error=str(e))


def get_tracer(name: str) -> trace.Tracer:
    """Get a tracer instance for the given module.

    Args:
        name: Module name (typically __name__)

    Returns:
        Tracer instance
    """
    return trace.get_tracer(name)

"""
Tracing and metrics.

Spans go to an OTLP collector (Jaeger in the dev stack) unless
TRACING_ENABLED=false; the provider is still installed so spans opened by the
services are valid either way. Prometheus series are scraped from /metrics.
"""
import logging
from typing import Optional

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from prometheus_client import Counter, Histogram

from numnum.config import settings

logger = logging.getLogger(__name__)

# ─────────────────────────── Prometheus Metrics ───────────────────────────
FOLLOW_ACTIONS_TOTAL = Counter(
    "follow_actions_total",
    "Follow graph mutations, by action and resulting status",
    ["action", "status"],  # action: follow|unfollow|accept|decline
)

GATEWAY_ERRORS_TOTAL = Counter(
    "gateway_errors_total",
    "Remote data gateway failures",
    ["operation"],  # 'select' | 'insert' | 'upsert' | 'update' | 'delete' | 'rpc' | 'auth'
)

MAP_BUILD_LATENCY = Histogram(
    "map_pins_build_seconds",
    "Time spent fetching and aggregating map pins",
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0],
)

MAP_REVIEWS_SKIPPED_TOTAL = Counter(
    "map_reviews_skipped_total",
    "Reviews excluded from map pins because of bad data",
    ["reason"],  # 'no_restaurant' | 'bad_coordinates'
)

ROWS_REJECTED_TOTAL = Counter(
    "rows_rejected_total",
    "Remote rows dropped by the decoder boundary",
    ["model"],
)


# ─────────────────────────── OpenTelemetry Setup ──────────────────────────
def _span_exporter() -> Optional[OTLPSpanExporter]:
    if not settings.tracing_enabled:
        logger.info("Span export disabled (TRACING_ENABLED=false)")
        return None
    try:
        return OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint, insecure=True)
    except Exception as exc:
        logger.warning("OTLP exporter unavailable (%s); spans stay in-process", exc)
        return None


def setup_tracing() -> TracerProvider:
    """Install the global TracerProvider and trace outgoing gateway calls."""
    provider = TracerProvider(
        resource=Resource.create(
            {
                "service.name": settings.service_name,
                "deployment.environment": settings.environment,
            }
        )
    )

    exporter = _span_exporter()
    if exporter is not None:
        provider.add_span_processor(BatchSpanProcessor(exporter))
        logger.info("Exporting spans → %s", settings.otel_exporter_otlp_endpoint)

    trace.set_tracer_provider(provider)

    # Backend REST/auth calls become child spans of the API request
    HTTPXClientInstrumentor().instrument()
    return provider


def instrument_app(app: FastAPI) -> None:
    """Request spans for every route except the scrape and health probes."""
    FastAPIInstrumentor.instrument_app(app, excluded_urls="metrics,health")

"""
Telemetry configuration (Metrics & Tracing).
Sets up Prometheus instrumentation, engine-level counters and OpenTelemetry.
"""
from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from prometheus_client import Counter
from prometheus_fastapi_instrumentator import Instrumentator

from setlist_trending.config import get_settings

# -----------------------------------------------------------------------------
# Engine counters (exposed on /metrics alongside the HTTP metrics)
# -----------------------------------------------------------------------------

CACHE_LOOKUPS = Counter(
    "setlist_cache_lookups_total",
    "Cache lookups by tier and outcome",
    ["tier", "result"],
)
CACHE_EVICTIONS = Counter(
    "setlist_cache_evictions_total",
    "Cache entries removed by reason",
    ["reason"],
)
VOTE_SIGNALS = Counter(
    "setlist_vote_signals_total",
    "Vote signals consumed by the aggregator",
)
DEGRADED_RESPONSES = Counter(
    "setlist_degraded_responses_total",
    "Responses served from a fallback path",
    ["operation", "reason"],
)


def setup_telemetry(app: FastAPI) -> None:
    """
    Setup Observability (Metrics & Tracing).

    1. Prometheus Metrics via /metrics
    2. OpenTelemetry Tracing via OTLP
    """
    settings = get_settings()

    # -------------------------------------------------------------------------
    # 1. Prometheus Metrics
    # -------------------------------------------------------------------------
    if settings.ENABLE_PROMETHEUS:
        instrumentator = Instrumentator(
            should_group_status_codes=False,
            should_ignore_untemplated=True,
            should_respect_env_var=True,
            should_instrument_requests_inprogress=True,
            excluded_handlers=["/metrics", "/health", "/health/ready"],
            env_var_name="ENABLE_METRICS",
            inprogress_name="inprogress",
            inprogress_labels=True,
        )
        instrumentator.instrument(app).expose(app, include_in_schema=False)

    # -------------------------------------------------------------------------
    # 2. OpenTelemetry Tracing
    # -------------------------------------------------------------------------
    if settings.ENABLE_OTEL:
        resource = Resource.create(attributes={
            "service.name": settings.APP_NAME,
            "service.version": settings.APP_VERSION,
            "deployment.environment": "production" if not settings.DEBUG else "development",
        })

        provider = TracerProvider(resource=resource)

        # Default collector endpoint is localhost:4317
        otlp_exporter = OTLPSpanExporter()
        provider.add_span_processor(BatchSpanProcessor(otlp_exporter))

        trace.set_tracer_provider(provider)
        FastAPIInstrumentor.instrument_app(app, tracer_provider=provider)

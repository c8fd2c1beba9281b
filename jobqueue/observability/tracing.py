"""
OpenTelemetry tracing.

Queue operations always open spans through get_tracer(). Until
setup_tracing() installs an SDK provider those spans are no-ops, so
library users who never enable tracing pay nothing for them. SQL spans need
the engine itself, see instrument_engine().
"""

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.trace import Tracer
from sqlalchemy.ext.asyncio import AsyncEngine

from jobqueue import __version__
from jobqueue.config import Settings, get_settings

TRACER_NAME = "jobqueue"


def setup_tracing(settings: Settings | None = None, console: bool = False) -> TracerProvider:
    """
    Install an SDK tracer provider exporting over OTLP/gRPC.

    Args:
        settings: Supplies the service name and collector endpoint.
        console: Also print finished spans to stdout.

    Returns:
        The installed provider.
    """
    settings = settings or get_settings()

    provider = TracerProvider(
        resource=Resource.create(
            {
                "service.name": settings.otel_service_name,
                "service.version": __version__,
            }
        )
    )
    exporters = [
        OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint, insecure=True),
    ]
    if console:
        exporters.append(ConsoleSpanExporter())
    for exporter in exporters:
        provider.add_span_processor(BatchSpanProcessor(exporter))

    trace.set_tracer_provider(provider)
    return provider


def instrument_engine(engine: AsyncEngine, tracer_provider: TracerProvider | None = None) -> None:
    """
    Emit a span for every statement run on the engine.

    The engine must already exist; claim and resolve statements then show up
    as children of the queue spans.

    Args:
        engine: The async engine built by jobqueue.db.
        tracer_provider: Provider to record with. Defaults to the global one.
    """
    SQLAlchemyInstrumentor().instrument(
        engine=engine.sync_engine,
        tracer_provider=tracer_provider,
    )


def get_tracer() -> Tracer:
    """Tracer from whichever provider is installed globally."""
    return trace.get_tracer(TRACER_NAME, __version__)

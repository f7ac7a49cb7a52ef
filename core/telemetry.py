import logging
import sys
from typing import Optional

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.instrumentation.redis import RedisInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from sqlalchemy import Engine

SERVICE_VERSION = "0.1.0"


def configure_logging(level: str = "INFO") -> None:
    """Plain stdout logging shared by the API and the CLI."""
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    # 第三方 library 的 request log 太吵
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def setup_telemetry(service_name: str, otlp_endpoint: str) -> TracerProvider:
    """
    Install a global tracer provider exporting spans over OTLP gRPC.
    :param service_name: reported as ``service.name``
    :param otlp_endpoint: collector address, e.g. http://localhost:4317
    """
    provider = TracerProvider(
        resource=Resource.create(
            attributes={
                "service.name": service_name,
                "service.version": SERVICE_VERSION,
            }
        )
    )
    provider.add_span_processor(
        BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint, insecure=True))
    )
    trace.set_tracer_provider(provider)
    return provider


def instrument_app(app: Optional[FastAPI], engine: Optional[Engine] = None) -> None:
    # inbound requests
    if app:
        FastAPIInstrumentor.instrument_app(app)

    # payments / receipts queries
    if engine:
        SQLAlchemyInstrumentor().instrument(engine=engine)

    # idempotency keys and webhook dedup claims
    RedisInstrumentor().instrument()

    # outbound calls: Razorpay orders API and Supabase Auth
    HTTPXClientInstrumentor().instrument()

"""OpenTelemetry setup for the sync server.

Spans cover HTTP requests and the /socket.io handshake (FastAPI
instrumentation), Redis publish/subscribe commands (Redis instrumentation)
and the reelsync.* spans opened by shared.telemetry.tracing.
"""

import logging
import threading

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.redis import RedisInstrumentor
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SpanExporter,
)
from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased

from reelsync.core.config import Settings

logger = logging.getLogger(__name__)

# Probes are polled constantly and carry no sync work.
_UNTRACED_URLS = "api/v1/health,api/v1/ws/status"


class TelemetryConfig:
    """Tracer provider plus the instrumentations the server turns on.

    exporter is "console", "otlp" (needs otlp_endpoint) or "none".
    """

    def __init__(
        self,
        service_name: str,
        service_version: str,
        environment: str = "development",
        exporter: str = "console",
        otlp_endpoint: str | None = None,
        sample_rate: float = 1.0,
    ) -> None:
        self.service_name = service_name
        self.service_version = service_version
        self.environment = environment
        self.exporter = exporter
        self.otlp_endpoint = otlp_endpoint
        self.sample_rate = sample_rate
        self.tracer_provider: TracerProvider | None = None
        self._redis_instrumented = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "TelemetryConfig":
        return cls(
            service_name=settings.app_name,
            service_version=settings.app_version,
            environment=settings.telemetry_environment,
            exporter=settings.telemetry_exporter,
            otlp_endpoint=settings.telemetry_otlp_endpoint,
            sample_rate=settings.telemetry_sample_rate,
        )

    def _span_exporter(self) -> SpanExporter | None:
        if self.exporter == "none":
            return None
        if self.exporter == "otlp":
            if self.otlp_endpoint:
                return OTLPSpanExporter(
                    endpoint=self.otlp_endpoint,
                    insecure=self.otlp_endpoint.startswith("http://"),
                )
            logger.warning("TELEMETRY_OTLP_ENDPOINT not set; falling back to console spans")
        elif self.exporter != "console":
            logger.warning("Unknown telemetry exporter %r; using console", self.exporter)
        return ConsoleSpanExporter()

    def start(self, app: FastAPI, instrument_redis: bool = False) -> bool:
        """Install the global tracer provider and instrument app (and Redis).

        Call before the app starts serving; middleware cannot be added later.

        Returns:
            True if tracing is active. Setup errors are logged, not raised;
            the server runs untraced.
        """
        try:
            provider = TracerProvider(
                resource=Resource(
                    attributes={
                        SERVICE_NAME: self.service_name,
                        SERVICE_VERSION: self.service_version,
                        "deployment.environment": self.environment,
                    }
                ),
                sampler=ParentBased(TraceIdRatioBased(self.sample_rate)),
            )
            exporter = self._span_exporter()
            if exporter is not None:
                provider.add_span_processor(BatchSpanProcessor(exporter))
            trace.set_tracer_provider(provider)
            self.tracer_provider = provider

            FastAPIInstrumentor.instrument_app(
                app, tracer_provider=provider, excluded_urls=_UNTRACED_URLS
            )
            if instrument_redis:
                RedisInstrumentor().instrument(tracer_provider=provider)
                self._redis_instrumented = True
        except Exception:
            logger.exception("Failed to initialize telemetry; continuing without tracing")
            return False
        logger.info(
            "Tracing %s v%s (exporter=%s, sample_rate=%s, redis=%s)",
            self.service_name,
            self.service_version,
            self.exporter,
            self.sample_rate,
            self._redis_instrumented,
        )
        return True

    def shutdown(self) -> None:
        """Flush buffered spans and stop Redis instrumentation."""
        if self._redis_instrumented:
            RedisInstrumentor().uninstrument()
            self._redis_instrumented = False
        if self.tracer_provider is not None:
            try:
                self.tracer_provider.shutdown()
            except Exception:
                logger.exception("Error flushing spans on shutdown")
            self.tracer_provider = None


_telemetry: TelemetryConfig | None = None
_telemetry_lock = threading.RLock()


def get_telemetry() -> TelemetryConfig | None:
    """Return the process-wide telemetry instance (set at startup)."""
    with _telemetry_lock:
        return _telemetry


def set_telemetry(telemetry: TelemetryConfig | None) -> None:
    global _telemetry
    with _telemetry_lock:
        _telemetry = telemetry

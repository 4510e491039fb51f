"""Request logging, metrics and optional tracing."""

from __future__ import annotations

import json
import logging
import time
import uuid
from collections import defaultdict
from contextvars import ContextVar
from threading import Lock
from typing import Iterable, Protocol

from fastapi import FastAPI
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from liftcoach.core.config import get_settings

request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)
logger = logging.getLogger(__name__)

DEFAULT_BUCKETS_MS = [5, 10, 25, 50, 100, 250, 500, 1000, 2500]


def get_request_id() -> str | None:
    """Return the current request id if set by middleware."""
    return request_id_ctx.get()


class MetricsBackend(Protocol):
    """Metrics backend interface."""

    def observe_request(
        self,
        method: str,
        path: str,
        status_code: int,
        duration_ms: float,
    ) -> None:
        ...

    def observe_workout(self, kind: str, success: bool, duration_ms: float) -> None:
        ...

    def observe_progression(self, trigger_type: str, outcome: str) -> None:
        ...

    def render_prometheus(self) -> str:
        ...


class MetricsCollector:
    """In-process metrics collector with Prometheus text output."""

    def __init__(self, buckets_ms: Iterable[int] | None = None) -> None:
        self._lock = Lock()
        self._buckets_ms = list(buckets_ms or DEFAULT_BUCKETS_MS)
        self._request_counts: dict[tuple[str, str, str], int] = defaultdict(int)
        self._request_sum_ms: dict[tuple[str, str], float] = defaultdict(float)
        self._request_count: dict[tuple[str, str], int] = defaultdict(int)
        self._request_buckets: dict[tuple[str, str], dict[str, int]] = defaultdict(
            lambda: defaultdict(int)
        )
        self._workout_counts: dict[tuple[str, str], int] = defaultdict(int)
        self._workout_sum_ms: dict[tuple[str, str], float] = defaultdict(float)
        self._workout_count: dict[tuple[str, str], int] = defaultdict(int)
        self._workout_buckets: dict[tuple[str, str], dict[str, int]] = defaultdict(
            lambda: defaultdict(int)
        )
        self._progression_counts: dict[tuple[str, str], int] = defaultdict(int)

    def observe_request(
        self,
        method: str,
        path: str,
        status_code: int,
        duration_ms: float,
    ) -> None:
        """Record a single request observation."""
        key = (method, path)
        bucket = self._bucket_for(duration_ms)
        with self._lock:
            self._request_counts[(method, path, str(status_code))] += 1
            self._request_sum_ms[key] += duration_ms
            self._request_count[key] += 1
            self._request_buckets[key][bucket] += 1

    def observe_workout(self, kind: str, success: bool, duration_ms: float) -> None:
        """Record a workout generation (kind is "current" or "preview")."""
        key = (kind, "success" if success else "error")
        bucket = self._bucket_for(duration_ms)
        with self._lock:
            self._workout_counts[key] += 1
            self._workout_sum_ms[key] += duration_ms
            self._workout_count[key] += 1
            self._workout_buckets[key][bucket] += 1

    def observe_progression(self, trigger_type: str, outcome: str) -> None:
        """Record one per-lift progression outcome (applied/skipped/error)."""
        with self._lock:
            self._progression_counts[(trigger_type, outcome)] += 1

    def render_prometheus(self) -> str:
        """Render metrics in Prometheus text format."""
        lines: list[str] = [
            "# HELP http_requests_total Total HTTP requests",
            "# TYPE http_requests_total counter",
        ]
        with self._lock:
            for (method, path, status), count in sorted(self._request_counts.items()):
                lines.append(
                    f'http_requests_total{{method="{method}",path="{path}",status="{status}"}} {count}'
                )

            lines.extend(
                [
                    "# HELP http_request_duration_ms Request duration in milliseconds",
                    "# TYPE http_request_duration_ms histogram",
                ]
            )
            for (method, path), total in sorted(self._request_sum_ms.items()):
                labels = f'method="{method}",path="{path}"'
                lines.extend(
                    self._histogram_lines(
                        "http_request_duration_ms",
                        labels,
                        self._request_buckets[(method, path)],
                        total,
                        self._request_count[(method, path)],
                    )
                )

            lines.extend(
                [
                    "# HELP workout_generations_total Workouts generated",
                    "# TYPE workout_generations_total counter",
                ]
            )
            for (kind, status), count in sorted(self._workout_counts.items()):
                lines.append(
                    f'workout_generations_total{{kind="{kind}",status="{status}"}} {count}'
                )

            lines.extend(
                [
                    "# HELP workout_generation_duration_ms Workout generation duration",
                    "# TYPE workout_generation_duration_ms histogram",
                ]
            )
            for (kind, status), total in sorted(self._workout_sum_ms.items()):
                labels = f'kind="{kind}",status="{status}"'
                lines.extend(
                    self._histogram_lines(
                        "workout_generation_duration_ms",
                        labels,
                        self._workout_buckets[(kind, status)],
                        total,
                        self._workout_count[(kind, status)],
                    )
                )

            lines.extend(
                [
                    "# HELP progression_applications_total Per-lift progression outcomes",
                    "# TYPE progression_applications_total counter",
                ]
            )
            for (trigger_type, outcome), count in sorted(self._progression_counts.items()):
                lines.append(
                    "progression_applications_total"
                    f'{{trigger_type="{trigger_type}",outcome="{outcome}"}} {count}'
                )
        return "\n".join(lines) + "\n"

    def _histogram_lines(
        self,
        name: str,
        labels: str,
        buckets: dict[str, int],
        total: float,
        count: int,
    ) -> list[str]:
        lines = []
        cumulative = 0
        for bound in self._buckets_ms:
            cumulative += buckets.get(str(bound), 0)
            lines.append(f'{name}_bucket{{{labels},le="{bound}"}} {cumulative}')
        cumulative += buckets.get("+Inf", 0)
        lines.append(f'{name}_bucket{{{labels},le="+Inf"}} {cumulative}')
        lines.append(f"{name}_sum{{{labels}}} {total:.2f}")
        lines.append(f"{name}_count{{{labels}}} {count}")
        return lines

    def _bucket_for(self, duration_ms: float) -> str:
        for bound in self._buckets_ms:
            if duration_ms <= bound:
                return str(bound)
        return "+Inf"


class PrometheusMetrics:
    """Prometheus client-based metrics backend."""

    def __init__(self, buckets_ms: Iterable[int]) -> None:
        from prometheus_client import CollectorRegistry, Counter, Histogram

        self._registry = CollectorRegistry()
        buckets = list(buckets_ms)

        self._http_requests_total = Counter(
            "http_requests_total",
            "Total HTTP requests",
            ["method", "path", "status"],
            registry=self._registry,
        )
        self._http_request_duration_ms = Histogram(
            "http_request_duration_ms",
            "Request duration in milliseconds",
            ["method", "path"],
            buckets=buckets,
            registry=self._registry,
        )
        self._workout_generations_total = Counter(
            "workout_generations_total",
            "Workouts generated",
            ["kind", "status"],
            registry=self._registry,
        )
        self._workout_generation_duration_ms = Histogram(
            "workout_generation_duration_ms",
            "Workout generation duration",
            ["kind", "status"],
            buckets=buckets,
            registry=self._registry,
        )
        self._progression_applications_total = Counter(
            "progression_applications_total",
            "Per-lift progression outcomes",
            ["trigger_type", "outcome"],
            registry=self._registry,
        )

    def observe_request(
        self,
        method: str,
        path: str,
        status_code: int,
        duration_ms: float,
    ) -> None:
        self._http_requests_total.labels(method, path, str(status_code)).inc()
        self._http_request_duration_ms.labels(method, path).observe(duration_ms)

    def observe_workout(self, kind: str, success: bool, duration_ms: float) -> None:
        status = "success" if success else "error"
        self._workout_generations_total.labels(kind, status).inc()
        self._workout_generation_duration_ms.labels(kind, status).observe(duration_ms)

    def observe_progression(self, trigger_type: str, outcome: str) -> None:
        self._progression_applications_total.labels(trigger_type, outcome).inc()

    def render_prometheus(self) -> str:
        from prometheus_client import generate_latest

        return generate_latest(self._registry).decode("utf-8")


_metrics_backend: MetricsBackend | None = None


def get_metrics_backend() -> MetricsBackend:
    """Return a cached metrics backend instance."""
    global _metrics_backend
    if _metrics_backend is None:
        settings = get_settings()
        _metrics_backend = _build_metrics_backend(settings.metrics_backend)
    return _metrics_backend


def _build_metrics_backend(backend: str) -> MetricsBackend:
    if backend == "prometheus":
        try:
            return PrometheusMetrics(DEFAULT_BUCKETS_MS)
        except ImportError:
            logger.warning(
                "Prometheus backend requested but prometheus_client is not installed. "
                "Using in-memory metrics."
            )
    return MetricsCollector(DEFAULT_BUCKETS_MS)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Attach request_id, log one JSON line per request, and emit metrics."""

    def __init__(
        self,
        app: ASGIApp,
        metrics: MetricsBackend | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        super().__init__(app)
        self.metrics = metrics or get_metrics_backend()
        self.logger = logger or logging.getLogger("liftcoach.request")

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        token = request_id_ctx.set(request_id)
        request.state.request_id = request_id

        start = time.perf_counter()
        response: Response | None = None
        try:
            response = await call_next(request)
            return response
        finally:
            duration_ms = (time.perf_counter() - start) * 1000
            status_code = response.status_code if response else 500

            if response is not None:
                response.headers["X-Request-ID"] = request_id

            route = request.scope.get("route")
            route_path = getattr(route, "path", None)
            # Unmatched paths share one label
            path = route_path or "/__unknown__"

            self.metrics.observe_request(request.method, path, status_code, duration_ms)

            self.logger.info(
                json.dumps(
                    {
                        "request_id": request_id,
                        "method": request.method,
                        "path": request.url.path,
                        "route": route_path,
                        "status_code": status_code,
                        "elapsed_ms": round(duration_ms, 2),
                        "client": request.client.host if request.client else None,
                    }
                )
            )
            request_id_ctx.reset(token)


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def setup_tracing(app: FastAPI, settings=None) -> None:
    """Configure OpenTelemetry tracing if enabled."""
    settings = settings or get_settings()
    if not settings.otel_enabled:
        return

    try:
        from opentelemetry import trace
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
    except ImportError:
        logger.warning("OpenTelemetry enabled but required packages are not installed.")
        return

    resource = Resource.create({"service.name": settings.otel_service_name})
    provider = TracerProvider(resource=resource)
    trace.set_tracer_provider(provider)

    exporter_kwargs = {}
    if settings.otel_exporter_otlp_endpoint:
        exporter_kwargs["endpoint"] = settings.otel_exporter_otlp_endpoint
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(**exporter_kwargs)))

    FastAPIInstrumentor.instrument_app(app)

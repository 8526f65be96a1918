"""
Telemetry and monitoring utilities.
"""
import logging
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import FastAPI, Response
import time

logger = logging.getLogger(__name__)

# Metrics definitions
request_count = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status']
)

request_duration = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint']
)

websocket_connections = Gauge(
    'websocket_connections_active',
    'Active WebSocket connections'
)

online_users = Gauge(
    'online_users',
    'Identities with at least one open connection'
)

# Call lifecycle
calls_total = Counter(
    'calls_total',
    'Call lifecycle outcomes',
    ['outcome']  # initiated, accepted, rejected, missed, ended, cancelled
)

call_duration = Histogram(
    'call_duration_seconds',
    'Duration of completed calls',
    buckets=(5, 15, 30, 60, 120, 300, 600, 1200, 1800, 3600)
)

signaling_messages = Counter(
    'signaling_messages_total',
    'Relayed WebRTC negotiation messages',
    ['kind']
)

ws_errors = Counter(
    'websocket_errors_total',
    'call:error frames sent to clients',
    ['action']
)


def setup_telemetry(app: FastAPI) -> None:
    """
    Setup telemetry and monitoring for the application.

    Args:
        app: FastAPI application instance
    """
    logger.info("Setting up telemetry...")

    # Add metrics endpoint
    @app.get("/metrics", include_in_schema=False)
    async def metrics():
        """Prometheus metrics endpoint."""
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # Add middleware for request metrics
    @app.middleware("http")
    async def track_requests(request, call_next):
        """Track HTTP request metrics."""
        start_time = time.time()

        response = await call_next(request)

        duration = time.time() - start_time

        # Route template keeps call ids out of the label set
        route = request.scope.get("route")
        endpoint = getattr(route, "path", request.url.path)

        request_count.labels(
            method=request.method,
            endpoint=endpoint,
            status=response.status_code
        ).inc()

        request_duration.labels(
            method=request.method,
            endpoint=endpoint
        ).observe(duration)

        return response

    logger.info("Telemetry setup complete")


def track_call_outcome(outcome: str, duration_seconds: int = 0) -> None:
    calls_total.labels(outcome=outcome).inc()
    if outcome == "ended" and duration_seconds:
        call_duration.observe(duration_seconds)


def track_signal(kind: str) -> None:
    signaling_messages.labels(kind=kind).inc()


def update_websocket_connections(count: int) -> None:
    """Update WebSocket connections gauge."""
    websocket_connections.set(count)


def update_online_users(count: int) -> None:
    online_users.set(count)


class MetricsCollector:
    """Collects and manages application metrics."""

    def __init__(self):
        self.start_time = time.time()
        self.call_counts = {}
        self.signal_count = 0
        self.error_count = 0

    def record_call(self, outcome: str, duration_seconds: int = 0):
        """Record a lifecycle outcome."""
        self.call_counts[outcome] = self.call_counts.get(outcome, 0) + 1
        track_call_outcome(outcome, duration_seconds)

    def record_signal(self, kind: str):
        self.signal_count += 1
        track_signal(kind)

    def record_error(self, action: str = "unknown"):
        """Record an error."""
        self.error_count += 1
        ws_errors.labels(action=action).inc()

    def get_stats(self) -> dict:
        """Get current statistics."""
        uptime = time.time() - self.start_time

        return {
            "uptime_seconds": uptime,
            "calls": dict(self.call_counts),
            "signals_relayed": self.signal_count,
            "errors": self.error_count,
        }


# Global metrics collector
metrics_collector = MetricsCollector()

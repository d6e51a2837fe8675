"""
Telemetry and monitoring utilities.
"""
import logging
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import FastAPI, Request, Response
import time

logger = logging.getLogger(__name__)

# Metrics definitions
request_count = Counter(
    'livechat_http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status']
)

request_duration = Histogram(
    'livechat_http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint']
)

chat_messages = Counter(
    'livechat_messages_total',
    'Chat messages persisted by the hub',
    ['sender', 'transport']
)

escalations = Counter(
    'livechat_escalations_total',
    'Escalation requests to human support',
    ['admin_online', 'escalated_now']
)

push_connections = Gauge(
    'livechat_push_connections',
    'Open push channel connections',
    ['role']
)

polls = Counter(
    'livechat_polls_total',
    'Pull fallback polls',
    ['has_new_messages']
)

admin_heartbeats = Counter(
    'livechat_admin_heartbeats_total',
    'Admin presence heartbeats received'
)

push_send_failures = Counter(
    'livechat_push_send_failures_total',
    'Push frames that could not be written'
)


def _endpoint_label(request: Request) -> str:
    """Route template rather than raw path, so session ids do not explode cardinality."""
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


def setup_telemetry(app: FastAPI) -> None:
    """
    Setup telemetry and monitoring for the application.

    Args:
        app: FastAPI application instance
    """
    logger.info("Setting up telemetry...")

    @app.get("/metrics", include_in_schema=False)
    async def metrics():
        """Prometheus metrics endpoint."""
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.middleware("http")
    async def track_requests(request: Request, call_next):
        """Track HTTP request metrics."""
        start_time = time.time()

        response = await call_next(request)

        duration = time.time() - start_time
        endpoint = _endpoint_label(request)

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


def track_chat_message(sender: str, transport: str) -> None:
    """Track a persisted chat message."""
    chat_messages.labels(sender=sender, transport=transport).inc()


def track_escalation(admin_online: bool, escalated_now: bool) -> None:
    """Track an escalation request."""
    escalations.labels(
        admin_online=str(admin_online).lower(),
        escalated_now=str(escalated_now).lower()
    ).inc()


def track_poll(has_new_messages: bool) -> None:
    polls.labels(has_new_messages=str(has_new_messages).lower()).inc()


def track_heartbeat() -> None:
    admin_heartbeats.inc()


def track_push_send_failure() -> None:
    push_send_failures.inc()


def update_push_connections(users: int, admins: int) -> None:
    """Update push connection gauges."""
    push_connections.labels(role="user").set(users)
    push_connections.labels(role="admin").set(admins)


class MetricsCollector:
    """In-process counters surfaced on the service info endpoint."""

    def __init__(self):
        self.start_time = time.time()
        self.message_count = 0
        self.escalation_count = 0
        self.error_count = 0

    def record_message(self, sender: str, transport: str):
        """Record a chat message."""
        self.message_count += 1
        track_chat_message(sender, transport)

    def record_escalation(self, admin_online: bool, escalated_now: bool):
        if escalated_now:
            self.escalation_count += 1
        track_escalation(admin_online, escalated_now)

    def record_error(self):
        """Record an error."""
        self.error_count += 1

    def get_stats(self) -> dict:
        """Get current statistics."""
        uptime = time.time() - self.start_time

        return {
            "uptime_seconds": uptime,
            "messages_processed": self.message_count,
            "escalations": self.escalation_count,
            "errors": self.error_count,
            "messages_per_minute": (self.message_count / uptime) * 60 if uptime > 0 else 0
        }


# Global metrics collector
metrics_collector = MetricsCollector()

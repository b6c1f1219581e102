"""Prometheus metric definitions for the Yappy integration."""

from prometheus_client import Counter, Histogram, generate_latest
from starlette.responses import Response


yappy_requests_total = Counter(
    "yappy_requests_total",
    "Total requests sent to the Yappy API",
    ["endpoint", "method", "status_code"],
)
yappy_request_duration_seconds = Histogram(
    "yappy_request_duration_seconds",
    "Yappy API request duration seconds",
    ["endpoint", "method"],
)
poll_attempts_total = Counter("poll_attempts_total", "Transaction status poll attempts", ["result"])
sessions_opened_total = Counter("sessions_opened_total", "Yappy device sessions opened", ["result"])
sessions_closed_total = Counter("sessions_closed_total", "Yappy device session close attempts", ["result"])
payment_flows_total = Counter("payment_flows_total", "Finished payment flows", ["outcome"])
payment_flow_seconds = Histogram(
    "payment_flow_seconds",
    "Payment flow duration seconds from start to final event",
    ["outcome"],
)
config_fetch_total = Counter("config_fetch_total", "Remote config fetches by resulting source", ["source"])


def metrics_response() -> Response:
    """Expose all registered Prometheus metrics in text format."""

    return Response(content=generate_latest(), media_type="text/plain")

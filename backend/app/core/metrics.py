"""Prometheus metrics shared by the app and the auth routes"""

from prometheus_client import Counter, Histogram

REQUEST_COUNT = Counter(
    "workout_http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)
REQUEST_LATENCY = Histogram(
    "workout_http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)
AUTH_FAILURES = Counter(
    "workout_auth_failures_total",
    "Rejected authentication and authorization attempts",
    ["reason"],
)
TOKEN_ROTATIONS = Counter(
    "workout_token_rotations_total",
    "Refresh token rotations",
    ["outcome"],
)

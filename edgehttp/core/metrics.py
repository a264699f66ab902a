"""
Prometheus metrics for the accept and dispatch paths.

The metrics are process-wide and registered once at import time.
"""

from prometheus_client import Counter, Histogram

REQUESTS = Counter(
    "edgehttp_requests_total",
    "Requests dispatched, by outcome",
    ["outcome"],
)
REQUEST_LATENCY = Histogram(
    "edgehttp_request_duration_seconds",
    "Time spent in dispatch, including the handler",
)
ACCEPT_ERRORS = Counter(
    "edgehttp_accept_errors_total",
    "accept() failures swallowed by the listener",
)
TLS_HANDSHAKE_FAILURES = Counter(
    "edgehttp_tls_handshake_failures_total",
    "Connections closed because the TLS handshake failed",
)
PROTOCOL_ERRORS = Counter(
    "edgehttp_protocol_errors_total",
    "Connections closed because of malformed protocol input",
    ["protocol"],
)

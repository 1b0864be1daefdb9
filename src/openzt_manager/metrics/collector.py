"""Prometheus metrics definitions for the OpenZT manager.

Two groups:
- Docker operations (latency and failures of Engine API calls)
- Instance bookkeeping (registry population, port usage, cleanup)
"""

from prometheus_client import Counter, Gauge, Histogram

# Docker operations are typically slow (image pulls dominate the tail)
_BUCKETS_SLOW = (
    0.05, 0.1, 0.2, 0.4, 0.8,
    1.5, 3, 6, 12, 24,
    48, 96, 180,
)

# =============================================================================
# Docker Operation Metrics
# =============================================================================

DOCKER_DURATION = Histogram(
    "openzt_docker_duration_seconds",
    "Duration of Docker operations",
    ["operation"],  # create, inspect, logs, remove, ping
    buckets=_BUCKETS_SLOW,
)

DOCKER_ERRORS = Counter(
    "openzt_docker_errors_total",
    "Total Docker operation errors",
    ["operation", "error_type"],  # error_type: unavailable, not_found, conflict, other
)

# =============================================================================
# Instance Metrics
# =============================================================================

INSTANCES = Gauge(
    "openzt_instances",
    "Number of instances in the registry",
    ["state"],
)

INSTANCES_CREATED_TOTAL = Counter(
    "openzt_instances_created_total",
    "Total create requests that produced a registry record",
    ["outcome"],  # running, error
)

PORTS_AVAILABLE = Gauge(
    "openzt_ports_available",
    "Free ports per range",
    ["range"],  # rdp, console
)

CLEANUP_DELETED_TOTAL = Counter(
    "openzt_cleanup_deleted_total",
    "Total instances removed by the cleanup scheduler",
)

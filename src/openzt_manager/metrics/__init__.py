"""Prometheus metrics for the OpenZT manager."""

from openzt_manager.metrics.collector import (
    CLEANUP_DELETED_TOTAL,
    DOCKER_DURATION,
    DOCKER_ERRORS,
    INSTANCES,
    INSTANCES_CREATED_TOTAL,
    PORTS_AVAILABLE,
)

__all__ = [
    "CLEANUP_DELETED_TOTAL",
    "DOCKER_DURATION",
    "DOCKER_ERRORS",
    "INSTANCES",
    "INSTANCES_CREATED_TOTAL",
    "PORTS_AVAILABLE",
]

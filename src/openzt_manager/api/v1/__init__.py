"""API v1 module."""

from openzt_manager.api.v1.health import router as health_router
from openzt_manager.api.v1.instances import router as instances_router

__all__ = [
    "health_router",
    "instances_router",
]

"""API dependencies for dependency injection.

Owns the wiring of the manager components: port allocator, registry,
Docker control plane, orchestrator and cleanup scheduler.
"""

import logging

from openzt_manager.config import ManagerConfig, get_manager_config
from openzt_manager.core.cleanup import CleanupScheduler
from openzt_manager.core.orchestrator import Orchestrator
from openzt_manager.core.ports import PortAllocator
from openzt_manager.core.registry import InstanceRegistry
from openzt_manager.runtimes.docker import DockerControlPlane, recover_instances

logger = logging.getLogger(__name__)

# Singletons, created by init_orchestrator()
_orchestrator: Orchestrator | None = None
_scheduler: CleanupScheduler | None = None
_control_plane: DockerControlPlane | None = None


async def init_orchestrator(config: ManagerConfig | None = None) -> Orchestrator:
    """Build the orchestrator, recover existing containers, start cleanup.

    Must be called during app startup.
    """
    global _orchestrator, _scheduler, _control_plane
    config = config or get_manager_config()

    allocator = PortAllocator(
        config.ports.rdp_start,
        config.ports.rdp_end,
        config.ports.console_start,
        config.ports.console_end,
    )
    registry = InstanceRegistry(allocator)
    _control_plane = DockerControlPlane(
        config.docker,
        logs_max_bytes=config.instances.logs_max_bytes,
    )
    _orchestrator = Orchestrator(registry, _control_plane, config)

    await recover_instances(
        _orchestrator,
        _control_plane.containers,
        _control_plane.naming,
        config.docker,
    )

    _scheduler = CleanupScheduler(
        _orchestrator,
        auto_cleanup_hours=config.instances.auto_cleanup_hours,
        interval_seconds=config.instances.cleanup_interval_seconds,
    )
    _scheduler.start()
    return _orchestrator


async def close_orchestrator() -> None:
    """Stop the cleanup scheduler and release the Docker client."""
    global _orchestrator, _scheduler, _control_plane
    if _scheduler:
        await _scheduler.stop()
        _scheduler = None
    if _control_plane:
        await _control_plane.close()
        _control_plane = None
    _orchestrator = None


def get_orchestrator() -> Orchestrator:
    """Get orchestrator singleton.

    Returns:
        Orchestrator shared across all API endpoints.

    Raises:
        RuntimeError: If called before init_orchestrator().
    """
    if _orchestrator is None:
        raise RuntimeError("Orchestrator not initialized. Call init_orchestrator() first.")
    return _orchestrator


def reset_orchestrator() -> None:
    """Reset singletons (for testing)."""
    global _orchestrator, _scheduler, _control_plane
    _orchestrator = None
    _scheduler = None
    _control_plane = None

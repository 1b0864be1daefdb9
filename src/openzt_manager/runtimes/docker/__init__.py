"""Docker runtime for the manager."""

from openzt_manager.runtimes.docker.control_plane import DockerControlPlane
from openzt_manager.runtimes.docker.naming import ResourceNaming
from openzt_manager.runtimes.docker.recovery import recover_instances

__all__ = [
    "DockerControlPlane",
    "ResourceNaming",
    "recover_instances",
]

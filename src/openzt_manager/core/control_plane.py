"""Container control-plane interface.

The orchestrator drives the container runtime only through this interface.
Implementations map runtime-specific failures onto the ControlPlaneError
family (RuntimeUnavailableError, ContainerNotFoundError,
ResourceConflictError, RuntimeOperationError) and never retry.

Implementations: DockerControlPlane (runtimes/docker)
"""

from abc import ABC, abstractmethod
from enum import Enum

from pydantic import BaseModel

from openzt_manager.core.models import PortPair

# Labels attached to every instance container
LABEL_INSTANCE_ID = "openzt.instance-id"
LABEL_CREATED_AT = "openzt.created-at"
LABEL_MODS = "openzt.mods"


class RuntimeState(str, Enum):
    """Runtime's own view of a container."""

    RUNNING = "running"
    EXITED = "exited"
    MISSING = "missing"


class ContainerSpec(BaseModel):
    """Everything the runtime needs to launch one instance container."""

    name: str
    image: str
    env: dict[str, str] = {}
    ports: PortPair
    payload: bytes
    cpu_limit: float | None = None
    labels: dict[str, str] = {}

    model_config = {"frozen": True}


class ControlPlane(ABC):
    """Interface to the container runtime."""

    @abstractmethod
    async def create(self, spec: ContainerSpec) -> str:
        """Launch a container bound to spec.ports.

        Returns:
            Opaque container reference.
        """
        ...

    @abstractmethod
    async def inspect(self, container_ref: str) -> RuntimeState:
        """Return the runtime state. A missing container is MISSING, not an error."""
        ...

    @abstractmethod
    async def logs(self, container_ref: str, tail: int | None = None) -> bytes:
        """Return current log output, bounded by the implementation's size ceiling."""
        ...

    @abstractmethod
    async def remove(self, container_ref: str) -> None:
        """Stop and delete the container. Removing an absent container succeeds.

        container_ref may also be the name given in ContainerSpec.name.
        """
        ...

    @abstractmethod
    async def ping(self) -> bool:
        """Check whether the runtime is reachable."""
        ...

"""Orchestrator facade.

Composes the registry, the port allocator (through the registry) and the
control plane into the operations the API layer exposes.

Locking:
- The registry lock covers bookkeeping only.
- A per-instance lock covers each operation on one id, including the
  runtime call. create() takes it before the record exists and keeps it
  until the instance settles, so delete() of a CREATING instance waits
  for the create to finish and then removes the settled instance.
"""

import asyncio
import logging
import uuid
from collections.abc import Callable, Iterable

from pydantic import BaseModel

from openzt_manager.config import ManagerConfig
from openzt_manager.core.control_plane import (
    LABEL_CREATED_AT,
    LABEL_INSTANCE_ID,
    LABEL_MODS,
    ContainerSpec,
    ControlPlane,
    RuntimeState,
)
from openzt_manager.core.errors import ControlPlaneError, NotFoundError
from openzt_manager.core.locks import InstanceLocks
from openzt_manager.core.models import (
    Instance,
    InstanceConfig,
    InstanceState,
    validate_instance_config,
    validate_mods,
    validate_payload,
)
from openzt_manager.core.registry import InstanceRegistry
from openzt_manager.logging_schema import LogEvent
from openzt_manager.metrics import INSTANCES_CREATED_TOTAL

logger = logging.getLogger(__name__)


def _new_instance_id() -> str:
    return str(uuid.uuid4())


class HealthReport(BaseModel):
    """Orchestrator liveness summary."""

    status: str
    runtime_reachable: bool
    instances: int
    max_instances: int
    rdp_ports_available: int
    console_ports_available: int


class Orchestrator:
    """Instance lifecycle operations: create, list, get, logs, delete, health."""

    def __init__(
        self,
        registry: InstanceRegistry,
        control_plane: ControlPlane,
        config: ManagerConfig,
        locks: InstanceLocks | None = None,
        id_factory: Callable[[], str] = _new_instance_id,
    ) -> None:
        self._registry = registry
        self._control_plane = control_plane
        self._config = config
        self._locks = locks if locks is not None else InstanceLocks()
        self._id_factory = id_factory

    @property
    def registry(self) -> InstanceRegistry:
        return self._registry

    # =========================================================================
    # Create
    # =========================================================================

    async def create(
        self,
        payload: bytes,
        mods: Iterable[str] = (),
        config: InstanceConfig | None = None,
    ) -> Instance:
        """Create an instance and launch its container.

        Validation, capacity and port failures raise before anything is
        recorded. A control-plane failure is not retried: the instance is
        returned in ERROR state with its ports released.

        Raises:
            InvalidConfigError: Malformed payload, mods or config.
            CapacityExceededError: max_instances records already exist.
            ExhaustedRangeError: A port range has no free port.
        """
        validate_payload(payload)
        mod_ids = validate_mods(list(mods))
        config = config or InstanceConfig()
        validate_instance_config(config)

        instance_id = self._id_factory()
        lock = self._locks.get(instance_id)
        async with lock:
            try:
                instance = await self._registry.reserve(
                    instance_id,
                    mod_ids,
                    config,
                    self._config.instances.max_instances,
                )
            except Exception:
                self._locks.discard(instance_id)
                raise

            spec = self._build_spec(instance, payload)
            try:
                container_ref = await self._control_plane.create(spec)
            except ControlPlaneError as e:
                failed = await self._registry.mark_error(instance_id, e.message)
                INSTANCES_CREATED_TOTAL.labels(outcome="error").inc()
                logger.warning(
                    "Instance creation failed",
                    extra={
                        "event": LogEvent.INSTANCE_CREATED,
                        "instance_id": instance_id,
                        "outcome": "error",
                        "error": e.message,
                    },
                )
                return failed
            except BaseException as e:
                # Cancelled or unexpected failure: the runtime may already have
                # launched the container, so remove it by name before settling
                await asyncio.shield(
                    self._abort_create(
                        instance_id, spec.name, f"Creation aborted: {type(e).__name__}"
                    )
                )
                INSTANCES_CREATED_TOTAL.labels(outcome="error").inc()
                raise

            running = await self._registry.mark_running(instance_id, container_ref)

        INSTANCES_CREATED_TOTAL.labels(outcome="running").inc()
        logger.info(
            "Instance created",
            extra={
                "event": LogEvent.INSTANCE_CREATED,
                "instance_id": instance_id,
                "container": container_ref,
                "rdp_port": running.rdp_port,
                "console_port": running.console_port,
                "outcome": "running",
            },
        )
        return running

    async def _abort_create(self, instance_id: str, container_name: str, reason: str) -> None:
        try:
            await self._control_plane.remove(container_name)
        except ControlPlaneError as e:
            logger.error(
                "Failed to remove container of aborted create: %s",
                e.message,
                extra={
                    "event": LogEvent.RUNTIME_ERROR,
                    "instance_id": instance_id,
                    "container": container_name,
                },
            )
        await self._registry.mark_error(instance_id, reason)

    def _build_spec(self, instance: Instance, payload: bytes) -> ContainerSpec:
        docker = self._config.docker
        env = {"RDP_SERVER": "yes"}
        if instance.config.rdp_password:
            env["RDP_PASSWORD"] = instance.config.rdp_password
        if instance.config.wine_debug_level:
            env["WINEDEBUG"] = instance.config.wine_debug_level
        if instance.mods:
            env["OPENZT_MODS"] = ",".join(instance.mods)

        cpu_limit = instance.config.cpulimit
        if cpu_limit is None:
            cpu_limit = self._config.instances.default_cpulimit

        return ContainerSpec(
            name=f"{docker.container_prefix}{instance.id}",
            image=docker.image,
            env=env,
            ports=instance.ports,
            payload=payload,
            cpu_limit=cpu_limit,
            labels={
                LABEL_INSTANCE_ID: instance.id,
                LABEL_CREATED_AT: instance.created_at.isoformat(),
                LABEL_MODS: ",".join(instance.mods),
            },
        )

    # =========================================================================
    # Reads
    # =========================================================================

    async def list(self) -> list[Instance]:
        """All instances in creation order, reconciled against the runtime."""
        snapshot = await self._registry.list()
        reconciled = await asyncio.gather(*(self._reconcile(i) for i in snapshot))
        return [instance for instance in reconciled if instance is not None]

    async def get(self, instance_id: str) -> Instance:
        """Get one instance, reconciled against the runtime.

        Raises:
            NotFoundError: If the id is unknown.
        """
        instance = await self._registry.get(instance_id)
        reconciled = await self._reconcile(instance)
        if reconciled is None:
            raise NotFoundError(f"Instance {instance_id} not found")
        return reconciled

    async def _reconcile(self, instance: Instance) -> Instance | None:
        """Detect RUNNING → STOPPED drift. Returns None if the record vanished."""
        if instance.state != InstanceState.RUNNING or instance.container_ref is None:
            return instance

        async with self._locks.get(instance.id):
            current = await self._registry.find(instance.id)
            if current is None:
                self._locks.discard(instance.id)
                return None
            container_ref = current.container_ref
            if current.state != InstanceState.RUNNING or container_ref is None:
                return current

            try:
                runtime_state = await self._control_plane.inspect(container_ref)
            except ControlPlaneError as e:
                logger.warning(
                    "Reconciliation skipped: %s",
                    e.message,
                    extra={
                        "event": LogEvent.RUNTIME_ERROR,
                        "instance_id": current.id,
                        "error": e.message,
                    },
                )
                return current

            if runtime_state == RuntimeState.RUNNING:
                return current

            stopped = await self._registry.mark_stopped(
                current.id, f"Container {runtime_state.value}"
            )

        logger.info(
            "Instance reconciled",
            extra={
                "event": LogEvent.INSTANCE_RECONCILED,
                "instance_id": instance.id,
                "runtime_state": runtime_state.value,
            },
        )
        return stopped

    async def logs(self, instance_id: str, tail: int | None = None) -> bytes:
        """Recent container output.

        An instance without a container yields b"".

        Raises:
            NotFoundError: If the id is unknown.
            ControlPlaneError: If the runtime call fails.
        """
        instance = await self._registry.get(instance_id)
        if instance.container_ref is None:
            return b""
        return await self._control_plane.logs(
            instance.container_ref,
            tail=tail if tail is not None else self._config.instances.logs_tail_lines,
        )

    # =========================================================================
    # Delete
    # =========================================================================

    async def delete(self, instance_id: str) -> None:
        """Remove the container (if any), release ports and delete the record.

        A failed container removal leaves the record in place.

        Raises:
            NotFoundError: If the id is unknown (including already deleted).
            ControlPlaneError: If the container could not be removed.
        """
        async with self._locks.get(instance_id):
            instance = await self._registry.find(instance_id)
            if instance is None:
                self._locks.discard(instance_id)
                raise NotFoundError(f"Instance {instance_id} not found")

            if instance.container_ref is not None:
                await self._control_plane.remove(instance.container_ref)

            await self._registry.remove(instance_id)
            self._locks.discard(instance_id)

        logger.info(
            "Instance deleted",
            extra={
                "event": LogEvent.INSTANCE_DELETED,
                "instance_id": instance_id,
                "container": instance.container_ref,
            },
        )

    # =========================================================================
    # Recovery and health
    # =========================================================================

    async def adopt(self, instance: Instance) -> Instance:
        """Register an instance whose container already exists in the runtime."""
        return await self._registry.adopt(instance)

    async def health(self) -> HealthReport:
        try:
            reachable = await self._control_plane.ping()
        except ControlPlaneError:
            reachable = False

        rdp_available, console_available = self._registry.ports_available()
        return HealthReport(
            status="healthy" if reachable else "degraded",
            runtime_reachable=reachable,
            instances=await self._registry.count(),
            max_instances=self._config.instances.max_instances,
            rdp_ports_available=rdp_available,
            console_ports_available=console_available,
        )

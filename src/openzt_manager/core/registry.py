"""Instance registry and lifecycle state machine.

The registry is the only writer of instance state. It also records which
instance holds which port pair, reserving and releasing ports through the
PortAllocator inside the same critical section as the record change.

State machine:

    CREATING ──► RUNNING ──► STOPPED
        │           │
        └──► ERROR ◄┘

STOPPED and ERROR are terminal; records leave the registry only through
remove(). Ports are released on CREATING → ERROR (no container ever bound
them) or on remove(), whichever comes first.
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime

from openzt_manager.core.errors import (
    CapacityExceededError,
    ExhaustedRangeError,
    InvalidTransitionError,
    NotFoundError,
)
from openzt_manager.core.models import (
    Instance,
    InstanceConfig,
    InstanceState,
    PortPair,
    utc_now,
)
from openzt_manager.core.ports import PortAllocator
from openzt_manager.logging_schema import LogEvent
from openzt_manager.metrics import INSTANCES, PORTS_AVAILABLE

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[InstanceState, frozenset[InstanceState]] = {
    InstanceState.CREATING: frozenset({InstanceState.RUNNING, InstanceState.ERROR}),
    InstanceState.RUNNING: frozenset({InstanceState.STOPPED, InstanceState.ERROR}),
    InstanceState.STOPPED: frozenset(),
    InstanceState.ERROR: frozenset(),
}


class InstanceRegistry:
    """Authoritative in-process store of instance records."""

    def __init__(
        self,
        allocator: PortAllocator,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._allocator = allocator
        self._clock = clock
        self._lock = asyncio.Lock()
        # Insertion order is creation order
        self._instances: dict[str, Instance] = {}
        self._port_holders: dict[str, PortPair] = {}

    # =========================================================================
    # Reads
    # =========================================================================

    async def get(self, instance_id: str) -> Instance:
        """Get an instance record.

        Raises:
            NotFoundError: If the id is unknown.
        """
        async with self._lock:
            instance = self._instances.get(instance_id)
        if instance is None:
            raise NotFoundError(f"Instance {instance_id} not found")
        return instance

    async def find(self, instance_id: str) -> Instance | None:
        async with self._lock:
            return self._instances.get(instance_id)

    async def list(self) -> list[Instance]:
        """All records in creation order."""
        async with self._lock:
            return list(self._instances.values())

    async def count(self) -> int:
        async with self._lock:
            return len(self._instances)

    async def holds_ports(self, instance_id: str) -> bool:
        async with self._lock:
            return instance_id in self._port_holders

    def ports_available(self) -> tuple[int, int]:
        """Free (rdp, console) port counts."""
        return self._allocator.rdp_available, self._allocator.console_available

    # =========================================================================
    # Insertion and removal
    # =========================================================================

    async def reserve(
        self,
        instance_id: str,
        mods: tuple[str, ...],
        config: InstanceConfig,
        max_instances: int,
    ) -> Instance:
        """Check capacity, allocate a port pair and insert a CREATING record.

        All three steps happen under the registry lock; a failure leaves no
        record and no reserved ports behind.

        Raises:
            CapacityExceededError: If max_instances records already exist.
            ExhaustedRangeError: If a port range is exhausted.
        """
        async with self._lock:
            if len(self._instances) >= max_instances:
                raise CapacityExceededError(
                    f"Maximum instances reached ({max_instances})"
                )

            try:
                ports = self._allocator.allocate_pair()
            except ExhaustedRangeError as e:
                logger.warning(
                    "Port range exhausted: %s",
                    e.range_name,
                    extra={"event": LogEvent.PORTS_EXHAUSTED, "range": e.range_name},
                )
                raise
            now = self._clock()
            instance = Instance(
                id=instance_id,
                state=InstanceState.CREATING,
                rdp_port=ports.rdp,
                console_port=ports.console,
                created_at=now,
                last_state_change_at=now,
                mods=mods,
                config=config,
            )
            self._instances[instance_id] = instance
            self._port_holders[instance_id] = ports
            self._update_metrics()

        logger.info(
            "Instance reserved",
            extra={
                "event": LogEvent.PORTS_ALLOCATED,
                "instance_id": instance_id,
                "rdp_port": ports.rdp,
                "console_port": ports.console,
            },
        )
        return instance

    async def adopt(self, instance: Instance) -> Instance:
        """Insert a record for a container that already exists in the runtime.

        Only RUNNING or STOPPED records with a container reference can be
        adopted. The record's exact ports are reserved in the allocator.

        Raises:
            InvalidTransitionError: If the record is not adoptable.
            InvalidConfigError: If its ports are out of range or already held.
        """
        if instance.state not in (InstanceState.RUNNING, InstanceState.STOPPED):
            raise InvalidTransitionError(
                f"Cannot adopt instance {instance.id} in state {instance.state.value}"
            )
        if not instance.container_ref:
            raise InvalidTransitionError(
                f"Cannot adopt instance {instance.id} without a container reference"
            )

        async with self._lock:
            if instance.id in self._instances:
                raise InvalidTransitionError(f"Instance {instance.id} already registered")
            ports = self._allocator.reserve_pair(instance.rdp_port, instance.console_port)
            self._instances[instance.id] = instance
            self._port_holders[instance.id] = ports
            self._update_metrics()

        return instance

    async def remove(self, instance_id: str) -> Instance:
        """Release the instance's ports (if still held) and delete the record.

        Raises:
            NotFoundError: If the id is unknown.
        """
        async with self._lock:
            instance = self._instances.pop(instance_id, None)
            if instance is None:
                raise NotFoundError(f"Instance {instance_id} not found")
            self._release_ports(instance_id)
            self._update_metrics()

        return instance

    # =========================================================================
    # Transitions
    # =========================================================================

    async def mark_running(self, instance_id: str, container_ref: str) -> Instance:
        """CREATING → RUNNING, recording the container reference."""
        return await self._transition(
            instance_id, InstanceState.RUNNING, container_ref=container_ref
        )

    async def mark_error(self, instance_id: str, message: str) -> Instance:
        """CREATING/RUNNING → ERROR with a diagnostic message."""
        return await self._transition(
            instance_id, InstanceState.ERROR, status_message=message
        )

    async def mark_stopped(self, instance_id: str, message: str | None = None) -> Instance:
        """RUNNING → STOPPED after the runtime reports the container gone or exited."""
        return await self._transition(
            instance_id, InstanceState.STOPPED, status_message=message
        )

    async def _transition(
        self,
        instance_id: str,
        target: InstanceState,
        container_ref: str | None = None,
        status_message: str | None = None,
    ) -> Instance:
        async with self._lock:
            current = self._instances.get(instance_id)
            if current is None:
                raise NotFoundError(f"Instance {instance_id} not found")

            if target not in ALLOWED_TRANSITIONS[current.state]:
                raise InvalidTransitionError(
                    f"Instance {instance_id}: {current.state.value} -> "
                    f"{target.value} not allowed"
                )

            changes: dict[str, object] = {
                "state": target,
                "last_state_change_at": self._clock(),
                "status_message": status_message,
            }
            if container_ref is not None:
                if current.container_ref is not None:
                    raise InvalidTransitionError(
                        f"Instance {instance_id} already has container "
                        f"{current.container_ref}"
                    )
                changes["container_ref"] = container_ref

            updated = current.model_copy(update=changes)
            self._instances[instance_id] = updated

            # No container ever bound these ports
            if current.state == InstanceState.CREATING and target == InstanceState.ERROR:
                self._release_ports(instance_id)

            self._update_metrics()

        logger.info(
            "Instance state changed",
            extra={
                "event": LogEvent.INSTANCE_STATE_CHANGED,
                "instance_id": instance_id,
                "from_state": current.state.value,
                "to_state": target.value,
                "status_message": status_message,
            },
        )
        return updated

    # =========================================================================
    # Internals (caller holds self._lock)
    # =========================================================================

    def _release_ports(self, instance_id: str) -> None:
        ports = self._port_holders.pop(instance_id, None)
        if ports is None:
            return
        self._allocator.release_pair(ports.rdp, ports.console)
        logger.debug(
            "Ports released",
            extra={
                "event": LogEvent.PORTS_RELEASED,
                "instance_id": instance_id,
                "rdp_port": ports.rdp,
                "console_port": ports.console,
            },
        )

    def _update_metrics(self) -> None:
        counts = {state: 0 for state in InstanceState}
        for instance in self._instances.values():
            counts[instance.state] += 1
        for state, count in counts.items():
            INSTANCES.labels(state=state.value).set(count)
        PORTS_AVAILABLE.labels(range="rdp").set(self._allocator.rdp_available)
        PORTS_AVAILABLE.labels(range="console").set(self._allocator.console_available)

"""Tests for InstanceRegistry and the lifecycle state machine."""

import asyncio
from datetime import datetime

import pytest
from fakes import FakeClock

from openzt_manager.core.errors import (
    CapacityExceededError,
    ExhaustedRangeError,
    InvalidConfigError,
    InvalidTransitionError,
    NotFoundError,
)
from openzt_manager.core.models import Instance, InstanceConfig, InstanceState
from openzt_manager.core.ports import PortAllocator
from openzt_manager.core.registry import InstanceRegistry


async def reserve(registry: InstanceRegistry, instance_id: str, max_instances: int = 10) -> Instance:
    return await registry.reserve(instance_id, (), InstanceConfig(), max_instances)


class TestReserve:
    """Tests for reserve."""

    async def test_inserts_creating_record(
        self, registry: InstanceRegistry, clock: FakeClock
    ) -> None:
        instance = await reserve(registry, "a")

        assert instance.state == InstanceState.CREATING
        assert instance.container_ref is None
        assert (instance.rdp_port, instance.console_port) == (13390, 18081)
        assert instance.created_at == clock.now
        assert await registry.get("a") == instance

    async def test_capacity_exceeded_creates_nothing(
        self, registry: InstanceRegistry, allocator: PortAllocator
    ) -> None:
        await reserve(registry, "a", max_instances=1)

        with pytest.raises(CapacityExceededError):
            await reserve(registry, "b", max_instances=1)

        assert await registry.count() == 1
        assert await registry.find("b") is None
        assert allocator.rdp_available == 2

    async def test_port_exhaustion_creates_nothing(self, registry: InstanceRegistry) -> None:
        for instance_id in ("a", "b", "c"):
            await reserve(registry, instance_id)

        with pytest.raises(ExhaustedRangeError):
            await reserve(registry, "d")

        assert await registry.count() == 3

    async def test_concurrent_reserves_get_distinct_ports(
        self, registry: InstanceRegistry
    ) -> None:
        results = await asyncio.gather(
            *(reserve(registry, str(i)) for i in range(4)), return_exceptions=True
        )

        instances = [r for r in results if isinstance(r, Instance)]
        assert len(instances) == 3
        assert len({i.rdp_port for i in instances}) == 3
        assert len({i.console_port for i in instances}) == 3
        assert sum(isinstance(r, ExhaustedRangeError) for r in results) == 1


class TestTransitions:
    """Tests for the state machine."""

    async def test_creating_to_running_records_container(
        self, registry: InstanceRegistry, clock: FakeClock
    ) -> None:
        await reserve(registry, "a")
        clock.advance(seconds=5)

        instance = await registry.mark_running("a", "container-1")

        assert instance.state == InstanceState.RUNNING
        assert instance.container_ref == "container-1"
        assert instance.last_state_change_at == clock.now
        assert instance.last_state_change_at > instance.created_at

    async def test_creating_to_error_releases_ports(
        self, registry: InstanceRegistry, allocator: PortAllocator
    ) -> None:
        await reserve(registry, "a")

        instance = await registry.mark_error("a", "image not found")

        assert instance.state == InstanceState.ERROR
        assert instance.status_message == "image not found"
        assert allocator.rdp_available == 3
        assert not await registry.holds_ports("a")

    async def test_released_ports_are_not_released_twice(
        self, registry: InstanceRegistry, allocator: PortAllocator
    ) -> None:
        """Removing an errored record must not free ports re-taken by another."""
        await reserve(registry, "a")
        await registry.mark_error("a", "boom")
        reused = await reserve(registry, "b")
        assert reused.rdp_port == 13390

        await registry.remove("a")

        assert allocator.rdp_available == 2
        assert await registry.holds_ports("b")

    async def test_running_to_stopped_keeps_ports(
        self, registry: InstanceRegistry, allocator: PortAllocator
    ) -> None:
        await reserve(registry, "a")
        await registry.mark_running("a", "container-1")

        instance = await registry.mark_stopped("a", "Container exited")

        assert instance.state == InstanceState.STOPPED
        assert allocator.rdp_available == 2

    async def test_running_to_error_keeps_ports_until_removed(
        self, registry: InstanceRegistry, allocator: PortAllocator
    ) -> None:
        await reserve(registry, "a")
        await registry.mark_running("a", "container-1")

        await registry.mark_error("a", "crashed")
        assert allocator.rdp_available == 2

        await registry.remove("a")
        assert allocator.rdp_available == 3

    @pytest.mark.parametrize(
        "setup",
        ["stopped", "error"],
    )
    async def test_terminal_states_reject_transitions(
        self, registry: InstanceRegistry, setup: str
    ) -> None:
        await reserve(registry, "a")
        await registry.mark_running("a", "container-1")
        if setup == "stopped":
            await registry.mark_stopped("a")
        else:
            await registry.mark_error("a", "boom")

        with pytest.raises(InvalidTransitionError):
            await registry.mark_running("a", "container-2")
        with pytest.raises(InvalidTransitionError):
            await registry.mark_error("a", "again")

    async def test_creating_cannot_stop(self, registry: InstanceRegistry) -> None:
        await reserve(registry, "a")

        with pytest.raises(InvalidTransitionError):
            await registry.mark_stopped("a")

    async def test_running_cannot_reenter_running(self, registry: InstanceRegistry) -> None:
        await reserve(registry, "a")
        await registry.mark_running("a", "container-1")

        with pytest.raises(InvalidTransitionError):
            await registry.mark_running("a", "container-2")

        assert (await registry.get("a")).container_ref == "container-1"

    async def test_unknown_id(self, registry: InstanceRegistry) -> None:
        with pytest.raises(NotFoundError):
            await registry.mark_running("missing", "container-1")


class TestRemove:
    """Tests for remove."""

    async def test_remove_releases_ports_and_record(
        self, registry: InstanceRegistry, allocator: PortAllocator
    ) -> None:
        await reserve(registry, "a")
        await registry.mark_running("a", "container-1")

        await registry.remove("a")

        assert await registry.find("a") is None
        assert allocator.rdp_available == 3
        assert allocator.console_available == 3

    async def test_remove_unknown_mutates_nothing(
        self, registry: InstanceRegistry, allocator: PortAllocator
    ) -> None:
        await reserve(registry, "a")

        with pytest.raises(NotFoundError):
            await registry.remove("missing")

        assert await registry.count() == 1
        assert allocator.rdp_available == 2

    async def test_list_keeps_creation_order(self, registry: InstanceRegistry) -> None:
        for instance_id in ("c", "a", "b"):
            await reserve(registry, instance_id)
        await registry.remove("a")

        assert [i.id for i in await registry.list()] == ["c", "b"]


class TestAdopt:
    """Tests for adopt."""

    def _instance(self, now: datetime, **overrides) -> Instance:
        fields = {
            "id": "recovered",
            "state": InstanceState.RUNNING,
            "rdp_port": 13391,
            "console_port": 18082,
            "container_ref": "abc123",
            "created_at": now,
            "last_state_change_at": now,
        }
        fields.update(overrides)
        return Instance(**fields)

    async def test_adopt_reserves_exact_ports(
        self, registry: InstanceRegistry, clock: FakeClock
    ) -> None:
        await registry.adopt(self._instance(clock.now))

        fresh = await reserve(registry, "new")

        assert (fresh.rdp_port, fresh.console_port) == (13390, 18081)
        assert await registry.holds_ports("recovered")

    async def test_adopt_rejects_creating(
        self, registry: InstanceRegistry, clock: FakeClock
    ) -> None:
        with pytest.raises(InvalidTransitionError):
            await registry.adopt(self._instance(clock.now, state=InstanceState.CREATING))

    async def test_adopt_rejects_port_collision(
        self, registry: InstanceRegistry, clock: FakeClock
    ) -> None:
        await registry.adopt(self._instance(clock.now))

        with pytest.raises(InvalidConfigError):
            await registry.adopt(self._instance(clock.now, id="other", container_ref="def456"))

        assert await registry.count() == 1

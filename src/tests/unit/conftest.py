"""Shared fixtures for manager unit tests."""

from unittest.mock import AsyncMock

import pytest
from fakes import FakeClock, FakeControlPlane

from openzt_manager.config import (
    DockerConfig,
    InstancesConfig,
    ManagerConfig,
    PortsConfig,
)
from openzt_manager.core.errors import RuntimeOperationError
from openzt_manager.core.locks import InstanceLocks
from openzt_manager.core.orchestrator import Orchestrator
from openzt_manager.core.ports import PortAllocator
from openzt_manager.core.registry import InstanceRegistry
from openzt_manager.infra import ContainerAPI, ImageAPI


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def manager_config() -> ManagerConfig:
    """Config with small port ranges (3 ports each)."""
    return ManagerConfig(
        ports=PortsConfig(
            rdp_start=13390,
            rdp_end=13392,
            console_start=18081,
            console_end=18083,
        ),
        docker=DockerConfig(payload_dir="/tmp/openzt-test"),
        instances=InstancesConfig(max_instances=10),
    )


@pytest.fixture
def allocator(manager_config: ManagerConfig) -> PortAllocator:
    ports = manager_config.ports
    return PortAllocator(ports.rdp_start, ports.rdp_end, ports.console_start, ports.console_end)


@pytest.fixture
def registry(allocator: PortAllocator, clock: FakeClock) -> InstanceRegistry:
    return InstanceRegistry(allocator, clock=clock)


@pytest.fixture
def control_plane() -> FakeControlPlane:
    return FakeControlPlane()


@pytest.fixture
def orchestrator(
    registry: InstanceRegistry,
    control_plane: FakeControlPlane,
    manager_config: ManagerConfig,
) -> Orchestrator:
    return Orchestrator(registry, control_plane, manager_config, InstanceLocks())


@pytest.fixture
def failing_create(control_plane: FakeControlPlane) -> FakeControlPlane:
    control_plane.create_error = RuntimeOperationError("image not found")
    return control_plane


@pytest.fixture
def mock_container_api() -> AsyncMock:
    """Mock ContainerAPI for testing."""
    api = AsyncMock(spec=ContainerAPI)
    api.list = AsyncMock(return_value=[])
    api.inspect = AsyncMock(return_value=None)
    api.create = AsyncMock(return_value="abc123")
    api.start = AsyncMock()
    api.stop = AsyncMock()
    api.remove = AsyncMock()
    api.logs = AsyncMock(return_value=b"")
    return api


@pytest.fixture
def mock_image_api() -> AsyncMock:
    """Mock ImageAPI for testing."""
    api = AsyncMock(spec=ImageAPI)
    api.exists = AsyncMock(return_value=True)
    api.pull = AsyncMock()
    api.ensure = AsyncMock()
    return api

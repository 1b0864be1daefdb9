"""Unit tests for DockerControlPlane."""

from pathlib import Path
from unittest.mock import AsyncMock

import pytest
from fakes import VALID_DLL

from openzt_manager.config import DockerConfig
from openzt_manager.core.control_plane import ContainerSpec, RuntimeState
from openzt_manager.core.errors import (
    ContainerNotFoundError,
    ResourceConflictError,
    RuntimeOperationError,
)
from openzt_manager.core.models import PortPair
from openzt_manager.infra import ContainerConfig, DockerClient
from openzt_manager.runtimes.docker import DockerControlPlane, ResourceNaming


@pytest.fixture
def docker_config(tmp_path: Path) -> DockerConfig:
    return DockerConfig(payload_dir=str(tmp_path), payload_mount_path="/opt/openzt.dll")


@pytest.fixture
def mock_client() -> AsyncMock:
    client = AsyncMock(spec=DockerClient)
    client.ping = AsyncMock(return_value=True)
    return client


@pytest.fixture
def control_plane(
    docker_config: DockerConfig,
    mock_client: AsyncMock,
    mock_container_api: AsyncMock,
    mock_image_api: AsyncMock,
) -> DockerControlPlane:
    return DockerControlPlane(
        docker_config,
        client=mock_client,
        containers=mock_container_api,
        images=mock_image_api,
        logs_max_bytes=16,
    )


@pytest.fixture
def spec() -> ContainerSpec:
    return ContainerSpec(
        name="openzt-1234",
        image="finn/winezt:latest",
        env={"RDP_SERVER": "yes", "RDP_PASSWORD": "secret"},
        ports=PortPair(13390, 18081),
        payload=VALID_DLL,
        cpu_limit=0.5,
        labels={"openzt.instance-id": "1234"},
    )


class TestCreate:
    """Tests for create."""

    async def test_create_and_start(
        self,
        control_plane: DockerControlPlane,
        spec: ContainerSpec,
        mock_container_api: AsyncMock,
        mock_image_api: AsyncMock,
        tmp_path: Path,
    ) -> None:
        ref = await control_plane.create(spec)

        assert ref == "abc123"
        mock_image_api.ensure.assert_awaited_once_with("finn/winezt:latest", "linux/amd64")
        mock_container_api.start.assert_awaited_once_with("abc123")

        config: ContainerConfig = mock_container_api.create.call_args.args[0]
        api = config.to_api()
        assert config.name == "openzt-1234"
        assert api["Env"] == ["RDP_SERVER=yes", "RDP_PASSWORD=secret"]
        assert api["Labels"] == {"openzt.instance-id": "1234"}
        assert set(api["ExposedPorts"]) == {"3389/tcp", "8080/tcp"}
        assert api["HostConfig"]["PortBindings"] == {
            "3389/tcp": [{"HostIp": "", "HostPort": "13390"}],
            "8080/tcp": [{"HostIp": "", "HostPort": "18081"}],
        }
        assert api["HostConfig"]["NanoCpus"] == 500_000_000
        payload = tmp_path / "openzt-1234.dll"
        assert api["HostConfig"]["Binds"] == [f"{payload}:/opt/openzt.dll:ro"]
        assert payload.read_bytes() == VALID_DLL

    async def test_start_failure_removes_container(
        self,
        control_plane: DockerControlPlane,
        spec: ContainerSpec,
        mock_container_api: AsyncMock,
        tmp_path: Path,
    ) -> None:
        mock_container_api.start.side_effect = RuntimeOperationError("port is already allocated")

        with pytest.raises(RuntimeOperationError):
            await control_plane.create(spec)

        mock_container_api.remove.assert_awaited_once_with("abc123")
        assert not (tmp_path / "openzt-1234.dll").exists()

    async def test_create_conflict_cleans_payload(
        self,
        control_plane: DockerControlPlane,
        spec: ContainerSpec,
        mock_container_api: AsyncMock,
        tmp_path: Path,
    ) -> None:
        mock_container_api.create.side_effect = ResourceConflictError("name in use")

        with pytest.raises(ResourceConflictError):
            await control_plane.create(spec)

        mock_container_api.start.assert_not_awaited()
        assert not (tmp_path / "openzt-1234.dll").exists()

    async def test_unwritable_payload_dir(
        self,
        mock_client: AsyncMock,
        mock_container_api: AsyncMock,
        mock_image_api: AsyncMock,
        spec: ContainerSpec,
        tmp_path: Path,
    ) -> None:
        config = DockerConfig(payload_dir=str(tmp_path / "missing"))
        control_plane = DockerControlPlane(
            config,
            client=mock_client,
            containers=mock_container_api,
            images=mock_image_api,
        )

        with pytest.raises(RuntimeOperationError, match="payload"):
            await control_plane.create(spec)

        mock_container_api.create.assert_not_awaited()


class TestInspect:
    """Tests for inspect."""

    @pytest.mark.parametrize(
        ("data", "expected"),
        [
            (None, RuntimeState.MISSING),
            ({"State": {"Running": True}}, RuntimeState.RUNNING),
            ({"State": {"Running": False, "Status": "exited"}}, RuntimeState.EXITED),
        ],
    )
    async def test_state_mapping(
        self,
        control_plane: DockerControlPlane,
        mock_container_api: AsyncMock,
        data: dict | None,
        expected: RuntimeState,
    ) -> None:
        mock_container_api.inspect.return_value = data

        assert await control_plane.inspect("abc123") == expected


class TestLogs:
    """Tests for logs."""

    async def test_passes_byte_ceiling_to_reader(
        self, control_plane: DockerControlPlane, mock_container_api: AsyncMock
    ) -> None:
        mock_container_api.logs.return_value = b"3456789abcdefXYZ"

        output = await control_plane.logs("abc123", tail=100)

        assert output == b"3456789abcdefXYZ"
        mock_container_api.logs.assert_awaited_once_with("abc123", tail=100, max_bytes=16)

    async def test_missing_container_propagates(
        self, control_plane: DockerControlPlane, mock_container_api: AsyncMock
    ) -> None:
        mock_container_api.logs.side_effect = ContainerNotFoundError()

        with pytest.raises(ContainerNotFoundError):
            await control_plane.logs("abc123")


class TestRemove:
    """Tests for remove."""

    async def test_remove_deletes_payload(
        self,
        control_plane: DockerControlPlane,
        mock_container_api: AsyncMock,
        tmp_path: Path,
    ) -> None:
        payload = tmp_path / "openzt-1234.dll"
        payload.write_bytes(VALID_DLL)
        mock_container_api.inspect.return_value = {"Name": "/openzt-1234", "State": {}}

        await control_plane.remove("abc123")

        mock_container_api.stop.assert_not_awaited()
        mock_container_api.remove.assert_awaited_once_with("abc123")
        assert not payload.exists()

    async def test_running_container_stopped_first(
        self,
        control_plane: DockerControlPlane,
        mock_container_api: AsyncMock,
        docker_config: DockerConfig,
    ) -> None:
        mock_container_api.inspect.return_value = {
            "Name": "/openzt-1234",
            "State": {"Running": True},
        }

        await control_plane.remove("abc123")

        mock_container_api.stop.assert_awaited_once_with(
            "abc123", timeout=docker_config.stop_timeout
        )
        mock_container_api.remove.assert_awaited_once_with("abc123")

    async def test_remove_absent_container_is_ok(
        self, control_plane: DockerControlPlane, mock_container_api: AsyncMock
    ) -> None:
        mock_container_api.inspect.return_value = None

        await control_plane.remove("abc123")

        mock_container_api.remove.assert_not_awaited()


class TestNaming:
    """Tests for ResourceNaming."""

    def test_round_trip(self, docker_config: DockerConfig) -> None:
        naming = ResourceNaming(docker_config)

        name = naming.container_name("1234")

        assert name == "openzt-1234"
        assert naming.instance_id_from_container(f"/{name}") == "1234"

    @pytest.mark.parametrize("name", ["other-1234", "openzt-", ""])
    def test_foreign_names(self, docker_config: DockerConfig, name: str) -> None:
        assert ResourceNaming(docker_config).instance_id_from_container(name) is None


async def test_ping_delegates_to_client(
    control_plane: DockerControlPlane, mock_client: AsyncMock
) -> None:
    assert await control_plane.ping() is True
    mock_client.ping.assert_awaited_once()

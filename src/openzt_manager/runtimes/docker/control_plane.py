"""Docker implementation of the container control plane."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from openzt_manager.config import DockerConfig
from openzt_manager.core.control_plane import ContainerSpec, ControlPlane, RuntimeState
from openzt_manager.core.errors import ControlPlaneError, RuntimeOperationError
from openzt_manager.infra import (
    ContainerAPI,
    ContainerConfig,
    DockerClient,
    HostConfig,
    ImageAPI,
)
from openzt_manager.logging_schema import LogEvent
from openzt_manager.runtimes.docker.naming import ResourceNaming

logger = logging.getLogger(__name__)

_NANO_CPUS_PER_CPU = 1_000_000_000


class DockerControlPlane(ControlPlane):
    """Launches instance containers through the Docker Engine API.

    create():
    1. Ensure the image is present (pull if not)
    2. Write the payload to payload_dir and bind-mount it read-only
    3. Create the container with both port bindings, env, labels, CPU limit
    4. Start it; if start fails the container and payload file are removed
    """

    def __init__(
        self,
        config: DockerConfig,
        naming: ResourceNaming | None = None,
        client: DockerClient | None = None,
        containers: ContainerAPI | None = None,
        images: ImageAPI | None = None,
        logs_max_bytes: int = 1024 * 1024,
    ) -> None:
        self._config = config
        self._naming = naming or ResourceNaming(config)
        self._client = client or DockerClient(config)
        self._containers = containers or ContainerAPI(self._client)
        self._images = images or ImageAPI(self._client)
        self._logs_max_bytes = logs_max_bytes

    @property
    def containers(self) -> ContainerAPI:
        return self._containers

    @property
    def naming(self) -> ResourceNaming:
        return self._naming

    async def create(self, spec: ContainerSpec) -> str:
        await self._images.ensure(spec.image, self._config.platform)

        payload_path = self._naming.payload_path(spec.name)
        await self._write_payload(payload_path, spec.payload)

        rdp_port = f"{self._config.rdp_container_port}/tcp"
        console_port = f"{self._config.console_container_port}/tcp"
        nano_cpus = int(spec.cpu_limit * _NANO_CPUS_PER_CPU) if spec.cpu_limit else None

        container_config = ContainerConfig(
            image=spec.image,
            name=spec.name,
            env=[f"{key}={value}" for key, value in spec.env.items()],
            labels=spec.labels,
            exposed_ports={rdp_port: {}, console_port: {}},
            host_config=HostConfig(
                binds=[f"{payload_path}:{self._config.payload_mount_path}:ro"],
                port_bindings={rdp_port: spec.ports.rdp, console_port: spec.ports.console},
                nano_cpus=nano_cpus,
            ),
        )

        try:
            container_id = await self._containers.create(
                container_config, self._config.platform
            )
        except ControlPlaneError:
            await self._delete_payload(payload_path)
            raise

        try:
            await self._containers.start(container_id)
        except ControlPlaneError as e:
            logger.warning(
                "Start failed, removing container %s",
                spec.name,
                extra={
                    "event": LogEvent.RUNTIME_ERROR,
                    "container": spec.name,
                    "error": e.message,
                },
            )
            try:
                await self._containers.remove(container_id)
            except ControlPlaneError as cleanup_error:
                logger.error(
                    "Failed to remove container after start failure: %s",
                    cleanup_error.message,
                    extra={"event": LogEvent.RUNTIME_ERROR, "container": spec.name},
                )
            await self._delete_payload(payload_path)
            raise

        return container_id

    async def inspect(self, container_ref: str) -> RuntimeState:
        data = await self._containers.inspect(container_ref)
        if data is None:
            return RuntimeState.MISSING
        if data.get("State", {}).get("Running", False):
            return RuntimeState.RUNNING
        return RuntimeState.EXITED

    async def logs(self, container_ref: str, tail: int | None = None) -> bytes:
        return await self._containers.logs(
            container_ref, tail=tail, max_bytes=self._logs_max_bytes
        )

    async def remove(self, container_ref: str) -> None:
        data = await self._containers.inspect(container_ref)
        if data is None:
            logger.debug("Container already absent: %s", container_ref)
            return

        if data.get("State", {}).get("Running", False):
            await self._containers.stop(container_ref, timeout=self._config.stop_timeout)
        await self._containers.remove(container_ref)

        name = data.get("Name", "").lstrip("/")
        if name:
            await self._delete_payload(self._naming.payload_path(name))

    async def ping(self) -> bool:
        return await self._client.ping()

    async def close(self) -> None:
        await self._client.close()

    async def _write_payload(self, path: Path, payload: bytes) -> None:
        try:
            await asyncio.to_thread(path.write_bytes, payload)
        except OSError as e:
            raise RuntimeOperationError(f"Failed to write payload {path}: {e}") from e

    async def _delete_payload(self, path: Path) -> None:
        try:
            await asyncio.to_thread(path.unlink, missing_ok=True)
        except OSError as e:
            logger.warning("Failed to delete payload %s: %s", path, e)

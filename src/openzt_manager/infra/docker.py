"""Docker Engine API client.

Provides async Docker API access for containers and images over httpx.
Supports both Unix socket and TCP connections.

Failures are mapped onto the ControlPlaneError family:
- connect/timeout/transport errors -> RuntimeUnavailableError
- HTTP 404 -> ContainerNotFoundError (inspect and remove treat it as absence)
- HTTP 409 -> ResourceConflictError
- any other non-2xx -> RuntimeOperationError with the daemon's message
"""

import json
import logging
import struct
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
from pydantic import BaseModel

from openzt_manager.config import DockerConfig, get_manager_config
from openzt_manager.core.errors import (
    ContainerNotFoundError,
    ControlPlaneError,
    ResourceConflictError,
    RuntimeOperationError,
    RuntimeUnavailableError,
)
from openzt_manager.logging_schema import LogEvent
from openzt_manager.metrics import DOCKER_DURATION, DOCKER_ERRORS

logger = logging.getLogger(__name__)

# Multiplexed log stream frame header: stream type (1 byte), 3 padding bytes,
# big-endian payload size (4 bytes)
_FRAME_HEADER = struct.Struct(">BxxxI")
_STREAM_TYPES = (0, 1, 2)


# =============================================================================
# Pydantic Models
# =============================================================================


class HostConfig(BaseModel):
    """Docker HostConfig for container creation."""

    network_mode: str = "bridge"
    binds: list[str] = []
    port_bindings: dict[str, int] = {}
    nano_cpus: int | None = None

    model_config = {"frozen": True}

    def to_api(self) -> dict:
        """Convert to Docker API format."""
        result: dict = {
            "NetworkMode": self.network_mode,
            "Binds": self.binds,
        }
        if self.port_bindings:
            result["PortBindings"] = {
                container_port: [{"HostIp": "", "HostPort": str(host_port)}]
                for container_port, host_port in self.port_bindings.items()
            }
        if self.nano_cpus:
            result["NanoCpus"] = self.nano_cpus
        return result


class ContainerConfig(BaseModel):
    """Docker container configuration for creation."""

    image: str
    name: str
    env: list[str] = []
    labels: dict[str, str] = {}
    exposed_ports: dict[str, dict] = {}
    host_config: HostConfig = HostConfig()

    model_config = {"frozen": True}

    def to_api(self) -> dict:
        """Convert to Docker API JSON format."""
        result: dict = {
            "Image": self.image,
            "ExposedPorts": self.exposed_ports,
            "HostConfig": self.host_config.to_api(),
        }
        if self.env:
            result["Env"] = self.env
        if self.labels:
            result["Labels"] = self.labels
        return result


# =============================================================================
# Helpers
# =============================================================================


def _is_frame_header(header: bytes) -> bool:
    return header[0] in _STREAM_TYPES and header[1:4] == b"\x00\x00\x00"


class LogTail:
    """Incremental log demultiplexer that keeps only the most recent output.

    Chunks are fed as they arrive from the daemon. Frame headers of a
    multiplexed stdout/stderr stream are stripped; a stream whose first
    header does not parse (containers with a TTY) is passed through raw.
    At most `limit` bytes of output are held at any time.
    """

    def __init__(self, limit: int | None = None) -> None:
        self._limit = limit
        self._out = bytearray()
        self._header = bytearray()
        self._remaining = 0
        self._raw = False

    def _emit(self, data: bytes) -> None:
        self._out += data
        if self._limit is not None and len(self._out) > self._limit:
            del self._out[: len(self._out) - self._limit]

    def feed(self, chunk: bytes) -> None:
        pos = 0
        while pos < len(chunk):
            if self._raw:
                self._emit(chunk[pos:])
                return
            if self._remaining:
                payload = chunk[pos : pos + self._remaining]
                self._emit(payload)
                pos += len(payload)
                self._remaining -= len(payload)
                continue

            taken = chunk[pos : pos + _FRAME_HEADER.size - len(self._header)]
            self._header += taken
            pos += len(taken)
            if len(self._header) < _FRAME_HEADER.size:
                return

            header = bytes(self._header)
            self._header.clear()
            if not _is_frame_header(header):
                self._raw = True
                self._emit(header)
                continue
            _, self._remaining = _FRAME_HEADER.unpack(header)

    def result(self) -> bytes:
        """Output so far. A trailing partial header is kept as raw bytes."""
        if self._header:
            self._emit(bytes(self._header))
            self._header.clear()
        return bytes(self._out)


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text or f"HTTP {resp.status_code}"
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return f"HTTP {resp.status_code}"


def _status_error(resp: httpx.Response) -> ControlPlaneError:
    message = _error_message(resp)
    if resp.status_code == 404:
        return ContainerNotFoundError(message)
    if resp.status_code == 409:
        return ResourceConflictError(message)
    return RuntimeOperationError(message)


def _error_type(
error: ControlPlaneError) -> str:
    if isinstance(error, RuntimeUnavailableError):
        return "unavailable"
    if isinstance(error, ContainerNotFoundError):
        return "not_found"
    if isinstance(error, ResourceConflictError):
        return "conflict"
    return "other"


# =============================================================================
# Docker Client
# =============================================================================


class DockerClient:
    """Async Docker API client."""

    def __init__(
        self,
        config: DockerConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config or get_manager_config().docker
        self._host = self._config.host
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def config(self) -> DockerConfig:
        return self._config

    def _create_client(self) -> httpx.AsyncClient:
        """Create a new HTTP client."""
        timeout = self._config.api_timeout
        if self._transport is not None:
            return httpx.AsyncClient(
                transport=self._transport,
                base_url="http://localhost",
                timeout=timeout,
            )
        if self._host.startswith("unix://"):
            socket_path = self._host.replace("unix://", "")
            transport = httpx.AsyncHTTPTransport(uds=socket_path)
            return httpx.AsyncClient(
                transport=transport,
                base_url="http://localhost",
                timeout=timeout,
            )
        else:
            base_url = self._host
            if base_url.startswith("tcp://"):
                base_url = base_url.replace("tcp://", "http://")
            return httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def get(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = self._create_client()
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    def _record_error(self, operation: str, error: ControlPlaneError) -> None:
        DOCKER_ERRORS.labels(operation=operation, error_type=_error_type(error)).inc()
        logger.warning(
            "Docker %s failed: %s",
            operation,
            error.message,
            extra={"event": LogEvent.RUNTIME_ERROR, "operation": operation},
        )

    async def request(
        self,
        operation: str,
        method: str,
        url: str,
        *,
        ok_statuses: tuple[int, ...] = (),
        **kwargs,
    ) -> httpx.Response:
        """Send a request, mapping failures onto ControlPlaneError.

        Statuses listed in ok_statuses are returned to the caller instead of
        being raised.
        """
        client = await self.get()
        start = time.perf_counter()
        try:
            try:
                resp = await client.request(method, url, **kwargs)
            except httpx.TransportError as e:
                raise RuntimeUnavailableError(
                    f"Docker daemon unreachable at {self._host}: {e}"
                ) from e

            if resp.is_success or resp.status_code in ok_statuses:
                return resp
            raise _status_error(resp)
        except ControlPlaneError as e:
            self._record_error(operation, e)
            raise
        finally:
            DOCKER_DURATION.labels(operation=operation).observe(
                time.perf_counter() - start
            )

    @asynccontextmanager
    async def stream(
        self, operation: str, method: str, url: str, **kwargs
    ) -> AsyncIterator[httpx.Response]:
        """Open a streamed request; the body is read by the caller.

        Errors are mapped as in request(), including transport errors
        raised while the body is being read.
        """
        client = await self.get()
        start = time.perf_counter()
        try:
            try:
                async with client.stream(method, url, **kwargs) as resp:
                    if not resp.is_success:
                        await resp.aread()
                        raise _status_error(resp)
                    yield resp
            except httpx.TransportError as e:
                raise RuntimeUnavailableError(
                    f"Docker daemon unreachable at {self._host}: {e}"
                ) from e
        except ControlPlaneError as e:
            self._record_error(operation, e)
            raise
        finally:
            DOCKER_DURATION.labels(operation=operation).observe(
                time.perf_counter() - start
            )

    async def ping(self) -> bool:
        """Check whether the daemon answers /_ping."""
        try:
            resp = await self.request("ping", "GET", "/_ping")
        except ControlPlaneError:
            return False
        return resp.status_code == 200


# =============================================================================
# Container API
# =============================================================================


class ContainerAPI:
    """Docker Container API operations."""

    def __init__(self, client: DockerClient | None = None) -> None:
        self._docker = client or DockerClient()

    async def list(self, filters: dict | None = None) -> list[dict]:
        """List containers, including stopped ones."""
        params: dict = {"all": "true"}
        if filters:
            params["filters"] = json.dumps(filters)
        resp = await self._docker.request("list", "GET", "/containers/json", params=params)
        return resp.json()

    async def inspect(self, name: str) -> dict | None:
        """Inspect a container. Returns None if it does not exist."""
        resp = await self._docker.request(
            "inspect", "GET", f"/containers/{name}/json", ok_statuses=(404,)
        )
        if resp.status_code == 404:
            return None
        return resp.json()

    async def create(self, config: ContainerConfig, platform: str | None = None) -> str:
        """Create a container and return its id.

        Raises:
            ResourceConflictError: If the name is already taken.
        """
        params = {"name": config.name}
        if platform:
            params["platform"] = platform
        resp = await self._docker.request(
            "create",
            "POST",
            "/containers/create",
            params=params,
            json=config.to_api(),
        )
        container_id = resp.json()["Id"]
        logger.info(
            "Created container: %s",
            config.name,
            extra={"event": LogEvent.CONTAINER_CREATED, "container": config.name},
        )
        return container_id

    async def start(self, name: str) -> None:
        """Start a container."""
        await self._docker.request(
            "start", "POST", f"/containers/{name}/start", ok_statuses=(304,)
        )
        logger.info(
            "Started container: %s",
            name,
            extra={"event": LogEvent.CONTAINER_STARTED, "container": name},
        )

    async def stop(self, name: str, timeout: int = 10) -> None:
        """Stop a container. Stopping an absent or stopped container succeeds."""
        await self._docker.request(
            "stop",
            "POST",
            f"/containers/{name}/stop",
            params={"t": str(timeout)},
            ok_statuses=(304, 404),
            timeout=self._docker.config.api_timeout + timeout,
        )
        logger.info("Stopped container: %s", name)

    async def remove(self, name: str, force: bool = True) -> None:
        """Remove a container. Removing an absent container succeeds."""
        resp = await self._docker.request(
            "remove",
            "DELETE",
            f"/containers/{name}",
            params={"force": "true" if force else "false"},
            ok_statuses=(404,),
        )
        if resp.status_code == 404:
            logger.debug("Container not found: %s", name)
            return
        logger.info(
            "Removed container: %s",
            name,
            extra={"event": LogEvent.CONTAINER_REMOVED, "container": name},
        )

    async def logs(
        self,
        name: str,
        tail: int | None = None,
        max_bytes: int | None = None,
        stdout: bool = True,
        stderr: bool = True,
    ) -> bytes:
        """Get container logs with stdout/stderr frames demultiplexed.

        The body is streamed; with max_bytes set only the most recent
        max_bytes of output are kept while reading.
        """
        params = {
            "stdout": "true" if stdout else "false",
            "stderr": "true" if stderr else "false",
            "tail": str(tail) if tail is not None else "all",
        }
        output = LogTail(max_bytes)
        async with self._docker.stream(
            "logs", "GET", f"/containers/{name}/logs", params=params
        ) as resp:
            async for chunk in resp.aiter_bytes():
                output.feed(chunk)
        return output.result()


# =============================================================================
# Image API
# =============================================================================


class ImageAPI:
    """Docker Image API operations."""

    def __init__(self, client: DockerClient | None = None) -> None:
        self._docker = client or DockerClient()

    async def exists(self, image_ref: str) -> bool:
        """Check if image exists locally."""
        resp = await self._docker.request(
            "image_inspect", "GET", f"/images/{image_ref}/json", ok_statuses=(404,)
        )
        return resp.status_code == 200

    async def pull(self, image_ref: str, platform: str | None = None) -> None:
        """Pull image from registry."""
        if ":" in image_ref.rsplit("/", 1)[-1]:
            image, tag = image_ref.rsplit(":", 1)
        else:
            image, tag = image_ref, "latest"

        logger.info("Pulling image: %s:%s", image, tag)

        params = {"fromImage": image, "tag": tag}
        if platform:
            params["platform"] = platform
        await self._docker.request(
            "image_pull",
            "POST",
            "/images/create",
            params=params,
            timeout=self._docker.config.image_pull_timeout,
        )
        logger.info(
            "Pulled image: %s:%s",
            image,
            tag,
            extra={"event": LogEvent.IMAGE_PULLED, "image": image_ref},
        )

    async def ensure(self, image_ref: str, platform: str | None = None) -> None:
        """Ensure image exists locally, pull if not."""
        if not await self.exists(image_ref):
            await self.pull(image_ref, platform)

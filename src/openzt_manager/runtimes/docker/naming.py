"""Resource naming utilities for Docker runtime."""

from pathlib import Path

from openzt_manager.config import DockerConfig


class ResourceNaming:
    """Centralized naming conventions for Docker resources."""

    def __init__(self, config: DockerConfig) -> None:
        self._prefix = config.container_prefix
        self._payload_dir = Path(config.payload_dir)

    @property
    def prefix(self) -> str:
        return self._prefix

    def container_name(self, instance_id: str) -> str:
        return f"{self._prefix}{instance_id}"

    def payload_path(self, container_name: str) -> Path:
        return self._payload_dir / f"{container_name}.dll"

    def instance_id_from_container(self, container_name: str) -> str | None:
        name = container_name.lstrip("/")
        if not name.startswith(self._prefix) or len(name) == len(self._prefix):
            return None
        return name[len(self._prefix) :]

"""Manager configuration using pydantic-settings.

Configuration hierarchy:
- ServerConfig: HTTP listen address and request limits
- PortsConfig: Host port ranges handed out to instances
- DockerConfig: Container runtime settings
- InstancesConfig: Capacity, cleanup and log limits
- LoggingConfig: Logging behavior
- ManagerConfig: Main config aggregating all sub-configs

Environment variable prefix: OPENZT_
Example: OPENZT_PORTS_RDP_START=20000
"""

from functools import lru_cache
from typing import Self

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ServerConfig(BaseSettings):
    """HTTP server configuration."""

    model_config = SettingsConfigDict(env_prefix="OPENZT_SERVER_")

    host: str = Field(default="0.0.0.0", description="Server bind address")
    port: int = Field(default=3000, description="Server port")
    cors_origins: list[str] = Field(
        default=["*"],
        description="Allowed CORS origins",
    )
    body_limit_bytes: int = Field(
        default=50 * 1024 * 1024,
        description="Maximum accepted request body (payloads are base64 encoded)",
    )


class PortsConfig(BaseSettings):
    """Host port ranges (both bounds inclusive).

    Each instance receives one port from each range for its lifetime.
    """

    model_config = SettingsConfigDict(env_prefix="OPENZT_PORTS_")

    rdp_start: int = Field(default=13390, description="First remote-desktop host port")
    rdp_end: int = Field(default=13489, description="Last remote-desktop host port")
    console_start: int = Field(default=18081, description="First console host port")
    console_end: int = Field(default=18180, description="Last console host port")

    @field_validator("rdp_start", "rdp_end", "console_start", "console_end")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate port number bounds."""
        if not 1 <= v <= 65535:
            raise ValueError(f"Invalid port {v}: must be between 1 and 65535")
        return v

    @model_validator(mode="after")
    def validate_ranges(self) -> Self:
        """Validate that both ranges are well-formed and disjoint."""
        if self.rdp_start > self.rdp_end:
            raise ValueError(
                f"Invalid rdp range {self.rdp_start}-{self.rdp_end}: start is after end"
            )
        if self.console_start > self.console_end:
            raise ValueError(
                f"Invalid console range {self.console_start}-{self.console_end}: "
                "start is after end"
            )
        if self.rdp_start <= self.console_end and self.console_start <= self.rdp_end:
            raise ValueError(
                f"Port ranges overlap: rdp {self.rdp_start}-{self.rdp_end}, "
                f"console {self.console_start}-{self.console_end}"
            )
        return self


class DockerConfig(BaseSettings):
    """Docker runtime configuration."""

    model_config = SettingsConfigDict(env_prefix="OPENZT_DOCKER_")

    # Connection
    host: str = Field(
        default="unix:///var/run/docker.sock",
        description="Docker daemon socket or TCP address",
    )

    # Image and naming
    image: str = Field(default="finn/winezt:latest", description="Instance image")
    container_prefix: str = Field(
        default="openzt-",
        description="Prefix for managed container names",
    )
    platform: str = Field(default="linux/amd64", description="Image platform")

    # Payload mount
    payload_dir: str = Field(
        default="/tmp",
        description="Host directory where decoded payloads are written",
    )
    payload_mount_path: str = Field(
        default=(
            "/home/wineuser/.wine/drive_c/Program Files (x86)/"
            "Microsoft Games/Zoo Tycoon/res-openzt.dll"
        ),
        description="Path of the payload inside the container",
    )

    # Container ports
    rdp_container_port: int = Field(default=3389, description="RDP port inside container")
    console_container_port: int = Field(
        default=8080, description="Console port inside container"
    )

    # Timeouts
    api_timeout: float = Field(default=30.0, description="Docker API call timeout (seconds)")
    image_pull_timeout: float = Field(default=600.0, description="Image pull timeout (seconds)")
    stop_timeout: int = Field(default=10, description="Grace period before kill (seconds)")

    @field_validator("image")
    @classmethod
    def validate_image(cls, v: str) -> str:
        """Validate image reference format."""
        if not v:
            raise ValueError("image cannot be empty")
        if " " in v:
            raise ValueError(f"Invalid image '{v}': image name cannot contain spaces")
        return v

    @field_validator("container_prefix")
    @classmethod
    def validate_container_prefix(cls, v: str) -> str:
        """Validate container prefix is a usable Docker name fragment."""
        if not v:
            raise ValueError("container_prefix cannot be empty")
        if "/" in v or " " in v:
            raise ValueError(
                f"Invalid container_prefix '{v}': cannot contain '/' or spaces"
            )
        return v


class InstancesConfig(BaseSettings):
    """Instance capacity, cleanup and log limits."""

    model_config = SettingsConfigDict(env_prefix="OPENZT_INSTANCES_")

    max_instances: int = Field(default=100, ge=1, description="Maximum registry size")
    auto_cleanup_hours: float = Field(
        default=24,
        gt=0,
        description="Age after which stopped/errored instances are removed",
    )
    cleanup_interval_seconds: float = Field(
        default=300.0,
        gt=0,
        description="Period of the cleanup scan",
    )
    default_cpulimit: float = Field(
        default=0.5,
        gt=0,
        description="CPU limit applied when a request does not set one (cores)",
    )
    logs_tail_lines: int = Field(default=100, ge=1, description="Default log tail")
    logs_max_bytes: int = Field(
        default=1024 * 1024,
        ge=1024,
        description="Upper bound on log output returned per request",
    )


class LoggingConfig(BaseSettings):
    """Logging configuration.

    Supports both text and JSON formats for different environments:
    - text: Human-readable for local development
    - json: Structured logging for production (log aggregation)
    """

    model_config = SettingsConfigDict(env_prefix="OPENZT_LOGGING_")

    level: str = Field(default="INFO", description="Log level (DEBUG, INFO, WARNING, ERROR)")
    format: str = Field(default="text", description="Log format (text, json)")
    service_name: str = Field(default="openzt-manager", description="Service identifier in logs")


class ManagerConfig(BaseSettings):
    """Main manager configuration aggregating all sub-configs.

    Environment variable prefix: OPENZT_
    Sub-configs use their own prefixes (OPENZT_PORTS_, OPENZT_DOCKER_, etc.)
    """

    model_config = SettingsConfigDict(
        env_prefix="OPENZT_",
        env_nested_delimiter="__",
    )

    server: ServerConfig = Field(default_factory=ServerConfig)
    ports: PortsConfig = Field(default_factory=PortsConfig)
    docker: DockerConfig = Field(default_factory=DockerConfig)
    instances: InstancesConfig = Field(default_factory=InstancesConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


@lru_cache
def get_manager_config() -> ManagerConfig:
    """Get cached manager configuration singleton."""
    return ManagerConfig()

"""API v1 schemas.

Consolidated request/response models for all API endpoints.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from openzt_manager.core.models import Instance, InstanceConfig, InstanceState


# =============================================================================
# Health
# =============================================================================


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    runtime_reachable: bool
    instances: int
    max_instances: int
    rdp_ports_available: int
    console_ports_available: int


# =============================================================================
# Instances
# =============================================================================


class InstanceConfigRequest(BaseModel):
    """Instance-specific parameters."""

    rdp_password: str | None = None
    wine_debug_level: str | None = None
    cpulimit: float | None = None

    def to_domain(self) -> InstanceConfig:
        return InstanceConfig(
            rdp_password=self.rdp_password,
            wine_debug_level=self.wine_debug_level,
            cpulimit=self.cpulimit,
        )


class CreateInstanceRequest(BaseModel):
    """Create instance request. The DLL is base64 encoded."""

    openzt_dll: str
    mods: list[str] = Field(default_factory=list)
    config: InstanceConfigRequest = Field(default_factory=InstanceConfigRequest)


class InstanceConfigResponse(BaseModel):
    """Instance config as reported back. The password is never echoed."""

    has_rdp_password: bool
    wine_debug_level: str | None
    cpulimit: float | None


class InstanceResponse(BaseModel):
    """Instance details."""

    id: str
    state: InstanceState
    status_message: str | None
    container_ref: str | None
    rdp_port: int
    console_port: int
    rdp_url: str
    created_at: datetime
    last_state_change_at: datetime
    mods: list[str]
    config: InstanceConfigResponse

    @classmethod
    def from_instance(cls, instance: Instance) -> "InstanceResponse":
        return cls(
            id=instance.id,
            state=instance.state,
            status_message=instance.status_message,
            container_ref=instance.container_ref,
            rdp_port=instance.rdp_port,
            console_port=instance.console_port,
            rdp_url=instance.rdp_url,
            created_at=instance.created_at,
            last_state_change_at=instance.last_state_change_at,
            mods=list(instance.mods),
            config=InstanceConfigResponse(
                has_rdp_password=bool(instance.config.rdp_password),
                wine_debug_level=instance.config.wine_debug_level,
                cpulimit=instance.config.cpulimit,
            ),
        )


class InstanceListResponse(BaseModel):
    """Instance list response."""

    instances: list[InstanceResponse]


class LogsResponse(BaseModel):
    """Container log output."""

    instance_id: str
    logs: str

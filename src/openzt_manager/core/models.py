"""Instance domain models.

Instance records are immutable snapshots. The registry replaces a record
as a whole on every transition, so readers never observe a half-applied
update.
"""

import base64
import binascii
import math
import re
from datetime import datetime, timezone
from enum import Enum
from typing import NamedTuple

from pydantic import BaseModel

from openzt_manager.core.errors import InvalidConfigError

# Windows PE images start with the DOS header signature
PE_SIGNATURE = b"MZ"

_MOD_ID_RE = re.compile(r"[^\s,]+")


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class InstanceState(str, Enum):
    """Instance lifecycle states."""

    CREATING = "creating"
    RUNNING = "running"
    STOPPED = "stopped"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (InstanceState.STOPPED, InstanceState.ERROR)


class PortPair(NamedTuple):
    """Host ports reserved for one instance."""

    rdp: int
    console: int


class InstanceConfig(BaseModel):
    """Instance-specific parameters supplied at creation."""

    rdp_password: str | None = None
    wine_debug_level: str | None = None
    cpulimit: float | None = None

    model_config = {"frozen": True}


class Instance(BaseModel):
    """One managed session: a container plus its reserved port pair."""

    id: str
    state: InstanceState
    rdp_port: int
    console_port: int
    container_ref: str | None = None
    created_at: datetime
    last_state_change_at: datetime
    status_message: str | None = None
    mods: tuple[str, ...] = ()
    config: InstanceConfig = InstanceConfig()

    model_config = {"frozen": True}

    @property
    def ports(self) -> PortPair:
        return PortPair(self.rdp_port, self.console_port)

    @property
    def rdp_url(self) -> str:
        return f"rdp://localhost:{self.rdp_port}"


# =============================================================================
# Creation payload validation
# =============================================================================


def decode_payload(encoded: str) -> bytes:
    """Decode a base64 payload, rejecting malformed input.

    Raises:
        InvalidConfigError: If the input is not valid base64.
    """
    try:
        return base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidConfigError(f"Failed to decode base64 payload: {e}") from e


def validate_payload(payload: bytes) -> None:
    """Check that the payload looks like a Windows DLL."""
    if len(payload) < len(PE_SIGNATURE):
        raise InvalidConfigError("Payload is too short")
    if not payload.startswith(PE_SIGNATURE):
        raise InvalidConfigError("Invalid payload format: missing MZ header")


def validate_mods(mods: list[str] | tuple[str, ...]) -> tuple[str, ...]:
    """Validate mod identifiers and return them as a tuple."""
    for mod in mods:
        if not _MOD_ID_RE.fullmatch(mod):
            raise InvalidConfigError(
                f"Invalid mod identifier '{mod}': must be non-empty without "
                "whitespace or commas"
            )
    return tuple(mods)


def validate_instance_config(config: InstanceConfig) -> None:
    """Validate instance config values that end up in the container environment."""
    if config.cpulimit is not None and not (
        math.isfinite(config.cpulimit) and config.cpulimit > 0
    ):
        raise InvalidConfigError(
            f"Invalid cpulimit {config.cpulimit}: must be a finite number greater than 0"
        )
    if config.wine_debug_level is not None and (
        not config.wine_debug_level or any(c.isspace() for c in config.wine_debug_level)
    ):
        raise InvalidConfigError(
            f"Invalid wine_debug_level '{config.wine_debug_level}': "
            "must be non-empty without whitespace"
        )
    if config.rdp_password is not None and any(
        c in config.rdp_password for c in ("\n", "\r", "\x00")
    ):
        raise InvalidConfigError("Invalid rdp_password: control characters not allowed")

"""Startup recovery of instance containers.

Rebuilds registry records from containers that survived a manager restart.
Called during startup before the API accepts requests.

Recovery Matrix:
| Container state | Bindings/labels usable | Result             |
|-----------------|------------------------|--------------------|
| running         | yes                    | adopted as RUNNING |
| exited/created  | yes                    | adopted as STOPPED |
| any             | no                     | skipped (warning)  |
"""

import logging
import uuid
from datetime import datetime

from openzt_manager.config import DockerConfig
from openzt_manager.core.control_plane import LABEL_CREATED_AT, LABEL_MODS
from openzt_manager.core.errors import ControlPlaneError, ManagerError
from openzt_manager.core.models import Instance, InstanceConfig, InstanceState, utc_now
from openzt_manager.core.orchestrator import Orchestrator
from openzt_manager.infra import ContainerAPI
from openzt_manager.logging_schema import LogEvent
from openzt_manager.runtimes.docker.naming import ResourceNaming

logger = logging.getLogger(__name__)


class RecoverySkipped(Exception):
    """A container cannot be turned into an instance record."""


def _host_port(data: dict, container_port: int) -> int:
    bindings = (data.get("HostConfig") or {}).get("PortBindings") or {}
    entries = bindings.get(f"{container_port}/tcp") or []
    if not entries or not entries[0].get("HostPort"):
        raise RecoverySkipped(f"no host binding for {container_port}/tcp")
    try:
        return int(entries[0]["HostPort"])
    except ValueError as e:
        raise RecoverySkipped(f"invalid host port {entries[0]['HostPort']!r}") from e


def _env_value(env: list[str], key: str) -> str | None:
    prefix = f"{key}="
    for item in env:
        if item.startswith(prefix):
            return item[len(prefix) :]
    return None


def _parse_created_at(labels: dict[str, str]) -> datetime:
    raw = labels.get(LABEL_CREATED_AT)
    if raw:
        try:
            return datetime.fromisoformat(raw)
        except ValueError:
            pass
    return utc_now()


def instance_from_container(
    instance_id: str,
    data: dict,
    config: DockerConfig,
) -> Instance:
    """Build an instance record from `docker inspect` output.

    Raises:
        RecoverySkipped: If the container lacks the information needed.
    """
    try:
        uuid.UUID(instance_id)
    except ValueError as e:
        raise RecoverySkipped(f"invalid instance id {instance_id!r}") from e

    rdp_port = _host_port(data, config.rdp_container_port)
    console_port = _host_port(data, config.console_container_port)

    container_config = data.get("Config") or {}
    labels = container_config.get("Labels") or {}
    env = container_config.get("Env") or []
    nano_cpus = (data.get("HostConfig") or {}).get("NanoCpus") or 0

    mods_label = labels.get(LABEL_MODS, "")
    running = (data.get("State") or {}).get("Running", False)
    now = utc_now()

    return Instance(
        id=instance_id,
        state=InstanceState.RUNNING if running else InstanceState.STOPPED,
        rdp_port=rdp_port,
        console_port=console_port,
        container_ref=data["Id"],
        created_at=_parse_created_at(labels),
        last_state_change_at=now,
        status_message=None if running else "Recovered stopped container",
        mods=tuple(m for m in mods_label.split(",") if m),
        config=InstanceConfig(
            rdp_password=_env_value(env, "RDP_PASSWORD"),
            wine_debug_level=_env_value(env, "WINEDEBUG"),
            cpulimit=nano_cpus / 1_000_000_000 if nano_cpus else None,
        ),
    )


async def recover_instances(
    orchestrator: Orchestrator,
    containers: ContainerAPI,
    naming: ResourceNaming,
    config: DockerConfig,
) -> int:
    """Adopt existing prefixed containers into the registry.

    Never raises: a runtime failure skips recovery as a whole, a bad
    container skips only that container.

    Returns:
        Number of instances adopted.
    """
    try:
        listed = await containers.list(filters={"name": [naming.prefix]})
    except ControlPlaneError as e:
        logger.warning(
            "Startup recovery skipped: %s",
            e.message,
            extra={"event": LogEvent.RECOVERY_SKIPPED, "error": e.message},
        )
        return 0

    adopted = 0
    for container in listed:
        names = container.get("Names", [])
        name = names[0].lstrip("/") if names else ""
        instance_id = naming.instance_id_from_container(name)
        if instance_id is None:
            continue

        try:
            data = await containers.inspect(container["Id"])
            if data is None:
                continue
            instance = instance_from_container(instance_id, data, config)
            await orchestrator.adopt(instance)
        except (RecoverySkipped, ManagerError) as e:
            reason = e.message if isinstance(e, ManagerError) else str(e)
            logger.warning(
                "Skipping container %s: %s",
                name,
                reason,
                extra={
                    "event": LogEvent.RECOVERY_SKIPPED,
                    "container": name,
                    "error": reason,
                },
            )
            continue

        adopted += 1
        logger.info(
            "Recovered instance %s",
            instance_id,
            extra={
                "event": LogEvent.INSTANCE_RECONCILED,
                "instance_id": instance_id,
                "state": instance.state.value,
                "rdp_port": instance.rdp_port,
                "console_port": instance.console_port,
            },
        )

    logger.info(
        "Startup recovery completed",
        extra={"event": LogEvent.RECOVERY_COMPLETED, "adopted": adopted},
    )
    return adopted

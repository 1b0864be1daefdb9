"""Instance API endpoints."""

from fastapi import APIRouter, Depends, Query, Response

from openzt_manager.api.dependencies import get_orchestrator
from openzt_manager.api.v1.schemas import (
    CreateInstanceRequest,
    InstanceListResponse,
    InstanceResponse,
    LogsResponse,
)
from openzt_manager.core.models import decode_payload
from openzt_manager.core.orchestrator import Orchestrator

router = APIRouter(prefix="/instances", tags=["instances"])


@router.post("", status_code=201, response_model=InstanceResponse)
async def create_instance(
    request: CreateInstanceRequest,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> InstanceResponse:
    """Create an instance.

    Returns the record in either `running` or `error` state.
    """
    payload = decode_payload(request.openzt_dll)
    instance = await orchestrator.create(
        payload,
        mods=request.mods,
        config=request.config.to_domain(),
    )
    return InstanceResponse.from_instance(instance)


@router.get("", response_model=InstanceListResponse)
async def list_instances(
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> InstanceListResponse:
    """List all instances in creation order."""
    instances = await orchestrator.list()
    return InstanceListResponse(
        instances=[InstanceResponse.from_instance(i) for i in instances]
    )


@router.get("/{instance_id}", response_model=InstanceResponse)
async def get_instance(
    instance_id: str,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> InstanceResponse:
    """Get one instance."""
    instance = await orchestrator.get(instance_id)
    return InstanceResponse.from_instance(instance)


@router.get("/{instance_id}/logs", response_model=LogsResponse)
async def get_instance_logs(
    instance_id: str,
    tail: int | None = Query(default=None, ge=1),
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> LogsResponse:
    """Get recent container output."""
    output = await orchestrator.logs(instance_id, tail=tail)
    return LogsResponse(
        instance_id=instance_id,
        logs=output.decode("utf-8", errors="replace"),
    )


@router.delete("/{instance_id}", status_code=204)
async def delete_instance(
    instance_id: str,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> Response:
    """Delete an instance, its container and its ports."""
    await orchestrator.delete(instance_id)
    return Response(status_code=204)

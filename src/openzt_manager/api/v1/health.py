"""Health check endpoint."""

from fastapi import APIRouter, Depends

from openzt_manager import __version__
from openzt_manager.api.dependencies import get_orchestrator
from openzt_manager.api.v1.schemas import HealthResponse
from openzt_manager.core.orchestrator import Orchestrator

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health_check(
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> HealthResponse:
    """Report liveness and container runtime reachability."""
    report = await orchestrator.health()
    return HealthResponse(version=__version__, **report.model_dump())

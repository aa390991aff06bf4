"""
LiveTriage - Health Check Endpoints

System health monitoring endpoints for load balancers, monitoring,
and operational visibility.
"""

from fastapi import APIRouter, Depends

from livetriage import __version__
from livetriage.config import Settings
from livetriage.core.triage_store import TriageStore
from livetriage.core.types import format_timestamp, utcnow
from livetriage.services.atoms_api import AtomsWebcallClient

from .routes import get_atoms_client, get_settings, get_store
from .schemas import HealthResponse

router = APIRouter(tags=["system"])


@router.get("/health", response_model=HealthResponse)
async def health_check(
    settings: Settings = Depends(get_settings),
    store: TriageStore = Depends(get_store),
    atoms: AtomsWebcallClient = Depends(get_atoms_client),
):
    """
    Overall system health check.

    Returns:
        - status: "healthy" or "degraded"
        - checks: Individual component statuses
        - timestamp: Current server time
    """
    checks = {
        "triage_store": {
            "status": "healthy",
            "entries": store.count(),
            "max_entries": settings.triage_store_max_entries,
        },
        # Missing key only affects /call-init; triage ingestion still works
        "voice_platform": {
            "status": "healthy" if atoms.is_configured else "not_configured",
            "agent_configured": bool(settings.atoms_agent_id),
        },
    }

    all_healthy = all(c["status"] == "healthy" for c in checks.values())

    return HealthResponse(
        status="healthy" if all_healthy else "degraded",
        version=__version__,
        environment=settings.app_env,
        timestamp=format_timestamp(utcnow()),
        checks=checks,
    )


@router.get("/ready")
async def readiness_check() -> dict:
    """
    Readiness probe for container orchestration.

    Returns 200 if the service is ready to accept requests.
    """
    return {
        "ready": True,
        "timestamp": format_timestamp(utcnow()),
    }

"""Health check endpoint."""
from fastapi import APIRouter, Depends

from collector_api.deps import get_service
from collector_core.orchestrator import CollectionService

router = APIRouter(tags=["health"])


@router.get("/health")
def health(service: CollectionService = Depends(get_service)):
    """Health check, with the number of job loops running in this process."""
    return {"status": "ok", "live_jobs": len(service.registry.live_job_ids())}

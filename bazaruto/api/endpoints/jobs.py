import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from bazaruto.api.dependencies import Services, get_services
from bazaruto.jobs.scheduler import SWEEP_NAMES

logger = logging.getLogger(__name__)

api = APIRouter()


@api.get("/dead")
async def dead_jobs(
    queue: Optional[str] = None,
    limit: int = Query(100, ge=1, le=1000),
    services: Services = Depends(get_services),
):
    return services.dispatcher.dead_jobs(queue, limit)


@api.get("/stats")
async def job_stats(services: Services = Depends(get_services)):
    return services.dispatcher.stats()


@api.post("/sweeps/{name}")
async def run_sweep(name: str, services: Services = Depends(get_services)):
    """Run one lifecycle sweep now."""
    if name not in SWEEP_NAMES:
        raise HTTPException(status_code=404, detail=f"unknown sweep: {name}")
    try:
        count = await services.scheduler.run_once(name)
    except Exception as e:
        logger.error("Error running sweep %s: %s", name, e, exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error running sweep {name}")
    return {"sweep": name, "processed": count}

from fastapi import APIRouter, Depends, HTTPException

from grocery_tracker.runtime import Services
from app.dependencies import get_services

router = APIRouter(prefix="/jobs", tags=["jobs"])


@router.get("")
def job_status(services: Services = Depends(get_services)):
    return {"running": services.scheduler.running, "jobs": services.scheduler.status()}


@router.post("/{name}/trigger")
def trigger(name: str, wait: bool = False, services: Services = Depends(get_services)):
    try:
        started = services.scheduler.trigger_now(name, wait=wait)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown job: {name}")
    if not started:
        raise HTTPException(status_code=409, detail=f"{name} is already running")
    return {"job": name, "started": True}

"""Health check and status endpoints"""
from fastapi import APIRouter, Depends
from datetime import datetime, UTC

from automation.core.dependencies import get_event_bus, get_queue
from automation.core.event_bus import EventBus
from automation.core.state_manager import state_manager

router = APIRouter(tags=["health"])


@router.get("/")
async def root():
    """Health check endpoint"""
    return {
        "service": "workflow-automation",
        "status": "running",
        "timestamp": datetime.now(UTC).isoformat()
    }


@router.get("/health")
async def health(queue=Depends(get_queue),
                 bus: EventBus = Depends(get_event_bus)):
    """Detailed health status"""
    return {
        "status": "healthy",
        "store": type(state_manager()).__name__,
        "queue": type(queue).__name__,
        "queued_jobs": await queue.length(),
        "subscribed_events": len(bus.subscribed_events()),
        "jobs_completed": await queue.get_metric("jobs_completed"),
        "jobs_failed": await queue.get_metric("jobs_failed"),
    }

"""Domain event ingestion"""
from fastapi import APIRouter, HTTPException, Depends, Body
from typing import Any, Dict

from automation.api.workflows import get_tenant_id
from automation.core.dependencies import get_event_bus, get_trigger_matcher
from automation.core.event_bus import EventBus
from shared.enums import DOMAIN_EVENTS
from shared.schemas import PublishedEvent

router = APIRouter(prefix="/events", tags=["events"])

_EVENT_NAMES = {e.value for e in DOMAIN_EVENTS}


@router.post("/{event_name}", response_model=PublishedEvent, status_code=202)
async def publish_event(event_name: str,
                        payload: Dict[str, Any] = Body(...),
                        tenant_id: str = Depends(get_tenant_id),
                        bus: EventBus = Depends(get_event_bus)):
    """Publish a CRM domain event on behalf of the tenant

    The payload's ``tenantId`` is always set from the X-Tenant-Id header.
    """
    if event_name not in _EVENT_NAMES:
        raise HTTPException(status_code=400,
                            detail=f"Unknown event: {event_name}")

    # Make sure the matcher is listening before the first event goes out
    get_trigger_matcher()

    payload = {**payload, "tenantId": tenant_id}
    await bus.publish(event_name, payload)
    return PublishedEvent(event=event_name, payload=payload)

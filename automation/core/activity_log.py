"""Timeline/audit rows for every published CRM and runner event"""
import logging
from typing import Any, Callable, Dict, Optional, Tuple

from automation.core.event_bus import EventBus
from shared.enums import EventName
from shared.models import ActivityEvent

logger = logging.getLogger(__name__)

PayloadView = Callable[[Dict[str, Any]], Dict[str, Any]]


def _pick(*keys: str) -> PayloadView:
    return lambda p: {k: p.get(k) for k in keys}


# event -> (entity type, payload key holding the entity id, stored payload)
TIMELINE_EVENTS: Dict[EventName, Tuple[str, str, PayloadView]] = {
    EventName.CONTACT_CREATED: ("contact", "contactId", dict),
    EventName.CONTACT_UPDATED:
    ("contact", "contactId", lambda p: dict(p.get("changes") or {})),
    EventName.CONTACT_DELETED: ("contact", "contactId", lambda p: {}),
    EventName.OPPORTUNITY_CREATED:
    ("opportunity", "opportunityId", _pick("pipelineId", "stageId")),
    EventName.OPPORTUNITY_STAGE_CHANGED:
    ("opportunity", "opportunityId", _pick("fromStageId", "toStageId")),
    EventName.OPPORTUNITY_CLOSED:
    ("opportunity", "opportunityId", _pick("status")),
    EventName.MESSAGE_RECEIVED:
    ("message", "messageId", _pick("conversationId", "channel", "direction")),
    EventName.MESSAGE_SENT:
    ("message", "messageId", _pick("conversationId", "channel")),
    EventName.CONVERSATION_CREATED:
    ("conversation", "conversationId", _pick("contactId")),
    EventName.WORKFLOW_TRIGGERED:
    ("workflow", "workflowId", _pick("triggerId", "payload")),
    EventName.JOB_COMPLETED: ("job", "jobId", _pick("jobRunId")),
    EventName.JOB_FAILED: ("job", "jobId", _pick("jobRunId", "error")),
}


class ActivityLog:
    """Writes an ActivityEvent row for each event it is subscribed to"""

    def __init__(self, store, event_bus: EventBus):
        self.store = store
        self.event_bus = event_bus

    def register(self) -> None:
        for event in TIMELINE_EVENTS:
            self.event_bus.subscribe(event, self._handler_for(event))

    def _handler_for(self, event: EventName):

        async def handle(payload: Dict[str, Any]) -> None:
            await self.record(event, payload)

        handle.__name__ = f"log_{event.value.replace('.', '_')}"
        return handle

    async def record(self, event: EventName,
                     payload: Dict[str, Any]) -> Optional[ActivityEvent]:
        """Store one timeline row; failures are logged, never raised"""
        entity_type, id_key, view = TIMELINE_EVENTS[event]
        try:
            row = ActivityEvent(tenant_id=payload["tenantId"],
                                entity_type=entity_type,
                                entity_id=str(payload[id_key]),
                                event_type=event.value,
                                payload=view(payload))
            return await self.store.add_activity_event(row)
        except Exception as e:
            logger.error(f"Failed to log activity event [{event.value}]: {e}")
            return None

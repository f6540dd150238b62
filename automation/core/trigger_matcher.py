"""Turns domain events into queued workflow jobs"""
import logging
from typing import Any, Dict, List, Mapping

from automation.core.event_bus import EventBus
from automation.core.job_lifecycle import JobLifecycle
from automation.core.queue import default_options
from shared.enums import DOMAIN_EVENTS, EventName
from shared.expressions import MISSING, to_text
from shared.messages import WorkflowJobMessage
from shared.models import Trigger, WorkflowDefinition

logger = logging.getLogger(__name__)


def filters_match(filters: Mapping[str, Any], payload: Mapping[str, Any]) -> bool:
    """True when every filter value equals the payload value as text.

    An empty filter map matches every payload.
    """
    for key, expected in filters.items():
        actual = payload.get(key, MISSING)
        if to_text(actual) != to_text(expected):
            return False
    return True


class TriggerMatcher:
    """Subscribes to every domain event and enqueues one job per matching trigger"""

    def __init__(self, store, queue, event_bus: EventBus):
        self.store = store
        self.queue = queue
        self.event_bus = event_bus
        self.lifecycle = JobLifecycle(store)

    def register(self) -> None:
        """Bind a handler for every domain event.

        Raises:
            RuntimeError: if a domain event ended up without a handler
        """
        for event in DOMAIN_EVENTS:
            self.event_bus.subscribe(event, self._handler_for(event.value))

        bound = set(self.event_bus.subscribed_events())
        missing = [e.value for e in DOMAIN_EVENTS if e.value not in bound]
        if missing:
            raise RuntimeError(
                f"Trigger matcher has no handler for events: {', '.join(missing)}")
        logger.info(f"Trigger matcher bound to {len(DOMAIN_EVENTS)} events")

    def _handler_for(self, event_name: str):

        async def handle(payload: Dict[str, Any]) -> None:
            await self.handle_event(event_name, payload)

        handle.__name__ = f"match_{event_name.replace('.', '_')}"
        return handle

    async def handle_event(self, event_name: str,
                           payload: Dict[str, Any]) -> List[str]:
        """Match an event against the tenant's active workflows.

        Args:
            event_name: Domain event name
            payload: Event payload (must carry ``tenantId``)

        Returns:
            List[str]: Ids of the jobs that were created and queued
        """
        tenant_id = payload.get("tenantId")
        if not tenant_id:
            logger.warning(
                f"Event {event_name} has no tenantId, no workflows matched")
            return []

        workflows = await self.store.find_workflows_for_event(
            tenant_id, event_name)

        job_ids = []
        for workflow in workflows:
            if self._already_fired(event_name, workflow, payload):
                logger.debug(f"Skipping workflow {workflow.id}: it already "
                             f"fired in this {event_name} chain")
                continue

            for trigger in workflow.triggers:
                if trigger.event_type != event_name:
                    continue
                if not filters_match(trigger.filters, payload):
                    continue
                try:
                    job_ids.append(await self._fire(event_name, workflow,
                                                    trigger, payload))
                except Exception as e:
                    logger.error(f"Failed to start workflow {workflow.id} "
                                 f"(trigger {trigger.id}) for {event_name}: {e}")

        if job_ids:
            logger.info(f"Event {event_name} started {len(job_ids)} job(s) "
                        f"for tenant {tenant_id}")
        return job_ids

    @staticmethod
    def _already_fired(event_name: str, workflow: WorkflowDefinition,
                       payload: Mapping[str, Any]) -> bool:
        return workflow.id in _fired_chain(event_name, payload)

    async def _fire(self, event_name: str, workflow: WorkflowDefinition,
                    trigger: Trigger, payload: Dict[str, Any]) -> str:
        job, _ = await self.lifecycle.create_job(workflow.tenant_id,
                                                 workflow.id, trigger.id,
                                                 payload)
        await self.queue.enqueue(WorkflowJobMessage(job_id=job.id),
                                 default_options())
        await self.event_bus.publish(
            EventName.WORKFLOW_TRIGGERED, {
                "tenantId": workflow.tenant_id,
                "workflowId": workflow.id,
                "triggerId": trigger.id,
                "payload": payload,
                "originWorkflowIds": [
                    *_fired_chain(event_name, payload), workflow.id
                ],
            })
        return job.id


def _fired_chain(event_name: str, payload: Mapping[str, Any]) -> List[str]:
    """Workflow ids that already fired upstream of a ``workflow.triggered`` event"""
    if event_name != EventName.WORKFLOW_TRIGGERED.value:
        return []
    chain = payload.get("originWorkflowIds")
    if isinstance(chain, list):
        return [str(workflow_id) for workflow_id in chain]
    workflow_id = payload.get("workflowId")
    return [str(workflow_id)] if workflow_id else []

import logging
from datetime import datetime, UTC
from typing import Any, Dict, Optional

from worker.actions.base import BaseAction, ExecutionContext, ActionResult, resolve_param
from automation.core.event_bus import EventBus
from shared.enums import ActionType, EventName
from shared.models import Task, Note

logger = logging.getLogger(__name__)

# camelCase config keys an update_contact action may set, and the contact
# columns they map to. Anything else in ``fields`` is dropped.
CONTACT_FIELD_MAP = {
    "firstName": "first_name",
    "lastName": "last_name",
    "email": "email",
    "phone": "phone",
    "status": "status",
    "tags": "tags",
}


def _parse_due_date(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        due = value
    else:
        due = datetime.fromisoformat(str(value))
    return due if due.tzinfo else due.replace(tzinfo=UTC)


class CreateTaskAction(BaseAction):
    action_type = ActionType.CREATE_TASK

    def __init__(self, store):
        self.store = store

    async def execute(self, context: ExecutionContext) -> ActionResult:
        task = await self.store.add_task(
            Task(tenant_id=context.tenant_id,
                 title=str(resolve_param(context, "title", "Workflow Task")),
                 contact_id=resolve_param(context, "contactId"),
                 due_at=_parse_due_date(resolve_param(context, "dueDate")),
                 assigned_user_id=resolve_param(context, "assignedUserId"),
                 job_run_id=context.job_run_id,
                 action_id=context.action.id))
        logger.info(f"[job:{context.job_id}] create_task -> {task.id}")
        return ActionResult()


class AddNoteAction(BaseAction):
    action_type = ActionType.ADD_NOTE

    def __init__(self, store):
        self.store = store

    async def execute(self, context: ExecutionContext) -> ActionResult:
        body = resolve_param(context, "body")
        author_id = resolve_param(context, "authorId")
        if not body:
            logger.warning(f"[job:{context.job_id}] add_note: missing 'body' config")
            return ActionResult()
        if not author_id:
            logger.warning(
                f"[job:{context.job_id}] add_note: missing 'authorId' config")
            return ActionResult()

        note = await self.store.add_note(
            Note(tenant_id=context.tenant_id,
                 body=str(body),
                 author_id=str(author_id),
                 contact_id=resolve_param(context, "contactId"),
                 opportunity_id=resolve_param(context, "opportunityId"),
                 job_run_id=context.job_run_id,
                 action_id=context.action.id))
        logger.info(f"[job:{context.job_id}] add_note -> {note.id}")
        return ActionResult()


class UpdateContactAction(BaseAction):
    action_type = ActionType.UPDATE_CONTACT

    def __init__(self, store):
        self.store = store

    async def execute(self, context: ExecutionContext) -> ActionResult:
        contact_id = resolve_param(context, "contactId")
        fields = resolve_param(context, "fields")
        if not contact_id:
            logger.warning(
                f"[job:{context.job_id}] update_contact: missing contactId")
            return ActionResult()
        if not isinstance(fields, dict):
            logger.warning(
                f"[job:{context.job_id}] update_contact: missing 'fields' config")
            return ActionResult()

        changes: Dict[str, Any] = {
            CONTACT_FIELD_MAP[key]: value
            for key, value in fields.items() if key in CONTACT_FIELD_MAP
        }
        dropped = sorted(set(fields) - set(CONTACT_FIELD_MAP))
        if dropped:
            logger.warning(f"[job:{context.job_id}] update_contact: ignoring "
                           f"fields {', '.join(dropped)}")

        # Raises EntityNotFoundError when the contact is not in this tenant
        await self.store.update_contact(context.tenant_id, str(contact_id),
                                        changes)
        logger.info(f"[job:{context.job_id}] update_contact -> {contact_id} "
                    f"fields: {', '.join(changes)}")
        return ActionResult()


class MoveOpportunityAction(BaseAction):
    action_type = ActionType.MOVE_OPPORTUNITY

    def __init__(self, store, event_bus: EventBus):
        self.store = store
        self.event_bus = event_bus

    async def execute(self, context: ExecutionContext) -> ActionResult:
        opportunity_id = resolve_param(context, "opportunityId")
        to_stage_id = resolve_param(context, "stageId")
        if not opportunity_id or not to_stage_id:
            logger.warning(f"[job:{context.job_id}] move_opportunity: missing "
                           f"opportunityId or stageId")
            return ActionResult()

        existing = await self.store.get_opportunity(context.tenant_id,
                                                    str(opportunity_id))
        if existing is None:
            logger.warning(f"[job:{context.job_id}] move_opportunity: "
                           f"opportunity {opportunity_id} not found")
            return ActionResult()

        await self.store.update_opportunity_stage(context.tenant_id,
                                                  existing.id,
                                                  str(to_stage_id))
        await self.event_bus.publish(
            EventName.OPPORTUNITY_STAGE_CHANGED, {
                "tenantId": context.tenant_id,
                "opportunityId": existing.id,
                "fromStageId": existing.stage_id,
                "toStageId": str(to_stage_id),
            })
        logger.info(f"[job:{context.job_id}] move_opportunity -> "
                    f"{existing.id} stage: {existing.stage_id} -> {to_stage_id}")
        return ActionResult()

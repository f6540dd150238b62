"""Management operations on workflow definitions, triggers, actions and runs"""
import logging
import math
from typing import List, Optional

from automation.core.errors import (
    EntityNotFoundError,
    DuplicateActionOrderError,
    InvalidWorkflowError,
)
from shared.enums import DOMAIN_EVENTS
from shared.models import (
    WorkflowDefinition,
    Trigger,
    Action,
    Condition,
    Delay,
    utc_now,
)
from shared.schemas import (
    CreateWorkflow,
    UpdateWorkflow,
    CreateTrigger,
    CreateAction,
    UpdateAction,
    RunWithJob,
    RunPage,
)

logger = logging.getLogger(__name__)

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 20

_EVENT_TYPES = {e.value for e in DOMAIN_EVENTS}


class WorkflowService:
    """Tenant-scoped CRUD for workflows.

    Every operation first checks that the workflow exists for the tenant and
    is not soft-deleted, raising EntityNotFoundError otherwise.
    """

    def __init__(self, store):
        self.store = store

    # ========================================================================
    # Workflows
    # ========================================================================

    async def list(self,
                   tenant_id: str,
                   is_active: Optional[bool] = None) -> List[WorkflowDefinition]:
        return await self.store.list_workflows(tenant_id, is_active)

    async def get(self, tenant_id: str, workflow_id: str) -> WorkflowDefinition:
        return await self._ensure_exists(tenant_id, workflow_id)

    async def create(self, tenant_id: str,
                     request: CreateWorkflow) -> WorkflowDefinition:
        workflow = await self.store.add_workflow(
            WorkflowDefinition(tenant_id=tenant_id,
                               name=request.name,
                               description=request.description,
                               is_active=request.is_active))
        logger.info(f"Created workflow {workflow.id} for tenant {tenant_id}")
        return workflow

    async def import_definition(
            self, workflow: WorkflowDefinition) -> WorkflowDefinition:
        """Store a complete definition (triggers and actions included)"""
        _check_unique_orders(workflow)
        for trigger in workflow.triggers:
            _check_event_type(trigger.event_type)
        stored = await self.store.add_workflow(workflow)
        logger.info(f"Imported workflow {stored.id} '{stored.name}' with "
                    f"{len(stored.actions)} action(s)")
        return stored

    async def update(self, tenant_id: str, workflow_id: str,
                     request: UpdateWorkflow) -> WorkflowDefinition:
        workflow = await self._ensure_exists(tenant_id, workflow_id)
        changes = request.model_dump(exclude_unset=True, exclude_none=True)
        updated = workflow.model_copy(update=changes)
        return await self.store.save_workflow(updated)

    async def remove(self, tenant_id: str,
                     workflow_id: str) -> WorkflowDefinition:
        """Soft delete: the row stays for jobs that reference it"""
        workflow = await self._ensure_exists(tenant_id, workflow_id)
        workflow.deleted_at = utc_now()
        workflow.is_active = False
        logger.info(f"Deleted workflow {workflow_id}")
        return await self.store.save_workflow(workflow)

    async def activate(self, tenant_id: str,
                       workflow_id: str) -> WorkflowDefinition:
        return await self._set_active(tenant_id, workflow_id, True)

    async def deactivate(self, tenant_id: str,
                         workflow_id: str) -> WorkflowDefinition:
        """Stop future matching; already queued jobs still run"""
        return await self._set_active(tenant_id, workflow_id, False)

    async def _set_active(self, tenant_id: str, workflow_id: str,
                          active: bool) -> WorkflowDefinition:
        workflow = await self._ensure_exists(tenant_id, workflow_id)
        workflow.is_active = active
        logger.info(f"Workflow {workflow_id} "
                    f"{'activated' if active else 'deactivated'}")
        return await self.store.save_workflow(workflow)

    # ========================================================================
    # Triggers
    # ========================================================================

    async def add_trigger(self, tenant_id: str, workflow_id: str,
                          request: CreateTrigger) -> Trigger:
        await self._ensure_exists(tenant_id, workflow_id)
        _check_event_type(request.event_type)
        return await self.store.add_trigger(
            Trigger(workflow_id=workflow_id,
                    event_type=request.event_type,
                    filters=request.filters))

    async def remove_trigger(self, tenant_id: str, workflow_id: str,
                             trigger_id: str) -> None:
        await self._ensure_exists(tenant_id, workflow_id)
        await self.store.remove_trigger(workflow_id, trigger_id)

    # ========================================================================
    # Actions
    # ========================================================================

    async def add_action(self, tenant_id: str, workflow_id: str,
                         request: CreateAction) -> Action:
        workflow = await self._ensure_exists(tenant_id, workflow_id)
        if any(a.order == request.order for a in workflow.actions):
            raise DuplicateActionOrderError(workflow_id, request.order)

        action = Action(workflow_id=workflow_id,
                        type=request.type.value,
                        order=request.order,
                        config=request.config)
        if request.condition:
            action.condition = Condition(
                expression=request.condition.expression)
        if request.delay:
            action.delay = Delay(delay_type=request.delay.delay_type,
                                 delay_value=request.delay.delay_value)
        return await self.store.add_action(action)

    async def update_action(self, tenant_id: str, workflow_id: str,
                            action_id: str, request: UpdateAction) -> Action:
        workflow = await self._ensure_exists(tenant_id, workflow_id)
        action = next((a for a in workflow.actions if a.id == action_id), None)
        if action is None:
            raise EntityNotFoundError("Action", action_id)

        if request.order is not None and request.order != action.order:
            if any(a.order == request.order for a in workflow.actions):
                raise DuplicateActionOrderError(workflow_id, request.order)
            action.order = request.order
        if request.type is not None:
            action.type = request.type.value
        if request.config is not None:
            action.config = request.config
        if request.condition is not None:
            if action.condition is not None:
                action.condition.expression = request.condition.expression
            else:
                action.condition = Condition(
                    action_id=action.id,
                    expression=request.condition.expression)
        if request.delay is not None:
            if action.delay is not None:
                action.delay.delay_type = request.delay.delay_type
                action.delay.delay_value = request.delay.delay_value
            else:
                action.delay = Delay(action_id=action.id,
                                     delay_type=request.delay.delay_type,
                                     delay_value=request.delay.delay_value)
        return await self.store.save_action(action)

    async def remove_action(self, tenant_id: str, workflow_id: str,
                            action_id: str) -> None:
        await self._ensure_exists(tenant_id, workflow_id)
        await self.store.remove_action(workflow_id, action_id)

    # ========================================================================
    # Runs
    # ========================================================================

    async def list_runs(self,
                        tenant_id: str,
                        workflow_id: str,
                        page: int = DEFAULT_PAGE,
                        limit: int = DEFAULT_LIMIT) -> RunPage:
        """Page through a workflow's runs, most recently started first"""
        await self._ensure_exists(tenant_id, workflow_id)
        pairs, total = await self.store.list_runs(tenant_id, workflow_id, page,
                                                  limit)
        items = [
            RunWithJob(**run.model_dump(), job=job) for run, job in pairs
        ]
        return RunPage(items=items,
                       total=total,
                       page=page,
                       limit=limit,
                       pages=math.ceil(total / limit))

    async def get_run(self, tenant_id: str, workflow_id: str,
                      run_id: str) -> RunWithJob:
        await self._ensure_exists(tenant_id, workflow_id)
        found = await self.store.get_run(tenant_id, workflow_id, run_id)
        if found is None:
            raise EntityNotFoundError("Run", run_id)
        run, job = found
        return RunWithJob(**run.model_dump(), job=job)

    async def _ensure_exists(self, tenant_id: str,
                             workflow_id: str) -> WorkflowDefinition:
        workflow = await self.store.get_workflow(tenant_id, workflow_id)
        if workflow is None:
            raise EntityNotFoundError("Workflow", workflow_id)
        return workflow


def _check_event_type(event_type: str) -> None:
    if event_type not in _EVENT_TYPES:
        raise InvalidWorkflowError(
            f"Unknown event type '{event_type}'. "
            f"Expected one of: {', '.join(sorted(_EVENT_TYPES))}")


def _check_unique_orders(workflow: WorkflowDefinition) -> None:
    seen = set()
    for action in workflow.actions:
        if action.order in seen:
            raise DuplicateActionOrderError(workflow.id, action.order)
        seen.add(action.order)

"""Unit tests for WorkflowService"""
import pytest
from typing import Callable

from automation.core.errors import (
    DuplicateActionOrderError,
    EntityNotFoundError,
    InvalidWorkflowError,
)
from automation.core.job_lifecycle import JobLifecycle
from automation.core.state_manager import StateManager
from automation.core.workflows_service import WorkflowService
from shared.enums import ActionType, DelayUnit
from shared.schemas import (
    ConditionConfig,
    CreateAction,
    CreateTrigger,
    CreateWorkflow,
    DelayConfig,
    UpdateAction,
    UpdateWorkflow,
)


@pytest.fixture
def service(state_manager: StateManager) -> WorkflowService:
    return WorkflowService(state_manager)


@pytest.fixture
async def workflow(service: WorkflowService):
    return await service.create("tenant-1", CreateWorkflow(name="Onboarding"))


@pytest.mark.unit
class TestWorkflowCrud:

    async def test_create_is_inactive_by_default(self, workflow) -> None:
        assert workflow.is_active is False
        assert workflow.tenant_id == "tenant-1"

    async def test_get_other_tenant(self, service: WorkflowService,
                                    workflow) -> None:
        with pytest.raises(EntityNotFoundError):
            await service.get("tenant-2", workflow.id)

    async def test_update_changes_only_given_fields(self,
                                                    service: WorkflowService,
                                                    workflow) -> None:
        updated = await service.update("tenant-1", workflow.id,
                                       UpdateWorkflow(description="Greets"))

        assert updated.name == "Onboarding"
        assert updated.description == "Greets"

    async def test_activate_and_deactivate(self, service: WorkflowService,
                                           workflow) -> None:
        assert (await service.activate("tenant-1", workflow.id)).is_active
        assert not (await service.deactivate("tenant-1",
                                             workflow.id)).is_active

    async def test_remove_is_soft(self, service: WorkflowService,
                                  state_manager: StateManager,
                                  workflow) -> None:
        await service.activate("tenant-1", workflow.id)

        removed = await service.remove("tenant-1", workflow.id)

        assert removed.deleted_at is not None
        assert removed.is_active is False
        assert await service.list("tenant-1") == []
        with pytest.raises(EntityNotFoundError):
            await service.get("tenant-1", workflow.id)
        assert workflow.id in state_manager.workflows

    async def test_import_checks_event_types(self, service: WorkflowService,
                                             workflow_factory: Callable) -> None:
        with pytest.raises(InvalidWorkflowError):
            await service.import_definition(
                workflow_factory(event_type="user.login"))

    async def test_import_checks_orders(self, service: WorkflowService,
                                        workflow_factory: Callable,
                                        action_factory: Callable) -> None:
        with pytest.raises(DuplicateActionOrderError):
            await service.import_definition(
                workflow_factory(actions=[
                    action_factory(order=1),
                    action_factory(order=1)
                ]))


@pytest.mark.unit
class TestTriggersAndActions:

    async def test_add_and_remove_trigger(self, service: WorkflowService,
                                          workflow) -> None:
        trigger = await service.add_trigger(
            "tenant-1", workflow.id,
            CreateTrigger(event_type="contact.created",
                          filters={"status": "lead"}))

        assert trigger.workflow_id == workflow.id
        await service.remove_trigger("tenant-1", workflow.id, trigger.id)
        assert (await service.get("tenant-1", workflow.id)).triggers == []

    async def test_add_trigger_rejects_unknown_event(
            self, service: WorkflowService, workflow) -> None:
        with pytest.raises(InvalidWorkflowError):
            await service.add_trigger("tenant-1", workflow.id,
                                      CreateTrigger(event_type="user.login"))

    async def test_add_action_with_condition_and_delay(
            self, service: WorkflowService, workflow) -> None:
        action = await service.add_action(
            "tenant-1", workflow.id,
            CreateAction(type=ActionType.SEND_EMAIL,
                         order=1,
                         config={"subject": "Hi"},
                         condition=ConditionConfig(
                             expression="contact.email is_not_empty"),
                         delay=DelayConfig(delay_type=DelayUnit.HOURS,
                                           delay_value=2)))

        assert action.type == "send_email"
        assert action.condition.action_id == action.id
        assert action.delay.delay_type == DelayUnit.HOURS

    async def test_duplicate_order_rejected(self, service: WorkflowService,
                                            workflow) -> None:
        await service.add_action("tenant-1", workflow.id,
                                 CreateAction(type=ActionType.WAIT, order=1))

        with pytest.raises(DuplicateActionOrderError):
            await service.add_action(
                "tenant-1", workflow.id,
                CreateAction(type=ActionType.CREATE_TASK, order=1))

    async def test_update_action_order(self, service: WorkflowService,
                                       workflow) -> None:
        first = await service.add_action(
            "tenant-1", workflow.id, CreateAction(type=ActionType.WAIT,
                                                  order=1))
        await service.add_action(
            "tenant-1", workflow.id,
            CreateAction(type=ActionType.CREATE_TASK, order=2))

        with pytest.raises(DuplicateActionOrderError):
            await service.update_action("tenant-1", workflow.id, first.id,
                                        UpdateAction(order=2))

        moved = await service.update_action("tenant-1", workflow.id, first.id,
                                            UpdateAction(order=3))
        fetched = await service.get("tenant-1", workflow.id)
        assert moved.order == 3
        assert [a.type for a in fetched.actions] == ["create_task", "wait"]

    async def test_update_replaces_condition_and_delay(
            self, service: WorkflowService, workflow) -> None:
        action = await service.add_action(
            "tenant-1", workflow.id,
            CreateAction(
                type=ActionType.SEND_EMAIL,
                order=1,
                condition=ConditionConfig(expression="contact.email is_not_empty"),
                delay=DelayConfig(delay_type=DelayUnit.MINUTES, delay_value=5)))

        updated = await service.update_action(
            "tenant-1", workflow.id, action.id,
            UpdateAction(
                condition=ConditionConfig(expression="contact.status equals lead"),
                delay=DelayConfig(delay_type=DelayUnit.DAYS, delay_value=1)))

        assert updated.condition.id == action.condition.id
        assert updated.condition.expression == "contact.status equals lead"
        assert updated.delay.id == action.delay.id
        assert updated.delay.delay_type == DelayUnit.DAYS

    async def test_remove_missing_action(self, service: WorkflowService,
                                         workflow) -> None:
        with pytest.raises(EntityNotFoundError):
            await service.remove_action("tenant-1", workflow.id, "missing")


@pytest.mark.unit
class TestRuns:

    async def test_list_runs_pages(self, service: WorkflowService,
                                   lifecycle: JobLifecycle, workflow) -> None:
        for _ in range(3):
            job, run = await lifecycle.create_job("tenant-1", workflow.id,
                                                  None, {})
            await lifecycle.start_run(job, run)

        page = await service.list_runs("tenant-1", workflow.id, page=2,
                                       limit=2)

        assert page.total == 3
        assert page.pages == 2
        assert len(page.items) == 1
        assert page.items[0].job.workflow_id == workflow.id

    async def test_get_run(self, service: WorkflowService,
                           lifecycle: JobLifecycle, workflow) -> None:
        job, run = await lifecycle.create_job("tenant-1", workflow.id, None,
                                              {"contactId": "c-1"})

        found = await service.get_run("tenant-1", workflow.id, run.id)

        assert found.id == run.id
        assert found.job.payload == {"contactId": "c-1"}
        with pytest.raises(EntityNotFoundError):
            await service.get_run("tenant-1", workflow.id, "missing")

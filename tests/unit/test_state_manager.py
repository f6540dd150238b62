"""Unit tests for StateManager"""
import pytest
from datetime import timedelta
from typing import Callable

from automation.core.errors import EntityNotFoundError
from automation.core.state_manager import StateManager
from shared.enums import ActionType, JobStatus
from shared.models import Contact, Job, JobRun, WorkflowDefinition, utc_now


@pytest.mark.unit
class TestStateManager:
    """Test StateManager operations"""

    async def test_add_workflow_attaches_children(
            self, state_manager: StateManager, workflow_factory: Callable,
            action_factory: Callable) -> None:
        """Test adding a workflow stamps triggers and actions with its id"""
        workflow = workflow_factory(
            actions=[action_factory(condition="contact.email is_not_empty")])

        stored = await state_manager.add_workflow(workflow)

        assert stored.triggers[0].workflow_id == stored.id
        assert stored.actions[0].workflow_id == stored.id
        assert stored.actions[0].condition.action_id == stored.actions[0].id

    async def test_get_workflow_sorts_actions(
            self, state_manager: StateManager, workflow_factory: Callable,
            action_factory: Callable) -> None:
        """Test actions come back ordered by their order field"""
        workflow = workflow_factory(actions=[
            action_factory(order=3),
            action_factory(order=1),
            action_factory(order=2),
        ])
        stored = await state_manager.add_workflow(workflow)

        fetched = await state_manager.get_workflow(stored.tenant_id, stored.id)

        assert [a.order for a in fetched.actions] == [1, 2, 3]

    async def test_get_workflow_is_tenant_scoped(
            self, state_manager: StateManager,
            workflow_factory: Callable) -> None:
        """Test another tenant cannot read the workflow"""
        stored = await state_manager.add_workflow(workflow_factory())

        assert await state_manager.get_workflow("other-tenant",
                                                stored.id) is None

    async def test_get_nonexistent_workflow(
            self, state_manager: StateManager) -> None:
        """Test getting a workflow that doesn't exist"""
        result = await state_manager.get_workflow("tenant-1", "nonexistent")

        assert result is None

    async def test_deleted_workflow_hidden_by_default(
            self, state_manager: StateManager,
            workflow_factory: Callable) -> None:
        stored = await state_manager.add_workflow(workflow_factory())
        stored.deleted_at = utc_now()
        await state_manager.save_workflow(stored)

        assert await state_manager.get_workflow(stored.tenant_id,
                                                stored.id) is None
        assert await state_manager.get_workflow(
            stored.tenant_id, stored.id, include_deleted=True) is not None
        assert await state_manager.list_workflows(stored.tenant_id) == []

    async def test_reads_return_copies(self, state_manager: StateManager,
                                       workflow_factory: Callable) -> None:
        """Test mutating a returned workflow does not change the store"""
        stored = await state_manager.add_workflow(workflow_factory())
        stored.name = "changed"

        fetched = await state_manager.get_workflow(stored.tenant_id, stored.id)

        assert fetched.name == "Test Workflow"

    async def test_list_workflows_filters_active(
            self, state_manager: StateManager,
            workflow_factory: Callable) -> None:
        await state_manager.add_workflow(workflow_factory(is_active=True))
        await state_manager.add_workflow(workflow_factory(is_active=False))

        active = await state_manager.list_workflows("tenant-1", is_active=True)
        everything = await state_manager.list_workflows("tenant-1")

        assert len(active) == 1
        assert len(everything) == 2

    async def test_find_workflows_for_event(
            self, state_manager: StateManager,
            workflow_factory: Callable) -> None:
        """Test only active workflows of the tenant with that trigger match"""
        matching = await state_manager.add_workflow(
            workflow_factory(event_type="contact.created"))
        await state_manager.add_workflow(
            workflow_factory(event_type="contact.updated"))
        await state_manager.add_workflow(
            workflow_factory(event_type="contact.created", is_active=False))
        await state_manager.add_workflow(
            workflow_factory(event_type="contact.created",
                             tenant_id="tenant-2"))

        found = await state_manager.find_workflows_for_event(
            "tenant-1", "contact.created")

        assert [wf.id for wf in found] == [matching.id]

    async def test_remove_missing_action_raises(
            self, state_manager: StateManager,
            workflow_factory: Callable) -> None:
        stored = await state_manager.add_workflow(workflow_factory())

        with pytest.raises(EntityNotFoundError):
            await state_manager.remove_action(stored.id, "missing")

    async def test_latest_run_is_highest_attempt(
            self, state_manager: StateManager) -> None:
        job = await state_manager.add_job(
            Job(tenant_id="tenant-1", workflow_id="wf-1"))
        await state_manager.add_job_run(JobRun(job_id=job.id, attempt=1))
        second = await state_manager.add_job_run(
            JobRun(job_id=job.id, attempt=2))

        latest = await state_manager.get_latest_run(job.id)

        assert latest.id == second.id

    async def test_update_job_run(self, state_manager: StateManager) -> None:
        run = await state_manager.add_job_run(JobRun(job_id="job-1"))

        updated = await state_manager.update_job_run(
            run.id, status=JobStatus.FAILED, error="boom")

        assert updated.status == JobStatus.FAILED
        assert updated.error == "boom"

    async def test_set_status_of_missing_job(
            self, state_manager: StateManager) -> None:
        with pytest.raises(EntityNotFoundError):
            await state_manager.set_job_status("missing", JobStatus.RUNNING)

    async def test_update_contact_ignores_unknown_columns(
            self, state_manager: StateManager, contact: Contact) -> None:
        updated = await state_manager.update_contact(
            contact.tenant_id, contact.id, {
                "status": "customer",
                "tenant_id": "stolen"
            })

        assert updated.status == "customer"
        assert updated.tenant_id == contact.tenant_id

    async def test_update_contact_of_other_tenant(
            self, state_manager: StateManager, contact: Contact) -> None:
        with pytest.raises(EntityNotFoundError):
            await state_manager.update_contact("tenant-2", contact.id,
                                               {"status": "customer"})

    async def test_list_runs_pages(self, state_manager: StateManager) -> None:
        """Test runs are paged most recently started first"""
        job = await state_manager.add_job(
            Job(tenant_id="tenant-1", workflow_id="wf-1"))
        start = utc_now()
        runs = []
        for attempt in range(1, 4):
            runs.append(await state_manager.add_job_run(
                JobRun(job_id=job.id,
                       attempt=attempt,
                       started_at=start + timedelta(seconds=attempt))))

        page, total = await state_manager.list_runs("tenant-1", "wf-1", 1, 2)

        assert total == 3
        assert [run.id for run, _ in page] == [runs[2].id, runs[1].id]
        assert page[0][1].id == job.id


def test_workflow_ordered_actions(action_factory: Callable) -> None:
    workflow = WorkflowDefinition(
        tenant_id="tenant-1",
        name="wf",
        actions=[
            action_factory(ActionType.WAIT, order=2),
            action_factory(ActionType.SEND_EMAIL, order=1)
        ])

    assert [a.type for a in workflow.ordered_actions()] == [
        "send_email", "wait"
    ]

"""Workflow, job and CRM record state with in-memory or PostgreSQL backends"""
from datetime import datetime, UTC
from typing import Dict, List, Optional, Tuple, Union, Any

from automation.core.errors import EntityNotFoundError
from automation.db.postgres import PostgresDB
from shared.enums import JobStatus
from shared.models import (
    WorkflowDefinition,
    Trigger,
    Action,
    Job,
    JobRun,
    Contact,
    Opportunity,
    Task,
    Note,
    ActivityEvent,
    utc_now,
)

# Contact columns a workflow may change
CONTACT_MUTABLE_FIELDS = ("first_name", "last_name", "email", "phone",
                          "status", "tags")

_EPOCH = datetime.min.replace(tzinfo=UTC)


class StateManager:
    """In-memory store. Every read returns a copy, every write stores one."""

    def __init__(self):
        self.workflows: Dict[str, WorkflowDefinition] = {}
        self.jobs: Dict[str, Job] = {}
        self.job_runs: Dict[str, JobRun] = {}
        self.contacts: Dict[str, Contact] = {}
        self.opportunities: Dict[str, Opportunity] = {}
        self.tasks: Dict[str, Task] = {}
        self.notes: Dict[str, Note] = {}
        self.activity_events: List[ActivityEvent] = []

    async def close(self) -> None:
        """Nothing to release for the in-memory backend"""
        return None

    # ========================================================================
    # Workflow definitions
    # ========================================================================

    async def add_workflow(self, workflow: WorkflowDefinition) -> WorkflowDefinition:
        """Store a workflow with its triggers and actions"""
        stored = workflow.model_copy(deep=True)
        for trigger in stored.triggers:
            trigger.workflow_id = stored.id
        for action in stored.actions:
            _attach_action(action, stored.id)
        self.workflows[stored.id] = stored
        return stored.model_copy(deep=True)

    async def get_workflow(self,
                           tenant_id: str,
                           workflow_id: str,
                           include_deleted: bool = False
                           ) -> Optional[WorkflowDefinition]:
        """Get a tenant's workflow, actions sorted by order"""
        workflow = self.workflows.get(workflow_id)
        if workflow is None or workflow.tenant_id != tenant_id:
            return None
        if workflow.deleted_at is not None and not include_deleted:
            return None
        copy = workflow.model_copy(deep=True)
        copy.actions = copy.ordered_actions()
        return copy

    async def list_workflows(self,
                             tenant_id: str,
                             is_active: Optional[bool] = None
                             ) -> List[WorkflowDefinition]:
        """List a tenant's non-deleted workflows, newest first"""
        result = [
            wf for wf in self.workflows.values()
            if wf.tenant_id == tenant_id and wf.deleted_at is None and (
                is_active is None or wf.is_active == is_active)
        ]
        result.sort(key=lambda wf: wf.created_at, reverse=True)
        return [wf.model_copy(deep=True) for wf in result]

    async def save_workflow(self, workflow: WorkflowDefinition) -> WorkflowDefinition:
        """Update a workflow's own columns (not its triggers or actions)"""
        stored = self.workflows.get(workflow.id)
        if stored is None:
            raise EntityNotFoundError("Workflow", workflow.id)
        stored.name = workflow.name
        stored.description = workflow.description
        stored.is_active = workflow.is_active
        stored.deleted_at = workflow.deleted_at
        stored.updated_at = utc_now()
        return stored.model_copy(deep=True)

    async def find_workflows_for_event(
            self, tenant_id: str, event_type: str) -> List[WorkflowDefinition]:
        """Active, non-deleted workflows with a trigger on ``event_type``.

        Only the matching triggers are kept on each returned workflow.
        """
        matches = []
        for workflow in self.workflows.values():
            if (workflow.tenant_id != tenant_id or not workflow.is_active
                    or workflow.deleted_at is not None):
                continue
            triggers = [
                t for t in workflow.triggers if t.event_type == event_type
            ]
            if not triggers:
                continue
            copy = workflow.model_copy(deep=True)
            copy.triggers = [t.model_copy(deep=True) for t in triggers]
            matches.append(copy)
        return matches

    # ========================================================================
    # Triggers and actions
    # ========================================================================

    async def add_trigger(self, trigger: Trigger) -> Trigger:
        workflow = self._workflow(trigger.workflow_id)
        workflow.triggers.append(trigger.model_copy(deep=True))
        workflow.updated_at = utc_now()
        return trigger.model_copy(deep=True)

    async def remove_trigger(self, workflow_id: str, trigger_id: str) -> None:
        workflow = self._workflow(workflow_id)
        remaining = [t for t in workflow.triggers if t.id != trigger_id]
        if len(remaining) == len(workflow.triggers):
            raise EntityNotFoundError("Trigger", trigger_id)
        workflow.triggers = remaining
        workflow.updated_at = utc_now()

    async def add_action(self, action: Action) -> Action:
        workflow = self._workflow(action.workflow_id)
        stored = action.model_copy(deep=True)
        _attach_action(stored, workflow.id)
        workflow.actions.append(stored)
        workflow.updated_at = utc_now()
        return stored.model_copy(deep=True)

    async def save_action(self, action: Action) -> Action:
        workflow = self._workflow(action.workflow_id)
        for idx, existing in enumerate(workflow.actions):
            if existing.id == action.id:
                stored = action.model_copy(deep=True)
                _attach_action(stored, workflow.id)
                workflow.actions[idx] = stored
                workflow.updated_at = utc_now()
                return stored.model_copy(deep=True)
        raise EntityNotFoundError("Action", action.id)

    async def remove_action(self, workflow_id: str, action_id: str) -> None:
        workflow = self._workflow(workflow_id)
        remaining = [a for a in workflow.actions if a.id != action_id]
        if len(remaining) == len(workflow.actions):
            raise EntityNotFoundError("Action", action_id)
        workflow.actions = remaining
        workflow.updated_at = utc_now()

    def _workflow(self, workflow_id: Optional[str]) -> WorkflowDefinition:
        workflow = self.workflows.get(workflow_id or "")
        if workflow is None:
            raise EntityNotFoundError("Workflow", str(workflow_id))
        return workflow

    # ========================================================================
    # Jobs and job runs
    # ========================================================================

    async def add_job(self, job: Job) -> Job:
        self.jobs[job.id] = job.model_copy(deep=True)
        return job.model_copy(deep=True)

    async def get_job(self, job_id: str) -> Optional[Job]:
        job = self.jobs.get(job_id)
        return job.model_copy(deep=True) if job else None

    async def set_job_status(self, job_id: str, status: JobStatus) -> None:
        job = self.jobs.get(job_id)
        if job is None:
            raise EntityNotFoundError("Job", job_id)
        job.status = status
        job.updated_at = utc_now()

    async def add_job_run(self, run: JobRun) -> JobRun:
        self.job_runs[run.id] = run.model_copy(deep=True)
        return run.model_copy(deep=True)

    async def get_latest_run(self, job_id: str) -> Optional[JobRun]:
        runs = [r for r in self.job_runs.values() if r.job_id == job_id]
        if not runs:
            return None
        return max(runs, key=lambda r: r.attempt).model_copy(deep=True)

    async def update_job_run(self, run_id: str, **fields: Any) -> JobRun:
        """Apply column updates to a run (status, started_at, finished_at, error)"""
        run = self.job_runs.get(run_id)
        if run is None:
            raise EntityNotFoundError("JobRun", run_id)
        for key, value in fields.items():
            setattr(run, key, value)
        return run.model_copy(deep=True)

    async def list_runs(self, tenant_id: str, workflow_id: str, page: int,
                        limit: int) -> Tuple[List[Tuple[JobRun, Job]], int]:
        """One page of a workflow's runs (most recently started first)"""
        pairs = []
        for run in self.job_runs.values():
            job = self.jobs.get(run.job_id)
            if job and job.tenant_id == tenant_id and job.workflow_id == workflow_id:
                pairs.append((run, job))
        pairs.sort(key=lambda pair: pair[0].started_at or _EPOCH, reverse=True)
        start = (page - 1) * limit
        selected = pairs[start:start + limit]
        return ([(r.model_copy(deep=True), j.model_copy(deep=True))
                 for r, j in selected], len(pairs))

    async def get_run(self, tenant_id: str, workflow_id: str,
                      run_id: str) -> Optional[Tuple[JobRun, Job]]:
        run = self.job_runs.get(run_id)
        if run is None:
            return None
        job = self.jobs.get(run.job_id)
        if job is None or job.tenant_id != tenant_id or job.workflow_id != workflow_id:
            return None
        return run.model_copy(deep=True), job.model_copy(deep=True)

    # ========================================================================
    # CRM records touched by actions
    # ========================================================================

    async def add_contact(self, contact: Contact) -> Contact:
        self.contacts[contact.id] = contact.model_copy(deep=True)
        return contact.model_copy(deep=True)

    async def get_contact(self, tenant_id: str,
                          contact_id: str) -> Optional[Contact]:
        contact = self.contacts.get(contact_id)
        if contact is None or contact.tenant_id != tenant_id:
            return None
        return contact.model_copy(deep=True)

    async def update_contact(self, tenant_id: str, contact_id: str,
                             changes: Dict[str, Any]) -> Contact:
        """Apply allow-listed column changes to a contact"""
        contact = self.contacts.get(contact_id)
        if contact is None or contact.tenant_id != tenant_id:
            raise EntityNotFoundError("Contact", contact_id)
        for key, value in changes.items():
            if key in CONTACT_MUTABLE_FIELDS:
                setattr(contact, key, value)
        contact.updated_at = utc_now()
        return contact.model_copy(deep=True)

    async def add_opportunity(self, opportunity: Opportunity) -> Opportunity:
        self.opportunities[opportunity.id] = opportunity.model_copy(deep=True)
        return opportunity.model_copy(deep=True)

    async def get_opportunity(self, tenant_id: str,
                              opportunity_id: str) -> Optional[Opportunity]:
        opportunity = self.opportunities.get(opportunity_id)
        if opportunity is None or opportunity.tenant_id != tenant_id:
            return None
        return opportunity.model_copy(deep=True)

    async def update_opportunity_stage(self, tenant_id: str,
                                       opportunity_id: str,
                                       stage_id: str) -> Opportunity:
        opportunity = self.opportunities.get(opportunity_id)
        if opportunity is None or opportunity.tenant_id != tenant_id:
            raise EntityNotFoundError("Opportunity", opportunity_id)
        opportunity.stage_id = stage_id
        opportunity.updated_at = utc_now()
        return opportunity.model_copy(deep=True)

    async def add_task(self, task: Task) -> Task:
        self.tasks[task.id] = task.model_copy(deep=True)
        return task.model_copy(deep=True)

    async def list_tasks(self, tenant_id: str) -> List[Task]:
        return [
            t.model_copy(deep=True) for t in self.tasks.values()
            if t.tenant_id == tenant_id
        ]

    async def add_note(self, note: Note) -> Note:
        self.notes[note.id] = note.model_copy(deep=True)
        return note.model_copy(deep=True)

    async def list_notes(self, tenant_id: str) -> List[Note]:
        return [
            n.model_copy(deep=True) for n in self.notes.values()
            if n.tenant_id == tenant_id
        ]

    async def add_activity_event(self, event: ActivityEvent) -> ActivityEvent:
        self.activity_events.append(event.model_copy(deep=True))
        return event

    async def list_activity_events(self,
                                   tenant_id: str,
                                   entity_id: Optional[str] = None
                                   ) -> List[ActivityEvent]:
        return [
            e.model_copy(deep=True) for e in self.activity_events
            if e.tenant_id == tenant_id and (entity_id is None
                                             or e.entity_id == entity_id)
        ]


def _attach_action(action: Action, workflow_id: str) -> None:
    action.workflow_id = workflow_id
    if action.condition is not None:
        action.condition.action_id = action.id
    if action.delay is not None:
        action.delay.action_id = action.id


Store = Union[StateManager, PostgresDB]

# Global state instance
_state: Optional[Store] = None


def state_manager() -> Store:
    """Dependency injection function for FastAPI"""
    global _state
    if _state is None:
        _state = StateManager()
    return _state


async def init_state_manager(database_url: Optional[str] = None) -> Store:
    """Initialize the store: PostgreSQL when a URL is given, else in-memory"""
    global _state

    if database_url:
        postgres = PostgresDB(database_url)
        await postgres.init_db()
        _state = postgres
    else:
        _state = StateManager()

    return _state


def reset_state_manager(store: Optional[Store] = None) -> None:
    """Replace the global store (used by tests and the embedded app)"""
    global _state
    _state = store

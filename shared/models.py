"""Domain model definitions for workflows, jobs, runs and CRM records"""
import uuid
from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime, UTC

from .enums import JobStatus, DelayUnit


def new_id() -> str:
    return uuid.uuid4().hex


def utc_now() -> datetime:
    return datetime.now(UTC)


class Condition(BaseModel):
    """Expression gating whether an action runs"""
    id: str = Field(default_factory=new_id)
    action_id: Optional[str] = None
    expression: str


class Delay(BaseModel):
    """Pre-execution delay attached to an action"""
    id: str = Field(default_factory=new_id)
    action_id: Optional[str] = None
    delay_type: DelayUnit = DelayUnit.MINUTES
    delay_value: float = 1


class Action(BaseModel):
    """One step of a workflow's ordered action list"""
    id: str = Field(default_factory=new_id)
    workflow_id: Optional[str] = None
    # Kept as a plain string so rows with an unrecognised tag still load;
    # the dispatcher rejects them at run time.
    type: str
    order: int
    config: Dict[str, Any] = Field(default_factory=dict)
    condition: Optional[Condition] = None
    delay: Optional[Delay] = None


class Trigger(BaseModel):
    """Binds a workflow to one event type plus optional filters"""
    id: str = Field(default_factory=new_id)
    workflow_id: Optional[str] = None
    event_type: str
    filters: Dict[str, Any] = Field(default_factory=dict)


class WorkflowDefinition(BaseModel):
    """A named, tenant-scoped automation"""
    id: str = Field(default_factory=new_id)
    tenant_id: str
    name: str
    description: Optional[str] = None
    is_active: bool = False
    deleted_at: Optional[datetime] = None
    triggers: List[Trigger] = []
    actions: List[Action] = []
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def ordered_actions(self) -> List[Action]:
        return sorted(self.actions, key=lambda a: a.order)


class Job(BaseModel):
    """One firing of a workflow for one matched event"""
    id: str = Field(default_factory=new_id)
    tenant_id: str
    workflow_id: str
    trigger_id: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    status: JobStatus = JobStatus.PENDING
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class JobRun(BaseModel):
    """One execution attempt of a job"""
    id: str = Field(default_factory=new_id)
    job_id: str
    attempt: int = 1
    status: JobStatus = JobStatus.PENDING
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    error: Optional[str] = None


class Contact(BaseModel):
    id: str = Field(default_factory=new_id)
    tenant_id: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    status: Optional[str] = None
    tags: List[str] = []
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class Opportunity(BaseModel):
    id: str = Field(default_factory=new_id)
    tenant_id: str
    pipeline_id: Optional[str] = None
    stage_id: str
    name: Optional[str] = None
    value: Optional[float] = None
    contact_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class Task(BaseModel):
    """Task created by a workflow (job_run_id/action_id identify the origin)"""
    id: str = Field(default_factory=new_id)
    tenant_id: str
    title: str
    contact_id: Optional[str] = None
    due_at: Optional[datetime] = None
    assigned_user_id: Optional[str] = None
    job_run_id: Optional[str] = None
    action_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)


class Note(BaseModel):
    id: str = Field(default_factory=new_id)
    tenant_id: str
    body: str
    author_id: str
    contact_id: Optional[str] = None
    opportunity_id: Optional[str] = None
    job_run_id: Optional[str] = None
    action_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)


class ActivityEvent(BaseModel):
    """Timeline row written for every published event"""
    id: str = Field(default_factory=new_id)
    tenant_id: str
    entity_type: str
    entity_id: str
    event_type: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utc_now)

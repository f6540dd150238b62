"""Request and response schemas for the workflow management API"""
from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any

from .enums import ActionType, DelayUnit
from .models import JobRun, Job


class CreateWorkflow(BaseModel):
    name: str = Field(max_length=255)
    description: Optional[str] = None
    is_active: bool = False


class UpdateWorkflow(BaseModel):
    name: Optional[str] = Field(default=None, max_length=255)
    description: Optional[str] = None
    is_active: Optional[bool] = None


class CreateTrigger(BaseModel):
    event_type: str
    filters: Dict[str, Any] = {}


class ConditionConfig(BaseModel):
    expression: str


class DelayConfig(BaseModel):
    delay_type: DelayUnit
    delay_value: float = Field(gt=0)


class CreateAction(BaseModel):
    type: ActionType
    order: int
    config: Dict[str, Any] = {}
    condition: Optional[ConditionConfig] = None
    delay: Optional[DelayConfig] = None


class UpdateAction(BaseModel):
    type: Optional[ActionType] = None
    order: Optional[int] = None
    config: Optional[Dict[str, Any]] = None
    condition: Optional[ConditionConfig] = None
    delay: Optional[DelayConfig] = None


class RunWithJob(JobRun):
    """Job run enriched with its parent job for run-history views"""
    job: Optional[Job] = None


class RunPage(BaseModel):
    """One page of job runs"""
    items: List[RunWithJob]
    total: int
    page: int
    limit: int
    pages: int


class PublishedEvent(BaseModel):
    event: str
    payload: Dict[str, Any]

"""Queue message schemas exchanged between the trigger matcher, executors and workers"""
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional
from datetime import datetime

from .models import new_id, utc_now


class QueueMessage(BaseModel):
    """Base schema for all queue messages (camelCase on the wire)"""
    model_config = ConfigDict(populate_by_name=True)


class WorkflowJobMessage(QueueMessage):
    """Asks a worker to run (or continue running) a job.

    ``resume_after_action_id`` marks a continuation after a wait action;
    ``delayed_action_id`` marks a continuation that starts at an action
    whose pre-execution delay has been served.
    """
    job_id: str = Field(alias="jobId")
    resume_after_action_id: Optional[str] = Field(default=None,
                                                  alias="resumeAfterActionId")
    delayed_action_id: Optional[str] = Field(default=None,
                                             alias="delayedActionId")


# ============================================================================
# Delivery options
# ============================================================================


class Backoff(BaseModel):
    """Retry backoff policy"""
    type: str = "exponential"
    delay_ms: int = 5000

    def delay_for(self, attempts_made: int) -> int:
        """Delay before the retry that follows ``attempts_made`` failures"""
        if self.type == "fixed":
            return self.delay_ms
        return self.delay_ms * 2**max(attempts_made - 1, 0)


class QueueOptions(BaseModel):
    """Per-message delivery options"""
    delay_ms: int = 0
    attempts: int = 3
    backoff: Backoff = Field(default_factory=Backoff)


class QueuedDelivery(BaseModel):
    """A message sitting in (or just taken from) the work queue"""
    id: str = Field(default_factory=new_id)
    message: WorkflowJobMessage
    options: QueueOptions = Field(default_factory=QueueOptions)
    attempts_made: int = 0
    enqueued_at: datetime = Field(default_factory=utc_now)
    ready_at: datetime = Field(default_factory=utc_now)

"""Enum definitions for the CRM workflow automation engine"""
from enum import Enum


class JobStatus(str, Enum):
    """Status values shared by jobs and job runs"""
    PENDING = "pending"
    RUNNING = "running"
    WAITING = "waiting"
    COMPLETED = "completed"
    FAILED = "failed"


class ActionType(str, Enum):
    """Types of actions a workflow step can perform"""
    SEND_EMAIL = "send_email"
    SEND_SMS = "send_sms"
    CREATE_TASK = "create_task"
    ADD_NOTE = "add_note"
    UPDATE_CONTACT = "update_contact"
    MOVE_OPPORTUNITY = "move_opportunity"
    WEBHOOK = "webhook"
    WAIT = "wait"
    BRANCH = "branch"


class DelayUnit(str, Enum):
    """Units accepted by wait actions and action delays"""
    MINUTES = "minutes"
    HOURS = "hours"
    DAYS = "days"


class ChannelType(str, Enum):
    """Messaging channels the send executors can reach"""
    EMAIL = "email"
    SMS = "sms"


class EventName(str, Enum):
    """Names of events published on the CRM event bus"""
    # Domain events (trigger sources)
    CONTACT_CREATED = "contact.created"
    CONTACT_UPDATED = "contact.updated"
    CONTACT_DELETED = "contact.deleted"
    OPPORTUNITY_CREATED = "opportunity.created"
    OPPORTUNITY_STAGE_CHANGED = "opportunity.stage_changed"
    OPPORTUNITY_CLOSED = "opportunity.closed"
    MESSAGE_RECEIVED = "message.received"
    MESSAGE_SENT = "message.sent"
    CONVERSATION_CREATED = "conversation.created"
    WORKFLOW_TRIGGERED = "workflow.triggered"

    # Runner lifecycle events
    JOB_COMPLETED = "job.completed"
    JOB_FAILED = "job.failed"


# Every event a workflow trigger may bind to. Adding a domain event here
# requires the trigger matcher to bind it too (checked at registration).
DOMAIN_EVENTS = (
    EventName.CONTACT_CREATED,
    EventName.CONTACT_UPDATED,
    EventName.CONTACT_DELETED,
    EventName.OPPORTUNITY_CREATED,
    EventName.OPPORTUNITY_STAGE_CHANGED,
    EventName.OPPORTUNITY_CLOSED,
    EventName.MESSAGE_RECEIVED,
    EventName.MESSAGE_SENT,
    EventName.CONVERSATION_CREATED,
    EventName.WORKFLOW_TRIGGERED,
)

DELAY_UNIT_MS = {
    DelayUnit.MINUTES: 60_000,
    DelayUnit.HOURS: 3_600_000,
    DelayUnit.DAYS: 86_400_000,
}

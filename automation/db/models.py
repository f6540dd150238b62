"""SQLAlchemy ORM models for persistent storage"""
from sqlalchemy import (Column, String, DateTime, JSON, Integer, Boolean, Float,
                        Text, ForeignKey, Enum as SQLEnum, UniqueConstraint)
from sqlalchemy.orm import declarative_base, relationship

from shared.enums import JobStatus, DelayUnit

Base = declarative_base()


class WorkflowDefinitionModel(Base):
    """Persistent workflow definition"""
    __tablename__ = "workflow_definitions"

    id = Column(String, primary_key=True)
    tenant_id = Column(String, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    triggers = relationship("TriggerModel",
                            cascade="all, delete-orphan",
                            lazy="selectin")
    actions = relationship("ActionModel",
                           cascade="all, delete-orphan",
                           order_by="ActionModel.order",
                           lazy="selectin")


class TriggerModel(Base):
    """Event binding owned by a workflow"""
    __tablename__ = "triggers"

    id = Column(String, primary_key=True)
    workflow_id = Column(String,
                         ForeignKey("workflow_definitions.id",
                                    ondelete="CASCADE"),
                         nullable=False,
                         index=True)
    event_type = Column(String, nullable=False, index=True)
    filters = Column(JSON, nullable=False, default=dict)


class ActionModel(Base):
    """One step of a workflow"""
    __tablename__ = "actions"
    __table_args__ = (UniqueConstraint("workflow_id",
                                       "order",
                                       name="uq_actions_workflow_order"), )

    id = Column(String, primary_key=True)
    workflow_id = Column(String,
                         ForeignKey("workflow_definitions.id",
                                    ondelete="CASCADE"),
                         nullable=False,
                         index=True)
    type = Column(String, nullable=False)
    order = Column(Integer, nullable=False)
    config = Column(JSON, nullable=False, default=dict)

    condition = relationship("ConditionModel",
                             uselist=False,
                             cascade="all, delete-orphan",
                             lazy="selectin")
    delay = relationship("DelayModel",
                         uselist=False,
                         cascade="all, delete-orphan",
                         lazy="selectin")


class ConditionModel(Base):
    __tablename__ = "conditions"

    id = Column(String, primary_key=True)
    action_id = Column(String,
                       ForeignKey("actions.id", ondelete="CASCADE"),
                       nullable=False,
                       unique=True)
    expression = Column(Text, nullable=False)


class DelayModel(Base):
    __tablename__ = "delays"

    id = Column(String, primary_key=True)
    action_id = Column(String,
                       ForeignKey("actions.id", ondelete="CASCADE"),
                       nullable=False,
                       unique=True)
    delay_type = Column(SQLEnum(DelayUnit), nullable=False)
    delay_value = Column(Float, nullable=False)


class JobModel(Base):
    """Persistent job (one workflow firing)"""
    __tablename__ = "jobs"

    id = Column(String, primary_key=True)
    tenant_id = Column(String, nullable=False, index=True)
    workflow_id = Column(String,
                         ForeignKey("workflow_definitions.id"),
                         nullable=False,
                         index=True)
    trigger_id = Column(String, nullable=True)
    payload = Column(JSON, nullable=False)
    status = Column(SQLEnum(JobStatus), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class JobRunModel(Base):
    """Persistent execution attempt"""
    __tablename__ = "job_runs"

    id = Column(String, primary_key=True)
    job_id = Column(String,
                    ForeignKey("jobs.id"),
                    nullable=False,
                    index=True)
    attempt = Column(Integer, nullable=False, default=1)
    status = Column(SQLEnum(JobStatus), nullable=False)
    started_at = Column(DateTime(timezone=True), nullable=True)
    finished_at = Column(DateTime(timezone=True), nullable=True)
    error = Column(Text, nullable=True)


class ContactModel(Base):
    __tablename__ = "contacts"

    id = Column(String, primary_key=True)
    tenant_id = Column(String, nullable=False, index=True)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    email = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    status = Column(String, nullable=True)
    tags = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class OpportunityModel(Base):
    __tablename__ = "opportunities"

    id = Column(String, primary_key=True)
    tenant_id = Column(String, nullable=False, index=True)
    pipeline_id = Column(String, nullable=True)
    stage_id = Column(String, nullable=False)
    name = Column(String, nullable=True)
    value = Column(Float, nullable=True)
    contact_id = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class TaskModel(Base):
    __tablename__ = "tasks"

    id = Column(String, primary_key=True)
    tenant_id = Column(String, nullable=False, index=True)
    title = Column(String, nullable=False)
    contact_id = Column(String, nullable=True)
    due_at = Column(DateTime(timezone=True), nullable=True)
    assigned_user_id = Column(String, nullable=True)
    job_run_id = Column(String, nullable=True, index=True)
    action_id = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)


class NoteModel(Base):
    __tablename__ = "notes"

    id = Column(String, primary_key=True)
    tenant_id = Column(String, nullable=False, index=True)
    body = Column(Text, nullable=False)
    author_id = Column(String, nullable=False)
    contact_id = Column(String, nullable=True)
    opportunity_id = Column(String, nullable=True)
    job_run_id = Column(String, nullable=True, index=True)
    action_id = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)


class ActivityEventModel(Base):
    """Timeline/audit row for a published event"""
    __tablename__ = "activity_events"

    id = Column(String, primary_key=True)
    tenant_id = Column(String, nullable=False, index=True)
    entity_type = Column(String, nullable=False)
    entity_id = Column(String, nullable=False, index=True)
    event_type = Column(String, nullable=False)
    payload = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False)

"""PostgreSQL database connection and operations"""
from typing import Optional, List, Tuple, Dict, Any
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.future import select
from sqlalchemy import update, delete, func

from automation.core.errors import EntityNotFoundError
from automation.db.models import (
    Base,
    WorkflowDefinitionModel,
    TriggerModel,
    ActionModel,
    ConditionModel,
    DelayModel,
    JobModel,
    JobRunModel,
    ContactModel,
    OpportunityModel,
    TaskModel,
    NoteModel,
    ActivityEventModel,
)
from shared.enums import JobStatus
from shared.models import (
    WorkflowDefinition,
    Trigger,
    Action,
    Condition,
    Delay,
    Job,
    JobRun,
    Contact,
    Opportunity,
    Task,
    Note,
    ActivityEvent,
    utc_now,
)

CONTACT_MUTABLE_FIELDS = ("first_name", "last_name", "email", "phone",
                          "status", "tags")


class PostgresDB:
    """PostgreSQL-backed store with the same operations as StateManager"""

    def __init__(self, database_url: str):
        self.engine = create_async_engine(database_url,
                                          echo=False,
                                          pool_pre_ping=True)
        self.async_session = async_sessionmaker(self.engine,
                                                class_=AsyncSession,
                                                expire_on_commit=False)

    async def init_db(self):
        """Initialize database schema"""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self):
        """Close database connections"""
        await self.engine.dispose()

    # ========================================================================
    # Workflow definitions
    # ========================================================================

    async def add_workflow(self, workflow: WorkflowDefinition) -> WorkflowDefinition:
        """Insert a workflow with its triggers and actions"""
        async with self.async_session() as session:
            model = WorkflowDefinitionModel(
                id=workflow.id,
                tenant_id=workflow.tenant_id,
                name=workflow.name,
                description=workflow.description,
                is_active=workflow.is_active,
                deleted_at=workflow.deleted_at,
                created_at=workflow.created_at,
                updated_at=workflow.updated_at,
                triggers=[
                    _trigger_model(t, workflow.id) for t in workflow.triggers
                ],
                actions=[
                    _action_model(a, workflow.id) for a in workflow.actions
                ],
            )
            session.add(model)
            await session.commit()
        return await self.get_workflow(workflow.tenant_id,
                                       workflow.id,
                                       include_deleted=True)

    async def get_workflow(self,
                           tenant_id: str,
                           workflow_id: str,
                           include_deleted: bool = False
                           ) -> Optional[WorkflowDefinition]:
        """Get a tenant's workflow, actions sorted by order"""
        async with self.async_session() as session:
            query = select(WorkflowDefinitionModel).where(
                WorkflowDefinitionModel.id == workflow_id,
                WorkflowDefinitionModel.tenant_id == tenant_id)
            if not include_deleted:
                query = query.where(WorkflowDefinitionModel.deleted_at.is_(None))
            result = await session.execute(query)
            model = result.scalar_one_or_none()
            return _to_workflow(model) if model else None

    async def list_workflows(self,
                             tenant_id: str,
                             is_active: Optional[bool] = None
                             ) -> List[WorkflowDefinition]:
        """List a tenant's non-deleted workflows, newest first"""
        async with self.async_session() as session:
            query = select(WorkflowDefinitionModel).where(
                WorkflowDefinitionModel.tenant_id == tenant_id,
                WorkflowDefinitionModel.deleted_at.is_(None))
            if is_active is not None:
                query = query.where(
                    WorkflowDefinitionModel.is_active == is_active)
            query = query.order_by(WorkflowDefinitionModel.created_at.desc())
            result = await session.execute(query)
            return [_to_workflow(m) for m in result.scalars().all()]

    async def save_workflow(self, workflow: WorkflowDefinition) -> WorkflowDefinition:
        """Update a workflow's own columns (not its triggers or actions)"""
        async with self.async_session() as session:
            result = await session.execute(
                update(WorkflowDefinitionModel).where(
                    WorkflowDefinitionModel.id == workflow.id).values(
                        name=workflow.name,
                        description=workflow.description,
                        is_active=workflow.is_active,
                        deleted_at=workflow.deleted_at,
                        updated_at=utc_now()))
            await session.commit()
            if result.rowcount == 0:
                raise EntityNotFoundError("Workflow", workflow.id)
        return await self.get_workflow(workflow.tenant_id,
                                       workflow.id,
                                       include_deleted=True)

    async def find_workflows_for_event(
            self, tenant_id: str, event_type: str) -> List[WorkflowDefinition]:
        """Active, non-deleted workflows with a trigger on ``event_type``"""
        async with self.async_session() as session:
            result = await session.execute(
                select(WorkflowDefinitionModel).where(
                    WorkflowDefinitionModel.tenant_id == tenant_id,
                    WorkflowDefinitionModel.is_active.is_(True),
                    WorkflowDefinitionModel.deleted_at.is_(None),
                    WorkflowDefinitionModel.triggers.any(
                        TriggerModel.event_type == event_type)))
            workflows = []
            for model in result.scalars().all():
                workflow = _to_workflow(model)
                workflow.triggers = [
                    t for t in workflow.triggers if t.event_type == event_type
                ]
                workflows.append(workflow)
            return workflows

    # ========================================================================
    # Triggers and actions
    # ========================================================================

    async def add_trigger(self, trigger: Trigger) -> Trigger:
        async with self.async_session() as session:
            session.add(_trigger_model(trigger, trigger.workflow_id))
            await session.commit()
        return trigger

    async def remove_trigger(self, workflow_id: str, trigger_id: str) -> None:
        async with self.async_session() as session:
            result = await session.execute(
                delete(TriggerModel).where(
                    TriggerModel.id == trigger_id,
                    TriggerModel.workflow_id == workflow_id))
            await session.commit()
            if result.rowcount == 0:
                raise EntityNotFoundError("Trigger", trigger_id)

    async def add_action(self, action: Action) -> Action:
        async with self.async_session() as session:
            session.add(_action_model(action, action.workflow_id))
            await session.commit()
        return await self._get_action(action.id)

    async def save_action(self, action: Action) -> Action:
        async with self.async_session() as session:
            result = await session.execute(
                select(ActionModel).where(
                    ActionModel.id == action.id,
                    ActionModel.workflow_id == action.workflow_id))
            model = result.scalar_one_or_none()
            if model is None:
                raise EntityNotFoundError("Action", action.id)
            model.type = action.type
            model.order = action.order
            model.config = action.config
            # One condition and one delay per action: existing rows are
            # updated in place
            if action.condition is None:
                model.condition = None
            elif model.condition is not None:
                model.condition.expression = action.condition.expression
            else:
                model.condition = _condition_model(action.condition, action.id)
            if action.delay is None:
                model.delay = None
            elif model.delay is not None:
                model.delay.delay_type = action.delay.delay_type
                model.delay.delay_value = action.delay.delay_value
            else:
                model.delay = _delay_model(action.delay, action.id)
            await session.commit()
        return await self._get_action(action.id)

    async def remove_action(self, workflow_id: str, action_id: str) -> None:
        async with self.async_session() as session:
            result = await session.execute(
                select(ActionModel).where(ActionModel.id == action_id,
                                          ActionModel.workflow_id == workflow_id))
            model = result.scalar_one_or_none()
            if model is None:
                raise EntityNotFoundError("Action", action_id)
            await session.delete(model)
            await session.commit()

    async def _get_action(self, action_id: str) -> Action:
        async with self.async_session() as session:
            result = await session.execute(
                select(ActionModel).where(ActionModel.id == action_id))
            return _to_action(result.scalar_one())

    # ========================================================================
    # Jobs and job runs
    # ========================================================================

    async def add_job(self, job: Job) -> Job:
        async with self.async_session() as session:
            session.add(
                JobModel(id=job.id,
                         tenant_id=job.tenant_id,
                         workflow_id=job.workflow_id,
                         trigger_id=job.trigger_id,
                         payload=job.payload,
                         status=job.status,
                         created_at=job.created_at,
                         updated_at=job.updated_at))
            await session.commit()
        return job

    async def get_job(self, job_id: str) -> Optional[Job]:
        async with self.async_session() as session:
            result = await session.execute(
                select(JobModel).where(JobModel.id == job_id))
            model = result.scalar_one_or_none()
            return _to_job(model) if model else None

    async def set_job_status(self, job_id: str, status: JobStatus) -> None:
        async with self.async_session() as session:
            result = await session.execute(
                update(JobModel).where(JobModel.id == job_id).values(
                    status=status, updated_at=utc_now()))
            await session.commit()
            if result.rowcount == 0:
                raise EntityNotFoundError("Job", job_id)

    async def add_job_run(self, run: JobRun) -> JobRun:
        async with self.async_session() as session:
            session.add(
                JobRunModel(id=run.id,
                            job_id=run.job_id,
                            attempt=run.attempt,
                            status=run.status,
                            started_at=run.started_at,
                            finished_at=run.finished_at,
                            error=run.error))
            await session.commit()
        return run

    async def get_latest_run(self, job_id: str) -> Optional[JobRun]:
        async with self.async_session() as session:
            result = await session.execute(
                select(JobRunModel).where(JobRunModel.job_id == job_id).order_by(
                    JobRunModel.attempt.desc()).limit(1))
            model = result.scalar_one_or_none()
            return _to_run(model) if model else None

    async def update_job_run(self, run_id: str, **fields: Any) -> JobRun:
        """Apply column updates to a run (status, started_at, finished_at, error)"""
        async with self.async_session() as session:
            result = await session.execute(
                update(JobRunModel).where(JobRunModel.id == run_id).values(
                    **fields).returning(JobRunModel))
            model = result.scalar_one_or_none()
            await session.commit()
            if model is None:
                raise EntityNotFoundError("JobRun", run_id)
            return _to_run(model)

    async def list_runs(self, tenant_id: str, workflow_id: str, page: int,
                        limit: int) -> Tuple[List[Tuple[JobRun, Job]], int]:
        """One page of a workflow's runs (most recently started first)"""
        scope = (JobModel.tenant_id == tenant_id,
                 JobModel.workflow_id == workflow_id)
        async with self.async_session() as session:
            total = await session.scalar(
                select(func.count(JobRunModel.id)).join(
                    JobModel, JobRunModel.job_id == JobModel.id).where(*scope))
            result = await session.execute(
                select(JobRunModel, JobModel).join(
                    JobModel, JobRunModel.job_id == JobModel.id).where(
                        *scope).order_by(
                            JobRunModel.started_at.desc().nulls_last()).offset(
                                (page - 1) * limit).limit(limit))
            items = [(_to_run(run), _to_job(job)) for run, job in result.all()]
            return items, total or 0

    async def get_run(self, tenant_id: str, workflow_id: str,
                      run_id: str) -> Optional[Tuple[JobRun, Job]]:
        async with self.async_session() as session:
            result = await session.execute(
                select(JobRunModel, JobModel).join(
                    JobModel, JobRunModel.job_id == JobModel.id).where(
                        JobRunModel.id == run_id,
                        JobModel.tenant_id == tenant_id,
                        JobModel.workflow_id == workflow_id))
            row = result.first()
            if row is None:
                return None
            return _to_run(row[0]), _to_job(row[1])

    # ========================================================================
    # CRM records touched by actions
    # ========================================================================

    async def add_contact(self, contact: Contact) -> Contact:
        async with self.async_session() as session:
            session.add(ContactModel(**contact.model_dump()))
            await session.commit()
        return contact

    async def get_contact(self, tenant_id: str,
                          contact_id: str) -> Optional[Contact]:
        async with self.async_session() as session:
            result = await session.execute(
                select(ContactModel).where(ContactModel.id == contact_id,
                                           ContactModel.tenant_id == tenant_id))
            model = result.scalar_one_or_none()
            return _to_record(Contact, model) if model else None

    async def update_contact(self, tenant_id: str, contact_id: str,
                             changes: Dict[str, Any]) -> Contact:
        """Apply allow-listed column changes to a contact"""
        values = {
            k: v
            for k, v in changes.items() if k in CONTACT_MUTABLE_FIELDS
        }
        values["updated_at"] = utc_now()
        async with self.async_session() as session:
            result = await session.execute(
                update(ContactModel).where(
                    ContactModel.id == contact_id,
                    ContactModel.tenant_id == tenant_id).values(
                        **values).returning(ContactModel))
            model = result.scalar_one_or_none()
            await session.commit()
            if model is None:
                raise EntityNotFoundError("Contact", contact_id)
            return _to_record(Contact, model)

    async def add_opportunity(self, opportunity: Opportunity) -> Opportunity:
        async with self.async_session() as session:
            session.add(OpportunityModel(**opportunity.model_dump()))
            await session.commit()
        return opportunity

    async def get_opportunity(self, tenant_id: str,
                              opportunity_id: str) -> Optional[Opportunity]:
        async with self.async_session() as session:
            result = await session.execute(
                select(OpportunityModel).where(
                    OpportunityModel.id == opportunity_id,
                    OpportunityModel.tenant_id == tenant_id))
            model = result.scalar_one_or_none()
            return _to_record(Opportunity, model) if model else None

    async def update_opportunity_stage(self, tenant_id: str,
                                       opportunity_id: str,
                                       stage_id: str) -> Opportunity:
        async with self.async_session() as session:
            result = await session.execute(
                update(OpportunityModel).where(
                    OpportunityModel.id == opportunity_id,
                    OpportunityModel.tenant_id == tenant_id).values(
                        stage_id=stage_id,
                        updated_at=utc_now()).returning(OpportunityModel))
            model = result.scalar_one_or_none()
            await session.commit()
            if model is None:
                raise EntityNotFoundError("Opportunity", opportunity_id)
            return _to_record(Opportunity, model)

    async def add_task(self, task: Task) -> Task:
        async with self.async_session() as session:
            session.add(TaskModel(**task.model_dump()))
            await session.commit()
        return task

    async def list_tasks(self, tenant_id: str) -> List[Task]:
        async with self.async_session() as session:
            result = await session.execute(
                select(TaskModel).where(TaskModel.tenant_id == tenant_id))
            return [_to_record(Task, m) for m in result.scalars().all()]

    async def add_note(self, note: Note) -> Note:
        async with self.async_session() as session:
            session.add(NoteModel(**note.model_dump()))
            await session.commit()
        return note

    async def list_notes(self, tenant_id: str) -> List[Note]:
        async with self.async_session() as session:
            result = await session.execute(
                select(NoteModel).where(NoteModel.tenant_id == tenant_id))
            return [_to_record(Note, m) for m in result.scalars().all()]

    async def add_activity_event(self, event: ActivityEvent) -> ActivityEvent:
        async with self.async_session() as session:
            session.add(ActivityEventModel(**event.model_dump()))
            await session.commit()
        return event

    async def list_activity_events(self,
                                   tenant_id: str,
                                   entity_id: Optional[str] = None
                                   ) -> List[ActivityEvent]:
        async with self.async_session() as session:
            query = select(ActivityEventModel).where(
                ActivityEventModel.tenant_id == tenant_id)
            if entity_id is not None:
                query = query.where(ActivityEventModel.entity_id == entity_id)
            result = await session.execute(
                query.order_by(ActivityEventModel.created_at))
            return [_to_record(ActivityEvent, m) for m in result.scalars().all()]


# ============================================================================
# Model conversion helpers
# ============================================================================


def _trigger_model(trigger: Trigger, workflow_id: str) -> TriggerModel:
    return TriggerModel(id=trigger.id,
                        workflow_id=workflow_id,
                        event_type=trigger.event_type,
                        filters=trigger.filters)


def _condition_model(condition: Condition, action_id: str) -> ConditionModel:
    return ConditionModel(id=condition.id,
                          action_id=action_id,
                          expression=condition.expression)


def _delay_model(delay: Delay, action_id: str) -> DelayModel:
    return DelayModel(id=delay.id,
                      action_id=action_id,
                      delay_type=delay.delay_type,
                      delay_value=delay.delay_value)


def _action_model(action: Action, workflow_id: str) -> ActionModel:
    return ActionModel(
        id=action.id,
        workflow_id=workflow_id,
        type=action.type,
        order=action.order,
        config=action.config,
        condition=(_condition_model(action.condition, action.id)
                   if action.condition else None),
        delay=_delay_model(action.delay, action.id) if action.delay else None,
    )


def _to_action(model: ActionModel) -> Action:
    condition = None
    if model.condition is not None:
        condition = Condition(id=model.condition.id,
                              action_id=model.id,
                              expression=model.condition.expression)
    delay = None
    if model.delay is not None:
        delay = Delay(id=model.delay.id,
                      action_id=model.id,
                      delay_type=model.delay.delay_type,
                      delay_value=model.delay.delay_value)
    return Action(id=model.id,
                  workflow_id=model.workflow_id,
                  type=model.type,
                  order=model.order,
                  config=model.config or {},
                  condition=condition,
                  delay=delay)


def _to_workflow(model: WorkflowDefinitionModel) -> WorkflowDefinition:
    return WorkflowDefinition(
        id=model.id,
        tenant_id=model.tenant_id,
        name=model.name,
        description=model.description,
        is_active=model.is_active,
        deleted_at=model.deleted_at,
        triggers=[
            Trigger(id=t.id,
                    workflow_id=t.workflow_id,
                    event_type=t.event_type,
                    filters=t.filters or {}) for t in model.triggers
        ],
        actions=sorted((_to_action(a) for a in model.actions),
                       key=lambda a: a.order),
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


def _to_job(model: JobModel) -> Job:
    return Job(id=model.id,
               tenant_id=model.tenant_id,
               workflow_id=model.workflow_id,
               trigger_id=model.trigger_id,
               payload=model.payload or {},
               status=model.status,
               created_at=model.created_at,
               updated_at=model.updated_at)


def _to_run(model: JobRunModel) -> JobRun:
    return JobRun(id=model.id,
                  job_id=model.job_id,
                  attempt=model.attempt,
                  status=model.status,
                  started_at=model.started_at,
                  finished_at=model.finished_at,
                  error=model.error)


def _to_record(record_type, model):
    """Build a flat pydantic record from a same-shaped ORM row"""
    return record_type.model_validate({
        column.name: getattr(model, column.name)
        for column in model.__table__.columns
    })

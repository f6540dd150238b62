"""Root conftest.py - Shared fixtures for all tests"""
import pytest
import os
from typing import Callable, Any, AsyncGenerator, Dict, List, Optional
from unittest.mock import AsyncMock

from automation.core.event_bus import EventBus
from automation.core.job_lifecycle import JobLifecycle
from automation.core.queue import MemoryQueue
from automation.core.state_manager import StateManager
from worker.channels import ChannelAdapterFactory, SendMessageResult
from worker.dispatcher import ActionDispatcher
from worker.runner import WorkflowRunner
from shared.enums import ActionType, ChannelType, DelayUnit
from shared.messages import WorkflowJobMessage
from shared.models import (
    WorkflowDefinition,
    Trigger,
    Action,
    Condition,
    Delay,
    Contact,
    Opportunity,
)

TENANT_ID = "tenant-1"

# ============================================================================
# Database Fixtures (for integration tests)
# ============================================================================


@pytest.fixture
async def postgres_db() -> AsyncGenerator:
    """Create a test database connection"""
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        pytest.skip("DATABASE_URL not set - skipping PostgreSQL tests")

    from automation.db.postgres import PostgresDB
    db = PostgresDB(database_url)
    await db.init_db()
    yield db
    await db.close()


@pytest.fixture
async def redis_queue() -> AsyncGenerator:
    """Create a test Redis queue on an empty queue key"""
    redis_url = os.getenv("REDIS_URL")
    if not redis_url:
        pytest.skip("REDIS_URL not set - skipping Redis tests")

    from automation.db.redis import RedisQueue, QUEUE_KEY, PAYLOAD_KEY
    queue = RedisQueue(redis_url)
    await queue.connect()
    await queue.client.delete(QUEUE_KEY, PAYLOAD_KEY)
    yield queue
    await queue.client.delete(QUEUE_KEY, PAYLOAD_KEY)
    await queue.close()


# ============================================================================
# Data Factories
# ============================================================================


@pytest.fixture
def tenant_id() -> str:
    return TENANT_ID


@pytest.fixture
def action_factory() -> Callable:
    """Factory for creating test Action instances"""

    def _create_action(action_type: Any = ActionType.CREATE_TASK,
                       order: int = 1,
                       config: Optional[Dict[str, Any]] = None,
                       condition: Optional[str] = None,
                       delay: Optional[tuple] = None,
                       action_id: Optional[str] = None) -> Action:
        kwargs: Dict[str, Any] = {}
        if action_id:
            kwargs["id"] = action_id
        return Action(
            type=getattr(action_type, "value", action_type),
            order=order,
            config=config or {},
            condition=Condition(expression=condition) if condition else None,
            delay=Delay(delay_type=DelayUnit(delay[1]), delay_value=delay[0])
            if delay else None,
            **kwargs)

    return _create_action


@pytest.fixture
def workflow_factory() -> Callable:
    """Factory for creating test WorkflowDefinition instances"""

    def _create_workflow(actions: Optional[List[Action]] = None,
                         event_type: Optional[str] = "contact.created",
                         filters: Optional[Dict[str, Any]] = None,
                         tenant_id: str = TENANT_ID,
                         name: str = "Test Workflow",
                         is_active: bool = True,
                         **kwargs) -> WorkflowDefinition:
        triggers = []
        if event_type:
            triggers.append(
                Trigger(event_type=event_type, filters=filters or {}))
        return WorkflowDefinition(tenant_id=tenant_id,
                                  name=name,
                                  is_active=is_active,
                                  triggers=triggers,
                                  actions=actions or [],
                                  **kwargs)

    return _create_workflow


# ============================================================================
# Component Fixtures
# ============================================================================


@pytest.fixture
def state_manager() -> StateManager:
    """Create a fresh StateManager instance for testing"""
    return StateManager()


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def queue() -> MemoryQueue:
    return MemoryQueue()


@pytest.fixture
def lifecycle(state_manager: StateManager) -> JobLifecycle:
    return JobLifecycle(state_manager)


@pytest.fixture
def email_adapter() -> AsyncMock:
    """Email adapter that records sends and reports success"""
    adapter = AsyncMock()
    adapter.send.return_value = SendMessageResult(status="sent",
                                                  external_id="ext-1")
    return adapter


@pytest.fixture
def sms_adapter() -> AsyncMock:
    adapter = AsyncMock()
    adapter.send.return_value = SendMessageResult(status="sent",
                                                  external_id="ext-2")
    return adapter


@pytest.fixture
def channels(email_adapter: AsyncMock,
             sms_adapter: AsyncMock) -> ChannelAdapterFactory:
    return ChannelAdapterFactory({
        ChannelType.EMAIL: email_adapter,
        ChannelType.SMS: sms_adapter,
    })


@pytest.fixture
def dispatcher(state_manager: StateManager, event_bus: EventBus,
               channels: ChannelAdapterFactory) -> ActionDispatcher:
    return ActionDispatcher.create(state_manager, event_bus, channels)


@pytest.fixture
def executed(dispatcher: ActionDispatcher) -> List[str]:
    """Ids of the actions the dispatcher was asked to run, in order"""
    calls: List[str] = []
    original = dispatcher.dispatch

    async def spy(context):
        calls.append(context.action.id)
        return await original(context)

    dispatcher.dispatch = spy
    return calls


@pytest.fixture
def runner(state_manager: StateManager, queue: MemoryQueue,
           event_bus: EventBus, dispatcher: ActionDispatcher,
           executed: List[str]) -> WorkflowRunner:
    return WorkflowRunner(state_manager, queue, event_bus, dispatcher)


@pytest.fixture
def start_job(state_manager: StateManager, lifecycle: JobLifecycle) -> Callable:
    """Store a workflow, create a job for it and return its first message"""

    async def _start(workflow: WorkflowDefinition,
                     payload: Optional[Dict[str, Any]] = None):
        stored = await state_manager.add_workflow(workflow)
        job, run = await lifecycle.create_job(
            stored.tenant_id, stored.id,
            stored.triggers[0].id if stored.triggers else None,
            {"tenantId": stored.tenant_id, **(payload or {})})
        return WorkflowJobMessage(job_id=job.id), job, run

    return _start


@pytest.fixture
def recorded_events(event_bus: EventBus) -> Callable:
    """Subscribe a recorder to the given event names"""

    def _record(*event_names: str) -> List[tuple]:
        events: List[tuple] = []
        for name in event_names:

            async def handler(payload, name=name):
                events.append((name, payload))

            event_bus.subscribe(name, handler)
        return events

    return _record


# ============================================================================
# Sample Test Data
# ============================================================================


@pytest.fixture
async def contact(state_manager: StateManager) -> Contact:
    return await state_manager.add_contact(
        Contact(tenant_id=TENANT_ID,
                first_name="Ada",
                last_name="Lovelace",
                email="ada@gmail.com",
                phone="+15550100",
                status="lead",
                tags=["new"]))


@pytest.fixture
async def opportunity(state_manager: StateManager) -> Opportunity:
    return await state_manager.add_opportunity(
        Opportunity(tenant_id=TENANT_ID,
                    pipeline_id="pipeline-1",
                    stage_id="stage-new",
                    name="Big deal",
                    value=5000))

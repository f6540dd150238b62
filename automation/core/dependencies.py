"""Dependency injection and singleton initialization"""
import logging
from typing import Optional, Union

from automation.core.activity_log import ActivityLog
from automation.core.event_bus import EventBus
from automation.core.queue import MemoryQueue
from automation.core.state_manager import (
    init_state_manager,
    reset_state_manager,
    state_manager,
)
from automation.core.trigger_matcher import TriggerMatcher
from automation.core.workflows_service import WorkflowService
from automation.db.redis import RedisQueue
from worker.actions.messaging import DEFAULT_MESSAGING_CONCURRENCY
from worker.actions.webhook import DEFAULT_WEBHOOK_TIMEOUT
from worker.dispatcher import ActionDispatcher
from worker.runner import WorkflowRunner

logger = logging.getLogger(__name__)

Queue = Union[MemoryQueue, RedisQueue]

# Singletons - initialized once on startup
_event_bus: Optional[EventBus] = None
_queue: Optional[Queue] = None
_trigger_matcher: Optional[TriggerMatcher] = None
_activity_log: Optional[ActivityLog] = None
_workflow_runner: Optional[WorkflowRunner] = None


def get_event_bus() -> EventBus:
    """Get or create EventBus singleton"""
    global _event_bus
    if _event_bus is None:
        _event_bus = EventBus()
    return _event_bus


def get_queue() -> Queue:
    """Get or create the work queue (in-memory unless init_engine set Redis)"""
    global _queue
    if _queue is None:
        _queue = MemoryQueue()
    return _queue


def get_trigger_matcher() -> TriggerMatcher:
    """Get or create TriggerMatcher singleton, bound to every domain event"""
    global _trigger_matcher, _activity_log
    if _trigger_matcher is None:
        bus = get_event_bus()
        # Timeline rows are written before any workflow reacts to an event
        _activity_log = ActivityLog(state_manager(), bus)
        _activity_log.register()
        _trigger_matcher = TriggerMatcher(state_manager(), get_queue(), bus)
        _trigger_matcher.register()
    return _trigger_matcher


def get_workflow_runner(
        messaging_concurrency: int = DEFAULT_MESSAGING_CONCURRENCY,
        webhook_timeout: float = DEFAULT_WEBHOOK_TIMEOUT) -> WorkflowRunner:
    """Get or create WorkflowRunner singleton"""
    global _workflow_runner
    if _workflow_runner is None:
        store = state_manager()
        dispatcher = ActionDispatcher.create(
            store,
            get_event_bus(),
            messaging_concurrency=messaging_concurrency,
            webhook_timeout=webhook_timeout)
        _workflow_runner = WorkflowRunner(store, get_queue(), get_event_bus(),
                                          dispatcher)
    return _workflow_runner


def get_workflow_service() -> WorkflowService:
    """Dependency injection function for FastAPI"""
    return WorkflowService(state_manager())


async def init_engine(database_url: Optional[str] = None,
                      redis_url: Optional[str] = None,
                      messaging_concurrency: int = DEFAULT_MESSAGING_CONCURRENCY,
                      webhook_timeout: float = DEFAULT_WEBHOOK_TIMEOUT
                      ) -> WorkflowRunner:
    """Create store, queue, event subscriptions and runner for a process"""
    global _queue
    reset_engine()

    await init_state_manager(database_url=database_url)
    if redis_url:
        queue = RedisQueue(redis_url)
        await queue.connect()
        _queue = queue
    else:
        _queue = MemoryQueue()

    logger.info(f"Engine initialized (DB: {bool(database_url)}, "
                f"Redis: {bool(redis_url)})")
    get_trigger_matcher()
    return get_workflow_runner(messaging_concurrency, webhook_timeout)


async def shutdown_engine() -> None:
    """Release queue and store connections"""
    if _queue is not None:
        await _queue.close()
    await state_manager().close()


def reset_engine() -> None:
    """Drop every singleton so the next getter builds fresh ones"""
    global _event_bus, _queue, _trigger_matcher, _activity_log, _workflow_runner
    _event_bus = None
    _queue = None
    _trigger_matcher = None
    _activity_log = None
    _workflow_runner = None
    reset_state_manager()

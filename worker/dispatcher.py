"""Routes each action to the executor registered for its type"""
import asyncio
import logging
from typing import Dict, Optional

from worker.actions.base import BaseAction, ExecutionContext, ActionResult
from worker.actions.branch import BranchAction
from worker.actions.messaging import (
    SendEmailAction,
    SendSmsAction,
    DEFAULT_MESSAGING_CONCURRENCY,
)
from worker.actions.records import (
    CreateTaskAction,
    AddNoteAction,
    UpdateContactAction,
    MoveOpportunityAction,
)
from worker.actions.wait import WaitAction
from worker.actions.webhook import WebhookAction, DEFAULT_WEBHOOK_TIMEOUT
from worker.channels import ChannelAdapterFactory
from shared.enums import ActionType

logger = logging.getLogger(__name__)


class UnknownActionTypeError(Exception):
    """Raised for an action whose type has no executor"""

    def __init__(self, action_type: str):
        super().__init__(f"Unknown action type: {action_type}")
        self.action_type = action_type


class ActionDispatcher:
    """Holds one executor per ActionType.

    The registry must cover every ActionType member; a gap is reported at
    construction rather than when a workflow first reaches that action.
    """

    def __init__(self, executors: Dict[ActionType, BaseAction]):
        missing = [t.value for t in ActionType if t not in executors]
        if missing:
            raise ValueError(
                f"No executor registered for action types: {', '.join(missing)}")
        self.executors = dict(executors)

    @classmethod
    def create(cls,
               store,
               event_bus,
               channels: Optional[ChannelAdapterFactory] = None,
               messaging_concurrency: int = DEFAULT_MESSAGING_CONCURRENCY,
               webhook_timeout: float = DEFAULT_WEBHOOK_TIMEOUT
               ) -> "ActionDispatcher":
        """Build the standard executor set over the given collaborators"""
        channels = channels or ChannelAdapterFactory()
        send_limit = asyncio.Semaphore(messaging_concurrency)
        executors = [
            SendEmailAction(channels, send_limit),
            SendSmsAction(channels, send_limit),
            CreateTaskAction(store),
            AddNoteAction(store),
            UpdateContactAction(store),
            MoveOpportunityAction(store, event_bus),
            WebhookAction(webhook_timeout),
            WaitAction(),
            BranchAction(store),
        ]
        return cls({executor.action_type: executor for executor in executors})

    async def dispatch(self, context: ExecutionContext) -> ActionResult:
        """Run the executor for ``context.action``.

        Raises:
            UnknownActionTypeError: if the action's type tag is not known
        """
        try:
            action_type = ActionType(context.action.type)
        except ValueError:
            raise UnknownActionTypeError(context.action.type) from None

        executor = self.executors[action_type]
        logger.debug(f"[job:{context.job_id}] Dispatching {action_type.value} "
                     f"action {context.action.id}")
        return await executor.execute(context)

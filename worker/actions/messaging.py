import asyncio
import logging
from typing import Optional

from worker.actions.base import BaseAction, ExecutionContext, ActionResult, resolve_param
from worker.channels import (
    ChannelAdapterFactory,
    MessageDeliveryError,
    SendMessageOptions,
)
from shared.enums import ActionType, ChannelType

logger = logging.getLogger(__name__)

DEFAULT_MESSAGING_CONCURRENCY = 5


class MessagingAction(BaseAction):
    """Sends one message through a channel adapter.

    All messaging actions built with the same semaphore share its limit on
    concurrent sends.
    """

    channel: ChannelType = None

    def __init__(self,
                 channels: ChannelAdapterFactory,
                 semaphore: Optional[asyncio.Semaphore] = None):
        self.channels = channels
        self.semaphore = semaphore or asyncio.Semaphore(
            DEFAULT_MESSAGING_CONCURRENCY)

    def build_options(self, context: ExecutionContext,
                      to: str) -> SendMessageOptions:
        return SendMessageOptions(to=to,
                                  body=str(resolve_param(context, "body", "")))

    async def execute(self, context: ExecutionContext) -> ActionResult:
        name = self.action_type.value
        to = resolve_param(context, "to")
        if not to:
            logger.warning(f"[job:{context.job_id}] {name}: missing 'to' config")
            return ActionResult()

        adapter = self.channels.get(self.channel)
        async with self.semaphore:
            try:
                result = await adapter.send(self.build_options(context, str(to)))
            except MessageDeliveryError:
                raise
            except Exception as e:
                raise MessageDeliveryError(f"{name} to {to} failed: {e}") from e

        if result.status != "sent":
            raise MessageDeliveryError(
                f"{name} to {to} failed: {result.error or 'unknown error'}")

        logger.info(f"[job:{context.job_id}] {name} -> {to}")
        return ActionResult()


class SendEmailAction(MessagingAction):
    action_type = ActionType.SEND_EMAIL
    channel = ChannelType.EMAIL

    def build_options(self, context: ExecutionContext,
                      to: str) -> SendMessageOptions:
        options = super().build_options(context, to)
        options.subject = str(resolve_param(context, "subject", ""))
        return options


class SendSmsAction(MessagingAction):
    action_type = ActionType.SEND_SMS
    channel = ChannelType.SMS

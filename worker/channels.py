"""Messaging channel adapters used by the send executors"""
import logging
from typing import Dict, Optional

from pydantic import BaseModel

from shared.enums import ChannelType
from shared.models import new_id

logger = logging.getLogger(__name__)


class MessageDeliveryError(Exception):
    """Raised when a channel could not deliver a message"""
    pass


class SendMessageOptions(BaseModel):
    to: str
    body: str
    subject: Optional[str] = None
    sender: Optional[str] = None


class SendMessageResult(BaseModel):
    status: str  # "sent" or "failed"
    external_id: Optional[str] = None
    error: Optional[str] = None


class ChannelAdapter:

    async def send(self, options: SendMessageOptions) -> SendMessageResult:
        """Send a message. To be implemented by subclasses."""
        raise NotImplementedError(
            "Send method must be implemented by subclasses.")


class EmailAdapter(ChannelAdapter):
    """Logs outgoing email instead of handing it to a provider"""

    async def send(self, options: SendMessageOptions) -> SendMessageResult:
        logger.info(f"[EMAIL] To: {options.to} | Subject: "
                    f"{options.subject or '(none)'} | Body: {options.body[:80]}")
        return SendMessageResult(status="sent", external_id=new_id())


class SmsAdapter(ChannelAdapter):
    """Logs outgoing SMS instead of handing it to a provider"""

    async def send(self, options: SendMessageOptions) -> SendMessageResult:
        logger.info(f"[SMS] To: {options.to} | Body: {options.body[:160]}")
        return SendMessageResult(status="sent", external_id=new_id())


class ChannelAdapterFactory:
    """Resolves the adapter for a channel"""

    def __init__(self, adapters: Optional[Dict[ChannelType, ChannelAdapter]] = None):
        self.adapters = adapters or {
            ChannelType.EMAIL: EmailAdapter(),
            ChannelType.SMS: SmsAdapter(),
        }

    def get(self, channel: ChannelType) -> ChannelAdapter:
        adapter = self.adapters.get(channel)
        if adapter is None:
            raise MessageDeliveryError(
                f"No adapter available for channel: {channel.value}")
        return adapter

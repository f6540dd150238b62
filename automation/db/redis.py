"""Redis-backed work queue and metrics"""
import logging
from typing import Optional
import redis.asyncio as redis

from automation.core.queue import build_delivery
from shared.messages import QueuedDelivery, QueueOptions, WorkflowJobMessage
from shared.models import utc_now

logger = logging.getLogger(__name__)

QUEUE_KEY = "queue:workflows"
PAYLOAD_KEY = "queue:workflows:payloads"


class RedisQueue:
    """Delayed work queue shared by every worker process.

    Delivery ids sit in a sorted set scored by ready time (epoch ms) and the
    serialized deliveries in a hash. A worker owns a delivery once its
    ``ZREM`` succeeds, so two workers never take the same one.
    """

    def __init__(self, redis_url: str):
        self.redis_url = redis_url
        self.client: Optional[redis.Redis] = None

    async def connect(self):
        """Connect to Redis"""
        self.client = await redis.from_url(self.redis_url,
                                           decode_responses=True)

    async def close(self):
        """Close Redis connection"""
        if self.client:
            await self.client.close()

    # Queue operations
    async def enqueue(self,
                      message: WorkflowJobMessage,
                      options: Optional[QueueOptions] = None,
                      attempts_made: int = 0) -> QueuedDelivery:
        """Add a message to the queue"""
        delivery = build_delivery(message, options, attempts_made)
        await self.push(delivery)
        return delivery

    async def push(self, delivery: QueuedDelivery) -> None:
        """Store a delivery and schedule it at its ready time"""
        await self.client.hset(PAYLOAD_KEY, delivery.id,
                               delivery.model_dump_json())
        await self.client.zadd(
            QUEUE_KEY, {delivery.id: _score(delivery)})
        logger.debug(f"Queued delivery {delivery.id} for job "
                     f"{delivery.message.job_id} (ready {delivery.ready_at})")

    async def dequeue(self) -> Optional[QueuedDelivery]:
        """Claim the earliest ready delivery, or None if nothing is ready"""
        now_ms = int(utc_now().timestamp() * 1000)
        while True:
            ready = await self.client.zrangebyscore(QUEUE_KEY,
                                                    0,
                                                    now_ms,
                                                    start=0,
                                                    num=1)
            if not ready:
                return None

            delivery_id = ready[0]
            if not await self.client.zrem(QUEUE_KEY, delivery_id):
                # Another worker claimed it first
                continue

            data = await self.client.hget(PAYLOAD_KEY, delivery_id)
            await self.client.hdel(PAYLOAD_KEY, delivery_id)
            if data is None:
                logger.warning(f"Delivery {delivery_id} has no payload, dropping")
                continue
            return QueuedDelivery.model_validate_json(data)

    async def length(self) -> int:
        """Number of queued deliveries (ready or delayed)"""
        return await self.client.zcard(QUEUE_KEY)

    # Metrics and monitoring
    async def increment_metric(self, metric: str) -> None:
        """Increment a counter metric"""
        await self.client.incr(f"metric:{metric}")

    async def get_metric(self, metric: str) -> int:
        """Get metric value"""
        value = await self.client.get(f"metric:{metric}")
        return int(value) if value else 0


def _score(delivery: QueuedDelivery) -> int:
    return int(delivery.ready_at.timestamp() * 1000)

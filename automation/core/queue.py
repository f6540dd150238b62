"""Work queue for workflow job deliveries (in-memory implementation)"""
import heapq
import itertools
import logging
from datetime import timedelta
from typing import Dict, List, Optional, Tuple

from shared.messages import QueuedDelivery, QueueOptions, WorkflowJobMessage
from shared.models import utc_now

logger = logging.getLogger(__name__)

# Defaults applied to workflow jobs and wait continuations
DEFAULT_ATTEMPTS = 3
DEFAULT_BACKOFF_MS = 5000


def default_options(delay_ms: int = 0) -> QueueOptions:
    """Options used for workflow jobs: 3 attempts, exponential backoff from 5s"""
    return QueueOptions.model_validate({
        "delay_ms": delay_ms,
        "attempts": DEFAULT_ATTEMPTS,
        "backoff": {
            "type": "exponential",
            "delay_ms": DEFAULT_BACKOFF_MS
        },
    })


def build_delivery(message: WorkflowJobMessage,
                   options: Optional[QueueOptions] = None,
                   attempts_made: int = 0) -> QueuedDelivery:
    """Create a delivery that becomes ready after ``options.delay_ms``"""
    options = options or default_options()
    now = utc_now()
    return QueuedDelivery(message=message,
                          options=options,
                          attempts_made=attempts_made,
                          enqueued_at=now,
                          ready_at=now +
                          timedelta(milliseconds=options.delay_ms))


class MemoryQueue:
    """Single-process delayed queue ordered by ready time.

    Deliveries become visible to ``dequeue`` once their ready time has
    passed; ties are served in enqueue order.
    """

    def __init__(self):
        self._heap: List[Tuple[float, int, QueuedDelivery]] = []
        self._counter = itertools.count()
        self._metrics: Dict[str, int] = {}

    async def enqueue(self,
                      message: WorkflowJobMessage,
                      options: Optional[QueueOptions] = None,
                      attempts_made: int = 0) -> QueuedDelivery:
        """Add a message to the queue"""
        delivery = build_delivery(message, options, attempts_made)
        await self.push(delivery)
        return delivery

    async def push(self, delivery: QueuedDelivery) -> None:
        heapq.heappush(
            self._heap,
            (delivery.ready_at.timestamp(), next(self._counter), delivery))
        logger.debug(f"Queued delivery {delivery.id} for job "
                     f"{delivery.message.job_id} (ready {delivery.ready_at})")

    async def dequeue(self) -> Optional[QueuedDelivery]:
        """Pop the earliest ready delivery, or None if nothing is ready"""
        if not self._heap:
            return None

        ready_at, _, delivery = self._heap[0]
        if ready_at > utc_now().timestamp():
            return None

        heapq.heappop(self._heap)
        return delivery

    async def length(self) -> int:
        return len(self._heap)

    def pending(self) -> List[QueuedDelivery]:
        """Snapshot of queued deliveries in ready order"""
        return [entry[2] for entry in sorted(self._heap)]

    async def close(self) -> None:
        self._heap.clear()

    # Metrics and monitoring
    async def increment_metric(self, metric: str) -> None:
        self._metrics[metric] = self._metrics.get(metric, 0) + 1

    async def get_metric(self, metric: str) -> int:
        return self._metrics.get(metric, 0)

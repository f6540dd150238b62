"""Worker node that pulls workflow job deliveries from the queue."""
import asyncio
import logging
import os
import signal
import uuid
from datetime import timedelta
from typing import Optional, Set

from automation.core.dependencies import init_engine, shutdown_engine, get_queue
from shared.messages import QueuedDelivery
from shared.models import utc_now
from shared.enums import JobStatus

# Use LOG_LEVEL from environment, default to INFO
log_level = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(level=getattr(logging, log_level, logging.INFO))
logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 4
DEFAULT_POLL_INTERVAL = 0.5


class WorkerNode:
    """Consumes deliveries and hands them to the workflow runner.

    Up to ``concurrency`` deliveries run at once. A delivery whose run
    raises is pushed back with exponential backoff until its attempts are
    used up.
    """

    def __init__(self,
                 queue,
                 runner,
                 worker_id: Optional[str] = None,
                 concurrency: int = DEFAULT_CONCURRENCY,
                 poll_interval: float = DEFAULT_POLL_INTERVAL):
        """Initialize worker node."""
        self.worker_id = worker_id or f"worker-{uuid.uuid4().hex[:8]}"
        self.queue = queue
        self.runner = runner
        self.concurrency = max(concurrency, 1)
        self.poll_interval = poll_interval
        self.running = True
        self._tasks: Set[asyncio.Task] = set()

    async def handle_delivery(self, delivery: QueuedDelivery) -> None:
        """Run one delivery and apply the retry policy if it fails."""
        job_id = delivery.message.job_id
        try:
            status = await self.runner.process(delivery.message)
            if status is not None:
                logger.debug(f"[job:{job_id}] Delivery {delivery.id} left job "
                             f"{status.value}")
            if status == JobStatus.COMPLETED:
                await self.queue.increment_metric("jobs_completed")
        except Exception as e:
            await self.queue.increment_metric("jobs_failed")
            await self.retry(delivery, e)

    async def retry(self, delivery: QueuedDelivery, error: Exception) -> bool:
        """Push a failed delivery back if it has attempts left."""
        job_id = delivery.message.job_id
        attempts_made = delivery.attempts_made + 1
        if attempts_made >= delivery.options.attempts:
            logger.error(f"[job:{job_id}] Giving up after {attempts_made} "
                         f"attempt(s): {error}")
            return False

        delay_ms = delivery.options.backoff.delay_for(attempts_made)
        await self.queue.push(
            delivery.model_copy(
                update={
                    "attempts_made": attempts_made,
                    "ready_at": utc_now() + timedelta(milliseconds=delay_ms),
                }))
        logger.warning(f"[job:{job_id}] Attempt {attempts_made} failed ({error}); "
                       f"retrying in {delay_ms}ms")
        return True

    async def poll_once(self) -> bool:
        """Start one ready delivery if a slot is free; True if one started."""
        if len(self._tasks) >= self.concurrency:
            return False

        delivery = await self.queue.dequeue()
        if delivery is None:
            return False

        task = asyncio.create_task(self.handle_delivery(delivery))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    async def run(self):
        """Main worker loop."""
        logger.info(f"Worker {self.worker_id} started "
                    f"(concurrency {self.concurrency})")
        while self.running:
            try:
                started = await self.poll_once()
            except Exception as e:
                logger.error(f"Error polling queue: {e}")
                started = False
            if not started:
                await asyncio.sleep(self.poll_interval)

        if self._tasks:
            logger.info(f"Waiting for {len(self._tasks)} running job(s)")
            await asyncio.gather(*self._tasks, return_exceptions=True)
        logger.info(f"Worker {self.worker_id} stopped")

    async def shutdown(self):
        """Graceful shutdown."""
        logger.info("Shutting down worker...")
        self.running = False


def signal_handler(signum, frame):
    """Handle shutdown signals."""
    logger.info(f"Received signal {signum}")
    asyncio.get_running_loop().create_task(worker.shutdown())


async def main():
    """Main entry point."""
    global worker

    # Get configuration from environment
    redis_url = os.getenv("REDIS_URL")
    if not redis_url:
        logger.error("REDIS_URL is required for a standalone worker")
        return

    runner = await init_engine(
        database_url=os.getenv("DATABASE_URL"),
        redis_url=redis_url,
        messaging_concurrency=int(os.getenv("MESSAGING_CONCURRENCY", "5")),
        webhook_timeout=float(os.getenv("WEBHOOK_TIMEOUT_SECONDS", "10")))

    worker = WorkerNode(
        get_queue(),
        runner,
        worker_id=os.getenv("WORKER_ID"),
        concurrency=int(os.getenv("WORKER_CONCURRENCY", "4")),
        poll_interval=float(os.getenv("QUEUE_POLL_INTERVAL", "0.5")))

    # Set up signal handlers
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        await worker.run()
    finally:
        await shutdown_engine()


if __name__ == "__main__":
    asyncio.run(main())

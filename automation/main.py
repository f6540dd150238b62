from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import uvicorn
from automation.core.dependencies import init_engine, shutdown_engine, get_queue
from automation.api import workflows, health, events
from worker.main import WorkerNode
from contextlib import asynccontextmanager
import asyncio
import logging
import os

# Use LOG_LEVEL from environment, default to INFO
log_level = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(level=getattr(logging, log_level, logging.INFO))
logger = logging.getLogger(__name__)


def _embedded_worker_enabled(redis_url) -> bool:
    default = "false" if redis_url else "true"
    return os.getenv("RUN_EMBEDDED_WORKER", default).lower() in ("1", "true",
                                                                 "yes")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle."""
    database_url = os.getenv("DATABASE_URL")
    redis_url = os.getenv("REDIS_URL")

    if not (database_url or redis_url):
        logger.info("Running with in-memory store and queue")

    runner = await init_engine(
        database_url=database_url,
        redis_url=redis_url,
        messaging_concurrency=int(os.getenv("MESSAGING_CONCURRENCY", "5")),
        webhook_timeout=float(os.getenv("WEBHOOK_TIMEOUT_SECONDS", "10")))

    # Start background tasks
    worker = None
    worker_task = None
    if _embedded_worker_enabled(redis_url):
        worker = WorkerNode(
            get_queue(),
            runner,
            worker_id="embedded",
            concurrency=int(os.getenv("WORKER_CONCURRENCY", "4")),
            poll_interval=float(os.getenv("QUEUE_POLL_INTERVAL", "0.5")))
        worker_task = asyncio.create_task(worker.run())
    logger.info("Workflow automation API started")

    yield

    # Cleanup
    if worker is not None:
        await worker.shutdown()
        await worker_task
    await shutdown_engine()
    logger.info("Workflow automation API shutting down")


app = FastAPI(
    title="CRM Workflow Automation",
    description="Event-triggered workflow automation for CRM tenants",
    version="0.1.0",
    lifespan=lifespan)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health.router)
app.include_router(workflows.router)
app.include_router(events.router)

if __name__ == "__main__":
    uvicorn.run("automation.main:app", host="0.0.0.0", port=8000, reload=True)

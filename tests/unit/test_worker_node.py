"""Unit tests for the queue-consuming WorkerNode"""
import asyncio
import pytest
from typing import Callable
from unittest.mock import AsyncMock

from automation.core.queue import MemoryQueue, build_delivery, default_options
from worker.main import WorkerNode
from worker.runner import WorkflowRunner
from shared.enums import JobStatus
from shared.messages import QueueOptions, WorkflowJobMessage
from shared.models import utc_now


@pytest.fixture
def fake_runner() -> AsyncMock:
    runner = AsyncMock()
    runner.process.return_value = JobStatus.COMPLETED
    return runner


@pytest.fixture
def node(queue: MemoryQueue, fake_runner: AsyncMock) -> WorkerNode:
    return WorkerNode(queue, fake_runner, worker_id="worker-test",
                      poll_interval=0.01)


@pytest.mark.unit
class TestRetryPolicy:

    async def test_successful_delivery_counts_completion(
            self, node: WorkerNode, queue: MemoryQueue,
            fake_runner: AsyncMock) -> None:
        delivery = build_delivery(WorkflowJobMessage(job_id="job-1"))

        await node.handle_delivery(delivery)

        fake_runner.process.assert_awaited_once_with(delivery.message)
        assert await queue.get_metric("jobs_completed") == 1
        assert await queue.length() == 0

    async def test_waiting_delivery_is_not_a_completion(
            self, node: WorkerNode, queue: MemoryQueue,
            fake_runner: AsyncMock) -> None:
        fake_runner.process.return_value = JobStatus.WAITING

        await node.handle_delivery(
            build_delivery(WorkflowJobMessage(job_id="job-1")))

        assert await queue.get_metric("jobs_completed") == 0

    async def test_failure_requeues_with_backoff(
            self, node: WorkerNode, queue: MemoryQueue,
            fake_runner: AsyncMock) -> None:
        fake_runner.process.side_effect = RuntimeError("boom")
        delivery = build_delivery(WorkflowJobMessage(job_id="job-1"),
                                  default_options())
        before = utc_now()

        await node.handle_delivery(delivery)

        [retry] = queue.pending()
        assert retry.id == delivery.id
        assert retry.attempts_made == 1
        assert (retry.ready_at - before).total_seconds() >= 5
        assert await queue.get_metric("jobs_failed") == 1

    async def test_backoff_doubles(self, node: WorkerNode,
                                   queue: MemoryQueue) -> None:
        delivery = build_delivery(WorkflowJobMessage(job_id="job-1"),
                                  default_options(),
                                  attempts_made=1)
        before = utc_now()

        assert await node.retry(delivery, RuntimeError("boom"))

        [retry] = queue.pending()
        assert retry.attempts_made == 2
        assert (retry.ready_at - before).total_seconds() >= 10

    async def test_gives_up_after_last_attempt(self, node: WorkerNode,
                                               queue: MemoryQueue) -> None:
        delivery = build_delivery(WorkflowJobMessage(job_id="job-1"),
                                  QueueOptions(attempts=3),
                                  attempts_made=2)

        assert await node.retry(delivery, RuntimeError("boom")) is False
        assert await queue.length() == 0


@pytest.mark.unit
class TestPolling:

    async def test_poll_once_starts_ready_delivery(
            self, node: WorkerNode, queue: MemoryQueue,
            fake_runner: AsyncMock) -> None:
        await queue.enqueue(WorkflowJobMessage(job_id="job-1"))

        assert await node.poll_once() is True
        await asyncio.gather(*node._tasks)

        fake_runner.process.assert_awaited_once()

    async def test_poll_once_with_empty_queue(self, node: WorkerNode) -> None:
        assert await node.poll_once() is False

    async def test_respects_concurrency(self, queue: MemoryQueue) -> None:
        release = asyncio.Event()
        runner = AsyncMock()

        async def slow(message):
            await release.wait()
            return JobStatus.COMPLETED

        runner.process.side_effect = slow
        node = WorkerNode(queue, runner, concurrency=1)
        await queue.enqueue(WorkflowJobMessage(job_id="job-1"))
        await queue.enqueue(WorkflowJobMessage(job_id="job-2"))

        assert await node.poll_once() is True
        assert await node.poll_once() is False
        assert await queue.length() == 1

        release.set()
        await asyncio.gather(*node._tasks)

    async def test_run_until_shutdown(self, node: WorkerNode,
                                      queue: MemoryQueue,
                                      fake_runner: AsyncMock) -> None:
        await queue.enqueue(WorkflowJobMessage(job_id="job-1"))
        task = asyncio.create_task(node.run())

        for _ in range(100):
            if fake_runner.process.await_count:
                break
            await asyncio.sleep(0.01)
        await node.shutdown()
        await asyncio.wait_for(task, timeout=1)

        fake_runner.process.assert_awaited_once()


@pytest.mark.unit
async def test_worker_retries_failed_run(
        queue: MemoryQueue, runner: WorkflowRunner, start_job: Callable,
        workflow_factory: Callable, action_factory: Callable,
        state_manager) -> None:
    """Test a failing delivery is retried by the node and then completes"""
    actions = [action_factory(action_id="task")]
    message, job, _ = await start_job(workflow_factory(actions=actions))
    node = WorkerNode(queue, runner)
    original = runner.dispatcher.dispatch
    calls = []

    async def flaky(context):
        calls.append(context.action.id)
        if len(calls) == 1:
            raise RuntimeError("transient")
        return await original(context)

    runner.dispatcher.dispatch = flaky
    delivery = build_delivery(message, default_options())

    await node.handle_delivery(delivery)
    assert (await state_manager.get_job(job.id)).status == JobStatus.FAILED

    [retry] = queue.pending()
    await node.handle_delivery(retry)

    assert (await state_manager.get_job(job.id)).status == JobStatus.COMPLETED
    assert (await state_manager.get_latest_run(job.id)).attempt == 2

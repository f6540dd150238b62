"""Workflow runner: executes a job's ordered actions for one queue delivery"""
import logging
from typing import List, Optional, Tuple

from automation.core.event_bus import EventBus
from automation.core.job_lifecycle import JobLifecycle
from automation.core.queue import default_options
from worker.actions.base import ExecutionContext, load_evaluation_context
from worker.actions.wait import delay_to_ms
from worker.dispatcher import ActionDispatcher
from shared.enums import EventName, JobStatus
from shared.expressions import evaluate
from shared.messages import WorkflowJobMessage
from shared.models import Action, Job, JobRun

logger = logging.getLogger(__name__)

# Upper bound on actions executed in one pass; branches may jump backwards
MAX_STEPS_PER_PASS = 1000


class WorkflowLoopError(Exception):
    """Raised when a run executes more steps than one pass allows"""
    pass


class WorkflowRunner:
    """Runs one delivery of a workflow job.

    Nothing is kept between deliveries: the resume point comes from the
    queue message (``resumeAfterActionId`` after a wait action,
    ``delayedActionId`` after an action's delay) and everything else is
    read back from the store.
    """

    def __init__(self, store, queue, event_bus: EventBus,
                 dispatcher: ActionDispatcher):
        self.store = store
        self.queue = queue
        self.event_bus = event_bus
        self.dispatcher = dispatcher
        self.lifecycle = JobLifecycle(store)

    async def process(self, message: WorkflowJobMessage) -> Optional[JobStatus]:
        """Execute a job delivery.

        Args:
            message: The dequeued job message

        Returns:
            Optional[JobStatus]: Status the job was left in, or None when the
            delivery was dropped

        Raises:
            Exception: Whatever made the run fail, so the queue can retry
        """
        job = await self.store.get_job(message.job_id)
        if job is None:
            logger.error(f"[job:{message.job_id}] Job not found, dropping delivery")
            return None

        workflow = await self.store.get_workflow(job.tenant_id,
                                                 job.workflow_id,
                                                 include_deleted=True)
        if workflow is None:
            logger.error(f"[job:{job.id}] Workflow {job.workflow_id} not found, "
                         f"dropping delivery")
            return None

        run = await self.store.get_latest_run(job.id)
        if run is None:
            logger.error(f"[job:{job.id}] No job run found, dropping delivery")
            return None

        if job.status == JobStatus.COMPLETED:
            logger.warning(f"[job:{job.id}] Already completed, ignoring "
                           f"duplicate delivery")
            return JobStatus.COMPLETED

        if run.status == JobStatus.FAILED:
            run = await self.lifecycle.begin_retry(job, run)

        run = await self.lifecycle.start_run(job, run)
        actions = workflow.ordered_actions()
        logger.info(f"[job:{job.id}] Running workflow {workflow.id} "
                    f"({len(actions)} actions, attempt {run.attempt})")

        try:
            continuation = await self._run_actions(job, run, actions, message)
            if continuation is not None:
                # Waiting must be stored before the continuation is visible
                run = await self.lifecycle.mark_waiting(job, run)
                resume, delay_ms = continuation
                await self.queue.enqueue(resume, default_options(delay_ms))
        except Exception as e:
            error = str(e) or e.__class__.__name__
            logger.error(f"[job:{job.id}] Run {run.id} failed: {error}")
            await self.lifecycle.mark_failed(job, run, error)
            await self.event_bus.publish(
                EventName.JOB_FAILED, {
                    "tenantId": job.tenant_id,
                    "jobId": job.id,
                    "jobRunId": run.id,
                    "error": error,
                })
            raise

        if continuation is not None:
            logger.info(f"[job:{job.id}] Waiting for continuation")
            return JobStatus.WAITING

        await self.lifecycle.mark_completed(job, run)
        await self.event_bus.publish(EventName.JOB_COMPLETED, {
            "tenantId": job.tenant_id,
            "jobId": job.id,
            "jobRunId": run.id,
        })
        logger.info(f"[job:{job.id}] Completed")
        return JobStatus.COMPLETED

    async def _run_actions(self, job: Job, run: JobRun, actions: List[Action],
                           message: WorkflowJobMessage
                           ) -> Optional[Tuple[WorkflowJobMessage, int]]:
        """Execute actions from the resume point.

        Returns the continuation (message, delay in ms) when the pass
        suspended, None when it ran to the end.
        """
        positions = {action.id: idx for idx, action in enumerate(actions)}
        index = _start_index(positions, message)
        served_delay = message.delayed_action_id
        steps = 0

        while index < len(actions):
            steps += 1
            if steps > MAX_STEPS_PER_PASS:
                raise WorkflowLoopError(
                    f"Workflow exceeded {MAX_STEPS_PER_PASS} steps in one pass")

            action = actions[index]

            if action.condition is not None:
                context = await load_evaluation_context(
                    self.store, job.tenant_id, job.id, job.payload)
                if not evaluate(action.condition.expression, context):
                    logger.info(f"[job:{job.id}] Skipping action {action.id} "
                                f"({action.type}): condition not met")
                    index += 1
                    continue

            if action.delay is not None and action.id != served_delay:
                delay_ms = delay_to_ms(action.delay.delay_value,
                                       action.delay.delay_type)
                logger.info(f"[job:{job.id}] Delaying action {action.id} by "
                            f"{delay_ms}ms")
                return (WorkflowJobMessage(job_id=job.id,
                                           delayed_action_id=action.id),
                        delay_ms)
            served_delay = None

            result = await self.dispatcher.dispatch(
                ExecutionContext(tenant_id=job.tenant_id,
                                 job_id=job.id,
                                 job_run_id=run.id,
                                 trigger_payload=job.payload,
                                 action=action))

            if result.suspended:
                return (WorkflowJobMessage(job_id=job.id,
                                           resume_after_action_id=action.id),
                        result.resume_in_ms)

            if result.next_action_id is not None:
                target = positions.get(result.next_action_id)
                if target is not None:
                    index = target
                    continue
                logger.warning(f"[job:{job.id}] Branch target "
                               f"{result.next_action_id} not found, "
                               f"continuing in order")

            index += 1

        return None


def _start_index(positions, message: WorkflowJobMessage) -> int:
    if message.resume_after_action_id:
        idx = positions.get(message.resume_after_action_id)
        return idx + 1 if idx is not None else 0
    if message.delayed_action_id:
        return positions.get(message.delayed_action_id, 0)
    return 0

"""Creation and status transitions for jobs and their runs"""
import logging
from typing import Any, Dict, Optional, Tuple

from shared.enums import JobStatus
from shared.models import Job, JobRun, utc_now

logger = logging.getLogger(__name__)


class JobLifecycle:
    """Persists jobs and job runs and moves them through their states.

    A job and its latest run always move together: the run is written
    first and the job status is the last write of every transition.
    """

    def __init__(self, store):
        self.store = store

    async def create_job(self, tenant_id: str, workflow_id: str,
                         trigger_id: Optional[str],
                         payload: Dict[str, Any]) -> Tuple[Job, JobRun]:
        """Persist a pending job and its first run (attempt 1).

        Args:
            tenant_id: Tenant that owns the workflow
            workflow_id: Workflow being fired
            trigger_id: Trigger that matched, if any
            payload: Event payload captured once and never changed

        Returns:
            Tuple[Job, JobRun]: The stored job and its initial run
        """
        job = await self.store.add_job(
            Job(tenant_id=tenant_id,
                workflow_id=workflow_id,
                trigger_id=trigger_id,
                payload=dict(payload)))
        run = await self.store.add_job_run(
            JobRun(job_id=job.id, attempt=1, status=JobStatus.PENDING))
        logger.debug(f"Created job {job.id} (run {run.id}) for workflow "
                     f"{workflow_id}")
        return job, run

    async def begin_retry(self, job: Job, previous: JobRun) -> JobRun:
        """Open a new attempt after a failed run"""
        run = await self.store.add_job_run(
            JobRun(job_id=job.id,
                   attempt=previous.attempt + 1,
                   status=JobStatus.PENDING))
        logger.info(f"[job:{job.id}] Retrying as attempt {run.attempt}")
        return run

    async def start_run(self, job: Job, run: JobRun) -> JobRun:
        """Mark a run and its job running; started_at is kept across resumes"""
        fields: Dict[str, Any] = {"status": JobStatus.RUNNING}
        if run.started_at is None:
            fields["started_at"] = utc_now()
        run = await self.store.update_job_run(run.id, **fields)
        await self.store.set_job_status(job.id, JobStatus.RUNNING)
        return run

    async def mark_waiting(self, job: Job, run: JobRun) -> JobRun:
        run = await self.store.update_job_run(run.id, status=JobStatus.WAITING)
        await self.store.set_job_status(job.id, JobStatus.WAITING)
        return run

    async def mark_completed(self, job: Job, run: JobRun) -> JobRun:
        run = await self.store.update_job_run(run.id,
                                              status=JobStatus.COMPLETED,
                                              finished_at=utc_now())
        await self.store.set_job_status(job.id, JobStatus.COMPLETED)
        return run

    async def mark_failed(self, job: Job, run: JobRun, error: str) -> JobRun:
        run = await self.store.update_job_run(run.id,
                                              status=JobStatus.FAILED,
                                              finished_at=utc_now(),
                                              error=error)
        await self.store.set_job_status(job.id, JobStatus.FAILED)
        return run

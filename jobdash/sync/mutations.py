"""
Mutations and the cache entries each one invalidates.

    create / update / delete / enable / disable  -> ("jobs",)
    run now / cancel                             -> ("runs", "job", id), ("runs", "list")

Invalidation always happens after the mutation's own response, so the
re-fetch observes the change.
"""

from __future__ import annotations

import logging
from typing import Awaitable, List, TypeVar

from jobdash.core.exceptions import AppException, MutationException, UnauthorizedException
from jobdash.jobs.models import CreateJobRequest, JobSpec, UpdateJobRequest
from jobdash.jobs.service import JobsService
from jobdash.runs.models import JobRun
from jobdash.runs.service import RunsService
from jobdash.sync.engine import QueryKey, SyncEngine
from jobdash.sync.queries import JOBS_KEY, RUNS_LIST_PREFIX, job_runs_key

logger = logging.getLogger(__name__)

T = TypeVar("T")


def runs_keys_for_job(job_id: str) -> List[QueryKey]:
    return [job_runs_key(job_id), RUNS_LIST_PREFIX]


class MutationService:
    """Runs mutations and invalidates exactly the collections they touch."""

    def __init__(self, engine: SyncEngine, jobs: JobsService, runs: RunsService, wait_for_refetch: bool = False):
        self.engine = engine
        self.jobs = jobs
        self.runs = runs
        self.wait_for_refetch = wait_for_refetch

    async def _call(self, action: str, call: Awaitable[T]) -> T:
        try:
            return await call
        except UnauthorizedException:
            raise
        except AppException as e:
            logger.warning(f"{action} rejected: {e.detail}")
            raise MutationException(e.detail, e.status_code) from e

    async def _invalidate(self, *keys: QueryKey) -> None:
        await self.engine.invalidate(*keys, wait=self.wait_for_refetch)

    # ==================== Jobs ====================

    async def create_job(self, body: CreateJobRequest) -> JobSpec:
        job = await self._call("Create job", self.jobs.create_job(body))
        logger.info(f"Created job {job.id} ({job.name})")
        await self._invalidate(JOBS_KEY)
        return job

    async def update_job(self, job_id: str, body: UpdateJobRequest) -> JobSpec:
        job = await self._call("Update job", self.jobs.update_job(job_id, body))
        await self._invalidate(JOBS_KEY)
        return job

    async def delete_job(self, job_id: str) -> None:
        await self._call("Delete job", self.jobs.delete_job(job_id))
        logger.info(f"Deleted job {job_id}")
        await self._invalidate(JOBS_KEY)

    async def enable_job(self, job_id: str) -> JobSpec:
        job = await self._call("Enable job", self.jobs.enable_job(job_id))
        await self._invalidate(JOBS_KEY)
        return job

    async def disable_job(self, job_id: str) -> JobSpec:
        job = await self._call("Disable job", self.jobs.disable_job(job_id))
        await self._invalidate(JOBS_KEY)
        return job

    async def set_job_enabled(self, job_id: str, enabled: bool) -> JobSpec:
        if enabled:
            return await self.enable_job(job_id)
        return await self.disable_job(job_id)

    # ==================== Runs ====================

    async def run_job_now(self, job_id: str) -> JobRun:
        run = await self._call("Run job", self.jobs.run_job_now(job_id))
        logger.info(f"Triggered run {run.id} for job {job_id}")
        await self._invalidate(*runs_keys_for_job(job_id))
        return run

    async def rerun(self, run: JobRun) -> JobRun:
        """Start a fresh run of the run's job. Not offered for pending runs."""
        if not run.can_rerun:
            raise MutationException(f"Run {run.id} is still queued")
        return await self.run_job_now(run.job_id)

    async def cancel_run(self, run: JobRun) -> None:
        if not run.can_cancel:
            raise MutationException(f"Only queued runs can be cancelled (run is {run.state.value})")
        await self._call("Cancel run", self.runs.cancel_run(run.id))
        logger.info(f"Cancelled run {run.id}")
        await self._invalidate(*runs_keys_for_job(run.job_id))

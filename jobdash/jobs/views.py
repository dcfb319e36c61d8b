"""Job coordinators - the jobs table with its row actions, and the job detail panel."""

from __future__ import annotations

from typing import Dict, List, Optional

from cron_descriptor import FormatException, MissingFieldException, WrongArgumentException, get_description

from jobdash.core.exceptions import MutationException, UnauthorizedException
from jobdash.jobs.forms import JobForm, is_valid_cron
from jobdash.jobs.misfire import safe_label
from jobdash.jobs.models import JobSpec
from jobdash.jobs.service import JobsService
from jobdash.runs.models import JobRun
from jobdash.runs.service import RunsService
from jobdash.sync.engine import SyncEngine
from jobdash.sync.mutations import MutationService
from jobdash.sync.queries import JOBS_KEY, job_query, job_runs_query, jobs_query


NO_SCHEDULE_TEXT = "Not scheduled"
MACRO_DESCRIPTIONS = {
    "@yearly": "Once a year, at midnight on January 1",
    "@annually": "Once a year, at midnight on January 1",
    "@monthly": "At midnight on the first day of every month",
    "@weekly": "At midnight every Sunday",
    "@daily": "Every day at midnight",
    "@midnight": "Every day at midnight",
    "@hourly": "At the start of every hour",
}


def describe_schedule(expr: Optional[str]) -> str:
    """Cron expression in words ("At 02:30 AM"). Unreadable expressions are shown as-is."""
    expr = (expr or "").strip()
    if not expr:
        return NO_SCHEDULE_TEXT
    if expr.startswith("@"):
        return MACRO_DESCRIPTIONS.get(expr.lower(), expr)
    if not is_valid_cron(expr):
        return expr
    try:
        return get_description(expr)
    except (FormatException, MissingFieldException, WrongArgumentException):
        return expr


class JobsListView:
    """Jobs table: cached list plus per-row action errors."""

    def __init__(self, engine: SyncEngine, jobs: JobsService, mutations: MutationService):
        self.mutations = mutations
        self.subscription = engine.subscribe(jobs_query(jobs))
        self.action_errors: Dict[str, str] = {}

    @property
    def jobs(self) -> List[JobSpec]:
        return list(self.subscription.data or [])

    @property
    def is_loading(self) -> bool:
        result = self.subscription.result
        return result.is_pending and not result.has_data

    @property
    def error(self) -> Optional[str]:
        result = self.subscription.result
        return result.error.detail if result.error else None

    @property
    def counts(self) -> Dict[str, int]:
        enabled = sum(1 for job in self.jobs if job.enabled)
        return {"enabled": enabled, "disabled": len(self.jobs) - enabled}

    def rows(self) -> List[dict]:
        return [
            {
                "id": job.id,
                "name": job.name,
                "schedule": job.schedule_cron or "—",
                "command": job.command,
                "enabled": job.enabled,
                "max_concurrency": job.max_concurrency,
                "misfire_policy": safe_label(job.misfire_policy),
                "error": self.action_errors.get(job.id),
            }
            for job in self.jobs
        ]

    def find(self, job_id: str) -> Optional[JobSpec]:
        return next((job for job in self.jobs if job.id == job_id), None)

    # ==================== Actions ====================

    async def _act(self, job_id: str, action) -> bool:
        self.action_errors.pop(job_id, None)
        try:
            await action
        except UnauthorizedException:
            return False
        except MutationException as e:
            self.action_errors[job_id] = e.detail
            return False
        return True

    async def toggle_enabled(self, job: JobSpec) -> bool:
        return await self._act(job.id, self.mutations.set_job_enabled(job.id, not job.enabled))

    async def run_now(self, job_id: str) -> bool:
        return await self._act(job_id, self.mutations.run_job_now(job_id))

    async def delete(self, job_id: str, confirmed: bool = False) -> bool:
        """Delete a job. The caller must have asked the user first."""
        if not confirmed:
            return False
        return await self._act(job_id, self.mutations.delete_job(job_id))

    async def refresh(self) -> bool:
        return await self.subscription.refresh()

    def create_form(self) -> JobForm:
        return JobForm(self.mutations, existing_jobs=self.jobs)

    def edit_form(self, job: JobSpec) -> JobForm:
        return JobForm(self.mutations, existing_jobs=self.jobs, initial=job)

    def close(self) -> None:
        self.subscription.close()


class JobDetailView:
    """One job with its recent runs, schedule in words and the job actions."""

    def __init__(
        self,
        engine: SyncEngine,
        jobs: JobsService,
        runs: RunsService,
        mutations: MutationService,
        job_id: str,
    ):
        self.engine = engine
        self.mutations = mutations
        self.job_id = job_id
        self.subscription = engine.subscribe(job_query(jobs, job_id))
        self.runs_subscription = engine.subscribe(job_runs_query(runs, job_id))
        self.action_error: Optional[str] = None
        self.deleted = False

    # ==================== Data ====================

    @property
    def job(self) -> Optional[JobSpec]:
        return self.subscription.data

    @property
    def runs(self) -> List[JobRun]:
        return list(self.runs_subscription.data or [])

    @property
    def is_loading(self) -> bool:
        result = self.subscription.result
        return result.is_pending and not result.has_data

    @property
    def runs_loading(self) -> bool:
        result = self.runs_subscription.result
        return result.is_pending and not result.has_data

    @property
    def error(self) -> Optional[str]:
        result = self.subscription.result
        return result.error.detail if result.error else None

    @property
    def runs_error(self) -> Optional[str]:
        result = self.runs_subscription.result
        return result.error.detail if result.error else None

    @property
    def schedule(self) -> str:
        return (self.job.schedule_cron if self.job else None) or "—"

    @property
    def schedule_text(self) -> str:
        return describe_schedule(self.job.schedule_cron if self.job else None)

    @property
    def command(self) -> str:
        return (self.job.command if self.job else None) or ""

    @property
    def misfire_label(self) -> str:
        return safe_label(self.job.misfire_policy) if self.job else ""

    # ==================== Actions ====================

    async def _act(self, action) -> bool:
        self.action_error = None
        try:
            await action
        except UnauthorizedException:
            return False
        except MutationException as e:
            self.action_error = e.detail
            return False
        return True

    async def toggle_enabled(self) -> bool:
        if self.job is None:
            return False
        return await self._act(self.mutations.set_job_enabled(self.job_id, not self.job.enabled))

    async def run_now(self) -> bool:
        return await self._act(self.mutations.run_job_now(self.job_id))

    async def delete(self, confirmed: bool = False) -> bool:
        """Delete the job and close the panel. The caller must have asked the user first."""
        if not confirmed:
            return False
        if not await self._act(self.mutations.delete_job(self.job_id)):
            return False
        self.deleted = True
        self.close()
        return True

    async def refresh(self) -> bool:
        refreshed = await self.subscription.refresh()
        return await self.runs_subscription.refresh() or refreshed

    def edit_form(self) -> Optional[JobForm]:
        if self.job is None:
            return None
        existing = self.engine.get(JOBS_KEY).data or [self.job]
        return JobForm(self.mutations, existing_jobs=existing, initial=self.job)

    def close(self) -> None:
        self.subscription.close()
        self.runs_subscription.close()

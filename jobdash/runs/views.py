"""Run coordinators: the runs page, per-job history, and run detail."""

from __future__ import annotations

from typing import Dict, List, Optional

from jobdash.core.config import get_settings
from jobdash.core.exceptions import MutationException, UnauthorizedException
from jobdash.jobs.models import JobSpec, jobs_by_id, job_name_for
from jobdash.jobs.service import JobsService
from jobdash.runs.models import JobRun, ListRunsQuery, find_run, run_command
from jobdash.runs.service import RunsService
from jobdash.sync.engine import Subscription, SyncEngine
from jobdash.sync.mutations import MutationService
from jobdash.sync.queries import (
    MANUAL_REFRESH,
    job_runs_query,
    jobs_query,
    runs_query,
    validate_poll_interval,
    workers_query,
)
from jobdash.workers.models import WorkerRecord
from jobdash.workers.service import WorkersService


UNKNOWN_WORKER_NAME = "—"


def _error(subscription: Subscription) -> Optional[str]:
    result = subscription.result
    return result.error.detail if result.error else None


class RunDetailView:
    """One run, rendered from the snapshot taken at dispatch time."""

    def __init__(self, run: JobRun, jobs: Optional[List[JobSpec]], mutations: MutationService):
        self.run = run
        self.jobs = jobs or []
        self.mutations = mutations
        self.action_error: Optional[str] = None

    @property
    def job_name(self) -> str:
        return job_name_for(self.run.job_id, self.jobs)

    @property
    def command(self) -> Optional[str]:
        return run_command(self.run)

    @property
    def state_label(self) -> str:
        return self.run.state.label

    @property
    def can_rerun(self) -> bool:
        return self.run.can_rerun

    @property
    def can_cancel(self) -> bool:
        return self.run.can_cancel

    async def _act(self, action) -> Optional[JobRun]:
        self.action_error = None
        try:
            return await action
        except UnauthorizedException:
            return None
        except MutationException as e:
            self.action_error = e.detail
            return None

    async def rerun(self) -> Optional[JobRun]:
        return await self._act(self.mutations.rerun(self.run))

    async def cancel(self) -> bool:
        await self._act(self.mutations.cancel_run(self.run))
        return self.action_error is None


class JobRunHistoryView:
    """Recent runs of a single job, shown on the job's detail panel."""

    def __init__(self, engine: SyncEngine, runs: RunsService, job_id: str):
        self.job_id = job_id
        self.subscription = engine.subscribe(job_runs_query(runs, job_id))

    @property
    def runs(self) -> List[JobRun]:
        return list(self.subscription.data or [])

    @property
    def error(self) -> Optional[str]:
        return _error(self.subscription)

    @property
    def is_loading(self) -> bool:
        result = self.subscription.result
        return result.is_pending and not result.has_data

    def close(self) -> None:
        self.subscription.close()


class RunsView:
    """The runs page: filters, poll rate, manual refresh and selection."""

    def __init__(
        self,
        engine: SyncEngine,
        runs: RunsService,
        jobs: JobsService,
        workers: WorkersService,
        mutations: MutationService,
        poll_ms: Optional[int] = None,
    ):
        settings = get_settings()
        self.engine = engine
        self.runs_service = runs
        self.mutations = mutations
        self.poll_ms = validate_poll_interval(settings.RUNS_POLL_MS if poll_ms is None else poll_ms)
        self.limit = settings.RUNS_LIST_LIMIT
        self.filter_job_id: Optional[str] = None
        self.filter_worker_id: Optional[str] = None
        self.selected_id: Optional[str] = None

        self.jobs_subscription = engine.subscribe(jobs_query(jobs))
        self.workers_subscription = engine.subscribe(workers_query(workers))
        self.subscription = self._subscribe_runs()

    def _query(self) -> ListRunsQuery:
        return ListRunsQuery(
            by_job_id=self.filter_job_id,
            by_worker_id=self.filter_worker_id,
            limit=self.limit,
        )

    def _subscribe_runs(self) -> Subscription:
        return self.engine.subscribe(runs_query(self.runs_service, self._query(), self.poll_ms))

    # ==================== Controls ====================

    def set_filters(self, job_id: Optional[str] = None, worker_id: Optional[str] = None) -> None:
        if (job_id, worker_id) == (self.filter_job_id, self.filter_worker_id):
            return
        self.filter_job_id = job_id
        self.filter_worker_id = worker_id
        old = self.subscription
        self.subscription = self._subscribe_runs()
        old.close()

    def set_poll_ms(self, poll_ms: int) -> None:
        """Change the update rate; 0 turns polling off (manual refresh only)."""
        self.poll_ms = validate_poll_interval(poll_ms)
        self.subscription.set_interval(self.poll_ms)

    @property
    def is_manual(self) -> bool:
        return self.poll_ms == MANUAL_REFRESH

    async def refresh(self) -> bool:
        """Manual refresh; a no-op while a fetch is already in flight."""
        return await self.subscription.refresh()

    def select(self, run_id: Optional[str]) -> None:
        self.selected_id = run_id

    # ==================== Data ====================

    @property
    def runs(self) -> List[JobRun]:
        return list(self.subscription.data or [])

    @property
    def jobs(self) -> List[JobSpec]:
        return list(self.jobs_subscription.data or [])

    @property
    def workers(self) -> List[WorkerRecord]:
        return list(self.workers_subscription.data or [])

    @property
    def is_loading(self) -> bool:
        result = self.subscription.result
        return result.is_pending and not result.has_data

    @property
    def error(self) -> Optional[str]:
        return _error(self.subscription)

    @property
    def errors(self) -> Dict[str, str]:
        """Transient banners, one per collection that failed its last fetch."""
        found = {
            "runs": _error(self.subscription),
            "jobs": _error(self.jobs_subscription),
            "workers": _error(self.workers_subscription),
        }
        return {name: message for name, message in found.items() if message}

    @property
    def selected(self) -> Optional[RunDetailView]:
        run = find_run(self.runs, self.selected_id)
        if run is None:
            return None
        return RunDetailView(run, self.jobs, self.mutations)

    def worker_name(self, worker_id: Optional[str]) -> str:
        worker = next((w for w in self.workers if w.id == worker_id), None)
        return worker.display_name if worker else UNKNOWN_WORKER_NAME

    def rows(self) -> List[dict]:
        jobs = jobs_by_id(self.jobs)
        return [
            {
                "id": run.id,
                "job": job_name_for(run.job_id, jobs),
                "state": run.state.label,
                "worker": self.worker_name(run.worker_id),
                "scheduled_for": run.scheduled_for,
                "started_at": run.started_at,
                "finished_at": run.finished_at,
                "exit_code": run.exit_code,
                "selected": run.id == self.selected_id,
            }
            for run in self.runs
        ]

    def close(self) -> None:
        self.subscription.close()
        self.jobs_subscription.close()
        self.workers_subscription.close()

"""Home page counters: jobs, workers and runs of the last hour."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Optional

from jobdash.core.config import get_settings
from jobdash.core.schemas import utcnow
from jobdash.jobs.service import JobsService
from jobdash.runs.models import JobRunState, ListRunsQuery
from jobdash.runs.service import RunsService
from jobdash.sync.engine import SyncEngine
from jobdash.sync.queries import jobs_query, runs_query, workers_query
from jobdash.workers.models import summarize_workers
from jobdash.workers.service import WorkersService


@dataclass(frozen=True)
class DashboardSummary:
    jobs_total: Optional[int]
    jobs_enabled: int
    jobs_disabled: int
    workers_total: Optional[int]
    workers_online: int
    workers_offline: int
    runs_succeeded: int
    runs_failed: int
    runs_in_progress: int


class DashboardSummaryView:
    """Counters relative to the moment the page was opened.

    The load time is frozen so the recent-runs window and worker liveness do
    not drift while the page stays open.
    """

    def __init__(
        self,
        engine: SyncEngine,
        jobs: JobsService,
        runs: RunsService,
        workers: WorkersService,
        loaded_at: Optional[datetime] = None,
    ):
        settings = get_settings()
        self.loaded_at = loaded_at or utcnow()
        self.threshold_ms = settings.WORKER_LIVENESS_THRESHOLD_MS
        after = self.loaded_at - timedelta(minutes=settings.DASHBOARD_RECENT_WINDOW_MINUTES)

        self.jobs_subscription = engine.subscribe(jobs_query(jobs))
        self.runs_subscription = engine.subscribe(runs_query(runs, ListRunsQuery(after=after)))
        self.workers_subscription = engine.subscribe(workers_query(workers))

    @property
    def errors(self) -> Dict[str, str]:
        found = {
            "jobs": self.jobs_subscription.result.error,
            "runs": self.runs_subscription.result.error,
            "workers": self.workers_subscription.result.error,
        }
        return {name: e.detail for name, e in found.items() if e is not None}

    @property
    def error(self) -> Optional[str]:
        return next(iter(self.errors.values()), None)

    def summary(self) -> DashboardSummary:
        jobs = self.jobs_subscription.data
        runs = self.runs_subscription.data or []
        workers = self.workers_subscription.data

        enabled = sum(1 for job in jobs or [] if job.enabled)
        liveness = summarize_workers(workers, self.loaded_at, self.threshold_ms)

        return DashboardSummary(
            jobs_total=len(jobs) if jobs is not None else None,
            jobs_enabled=enabled,
            jobs_disabled=len(jobs or []) - enabled,
            workers_total=len(workers) if workers is not None else None,
            workers_online=liveness.online,
            workers_offline=liveness.offline,
            runs_succeeded=sum(1 for r in runs if r.state == JobRunState.SUCCEEDED),
            runs_failed=sum(1 for r in runs if r.state == JobRunState.FAILED),
            runs_in_progress=sum(1 for r in runs if r.state in (JobRunState.RUNNING, JobRunState.QUEUED)),
        )

    def close(self) -> None:
        self.jobs_subscription.close()
        self.runs_subscription.close()
        self.workers_subscription.close()

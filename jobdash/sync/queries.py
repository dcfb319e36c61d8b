"""Query keys, refresh intervals and query factories for each collection."""

from __future__ import annotations

from dataclasses import dataclass
from functools import partial
from typing import Optional

from jobdash.core.config import get_settings
from jobdash.core.exceptions import ValidationException
from jobdash.jobs.service import JobsService
from jobdash.runs.models import ListRunsQuery
from jobdash.runs.service import RunsService
from jobdash.sync.engine import Query, QueryKey
from jobdash.workers.service import WorkersService


JOBS_KEY: QueryKey = ("jobs",)
WORKERS_KEY: QueryKey = ("workers",)
RUNS_PREFIX: QueryKey = ("runs",)
RUNS_LIST_PREFIX: QueryKey = ("runs", "list")


def job_key(job_id: str) -> QueryKey:
    return ("jobs", job_id)


def job_runs_key(job_id: str) -> QueryKey:
    return ("runs", "job", job_id)


def runs_list_key(query: ListRunsQuery) -> QueryKey:
    return RUNS_LIST_PREFIX + (query.cache_key_part(),)


# ==================== Runs poll rates ====================

@dataclass(frozen=True)
class PollOption:
    ms: int
    label: str
    description: str


POLL_OPTIONS = (
    PollOption(200, "0.2s", "Spammy"),
    PollOption(1_000, "1s", "Fast"),
    PollOption(2_000, "2s", "Normal"),
    PollOption(10_000, "10s", "Chill"),
    PollOption(0, "Off", "I'll do it myself"),
)
MANUAL_REFRESH = 0


def validate_poll_interval(interval_ms: int) -> int:
    if interval_ms not in {opt.ms for opt in POLL_OPTIONS}:
        raise ValidationException(f"Unsupported poll rate: {interval_ms}ms", field="poll_ms")
    return interval_ms


# ==================== Factories ====================

def jobs_query(jobs: JobsService) -> Query:
    return Query(JOBS_KEY, jobs.fetch_jobs, get_settings().JOBS_POLL_MS)


def job_query(jobs: JobsService, job_id: str) -> Query:
    return Query(job_key(job_id), partial(jobs.fetch_job, job_id), get_settings().JOBS_POLL_MS)


def workers_query(workers: WorkersService) -> Query:
    return Query(WORKERS_KEY, workers.fetch_workers, get_settings().WORKERS_POLL_MS)


def job_runs_query(runs: RunsService, job_id: str) -> Query:
    """Run history of one job, refreshed slowly."""
    query = ListRunsQuery(by_job_id=job_id)
    return Query(job_runs_key(job_id), partial(runs.fetch_runs, query), get_settings().JOB_RUNS_POLL_MS)


def runs_query(runs: RunsService, query: ListRunsQuery, interval_ms: Optional[int] = None) -> Query:
    """The general runs list; ``interval_ms`` must be one of POLL_OPTIONS."""
    interval = get_settings().RUNS_POLL_MS if interval_ms is None else validate_poll_interval(interval_ms)
    return Query(runs_list_key(query), partial(runs.fetch_runs, query), interval)

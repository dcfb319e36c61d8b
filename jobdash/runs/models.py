"""Job run models, run predicates and the runs list query."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, Iterable, Literal, Optional, Union

from pydantic import BaseModel, Field, PlainSerializer, PlainValidator, ValidationError, field_validator

from jobdash.core.schemas import CamelModel, ensure_utc
from jobdash.jobs.models import JobSpec, job_name_for


class JobRunState(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"

    @classmethod
    def _missing_(cls, value: object) -> "JobRunState":
        # Newer servers may add states; render them as unknown instead of failing the list.
        return cls.UNKNOWN

    @property
    def label(self) -> str:
        return self.value.capitalize()


FINISHED_STATES = frozenset({JobRunState.SUCCEEDED, JobRunState.FAILED})
TERMINAL_STATES = frozenset({JobRunState.SUCCEEDED, JobRunState.FAILED, JobRunState.CANCELLED})


# ==================== Snapshot ====================

class ShellSnapshot(CamelModel):
    type: Literal["shell"] = "shell"
    command: str
    working_dir: Optional[str] = None
    env: Dict[str, str] = Field(default_factory=dict)


class UnknownSnapshot(BaseModel):
    type: str = "unknown"
    raw: Any = None


SnapshotMeta = Union[ShellSnapshot, UnknownSnapshot]


def parse_snapshot_meta(value: Any) -> SnapshotMeta:
    if isinstance(value, (ShellSnapshot, UnknownSnapshot)):
        return value
    if isinstance(value, dict) and value.get("type") == "shell":
        try:
            return ShellSnapshot.model_validate(value)
        except ValidationError:
            pass
    kind = value.get("type") if isinstance(value, dict) else None
    return UnknownSnapshot(type=str(kind or "unknown"), raw=value)


def snapshot_meta_to_wire(meta: SnapshotMeta) -> Any:
    if isinstance(meta, ShellSnapshot):
        return meta.model_dump(by_alias=True)
    return meta.raw


class RunSnapshot(CamelModel):
    """Runner configuration captured when the run was dispatched."""
    name: Optional[str] = None
    job_name: str
    meta: Annotated[
        SnapshotMeta,
        PlainValidator(parse_snapshot_meta),
        PlainSerializer(snapshot_meta_to_wire),
    ]


# ==================== Job run ====================

class JobRun(CamelModel):
    """One execution of a job."""
    id: str
    job_id: str
    worker_id: Optional[str] = None
    state: JobRunState
    scheduled_for: Optional[datetime] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    exit_code: Optional[int] = None
    output: Optional[str] = None
    error_output: Optional[str] = None
    snapshot: Optional[RunSnapshot] = None

    @field_validator("state", mode="before")
    @classmethod
    def _coerce_state(cls, v: Any) -> Any:
        if isinstance(v, str):
            return JobRunState(v)
        return v

    @field_validator("scheduled_for", "started_at", "finished_at")
    @classmethod
    def _as_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v)

    @property
    def is_pending(self) -> bool:
        return self.state == JobRunState.QUEUED

    @property
    def is_finished(self) -> bool:
        return self.state in FINISHED_STATES

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def can_cancel(self) -> bool:
        """Only queued runs can be cancelled from the client."""
        return self.is_pending

    @property
    def can_rerun(self) -> bool:
        return not self.is_pending

    @property
    def command(self) -> Optional[str]:
        """The command that actually ran, from the dispatch snapshot."""
        if self.snapshot is not None and isinstance(self.snapshot.meta, ShellSnapshot):
            return self.snapshot.meta.command
        return None

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.started_at is None or self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()


def run_command(run: JobRun) -> Optional[str]:
    return run.command


def job_name_for_run(run: JobRun, jobs: Optional[Iterable[JobSpec]]) -> str:
    """Name of the run's job, ``<Unknown Job>`` if deleted or not loaded yet."""
    return job_name_for(run.job_id, jobs)


def find_run(runs: Optional[Iterable[JobRun]], run_id: Optional[str]) -> Optional[JobRun]:
    if run_id is None:
        return None
    return next((run for run in runs or () if run.id == run_id), None)


# ==================== Query ====================

class ListRunsQuery(BaseModel):
    """Filters for GET /runs."""
    by_job_id: Optional[str] = None
    by_worker_id: Optional[str] = None
    limit: Optional[int] = Field(default=None, ge=1)
    after: Optional[datetime] = None
    before: Optional[datetime] = None

    def to_params(self) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "byJobId": self.by_job_id,
            "byWorkerId": self.by_worker_id,
            "limit": self.limit,
            "after": self.after.isoformat() if self.after else None,
            "before": self.before.isoformat() if self.before else None,
        }
        return {k: v for k, v in params.items() if v is not None}

    def cache_key_part(self) -> tuple:
        return tuple(sorted(self.to_params().items()))

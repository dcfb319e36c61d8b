"""Job definition models and schemas."""

from __future__ import annotations

from typing import Annotated, Any, Dict, Iterable, Literal, Optional, Union

from pydantic import BaseModel, Field, PlainSerializer, PlainValidator, ValidationError

from jobdash.core.schemas import CamelModel
from jobdash.jobs.misfire import MisfirePolicy, RunImmediately, parse_wire, to_wire


UNKNOWN_JOB_NAME = "<Unknown Job>"

MisfirePolicyField = Annotated[
    MisfirePolicy,
    PlainValidator(parse_wire),
    PlainSerializer(to_wire),
]


# ==================== Runner config ====================

class ShellRunner(CamelModel):
    """Run a shell command on a worker."""
    type: Literal["shell"] = "shell"
    command: str
    working_dir: Optional[str] = None


class UnknownRunner(BaseModel):
    """Any runner kind this client does not model (http, pgsql, python...)."""
    type: str = "unknown"
    raw: Any = None


RunnerConfig = Union[ShellRunner, UnknownRunner]


def parse_runner(value: Any) -> RunnerConfig:
    if isinstance(value, (ShellRunner, UnknownRunner)):
        return value
    if isinstance(value, dict) and value.get("type") == "shell":
        try:
            return ShellRunner.model_validate(value)
        except ValidationError:
            pass
    kind = value.get("type") if isinstance(value, dict) else None
    return UnknownRunner(type=str(kind or "unknown"), raw=value)


def runner_to_wire(cfg: RunnerConfig) -> Any:
    if isinstance(cfg, ShellRunner):
        return cfg.model_dump(by_alias=True)
    return cfg.raw


RunnerConfigField = Annotated[
    RunnerConfig,
    PlainValidator(parse_runner),
    PlainSerializer(runner_to_wire),
]


# ==================== Job spec ====================

class JobSpec(CamelModel):
    """A job definition as the backend returns it."""
    id: str
    name: str = Field(..., min_length=1)
    schedule_cron: Optional[str] = None
    enabled: bool = True
    runner_cfg: RunnerConfigField
    max_concurrency: int = Field(default=1, ge=1)
    misfire_policy: MisfirePolicyField = Field(default_factory=RunImmediately)

    @property
    def command(self) -> Optional[str]:
        if isinstance(self.runner_cfg, ShellRunner):
            return self.runner_cfg.command
        return None

    @property
    def working_dir(self) -> Optional[str]:
        if isinstance(self.runner_cfg, ShellRunner):
            return self.runner_cfg.working_dir
        return None


class CreateJobRequest(BaseModel):
    """Body of POST /jobs. The backend reads these keys in snake_case."""
    name: str
    schedule_cron: Optional[str] = None
    command: str
    max_concurrency: Optional[int] = Field(default=None, ge=1)
    misfire_policy: Optional[MisfirePolicyField] = None

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


class UpdateJobRequest(BaseModel):
    """Body of PATCH /jobs/:id.

    Only fields that were explicitly set are sent, so ``schedule_cron=None``
    clears the schedule while leaving it unset keeps the current one.
    """
    name: Optional[str] = None
    schedule_cron: Optional[str] = None
    command: Optional[str] = None
    max_concurrency: Optional[int] = Field(default=None, ge=1)
    misfire_policy: Optional[MisfirePolicyField] = None

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_unset=True)


# ==================== Lookups ====================

def has_duplicate_name(
    candidate_name: str,
    candidate_id: Optional[str],
    existing_jobs: Iterable[JobSpec],
) -> bool:
    """True when another job (different id) already uses exactly this name.

    Advisory only: the backend accepts duplicates.
    """
    return any(
        job.name == candidate_name and job.id != candidate_id
        for job in existing_jobs or ()
    )


def jobs_by_id(jobs: Optional[Iterable[JobSpec]]) -> Dict[str, JobSpec]:
    return {job.id: job for job in jobs or ()}


def job_name_for(job_id: Optional[str], jobs: Optional[Iterable[JobSpec]]) -> str:
    """Resolve a job id to its name, or the unknown placeholder if it is gone."""
    if job_id is None:
        return UNKNOWN_JOB_NAME
    if isinstance(jobs, dict):
        job = jobs.get(job_id)
    else:
        job = jobs_by_id(jobs).get(job_id)
    return job.name if job is not None else UNKNOWN_JOB_NAME

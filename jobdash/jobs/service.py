"""Jobs service - /jobs endpoints."""

from __future__ import annotations

from typing import List

from jobdash.core.http import ApiClient
from jobdash.core.schemas import parse_model, parse_models
from jobdash.jobs.models import CreateJobRequest, JobSpec, UpdateJobRequest
from jobdash.runs.models import JobRun


class JobsService:
    def __init__(self, client: ApiClient):
        self.client = client

    async def fetch_jobs(self) -> List[JobSpec]:
        data = await self.client.get("/jobs")
        return parse_models(JobSpec, data, "job")

    async def fetch_job(self, job_id: str) -> JobSpec:
        data = await self.client.get(f"/jobs/{job_id}")
        return parse_model(JobSpec, data, "job")

    async def create_job(self, body: CreateJobRequest) -> JobSpec:
        data = await self.client.post("/jobs", json=body.to_payload())
        return parse_model(JobSpec, data, "job")

    async def update_job(self, job_id: str, body: UpdateJobRequest) -> JobSpec:
        data = await self.client.patch(f"/jobs/{job_id}", json=body.to_payload())
        return parse_model(JobSpec, data, "job")

    async def delete_job(self, job_id: str) -> None:
        await self.client.delete(f"/jobs/{job_id}")

    async def run_job_now(self, job_id: str) -> JobRun:
        data = await self.client.post(f"/jobs/{job_id}/run")
        return parse_model(JobRun, data, "run")

    async def enable_job(self, job_id: str) -> JobSpec:
        data = await self.client.post(f"/jobs/{job_id}/enable")
        return parse_model(JobSpec, data, "job")

    async def disable_job(self, job_id: str) -> JobSpec:
        data = await self.client.post(f"/jobs/{job_id}/disable")
        return parse_model(JobSpec, data, "job")

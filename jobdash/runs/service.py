"""Runs service - /runs endpoints."""

from __future__ import annotations

from typing import List, Optional

from jobdash.core.http import ApiClient
from jobdash.core.schemas import parse_models
from jobdash.runs.models import JobRun, ListRunsQuery


class RunsService:
    def __init__(self, client: ApiClient):
        self.client = client

    async def fetch_runs(self, query: Optional[ListRunsQuery] = None) -> List[JobRun]:
        params = (query or ListRunsQuery()).to_params()
        data = await self.client.get("/runs", params=params)
        return parse_models(JobRun, data, "run")

    async def cancel_run(self, run_id: str) -> None:
        await self.client.post(f"/runs/{run_id}/cancel")

"""Workers service - /workers endpoint."""

from typing import List

from jobdash.core.http import ApiClient
from jobdash.core.schemas import parse_models
from jobdash.workers.models import WorkerRecord


class WorkersService:
    def __init__(self, client: ApiClient):
        self.client = client

    async def fetch_workers(self) -> List[WorkerRecord]:
        data = await self.client.get("/workers")
        return parse_models(WorkerRecord, data, "worker")

"""Worker roster coordinator."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from jobdash.core.config import get_settings
from jobdash.sync.engine import SyncEngine
from jobdash.sync.queries import workers_query
from jobdash.workers.models import WorkerRecord, WorkerStatus, WorkerSummary, summarize_workers, worker_statuses
from jobdash.workers.service import WorkersService


class WorkerRosterView:
    """Workers with liveness recomputed on every read."""

    def __init__(self, engine: SyncEngine, workers: WorkersService):
        self.subscription = engine.subscribe(workers_query(workers))
        self.threshold_ms = get_settings().WORKER_LIVENESS_THRESHOLD_MS

    @property
    def workers(self) -> List[WorkerRecord]:
        return list(self.subscription.data or [])

    @property
    def error(self) -> Optional[str]:
        result = self.subscription.result
        return result.error.detail if result.error else None

    def statuses(self, now: Optional[datetime] = None) -> List[WorkerStatus]:
        return worker_statuses(self.workers, now, self.threshold_ms)

    def summary(self, now: Optional[datetime] = None) -> WorkerSummary:
        return summarize_workers(self.workers, now, self.threshold_ms)

    def close(self) -> None:
        self.subscription.close()

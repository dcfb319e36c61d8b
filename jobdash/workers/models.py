"""Worker models and liveness derivation."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from pydantic import field_validator

from jobdash.core.schemas import CamelModel, ensure_utc, utcnow


LIVENESS_THRESHOLD_MS = 20_000


class WorkerRecord(CamelModel):
    """A worker as last reported by its heartbeat."""
    id: str
    display_name: str
    hostname: str
    capacity: int = 1
    last_seen: datetime
    restart_count: int = 0
    version: Optional[str] = None

    @field_validator("last_seen")
    @classmethod
    def _as_utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)


def is_alive(
    worker: WorkerRecord,
    now: Optional[datetime] = None,
    threshold_ms: int = LIVENESS_THRESHOLD_MS,
) -> bool:
    """Heartbeat younger than the threshold. Exactly the threshold is offline.

    Point-in-time: call again on every tick, never store the result.
    """
    now = ensure_utc(now) if now is not None else utcnow()
    return (now - worker.last_seen) < timedelta(milliseconds=threshold_ms)


@dataclass(frozen=True)
class WorkerStatus:
    worker: WorkerRecord
    alive: bool
    last_seen_ago: timedelta


@dataclass(frozen=True)
class WorkerSummary:
    online: int
    offline: int

    @property
    def total(self) -> int:
        return self.online + self.offline


def worker_statuses(
    workers: Optional[Iterable[WorkerRecord]],
    now: Optional[datetime] = None,
    threshold_ms: int = LIVENESS_THRESHOLD_MS,
) -> List[WorkerStatus]:
    now = ensure_utc(now) if now is not None else utcnow()
    return [
        WorkerStatus(
            worker=w,
            alive=is_alive(w, now, threshold_ms),
            last_seen_ago=now - w.last_seen,
        )
        for w in workers or ()
    ]


def summarize_workers(
    workers: Optional[Iterable[WorkerRecord]],
    now: Optional[datetime] = None,
    threshold_ms: int = LIVENESS_THRESHOLD_MS,
) -> WorkerSummary:
    statuses = worker_statuses(workers, now, threshold_ms)
    online = sum(1 for s in statuses if s.alive)
    return WorkerSummary(online=online, offline=len(statuses) - online)

"""
Job Dashboard client - composition root.

Wires one ApiClient, one SessionStore and one SyncEngine for the lifetime of
the process, and hands out the view coordinators.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Optional

import httpx

from jobdash.core.config import get_settings
from jobdash.core.http import ApiClient
from jobdash.auth.service import AuthService
from jobdash.auth.session import SessionStore
from jobdash.dashboard.views import DashboardSummaryView
from jobdash.jobs.service import JobsService
from jobdash.jobs.views import JobDetailView, JobsListView
from jobdash.runs.service import RunsService
from jobdash.runs.views import JobRunHistoryView, RunsView
from jobdash.sync.engine import SyncEngine
from jobdash.sync.mutations import MutationService
from jobdash.workers.service import WorkersService
from jobdash.workers.views import WorkerRosterView

settings = get_settings()
logger = logging.getLogger(__name__)


def configure_logging(level: Optional[str] = None) -> None:
    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


class DashboardApp:
    """Process-wide stores plus factories for the views that consume them."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock=None,
    ):
        self.client = ApiClient(base_url, transport=transport)
        self.auth = AuthService(self.client)
        self.jobs = JobsService(self.client)
        self.runs = RunsService(self.client)
        self.workers = WorkersService(self.client)

        self.session = SessionStore(self.auth)
        self.engine = SyncEngine(clock=clock)
        self.mutations = MutationService(self.engine, self.jobs, self.runs)

        self.engine.bind_session(self.session)
        self.client.on_unauthorized(self.session.handle_unauthorized)

    async def startup(self, *, poll: bool = True) -> None:
        """Probe the session, then start the polling loop."""
        logger.info(f"{settings.APP_NAME} {settings.APP_VERSION} starting against {self.client.base_url}")
        await self.session.initialize()
        if poll:
            self.engine.start()

    async def shutdown(self) -> None:
        await self.engine.stop()
        await self.client.aclose()
        logger.info("Dashboard client stopped")

    # ==================== Views ====================

    def jobs_view(self) -> JobsListView:
        return JobsListView(self.engine, self.jobs, self.mutations)

    def job_detail_view(self, job_id: str) -> JobDetailView:
        return JobDetailView(self.engine, self.jobs, self.runs, self.mutations, job_id)

    def runs_view(self, poll_ms: Optional[int] = None) -> RunsView:
        return RunsView(self.engine, self.runs, self.jobs, self.workers, self.mutations, poll_ms=poll_ms)

    def job_history_view(self, job_id: str) -> JobRunHistoryView:
        return JobRunHistoryView(self.engine, self.runs, job_id)

    def workers_view(self) -> WorkerRosterView:
        return WorkerRosterView(self.engine, self.workers)

    def dashboard_view(self, loaded_at: Optional[datetime] = None) -> DashboardSummaryView:
        return DashboardSummaryView(self.engine, self.jobs, self.runs, self.workers, loaded_at=loaded_at)


@asynccontextmanager
async def lifespan(app: DashboardApp, *, poll: bool = True) -> AsyncIterator[DashboardApp]:
    """Client lifespan - startup and shutdown."""
    # Startup
    await app.startup(poll=poll)
    try:
        yield app
    finally:
        # Shutdown
        await app.shutdown()

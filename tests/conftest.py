"""Shared fixtures: a fake backend behind httpx.ASGITransport and a manual clock."""

import httpx
import pytest

from jobdash.main import DashboardApp
from jobdash.sync.clock import ManualClock
from tests.fake_backend import FakeBackend


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def backend():
    backend = FakeBackend()
    backend.add_job("j1", "backup", command="pg_dump app > /backups/app.sql")
    backend.add_job("j2", "cleanup", command="rm -rf /tmp/cache", enabled=False, misfire_policy="skip")
    backend.add_worker("w1", "alpha", seconds_ago=2)
    backend.add_worker("w2", "beta", seconds_ago=120)
    backend.add_run("r1", "j1", state="succeeded", worker_id="w1", minutes_ago=10)
    backend.add_run("r2", "j1", state="failed", worker_id="w1", minutes_ago=5)
    backend.add_run("r3", "j2", state="queued", minutes_ago=1)
    return backend


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
async def app(backend, clock):
    dashboard = DashboardApp(
        "http://testserver",
        transport=httpx.ASGITransport(app=backend.app),
        clock=clock,
    )
    yield dashboard
    await dashboard.shutdown()


@pytest.fixture
async def signed_in(app):
    """App with a live session and no background loop; tests drive tick() by hand."""
    await app.startup(poll=False)
    await app.session.login("admin", "secret")
    await app.engine.drain()
    return app


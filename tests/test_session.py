"""Tests for the session state machine and its gating of the sync engine."""

import pytest

from jobdash.auth.models import SessionStatus, UserRole
from jobdash.core.exceptions import RedirectToLogin, UnauthorizedException, ValidationException
from jobdash.sync.queries import JOBS_KEY

pytestmark = pytest.mark.anyio

DATA_ROUTES = ("list_jobs", "list_runs", "list_workers")


class TestStartup:
    """Session probe at startup."""

    async def test_probe_401_blocks_all_fetching_until_login(self, app, backend, clock):
        await app.startup(poll=False)
        jobs = app.jobs_view()
        runs = app.runs_view()
        workers = app.workers_view()

        clock.advance(60_000)
        assert await app.engine.tick() == 0
        await jobs.refresh()
        await app.engine.drain()

        assert app.session.status == SessionStatus.UNAUTHENTICATED
        assert app.session.user is None
        assert all(backend.calls[route] == 0 for route in DATA_ROUTES)

        await app.session.login("admin", "secret")
        await app.engine.drain()

        assert all(backend.calls[route] == 1 for route in DATA_ROUTES)
        assert [job.id for job in jobs.jobs] == ["j1", "j2"]
        assert len(runs.runs) == 3
        assert len(workers.workers) == 2

    async def test_existing_session_is_picked_up(self, signed_in, backend):
        await signed_in.session.initialize()

        assert signed_in.session.is_authenticated
        assert signed_in.session.user.username == "admin"
        assert signed_in.session.user.role == UserRole.ADMIN

    async def test_state_starts_loading(self, app):
        assert app.session.status == SessionStatus.LOADING
        assert not app.engine.active


class TestLogin:
    """Login and logout."""

    async def test_login_sets_cookie_session(self, app, backend):
        await app.startup(poll=False)

        user = await app.session.login("admin", "secret")

        assert user.id == "u1"
        assert app.session.is_authenticated
        assert app.engine.active
        assert backend.last_bodies["login"] == {"username": "admin", "password": "secret"}

    async def test_failed_login_surfaces_server_message(self, app):
        await app.startup(poll=False)

        with pytest.raises(UnauthorizedException) as exc:
            await app.session.login("admin", "wrong")

        assert exc.value.detail == "User/Password combination not found"
        assert app.session.status == SessionStatus.UNAUTHENTICATED
        assert not app.engine.active

    async def test_blank_credentials_never_hit_the_network(self, app, backend):
        await app.startup(poll=False)

        with pytest.raises(ValidationException):
            await app.session.login("", "")

        assert backend.calls["login"] == 0

    async def test_logout_redirects_and_clears_cache(self, signed_in, backend):
        jobs = signed_in.jobs_view()
        await signed_in.engine.drain()
        assert jobs.jobs

        with pytest.raises(RedirectToLogin) as exc:
            await signed_in.session.logout()

        assert exc.value.to == "/login"
        assert signed_in.session.status == SessionStatus.UNAUTHENTICATED
        assert jobs.jobs == []
        assert backend.sessions == {}

    async def test_switching_user_refetches_everything(self, signed_in, backend):
        jobs = signed_in.jobs_view()
        await signed_in.engine.drain()
        assert backend.calls["list_jobs"] == 1

        user = await signed_in.session.login("bob", "pw")
        await signed_in.engine.drain()

        assert user.username == "bob"
        assert signed_in.session.user.role == UserRole.VIEWER
        assert backend.calls["list_jobs"] == 2
        assert [job.id for job in jobs.jobs] == ["j1", "j2"]
        jobs.close()

    async def test_logging_in_again_as_same_user_keeps_cache(self, signed_in, backend):
        jobs = signed_in.jobs_view()
        await signed_in.engine.drain()

        await signed_in.session.login("admin", "secret")
        await signed_in.engine.drain()

        assert backend.calls["list_jobs"] == 1
        assert jobs.jobs
        jobs.close()

    async def test_logout_still_redirects_when_server_fails(self, signed_in, backend):
        backend.fail("logout", 500, "db down")

        with pytest.raises(RedirectToLogin):
            await signed_in.session.logout()

        assert signed_in.session.status == SessionStatus.UNAUTHENTICATED


class TestExpiry:
    """Any 401 during polling drops the session."""

    async def test_401_during_poll_suspends_engine(self, signed_in, backend, clock):
        jobs = signed_in.jobs_view()
        await signed_in.engine.drain()
        assert jobs.jobs

        backend.expire_sessions()
        clock.advance(3_000)
        assert await signed_in.engine.tick() == 1
        await signed_in.engine.drain()

        assert signed_in.session.status == SessionStatus.UNAUTHENTICATED
        assert signed_in.engine.get(JOBS_KEY).data is None
        assert jobs.error is None

        calls = backend.calls["list_jobs"]
        clock.advance(30_000)
        assert await signed_in.engine.tick() == 0
        assert backend.calls["list_jobs"] == calls

    async def test_login_again_resumes_polling(self, signed_in, backend, clock):
        jobs = signed_in.jobs_view()
        await signed_in.engine.drain()
        backend.expire_sessions()
        await jobs.refresh()
        await signed_in.engine.drain()
        assert not signed_in.session.is_authenticated

        await signed_in.session.login("admin", "secret")
        await signed_in.engine.drain()

        assert [job.name for job in jobs.jobs] == ["backup", "cleanup"]
        clock.advance(3_000)
        assert await signed_in.engine.tick() == 1

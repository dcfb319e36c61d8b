"""Tests for the sync engine: ordering, coalescing, polling and gating."""

import pytest

from jobdash.core.exceptions import AppException, FetchException
from jobdash.sync.clock import ManualClock
from jobdash.sync.engine import Query, QueryStatus, SyncEngine
from tests.helpers import ControlledFetcher, ScriptedFetcher, pump

pytestmark = pytest.mark.anyio

RUNS_J1 = ("runs", "job", "j1")


@pytest.fixture
async def engine():
    engine = SyncEngine(clock=ManualClock(), tick_ms=100)
    await engine.resume()
    yield engine
    await engine.stop()


class TestOrdering:
    """A late response never overwrites a newer one."""

    async def test_superseded_fetch_resolving_late_is_discarded(self, engine):
        fetcher = ControlledFetcher()
        sub = engine.subscribe(Query(RUNS_J1, fetcher))
        await pump()

        engine.clock.advance(100)
        await engine.invalidate(RUNS_J1)
        await pump()
        assert len(fetcher.calls) == 2

        engine.clock.advance(50)
        fetcher.resolve(1, ["from t=100"])
        await pump()
        engine.clock.advance(50)
        fetcher.resolve(0, ["from t=0"])
        await pump()

        assert sub.data == ["from t=100"]
        assert sub.result.updated_at == 150

    async def test_superseded_fetch_resolving_first_is_also_discarded(self, engine):
        fetcher = ControlledFetcher()
        sub = engine.subscribe(Query(RUNS_J1, fetcher))
        await pump()
        await engine.invalidate(RUNS_J1)
        await pump()

        fetcher.resolve(0, ["old"])
        await pump()
        assert sub.data is None
        assert sub.result.is_fetching

        fetcher.resolve(1, ["new"])
        await pump()
        assert sub.data == ["new"]
        assert not sub.result.is_stale

    async def test_superseded_error_does_not_mark_entry_failed(self, engine):
        fetcher = ControlledFetcher()
        sub = engine.subscribe(Query(RUNS_J1, fetcher))
        await pump()
        await engine.invalidate(RUNS_J1)
        await pump()

        fetcher.resolve(1, ["new"])
        fetcher.fail(0, AppException("timeout", 504))
        await pump()

        assert sub.result.status == QueryStatus.SUCCESS
        assert sub.result.error is None


class TestRefresh:
    """Manual refresh and invalidation."""

    async def test_refresh_coalesces_into_in_flight_fetch(self, engine):
        fetcher = ControlledFetcher()
        sub = engine.subscribe(Query(("jobs",), fetcher))
        await pump()

        assert await sub.refresh() is False
        await pump()
        assert len(fetcher.calls) == 1

        fetcher.resolve(0, [])
        await pump()
        assert await sub.refresh() is True
        await pump()
        assert len(fetcher.calls) == 2
        fetcher.resolve(1, [])

    async def test_invalidate_matches_by_prefix(self, engine):
        for key in [RUNS_J1, ("runs", "list", ()), ("runs", "job", "j2"), ("jobs",)]:
            engine.subscribe(Query(key, ScriptedFetcher([])))
        await engine.drain()

        matched = await engine.invalidate(RUNS_J1, ("runs", "list"))

        assert sorted(matched) == sorted([RUNS_J1, ("runs", "list", ())])
        assert engine.get(RUNS_J1).is_stale
        assert not engine.get(("jobs",)).is_stale

    async def test_invalidate_with_wait_returns_fresh_data(self, engine):
        fetcher = ScriptedFetcher(["v1"], ["v2"])
        sub = engine.subscribe(Query(("jobs",), fetcher))
        await engine.drain()

        await engine.invalidate(("jobs",), wait=True)

        assert sub.data == ["v2"]
        assert not sub.result.is_stale


class TestErrors:
    """Stale-while-error."""

    async def test_failed_refresh_keeps_previous_data(self, engine):
        fetcher = ScriptedFetcher(["a"], AppException("backend down", 503), ["b"])
        sub = engine.subscribe(Query(("jobs",), fetcher))
        await engine.drain()

        await sub.refresh()
        await engine.drain()

        result = sub.result
        assert result.is_error
        assert result.has_data
        assert result.data == ["a"]
        assert isinstance(result.error, FetchException)
        assert result.error.detail == "backend down"
        assert result.error.status_code == 503

        await sub.refresh()
        await engine.drain()
        assert sub.result.is_success
        assert sub.data == ["b"]

    async def test_unexpected_exception_becomes_fetch_error(self, engine):
        sub = engine.subscribe(Query(("jobs",), ScriptedFetcher(ValueError("bad json"))))
        await engine.drain()

        assert isinstance(sub.result.error, FetchException)
        assert sub.result.error.detail == "Unexpected error: ValueError"
        assert not sub.result.has_data

    async def test_failure_does_not_change_poll_schedule(self, engine):
        fetcher = ScriptedFetcher(AppException("nope"))
        engine.subscribe(Query(("jobs",), fetcher, 1000))
        await engine.drain()

        engine.clock.advance(1000)
        assert await engine.tick() == 1
        await engine.drain()
        engine.clock.advance(1000)
        assert await engine.tick() == 1


class TestPolling:
    """Interval scheduling via tick()."""

    async def test_polls_at_interval(self, engine):
        fetcher = ScriptedFetcher([])
        engine.subscribe(Query(("workers",), fetcher, 1000))
        await engine.drain()
        assert fetcher.count == 1

        assert await engine.tick() == 0
        engine.clock.advance(999)
        assert await engine.tick() == 0
        engine.clock.advance(1)
        assert await engine.tick() == 1
        await engine.drain()
        assert fetcher.count == 2

    async def test_manual_mode_never_polls(self, engine):
        fetcher = ScriptedFetcher([])
        engine.subscribe(Query(("runs", "list", ()), fetcher, 0))
        await engine.drain()

        engine.clock.advance(60_000)
        assert await engine.tick() == 0
        assert fetcher.count == 1

    async def test_fastest_subscriber_wins(self, engine):
        fetcher = ScriptedFetcher([])
        slow = engine.subscribe(Query(("jobs",), fetcher, 2000))
        fast = engine.subscribe(Query(("jobs",), fetcher), interval_ms=500)
        await engine.drain()

        engine.clock.advance(500)
        assert await engine.tick() == 1
        await engine.drain()

        fast.close()
        engine.clock.advance(500)
        assert await engine.tick() == 0
        engine.clock.advance(1500)
        assert await engine.tick() == 1
        slow.close()

    async def test_set_interval_switches_to_manual(self, engine):
        fetcher = ScriptedFetcher([])
        sub = engine.subscribe(Query(("jobs",), fetcher, 1000))
        await engine.drain()

        sub.set_interval(0)
        engine.clock.advance(5000)

        assert await engine.tick() == 0

    async def test_second_subscriber_reuses_cached_data(self, engine):
        fetcher = ScriptedFetcher(["cached"])
        engine.subscribe(Query(("jobs",), fetcher, 3000))
        await engine.drain()

        other = engine.subscribe(Query(("jobs",), fetcher, 3000))
        await engine.drain()

        assert other.data == ["cached"]
        assert fetcher.count == 1


class TestSubscriptions:
    """Teardown cancels schedules and drops late results."""

    async def test_result_after_last_unsubscribe_is_dropped(self, engine):
        fetcher = ControlledFetcher()
        sub = engine.subscribe(Query(("jobs",), fetcher, 1000))
        await pump()

        sub.close()
        assert engine.keys() == []
        fetcher.resolve(0, ["late"])
        await pump()

        assert engine.get(("jobs",)).status == QueryStatus.PENDING
        assert engine.get(("jobs",)).data is None
        engine.clock.advance(5000)
        assert await engine.tick() == 0

    async def test_resubscribe_ignores_previous_generation(self, engine):
        fetcher = ControlledFetcher()
        engine.subscribe(Query(("jobs",), fetcher)).close()
        await pump()
        sub = engine.subscribe(Query(("jobs",), fetcher))
        await pump()

        fetcher.resolve(1, ["fresh"])
        await pump()
        fetcher.resolve(0, ["old"])
        await pump()

        assert sub.data == ["fresh"]

    async def test_close_is_idempotent(self, engine):
        sub = engine.subscribe(Query(("jobs",), ScriptedFetcher([])))
        await engine.drain()

        sub.close()
        sub.close()

        assert sub.closed


class TestGating:
    """Suspend and resume."""

    async def test_inactive_engine_never_fetches(self):
        engine = SyncEngine(clock=ManualClock(), tick_ms=100)
        fetcher = ScriptedFetcher([])
        sub = engine.subscribe(Query(("jobs",), fetcher, 1000))

        engine.clock.advance(5000)
        assert await engine.tick() == 0
        assert await sub.refresh() is False
        await engine.invalidate(("jobs",))
        await engine.drain()

        assert fetcher.count == 0

    async def test_suspend_clears_and_resume_refetches(self, engine):
        fetcher = ScriptedFetcher(["before"], ["after"])
        sub = engine.subscribe(Query(("jobs",), fetcher, 1000))
        await engine.drain()

        await engine.suspend()
        assert sub.data is None
        assert sub.result.is_pending

        await engine.resume()
        await engine.drain()
        assert sub.data == ["after"]

    async def test_in_flight_result_is_dropped_on_suspend(self, engine):
        fetcher = ControlledFetcher()
        sub = engine.subscribe(Query(("jobs",), fetcher))
        await pump()

        await engine.suspend()
        fetcher.resolve(0, ["private"])
        await pump()

        assert sub.data is None


class TestLoop:
    """The background polling loop."""

    async def test_start_and_stop(self, engine):
        fetcher = ScriptedFetcher([])
        engine.subscribe(Query(("jobs",), fetcher, 1000))

        engine.start()
        await pump(40)
        await engine.stop()

        # each loop turn advances the manual clock by one tick
        assert fetcher.count > 1

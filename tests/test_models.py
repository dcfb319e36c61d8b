"""Tests for entity parsing and the derived predicates on jobs, runs and workers."""

from datetime import datetime, timedelta, timezone

import pytest

from jobdash.jobs.misfire import RunIfLateWithin, UnknownMisfirePolicy
from jobdash.jobs.models import (
    UNKNOWN_JOB_NAME,
    CreateJobRequest,
    JobSpec,
    ShellRunner,
    UnknownRunner,
    UpdateJobRequest,
    has_duplicate_name,
)
from jobdash.runs.models import JobRun, JobRunState, ListRunsQuery, job_name_for_run, run_command
from jobdash.workers.models import WorkerRecord, is_alive, summarize_workers


NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def make_job(job_id="j1", name="backup", **overrides):
    payload = {
        "id": job_id,
        "name": name,
        "scheduleCron": "0 3 * * *",
        "enabled": True,
        "runnerCfg": {"type": "shell", "command": "pg_dump app", "workingDir": "/srv"},
        "maxConcurrency": 2,
        "misfirePolicy": {"runIfLateWithin": [60, 0]},
    }
    payload.update(overrides)
    return JobSpec.model_validate(payload)


def make_run(state="succeeded", **overrides):
    payload = {
        "id": "r1",
        "jobId": "j1",
        "workerId": "w1",
        "state": state,
        "scheduledFor": "2026-10-19T11:55:00Z",
        "startedAt": "2026-10-19T11:55:01Z",
        "finishedAt": "2026-10-19T11:55:04Z",
        "snapshot": {
            "name": None,
            "jobName": "backup",
            "meta": {"type": "shell", "command": "pg_dump --old-flags app", "workingDir": None, "env": {}},
        },
    }
    payload.update(overrides)
    return JobRun.model_validate(payload)


def make_worker(last_seen):
    return WorkerRecord.model_validate(
        {"id": "w1", "displayName": "alpha", "hostname": "alpha.local", "lastSeen": last_seen.isoformat()}
    )


class TestJobSpec:
    """Job parsing from the camelCase wire form."""

    def test_parses_shell_job(self):
        job = make_job()

        assert isinstance(job.runner_cfg, ShellRunner)
        assert job.schedule_cron == "0 3 * * *"
        assert job.max_concurrency == 2
        assert job.command == "pg_dump app"
        assert job.working_dir == "/srv"
        assert job.misfire_policy == RunIfLateWithin(seconds=60)

    def test_unknown_runner_and_policy_do_not_fail_parsing(self):
        job = make_job(runnerCfg={"type": "http", "url": "https://example.com"}, misfirePolicy="catchUp")

        assert isinstance(job.runner_cfg, UnknownRunner)
        assert job.runner_cfg.type == "http"
        assert job.command is None
        assert isinstance(job.misfire_policy, UnknownMisfirePolicy)

    def test_dumps_back_to_wire_form(self):
        dumped = make_job().model_dump(by_alias=True)

        assert dumped["runnerCfg"] == {"type": "shell", "command": "pg_dump app", "workingDir": "/srv"}
        assert dumped["misfirePolicy"] == {"runIfLateWithin": [60, 0]}

    def test_create_request_is_snake_case(self):
        body = CreateJobRequest(
            name="backup",
            command="pg_dump app",
            max_concurrency=1,
            misfire_policy=RunIfLateWithin(seconds=10),
        )

        assert body.to_payload() == {
            "name": "backup",
            "schedule_cron": None,
            "command": "pg_dump app",
            "max_concurrency": 1,
            "misfire_policy": {"runIfLateWithin": [10, 0]},
        }

    def test_update_request_only_sends_set_fields(self):
        assert UpdateJobRequest(schedule_cron=None).to_payload() == {"schedule_cron": None}
        assert UpdateJobRequest(name="nightly").to_payload() == {"name": "nightly"}


class TestDuplicateName:
    """Advisory duplicate-name check."""

    def test_other_job_with_same_name(self):
        assert has_duplicate_name("backup", None, [make_job()])

    def test_same_job_is_not_a_duplicate(self):
        assert not has_duplicate_name("backup", "j1", [make_job()])

    def test_match_is_exact(self):
        assert not has_duplicate_name("Backup", None, [make_job()])
        assert not has_duplicate_name("backup", None, [])


class TestJobRun:
    """Run predicates and display helpers."""

    def test_pending_only_when_queued(self):
        assert make_run("queued").is_pending
        for state in ("running", "succeeded", "failed", "cancelled"):
            assert not make_run(state).is_pending

    def test_finished_states(self):
        assert make_run("succeeded").is_finished
        assert make_run("failed").is_finished
        assert not make_run("cancelled").is_finished
        assert make_run("cancelled").is_terminal
        assert not make_run("running").is_finished

    def test_cancel_and_rerun_are_mutually_exclusive(self):
        queued = make_run("queued")
        running = make_run("running")

        assert queued.can_cancel and not queued.can_rerun
        assert running.can_rerun and not running.can_cancel

    def test_unknown_state_is_tolerated(self):
        run = make_run("paused")

        assert run.state == JobRunState.UNKNOWN
        assert run.state.label == "Unknown"

    def test_command_comes_from_snapshot(self):
        assert make_run().command == "pg_dump --old-flags app"
        assert make_run(snapshot=None).command is None
        assert run_command(make_run(snapshot={"jobName": "backup", "meta": {"type": "http"}})) is None

    def test_timestamps_are_utc(self):
        run = make_run(startedAt="2026-10-19T11:55:01")

        assert run.started_at.tzinfo is not None
        assert run.duration_seconds == 3

    def test_deleted_job_resolves_to_placeholder(self):
        run = make_run()

        assert job_name_for_run(run, [make_job()]) == "backup"
        assert job_name_for_run(run, [make_job(job_id="j9")]) == UNKNOWN_JOB_NAME
        assert job_name_for_run(run, None) == "<Unknown Job>"


class TestListRunsQuery:
    """Query string for GET /runs."""

    def test_params_are_camel_case_and_skip_unset(self):
        query = ListRunsQuery(by_job_id="j1", limit=50)

        assert query.to_params() == {"byJobId": "j1", "limit": 50}

    def test_cache_key_is_stable(self):
        a = ListRunsQuery(by_worker_id="w1", limit=10)
        b = ListRunsQuery(limit=10, by_worker_id="w1")

        assert a.cache_key_part() == b.cache_key_part()
        assert a.cache_key_part() != ListRunsQuery(limit=10).cache_key_part()


class TestWorkerLiveness:
    """20 second heartbeat threshold."""

    @pytest.mark.parametrize(
        "age_ms, alive",
        [(0, True), (19_999, True), (20_000, False), (20_001, False)],
    )
    def test_threshold_boundary(self, age_ms, alive):
        worker = make_worker(NOW - timedelta(milliseconds=age_ms))

        assert is_alive(worker, NOW) is alive

    def test_liveness_is_recomputed_against_now(self):
        worker = make_worker(NOW - timedelta(seconds=10))

        assert is_alive(worker, NOW)
        assert not is_alive(worker, NOW + timedelta(seconds=15))

    def test_summary(self):
        workers = [make_worker(NOW), make_worker(NOW - timedelta(minutes=5))]

        summary = summarize_workers(workers, NOW)

        assert (summary.online, summary.offline, summary.total) == (1, 1, 2)

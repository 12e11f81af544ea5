"""
Tests for ``jobqueue`` CLI commands.
"""

import asyncio
import hashlib
import json
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from unittest.mock import patch

import pytest
from rich.console import Console
from typer.testing import CliRunner

from jobqueue.cli import app
from jobqueue.constants import JOB_TYPE_CLEANUP_TEMP, JOB_TYPE_WELCOME_EMAIL, JobState
from jobqueue.errors import ConfigurationError
from jobqueue.types.job import QueuedJob

runner = CliRunner()


@pytest.fixture
def cli_engine(engine):
    """Route CLI commands to the in-memory engine."""

    @asynccontextmanager
    async def _open_engine():
        yield engine

    with (
        patch("jobqueue.cli.open_engine", _open_engine),
        patch("jobqueue.cli.setup_logging"),
        patch("jobqueue.cli.console", Console(width=200)),
    ):
        yield engine


def seed_dead_letter(dead_letters, job_id: str = "job-1"):
    job = QueuedJob(
        id=job_id,
        type=JOB_TYPE_CLEANUP_TEMP,
        queue="cleanup-queue",
        payload={"directory": "/tmp/x"},
        attempts_made=3,
        state=JobState.FAILED,
    )
    return asyncio.run(dead_letters.add(job, "disk full", datetime.now(timezone.utc)))


class TestDlqInspect:
    def test_inspect_empty(self, cli_engine):
        result = runner.invoke(app, ["dlq", "inspect"])

        assert result.exit_code == 0
        assert "No jobs" in result.output

    def test_inspect_table(self, cli_engine, dead_letters):
        seed_dead_letter(dead_letters)

        result = runner.invoke(app, ["dlq", "inspect"])

        assert result.exit_code == 0
        assert "cleanup-temp" in result.output
        assert "disk full" in result.output

    def test_inspect_json(self, cli_engine, dead_letters):
        record = seed_dead_letter(dead_letters)

        result = runner.invoke(app, ["dlq", "inspect", "--json", "--limit", "5"])

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data[0]["id"] == str(record.id)
        assert data[0]["originalJobId"] == "job-1"
        assert data[0]["attemptsMade"] == 3

    def test_inspect_configuration_error(self):
        @asynccontextmanager
        async def _broken():
            raise ConfigurationError("DATABASE_URL is not defined")
            yield

        with patch("jobqueue.cli.open_engine", _broken), patch("jobqueue.cli.setup_logging"):
            result = runner.invoke(app, ["dlq", "inspect"])

        assert result.exit_code == 1


class TestDlqShow:
    def test_show(self, cli_engine, dead_letters):
        record = seed_dead_letter(dead_letters)

        result = runner.invoke(app, ["dlq", "show", str(record.id)])

        assert result.exit_code == 0
        assert "job-1" in result.output
        assert "disk full" in result.output
        assert "/tmp/x" in result.output

    def test_show_json(self, cli_engine, dead_letters):
        record = seed_dead_letter(dead_letters)

        result = runner.invoke(app, ["dlq", "show", str(record.id), "--json"])

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["id"] == str(record.id)
        assert data["payload"] == {"directory": "/tmp/x"}

    @pytest.mark.parametrize("record_id", ["3f1c9d5e-0000-4000-8000-000000000000", "not-a-uuid"])
    def test_show_not_found(self, cli_engine, record_id):
        result = runner.invoke(app, ["dlq", "show", record_id])

        assert result.exit_code == 1


class TestDlqReplay:
    def test_replay_success(self, cli_engine, broker, dead_letters):
        record = seed_dead_letter(dead_letters)

        result = runner.invoke(app, ["dlq", "replay", str(record.id)])

        assert result.exit_code == 0
        assert "Replayed" in result.output
        assert len(broker.jobs) == 1
        new_job = next(iter(broker.jobs.values()))
        assert new_job.payload["replayedFromJobId"] == "job-1"

    def test_replay_not_found(self, cli_engine, broker):
        result = runner.invoke(app, ["dlq", "replay", "3f1c9d5e-0000-4000-8000-000000000000"])

        assert result.exit_code == 1
        assert broker.jobs == {}

    def test_replay_broker_failure(self, cli_engine, broker, dead_letters):
        record = seed_dead_letter(dead_letters)
        broker.enqueue_error = ConnectionError("down")

        result = runner.invoke(app, ["dlq", "replay", str(record.id)])

        assert result.exit_code == 1


class TestEnqueue:
    def test_enqueue_with_key(self, cli_engine, broker):
        result = runner.invoke(app, [
            "enqueue", JOB_TYPE_WELCOME_EMAIL,
            "--payload", '{"email": "system@example.com"}',
            "--key", "user-42-welcome",
        ])

        assert result.exit_code == 0
        job_id = hashlib.sha256(b"user-42-welcome").hexdigest()
        assert job_id in result.output
        assert broker.jobs[job_id].payload == {"email": "system@example.com"}

    def test_enqueue_default_key(self, cli_engine, broker):
        result = runner.invoke(app, ["enqueue", JOB_TYPE_CLEANUP_TEMP, "--payload", '{"directory": "/tmp/x"}'])

        assert result.exit_code == 0
        assert len(broker.jobs) == 1

    def test_enqueue_twice_is_idempotent(self, cli_engine, broker):
        args = ["enqueue", JOB_TYPE_WELCOME_EMAIL, "-p", '{"email": "a@example.com"}', "--key", "same"]

        runner.invoke(app, args)
        result = runner.invoke(app, args)

        assert result.exit_code == 0
        assert "Already enqueued" in result.output
        assert len(broker.jobs) == 1

    def test_enqueue_unknown_type(self, cli_engine, broker):
        result = runner.invoke(app, ["enqueue", "send-sms"])

        assert result.exit_code == 1
        assert broker.jobs == {}

    def test_enqueue_bad_json(self, cli_engine):
        result = runner.invoke(app, ["enqueue", JOB_TYPE_WELCOME_EMAIL, "--payload", "{nope"])

        assert result.exit_code == 1

    @pytest.mark.parametrize(
        "payload",
        [
            "{}",
            '{"email": "not-an-email"}',
            '{"email": "a@example.com", "forceFail": "true"}',
        ],
    )
    def test_enqueue_invalid_payload(self, cli_engine, broker, payload):
        result = runner.invoke(app, ["enqueue", JOB_TYPE_WELCOME_EMAIL, "--payload", payload])

        assert result.exit_code == 1
        assert broker.jobs == {}


class TestProcessCommands:
    @pytest.mark.parametrize(
        "command,target",
        [
            ("worker", "jobqueue.worker.main.run"),
            ("reaper", "jobqueue.reaper.main.run"),
            ("scheduler", "jobqueue.scheduler.main.run"),
            ("api", "jobqueue.api.main.run"),
        ],
    )
    def test_starts_process(self, command, target):
        with patch(target) as mock_run:
            result = runner.invoke(app, [command])

        assert result.exit_code == 0
        mock_run.assert_called_once_with()

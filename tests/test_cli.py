import asyncio

import pytest
from typer.testing import CliRunner

import cli.main as cli_main
from reviewbot.infra.database import Database
from reviewbot.v1.infra.jobs.recovery import recover_orphaned_jobs
from reviewbot.v1.infra.jobs.store import JobStore

runner = CliRunner()


@pytest.fixture
def cli_settings(sqlite_settings, make_descriptor, monkeypatch):
    """Point the CLI at a database holding one active and one pending job."""

    async def _prepare():
        database = Database(sqlite_settings)
        await database.create_all()
        store = JobStore(database.SessionLocal)
        await store.enqueue(101, make_descriptor(pr_number=1))
        await store.enqueue(202, make_descriptor(pr_number=2))
        await store.claim_one()
        await database.close()

    asyncio.run(_prepare())
    monkeypatch.setattr(cli_main, "settings", sqlite_settings)
    return sqlite_settings


def test_stats_command(cli_settings):
    result = runner.invoke(cli_main.app, ["stats"])

    assert result.exit_code == 0
    assert "pending" in result.output
    assert "active" in result.output


def test_jobs_command(cli_settings):
    result = runner.invoke(cli_main.app, ["jobs", "--status", "pending"])

    assert result.exit_code == 0
    assert "Jobs (1 of 1)" in result.output


def test_recover_command(cli_settings):
    result = runner.invoke(cli_main.app, ["recover"], input="y\n")

    assert result.exit_code == 0
    assert "Recovered 1 orphaned job(s)" in result.output

    again = runner.invoke(cli_main.app, ["recover"], input="y\n")
    assert "No orphaned jobs found" in again.output


def test_recover_requires_confirmation(cli_settings):
    result = runner.invoke(cli_main.app, ["recover"], input="n\n")

    assert result.exit_code != 0


def test_version_command():
    result = runner.invoke(cli_main.app, ["version"])

    assert result.exit_code == 0
    assert "ReviewBot" in result.output


def test_recovery_logging_survives_cli_invocations(cli_settings):
    """Loggers first used inside CliRunner must not hold on to its closed stdout."""
    first = runner.invoke(cli_main.app, ["recover"], input="y\n")
    second = runner.invoke(cli_main.app, ["recover"], input="y\n")

    assert first.exit_code == 0
    assert second.exit_code == 0
    assert "Recovery failed" not in second.output

    async def _recover():
        database = Database(cli_settings)
        try:
            return await recover_orphaned_jobs(JobStore(database.SessionLocal))
        finally:
            await database.close()

    assert asyncio.run(_recover()) == 0

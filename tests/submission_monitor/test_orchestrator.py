import asyncio
import sqlite3
from datetime import date

import pytest

from src.submission_monitor.archive import ArchiveStore
from src.submission_monitor.errors import ArchiveError, InvalidTransitionError, RunInProgressError
from src.submission_monitor.models import RunState
from src.submission_monitor.orchestrator import MonthlyOrchestrator, RunConfiguration
from src.submission_monitor.recap_cache import RecapCache
from src.submission_monitor.refresh import RefreshGateway
from src.submission_monitor.scoring import ScoringEngine

from fakes import FakeProvider, FakeRegistry, make_record

RUN_DATE = date(2025, 6, 15)


@pytest.fixture
def loaded_db(db):
    db.replace_submissions(
        [
            make_record(
                submission_number="K250101",
                advisory_committee="RA",
                product_code="QIH",
                device_name="AI-based triage software",
                applicant="Acme Imaging",
            ),
            make_record(submission_number="K250102", applicant="Beta Devices"),
            make_record(submission_number="K250103", applicant="acme imaging"),
        ]
    )
    return db


def _build(db, *, registry=None, provider=None, run_config=None, archive=None):
    registry = registry if registry is not None else FakeRegistry(["Query - Submissions510k"])
    provider = provider if provider is not None else FakeProvider()
    return MonthlyOrchestrator(
        engine=ScoringEngine(),
        recap_cache=RecapCache(db, provider),
        archive=archive or ArchiveStore(db),
        source=db,
        refresh_gateway=RefreshGateway(registry, "Submissions510k"),
        history=db,
        run_config=run_config,
    )


def _table_count(db, table):
    conn = sqlite3.connect(str(db.db_path))
    try:
        (count,) = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()
    finally:
        conn.close()
    return count


@pytest.mark.asyncio
async def test_full_run_archives_resolved_period(loaded_db):
    registry = FakeRegistry(["Query - Submissions510k"])
    provider = FakeProvider()
    orchestrator = _build(loaded_db, registry=registry, provider=provider)

    outcome = await orchestrator.run(RUN_DATE)

    assert outcome.state == RunState.DONE
    assert outcome.period_key == "May-2025"
    assert outcome.records_scored == 3
    assert outcome.records_errored == 0
    assert outcome.refresh_succeeded
    assert outcome.refresh_strategy == "provider_prefix"
    assert outcome.archived
    assert outcome.exit_code() == 0
    assert outcome.transitions == ["PeriodResolved", "Refreshing", "Scoring", "Archiving", "Done", "Idle"]
    assert orchestrator.state == RunState.IDLE

    archive = ArchiveStore(loaded_db)
    rows = archive.read("May-2025")
    assert [row["submission_number"] for row in rows] == ["K250101", "K250102", "K250103"]
    assert rows[0]["category"] == "High"
    assert rows[0]["recap"] == rows[2]["recap"] == "Acme Imaging makes medical devices."
    assert sorted(provider.calls) == ["Acme Imaging", "Beta Devices"]

    runs = loaded_db.get_runs("May-2025")
    assert len(runs) == 1
    assert runs[0]["status"] == "completed"
    assert runs[0]["final_state"] == "Done"
    assert runs[0]["records_scored"] == 3
    assert runs[0]["refresh_succeeded"] is True


@pytest.mark.asyncio
async def test_archived_period_is_skipped_without_writes(loaded_db):
    ArchiveStore(loaded_db).write("May-2025", [])
    registry = FakeRegistry(["Submissions510k"])
    provider = FakeProvider()
    orchestrator = _build(loaded_db, registry=registry, provider=provider)

    first = await orchestrator.run(RUN_DATE)
    second = await orchestrator.run(RUN_DATE)

    for outcome in (first, second):
        assert outcome.state == RunState.SKIPPED_ALREADY_ARCHIVED
        assert outcome.transitions == ["PeriodResolved", "SkippedAlreadyArchived", "Idle"]
        assert outcome.exit_code() == 0
    assert registry.refreshed == []
    assert provider.calls == []
    assert _table_count(loaded_db, "archived_rows") == 0
    assert _table_count(loaded_db, "monthly_runs") == 0
    assert _table_count(loaded_db, "company_recaps") == 0


@pytest.mark.asyncio
async def test_second_run_after_success_is_skipped(loaded_db):
    orchestrator = _build(loaded_db)

    first = await orchestrator.run(RUN_DATE)
    second = await orchestrator.run(RUN_DATE)

    assert first.state == RunState.DONE
    assert second.state == RunState.SKIPPED_ALREADY_ARCHIVED
    assert len(ArchiveStore(loaded_db).read("May-2025")) == 3


@pytest.mark.asyncio
async def test_refresh_failure_does_not_stop_run(loaded_db):
    registry = FakeRegistry([], legacy_result=False)
    orchestrator = _build(loaded_db, registry=registry)

    outcome = await orchestrator.run(RUN_DATE)

    assert outcome.state == RunState.DONE
    assert outcome.refresh_succeeded is False
    assert outcome.archived
    assert loaded_db.get_runs()[0]["refresh_succeeded"] is False


@pytest.mark.asyncio
async def test_refresh_can_be_disabled(loaded_db):
    registry = FakeRegistry(["Submissions510k"])
    orchestrator = _build(loaded_db, registry=registry, run_config=RunConfiguration(refresh_enabled=False))

    outcome = await orchestrator.run(RUN_DATE)

    assert outcome.state == RunState.DONE
    assert registry.refreshed == []
    assert registry.legacy_calls == 0


@pytest.mark.asyncio
async def test_row_errors_are_counted_and_archived(loaded_db):
    loaded_db.upsert_submission(make_record(submission_number="K250199", device_name=""))
    orchestrator = _build(loaded_db)

    outcome = await orchestrator.run(RUN_DATE)

    assert outcome.state == RunState.DONE
    assert outcome.records_scored == 3
    assert outcome.records_errored == 1
    assert outcome.exit_code() == 2

    rows = ArchiveStore(loaded_db).read("May-2025")
    assert len(rows) == 4
    assert rows[3]["submission_number"] == "K250199"
    assert rows[3]["category"] == "Error"


@pytest.mark.asyncio
async def test_recap_failures_do_not_fail_run(loaded_db):
    orchestrator = _build(loaded_db, provider=FakeProvider(fail=True))

    outcome = await orchestrator.run(RUN_DATE)

    assert outcome.state == RunState.DONE
    assert outcome.recap_stats["provider_failures"] == 2
    assert all(row["recap"] == "" for row in ArchiveStore(loaded_db).read("May-2025"))


@pytest.mark.asyncio
async def test_archive_failure_ends_in_failed_and_releases_run(loaded_db):
    class BrokenArchive(ArchiveStore):
        def write(self, period_key, batch, **kwargs):
            raise ArchiveError("disk full")

    orchestrator = _build(loaded_db, archive=BrokenArchive(loaded_db))

    outcome = await orchestrator.run(RUN_DATE)

    assert outcome.state == RunState.FAILED
    assert "disk full" in outcome.error
    assert outcome.exit_code() == 1
    assert outcome.transitions[-2:] == ["Failed", "Idle"]
    assert orchestrator.state == RunState.IDLE
    assert not ArchiveStore(loaded_db).exists("May-2025")

    runs = loaded_db.get_runs("May-2025")
    assert runs[0]["status"] == "failed"
    assert runs[0]["final_state"] == "Failed"
    assert runs[0]["completed_at"]

    orchestrator.archive = ArchiveStore(loaded_db)
    retry = await orchestrator.run(RUN_DATE)
    assert retry.state == RunState.DONE


@pytest.mark.asyncio
async def test_source_failure_ends_in_failed(db):
    class BrokenSource:
        def get_submissions(self):
            raise RuntimeError("source unavailable")

    orchestrator = _build(db)
    orchestrator.source = BrokenSource()

    outcome = await orchestrator.run(RUN_DATE)

    assert outcome.state == RunState.FAILED
    assert "source unavailable" in outcome.error
    assert not ArchiveStore(db).exists("May-2025")


@pytest.mark.asyncio
async def test_cancellation_runs_failed_cleanup(loaded_db):
    gate = asyncio.Event()
    provider = FakeProvider(gate=gate)
    orchestrator = _build(loaded_db, provider=provider)

    task = asyncio.create_task(orchestrator.run(RUN_DATE))
    await asyncio.wait_for(provider.started.wait(), timeout=1.0)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task

    outcome = orchestrator.last_outcome
    assert outcome.state == RunState.FAILED
    assert outcome.error == "run cancelled"
    assert orchestrator.state == RunState.IDLE
    assert not ArchiveStore(loaded_db).exists("May-2025")
    assert loaded_db.get_runs("May-2025")[0]["status"] == "failed"


@pytest.mark.asyncio
async def test_concurrent_run_is_rejected(loaded_db):
    gate = asyncio.Event()
    provider = FakeProvider(gate=gate)
    orchestrator = _build(loaded_db, provider=provider)

    task = asyncio.create_task(orchestrator.run(RUN_DATE))
    await asyncio.wait_for(provider.started.wait(), timeout=1.0)

    with pytest.raises(RunInProgressError):
        await orchestrator.run(RUN_DATE)

    gate.set()
    outcome = await task
    assert outcome.state == RunState.DONE


@pytest.mark.asyncio
async def test_dry_run_scores_without_archiving(loaded_db):
    orchestrator = _build(loaded_db, run_config=RunConfiguration(dry_run=True))

    outcome = await orchestrator.run(RUN_DATE)

    assert outcome.state == RunState.DONE
    assert outcome.dry_run
    assert outcome.records_scored == 3
    assert not outcome.archived
    assert "Archiving" not in outcome.transitions
    assert not ArchiveStore(loaded_db).exists("May-2025")


@pytest.mark.asyncio
async def test_period_override(loaded_db):
    orchestrator = _build(loaded_db, run_config=RunConfiguration(period_override=date(2024, 3, 20)))

    outcome = await orchestrator.run(RUN_DATE)

    assert outcome.period_key == "Mar-2024"
    assert ArchiveStore(loaded_db).exists("Mar-2024")


@pytest.mark.asyncio
async def test_stale_running_rows_are_abandoned(loaded_db):
    loaded_db.start_run("Apr-2025")
    orchestrator = _build(loaded_db)

    await orchestrator.run(RUN_DATE)

    statuses = {run["period_key"]: run["status"] for run in loaded_db.get_runs()}
    assert statuses == {"Apr-2025": "abandoned", "May-2025": "completed"}


def test_invalid_transition_is_rejected(db):
    orchestrator = _build(db)

    with pytest.raises(InvalidTransitionError):
        orchestrator._transition(RunState.ARCHIVING)
    assert orchestrator.state == RunState.IDLE


def test_run_sync(loaded_db):
    outcome = _build(loaded_db).run_sync(RUN_DATE)
    assert outcome.state == RunState.DONE

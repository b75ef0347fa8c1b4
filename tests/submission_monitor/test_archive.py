import csv
import io
import sqlite3
from datetime import date

import pytest

from src.submission_monitor.archive import ARCHIVE_COLUMNS
from src.submission_monitor.errors import ArchiveExistsError
from src.submission_monitor.models import ScoredSubmission

from fakes import make_record


def _batch(engine, count=3):
    items = []
    for index in range(count):
        record = make_record(
            submission_number=f"K25{index:04d}",
            advisory_committee="RA",
            device_name=f"Deep learning device {index}",
            processing_days=170 + index,
        )
        items.append(ScoredSubmission(record=record, result=engine.score(record), recap=f"Recap {index}"))
    return items


def _row_count(db, period_key):
    conn = sqlite3.connect(str(db.db_path))
    try:
        (count,) = conn.execute("SELECT COUNT(*) FROM archived_rows WHERE period_key = ?", (period_key,)).fetchone()
    finally:
        conn.close()
    return count


def test_write_and_read_period(archive, engine):
    batch = _batch(engine)

    written = archive.write("May-2025", batch, period_start=date(2025, 5, 1), run_id=7)

    assert written == 3
    assert archive.exists("May-2025")
    assert not archive.exists("Apr-2025")

    rows = archive.read("May-2025")
    assert [row["submission_number"] for row in rows] == ["K250000", "K250001", "K250002"]
    assert list(rows[0].keys()) == ARCHIVE_COLUMNS
    assert rows[0]["score"] == pytest.approx(batch[0].result.score)
    assert rows[0]["category"] == batch[0].result.category
    assert rows[0]["processing_days"] == "170"
    assert rows[2]["recap"] == "Recap 2"

    periods = archive.list_periods()
    assert periods[0]["period_key"] == "May-2025"
    assert periods[0]["period_start"] == "2025-05-01"
    assert periods[0]["record_count"] == 3
    assert periods[0]["run_id"] == 7


def test_empty_batch_still_marks_period(archive):
    assert archive.write("Jan-2025", []) == 0
    assert archive.exists("Jan-2025")
    assert archive.read("Jan-2025") == []


def test_existing_period_is_never_overwritten(archive, engine, db):
    archive.write("May-2025", _batch(engine, 2))

    with pytest.raises(ArchiveExistsError) as exc_info:
        archive.write("May-2025", _batch(engine, 5))

    assert exc_info.value.period_key == "May-2025"
    assert _row_count(db, "May-2025") == 2


def test_interrupted_write_leaves_no_trace(archive, engine, db):
    items = _batch(engine, 3)

    def failing_batch():
        yield items[0]
        yield items[1]
        raise RuntimeError("connection dropped")

    with pytest.raises(RuntimeError):
        archive.write("Jun-2025", failing_batch())

    assert not archive.exists("Jun-2025")
    assert _row_count(db, "Jun-2025") == 0

    assert archive.write("Jun-2025", items) == 3
    assert archive.exists("Jun-2025")


def test_export_to_csv(archive, engine):
    archive.write("May-2025", _batch(engine, 2))

    reader = csv.DictReader(io.StringIO(archive.export_to_csv("May-2025")))
    rows = list(reader)

    assert reader.fieldnames == ARCHIVE_COLUMNS
    assert [row["submission_number"] for row in rows] == ["K250000", "K250001"]
    assert rows[1]["recap"] == "Recap 1"

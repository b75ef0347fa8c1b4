"""Monthly archive of scored submissions.

Each reporting period is archived exactly once as a flat, values-only row
set. A write happens inside a single SQLite transaction: the rows are
inserted first and the period marker last, so an interrupted write never
leaves the period looking archived.
"""

from __future__ import annotations

import csv
import io
import sqlite3
from datetime import date
from typing import Any, Dict, Iterable, List, Optional

from .database import SubmissionDatabase, _utc_now
from .errors import ArchiveError, ArchiveExistsError
from .logging_config import get_logger
from .models import ScoredSubmission

logger = get_logger("archive")

ARCHIVE_COLUMNS = [
    "submission_number",
    "advisory_committee",
    "product_code",
    "submission_type",
    "device_name",
    "statement",
    "country_code",
    "processing_days",
    "applicant",
    "decision_date",
    "score",
    "category",
    "committee_weight",
    "product_weight",
    "keyword_weight",
    "submission_type_weight",
    "processing_time_weight",
    "geography_weight",
    "negative_factor",
    "synergy_bonus",
    "recap",
]

_INSERT_ROW_SQL = (
    "INSERT INTO archived_rows (period_key, row_index, "
    + ", ".join(ARCHIVE_COLUMNS)
    + ") VALUES (:period_key, :row_index, "
    + ", ".join(f":{column}" for column in ARCHIVE_COLUMNS)
    + ")"
)


class ArchiveStore:
    """Stores immutable monthly snapshots keyed by period."""

    def __init__(self, db: SubmissionDatabase) -> None:
        self.db = db

    def exists(self, period_key: str) -> bool:
        with self.db.connect() as conn:
            row = conn.execute(
                "SELECT 1 FROM archived_periods WHERE period_key = ?",
                (period_key,),
            ).fetchone()
        return row is not None

    def write(
        self,
        period_key: str,
        batch: Iterable[ScoredSubmission],
        *,
        period_start: Optional[date] = None,
        run_id: Optional[int] = None,
    ) -> int:
        """Write the full batch for ``period_key``; all or nothing.

        Returns:
            Number of archived rows

        Raises:
            ArchiveExistsError: if the period is already archived
            ArchiveError: if the snapshot could not be written
        """
        conn = self.db.connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            existing = conn.execute(
                "SELECT 1 FROM archived_periods WHERE period_key = ?",
                (period_key,),
            ).fetchone()
            if existing:
                raise ArchiveExistsError(period_key)

            count = 0
            for row_index, item in enumerate(batch):
                row = item.to_row()
                row["period_key"] = period_key
                row["row_index"] = row_index
                conn.execute(_INSERT_ROW_SQL, row)
                count += 1

            conn.execute(
                """
                INSERT INTO archived_periods (period_key, period_start, record_count, run_id, archived_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    period_key,
                    period_start.isoformat() if period_start else None,
                    count,
                    run_id,
                    _utc_now(),
                ),
            )
            conn.commit()
        except ArchiveExistsError:
            conn.rollback()
            raise
        except sqlite3.Error as exc:
            conn.rollback()
            logger.error(f"Archive write for {period_key} failed: {exc}")
            raise ArchiveError(f"Failed to archive period {period_key}: {exc}") from exc
        except BaseException:
            conn.rollback()
            logger.error(f"Archive write for {period_key} interrupted; rolled back")
            raise
        finally:
            conn.close()

        logger.info(f"Archived {count} records for period {period_key}")
        return count

    def read(self, period_key: str) -> List[Dict[str, Any]]:
        """Return the archived rows for a period in their original order."""
        columns = ", ".join(ARCHIVE_COLUMNS)
        with self.db.connect() as conn:
            rows = conn.execute(
                f"SELECT {columns} FROM archived_rows WHERE period_key = ? ORDER BY row_index",
                (period_key,),
            ).fetchall()
        return [dict(row) for row in rows]

    def list_periods(self) -> List[Dict[str, Any]]:
        with self.db.connect() as conn:
            rows = conn.execute(
                "SELECT period_key, period_start, record_count, run_id, archived_at "
                "FROM archived_periods ORDER BY period_start, period_key"
            ).fetchall()
        return [dict(row) for row in rows]

    def export_to_csv(self, period_key: str) -> str:
        """Export an archived period as CSV text for read-only reporting."""
        output = io.StringIO()
        writer = csv.DictWriter(output, fieldnames=ARCHIVE_COLUMNS)
        writer.writeheader()
        for row in self.read(period_key):
            writer.writerow(row)
        return output.getvalue()

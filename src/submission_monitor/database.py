"""Submission monitor database interface.

Provides schema management, submission storage, the durable recap layer and
the monthly run history for the submission monitor.
"""

from __future__ import annotations

import argparse
import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from .logging_config import get_logger
from .models import RecapEntry, SubmissionRecord

ISO_TIMESTAMP_SUFFIX = "Z"

RUN_STATUS_RUNNING = "running"
RUN_STATUS_COMPLETED = "completed"
RUN_STATUS_FAILED = "failed"
RUN_STATUS_ABANDONED = "abandoned"

logger = get_logger("database")


def _utc_now() -> str:
    """Return a UTC timestamp string with second precision."""
    return datetime.now(timezone.utc).replace(microsecond=0, tzinfo=None).isoformat() + ISO_TIMESTAMP_SUFFIX


def _parse_timestamp(value: Optional[str]) -> datetime:
    if not value:
        return datetime.min.replace(tzinfo=timezone.utc)
    text = value[:-1] if value.endswith(ISO_TIMESTAMP_SUFFIX) else value
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class SubmissionDatabase:
    """High-level helper for the submission monitor SQLite database."""

    DEFAULT_DB_PATH = Path("database/submission_monitor.db")

    def __init__(self, db_path: Optional[Union[str, Path]] = None, auto_initialize: bool = True) -> None:
        path = Path(db_path) if db_path else self.DEFAULT_DB_PATH
        if not path.is_absolute():
            path = Path.cwd() / path
        self.db_path = path
        if auto_initialize:
            self.initialize()

    # ------------------------------------------------------------------
    # Lifecycle helpers
    # ------------------------------------------------------------------
    def initialize(self) -> None:
        """Initialise database directory and ensure schema exists."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self.connect() as conn:
            self._apply_pragmas(conn)
            self._create_schema(conn)
            conn.commit()

    def connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    @staticmethod
    def _apply_pragmas(conn: sqlite3.Connection) -> None:
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        conn.execute("PRAGMA temp_store=MEMORY")

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS submissions (
                submission_number TEXT PRIMARY KEY,
                advisory_committee TEXT,
                product_code TEXT,
                submission_type TEXT,
                device_name TEXT,
                statement TEXT,
                country_code TEXT,
                processing_days TEXT,
                applicant TEXT,
                decision_date TEXT,
                position INTEGER NOT NULL DEFAULT 0,
                loaded_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS company_recaps (
                company_key TEXT PRIMARY KEY,
                company TEXT NOT NULL,
                summary TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS monthly_runs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                period_key TEXT NOT NULL,
                started_at TEXT NOT NULL,
                completed_at TEXT,
                status TEXT NOT NULL DEFAULT 'running',
                final_state TEXT,
                records_scored INTEGER NOT NULL DEFAULT 0,
                records_errored INTEGER NOT NULL DEFAULT 0,
                refresh_succeeded INTEGER NOT NULL DEFAULT 0,
                metadata TEXT
            );

            CREATE TABLE IF NOT EXISTS archived_periods (
                period_key TEXT PRIMARY KEY,
                period_start TEXT,
                record_count INTEGER NOT NULL,
                run_id INTEGER,
                archived_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS archived_rows (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                period_key TEXT NOT NULL,
                row_index INTEGER NOT NULL,
                submission_number TEXT,
                advisory_committee TEXT,
                product_code TEXT,
                submission_type TEXT,
                device_name TEXT,
                statement TEXT,
                country_code TEXT,
                processing_days TEXT,
                applicant TEXT,
                decision_date TEXT,
                score REAL NOT NULL,
                category TEXT NOT NULL,
                committee_weight REAL,
                product_weight REAL,
                keyword_weight REAL,
                submission_type_weight REAL,
                processing_time_weight REAL,
                geography_weight REAL,
                negative_factor REAL,
                synergy_bonus REAL,
                recap TEXT,
                UNIQUE (period_key, row_index)
            );

            CREATE INDEX IF NOT EXISTS idx_submissions_position ON submissions(position);
            CREATE INDEX IF NOT EXISTS idx_archived_rows_period ON archived_rows(period_key);
            CREATE INDEX IF NOT EXISTS idx_runs_period ON monthly_runs(period_key);
            CREATE INDEX IF NOT EXISTS idx_runs_status ON monthly_runs(status);
            """
        )

    # ------------------------------------------------------------------
    # Submissions
    # ------------------------------------------------------------------
    def replace_submissions(self, records: Iterable[SubmissionRecord]) -> int:
        """Replace the current submission batch atomically."""
        loaded_at = _utc_now()
        count = 0
        with self.connect() as conn:
            conn.execute("BEGIN")
            conn.execute("DELETE FROM submissions")
            for position, record in enumerate(records):
                self._write_submission(conn, record, position, loaded_at)
                count += 1
            conn.commit()
        return count

    def upsert_submission(self, record: SubmissionRecord) -> None:
        with self.connect() as conn:
            row = conn.execute("SELECT COALESCE(MAX(position), -1) + 1 AS next FROM submissions").fetchone()
            existing = conn.execute(
                "SELECT position FROM submissions WHERE submission_number = ?",
                (record.submission_number,),
            ).fetchone()
            position = existing["position"] if existing else row["next"]
            self._write_submission(conn, record, position, _utc_now())
            conn.commit()

    @staticmethod
    def _write_submission(conn: sqlite3.Connection, record: SubmissionRecord, position: int, loaded_at: str) -> None:
        payload = record.to_dict()
        if payload["processing_days"] is not None:
            payload["processing_days"] = str(payload["processing_days"])
        payload["position"] = position
        payload["loaded_at"] = loaded_at
        conn.execute(
            """
            INSERT INTO submissions (
                submission_number, advisory_committee, product_code, submission_type,
                device_name, statement, country_code, processing_days, applicant,
                decision_date, position, loaded_at
            ) VALUES (
                :submission_number, :advisory_committee, :product_code, :submission_type,
                :device_name, :statement, :country_code, :processing_days, :applicant,
                :decision_date, :position, :loaded_at
            )
            ON CONFLICT(submission_number) DO UPDATE SET
                advisory_committee = excluded.advisory_committee,
                product_code = excluded.product_code,
                submission_type = excluded.submission_type,
                device_name = excluded.device_name,
                statement = excluded.statement,
                country_code = excluded.country_code,
                processing_days = excluded.processing_days,
                applicant = excluded.applicant,
                decision_date = excluded.decision_date,
                loaded_at = excluded.loaded_at
            """,
            payload,
        )

    def get_submissions(self) -> List[SubmissionRecord]:
        """Return the currently available submissions in load order."""
        with self.connect() as conn:
            rows = conn.execute("SELECT * FROM submissions ORDER BY position, submission_number").fetchall()
        return [SubmissionRecord.from_mapping(dict(row)) for row in rows]

    def count_submissions(self) -> int:
        with self.connect() as conn:
            (count,) = conn.execute("SELECT COUNT(*) FROM submissions").fetchone()
        return int(count)

    # ------------------------------------------------------------------
    # Company recaps
    # ------------------------------------------------------------------
    def load_recaps(self) -> Dict[str, RecapEntry]:
        with self.connect() as conn:
            rows = conn.execute("SELECT * FROM company_recaps").fetchall()
        return {
            row["company_key"]: RecapEntry(
                key=row["company_key"],
                company=row["company"],
                summary=row["summary"],
                updated_at=_parse_timestamp(row["updated_at"]),
            )
            for row in rows
        }

    def save_recap(self, entry: RecapEntry) -> None:
        updated_at = entry.updated_at
        if updated_at.tzinfo is not None:
            updated_at = updated_at.astimezone(timezone.utc).replace(tzinfo=None)
        with self.connect() as conn:
            conn.execute(
                """
                INSERT INTO company_recaps (company_key, company, summary, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(company_key) DO UPDATE SET
                    company = excluded.company,
                    summary = excluded.summary,
                    updated_at = excluded.updated_at
                """,
                (
                    entry.key,
                    entry.company,
                    entry.summary,
                    updated_at.replace(microsecond=0).isoformat() + ISO_TIMESTAMP_SUFFIX,
                ),
            )
            conn.commit()

    # ------------------------------------------------------------------
    # Run history
    # ------------------------------------------------------------------
    def start_run(self, period_key: str, metadata: Optional[Dict[str, Any]] = None) -> int:
        with self.connect() as conn:
            cur = conn.execute(
                """
                INSERT INTO monthly_runs (period_key, started_at, metadata)
                VALUES (?, ?, ?)
                """,
                (period_key, _utc_now(), self._to_json(metadata)),
            )
            run_id = int(cur.lastrowid)
            conn.commit()
        return run_id

    def complete_run(
        self,
        run_id: int,
        *,
        status: str = RUN_STATUS_COMPLETED,
        final_state: Optional[str] = None,
        records_scored: int = 0,
        records_errored: int = 0,
        refresh_succeeded: bool = False,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        with self.connect() as conn:
            conn.execute(
                """
                UPDATE monthly_runs
                   SET status = ?,
                       final_state = ?,
                       completed_at = ?,
                       records_scored = ?,
                       records_errored = ?,
                       refresh_succeeded = ?,
                       metadata = COALESCE(?, metadata)
                 WHERE id = ?
                """,
                (
                    status,
                    final_state,
                    _utc_now(),
                    records_scored,
                    records_errored,
                    int(refresh_succeeded),
                    self._to_json(metadata),
                    run_id,
                ),
            )
            conn.commit()

    def close_stale_runs(self) -> int:
        """Mark runs left in ``running`` by a crashed process as abandoned."""
        with self.connect() as conn:
            cur = conn.execute(
                "UPDATE monthly_runs SET status = ?, completed_at = ? WHERE status = ?",
                (RUN_STATUS_ABANDONED, _utc_now(), RUN_STATUS_RUNNING),
            )
            conn.commit()
        if cur.rowcount:
            logger.warning(f"Marked {cur.rowcount} orphaned run(s) as abandoned")
        return cur.rowcount

    def get_runs(self, period_key: Optional[str] = None) -> List[Dict[str, Any]]:
        query = "SELECT * FROM monthly_runs"
        params: List[Any] = []
        if period_key:
            query += " WHERE period_key = ?"
            params.append(period_key)
        query += " ORDER BY id"
        with self.connect() as conn:
            rows = conn.execute(query, params).fetchall()
        runs = []
        for row in rows:
            data = dict(row)
            data["refresh_succeeded"] = bool(data["refresh_succeeded"])
            data["metadata"] = self._from_json(data.get("metadata"), default={})
            runs.append(data)
        return runs

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _to_json(value: Optional[Any]) -> Optional[str]:
        if value is None:
            return None
        return json.dumps(value, sort_keys=True)

    @staticmethod
    def _from_json(value: Optional[str], default: Any) -> Any:
        if not value:
            return default
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return default


def main(argv: Optional[Sequence[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Submission monitor database helper")
    parser.add_argument("--init", action="store_true", help="Initialise the database schema")
    parser.add_argument("--db-path", help="Override database path", default=None)
    args = parser.parse_args(argv)

    db = SubmissionDatabase(db_path=args.db_path, auto_initialize=False)
    if args.init:
        db.initialize()
        print(f"Initialised submission database at {db.db_path}")
    else:
        parser.print_help()


if __name__ == "__main__":
    main()

"""Loading of submission batches from FDA 510(k) export files.

Accepts the pipe-delimited FDA release files, comma/tab separated CSV and
JSON lists. Column names are matched case-insensitively against both the
FDA headers (``KNUMBER``, ``REVIEWADVISECOMM``...) and the snake_case field
names used internally.
"""

from __future__ import annotations

import csv
import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from dateutil import parser as date_parser

from .database import SubmissionDatabase
from .logging_config import get_logger
from .models import SubmissionRecord

logger = get_logger("ingest")

FIELD_ALIASES: Dict[str, tuple[str, ...]] = {
    "submission_number": ("submission_number", "knumber", "k_number"),
    "advisory_committee": ("advisory_committee", "reviewadvisecomm", "review_advise_comm", "committee"),
    "product_code": ("product_code", "productcode"),
    "submission_type": ("submission_type", "type"),
    "device_name": ("device_name", "devicename"),
    "statement": ("statement", "stateorsumm", "statement_or_summary"),
    "country_code": ("country_code", "country"),
    "processing_days": ("processing_days", "processing_time", "review_days"),
    "applicant": ("applicant", "company", "company_name"),
    "decision_date": ("decision_date", "decisiondate"),
}

RECEIVED_DATE_ALIASES = ("date_received", "datereceived")


def parse_date(value: Any) -> Optional[datetime]:
    """Parse a loosely formatted date, returning ``None`` when unparsable."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    text = str(value).strip()
    if not text:
        return None
    try:
        return date_parser.parse(text)
    except (ValueError, OverflowError):
        return None


def _lookup(row: Mapping[str, Any], aliases: Iterable[str]) -> Any:
    for alias in aliases:
        if alias in row and row[alias] not in (None, ""):
            return row[alias]
    return None


def normalize_row(row: Mapping[str, Any]) -> Dict[str, Any]:
    """Map an export row onto :class:`SubmissionRecord` field names."""
    lowered = {str(key).strip().lower(): value for key, value in row.items() if key is not None}
    data = {field: _lookup(lowered, aliases) for field, aliases in FIELD_ALIASES.items()}

    decision = parse_date(data.get("decision_date"))
    if decision is not None:
        data["decision_date"] = decision.date().isoformat()

    if data.get("processing_days") is None:
        received = parse_date(_lookup(lowered, RECEIVED_DATE_ALIASES))
        if received is not None and decision is not None:
            data["processing_days"] = (decision.date() - received.date()).days

    return data


def _read_rows(path: Path) -> List[Dict[str, Any]]:
    if path.suffix.lower() == ".json":
        with open(path, "r", encoding="utf-8") as handle:
            data = json.load(handle)
        if isinstance(data, dict):
            data = data.get("submissions") or data.get("results") or []
        return [dict(item) for item in data if isinstance(item, Mapping)]

    with open(path, "r", encoding="utf-8-sig", errors="replace", newline="") as handle:
        sample = handle.read(4096)
        handle.seek(0)
        try:
            dialect = csv.Sniffer().sniff(sample, delimiters="|,\t")
            delimiter = dialect.delimiter
        except csv.Error:
            delimiter = ","
        return [dict(row) for row in csv.DictReader(handle, delimiter=delimiter)]


def load_submissions_file(path: Union[str, Path]) -> List[SubmissionRecord]:
    """Read submissions from an export file, skipping rows without a K number."""
    source_path = Path(path)
    if not source_path.exists():
        raise FileNotFoundError(f"Submission file not found: {source_path}")

    records: List[SubmissionRecord] = []
    skipped = 0
    for row in _read_rows(source_path):
        data = normalize_row(row)
        if not data.get("submission_number"):
            skipped += 1
            continue
        records.append(SubmissionRecord.from_mapping(data))

    if skipped:
        logger.warning(f"Skipped {skipped} rows without a submission number in {source_path}")
    logger.info(f"Loaded {len(records)} submissions from {source_path}")
    return records


def ingest_file(db: SubmissionDatabase, path: Union[str, Path], *, replace: bool = True) -> int:
    """Load an export file into the database and return the number of rows stored."""
    records = load_submissions_file(path)
    if replace:
        return db.replace_submissions(records)
    for record in records:
        db.upsert_submission(record)
    return len(records)

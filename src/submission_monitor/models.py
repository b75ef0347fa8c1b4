"""Data models for the submission monitor."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

CATEGORY_HIGH = "High"
CATEGORY_MODERATE = "Moderate"
CATEGORY_LOW = "Low"
CATEGORY_ALMOST_NONE = "Almost None"
CATEGORY_ERROR = "Error"

ALL_CATEGORIES = [CATEGORY_HIGH, CATEGORY_MODERATE, CATEGORY_LOW, CATEGORY_ALMOST_NONE]


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


@dataclass(frozen=True)
class SubmissionRecord:
    """A single 510(k) submission as ingested for a monthly run.

    Fields are kept as plain text so that malformed upstream rows can still
    be represented; validation happens when the record is scored.
    """

    submission_number: str
    advisory_committee: str = ""
    product_code: str = ""
    submission_type: str = ""
    device_name: str = ""
    statement: str = ""
    country_code: str = ""
    processing_days: Any = None
    applicant: str = ""
    decision_date: str = ""

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "SubmissionRecord":
        """Build a record from a dict without validating required fields."""
        return cls(
            submission_number=_text(data.get("submission_number")),
            advisory_committee=_text(data.get("advisory_committee")),
            product_code=_text(data.get("product_code")),
            submission_type=_text(data.get("submission_type")),
            device_name=_text(data.get("device_name")),
            statement=_text(data.get("statement")),
            country_code=_text(data.get("country_code")),
            processing_days=data.get("processing_days"),
            applicant=_text(data.get("applicant")),
            decision_date=_text(data.get("decision_date")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "submission_number": self.submission_number,
            "advisory_committee": self.advisory_committee,
            "product_code": self.product_code,
            "submission_type": self.submission_type,
            "device_name": self.device_name,
            "statement": self.statement,
            "country_code": self.country_code,
            "processing_days": self.processing_days,
            "applicant": self.applicant,
            "decision_date": self.decision_date,
        }


@dataclass(frozen=True)
class ScoreResult:
    """Composite score with the factor values that produced it."""

    score: float
    category: str
    committee_weight: float = 0.0
    product_weight: float = 0.0
    keyword_weight: float = 0.0
    submission_type_weight: float = 0.0
    processing_time_weight: float = 0.0
    geography_weight: float = 0.0
    negative_factor: float = 0.0
    synergy_bonus: float = 0.0

    @classmethod
    def error_result(cls) -> "ScoreResult":
        return cls(score=0.0, category=CATEGORY_ERROR)

    @property
    def is_error(self) -> bool:
        return self.category == CATEGORY_ERROR

    def factors(self) -> Dict[str, float]:
        return {
            "committee_weight": self.committee_weight,
            "product_weight": self.product_weight,
            "keyword_weight": self.keyword_weight,
            "submission_type_weight": self.submission_type_weight,
            "processing_time_weight": self.processing_time_weight,
            "geography_weight": self.geography_weight,
            "negative_factor": self.negative_factor,
            "synergy_bonus": self.synergy_bonus,
        }


@dataclass(frozen=True)
class ScoringFault:
    """Row-level scoring failure reported to the caller's error sink."""

    submission_number: str
    error_type: str
    message: str


@dataclass(frozen=True)
class ScoreOutcome:
    """Result of scoring one record: either a score or a recovered fault."""

    result: ScoreResult
    fault: Optional[ScoringFault] = None

    @property
    def ok(self) -> bool:
        return self.fault is None


@dataclass(frozen=True)
class RecapEntry:
    """Cached company summary."""

    key: str
    company: str
    summary: str
    updated_at: datetime


@dataclass(frozen=True)
class RecapLookup:
    """Outcome of a recap lookup, including which layer served it."""

    company: str
    summary: str
    source: str  # "memory", "storage", "provider", "stale", "placeholder"
    error: Optional[str] = None

    @property
    def degraded(self) -> bool:
        return self.source in ("stale", "placeholder")


@dataclass(frozen=True)
class ScoredSubmission:
    """A submission enriched with its score and company recap."""

    record: SubmissionRecord
    result: ScoreResult
    recap: str = ""

    def to_row(self) -> Dict[str, Any]:
        """Flatten into the values-only archive row layout."""
        row = self.record.to_dict()
        processing_days = row["processing_days"]
        row["processing_days"] = None if processing_days is None else str(processing_days)
        row["score"] = self.result.score
        row["category"] = self.result.category
        row.update(self.result.factors())
        row["recap"] = self.recap
        return row


@dataclass
class HttpConfig:
    """Timeout and retry settings for outbound HTTP calls."""

    timeout_seconds: float = 30.0
    max_retries: int = 3
    retry_base_delay: float = 1.0
    retry_exponential_base: float = 2.0
    retry_max_delay: float = 30.0
    headers: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class RefreshResult:
    """Outcome of a data refresh attempt."""

    success: bool
    strategy: Optional[str] = None
    connection: Optional[str] = None
    error: Optional[str] = None


class RunState(str, Enum):
    """States of the monthly orchestration state machine."""

    IDLE = "Idle"
    PERIOD_RESOLVED = "PeriodResolved"
    SKIPPED_ALREADY_ARCHIVED = "SkippedAlreadyArchived"
    REFRESHING = "Refreshing"
    SCORING = "Scoring"
    ARCHIVING = "Archiving"
    DONE = "Done"
    FAILED = "Failed"


@dataclass
class RunOutcome:
    """Structured report of a monthly run."""

    state: RunState
    period_key: Optional[str] = None
    run_id: Optional[int] = None
    started_at: str = ""
    completed_at: str = ""
    records_scored: int = 0
    records_errored: int = 0
    refresh_succeeded: bool = False
    refresh_strategy: Optional[str] = None
    archived: bool = False
    dry_run: bool = False
    error: Optional[str] = None
    recap_stats: Dict[str, int] = field(default_factory=dict)
    transitions: List[str] = field(default_factory=list)

    def exit_code(self) -> int:
        """Return appropriate exit code based on run status."""
        if self.state == RunState.FAILED:
            return 1
        if self.records_errored:
            return 2
        return 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert outcome to dictionary for JSON serialization."""
        return {
            "state": self.state.value,
            "period_key": self.period_key,
            "run_id": self.run_id,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "records_scored": self.records_scored,
            "records_errored": self.records_errored,
            "refresh_succeeded": self.refresh_succeeded,
            "refresh_strategy": self.refresh_strategy,
            "archived": self.archived,
            "dry_run": self.dry_run,
            "error": self.error,
            "recap_stats": dict(self.recap_stats),
            "transitions": list(self.transitions),
            "exit_code": self.exit_code(),
        }

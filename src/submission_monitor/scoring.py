"""Scoring engine for 510(k) submissions.

Maps one submission plus a :class:`WeightConfiguration` to a
:class:`ScoreResult`. Scoring is pure and deterministic; a faulty record
never aborts the batch. Instead the fault is reported to the caller's error
sink and a sentinel ``Error`` result is returned.

Composite score::

    (committee + product + keyword + submission type + processing time
     + geography + negative factor + synergy bonus) / 6, floored at 0

The divisor stays at 6 even though up to eight terms are summed.
"""

from __future__ import annotations

import math
import re
from typing import Callable, Optional, Pattern, Sequence

from .errors import MissingFieldError
from .logging_config import get_logger
from .models import (
    CATEGORY_ALMOST_NONE,
    CATEGORY_HIGH,
    CATEGORY_LOW,
    CATEGORY_MODERATE,
    ScoreOutcome,
    ScoreResult,
    ScoringFault,
    SubmissionRecord,
)
from .weights import WeightConfiguration

logger = get_logger("scoring")

ErrorSink = Callable[[ScoringFault], None]

REQUIRED_FIELDS = ("submission_number", "advisory_committee", "product_code", "device_name")


def build_keyword_pattern(keywords: Sequence[str]) -> Optional[Pattern[str]]:
    """Compile a case-insensitive alternation matching any keyword literally."""
    escaped = [re.escape(keyword) for keyword in keywords if keyword]
    if not escaped:
        return None
    return re.compile("|".join(escaped), flags=re.IGNORECASE)


def _matches(pattern: Optional[Pattern[str]], text: str) -> bool:
    return pattern is not None and pattern.search(text) is not None


def parse_processing_days(value: object) -> Optional[float]:
    """Parse a processing time; ``None`` means unknown (unparsable or zero)."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        text = str(value).strip().replace(",", "")
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    if not math.isfinite(number) or number == 0:
        return None
    return number


def categorize(score: float, config: WeightConfiguration) -> str:
    """Bucket a floored score into one of the four categories.

    ``> high_cut`` is High, ``[mid_cut, high_cut]`` Moderate,
    ``[low_cut, mid_cut)`` Low and everything else, including 0, Almost None.
    """
    if score > config.high_cut:
        return CATEGORY_HIGH
    if config.mid_cut <= score <= config.high_cut:
        return CATEGORY_MODERATE
    if score > 0 and config.low_cut <= score < config.mid_cut:
        return CATEGORY_LOW
    return CATEGORY_ALMOST_NONE


class ScoringEngine:
    """Scores submission records against a weight configuration.

    Keyword patterns are compiled once per engine. The configuration is
    read-only, so a single engine can be shared by concurrent scoring tasks.
    """

    def __init__(self, config: Optional[WeightConfiguration] = None, error_sink: Optional[ErrorSink] = None) -> None:
        self.config = config or WeightConfiguration()
        self.error_sink = error_sink
        self._high_value = build_keyword_pattern(self.config.high_value_keywords)
        self._cosmetic = build_keyword_pattern(self.config.cosmetic_keywords)
        self._diagnostic = build_keyword_pattern(self.config.diagnostic_keywords)
        self._therapeutic = build_keyword_pattern(self.config.therapeutic_keywords)

    def score(self, record: SubmissionRecord) -> ScoreResult:
        return self.evaluate(record).result

    def evaluate(self, record: SubmissionRecord) -> ScoreOutcome:
        """Score a record, converting any internal fault into a sentinel."""
        try:
            return ScoreOutcome(result=self._compute(record))
        except Exception as exc:
            fault = ScoringFault(
                submission_number=self._submission_number(record),
                error_type=type(exc).__name__,
                message=str(exc),
            )
            logger.warning(f"Scoring failed for {fault.submission_number or '<unknown>'}: {fault.message}")
            self._report(fault)
            return ScoreOutcome(result=ScoreResult.error_result(), fault=fault)

    def _report(self, fault: ScoringFault) -> None:
        if self.error_sink is None:
            return
        try:
            self.error_sink(fault)
        except Exception as exc:
            logger.error(f"Error sink raised while reporting {fault.submission_number}: {exc}")

    @staticmethod
    def _submission_number(record: object) -> str:
        value = getattr(record, "submission_number", "")
        return str(value) if value else ""

    def _compute(self, record: SubmissionRecord) -> ScoreResult:
        self._validate(record)
        config = self.config

        search_text = f"{record.device_name} {record.statement or ''}"

        committee_weight = config.committee_weight(record.advisory_committee)
        product_weight = config.product_weight(record.product_code)
        submission_type_weight = config.submission_type_weight(record.submission_type)
        processing_time_weight = self._processing_time_weight(record.processing_days)

        if (record.country_code or "").strip().upper() == config.domestic_country.upper():
            geography_weight = config.domestic_weight
        else:
            geography_weight = config.other_country_weight

        high_value_match = _matches(self._high_value, search_text)
        keyword_weight = config.keyword_high_weight if high_value_match else config.keyword_low_weight

        negative_factor = self._negative_factor(search_text)

        synergy_bonus = 0.0
        if high_value_match and record.advisory_committee in config.synergy_committees:
            synergy_bonus = config.synergy_bonus

        total = (
            committee_weight
            + product_weight
            + keyword_weight
            + submission_type_weight
            + processing_time_weight
            + geography_weight
            + negative_factor
            + synergy_bonus
        )
        score = max(total / config.normalization_constant, 0.0)

        return ScoreResult(
            score=score,
            category=categorize(score, config),
            committee_weight=committee_weight,
            product_weight=product_weight,
            keyword_weight=keyword_weight,
            submission_type_weight=submission_type_weight,
            processing_time_weight=processing_time_weight,
            geography_weight=geography_weight,
            negative_factor=negative_factor,
            synergy_bonus=synergy_bonus,
        )

    @staticmethod
    def _validate(record: SubmissionRecord) -> None:
        number = ScoringEngine._submission_number(record)
        for field_name in REQUIRED_FIELDS:
            value = getattr(record, field_name, None)
            if value is None or not str(value).strip():
                raise MissingFieldError(field_name, number)

    def _processing_time_weight(self, raw_value: object) -> float:
        config = self.config
        days = parse_processing_days(raw_value)
        if days is None:
            return config.processing_default_weight
        if days > config.processing_high_breakpoint:
            return config.processing_high_weight
        if config.processing_mid_low <= days <= config.processing_mid_high:
            return config.processing_mid_weight
        return config.processing_default_weight

    def _negative_factor(self, search_text: str) -> float:
        if _matches(self._therapeutic, search_text):
            return 0.0
        penalty = 0.0
        if _matches(self._cosmetic, search_text):
            penalty += self.config.cosmetic_penalty
        if _matches(self._diagnostic, search_text):
            penalty += self.config.diagnostic_penalty
        return min(penalty, 0.0)


def score(
    record: SubmissionRecord,
    config: WeightConfiguration,
    error_sink: Optional[ErrorSink] = None,
) -> ScoreResult:
    """Score a single record; convenience wrapper around :class:`ScoringEngine`."""
    return ScoringEngine(config, error_sink=error_sink).score(record)

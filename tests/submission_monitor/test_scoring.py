"""Tests for the submission scoring engine."""

import pytest

from src.submission_monitor.models import (
    CATEGORY_ALMOST_NONE,
    CATEGORY_ERROR,
    CATEGORY_HIGH,
    CATEGORY_LOW,
    CATEGORY_MODERATE,
)
from src.submission_monitor.scoring import (
    ScoringEngine,
    build_keyword_pattern,
    categorize,
    parse_processing_days,
    score,
)
from src.submission_monitor.weights import WeightConfiguration

from fakes import make_record


def test_imaging_ai_submission_scores_high(engine):
    record = make_record(
        advisory_committee="RA",
        product_code="QIH",
        device_name="AI-based triage software",
        statement="Uses deep learning to flag findings",
        processing_days=180,
    )

    result = engine.score(record)

    assert result.committee_weight == pytest.approx(0.85)
    assert result.product_weight == pytest.approx(0.95)
    assert result.keyword_weight == pytest.approx(0.85)
    assert result.submission_type_weight == pytest.approx(0.5)
    assert result.processing_time_weight == pytest.approx(0.65)
    assert result.geography_weight == pytest.approx(0.6)
    assert result.negative_factor == 0.0
    assert result.synergy_bonus == pytest.approx(0.3)
    assert result.score == pytest.approx(4.7 / 6)
    assert result.category == CATEGORY_HIGH


def test_unknown_codes_fall_back_to_defaults(engine):
    record = make_record(
        advisory_committee="ZZ",
        product_code="XXX",
        submission_type="Unknown",
        country_code="DE",
        processing_days=None,
    )

    result = engine.score(record)

    assert result.committee_weight == pytest.approx(0.3)
    assert result.product_weight == pytest.approx(0.35)
    assert result.submission_type_weight == pytest.approx(0.4)
    assert result.processing_time_weight == pytest.approx(0.5)
    assert result.geography_weight == pytest.approx(0.5)
    assert result.keyword_weight == pytest.approx(0.15)
    assert result.score == pytest.approx((0.3 + 0.35 + 0.15 + 0.4 + 0.5 + 0.5) / 6)


def test_country_comparison_ignores_case_and_whitespace(engine):
    result = engine.score(make_record(country_code=" us "))
    assert result.geography_weight == pytest.approx(0.6)


def test_score_is_floored_at_zero():
    config = WeightConfiguration(cosmetic_penalty=-10.0, diagnostic_penalty=-10.0)
    engine = ScoringEngine(config)
    record = make_record(device_name="Cosmetic in vitro reagent", statement="")

    result = engine.score(record)

    assert result.negative_factor == pytest.approx(-20.0)
    assert result.score == 0.0
    assert result.category == CATEGORY_ALMOST_NONE


def test_cosmetic_and_diagnostic_penalties_are_additive(engine):
    result = engine.score(make_record(device_name="Cosmetic laser", statement="Includes reagent cartridge"))
    assert result.negative_factor == pytest.approx(-1.5)


def test_therapeutic_match_cancels_penalties(engine):
    result = engine.score(make_record(device_name="Cosmetic laser", statement="For acne treatment with reagent"))
    assert result.negative_factor == 0.0


def test_negative_keywords_match_statement_text(engine):
    result = engine.score(make_record(device_name="Handpiece", statement="Used for hair removal"))
    assert result.negative_factor == pytest.approx(-1.0)


@pytest.mark.parametrize(
    "committee,device_name,expected",
    [
        ("RA", "Machine learning detector", 0.3),
        ("CV", "Neural network ECG analysis", 0.3),
        ("RA", "X-ray tube", 0.0),
        ("HO", "Machine learning detector", 0.0),
        ("HO", "Infusion pump", 0.0),
    ],
)
def test_synergy_requires_committee_and_keyword(engine, committee, device_name, expected):
    result = engine.score(make_record(advisory_committee=committee, device_name=device_name))
    assert result.synergy_bonus == pytest.approx(expected)


def test_keyword_matching_is_case_insensitive(engine):
    result = engine.score(make_record(device_name="ARTIFICIAL INTELLIGENCE platform"))
    assert result.keyword_weight == pytest.approx(0.85)


def test_keywords_are_matched_literally():
    config = WeightConfiguration(high_value_keywords=("v2.0", "(beta"))
    engine = ScoringEngine(config)

    assert engine.score(make_record(device_name="Engine v2x0")).keyword_weight == pytest.approx(0.15)
    assert engine.score(make_record(device_name="Engine v2.0")).keyword_weight == pytest.approx(0.85)
    assert engine.score(make_record(device_name="Engine (beta)")).keyword_weight == pytest.approx(0.85)


def test_empty_keyword_list_never_matches():
    assert build_keyword_pattern([]) is None
    engine = ScoringEngine(WeightConfiguration(high_value_keywords=()))
    assert engine.score(make_record(device_name="Deep learning")).keyword_weight == pytest.approx(0.15)


@pytest.mark.parametrize(
    "days,expected",
    [
        (173, 0.65),
        ("1,200", 0.65),
        (172, 0.6),
        (165, 0.6),
        (162, 0.6),
        (161, 0.5),
        (30, 0.5),
        (0, 0.5),
        ("0", 0.5),
        ("n/a", 0.5),
        ("", 0.5),
        (None, 0.5),
    ],
)
def test_processing_time_bands(engine, days, expected):
    result = engine.score(make_record(processing_days=days))
    assert result.processing_time_weight == pytest.approx(expected)


def test_parse_processing_days():
    assert parse_processing_days("180") == 180.0
    assert parse_processing_days(" 1,024 ") == 1024.0
    assert parse_processing_days(0) is None
    assert parse_processing_days("abc") is None
    assert parse_processing_days(True) is None
    assert parse_processing_days(float("nan")) is None


@pytest.mark.parametrize(
    "value,expected",
    [
        (0.61, CATEGORY_HIGH),
        (0.6, CATEGORY_MODERATE),
        (0.55, CATEGORY_MODERATE),
        (0.5, CATEGORY_MODERATE),
        (0.4999, CATEGORY_LOW),
        (0.4, CATEGORY_LOW),
        (0.3999, CATEGORY_ALMOST_NONE),
        (0.0, CATEGORY_ALMOST_NONE),
    ],
)
def test_categorize_boundaries(weights, value, expected):
    assert categorize(value, weights) == expected


def test_zero_score_is_almost_none_even_with_zero_low_cut():
    config = WeightConfiguration(low_cut=0.0, mid_cut=0.5, high_cut=0.6)
    assert categorize(0.0, config) == CATEGORY_ALMOST_NONE


def test_missing_required_field_returns_error_sentinel():
    faults = []
    engine = ScoringEngine(error_sink=faults.append)

    outcome = engine.evaluate(make_record(submission_number="K259999", device_name="   "))

    assert not outcome.ok
    assert outcome.result.category == CATEGORY_ERROR
    assert outcome.result.is_error
    assert outcome.result.score == 0.0
    assert len(faults) == 1
    assert faults[0].submission_number == "K259999"
    assert faults[0].error_type == "MissingFieldError"
    assert "device_name" in faults[0].message


def test_error_sink_failure_does_not_propagate():
    def broken_sink(fault):
        raise RuntimeError("sink down")

    engine = ScoringEngine(error_sink=broken_sink)
    result = engine.score(make_record(advisory_committee=""))

    assert result.category == CATEGORY_ERROR


def test_non_record_input_is_reported_not_raised():
    faults = []
    engine = ScoringEngine(error_sink=faults.append)

    result = engine.score(None)

    assert result.category == CATEGORY_ERROR
    assert faults[0].submission_number == ""


def test_scoring_is_deterministic(engine):
    record = make_record(device_name="Computer-aided detection", advisory_committee="RA")
    assert engine.score(record) == engine.score(record)


def test_module_level_score_helper(weights):
    faults = []
    result = score(make_record(product_code=""), weights, error_sink=faults.append)
    assert result.category == CATEGORY_ERROR
    assert faults[0].error_type == "MissingFieldError"

"""Weight configuration driving submission scoring.

The configuration is loaded once per run from the ``weights`` section of the
monitor YAML file and is read-only afterwards. Every lookup resolves to a
finite number: malformed or unknown entries fall back to the documented
defaults instead of aborting the load.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple, Union

import yaml

from .errors import ConfigurationError
from .logging_config import get_logger

logger = get_logger("weights")

NORMALIZATION_CONSTANT = 6.0

DEFAULT_COMMITTEE_WEIGHTS: Dict[str, float] = {
    "RA": 0.85,
    "CV": 0.75,
    "NE": 0.7,
    "PA": 0.65,
    "OP": 0.6,
    "AN": 0.55,
    "CH": 0.55,
    "GU": 0.55,
    "HO": 0.5,
    "SU": 0.5,
    "MI": 0.5,
    "IM": 0.5,
    "HE": 0.5,
    "EN": 0.5,
    "OR": 0.45,
    "PM": 0.45,
    "DE": 0.4,
    "TX": 0.4,
}

DEFAULT_PRODUCT_WEIGHTS: Dict[str, float] = {
    "QIH": 0.95,
    "QAS": 0.9,
    "LLZ": 0.85,
    "QFM": 0.85,
    "MYN": 0.8,
    "POK": 0.8,
    "QDQ": 0.8,
    "QBS": 0.75,
    "JAK": 0.6,
    "LNH": 0.6,
    "IYN": 0.55,
}

DEFAULT_SUBMISSION_TYPE_WEIGHTS: Dict[str, float] = {
    "Traditional": 0.5,
    "Special": 0.45,
    "Abbreviated": 0.4,
}

DEFAULT_HIGH_VALUE_KEYWORDS: Tuple[str, ...] = (
    "artificial intelligence",
    "machine learning",
    "deep learning",
    "neural network",
    "computer-aided",
    "computer aided",
    "automated detection",
    "algorithm",
    "AI-based",
    "AI-powered",
)

DEFAULT_COSMETIC_KEYWORDS: Tuple[str, ...] = (
    "cosmetic",
    "aesthetic",
    "hair removal",
    "wrinkle",
    "tattoo",
)

DEFAULT_DIAGNOSTIC_KEYWORDS: Tuple[str, ...] = (
    "in vitro",
    "reagent",
    "test strip",
    "calibrator",
    "control material",
)

DEFAULT_THERAPEUTIC_KEYWORDS: Tuple[str, ...] = (
    "therapy",
    "therapeutic",
    "treatment",
    "radiotherapy",
)

_KEYWORD_SECTIONS = {
    "high_value": "high_value_keywords",
    "cosmetic_negative": "cosmetic_keywords",
    "diagnostic_negative": "diagnostic_keywords",
    "therapeutic_override": "therapeutic_keywords",
}

_KNOWN_SECTIONS = {
    "committee",
    "product_code",
    "submission_type",
    "keywords",
    "defaults",
    "keyword_weights",
    "processing_time",
    "geography",
    "negative_factors",
    "synergy",
    "thresholds",
}


def _frozen(table: Mapping[str, float]) -> Mapping[str, float]:
    return MappingProxyType(dict(table))


def _coerce_float(value: Any, default: float, label: str) -> float:
    """Return ``value`` as a finite float, or ``default`` with a warning."""
    if isinstance(value, bool) or value is None:
        if value is not None:
            logger.warning(f"Ignoring boolean value for {label}; using default {default}")
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        logger.warning(f"Non-numeric value {value!r} for {label}; using default {default}")
        return default
    if not math.isfinite(number):
        logger.warning(f"Non-finite value {value!r} for {label}; using default {default}")
        return default
    return number


def _parse_table(data: Any, defaults: Mapping[str, float], label: str) -> Dict[str, float]:
    if data is None:
        return dict(defaults)
    if not isinstance(data, Mapping):
        logger.warning(f"Weight table '{label}' is not a mapping; using built-in table")
        return dict(defaults)

    table: Dict[str, float] = {}
    for key, value in data.items():
        code = str(key).strip()
        if not code:
            continue
        number = _coerce_float(value, math.nan, f"{label}.{code}")
        if math.isnan(number):
            # Dropped entries resolve to the factor default at lookup time
            continue
        table[code] = number
    return table


def _parse_keywords(data: Any, defaults: Tuple[str, ...], label: str) -> Tuple[str, ...]:
    if data is None:
        return defaults
    if isinstance(data, str):
        data = [data]
    if not isinstance(data, Iterable):
        logger.warning(f"Keyword list '{label}' is malformed; using built-in list")
        return defaults
    keywords = []
    for item in data:
        if not isinstance(item, str):
            logger.warning(f"Skipping non-text keyword {item!r} in '{label}'")
            continue
        text = item.strip()
        if text and text not in keywords:
            keywords.append(text)
    return tuple(keywords)


def _section(data: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    value = data.get(name)
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        logger.warning(f"Configuration section '{name}' is not a mapping; using defaults")
        return {}
    return value


@dataclass(frozen=True)
class WeightConfiguration:
    """Immutable lookup tables and thresholds used by the scoring engine."""

    committee_weights: Mapping[str, float] = field(default_factory=lambda: _frozen(DEFAULT_COMMITTEE_WEIGHTS))
    product_weights: Mapping[str, float] = field(default_factory=lambda: _frozen(DEFAULT_PRODUCT_WEIGHTS))
    submission_type_weights: Mapping[str, float] = field(
        default_factory=lambda: _frozen(DEFAULT_SUBMISSION_TYPE_WEIGHTS)
    )

    high_value_keywords: Tuple[str, ...] = DEFAULT_HIGH_VALUE_KEYWORDS
    cosmetic_keywords: Tuple[str, ...] = DEFAULT_COSMETIC_KEYWORDS
    diagnostic_keywords: Tuple[str, ...] = DEFAULT_DIAGNOSTIC_KEYWORDS
    therapeutic_keywords: Tuple[str, ...] = DEFAULT_THERAPEUTIC_KEYWORDS

    default_committee_weight: float = 0.3
    default_product_weight: float = 0.35
    default_submission_type_weight: float = 0.4

    keyword_high_weight: float = 0.85
    keyword_low_weight: float = 0.15

    processing_high_breakpoint: float = 172.0
    processing_mid_low: float = 162.0
    processing_mid_high: float = 172.0
    processing_high_weight: float = 0.65
    processing_mid_weight: float = 0.6
    processing_default_weight: float = 0.5

    domestic_country: str = "US"
    domestic_weight: float = 0.6
    other_country_weight: float = 0.5

    cosmetic_penalty: float = -1.0
    diagnostic_penalty: float = -0.5

    synergy_committees: Tuple[str, ...] = ("RA", "CV")
    synergy_bonus: float = 0.3

    high_cut: float = 0.6
    mid_cut: float = 0.5
    low_cut: float = 0.4

    normalization_constant: float = NORMALIZATION_CONSTANT

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "WeightConfiguration":
        """Build a configuration, falling back to defaults entry by entry."""
        base = cls()
        if not data:
            return base
        if not isinstance(data, Mapping):
            logger.warning("Weight configuration is not a mapping; using built-in defaults")
            return base

        for key in data:
            if key not in _KNOWN_SECTIONS:
                logger.warning(f"Ignoring unknown weight configuration section '{key}'")

        values: Dict[str, Any] = {
            "committee_weights": _frozen(
                _parse_table(data.get("committee"), DEFAULT_COMMITTEE_WEIGHTS, "committee")
            ),
            "product_weights": _frozen(
                _parse_table(data.get("product_code"), DEFAULT_PRODUCT_WEIGHTS, "product_code")
            ),
            "submission_type_weights": _frozen(
                _parse_table(data.get("submission_type"), DEFAULT_SUBMISSION_TYPE_WEIGHTS, "submission_type")
            ),
        }

        keywords = _section(data, "keywords")
        for section_name, attr in _KEYWORD_SECTIONS.items():
            values[attr] = _parse_keywords(keywords.get(section_name), getattr(base, attr), section_name)

        defaults = _section(data, "defaults")
        values["default_committee_weight"] = _coerce_float(
            defaults.get("committee", base.default_committee_weight),
            base.default_committee_weight,
            "defaults.committee",
        )
        values["default_product_weight"] = _coerce_float(
            defaults.get("product_code", base.default_product_weight),
            base.default_product_weight,
            "defaults.product_code",
        )
        values["default_submission_type_weight"] = _coerce_float(
            defaults.get("submission_type", base.default_submission_type_weight),
            base.default_submission_type_weight,
            "defaults.submission_type",
        )

        keyword_weights = _section(data, "keyword_weights")
        values["keyword_high_weight"] = _coerce_float(
            keyword_weights.get("high", base.keyword_high_weight), base.keyword_high_weight, "keyword_weights.high"
        )
        values["keyword_low_weight"] = _coerce_float(
            keyword_weights.get("low", base.keyword_low_weight), base.keyword_low_weight, "keyword_weights.low"
        )

        values.update(cls._parse_processing_time(_section(data, "processing_time"), base))

        geography = _section(data, "geography")
        domestic = geography.get("domestic_country", base.domestic_country)
        values["domestic_country"] = str(domestic).strip() if domestic else base.domestic_country
        values["domestic_weight"] = _coerce_float(
            geography.get("domestic_weight", base.domestic_weight), base.domestic_weight, "geography.domestic_weight"
        )
        values["other_country_weight"] = _coerce_float(
            geography.get("other_weight", base.other_country_weight),
            base.other_country_weight,
            "geography.other_weight",
        )

        negatives = _section(data, "negative_factors")
        for key, attr in (("cosmetic_penalty", "cosmetic_penalty"), ("diagnostic_penalty", "diagnostic_penalty")):
            penalty = _coerce_float(negatives.get(key, getattr(base, attr)), getattr(base, attr), f"negative_factors.{key}")
            if penalty > 0:
                logger.warning(f"negative_factors.{key} must not be positive; using {-penalty}")
                penalty = -penalty
            values[attr] = penalty

        synergy = _section(data, "synergy")
        committees = synergy.get("committees")
        if committees is None:
            values["synergy_committees"] = base.synergy_committees
        else:
            values["synergy_committees"] = _parse_keywords(committees, base.synergy_committees, "synergy.committees")
        values["synergy_bonus"] = abs(
            _coerce_float(synergy.get("bonus", base.synergy_bonus), base.synergy_bonus, "synergy.bonus")
        )

        values.update(cls._parse_thresholds(_section(data, "thresholds"), base))

        return cls(**values)

    @staticmethod
    def _parse_processing_time(section: Mapping[str, Any], base: "WeightConfiguration") -> Dict[str, float]:
        high = _coerce_float(
            section.get("high_breakpoint", base.processing_high_breakpoint),
            base.processing_high_breakpoint,
            "processing_time.high_breakpoint",
        )
        mid_low, mid_high = base.processing_mid_low, base.processing_mid_high
        band = section.get("mid_band")
        if band is not None:
            if isinstance(band, (list, tuple)) and len(band) == 2:
                low_value = _coerce_float(band[0], math.nan, "processing_time.mid_band[0]")
                high_value = _coerce_float(band[1], math.nan, "processing_time.mid_band[1]")
                if not math.isnan(low_value) and not math.isnan(high_value) and low_value <= high_value:
                    mid_low, mid_high = low_value, high_value
                else:
                    logger.warning("processing_time.mid_band is invalid; using default band")
            else:
                logger.warning("processing_time.mid_band must be a two-item list; using default band")

        return {
            "processing_high_breakpoint": high,
            "processing_mid_low": mid_low,
            "processing_mid_high": mid_high,
            "processing_high_weight": _coerce_float(
                section.get("high_weight", base.processing_high_weight),
                base.processing_high_weight,
                "processing_time.high_weight",
            ),
            "processing_mid_weight": _coerce_float(
                section.get("mid_weight", base.processing_mid_weight),
                base.processing_mid_weight,
                "processing_time.mid_weight",
            ),
            "processing_default_weight": _coerce_float(
                section.get("default_weight", base.processing_default_weight),
                base.processing_default_weight,
                "processing_time.default_weight",
            ),
        }

    @staticmethod
    def _parse_thresholds(section: Mapping[str, Any], base: "WeightConfiguration") -> Dict[str, float]:
        high = _coerce_float(section.get("high", base.high_cut), base.high_cut, "thresholds.high")
        mid = _coerce_float(section.get("mid", base.mid_cut), base.mid_cut, "thresholds.mid")
        low = _coerce_float(section.get("low", base.low_cut), base.low_cut, "thresholds.low")
        if not (high > mid > low > 0):
            logger.warning(
                f"Category thresholds must satisfy high > mid > low > 0 (got {high}, {mid}, {low}); "
                "using default thresholds"
            )
            return {"high_cut": base.high_cut, "mid_cut": base.mid_cut, "low_cut": base.low_cut}
        return {"high_cut": high, "mid_cut": mid, "low_cut": low}

    def committee_weight(self, code: str) -> float:
        return lookup(self.committee_weights, code, self.default_committee_weight)

    def product_weight(self, code: str) -> float:
        return lookup(self.product_weights, code, self.default_product_weight)

    def submission_type_weight(self, code: str) -> float:
        return lookup(self.submission_type_weights, code, self.default_submission_type_weight)


def lookup(table: Mapping[str, Any], key: Optional[str], default: float) -> float:
    """Exact-key lookup that always resolves to a finite number."""
    if key is None:
        return default
    value = table.get(key)
    if value is None or isinstance(value, bool):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(number):
        return default
    return number


def load_weight_configuration(path: Optional[Union[str, Path]] = None) -> WeightConfiguration:
    """Load a weight configuration from a YAML file.

    The file may either contain the weight sections at the top level or nest
    them under a ``weights`` key (the layout of ``config/monitor.yaml``).

    Raises:
        ConfigurationError: if the file is missing or is not valid YAML
    """
    if path is None:
        return WeightConfiguration()

    config_path = Path(path)
    if not config_path.exists():
        raise ConfigurationError(f"Weight configuration not found: {config_path}")

    try:
        with open(config_path, "r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigurationError(f"Failed to read weight configuration {config_path}: {exc}") from exc

    if not isinstance(data, Mapping):
        raise ConfigurationError(f"Weight configuration {config_path} must be a mapping")

    if "weights" in data:
        data = data.get("weights") or {}
    return WeightConfiguration.from_dict(data)

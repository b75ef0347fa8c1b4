"""Submission monitor package namespace."""

from importlib import import_module
from typing import Any

__all__ = [
    "ArchiveStore",
    "MonthlyOrchestrator",
    "RecapCache",
    "RefreshGateway",
    "RunConfiguration",
    "ScoringEngine",
    "SubmissionDatabase",
    "WeightConfiguration",
    "resolve_reporting_period",
]

_EXPORTS = {
    "ArchiveStore": "src.submission_monitor.archive",
    "MonthlyOrchestrator": "src.submission_monitor.orchestrator",
    "RunConfiguration": "src.submission_monitor.orchestrator",
    "RecapCache": "src.submission_monitor.recap_cache",
    "RefreshGateway": "src.submission_monitor.refresh",
    "ScoringEngine": "src.submission_monitor.scoring",
    "SubmissionDatabase": "src.submission_monitor.database",
    "WeightConfiguration": "src.submission_monitor.weights",
    "resolve_reporting_period": "src.submission_monitor.periods",
}


def __getattr__(name: str) -> Any:
    module_name = _EXPORTS.get(name)
    if module_name is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    module = import_module(module_name)
    return getattr(module, name)


def __dir__() -> list[str]:
    return sorted(__all__)

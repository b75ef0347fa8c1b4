"""Exception types raised by the submission monitor."""

from __future__ import annotations


class SubmissionMonitorError(Exception):
    """Base class for submission monitor errors."""


class ConfigurationError(SubmissionMonitorError):
    """Configuration could not be loaded; the run must not start."""


class MissingFieldError(SubmissionMonitorError):
    """A submission record lacks a field required for scoring."""

    def __init__(self, field_name: str, submission_number: str = "") -> None:
        self.field_name = field_name
        self.submission_number = submission_number
        label = submission_number or "<unknown>"
        super().__init__(f"Submission {label} is missing required field '{field_name}'")


class ArchiveError(SubmissionMonitorError):
    """Archive snapshot could not be written."""


class ArchiveExistsError(ArchiveError):
    """An archive already exists for the requested period."""

    def __init__(self, period_key: str) -> None:
        self.period_key = period_key
        super().__init__(f"Archive for period {period_key} already exists")


class InvalidTransitionError(SubmissionMonitorError):
    """Orchestrator attempted a state transition that is not allowed."""


class RunInProgressError(SubmissionMonitorError):
    """A run is already active on this orchestrator."""

"""Monthly orchestration state machine.

::

    Idle -> PeriodResolved -> SkippedAlreadyArchived -> Idle
                           -> Refreshing -> Scoring -> Archiving -> Done -> Idle

    Any active state can move to Failed, which returns to Idle after the
    same cleanup as Done.

Row-level scoring faults, recap faults and refresh faults are recovered
locally and only show up as counters in the :class:`RunOutcome`. Archive
failures, source failures and cancellation end the run in ``Failed``; a
cancelled run re-raises ``CancelledError`` once cleanup has finished.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Dict, List, Optional, Protocol, Sequence, Set, Union

from .archive import ArchiveStore
from .database import (
    RUN_STATUS_COMPLETED,
    RUN_STATUS_FAILED,
    SubmissionDatabase,
)
from .errors import InvalidTransitionError, RunInProgressError
from .logging_config import get_logger
from .models import RunOutcome, RunState, ScoredSubmission, SubmissionRecord
from .periods import ReportingPeriod, resolve_reporting_period
from .recap_cache import RecapCache
from .refresh import RefreshGateway
from .scoring import ScoringEngine

logger = get_logger("orchestrator")

VALID_TRANSITIONS: Dict[RunState, Set[RunState]] = {
    RunState.IDLE: {RunState.PERIOD_RESOLVED, RunState.FAILED},
    RunState.PERIOD_RESOLVED: {
        RunState.SKIPPED_ALREADY_ARCHIVED,
        RunState.REFRESHING,
        RunState.FAILED,
    },
    RunState.REFRESHING: {RunState.SCORING, RunState.FAILED},
    RunState.SCORING: {RunState.ARCHIVING, RunState.DONE, RunState.FAILED},
    RunState.ARCHIVING: {RunState.DONE, RunState.FAILED},
    RunState.SKIPPED_ALREADY_ARCHIVED: {RunState.IDLE},
    RunState.DONE: {RunState.IDLE},
    RunState.FAILED: {RunState.IDLE},
}

TERMINAL_STATES = {RunState.SKIPPED_ALREADY_ARCHIVED, RunState.DONE, RunState.FAILED}


class SubmissionSource(Protocol):
    """Supplies the submissions available for scoring."""

    def get_submissions(self) -> Sequence[SubmissionRecord]:
        ...


@dataclass(frozen=True)
class RunConfiguration:
    """Per-run switches passed to the orchestrator at construction.

    Attributes:
        period_override: Archive this month instead of the resolved period
        refresh_enabled: Trigger the upstream refresh before scoring
        dry_run: Score everything but do not write the archive
        max_concurrency: Records scored concurrently
    """

    period_override: Optional[date] = None
    refresh_enabled: bool = True
    dry_run: bool = False
    max_concurrency: int = 8


def _utc_now() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0, tzinfo=None).isoformat() + "Z"


class MonthlyOrchestrator:
    """Drives one monthly scoring and archiving run."""

    def __init__(
        self,
        *,
        engine: ScoringEngine,
        recap_cache: RecapCache,
        archive: ArchiveStore,
        source: SubmissionSource,
        refresh_gateway: Optional[RefreshGateway] = None,
        history: Optional[SubmissionDatabase] = None,
        run_config: Optional[RunConfiguration] = None,
    ) -> None:
        self.engine = engine
        self.recap_cache = recap_cache
        self.archive = archive
        self.source = source
        self.refresh_gateway = refresh_gateway
        self.history = history
        self.run_config = run_config or RunConfiguration()

        self.state = RunState.IDLE
        self.last_outcome: Optional[RunOutcome] = None
        self._active = False
        self._outcome: Optional[RunOutcome] = None

    # ------------------------------------------------------------------
    # State handling
    # ------------------------------------------------------------------
    def _transition(self, new_state: RunState, reason: str = "") -> None:
        allowed = VALID_TRANSITIONS.get(self.state, set())
        if new_state not in allowed:
            raise InvalidTransitionError(f"Invalid transition {self.state.value} -> {new_state.value}")
        message = f"{self.state.value} -> {new_state.value}"
        if reason:
            message += f" ({reason})"
        logger.info(f"Run state: {message}")
        self.state = new_state
        if self._outcome is not None:
            self._outcome.transitions.append(new_state.value)
            if new_state in TERMINAL_STATES:
                self._outcome.state = new_state

    def _resolve_period(self, now: Optional[Union[date, datetime]]) -> ReportingPeriod:
        override = self.run_config.period_override
        if override is not None:
            period = ReportingPeriod.for_month(override.year, override.month)
            self._transition(RunState.PERIOD_RESOLVED, f"override {period.key}")
            return period
        period = resolve_reporting_period(now or date.today())
        self._transition(RunState.PERIOD_RESOLVED, period.key)
        return period

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------
    def run_sync(self, now: Optional[Union[date, datetime]] = None) -> RunOutcome:
        return asyncio.run(self.run(now))

    async def run(self, now: Optional[Union[date, datetime]] = None) -> RunOutcome:
        """Execute one monthly run and return its outcome.

        Args:
            now: Reference date used to resolve the reporting period

        Returns:
            RunOutcome describing the terminal state and counters

        Raises:
            RunInProgressError: if this orchestrator is already running
            asyncio.CancelledError: if the run was cancelled (after cleanup)
        """
        if self._active:
            raise RunInProgressError("A monthly run is already in progress")
        self._active = True

        outcome = RunOutcome(state=RunState.IDLE, started_at=_utc_now(), dry_run=self.run_config.dry_run)
        self._outcome = outcome
        self.last_outcome = outcome
        run_id: Optional[int] = None

        try:
            period = self._resolve_period(now)
            outcome.period_key = period.key

            if self.archive.exists(period.key):
                self._transition(RunState.SKIPPED_ALREADY_ARCHIVED, f"{period.key} already archived")
                return outcome

            if self.history is not None:
                self.history.close_stale_runs()
                run_id = self.history.start_run(
                    period.key,
                    metadata={"dry_run": self.run_config.dry_run, "refresh_enabled": self.run_config.refresh_enabled},
                )
                outcome.run_id = run_id

            self._transition(RunState.REFRESHING)
            await self._refresh(outcome)

            self._transition(RunState.SCORING)
            batch = await self._score_all(outcome)

            if self.run_config.dry_run:
                logger.info(f"Dry run: skipping archive of {len(batch)} records for {period.key}")
                self._transition(RunState.DONE, "dry run")
                return outcome

            self._transition(RunState.ARCHIVING)
            self.archive.write(period.key, batch, period_start=period.start, run_id=run_id)
            outcome.archived = True

            self._transition(RunState.DONE)
            return outcome

        except asyncio.CancelledError:
            outcome.error = "run cancelled"
            self._fail("cancelled")
            raise
        except Exception as exc:
            logger.exception(f"Monthly run failed: {exc}")
            outcome.error = f"{type(exc).__name__}: {exc}"
            self._fail(outcome.error)
            return outcome
        finally:
            self._finish(outcome, run_id)

    def _fail(self, reason: str) -> None:
        if self.state in TERMINAL_STATES:
            return
        self._transition(RunState.FAILED, reason)

    def _finish(self, outcome: RunOutcome, run_id: Optional[int]) -> None:
        """Release run resources; identical for Done, Skipped and Failed."""
        outcome.completed_at = _utc_now()
        outcome.recap_stats = dict(self.recap_cache.stats)
        try:
            if self.history is not None and run_id is not None:
                status = RUN_STATUS_FAILED if outcome.state == RunState.FAILED else RUN_STATUS_COMPLETED
                self.history.complete_run(
                    run_id,
                    status=status,
                    final_state=outcome.state.value,
                    records_scored=outcome.records_scored,
                    records_errored=outcome.records_errored,
                    refresh_succeeded=outcome.refresh_succeeded,
                    metadata={"error": outcome.error} if outcome.error else None,
                )
        except Exception as exc:
            logger.error(f"Failed to record completion of run {run_id}: {exc}")
        finally:
            if self.state in TERMINAL_STATES:
                self._transition(RunState.IDLE)
            else:
                self.state = RunState.IDLE
            self._outcome = None
            self._active = False
            logger.info(
                f"Run finished: state={outcome.state.value} period={outcome.period_key} "
                f"scored={outcome.records_scored} errored={outcome.records_errored} "
                f"refresh={'ok' if outcome.refresh_succeeded else 'failed'}"
            )

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------
    async def _refresh(self, outcome: RunOutcome) -> None:
        if not self.run_config.refresh_enabled:
            logger.info("Data refresh disabled for this run")
            return
        if self.refresh_gateway is None:
            logger.warning("No refresh gateway configured; using currently available data")
            return
        result = await self.refresh_gateway.attempt()
        outcome.refresh_succeeded = result.success
        outcome.refresh_strategy = result.strategy
        if not result.success:
            logger.warning(f"Data refresh failed, continuing with existing data: {result.error}")

    async def _score_all(self, outcome: RunOutcome) -> List[ScoredSubmission]:
        records = list(self.source.get_submissions())
        logger.info(f"Scoring {len(records)} submissions")
        semaphore = asyncio.Semaphore(max(1, self.run_config.max_concurrency))

        async def score_one(record: SubmissionRecord) -> ScoredSubmission:
            async with semaphore:
                result = self.engine.evaluate(record)
                recap = await self.recap_cache.get_recap(record.applicant)
                return ScoredSubmission(record=record, result=result.result, recap=recap)

        batch = await asyncio.gather(*(score_one(record) for record in records))

        for item in batch:
            if item.result.is_error:
                outcome.records_errored += 1
            else:
                outcome.records_scored += 1

        if outcome.records_errored:
            logger.warning(f"{outcome.records_errored} of {len(batch)} submissions could not be scored")
        return list(batch)

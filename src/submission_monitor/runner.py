"""Submission monitor pipeline runner.

Wires configuration, storage, the refresh gateway, the recap cache and the
scoring engine into a :class:`MonthlyOrchestrator` and exposes it as a CLI.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import date, datetime
from pathlib import Path
from typing import Any, Callable, List, Optional

from .archive import ArchiveStore
from .config import MonitorConfig
from .database import SubmissionDatabase
from .errors import ConfigurationError
from .http_client import HTTPClient
from .logging_config import setup_logging
from .models import HttpConfig, RunOutcome, ScoringFault
from .orchestrator import MonthlyOrchestrator, RunConfiguration
from .periods import parse_period_key
from .recap_cache import RecapCache
from .recap_provider import HttpRecapProvider, RecapProvider
from .refresh import ConnectionRegistry, HttpConnectionRegistry, RefreshGateway, default_strategies
from .scoring import ScoringEngine


def _number_setting(config: MonitorConfig, key: str, default: Any, cast: Callable[[Any], Any]) -> Any:
    value = config.get_setting(key, default)
    if value is None:
        return None
    try:
        return cast(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Setting '{key}' must be a number, got {value!r}") from exc


def build_orchestrator(
    config: MonitorConfig,
    *,
    db: Optional[SubmissionDatabase] = None,
    run_config: Optional[RunConfiguration] = None,
    recap_provider: Optional[RecapProvider] = None,
    registry: Optional[ConnectionRegistry] = None,
    logger: Optional[logging.Logger] = None,
) -> MonthlyOrchestrator:
    """Build an orchestrator from configuration.

    The weight configuration is loaded here, before any run state exists, so
    a configuration fault stops the process before the run begins.
    """
    logger = logger or logging.getLogger(__name__)
    weights = config.weight_configuration()

    if db is None:
        db = SubmissionDatabase(config.get_setting("database_path"))

    if run_config is None:
        run_config = RunConfiguration(max_concurrency=_number_setting(config, "max_concurrency", 8, int))

    def log_fault(fault: ScoringFault) -> None:
        logger.warning(f"Row fault in {fault.submission_number or '<unknown>'}: {fault.error_type}: {fault.message}")

    engine = ScoringEngine(weights, error_sink=log_fault)

    if recap_provider is None:
        recap_provider = HttpRecapProvider.from_env(
            base_url=config.get_setting("recap_base_url"),
            model=config.get_setting("recap_model"),
        )
    recap_cache = RecapCache(
        db,
        recap_provider,
        timeout_seconds=_number_setting(config, "recap_timeout_seconds", 30, float),
        placeholder=str(config.get_setting("recap_placeholder", "") or ""),
        max_age_days=_number_setting(config, "recap_max_age_days", None, int),
    )

    if registry is None:
        base_url = config.get_setting("refresh_base_url")
        if base_url:
            timeout = _number_setting(config, "refresh_timeout_seconds", 300, float)
            registry = HttpConnectionRegistry(
                base_url,
                HTTPClient(HttpConfig(timeout_seconds=timeout, max_retries=2)),
            )
    refresh_gateway = RefreshGateway(
        registry,
        str(config.get_setting("refresh_connection_id") or ""),
        strategies=default_strategies(
            provider_prefix=config.get_setting("refresh_provider_prefix", "Query - "),
            alternate_prefix=config.get_setting("refresh_alternate_prefix", "Connection - "),
        ),
        timeout_seconds=_number_setting(config, "refresh_timeout_seconds", 300, float),
    )

    return MonthlyOrchestrator(
        engine=engine,
        recap_cache=recap_cache,
        archive=ArchiveStore(db),
        source=db,
        refresh_gateway=refresh_gateway,
        history=db,
        run_config=run_config,
    )


def _parse_date(value: str) -> date:
    return datetime.strptime(value, "%Y-%m-%d").date()


def _log_summary(logger: logging.Logger, outcome: RunOutcome, refresh_enabled: bool = True) -> None:
    logger.info(f"Run outcome: {outcome.state.value} for period {outcome.period_key}")
    logger.info(f"Records: {outcome.records_scored} scored, {outcome.records_errored} errored")
    if refresh_enabled and not outcome.refresh_succeeded:
        logger.warning("Data refresh did not succeed; existing data was used")
    if outcome.error:
        logger.error(f"Error: {outcome.error}")


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point for the monthly run."""
    parser = argparse.ArgumentParser(
        description="Submission monitor - scores the monthly 510(k) batch and archives the results"
    )
    parser.add_argument("--config", type=Path, help="Path to monitor configuration YAML file")
    parser.add_argument("--db-path", type=Path, help="Path to database (default: database/submission_monitor.db)")
    parser.add_argument("--date", help="Reference date used to resolve the reporting period (YYYY-MM-DD)")
    parser.add_argument("--period", help="Archive this period instead of the resolved one (e.g. Apr-2025 or 2025-04)")
    parser.add_argument("--dry-run", action="store_true", help="Score without writing the archive")
    parser.add_argument("--no-refresh", action="store_true", help="Skip the upstream data refresh")
    parser.add_argument("--export-csv", type=Path, help="Directory to write the archived period as CSV")
    parser.add_argument("--log-file", type=Path, help="Write logs to file")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    parser.add_argument("--json", action="store_true", help="Output outcome as JSON")

    args = parser.parse_args(argv)

    config: Optional[MonitorConfig] = None
    config_error: Optional[ConfigurationError] = None
    try:
        config = MonitorConfig(args.config) if args.config else MonitorConfig()
    except ConfigurationError as exc:
        config_error = exc

    log_dir = None
    if args.log_file is None and config is not None and config.get_setting("log_dir"):
        log_dir = Path(config.get_setting("log_dir"))
    logger = setup_logging(
        log_file=args.log_file,
        log_dir=log_dir,
        level=logging.DEBUG if args.verbose else logging.INFO,
        console=not args.json,
    )

    try:
        if config_error is not None:
            raise config_error
        db = SubmissionDatabase(args.db_path or config.get_setting("database_path"))

        run_config = RunConfiguration(
            period_override=parse_period_key(args.period) if args.period else None,
            refresh_enabled=not args.no_refresh,
            dry_run=args.dry_run,
            max_concurrency=_number_setting(config, "max_concurrency", 8, int),
        )
        orchestrator = build_orchestrator(config, db=db, run_config=run_config, logger=logger)
        now = _parse_date(args.date) if args.date else None
    except (ConfigurationError, ValueError) as exc:
        logger.error(f"Configuration error: {exc}")
        return 1

    outcome = orchestrator.run_sync(now)

    if args.export_csv and outcome.period_key and orchestrator.archive.exists(outcome.period_key):
        args.export_csv.mkdir(parents=True, exist_ok=True)
        csv_path = args.export_csv / f"archive_{outcome.period_key}.csv"
        csv_path.write_text(orchestrator.archive.export_to_csv(outcome.period_key), encoding="utf-8")
        logger.info(f"Wrote archive CSV: {csv_path}")

    if args.json:
        print(json.dumps(outcome.to_dict(), indent=2))
    else:
        _log_summary(logger, outcome, refresh_enabled=run_config.refresh_enabled)

    return outcome.exit_code()


if __name__ == "__main__":
    sys.exit(main())

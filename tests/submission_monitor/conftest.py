"""Shared fixtures for submission monitor tests."""

import pytest

from src.submission_monitor.archive import ArchiveStore
from src.submission_monitor.database import SubmissionDatabase
from src.submission_monitor.recap_cache import RecapCache
from src.submission_monitor.scoring import ScoringEngine
from src.submission_monitor.weights import WeightConfiguration

from fakes import FakeProvider


@pytest.fixture
def db(tmp_path) -> SubmissionDatabase:
    return SubmissionDatabase(db_path=tmp_path / "submission_monitor.db")


@pytest.fixture
def archive(db) -> ArchiveStore:
    return ArchiveStore(db)


@pytest.fixture
def weights() -> WeightConfiguration:
    return WeightConfiguration()


@pytest.fixture
def engine(weights) -> ScoringEngine:
    return ScoringEngine(weights)


@pytest.fixture
def recap_cache(db) -> RecapCache:
    return RecapCache(db, FakeProvider())

"""
Shared fixtures -- the real catalog, a seeded temporary SQLite database, and
dialogue engines over in-memory fakes.
"""
from __future__ import annotations

from typing import Callable

import pytest

from kpichat.copilot.dialog import DialogEngine
from kpichat.copilot.slot_extractor import SlotExtractor
from kpichat.copilot.time_options import bucket_months
from kpichat.db.connection import create_sqlite_engine
from kpichat.governance.semantic_loader import load_catalog
from pipelines.seed.seed_data import seed
from tests.fakes import FakeStore, StubClassifier

TEST_MONTHS = ["202505", "202510", "202511", "202512", "202601"]


@pytest.fixture(scope="session")
def catalog():
    return load_catalog()


@pytest.fixture
def make_engine(catalog) -> Callable[..., DialogEngine]:
    """Build a DialogEngine over a FakeStore (and optional stub classifier)."""

    def _make(store: FakeStore | None = None, classifier: StubClassifier | None = None) -> DialogEngine:
        return DialogEngine(
            catalog,
            SlotExtractor(catalog, classifier=classifier),
            store or FakeStore(),
            time_options=lambda: bucket_months(TEST_MONTHS),
        )

    return _make


@pytest.fixture
def seeded_engine(tmp_path):
    """SQLAlchemy engine on a temporary SQLite file filled by the seed pipeline."""
    engine = create_sqlite_engine(f"sqlite:///{tmp_path / 'kpi_test.db'}")
    seed(engine, num_employees=40, num_machines=20, months=TEST_MONTHS)
    yield engine
    engine.dispose()

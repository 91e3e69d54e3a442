"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.
"""
import sys
from datetime import UTC, datetime
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from brok.config import DEFAULT_CONFIG  # noqa: E402
from brok.db import MasteryStore, create_db_engine, init_db, make_session_factory  # noqa: E402
from brok.mastery import MasteryEngine, MasteryState, SkillGraph, UnitType  # noqa: E402


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "smoke: Smoke tests for CLI commands")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "smoke" in str(item.fspath):
            item.add_marker(pytest.mark.smoke)


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def now():
    """Fixed clock so decay risk and timestamps are deterministic."""
    return datetime(2025, 3, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def make_state():
    """Factory for mastery states: initial values plus overrides."""

    def _make(node_id: str = "a", **changes) -> MasteryState:
        state = MasteryState.initial("learner-1", "thread-1", node_id)
        return state.evolve(**changes) if changes else state

    return _make


@pytest.fixture
def mastered_fields():
    """Field values that satisfy every mastery gate condition."""
    return {
        "mastery_p": 0.95,
        "uncertainty": 0.2,
        "stability": 0.75,
        "confirmation_count": 3,
        "unit_types_used": frozenset({UnitType.DRILL_SET, UnitType.APPLIED_FREE_RESPONSE}),
        "has_applied_confirmation": True,
        "misconception_tags": frozenset(),
        "evidence_count": 5,
    }


@pytest.fixture
def linear_graph():
    """Three-node chain a -> b -> c."""
    return SkillGraph.model_validate(
        {
            "nodes": [
                {"id": "a", "name": "Variables", "difficulty": 0.3},
                {"id": "b", "name": "Loops", "difficulty": 0.5},
                {"id": "c", "name": "Recursion", "difficulty": 0.8},
            ],
            "edges": [
                {"from": "a", "to": "b", "type": "prerequisite"},
                {"from": "b", "to": "c", "type": "prerequisite"},
            ],
        }
    )


@pytest.fixture
def engine():
    """Engine with the default profile and no critical misconceptions."""
    return MasteryEngine(DEFAULT_CONFIG)


@pytest.fixture
def store():
    """State store on a private in-memory SQLite database."""
    db_engine = create_db_engine("sqlite://")
    init_db(db_engine)
    yield MasteryStore(make_session_factory(db_engine))
    db_engine.dispose()

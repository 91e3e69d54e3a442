"""
brok: adaptive mastery tracking and scheduling engine.

Models how confidently a learner has internalized each node of a
prerequisite-constrained skill graph, decides when a node counts as
mastered, and selects which node and which question format come next.

Packages:
- brok.mastery: pure engine (updates, gating, selection, scheduling)
- brok.db: SQLAlchemy state store with optimistic concurrency
- brok.cli: Typer command line front end
"""
from brok.config import DEFAULT_CONFIG, MasteryConfig, Settings, get_settings
from brok.mastery import Evidence, MasteryEngine, MasteryState, SkillGraph, UnitType

__version__ = "1.0.0"

__all__ = [
    "DEFAULT_CONFIG",
    "Evidence",
    "MasteryConfig",
    "MasteryEngine",
    "MasteryState",
    "Settings",
    "SkillGraph",
    "UnitType",
    "get_settings",
]

"""Persistence for mastery states (SQLAlchemy)."""
from brok.db.database import create_db_engine, init_db, make_session_factory, session_scope
from brok.db.store import MasteryStore

__all__ = [
    "MasteryStore",
    "create_db_engine",
    "init_db",
    "make_session_factory",
    "session_scope",
]

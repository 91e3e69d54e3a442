"""
Exception taxonomy for the brok engine.

Uninitialized node states are not errors (they are excluded from the frontier),
and graph misconfiguration is reported as a blocked thread, not raised.
"""
from __future__ import annotations


class BrokError(Exception):
    """Base class for all engine errors."""


class ConfigurationError(BrokError, ValueError):
    """A tuning profile or setting is out of range."""


class EvidenceError(BrokError, ValueError):
    """Attempt evidence is outside its documented range."""


class StateNotFoundError(BrokError, LookupError):
    """No mastery state exists for a (learner, thread, node) key."""

    def __init__(self, learner_id: str, thread_id: str, node_id: str):
        self.learner_id = learner_id
        self.thread_id = thread_id
        self.node_id = node_id
        super().__init__(
            f"No mastery state for learner={learner_id} thread={thread_id} node={node_id}"
        )


class StaleStateError(BrokError):
    """A write was computed from an outdated snapshot and was rejected."""

    def __init__(self, learner_id: str, thread_id: str, node_id: str, expected_version: int):
        self.learner_id = learner_id
        self.thread_id = thread_id
        self.node_id = node_id
        self.expected_version = expected_version
        super().__init__(
            f"Stale write for learner={learner_id} thread={thread_id} node={node_id}: "
            f"version {expected_version} is no longer current"
        )

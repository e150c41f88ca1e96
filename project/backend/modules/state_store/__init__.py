"""
State Store module.

Single writer of task status; delivers full task snapshots to subscribers.
"""

from .store import StateStore, TaskSubscriber

__all__ = ["StateStore", "TaskSubscriber"]

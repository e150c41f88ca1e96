"""
Tiered Backend Selector module.

Primary/secondary backend waterfall, each tier under its own backoff budget.
"""

from .selector import TieredBackendSelector, CallFn, StatusCallback, emit_status

__all__ = ["TieredBackendSelector", "CallFn", "StatusCallback", "emit_status"]

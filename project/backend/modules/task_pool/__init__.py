"""
Task Pool Executor module.

Bounded-concurrency dispatch of independent tasks, plus concurrency policies.
"""

from .executor import TaskPoolExecutor, Worker
from .concurrency import (
    ConcurrencyPolicy,
    default_clock,
    fixed_concurrency_policy,
    hourly_concurrency_policy,
    is_congested_hour,
)

__all__ = [
    "TaskPoolExecutor",
    "Worker",
    "ConcurrencyPolicy",
    "default_clock",
    "fixed_concurrency_policy",
    "hourly_concurrency_policy",
    "is_congested_hour",
]

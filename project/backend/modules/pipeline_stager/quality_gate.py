"""
Quality gate for derived Master artifacts.

A gate is any async callable (artifact, group) -> bool. The default accepts
every Master; real acceptance criteria are plugged in by the caller.
"""

from typing import Awaitable, Callable

from shared.models.job import Group

QualityGate = Callable[[str, Group], Awaitable[bool]]

QUALITY_GATE_REJECTED = "QA_COLOR_DRIFT_DETECTED"


async def always_pass(artifact: str, group: Group) -> bool:
    """Default gate: no check configured."""
    return True

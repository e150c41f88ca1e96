"""
Task-related data models.

A Task is one (Group, Pose) unit of work with its own status and result.
"""

from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


class TaskStatus(str, Enum):
    """Task lifecycle: pending -> generating -> success | failed."""

    PENDING = "pending"
    GENERATING = "generating"
    SUCCESS = "success"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.SUCCESS, TaskStatus.FAILED)


class QualityMetrics(BaseModel):
    """Optional quality-gate measurements attached to a task result."""

    ssim: Optional[float] = Field(default=None, ge=0.0, le=1.0, description="Structural similarity to the Master")
    delta_e: Optional[float] = Field(default=None, ge=0.0, description="Colour distance to the group reference")


class Task(BaseModel):
    """One (Group, Pose) unit of work."""

    id: str = Field(description="Composite id: '{group_id}-{pose}'")
    group_id: str
    pose: str
    status: TaskStatus = TaskStatus.PENDING
    artifact: Optional[str] = Field(default=None, description="Result artifact reference (URL or data URI)")
    error: Optional[str] = None
    error_type: Optional[str] = Field(default=None, description="safety, quota, invalid, busy, quality, unknown")
    metrics: Optional[QualityMetrics] = None

    @staticmethod
    def make_id(group_id: str, pose: str) -> str:
        """Build the composite task id."""
        return f"{group_id}-{pose}"

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

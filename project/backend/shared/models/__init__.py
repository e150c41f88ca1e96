"""
Data models for the generation orchestrator.

This module exports all Pydantic models used across orchestrator modules.
"""

from .task import Task, TaskStatus, QualityMetrics
from .job import (
    Job,
    JobKind,
    JobResult,
    Group,
    ORIGINAL_GROUP_ID,
    Resolution,
    AspectRatio,
)
from .generation import GenerationPayload

__all__ = [
    # Task models
    "Task",
    "TaskStatus",
    "QualityMetrics",
    # Job models
    "Job",
    "JobKind",
    "JobResult",
    "Group",
    "ORIGINAL_GROUP_ID",
    "Resolution",
    "AspectRatio",
    # Generation models
    "GenerationPayload",
]

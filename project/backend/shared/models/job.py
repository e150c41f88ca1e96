"""
Job-related data models.

Defines Job, Group, and JobResult models for tracking orchestrator execution.
"""

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Literal, Optional
from uuid import uuid4
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from shared.models.task import Task, TaskStatus

ORIGINAL_GROUP_ID = "original"

Resolution = Literal["1K", "2K", "4K"]
AspectRatio = Literal["1:1", "9:16", "4:3", "3:4"]

HEX_COLOR_PATTERN = re.compile(r"^#[0-9a-fA-F]{6}$")


class JobKind(str, Enum):
    """Which console feature a job came from."""

    VARIATION = "variation"    # colour groups x pose pack
    ANGLE = "angle"            # camera angles of the original
    BACKGROUND = "background"  # numbered background-swap variants


class Group(BaseModel):
    """A variant axis sharing one derived Master artifact."""

    id: str = Field(min_length=1)
    label: str
    reference_artifact: Optional[str] = Field(default=None, description="Colour or style reference used to derive the Master")
    hex_color: Optional[str] = Field(default=None, description="Hex colour override, e.g. '#1F3A5F'")
    master: Optional[str] = Field(default=None, description="Resolved Master artifact, produced once per group")

    @field_validator("hex_color")
    @classmethod
    def validate_hex_color(cls, v: Optional[str]) -> Optional[str]:
        """Validate hex colour format."""
        if v is None:
            return v
        if not HEX_COLOR_PATTERN.match(v):
            raise ValueError(f"hex_color must look like '#RRGGBB', got '{v}'")
        return v.upper()

    @property
    def is_original(self) -> bool:
        return self.id == ORIGINAL_GROUP_ID


def original_group() -> Group:
    return Group(id=ORIGINAL_GROUP_ID, label="Original")


class Job(BaseModel):
    """One user-initiated generation request. Immutable once built."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    kind: JobKind = JobKind.VARIATION
    base_artifact: str = Field(min_length=1, description="Base input image reference")
    background_artifact: Optional[str] = Field(default=None, description="Background reference for angle/background jobs")
    groups: List[Group] = Field(default_factory=list, validate_default=True)
    poses: List[str] = Field(min_length=1)
    micro_variation: bool = False
    user_prompt: Optional[str] = None
    resolution: Resolution = "1K"
    aspect_ratio: AspectRatio = "3:4"
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("groups")
    @classmethod
    def ensure_original_first(cls, v: List[Group]) -> List[Group]:
        """The original group always exists and always comes first."""
        originals = [g for g in v if g.is_original]
        others = [g for g in v if not g.is_original]
        return [originals[0] if originals else original_group()] + others

    @field_validator("poses")
    @classmethod
    def validate_poses(cls, v: List[str]) -> List[str]:
        """Pose identifiers must be non-empty and unique."""
        if any(not pose for pose in v):
            raise ValueError("Pose identifiers must be non-empty")
        if len(set(v)) != len(v):
            raise ValueError("Pose identifiers must be unique")
        return v

    @model_validator(mode="after")
    def validate_job(self) -> "Job":
        """Group ids and composite task ids must be unique; kind-specific inputs present."""
        group_ids = [g.id for g in self.groups]
        if len(set(group_ids)) != len(group_ids):
            raise ValueError("Group IDs must be unique")

        task_ids = [Task.make_id(g, p) for g in group_ids for p in self.poses]
        if len(set(task_ids)) != len(task_ids):
            raise ValueError("Group and pose identifiers produce colliding task IDs")

        if self.kind != JobKind.VARIATION and len(self.groups) > 1:
            raise ValueError(f"{self.kind.value} jobs only use the original group")
        if self.kind == JobKind.BACKGROUND and not self.background_artifact:
            raise ValueError("background jobs require a background_artifact")
        return self

    @property
    def original(self) -> Group:
        return self.groups[0]

    @property
    def variant_groups(self) -> List[Group]:
        return self.groups[1:]

    def group(self, group_id: str) -> Group:
        for g in self.groups:
            if g.id == group_id:
                return g
        raise KeyError(group_id)


class JobResult(BaseModel):
    """Final outcome of a job run."""

    job_id: str
    tasks: List[Task]
    counts: Dict[str, int] = Field(description="Task count per status")
    groups: List[Group] = Field(default_factory=list, description="This run's groups with their resolved Masters")
    cancelled: bool = False
    elapsed_seconds: float = 0.0

    @property
    def succeeded(self) -> List[Task]:
        return [t for t in self.tasks if t.status == TaskStatus.SUCCESS]

    @property
    def failed(self) -> List[Task]:
        return [t for t in self.tasks if t.status == TaskStatus.FAILED]

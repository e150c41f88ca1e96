"""
Job builders for the three job kinds.

Builders validate poses against the kind's vocabulary up front so that an
unknown pose is rejected before any remote call is made.
"""

from typing import Iterable, List, Optional, Sequence

from pydantic import ValidationError as PydanticValidationError

from shared.errors import ValidationError
from shared.models.job import AspectRatio, Group, Job, JobKind, Resolution
from modules.pipeline_stager.prompts import ANGLE_POSES, VARIATION_POSES, pose_definition

DEFAULT_VARIATION_POSES = list(VARIATION_POSES)
DEFAULT_ANGLE_POSES = ["front", "left-30", "right-30"]
MAX_BACKGROUND_VARIANTS = 8


def _build(**fields) -> Job:
    try:
        job = Job(**fields)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid job: {e}") from e

    for pose in job.poses:
        pose_definition(job.kind, pose)
    return job


def build_variation_job(
    base_artifact: str,
    groups: Iterable[Group],
    poses: Optional[Sequence[str]] = None,
    micro_variation: bool = False,
    user_prompt: Optional[str] = None,
    resolution: Resolution = "1K",
    aspect_ratio: AspectRatio = "3:4"
) -> Job:
    """
    Colour groups x pose pack.

    Args:
        base_artifact: Original garment image
        groups: Colour groups; the original group is added automatically
        poses: Pose pack (default FRONT, LEFT_15, RIGHT_15)

    Raises:
        ValidationError: On invalid inputs or unknown poses
    """
    return _build(
        kind=JobKind.VARIATION,
        base_artifact=base_artifact,
        groups=list(groups),
        poses=list(poses) if poses is not None else DEFAULT_VARIATION_POSES,
        micro_variation=micro_variation,
        user_prompt=user_prompt,
        resolution=resolution,
        aspect_ratio=aspect_ratio
    )


def build_angle_job(
    base_artifact: str,
    angles: Optional[Sequence[str]] = None,
    background_artifact: Optional[str] = None,
    user_prompt: Optional[str] = None,
    resolution: Resolution = "1K",
    aspect_ratio: AspectRatio = "3:4"
) -> Job:
    """Camera angles of the original garment, optionally on a new background."""
    angles = list(angles) if angles is not None else DEFAULT_ANGLE_POSES
    unknown = [a for a in angles if a not in ANGLE_POSES]
    if unknown:
        raise ValidationError(f"Unknown angles: {unknown}. Supported: {sorted(ANGLE_POSES)}")

    return _build(
        kind=JobKind.ANGLE,
        base_artifact=base_artifact,
        background_artifact=background_artifact,
        poses=angles,
        user_prompt=user_prompt,
        resolution=resolution,
        aspect_ratio=aspect_ratio
    )


def build_background_job(
    base_artifact: str,
    background_artifact: str,
    count: int = 1,
    user_prompt: Optional[str] = None,
    resolution: Resolution = "1K",
    aspect_ratio: AspectRatio = "3:4"
) -> Job:
    """`count` background-swap variants named variant-1 .. variant-N."""
    if count < 1 or count > MAX_BACKGROUND_VARIANTS:
        raise ValidationError(f"count must be between 1 and {MAX_BACKGROUND_VARIANTS}, got {count}")

    poses: List[str] = [f"variant-{i}" for i in range(1, count + 1)]
    return _build(
        kind=JobKind.BACKGROUND,
        base_artifact=base_artifact,
        background_artifact=background_artifact,
        poses=poses,
        user_prompt=user_prompt,
        resolution=resolution,
        aspect_ratio=aspect_ratio
    )

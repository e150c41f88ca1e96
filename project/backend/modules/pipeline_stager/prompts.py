"""
Instruction synthesis for Master derivation and pose generation.

Pose instructions are a pure function of the job kind, the pose identifier and
the micro-variation flag. Rotation limits are expressed as prompt constraints;
the backend cannot be asked to verify them.
"""

import re
import zlib
from typing import Dict, NamedTuple, Optional

from shared.errors import ValidationError
from shared.models.job import Group, JobKind


class PoseDefinition(NamedTuple):
    prompt: str
    max_rotation_degrees: Optional[int]


# Batch variation factory pose pack. Right poses are generated independently,
# not mirrored from the left ones.
VARIATION_POSES: Dict[str, PoseDefinition] = {
    "FRONT": PoseDefinition(
        "Full body standing, 0 degree, strict front view.",
        0,
    ),
    "LEFT_15": PoseDefinition(
        "Turn body 15 degrees to the LEFT (model faces left). Right shoulder is slightly closer to camera. 3/4 view.",
        15,
    ),
    "RIGHT_15": PoseDefinition(
        "Turn body 15 degrees to the RIGHT (model faces right). Left shoulder is slightly closer to camera. "
        "3/4 view. Ensure distinct RIGHT rotation.",
        15,
    ),
}

# Auto-fit camera angles
ANGLE_POSES: Dict[str, PoseDefinition] = {
    "front": PoseDefinition(
        "FRONT VIEW (0 degrees). Torso faces directly forward. Shoulders symmetrical. Chest parallel to camera.",
        0,
    ),
    "left-30": PoseDefinition(
        "ANGLED VIEW (Left 30 degrees). Body turned slightly to the LEFT. Right shoulder is closer to camera.",
        30,
    ),
    "left-40": PoseDefinition(
        "SIDE ANGLE (Left 45 degrees). Body turned 45 degrees to the LEFT. Strong diagonal view of torso.",
        45,
    ),
    "right-30": PoseDefinition(
        "ANGLED VIEW (Right 30 degrees). Turn body to the RIGHT (viewer-right). RIGHT shoulder in the foreground. "
        "[NEGATIVE: Do NOT face left. Do NOT face front.]",
        30,
    ),
    "right-40": PoseDefinition(
        "SIDE ANGLE (Right 45 degrees). Rotate body to the RIGHT (viewer-right). Strong diagonal. "
        "[NEGATIVE: Absolutely NO left turn.]",
        45,
    ),
    "left-side": PoseDefinition(
        "SIDE PROFILE (Left 90 degrees). Full side view of torso facing LEFT.",
        90,
    ),
    "right-side": PoseDefinition(
        "SIDE PROFILE (Right 90 degrees). Full side view of torso facing RIGHT. [NEGATIVE: Do NOT face left.]",
        90,
    ),
}

BACKGROUND_VARIANT_PATTERN = re.compile(r"^variant-(\d+)$")

MICRO_VARIATIONS = (
    "one hand in pocket",
    "shift weight to one leg",
    "touching clothes",
)

PRESERVE_SUBJECT = (
    "Preserve the subject exactly: do not change body proportions, clothing, fabric, colour, fit or accessories. "
    "No text, logos, or graphic elements."
)


def pose_definition(kind: JobKind, pose: str) -> PoseDefinition:
    """
    Look up the definition for a pose within a job kind's vocabulary.

    Raises:
        ValidationError: If the pose is not part of the kind's vocabulary
    """
    if kind == JobKind.VARIATION:
        table = VARIATION_POSES
    elif kind == JobKind.ANGLE:
        table = ANGLE_POSES
    else:
        match = BACKGROUND_VARIANT_PATTERN.match(pose)
        if not match or int(match.group(1)) < 1:
            raise ValidationError(f"Background variants must be named 'variant-N', got '{pose}'")
        return PoseDefinition(
            f"Background variation #{match.group(1)}. Keep the original pose and camera angle.",
            None,
        )

    if pose not in table:
        raise ValidationError(
            f"Unknown pose '{pose}' for {kind.value} jobs. Supported: {sorted(table)}"
        )
    return table[pose]


def micro_variation_for(pose: str) -> str:
    """Deterministic micro-pose change for a pose id."""
    return MICRO_VARIATIONS[zlib.crc32(pose.encode("utf-8")) % len(MICRO_VARIATIONS)]


def rotation_constraint(max_rotation_degrees: Optional[int]) -> str:
    if max_rotation_degrees is None:
        return "Do not change the pose."
    if max_rotation_degrees == 0:
        return "Do NOT rotate the body. No back view."
    return f"Do NOT rotate more than {max_rotation_degrees} degrees. No back view."


def build_pose_instruction(
    kind: JobKind,
    pose: str,
    micro_variation: bool,
    user_prompt: Optional[str] = None,
    has_background: bool = False
) -> str:
    """
    Build the generation instruction for one pose task.

    Args:
        kind: Job kind selecting the pose vocabulary
        pose: Pose or angle identifier
        micro_variation: Append a small natural pose change
        user_prompt: Optional free-text instruction from the user
        has_background: A background reference image follows the main image

    Returns:
        Instruction text
    """
    definition = pose_definition(kind, pose)

    lines = ["Use the first image as the MAIN IMAGE (subject source)."]
    if has_background:
        lines.append(
            "Use the second image as the BACKGROUND REFERENCE. Replace only the background; do not transfer "
            "people, objects, text or logos from it. Match perspective, light direction and colour temperature."
        )
    lines.append(PRESERVE_SUBJECT)

    direction = definition.prompt
    if micro_variation:
        direction += f" Micro variation: {micro_variation_for(pose)}."
    lines.append(f"[DIRECTION & ANGLE] {direction}")
    lines.append(f"[CONSTRAINT] {rotation_constraint(definition.max_rotation_degrees)}")

    if user_prompt and user_prompt.strip():
        lines.append(f"[ADDITIONAL INSTRUCTION] {user_prompt.strip()}")
    return "\n".join(lines)


def build_master_instruction(group: Group) -> str:
    """
    Build the paint-only recolour instruction that derives a group's Master.

    Raises:
        ValidationError: If the group has neither a reference artifact nor a hex colour
    """
    if group.reference_artifact:
        target = "the colour of the garment in the second image (colour reference)"
    elif group.hex_color:
        target = f"the exact colour {group.hex_color}"
    else:
        raise ValidationError(f"Group '{group.label}' needs a colour reference image or a hex colour")

    return "\n".join([
        "Use the first image as the MAIN IMAGE.",
        f"Recolour the main garment to {target}.",
        "Paint only: keep fabric texture, folds, stitching, pose, framing, lighting and background unchanged.",
        "Do not recolour skin, hair or accessories.",
    ])

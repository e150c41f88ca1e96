"""
Remote generation payload.

The backend treats this as opaque input: images, one textual instruction, and
output-format parameters.
"""

from typing import List
from pydantic import BaseModel, Field

from shared.models.job import AspectRatio, Resolution


class GenerationPayload(BaseModel):
    """Input for one remote generation call."""

    images: List[str] = Field(min_length=1, description="Input artifacts, primary image first")
    instruction: str = Field(min_length=1)
    resolution: Resolution = "1K"
    aspect_ratio: AspectRatio = "3:4"

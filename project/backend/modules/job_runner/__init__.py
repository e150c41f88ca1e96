"""
Job Runner module.

Builds jobs and runs them end to end through the orchestrator pipeline.
"""

from .builders import build_angle_job, build_background_job, build_variation_job
from .process import process

__all__ = ["process", "build_variation_job", "build_angle_job", "build_background_job"]

"""
Pipeline Stager module.

Sequences groups (Master derivation + quality gate) and dispatches pose tasks.
"""

from .context import JobContext
from .stager import PipelineStager, expand_job
from .quality_gate import QualityGate, always_pass

__all__ = ["JobContext", "PipelineStager", "expand_job", "QualityGate", "always_pass"]

"""
Image Backend module.

Replicate-hosted image-edit models used as the orchestrator's call function.
"""

from .generator import call_backend, get_client

__all__ = ["call_backend", "get_client"]

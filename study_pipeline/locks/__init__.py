# FILE: study_pipeline/locks/__init__.py
"""TTL-bound generation locks keyed by track/language/version."""

from .models import GenerationLock
from .manager import GenerationLockManager

__all__ = ["GenerationLock", "GenerationLockManager"]

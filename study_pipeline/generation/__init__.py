# FILE: study_pipeline/generation/__init__.py
"""
Study set generation.

Lyrics -> per-line language tags -> say-it-back questions (deterministic)
+ translation/trivia MCQs (provider call) -> validated StudySetPack.
"""

from .schemas import (
    GeniusReferent,
    GenerationInput,
    GenerationResult,
    StudyQuestion,
    StudySetPack,
    TaggedLyricLine,
)
from .engine import GenerationEngine
from .provider import OpenRouterProvider
from .genius import GeniusClient, GeniusLookup
from .validation import validate_pack

__all__ = [
    "GeniusReferent",
    "GenerationInput",
    "GenerationResult",
    "StudyQuestion",
    "StudySetPack",
    "TaggedLyricLine",
    "GenerationEngine",
    "OpenRouterProvider",
    "GeniusClient",
    "GeniusLookup",
    "validate_pack",
]

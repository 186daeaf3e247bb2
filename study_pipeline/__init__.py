# FILE: study_pipeline/__init__.py
"""
Study Set Pipeline

Turns canonical, hash-verified lyrics of a registered track into a study set
(say-it-back / translation / trivia questions) and publishes it exactly once
to the on-chain study-set registry.

Usage:
    from study_pipeline.pipeline.dependencies import build_pipeline
    from study_pipeline.pipeline.schemas import UnitKey

    pipeline = build_pipeline(settings)
    result = await pipeline.generate(GenerateRequest(unit_key=..., user_address=...))
"""

__version__ = "0.3.0"

# FILE: study_pipeline/pipeline/__init__.py
"""
Study set pipeline: identity, errors, orchestration and HTTP routes.

Only the error hierarchy is re-exported here; it is imported by every other
subpackage. Import the orchestrator and router from their modules.
"""

from .errors import PipelineError

__all__ = ["PipelineError"]

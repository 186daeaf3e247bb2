# FILE: study_pipeline/staging/__init__.py
"""Stage generated packs on Load S3 and anchor them to Arweave."""

from .service import Anchored, StagedUpload, StagingService, serialize_pack

__all__ = ["Anchored", "StagedUpload", "StagingService", "serialize_pack"]

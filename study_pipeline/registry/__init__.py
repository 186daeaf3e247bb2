# FILE: study_pipeline/registry/__init__.py
"""On-chain registry access: canonical lyrics, study sets, track metadata, credits."""

from .chain import PublishOutcome, TempoRegistryClient, WriteReceipt, classify_revert_reason
from .reader import RegistryReader
from .publisher import Publisher, PublishResult

__all__ = [
    "PublishOutcome",
    "TempoRegistryClient",
    "WriteReceipt",
    "classify_revert_reason",
    "RegistryReader",
    "Publisher",
    "PublishResult",
]

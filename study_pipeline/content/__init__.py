# FILE: study_pipeline/content/__init__.py
"""Content addressing (ar:// and ls3:// refs) and hash-verified fetching."""

from .refs import ContentGateways, ar_ref, ls3_ref, parse_ref
from .fetcher import FetchedContent, HashVerifiedFetcher, sha256_hex

__all__ = [
    "ContentGateways",
    "ar_ref",
    "ls3_ref",
    "parse_ref",
    "FetchedContent",
    "HashVerifiedFetcher",
    "sha256_hex",
]

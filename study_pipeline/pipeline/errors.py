# FILE: study_pipeline/pipeline/errors.py
"""
Study set pipeline error taxonomy.

Every failure the pipeline can surface maps to exactly one PipelineError
subclass. Each carries a machine-readable code, an HTTP-equivalent status
and the extra context fields returned to the caller.

Propagation rules:
- Integrity (hash_mismatch) and credit failures are returned verbatim, never retried here.
- generation_in_flight is the only "expected under load" outcome (409, retryable).
- race_resolution_failed is the one anomalous terminal error.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional


class PipelineError(Exception):
    """Base class for study set pipeline errors."""

    code: str = "internal_error"
    http_status: int = 500
    retryable: bool = False

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = {k: v for k, v in context.items() if v is not None}

    def to_response(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"success": False, "code": self.code, "error": self.message}
        body.update(self.context)
        return body


# =============================================================================
# REQUEST / CONFIGURATION
# =============================================================================

class InvalidRequest(PipelineError):
    code = "invalid_request"
    http_status = 400


class Misconfigured(PipelineError):
    code = "misconfigured"
    http_status = 500


# =============================================================================
# CONTENT RESOLUTION & INTEGRITY
# =============================================================================

class UnsupportedRef(PipelineError):
    code = "unsupported_ref"
    http_status = 502

    def __init__(self, ref: str):
        super().__init__(f"Unsupported ref scheme: {ref}", ref=ref)
        self.ref = ref


class ResolutionFailed(PipelineError):
    """All candidate URLs for a ref were exhausted."""

    code = "resolution_failed"
    http_status = 502
    retryable = True

    def __init__(self, ref: str, last_status: Optional[int] = None, message: Optional[str] = None):
        msg = message or f"Failed to fetch ref {ref} (status: {last_status if last_status is not None else 'unknown'})"
        super().__init__(msg, ref=ref, lastStatus=last_status)
        self.ref = ref
        self.last_status = last_status


class HashMismatch(PipelineError):
    """Fetched bytes do not hash to the recorded value. Corrupt or tampered upstream data."""

    code = "hash_mismatch"
    http_status = 502

    def __init__(self, expected: str, actual: str, message: str = "Content hash mismatch", **context: Any):
        super().__init__(message, expectedHash=expected, actualHash=actual, **context)
        self.expected = expected
        self.actual = actual


# =============================================================================
# REGISTRY
# =============================================================================

class StudySetNotFound(PipelineError):
    code = "not_found"
    http_status = 404


class CanonicalInputNotFound(PipelineError):
    """No approved canonical lyrics for the track. Needs upstream approval, not a retry."""

    code = "needs_approval"
    http_status = 404


class TrackNotFound(PipelineError):
    code = "track_not_found"
    http_status = 404


class TrackMetadataMissing(PipelineError):
    code = "track_metadata_missing"
    http_status = 422


class RegistryReadFailed(PipelineError):
    code = "registry_read_failed"
    http_status = 502
    retryable = True


class InsufficientCredits(PipelineError):
    code = "insufficient_credits"
    http_status = 402

    def __init__(
        self,
        user: str,
        contract: Optional[str] = None,
        required: Optional[int] = None,
        available: Optional[int] = None,
    ):
        super().__init__(
            "Insufficient onchain study-set credits",
            user=user,
            contract=contract,
            requiredCredits=str(required) if required is not None else None,
            availableCredits=str(available) if available is not None else None,
        )


class RegistryWriteFailed(PipelineError):
    code = "registry_write_failed"
    http_status = 502
    retryable = True


class RaceResolutionFailed(PipelineError):
    """Write rejected as duplicate, yet the re-read still shows no record."""

    code = "race_resolution_failed"
    http_status = 502


# =============================================================================
# LOCKING
# =============================================================================

class GenerationInFlight(PipelineError):
    code = "generation_in_flight"
    http_status = 409
    retryable = True

    def __init__(self, lock_key: str, retry_after_seconds: int):
        super().__init__(
            "A generation request for this track/language/version is already in flight",
            lockKey=lock_key,
            retryAfterSeconds=retry_after_seconds,
        )
        self.lock_key = lock_key
        self.retry_after_seconds = retry_after_seconds


# =============================================================================
# GENERATION
# =============================================================================

class LyricsTooLarge(PipelineError):
    code = "lyrics_too_large"
    http_status = 400

    def __init__(self, size: int, limit: int):
        super().__init__(f"lyrics too large: {size} > {limit}", size=size, limit=limit)


class GenerationValidationError(PipelineError):
    """Provider output (or generation input) failed structural validation."""

    code = "validation_error"
    http_status = 422

    def __init__(self, message: str, issues: List[str], raw_output: Optional[str] = None):
        super().__init__(message)
        self.issues = list(issues)
        self.raw_output = raw_output
        self.context["validationIssues"] = self.issues
        self.context["rawModelOutput"] = raw_output


class ProviderError(PipelineError):
    code = "provider_failed"
    http_status = 502
    retryable = True


# =============================================================================
# STAGING
# =============================================================================

class PackTooLarge(PipelineError):
    code = "too_large"
    http_status = 413

    def __init__(self, size: int, limit: int):
        super().__init__(f"study_set_pack_too_large:{size}", size=size, limit=limit)
        self.size = size


class StagingFailed(PipelineError):
    code = "staging_failed"
    http_status = 502
    retryable = True

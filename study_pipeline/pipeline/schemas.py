# FILE: study_pipeline/pipeline/schemas.py
"""
Study set pipeline schemas.

Dataclasses for the internal records passed between collaborators, and
Pydantic models for the HTTP request/response bodies (camelCase on the wire).
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_serializer

from study_pipeline.config import MAX_VERSION, MIN_VERSION
from study_pipeline.pipeline.errors import InvalidRequest

_TRACK_ID_RE = re.compile(r"^0x[a-fA-F0-9]{64}$")


def is_bytes32_hex(value: str) -> bool:
    return bool(_TRACK_ID_RE.match(value or ""))


def parse_version(raw: Any) -> int:
    """Parse an optional version (default 1). Accepts ints and numeric strings."""
    if raw is None or raw == "":
        return 1
    if isinstance(raw, bool):
        raise InvalidRequest("version must be an integer in [1, 255]")
    try:
        value = int(float(raw)) if isinstance(raw, (str, float)) else int(raw)
    except (TypeError, ValueError, OverflowError):
        raise InvalidRequest("version must be an integer in [1, 255]")
    if value < MIN_VERSION or value > MAX_VERSION:
        raise InvalidRequest("version must be an integer in [1, 255]")
    return value


# =============================================================================
# IDENTITY
# =============================================================================

@dataclass(frozen=True)
class UnitKey:
    """One generation task and one registry slot."""

    track_id: str
    language: str
    version: int = 1

    @classmethod
    def parse(cls, track_id: Any, language: Any, version: Any = None) -> "UnitKey":
        """Validate raw request values. Raises InvalidRequest before any I/O."""
        tid = track_id.strip() if isinstance(track_id, str) else ""
        if not tid:
            raise InvalidRequest("trackId is required")
        if not is_bytes32_hex(tid):
            raise InvalidRequest("trackId must be a 32-byte hex string (0x + 64 hex)")
        lang = language.strip() if isinstance(language, str) else ""
        if not lang:
            raise InvalidRequest("language is required")
        return cls(track_id=tid, language=lang, version=parse_version(version))

    @property
    def lock_key(self) -> str:
        return f"{self.track_id.lower()}:{self.language.lower()}:{self.version}"


# =============================================================================
# REGISTRY RECORDS
# =============================================================================

@dataclass
class CanonicalInputRecord:
    ref: str
    hash: str
    version: int
    submitter: str
    timestamp: int


@dataclass
class TrackMetadata:
    title: str
    artist: str
    album: str = ""


@dataclass
class PublishedRecord:
    exists: bool
    ref: str = ""
    hash: str = ""
    submitter: str = ""
    created_at: int = 0


@dataclass
class StagedArtifact:
    dataitem_id: str
    staging_ref: str
    staging_url: str
    permanent_ref: str
    permanent_url: str
    available: bool
    hash: str
    size: int


@dataclass
class ResolvedPack:
    """A published record whose pack bytes were fetched and hash-verified."""

    record: PublishedRecord
    pack: Dict[str, Any]
    fetched_from: str
    size: int


# =============================================================================
# PIPELINE REQUEST / RESULT
# =============================================================================

@dataclass
class GenerateRequest:
    unit_key: UnitKey
    user_address: str
    model: Optional[Any] = None
    translation_count: Optional[int] = None
    trivia_count: Optional[int] = None
    say_it_back_count: Optional[int] = None


@dataclass
class PipelineResult:
    """Outcome of one successful pipeline run (fresh, cached or race-resolved)."""

    unit_key: UnitKey
    cached: bool
    record: PublishedRecord
    pack: Dict[str, Any]
    storage: Dict[str, Any]
    race_resolved: bool = False
    model: Optional[Any] = None
    prompt_hash: Optional[str] = None
    warnings: List[str] = field(default_factory=list)
    tx_hash: Optional[str] = None
    block_number: Optional[str] = None
    canonical_input: Optional[CanonicalInputRecord] = None
    canonical_fetched_from: Optional[str] = None
    track: Optional[TrackMetadata] = None
    genius_song_id: Optional[int] = None
    genius_referent_count: Optional[int] = None
    counts: Optional[Dict[str, int]] = None


def question_counts(questions: List[Dict[str, Any]]) -> Dict[str, int]:
    return {
        "total": len(questions),
        "sayItBack": sum(1 for q in questions if q.get("type") == "say_it_back"),
        "translationMcq": sum(1 for q in questions if q.get("type") == "translation_mcq"),
        "triviaMcq": sum(1 for q in questions if q.get("type") == "trivia_mcq"),
    }


# =============================================================================
# HTTP MODELS
# =============================================================================

class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class GenerateBody(_CamelModel):
    """POST /study-sets/generate body. Unknown keys are kept so forbidden ones can be reported."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    track_id: Optional[Any] = Field(None, alias="trackId")
    language: Optional[Any] = None
    version: Optional[Any] = None
    model: Optional[Any] = None
    translation_count: Optional[Any] = Field(None, alias="translationCount")
    trivia_count: Optional[Any] = Field(None, alias="triviaCount")
    say_it_back_count: Optional[Any] = Field(None, alias="sayItBackCount")


class DebugGenerateBody(_CamelModel):
    track_id: Optional[Any] = Field(None, alias="trackId")
    title: Optional[Any] = None
    artist: Optional[Any] = None
    language: Optional[Any] = None
    lyrics: Optional[Any] = None
    lyrics_ref: Optional[Any] = Field(None, alias="lyricsRef")
    genius_song_id: Optional[Any] = Field(None, alias="geniusSongId")
    genius_referents: Optional[Any] = Field(None, alias="geniusReferents")
    model: Optional[Any] = None
    translation_count: Optional[Any] = Field(None, alias="translationCount")
    trivia_count: Optional[Any] = Field(None, alias="triviaCount")
    say_it_back_count: Optional[Any] = Field(None, alias="sayItBackCount")


class RegistryBlock(_CamelModel):
    contract: str
    track_id: str = Field(alias="trackId")
    language: str
    version: int
    study_set_ref: str = Field(alias="studySetRef")
    study_set_hash: str = Field(alias="studySetHash")
    submitter: Optional[str] = None
    user: Optional[str] = None
    created_at: Optional[int] = Field(None, alias="createdAt")
    tx_hash: Optional[str] = Field(None, alias="txHash")
    block_number: Optional[str] = Field(None, alias="blockNumber")

    @model_serializer(mode="wrap")
    def _drop_none(self, handler):
        return {k: v for k, v in handler(self).items() if v is not None}


class StudySetResponse(_CamelModel):
    success: bool = True
    cached: bool
    race_resolved: Optional[bool] = Field(None, alias="raceResolved")
    model: Optional[Any] = None
    prompt_hash: Optional[str] = Field(None, alias="promptHash")
    warnings: List[str] = Field(default_factory=list)
    registry: RegistryBlock
    storage: Dict[str, Any] = Field(default_factory=dict)
    canonical_lyrics: Optional[Dict[str, Any]] = Field(None, alias="canonicalLyrics")
    canonical_track: Optional[Dict[str, Any]] = Field(None, alias="canonicalTrack")
    genius: Optional[Dict[str, Any]] = None
    counts: Optional[Dict[str, int]] = None
    pack: Dict[str, Any]

    @model_serializer(mode="wrap")
    def _drop_none(self, handler):
        # model/promptHash are always present, possibly null
        data = handler(self)
        keep = {"model", "promptHash"}
        return {k: v for k, v in data.items() if v is not None or k in keep}


class DebugGenerateResponse(_CamelModel):
    success: bool = True
    model: str
    prompt_hash: str = Field(alias="promptHash")
    warnings: List[str] = Field(default_factory=list)
    counts: Dict[str, int]
    pack: Dict[str, Any]

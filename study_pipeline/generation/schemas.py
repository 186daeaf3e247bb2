# FILE: study_pipeline/generation/schemas.py
"""
Study set pack schema (exercise-pack-v1).

Field names are snake_case in Python and camelCase on the wire. Optional
question fields are omitted from the serialized pack when unset; nullable
pack fields (lyricsRef, geniusRef, geniusSongId) are kept as null.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_serializer

PACK_SPEC_VERSION = "exercise-pack-v1"
EXCERPT_POLICY = "max-one-line-per-question"


class QuestionType(str, Enum):
    SAY_IT_BACK = "say_it_back"
    TRANSLATION_MCQ = "translation_mcq"
    TRIVIA_MCQ = "trivia_mcq"


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


SourceClassification = Literal["verified", "accepted", "unreviewed"]


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, use_enum_values=True)


class TaggedLyricLine(_WireModel):
    text: str
    lang: str  # ISO 639-1 of the dominant language, "und" when unknown
    lang2: Optional[str] = None

    @model_serializer(mode="wrap")
    def _drop_none(self, handler):
        return {k: v for k, v in handler(self).items() if v is not None}


class StudyQuestion(_WireModel):
    id: str
    type: QuestionType
    prompt: str
    excerpt: str
    choices: List[str] = Field(default_factory=list)
    correct_index: int = Field(0, alias="correctIndex")
    explanation: str
    difficulty: Difficulty
    excerpt_lang: Optional[str] = Field(None, alias="excerptLang")
    source: Optional[Literal["genius"]] = None
    source_classification: Optional[SourceClassification] = Field(None, alias="sourceClassification")

    @model_serializer(mode="wrap")
    def _drop_none(self, handler):
        return {k: v for k, v in handler(self).items() if v is not None}


class SourceRefs(_WireModel):
    lyrics_ref: Optional[str] = Field(None, alias="lyricsRef")
    genius_ref: Optional[str] = Field(None, alias="geniusRef")


class GeneratorInfo(_WireModel):
    model: str
    prompt_hash: str = Field(alias="promptHash")
    generated_at: int = Field(alias="generatedAt")


class Attribution(_WireModel):
    track: str
    artist: str
    genius_song_id: Optional[int] = Field(None, alias="geniusSongId")


class Compliance(_WireModel):
    excerpt_policy: str = Field(EXCERPT_POLICY, alias="excerptPolicy")
    attribution: Attribution


class StudySetPack(_WireModel):
    spec_version: str = Field(PACK_SPEC_VERSION, alias="specVersion")
    track_id: str = Field(alias="trackId")
    language: str
    source_refs: SourceRefs = Field(alias="sourceRefs")
    generator: GeneratorInfo
    line_tags: List[TaggedLyricLine] = Field(default_factory=list, alias="lineTags")
    questions: List[StudyQuestion] = Field(default_factory=list)
    compliance: Compliance

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


# =============================================================================
# ENGINE INPUT / OUTPUT
# =============================================================================

@dataclass
class GeniusReferent:
    fragment: str
    annotation: str
    classification: Optional[str] = None
    votes_total: Optional[int] = None
    url: Optional[str] = None


@dataclass
class GenerationInput:
    track_id: str
    language: str
    title: str
    artist: str
    lyrics: str
    lyrics_ref: Optional[str] = None
    genius_song_id: Optional[str] = None
    genius_referents: List[GeniusReferent] = field(default_factory=list)
    model: Optional[str] = None
    translation_count: Optional[int] = None
    trivia_count: Optional[int] = None
    say_it_back_count: Optional[int] = None
    precomputed_line_tags: Optional[List[TaggedLyricLine]] = None


@dataclass
class GenerationResult:
    pack: StudySetPack
    model: str
    prompt_hash: str
    raw_output: str
    warnings: List[str] = field(default_factory=list)

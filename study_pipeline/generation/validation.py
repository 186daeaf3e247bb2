# FILE: study_pipeline/generation/validation.py
"""
Structural validation of provider output and of finished packs.

Two severities:
- hard issues (non-object root, missing category arrays, more rows than
  requested, invalid final set) fail the generation with the raw output;
- a malformed individual row is dropped and reported as a "[dropped] ..."
  warning.

Nothing is repaired: a row is either valid as returned or it is dropped.
"""
from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence

from study_pipeline.generation.lyrics import MAX_QUESTION_EXCERPT_LENGTH, normalize_whitespace
from study_pipeline.generation.prompts import normalize_classification, strip_json_fence
from study_pipeline.generation.schemas import (
    EXCERPT_POLICY,
    PACK_SPEC_VERSION,
    Difficulty,
    QuestionType,
    StudyQuestion,
    StudySetPack,
)
from study_pipeline.pipeline.errors import GenerationValidationError

MAX_PROMPT_LENGTH = 400
MAX_EXPLANATION_LENGTH = 420
MCQ_CHOICES = 4

DROPPED_PREFIX = "[dropped] "

_PROMPT_HASH_RE = re.compile(r"^0x[a-f0-9]{64}$")
_ID_PREFIX = {
    QuestionType.TRANSLATION_MCQ.value: "tr",
    QuestionType.TRIVIA_MCQ.value: "tv",
}


@dataclass
class NormalizedMcqs:
    translation: List[StudyQuestion] = field(default_factory=list)
    trivia: List[StudyQuestion] = field(default_factory=list)
    hard_issues: List[str] = field(default_factory=list)
    dropped: List[str] = field(default_factory=list)


def parse_model_payload(raw_output: str) -> dict:
    try:
        parsed = json.loads(strip_json_fence(raw_output))
    except (json.JSONDecodeError, ValueError):
        raise GenerationValidationError(
            "Model output is not valid JSON", ["failed to parse model output"], raw_output
        )
    if not isinstance(parsed, dict):
        raise GenerationValidationError(
            "Model output must be a JSON object", ["root must be an object"], raw_output
        )
    return parsed


def _is_int(v: Any) -> bool:
    return isinstance(v, int) and not isinstance(v, bool)


def normalize_mcq_record(value: Any, qtype: str, index: int) -> tuple[Optional[StudyQuestion], List[str]]:
    label = f"{qtype}[{index}]"
    if not isinstance(value, dict):
        return None, [f"{label} must be an object"]

    issues: List[str] = []
    prompt = normalize_whitespace(value["prompt"]) if isinstance(value.get("prompt"), str) else ""
    excerpt_raw = value["excerpt"] if isinstance(value.get("excerpt"), str) else ""
    explanation = normalize_whitespace(value["explanation"]) if isinstance(value.get("explanation"), str) else ""
    choices_raw = value.get("choices")
    correct_raw = value.get("correctIndex")
    difficulty_raw = value.get("difficulty")

    if not prompt:
        issues.append(f"{label}.prompt is required")
    if len(prompt) > MAX_PROMPT_LENGTH:
        issues.append(f"{label}.prompt too long")

    if "\n" in excerpt_raw.strip() or "\r" in excerpt_raw.strip():
        issues.append(f"{label}.excerpt must be one line")
    excerpt = normalize_whitespace(excerpt_raw)
    if not excerpt:
        issues.append(f"{label}.excerpt is required")
    if len(excerpt) > MAX_QUESTION_EXCERPT_LENGTH:
        issues.append(f"{label}.excerpt too long")

    if not explanation:
        issues.append(f"{label}.explanation is required")
    if len(explanation) > MAX_EXPLANATION_LENGTH:
        issues.append(f"{label}.explanation too long")

    if not isinstance(choices_raw, list):
        issues.append(f"{label}.choices must be an array")
        return None, issues

    choices = [normalize_whitespace(c) if isinstance(c, str) else "" for c in choices_raw]
    choices = [c for c in choices if c]
    if len(choices) != MCQ_CHOICES:
        issues.append(f"{label}.choices must contain exactly 4 non-empty strings")
    if len({c.lower() for c in choices}) != len(choices):
        issues.append(f"{label}.choices must be unique")

    if not _is_int(correct_raw) or correct_raw < 0 or correct_raw >= len(choices):
        issues.append(f"{label}.correctIndex out of range")

    difficulty = difficulty_raw.strip() if isinstance(difficulty_raw, str) else ""
    if difficulty not in {d.value for d in Difficulty}:
        issues.append(f"{label}.difficulty must be easy|medium|hard")

    if issues:
        return None, issues

    trivia = qtype == QuestionType.TRIVIA_MCQ.value
    question = StudyQuestion(
        id=f"{_ID_PREFIX[qtype]}-{index + 1:03d}",
        type=qtype,
        prompt=prompt,
        excerpt=excerpt,
        choices=choices,
        correct_index=correct_raw,
        explanation=explanation,
        difficulty=difficulty,
        source="genius" if trivia else None,
        source_classification=normalize_classification(value.get("sourceClassification")) if trivia else None,
    )
    return question, []


def normalize_model_questions(payload: dict, translation_limit: int, trivia_limit: int) -> NormalizedMcqs:
    result = NormalizedMcqs()

    for qtype, limit, bucket in (
        (QuestionType.TRANSLATION_MCQ.value, translation_limit, result.translation),
        (QuestionType.TRIVIA_MCQ.value, trivia_limit, result.trivia),
    ):
        rows = payload.get(qtype)
        if not isinstance(rows, list):
            result.hard_issues.append(f"{qtype} must be an array")
            continue
        if len(rows) > limit:
            result.hard_issues.append(f"{qtype} returned {len(rows)} questions; at most {limit} requested")
            continue

        for index, row in enumerate(rows):
            question, row_issues = normalize_mcq_record(row, qtype, index)
            if question is not None:
                bucket.append(question)
            else:
                result.dropped.extend(DROPPED_PREFIX + issue for issue in row_issues)

    return result


def validate_question_set(questions: Sequence[StudyQuestion]) -> List[str]:
    issues: List[str] = []
    if not questions:
        issues.append("questions must not be empty")

    seen = set()
    for index, q in enumerate(questions):
        if q.id in seen:
            issues.append(f"questions[{index}] duplicate id {q.id}")
        seen.add(q.id)

        if q.type == QuestionType.SAY_IT_BACK.value:
            if q.choices:
                issues.append(f"questions[{index}] say_it_back choices must be empty")
        elif len(q.choices) != MCQ_CHOICES:
            issues.append(f"questions[{index}] mcq choices must be 4")

        if q.correct_index < 0 or q.correct_index >= max(1, len(q.choices)):
            issues.append(f"questions[{index}] correctIndex out of range")
    return issues


def validate_pack(pack: StudySetPack) -> List[str]:
    """Full structural check of a finished pack. Empty list means valid."""
    issues: List[str] = []
    if pack.spec_version != PACK_SPEC_VERSION:
        issues.append(f"specVersion must be {PACK_SPEC_VERSION}")
    if not pack.track_id.strip():
        issues.append("trackId is required")
    if not pack.language.strip():
        issues.append("language is required")
    if not pack.generator.model.strip():
        issues.append("generator.model is required")
    if not _PROMPT_HASH_RE.match(pack.generator.prompt_hash):
        issues.append("generator.promptHash must be 0x + 64 hex chars")
    if pack.generator.generated_at <= 0:
        issues.append("generator.generatedAt must be a unix timestamp")
    if pack.compliance.excerpt_policy != EXCERPT_POLICY:
        issues.append(f"compliance.excerptPolicy must be {EXCERPT_POLICY}")
    attribution = pack.compliance.attribution
    if not attribution.track.strip():
        issues.append("compliance.attribution.track is required")
    if not attribution.artist.strip():
        issues.append("compliance.attribution.artist is required")
    if attribution.genius_song_id is not None and attribution.genius_song_id <= 0:
        issues.append("compliance.attribution.geniusSongId must be a positive integer or null")

    issues.extend(validate_question_set(pack.questions))
    return issues

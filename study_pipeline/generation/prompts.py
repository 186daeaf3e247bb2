# FILE: study_pipeline/generation/prompts.py
"""
Prompt assembly and response formats for study set generation.

The prompt hash covers exactly what the MCQ call sends:
sha256(system + "\\n---\\n" + user), 0x-prefixed lower-case hex.
"""
from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from typing import Any, Dict, List

from study_pipeline.generation.lyrics import normalize_whitespace
from study_pipeline.generation.schemas import GeniusReferent, TaggedLyricLine

MAX_LYRIC_LINES_FOR_PROMPT = 60
MAX_REFERENTS_FOR_PROMPT = 24

# ============================================================================
# RESPONSE FORMATS
# ============================================================================

LINE_LANGUAGE_RESPONSE_FORMAT: Dict[str, Any] = {
    "type": "json_schema",
    "json_schema": {
        "name": "line_languages",
        "strict": True,
        "schema": {
            "type": "object",
            "properties": {
                "lines": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "index": {"type": "integer", "description": "Zero-based line index from input"},
                            "lang": {"type": "string", "description": "ISO 639-1 code of primary language of this line"},
                            "lang2": {
                                "type": "string",
                                "description": "Secondary language if line mixes languages, or empty string if monolingual",
                            },
                        },
                        "required": ["index", "lang", "lang2"],
                        "additionalProperties": False,
                    },
                },
            },
            "required": ["lines"],
            "additionalProperties": False,
        },
    },
}


def _mcq_item_schema(description: str, trivia: bool) -> Dict[str, Any]:
    properties: Dict[str, Any] = {
        "prompt": {"type": "string", "description": "Factual trivia question" if trivia else "Question in learner language"},
        "excerpt": {"type": "string", "description": "Related lyric line" if trivia else "Original lyric line"},
        "choices": {
            "type": "array",
            "items": {"type": "string"},
            "minItems": 4,
            "maxItems": 4,
            "description": "Exactly 4 choices",
        },
        "correctIndex": {"type": "integer", "minimum": 0, "maximum": 3, "description": "0-3 index of correct answer"},
        "explanation": {
            "type": "string",
            "description": "Explanation with source fact" if trivia else "Explanation in learner language",
        },
        "difficulty": {"type": "string", "enum": ["easy", "medium", "hard"]},
    }
    required = ["prompt", "excerpt", "choices", "correctIndex", "explanation", "difficulty"]
    if trivia:
        properties["sourceClassification"] = {"type": "string", "enum": ["verified", "accepted", "unreviewed"]}
        required.append("sourceClassification")
    return {
        "type": "array",
        "description": description,
        "items": {
            "type": "object",
            "properties": properties,
            "required": required,
            "additionalProperties": False,
        },
    }


STUDY_SET_RESPONSE_FORMAT: Dict[str, Any] = {
    "type": "json_schema",
    "json_schema": {
        "name": "study_set",
        "strict": True,
        "schema": {
            "type": "object",
            "properties": {
                "translation_mcq": _mcq_item_schema("Translation MCQ questions (Jeopardy-style)", trivia=False),
                "trivia_mcq": _mcq_item_schema("Trivia MCQ questions from Genius annotations", trivia=True),
            },
            "required": ["translation_mcq", "trivia_mcq"],
            "additionalProperties": False,
        },
    },
}

EMPTY_MCQ_OUTPUT = '{"translation_mcq":[],"trivia_mcq":[]}'


# ============================================================================
# LINE TAGGING PROMPT
# ============================================================================

LINE_TAGGING_SYSTEM_PROMPT = "\n".join([
    "Tag each numbered lyric line with its primary language (ISO 639-1 code).",
    "If a line mixes two languages (e.g. Korean words + English words), set lang to the dominant language and lang2 to the secondary.",
    'If a line is monolingual, set lang2 to empty string "".',
    "Ignore ad-libs and filler words (oh, yeah, uh) when determining language.",
    "Common codes: en, ko, ja, zh, es, fr, pt, de, it, hi, ar, th.",
])


def build_line_tagging_user(lines: List[str]) -> str:
    return "\n".join(f"{i}: {line}" for i, line in enumerate(lines))


def line_tagging_max_tokens(line_count: int) -> int:
    return min(line_count * 30 + 100, 2000)


# ============================================================================
# MCQ PROMPT
# ============================================================================

_TRANSLATION_RULES = [
    "translation_mcq rules (Jeopardy-style):",
    "- ONLY use lines marked as translatable (lang !== learner language) for translation questions.",
    '- "prompt" is written in the LEARNER language. It gives the MEANING/TRANSLATION of the lyric line.',
    "  Format: \"Which lyric means: '[translation in learner language]'?\"",
    '- "excerpt" is the original lyric line from the song (in the song language).',
    '- "choices" are 4 original lyric lines from the song (in the song language).',
    "  One choice is the correct lyric line that matches the translation in the prompt.",
    "  The other 3 are real lyric lines from the same song that do NOT match the translation.",
    '- "explanation" is in the LEARNER language explaining why the correct line matches.',
    "- Do NOT put translations in the choices. Choices must be original lyric lines.",
]

_SKIP_TRANSLATION_RULES = [
    "SKIP translation_mcq entirely (no translatable lines found; all lyrics are in the learner language).",
    'Return "translation_mcq": [].',
]


def build_mcq_system_prompt(skip_translation: bool) -> str:
    translation_rules = _SKIP_TRANSLATION_RULES if skip_translation else _TRANSLATION_RULES
    return "\n".join([
        "You generate Jeopardy-style MCQ exercises from song lyrics and Genius annotations.",
        "Return JSON only. No markdown fences.",
        "",
        "Copyright constraints:",
        '- Each question references at most one lyric line in "excerpt".',
        "- No full verses or choruses.",
        "- Keep excerpt under 180 chars and single-line.",
        "",
        *translation_rules,
        "",
        "trivia_mcq rules:",
        "- Extract ONE specific, testable FACT from the provided Genius annotation.",
        "- Ask about concrete details: names, dates, events, production facts, inspirations.",
        '- Do NOT ask vague interpretation questions like "What does this line mean?".',
        "- The correct answer must be a specific fact stated in the annotation.",
        "- Distractors must be plausible but factually wrong (similar names, dates, events).",
        '- "sourceClassification" must match the referent classification (verified/accepted/unreviewed).',
        "- If no referents are provided, return trivia_mcq as an empty array.",
        "",
        "CRITICAL: correctIndex MUST be randomized. Do NOT always put the correct answer at index 0.",
        "Vary correctIndex across 0, 1, 2, 3 uniformly.",
        "",
        "Difficulty:",
        "- easy: basic facts (year, well-known collaborator, obvious meaning)",
        "- medium: specific details (chart position, production technique, lesser-known fact)",
        "- hard: obscure details (working titles, early demos, studio anecdotes)",
        "",
        "Use exactly 4 choices per MCQ. Each choice must be unique.",
        "",
        "Output schema:",
        "{",
        '  "translation_mcq": [',
        '    {"prompt":"...","excerpt":"...","choices":["...","...","...","..."],"correctIndex":N,"explanation":"...","difficulty":"easy|medium|hard"}',
        "  ],",
        '  "trivia_mcq": [',
        '    {"prompt":"...","excerpt":"...","choices":["...","...","...","..."],"correctIndex":N,"explanation":"...","difficulty":"easy|medium|hard","sourceClassification":"verified|accepted|unreviewed"}',
        "  ]",
        "}",
    ])


def normalize_classification(value: Any) -> str:
    if value in ("verified", "accepted"):
        return value
    return "unreviewed"


@dataclass
class McqPrompt:
    system: str
    user: str
    translation_count: int
    trivia_count: int
    skip_translation: bool

    @property
    def hash_input(self) -> str:
        return f"{self.system}\n---\n{self.user}"

    @property
    def needs_provider(self) -> bool:
        return self.translation_count > 0 or self.trivia_count > 0


def build_mcq_prompt(
    *,
    track_id: str,
    title: str,
    artist: str,
    learner_language: str,
    tagged_lines: List[TaggedLyricLine],
    referents: List[GeniusReferent],
    translation_count: int,
    trivia_count: int,
    skip_translation: bool,
) -> McqPrompt:
    """Counts passed in are already bounded; this only renders the prompt."""
    prompt_referents = []
    for index, ref in enumerate(referents[:MAX_REFERENTS_FOR_PROMPT]):
        row: Dict[str, Any] = {
            "id": index + 1,
            "fragment": normalize_whitespace(ref.fragment),
            "annotation": normalize_whitespace(ref.annotation),
            "classification": normalize_classification(ref.classification),
        }
        if ref.votes_total is not None:
            row["votesTotal"] = ref.votes_total
        if ref.url:
            row["url"] = ref.url
        prompt_referents.append(row)

    lyric_lines = []
    for line in tagged_lines[:MAX_LYRIC_LINES_FOR_PROMPT]:
        entry: Dict[str, Any] = {"text": line.text, "lang": line.lang}
        if line.lang2:
            entry["lang2"] = line.lang2
        lyric_lines.append(entry)

    payload = {
        "learnerLanguage": learner_language,
        "track": {"id": track_id, "title": title, "artist": artist},
        "counts": {"translation_mcq": translation_count, "trivia_mcq": trivia_count},
        "lyricLines": lyric_lines,
        "geniusReferents": prompt_referents,
    }
    return McqPrompt(
        system=build_mcq_system_prompt(skip_translation),
        user=json.dumps(payload, ensure_ascii=False, separators=(",", ":")),
        translation_count=translation_count,
        trivia_count=trivia_count,
        skip_translation=skip_translation,
    )


def prompt_hash(system: str, user: str) -> str:
    digest = hashlib.sha256(f"{system}\n---\n{user}".encode("utf-8")).hexdigest()
    return "0x" + digest


def strip_json_fence(raw: str) -> str:
    value = raw.strip()
    if value.startswith("```json"):
        value = value[7:].strip()
    elif value.startswith("```"):
        value = value[3:].strip()
    if value.endswith("```"):
        value = value[:-3].strip()
    return value

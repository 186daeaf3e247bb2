# FILE: study_pipeline/generation/engine.py
"""
Generation Engine.

Steps:
1. Reject empty trackId / language / lyrics, or lyrics without usable lines.
2. Tag each usable line with its language (provider call at temperature 0,
   unless tags are supplied).
3. Build say-it-back questions from the tagged lines (no provider call).
4. Build the MCQ prompt and hash it. Skip the provider when no MCQs are needed.
5. Parse + validate the MCQ output; assemble and validate the final pack.

promptHash fingerprints the MCQ prompt for audit. It is not a cache key.
"""
from __future__ import annotations

import json
import logging
import time
from typing import Callable, List, Optional

from study_pipeline.config import DEFAULT_STUDY_MODEL
from study_pipeline.generation.lyrics import bounded_count, collect_lyric_lines, estimate_difficulty
from study_pipeline.generation.prompts import (
    EMPTY_MCQ_OUTPUT,
    LINE_LANGUAGE_RESPONSE_FORMAT,
    LINE_TAGGING_SYSTEM_PROMPT,
    STUDY_SET_RESPONSE_FORMAT,
    build_line_tagging_user,
    build_mcq_prompt,
    line_tagging_max_tokens,
    prompt_hash,
    strip_json_fence,
)
from study_pipeline.generation.schemas import (
    Attribution,
    Compliance,
    GenerationInput,
    GenerationResult,
    GeneratorInfo,
    QuestionType,
    SourceRefs,
    StudyQuestion,
    StudySetPack,
    TaggedLyricLine,
)
from study_pipeline.generation.validation import (
    normalize_model_questions,
    parse_model_payload,
    validate_question_set,
)
from study_pipeline.pipeline.errors import GenerationValidationError, ProviderError

logger = logging.getLogger(__name__)

# ============================================================================
# COUNTS
# ============================================================================

DEFAULT_TRANSLATION_COUNT = 6
DEFAULT_TRIVIA_COUNT = 4
DEFAULT_SAY_IT_BACK_COUNT = 10

TRANSLATION_BOUNDS = (1, 12)
TRIVIA_BOUNDS = (0, 12)
SAY_IT_BACK_BOUNDS = (1, 25)

UNDETERMINED_LANG = "und"

SAY_IT_BACK_PROMPT = "Listen and repeat:"
SAY_IT_BACK_EXPLANATION = "Repeat clearly and match the rhythm and stress of the line."


def _lang_matches(code: str, learner: str) -> bool:
    return code[:2] == learner[:2]


def _clean_lang(value: str) -> str:
    return (value or "").lower()[:3].strip()


class GenerationEngine:
    def __init__(
        self,
        provider,
        default_model: str = DEFAULT_STUDY_MODEL,
        clock: Optional[Callable[[], float]] = None,
    ):
        self._provider = provider
        self.default_model = default_model
        self._clock = clock or time.time

    # -------------------------------------------------------------------------
    # Line tagging
    # -------------------------------------------------------------------------

    async def tag_lines(self, lines: List[str], model: str) -> List[TaggedLyricLine]:
        """Tag each line with its dominant (and optional secondary) language."""
        if not lines:
            return []

        raw = await self._provider.complete(
            LINE_TAGGING_SYSTEM_PROMPT,
            build_line_tagging_user(lines),
            model=model,
            response_format=LINE_LANGUAGE_RESPONSE_FORMAT,
            max_tokens=line_tagging_max_tokens(len(lines)),
            temperature=0,
        )
        try:
            parsed = json.loads(strip_json_fence(raw))
        except ValueError:
            raise ProviderError("Line language tagging returned invalid JSON")

        tags = {}
        entries = parsed.get("lines") if isinstance(parsed, dict) else None
        for entry in entries or []:
            if not isinstance(entry, dict):
                continue
            index, lang = entry.get("index"), entry.get("lang")
            if isinstance(index, int) and not isinstance(index, bool) and isinstance(lang, str):
                tags[index] = (_clean_lang(lang), _clean_lang(entry.get("lang2") or ""))

        tagged = []
        for i, text in enumerate(lines):
            lang, lang2 = tags.get(i, ("", ""))
            # "und" rather than a guessed default language
            tagged.append(TaggedLyricLine(text=text, lang=lang or UNDETERMINED_LANG, lang2=lang2 or None))
        return tagged

    # -------------------------------------------------------------------------
    # Question builders
    # -------------------------------------------------------------------------

    @staticmethod
    def build_say_it_back(tagged: List[TaggedLyricLine], count: int) -> List[StudyQuestion]:
        return [
            StudyQuestion(
                id=f"sib-{i + 1:03d}",
                type=QuestionType.SAY_IT_BACK,
                prompt=SAY_IT_BACK_PROMPT,
                excerpt=line.text,
                choices=[],
                correct_index=0,
                explanation=SAY_IT_BACK_EXPLANATION,
                difficulty=estimate_difficulty(line.text, mixed=bool(line.lang2)),
                excerpt_lang=line.lang,
            )
            for i, line in enumerate(tagged[:count])
        ]

    # -------------------------------------------------------------------------
    # Entry point
    # -------------------------------------------------------------------------

    async def generate(self, inp: GenerationInput) -> GenerationResult:
        track_id = (inp.track_id or "").strip()
        language = (inp.language or "").strip()
        if not track_id:
            raise GenerationValidationError("Invalid trackId", ["trackId is required"])
        if not language:
            raise GenerationValidationError("Invalid language", ["language is required"])
        if not (inp.lyrics or "").strip():
            raise GenerationValidationError("Invalid lyrics", ["lyrics is required"])

        lines = collect_lyric_lines(inp.lyrics)
        if not lines:
            raise GenerationValidationError("No usable lyric lines", ["lyrics did not contain enough usable lines"])

        model = (inp.model or self.default_model).strip()

        tagged = inp.precomputed_line_tags
        if tagged is None:
            tagged = await self.tag_lines(lines, model)

        say_it_back = self.build_say_it_back(
            tagged, bounded_count(inp.say_it_back_count, DEFAULT_SAY_IT_BACK_COUNT, *SAY_IT_BACK_BOUNDS)
        )

        learner = language.lower()
        translatable = [line for line in tagged if not _lang_matches(line.lang, learner)]
        skip_translation = not translatable
        translation_count = 0 if skip_translation else min(
            bounded_count(inp.translation_count, DEFAULT_TRANSLATION_COUNT, *TRANSLATION_BOUNDS),
            len(translatable),
        )
        referents = list(inp.genius_referents or [])
        trivia_count = min(bounded_count(inp.trivia_count, DEFAULT_TRIVIA_COUNT, *TRIVIA_BOUNDS), len(referents))

        prompt = build_mcq_prompt(
            track_id=track_id,
            title=inp.title,
            artist=inp.artist,
            learner_language=language,
            tagged_lines=tagged,
            referents=referents,
            translation_count=translation_count,
            trivia_count=trivia_count,
            skip_translation=skip_translation,
        )
        p_hash = prompt_hash(prompt.system, prompt.user)

        if prompt.needs_provider:
            raw_output = await self._provider.complete(
                prompt.system, prompt.user, model=model, response_format=STUDY_SET_RESPONSE_FORMAT
            )
        else:
            raw_output = EMPTY_MCQ_OUTPUT

        payload = parse_model_payload(raw_output)
        normalized = normalize_model_questions(payload, translation_count, trivia_count)
        if normalized.hard_issues:
            raise GenerationValidationError("Model output failed validation", normalized.hard_issues, raw_output)

        questions = [*say_it_back, *normalized.translation, *normalized.trivia]
        final_issues = validate_question_set(questions)
        if final_issues:
            raise GenerationValidationError("Final question set failed validation", final_issues, raw_output)

        warnings = list(normalized.dropped)
        if skip_translation:
            warnings.append("translation_mcq skipped: no translatable lines (all lyrics match learner language).")
        if not referents and not normalized.trivia:
            warnings.append("No genius referents provided; trivia_mcq is empty.")
        if not skip_translation and len(normalized.translation) != translation_count:
            warnings.append(
                f"Requested {translation_count} translation_mcq; model returned {len(normalized.translation)}."
            )
        if len(normalized.trivia) != trivia_count:
            warnings.append(f"Requested {trivia_count} trivia_mcq; model returned {len(normalized.trivia)}.")

        genius_song_id = (inp.genius_song_id or "").strip() or None
        pack = StudySetPack(
            track_id=track_id,
            language=language,
            source_refs=SourceRefs(
                lyrics_ref=(inp.lyrics_ref or "").strip() or None,
                genius_ref=f"genius:{genius_song_id}" if genius_song_id else None,
            ),
            generator=GeneratorInfo(model=model, prompt_hash=p_hash, generated_at=int(self._clock())),
            line_tags=tagged,
            questions=questions,
            compliance=Compliance(
                attribution=Attribution(
                    track=inp.title,
                    artist=inp.artist,
                    genius_song_id=_positive_int(genius_song_id),
                ),
            ),
        )

        logger.info(
            f"[generation] {track_id}/{language}: {len(questions)} question(s) "
            f"(sib={len(say_it_back)} tr={len(normalized.translation)} tv={len(normalized.trivia)}) model={model}"
        )
        return GenerationResult(pack=pack, model=model, prompt_hash=p_hash, raw_output=raw_output, warnings=warnings)


def _positive_int(value: Optional[str]) -> Optional[int]:
    if not value:
        return None
    try:
        parsed = int(value)
    except ValueError:
        return None
    return parsed if parsed > 0 else None

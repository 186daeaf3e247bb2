# FILE: study_pipeline/generation/lyrics.py
"""Lyric line cleanup, selection and difficulty estimation."""
from __future__ import annotations

import re
from typing import List, Optional

from study_pipeline.generation.schemas import Difficulty

MAX_QUESTION_EXCERPT_LENGTH = 180
MIN_WORDS_PER_LINE = 3

_WS_RE = re.compile(r"\s+")
_LIST_MARKER_RE = re.compile(r"^[-*\d.)\s]+")
_ADLIB_WORDS = r"ooh|oh|yeah|ah|uh|woo+|la+|na+"
_TRAILING_ADLIB_RE = re.compile(
    r"\s*\((?:" + _ADLIB_WORDS + r")(?:[,\s]+(?:" + _ADLIB_WORDS + r"|[a-z]+\s+[a-z]+))*\)\s*$",
    re.IGNORECASE,
)
_REPEAT_MARKER_RE = re.compile(r"\s*\[(?:x\d+|repeat.*?)\]\s*$", re.IGNORECASE)
_SECTION_HEADER_RE = re.compile(r"^\[[^\]]+\]$")


def normalize_whitespace(text: str) -> str:
    return _WS_RE.sub(" ", text).strip()


def sanitize_line(line: str) -> str:
    """Strip list markers, trailing ad-lib parentheses and [x2]/[repeat] markers."""
    value = line.strip()
    value = _LIST_MARKER_RE.sub("", value).strip()
    value = _TRAILING_ADLIB_RE.sub("", value).strip()
    value = _REPEAT_MARKER_RE.sub("", value).strip()
    return normalize_whitespace(value)


def is_section_header(line: str) -> bool:
    return bool(_SECTION_HEADER_RE.match(line.strip()))


def is_useful_line(line: str) -> bool:
    if not line:
        return False
    if len(line) > MAX_QUESTION_EXCERPT_LENGTH:
        return False
    if is_section_header(line):
        return False
    return len(line.split()) >= MIN_WORDS_PER_LINE


def collect_lyric_lines(lyrics: str) -> List[str]:
    """Usable lines in order of first appearance, de-duplicated case-insensitively."""
    seen = set()
    lines: List[str] = []
    for raw in re.split(r"\r?\n", lyrics):
        line = sanitize_line(raw)
        if not is_useful_line(line):
            continue
        key = line.lower()
        if key in seen:
            continue
        seen.add(key)
        lines.append(line)
    return lines


def estimate_difficulty(text: str, mixed: bool = False) -> Difficulty:
    words = len(text.split())
    if mixed:
        # Mixed-language lines are inherently harder
        return Difficulty.MEDIUM if words <= 6 else Difficulty.HARD
    if words <= 5:
        return Difficulty.EASY
    if words <= 10:
        return Difficulty.MEDIUM
    return Difficulty.HARD


def bounded_count(raw: Optional[int], default: int, low: int, high: int) -> int:
    if raw is None:
        return default
    try:
        value = int(raw)
    except (TypeError, ValueError, OverflowError):
        return default
    return max(low, min(high, value))

# FILE: study_pipeline/generation/genius.py
"""
Genius enrichment (best-effort).

Resolves a Genius song id from canonical title/artist and pulls annotated
referents for trivia questions. The authenticated API is tried first; on a
non-2xx answer the public web API is used instead. Callers treat every
failure here as a warning, never as a pipeline failure.
"""
from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from study_pipeline.config import (
    DEFAULT_GENIUS_API_URL,
    DEFAULT_GENIUS_PUBLIC_API_URL,
    MAX_REFERENTS,
)
from study_pipeline.generation.schemas import GeniusReferent

logger = logging.getLogger(__name__)

SEARCH_HIT_LIMIT = 8
REFERENTS_PER_PAGE = 50

_NON_ALNUM_RE = re.compile(r"[\W_]+", re.UNICODE)


class GeniusError(Exception):
    pass


def normalize_loose(value: str) -> str:
    return _NON_ALNUM_RE.sub(" ", (value or "").lower()).strip()


def _loose_match(a: str, b: str) -> bool:
    return a in b or b in a


def extract_search_hits(payload: Any) -> List[dict]:
    """Hits from /search (response.hits) or the public /search/song (response.sections[type=song])."""
    response = payload.get("response") if isinstance(payload, dict) else None
    if not isinstance(response, dict):
        return []
    hits = response.get("hits")
    if isinstance(hits, list) and hits:
        return hits
    for section in response.get("sections") or []:
        if not isinstance(section, dict) or section.get("type") != "song":
            continue
        section_hits = section.get("hits")
        if isinstance(section_hits, list) and section_hits:
            return section_hits
    return []


def _as_str(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    return stripped or None


def _plain_body(annotation: Any) -> Optional[str]:
    if not isinstance(annotation, dict):
        return None
    body = annotation.get("body")
    return _as_str(body.get("plain")) if isinstance(body, dict) else None


def _votes(value: Any) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return int(value) if math.isfinite(value) else None


def parse_referents(payload: Any, limit: int = MAX_REFERENTS) -> List[GeniusReferent]:
    response = payload.get("response") if isinstance(payload, dict) else None
    rows = response.get("referents") if isinstance(response, dict) else None
    referents: List[GeniusReferent] = []
    for row in rows or []:
        if not isinstance(row, dict):
            continue
        fragment = _as_str(row.get("fragment"))
        annotations = row.get("annotations")
        if not fragment or not isinstance(annotations, list):
            continue
        annotation_row = next((ann for ann in annotations if _plain_body(ann)), None)
        if annotation_row is None:
            continue

        classification = _as_str(row.get("classification"))
        votes = annotation_row.get("votes_total")
        referents.append(GeniusReferent(
            fragment=fragment,
            annotation=_plain_body(annotation_row),
            classification=classification.lower() if classification else None,
            votes_total=_votes(votes),
            url=_as_str(annotation_row.get("url")),
        ))
        if len(referents) >= limit:
            break
    return referents


def parse_request_referents(rows: Any, limit: int = MAX_REFERENTS) -> List[GeniusReferent]:
    """Caller-supplied referents (debug route): {fragment, annotation, classification?, votesTotal?, url?}."""
    if not isinstance(rows, list):
        return []
    referents: List[GeniusReferent] = []
    for row in rows[:limit]:
        if not isinstance(row, dict):
            continue
        fragment = _as_str(row.get("fragment"))
        annotation = _as_str(row.get("annotation"))
        if not fragment or not annotation:
            continue
        votes = row.get("votesTotal")
        referents.append(GeniusReferent(
            fragment=fragment,
            annotation=annotation,
            classification=_as_str(row.get("classification")),
            votes_total=_votes(votes),
            url=_as_str(row.get("url")),
        ))
    return referents


@dataclass
class GeniusLookup:
    song_id: Optional[int] = None
    referents: List[GeniusReferent] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


class GeniusClient:
    def __init__(
        self,
        client: httpx.AsyncClient,
        api_key: str = "",
        api_url: str = DEFAULT_GENIUS_API_URL,
        public_api_url: str = DEFAULT_GENIUS_PUBLIC_API_URL,
    ):
        self._client = client
        self.api_key = (api_key or "").strip()
        self.api_url = api_url.rstrip("/")
        self.public_api_url = public_api_url.rstrip("/")

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    async def _get_json(self, private_path: str, public_path: str, params: Dict[str, Any], label: str) -> Any:
        private = await self._client.get(
            f"{self.api_url}{private_path}",
            params=params,
            headers={"Authorization": f"Bearer {self.api_key}"},
        )
        if private.is_success:
            return _json_or_empty(private)

        public = await self._client.get(f"{self.public_api_url}{public_path}", params=params)
        if not public.is_success:
            raise GeniusError(f"genius_{label}_failed:{private.status_code}:{public.status_code}")
        return _json_or_empty(public)

    async def resolve_song_id(self, title: str, artist: str) -> Optional[int]:
        payload = await self._get_json("/search", "/search/song", {"q": f"{artist} {title}"}, "search")
        wanted_title = normalize_loose(title)
        wanted_artist = normalize_loose(artist)
        fallback: Optional[int] = None

        for hit in extract_search_hits(payload)[:SEARCH_HIT_LIMIT]:
            result = hit.get("result") if isinstance(hit, dict) else None
            if not isinstance(result, dict):
                continue
            try:
                song_id = int(result.get("id"))
            except (TypeError, ValueError):
                continue
            if song_id <= 0:
                continue
            if fallback is None:
                fallback = song_id

            hit_title = normalize_loose(str(result.get("title") or ""))
            primary_artist = result.get("primary_artist")
            artist_name = primary_artist.get("name") if isinstance(primary_artist, dict) else None
            hit_artist = normalize_loose(str(artist_name or ""))
            if _loose_match(hit_title, wanted_title) and _loose_match(hit_artist, wanted_artist):
                return song_id

        return fallback

    async def fetch_referents(self, song_id: int) -> List[GeniusReferent]:
        params = {"song_id": song_id, "per_page": REFERENTS_PER_PAGE, "text_format": "plain"}
        payload = await self._get_json("/referents", "/referents", params, "referents")
        return parse_referents(payload)

    async def lookup(self, title: str, artist: str) -> GeniusLookup:
        """Song id + referents, with failures folded into warnings."""
        if not self.enabled:
            return GeniusLookup(warnings=[
                "GENIUS_API_KEY not configured; trivia generation from Genius referents is disabled."
            ])
        try:
            song_id = await self.resolve_song_id(title, artist)
            if not song_id:
                return GeniusLookup(warnings=[
                    "No Genius song match found for canonical title/artist; trivia may be empty."
                ])
            referents = await self.fetch_referents(song_id)
        except (GeniusError, httpx.HTTPError, ValueError, TypeError, AttributeError) as e:
            logger.warning(f"[genius] lookup failed for {artist} - {title}: {e}")
            return GeniusLookup(warnings=[f"Genius resolution failed: {e}"])

        logger.info(f"[genius] song {song_id}: {len(referents)} referent(s)")
        return GeniusLookup(song_id=song_id, referents=referents)


def _json_or_empty(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return {}

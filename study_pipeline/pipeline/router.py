# FILE: study_pipeline/pipeline/router.py
"""
Study Sets Router - HTTP API Endpoints

- GET  /study-sets/{trackId}?language=&version=   cached lookup only
- POST /study-sets/generate                       cache -> credits -> lock -> generate -> stage -> publish
- POST /study-sets/debug-generate                 generation engine only (STUDY_SET_ENABLE_DEBUG_ROUTES)

Failures are answered as {success:false, code, error, ...context} with the
status carried by the PipelineError.
"""
from __future__ import annotations

import json
import logging
import time
from typing import Any, Callable, Dict, List, Optional

from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.responses import JSONResponse
from web3 import Web3

from study_pipeline.config import PipelineSettings, is_address
from study_pipeline.generation.genius import parse_request_referents
from study_pipeline.pipeline.dependencies import get_pipeline_factory, get_settings
from study_pipeline.pipeline.errors import InvalidRequest, PipelineError
from study_pipeline.pipeline.orchestrator import DebugGenerateInput, StudySetPipeline
from study_pipeline.pipeline.schemas import (
    DebugGenerateBody,
    DebugGenerateResponse,
    GenerateBody,
    GenerateRequest,
    PipelineResult,
    RegistryBlock,
    StudySetResponse,
    UnitKey,
    question_counts,
)

logger = logging.getLogger(__name__)

router = APIRouter()

FORBIDDEN_GENERATE_FIELDS = ("lyrics", "title", "artist", "geniusSongId", "geniusReferents")


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def _error(status_code: int, body: Dict[str, Any]) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=body)


def _pipeline_error(e: PipelineError) -> JSONResponse:
    return _error(e.http_status, e.to_response())


def _internal_error(route: str, subject: str, e: Exception) -> JSONResponse:
    logger.exception(f"[study-sets] {route} {subject} failed unexpectedly")
    return _error(500, {"success": False, "code": "internal_error", "error": str(e) or type(e).__name__})


def _misconfigured(problems: List[str]) -> Optional[JSONResponse]:
    if not problems:
        return None
    logger.error(f"[study-sets] Server misconfiguration: {problems}")
    return _error(500, {"success": False, "error": f"Server misconfiguration ({problems[0]})"})


def _optional_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value) if value == value and abs(value) != float("inf") else None
    if isinstance(value, str):
        try:
            return int(float(value))
        except (ValueError, OverflowError):
            return None
    return None


async def _read_json_object(request: Request) -> Optional[Dict[str, Any]]:
    try:
        payload = json.loads(await request.body() or b"null")
    except ValueError:
        return None
    return payload if isinstance(payload, dict) else None


def _optional_str(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    return value.strip() or None


def normalize_wallet_address(raw: Optional[str]) -> Optional[str]:
    value = (raw or "").strip()
    if not is_address(value):
        return None
    try:
        return Web3.to_checksum_address(value)
    except ValueError:
        return None


def _checksum(address: str) -> str:
    return Web3.to_checksum_address(address) if is_address(address) else address


def render_result(result: PipelineResult, contract: str, user: Optional[str] = None) -> Dict[str, Any]:
    uk = result.unit_key
    registry = RegistryBlock(
        contract=_checksum(contract),
        track_id=uk.track_id,
        language=uk.language,
        version=uk.version,
        study_set_ref=result.record.ref,
        study_set_hash=result.record.hash,
        submitter=result.record.submitter or None,
        user=user if not result.cached else None,
        created_at=result.record.created_at or None,
        tx_hash=result.tx_hash,
        block_number=result.block_number,
    )

    canonical_lyrics = None
    if result.canonical_input is not None:
        ci = result.canonical_input
        canonical_lyrics = {
            "lyricsRef": ci.ref,
            "lyricsHash": ci.hash,
            "version": ci.version,
            "submitter": ci.submitter,
            "timestamp": ci.timestamp,
            "fetchedFrom": result.canonical_fetched_from,
        }

    canonical_track = None
    if result.track is not None:
        canonical_track = {
            "title": result.track.title,
            "artist": result.track.artist,
            "album": result.track.album or None,
            "scrobbleAddress": None,
        }

    genius = None
    if result.genius_referent_count is not None:
        genius = {"songId": result.genius_song_id, "referentCount": result.genius_referent_count}

    response = StudySetResponse(
        cached=result.cached,
        race_resolved=True if result.race_resolved else None,
        model=result.model,
        prompt_hash=result.prompt_hash,
        warnings=result.warnings,
        registry=registry,
        storage=result.storage,
        canonical_lyrics=canonical_lyrics,
        canonical_track=canonical_track,
        genius=genius,
        counts=result.counts,
        pack=result.pack,
    )
    return response.model_dump(by_alias=True, mode="json")


# =============================================================================
# ROUTES
# =============================================================================

@router.get("/{track_id}")
async def get_study_set(
    track_id: str,
    language: Optional[str] = Query(None),
    lang: Optional[str] = Query(None),
    version: Optional[str] = Query(None),
    v: Optional[str] = Query(None),
    settings: PipelineSettings = Depends(get_settings),
    pipeline_factory: Callable[[], StudySetPipeline] = Depends(get_pipeline_factory),
):
    """Cached lookup. Never generates."""
    try:
        unit_key = UnitKey.parse(track_id, _optional_str(language) or _optional_str(lang), version or v)
    except InvalidRequest as e:
        message = e.message
        if message == "language is required":
            message = "language (or lang) query param is required"
        return _error(400, {"success": False, "error": message})

    misconfig = _misconfigured(settings.missing_for_lookup())
    if misconfig is not None:
        return misconfig

    pipeline: StudySetPipeline = pipeline_factory()
    try:
        result = await pipeline.lookup(unit_key)
    except PipelineError as e:
        return _pipeline_error(e)
    except Exception as e:
        return _internal_error("lookup", unit_key.lock_key, e)

    body = render_result(result, settings.study_set_registry)
    body.pop("model", None)
    body.pop("promptHash", None)
    body.pop("warnings", None)
    return body


@router.post("/generate")
async def generate_study_set(
    request: Request,
    x_user_address: Optional[str] = Header(None, alias="X-User-Address"),
    settings: PipelineSettings = Depends(get_settings),
    pipeline_factory: Callable[[], StudySetPipeline] = Depends(get_pipeline_factory),
):
    misconfig = _misconfigured(settings.missing_for_generate())
    if misconfig is not None:
        return misconfig

    user = normalize_wallet_address(x_user_address)
    if user is None:
        return _error(401, {"success": False, "error": "Missing or invalid X-User-Address header"})

    payload = await _read_json_object(request)
    if payload is None:
        return _error(400, {"success": False, "error": "Invalid JSON body"})
    body = GenerateBody.model_validate(payload)

    try:
        unit_key = UnitKey.parse(body.track_id, body.language, body.version)
    except InvalidRequest as e:
        return _error(400, {"success": False, "error": e.message})

    forbidden = [key for key in FORBIDDEN_GENERATE_FIELDS if payload.get(key) is not None]
    if forbidden:
        return _error(400, {
            "success": False,
            "error": f"Unsupported fields on /generate: {', '.join(forbidden)}",
        })

    request = GenerateRequest(
        unit_key=unit_key,
        user_address=user,
        model=_optional_str(body.model) or None,
        translation_count=_optional_int(body.translation_count),
        trivia_count=_optional_int(body.trivia_count),
        say_it_back_count=_optional_int(body.say_it_back_count),
    )

    logger.info(f"[study-sets] generate {unit_key.lock_key} for {user}")
    pipeline: StudySetPipeline = pipeline_factory()
    try:
        result = await pipeline.generate(request)
    except PipelineError as e:
        log = logger.warning if e.http_status >= 500 else logger.info
        log(f"[study-sets] generate {unit_key.lock_key} failed: {e.code} {e.message}")
        return _pipeline_error(e)
    except Exception as e:
        return _internal_error("generate", unit_key.lock_key, e)

    rendered = render_result(result, pipeline.contract_address or settings.study_set_registry, user=user)
    if rendered.get("canonicalTrack") is not None:
        rendered["canonicalTrack"]["scrobbleAddress"] = _checksum(settings.scrobble_registry)
    return rendered


@router.post("/debug-generate")
async def debug_generate_study_set(
    request: Request,
    settings: PipelineSettings = Depends(get_settings),
    pipeline_factory: Callable[[], StudySetPipeline] = Depends(get_pipeline_factory),
):
    """Run the generation engine on caller-supplied lyrics. Disabled unless STUDY_SET_ENABLE_DEBUG_ROUTES=true."""
    if not settings.enable_debug_routes:
        return _error(404, {"success": False, "error": "Not found"})
    if not settings.openrouter_api_key:
        return _error(500, {"success": False, "error": "Server misconfiguration (OPENROUTER_API_KEY missing)"})

    payload = await _read_json_object(request)
    if payload is None:
        return _error(400, {"success": False, "error": "Invalid JSON body"})
    body = DebugGenerateBody.model_validate(payload)

    language = _optional_str(body.language)
    lyrics = _optional_str(body.lyrics)
    if not language:
        return _error(400, {"success": False, "error": "language is required"})
    if not lyrics:
        return _error(400, {"success": False, "error": "lyrics is required"})

    genius_song_id = body.genius_song_id
    inp = DebugGenerateInput(
        track_id=_optional_str(body.track_id) or f"debug:{int(time.time() * 1000)}",
        title=_optional_str(body.title) or "Unknown Title",
        artist=_optional_str(body.artist) or "Unknown Artist",
        language=language,
        lyrics=lyrics,
        lyrics_ref=_optional_str(body.lyrics_ref),
        genius_song_id=str(genius_song_id).strip() if genius_song_id not in (None, "") else None,
        genius_referents=parse_request_referents(body.genius_referents),
        model=_optional_str(body.model),
        translation_count=_optional_int(body.translation_count),
        trivia_count=_optional_int(body.trivia_count),
        say_it_back_count=_optional_int(body.say_it_back_count),
    )

    pipeline: StudySetPipeline = pipeline_factory()
    try:
        result = await pipeline.debug_generate(inp)
    except PipelineError as e:
        return _pipeline_error(e)
    except Exception as e:
        return _internal_error("debug-generate", inp.track_id, e)

    pack = result.pack.to_wire()
    return DebugGenerateResponse(
        model=result.model,
        prompt_hash=result.prompt_hash,
        warnings=result.warnings,
        counts=question_counts(pack["questions"]),
        pack=pack,
    ).model_dump(by_alias=True, mode="json")

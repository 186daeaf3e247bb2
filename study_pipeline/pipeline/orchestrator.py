# FILE: study_pipeline/pipeline/orchestrator.py
"""
Study set pipeline orchestration.

    CacheCheck -> CreditCheck -> LockAcquire -> InputFetch -> Generate -> Stage -> Publish -> Done
                                     |
                                     +-> Conflict (generation_in_flight, 409, no lock held)

Every step after LockAcquire runs inside try/finally so the lock is released
on success and on every failure. Cache hits never touch the lock.

All collaborators are injected; the pipeline holds no per-request state
between calls.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError

from study_pipeline.config import GENERATION_LOCK_TTL_SECONDS, MAX_LYRICS_BYTES
from study_pipeline.content.fetcher import HashVerifiedFetcher
from study_pipeline.generation.engine import GenerationEngine
from study_pipeline.generation.genius import GeniusClient, GeniusLookup
from study_pipeline.generation.schemas import GenerationInput, GenerationResult, GeniusReferent
from study_pipeline.locks.manager import GenerationLockManager
from study_pipeline.pipeline.errors import GenerationInFlight, LyricsTooLarge, StudySetNotFound
from study_pipeline.pipeline.schemas import (
    GenerateRequest,
    PipelineResult,
    ResolvedPack,
    UnitKey,
    question_counts,
)
from study_pipeline.registry.publisher import Publisher
from study_pipeline.registry.reader import RegistryReader
from study_pipeline.staging.service import StagingService

logger = logging.getLogger(__name__)

RACE_RESOLVED_WARNING = "Concurrent generate won by another transaction; returned canonical cached pack."


@dataclass
class DebugGenerateInput:
    """Caller-supplied generation input for the debug route (no registry, no lock)."""

    track_id: str
    title: str
    artist: str
    language: str
    lyrics: str
    lyrics_ref: Optional[str] = None
    genius_song_id: Optional[str] = None
    genius_referents: Optional[List[GeniusReferent]] = None
    model: Optional[str] = None
    translation_count: Optional[int] = None
    trivia_count: Optional[int] = None
    say_it_back_count: Optional[int] = None


def check_lyrics_size(lyrics_bytes: int, limit: int = MAX_LYRICS_BYTES) -> None:
    if lyrics_bytes > limit:
        raise LyricsTooLarge(size=lyrics_bytes, limit=limit)


class StudySetPipeline:
    def __init__(
        self,
        reader: RegistryReader,
        fetcher: HashVerifiedFetcher,
        locks: GenerationLockManager,
        engine: GenerationEngine,
        staging: StagingService,
        publisher: Publisher,
        genius: Optional[GeniusClient] = None,
        genius_timeout_s: Optional[float] = None,
        lock_ttl_seconds: int = GENERATION_LOCK_TTL_SECONDS,
        max_lyrics_bytes: int = MAX_LYRICS_BYTES,
        contract_address: str = "",
        scrobble_address: str = "",
        default_model: Optional[str] = None,
    ):
        self.reader = reader
        self.fetcher = fetcher
        self.locks = locks
        self.engine = engine
        self.staging = staging
        self.publisher = publisher
        self.genius = genius
        self.genius_timeout_s = genius_timeout_s
        self.lock_ttl_seconds = lock_ttl_seconds
        self.max_lyrics_bytes = max_lyrics_bytes
        self.contract_address = contract_address
        self.scrobble_address = scrobble_address
        self.default_model = default_model

    # =========================================================================
    # READ PATH
    # =========================================================================

    async def _resolve_cached(self, unit_key: UnitKey) -> Optional[ResolvedPack]:
        record = await self.reader.resolve_published(unit_key)
        if not record.exists:
            return None
        pack, fetched = await self.fetcher.fetch_json_pack(record.ref, record.hash)
        return ResolvedPack(record=record, pack=pack, fetched_from=fetched.fetched_from, size=fetched.size)

    @staticmethod
    def _cached_result(unit_key: UnitKey, resolved: ResolvedPack) -> PipelineResult:
        return PipelineResult(
            unit_key=unit_key,
            cached=True,
            record=resolved.record,
            pack=resolved.pack,
            storage={"fetchedFrom": resolved.fetched_from, "bytes": resolved.size},
        )

    async def lookup(self, unit_key: UnitKey) -> PipelineResult:
        resolved = await self._resolve_cached(unit_key)
        if resolved is None:
            raise StudySetNotFound("No study set found for trackId/language/version")
        return self._cached_result(unit_key, resolved)

    # =========================================================================
    # GENERATE PATH
    # =========================================================================

    async def generate(self, request: GenerateRequest) -> PipelineResult:
        uk = request.unit_key
        user = request.user_address

        # CacheCheck
        cached = await self._resolve_cached(uk)
        if cached is not None:
            logger.info(f"[pipeline] cache hit {uk.lock_key} -> {cached.record.ref}")
            return self._cached_result(uk, cached)

        # CreditCheck
        await self.publisher.check_credits(user)

        # LockAcquire
        lock_key = uk.lock_key
        if not await self.locks.acquire(lock_key, user, self.lock_ttl_seconds):
            logger.info(f"[pipeline] {lock_key} generation in flight; rejecting {user}")
            raise GenerationInFlight(lock_key, self.lock_ttl_seconds)

        lock_expires_at = time.monotonic() + self.lock_ttl_seconds
        try:
            return await self._generate_locked(request, lock_expires_at)
        finally:
            try:
                await self.locks.release(lock_key, user)
            except SQLAlchemyError as e:
                logger.warning(f"[pipeline] Failed to release generation lock {lock_key}: {e}")

    async def _generate_locked(self, request: GenerateRequest, lock_expires_at: float) -> PipelineResult:
        uk = request.unit_key
        user = request.user_address

        # InputFetch
        canonical = await self.reader.resolve_canonical_input(uk.track_id)
        track = await self.reader.resolve_track_metadata(uk.track_id)
        lyrics_blob = await self.fetcher.fetch_and_verify(
            canonical.ref, canonical.hash, "Canonical lyrics hash mismatch"
        )
        check_lyrics_size(lyrics_blob.size, self.max_lyrics_bytes)
        lyrics = lyrics_blob.data.decode("utf-8", errors="replace")

        genius = await self._lookup_genius(track.title, track.artist)

        # Generate
        generated = await self.engine.generate(GenerationInput(
            track_id=uk.track_id,
            language=uk.language,
            title=track.title,
            artist=track.artist,
            lyrics=lyrics,
            lyrics_ref=canonical.ref,
            genius_song_id=str(genius.song_id) if genius.song_id else None,
            genius_referents=genius.referents,
            model=request.model or self.default_model,
            translation_count=request.translation_count,
            trivia_count=request.trivia_count,
            say_it_back_count=request.say_it_back_count,
        ))
        warnings = [*generated.warnings, *genius.warnings]
        pack = generated.pack.to_wire()

        # Stage
        staged = await self.staging.stage_pack(
            pack, track_id=uk.track_id, language=uk.language, prompt_hash=generated.prompt_hash
        )
        logger.info(f"[pipeline] staged {uk.lock_key} as {staged.permanent_ref} ({staged.size} bytes)")

        # Publish
        published = await self.publisher.publish(
            uk,
            staged.permanent_ref,
            staged.hash,
            user,
            receipt_timeout_s=lock_expires_at - time.monotonic(),
        )

        if published.race_resolved and published.resolved is not None:
            result = self._cached_result(uk, published.resolved)
            result.race_resolved = True
            result.model = generated.model
            result.prompt_hash = generated.prompt_hash
            result.warnings = [*warnings, RACE_RESOLVED_WARNING]
            return result

        record = published.record
        record.created_at = published.confirmed_at
        return PipelineResult(
            unit_key=uk,
            cached=False,
            record=record,
            pack=pack,
            storage={
                "dataitemId": staged.dataitem_id,
                "ls3Ref": staged.staging_ref,
                "ls3GatewayUrl": staged.staging_url,
                "arweaveRef": staged.permanent_ref,
                "arweaveUrl": staged.permanent_url,
                "arweaveAvailable": staged.available,
                "payloadHash": staged.hash,
            },
            model=generated.model,
            prompt_hash=generated.prompt_hash,
            warnings=warnings,
            tx_hash=published.tx_hash,
            block_number=str(published.block_number) if published.block_number is not None else None,
            canonical_input=canonical,
            canonical_fetched_from=lyrics_blob.fetched_from,
            track=track,
            genius_song_id=genius.song_id,
            genius_referent_count=len(genius.referents),
            counts=question_counts(pack["questions"]),
        )

    async def _lookup_genius(self, title: str, artist: str) -> GeniusLookup:
        if self.genius is None:
            return GeniusLookup(warnings=[
                "GENIUS_API_KEY not configured; trivia generation from Genius referents is disabled."
            ])
        try:
            return await asyncio.wait_for(self.genius.lookup(title, artist), timeout=self.genius_timeout_s)
        except asyncio.TimeoutError:
            logger.warning(f"[pipeline] Genius lookup for {artist} - {title} timed out")
            return GeniusLookup(warnings=[
                f"Genius resolution failed: timed out after {self.genius_timeout_s:g}s"
            ])

    # =========================================================================
    # DEBUG PATH
    # =========================================================================

    async def debug_generate(self, inp: DebugGenerateInput) -> GenerationResult:
        """Generation engine only: caller-supplied lyrics, no registry, no lock."""
        check_lyrics_size(len(inp.lyrics.encode("utf-8")), self.max_lyrics_bytes)
        return await self.engine.generate(GenerationInput(
            track_id=inp.track_id,
            language=inp.language,
            title=inp.title,
            artist=inp.artist,
            lyrics=inp.lyrics,
            lyrics_ref=inp.lyrics_ref,
            genius_song_id=inp.genius_song_id,
            genius_referents=list(inp.genius_referents or []),
            model=inp.model or self.default_model,
            translation_count=inp.translation_count,
            trivia_count=inp.trivia_count,
            say_it_back_count=inp.say_it_back_count,
        ))

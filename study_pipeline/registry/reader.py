# FILE: study_pipeline/registry/reader.py
"""
Registry Reader.

Pure reads against the registries. `exists=False` from resolve_published()
is authoritative absence, not an error. Transport and contract failures
surface as RegistryReadFailed.
"""
from __future__ import annotations

import logging

from web3.exceptions import Web3Exception

from study_pipeline.pipeline.errors import (
    CanonicalInputNotFound,
    RegistryReadFailed,
    TrackMetadataMissing,
    TrackNotFound,
)
from study_pipeline.pipeline.schemas import (
    CanonicalInputRecord,
    PublishedRecord,
    TrackMetadata,
    UnitKey,
)

logger = logging.getLogger(__name__)

_READ_ERRORS = (Web3Exception, ValueError, OSError, RuntimeError)


class RegistryReader:
    def __init__(self, client):
        self._client = client

    async def resolve_published(self, unit_key: UnitKey) -> PublishedRecord:
        try:
            ref, content_hash, submitter, created_at, exists = await self._client.get_study_set(
                unit_key.track_id, unit_key.language, unit_key.version
            )
        except _READ_ERRORS as e:
            logger.warning(f"[registry] getStudySet failed for {unit_key.lock_key}: {e}")
            raise RegistryReadFailed(f"Failed to resolve existing study set: {e}")

        ref = (ref or "").strip()
        if not exists or not ref:
            return PublishedRecord(exists=False)
        return PublishedRecord(
            exists=True,
            ref=ref,
            hash=(content_hash or "").lower(),
            submitter=submitter,
            created_at=created_at,
        )

    async def resolve_canonical_input(self, track_id: str) -> CanonicalInputRecord:
        try:
            ref, lyrics_hash, version, submitter, timestamp = await self._client.get_lyrics(track_id)
        except _READ_ERRORS as e:
            logger.warning(f"[registry] getLyrics failed for {track_id}: {e}")
            raise RegistryReadFailed(f"Failed to resolve canonical lyrics: {e}")

        ref = (ref or "").strip()
        if not version or not ref:
            raise CanonicalInputNotFound("No canonical lyrics found for trackId")
        return CanonicalInputRecord(
            ref=ref,
            hash=(lyrics_hash or "").lower(),
            version=int(version),
            submitter=submitter,
            timestamp=int(timestamp or 0),
        )

    async def resolve_track_metadata(self, track_id: str) -> TrackMetadata:
        try:
            registered = await self._client.is_registered(track_id)
            if not registered:
                raise TrackNotFound("Track is not registered in ScrobbleV4")
            title, artist, album = await self._client.get_track(track_id)
        except _READ_ERRORS as e:
            logger.warning(f"[registry] scrobble lookup failed for {track_id}: {e}")
            raise RegistryReadFailed(f"Failed to resolve canonical track metadata: {e}")

        meta = TrackMetadata(
            title=(title or "").strip(),
            artist=(artist or "").strip(),
            album=(album or "").strip(),
        )
        if not meta.title or not meta.artist:
            raise TrackMetadataMissing("Canonical track metadata missing title/artist")
        return meta

    async def read_credits(self, user: str) -> tuple[int, int]:
        """(available, required) credits for a submitter."""
        try:
            available = await self._client.credits(user)
            required = await self._client.credits_per_fulfill()
        except _READ_ERRORS as e:
            logger.warning(f"[registry] credit read failed for {user}: {e}")
            raise RegistryReadFailed(f"Failed to read onchain credits: {e}")
        return int(available), int(required)

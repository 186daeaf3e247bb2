# FILE: tests/test_registry_reader.py
"""Tests for study_pipeline/registry/reader.py"""

import pytest

from study_pipeline.pipeline.errors import (
    CanonicalInputNotFound,
    RegistryReadFailed,
    TrackMetadataMissing,
    TrackNotFound,
)
from study_pipeline.registry.reader import RegistryReader

from conftest import TRACK_ID, USER


class TestResolvePublished:
    """Tests for resolve_published."""

    @pytest.mark.asyncio
    async def test_absent_slot_is_not_an_error(self, registry, unit_key):
        record = await RegistryReader(registry).resolve_published(unit_key)
        assert record.exists is False
        assert record.ref == ""

    @pytest.mark.asyncio
    async def test_present_slot(self, registry, unit_key):
        registry.study_sets[(TRACK_ID, "en", 1)] = ("ar://pack", "0x" + "EF" * 32, USER, 1700000000)
        record = await RegistryReader(registry).resolve_published(unit_key)
        assert record.exists is True
        assert record.ref == "ar://pack"
        assert record.hash == "0x" + "ef" * 32
        assert record.submitter == USER
        assert record.created_at == 1700000000

    @pytest.mark.asyncio
    async def test_read_failure(self, registry, unit_key):
        registry.read_error = OSError("rpc down")
        with pytest.raises(RegistryReadFailed) as exc:
            await RegistryReader(registry).resolve_published(unit_key)
        assert exc.value.retryable is True


class TestResolveCanonicalInput:
    @pytest.mark.asyncio
    async def test_returns_record(self, registry):
        record = await RegistryReader(registry).resolve_canonical_input(TRACK_ID)
        assert record.ref.startswith("ar://")
        assert record.version == 1

    @pytest.mark.asyncio
    async def test_missing_lyrics_need_approval(self, registry):
        with pytest.raises(CanonicalInputNotFound) as exc:
            await RegistryReader(registry).resolve_canonical_input("0x" + "99" * 32)
        assert exc.value.code == "needs_approval"
        assert exc.value.http_status == 404


class TestResolveTrackMetadata:
    @pytest.mark.asyncio
    async def test_returns_metadata(self, registry):
        meta = await RegistryReader(registry).resolve_track_metadata(TRACK_ID)
        assert (meta.title, meta.artist, meta.album) == ("Luna Llena", "Los Ejemplos", "Noches")

    @pytest.mark.asyncio
    async def test_unregistered_track(self, registry):
        with pytest.raises(TrackNotFound):
            await RegistryReader(registry).resolve_track_metadata("0x" + "99" * 32)

    @pytest.mark.asyncio
    async def test_blank_artist(self, registry):
        registry.seed_track(TRACK_ID, title="Luna", artist="  ")
        with pytest.raises(TrackMetadataMissing) as exc:
            await RegistryReader(registry).resolve_track_metadata(TRACK_ID)
        assert exc.value.http_status == 422


class TestReadCredits:
    @pytest.mark.asyncio
    async def test_available_and_required(self, registry):
        registry.per_fulfill = 2
        assert await RegistryReader(registry).read_credits(USER) == (5, 2)

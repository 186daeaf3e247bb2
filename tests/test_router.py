# FILE: tests/test_router.py
"""
Tests for study_pipeline/pipeline/router.py

Request validation, header checks and the JSON response shapes, with the
pipeline wired to in-process fakes through dependency overrides.
"""

import json

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from study_pipeline.config import PipelineSettings
from study_pipeline.content.fetcher import sha256_hex
from study_pipeline.pipeline.dependencies import get_pipeline_factory, get_settings
from study_pipeline.pipeline.router import router

from conftest import LYRICS_BYTES, LYRICS_ID, OTHER_USER, STUDY_SET_CONTRACT, TRACK_ID, USER

LOWER_USER = USER.lower()


def configured_settings(**overrides):
    fields = dict(
        openrouter_api_key="sk-test",
        canonical_lyrics_registry="0x4444444444444444444444444444444444444444",
        study_set_registry=STUDY_SET_CONTRACT,
        load_agent_api_key="load-key",
        operator_private_key="0x" + "aa" * 32,
        enable_debug_routes=True,
    )
    fields.update(overrides)
    return PipelineSettings(**fields)


@pytest.fixture
def make_client(pipeline):
    def _make(settings=None):
        app = FastAPI()
        app.include_router(router, prefix="/study-sets")
        app.dependency_overrides[get_settings] = lambda: settings or configured_settings()
        app.dependency_overrides[get_pipeline_factory] = lambda: (lambda: pipeline)
        return TestClient(app)
    return _make


@pytest.fixture
def client(make_client):
    return make_client()


def generate(client, body, user=USER):
    headers = {"X-User-Address": user} if user is not None else {}
    return client.post("/study-sets/generate", json=body, headers=headers)


class TestGenerateValidation:
    """Request rejection happens before any pipeline work."""

    def test_misconfiguration_is_500(self, make_client, registry):
        response = generate(make_client(configured_settings(openrouter_api_key="")), {"trackId": TRACK_ID, "language": "en"})
        assert response.status_code == 500
        assert response.json() == {"success": False, "error": "Server misconfiguration (OPENROUTER_API_KEY missing)"}
        assert registry.fulfill_calls == []

    @pytest.mark.parametrize("header", [None, "", "0x123", "not-an-address"])
    def test_bad_user_header(self, client, header):
        response = generate(client, {"trackId": TRACK_ID, "language": "en"}, user=header)
        assert response.status_code == 401
        assert response.json()["error"] == "Missing or invalid X-User-Address header"

    def test_invalid_json(self, client):
        response = client.post(
            "/study-sets/generate",
            content=b"{not json",
            headers={"X-User-Address": USER, "Content-Type": "application/json"},
        )
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid JSON body"

    def test_forbidden_fields(self, client, provider):
        response = generate(client, {"trackId": TRACK_ID, "language": "en", "lyrics": "la la", "title": "x"})
        assert response.status_code == 400
        assert response.json()["error"] == "Unsupported fields on /generate: lyrics, title"
        assert provider.calls == []

    @pytest.mark.parametrize("body,error", [
        ({"language": "en"}, "trackId is required"),
        ({"trackId": "0x1234", "language": "en"}, "trackId must be a 32-byte hex string (0x + 64 hex)"),
        ({"trackId": TRACK_ID}, "language is required"),
        ({"trackId": TRACK_ID, "language": "en", "version": 0}, "version must be an integer in [1, 255]"),
        ({"trackId": TRACK_ID, "language": "en", "version": 256}, "version must be an integer in [1, 255]"),
    ])
    def test_bad_unit_key(self, client, body, error):
        response = generate(client, body)
        assert response.status_code == 400
        assert response.json() == {"success": False, "error": error}


class TestGenerate:
    def test_fresh_then_cached(self, client, registry):
        first = generate(client, {"trackId": TRACK_ID, "language": "en"}, user=LOWER_USER)
        assert first.status_code == 200
        body = first.json()
        assert body["success"] is True
        assert body["cached"] is False
        assert "raceResolved" not in body
        assert body["promptHash"].startswith("0x")
        assert body["registry"]["contract"] == STUDY_SET_CONTRACT
        assert body["registry"]["user"] == USER
        assert body["registry"]["txHash"] == "0x" + "cd" * 32
        assert body["registry"]["blockNumber"] == "4242"
        assert body["canonicalTrack"]["title"] == "Luna Llena"
        assert body["canonicalTrack"]["scrobbleAddress"].startswith("0x")
        assert body["canonicalLyrics"]["version"] == 1
        assert body["genius"] == {"songId": 12345, "referentCount": 3}
        assert body["counts"]["total"] == len(body["pack"]["questions"])

        second = generate(client, {"trackId": TRACK_ID, "language": "en"}).json()
        assert second["cached"] is True
        assert second["model"] is None
        assert second["registry"]["studySetRef"] == body["registry"]["studySetRef"]
        assert second["registry"]["studySetHash"] == body["registry"]["studySetHash"]
        assert second["pack"] == body["pack"]
        assert len(registry.fulfill_calls) == 1

    def test_pipeline_errors_carry_code_and_context(self, client, registry):
        registry.credits_by_user[USER] = 0
        response = generate(client, {"trackId": TRACK_ID, "language": "en"})
        assert response.status_code == 402
        body = response.json()
        assert body["success"] is False
        assert body["code"] == "insufficient_credits"
        assert body["requiredCredits"] == "1"

    def test_in_flight_is_409(self, client, lock_manager, provider):
        lock_manager.acquire_sync(f"{TRACK_ID}:en:1", OTHER_USER)
        response = generate(client, {"trackId": TRACK_ID, "language": "en"})
        assert response.status_code == 409
        body = response.json()
        assert body["success"] is False
        assert body["code"] == "generation_in_flight"
        assert body["lockKey"] == f"{TRACK_ID}:en:1"
        assert body["retryAfterSeconds"] == 120
        assert provider.calls == []

    def test_lyrics_hash_mismatch_is_502(self, client, registry, storage, lock_manager):
        storage.items[LYRICS_ID] = b"tampered lyrics"
        response = generate(client, {"trackId": TRACK_ID, "language": "en"})
        assert response.status_code == 502
        body = response.json()
        assert body["success"] is False
        assert body["code"] == "hash_mismatch"
        assert body["expectedHash"] == sha256_hex(LYRICS_BYTES)
        assert body["actualHash"] == sha256_hex(b"tampered lyrics")
        assert registry.fulfill_calls == []
        assert lock_manager.held_sync(f"{TRACK_ID}:en:1") is None


class TestUnexpectedFailures:
    """Exceptions outside the pipeline taxonomy still answer with a JSON error body."""

    def test_lock_store_error(self, client, lock_manager, provider, monkeypatch):
        async def locked_database(*args, **kwargs):
            raise OperationalError("INSERT INTO study_set_generation_locks", {}, Exception("database is locked"))

        monkeypatch.setattr(lock_manager, "acquire", locked_database)
        response = generate(client, {"trackId": TRACK_ID, "language": "en"})

        assert response.status_code == 500
        body = response.json()
        assert body["success"] is False
        assert body["code"] == "internal_error"
        assert "database is locked" in body["error"]
        assert provider.calls == []

    def test_failure_after_lock_releases_it(self, client, pipeline, lock_manager, registry, monkeypatch):
        async def broken_stage(*args, **kwargs):
            raise RuntimeError("disk full")

        monkeypatch.setattr(pipeline.staging, "stage_pack", broken_stage)
        response = generate(client, {"trackId": TRACK_ID, "language": "en"})

        assert response.status_code == 500
        assert response.json() == {"success": False, "code": "internal_error", "error": "disk full"}
        assert registry.fulfill_calls == []
        assert lock_manager.held_sync(f"{TRACK_ID}:en:1") is None

    def test_lookup_error(self, client, registry, monkeypatch):
        async def broken(*args, **kwargs):
            raise TypeError("cannot unpack non-iterable NoneType object")

        monkeypatch.setattr(registry, "get_study_set", broken)
        response = client.get(f"/study-sets/{TRACK_ID}?lang=en")
        assert response.status_code == 500
        assert response.json()["code"] == "internal_error"


class TestLookup:
    def test_not_found(self, client):
        response = client.get(f"/study-sets/{TRACK_ID}?lang=en")
        assert response.status_code == 404
        assert response.json()["code"] == "not_found"

    def test_missing_language(self, client):
        response = client.get(f"/study-sets/{TRACK_ID}")
        assert response.status_code == 400
        assert response.json()["error"] == "language (or lang) query param is required"

    def test_found(self, client, registry, storage):
        data = json.dumps({"specVersion": "exercise-pack-v1", "questions": []}).encode()
        storage.items["pub"] = data
        registry.study_sets[(TRACK_ID, "es", 2)] = ("ar://pub", sha256_hex(data), OTHER_USER, 1700000100)

        response = client.get(f"/study-sets/{TRACK_ID}?language=es&v=2")

        assert response.status_code == 200
        body = response.json()
        assert body["cached"] is True
        assert body["registry"]["version"] == 2
        assert body["registry"]["submitter"] == OTHER_USER
        assert body["storage"]["bytes"] == len(data)
        assert body["pack"]["specVersion"] == "exercise-pack-v1"


class TestDebugGenerate:
    def test_disabled(self, make_client):
        client = make_client(configured_settings(enable_debug_routes=False))
        response = client.post("/study-sets/debug-generate", json={"language": "en", "lyrics": "x"})
        assert response.status_code == 404

    def test_requires_lyrics(self, client):
        response = client.post("/study-sets/debug-generate", json={"language": "en"})
        assert response.status_code == 400
        assert response.json()["error"] == "lyrics is required"

    def test_generates(self, client, registry):
        from conftest import LYRICS

        response = client.post("/study-sets/debug-generate", json={
            "language": "en",
            "lyrics": LYRICS,
            "title": "Luna Llena",
            "artist": "Los Ejemplos",
            "geniusSongId": 77,
            "geniusReferents": [{"fragment": "Tu voz me llama", "annotation": "Recorded in 2019.", "classification": "verified"}],
        })
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["counts"]["triviaMcq"] == 1
        assert body["pack"]["sourceRefs"]["geniusRef"] == "genius:77"
        assert body["pack"]["trackId"].startswith("debug:")
        assert registry.fulfill_calls == []

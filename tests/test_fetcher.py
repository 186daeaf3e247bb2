# FILE: tests/test_fetcher.py
"""
Tests for study_pipeline/content/fetcher.py

Hash verification over the exact fetched bytes, candidate fallback and
JSON pack decoding.
"""

import json

import httpx
import pytest

from study_pipeline.content.fetcher import HashVerifiedFetcher, sha256_hex
from study_pipeline.content.refs import ContentGateways
from study_pipeline.pipeline.errors import HashMismatch, ResolutionFailed

GATEWAYS = ContentGateways(arweave_url="https://ar.test", load_gateway_url="https://load.test")


def make_fetcher(routes):
    """routes: url -> httpx.Response | Exception."""
    seen = []

    def handler(request):
        url = str(request.url)
        seen.append(url)
        outcome = routes.get(url, httpx.Response(404))
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HashVerifiedFetcher(client, GATEWAYS), seen


class TestSha256Hex:
    def test_prefixed_lowercase(self):
        digest = sha256_hex(b"hello")
        assert digest == "0x2cf24dba5fb0a30e26e83b2ac5b9e29e1b161e5c1fa7425e73043362938b9824"

    def test_no_normalisation(self):
        assert sha256_hex(b"a\r\n") != sha256_hex(b"a\n")


class TestFetch:
    """Tests for candidate fallback."""

    @pytest.mark.asyncio
    async def test_first_candidate_wins(self):
        fetcher, seen = make_fetcher({"https://ar.test/abc": httpx.Response(200, content=b"data")})
        fetched = await fetcher.fetch("ar://abc")
        assert fetched.data == b"data"
        assert fetched.fetched_from == "https://ar.test/abc"
        assert seen == ["https://ar.test/abc"]

    @pytest.mark.asyncio
    async def test_falls_back_to_mirror_on_non_2xx(self):
        fetcher, seen = make_fetcher({
            "https://ar.test/abc": httpx.Response(502),
            "https://load.test/resolve/abc": httpx.Response(200, content=b"mirror"),
        })
        fetched = await fetcher.fetch("ar://abc")
        assert fetched.data == b"mirror"
        assert fetched.fetched_from == "https://load.test/resolve/abc"
        assert len(seen) == 2

    @pytest.mark.asyncio
    async def test_transport_error_moves_to_next_candidate(self):
        fetcher, _ = make_fetcher({
            "https://ar.test/abc": httpx.ConnectError("refused"),
            "https://load.test/resolve/abc": httpx.Response(200, content=b"ok"),
        })
        fetched = await fetcher.fetch("ar://abc")
        assert fetched.data == b"ok"

    @pytest.mark.asyncio
    async def test_empty_body_is_not_success(self):
        fetcher, _ = make_fetcher({
            "https://ar.test/abc": httpx.Response(200, content=b""),
            "https://load.test/resolve/abc": httpx.Response(200, content=b"ok"),
        })
        fetched = await fetcher.fetch("ar://abc")
        assert fetched.fetched_from.endswith("/resolve/abc")

    @pytest.mark.asyncio
    async def test_exhausted_candidates_raise_resolution_failed(self):
        fetcher, _ = make_fetcher({"https://load.test/resolve/abc": httpx.Response(503)})
        with pytest.raises(ResolutionFailed) as exc:
            await fetcher.fetch("ls3://abc")
        assert exc.value.last_status == 503
        assert exc.value.retryable is True
        assert exc.value.to_response()["lastStatus"] == 503


class TestFetchAndVerify:
    """Tests for hash verification."""

    @pytest.mark.asyncio
    async def test_matching_hash_returns_bytes(self):
        fetcher, _ = make_fetcher({"https://ar.test/abc": httpx.Response(200, content=b"lyrics")})
        fetched = await fetcher.fetch_and_verify("ar://abc", sha256_hex(b"lyrics"))
        assert fetched.data == b"lyrics"
        assert fetched.size == 6

    @pytest.mark.asyncio
    async def test_hash_compare_is_case_insensitive(self):
        fetcher, _ = make_fetcher({"https://ar.test/abc": httpx.Response(200, content=b"lyrics")})
        fetched = await fetcher.fetch_and_verify("ar://abc", sha256_hex(b"lyrics").upper().replace("0X", "0x"))
        assert fetched.data == b"lyrics"

    @pytest.mark.asyncio
    async def test_mismatch_carries_both_hashes(self):
        fetcher, _ = make_fetcher({"https://ar.test/abc": httpx.Response(200, content=b"tampered")})
        expected = sha256_hex(b"original")
        with pytest.raises(HashMismatch) as exc:
            await fetcher.fetch_and_verify("ar://abc", expected, "Canonical lyrics hash mismatch")

        body = exc.value.to_response()
        assert body["code"] == "hash_mismatch"
        assert body["error"] == "Canonical lyrics hash mismatch"
        assert body["expectedHash"] == expected
        assert body["actualHash"] == sha256_hex(b"tampered")
        assert body["fetchedFrom"] == "https://ar.test/abc"

    @pytest.mark.asyncio
    async def test_mismatch_on_first_candidate_does_not_try_mirror(self):
        fetcher, seen = make_fetcher({
            "https://ar.test/abc": httpx.Response(200, content=b"tampered"),
            "https://load.test/resolve/abc": httpx.Response(200, content=b"original"),
        })
        with pytest.raises(HashMismatch):
            await fetcher.fetch_and_verify("ar://abc", sha256_hex(b"original"))
        assert seen == ["https://ar.test/abc"]


class TestFetchJsonPack:
    @pytest.mark.asyncio
    async def test_decodes_object(self):
        raw = json.dumps({"specVersion": "exercise-pack-v1"}).encode()
        fetcher, _ = make_fetcher({"https://ar.test/p": httpx.Response(200, content=raw)})
        pack, fetched = await fetcher.fetch_json_pack("ar://p", sha256_hex(raw))
        assert pack["specVersion"] == "exercise-pack-v1"
        assert fetched.size == len(raw)

    @pytest.mark.asyncio
    async def test_pack_mismatch_message(self):
        fetcher, _ = make_fetcher({"https://ar.test/p": httpx.Response(200, content=b"{}")})
        with pytest.raises(HashMismatch) as exc:
            await fetcher.fetch_json_pack("ar://p", sha256_hex(b"other"))
        assert exc.value.message == "On-chain studySetHash does not match fetched payload"

    @pytest.mark.asyncio
    async def test_non_object_json_rejected(self):
        raw = b"[1, 2]"
        fetcher, _ = make_fetcher({"https://ar.test/p": httpx.Response(200, content=raw)})
        with pytest.raises(ResolutionFailed) as exc:
            await fetcher.fetch_json_pack("ar://p", sha256_hex(raw))
        assert exc.value.message == "study_set_json_invalid"

    @pytest.mark.asyncio
    async def test_unparseable_json_rejected(self):
        raw = b"not json"
        fetcher, _ = make_fetcher({"https://ar.test/p": httpx.Response(200, content=raw)})
        with pytest.raises(ResolutionFailed) as exc:
            await fetcher.fetch_json_pack("ar://p", sha256_hex(raw))
        assert exc.value.message == "study_set_json_parse_failed"

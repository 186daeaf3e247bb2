# FILE: study_pipeline/content/fetcher.py
"""
Hash-verified fetcher.

fetch() walks the candidate URLs of a ref until one answers with a non-empty
2xx body. fetch_and_verify() hashes the exact bytes returned (no decoding, no
newline or encoding normalisation) and compares with the recorded hash.

Transient failures are retried only inside the candidate loop. A hash
mismatch is an integrity failure and is raised as-is.
"""
from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from study_pipeline.content.refs import ContentGateways
from study_pipeline.pipeline.errors import HashMismatch, ResolutionFailed

logger = logging.getLogger(__name__)


def sha256_hex(data: bytes) -> str:
    """SHA-256 as 0x-prefixed lower-case hex."""
    return "0x" + hashlib.sha256(data).hexdigest()


@dataclass
class FetchedContent:
    data: bytes
    fetched_from: str

    @property
    def size(self) -> int:
        return len(self.data)


class HashVerifiedFetcher:
    def __init__(self, client: httpx.AsyncClient, gateways: Optional[ContentGateways] = None):
        self._client = client
        self._gateways = gateways or ContentGateways()

    @property
    def gateways(self) -> ContentGateways:
        return self._gateways

    async def fetch(self, ref: str) -> FetchedContent:
        candidates = self._gateways.candidate_urls(ref)
        last_status: Optional[int] = None

        for url in candidates:
            try:
                response = await self._client.get(url)
            except httpx.HTTPError as e:
                logger.warning(f"[fetcher] {url} transport error: {e}")
                continue

            if not response.is_success:
                last_status = response.status_code
                logger.info(f"[fetcher] {url} -> {response.status_code}, trying next candidate")
                continue

            body = response.content
            if not body:
                last_status = response.status_code
                logger.warning(f"[fetcher] {url} returned an empty body")
                continue

            return FetchedContent(data=body, fetched_from=url)

        raise ResolutionFailed(ref, last_status=last_status)

    async def fetch_and_verify(
        self, ref: str, expected_hash: str, mismatch_message: str = "Content hash mismatch"
    ) -> FetchedContent:
        fetched = await self.fetch(ref)
        actual = sha256_hex(fetched.data)
        if actual.lower() != (expected_hash or "").lower():
            logger.error(
                f"[fetcher] hash mismatch for {ref} from {fetched.fetched_from}: "
                f"expected={expected_hash} actual={actual}"
            )
            raise HashMismatch(
                expected=expected_hash,
                actual=actual,
                message=mismatch_message,
                ref=ref,
                fetchedFrom=fetched.fetched_from,
            )
        return fetched

    async def fetch_json_pack(self, ref: str, expected_hash: str) -> tuple[Dict[str, Any], FetchedContent]:
        """Fetch + verify a published pack and decode it as a JSON object."""
        fetched = await self.fetch_and_verify(
            ref, expected_hash, "On-chain studySetHash does not match fetched payload"
        )
        try:
            parsed: Any = json.loads(fetched.data.decode("utf-8")) if fetched.data else None
        except (UnicodeDecodeError, json.JSONDecodeError):
            raise ResolutionFailed(ref, message="study_set_json_parse_failed")
        if not isinstance(parsed, dict):
            raise ResolutionFailed(ref, message="study_set_json_invalid")
        return parsed, fetched

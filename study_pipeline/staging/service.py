# FILE: study_pipeline/staging/service.py
"""
Staging & Anchoring Service.

stage_pack() serializes once, checks the size limit before any network call,
hashes those exact bytes, uploads them, then anchors the upload. The hash in
the returned StagedArtifact is the one the publisher writes; nothing is ever
re-fetched to recompute it.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from study_pipeline.config import DEFAULT_LOAD_AGENT_URL, MAX_STUDY_SET_BYTES
from study_pipeline.content.fetcher import sha256_hex
from study_pipeline.content.refs import ContentGateways, ar_ref, ls3_ref
from study_pipeline.pipeline.errors import PackTooLarge, StagingFailed
from study_pipeline.pipeline.schemas import StagedArtifact

logger = logging.getLogger(__name__)

APP_NAME = "Heaven"
UPLOAD_SOURCE = "study-set-generate"
PACK_CONTENT_TYPE = "application/json"


def serialize_pack(pack: Dict[str, Any]) -> bytes:
    """Compact UTF-8 JSON. These bytes are what gets hashed and stored."""
    return json.dumps(pack, ensure_ascii=False, separators=(",", ":")).encode("utf-8")


def pack_tags(track_id: str, language: str, prompt_hash: str) -> List[Dict[str, str]]:
    return [
        {"key": "App-Name", "value": APP_NAME},
        {"key": "Upload-Source", "value": UPLOAD_SOURCE},
        {"key": "Study-Track-Id", "value": track_id},
        {"key": "Study-Language", "value": language},
        {"key": "Study-Prompt-Hash", "value": prompt_hash},
        {"key": "Content-Type", "value": PACK_CONTENT_TYPE},
    ]


def extract_upload_id(payload: Any) -> Optional[str]:
    """Upload id from id | dataitem_id | dataitemId, top level or under "result"."""
    if not isinstance(payload, dict):
        return None
    for container in (payload, payload.get("result")):
        if not isinstance(container, dict):
            continue
        for key in ("id", "dataitem_id", "dataitemId"):
            value = container.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    return None


@dataclass
class StagedUpload:
    dataitem_id: str
    staging_ref: str
    gateway_url: str
    payload: Any = None


@dataclass
class Anchored:
    ref: str
    arweave_url: str
    available: bool
    payload: Any = None


class StagingService:
    def __init__(
        self,
        client: httpx.AsyncClient,
        agent_url: str = DEFAULT_LOAD_AGENT_URL,
        api_key: str = "",
        gateways: Optional[ContentGateways] = None,
        max_bytes: int = MAX_STUDY_SET_BYTES,
    ):
        self._client = client
        self.agent_url = agent_url.rstrip("/")
        self.api_key = (api_key or "").strip()
        self.gateways = gateways or ContentGateways()
        self.max_bytes = max_bytes

    def _auth(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    async def stage(self, data: bytes, tags: List[Dict[str, str]], filename: str = "study-set.json") -> StagedUpload:
        if not self.api_key:
            raise StagingFailed("Failed to stage generated study set: load_stage_not_configured")
        try:
            response = await self._client.post(
                f"{self.agent_url}/upload",
                headers=self._auth(),
                files={"file": (filename, data, PACK_CONTENT_TYPE)},
                data={"content_type": PACK_CONTENT_TYPE, "tags": json.dumps(tags)},
            )
        except httpx.HTTPError as e:
            raise StagingFailed(f"Failed to stage generated study set: {e}")

        payload = _json_or_raw(response)
        if not response.is_success:
            raise StagingFailed(f"Failed to stage generated study set: upload {response.status_code}")

        dataitem_id = extract_upload_id(payload)
        if not dataitem_id:
            raise StagingFailed("Failed to stage generated study set: upload response missing id")

        logger.info(f"[staging] Uploaded {len(data)} bytes as {dataitem_id}")
        return StagedUpload(
            dataitem_id=dataitem_id,
            staging_ref=ls3_ref(dataitem_id),
            gateway_url=self.gateways.resolve_url(dataitem_id),
            payload=payload,
        )

    async def anchor(self, dataitem_id: str) -> Anchored:
        try:
            response = await self._client.post(f"{self.agent_url}/post/{dataitem_id}", headers=self._auth())
        except httpx.HTTPError as e:
            raise StagingFailed(f"Failed to stage generated study set: anchor {e}")

        payload = _json_or_raw(response)
        if not response.is_success:
            raise StagingFailed(f"Failed to stage generated study set: anchor {response.status_code}")

        arweave_url = self.gateways.arweave_item_url(dataitem_id)
        available = False
        try:
            head = await self._client.head(arweave_url)
            available = head.is_success
        except httpx.HTTPError as e:
            logger.info(f"[staging] availability check for {dataitem_id} failed: {e}")

        return Anchored(ref=ar_ref(dataitem_id), arweave_url=arweave_url, available=available, payload=payload)

    async def stage_pack(
        self,
        pack: Dict[str, Any],
        *,
        track_id: str,
        language: str,
        prompt_hash: str,
    ) -> StagedArtifact:
        data = serialize_pack(pack)
        if len(data) > self.max_bytes:
            raise PackTooLarge(size=len(data), limit=self.max_bytes)

        content_hash = sha256_hex(data)
        staged = await self.stage(
            data,
            pack_tags(track_id, language, prompt_hash),
            filename=f"study-set-{language}.json",
        )
        anchored = await self.anchor(staged.dataitem_id)

        return StagedArtifact(
            dataitem_id=staged.dataitem_id,
            staging_ref=staged.staging_ref,
            staging_url=staged.gateway_url,
            permanent_ref=anchored.ref,
            permanent_url=anchored.arweave_url,
            available=anchored.available,
            hash=content_hash,
            size=len(data),
        )


def _json_or_raw(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return {"raw": response.text}

# FILE: study_pipeline/pipeline/dependencies.py
"""
Pipeline wiring.

build_pipeline() assembles the collaborators from PipelineSettings. The
FastAPI dependencies below hand routes a process-wide pipeline; tests replace
them through app.dependency_overrides.
"""
from __future__ import annotations

import logging
from typing import Callable, Optional

import httpx
from sqlalchemy.orm import sessionmaker

from study_pipeline.config import PipelineSettings
from study_pipeline.content.fetcher import HashVerifiedFetcher
from study_pipeline.content.refs import ContentGateways
from study_pipeline.generation.engine import GenerationEngine
from study_pipeline.generation.genius import GeniusClient
from study_pipeline.generation.provider import OpenRouterProvider
from study_pipeline.locks.manager import GenerationLockManager
from study_pipeline.pipeline.orchestrator import StudySetPipeline
from study_pipeline.registry.chain import TempoRegistryClient
from study_pipeline.registry.publisher import Publisher
from study_pipeline.registry.reader import RegistryReader
from study_pipeline.staging.service import StagingService

logger = logging.getLogger(__name__)

_settings: Optional[PipelineSettings] = None
_pipeline: Optional[StudySetPipeline] = None
_http_client: Optional[httpx.AsyncClient] = None


def build_pipeline(
    settings: PipelineSettings,
    *,
    http_client: Optional[httpx.AsyncClient] = None,
    session_factory: Optional[sessionmaker] = None,
    registry_client=None,
    provider=None,
) -> StudySetPipeline:
    """Wire a StudySetPipeline. Any collaborator passed in replaces the default."""
    if session_factory is None:
        from study_pipeline.db import SessionLocal
        session_factory = SessionLocal

    client = http_client or httpx.AsyncClient(timeout=settings.http_timeout_s, follow_redirects=True)
    gateways = ContentGateways(
        arweave_url=settings.arweave_gateway_url,
        load_gateway_url=settings.load_gateway_url,
    )

    if registry_client is None:
        registry_client = TempoRegistryClient(
            rpc_url=settings.rpc_url,
            chain_id=settings.chain_id or 0,
            canonical_lyrics_address=settings.canonical_lyrics_registry,
            study_set_address=settings.study_set_registry,
            scrobble_address=settings.scrobble_registry,
            operator_private_key=settings.operator_private_key,
            timeout_s=settings.rpc_timeout_s,
            receipt_timeout_s=settings.receipt_timeout_s,
        )
    if provider is None:
        provider = OpenRouterProvider(
            settings.openrouter_api_key,
            base_url=settings.openrouter_api_url,
            timeout_seconds=settings.provider_timeout_s,
        )

    fetcher = HashVerifiedFetcher(client, gateways)
    reader = RegistryReader(registry_client)
    publisher = Publisher(
        registry_client,
        reader,
        fetcher,
        contract_address=settings.study_set_registry,
        race_resolution_attempts=settings.race_resolution_attempts,
    )

    return StudySetPipeline(
        reader=reader,
        fetcher=fetcher,
        locks=GenerationLockManager(session_factory, ttl_seconds=settings.lock_ttl_seconds),
        engine=GenerationEngine(provider, default_model=settings.study_model),
        staging=StagingService(
            client,
            agent_url=settings.load_agent_url,
            api_key=settings.load_agent_api_key,
            gateways=gateways,
        ),
        publisher=publisher,
        genius=GeniusClient(
            client,
            api_key=settings.genius_api_key,
            api_url=settings.genius_api_url,
            public_api_url=settings.genius_public_api_url,
        ),
        genius_timeout_s=settings.http_timeout_s,
        lock_ttl_seconds=settings.lock_ttl_seconds,
        contract_address=settings.study_set_registry,
        scrobble_address=settings.scrobble_registry,
        default_model=settings.study_model,
    )


# =============================================================================
# FASTAPI DEPENDENCIES
# =============================================================================

def get_settings() -> PipelineSettings:
    global _settings
    if _settings is None:
        _settings = PipelineSettings.from_env()
    return _settings


def get_pipeline() -> StudySetPipeline:
    """Process-wide pipeline, built on first use. Routes check configuration before calling this."""
    global _pipeline, _http_client
    if _pipeline is None:
        settings = get_settings()
        _http_client = httpx.AsyncClient(timeout=settings.http_timeout_s, follow_redirects=True)
        _pipeline = build_pipeline(settings, http_client=_http_client)
        logger.info("[pipeline] Study set pipeline initialised")
    return _pipeline


async def close_pipeline() -> None:
    global _pipeline, _http_client
    if _http_client is not None:
        await _http_client.aclose()
    _http_client = None
    _pipeline = None


def get_pipeline_factory() -> Callable[[], StudySetPipeline]:
    """Routes resolve the pipeline only after their configuration check passes."""
    return get_pipeline

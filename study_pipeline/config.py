# FILE: study_pipeline/config.py
"""
Study set pipeline configuration.

Fixed limits are module constants; deployment settings are read from the
environment by PipelineSettings.from_env(). main.py loads .env before this
module is imported.
"""

from __future__ import annotations

import math
import os
import re
from dataclasses import dataclass
from typing import List, Optional

# ============================================================================
# LIMITS
# ============================================================================

MAX_LYRICS_BYTES: int = 256 * 1024
MAX_STUDY_SET_BYTES: int = 768 * 1024
MAX_REFERENTS: int = 48

# Must exceed worst-case generation + publish latency (see worst_case_locked_seconds)
GENERATION_LOCK_TTL_SECONDS: int = 120

# ============================================================================
# TIMEOUTS
# ============================================================================

DEFAULT_PROVIDER_TIMEOUT_S: float = 22.0
DEFAULT_HTTP_TIMEOUT_S: float = 6.0
DEFAULT_RPC_TIMEOUT_S: float = 3.0
DEFAULT_RECEIPT_TIMEOUT_S: float = 12.0

# Calls made while a generation lock is held
LOCKED_PROVIDER_CALLS = 2  # line tagging, MCQ
LOCKED_HTTP_HOPS = 6       # lyrics (two gateways), Genius (bounded as one), upload, anchor, availability
LOCKED_RPC_CALLS = 8       # getLyrics, isRegistered, getTrack, nonce, estimate, two fee lookups, send

MIN_VERSION: int = 1
MAX_VERSION: int = 255

# ============================================================================
# DEFAULT ENDPOINTS
# ============================================================================

DEFAULT_TEMPO_CHAIN_ID = 42431
DEFAULT_TEMPO_RPC_URL = "https://rpc.moderato.tempo.xyz"
DEFAULT_TEMPO_SCROBBLE_V4 = "0xe00e82086480E61AaC8d5ad8B05B56A582dD0000"

DEFAULT_LOAD_AGENT_URL = "https://load-s3-agent.load.network"
DEFAULT_LOAD_GATEWAY_URL = "https://gateway.s3-node-1.load.network"
DEFAULT_ARWEAVE_GATEWAY_URL = "https://arweave.net"

DEFAULT_OPENROUTER_API_URL = "https://openrouter.ai/api/v1"
DEFAULT_STUDY_MODEL = "google/gemini-3-flash-preview"

DEFAULT_GENIUS_API_URL = "https://api.genius.com"
DEFAULT_GENIUS_PUBLIC_API_URL = "https://genius.com/api"

_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")
_PRIVATE_KEY_RE = re.compile(r"^0x[a-fA-F0-9]{64}$")


def _env(name: str, default: str = "") -> str:
    return (os.getenv(name) or default).strip()


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value > 0 and math.isfinite(value) else default


def _strip_slash(url: str) -> str:
    return url.rstrip("/")


def is_address(value: str) -> bool:
    return bool(_ADDRESS_RE.match(value or ""))


@dataclass
class PipelineSettings:
    """Deployment settings for one pipeline process."""

    openrouter_api_key: str = ""
    openrouter_api_url: str = DEFAULT_OPENROUTER_API_URL
    study_model: str = DEFAULT_STUDY_MODEL

    genius_api_key: str = ""
    genius_api_url: str = DEFAULT_GENIUS_API_URL
    genius_public_api_url: str = DEFAULT_GENIUS_PUBLIC_API_URL

    rpc_url: str = DEFAULT_TEMPO_RPC_URL
    chain_id_raw: str = ""
    canonical_lyrics_registry: str = ""
    study_set_registry: str = ""
    scrobble_registry: str = DEFAULT_TEMPO_SCROBBLE_V4
    operator_private_key: str = ""

    load_agent_url: str = DEFAULT_LOAD_AGENT_URL
    load_agent_api_key: str = ""
    load_gateway_url: str = DEFAULT_LOAD_GATEWAY_URL
    arweave_gateway_url: str = DEFAULT_ARWEAVE_GATEWAY_URL

    lock_ttl_seconds: int = GENERATION_LOCK_TTL_SECONDS
    race_resolution_attempts: int = 1
    enable_debug_routes: bool = False
    http_timeout_s: float = DEFAULT_HTTP_TIMEOUT_S
    provider_timeout_s: float = DEFAULT_PROVIDER_TIMEOUT_S
    rpc_timeout_s: float = DEFAULT_RPC_TIMEOUT_S
    receipt_timeout_s: float = DEFAULT_RECEIPT_TIMEOUT_S

    @classmethod
    def from_env(cls) -> "PipelineSettings":
        operator_pk = (
            _env("TEMPO_OPERATOR_PRIVATE_KEY")
            or _env("TEMPO_SPONSOR_PRIVATE_KEY")
            or _env("PRIVATE_KEY")
        )
        return cls(
            openrouter_api_key=_env("OPENROUTER_API_KEY"),
            openrouter_api_url=_strip_slash(_env("OPENROUTER_API_URL", DEFAULT_OPENROUTER_API_URL)),
            study_model=_env("OPENROUTER_STUDY_MODEL", DEFAULT_STUDY_MODEL),
            genius_api_key=_env("GENIUS_API_KEY"),
            rpc_url=_env("TEMPO_RPC_URL", DEFAULT_TEMPO_RPC_URL),
            chain_id_raw=_env("TEMPO_CHAIN_ID"),
            canonical_lyrics_registry=_env("TEMPO_CANONICAL_LYRICS_REGISTRY"),
            study_set_registry=_env("TEMPO_STUDY_SET_REGISTRY"),
            scrobble_registry=_env("TEMPO_SCROBBLE_V4", DEFAULT_TEMPO_SCROBBLE_V4),
            operator_private_key=operator_pk,
            load_agent_url=_strip_slash(_env("LOAD_S3_AGENT_URL", DEFAULT_LOAD_AGENT_URL)),
            load_agent_api_key=_env("LOAD_S3_AGENT_API_KEY"),
            load_gateway_url=_strip_slash(_env("LOAD_GATEWAY_URL", DEFAULT_LOAD_GATEWAY_URL)),
            arweave_gateway_url=_strip_slash(_env("ARWEAVE_GATEWAY_URL", DEFAULT_ARWEAVE_GATEWAY_URL)),
            lock_ttl_seconds=_env_int("STUDY_SET_LOCK_TTL_SECONDS", GENERATION_LOCK_TTL_SECONDS),
            race_resolution_attempts=max(1, _env_int("STUDY_SET_RACE_RESOLUTION_ATTEMPTS", 1)),
            enable_debug_routes=_env_bool("STUDY_SET_ENABLE_DEBUG_ROUTES", False),
            http_timeout_s=_env_float("STUDY_SET_HTTP_TIMEOUT_S", DEFAULT_HTTP_TIMEOUT_S),
            provider_timeout_s=_env_float("STUDY_SET_PROVIDER_TIMEOUT_S", DEFAULT_PROVIDER_TIMEOUT_S),
            rpc_timeout_s=_env_float("STUDY_SET_RPC_TIMEOUT_S", DEFAULT_RPC_TIMEOUT_S),
            receipt_timeout_s=_env_float("STUDY_SET_RECEIPT_TIMEOUT_S", DEFAULT_RECEIPT_TIMEOUT_S),
        )

    @property
    def chain_id(self) -> Optional[int]:
        """Configured chain id, the default when unset, None when invalid."""
        if not self.chain_id_raw:
            return DEFAULT_TEMPO_CHAIN_ID
        try:
            value = int(self.chain_id_raw)
        except ValueError:
            return None
        return value if value > 0 else None

    def worst_case_locked_seconds(self) -> float:
        """Upper bound on how long one generate run holds its lock."""
        return (
            LOCKED_PROVIDER_CALLS * self.provider_timeout_s
            + LOCKED_HTTP_HOPS * self.http_timeout_s
            + LOCKED_RPC_CALLS * self.rpc_timeout_s
            + self.receipt_timeout_s
        )

    def missing_for_lookup(self) -> List[str]:
        problems: List[str] = []
        if not self.study_set_registry:
            problems.append("TEMPO_STUDY_SET_REGISTRY missing")
        elif not is_address(self.study_set_registry):
            problems.append("TEMPO_STUDY_SET_REGISTRY invalid address")
        if self.chain_id is None:
            problems.append(f"Invalid TEMPO_CHAIN_ID: {self.chain_id_raw}")
        return problems

    def missing_for_generate(self) -> List[str]:
        """Everything /generate needs before it may touch the network."""
        problems: List[str] = []
        if not self.openrouter_api_key:
            problems.append("OPENROUTER_API_KEY missing")
        if not self.canonical_lyrics_registry:
            problems.append("TEMPO_CANONICAL_LYRICS_REGISTRY missing")
        elif not is_address(self.canonical_lyrics_registry):
            problems.append("TEMPO_CANONICAL_LYRICS_REGISTRY invalid address")
        problems.extend(self.missing_for_lookup())
        if not is_address(self.scrobble_registry):
            problems.append("TEMPO_SCROBBLE_V4 invalid address")
        if not self.load_agent_api_key:
            problems.append("LOAD_S3_AGENT_API_KEY missing")
        if not _PRIVATE_KEY_RE.match(self.operator_private_key):
            problems.append("TEMPO_OPERATOR_PRIVATE_KEY missing/invalid")
        worst_case = self.worst_case_locked_seconds()
        if self.lock_ttl_seconds <= worst_case:
            problems.append(
                f"STUDY_SET_LOCK_TTL_SECONDS ({self.lock_ttl_seconds}) must exceed "
                f"worst-case generation + publish time ({worst_case:g}s)"
            )
        return problems

# FILE: tests/conftest.py
"""
Pytest configuration for the study set pipeline test suite.

Configures:
- pytest-asyncio for async test support
- In-process fakes for the registry, generation provider and content storage
- A file-backed SQLite lock store per test
"""
import json
import sys
from pathlib import Path

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

# Add project root to path
_project_root = Path(__file__).parent.parent
if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))

from study_pipeline.content.fetcher import HashVerifiedFetcher, sha256_hex
from study_pipeline.content.refs import ContentGateways, ar_ref, ls3_ref
from study_pipeline.db import Base
from study_pipeline.generation.engine import GenerationEngine
from study_pipeline.generation.schemas import GeniusReferent
from study_pipeline.generation.genius import GeniusLookup
from study_pipeline.locks.manager import GenerationLockManager
from study_pipeline.pipeline.orchestrator import StudySetPipeline
from study_pipeline.pipeline.schemas import StagedArtifact, UnitKey
from study_pipeline.registry.chain import PublishOutcome, WriteReceipt
from study_pipeline.registry.publisher import Publisher
from study_pipeline.registry.reader import RegistryReader
from study_pipeline.staging.service import serialize_pack

pytest_plugins = ["pytest_asyncio"]

TRACK_ID = "0x" + "ab" * 32
USER = "0x1111111111111111111111111111111111111111"
OTHER_USER = "0x3333333333333333333333333333333333333333"
STUDY_SET_CONTRACT = "0x2222222222222222222222222222222222222222"
LYRICS_ID = "lyrics-item-1"

ARWEAVE_URL = "https://arweave.test"
LOAD_GATEWAY_URL = "https://gateway.test"

LYRICS = "\n".join([
    "[Verse 1]",
    "Bailando bajo la luna llena",
    "Tu voz me llama desde lejos",
    "Caminamos juntos por la playa",
    "El corazon late sin parar (oh yeah)",
    "",
    "[Chorus]",
    "Bailando bajo la luna llena",
    "Nunca olvidare esta noche",
    "Las estrellas brillan para ti",
    "Quiero quedarme aqui contigo",
])
LYRICS_BYTES = LYRICS.encode("utf-8")


# =============================================================================
# Content storage
# =============================================================================

class FakeStorage:
    """Item id -> bytes, served on both the arweave and load gateway URLs."""

    def __init__(self):
        self.items = {}
        self.requests = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)
        item_id = None
        if url.startswith(f"{ARWEAVE_URL}/"):
            item_id = url[len(ARWEAVE_URL) + 1:]
        elif url.startswith(f"{LOAD_GATEWAY_URL}/resolve/"):
            item_id = url[len(LOAD_GATEWAY_URL) + len("/resolve/"):]
        if item_id is None or item_id not in self.items:
            return httpx.Response(404)
        return httpx.Response(200, content=self.items[item_id])


class FakeStaging:
    """Stores serialized packs in FakeStorage under sequential ids."""

    def __init__(self, storage: FakeStorage):
        self.storage = storage
        self.staged = []

    async def stage_pack(self, pack, *, track_id, language, prompt_hash):
        data = serialize_pack(pack)
        item_id = f"pack-item-{len(self.storage.items)}"
        self.storage.items[item_id] = data
        artifact = StagedArtifact(
            dataitem_id=item_id,
            staging_ref=ls3_ref(item_id),
            staging_url=f"{LOAD_GATEWAY_URL}/resolve/{item_id}",
            permanent_ref=ar_ref(item_id),
            permanent_url=f"{ARWEAVE_URL}/{item_id}",
            available=True,
            hash=sha256_hex(data),
            size=len(data),
        )
        self.staged.append(artifact)
        return artifact


# =============================================================================
# Registry
# =============================================================================

class FakeRegistryClient:
    """Write-once study set slots, credits, canonical lyrics and scrobble tracks."""

    def __init__(self):
        self.lyrics = {}
        self.tracks = {}
        self.study_sets = {}
        self.credits_by_user = {}
        self.per_fulfill = 1
        self.fulfill_calls = []
        self.receipt_timeouts = []
        self.hide_study_sets = False
        self.read_error = None

    def seed_lyrics(self, track_id, ref, content_hash, version=1, submitter=OTHER_USER, timestamp=1700000000):
        self.lyrics[track_id] = (ref, content_hash, version, submitter, timestamp)

    def seed_track(self, track_id, title="Luna Llena", artist="Los Ejemplos", album="Noches"):
        self.tracks[track_id] = (title, artist, album)

    async def get_lyrics(self, track_id):
        if self.read_error is not None:
            raise self.read_error
        return self.lyrics.get(track_id, ("", "0x" + "00" * 32, 0, "0x" + "00" * 20, 0))

    async def get_study_set(self, track_id, language, version):
        if self.read_error is not None:
            raise self.read_error
        row = self.study_sets.get((track_id.lower(), language, version))
        if row is None or self.hide_study_sets:
            return "", "0x" + "00" * 32, "0x" + "00" * 20, 0, False
        ref, content_hash, submitter, created_at = row
        return ref, content_hash, submitter, created_at, True

    async def credits(self, user):
        return self.credits_by_user.get(user, 0)

    async def credits_per_fulfill(self):
        return self.per_fulfill

    async def is_registered(self, track_id):
        return track_id in self.tracks

    async def get_track(self, track_id):
        return self.tracks[track_id]

    async def fulfill_from_credit(self, user, track_id, language, version, ref, content_hash, receipt_timeout_s=None):
        self.fulfill_calls.append((user, track_id, language, version, ref, content_hash))
        self.receipt_timeouts.append(receipt_timeout_s)
        key = (track_id.lower(), language, version)
        if key in self.study_sets:
            return WriteReceipt(PublishOutcome.ALREADY_PUBLISHED, reason="study set already set")
        if self.credits_by_user.get(user, 0) < self.per_fulfill:
            return WriteReceipt(PublishOutcome.INSUFFICIENT_CREDITS, reason="insufficient credits")
        self.credits_by_user[user] -= self.per_fulfill
        self.study_sets[key] = (ref, content_hash, user, 1700000500)
        return WriteReceipt(
            PublishOutcome.CONFIRMED,
            tx_hash="0x" + "cd" * 32,
            block_number=4242,
        )


# =============================================================================
# Generation provider
# =============================================================================

def _mcq(prompt, excerpt, trivia=False):
    row = {
        "prompt": prompt,
        "excerpt": excerpt,
        "choices": ["first choice", "second choice", "third choice", "fourth choice"],
        "correctIndex": 2,
        "explanation": "The third choice matches the meaning of the line.",
        "difficulty": "medium",
    }
    if trivia:
        row["sourceClassification"] = "accepted"
    return row


class FakeProvider:
    """
    Answers line tagging with `line_lang` for every line and the MCQ call
    with exactly the requested counts, unless `mcq_output` is set.
    """

    def __init__(self, line_lang="es", mcq_output=None, error=None):
        self.line_lang = line_lang
        self.mcq_output = mcq_output
        self.error = error
        self.calls = []

    async def complete(self, system, user, *, model, response_format=None, max_tokens=4000, temperature=0.2):
        self.calls.append({"system": system, "user": user, "model": model, "response_format": response_format})
        if self.error is not None:
            raise self.error

        name = (response_format or {}).get("json_schema", {}).get("name")
        if name == "line_languages":
            count = len(user.splitlines())
            return json.dumps({
                "lines": [{"index": i, "lang": self.line_lang, "lang2": ""} for i in range(count)]
            })

        if self.mcq_output is not None:
            return self.mcq_output

        payload = json.loads(user)
        counts = payload["counts"]
        lines = [line["text"] for line in payload["lyricLines"]] or ["line"]
        return json.dumps({
            "translation_mcq": [
                _mcq(f"Which lyric means: 'line {i}'?", lines[i % len(lines)])
                for i in range(counts["translation_mcq"])
            ],
            "trivia_mcq": [
                _mcq(f"Which fact is stated about line {i}?", lines[i % len(lines)], trivia=True)
                for i in range(counts["trivia_mcq"])
            ],
        })


class FakeGenius:
    def __init__(self, song_id=12345, referent_count=3):
        self.song_id = song_id
        self.referents = [
            GeniusReferent(
                fragment=f"Bailando bajo la luna llena {i}",
                annotation=f"The song was recorded in Madrid in 201{i}.",
                classification="accepted",
                votes_total=10 + i,
            )
            for i in range(referent_count)
        ]
        self.calls = []

    async def lookup(self, title, artist):
        self.calls.append((title, artist))
        return GeniusLookup(song_id=self.song_id, referents=list(self.referents))


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def session_factory(tmp_path):
    """File-backed SQLite lock store; each session gets its own connection."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'locks.db'}",
        connect_args={"check_same_thread": False},
    )
    from study_pipeline.locks import models  # noqa: F401
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def lock_manager(session_factory):
    return GenerationLockManager(session_factory, ttl_seconds=120)


@pytest.fixture
def gateways():
    return ContentGateways(arweave_url=ARWEAVE_URL, load_gateway_url=LOAD_GATEWAY_URL)


@pytest.fixture
def storage():
    s = FakeStorage()
    s.items[LYRICS_ID] = LYRICS_BYTES
    return s


@pytest.fixture
def http_client(storage):
    return httpx.AsyncClient(transport=httpx.MockTransport(storage.handler))


@pytest.fixture
def fetcher(http_client, gateways):
    return HashVerifiedFetcher(http_client, gateways)


@pytest.fixture
def registry():
    client = FakeRegistryClient()
    client.seed_lyrics(TRACK_ID, ar_ref(LYRICS_ID), sha256_hex(LYRICS_BYTES))
    client.seed_track(TRACK_ID)
    client.credits_by_user[USER] = 5
    client.credits_by_user[OTHER_USER] = 5
    return client


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def unit_key():
    return UnitKey(track_id=TRACK_ID, language="en", version=1)


def make_pipeline(registry, fetcher, lock_manager, provider, storage, genius=None, race_attempts=1):
    reader = RegistryReader(registry)
    publisher = Publisher(
        registry,
        reader,
        fetcher,
        contract_address=STUDY_SET_CONTRACT,
        race_resolution_attempts=race_attempts,
        race_backoff_s=0,
    )
    return StudySetPipeline(
        reader=reader,
        fetcher=fetcher,
        locks=lock_manager,
        engine=GenerationEngine(provider, default_model="test/model"),
        staging=FakeStaging(storage),
        publisher=publisher,
        genius=genius if genius is not None else FakeGenius(),
        contract_address=STUDY_SET_CONTRACT,
        default_model="test/model",
    )


@pytest.fixture
def pipeline(registry, fetcher, lock_manager, provider, storage):
    return make_pipeline(registry, fetcher, lock_manager, provider, storage)

# FILE: study_pipeline/registry/abi.py
"""Minimal contract ABIs for the three registries the pipeline touches."""

CANONICAL_LYRICS_REGISTRY_ABI = [
    {
        "type": "function",
        "name": "getLyrics",
        "stateMutability": "view",
        "inputs": [{"name": "trackId", "type": "bytes32"}],
        "outputs": [
            {"name": "lyricsRef", "type": "string"},
            {"name": "lyricsHash", "type": "bytes32"},
            {"name": "version", "type": "uint32"},
            {"name": "submitter", "type": "address"},
            {"name": "timestamp", "type": "uint64"},
        ],
    },
]

STUDY_SET_REGISTRY_ABI = [
    {
        "type": "function",
        "name": "getStudySet",
        "stateMutability": "view",
        "inputs": [
            {"name": "trackId", "type": "bytes32"},
            {"name": "lang", "type": "string"},
            {"name": "version", "type": "uint8"},
        ],
        "outputs": [
            {"name": "studySetRef", "type": "string"},
            {"name": "studySetHash", "type": "bytes32"},
            {"name": "submitter", "type": "address"},
            {"name": "createdAt", "type": "uint64"},
            {"name": "exists", "type": "bool"},
        ],
    },
    {
        "type": "function",
        "name": "credits",
        "stateMutability": "view",
        "inputs": [{"name": "user", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "CREDITS_PER_FULFILL",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "fulfillFromCredit",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "user", "type": "address"},
            {"name": "trackId", "type": "bytes32"},
            {"name": "lang", "type": "string"},
            {"name": "version", "type": "uint8"},
            {"name": "studySetRef", "type": "string"},
            {"name": "studySetHash", "type": "bytes32"},
        ],
        "outputs": [{"name": "studySetKey", "type": "bytes32"}],
    },
]

SCROBBLE_V4_ABI = [
    {
        "type": "function",
        "name": "isRegistered",
        "stateMutability": "view",
        "inputs": [{"name": "trackId", "type": "bytes32"}],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "type": "function",
        "name": "getTrack",
        "stateMutability": "view",
        "inputs": [{"name": "trackId", "type": "bytes32"}],
        "outputs": [
            {"name": "title", "type": "string"},
            {"name": "artist", "type": "string"},
            {"name": "album", "type": "string"},
            {"name": "kind", "type": "uint8"},
            {"name": "payload", "type": "bytes32"},
            {"name": "registeredAt", "type": "uint64"},
            {"name": "coverCid", "type": "string"},
            {"name": "durationSec", "type": "uint32"},
        ],
    },
]

# FILE: study_pipeline/content/refs.py
"""
Content reference resolution.

Two schemes are supported:
- ar://<id>   permanent Arweave id; arweave gateway first, load gateway mirror second
- ls3://<id>  staged Load S3 data item; load gateway only
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Tuple

from study_pipeline.config import DEFAULT_ARWEAVE_GATEWAY_URL, DEFAULT_LOAD_GATEWAY_URL
from study_pipeline.pipeline.errors import UnsupportedRef

AR_SCHEME = "ar://"
LS3_SCHEME = "ls3://"


def ar_ref(item_id: str) -> str:
    return f"{AR_SCHEME}{item_id}"


def ls3_ref(item_id: str) -> str:
    return f"{LS3_SCHEME}{item_id}"


def parse_ref(ref: str) -> Tuple[str, str]:
    """Split a ref into (scheme, id). Raises UnsupportedRef for anything else."""
    value = (ref or "").strip()
    for scheme in (AR_SCHEME, LS3_SCHEME):
        if value.startswith(scheme):
            item_id = value[len(scheme):].strip()
            if item_id:
                return scheme, item_id
            break
    raise UnsupportedRef(ref)


@dataclass(frozen=True)
class ContentGateways:
    arweave_url: str = DEFAULT_ARWEAVE_GATEWAY_URL
    load_gateway_url: str = DEFAULT_LOAD_GATEWAY_URL

    def resolve_url(self, item_id: str) -> str:
        return f"{self.load_gateway_url.rstrip('/')}/resolve/{item_id}"

    def arweave_item_url(self, item_id: str) -> str:
        return f"{self.arweave_url.rstrip('/')}/{item_id}"

    def candidate_urls(self, ref: str) -> List[str]:
        """Fetchable URLs for a ref, in priority order."""
        scheme, item_id = parse_ref(ref)
        if scheme == AR_SCHEME:
            return [self.arweave_item_url(item_id), self.resolve_url(item_id)]
        return [self.resolve_url(item_id)]

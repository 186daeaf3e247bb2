# FILE: study_pipeline/registry/chain.py
"""
Tempo registry client (web3).

Thin async wrapper over the synchronous web3 client: every contract call is
pushed through asyncio.to_thread. Return values are plain Python (bytes32 as
0x-prefixed lower-case hex, addresses checksummed).

The write path never raises for contract-level rejections. fulfill_from_credit()
returns a WriteReceipt whose PublishOutcome tells the caller what happened;
revert-reason text is interpreted here and nowhere else.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Tuple

from web3 import Web3
from web3.exceptions import ContractLogicError, Web3Exception

from study_pipeline.config import DEFAULT_RECEIPT_TIMEOUT_S
from study_pipeline.registry.abi import (
    CANONICAL_LYRICS_REGISTRY_ABI,
    SCROBBLE_V4_ABI,
    STUDY_SET_REGISTRY_ABI,
)

logger = logging.getLogger(__name__)


class PublishOutcome(str, Enum):
    CONFIRMED = "confirmed"
    ALREADY_PUBLISHED = "already_published"
    INSUFFICIENT_CREDITS = "insufficient_credits"
    # Mined with status 0; the reason is not available from the receipt
    REVERTED = "reverted"
    FAILED = "failed"


@dataclass
class WriteReceipt:
    outcome: PublishOutcome
    tx_hash: Optional[str] = None
    block_number: Optional[int] = None
    reason: str = ""


def classify_revert_reason(message: str) -> PublishOutcome:
    """Map a registry revert reason onto a PublishOutcome."""
    lower = (message or "").lower()
    if "already set" in lower or "already published" in lower:
        return PublishOutcome.ALREADY_PUBLISHED
    if "insufficient credits" in lower:
        return PublishOutcome.INSUFFICIENT_CREDITS
    return PublishOutcome.FAILED


def bytes32_from_hex(value: str) -> bytes:
    raw = value[2:] if value.lower().startswith("0x") else value
    return bytes.fromhex(raw)


def to_hex32(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    return str(value or "").lower()


class TempoRegistryClient:
    """
    Reads the canonical lyrics, study set and scrobble registries; writes
    study sets through fulfillFromCredit signed by the operator key.
    """

    def __init__(
        self,
        rpc_url: str,
        chain_id: int,
        canonical_lyrics_address: str,
        study_set_address: str,
        scrobble_address: str,
        operator_private_key: str = "",
        timeout_s: float = 30.0,
        receipt_timeout_s: float = DEFAULT_RECEIPT_TIMEOUT_S,
        w3: Optional[Web3] = None,
    ):
        self.receipt_timeout_s = receipt_timeout_s
        self.w3 = w3 or Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout_s}))
        self.chain_id = chain_id
        self.study_set_address = Web3.to_checksum_address(study_set_address)
        self.scrobble_address = Web3.to_checksum_address(scrobble_address)
        self._lyrics = self.w3.eth.contract(
            address=Web3.to_checksum_address(canonical_lyrics_address),
            abi=CANONICAL_LYRICS_REGISTRY_ABI,
        ) if canonical_lyrics_address else None
        self._study_sets = self.w3.eth.contract(address=self.study_set_address, abi=STUDY_SET_REGISTRY_ABI)
        self._scrobble = self.w3.eth.contract(address=self.scrobble_address, abi=SCROBBLE_V4_ABI)
        self._operator = self.w3.eth.account.from_key(operator_private_key) if operator_private_key else None

    # =========================================================================
    # READS
    # =========================================================================

    async def get_lyrics(self, track_id: str) -> Tuple[str, str, int, str, int]:
        if self._lyrics is None:
            raise RuntimeError("canonical lyrics registry not configured")
        fn = self._lyrics.functions.getLyrics(bytes32_from_hex(track_id))
        ref, lyrics_hash, version, submitter, timestamp = await asyncio.to_thread(fn.call)
        return str(ref or ""), to_hex32(lyrics_hash), int(version or 0), str(submitter or ""), int(timestamp or 0)

    async def get_study_set(self, track_id: str, language: str, version: int) -> Tuple[str, str, str, int, bool]:
        fn = self._study_sets.functions.getStudySet(bytes32_from_hex(track_id), language, version)
        ref, study_set_hash, submitter, created_at, exists = await asyncio.to_thread(fn.call)
        return str(ref or ""), to_hex32(study_set_hash), str(submitter or ""), int(created_at or 0), bool(exists)

    async def credits(self, user: str) -> int:
        fn = self._study_sets.functions.credits(Web3.to_checksum_address(user))
        return int(await asyncio.to_thread(fn.call))

    async def credits_per_fulfill(self) -> int:
        fn = self._study_sets.functions.CREDITS_PER_FULFILL()
        return int(await asyncio.to_thread(fn.call))

    async def is_registered(self, track_id: str) -> bool:
        fn = self._scrobble.functions.isRegistered(bytes32_from_hex(track_id))
        return bool(await asyncio.to_thread(fn.call))

    async def get_track(self, track_id: str) -> Tuple[str, str, str]:
        """(title, artist, album). The remaining getTrack fields are unused."""
        fn = self._scrobble.functions.getTrack(bytes32_from_hex(track_id))
        row = await asyncio.to_thread(fn.call)
        return str(row[0] or ""), str(row[1] or ""), str(row[2] or "")

    # =========================================================================
    # WRITE
    # =========================================================================

    def _fulfill_sync(
        self,
        user: str,
        track_id: str,
        language: str,
        version: int,
        ref: str,
        content_hash: str,
        receipt_timeout_s: float,
    ) -> WriteReceipt:
        if self._operator is None:
            return WriteReceipt(PublishOutcome.FAILED, reason="operator key not configured")

        sender = self._operator.address
        fn = self._study_sets.functions.fulfillFromCredit(
            Web3.to_checksum_address(user),
            bytes32_from_hex(track_id),
            language,
            version,
            ref,
            bytes32_from_hex(content_hash),
        )

        try:
            # build_transaction estimates gas, which surfaces the revert reason
            tx = fn.build_transaction({
                "from": sender,
                "nonce": self.w3.eth.get_transaction_count(sender),
                "chainId": self.chain_id,
            })
            signed = self._operator.sign_transaction(tx)
            tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
        except ContractLogicError as e:
            reason = str(e.message or e)
            outcome = classify_revert_reason(reason)
            logger.info(f"[chain] fulfillFromCredit rejected ({outcome.value}): {reason}")
            return WriteReceipt(outcome, reason=reason)
        except (Web3Exception, ValueError, OSError) as e:
            logger.warning(f"[chain] fulfillFromCredit submit failed: {e}")
            return WriteReceipt(PublishOutcome.FAILED, reason=str(e))

        tx_hex = Web3.to_hex(tx_hash)
        try:
            receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=receipt_timeout_s)
        except (Web3Exception, OSError) as e:
            logger.warning(f"[chain] receipt wait failed for {tx_hex}: {e}")
            return WriteReceipt(PublishOutcome.FAILED, tx_hash=tx_hex, reason=str(e))

        if receipt.get("status") != 1:
            logger.info(f"[chain] fulfillFromCredit {tx_hex} reverted in block {receipt.get('blockNumber')}")
            return WriteReceipt(
                PublishOutcome.REVERTED,
                tx_hash=tx_hex,
                block_number=receipt.get("blockNumber"),
                reason="transaction reverted",
            )

        return WriteReceipt(
            PublishOutcome.CONFIRMED,
            tx_hash=tx_hex,
            block_number=receipt.get("blockNumber"),
        )

    async def fulfill_from_credit(
        self,
        user: str,
        track_id: str,
        language: str,
        version: int,
        ref: str,
        content_hash: str,
        receipt_timeout_s: Optional[float] = None,
    ) -> WriteReceipt:
        """Submit the write. receipt_timeout_s can only shorten the configured receipt wait."""
        timeout = self.receipt_timeout_s
        if receipt_timeout_s is not None:
            timeout = max(1.0, min(timeout, receipt_timeout_s))
        return await asyncio.to_thread(
            self._fulfill_sync, user, track_id, language, version, ref, content_hash, timeout
        )

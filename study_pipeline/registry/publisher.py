# FILE: study_pipeline/registry/publisher.py
"""
Publisher - credit-gated, write-once registry writes.

Outcome handling on fulfillFromCredit:
- CONFIRMED             -> PublishResult(race_resolved=False)
- INSUFFICIENT_CREDITS  -> InsufficientCredits (balance changed since the pre-check)
- ALREADY_PUBLISHED     -> re-read the slot; if the winner's record is visible,
                           fetch + verify its pack and return it with race_resolved=True.
                           Still nothing after the configured attempts ->
                           RaceResolutionFailed (logged as anomalous).
- REVERTED              -> mined with status 0; one re-read of the slot. A visible
                           winner is returned with race_resolved=True, an empty slot
                           is RegistryWriteFailed.
- FAILED                -> RegistryWriteFailed (retryable)
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Optional

from study_pipeline.content.fetcher import HashVerifiedFetcher
from study_pipeline.pipeline.errors import (
    InsufficientCredits,
    RaceResolutionFailed,
    RegistryReadFailed,
    RegistryWriteFailed,
    ResolutionFailed,
    UnsupportedRef,
)
from study_pipeline.pipeline.schemas import PublishedRecord, ResolvedPack, UnitKey
from study_pipeline.registry.chain import PublishOutcome
from study_pipeline.registry.reader import RegistryReader

logger = logging.getLogger(__name__)

_RACE_BACKOFF_S = 0.5


@dataclass
class PublishResult:
    outcome: PublishOutcome
    record: PublishedRecord
    tx_hash: Optional[str] = None
    block_number: Optional[int] = None
    confirmed_at: int = 0
    race_resolved: bool = False
    resolved: Optional[ResolvedPack] = None


class Publisher:
    def __init__(
        self,
        client,
        reader: RegistryReader,
        fetcher: HashVerifiedFetcher,
        contract_address: str = "",
        race_resolution_attempts: int = 1,
        race_backoff_s: float = _RACE_BACKOFF_S,
    ):
        self._client = client
        self._reader = reader
        self._fetcher = fetcher
        self.contract_address = contract_address
        self.race_resolution_attempts = max(1, race_resolution_attempts)
        self.race_backoff_s = race_backoff_s

    async def check_credits(self, submitter: str) -> None:
        """Raise InsufficientCredits when the submitter cannot pay for one write."""
        available, required = await self._reader.read_credits(submitter)
        if available < required:
            logger.info(f"[publisher] {submitter} has {available} credit(s), needs {required}")
            raise InsufficientCredits(
                user=submitter,
                contract=self.contract_address or None,
                required=required,
                available=available,
            )

    async def publish(
        self,
        unit_key: UnitKey,
        ref: str,
        content_hash: str,
        submitter: str,
        receipt_timeout_s: Optional[float] = None,
    ) -> PublishResult:
        receipt = await self._client.fulfill_from_credit(
            submitter,
            unit_key.track_id,
            unit_key.language,
            unit_key.version,
            ref,
            content_hash,
            receipt_timeout_s=receipt_timeout_s,
        )

        if receipt.outcome == PublishOutcome.CONFIRMED:
            logger.info(f"[publisher] Published {unit_key.lock_key} tx={receipt.tx_hash}")
            return PublishResult(
                outcome=receipt.outcome,
                record=PublishedRecord(exists=True, ref=ref, hash=content_hash.lower(), submitter=submitter),
                tx_hash=receipt.tx_hash,
                block_number=receipt.block_number,
                confirmed_at=int(time.time()),
            )

        if receipt.outcome == PublishOutcome.INSUFFICIENT_CREDITS:
            raise InsufficientCredits(user=submitter, contract=self.contract_address or None)

        if receipt.outcome == PublishOutcome.ALREADY_PUBLISHED:
            return await self._resolve_race(unit_key)

        if receipt.outcome == PublishOutcome.REVERTED:
            # Both writers passed estimation; the loser is mined as a revert
            try:
                winner = await self._read_winner(unit_key)
            except (RegistryReadFailed, ResolutionFailed, UnsupportedRef) as e:
                logger.warning(f"[publisher] re-read after revert of {receipt.tx_hash} failed: {e.message}")
                winner = None
            if winner is not None:
                logger.info(f"[publisher] {receipt.tx_hash} reverted; {unit_key.lock_key} already published")
                return winner
            logger.warning(f"[publisher] {unit_key.lock_key} write {receipt.tx_hash} reverted and slot is empty")
            raise RegistryWriteFailed(f"Failed to register study set onchain: {receipt.reason}")

        logger.warning(f"[publisher] Registry write failed for {unit_key.lock_key}: {receipt.reason}")
        raise RegistryWriteFailed(f"Failed to register study set onchain: {receipt.reason}")

    async def _read_winner(self, unit_key: UnitKey) -> Optional[PublishResult]:
        """One read of the slot. None when nothing is published there yet."""
        record = await self._reader.resolve_published(unit_key)
        if not record.exists:
            return None
        pack, fetched = await self._fetcher.fetch_json_pack(record.ref, record.hash)
        logger.info(f"[publisher] Race resolved for {unit_key.lock_key} -> {record.ref}")
        return PublishResult(
            outcome=PublishOutcome.ALREADY_PUBLISHED,
            record=record,
            race_resolved=True,
            resolved=ResolvedPack(
                record=record,
                pack=pack,
                fetched_from=fetched.fetched_from,
                size=fetched.size,
            ),
        )

    async def _resolve_race(self, unit_key: UnitKey) -> PublishResult:
        """Another writer won the slot. Converge on its record."""
        last_error = "record not visible after write conflict"
        for attempt in range(1, self.race_resolution_attempts + 1):
            if attempt > 1:
                await asyncio.sleep(self.race_backoff_s * (attempt - 1))

            try:
                winner = await self._read_winner(unit_key)
            except RegistryReadFailed as e:
                last_error = e.message
                continue
            except (ResolutionFailed, UnsupportedRef) as e:
                last_error = e.message
                logger.warning(f"[publisher] race winner pack unavailable (attempt {attempt}): {e.message}")
                continue

            if winner is not None:
                return winner

        logger.error(
            f"[publisher] RACE_RESOLUTION_FAILED {unit_key.lock_key}: write rejected as duplicate "
            f"but no readable record after {self.race_resolution_attempts} attempt(s): {last_error}"
        )
        raise RaceResolutionFailed(
            f"Race detected but failed to resolve canonical study set: {last_error}"
        )

# FILE: study_pipeline/locks/manager.py
"""
Generation Lock Manager.

State per lock_key: Absent -> Held(owner, expiry) -> Absent.

acquire() always runs the expiry sweep first (delete rows whose expires_at
has passed), then attempts the insert. There is no background reaper; a
crashed worker's lock is reclaimed by the next acquirer after the TTL.

Sessions are synchronous SQLAlchemy; the async wrappers push each call onto
a worker thread so the event loop never blocks on the database.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from study_pipeline.config import GENERATION_LOCK_TTL_SECONDS
from study_pipeline.locks.models import GenerationLock

logger = logging.getLogger(__name__)


def _unix_now() -> int:
    return int(time.time())


class GenerationLockManager:
    def __init__(
        self,
        session_factory: sessionmaker,
        ttl_seconds: int = GENERATION_LOCK_TTL_SECONDS,
        clock: Optional[Callable[[], int]] = None,
    ):
        self._session_factory = session_factory
        self.ttl_seconds = ttl_seconds
        self._clock = clock or _unix_now

    # -------------------------------------------------------------------------
    # Sync implementations
    # -------------------------------------------------------------------------

    def acquire_sync(self, lock_key: str, owner: str, ttl_seconds: Optional[int] = None) -> bool:
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        now = self._clock()
        db: Session = self._session_factory()
        try:
            swept = (
                db.query(GenerationLock)
                .filter(GenerationLock.expires_at <= now)
                .delete(synchronize_session=False)
            )
            db.commit()
            if swept:
                logger.info(f"[locks] Swept {swept} expired lock(s)")

            db.add(GenerationLock(
                lock_key=lock_key,
                owner_wallet=owner,
                created_at=now,
                expires_at=now + ttl,
            ))
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                logger.info(f"[locks] {lock_key} already held")
                return False

            logger.info(f"[locks] Acquired {lock_key} for {owner} (ttl={ttl}s)")
            return True
        finally:
            db.close()

    def release_sync(self, lock_key: str, owner: str) -> bool:
        """Delete the row only if both key and owner match. Returns whether a row was removed."""
        db: Session = self._session_factory()
        try:
            deleted = (
                db.query(GenerationLock)
                .filter(GenerationLock.lock_key == lock_key, GenerationLock.owner_wallet == owner)
                .delete(synchronize_session=False)
            )
            db.commit()
            if deleted:
                logger.info(f"[locks] Released {lock_key}")
            return bool(deleted)
        finally:
            db.close()

    def held_sync(self, lock_key: str) -> Optional[GenerationLock]:
        """The live row for lock_key, if any. Diagnostics only."""
        db: Session = self._session_factory()
        try:
            row = (
                db.query(GenerationLock)
                .filter(GenerationLock.lock_key == lock_key, GenerationLock.expires_at > self._clock())
                .first()
            )
            if row is not None:
                db.expunge(row)
            return row
        finally:
            db.close()

    # -------------------------------------------------------------------------
    # Async API used by the pipeline
    # -------------------------------------------------------------------------

    async def acquire(self, lock_key: str, owner: str, ttl_seconds: Optional[int] = None) -> bool:
        return await asyncio.to_thread(self.acquire_sync, lock_key, owner, ttl_seconds)

    async def release(self, lock_key: str, owner: str) -> bool:
        return await asyncio.to_thread(self.release_sync, lock_key, owner)

    async def held(self, lock_key: str) -> Optional[GenerationLock]:
        return await asyncio.to_thread(self.held_sync, lock_key)

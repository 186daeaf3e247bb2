# FILE: study_pipeline/locks/models.py
"""
Generation lock table.

At most one row per lock_key. The primary key is the mutual-exclusion
primitive: a second INSERT for a live key fails with IntegrityError.
Timestamps are unix seconds so the expiry sweep is a plain integer compare.
"""
from sqlalchemy import Column, Integer, String

from study_pipeline.db import Base


class GenerationLock(Base):
    __tablename__ = "study_set_generation_locks"

    lock_key = Column(String(200), primary_key=True)  # "{trackId}:{language}:{version}", lower-cased
    owner_wallet = Column(String(42), nullable=False)
    created_at = Column(Integer, nullable=False)
    expires_at = Column(Integer, nullable=False, index=True)

    def __repr__(self):
        return f"<GenerationLock {self.lock_key} owner={self.owner_wallet} expires_at={self.expires_at}>"

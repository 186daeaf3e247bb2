# FILE: study_pipeline/db.py
import os
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

# Lock store: ./data/study_sets.db relative to project root
# Override with STUDY_SET_DATABASE_URL (any SQLAlchemy URL with unique constraints)
DATABASE_URL = os.getenv("STUDY_SET_DATABASE_URL", "sqlite:///./data/study_sets.db")


def _connect_args(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"check_same_thread": False}  # Required for SQLite
    return {}


engine = create_engine(
    DATABASE_URL,
    connect_args=_connect_args(DATABASE_URL),
    echo=False,  # Set True to log SQL statements for debugging
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def init_db(bind=None):
    """Create all tables. Call once at startup."""
    # Import models so Base.metadata knows about them
    from study_pipeline.locks import models  # noqa: F401
    Base.metadata.create_all(bind=bind or engine)

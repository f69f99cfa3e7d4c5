"""
Database setup for Rabbithole.

Uses SQLAlchemy with a single SQLite file (rabbithole.db) by default.
Set RABBITHOLE_DATABASE_URL to point at another database (e.g. PostgreSQL).
"""

import os
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

# Default: store DB in project root for easy backup/portability
DB_DIR = Path(__file__).resolve().parent.parent
DB_PATH = os.getenv("RABBITHOLE_DB_PATH", str(DB_DIR / "rabbithole.db"))
SQLALCHEMY_DATABASE_URI = os.getenv("RABBITHOLE_DATABASE_URL") or f"sqlite:///{DB_PATH}"

engine = create_engine(
    SQLALCHEMY_DATABASE_URI,
    # SQLite requirement for FastAPI worker threads
    connect_args={"check_same_thread": False} if SQLALCHEMY_DATABASE_URI.startswith("sqlite") else {},
    echo=os.getenv("RABBITHOLE_DB_ECHO", "0") == "1",  # Set RABBITHOLE_DB_ECHO=1 to log SQL
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    """Dependency: yield a DB session and close it after request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

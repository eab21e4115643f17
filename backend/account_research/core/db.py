from pathlib import Path

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base

from .config import get_settings

settings = get_settings()

Base = declarative_base()


def build_engine(url: str) -> Engine:
    """
    Create an engine for ``url``.

    SQLite connections are shared with worker threads (job loops run their
    store calls through ``asyncio.to_thread``), so same-thread checks are off
    and every connection gets foreign keys + WAL.
    """
    if not url.startswith("sqlite"):
        return create_engine(url, pool_pre_ping=True)

    db_path = url.split("///", 1)[1] if "///" in url else ""
    if db_path and db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    engine = create_engine(
        url,
        connect_args={"check_same_thread": False, "timeout": 30},
    )

    @event.listens_for(engine, "connect")
    def _sqlite_pragmas(dbapi_connection, _record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    return engine


engine = build_engine(settings.DATABASE_URL)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind: Engine | None = None) -> None:
    # Import models so they register on Base.metadata
    from ..models import account, job_event, processing_job  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)

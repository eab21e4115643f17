import os

# Settings are read at import time; keep the module-level engine off disk and
# auth disabled before anything from account_research is imported.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["AUTO_CREATE_SCHEMA"] = "false"
os.environ["ENV"] = "dev"
os.environ.pop("API_AUTH_KEY", None)

import pytest
from sqlalchemy.orm import sessionmaker

from account_research.core.config import Settings
from account_research.core.db import build_engine, init_db
from account_research.services.processor import JobProcessor
from account_research.services.registry import ActiveJobRegistry

from tests.fixtures.account_fixtures import FakeCategorizer, FakeResearch


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'accounts.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def settings():
    return Settings(
        ACCOUNT_DELAY_MS=0,
        PAUSE_POLL_SECONDS=0.05,
        COLLABORATOR_TIMEOUT_SECONDS=5.0,
        STREAM_POLL_INTERVAL_MS=20,
        PROCESSING_CONCURRENCY=4,
    )


@pytest.fixture
def registry():
    return ActiveJobRegistry()


@pytest.fixture
def research():
    return FakeResearch()


@pytest.fixture
def categorizer():
    return FakeCategorizer()


@pytest.fixture
def processor(registry, session_factory, research, categorizer, settings):
    return JobProcessor(registry, session_factory, research, categorizer, settings)

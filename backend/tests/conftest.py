"""
Shared pytest fixtures.

Every test gets a fresh in-memory SQLite database with all tables created.
``StaticPool`` keeps a single connection so the schema survives across
sessions and threads.
"""
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from company_intel.core.db import Base
# Register every table on Base.metadata.
from company_intel.models import (  # noqa: F401
    cost_event,
    feedback,
    news_article,
    news_config,
    news_tracking,
    pricing_rate,
    prompt,
    research_job,
    research_sub_job,
    research_trace_event,
)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
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

"""
Pytest configuration and shared fixtures.
"""

import os

os.environ.setdefault("DB_URL", "sqlite+aiosqlite://")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("LOG_FORMAT", "text")

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from be import models
from be.db import build_engine, build_session_maker, create_tables
from tests.factories import FakeGitHubClient


@pytest.fixture
async def engine():
    """Fresh in-memory SQLite database with the full schema."""
    engine = build_engine("sqlite+aiosqlite://")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine) -> async_sessionmaker[AsyncSession]:
    return build_session_maker(engine)


@pytest.fixture
async def session(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
def github() -> FakeGitHubClient:
    return FakeGitHubClient()


@pytest.fixture
async def seeded(session):
    """Two branches, labels, a milestone and an Epic issue type."""
    session.add_all([
        models.Branch(id="b-master", name="master"),
        models.Branch(id="b-91", name="release/9.1"),
        models.Label(id="l-feature", name="Feature", color="A2EEEF"),
        models.Label(id="l-bug", name="Bug", color="D73A4A"),
        models.Label(id="l-chore", name="Chore", color="EDEDED"),
        models.Milestone(id="m-1", number=1, title="9.1", state="OPEN", open_issue_count=1, closed_issue_count=0),
        models.Milestone(id="m-2", number=2, title="9.0", state="CLOSED", open_issue_count=0, closed_issue_count=3),
        models.IssueType(id="t-epic", name="Epic"),
        models.IssueType(id="t-bug", name="Bug"),
    ])
    await session.commit()
    return session

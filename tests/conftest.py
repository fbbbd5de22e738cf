"""
Shared fixtures: a throwaway sqlite database, seeded users and a panel.

The database URL must be set before ``delphi_panels`` is imported because
the engine is built from settings at import time.
"""

import os
import tempfile

_TEST_DB_DIR = tempfile.mkdtemp(prefix="delphi-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TEST_DB_DIR}/test.db"
os.environ["ENVIRONMENT"] = "development"
for _name in (
    "SENDGRID_API_KEY",
    "GEMINI_API_KEY",
    "FIREBASE_PROJECT_ID",
    "FIREBASE_CLIENT_EMAIL",
    "FIREBASE_PRIVATE_KEY",
    "SLACK_ALERTS_WEBHOOK_URL",
    "ALERT_WEBHOOK_URL",
):
    os.environ.pop(_name, None)

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from delphi_panels.core import (
    async_session_factory,
    create_access_token,
    drop_db,
    engine,
    get_notification_rate_limiter,
    init_db,
)
from delphi_panels.models import Panel, Topic, User
from delphi_panels.services.panels import CreatePanelInput, PanelService
from delphi_panels.services.topics import CreateTopicInput, TopicService

TEST_DATABASE_URL = os.environ["DATABASE_URL"]


class FakeSummarizer:
    """Returns a canned summary and records what it was asked to summarize."""

    def __init__(self, summary: str = "Panel mostly agrees."):
        self.summary = summary
        self.calls: list[int] = []

    async def summarize(self, feedback_items) -> str:
        self.calls.append(len(feedback_items))
        return self.summary


# =============================================================================
# DATABASE
# =============================================================================


@pytest.fixture(autouse=True)
async def database():
    """Fresh schema for every test."""
    await drop_db()
    await init_db()
    get_notification_rate_limiter().reset()
    yield
    await engine.dispose()


@pytest.fixture
async def session(database) -> AsyncSession:
    async with async_session_factory() as session:
        yield session


@pytest.fixture
def fake_summarizer() -> FakeSummarizer:
    return FakeSummarizer()


@pytest.fixture
def database_url() -> str:
    return TEST_DATABASE_URL


# =============================================================================
# SEED DATA
# =============================================================================


@pytest.fixture
async def users(session: AsyncSession) -> dict[str, User]:
    """An admin, two experts and an outsider, all with email addresses."""
    seeded = {
        "admin": User(id="admin-uid", email="admin@example.com", display_name="Ada Admin"),
        "expert1": User(id="expert-1-uid", email="one@example.com", display_name="Expert One"),
        "expert2": User(id="expert-2-uid", email="two@example.com", display_name="Expert Two"),
        "outsider": User(id="outsider-uid", email="out@example.com", display_name="Outsider"),
    }
    session.add_all(seeded.values())
    await session.commit()
    return seeded


@pytest.fixture
async def panel(session: AsyncSession, users: dict[str, User]) -> Panel:
    panel = await PanelService(session).create_panel(
        CreatePanelInput(
            name="Climate Policy Panel",
            description="Experts on carbon pricing",
            expert_ids=[users["expert1"].id, users["expert2"].id],
        ),
        creator_id=users["admin"].id,
    )
    await session.commit()
    return panel


@pytest.fixture
async def topic(session: AsyncSession, panel: Panel, users: dict[str, User]) -> Topic:
    result = await TopicService(session).create_topic(
        CreateTopicInput(
            panel_id=panel.id,
            title="Carbon tax design",
            question="Should the carbon tax be revenue neutral?",
        ),
        user_id=users["admin"].id,
    )
    await session.commit()
    return result.topic


# =============================================================================
# API CLIENT
# =============================================================================


@pytest.fixture
def auth_headers():
    def _headers(user_id: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(user_id)}"}

    return _headers


@pytest.fixture
async def client(database):
    from delphi_panels.main import app

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()

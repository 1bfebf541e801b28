"""Shared fixtures for relay tests.

Every test gets its own in-memory SQLite store, a recording chat transport
and an sxl adapter whose Jira client is an AsyncMock.
"""

from __future__ import annotations

import os

# Must be set before config.settings is first imported
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

from datetime import datetime
from typing import Callable
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from config import IdentityEntry
from models import Base, TrackerTask
from services.jira.client import JiraClient
from services.jira.identity import IdentityResolver
from services.jira.sources import SxlAdapter
from services.jira.transport import Button, ChatTransportError, MessageRef

SUPPORT = "Техническая поддержка"
INFRA_TYPES = ["Infra", "Office", "Prod"]
CHAT_ID = "-100"


class FakeTransport:
    """ChatTransport that records every call.

    fail_when(text) -> True makes that send raise; fail_edit makes every
    edit raise.
    """

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, list[list[Button]] | None]] = []
        self.edits: list[tuple[MessageRef, str, list[list[Button]] | None]] = []
        self.fail_when: Callable[[str], bool] | None = None
        self.fail_edit = False
        self._next_id = 1000

    async def send_message(self, chat_id, text, buttons=None) -> MessageRef:
        if self.fail_when and self.fail_when(text):
            raise ChatTransportError("send refused")
        self._next_id += 1
        self.sent.append((str(chat_id), text, buttons))
        return MessageRef(str(chat_id), self._next_id)

    async def edit_message(self, ref, text, buttons=None) -> None:
        if self.fail_edit:
            raise ChatTransportError("message is too old to edit")
        self.edits.append((ref, text, buttons))

    @property
    def texts(self) -> list[str]:
        return [text for _, text, _ in self.sent]


class FakeRedis:
    """The two Redis commands the pending comment store uses."""

    def __init__(self) -> None:
        self.store: dict[str, bytes] = {}
        self.ttls: dict[str, int] = {}

    async def setex(self, key: str, ttl: int, value) -> None:
        self.store[key] = value.encode() if isinstance(value, str) else value
        self.ttls[key] = ttl

    async def getdel(self, key: str):
        self.ttls.pop(key, None)
        return self.store.pop(key, None)


class TaskStore:
    """Direct row access for arranging and checking test state."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def add(self, task_id: str = "SUP-1", **fields) -> TrackerTask:
        values = {
            "title": "Printer on 3rd floor is offline",
            "priority": "High",
            "department": SUPPORT,
            "issue_type": "Task",
            "resolution": "",
            "assignee": "",
            "date_added": datetime(2024, 1, 10, 6, 0),
            "last_sent": None,
            "source": "sxl",
            "archived": False,
            "archived_date": None,
        }
        values.update(fields)
        task = TrackerTask(id=task_id, **values)
        async with self.session_factory() as session:
            session.add(task)
            await session.commit()
        return task

    async def add_row(self, row) -> None:
        async with self.session_factory() as session:
            session.add(row)
            await session.commit()

    async def get(self, task_id: str) -> TrackerTask | None:
        async with self.session_factory() as session:
            result = await session.execute(select(TrackerTask).where(TrackerTask.id == task_id))
            return result.scalar_one_or_none()

    async def all(self, model=TrackerTask) -> list:
        async with self.session_factory() as session:
            result = await session.execute(select(model))
            return list(result.scalars().all())


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def store(session_factory) -> TaskStore:
    return TaskStore(session_factory)


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def identities() -> IdentityResolver:
    return IdentityResolver({
        "alice": IdentityEntry(name="Alice Smith", logins={"sxl": "a.smith"}),
        "bob": IdentityEntry(
            name="Bob Jones",
            logins={"sxl": "b.jones", "betone": "bjones"},
            tokens={"sxl": "bob-pat"},
        ),
    })


@pytest_asyncio.fixture
async def sxl_adapter():
    """sxl adapter with a mocked client; every mutation succeeds by default."""
    adapter = SxlAdapter("https://jira.sxl.team", "source-pat", "project = SUPPORT")
    real_client = adapter.client
    client = AsyncMock(spec=JiraClient)
    client.search.return_value = []
    client.get_comments.return_value = []
    client.assign.return_value = True
    client.add_comment.return_value = True
    client.transition.return_value = True
    client.test_connection.return_value = {"success": True, "data": {}}
    client.is_connected = True
    adapter.client = client
    yield adapter
    await real_client.close()


@pytest.fixture
def adapters(sxl_adapter) -> dict:
    return {"sxl": sxl_adapter}

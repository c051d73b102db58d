"""Shared pytest fixtures for rsvpbot."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import scoped_session, sessionmaker
from sqlalchemy.pool import StaticPool

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from rsvpbot import api, database, storage
from rsvpbot.crud import create_event, upsert_channel, upsert_user
from rsvpbot.models import Base
from rsvpbot.surface import ChannelInfo
from rsvpbot.errors import SurfaceError


@pytest.fixture(scope="session", autouse=True)
def configure_in_memory_db():
    """Reuse a single in-memory SQLite database for fast, isolated tests."""

    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    database.enable_sqlite_foreign_keys(engine)
    session_factory = scoped_session(
        sessionmaker(
            bind=engine,
            autoflush=False,
            autocommit=False,
            future=True,
            expire_on_commit=False,
        )
    )
    database.engine = engine
    database.SessionLocal = session_factory
    storage.engine = engine
    api.SessionLocal = session_factory
    Base.metadata.create_all(bind=engine)
    yield
    session_factory.remove()


@pytest.fixture(autouse=True)
def clean_database():
    """Reset all tables between tests to guarantee isolation."""

    Base.metadata.drop_all(bind=database.engine)
    Base.metadata.create_all(bind=database.engine)
    yield
    database.SessionLocal.remove()


@pytest.fixture()
def session():
    db = database.SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def make_event():
    """Insert a channel plus its event and return the event id."""

    def _make(
        channel_id: str = "1001",
        *,
        title: str = "Game Night",
        when=None,
        message_id: str | None = "5001",
        author_id: str = "42",
        location: str = "Joe's",
        price: str = "Free",
        emoji: str = ":game_die:",
    ) -> int:
        with database.get_session() as db:
            upsert_user(db, author_id, "organizer")
            upsert_channel(db, channel_id, title.lower().replace(" ", "-"))
            return create_event(
                db,
                channel_id=channel_id,
                emoji=emoji,
                title=title,
                location=location,
                price=price,
                author_id=author_id,
                when=when,
                message_id=message_id,
            )

    return _make


class FakeSurface:
    """In-memory chat surface that records every call."""

    def __init__(self, categories: list[ChannelInfo] | None = None):
        self.categories = categories or []
        self.created: list[dict] = []
        self.sent: list[tuple[str, str]] = []
        self.edits: list[tuple[str, str, str]] = []
        self.renames: list[tuple[str, str]] = []
        self.fail_create = False
        self.fail_send = False
        self.fail_edit = False
        self.next_channel_id = 9001
        self.next_message_id = 7001

    async def list_channels(self, guild_id: str) -> list[ChannelInfo]:
        return list(self.categories)

    async def create_channel(self, guild_id, *, name, topic, owner_id, category_id=None):
        if self.fail_create:
            raise SurfaceError("create failed")
        channel = ChannelInfo(id=str(self.next_channel_id), name=name)
        self.next_channel_id += 1
        self.created.append(
            {"guild_id": guild_id, "name": name, "topic": topic, "owner_id": owner_id,
             "category_id": category_id}
        )
        return channel

    async def send_message(self, channel_id: str, content: str) -> str:
        if self.fail_send:
            raise SurfaceError("send failed")
        message_id = str(self.next_message_id)
        self.next_message_id += 1
        self.sent.append((channel_id, content))
        return message_id

    async def edit_message(self, channel_id: str, message_id: str, content: str) -> None:
        if self.fail_edit:
            raise SurfaceError("edit failed")
        self.edits.append((channel_id, message_id, content))

    async def rename_channel(self, channel_id: str, name: str) -> None:
        self.renames.append((channel_id, name))


@pytest.fixture()
def surface():
    return FakeSurface()

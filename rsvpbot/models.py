"""SQLAlchemy models for rsvpbot."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base

from .utils import utcnow

Base = declarative_base()

# SQLite only autoincrements INTEGER primary keys.
BigIntPK = BigInteger().with_variant(Integer, "sqlite")


def _now() -> datetime:
    return utcnow()


class User(Base):
    __tablename__ = "users"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    user_id = Column(String(32), nullable=False, unique=True)
    username = Column(String(255), nullable=False, default="")
    created_at = Column(DateTime(timezone=True), default=_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_now, onupdate=_now, nullable=False)


class Channel(Base):
    __tablename__ = "channels"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    channel_id = Column(String(32), nullable=False, unique=True)
    channel_name = Column(String(255), nullable=False, default="")
    created_at = Column(DateTime(timezone=True), default=_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_now, onupdate=_now, nullable=False)


class Event(Base):
    __tablename__ = "events"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    channel_id = Column(
        String(32), ForeignKey("channels.channel_id"), nullable=False, unique=True
    )
    message_id = Column(String(32), nullable=True)
    emoji = Column(String(64), nullable=False, default="")
    date = Column(DateTime(timezone=True), nullable=True)
    title = Column(String(255), nullable=False)
    location = Column(String(255), nullable=False, default="")
    price = Column(String(255), nullable=False, default="")
    description = Column(Text, nullable=False, default="")
    author_id = Column(String(32), nullable=False)
    created_at = Column(DateTime(timezone=True), default=_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_now, onupdate=_now, nullable=False)


class EventResponse(Base):
    __tablename__ = "event_responses"
    __table_args__ = (
        UniqueConstraint("event_id", "user_id", name="uq_event_responses_event_user"),
    )

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    event_id = Column(BigIntPK, ForeignKey("events.id"), nullable=False)
    user_id = Column(String(32), nullable=False)
    response_type = Column(String(16), nullable=False)
    created_at = Column(DateTime(timezone=True), default=_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_now, onupdate=_now, nullable=False)


class PokerSession(Base):
    __tablename__ = "poker_sessions"
    __table_args__ = (
        CheckConstraint("in_amount >= 0", name="ck_poker_sessions_in_amount"),
        CheckConstraint("out_amount >= 0", name="ck_poker_sessions_out_amount"),
    )

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    user_id = Column(String(32), nullable=False, index=True)
    in_amount = Column(Numeric(14, 2), nullable=False)
    out_amount = Column(Numeric(14, 2), nullable=False)
    location = Column(Text, nullable=True)
    stakes_sb = Column(Numeric(10, 2), nullable=True)
    stakes_bb = Column(Numeric(10, 2), nullable=True)
    stakes_text = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_now, nullable=False)


class CommandLog(Base):
    __tablename__ = "commands"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    user_id = Column(String(32), ForeignKey("users.user_id"), nullable=False)
    command_text = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_now, nullable=False)


class MessageLog(Base):
    __tablename__ = "messages"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    message_id = Column(String(32), nullable=False, unique=True)
    channel_id = Column(String(32), nullable=False)
    user_id = Column(String(32), ForeignKey("users.user_id"), nullable=False)
    content = Column(Text, nullable=False, default="")
    created_at = Column(DateTime(timezone=True), default=_now, nullable=False)

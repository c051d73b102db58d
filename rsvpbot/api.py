"""Read-only status API for operators: health and announcement previews."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from importlib.metadata import PackageNotFoundError, version as pkg_version

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from .crud import get_event_by_channel, get_poker_lifetime, get_responses
from .database import SessionLocal
from .errors import EventNotFoundError
from .render import display_date, render_event_message
from .storage import init_db
from .utils import ensure_utc

# Use uvicorn's error logger so messages get the level prefix in the default log format.
logger = logging.getLogger("uvicorn.error")


def _load_app_version() -> str:
    try:
        return pkg_version("rsvpbot")
    except PackageNotFoundError:
        return "dev"


APP_VERSION = _load_app_version()


class EventView(BaseModel):
    id: int
    channel_id: str
    message_id: str | None
    emoji: str
    title: str
    date: str | None
    date_display: str
    location: str
    price: str
    notes: str
    author_id: str
    going: list[str]
    maybe: list[str]
    declined: list[str]


class LifetimeView(BaseModel):
    user_id: str
    sessions: int
    net: str


@asynccontextmanager
async def lifespan(_: FastAPI):
    init_db()
    yield


app = FastAPI(title="rsvpbot", version=APP_VERSION, lifespan=lifespan)


def get_db():
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@app.exception_handler(EventNotFoundError)
async def event_not_found_handler(request: Request, exc: EventNotFoundError):
    return JSONResponse({"detail": "No event record for this channel"}, status_code=404)


@app.exception_handler(OperationalError)
async def operational_error_handler(request: Request, exc: OperationalError):
    raw = str(exc.orig) if getattr(exc, "orig", None) else str(exc)
    if "database is locked" in raw.lower():
        logger.error(
            "SQLite database is locked while handling %s %s",
            request.method,
            request.url.path,
        )
        return JSONResponse(
            {"detail": "The database is busy at the moment. Please try again."},
            status_code=503,
        )
    logger.error(
        "Operational database error on %s %s: %s",
        request.method,
        request.url.path,
        raw,
    )
    return JSONResponse({"detail": "We hit a database issue. Please try again."}, status_code=500)


@app.get("/healthz")
def healthz(db: Session = Depends(get_db)):
    db.execute(text("SELECT 1"))
    return {"status": "ok", "version": APP_VERSION}


@app.get("/api/events/{channel_id}", response_model=EventView)
def read_event(channel_id: str, db: Session = Depends(get_db)):
    event = get_event_by_channel(db, channel_id)
    responses = get_responses(db, event.id)
    date = ensure_utc(event.date)
    return EventView(
        id=event.id,
        channel_id=event.channel_id,
        message_id=event.message_id,
        emoji=event.emoji,
        title=event.title,
        date=date.isoformat() if date else None,
        date_display=display_date(date),
        location=event.location,
        price=event.price,
        notes=event.description,
        author_id=event.author_id,
        going=responses.going,
        maybe=responses.maybe,
        declined=responses.declined,
    )


@app.get("/api/events/{channel_id}/preview", response_class=PlainTextResponse)
def preview_event(channel_id: str, db: Session = Depends(get_db)):
    return render_event_message(db, channel_id)


@app.get("/api/poker/{user_id}/lifetime", response_model=LifetimeView)
def read_lifetime(user_id: str, db: Session = Depends(get_db)):
    stats = get_poker_lifetime(db, user_id)
    return LifetimeView(user_id=user_id, sessions=stats.sessions, net=f"{stats.net:.2f}")

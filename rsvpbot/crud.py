"""Store operations for events, RSVP responses, users, channels and the poker ledger."""

from __future__ import annotations

import enum
import logging
import math
from datetime import datetime
from decimal import Decimal
from typing import NamedTuple

from sqlalchemy import func, or_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .errors import (
    EventNotFoundError,
    InvalidFieldError,
    InvalidResponseKindError,
    StoreError,
    TimeParseError,
    ValidationError,
)
from .models import (
    Channel,
    CommandLog,
    Event,
    EventResponse,
    MessageLog,
    PokerSession,
    User,
)
from .utils import ensure_utc, parse_stakes, utcnow

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


class EventField(str, enum.Enum):
    """Event columns that commands are allowed to change."""

    TITLE = "title"
    DATE = "date"
    LOCATION = "location"
    PRICE = "price"
    EMOJI = "emoji"
    MESSAGE_ID = "message_id"
    DESCRIPTION = "description"

    @classmethod
    def parse(cls, name: str) -> EventField:
        try:
            return cls((name or "").strip().lower())
        except ValueError as exc:
            raise InvalidFieldError(f"Field {name!r} cannot be changed") from exc


class ResponseKind(str, enum.Enum):
    YES = "yes"
    MAYBE = "maybe"
    NO = "no"


class ResponseLists(NamedTuple):
    going: list[str]
    maybe: list[str]
    declined: list[str]


class PokerLifetime(NamedTuple):
    sessions: int
    net: Decimal


def _now() -> datetime:
    return utcnow()


def _insert_for(session: Session):
    """Return the dialect ``insert`` construct that supports ON CONFLICT."""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert
    if dialect == "sqlite":
        return sqlite.insert
    raise StoreError(f"Upserts are not supported on the {dialect} dialect")


def upsert_user(session: Session, user_id: str, username: str | None = "") -> None:
    """Insert or refresh a user row; an empty name never replaces a known one."""
    insert = _insert_for(session)
    stmt = insert(User).values(user_id=str(user_id), username=username or "")
    stmt = stmt.on_conflict_do_update(
        index_elements=[User.user_id],
        set_={
            "username": func.coalesce(func.nullif(stmt.excluded.username, ""), User.username),
            "updated_at": _now(),
        },
    )
    session.execute(stmt)


def upsert_channel(session: Session, channel_id: str, channel_name: str | None = "") -> None:
    """Insert or refresh a channel row; an empty name never replaces a known one."""
    insert = _insert_for(session)
    stmt = insert(Channel).values(channel_id=str(channel_id), channel_name=channel_name or "")
    stmt = stmt.on_conflict_do_update(
        index_elements=[Channel.channel_id],
        set_={
            "channel_name": func.coalesce(
                func.nullif(stmt.excluded.channel_name, ""), Channel.channel_name
            ),
            "updated_at": _now(),
        },
    )
    session.execute(stmt)


def create_event(
    session: Session,
    *,
    channel_id: str,
    emoji: str,
    title: str,
    location: str,
    price: str,
    author_id: str,
    when: datetime | None,
    message_id: str | None = None,
) -> int:
    """Insert an event row and return its id.

    ``when=None`` stores a TBD date. The channel row must already exist.
    """
    event = Event(
        channel_id=str(channel_id),
        message_id=message_id or None,
        emoji=emoji,
        title=title,
        location=location,
        price=price,
        author_id=str(author_id),
        date=ensure_utc(when),
        description="",
    )
    session.add(event)
    try:
        session.flush()
    except IntegrityError as exc:
        raise StoreError(
            f"Could not create the event for channel {channel_id}: "
            "the channel must be recorded first and may host only one event"
        ) from exc
    return event.id


def get_event_by_channel(session: Session, channel_id: str) -> Event:
    stmt = select(Event).where(Event.channel_id == str(channel_id))
    event = session.scalars(stmt).first()
    if event is None:
        raise EventNotFoundError(str(channel_id))
    return event


def _coerce_field_value(field: EventField, value):
    if field is EventField.DATE:
        if value is None or value == "":
            return None
        if isinstance(value, str):
            try:
                value = datetime.fromisoformat(value.strip())
            except ValueError as exc:
                raise TimeParseError(f"{value!r} is not an ISO-8601 instant") from exc
        if not isinstance(value, datetime):
            raise ValidationError("Event dates must be datetimes")
        return ensure_utc(value)
    if field is EventField.MESSAGE_ID:
        if not value:
            raise ValidationError("A message reference cannot be empty")
        return str(value)
    return "" if value is None else str(value)


def update_event_field(
    session: Session, channel_id: str, field: EventField | str, value
) -> None:
    """Change one allow-listed column of the channel's event in a single UPDATE."""
    if not isinstance(field, EventField):
        field = EventField.parse(field)
    coerced = _coerce_field_value(field, value)

    stmt = (
        update(Event)
        .where(Event.channel_id == str(channel_id))
        .values({field.value: coerced, "updated_at": _now()})
    )
    if field is EventField.MESSAGE_ID:
        # the announcement reference is written once
        stmt = stmt.where(or_(Event.message_id.is_(None), Event.message_id == ""))
    result = session.execute(stmt)
    if result.rowcount:
        return
    event = get_event_by_channel(session, channel_id)
    raise StoreError(
        f"Event {event.id} already references message {event.message_id}"
    )


def normalize_response_kind(raw: str | ResponseKind) -> ResponseKind:
    if isinstance(raw, ResponseKind):
        return raw
    try:
        return ResponseKind((raw or "").strip().lower())
    except ValueError as exc:
        raise InvalidResponseKindError(
            "Invalid response. Please use yes, no, or maybe."
        ) from exc


def _find_response(session: Session, event_id: int, user_id: str) -> EventResponse | None:
    stmt = select(EventResponse).where(
        EventResponse.event_id == event_id, EventResponse.user_id == str(user_id)
    )
    return session.scalars(stmt).first()


def upsert_response(
    session: Session, event_id: int, user_id: str, kind: str | ResponseKind
) -> EventResponse:
    """Record a user's RSVP, replacing any earlier answer for the same event."""
    normalized = normalize_response_kind(kind)
    existing = _find_response(session, event_id, user_id)
    if existing is None:
        response = EventResponse(
            event_id=event_id, user_id=str(user_id), response_type=normalized.value
        )
        try:
            with session.begin_nested():
                session.add(response)
            return response
        except IntegrityError as exc:
            # a concurrent RSVP from the same user inserted first
            existing = _find_response(session, event_id, user_id)
            if existing is None:
                raise StoreError(f"Could not record RSVP for event {event_id}") from exc
            logger.info(
                "Concurrent RSVP for event %s user %s, updating in place",
                event_id,
                user_id,
            )
    existing.response_type = normalized.value
    existing.updated_at = _now()
    session.add(existing)
    session.flush()
    return existing


def get_responses(session: Session, event_id: int) -> ResponseLists:
    """Partition an event's RSVPs into going / maybe / declined user ids."""
    lists = ResponseLists(going=[], maybe=[], declined=[])
    buckets = {
        ResponseKind.YES.value: lists.going,
        ResponseKind.MAYBE.value: lists.maybe,
        ResponseKind.NO.value: lists.declined,
    }
    stmt = (
        select(EventResponse.user_id, EventResponse.response_type)
        .where(EventResponse.event_id == event_id)
        .order_by(EventResponse.id)
    )
    for user_id, response_type in session.execute(stmt):
        bucket = buckets.get(response_type)
        if bucket is not None:
            bucket.append(user_id)
    return lists


def log_command(session: Session, user_id: str, username: str, command_text: str) -> None:
    """Record a slash command or modal submission for auditing."""
    upsert_user(session, user_id, username)
    session.add(CommandLog(user_id=str(user_id), command_text=command_text))
    session.flush()


def log_message(
    session: Session,
    *,
    message_id: str,
    channel_id: str,
    channel_name: str | None,
    user_id: str,
    username: str | None,
    content: str,
) -> None:
    """Record a chat message once; repeated deliveries are ignored."""
    upsert_user(session, user_id, username)
    if channel_id:
        try:
            with session.begin_nested():
                upsert_channel(session, channel_id, channel_name)
        except SQLAlchemyError:
            logger.warning("Could not record channel %s", channel_id, exc_info=True)
    insert = _insert_for(session)
    stmt = (
        insert(MessageLog)
        .values(
            message_id=str(message_id),
            channel_id=str(channel_id),
            user_id=str(user_id),
            content=content or "",
        )
        .on_conflict_do_nothing(index_elements=[MessageLog.message_id])
    )
    session.execute(stmt)


def _amount(value, label: str) -> Decimal:
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"The {label} amount must be a number") from exc
    if not math.isfinite(number) or number < 0:
        raise ValidationError(f"The {label} amount must be zero or more")
    return Decimal(str(number)).quantize(CENTS)


def create_poker_session(
    session: Session,
    *,
    user_id: str,
    in_amount,
    out_amount,
    location: str | None = None,
    stakes: str | None = None,
) -> PokerSession:
    """Log one poker session for a user."""
    buy_in = _amount(in_amount, "buy-in")
    cash_out = _amount(out_amount, "cash-out")
    small, big, stakes_text = parse_stakes(stakes)
    upsert_user(session, user_id)
    row = PokerSession(
        user_id=str(user_id),
        in_amount=buy_in,
        out_amount=cash_out,
        location=(location or "").strip() or None,
        stakes_sb=Decimal(str(small)) if small is not None else None,
        stakes_bb=Decimal(str(big)) if big is not None else None,
        stakes_text=stakes_text,
    )
    session.add(row)
    session.flush()
    return row


def get_poker_lifetime(session: Session, user_id: str) -> PokerLifetime:
    """Return the session count and net result (cash-out minus buy-in) for a user."""
    stmt = select(
        func.count(PokerSession.id),
        func.coalesce(func.sum(PokerSession.out_amount - PokerSession.in_amount), 0),
    ).where(PokerSession.user_id == str(user_id))
    count, net = session.execute(stmt).one()
    return PokerLifetime(sessions=int(count or 0), net=Decimal(str(net or 0)).quantize(CENTS))

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from zoneinfo import ZoneInfo

import pytest
from jinja2 import TemplateError
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from rsvpbot import coordinator, crud, database
from rsvpbot.coordinator import NO_EVENT_MESSAGE, MutationCoordinator
from rsvpbot.crud import get_event_by_channel, get_responses
from rsvpbot.errors import StoreError
from rsvpbot.models import MessageLog
from rsvpbot.surface import ChannelInfo
from rsvpbot.utils import ensure_utc


@pytest.fixture()
def coord(surface):
    return MutationCoordinator(
        database.SessionLocal,
        surface,
        tz=ZoneInfo("America/Chicago"),
        bot_user=("100", "rsvpbot"),
    )


def _event(channel_id: str):
    with database.get_session() as db:
        event = get_event_by_channel(db, channel_id)
        return event, get_responses(db, event.id)


def _count_renders(monkeypatch) -> list[str]:
    calls: list[str] = []
    real = coordinator.render_event_message

    def counting(session, channel_id, **kwargs):
        calls.append(channel_id)
        return real(session, channel_id, **kwargs)

    monkeypatch.setattr(coordinator, "render_event_message", counting)
    return calls


def test_rsvp_writes_then_renders_and_edits_once(coord, surface, make_event, monkeypatch):
    make_event("1001", message_id="5001")
    renders = _count_renders(monkeypatch)

    result = asyncio.run(coord.rsvp("1001", "7", "YES", user_name="bob"))

    assert result.ok
    assert result.message == "RSVP updated for <@7>: yes"
    assert renders == ["1001"]
    assert len(surface.edits) == 1
    channel_id, message_id, content = surface.edits[0]
    assert (channel_id, message_id) == ("1001", "5001")
    assert "**Going (1)**\n<@7>" in content
    assert _event("1001")[1].going == ["7"]


def test_repeated_rsvp_keeps_one_response(coord, surface, make_event):
    make_event("1001")
    asyncio.run(coord.rsvp("1001", "7", "yes"))
    asyncio.run(coord.rsvp("1001", "7", "no"))
    _, lists = _event("1001")
    assert lists.going == []
    assert lists.declined == ["7"]
    assert "**Can't make it (1)**\n<@7>" in surface.edits[-1][2]


def test_invalid_rsvp_response_is_rejected_without_write(coord, surface, make_event):
    make_event("1001")
    result = asyncio.run(coord.rsvp("1001", "7", "perhaps"))
    assert not result.ok
    assert result.message == "Invalid response. Please use yes, no, or maybe."
    assert surface.edits == []
    assert _event("1001")[1] == ([], [], [])


def test_rsvp_without_event(coord, surface):
    result = asyncio.run(coord.rsvp("404", "7", "yes"))
    assert not result.ok
    assert result.message == NO_EVENT_MESSAGE
    assert surface.edits == []


def test_rsvp_store_failure_skips_edit(coord, surface, make_event, monkeypatch):
    make_event("1001")

    def broken(*args, **kwargs):
        raise OperationalError("insert", {}, Exception("connection lost"))

    monkeypatch.setattr(coordinator, "upsert_response", broken)
    result = asyncio.run(coord.rsvp("1001", "7", "yes"))
    assert not result.ok
    assert result.message == "Failed to save RSVP."
    assert surface.edits == []


def test_edit_failure_still_reports_success(coord, surface, make_event):
    make_event("1001")
    surface.fail_edit = True
    result = asyncio.run(coord.rsvp("1001", "7", "maybe"))
    assert result.ok
    assert _event("1001")[1].maybe == ["7"]


def test_event_without_message_is_updated_silently(coord, surface, make_event):
    make_event("1001", message_id=None)
    result = asyncio.run(coord.change_location("1001", "Sam's"))
    assert result.ok
    assert result.message == "Location updated: Sam's"
    assert surface.edits == []
    assert _event("1001")[0].location == "Sam's"


def test_change_date_stores_utc_instant(coord, surface, make_event):
    make_event("1001")
    result = asyncio.run(coord.change_date("1001", "2025-05-02 15:04"))
    expected = datetime(2025, 5, 2, 20, 4, tzinfo=UTC)
    assert result.ok
    assert result.message == f"Event date changed to <t:{int(expected.timestamp())}:R>!"
    assert ensure_utc(_event("1001")[0].date) == expected
    assert f"<t:{int(expected.timestamp())}:R>" in surface.edits[-1][2]


def test_change_date_rejects_bad_input_without_write(coord, surface, make_event):
    make_event("1001")
    result = asyncio.run(coord.change_date("1001", "2025-13-40"))
    assert not result.ok
    assert "YYYY-MM-DD HH:MM:SS" in result.message
    assert _event("1001")[0].date is None
    assert surface.edits == []


def test_change_title_renames_channel(coord, surface, make_event):
    make_event("1001")
    result = asyncio.run(coord.change_title("1001", "Poker Night!"))
    assert result.ok
    assert result.message == "Event name changed to 'Poker Night!'!"
    assert surface.renames == [("1001", "poker-night")]
    assert "**Poker Night!**" in surface.edits[-1][2]


def test_change_title_rejects_blank(coord, surface, make_event):
    make_event("1001")
    result = asyncio.run(coord.change_title("1001", "   "))
    assert not result.ok
    assert surface.renames == []
    assert _event("1001")[0].title == "Game Night"


def test_change_field_store_failure(coord, surface, make_event, monkeypatch):
    make_event("1001")

    def broken(*args, **kwargs):
        raise StoreError("database unavailable")

    monkeypatch.setattr(coordinator, "update_event_field", broken)
    result = asyncio.run(coord.change_price("1001", "$5"))
    assert not result.ok
    assert result.message == "Failed to update event price in DB."
    assert surface.edits == []


def test_change_notes_and_emoji(coord, surface, make_event):
    make_event("1001")
    assert asyncio.run(coord.change_notes("1001", "  Bring chips  ")).message == "Notes updated."
    assert asyncio.run(coord.change_emoji("1001", ":spades:")).message == "Emoji updated to :spades:"
    event, _ = _event("1001")
    assert event.description == "Bring chips"
    assert event.emoji == ":spades:"
    assert surface.edits[-1][2].startswith(":spades: **Game Night**")


def test_change_on_unknown_channel(coord, surface):
    result = asyncio.run(coord.change_price("404", "$5"))
    assert not result.ok
    assert result.message == NO_EVENT_MESSAGE


def test_create_event_bootstraps_channel_row_and_message(surface):
    surface.categories = [
        ChannelInfo(id="300", name="general"),
        ChannelInfo(id="301", name="active plans", is_category=True),
    ]
    coord = MutationCoordinator(
        database.SessionLocal, surface, tz="America/Chicago", bot_user=("100", "rsvpbot")
    )

    result = asyncio.run(
        coord.create_event(
            guild_id="1",
            author_id="42",
            author_name="alice",
            name="Game Night",
            time_text="2025-05-02 19:30",
            location="Joe's",
        )
    )

    assert result.ok
    assert result.message == "Event channel 'game-night' created!"
    assert surface.created[0]["category_id"] == "301"
    assert surface.created[0]["owner_id"] == "42"
    channel_id, content = surface.sent[0]
    event, _ = _event(channel_id)
    assert event.message_id == "7001"
    assert event.price == "Free"
    assert event.emoji == ":loudspeaker:"
    assert ensure_utc(event.date) == datetime(2025, 5, 3, 0, 30, tzinfo=UTC)
    with database.get_session() as db:
        assert content == coordinator.render_event_message(db, channel_id)
        logged = db.scalars(select(MessageLog)).one()
        assert (logged.message_id, logged.user_id) == ("7001", "100")


def test_create_event_channel_failure(coord, surface):
    surface.fail_create = True
    result = asyncio.run(
        coord.create_event(
            guild_id="1",
            author_id="42",
            author_name="alice",
            name="Game Night",
            time_text="TBD",
            location="Joe's",
        )
    )
    assert not result.ok
    assert result.message == "Failed to create event channel."
    assert surface.sent == []


def test_create_event_rejects_bad_time_before_creating_channel(coord, surface):
    result = asyncio.run(
        coord.create_event(
            guild_id="1",
            author_id="42",
            author_name="alice",
            name="Game Night",
            time_text="next friday",
            location="Joe's",
        )
    )
    assert not result.ok
    assert surface.created == []


def test_create_event_uses_fallback_when_render_fails(coord, surface, monkeypatch):
    def broken(*args, **kwargs):
        raise TemplateError("template missing")

    monkeypatch.setattr(coordinator, "render_event_message", broken)
    result = asyncio.run(
        coord.create_event(
            guild_id="1",
            author_id="42",
            author_name="alice",
            name="Launch",
            time_text="",
            location="HQ",
            price="$10",
            emoji=":rocket:",
        )
    )
    assert result.ok
    channel_id, content = surface.sent[0]
    assert content.startswith(":rocket: **Launch**\nTime: TBD")
    assert _event(channel_id)[0].message_id == "7001"


def test_create_event_inserts_after_send_when_first_insert_fails(coord, surface, monkeypatch):
    real_create = crud.create_event
    attempts = []

    def flaky(session, **fields):
        attempts.append(fields.get("message_id"))
        if len(attempts) == 1:
            raise StoreError("transient failure")
        return real_create(session, **fields)

    monkeypatch.setattr(coordinator, "create_event", flaky)
    result = asyncio.run(
        coord.create_event(
            guild_id="1",
            author_id="42",
            author_name="alice",
            name="Launch",
            time_text="2025-06",
            location="HQ",
        )
    )
    assert result.ok
    assert attempts == [None, "7001"]
    channel_id, content = surface.sent[0]
    assert content.startswith(":loudspeaker: **Launch**\nTime: 2025-06-01T05:00:00+00:00")
    assert _event(channel_id)[0].message_id == "7001"


def test_create_event_send_failure_keeps_row(coord, surface):
    surface.fail_send = True
    result = asyncio.run(
        coord.create_event(
            guild_id="1",
            author_id="42",
            author_name="alice",
            name="Launch",
            time_text="TBD",
            location="HQ",
        )
    )
    assert result.ok
    event, _ = _event("9001")
    assert event.message_id is None


def test_game_night_end_to_end(coord, surface):
    result = asyncio.run(
        coord.create_event(
            guild_id="1",
            author_id="42",
            author_name="alice",
            name="Game Night",
            time_text="TBD",
            location="Joe's",
        )
    )
    assert result.ok
    channel_id, first = surface.sent[0]
    assert "**When:** TBD" in first

    asyncio.run(coord.rsvp(channel_id, "1", "yes", user_name="one"))
    asyncio.run(coord.rsvp(channel_id, "2", "yes", user_name="two"))
    asyncio.run(coord.rsvp(channel_id, "3", "maybe", user_name="three"))
    asyncio.run(coord.rsvp(channel_id, "2", "no", user_name="two"))
    asyncio.run(coord.change_date(channel_id, "2025-05-02 19:30"))

    _, message_id, final = surface.edits[-1]
    assert message_id == "7001"
    assert "**Going (1)**\n<@1>" in final
    assert "**Maybe (1)**\n<@3>" in final
    assert "**Can't make it (1)**\n<@2>" in final
    assert "TBD" not in final
    with database.get_session() as db:
        assert final == coordinator.render_event_message(db, channel_id)


def test_record_command_and_message_are_best_effort(coord, monkeypatch):
    def broken(*args, **kwargs):
        raise OperationalError("insert", {}, Exception("database is locked"))

    asyncio.run(coord.record_command("42", "alice", "help"))
    monkeypatch.setattr(coordinator, "log_message", broken)
    asyncio.run(
        coord.record_message(
            message_id="m1",
            channel_id="1001",
            channel_name="general",
            user_id="42",
            username="alice",
            content="hi",
        )
    )
    with database.get_session() as db:
        assert db.scalars(select(MessageLog)).all() == []
